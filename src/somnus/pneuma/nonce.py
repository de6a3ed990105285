"""
Nonce Sequencer - per-session nonce cursor.

The cursor is fetched from the network once, then advanced locally after
every successful broadcast.  Not safe for concurrent use within a session:
one transaction is in flight per wallet at a time.
"""

from __future__ import annotations

from ..log import wallet_logger
from ..spec.models import WalletSession
from .rpc import RpcClient


class NonceSequencer:
    def __init__(self, rpc: RpcClient) -> None:
        self.rpc = rpc

    async def next_nonce(self, session: WalletSession) -> int:
        """
        Return the nonce for the next transaction of ``session``.

        Queries the network only when the cursor is uninitialized.  Network
        errors propagate; retrying is the caller's job.
        """
        log = wallet_logger(__name__, session.index)
        if session.nonce is None:
            session.nonce = await self.rpc.get_transaction_count(session.address)
            log.info("Initial nonce from network: %d", session.nonce)
        else:
            log.debug("Using tracked nonce: %d", session.nonce)
        return session.nonce

    def increment(self, session: WalletSession) -> None:
        """Advance the cursor after a broadcast (not after confirmation)."""
        if session.nonce is None:
            return
        session.nonce += 1
        wallet_logger(__name__, session.index).debug("Incremented nonce to: %d", session.nonce)

    def reset(self, session: WalletSession) -> None:
        """Forget the cursor; the next call re-syncs with the network."""
        if session.nonce is not None:
            wallet_logger(__name__, session.index).debug("Reset nonce (was %d)", session.nonce)
        session.nonce = None
