"""
Transaction Submitter - build, sign, broadcast and confirm transactions.

Uses eth-account for signing and the httpx-based JSON-RPC client for
sending.  ``send`` never raises: every outcome is a TxSuccess or a Failure.

The nonce cursor advances as soon as a broadcast is accepted, not when the
receipt arrives.  A broadcast that never confirms still occupies its nonce,
so it is reported as UNCONFIRMED (with its hash) and the next send moves on
to the next nonce.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from eth_utils import encode_hex, to_checksum_address

from ..config import GasSettings
from ..log import wallet_logger
from ..spec.models import Failure, RetryContext, TxRequest, TxResult, TxSuccess, WalletSession
from .errors import PROXY_KINDS, ChainError, ErrorKind, classify, short_reason
from .gas import GasOracle
from .nonce import NonceSequencer
from .retry import RetryPolicy, with_retry
from .rpc import RpcClient, from_hex

MAX_PROXY_RETRIES = 3

# Failures raised before any byte of the request left this process.
_NOT_SENT = (httpx.ConnectError, httpx.ConnectTimeout, httpx.ProxyError)


def _may_have_reached_node(exc: ChainError) -> bool:
    cause = exc.__cause__
    return isinstance(cause, httpx.TransportError) and not isinstance(cause, _NOT_SENT)


class TransactionSubmitter:
    def __init__(
        self,
        rpc: RpcClient,
        nonces: NonceSequencer,
        oracle: GasOracle,
        *,
        gas_settings: Optional[GasSettings] = None,
        retry_policy: Optional[RetryPolicy] = None,
        receipt_timeout: float = 120.0,
        poll_interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.rpc = rpc
        self.nonces = nonces
        self.oracle = oracle
        self.gas_settings = gas_settings or oracle.settings
        self.retry_policy = retry_policy or RetryPolicy()
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep

    @property
    def chain_id(self) -> int:
        return self.rpc.chain_id

    async def estimate_gas_limit(
        self,
        tx: dict[str, Any],
        session: WalletSession,
        _proxy_retries: int = 0,
    ) -> int:
        """
        Estimate gas and add the safety buffer.

        Falls back to the configured default gas limit when estimation
        fails, after rotating proxies on connection errors.
        """
        log = wallet_logger(__name__, session.index)
        try:
            estimated = await self.rpc.estimate_gas(tx)
        except (ChainError, ValueError) as exc:
            log.warning("Gas estimation failed: %s", exc)
            if (
                classify(exc) is ErrorKind.CONNECTION
                and self.rpc.pool.enabled
                and _proxy_retries < MAX_PROXY_RETRIES
            ):
                log.warning("Proxy error detected, trying to change proxy...")
                await self.rpc.rotate_proxy()
                return await self.estimate_gas_limit(tx, session, _proxy_retries + 1)

            default = self.gas_settings.default_gas_limit
            log.warning("Using default gas: %d", default)
            return default

        with_buffer = int(Decimal(estimated) * Decimal(str(self.gas_settings.estimate_buffer)))
        log.info("Estimated gas: %d, with buffer: %d", estimated, with_buffer)
        return with_buffer

    async def build(self, session: WalletSession, request: TxRequest) -> dict[str, Any]:
        """
        Assemble the final unsigned transaction for ``request``.

        Reads the nonce cursor and prices gas; explicit gas fields on the
        request are used as-is.
        """
        nonce = await self.nonces.next_nonce(session)
        gas_price = request.gas_price
        if gas_price is None:
            gas_price = await self.oracle.price(request.attempt)

        to = to_checksum_address(request.to) if request.to else None
        gas_limit = request.gas_limit
        if gas_limit is None:
            template: dict[str, Any] = {
                "from": session.address,
                "data": request.data,
                "value": request.value,
            }
            if to is not None:
                template["to"] = to
            gas_limit = await self.estimate_gas_limit(template, session)

        tx: dict[str, Any] = {
            "data": encode_hex(request.data),
            "value": request.value,
            "nonce": nonce,
            "gas": gas_limit,
            "gasPrice": gas_price,
            "chainId": self.chain_id,
        }
        if to is not None:
            tx["to"] = to
        return tx

    async def send(
        self,
        session: WalletSession,
        request: TxRequest,
        label: str = "transaction",
    ) -> TxResult:
        """
        Sign, broadcast and confirm one transaction.

        Connection-class failures rotate the proxy and try again, at most
        MAX_PROXY_RETRIES times.  Before signing the whole request is
        rebuilt; after signing the same raw transaction is re-sent, so a
        node that already holds it answers "already known" instead of
        accepting a second transfer.

        Returns:
            TxSuccess, or a Failure tagged with its ErrorKind
        """
        log = wallet_logger(__name__, session.index)

        try:
            tx = await self.build(session, request)
            signed = session.account.sign_transaction(tx)
        except Exception as exc:
            kind = classify(exc)
            reason = short_reason(kind, str(exc))
            log.error("Error in %s: %s", label, reason)

            if (
                kind in PROXY_KINDS
                and self.rpc.pool.enabled
                and request.proxy_retries < MAX_PROXY_RETRIES
            ):
                log.warning("Possible proxy error detected, trying to change proxy...")
                await self.rpc.rotate_proxy()
                log.info(
                    "Retrying %s with new proxy (attempt %d/%d)...",
                    label, request.proxy_retries + 1, MAX_PROXY_RETRIES,
                )
                return await self.send(session, request.with_proxy_retry(), label)

            return Failure(kind=kind, message=reason, detail=exc)

        broadcast = await self._broadcast(
            session,
            encode_hex(bytes(signed.raw_transaction)),
            encode_hex(bytes(signed.hash)),
            label,
            request.proxy_retries,
        )
        if isinstance(broadcast, Failure):
            return broadcast
        tx_hash = broadcast

        nonce = tx["nonce"]
        self.nonces.increment(session)
        log.info("%s broadcast: %s (nonce %d)", label, tx_hash, nonce)

        try:
            receipt = await self.rpc.wait_for_receipt(
                tx_hash,
                timeout=self.receipt_timeout,
                poll_interval=self.poll_interval,
            )
        except Exception as exc:
            log.error("%s broadcast but not confirmed: %s", label, exc)
            return Failure(
                kind=ErrorKind.UNCONFIRMED,
                message=short_reason(ErrorKind.UNCONFIRMED),
                detail=exc,
                tx_hash=tx_hash,
            )

        if from_hex(receipt.get("status", "0x1")) == 0:
            log.error("%s reverted: %s", label, tx_hash)
            return Failure(
                kind=ErrorKind.REVERTED,
                message=short_reason(ErrorKind.REVERTED),
                detail=receipt,
                tx_hash=tx_hash,
            )

        log.info("%s transaction successful: %s", label, tx_hash)
        return TxSuccess(tx_hash=tx_hash, receipt=receipt, nonce=nonce)

    async def _broadcast(
        self,
        session: WalletSession,
        raw_tx: str,
        tx_hash: str,
        label: str,
        proxy_retries: int = 0,
    ) -> Union[str, Failure]:
        """
        Send a signed transaction, re-sending the same bytes after proxy errors.

        Returns the transaction hash once the node holds the transaction.
        When a request may have reached the node but no answer came back,
        the outcome is UNCONFIRMED with the signed hash; it is never
        re-signed, and the nonce cursor is dropped so the next send
        re-syncs with the network.
        """
        log = wallet_logger(__name__, session.index)
        maybe_delivered = False

        while True:
            try:
                return await self.rpc.send_raw_transaction(raw_tx)
            except ChainError as exc:
                if exc.kind is ErrorKind.UNCONFIRMED or (maybe_delivered and exc.kind is ErrorKind.NONCE):
                    log.warning("%s is already known to the network: %s", label, tx_hash)
                    return tx_hash

                maybe_delivered = maybe_delivered or _may_have_reached_node(exc)
                reason = short_reason(exc.kind, str(exc))
                log.error("Error broadcasting %s: %s", label, reason)

                if (
                    exc.kind in PROXY_KINDS
                    and self.rpc.pool.enabled
                    and proxy_retries < MAX_PROXY_RETRIES
                ):
                    proxy_retries += 1
                    log.warning("Possible proxy error detected, trying to change proxy...")
                    await self.rpc.rotate_proxy()
                    log.info(
                        "Re-sending %s with new proxy (attempt %d/%d)...",
                        label, proxy_retries, MAX_PROXY_RETRIES,
                    )
                    continue

                if maybe_delivered:
                    self.nonces.reset(session)
                    return Failure(
                        kind=ErrorKind.UNCONFIRMED,
                        message=short_reason(ErrorKind.UNCONFIRMED),
                        detail=exc,
                        tx_hash=tx_hash,
                    )
                return Failure(kind=exc.kind, message=reason, detail=exc)

    async def send_with_retry(
        self,
        session: WalletSession,
        request: TxRequest,
        label: str = "transaction",
        policy: Optional[RetryPolicy] = None,
    ) -> TxResult:
        """
        ``send`` under the retry policy.

        Each attempt escalates the gas price.  Between attempts, connection
        errors rotate the proxy and nonce errors re-sync the cursor with the
        network.
        """
        log = wallet_logger(__name__, session.index)

        async def attempt(ctx: RetryContext) -> TxResult:
            return await self.send(session, request.with_attempt(ctx.attempt - 1), label)

        async def before_retry(kind: ErrorKind, ctx: RetryContext) -> None:
            if kind is ErrorKind.NONCE:
                log.info("Nonce conflict, re-syncing nonce with the network")
                self.nonces.reset(session)
            elif kind in PROXY_KINDS:
                await self.rpc.rotate_proxy()

        return await with_retry(
            attempt,
            policy or self.retry_policy,
            label=label,
            on_retry=before_retry,
            sleep=self.sleep,
            log=log,
        )

    async def balance(self, session: WalletSession) -> int:
        """Native balance of the session's wallet in wei."""
        return await self.rpc.get_balance(session.address)
