"""
Error taxonomy for the transaction engine.

Failures are tagged with an ``ErrorKind`` where they originate (RPC client,
signer, receipt poller) so that retry decisions are a lookup over a closed
set instead of a search through message text.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional

import httpx


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    NONCE = "nonce"
    UNDERPRICED = "underpriced"
    GAS_ESTIMATION = "gas_estimation"
    FUNDS = "funds"
    RATE_LIMIT = "rate_limit"
    REVERTED = "reverted"
    UNCONFIRMED = "unconfirmed"
    UNCLASSIFIED = "unclassified"


RETRYABLE_KINDS = frozenset({
    ErrorKind.CONNECTION,
    ErrorKind.NONCE,
    ErrorKind.UNDERPRICED,
    ErrorKind.GAS_ESTIMATION,
})

# Kinds that trigger a proxy rotation before the next attempt.
PROXY_KINDS = frozenset({ErrorKind.CONNECTION})

_REASONS = {
    ErrorKind.CONNECTION: "Connection failed",
    ErrorKind.NONCE: "Nonce has already been used",
    ErrorKind.UNDERPRICED: "Gas price too low to replace pending transaction",
    ErrorKind.GAS_ESTIMATION: "Cannot estimate gas for transaction",
    ErrorKind.FUNDS: "Insufficient funds for transaction",
    ErrorKind.RATE_LIMIT: "Rate limited",
    ErrorKind.REVERTED: "Transaction reverted",
    ErrorKind.UNCONFIRMED: "Transaction broadcast but not confirmed",
}


class ChainError(RuntimeError):
    """An error raised by the engine, tagged with its kind."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.UNCLASSIFIED,
        code: Optional[int] = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.code = code
        self.data = data

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ConfigError(ValueError):
    exit_code: int = 2


def classify_rpc_error(method: str, error: dict[str, Any]) -> ErrorKind:
    """Map a JSON-RPC error object returned by the node to an ErrorKind."""
    code = error.get("code")
    message = str(error.get("message", "")).lower()

    if "insufficient funds" in message:
        return ErrorKind.FUNDS
    if "already known" in message or "known transaction" in message:
        # The node already holds this exact transaction: it was broadcast.
        return ErrorKind.UNCONFIRMED
    if "nonce too low" in message or "nonce too high" in message:
        return ErrorKind.NONCE
    if "nonce" in message and ("used" in message or "expired" in message):
        return ErrorKind.NONCE
    if "underpriced" in message or "fee too low" in message or "less than block base fee" in message:
        return ErrorKind.UNDERPRICED
    if method == "eth_estimateGas":
        return ErrorKind.GAS_ESTIMATION
    if code == 3 or "execution reverted" in message or "gas required exceeds" in message:
        return ErrorKind.GAS_ESTIMATION
    if "intrinsic gas too low" in message:
        return ErrorKind.GAS_ESTIMATION
    if code == -32005 or "rate limit" in message or "too many requests" in message:
        # Per-IP limits on the RPC endpoint; a fresh proxy usually clears them.
        return ErrorKind.CONNECTION
    if "timeout" in message or "timed out" in message:
        return ErrorKind.CONNECTION
    return ErrorKind.UNCLASSIFIED


def classify(exc: BaseException) -> ErrorKind:
    """Return the ErrorKind for an exception."""
    if isinstance(exc, ChainError):
        return exc.kind
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.CONNECTION
    return ErrorKind.UNCLASSIFIED


def short_reason(kind: ErrorKind, message: str = "") -> str:
    """Short, stable reason string for logs and Failure values."""
    reason = _REASONS.get(kind)
    if reason is not None:
        return reason
    if ":" in message:
        return message.split(":", 1)[0].strip()
    return message or "Unknown error"
