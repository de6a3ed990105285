"""
Async JSON-RPC client bound to the proxy pool.

Lightweight alternative to web3.py: uses httpx for HTTP.  Every failure
leaving this module is a ChainError tagged with its ErrorKind, so callers
never inspect message text.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable, Optional

import httpx

from .errors import ChainError, ErrorKind, classify_rpc_error
from .proxy import ProxyEntry, ProxyPool

logger = logging.getLogger(__name__)

# (proxy, timeout) -> client.  Tests substitute a MockTransport-backed client.
ClientFactory = Callable[[Optional[httpx.Proxy], float], httpx.AsyncClient]


def _default_client_factory(proxy: Optional[httpx.Proxy], timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        proxy=proxy,
        timeout=timeout,
        headers={"Content-Type": "application/json"},
    )


def to_hex(value: int) -> str:
    return hex(int(value))


def from_hex(value: Any) -> int:
    if isinstance(value, int):
        return value
    if value in (None, "", "0x"):
        return 0
    return int(str(value), 16)


class RpcClient:
    """
    JSON-RPC client for a single endpoint and chain.

    The underlying httpx client is rebuilt whenever the proxy pool rotates;
    wallet state (addresses, nonce cursors) lives elsewhere and is untouched.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        pool: Optional[ProxyPool] = None,
        timeout: float = 30.0,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.pool = pool or ProxyPool.disabled()
        self.timeout = timeout
        self._client_factory = client_factory or _default_client_factory
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._client_factory(self.pool.current_agent(), self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def rebuild(self) -> None:
        """Drop the current HTTP client; the next call binds to the current proxy."""
        await self.aclose()

    async def rotate_proxy(self) -> Optional[ProxyEntry]:
        """
        Rotate to the next proxy and rebuild the HTTP client around it.

        Returns:
            The newly selected proxy, or None when proxying is disabled
        """
        entry = self.pool.rotate()
        if entry is not None:
            await self.rebuild()
            logger.info("Changed proxy to: %s", entry)
        return entry

    async def call(self, method: str, params: list) -> Any:
        """
        Make a JSON-RPC call.

        Args:
            method: RPC method name (e.g., "eth_call")
            params: RPC parameters

        Returns:
            Result field from the RPC response

        Raises:
            ChainError: Tagged with the failure kind
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as exc:
            raise ChainError(f"{method} timed out: {exc}", ErrorKind.CONNECTION) from exc
        except httpx.TransportError as exc:
            raise ChainError(f"{method} connection failed: {exc}", ErrorKind.CONNECTION) from exc

        status = response.status_code
        if status == 407 or status == 429 or status >= 500:
            raise ChainError(
                f"{method} failed with HTTP {status}",
                ErrorKind.CONNECTION,
                code=status,
            )
        if status >= 400:
            raise ChainError(f"{method} failed with HTTP {status}", code=status)

        try:
            data = response.json()
        except ValueError as exc:
            # Proxies tend to answer with HTML error pages.
            raise ChainError(f"{method} returned a non-JSON body", ErrorKind.CONNECTION) from exc

        if not isinstance(data, dict):
            raise ChainError(f"{method} returned an unexpected payload: {data!r}")

        if data.get("error"):
            error = data["error"]
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise ChainError(
                f"RPC error: {error.get('message', error)}",
                classify_rpc_error(method, error),
                code=error.get("code"),
                data=error.get("data"),
            )

        return data.get("result")

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return from_hex(await self.call("eth_getTransactionCount", [address, block]))

    async def get_gas_price(self) -> int:
        return from_hex(await self.call("eth_gasPrice", []))

    async def get_balance(self, address: str) -> int:
        return from_hex(await self.call("eth_getBalance", [address, "latest"]))

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        params: dict[str, Any] = {}
        for key, value in tx.items():
            if value is None:
                continue
            if isinstance(value, bytes):
                params[key] = "0x" + value.hex()
            elif isinstance(value, int) and not isinstance(value, bool):
                params[key] = to_hex(value)
            else:
                params[key] = value
        return from_hex(await self.call("eth_estimateGas", [params]))

    async def eth_call(self, to: str, data: bytes) -> str:
        return await self.call("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.call("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float = 120.0,
        poll_interval: float = 2.0,
    ) -> dict:
        """
        Wait for a transaction receipt.

        Connection-class errors while polling are tolerated until the
        deadline; the transaction is already on the wire.

        Raises:
            ChainError: UNCONFIRMED if no receipt arrives within ``timeout``
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_error: Optional[ChainError] = None
        while True:
            try:
                receipt = await self.get_transaction_receipt(tx_hash)
            except ChainError as exc:
                if exc.kind is not ErrorKind.CONNECTION:
                    raise
                last_error = exc
                logger.debug("Receipt poll for %s failed: %s", tx_hash, exc)
                receipt = None
            if receipt is not None:
                return receipt
            if loop.time() >= deadline:
                break
            await asyncio.sleep(poll_interval)

        detail = f" (last error: {last_error})" if last_error else ""
        raise ChainError(
            f"Transaction {tx_hash} not confirmed within {timeout}s{detail}",
            ErrorKind.UNCONFIRMED,
        )
