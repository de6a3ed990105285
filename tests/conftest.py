"""
Shared fixtures: an in-memory JSON-RPC node and faucet behind httpx.MockTransport.

Nothing here touches the network.  ``FakeNode.client_factory`` is passed
wherever the code accepts a client factory; it records the proxy each
client was built for.
"""

from __future__ import annotations

import json
import random
from typing import Any, Optional, Union

import httpx
import pytest

from somnus.config import Settings
from somnus.pneuma.proxy import ProxyEntry
from somnus.theurgy.runner import Engine

RPC_URL = "http://rpc.test"
FAUCET_URL = "http://faucet.test/api/faucet"

PRIVATE_KEY = "0x" + "01" * 32
OTHER_KEY = "0x" + "02" * 32

Failure = Union[dict, int, Exception]


class FakeNode:
    def __init__(self) -> None:
        self.chain_id = 50312
        self.nonce = 7
        self.gas_price = 10**9
        self.balance = 10**18
        self.gas_estimate = 50_000
        self.call_result = "0x" + "00" * 31 + "12"
        self.receipt_status = 1
        self.confirm = True
        # Accept this many raw transactions but time out before answering.
        self.lose_responses = 0

        self.calls: list[tuple[str, list]] = []
        self.sent: list[str] = []
        self.proxies: list[Optional[httpx.Proxy]] = []
        self.failures: dict[str, list[Failure]] = {}

        self.faucet_responses: list[tuple[int, Any]] = []
        self.faucet_requests: list[httpx.Request] = []

    # -- scripting --

    def fail(self, method: str, *failures: Failure) -> None:
        """Queue failures for ``method``: RPC error dicts, HTTP status codes or exceptions."""
        self.failures.setdefault(method, []).extend(failures)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    # -- transport --

    def client_factory(self, proxy: Optional[httpx.Proxy], timeout: float) -> httpx.AsyncClient:
        self.proxies.append(proxy)
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle), timeout=timeout)

    def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/faucet":
            return self._faucet(request)

        payload = json.loads(request.content)
        method, params = payload["method"], payload["params"]
        self.calls.append((method, params))

        queue = self.failures.get(method)
        if queue:
            failure = queue.pop(0)
            if isinstance(failure, Exception):
                raise failure
            if isinstance(failure, int):
                return httpx.Response(failure, text="upstream error")
            return httpx.Response(
                200, json={"jsonrpc": "2.0", "id": payload["id"], "error": failure}
            )

        if method == "eth_sendRawTransaction" and params[0] in self.sent:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": payload["id"],
                    "error": {"code": -32000, "message": "already known"},
                },
            )

        result = self._result(method, params)
        if method == "eth_sendRawTransaction" and self.lose_responses:
            self.lose_responses -= 1
            raise httpx.ReadTimeout("response lost", request=request)

        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": payload["id"], "result": result},
        )

    def _result(self, method: str, params: list) -> Any:
        if method == "eth_chainId":
            return hex(self.chain_id)
        if method == "eth_getTransactionCount":
            return hex(self.nonce)
        if method == "eth_gasPrice":
            return hex(self.gas_price)
        if method == "eth_getBalance":
            return hex(self.balance)
        if method == "eth_estimateGas":
            return hex(self.gas_estimate)
        if method == "eth_call":
            return self.call_result
        if method == "eth_sendRawTransaction":
            self.sent.append(params[0])
            self.nonce += 1
            return "0x" + f"{len(self.sent):064x}"
        if method == "eth_getTransactionReceipt":
            if not self.confirm:
                return None
            return {
                "transactionHash": params[0],
                "status": hex(self.receipt_status),
                "blockNumber": "0x10",
            }
        raise AssertionError(f"unexpected RPC method {method}")

    def _faucet(self, request: httpx.Request) -> httpx.Response:
        self.faucet_requests.append(request)
        if self.faucet_responses:
            status, body = self.faucet_responses.pop(0)
        else:
            status, body = 200, {"success": True, "message": "Tokens sent", "data": {"status": "pending"}}
        if isinstance(body, Exception):
            raise body
        return httpx.Response(status, json=body)


class Sleeper:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_settings(**overrides: Any) -> Settings:
    data: dict[str, Any] = {
        "network": {
            "rpc_url": RPC_URL,
            "receipt_timeout_seconds": 1,
            "receipt_poll_seconds": 0.05,
        },
        "retry": {"delay_seconds": 0},
        "operations": {
            "faucet": {"url": FAUCET_URL, "retry": {"delay_seconds": 0}},
            "transfer": {"count": {"min": 2, "max": 2}},
        },
        "general": {
            "delay": {"min_seconds": 0, "max_seconds": 0},
            "wallet_delay": {"min_seconds": 0, "max_seconds": 0},
        },
    }
    settings = Settings(data)
    for path, value in overrides.items():
        settings.set(path.replace("__", "."), value)
    return settings


@pytest.fixture()
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture()
def sleeper() -> Sleeper:
    return Sleeper()


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
def proxy_entries() -> list[ProxyEntry]:
    return [
        ProxyEntry("10.0.0.1", 8080, username="alice", password="s3cret"),
        ProxyEntry("10.0.0.2", 8080),
    ]


@pytest.fixture()
def engine(settings: Settings, node: FakeNode, sleeper: Sleeper) -> Engine:
    return Engine.build(
        settings,
        client_factory=node.client_factory,
        sleep=sleeper,
        rng=random.Random(7),
    )
