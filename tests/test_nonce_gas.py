"""Tests for the nonce sequencer and the gas price oracle."""

from __future__ import annotations

import asyncio

import httpx

from somnus.config import GasSettings
from somnus.pneuma.gas import GasOracle, gwei_to_wei
from somnus.pneuma.nonce import NonceSequencer
from somnus.pneuma.proxy import ProxyEntry, ProxyPool
from somnus.pneuma.rpc import RpcClient
from somnus.sigil.eth import get_account
from somnus.spec.models import WalletSession

from conftest import PRIVATE_KEY, RPC_URL, FakeNode


def _rpc(node: FakeNode, pool: ProxyPool | None = None) -> RpcClient:
    return RpcClient(RPC_URL, 50312, pool=pool, client_factory=node.client_factory)


def _session() -> WalletSession:
    return WalletSession(account=get_account(PRIVATE_KEY), index=1)


class TestNonceSequencer:
    def test_queries_once_then_tracks(self, node: FakeNode) -> None:
        async def scenario() -> list[int]:
            rpc = _rpc(node)
            nonces = NonceSequencer(rpc)
            session = _session()
            first = await nonces.next_nonce(session)
            nonces.increment(session)
            second = await nonces.next_nonce(session)
            await rpc.aclose()
            return [first, second]

        assert asyncio.run(scenario()) == [7, 8]
        assert node.count("eth_getTransactionCount") == 1
        assert node.calls[0][1][1] == "pending"

    def test_reset_requeries(self, node: FakeNode) -> None:
        async def scenario() -> int:
            rpc = _rpc(node)
            nonces = NonceSequencer(rpc)
            session = _session()
            await nonces.next_nonce(session)
            nonces.reset(session)
            node.nonce = 11
            value = await nonces.next_nonce(session)
            await rpc.aclose()
            return value

        assert asyncio.run(scenario()) == 11
        assert node.count("eth_getTransactionCount") == 2

    def test_increment_before_init_is_noop(self) -> None:
        session = _session()
        NonceSequencer(RpcClient(RPC_URL, 50312)).increment(session)
        assert session.nonce is None


class TestGasOracle:
    def test_multiplier_and_escalation(self, node: FakeNode) -> None:
        async def scenario() -> list[int]:
            rpc = _rpc(node)
            oracle = GasOracle(rpc, GasSettings())
            prices = [await oracle.price(0), await oracle.price(1)]
            await rpc.aclose()
            return prices

        first, second = asyncio.run(scenario())
        assert first == 1_200_000_000
        assert second == 1_560_000_000

    def test_clamped_to_maximum(self, node: FakeNode) -> None:
        node.gas_price = gwei_to_wei(500)

        async def scenario() -> int:
            rpc = _rpc(node)
            price = await GasOracle(rpc, GasSettings(max_gwei=200)).price()
            await rpc.aclose()
            return price

        assert asyncio.run(scenario()) == gwei_to_wei(200)

    def test_clamped_to_minimum(self, node: FakeNode) -> None:
        node.gas_price = 1

        async def scenario() -> int:
            rpc = _rpc(node)
            price = await GasOracle(rpc, GasSettings()).price()
            await rpc.aclose()
            return price

        assert asyncio.run(scenario()) == gwei_to_wei(0.0001)

    def test_failure_falls_back_to_minimum(self, node: FakeNode) -> None:
        node.fail("eth_gasPrice", {"code": -32000, "message": "internal"})

        async def scenario() -> int:
            rpc = _rpc(node)
            price = await GasOracle(rpc, GasSettings()).price()
            await rpc.aclose()
            return price

        assert asyncio.run(scenario()) == gwei_to_wei(0.0001)

    def test_connection_error_rotates_proxy(self, node: FakeNode) -> None:
        pool = ProxyPool([ProxyEntry("a", 1), ProxyEntry("b", 2)], enabled=True)
        pool.select_next()
        node.fail("eth_gasPrice", httpx.ConnectError("proxy refused"))

        async def scenario() -> int:
            rpc = _rpc(node, pool)
            price = await GasOracle(rpc, GasSettings()).price()
            await rpc.aclose()
            return price

        assert asyncio.run(scenario()) == 1_200_000_000
        assert str(pool.current) == "b:2"
        assert [p.url.host for p in node.proxies] == ["a", "b"]

    def test_proxy_retries_are_bounded(self, node: FakeNode) -> None:
        pool = ProxyPool([ProxyEntry("a", 1), ProxyEntry("b", 2)], enabled=True)
        pool.select_next()
        node.fail("eth_gasPrice", *[httpx.ConnectError("down") for _ in range(10)])

        async def scenario() -> int:
            rpc = _rpc(node, pool)
            price = await GasOracle(rpc, GasSettings()).price()
            await rpc.aclose()
            return price

        assert asyncio.run(scenario()) == gwei_to_wei(0.0001)
        assert node.count("eth_gasPrice") == 4
