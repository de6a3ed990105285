"""Tests for proxy parsing, loading and pool rotation."""

from __future__ import annotations

import base64
import random
import threading
from collections import Counter
from pathlib import Path

import httpx
import pytest

from somnus.pneuma.proxy import ProxyEntry, ProxyPool, load_proxies, parse_proxy


class TestParseProxy:
    def test_host_port(self) -> None:
        entry = parse_proxy("1.2.3.4:8080")
        assert entry == ProxyEntry("1.2.3.4", 8080, "http")
        assert not entry.has_auth

    def test_credentials(self) -> None:
        entry = parse_proxy("user:pa:ss@proxy.example:3128")
        assert entry.username == "user"
        assert entry.password == "pa:ss"
        assert entry.host == "proxy.example"
        assert entry.port == 3128

    def test_scheme_prefix_sets_protocol(self) -> None:
        assert parse_proxy("socks5://h:1080").protocol == "socks5"
        assert parse_proxy("socks5h://h:1080").protocol == "socks5"
        assert parse_proxy("https://h:443", default_protocol="socks5").protocol == "http"

    def test_default_protocol(self) -> None:
        assert parse_proxy("h:1080", default_protocol="socks5").protocol == "socks5"

    @pytest.mark.parametrize(
        "line",
        ["", "   ", "hostonly", "h:notaport", "h:0", "h:70000", "ftp://h:21", "user@h:80"],
    )
    def test_invalid(self, line: str) -> None:
        with pytest.raises(ValueError):
            parse_proxy(line)

    def test_str_hides_credentials(self) -> None:
        entry = parse_proxy("user:secret@h:80")
        assert str(entry) == "h:80"
        assert "secret" not in entry.url


class TestLoadProxies:
    def test_skips_comments_and_invalid_lines(self, tmp_path: Path) -> None:
        path = tmp_path / "proxy.txt"
        path.write_text("# list\n1.1.1.1:80\n\nbad line\nu:p@2.2.2.2:81\n", encoding="utf-8")
        entries = load_proxies(path)
        assert [str(e) for e in entries] == ["1.1.1.1:80", "2.2.2.2:81"]

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_proxies(tmp_path / "nope.txt") == []


class TestProxyPool:
    def _pool(self, **kwargs) -> ProxyPool:
        entries = [ProxyEntry(f"10.0.0.{n}", 8000 + n) for n in range(1, 4)]
        return ProxyPool(entries, enabled=True, **kwargs)

    def test_round_robin_cycles(self) -> None:
        pool = self._pool()
        picks = [str(pool.select_next()) for _ in range(4)]
        assert picks == ["10.0.0.1:8001", "10.0.0.2:8002", "10.0.0.3:8003", "10.0.0.1:8001"]

    def test_concurrent_selection_visits_each_entry_equally(self) -> None:
        pool = self._pool()
        rounds = 200
        threads = 8
        calls_per_thread = pool.size * rounds // threads
        picks: list[str] = []
        picks_lock = threading.Lock()
        start = threading.Barrier(threads)

        def worker() -> None:
            start.wait()
            local = [str(pool.select_next()) for _ in range(calls_per_thread)]
            with picks_lock:
                picks.extend(local)

        workers = [threading.Thread(target=worker) for _ in range(threads)]
        for thread in workers:
            thread.start()
        for thread in workers:
            thread.join()

        assert len(picks) == pool.size * rounds
        assert Counter(picks) == {str(entry): rounds for entry in pool.entries}

    def test_rotate_advances(self) -> None:
        pool = self._pool()
        pool.select_next()
        assert str(pool.rotate()) == "10.0.0.2:8002"
        assert str(pool.current) == "10.0.0.2:8002"

    def test_rotate_keeps_current_when_rotation_disabled(self) -> None:
        pool = self._pool(rotation_enabled=False)
        first = pool.select_next()
        assert pool.rotate() == first

    def test_select_random_stays_in_pool(self) -> None:
        pool = self._pool(rng=random.Random(3))
        for _ in range(10):
            assert pool.select_random() in pool.entries

    def test_empty_pool_disables_proxying(self) -> None:
        pool = ProxyPool([], enabled=True)
        assert not pool.enabled
        assert pool.select_next() is None
        assert pool.rotate() is None
        assert pool.current_agent() is None
        assert pool.current_headers() == {}

    def test_disabled_pool_returns_nothing(self) -> None:
        pool = ProxyPool([ProxyEntry("h", 1)], enabled=False)
        assert pool.select_next() is None
        assert pool.current is None
        assert pool.describe() == "disabled"

    def test_basic_auth_header(self) -> None:
        pool = ProxyPool([ProxyEntry("h", 1, username="alice", password="s3cret")], enabled=True)
        pool.select_next()
        header = pool.current_headers()["Proxy-Authorization"]
        assert header == "Basic " + base64.b64encode(b"alice:s3cret").decode("ascii")

    def test_no_header_without_credentials(self) -> None:
        pool = ProxyPool([ProxyEntry("h", 1)], enabled=True)
        pool.select_next()
        assert pool.current_headers() == {}

    def test_http_agent_carries_auth_header(self) -> None:
        pool = ProxyPool([ProxyEntry("h", 3128, username="a", password="b")], enabled=True)
        pool.select_next()
        agent = pool.current_agent()
        assert isinstance(agent, httpx.Proxy)
        assert agent.url == httpx.URL("http://h:3128")
        assert "Proxy-Authorization" in agent.headers

    def test_socks_agent(self) -> None:
        pool = ProxyPool([ProxyEntry("h", 1080, protocol="socks5")], enabled=True, protocol="socks5")
        pool.select_next()
        agent = pool.current_agent()
        assert agent is not None
        assert agent.url.scheme == "socks5"
