"""
Proxy Pool - outbound proxy rotation for RPC and HTTP traffic.

Entries are loaded once at startup.  The pool owns a rotation cursor that is
shared by every wallet session, so cursor moves are serialized with a lock.
An empty entry list disables proxying (direct connections) regardless of
configuration.
"""

from __future__ import annotations

import base64
import logging
import random
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

PROTOCOLS = ("http", "socks5")


@dataclass(frozen=True)
class ProxyEntry:
    host: str
    port: int
    protocol: str = "http"
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def has_auth(self) -> bool:
        return self.username is not None

    @property
    def url(self) -> str:
        """Proxy URL without credentials."""
        return f"{self.protocol}://{self.host}:{self.port}"

    @property
    def auth(self) -> Optional[tuple[str, str]]:
        if not self.has_auth:
            return None
        return self.username or "", self.password or ""

    def __str__(self) -> str:
        # Never render credentials.
        return f"{self.host}:{self.port}"


def parse_proxy(line: str, default_protocol: str = "http") -> ProxyEntry:
    """
    Parse one proxy line.

    Accepted forms (optionally prefixed with http://, https:// or socks5://):
        host:port
        user:pass@host:port

    Raises:
        ValueError: If the line is not a valid proxy entry
    """
    raw = line.strip()
    if not raw:
        raise ValueError("Empty proxy entry")

    protocol = default_protocol
    if "://" in raw:
        scheme, raw = raw.split("://", 1)
        scheme = scheme.lower()
        if scheme in ("http", "https"):
            protocol = "http"
        elif scheme in ("socks5", "socks5h"):
            protocol = "socks5"
        else:
            raise ValueError(f"Unsupported proxy scheme: {scheme}")

    if protocol not in PROTOCOLS:
        raise ValueError(f"Unsupported proxy protocol: {protocol}")

    username = password = None
    if "@" in raw:
        credentials, raw = raw.rsplit("@", 1)
        if ":" not in credentials:
            raise ValueError("Proxy credentials must be user:pass")
        username, password = credentials.split(":", 1)

    host, sep, port_text = raw.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Proxy entry must be host:port, got {raw!r}")
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid proxy port: {port_text!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"Proxy port out of range: {port}")

    return ProxyEntry(
        host=host,
        port=port,
        protocol=protocol,
        username=username,
        password=password,
    )


def load_proxies(path: Path, default_protocol: str = "http") -> list[ProxyEntry]:
    """
    Load proxies from a newline-delimited file.

    Blank lines and ``#`` comments are skipped; invalid lines are logged and
    skipped.  A missing file yields an empty list.
    """
    if not path.exists():
        logger.warning("Proxy file %s not found, continuing without proxies", path)
        return []

    entries: list[ProxyEntry] = []
    for number, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            entries.append(parse_proxy(line, default_protocol))
        except ValueError as exc:
            logger.warning("Skipping proxy on line %d of %s: %s", number, path, exc)

    logger.info("Loaded %d proxies from %s", len(entries), path)
    return entries


class ProxyPool:
    """Round-robin pool of outbound proxies."""

    def __init__(
        self,
        entries: Sequence[ProxyEntry] = (),
        enabled: bool = False,
        protocol: str = "http",
        rotation_enabled: bool = True,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._entries = tuple(entries)
        self._protocol = protocol
        self._rotation_enabled = rotation_enabled
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._index = -1

        self._enabled = enabled
        if enabled and not self._entries:
            logger.warning("Proxy support disabled because no proxies were loaded")
            self._enabled = False

    @classmethod
    def disabled(cls) -> "ProxyPool":
        return cls((), enabled=False)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def protocol(self) -> str:
        return self._protocol

    @property
    def entries(self) -> tuple[ProxyEntry, ...]:
        return self._entries

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def current(self) -> Optional[ProxyEntry]:
        if not self._enabled or self._index < 0:
            return None
        return self._entries[self._index]

    def select_next(self) -> Optional[ProxyEntry]:
        """Advance the round-robin cursor and return the new current entry."""
        if not self._enabled:
            return None
        with self._lock:
            self._index = (self._index + 1) % len(self._entries)
            entry = self._entries[self._index]
        logger.info("Selected proxy: %s", entry)
        return entry

    def select_random(self) -> Optional[ProxyEntry]:
        if not self._enabled:
            return None
        with self._lock:
            self._index = self._rng.randrange(len(self._entries))
            entry = self._entries[self._index]
        logger.info("Selected random proxy: %s", entry)
        return entry

    def rotate(self) -> Optional[ProxyEntry]:
        """
        Move away from a failing proxy.

        Advances the cursor when rotation is enabled; otherwise keeps the
        current entry.  Returns None when proxying is disabled.
        """
        if not self._enabled:
            return None
        if not self._rotation_enabled and self.current is not None:
            logger.info("Proxy rotation disabled, keeping %s", self.current)
            return self.current
        return self.select_next()

    def current_agent(self) -> Optional[httpx.Proxy]:
        """httpx proxy spec for the current entry, or None for direct connections."""
        entry = self.current
        if entry is None:
            return None
        if entry.protocol == "socks5":
            # SOCKS5 authenticates in the handshake, not with a header.
            return httpx.Proxy(url=entry.url, auth=entry.auth)
        return httpx.Proxy(url=entry.url, headers=self.current_headers())

    def current_headers(self) -> dict[str, str]:
        entry = self.current
        if entry is None or not entry.has_auth:
            return {}
        token = base64.b64encode(
            f"{entry.username}:{entry.password}".encode("utf-8")
        ).decode("ascii")
        return {"Proxy-Authorization": f"Basic {token}"}

    def describe(self) -> str:
        if not self._enabled:
            return "disabled"
        current = self.current
        return f"{self.size} proxies ({self._protocol}), current: {current or 'none'}"
