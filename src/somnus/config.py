"""
Configuration resolution.

Settings are built once at startup: built-in defaults, deep-merged with an
optional JSON config file, then network overrides from the environment.
Callers read values through typed accessors or the derived settings
bundles below; nothing downstream inspects raw dicts.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .pneuma.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_RPC_URL = "https://dream-rpc.somnia.network"
DEFAULT_CHAIN_ID = 50312
DEFAULT_FAUCET_URL = "https://testnet.somnia.network/api/faucet"

DEFAULTS: dict[str, Any] = {
    "network": {
        "rpc_url": DEFAULT_RPC_URL,
        "chain_id": DEFAULT_CHAIN_ID,
        "currency_symbol": "STT",
        "request_timeout_seconds": 30,
        "receipt_timeout_seconds": 120,
        "receipt_poll_seconds": 2,
    },
    "gas": {
        "price_multiplier": 1.2,
        "retry_increase": 1.3,
        "min_gwei": 0.0001,
        "max_gwei": 200,
        "default_gas_limit": 150_000,
        "estimate_buffer": 1.2,
    },
    "retry": {
        "max_attempts": 3,
        "delay_seconds": 2,
        "backoff": "linear",
        "max_delay_seconds": 60,
    },
    "proxy": {
        "enabled": False,
        "type": "http",
        "rotation": {"enabled": True},
    },
    "operations": {
        "faucet": {
            "enabled": True,
            "url": DEFAULT_FAUCET_URL,
            "origin": "https://testnet.somnia.network",
            "timeout_seconds": 30,
            "retry": {"max_attempts": 3, "delay_seconds": 5, "backoff": "exponential"},
        },
        "transfer": {
            "enabled": True,
            "use_percentage": True,
            "percentage": 90,
            "amount": {"min": 0.0001, "max": 0.001, "decimals": 5},
            "count": {"min": 1, "max": 3},
            "repeat_times": 1,
            "recipient": None,
            "token": None,
        },
    },
    "general": {
        "delay": {"min_seconds": 3, "max_seconds": 10},
        "wallet_delay": {"min_seconds": 5, "max_seconds": 15},
        "log_level": "info",
    },
}


def to_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or str(value).strip() == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def to_float(value: Any, default: float) -> float:
    try:
        if value is None or str(value).strip() == "":
            return default
        return float(str(value).strip())
    except (TypeError, ValueError):
        return default


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Settings:
    """Resolved configuration with typed accessors over dotted paths."""

    def __init__(self, data: Optional[dict[str, Any]] = None) -> None:
        self._data = _deep_merge(DEFAULTS, data or {})

    @classmethod
    def load(cls, path: Optional[Path] = None, *, use_env: bool = True) -> "Settings":
        """
        Load settings from a JSON file (if it exists) on top of defaults.

        Args:
            path: Config file path (default: ./config.json)
            use_env: Apply SOMNUS_RPC_URL / SOMNUS_CHAIN_ID overrides

        Raises:
            ConfigError: If the file exists but is not a JSON object
        """
        path = path or Path("config.json")
        payload: dict[str, Any] = {}
        if path.exists():
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
            if not isinstance(payload, dict):
                raise ConfigError(f"{path} must contain a JSON object")
            logger.info("Loaded configuration from %s", path)
        else:
            logger.info("No configuration file at %s, using defaults", path)

        settings = cls(payload)
        if use_env:
            rpc_url = os.environ.get("SOMNUS_RPC_URL")
            if rpc_url:
                settings.set("network.rpc_url", rpc_url)
            chain_id = os.environ.get("SOMNUS_CHAIN_ID")
            if chain_id:
                settings.set("network.chain_id", to_int(chain_id, DEFAULT_CHAIN_ID))
        return settings

    def get(self, path: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, path: str, value: Any) -> "Settings":
        parts = path.split(".")
        node = self._data
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value
        return self

    def number(self, path: str, default: float = 0.0) -> float:
        return to_float(self.get(path), default)

    def integer(self, path: str, default: int = 0) -> int:
        return to_int(self.get(path), default)

    def boolean(self, path: str, default: bool = False) -> bool:
        return to_bool(self.get(path), default)

    def string(self, path: str, default: str = "") -> str:
        value = self.get(path)
        return default if value is None else str(value)

    def range(self, path: str, default_min: float = 1, default_max: float = 10) -> tuple[float, float]:
        low = self.number(f"{path}.min", default_min)
        high = self.number(f"{path}.max", default_max)
        if low > high:
            logger.warning("Invalid range for %s: min (%s) > max (%s), using min", path, low, high)
            high = low
        return low, high

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    # -- derived bundles --

    def network(self) -> "NetworkSettings":
        return NetworkSettings(
            rpc_url=self.string("network.rpc_url", DEFAULT_RPC_URL),
            chain_id=self.integer("network.chain_id", DEFAULT_CHAIN_ID),
            currency_symbol=self.string("network.currency_symbol", "STT"),
            request_timeout=max(1.0, self.number("network.request_timeout_seconds", 30)),
            receipt_timeout=max(1.0, self.number("network.receipt_timeout_seconds", 120)),
            receipt_poll_interval=max(0.05, self.number("network.receipt_poll_seconds", 2)),
        )

    def gas(self) -> "GasSettings":
        min_gwei = max(0.0, self.number("gas.min_gwei", 0.0001))
        max_gwei = max(min_gwei, self.number("gas.max_gwei", 200))
        return GasSettings(
            multiplier=max(1.0, self.number("gas.price_multiplier", 1.2)),
            retry_increase=max(1.0, self.number("gas.retry_increase", 1.3)),
            min_gwei=min_gwei,
            max_gwei=max_gwei,
            default_gas_limit=max(21_000, self.integer("gas.default_gas_limit", 150_000)),
            estimate_buffer=max(1.0, self.number("gas.estimate_buffer", 1.2)),
        )

    def retry(self, section: str = "retry") -> "RetrySettings":
        return RetrySettings(
            max_attempts=max(1, self.integer(f"{section}.max_attempts", 3)),
            delay_seconds=max(0.0, self.number(f"{section}.delay_seconds", 2)),
            backoff=self.string(f"{section}.backoff", "linear").lower(),
            max_delay_seconds=max(0.0, self.number(f"{section}.max_delay_seconds", 60)),
        )

    def proxy(self) -> "ProxySettings":
        kind = self.string("proxy.type", "http").lower()
        if kind not in {"http", "socks5"}:
            logger.warning("Unknown proxy type %r, falling back to http", kind)
            kind = "http"
        return ProxySettings(
            enabled=self.boolean("proxy.enabled", False),
            protocol=kind,
            rotation_enabled=self.boolean("proxy.rotation.enabled", True),
        )

    def faucet(self) -> "FaucetSettings":
        return FaucetSettings(
            enabled=self.boolean("operations.faucet.enabled", True),
            url=self.string("operations.faucet.url", DEFAULT_FAUCET_URL),
            origin=self.string("operations.faucet.origin", "https://testnet.somnia.network"),
            timeout=max(1.0, self.number("operations.faucet.timeout_seconds", 30)),
            retry=self.retry("operations.faucet.retry"),
        )

    def transfer(self) -> "TransferSettings":
        return TransferSettings(
            enabled=self.boolean("operations.transfer.enabled", True),
            use_percentage=self.boolean("operations.transfer.use_percentage", True),
            percentage=min(100.0, max(0.0, self.number("operations.transfer.percentage", 90))),
            amount_range=self.range("operations.transfer.amount", 0.0001, 0.001),
            decimals=self.integer("operations.transfer.amount.decimals", 5),
            count_range=tuple(int(v) for v in self.range("operations.transfer.count", 1, 3)),
            repeat_times=max(1, self.integer("operations.transfer.repeat_times", 1)),
            recipient=self.get("operations.transfer.recipient") or None,
            token=self.get("operations.transfer.token") or None,
        )

    def delay_range(self, key: str = "delay") -> tuple[float, float]:
        return (
            self.number(f"general.{key}.min_seconds", 3),
            max(
                self.number(f"general.{key}.min_seconds", 3),
                self.number(f"general.{key}.max_seconds", 10),
            ),
        )


@dataclass(frozen=True)
class NetworkSettings:
    rpc_url: str
    chain_id: int
    currency_symbol: str = "STT"
    request_timeout: float = 30.0
    receipt_timeout: float = 120.0
    receipt_poll_interval: float = 2.0


@dataclass(frozen=True)
class GasSettings:
    multiplier: float = 1.2
    retry_increase: float = 1.3
    min_gwei: float = 0.0001
    max_gwei: float = 200.0
    default_gas_limit: int = 150_000
    estimate_buffer: float = 1.2


@dataclass(frozen=True)
class RetrySettings:
    max_attempts: int = 3
    delay_seconds: float = 2.0
    backoff: str = "linear"
    max_delay_seconds: float = 60.0


@dataclass(frozen=True)
class ProxySettings:
    enabled: bool = False
    protocol: str = "http"
    rotation_enabled: bool = True


@dataclass(frozen=True)
class FaucetSettings:
    enabled: bool
    url: str
    origin: str
    timeout: float
    retry: RetrySettings


@dataclass(frozen=True)
class TransferSettings:
    enabled: bool
    use_percentage: bool
    percentage: float
    amount_range: tuple[float, float]
    decimals: int
    count_range: tuple[int, ...]
    repeat_times: int
    recipient: Optional[str] = None
    token: Optional[str] = None
