"""
Gas Price Oracle.

price = network gas price * multiplier * retry_increase ** retry_count,
clamped to [min_gwei, max_gwei].  Pricing never blocks a transaction: when
the fee estimate cannot be fetched the oracle falls back to the minimum, and
the retry path escalates from there.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from eth_utils import from_wei, to_wei

from ..config import GasSettings
from .errors import ChainError, ErrorKind, classify
from .rpc import RpcClient

logger = logging.getLogger(__name__)

MAX_PROXY_RETRIES = 3


def gwei_to_wei(gwei: float) -> int:
    return int(to_wei(Decimal(str(gwei)), "gwei"))


def format_gwei(wei: int) -> str:
    return f"{from_wei(wei, 'gwei'):f}"


class GasOracle:
    def __init__(
        self,
        rpc: RpcClient,
        settings: Optional[GasSettings] = None,
        rotate: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        self.rpc = rpc
        self.settings = settings or GasSettings()
        self._rotate = rotate or rpc.rotate_proxy

    def bounds(self) -> tuple[int, int]:
        return gwei_to_wei(self.settings.min_gwei), gwei_to_wei(self.settings.max_gwei)

    def clamp(self, wei: int) -> int:
        low, high = self.bounds()
        if wei < low:
            logger.warning("Gas price below minimum, using: %s gwei", format_gwei(low))
            return low
        if wei > high:
            logger.warning("Gas price above maximum, using: %s gwei", format_gwei(high))
            return high
        return wei

    def multiplier(self, retry_count: int = 0) -> Decimal:
        multiplier = Decimal(str(self.settings.multiplier))
        if retry_count > 0:
            multiplier *= Decimal(str(self.settings.retry_increase)) ** retry_count
        return multiplier

    def adjust(self, network_price: int, retry_count: int = 0) -> int:
        """Apply multiplier, escalation and bounds to a network gas price."""
        adjusted = int(Decimal(network_price) * self.multiplier(retry_count))
        return self.clamp(adjusted)

    async def price(self, retry_count: int = 0, _proxy_retries: int = 0) -> int:
        """
        Gas price in wei for an attempt.

        Args:
            retry_count: Escalation step; 0 for the first attempt

        Returns:
            Gas price in wei, always within the configured bounds
        """
        try:
            network_price = await self.rpc.get_gas_price()
        except (ChainError, ValueError) as exc:
            logger.warning("Error getting gas price: %s", exc)
            if (
                classify(exc) is ErrorKind.CONNECTION
                and self.rpc.pool.enabled
                and _proxy_retries < MAX_PROXY_RETRIES
            ):
                logger.warning("Proxy error detected, trying to change proxy...")
                await self._rotate()
                return await self.price(retry_count, _proxy_retries + 1)

            fallback = self.bounds()[0]
            logger.warning("Using fallback gas price: %s gwei", format_gwei(fallback))
            return fallback

        multiplier = self.multiplier(retry_count)
        if retry_count > 0:
            logger.info("Applying retry multiplier for attempt %d (total: %.2fx)", retry_count, multiplier)
        result = self.adjust(network_price, retry_count)
        logger.info(
            "Gas price: %s gwei, using: %s gwei (%.2fx)",
            format_gwei(network_price),
            format_gwei(result),
            multiplier,
        )
        return result
