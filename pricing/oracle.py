"""
Price Oracle - Historical USD valuation.

============================================================
RESPONSIBILITY
============================================================
Values raw token amounts in USD at a block timestamp.

- Day-bucketed cache in front of the external source
- Rate-limited, backoff-guarded source calls
- Never raises on price problems: a missing or unreachable
  price values the position at zero and is logged

============================================================
ZERO-VALUE POLICY
============================================================
- Source has no market data for the day -> 0, cached for the day
- Transport failure after retries -> 0, NOT cached (next lookup
  for that day tries again)
- Asset not in the registry -> 0, warned once per asset

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Set

from core.backoff import BackoffPolicy
from core.clock import ms_to_date
from core.exceptions import (
    PriceFetchError,
    PriceRateLimitError,
    PricingError,
)
from core.rate_limiter import RateLimiter
from pricing.cache import PriceCache, day_bucket
from pricing.models import AssetRegistry, Valuation
from pricing.providers.base import PriceSource
from pricing.valuation import value_usd


logger = logging.getLogger(__name__)


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, PriceFetchError) and error.is_client_error:
        return False
    return True


class PriceOracle:
    """Cached, rate-limited historical price lookup and valuation."""

    def __init__(
        self,
        source: PriceSource,
        cache: PriceCache,
        registry: AssetRegistry,
        backoff: Optional[BackoffPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._source = source
        self._cache = cache
        self._registry = registry
        self._backoff = backoff or BackoffPolicy(max_retries=3)
        self._rate_limiter = rate_limiter or RateLimiter(0.0)

        self._unknown_assets: Set[str] = set()
        self._fetch_failures = 0
        self._missing_data = 0

    @property
    def cache(self) -> PriceCache:
        return self._cache

    @property
    def registry(self) -> AssetRegistry:
        return self._registry

    async def get_usd_price(self, price_feed_id: str, timestamp_ms: int) -> Decimal:
        """
        USD price of price_feed_id on the UTC day containing timestamp_ms.

        Returns:
            The price, or Decimal(0) if it cannot be determined
        """
        bucket = day_bucket(timestamp_ms)
        cached = self._cache.get(price_feed_id, bucket)
        if cached is not None:
            return cached

        day = ms_to_date(timestamp_ms)

        async def _fetch() -> Optional[Decimal]:
            await self._rate_limiter.acquire()
            return await self._source.fetch_usd_price(price_feed_id, day)

        try:
            price = await self._backoff.call(
                _fetch,
                retry_on=(PriceFetchError, PriceRateLimitError),
                should_retry=_is_retryable,
                label=f"[{self._source.name}] price {price_feed_id}@{day.isoformat()}",
            )
        except PricingError as e:
            self._fetch_failures += 1
            logger.error(
                f"[{self._source.name}] Price lookup failed for "
                f"{price_feed_id} on {day.isoformat()}, valuing at 0: {e}"
            )
            return Decimal(0)

        if price is None:
            self._missing_data += 1
            logger.error(
                f"[{self._source.name}] No market data for "
                f"{price_feed_id} on {day.isoformat()}, valuing at 0"
            )
            price = Decimal(0)

        self._cache.put(price_feed_id, bucket, price)
        return price

    async def value_position(
        self,
        asset_id: str,
        raw_amount: int,
        timestamp_ms: int,
    ) -> Valuation:
        """
        Price and USD value of raw_amount of asset_id at timestamp_ms.

        Unknown assets and assets without a price feed value at zero.
        """
        asset = self._registry.get(asset_id)
        if asset is None:
            if asset_id not in self._unknown_assets:
                self._unknown_assets.add(asset_id)
                logger.warning(f"Asset {asset_id} is not configured, valuing at 0")
            return Valuation.zero()

        if not asset.price_feed_id:
            return Valuation.zero(decimals=asset.decimals)

        price = await self.get_usd_price(asset.price_feed_id, timestamp_ms)
        return Valuation(
            token_price=price,
            token_decimals=asset.decimals,
            value_usd=value_usd(raw_amount, asset.decimals, price),
            price_feed_id=asset.price_feed_id,
        )

    def prime(self, price_feed_id: str, timestamp_ms: int, price: Decimal) -> None:
        """Seed the cache for the day containing timestamp_ms."""
        self._cache.put(price_feed_id, day_bucket(timestamp_ms), price)

    def get_stats(self) -> Dict[str, Any]:
        stats = self._cache.get_stats()
        stats.update({
            "fetch_failures": self._fetch_failures,
            "missing_data": self._missing_data,
            "unknown_assets": len(self._unknown_assets),
        })
        return stats

    async def close(self) -> None:
        await self._source.close()
