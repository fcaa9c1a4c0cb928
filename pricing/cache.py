"""
Price Cache - Day-bucketed historical prices.

============================================================
RESPONSIBILITY
============================================================
Stores one USD price per (price_feed_id, UTC day).

- Owned by whoever builds the PriceOracle and passed in
- Historical prices never change, so entries do not expire
- Tracks hit/miss statistics

============================================================
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from core.constants import DAY_MS


logger = logging.getLogger(__name__)


def day_bucket(timestamp_ms: int) -> int:
    """Index of the UTC day containing timestamp_ms."""
    return timestamp_ms // DAY_MS


class PriceCache:
    """In-memory cache keyed by (price_feed_id, day bucket)."""

    def __init__(self, max_entries: Optional[int] = None) -> None:
        self._entries: Dict[Tuple[str, int], Decimal] = {}
        self._max_entries = max_entries
        self._hits = 0
        self._misses = 0

    def get(self, price_feed_id: str, bucket: int) -> Optional[Decimal]:
        price = self._entries.get((price_feed_id, bucket))
        if price is None:
            self._misses += 1
        else:
            self._hits += 1
        return price

    def put(self, price_feed_id: str, bucket: int, price: Decimal) -> None:
        if (
            self._max_entries is not None
            and len(self._entries) >= self._max_entries
            and (price_feed_id, bucket) not in self._entries
        ):
            # Oldest insertion goes first
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[(price_feed_id, bucket)] = price

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Clear all cache entries."""
        self._entries.clear()
        logger.info("Price cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self._hits + self._misses
        hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0

        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate_percent": round(hit_rate, 2),
        }
