"""
Static Price Source - Prices from a local table.

Used for offline replays and tests. The table maps
price_feed_id -> ISO date (YYYY-MM-DD) -> USD price.
"""

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional, Union

from core.exceptions import InvalidConfigError
from pricing.providers.base import PriceSource


class StaticPriceSource(PriceSource):
    """Serves prices from an in-memory table."""

    def __init__(self, prices: Optional[Dict[str, Dict[str, Union[str, float, Decimal]]]] = None):
        self._prices: Dict[str, Dict[str, Decimal]] = {}
        self.request_count = 0
        for feed, days in (prices or {}).items():
            for day, price in days.items():
                self.set_price(feed, date.fromisoformat(day), Decimal(str(price)))

    @property
    def name(self) -> str:
        return "static"

    def set_price(self, price_feed_id: str, day: date, price: Decimal) -> None:
        self._prices.setdefault(price_feed_id, {})[day.isoformat()] = price

    async def fetch_usd_price(self, price_feed_id: str, day: date) -> Optional[Decimal]:
        self.request_count += 1
        return self._prices.get(price_feed_id, {}).get(day.isoformat())

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "StaticPriceSource":
        try:
            with open(path, "r", encoding="utf-8") as f:
                return cls(json.load(f))
        except (OSError, ValueError) as e:
            raise InvalidConfigError("prices_file", str(path), f"unreadable: {e}")
