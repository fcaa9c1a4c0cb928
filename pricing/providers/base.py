"""
Base Price Source - Abstract interface for historical USD price providers.

A source answers one question: the USD price of a feed on a UTC day.
It raises PricingError subclasses on transport problems and returns
None when the provider has no market data for that day. Retry,
spacing and caching live in the PriceOracle.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional


class PriceSource(ABC):
    """Abstract historical price provider."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this source."""
        pass

    @abstractmethod
    async def fetch_usd_price(self, price_feed_id: str, day: date) -> Optional[Decimal]:
        """
        Fetch the USD price of price_feed_id on day.

        Returns:
            Price, or None if the provider has no data for that day

        Raises:
            PriceFetchError: Network/HTTP failure
            PriceRateLimitError: Provider throttled the request
            PriceParseError: Unreadable response body
        """
        pass

    async def close(self) -> None:
        """Close resources."""
        return None

    async def __aenter__(self) -> "PriceSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name})>"
