"""Price source implementations."""

from pricing.providers.base import PriceSource
from pricing.providers.coingecko import CoinGeckoPriceSource
from pricing.providers.static import StaticPriceSource

__all__ = [
    "PriceSource",
    "CoinGeckoPriceSource",
    "StaticPriceSource",
]
