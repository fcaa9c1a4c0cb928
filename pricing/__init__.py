"""
Pricing Package - Historical USD valuation of token balances.

Quick Start:
    from pricing import (
        AssetRegistry,
        CoinGeckoPriceSource,
        PriceCache,
        PriceOracle,
    )

    oracle = PriceOracle(
        source=CoinGeckoPriceSource(api_key=os.getenv("COINGECKO_API_KEY")),
        cache=PriceCache(),
        registry=AssetRegistry.from_file("assets.json"),
    )
    valuation = await oracle.value_position(asset_id, raw_balance, block_ts_ms)
"""

from pricing.cache import PriceCache, day_bucket
from pricing.models import AssetConfig, AssetRegistry, Valuation
from pricing.oracle import PriceOracle
from pricing.providers import CoinGeckoPriceSource, PriceSource, StaticPriceSource
from pricing.valuation import value_usd

__all__ = [
    "AssetConfig",
    "AssetRegistry",
    "CoinGeckoPriceSource",
    "PriceCache",
    "PriceOracle",
    "PriceSource",
    "StaticPriceSource",
    "Valuation",
    "day_bucket",
    "value_usd",
]
