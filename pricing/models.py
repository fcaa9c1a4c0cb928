"""
Pricing Models - Asset metadata and valuation results.
"""

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from core.exceptions import InvalidConfigError


@dataclass(frozen=True)
class AssetConfig:
    """
    Pricing metadata of one tracked asset.

    price_feed_id is the external price source identifier (a CoinGecko
    coin id). Assets without a feed are tracked but valued at zero.
    """
    asset_id: str
    decimals: int
    price_feed_id: Optional[str] = None
    symbol: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "decimals": self.decimals,
            "price_feed_id": self.price_feed_id,
            "symbol": self.symbol,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssetConfig":
        decimals = int(data.get("decimals", 0))
        if decimals < 0:
            raise InvalidConfigError("decimals", decimals, "must be non-negative")
        return cls(
            asset_id=data["asset_id"],
            decimals=decimals,
            price_feed_id=data.get("price_feed_id"),
            symbol=data.get("symbol"),
        )


class AssetRegistry:
    """Lookup of AssetConfig by asset id."""

    def __init__(self, assets: Iterable[AssetConfig] = ()) -> None:
        self._assets: dict[str, AssetConfig] = {}
        for asset in assets:
            self.register(asset)

    def register(self, asset: AssetConfig) -> None:
        self._assets[asset.asset_id] = asset

    def get(self, asset_id: str) -> Optional[AssetConfig]:
        return self._assets.get(asset_id)

    def __contains__(self, asset_id: object) -> bool:
        return asset_id in self._assets

    def __len__(self) -> int:
        return len(self._assets)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "AssetRegistry":
        """
        Load assets from a JSON file.

        The file holds either a list of asset objects or a mapping of
        asset_id to asset object (asset_id may then be omitted).

        Raises:
            InvalidConfigError: If the file cannot be read or parsed
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise InvalidConfigError("assets_file", str(path), f"unreadable: {e}")

        if isinstance(raw, dict):
            entries = [{"asset_id": key, **value} for key, value in raw.items()]
        elif isinstance(raw, list):
            entries = raw
        else:
            raise InvalidConfigError("assets_file", str(path), "expected list or object")

        try:
            return cls(AssetConfig.from_dict(entry) for entry in entries)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidConfigError("assets_file", str(path), f"malformed asset: {e}")


@dataclass(frozen=True)
class Valuation:
    """Price and USD value of a raw amount at a point in time."""
    token_price: Decimal
    token_decimals: int
    value_usd: Decimal
    price_feed_id: Optional[str] = None

    @classmethod
    def zero(cls, decimals: int = 0, price_feed_id: Optional[str] = None) -> "Valuation":
        return cls(
            token_price=Decimal(0),
            token_decimals=decimals,
            value_usd=Decimal(0),
            price_feed_id=price_feed_id,
        )
