"""
Orchestrator - Models.

============================================================
RESPONSIBILITY
============================================================
Defines the runtime configuration of the indexer.

- Human-readable window durations ("1h", "2.5d")
- Sink modes (collector API or stdout)
- IndexerConfig with from_env() / validate()

============================================================
"""

import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from dotenv import load_dotenv

from balance_engine.models import ChainArch
from core.constants import (
    DAY_MS,
    HOUR_MS,
    MIN_WINDOW_DURATION_MS,
    MINUTE_MS,
    SECOND_MS,
)


# ============================================================
# DURATIONS
# ============================================================

_DURATION_UNITS = {
    "ms": 1,
    "s": SECOND_MS,
    "m": MINUTE_MS,
    "h": HOUR_MS,
    "d": DAY_MS,
}

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$", re.IGNORECASE)


def parse_duration_ms(text: str) -> int:
    """
    Parse a human duration into milliseconds.

    Examples: "1000ms", "3600s", "45m", "1h", "2.5d".

    Raises:
        ValueError: If the text is not a positive duration
    """
    match = _DURATION_RE.match(text or "")
    if match is None:
        raise ValueError(f"Invalid duration {text!r} (expected e.g. 1h, 2.5d, 45m)")

    value, unit = match.groups()
    duration_ms = int(float(value) * _DURATION_UNITS[unit.lower()])
    if duration_ms <= 0:
        raise ValueError(f"Duration {text!r} must be positive")
    return duration_ms


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    return int(value)


# ============================================================
# SINK MODES
# ============================================================

class SinkMode(Enum):
    """Where formatted records go."""
    API = "api"
    STDOUT = "stdout"


# ============================================================
# INDEXER CONFIGURATION
# ============================================================

@dataclass
class IndexerConfig:
    """Configuration of one indexer process (one protocol instance)."""

    # Protocol identity
    protocol_key: str = ""
    """Snapshot namespace, e.g. "ethereum:erc20:0xabc"."""

    protocol_type: Optional[str] = None
    protocol_name: Optional[str] = None
    contract_address: Optional[str] = None

    # Chain
    chain_arch: ChainArch = ChainArch.EVM
    chain_id: int = 1
    chain_name: str = "ethereum"
    chain_short_name: str = "eth"

    # Windowing
    window_duration: str = "1h"
    """Flush interval as a human duration (minimum 1h)."""

    max_boundaries_per_block: Optional[int] = None
    """Catch-up cap per block; None processes every reached boundary."""

    # Input
    blocks_file: Optional[str] = None
    """JSONL file of normalized blocks."""

    batch_size: int = 100
    """Blocks per batch (one snapshot save per batch)."""

    # Pricing
    assets_file: Optional[str] = None
    coingecko_api_key: Optional[str] = None
    coingecko_base_url: Optional[str] = None
    prices_file: Optional[str] = None
    """Static price table; replaces CoinGecko when set."""

    price_max_retries: int = 3
    price_min_interval_seconds: float = 0.5

    # Delivery
    sink_mode: SinkMode = SinkMode.API
    collector_base_url: Optional[str] = None
    collector_api_key: Optional[str] = None
    max_buffer_size: int = 500
    flush_interval_seconds: float = 10.0
    send_from_timestamp_ms: Optional[int] = None
    delivery_max_retries: int = 10
    delivery_initial_backoff_seconds: float = 1.0

    # Persistence
    database_url: Optional[str] = None
    max_snapshot_failures: int = 3

    # Runtime
    runner_id: str = "local"
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def window_duration_ms(self) -> int:
        return parse_duration_ms(self.window_duration)

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Load configuration from environment variables (and .env)."""
        load_dotenv()
        return cls(
            protocol_key=os.getenv("PROTOCOL_KEY", ""),
            protocol_type=os.getenv("PROTOCOL_TYPE"),
            protocol_name=os.getenv("PROTOCOL_NAME"),
            contract_address=os.getenv("CONTRACT_ADDRESS"),
            chain_arch=ChainArch(os.getenv("CHAIN_ARCH", "evm").lower()),
            chain_id=int(os.getenv("CHAIN_ID", "1")),
            chain_name=os.getenv("CHAIN_NAME", "ethereum"),
            chain_short_name=os.getenv("CHAIN_SHORT_NAME", "eth"),
            window_duration=os.getenv("WINDOW_DURATION", "1h"),
            max_boundaries_per_block=_optional_int(os.getenv("MAX_BOUNDARIES_PER_BLOCK")),
            blocks_file=os.getenv("BLOCKS_FILE"),
            batch_size=int(os.getenv("BATCH_SIZE", "100")),
            assets_file=os.getenv("ASSETS_FILE"),
            coingecko_api_key=os.getenv("COINGECKO_API_KEY"),
            coingecko_base_url=os.getenv("COINGECKO_BASE_URL"),
            prices_file=os.getenv("PRICES_FILE"),
            price_max_retries=int(os.getenv("PRICE_MAX_RETRIES", "3")),
            price_min_interval_seconds=float(os.getenv("PRICE_MIN_INTERVAL_SECONDS", "0.5")),
            sink_mode=SinkMode(os.getenv("SINK_MODE", "api").lower()),
            collector_base_url=os.getenv("COLLECTOR_BASE_URL"),
            collector_api_key=os.getenv("COLLECTOR_API_KEY"),
            max_buffer_size=int(os.getenv("MAX_BUFFER_SIZE", "500")),
            flush_interval_seconds=float(os.getenv("FLUSH_INTERVAL_SECONDS", "10")),
            send_from_timestamp_ms=_optional_int(os.getenv("SEND_FROM_TIMESTAMP_MS")),
            delivery_max_retries=int(os.getenv("DELIVERY_MAX_RETRIES", "10")),
            delivery_initial_backoff_seconds=float(
                os.getenv("DELIVERY_INITIAL_BACKOFF_SECONDS", "1.0")
            ),
            database_url=os.getenv("DATABASE_URL"),
            max_snapshot_failures=int(os.getenv("MAX_SNAPSHOT_FAILURES", "3")),
            runner_id=os.getenv("RUNNER_ID", "local"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.protocol_key:
            errors.append("protocol_key is required")

        try:
            if self.window_duration_ms < MIN_WINDOW_DURATION_MS:
                errors.append(
                    f"window_duration {self.window_duration!r} is below the 1h minimum"
                )
        except ValueError as e:
            errors.append(str(e))

        if self.max_boundaries_per_block is not None and self.max_boundaries_per_block < 1:
            errors.append("max_boundaries_per_block must be at least 1")

        if self.batch_size < 1:
            errors.append("batch_size must be at least 1")

        if not self.assets_file:
            errors.append("assets_file is required")

        if not self.blocks_file:
            errors.append("blocks_file is required")

        if self.sink_mode == SinkMode.API:
            if not self.collector_base_url:
                errors.append("collector_base_url required for api sink")
            if not self.collector_api_key:
                errors.append("collector_api_key required for api sink")

        if self.max_buffer_size < 1:
            errors.append("max_buffer_size must be at least 1")

        if self.flush_interval_seconds < 0:
            errors.append("flush_interval_seconds must be non-negative")

        if self.max_snapshot_failures < 1:
            errors.append("max_snapshot_failures must be at least 1")

        if self.price_max_retries < 0 or self.delivery_max_retries < 0:
            errors.append("retry counts must be non-negative")

        if self.log_format not in ("json", "text"):
            errors.append("log_format must be json or text")

        return errors
