"""
Orchestrator - Core.

============================================================
RESPONSIBILITY
============================================================
Runtime of one indexer process.

- Wires config into oracle, sink, snapshot store and engine
- Pulls batches from the block source, resuming after the
  last persisted height
- Handles signals (SIGINT, SIGTERM): the in-flight batch
  completes, then a final snapshot and sink flush run

============================================================
ARCHITECTURAL POSITION
============================================================
- This runner has NO windowing logic
- It ONLY coordinates startup, the batch loop and shutdown

============================================================
"""

import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, Optional

from balance_engine.engine import BalanceEngine
from core.backoff import BackoffPolicy
from core.rate_limiter import RateLimiter
from event_sink.delivery import ApiDelivery, Delivery, StdoutDelivery
from event_sink.formatters import RecordContext
from event_sink.sink import EventSink
from pricing.cache import PriceCache
from pricing.models import AssetRegistry
from pricing.oracle import PriceOracle
from pricing.providers.base import PriceSource
from pricing.providers.coingecko import CoinGeckoPriceSource
from pricing.providers.static import StaticPriceSource
from storage.database import create_database_engine, create_session_factory, init_schema
from storage.repositories.state_snapshot import StateSnapshotRepository

from .block_source import BlockSource, JsonlBlockSource
from .models import IndexerConfig, SinkMode


# ============================================================
# LOGGING SETUP
# ============================================================

def setup_logging(
    level: str = "INFO",
    log_format: str = "json",
    runner_id: Optional[str] = None,
) -> logging.Logger:
    """
    Set up structured logging to stdout.

    Args:
        level: Log level
        log_format: Output format (json or text)
        runner_id: Runner identifier added to every line

    Returns:
        Configured logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps({
                "timestamp": "%(asctime)s",
                "level": "%(levelname)s",
                "logger": "%(name)s",
                "message": "%(message)s",
                "runner_id": runner_id or "",
            })
        )
    else:
        formatter = logging.Formatter(
            f"%(asctime)s | %(levelname)-8s | %(name)s | {runner_id or ''} | %(message)s"
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("orchestrator")


# ============================================================
# RUNNER
# ============================================================

class IndexerRunner:
    """Batch loop around one BalanceEngine."""

    def __init__(
        self,
        engine: BalanceEngine,
        source: BlockSource,
        oracle: Optional[PriceOracle] = None,
    ) -> None:
        self._engine = engine
        self._source = source
        self._oracle = oracle
        self._stop_requested = False
        self._batches = 0
        self._records = 0
        self._logger = logging.getLogger("orchestrator.runner")

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        """Stop after the in-flight batch."""
        if not self._stop_requested:
            self._logger.info("Stop requested, finishing current batch")
        self._stop_requested = True

    async def run(self) -> Dict[str, Any]:
        """
        Process every batch the source yields, then shut down.

        Fatal errors (block order, source, persistence) propagate
        after the shutdown sequence has run.

        Returns:
            Run statistics
        """
        self._install_signal_handlers()
        try:
            self._engine.start()
            resume = self._engine.resume_height
            self._logger.info(
                f"=== INDEXER STARTUP === protocol={self._engine.protocol_key} "
                f"resume_height={resume}"
            )

            async for batch in self._source.batches(resume):
                if self._stop_requested:
                    break
                self._records += await self._engine.process_batch(batch)
                self._batches += 1
                self._logger.info(
                    f"Batch {self._batches} done at height {self._engine.last_height}"
                )
                if self._stop_requested:
                    break
        finally:
            await self._engine.shutdown()
            if self._oracle is not None:
                await self._oracle.close()
            self._restore_signal_handlers()
            self._logger.info("=== INDEXER SHUTDOWN COMPLETE ===")

        return self.get_stats()

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            "batches": self._batches,
            "records": self._records,
            "last_height": self._engine.last_height,
        }
        if self._oracle is not None:
            stats["pricing"] = self._oracle.get_stats()
        return stats

    # --------------------------------------------------------
    # Signal Handlers
    # --------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        if sys.platform == "win32":
            signal.signal(signal.SIGINT, self._signal_handler)
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_stop)

    def _restore_signal_handlers(self) -> None:
        if sys.platform == "win32":
            return
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

    def _signal_handler(self, signum: int, frame: Any) -> None:
        """Synchronous signal handler (Windows)."""
        self._logger.info(f"Received signal {signum}")
        self.request_stop()


# ============================================================
# FACTORY
# ============================================================

def build_price_source(config: IndexerConfig) -> PriceSource:
    if config.prices_file:
        return StaticPriceSource.from_file(config.prices_file)
    return CoinGeckoPriceSource(
        api_key=config.coingecko_api_key,
        base_url=config.coingecko_base_url,
    )


def build_delivery(config: IndexerConfig) -> Delivery:
    if config.sink_mode == SinkMode.STDOUT:
        return StdoutDelivery()
    return ApiDelivery(
        base_url=config.collector_base_url,
        api_key=config.collector_api_key,
        backoff=BackoffPolicy(
            max_retries=config.delivery_max_retries,
            initial_delay_seconds=config.delivery_initial_backoff_seconds,
        ),
    )


def create_runner(config: IndexerConfig) -> IndexerRunner:
    """
    Build a runner from configuration.

    Raises:
        ConfigurationError: On unreadable asset or price files
        PersistenceError: If the database cannot be initialized
    """
    oracle = PriceOracle(
        source=build_price_source(config),
        cache=PriceCache(),
        registry=AssetRegistry.from_file(config.assets_file),
        backoff=BackoffPolicy(max_retries=config.price_max_retries),
        rate_limiter=RateLimiter(config.price_min_interval_seconds),
    )

    sink = EventSink(
        delivery=build_delivery(config),
        max_buffer_size=config.max_buffer_size,
        flush_interval_seconds=config.flush_interval_seconds,
        send_from_timestamp_ms=config.send_from_timestamp_ms,
    )

    db_engine = create_database_engine(config.database_url)
    init_schema(db_engine)
    session = create_session_factory(db_engine)()

    record_context = RecordContext(
        runner_id=config.runner_id,
        protocol_key=config.protocol_key,
        chain_id=config.chain_id,
        chain_name=config.chain_name,
        chain_short_name=config.chain_short_name,
        chain_arch=config.chain_arch,
        protocol_type=config.protocol_type,
        protocol_name=config.protocol_name,
        contract_address=config.contract_address,
        event_id_salt=config.collector_api_key or "",
    )

    engine = BalanceEngine(
        protocol_key=config.protocol_key,
        window_duration_ms=config.window_duration_ms,
        oracle=oracle,
        sink=sink,
        snapshots=StateSnapshotRepository(session),
        record_context=record_context,
        chain_arch=config.chain_arch,
        max_boundaries_per_block=config.max_boundaries_per_block,
        max_snapshot_failures=config.max_snapshot_failures,
    )

    source = JsonlBlockSource(config.blocks_file, batch_size=config.batch_size)
    return IndexerRunner(engine, source, oracle)
