"""
Orchestrator Package - Runtime of the indexer.

Modules:
- models: IndexerConfig, duration parsing
- block_source: BlockSource, JsonlBlockSource
- core: logging setup, IndexerRunner, create_runner
- cli: argparse entry point
"""

from .block_source import BlockSource, JsonlBlockSource
from .core import IndexerRunner, create_runner, setup_logging
from .models import IndexerConfig, SinkMode, parse_duration_ms

__all__ = [
    "BlockSource",
    "IndexerConfig",
    "IndexerRunner",
    "JsonlBlockSource",
    "SinkMode",
    "create_runner",
    "parse_duration_ms",
    "setup_logging",
]
