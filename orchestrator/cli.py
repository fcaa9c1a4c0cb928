"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface for the indexer.

- Provides argparse-based CLI
- Loads configuration from environment, then applies CLI
  overrides
- Entry point for the application

============================================================
USAGE
============================================================
python -m orchestrator.cli --protocol-key eth:erc20:usdc \
    --blocks-file blocks.jsonl --assets-file assets.json --sink stdout
python -m orchestrator.cli --window-duration 2.5d --max-boundaries-per-block 24

============================================================
"""

import argparse
import asyncio
import dataclasses
import logging
import sys
from typing import List, Optional

from balance_engine.models import ChainArch
from core.constants import SYSTEM_NAME, SYSTEM_VERSION
from core.exceptions import IndexerException
from storage.repositories.exceptions import RepositoryException

from .core import create_runner, setup_logging
from .models import IndexerConfig, SinkMode


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser. Unset options fall back to env values."""
    parser = argparse.ArgumentParser(
        prog=SYSTEM_NAME,
        description="Time-weighted balance indexer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --protocol-key eth:erc20:usdc --blocks-file blocks.jsonl \\
           --assets-file assets.json --sink stdout
  %(prog)s --window-duration 1d --send-from-ts 1700000000000
        """
    )

    # --------------------------------------------------------
    # Protocol Options
    # --------------------------------------------------------
    protocol_group = parser.add_argument_group("Protocol Options")

    protocol_group.add_argument(
        "--protocol-key",
        type=str,
        help="Snapshot namespace of this protocol instance",
    )

    protocol_group.add_argument(
        "--chain-arch",
        type=str,
        choices=[a.value for a in ChainArch],
        help="Address conventions of the chain (default: evm)",
    )

    protocol_group.add_argument(
        "--chain-id",
        type=int,
        help="Numeric chain id stamped on records",
    )

    protocol_group.add_argument(
        "--window-duration",
        type=str,
        metavar="DURATION",
        help="Flush interval, e.g. 1h, 2.5d (minimum 1h)",
    )

    protocol_group.add_argument(
        "--max-boundaries-per-block",
        type=int,
        metavar="N",
        help="Cap on flush boundaries processed per block",
    )

    # --------------------------------------------------------
    # Input Options
    # --------------------------------------------------------
    input_group = parser.add_argument_group("Input Options")

    input_group.add_argument(
        "--blocks-file",
        type=str,
        metavar="PATH",
        help="JSONL file of normalized blocks",
    )

    input_group.add_argument(
        "--batch-size",
        type=int,
        metavar="BLOCKS",
        help="Blocks per batch (default: 100)",
    )

    # --------------------------------------------------------
    # Pricing Options
    # --------------------------------------------------------
    pricing_group = parser.add_argument_group("Pricing Options")

    pricing_group.add_argument(
        "--assets-file",
        type=str,
        metavar="PATH",
        help="JSON file of asset decimals and price feeds",
    )

    pricing_group.add_argument(
        "--prices-file",
        type=str,
        metavar="PATH",
        help="Static price table (replaces CoinGecko)",
    )

    # --------------------------------------------------------
    # Delivery Options
    # --------------------------------------------------------
    delivery_group = parser.add_argument_group("Delivery Options")

    delivery_group.add_argument(
        "--sink",
        type=str,
        choices=[m.value for m in SinkMode],
        help="Record destination (default: api)",
    )

    delivery_group.add_argument(
        "--send-from-ts",
        type=int,
        metavar="UNIX_MS",
        help="Drop records starting before this timestamp",
    )

    delivery_group.add_argument(
        "--flush-interval",
        type=float,
        metavar="SECONDS",
        help="Max seconds between sink flushes (default: 10)",
    )

    # --------------------------------------------------------
    # Persistence Options
    # --------------------------------------------------------
    persistence_group = parser.add_argument_group("Persistence Options")

    persistence_group.add_argument(
        "--database-url",
        type=str,
        help="SQLAlchemy URL of the snapshot store",
    )

    # --------------------------------------------------------
    # Logging Options
    # --------------------------------------------------------
    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["json", "text"],
        help="Logging format (default: json)",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {SYSTEM_VERSION}",
    )

    return parser


# ============================================================
# CLI CONFIGURATION BUILDER
# ============================================================

def build_config(
    args: argparse.Namespace,
    base: Optional[IndexerConfig] = None,
) -> IndexerConfig:
    """
    Apply CLI overrides on top of the environment configuration.

    Args:
        args: Parsed arguments
        base: Starting configuration (default: IndexerConfig.from_env())
    """
    config = base or IndexerConfig.from_env()

    overrides = {
        "protocol_key": args.protocol_key,
        "chain_arch": ChainArch(args.chain_arch) if args.chain_arch else None,
        "chain_id": args.chain_id,
        "window_duration": args.window_duration,
        "max_boundaries_per_block": args.max_boundaries_per_block,
        "blocks_file": args.blocks_file,
        "batch_size": args.batch_size,
        "assets_file": args.assets_file,
        "prices_file": args.prices_file,
        "sink_mode": SinkMode(args.sink) if args.sink else None,
        "send_from_timestamp_ms": args.send_from_ts,
        "flush_interval_seconds": args.flush_interval,
        "database_url": args.database_url,
        "log_level": args.log_level,
        "log_format": args.log_format,
    }
    return dataclasses.replace(
        config,
        **{k: v for k, v in overrides.items() if v is not None},
    )


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(config: IndexerConfig) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    logger = logging.getLogger("orchestrator")
    try:
        runner = create_runner(config)
        stats = await runner.run()
    except IndexerException as e:
        logger.critical(f"Fatal error: {e}")
        return 1
    except RepositoryException as e:
        logger.critical(f"Fatal storage error: {e}")
        return 1

    logger.info(f"Run complete: {stats}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    setup_logging(config.log_level, config.log_format, config.runner_id)

    try:
        return asyncio.run(async_main(config))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
