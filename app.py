#!/usr/bin/env python3
"""
TWB Indexer - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
- Compatible with PM2 / systemd process management
- Can be stopped (SIGINT/SIGTERM) and restarted safely: state
  is resumed from the last snapshot

============================================================
USAGE
============================================================
Direct execution:
    python app.py --protocol-key eth:erc20:usdc --blocks-file blocks.jsonl

Environment-based configuration:
    PROTOCOL_KEY=eth:erc20:usdc BLOCKS_FILE=blocks.jsonl python app.py

============================================================
"""

import sys

from orchestrator.cli import main


if __name__ == "__main__":
    sys.exit(main())
