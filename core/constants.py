"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Defines all system-wide constants.

- Provides single source of truth for magic values
- Enables consistent behavior across modules
- Documents the meaning of each constant

============================================================
"""

# ============================================================
# SYSTEM CONSTANTS
# ============================================================

SYSTEM_NAME = "twb-indexer"
SYSTEM_VERSION = "1.0.0"

# Version tag stamped on every outgoing record
RECORD_SCHEMA_VERSION = "1.0"

# ============================================================
# TIME CONSTANTS (milliseconds)
# ============================================================

SECOND_MS = 1_000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# Flush interval floor; shorter windows are rejected at config load
MIN_WINDOW_DURATION_MS = HOUR_MS

# ============================================================
# CHAIN CONSTANTS
# ============================================================

EVM_ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Solana system program, used as the "no owner" side of mints/burns
SOLANA_SYSTEM_PROGRAM = "11111111111111111111111111111111"

NULL_ADDRESSES = frozenset({EVM_ZERO_ADDRESS, SOLANA_SYSTEM_PROGRAM})

# ============================================================
# DELIVERY CONSTANTS
# ============================================================

# Max records per POST to the collector
DELIVERY_BATCH_SIZE = 50

# Minimum spacing between collector calls (seconds)
DELIVERY_MIN_INTERVAL_SECONDS = 0.11

# ============================================================
# PRICING CONSTANTS
# ============================================================

COINGECKO_PRO_BASE_URL = "https://pro-api.coingecko.com/api/v3"
COINGECKO_PUBLIC_BASE_URL = "https://api.coingecko.com/api/v3"

# Precision for decimal valuation of raw integer balances
VALUATION_PRECISION = 78
