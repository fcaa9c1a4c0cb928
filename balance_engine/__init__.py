"""
Balance Engine Package - Time-weighted balance windowing.

Components:
- ledger: ActiveBalanceLedger (current balance per asset/user)
- window_emitter: TRANSFER windows on balance changes
- flusher: EXHAUSTED windows at epoch-aligned boundaries
- engine: BalanceEngine block processor (imported from
  balance_engine.engine; it depends on event_sink and storage)
"""

from .flusher import PeriodicFlusher, next_boundary
from .ledger import ActiveBalanceLedger
from .models import (
    ActionEvent,
    ActionRecord,
    ActiveBalance,
    BalanceDelta,
    Block,
    ChainArch,
    FlushCursor,
    HistoryWindow,
    WindowTrigger,
)
from .state import ProtocolState
from .window_emitter import WindowEmitter, normalize_user

__all__ = [
    "ActionEvent",
    "ActionRecord",
    "ActiveBalance",
    "ActiveBalanceLedger",
    "BalanceDelta",
    "Block",
    "ChainArch",
    "FlushCursor",
    "HistoryWindow",
    "PeriodicFlusher",
    "ProtocolState",
    "WindowEmitter",
    "WindowTrigger",
    "next_boundary",
    "normalize_user",
]
