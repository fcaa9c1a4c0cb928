"""
Balance Engine - Protocol State.

Per-protocol-instance mutable state. Protocol-specific data is
composed through the typed `extension` field.
"""

from dataclasses import dataclass, field
from typing import Generic, List, Optional, TypeVar

from .ledger import ActiveBalanceLedger
from .models import ActionRecord, FlushCursor, HistoryWindow


T = TypeVar("T")


@dataclass
class ProtocolState(Generic[T]):
    """State owned by one BalanceEngine."""
    ledger: ActiveBalanceLedger = field(default_factory=ActiveBalanceLedger)
    cursor: FlushCursor = field(default_factory=FlushCursor)
    pending_windows: List[HistoryWindow] = field(default_factory=list)
    pending_actions: List[ActionRecord] = field(default_factory=list)
    last_height: Optional[int] = None
    extension: Optional[T] = None

    @property
    def has_pending(self) -> bool:
        return bool(self.pending_windows or self.pending_actions)

    def clear_pending(self) -> None:
        self.pending_windows = []
        self.pending_actions = []
