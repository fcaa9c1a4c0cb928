"""
Balance Engine - Models.

============================================================
RESPONSIBILITY
============================================================
Defines the data model of the balance-windowing engine.

- Upstream inputs: Block, BalanceDelta, ActionEvent
- Ledger entries: ActiveBalance
- Outputs: HistoryWindow, ActionRecord
- Flush progress: FlushCursor

============================================================
CONVENTIONS
============================================================
- Timestamps are Unix milliseconds (int)
- Raw token amounts are Python int (arbitrary precision) in
  memory and decimal strings on the wire
- USD values are Decimal, never float

============================================================
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple


# ============================================================
# ENUMS
# ============================================================

class WindowTrigger(Enum):
    """Why a history window was closed."""
    TRANSFER = "TRANSFER"
    EXHAUSTED = "EXHAUSTED"


class ChainArch(Enum):
    """Address conventions of the source chain."""
    EVM = "evm"
    SOLANA = "solana"


def parse_raw_amount(value: Any) -> int:
    """
    Parse a raw token amount.

    Accepts int or integer strings (decimal or 0x-hex). Floats are
    rejected because they cannot represent large balances exactly.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid raw amount: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith(("0x", "-0x")):
            return int(text, 16)
        return int(text)
    raise ValueError(f"Invalid raw amount: {value!r}")


# ============================================================
# LEDGER ENTRY
# ============================================================

@dataclass(frozen=True)
class ActiveBalance:
    """Current balance of one (asset, user) pair."""
    balance: int
    updated_at_ts: int
    updated_at_height: int


# ============================================================
# UPSTREAM INPUTS
# ============================================================

@dataclass(frozen=True)
class BalanceDelta:
    """
    A decoded balance-changing event.

    Either side may be missing (mint/burn). amount is the absolute
    raw quantity moved from from_user to to_user.
    """
    asset_id: str
    amount: int
    from_user: Optional[str] = None
    to_user: Optional[str] = None
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BalanceDelta":
        return cls(
            asset_id=data["asset_id"],
            amount=parse_raw_amount(data["amount"]),
            from_user=data.get("from_user"),
            to_user=data.get("to_user"),
            tx_hash=data.get("tx_hash"),
            log_index=data.get("log_index"),
        )


@dataclass(frozen=True)
class ActionEvent:
    """A non-windowed protocol action (swap, claim, mint...)."""
    key: str
    user_id: str
    asset_id: Optional[str] = None
    amount: Optional[int] = None
    priceable: bool = False
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionEvent":
        amount = data.get("amount")
        return cls(
            key=data["key"],
            user_id=data["user_id"],
            asset_id=data.get("asset_id"),
            amount=parse_raw_amount(amount) if amount is not None else None,
            priceable=bool(data.get("priceable", False)),
            tx_hash=data.get("tx_hash"),
            log_index=data.get("log_index"),
            meta=dict(data.get("meta") or {}),
        )


@dataclass(frozen=True)
class Block:
    """A finalized block with its already-decoded events."""
    height: int
    timestamp_ms: int
    balance_deltas: Tuple[BalanceDelta, ...] = ()
    actions: Tuple[ActionEvent, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Block":
        return cls(
            height=int(data["height"]),
            timestamp_ms=int(data["timestamp_ms"]),
            balance_deltas=tuple(
                BalanceDelta.from_dict(d) for d in data.get("balance_deltas", [])
            ),
            actions=tuple(
                ActionEvent.from_dict(a) for a in data.get("actions", [])
            ),
        )


# ============================================================
# OUTPUTS
# ============================================================

@dataclass(frozen=True)
class HistoryWindow:
    """
    A closed, valued interval of constant balance.

    Immutable once emitted. value_usd is the USD value of
    balance_before over the window.
    """
    user_id: str
    asset_id: str
    trigger: WindowTrigger
    start_ts: int
    end_ts: int
    balance_before: str
    balance_after: str
    token_price: Decimal = Decimal(0)
    token_decimals: int = 0
    value_usd: Decimal = Decimal(0)
    start_height: Optional[int] = None
    end_height: Optional[int] = None
    tx_hash: Optional[str] = None
    price_feed_id: Optional[str] = None

    @property
    def window_duration_ms(self) -> int:
        return self.end_ts - self.start_ts

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "user_id": self.user_id,
            "asset_id": self.asset_id,
            "trigger": self.trigger.value,
            "start_ts": self.start_ts,
            "end_ts": self.end_ts,
            "window_duration_ms": self.window_duration_ms,
            "start_height": self.start_height,
            "end_height": self.end_height,
            "tx_hash": self.tx_hash,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "token_price": str(self.token_price),
            "token_decimals": self.token_decimals,
            "value_usd": str(self.value_usd),
            "price_feed_id": self.price_feed_id,
        }


@dataclass(frozen=True)
class ActionRecord:
    """A priced action ready for formatting."""
    key: str
    user_id: str
    ts: int
    height: int
    asset_id: Optional[str] = None
    amount: Optional[str] = None
    priceable: bool = False
    tx_hash: Optional[str] = None
    log_index: Optional[int] = None
    token_price: Decimal = Decimal(0)
    token_decimals: int = 0
    value_usd: Decimal = Decimal(0)
    meta: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# FLUSH PROGRESS
# ============================================================

@dataclass
class FlushCursor:
    """Last boundary up to which idle balances have been windowed."""
    last_interpolated_ts: Optional[int] = None
