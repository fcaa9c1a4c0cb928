"""
Event Sink - Record Formatters.

============================================================
RESPONSIBILITY
============================================================
Turns HistoryWindow and ActionRecord objects into the flat,
JSON-safe records the collector ingests.

- Every record carries chain, protocol and runner metadata
- eventId is deterministic so replays produce the same ids
- Raw balances stay strings; prices and USD values are numbers

============================================================
"""

import hashlib
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from balance_engine.models import ActionRecord, ChainArch, HistoryWindow
from core.constants import RECORD_SCHEMA_VERSION


EVENT_TYPE_TWB = "time_weighted_balance"
EVENT_TYPE_ACTION = "action"


@dataclass(frozen=True)
class RecordContext:
    """Static metadata stamped on every record of a protocol instance."""
    runner_id: str
    protocol_key: str
    chain_id: int
    chain_name: str
    chain_short_name: str
    chain_arch: ChainArch = ChainArch.EVM
    protocol_type: Optional[str] = None
    protocol_name: Optional[str] = None
    contract_address: Optional[str] = None
    event_id_salt: str = ""

    def metadata(self) -> Dict[str, Any]:
        return {
            "version": RECORD_SCHEMA_VERSION,
            "runnerId": self.runner_id,
            "protocolKey": self.protocol_key,
            "chainId": self.chain_id,
            "chainName": self.chain_name,
            "chainShortName": self.chain_short_name,
            "chainArch": self.chain_arch.value,
            "protocolType": self.protocol_type,
            "protocolName": self.protocol_name,
            "contractAddress": self.contract_address,
        }


def make_event_id(*parts: Any) -> str:
    """First 8 hex chars of md5 over the "-"-joined parts."""
    canonical = "-".join("" if p is None else str(p) for p in parts)
    return hashlib.md5(canonical.encode("utf-8")).hexdigest()[:8]


def _number(value: Decimal) -> float:
    return float(value)


def format_window(window: HistoryWindow, ctx: RecordContext) -> Optional[Dict[str, Any]]:
    """
    Format a history window.

    Returns:
        The record, or None for a zero-length window
    """
    if window.end_ts <= window.start_ts:
        return None

    record = ctx.metadata()
    record.update({
        "eventId": make_event_id(
            ctx.chain_id,
            window.asset_id,
            window.user_id,
            window.start_ts,
            window.end_ts,
            window.window_duration_ms,
            ctx.event_id_salt,
        ),
        "eventType": EVENT_TYPE_TWB,
        "trigger": window.trigger.value,
        "user": window.user_id,
        "asset": window.asset_id,
        "startUnixTimestampMs": window.start_ts,
        "endUnixTimestampMs": window.end_ts,
        "windowDurationMs": window.window_duration_ms,
        "startBlockNumber": window.start_height,
        "endBlockNumber": window.end_height,
        "txHash": window.tx_hash,
        "balanceBefore": window.balance_before,
        "balanceAfter": window.balance_after,
        "tokenDecimals": window.token_decimals,
        "tokenPrice": _number(window.token_price),
        "valueUsd": _number(window.value_usd),
        "priceFeedId": window.price_feed_id,
    })
    return record


def format_action(action: ActionRecord, ctx: RecordContext) -> Dict[str, Any]:
    record = ctx.metadata()
    record.update({
        "eventId": make_event_id(
            ctx.chain_id,
            action.key,
            action.user_id,
            action.ts,
            action.tx_hash,
            action.log_index,
            ctx.event_id_salt,
        ),
        "eventType": EVENT_TYPE_ACTION,
        "actionKey": action.key,
        "user": action.user_id,
        "asset": action.asset_id,
        "amount": action.amount,
        "priceable": action.priceable,
        "unixTimestampMs": action.ts,
        "blockNumber": action.height,
        "txHash": action.tx_hash,
        "logIndex": action.log_index,
        "tokenDecimals": action.token_decimals,
        "tokenPrice": _number(action.token_price),
        "valueUsd": _number(action.value_usd),
        "meta": action.meta,
    })
    return record


def format_records(
    windows: Iterable[HistoryWindow],
    actions: Iterable[ActionRecord],
    ctx: RecordContext,
) -> List[Dict[str, Any]]:
    """Format a batch, windows first, dropping zero-length windows."""
    records = []
    for window in windows:
        record = format_window(window, ctx)
        if record is not None:
            records.append(record)
    records.extend(format_action(action, ctx) for action in actions)
    return records


def record_start_ms(record: Dict[str, Any]) -> Optional[int]:
    """Timestamp a record is filtered on (window start or action time)."""
    if record.get("eventType") == EVENT_TYPE_TWB:
        return record.get("startUnixTimestampMs")
    return record.get("unixTimestampMs")
