"""
Balance Engine - Periodic Flusher.

============================================================
RESPONSIBILITY
============================================================
Closes EXHAUSTED windows for balances that stay idle across
epoch-aligned flush boundaries.

- Boundaries are multiples of window_duration_ms from epoch
- Every reached boundary is processed in order (no skipping)
- Runs after the emitter for the same block
- Re-running with the same block timestamp emits nothing

============================================================
"""

import logging
from typing import List, Optional

from pricing.oracle import PriceOracle

from .ledger import ActiveBalanceLedger
from .models import FlushCursor, HistoryWindow, WindowTrigger


logger = logging.getLogger(__name__)


def next_boundary(cursor_ts: int, window_duration_ms: int) -> int:
    """First epoch-aligned boundary strictly after cursor_ts."""
    return (cursor_ts // window_duration_ms + 1) * window_duration_ms


class PeriodicFlusher:
    """Emits EXHAUSTED windows at flush boundaries."""

    def __init__(
        self,
        ledger: ActiveBalanceLedger,
        oracle: PriceOracle,
        window_duration_ms: int,
        max_boundaries_per_block: Optional[int] = None,
    ) -> None:
        if window_duration_ms <= 0:
            raise ValueError("window_duration_ms must be positive")
        if max_boundaries_per_block is not None and max_boundaries_per_block < 1:
            raise ValueError("max_boundaries_per_block must be at least 1")

        self._ledger = ledger
        self._oracle = oracle
        self._window_duration_ms = window_duration_ms
        self._max_boundaries = max_boundaries_per_block

    @property
    def window_duration_ms(self) -> int:
        return self._window_duration_ms

    async def flush(
        self,
        cursor: FlushCursor,
        current_ts: int,
        current_height: int,
    ) -> List[HistoryWindow]:
        """
        Process every boundary reached by the block at current_ts.

        Mutates the cursor and the ledger in place.

        Returns:
            EXHAUSTED windows in boundary order
        """
        if cursor.last_interpolated_ts is None:
            cursor.last_interpolated_ts = current_ts
            return []

        windows: List[HistoryWindow] = []
        processed = 0

        while True:
            boundary = next_boundary(cursor.last_interpolated_ts, self._window_duration_ms)
            if boundary > current_ts:
                break
            if self._max_boundaries is not None and processed >= self._max_boundaries:
                logger.info(
                    f"Catch-up capped at {processed} boundaries for block "
                    f"{current_height}, resuming from {cursor.last_interpolated_ts}"
                )
                break

            windows.extend(await self._close_idle(boundary, current_height))
            cursor.last_interpolated_ts = boundary
            processed += 1

        if processed > 1:
            logger.debug(f"Flushed {processed} boundaries at block {current_height}")
        return windows

    async def _close_idle(self, boundary: int, current_height: int) -> List[HistoryWindow]:
        windows = []
        for asset_id, user_id, entry in self._ledger.items():
            if entry.balance <= 0 or entry.updated_at_ts >= boundary:
                continue

            valuation = await self._oracle.value_position(asset_id, entry.balance, boundary)
            balance = str(entry.balance)
            windows.append(HistoryWindow(
                user_id=user_id,
                asset_id=asset_id,
                trigger=WindowTrigger.EXHAUSTED,
                start_ts=entry.updated_at_ts,
                end_ts=boundary,
                balance_before=balance,
                balance_after=balance,
                token_price=valuation.token_price,
                token_decimals=valuation.token_decimals,
                value_usd=valuation.value_usd,
                price_feed_id=valuation.price_feed_id,
            ))
            self._ledger.set(asset_id, user_id, entry.balance, boundary, current_height)
        return windows
