"""
Balance Engine - Window Emitter.

============================================================
RESPONSIBILITY
============================================================
Applies balance deltas to the ledger and closes a TRANSFER
window for every side whose balance changes at a later time.

- A first-seen pair is anchored at the event timestamp and
  emits nothing
- Same-timestamp changes coalesce (no zero-length window)
- Out-of-order timestamps never move a pair back in time
- Underflow clamps to zero

============================================================
"""

import logging
from typing import List, Optional

from core.constants import NULL_ADDRESSES
from core.exceptions import DataIntegrityError
from pricing.oracle import PriceOracle

from .ledger import ActiveBalanceLedger
from .models import BalanceDelta, ChainArch, HistoryWindow, WindowTrigger


logger = logging.getLogger(__name__)


def normalize_user(user: Optional[str], chain_arch: ChainArch) -> Optional[str]:
    """
    Canonical form of a user address, or None for "no user".

    EVM addresses are case-insensitive and lower-cased; Solana
    base58 keys are case-sensitive and left alone.
    """
    if user is None:
        return None
    user = user.strip()
    if not user:
        return None
    if chain_arch == ChainArch.EVM:
        user = user.lower()
    if user in NULL_ADDRESSES:
        return None
    return user


class WindowEmitter:
    """Turns balance deltas into TRANSFER windows."""

    def __init__(
        self,
        ledger: ActiveBalanceLedger,
        oracle: PriceOracle,
        chain_arch: ChainArch = ChainArch.EVM,
    ) -> None:
        self._ledger = ledger
        self._oracle = oracle
        self._chain_arch = chain_arch
        self._anomalies = 0

    @property
    def anomaly_count(self) -> int:
        """Clamped, skipped or out-of-order events seen so far."""
        return self._anomalies

    async def apply(
        self,
        delta: BalanceDelta,
        height: int,
        timestamp_ms: int,
    ) -> List[HistoryWindow]:
        """
        Apply one delta at the given block.

        Returns:
            TRANSFER windows closed by this delta (0, 1 or 2)
        """
        if delta.amount < 0:
            self._report(DataIntegrityError(
                f"Negative amount {delta.amount}, event skipped",
                asset_id=delta.asset_id,
                height=height,
                context={"tx_hash": delta.tx_hash},
            ))
            return []

        windows: List[HistoryWindow] = []
        sides = (
            (normalize_user(delta.from_user, self._chain_arch), -delta.amount),
            (normalize_user(delta.to_user, self._chain_arch), delta.amount),
        )
        for user_id, signed_amount in sides:
            if user_id is None:
                continue
            window = await self._apply_side(
                delta.asset_id,
                user_id,
                signed_amount,
                height,
                timestamp_ms,
                delta.tx_hash,
            )
            if window is not None:
                windows.append(window)
        return windows

    async def _apply_side(
        self,
        asset_id: str,
        user_id: str,
        signed_amount: int,
        height: int,
        ts: int,
        tx_hash: Optional[str],
    ) -> Optional[HistoryWindow]:
        prior = self._ledger.get(asset_id, user_id)
        prior_balance = prior.balance if prior else 0
        prior_ts = prior.updated_at_ts if prior else ts
        prior_height = prior.updated_at_height if prior else height

        balance_after = prior_balance + signed_amount
        if balance_after < 0:
            self._report(DataIntegrityError(
                f"Balance underflow {prior_balance} {signed_amount:+d}, clamped to 0",
                asset_id=asset_id,
                user_id=user_id,
                height=height,
                context={"tx_hash": tx_hash},
            ))
            balance_after = 0

        if ts < prior_ts:
            self._report(DataIntegrityError(
                f"Event at {ts} precedes last update at {prior_ts}, no window emitted",
                asset_id=asset_id,
                user_id=user_id,
                height=height,
            ))
            self._ledger.set(asset_id, user_id, balance_after, prior_ts, max(height, prior_height))
            return None

        window = None
        if ts > prior_ts:
            valuation = await self._oracle.value_position(asset_id, prior_balance, ts)
            window = HistoryWindow(
                user_id=user_id,
                asset_id=asset_id,
                trigger=WindowTrigger.TRANSFER,
                start_ts=prior_ts,
                end_ts=ts,
                start_height=prior_height,
                end_height=height,
                tx_hash=tx_hash,
                balance_before=str(prior_balance),
                balance_after=str(balance_after),
                token_price=valuation.token_price,
                token_decimals=valuation.token_decimals,
                value_usd=valuation.value_usd,
                price_feed_id=valuation.price_feed_id,
            )

        self._ledger.set(asset_id, user_id, balance_after, ts, height)
        return window

    def _report(self, error: DataIntegrityError) -> None:
        self._anomalies += 1
        logger.warning(str(error))
