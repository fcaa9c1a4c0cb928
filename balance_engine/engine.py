"""
Balance Engine - Block Processor.

============================================================
RESPONSIBILITY
============================================================
Drives one protocol instance block by block.

Per block:
1. Balance deltas -> WindowEmitter (TRANSFER windows)
2. Actions -> priced ActionRecords
3. PeriodicFlusher (EXHAUSTED windows, cursor advance)

Per batch end:
4. Format pending windows/actions -> EventSink
5. Save the state snapshot

============================================================
FAILURE POLICY
============================================================
- Out-of-order block: BlockOrderError (fatal)
- Snapshot save failure: logged, in-memory state stays
  authoritative; max_snapshot_failures consecutive failures
  raise PersistenceError (fatal)
- Price and delivery failures never reach this level

============================================================
"""

import logging
from typing import Generic, Iterable, Optional, TypeVar

from core.exceptions import BlockOrderError, PersistenceError
from event_sink.formatters import RecordContext, format_records
from event_sink.sink import EventSink
from pricing.models import Valuation
from pricing.oracle import PriceOracle
from storage.repositories.exceptions import RepositoryException
from storage.repositories.state_snapshot import StateSnapshotRepository

from .flusher import PeriodicFlusher
from .models import ActionEvent, ActionRecord, Block, ChainArch
from .state import ProtocolState
from .window_emitter import WindowEmitter, normalize_user


logger = logging.getLogger(__name__)

T = TypeVar("T")


class BalanceEngine(Generic[T]):
    """Block processor of one protocol instance."""

    def __init__(
        self,
        protocol_key: str,
        window_duration_ms: int,
        oracle: PriceOracle,
        sink: EventSink,
        snapshots: StateSnapshotRepository,
        record_context: RecordContext,
        chain_arch: ChainArch = ChainArch.EVM,
        max_boundaries_per_block: Optional[int] = None,
        max_snapshot_failures: int = 3,
        extension: Optional[T] = None,
    ) -> None:
        if max_snapshot_failures < 1:
            raise ValueError("max_snapshot_failures must be at least 1")

        self._protocol_key = protocol_key
        self._window_duration_ms = window_duration_ms
        self._oracle = oracle
        self._sink = sink
        self._snapshots = snapshots
        self._record_context = record_context
        self._chain_arch = chain_arch
        self._max_boundaries = max_boundaries_per_block
        self._max_snapshot_failures = max_snapshot_failures

        self._state: ProtocolState[T] = ProtocolState(extension=extension)
        self._snapshot_failures = 0
        self._started = False
        self._build_components()

    def _build_components(self) -> None:
        """(Re)bind emitter and flusher to the current ledger."""
        self._emitter = WindowEmitter(self._state.ledger, self._oracle, self._chain_arch)
        self._flusher = PeriodicFlusher(
            self._state.ledger,
            self._oracle,
            self._window_duration_ms,
            self._max_boundaries,
        )

    # =========================================================
    # PROPERTIES
    # =========================================================

    @property
    def protocol_key(self) -> str:
        return self._protocol_key

    @property
    def state(self) -> ProtocolState[T]:
        return self._state

    @property
    def last_height(self) -> Optional[int]:
        return self._state.last_height

    @property
    def resume_height(self) -> Optional[int]:
        """Next height the upstream source should deliver, if known."""
        if self._state.last_height is None:
            return None
        return self._state.last_height + 1

    # =========================================================
    # LIFECYCLE
    # =========================================================

    def start(self) -> None:
        """Restore state from the snapshot store, or start empty."""
        snapshot = self._snapshots.load(self._protocol_key)
        if snapshot is None:
            logger.warning(
                f"[{self._protocol_key}] No snapshot found, starting with empty state"
            )
        else:
            self._state.ledger = snapshot.ledger
            self._state.cursor = snapshot.cursor
            self._state.last_height = snapshot.last_height
            self._build_components()
            logger.info(
                f"[{self._protocol_key}] Resuming after height {snapshot.last_height} "
                f"with {len(snapshot.ledger)} pairs"
            )
        self._started = True

    async def process_block(self, block: Block) -> int:
        """
        Apply one block.

        Returns:
            Number of windows and actions produced by the block

        Raises:
            BlockOrderError: If block.height does not increase
        """
        last = self._state.last_height
        if last is not None and block.height <= last:
            raise BlockOrderError(block.height, last)

        windows = []
        for delta in block.balance_deltas:
            windows.extend(
                await self._emitter.apply(delta, block.height, block.timestamp_ms)
            )

        actions = []
        for event in block.actions:
            record = await self._price_action(event, block)
            if record is not None:
                actions.append(record)

        windows.extend(
            await self._flusher.flush(self._state.cursor, block.timestamp_ms, block.height)
        )

        self._state.pending_windows.extend(windows)
        self._state.pending_actions.extend(actions)
        self._state.last_height = block.height
        return len(windows) + len(actions)

    async def end_batch(self) -> int:
        """
        Hand pending output to the sink and persist state.

        Returns:
            Number of records handed to the sink

        Raises:
            PersistenceError: After repeated snapshot failures
        """
        records = format_records(
            self._state.pending_windows,
            self._state.pending_actions,
            self._record_context,
        )
        accepted = self._sink.add(records)
        self._state.clear_pending()
        await self._sink.maybe_flush()
        self._save_snapshot()
        return accepted

    async def process_batch(self, blocks: Iterable[Block]) -> int:
        for block in blocks:
            await self.process_block(block)
        return await self.end_batch()

    async def shutdown(self) -> None:
        """Final snapshot save and forced sink flush."""
        logger.info(f"[{self._protocol_key}] Shutting down at height {self._state.last_height}")
        if self._state.has_pending:
            records = format_records(
                self._state.pending_windows,
                self._state.pending_actions,
                self._record_context,
            )
            self._sink.add(records)
            self._state.clear_pending()
        try:
            if self._started:
                self._save_snapshot()
        finally:
            await self._sink.close()

    # =========================================================
    # INTERNALS
    # =========================================================

    async def _price_action(self, event: ActionEvent, block: Block) -> Optional[ActionRecord]:
        user_id = normalize_user(event.user_id, self._chain_arch)
        if user_id is None:
            logger.debug(f"[{self._protocol_key}] Action {event.key} without user skipped")
            return None

        valuation = Valuation.zero()
        if event.priceable and event.asset_id is not None and event.amount is not None:
            valuation = await self._oracle.value_position(
                event.asset_id, event.amount, block.timestamp_ms
            )

        return ActionRecord(
            key=event.key,
            user_id=user_id,
            ts=block.timestamp_ms,
            height=block.height,
            asset_id=event.asset_id,
            amount=str(event.amount) if event.amount is not None else None,
            priceable=event.priceable,
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            token_price=valuation.token_price,
            token_decimals=valuation.token_decimals,
            value_usd=valuation.value_usd,
            meta=dict(event.meta),
        )

    def _save_snapshot(self) -> None:
        try:
            self._snapshots.save(
                self._protocol_key,
                self._state.ledger,
                self._state.cursor,
                self._state.last_height,
            )
        except RepositoryException as e:
            self._snapshot_failures += 1
            logger.error(
                f"[{self._protocol_key}] Snapshot save failed "
                f"({self._snapshot_failures}/{self._max_snapshot_failures}): {e}"
            )
            if self._snapshot_failures >= self._max_snapshot_failures:
                raise PersistenceError(
                    f"Snapshot save failed {self._snapshot_failures} times in a row",
                    protocol_key=self._protocol_key,
                    cause=e,
                ) from e
            return
        self._snapshot_failures = 0
