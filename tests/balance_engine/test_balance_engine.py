"""
Tests for the Balance Engine block processor.

============================================================
PURPOSE
============================================================
- Blocks flow through emitter, action pricing and flusher
- Batch end hands records to the sink and saves the snapshot
- Restart resumes from the saved snapshot
- Repeated snapshot failures become fatal

============================================================
"""

import logging
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest

from balance_engine.engine import BalanceEngine
from balance_engine.models import ActionEvent, BalanceDelta, Block, WindowTrigger
from core.backoff import BackoffPolicy
from core.constants import HOUR_MS
from core.exceptions import BlockOrderError, PersistenceError
from core.rate_limiter import RateLimiter
from event_sink.delivery import Delivery
from event_sink.formatters import RecordContext
from event_sink.sink import EventSink
from pricing.cache import PriceCache
from pricing.models import AssetConfig, AssetRegistry
from pricing.oracle import PriceOracle
from pricing.providers.static import StaticPriceSource
from storage.database import create_database_engine, create_session_factory, init_schema
from storage.repositories.exceptions import QueryError
from storage.repositories.state_snapshot import StateSnapshotRepository


ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"
PROTOCOL_KEY = "eth:erc20:tok"


class RecordingDelivery(Delivery):
    """Keeps every delivered record in memory."""

    def __init__(self):
        self.records: List[Dict[str, Any]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "recording"

    async def send(self, batch):
        self.records.extend(batch)

    async def close(self):
        self.closed = True


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def session():
    engine = create_database_engine("sqlite://")
    init_schema(engine)
    session = create_session_factory(engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def snapshots(session):
    return StateSnapshotRepository(session)


@pytest.fixture
def delivery():
    return RecordingDelivery()


def make_oracle() -> PriceOracle:
    return PriceOracle(
        source=StaticPriceSource({"tok-feed": {"1970-01-01": "2"}}),
        cache=PriceCache(),
        registry=AssetRegistry([
            AssetConfig(asset_id="tok", decimals=0, price_feed_id="tok-feed"),
        ]),
        backoff=BackoffPolicy.no_delay(),
        rate_limiter=RateLimiter(0),
    )


def make_engine(snapshots, delivery, **kwargs) -> BalanceEngine:
    sink = EventSink(delivery, max_buffer_size=1, flush_interval_seconds=3600)
    context = RecordContext(
        runner_id="test",
        protocol_key=PROTOCOL_KEY,
        chain_id=1,
        chain_name="Ethereum",
        chain_short_name="eth",
    )
    return BalanceEngine(
        protocol_key=PROTOCOL_KEY,
        window_duration_ms=HOUR_MS,
        oracle=make_oracle(),
        sink=sink,
        snapshots=snapshots,
        record_context=context,
        **kwargs,
    )


def deposit_block(height, ts, user, amount, actions=()):
    return Block(
        height=height,
        timestamp_ms=ts,
        balance_deltas=(BalanceDelta(asset_id="tok", amount=amount, to_user=user),),
        actions=tuple(actions),
    )


# ============================================================
# BLOCK PROCESSING
# ============================================================

class TestProcessBlocks:

    @pytest.mark.asyncio
    async def test_batch_produces_exhausted_windows(self, snapshots, delivery):
        engine = make_engine(snapshots, delivery)
        engine.start()

        accepted = await engine.process_batch([
            deposit_block(1, 0, ALICE, 100),
            deposit_block(2, 2 * HOUR_MS + 5, BOB, 5),
        ])

        assert accepted == 2
        assert [r["eventType"] for r in delivery.records] == ["time_weighted_balance"] * 2
        assert [r["trigger"] for r in delivery.records] == [WindowTrigger.EXHAUSTED.value] * 2
        assert delivery.records[-1]["endUnixTimestampMs"] == 2 * HOUR_MS
        assert delivery.records[0]["valueUsd"] == 200.0
        assert not engine.state.has_pending

    @pytest.mark.asyncio
    async def test_block_order_enforced(self, snapshots, delivery):
        engine = make_engine(snapshots, delivery)
        engine.start()
        await engine.process_block(deposit_block(5, 0, ALICE, 1))

        with pytest.raises(BlockOrderError):
            await engine.process_block(deposit_block(5, 10, ALICE, 1))
        with pytest.raises(BlockOrderError):
            await engine.process_block(deposit_block(4, 10, ALICE, 1))

    @pytest.mark.asyncio
    async def test_priceable_action_valued(self, snapshots, delivery):
        engine = make_engine(snapshots, delivery)
        engine.start()
        swap = ActionEvent(
            key="swap",
            user_id=ALICE.upper().replace("0X", "0x"),
            asset_id="tok",
            amount=5,
            priceable=True,
            tx_hash="0xswap",
            log_index=3,
            meta={"pool": "tok/usdc"},
        )
        claim = ActionEvent(key="claim", user_id=ALICE)

        await engine.process_batch([deposit_block(1, 1_000, BOB, 1, actions=[swap, claim])])

        actions = [r for r in delivery.records if r["eventType"] == "action"]
        assert [a["actionKey"] for a in actions] == ["swap", "claim"]
        assert actions[0]["user"] == ALICE
        assert actions[0]["valueUsd"] == 10.0
        assert actions[0]["meta"] == {"pool": "tok/usdc"}
        assert actions[1]["valueUsd"] == 0.0

    @pytest.mark.asyncio
    async def test_action_without_user_skipped(self, snapshots, delivery):
        engine = make_engine(snapshots, delivery)
        engine.start()
        action = ActionEvent(key="burn", user_id="")

        produced = await engine.process_block(deposit_block(1, 0, BOB, 1, actions=[action]))

        assert produced == 0


# ============================================================
# PERSISTENCE
# ============================================================

class TestSnapshotLifecycle:

    @pytest.mark.asyncio
    async def test_end_batch_saves_snapshot(self, snapshots, delivery):
        engine = make_engine(snapshots, delivery)
        engine.start()
        await engine.process_batch([
            deposit_block(1, 0, ALICE, 100),
            deposit_block(2, 2 * HOUR_MS + 5, BOB, 5),
        ])

        loaded = snapshots.load(PROTOCOL_KEY)

        assert loaded.last_height == 2
        assert loaded.cursor.last_interpolated_ts == 2 * HOUR_MS
        assert loaded.ledger == engine.state.ledger

    @pytest.mark.asyncio
    async def test_restart_resumes_from_snapshot(self, snapshots, delivery):
        first = make_engine(snapshots, delivery)
        first.start()
        await first.process_batch([
            deposit_block(1, 0, ALICE, 100),
            deposit_block(2, 2 * HOUR_MS + 5, BOB, 5),
        ])
        await first.shutdown()

        second = make_engine(snapshots, RecordingDelivery())
        second.start()

        assert second.resume_height == 3
        windows_before = len(delivery.records)
        withdraw = Block(
            height=3,
            timestamp_ms=2 * HOUR_MS + 100_000,
            balance_deltas=(BalanceDelta(asset_id="tok", amount=10, from_user=ALICE),),
        )
        await second.process_block(withdraw)

        window = second.state.pending_windows[0]
        assert window.trigger == WindowTrigger.TRANSFER
        assert window.start_ts == 2 * HOUR_MS
        assert window.start_height == 2
        assert window.balance_after == "90"
        assert len(delivery.records) == windows_before

    def test_start_without_snapshot(self, snapshots, delivery, caplog):
        engine = make_engine(snapshots, delivery)

        with caplog.at_level(logging.WARNING):
            engine.start()

        assert engine.resume_height is None
        assert len(engine.state.ledger) == 0
        assert "No snapshot found" in caplog.text

    @pytest.mark.asyncio
    async def test_repeated_snapshot_failures_are_fatal(self, delivery):
        failing = MagicMock(spec=StateSnapshotRepository)
        failing.load.return_value = None
        failing.save.side_effect = QueryError("StateSnapshotRepository", "save", "disk full")
        engine = make_engine(failing, delivery, max_snapshot_failures=2)
        engine.start()

        await engine.process_batch([deposit_block(1, 0, ALICE, 1)])
        with pytest.raises(PersistenceError):
            await engine.process_batch([deposit_block(2, 10, ALICE, 1)])

    @pytest.mark.asyncio
    async def test_successful_save_resets_failure_count(self, delivery):
        error = QueryError("StateSnapshotRepository", "save", "timeout")
        flaky = MagicMock(spec=StateSnapshotRepository)
        flaky.load.return_value = None
        flaky.save.side_effect = [error, None, error, None]
        engine = make_engine(flaky, delivery, max_snapshot_failures=2)
        engine.start()

        for height in range(1, 5):
            await engine.process_batch([deposit_block(height, height * 10, ALICE, 1)])

        assert flaky.save.call_count == 4

    @pytest.mark.asyncio
    async def test_shutdown_flushes_pending_and_closes(self, snapshots, delivery):
        engine = make_engine(snapshots, delivery)
        engine.start()
        await engine.process_block(deposit_block(1, 0, ALICE, 100))
        await engine.process_block(deposit_block(2, 500, ALICE, 1))

        await engine.shutdown()

        assert len(delivery.records) == 1
        assert delivery.records[0]["trigger"] == WindowTrigger.TRANSFER.value
        assert delivery.closed
        assert snapshots.load(PROTOCOL_KEY).last_height == 2
