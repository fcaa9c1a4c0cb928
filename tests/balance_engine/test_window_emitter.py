"""
Tests for the Window Emitter.

============================================================
PURPOSE
============================================================
- TRANSFER windows close on later balance changes
- First-seen pairs anchor without a window
- Same-timestamp changes coalesce
- Underflow clamps, negative amounts and stale events are
  logged and never raise

============================================================
"""

import logging
from decimal import Decimal

import pytest

from balance_engine.ledger import ActiveBalanceLedger
from balance_engine.models import BalanceDelta, ChainArch, WindowTrigger
from balance_engine.window_emitter import WindowEmitter, normalize_user
from core.backoff import BackoffPolicy
from core.constants import EVM_ZERO_ADDRESS, SOLANA_SYSTEM_PROGRAM
from core.rate_limiter import RateLimiter
from pricing.cache import PriceCache
from pricing.models import AssetConfig, AssetRegistry
from pricing.oracle import PriceOracle
from pricing.providers.static import StaticPriceSource


ALICE = "0x00000000000000000000000000000000000a11ce"
BOB = "0x0000000000000000000000000000000000000b0b"


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def oracle():
    source = StaticPriceSource({"tok-feed": {"1970-01-01": "2"}})
    registry = AssetRegistry([
        AssetConfig(asset_id="tok", decimals=0, price_feed_id="tok-feed"),
        AssetConfig(asset_id="nofeed", decimals=0, price_feed_id="missing-feed"),
    ])
    return PriceOracle(
        source=source,
        cache=PriceCache(),
        registry=registry,
        backoff=BackoffPolicy.no_delay(),
        rate_limiter=RateLimiter(0),
    )


@pytest.fixture
def ledger():
    return ActiveBalanceLedger()


@pytest.fixture
def emitter(ledger, oracle):
    return WindowEmitter(ledger, oracle)


def deposit(user, amount, asset="tok", tx="0xtx"):
    return BalanceDelta(asset_id=asset, amount=amount, to_user=user, tx_hash=tx)


def withdraw(user, amount, asset="tok", tx="0xtx"):
    return BalanceDelta(asset_id=asset, amount=amount, from_user=user, tx_hash=tx)


# ============================================================
# ADDRESS NORMALIZATION
# ============================================================

class TestNormalizeUser:

    def test_evm_lowercased(self):
        assert normalize_user("0xABCdef", ChainArch.EVM) == "0xabcdef"

    def test_solana_case_preserved(self):
        key = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"
        assert normalize_user(key, ChainArch.SOLANA) == key

    def test_null_sentinels(self):
        assert normalize_user(None, ChainArch.EVM) is None
        assert normalize_user("", ChainArch.EVM) is None
        assert normalize_user(EVM_ZERO_ADDRESS, ChainArch.EVM) is None
        assert normalize_user(SOLANA_SYSTEM_PROGRAM, ChainArch.SOLANA) is None


# ============================================================
# TRANSFER WINDOWS
# ============================================================

class TestTransferWindows:

    @pytest.mark.asyncio
    async def test_first_deposit_anchors_without_window(self, emitter, ledger):
        windows = await emitter.apply(deposit(ALICE, 100), height=1, timestamp_ms=0)

        assert windows == []
        entry = ledger.get("tok", ALICE)
        assert entry.balance == 100
        assert entry.updated_at_ts == 0
        assert entry.updated_at_height == 1

    @pytest.mark.asyncio
    async def test_withdraw_closes_window(self, emitter, ledger):
        await emitter.apply(deposit(ALICE, 100), height=1, timestamp_ms=0)
        windows = await emitter.apply(
            withdraw(ALICE, 40, tx="0xwd"), height=5, timestamp_ms=1_000_000
        )

        assert len(windows) == 1
        window = windows[0]
        assert window.trigger == WindowTrigger.TRANSFER
        assert (window.start_ts, window.end_ts) == (0, 1_000_000)
        assert window.window_duration_ms == 1_000_000
        assert (window.start_height, window.end_height) == (1, 5)
        assert window.balance_before == "100"
        assert window.balance_after == "60"
        assert window.tx_hash == "0xwd"
        assert window.token_price == Decimal("2")
        assert window.value_usd == Decimal("200")
        assert ledger.get("tok", ALICE).balance == 60

    @pytest.mark.asyncio
    async def test_transfer_closes_both_sides(self, emitter):
        await emitter.apply(deposit(ALICE, 100), height=1, timestamp_ms=0)
        await emitter.apply(deposit(BOB, 10), height=1, timestamp_ms=0)

        windows = await emitter.apply(
            BalanceDelta(asset_id="tok", amount=30, from_user=ALICE, to_user=BOB),
            height=2,
            timestamp_ms=500,
        )

        by_user = {w.user_id: w for w in windows}
        assert by_user[ALICE].balance_after == "70"
        assert by_user[BOB].balance_before == "10"
        assert by_user[BOB].balance_after == "40"

    @pytest.mark.asyncio
    async def test_same_timestamp_coalesces(self, emitter, ledger):
        await emitter.apply(deposit(ALICE, 100), height=1, timestamp_ms=0)
        first = await emitter.apply(deposit(ALICE, 5), height=2, timestamp_ms=1_000)
        second = await emitter.apply(deposit(ALICE, 5), height=2, timestamp_ms=1_000)

        assert len(first) == 1
        assert second == []
        assert ledger.get("tok", ALICE).balance == 110

    @pytest.mark.asyncio
    async def test_windows_are_contiguous(self, emitter):
        timestamps = [0, 700, 1_500, 9_000]
        windows = []
        for height, ts in enumerate(timestamps, start=1):
            windows += await emitter.apply(deposit(ALICE, 1), height=height, timestamp_ms=ts)

        assert [(w.start_ts, w.end_ts) for w in windows] == [
            (0, 700), (700, 1_500), (1_500, 9_000),
        ]
        assert all(w.start_ts < w.end_ts for w in windows)

    @pytest.mark.asyncio
    async def test_mixed_case_addresses_share_pair(self, emitter, ledger):
        await emitter.apply(deposit(ALICE.upper().replace("0X", "0x"), 100), 1, 0)
        await emitter.apply(withdraw(ALICE, 100), 2, 10)

        assert len(ledger) == 1
        assert ledger.get("tok", ALICE).balance == 0

    @pytest.mark.asyncio
    async def test_mint_from_zero_address(self, emitter, ledger):
        windows = await emitter.apply(
            BalanceDelta(asset_id="tok", amount=7, from_user=EVM_ZERO_ADDRESS, to_user=BOB),
            height=1,
            timestamp_ms=0,
        )

        assert windows == []
        assert ("tok", EVM_ZERO_ADDRESS) not in ledger
        assert ledger.get("tok", BOB).balance == 7

    @pytest.mark.asyncio
    async def test_missing_price_values_at_zero(self, emitter):
        await emitter.apply(deposit(ALICE, 100, asset="nofeed"), 1, 0)
        windows = await emitter.apply(withdraw(ALICE, 1, asset="nofeed"), 2, 1_000)

        assert len(windows) == 1
        assert windows[0].value_usd == Decimal(0)


# ============================================================
# DATA INTEGRITY
# ============================================================

class TestDataIntegrity:

    @pytest.mark.asyncio
    async def test_underflow_clamps_to_zero(self, emitter, ledger, caplog):
        await emitter.apply(deposit(ALICE, 100), 1, 0)

        with caplog.at_level(logging.WARNING):
            windows = await emitter.apply(withdraw(ALICE, 150), 2, 1_000)

        assert windows[0].balance_before == "100"
        assert windows[0].balance_after == "0"
        assert ledger.get("tok", ALICE).balance == 0
        assert emitter.anomaly_count == 1
        assert "underflow" in caplog.text

    @pytest.mark.asyncio
    async def test_negative_amount_skipped(self, emitter, ledger, caplog):
        with caplog.at_level(logging.WARNING):
            windows = await emitter.apply(deposit(ALICE, -5), 1, 0)

        assert windows == []
        assert len(ledger) == 0
        assert emitter.anomaly_count == 1

    @pytest.mark.asyncio
    async def test_out_of_order_event_keeps_timestamp(self, emitter, ledger):
        await emitter.apply(deposit(ALICE, 100), 1, 5_000)

        windows = await emitter.apply(deposit(ALICE, 10), 2, 4_000)

        assert windows == []
        entry = ledger.get("tok", ALICE)
        assert entry.balance == 110
        assert entry.updated_at_ts == 5_000
        assert emitter.anomaly_count == 1
