"""
Tests for indexer configuration and CLI overrides.
"""

import pytest

from balance_engine.models import ChainArch
from core.constants import DAY_MS, HOUR_MS, MINUTE_MS
from orchestrator.cli import build_config, create_parser
from orchestrator.models import IndexerConfig, SinkMode, parse_duration_ms


def valid_config(**overrides) -> IndexerConfig:
    fields = dict(
        protocol_key="eth:erc20:usdc",
        blocks_file="blocks.jsonl",
        assets_file="assets.json",
        sink_mode=SinkMode.STDOUT,
    )
    fields.update(overrides)
    return IndexerConfig(**fields)


# ============================================================
# DURATIONS
# ============================================================

class TestParseDuration:

    @pytest.mark.parametrize("text,expected", [
        ("1h", HOUR_MS),
        ("2.5d", 2 * DAY_MS + DAY_MS // 2),
        ("45m", 45 * MINUTE_MS),
        ("3600s", HOUR_MS),
        ("1000ms", 1000),
        (" 6H ", 6 * HOUR_MS),
    ])
    def test_valid(self, text, expected):
        assert parse_duration_ms(text) == expected

    @pytest.mark.parametrize("text", ["", "1w", "-1h", "0h", "h", "1.h", None])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration_ms(text)


# ============================================================
# VALIDATION
# ============================================================

class TestValidate:

    def test_valid_config(self):
        assert valid_config().validate() == []

    def test_missing_required(self):
        errors = IndexerConfig(sink_mode=SinkMode.STDOUT).validate()

        assert "protocol_key is required" in errors
        assert "assets_file is required" in errors
        assert "blocks_file is required" in errors

    def test_window_below_minimum(self):
        errors = valid_config(window_duration="30m").validate()
        assert any("below the 1h minimum" in e for e in errors)

    def test_unparseable_window(self):
        errors = valid_config(window_duration="soon").validate()
        assert any("Invalid duration" in e for e in errors)

    def test_api_sink_needs_collector(self):
        errors = valid_config(sink_mode=SinkMode.API).validate()

        assert "collector_base_url required for api sink" in errors
        assert "collector_api_key required for api sink" in errors

    def test_limits(self):
        errors = valid_config(
            max_boundaries_per_block=0,
            batch_size=0,
            max_buffer_size=0,
            max_snapshot_failures=0,
            log_format="xml",
        ).validate()

        assert len(errors) == 5


# ============================================================
# ENVIRONMENT
# ============================================================

class TestFromEnv:

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("PROTOCOL_KEY", "sol:spl:usdc")
        monkeypatch.setenv("CHAIN_ARCH", "SOLANA")
        monkeypatch.setenv("WINDOW_DURATION", "1d")
        monkeypatch.setenv("SINK_MODE", "stdout")
        monkeypatch.setenv("SEND_FROM_TIMESTAMP_MS", "1700000000000")
        monkeypatch.setenv("MAX_BOUNDARIES_PER_BLOCK", "")

        config = IndexerConfig.from_env()

        assert config.protocol_key == "sol:spl:usdc"
        assert config.chain_arch == ChainArch.SOLANA
        assert config.window_duration_ms == DAY_MS
        assert config.sink_mode == SinkMode.STDOUT
        assert config.send_from_timestamp_ms == 1_700_000_000_000
        assert config.max_boundaries_per_block is None


# ============================================================
# CLI OVERRIDES
# ============================================================

class TestBuildConfig:

    def test_cli_overrides_base(self):
        args = create_parser().parse_args([
            "--protocol-key", "eth:erc20:weth",
            "--window-duration", "4h",
            "--sink", "api",
            "--chain-arch", "solana",
            "--send-from-ts", "123",
        ])

        config = build_config(args, base=valid_config(batch_size=7))

        assert config.protocol_key == "eth:erc20:weth"
        assert config.window_duration_ms == 4 * HOUR_MS
        assert config.sink_mode == SinkMode.API
        assert config.chain_arch == ChainArch.SOLANA
        assert config.send_from_timestamp_ms == 123
        assert config.batch_size == 7

    def test_unset_options_keep_base(self):
        base = valid_config(window_duration="2h")
        config = build_config(create_parser().parse_args([]), base=base)
        assert config == base
