"""Tests for sync_config.yaml loading and validation."""

from __future__ import annotations

import textwrap
from datetime import timedelta
from pathlib import Path

import pytest

from src.step_sync.config_loader import (
    ConfigValidationError,
    SyncConfig,
    _validate_and_build,
    load_sync_config,
    reload_sync_config,
)


class TestConfigLoading:
    def test_load_default_config(self, bundled_config: SyncConfig) -> None:
        """The bundled sync_config.yaml loads without errors."""
        assert bundled_config.version == "1.0"

    def test_window_defaults(self, bundled_config: SyncConfig) -> None:
        assert bundled_config.window.backfill_days == 30
        assert bundled_config.window.max_batch_entries == 31

    def test_retry_schedule(self, bundled_config: SyncConfig) -> None:
        assert bundled_config.retry.fast_retry_delays == [
            timedelta(minutes=5),
            timedelta(minutes=10),
            timedelta(minutes=15),
        ]
        assert bundled_config.retry.max_fast_retries == 3

    def test_timeouts(self, bundled_config: SyncConfig) -> None:
        t = bundled_config.timeouts
        assert t.stale_lock_after == timedelta(minutes=2)
        assert t.run_deadline_seconds <= 30
        assert t.gateway_seconds < t.run_deadline_seconds

    def test_staleness_threshold(self, bundled_config: SyncConfig) -> None:
        assert bundled_config.staleness_threshold == timedelta(hours=24)


class TestConfigValidation:
    def test_empty_config_uses_defaults(self) -> None:
        config = _validate_and_build({})
        assert config.window.max_batch_entries == 31
        assert config.retry.fast_retry_delays_minutes == [5, 10, 15]

    def test_non_positive_value_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="backfill_days"):
            _validate_and_build({"window": {"backfill_days": 0}})

    def test_delays_must_be_a_list(self) -> None:
        with pytest.raises(ConfigValidationError, match="must be a list"):
            _validate_and_build({"retry": {"fast_retry_delays_minutes": 5}})

    def test_non_numeric_delay_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="integer"):
            _validate_and_build({"retry": {"fast_retry_delays_minutes": [5, "soon"]}})

    def test_non_numeric_timeout_raises(self) -> None:
        with pytest.raises(ConfigValidationError, match="timeouts"):
            _validate_and_build({"timeouts": {"gateway_seconds": "fast"}})


class TestConfigFiles:
    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_sync_config(tmp_path / "nope.yaml")

    def test_malformed_yaml_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("window: [unclosed")
        with pytest.raises(ConfigValidationError, match="YAML parse error"):
            load_sync_config(path)

    def test_reload_replaces_singleton(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text(
            textwrap.dedent(
                """
                version: "2.0"
                window:
                  backfill_days: 7
                  max_batch_entries: 10
                """
            )
        )
        try:
            config = reload_sync_config(path)
            assert config.version == "2.0"
            assert config.window.backfill_days == 7
        finally:
            reload_sync_config()
