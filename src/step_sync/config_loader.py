"""Load, validate, and hot-reload the step sync configuration.

The config lives in ``sync_config.yaml`` alongside this module.  It is loaded
once and cached.  Call ``reload_sync_config()`` to re-read it from disk.

Usage::

    from src.step_sync.config_loader import get_sync_config

    config = get_sync_config()
    config.window.max_batch_entries          # 31
    config.retry.fast_retry_delays           # [5 min, 10 min, 15 min]
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import yaml

logger = logging.getLogger("stepper.sync.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class WindowConfig:
    """Sync window and batching settings."""

    backfill_days: int
    max_batch_entries: int


@dataclass
class RetryConfig:
    """Fast-retry budget and external wake interval."""

    fast_retry_delays_minutes: list[int]
    scheduled_interval_minutes: int

    @property
    def fast_retry_delays(self) -> list[timedelta]:
        return [timedelta(minutes=m) for m in self.fast_retry_delays_minutes]

    @property
    def max_fast_retries(self) -> int:
        return len(self.fast_retry_delays_minutes)

    @property
    def scheduled_interval(self) -> timedelta:
        return timedelta(minutes=self.scheduled_interval_minutes)


@dataclass
class TimeoutConfig:
    """Bounded timeouts for every suspension point."""

    provider_seconds: float
    gateway_seconds: float
    run_deadline_seconds: float
    stale_lock_seconds: float

    @property
    def stale_lock_after(self) -> timedelta:
        return timedelta(seconds=self.stale_lock_seconds)


@dataclass
class SyncConfig:
    """Complete, validated sync configuration.

    Attributes:
        version:                    Config schema version string.
        window:                     Window / batching settings.
        retry:                      Retry policy settings.
        timeouts:                   Per-call and per-run timeouts.
        foreground_threshold_hours: Staleness threshold for the foreground check.
    """

    version: str
    window: WindowConfig
    retry: RetryConfig
    timeouts: TimeoutConfig
    foreground_threshold_hours: float = 24.0
    _raw: dict = field(default_factory=dict, repr=False)

    @property
    def staleness_threshold(self) -> timedelta:
        return timedelta(hours=self.foreground_threshold_hours)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError:     If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    Missing sections fall back to defaults; present values must be sane.

    Raises:
        ConfigValidationError: If any value is out of range.
    """
    errors: list[str] = []

    def _positive(section: str, key: str, value: float) -> float:
        if value <= 0:
            errors.append(f"{section}.{key} must be positive, got {value!r}")
        return value

    version = str(raw.get("version", "1.0"))

    # ── Window ──
    w_raw = raw.get("window", {}) or {}
    try:
        window = WindowConfig(
            backfill_days=int(_positive("window", "backfill_days", int(w_raw.get("backfill_days", 30)))),
            max_batch_entries=int(
                _positive("window", "max_batch_entries", int(w_raw.get("max_batch_entries", 31)))
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"window section is invalid: {exc}") from exc

    # ── Retry ──
    r_raw = raw.get("retry", {}) or {}
    delays_raw = r_raw.get("fast_retry_delays_minutes", [5, 10, 15])
    delays: list[int] = []
    if not isinstance(delays_raw, list):
        errors.append("retry.fast_retry_delays_minutes must be a list")
    else:
        for i, d in enumerate(delays_raw):
            try:
                delays.append(int(_positive("retry", f"fast_retry_delays_minutes[{i}]", int(d))))
            except (TypeError, ValueError):
                errors.append(f"retry.fast_retry_delays_minutes[{i}] must be an integer, got {d!r}")
        if delays != sorted(delays):
            logger.warning("Fast retry delays are not ascending: %s", delays)
    try:
        retry = RetryConfig(
            fast_retry_delays_minutes=delays,
            scheduled_interval_minutes=int(
                _positive("retry", "scheduled_interval_minutes", int(r_raw.get("scheduled_interval_minutes", 120)))
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"retry section is invalid: {exc}") from exc

    # ── Timeouts ──
    t_raw = raw.get("timeouts", {}) or {}
    try:
        timeouts = TimeoutConfig(
            provider_seconds=_positive("timeouts", "provider_seconds", float(t_raw.get("provider_seconds", 15))),
            gateway_seconds=_positive("timeouts", "gateway_seconds", float(t_raw.get("gateway_seconds", 15))),
            run_deadline_seconds=_positive(
                "timeouts", "run_deadline_seconds", float(t_raw.get("run_deadline_seconds", 25))
            ),
            stale_lock_seconds=_positive(
                "timeouts", "stale_lock_seconds", float(t_raw.get("stale_lock_seconds", 120))
            ),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"timeouts section is invalid: {exc}") from exc

    # ── Staleness ──
    s_raw = raw.get("staleness", {}) or {}
    try:
        threshold = _positive(
            "staleness", "foreground_threshold_hours", float(s_raw.get("foreground_threshold_hours", 24))
        )
    except (TypeError, ValueError) as exc:
        raise ConfigValidationError(f"staleness section is invalid: {exc}") from exc

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        window=window,
        retry=retry,
        timeouts=timeouts,
        foreground_threshold_hours=threshold,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config() -> SyncConfig:
    """Return the global SyncConfig singleton, loading it on first call."""
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:
                _config = load_sync_config()
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Reload the config from disk and replace the global singleton.

    If validation fails the old config is retained and the error re-raised.
    """
    global _config
    new_config = load_sync_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
