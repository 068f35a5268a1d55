"""Shared fixtures and fakes for step sync tests."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from typing import Callable
from uuid import UUID

import pytest

from src.step_sync.base import (
    HealthDataProvider,
    StepDayEntry,
    SyncBatchResult,
    SyncGateway,
    SyncState,
    SyncStatus,
)
from src.step_sync.config_loader import (
    RetryConfig,
    SyncConfig,
    TimeoutConfig,
    WindowConfig,
    load_sync_config,
)
from src.step_sync.errors import SyncError
from src.step_sync.state_store import InMemorySyncStateStore

TEST_DATE = date(2026, 2, 23)
TEST_NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)


def make_entries(
    count: int,
    end: date = TEST_DATE,
    source: str = "healthkit",
    steps: int = 8000,
) -> list[StepDayEntry]:
    """``count`` consecutive days ending on ``end``, oldest first."""
    return [
        StepDayEntry(
            date=end - timedelta(days=count - 1 - i),
            step_count=steps + i,
            source=source,
            distance_meters=6000.0,
        )
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeProvider(HealthDataProvider):
    """Returns a fixed list of entries, optionally restricted to the range asked for."""

    SOURCE_ID = "healthkit"

    def __init__(
        self,
        entries: list[StepDayEntry] | None = None,
        error: Exception | None = None,
        respect_range: bool = False,
    ) -> None:
        self.entries = entries or []
        self.error = error
        self.respect_range = respect_range
        self.calls: list[tuple[date, date]] = []

    async def get_step_data(self, start_date: date, end_date: date) -> list[StepDayEntry]:
        self.calls.append((start_date, end_date))
        if self.error is not None:
            raise self.error
        if self.respect_range:
            return [e for e in self.entries if start_date <= e.date <= end_date]
        # The full list is returned once; later ranges get nothing.
        if len(self.calls) > 1:
            return []
        return list(self.entries)


class FakeGateway(SyncGateway):
    """Records every batch and confirms it, unless told to fail a given call.

    Args:
        failures: Maps 1-based call number to the exception raised on that call.
        hang_on:  1-based call numbers that block until cancelled.
    """

    def __init__(
        self,
        failures: dict[int, Exception] | None = None,
        hang_on: set[int] | None = None,
        on_call: Callable[[int], None] | None = None,
    ) -> None:
        self.failures = failures or {}
        self.hang_on = hang_on or set()
        self.on_call = on_call
        self.batches: list[list[StepDayEntry]] = []
        self.started = asyncio.Event()

    async def sync_batch(self, entries: list[StepDayEntry]) -> SyncBatchResult:
        self.batches.append(list(entries))
        call = len(self.batches)
        self.started.set()
        if self.on_call is not None:
            self.on_call(call)
        if call in self.hang_on:
            await asyncio.Event().wait()
        if call in self.failures:
            raise self.failures[call]
        return SyncBatchResult(created=len(entries), updated=0, total=len(entries))


class AlwaysFailingGateway(SyncGateway):
    def __init__(self, error: SyncError) -> None:
        self.error = error
        self.calls = 0

    async def sync_batch(self, entries: list[StepDayEntry]) -> SyncBatchResult:
        self.calls += 1
        raise self.error


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: TEST_NOW


@pytest.fixture
def sync_config() -> SyncConfig:
    """Bundled defaults with a short run deadline so abort tests stay fast."""
    return SyncConfig(
        version="test",
        window=WindowConfig(backfill_days=30, max_batch_entries=31),
        retry=RetryConfig(fast_retry_delays_minutes=[5, 10, 15], scheduled_interval_minutes=120),
        timeouts=TimeoutConfig(
            provider_seconds=1.0,
            gateway_seconds=1.0,
            run_deadline_seconds=2.0,
            stale_lock_seconds=120.0,
        ),
        foreground_threshold_hours=24.0,
    )


@pytest.fixture
def bundled_config() -> SyncConfig:
    return load_sync_config()


@pytest.fixture
def store() -> InMemorySyncStateStore:
    return InMemorySyncStateStore()


@pytest.fixture
def synced_yesterday() -> SyncState:
    """State after a clean sync 24 hours ago."""
    return SyncState(
        last_sync_timestamp=TEST_NOW - timedelta(days=1),
        last_sync_status=SyncStatus.SUCCESS,
    )


# ---------------------------------------------------------------------------
# Server-side fakes
# ---------------------------------------------------------------------------

USER_ID = UUID("12345678-1234-5678-1234-567812345678")


class FakeConnection:
    """Stands in for an asyncpg connection over step_entries, keyed on (user_id, date, source)."""

    def __init__(self) -> None:
        self.rows: dict[tuple, dict] = {}
        self.queries: list[str] = []

    async def fetchval(self, query: str, *args):
        self.queries.append(query)
        user_id, day, source, step_count, distance, _recorded_at = args
        key = (user_id, day, source)
        inserted = key not in self.rows
        self.rows[key] = {"step_count": step_count, "distance_meters": distance}
        return inserted

    async def execute(self, query: str, *args) -> str:
        self.queries.append(query)
        user_id, source = args
        doomed = [k for k in self.rows if k[0] == user_id and k[2] == source]
        for key in doomed:
            del self.rows[key]
        return f"DELETE {len(doomed)}"
