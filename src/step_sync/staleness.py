"""Read-only sync status for display ("Last synced: 2 hours ago").

UI code and the optional stale-sync notifier read through this module; they
never touch SyncState directly and never write it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from src.step_sync.base import FailureKind, SyncState, SyncStatus
from src.step_sync.config_loader import get_sync_config
from src.step_sync.state_store import SyncStateStore


def format_last_synced(last_sync: datetime | None, now: datetime) -> str:
    """Human-readable freshness label.

    Examples: "Never synced", "Last synced: just now",
    "Last synced: 1 minute ago", "Last synced: 2 hours ago".
    """
    if last_sync is None:
        return "Never synced"

    elapsed = now - last_sync
    if elapsed < timedelta(minutes=1):
        return "Last synced: just now"

    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        count = int(elapsed.total_seconds() // size)
        if count >= 1:
            return f"Last synced: {count} {unit}{'' if count == 1 else 's'} ago"
    return "Last synced: just now"


@dataclass(frozen=True)
class SyncStatusSnapshot:
    """Point-in-time copy of the user-visible parts of SyncState."""

    last_sync_timestamp: datetime | None
    last_sync_status: SyncStatus
    pending_day_count: int
    last_failure_kind: FailureKind | None
    in_progress: bool

    @classmethod
    def from_state(cls, state: SyncState) -> "SyncStatusSnapshot":
        return cls(
            last_sync_timestamp=state.last_sync_timestamp,
            last_sync_status=state.last_sync_status,
            pending_day_count=len(state.pending_days),
            last_failure_kind=state.last_failure_kind,
            in_progress=state.in_progress_since is not None,
        )

    @property
    def needs_permission(self) -> bool:
        """True when the user must re-grant health data access in the foreground."""
        return self.last_failure_kind == FailureKind.PERMISSION

    def is_stale(self, now: datetime, threshold: timedelta) -> bool:
        if self.last_sync_timestamp is None:
            return True
        return now - self.last_sync_timestamp > threshold

    def describe(self, now: datetime) -> str:
        return format_last_synced(self.last_sync_timestamp, now)


class SyncStatusView:
    """Staleness signal exposed to the UI layer.

    Args:
        store:     The state store (read only).
        clock:     Returns the current aware datetime.
        threshold: Staleness threshold. Defaults to the configured 24 hours.
    """

    def __init__(
        self,
        store: SyncStateStore,
        clock: Callable[[], datetime],
        threshold: timedelta | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._threshold = threshold or get_sync_config().staleness_threshold

    async def snapshot(self) -> SyncStatusSnapshot:
        return SyncStatusSnapshot.from_state(await self._store.read())

    async def is_stale(self) -> bool:
        return (await self.snapshot()).is_stale(self._clock(), self._threshold)

    async def describe(self) -> str:
        return (await self.snapshot()).describe(self._clock())
