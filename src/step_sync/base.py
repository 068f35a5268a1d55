"""Canonical data models and collaborator interfaces for step synchronization.

Every health data provider returns ``StepDayEntry`` objects and every sync
gateway accepts them.  ``SyncState`` is the single persisted record the
orchestrator reads at the start of a run and writes at the end.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger("stepper.sync")

#: Hard platform ceiling on a single day's step count.
MAX_STEP_COUNT = 200_000

#: Maximum length of a source identifier.
MAX_SOURCE_LENGTH = 100


class SyncStatus(str, Enum):
    """Outcome of the most recent sync attempt, as persisted in SyncState."""

    NEVER = "never"
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Outcome of a single ``run_sync()`` call, as returned to the caller."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    DISABLED = "disabled"


class FailureKind(str, Enum):
    """Failure categories that drive the retry policy."""

    TRANSIENT = "transient"
    PERMISSION = "permission"
    PARTIAL = "partial"
    ABORTED = "aborted"
    UNAUTHORIZED = "unauthorized"


# ---------------------------------------------------------------------------
# Day entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StepDayEntry:
    """One day's aggregate step data for one source.

    Attributes:
        date:            Calendar day (user's local date).
        step_count:      Total steps, 0–200000.
        source:          Source identifier ('healthkit', 'googlefit', ...).
        distance_meters: Optional distance walked/run in meters.
    """

    date: date
    step_count: int
    source: str
    distance_meters: float | None = None

    @property
    def key(self) -> tuple[date, str]:
        """Reconciliation key (the user is implied by the authenticated caller)."""
        return (self.date, self.source)

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape the sync endpoint accepts."""
        payload: dict[str, Any] = {
            "date": self.date.isoformat(),
            "stepCount": self.step_count,
            "source": self.source,
        }
        if self.distance_meters is not None:
            payload["distanceMeters"] = self.distance_meters
        return payload


@dataclass
class SyncBatchResult:
    """Result of one gateway call. Transient, never persisted."""

    created: int = 0
    updated: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)


# ---------------------------------------------------------------------------
# Persisted sync state
# ---------------------------------------------------------------------------


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.warning("Discarding unparseable timestamp in sync state: %r", value)
        return None


@dataclass
class SyncState:
    """Persistent sync state for one installation.

    Attributes:
        last_sync_timestamp: When the last successful sync completed (None = never).
        last_sync_status:    Outcome of the last attempt.
        failed_attempts:     Consecutive failed runs since the last success.
        pending_days:        Days that failed to sync and must be retried.
        in_progress_since:   In-progress marker; set while a run is in flight.
        last_failure_kind:   Failure category of the last failed run.
        last_error:          Short message describing the last failure.
    """

    last_sync_timestamp: datetime | None = None
    last_sync_status: SyncStatus = SyncStatus.NEVER
    failed_attempts: int = 0
    pending_days: set[date] = field(default_factory=set)
    in_progress_since: datetime | None = None
    last_failure_kind: FailureKind | None = None
    last_error: str | None = None

    def to_json(self) -> dict:
        return {
            "last_sync_timestamp": (
                self.last_sync_timestamp.isoformat() if self.last_sync_timestamp else None
            ),
            "last_sync_status": self.last_sync_status.value,
            "failed_attempts": self.failed_attempts,
            "pending_days": sorted(d.isoformat() for d in self.pending_days),
            "in_progress_since": (
                self.in_progress_since.isoformat() if self.in_progress_since else None
            ),
            "last_failure_kind": (
                self.last_failure_kind.value if self.last_failure_kind else None
            ),
            "last_error": self.last_error,
        }

    @classmethod
    def from_json(cls, data: dict) -> "SyncState":
        state = cls()
        state.last_sync_timestamp = _parse_timestamp(data.get("last_sync_timestamp"))
        state.in_progress_since = _parse_timestamp(data.get("in_progress_since"))
        try:
            state.last_sync_status = SyncStatus(data.get("last_sync_status", "never"))
        except ValueError:
            state.last_sync_status = SyncStatus.NEVER
        state.failed_attempts = max(0, int(data.get("failed_attempts") or 0))
        for raw_day in data.get("pending_days", []):
            try:
                state.pending_days.add(date.fromisoformat(raw_day))
            except (TypeError, ValueError):
                logger.warning("Discarding unparseable pending day: %r", raw_day)
        if kind := data.get("last_failure_kind"):
            try:
                state.last_failure_kind = FailureKind(kind)
            except ValueError:
                pass
        state.last_error = data.get("last_error")
        return state


# ---------------------------------------------------------------------------
# Collaborator interfaces
# ---------------------------------------------------------------------------


class HealthDataProvider(ABC):
    """Reads day-level step data from a platform health backend.

    Implementations return only the days they have data for; a missing day
    is simply absent from the result, never a zero entry.
    """

    #: Source identifier stamped on every entry this provider returns.
    SOURCE_ID: str = "unknown"

    @abstractmethod
    async def get_step_data(self, start_date: date, end_date: date) -> list[StepDayEntry]:
        """Return per-day step data for ``start_date``..``end_date`` inclusive.

        Raises:
            PermissionRevokedError: Health data access is not granted.
            TransientSyncError:     The data source is temporarily unavailable.
        """


class SyncGateway(ABC):
    """Pushes a batch of day entries to the remote store."""

    @abstractmethod
    async def sync_batch(self, entries: list[StepDayEntry]) -> SyncBatchResult:
        """Upsert ``entries`` keyed on (user, date, source).

        Raises:
            TransientSyncError:   Network failure, timeout, 429 or 5xx.
            GatewayAuthError:     Credentials rejected.
            GatewayRejectedError: Batch rejected as a whole.
        """
