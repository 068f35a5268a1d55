"""Exception taxonomy for step synchronization.

Every failure the orchestrator can observe maps onto one of these classes.
The ``kind`` attribute is what gets persisted in ``SyncState.last_failure_kind``
and what the retry policy keys on.
"""

from __future__ import annotations

from datetime import date


class SyncError(Exception):
    """Base class for all sync failures."""

    kind: str = "transient"


class TransientSyncError(SyncError):
    """Network, timeout or server-side (5xx / 429) failure. Eligible for fast retry."""

    kind = "transient"


class PermissionRevokedError(SyncError):
    """Health data access was revoked by the user.

    Retrying cannot succeed until access is re-granted in the foreground, so
    this bypasses the fast-retry budget entirely.
    """

    kind = "permission"


class GatewayAuthError(SyncError):
    """The sync endpoint rejected our credentials (401 / 403)."""

    kind = "unauthorized"


class GatewayRejectedError(SyncError):
    """The sync endpoint rejected the batch as a whole (non-retryable 4xx)."""

    kind = "partial"


class PartialBatchError(SyncError):
    """The gateway response does not confirm every entry in the chunk.

    Attributes:
        errors: Per-entry error messages reported by the remote side.
    """

    kind = "partial"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class SyncAbortedError(SyncError):
    """The run hit its deadline or the platform signalled window expiry."""

    kind = "aborted"


class EntryValidationError(ValueError):
    """A single day entry failed validation and must be dropped.

    Attributes:
        day:    The calendar day of the offending entry (if known).
        reason: Human-readable reason, logged when the entry is dropped.
    """

    def __init__(self, reason: str, day: date | None = None) -> None:
        super().__init__(f"{day.isoformat() if day else 'unknown day'}: {reason}")
        self.day = day
        self.reason = reason
