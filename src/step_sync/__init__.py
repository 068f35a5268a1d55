"""Stepper background step synchronization.

Pulls day-level step counts from a platform health source and reconciles
them with the remote store, under background execution limits.

Subpackages:
    providers/ - Health data providers (Apple Health export)

Core modules:
    base          - Data models (StepDayEntry, SyncState) and collaborator ABCs
    errors        - Failure taxonomy
    config_loader - Load/validate/hot-reload sync_config.yaml
    state_store   - Atomic local persistence of SyncState
    window        - Sync window computation and chunking
    validation    - Client-side entry validation
    dedup         - Entry deduplication and upsert SQL
    backoff       - Retry/backoff policy
    gateway       - HTTP client for the sync endpoint
    orchestrator  - One sync attempt per invocation
    runner        - Fast retries, foreground staleness check, periodic loop
    staleness     - Read-only status for display
"""

from src.step_sync.backoff import RetryDecision, next_retry
from src.step_sync.base import (
    FailureKind,
    HealthDataProvider,
    RunStatus,
    StepDayEntry,
    SyncBatchResult,
    SyncGateway,
    SyncState,
    SyncStatus,
)
from src.step_sync.config_loader import SyncConfig, get_sync_config
from src.step_sync.gateway import HttpSyncGateway
from src.step_sync.orchestrator import SyncOrchestrator, SyncSummary
from src.step_sync.runner import SyncRunner, build_sync_runner, disable_health_tracking
from src.step_sync.staleness import SyncStatusView
from src.step_sync.state_store import (
    InMemorySyncStateStore,
    JsonFileSyncStateStore,
    SyncStateStore,
)

__all__ = [
    "StepDayEntry",
    "SyncState",
    "SyncStatus",
    "RunStatus",
    "FailureKind",
    "SyncBatchResult",
    "HealthDataProvider",
    "SyncGateway",
    "SyncConfig",
    "get_sync_config",
    "RetryDecision",
    "next_retry",
    "SyncStateStore",
    "InMemorySyncStateStore",
    "JsonFileSyncStateStore",
    "SyncOrchestrator",
    "SyncSummary",
    "SyncRunner",
    "build_sync_runner",
    "disable_health_tracking",
    "SyncStatusView",
    "HttpSyncGateway",
]
