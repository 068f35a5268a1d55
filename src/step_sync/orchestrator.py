"""Background step sync orchestrator.

Runs one sync attempt per invocation, whoever the caller is (OS background
wake, "sync now" button, foreground staleness check, test harness):

1. Bail out if tracking is disabled.
2. Acquire the in-progress marker in SyncState (stale markers are taken over).
3. Compute the window: cold-start backfill, or last sync → today plus pending days.
4. Fetch day entries from the health data provider, validate, dedupe.
5. Push them to the gateway in sequential chunks of ≤31, newest first.
6. Persist the outcome and release the marker, unless the record was reset
   or taken over meanwhile, and attach the retry decision.

A run never raises for sync failures; every failure ends up in SyncState
and in the returned SyncSummary.  Only ``asyncio.CancelledError`` escapes,
after the partial progress has been written.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Awaitable, Callable

from src.step_sync.backoff import NO_RETRY, RetryDecision, next_retry
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
from src.step_sync.dedup import dedupe_entries
from src.step_sync.errors import (
    GatewayAuthError,
    PartialBatchError,
    SyncAbortedError,
    SyncError,
    TransientSyncError,
)
from src.step_sync.state_store import SyncStateStore
from src.step_sync.validation import filter_valid
from src.step_sync.window import compute_target_days, contiguous_ranges, partition_chunks

logger = logging.getLogger("stepper.sync.orchestrator")


def local_now() -> datetime:
    """Current time as a timezone-aware local datetime."""
    return datetime.now().astimezone()


async def _always_enabled() -> bool:
    return True


@dataclass
class SyncSummary:
    """Outcome of one ``run_sync()`` call.

    Attributes:
        status:              success / failed / skipped / disabled.
        days_attempted:      Valid day entries that were queued for sending.
        days_succeeded:      Day entries confirmed by the gateway.
        days_dropped:        Entries dropped by validation.
        chunks:              Gateway calls made.
        created:             Entries the remote side created.
        updated:             Entries the remote side updated in place.
        failure_kind:        Category of the first failure, if any.
        errors:              Failure messages in the order they occurred.
        retry:               What the caller should do next.
        last_sync_timestamp: Persisted timestamp after the run.
    """

    status: RunStatus
    days_attempted: int = 0
    days_succeeded: int = 0
    days_dropped: int = 0
    chunks: int = 0
    created: int = 0
    updated: int = 0
    failure_kind: FailureKind | None = None
    errors: list[str] = field(default_factory=list)
    retry: RetryDecision = NO_RETRY
    last_sync_timestamp: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS


@dataclass
class _RunContext:
    """Mutable working set for one run, passed through the call graph."""

    state: SyncState
    now: datetime
    summary: SyncSummary = field(default_factory=lambda: SyncSummary(status=RunStatus.SUCCESS))
    entries: list[StepDayEntry] = field(default_factory=list)
    confirmed: set[tuple[date, str]] = field(default_factory=set)
    resolved_days: set[date] = field(default_factory=set)
    advance_to: date | None = None

    @property
    def today(self) -> date:
        return self.now.date()

    @property
    def failed(self) -> bool:
        return self.summary.failure_kind is not None

    def record_failure(self, exc: BaseException) -> None:
        kind = FailureKind(getattr(exc, "kind", FailureKind.TRANSIENT.value))
        if self.summary.failure_kind is None:
            self.summary.failure_kind = kind
        self.summary.errors.append(str(exc) or exc.__class__.__name__)


class SyncOrchestrator:
    """Coordinate one background sync attempt.

    Usage::

        orchestrator = SyncOrchestrator(
            store=JsonFileSyncStateStore(settings.sync_state_path),
            provider=AppleHealthExportProvider(settings.health_export_path),
            gateway=HttpSyncGateway(settings.api_base_url, token),
            is_tracking_enabled=preferences.is_step_tracking_enabled,
        )
        summary = await orchestrator.run_sync()

    Args:
        store:               SyncState persistence.
        provider:            Health data source.
        gateway:             Remote upsert endpoint.
        is_tracking_enabled: Async callable owned by the settings collaborator.
        config:              Sync tunables. Defaults to the bundled config.
        clock:               Returns the current aware datetime (injectable for tests).
    """

    def __init__(
        self,
        store: SyncStateStore,
        provider: HealthDataProvider,
        gateway: SyncGateway,
        is_tracking_enabled: Callable[[], Awaitable[bool]] | None = None,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._provider = provider
        self._gateway = gateway
        self._is_tracking_enabled = is_tracking_enabled or _always_enabled
        self._config = config or get_sync_config()
        self._clock = clock or local_now

    @property
    def config(self) -> SyncConfig:
        return self._config

    async def run_sync(self, expiry_signal: asyncio.Event | None = None) -> SyncSummary:
        """Run one sync attempt.

        Args:
            expiry_signal: Set by the platform when the background execution
                           window is about to close.  In-flight work is
                           cancelled and completed chunks are kept.

        Returns:
            SyncSummary describing the attempt.
        """
        if not await self._is_tracking_enabled():
            logger.debug("Step tracking disabled; skipping sync")
            return SyncSummary(status=RunStatus.DISABLED)

        now = self._clock()
        state, acquired = await self._acquire_marker(now)
        if not acquired:
            logger.info("Sync already in progress since %s; skipping", state.in_progress_since)
            return SyncSummary(
                status=RunStatus.SKIPPED,
                last_sync_timestamp=state.last_sync_timestamp,
            )

        run = _RunContext(state=state, now=now)
        try:
            await self._run_bounded(run, expiry_signal)
        except asyncio.CancelledError:
            run.record_failure(SyncAbortedError("sync cancelled by caller"))
            raise
        finally:
            await self._finalize(run)
        return run.summary

    # ------------------------------------------------------------------
    # Marker
    # ------------------------------------------------------------------

    async def _acquire_marker(self, now: datetime) -> tuple[SyncState, bool]:
        stale_after = self._config.timeouts.stale_lock_after
        acquired = False

        def _mark(state: SyncState) -> bool:
            nonlocal acquired
            if state.in_progress_since is not None:
                age = now - state.in_progress_since
                if timedelta(0) <= age < stale_after:
                    return False
                logger.warning(
                    "Taking over abandoned sync marker from %s (age %s)",
                    state.in_progress_since, age,
                )
            state.in_progress_since = now
            state.last_sync_status = SyncStatus.PENDING
            acquired = True
            return True

        state = await self._store.update(_mark)
        return state, acquired

    # ------------------------------------------------------------------
    # Deadline / expiry handling
    # ------------------------------------------------------------------

    async def _run_bounded(self, run: _RunContext, expiry_signal: asyncio.Event | None) -> None:
        work = asyncio.ensure_future(self._execute(run))
        waiters: set[asyncio.Future] = {work}
        expiry_waiter: asyncio.Future | None = None
        if expiry_signal is not None:
            expiry_waiter = asyncio.ensure_future(expiry_signal.wait())
            waiters.add(expiry_waiter)

        try:
            await asyncio.wait(
                waiters,
                timeout=self._config.timeouts.run_deadline_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if expiry_waiter is not None:
                expiry_waiter.cancel()
            if not work.done():
                work.cancel()
                try:
                    await work
                except asyncio.CancelledError:
                    # Our own cancellation arrived while draining the work.
                    task = asyncio.current_task()
                    if task is not None and task.cancelling():
                        raise

        if work.cancelled():
            if expiry_signal is not None and expiry_signal.is_set():
                reason = "background execution window expired"
            else:
                reason = f"sync exceeded {self._config.timeouts.run_deadline_seconds}s deadline"
            logger.warning("Aborting sync: %s", reason)
            run.record_failure(SyncAbortedError(reason))
        elif (exc := work.exception()) is not None:
            logger.error("Unexpected sync failure", exc_info=exc)
            run.record_failure(exc)

    # ------------------------------------------------------------------
    # Work
    # ------------------------------------------------------------------

    async def _execute(self, run: _RunContext) -> None:
        cfg = self._config
        target_days = compute_target_days(run.state, run.today, cfg.window.backfill_days)
        logger.info(
            "Sync window: %d day(s) (%d pending) for source %s",
            len(target_days), len(run.state.pending_days), self._provider.SOURCE_ID,
        )

        try:
            raw = await self._fetch(target_days)
        except SyncError as exc:
            logger.warning("Health data fetch failed (%s): %s", exc.kind, exc)
            run.record_failure(exc)
            return

        valid, dropped = filter_valid(dedupe_entries(raw), run.today)
        run.entries = valid
        run.summary.days_dropped = len(dropped)
        run.summary.days_attempted = len(valid)
        # Days with no data (or only invalid data) are settled; they never retry.
        run.resolved_days = target_days - {e.date for e in valid}

        if not valid:
            logger.info("No new step data; nothing to send")
            return

        chunks = partition_chunks(valid, cfg.window.max_batch_entries)
        prefix_ok = True
        for index, chunk in enumerate(chunks, start=1):
            run.summary.chunks += 1
            try:
                result = await asyncio.wait_for(
                    self._gateway.sync_batch(chunk),
                    timeout=cfg.timeouts.gateway_seconds,
                )
                self._check_batch(chunk, result)
            except asyncio.TimeoutError:
                prefix_ok = False
                run.record_failure(
                    TransientSyncError(f"chunk {index} timed out after {cfg.timeouts.gateway_seconds}s")
                )
                continue
            except GatewayAuthError as exc:
                logger.warning("Sync credentials rejected on chunk %d; stopping", index)
                run.record_failure(exc)
                break
            except SyncError as exc:
                prefix_ok = False
                logger.warning("Chunk %d/%d failed (%s): %s", index, len(chunks), exc.kind, exc)
                run.record_failure(exc)
                continue
            except Exception as exc:
                prefix_ok = False
                logger.exception("Chunk %d/%d failed unexpectedly", index, len(chunks))
                run.record_failure(TransientSyncError(f"chunk {index} failed: {exc}"))
                continue

            run.confirmed.update(e.key for e in chunk)
            run.summary.created += result.created
            run.summary.updated += result.updated
            if prefix_ok:
                latest = max(e.date for e in chunk)
                if run.advance_to is None or latest > run.advance_to:
                    run.advance_to = latest
            logger.debug("Chunk %d/%d synced (%d entries)", index, len(chunks), len(chunk))

    async def _fetch(self, days: set[date]) -> list[StepDayEntry]:
        entries: list[StepDayEntry] = []
        timeout = self._config.timeouts.provider_seconds
        for start, end in contiguous_ranges(days):
            try:
                entries.extend(
                    await asyncio.wait_for(self._provider.get_step_data(start, end), timeout=timeout)
                )
            except asyncio.TimeoutError as exc:
                raise TransientSyncError(
                    f"health data provider timed out after {timeout}s for {start}..{end}"
                ) from exc
            except SyncError:
                raise
            except Exception as exc:
                logger.exception("Health data provider failed for %s..%s", start, end)
                raise TransientSyncError(f"health data provider error: {exc}") from exc
        return entries

    @staticmethod
    def _check_batch(chunk: list[StepDayEntry], result: SyncBatchResult) -> None:
        """Reject any response that does not confirm every entry in the chunk."""
        if result.is_partial:
            raise PartialBatchError(
                f"gateway reported {len(result.errors)} entry error(s): "
                + "; ".join(result.errors[:3]),
                errors=result.errors,
            )
        if result.created + result.updated != len(chunk):
            raise PartialBatchError(
                f"gateway confirmed {result.created + result.updated} of {len(chunk)} entries"
            )

    # ------------------------------------------------------------------
    # Persist
    # ------------------------------------------------------------------

    async def _finalize(self, run: _RunContext) -> None:
        summary = run.summary
        applied = False

        def _apply(current: SyncState) -> bool:
            nonlocal applied
            # The record was reset (tracking disabled) or taken over mid-run.
            if current.in_progress_since != run.now:
                return False
            self._apply_outcome(current, run)
            applied = True
            return True

        try:
            state = await self._store.update(_apply)
        except OSError as exc:
            logger.exception("Could not persist sync state")
            run.record_failure(TransientSyncError(f"could not persist sync state: {exc}"))
            state = run.state
            self._apply_outcome(state, run)
            applied = True

        summary.status = RunStatus.FAILED if run.failed else RunStatus.SUCCESS
        summary.days_succeeded = len(run.confirmed)
        summary.last_sync_timestamp = state.last_sync_timestamp
        if not applied:
            logger.warning(
                "Sync state changed during the run (marker %s); discarding outcome",
                state.in_progress_since,
            )
            summary.retry = NO_RETRY
        elif run.failed:
            summary.retry = next_retry(state.failed_attempts, summary.failure_kind, self._config.retry)
        else:
            summary.retry = NO_RETRY
        logger.info(
            "Sync %s: %d/%d entries synced, %d dropped, %d chunk(s), %d pending day(s)",
            summary.status.value, summary.days_succeeded, summary.days_attempted,
            summary.days_dropped, summary.chunks, len(state.pending_days),
        )

    def _apply_outcome(self, state: SyncState, run: _RunContext) -> None:
        """Fold the run's result into ``state`` and release the marker."""
        summary = run.summary

        unconfirmed_days = {e.date for e in run.entries if e.key not in run.confirmed}
        confirmed_days = {e.date for e in run.entries if e.key in run.confirmed} - unconfirmed_days
        state.pending_days -= confirmed_days
        state.pending_days -= run.resolved_days
        state.pending_days |= unconfirmed_days

        if not run.failed:
            # Every day in the window was either sent or had no data.
            state.last_sync_timestamp = run.now
            state.last_sync_status = SyncStatus.SUCCESS
            state.failed_attempts = 0
            state.last_failure_kind = None
            state.last_error = None
        else:
            if run.advance_to is not None:
                self._advance_timestamp(state, run.advance_to, run.now)
            state.last_sync_status = SyncStatus.FAILED
            state.last_failure_kind = summary.failure_kind
            state.last_error = summary.errors[0][:500] if summary.errors else None
            if summary.failure_kind != FailureKind.PERMISSION:
                state.failed_attempts += 1

        state.in_progress_since = None

    @staticmethod
    def _advance_timestamp(state: SyncState, day: date, now: datetime) -> None:
        """Move last_sync_timestamp forward to the end of ``day`` (never past now)."""
        candidate = min(now, datetime.combine(day, time.max, tzinfo=now.tzinfo))
        if state.last_sync_timestamp is None or candidate > state.last_sync_timestamp:
            state.last_sync_timestamp = candidate
