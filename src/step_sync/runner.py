"""Trigger-side helpers around SyncOrchestrator.

The orchestrator itself runs exactly one attempt.  This module applies the
retry policy on top of it and provides the entry points each trigger uses:

    run_with_retries()  - "sync now" and background wakes: one attempt plus
                          in-process fast retries while the policy allows.
    sync_if_stale()     - app-foreground check; syncs only when the last
                          success is older than the staleness threshold.
    run_periodic()      - long-lived loop that stands in for the OS
                          scheduler (daemons, integration tests).

disable_health_tracking() deletes the source's remote entries and resets the
local SyncState when the user turns tracking off.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from src.step_sync.config_loader import get_sync_config
from src.step_sync.errors import SyncError
from src.step_sync.orchestrator import SyncOrchestrator, SyncSummary
from src.step_sync.staleness import SyncStatusView

if TYPE_CHECKING:
    from src.config import Settings
    from src.step_sync.gateway import HttpSyncGateway
    from src.step_sync.state_store import SyncStateStore

logger = logging.getLogger("stepper.sync.runner")


class SyncRunner:
    """Drive a SyncOrchestrator according to the retry policy.

    Usage::

        runner = SyncRunner(orchestrator, status_view)
        summaries = await runner.run_with_retries()

    Args:
        orchestrator: The sync core.
        status_view:  Read-only staleness signal.
        sleep:        Async sleep (seconds). Injectable for tests.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        status_view: SyncStatusView,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._orchestrator = orchestrator
        self._status_view = status_view
        self._sleep = sleep

    async def run_with_retries(
        self, expiry_signal: asyncio.Event | None = None
    ) -> list[SyncSummary]:
        """Run a sync and keep fast-retrying while the policy returns a delay.

        Stops on success, skip, disable, or a defer decision.  The fast-retry
        budget is bounded by the policy, so this always terminates.

        Returns:
            One SyncSummary per attempt, in order.
        """
        summaries: list[SyncSummary] = []
        while True:
            summary = await self._orchestrator.run_sync(expiry_signal)
            summaries.append(summary)

            decision = summary.retry
            if not decision.should_retry:
                if decision.defer:
                    logger.info("Sync deferred to next scheduled wake: %s", decision.reason)
                break
            if expiry_signal is not None and expiry_signal.is_set():
                logger.info("Execution window expired; not scheduling fast retry")
                break

            logger.info(
                "Sync failed (%s); retrying in %s (%s)",
                summary.failure_kind.value if summary.failure_kind else "unknown",
                decision.delay,
                decision.reason,
            )
            await self._sleep(decision.delay.total_seconds())
        return summaries

    async def sync_if_stale(self) -> list[SyncSummary]:
        """Foreground staleness check.

        Returns:
            Summaries of the attempts made, or an empty list when fresh.
        """
        if not await self._status_view.is_stale():
            logger.debug("Sync state is fresh; foreground sync not needed")
            return []
        logger.info("Last successful sync is stale; syncing on foreground")
        return await self.run_with_retries()

    async def run_periodic(self, stop_event: asyncio.Event) -> None:
        """Sync every scheduled interval until ``stop_event`` is set."""
        interval = self._orchestrator.config.retry.scheduled_interval.total_seconds()
        logger.info("Periodic sync started (interval %.0fs)", interval)
        while not stop_event.is_set():
            try:
                await self.run_with_retries()
            except Exception:
                logger.exception("Periodic sync iteration failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Periodic sync stopped")


async def disable_health_tracking(
    gateway: "HttpSyncGateway",
    store: "SyncStateStore",
    source: str,
) -> int | None:
    """Turn step tracking off: remove the source's remote data, then reset SyncState.

    A failed remote delete is logged and does not stop the local reset.

    Returns:
        Remote entries deleted, or None if the delete failed.
    """
    deleted: int | None = None
    try:
        deleted = await gateway.delete_by_source(source)
    except SyncError as exc:
        logger.warning("Could not delete remote step data for %r (%s): %s", source, exc.kind, exc)
    await store.clear()
    logger.info("Step tracking disabled for source %r", source)
    return deleted


def build_sync_runner(
    settings: "Settings",
    access_token: str | None = None,
    is_tracking_enabled: Callable[[], Awaitable[bool]] | None = None,
) -> SyncRunner:
    """Wire the production collaborators from application settings.

    Args:
        settings:            Application settings.
        access_token:        Bearer token of the signed-in user.  Defaults to
                             ``settings.api_access_token``.
        is_tracking_enabled: Enablement signal owned by the preferences layer.
    """
    from src.step_sync.gateway import HttpSyncGateway
    from src.step_sync.orchestrator import local_now
    from src.step_sync.providers import AppleHealthExportProvider
    from src.step_sync.state_store import JsonFileSyncStateStore

    token = access_token or settings.api_access_token
    if not token:
        raise ValueError("No access token: pass one or set API_ACCESS_TOKEN")

    config = get_sync_config()
    store = JsonFileSyncStateStore(settings.sync_state_path)
    orchestrator = SyncOrchestrator(
        store=store,
        provider=AppleHealthExportProvider(settings.health_export_path),
        gateway=HttpSyncGateway(
            settings.api_base_url,
            token,
            timeout=config.timeouts.gateway_seconds,
        ),
        is_tracking_enabled=is_tracking_enabled,
        config=config,
    )
    return SyncRunner(orchestrator, SyncStatusView(store, local_now, config.staleness_threshold))
