"""Retry/backoff policy for failed sync runs.

Pure functions only.  Given how many consecutive runs have failed, decide
whether to schedule an in-process fast retry or to defer to the next
externally scheduled wake.  The fast-retry budget is deliberately small so
local timers never compete with the OS background budget.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from src.step_sync.base import FailureKind
from src.step_sync.config_loader import RetryConfig, get_sync_config


@dataclass(frozen=True)
class RetryDecision:
    """What to do after a run.

    Attributes:
        delay:  Wait this long, then retry in process.  None means do not retry.
        defer:  True when the run failed and must wait for the next external wake.
        reason: Short explanation for logs.
    """

    delay: timedelta | None = None
    defer: bool = False
    reason: str = ""

    @property
    def should_retry(self) -> bool:
        return self.delay is not None


NO_RETRY = RetryDecision(reason="no failure")


def next_retry(
    failed_attempts: int,
    failure_kind: FailureKind | None = None,
    config: RetryConfig | None = None,
) -> RetryDecision:
    """Map a consecutive-failure count to the next retry action.

    Attempts 1..N get the configured delays (5, 10, 15 minutes by default);
    anything past the budget defers.  Permission and credential failures
    always defer since retrying with the same grant cannot succeed.

    Args:
        failed_attempts: Consecutive failed runs since the last success.
        failure_kind:    Category of the most recent failure.
        config:          Retry settings. Defaults to the bundled config.

    Returns:
        RetryDecision.
    """
    cfg = config or get_sync_config().retry

    if failure_kind == FailureKind.PERMISSION:
        return RetryDecision(defer=True, reason="health data permission revoked")
    if failure_kind == FailureKind.UNAUTHORIZED:
        return RetryDecision(defer=True, reason="sync credentials rejected")

    if failed_attempts <= 0:
        return NO_RETRY

    delays = cfg.fast_retry_delays
    if failed_attempts > len(delays):
        return RetryDecision(
            defer=True,
            reason=f"fast retry budget of {len(delays)} exhausted",
        )

    return RetryDecision(
        delay=delays[failed_attempts - 1],
        reason=f"fast retry {failed_attempts}/{len(delays)}",
    )
