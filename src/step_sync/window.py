"""Sync window computation and chunking.

The window is the set of calendar days a run must (re)send:

- cold start (never synced): the last ``backfill_days`` days, today included;
- otherwise: every day from the last successful sync up to today, plus any
  days left in ``pending_days`` by earlier failures.

Providers are queried per contiguous range so a stray pending day from weeks
ago does not drag the whole gap along with it.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable

from src.step_sync.base import StepDayEntry, SyncState


def compute_target_days(state: SyncState, today: date, backfill_days: int) -> set[date]:
    """Return every day the next run should fetch.

    Args:
        state:         Current sync state.
        today:         Current local date.
        backfill_days: Cold-start ceiling in days (today included).

    Returns:
        Set of calendar days, never later than ``today``.
    """
    if state.last_sync_timestamp is None:
        start = today - timedelta(days=backfill_days - 1)
    else:
        start = min(state.last_sync_timestamp.date(), today)

    days = {start + timedelta(days=i) for i in range((today - start).days + 1)}
    days.update(d for d in state.pending_days if d <= today)
    return days


def contiguous_ranges(days: Iterable[date]) -> list[tuple[date, date]]:
    """Group days into inclusive (start, end) runs of consecutive dates.

    Returned most-recent-first so recent data is fetched before backfill.
    """
    ordered = sorted(set(days))
    if not ordered:
        return []

    ranges: list[tuple[date, date]] = []
    run_start = prev = ordered[0]
    for day in ordered[1:]:
        if day - prev > timedelta(days=1):
            ranges.append((run_start, prev))
            run_start = day
        prev = day
    ranges.append((run_start, prev))
    ranges.reverse()
    return ranges


def partition_chunks(entries: list[StepDayEntry], max_entries: int) -> list[list[StepDayEntry]]:
    """Split entries into chunks of at most ``max_entries``, most-recent-first.

    If a later chunk fails, the chunks already sent hold the freshest data.

    Args:
        entries:     Entries to send (any order).
        max_entries: Gateway per-call limit.

    Returns:
        List of chunks; each chunk is itself ordered newest to oldest.
    """
    if max_entries < 1:
        raise ValueError(f"max_entries must be >= 1, got {max_entries}")
    ordered = sorted(entries, key=lambda e: (e.date, e.source), reverse=True)
    return [ordered[i : i + max_entries] for i in range(0, len(ordered), max_entries)]
