"""Client-side validation of day entries before they are sent.

Mirrors the sync endpoint's rules so a single malformed entry never poisons
a whole chunk.  Invalid entries are dropped with a logged reason and are
never counted as synced.
"""

from __future__ import annotations

import logging
import math
from datetime import date

from src.step_sync.base import MAX_SOURCE_LENGTH, MAX_STEP_COUNT, StepDayEntry
from src.step_sync.errors import EntryValidationError

logger = logging.getLogger("stepper.sync.validation")


def validate_entry(entry: StepDayEntry, today: date) -> None:
    """Raise EntryValidationError if ``entry`` would be rejected remotely.

    Args:
        entry: The entry to check.
        today: The caller's current local date; later dates are rejected.
    """
    if not isinstance(entry.step_count, int) or isinstance(entry.step_count, bool):
        raise EntryValidationError(f"step count must be an integer, got {entry.step_count!r}", entry.date)
    if not 0 <= entry.step_count <= MAX_STEP_COUNT:
        raise EntryValidationError(
            f"step count {entry.step_count} outside 0..{MAX_STEP_COUNT}", entry.date
        )
    if entry.distance_meters is not None:
        if math.isnan(entry.distance_meters) or entry.distance_meters < 0:
            raise EntryValidationError(
                f"distance {entry.distance_meters!r} must be non-negative", entry.date
            )
    if not entry.source or not entry.source.strip():
        raise EntryValidationError("source is required", entry.date)
    if len(entry.source) > MAX_SOURCE_LENGTH:
        raise EntryValidationError(
            f"source longer than {MAX_SOURCE_LENGTH} characters", entry.date
        )
    if entry.date > today:
        raise EntryValidationError("date is in the future", entry.date)


def filter_valid(
    entries: list[StepDayEntry], today: date
) -> tuple[list[StepDayEntry], list[EntryValidationError]]:
    """Split ``entries`` into valid ones and the errors for dropped ones.

    Args:
        entries: Raw entries from the health data provider.
        today:   Current local date.

    Returns:
        (valid entries in input order, validation errors for dropped entries)
    """
    valid: list[StepDayEntry] = []
    dropped: list[EntryValidationError] = []
    for entry in entries:
        try:
            validate_entry(entry, today)
        except EntryValidationError as exc:
            logger.warning("Dropping invalid step entry %s", exc)
            dropped.append(exc)
            continue
        valid.append(entry)
    return valid, dropped
