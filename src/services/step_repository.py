"""Persistence for step_entries.

One row per (user_id, date, source).  Sync writes are upserts keyed on that
triple, so replaying a batch overwrites rather than duplicates.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone

import asyncpg

from src.models.steps import SyncStepEntry
from src.step_sync.dedup import build_upsert_query

logger = logging.getLogger("stepper.steps")

STEP_ENTRIES_TABLE = "step_entries"

_UPSERT_SQL = build_upsert_query(
    STEP_ENTRIES_TABLE,
    ["user_id", "date", "source", "step_count", "distance_meters", "recorded_at"],
    ["user_id", "date", "source"],
    update_columns=["step_count", "distance_meters", "recorded_at"],
    # xmax is 0 only for freshly inserted rows
    returning="(xmax = 0) AS inserted",
)


async def upsert_step_entries(
    conn: asyncpg.Connection,
    user_id: uuid.UUID,
    entries: Iterable[SyncStepEntry],
) -> tuple[int, int]:
    """Insert or overwrite one row per entry.

    Returns:
        (created, updated) counts.
    """
    created = updated = 0
    recorded_at = datetime.now(timezone.utc)
    for entry in entries:
        inserted = await conn.fetchval(
            _UPSERT_SQL,
            user_id,
            entry.date,
            entry.source,
            entry.step_count,
            entry.distance_meters,
            recorded_at,
        )
        if inserted:
            created += 1
        else:
            updated += 1
    logger.debug("Upserted steps for %s: %d created, %d updated", user_id, created, updated)
    return created, updated


async def delete_by_source(conn: asyncpg.Connection, user_id: uuid.UUID, source: str) -> int:
    """Delete every entry of one source for a user. Returns the row count."""
    result = await conn.execute(
        f"DELETE FROM {STEP_ENTRIES_TABLE} WHERE user_id = $1 AND source = $2",
        user_id, source,
    )
    # asyncpg status string: "DELETE <n>"
    try:
        return int(result.split()[-1])
    except (AttributeError, IndexError, ValueError):
        logger.warning("Unexpected DELETE status: %r", result)
        return 0
