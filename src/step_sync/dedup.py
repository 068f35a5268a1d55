"""Deduplication logic for step entries.

The remote store holds at most one row per (user_id, date, source),
enforced by a UNIQUE constraint on step_entries.  Client-side we collapse
duplicate provider readings before sending, and server-side every write is
an ``INSERT ... ON CONFLICT DO UPDATE`` so resubmitting a batch is harmless.
"""

from __future__ import annotations

import logging
from datetime import date

from src.step_sync.base import StepDayEntry

logger = logging.getLogger("stepper.sync.dedup")


def dedupe_entries(entries: list[StepDayEntry]) -> list[StepDayEntry]:
    """Collapse entries sharing a (date, source) key.

    The last reading wins, since providers report cumulative daily totals
    and later samples supersede earlier ones.

    Args:
        entries: Entries in provider order.

    Returns:
        One entry per key, in order of first appearance.
    """
    by_key: dict[tuple[date, str], StepDayEntry] = {}
    for entry in entries:
        if entry.key in by_key:
            logger.debug("Duplicate step entry for %s/%s, keeping latest", entry.date, entry.source)
        by_key[entry.key] = entry
    return list(by_key.values())


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    returning: str | None = None,
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Generates idempotent writes.  On conflict, updates the non-key columns.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        returning:        Optional RETURNING expression.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        update_set = ", ".join(f"{col} = EXCLUDED.{col}" for col in update_columns)
        update_set += ", updated_at = NOW()"
        do_clause = f"DO UPDATE SET {update_set}"
    else:
        do_clause = "DO NOTHING"

    query = (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
    if returning:
        query += f" RETURNING {returning}"
    return query
