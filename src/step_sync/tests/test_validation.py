"""Tests for client-side entry validation and deduplication."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.step_sync.base import StepDayEntry
from src.step_sync.dedup import build_upsert_query, dedupe_entries
from src.step_sync.errors import EntryValidationError, SyncError
from src.step_sync.tests.conftest import TEST_DATE
from src.step_sync.validation import filter_valid, validate_entry


def _entry(**overrides) -> StepDayEntry:
    fields = {"date": TEST_DATE, "step_count": 8000, "source": "healthkit", "distance_meters": 5000.0}
    fields.update(overrides)
    return StepDayEntry(**fields)


class TestValidateEntry:
    def test_valid_entry_passes(self) -> None:
        validate_entry(_entry(), TEST_DATE)

    @pytest.mark.parametrize("steps", [0, 200_000])
    def test_step_count_bounds_inclusive(self, steps: int) -> None:
        validate_entry(_entry(step_count=steps), TEST_DATE)

    @pytest.mark.parametrize("steps", [-1, 200_001])
    def test_step_count_out_of_range(self, steps: int) -> None:
        with pytest.raises(EntryValidationError, match="outside"):
            validate_entry(_entry(step_count=steps), TEST_DATE)

    def test_non_integer_step_count(self) -> None:
        with pytest.raises(EntryValidationError, match="integer"):
            validate_entry(_entry(step_count=12.5), TEST_DATE)

    def test_negative_distance(self) -> None:
        with pytest.raises(EntryValidationError, match="non-negative"):
            validate_entry(_entry(distance_meters=-1.0), TEST_DATE)

    def test_nan_distance(self) -> None:
        with pytest.raises(EntryValidationError):
            validate_entry(_entry(distance_meters=float("nan")), TEST_DATE)

    def test_missing_distance_is_fine(self) -> None:
        validate_entry(_entry(distance_meters=None), TEST_DATE)

    def test_blank_source(self) -> None:
        with pytest.raises(EntryValidationError, match="source"):
            validate_entry(_entry(source="  "), TEST_DATE)

    def test_source_too_long(self) -> None:
        with pytest.raises(EntryValidationError, match="100"):
            validate_entry(_entry(source="x" * 101), TEST_DATE)

    def test_future_date(self) -> None:
        with pytest.raises(EntryValidationError) as exc_info:
            validate_entry(_entry(date=TEST_DATE + timedelta(days=1)), TEST_DATE)
        err = exc_info.value
        assert err.day == TEST_DATE + timedelta(days=1)
        assert "future" in err.reason


class TestFilterValid:
    def test_splits_valid_and_dropped(self) -> None:
        good = _entry()
        bad = _entry(date=TEST_DATE - timedelta(days=1), step_count=-5)
        valid, dropped = filter_valid([good, bad], TEST_DATE)
        assert valid == [good]
        assert len(dropped) == 1
        assert dropped[0].day == bad.date


class TestDedupe:
    def test_last_reading_wins(self) -> None:
        first = _entry(step_count=100)
        second = _entry(step_count=900)
        assert dedupe_entries([first, second]) == [second]

    def test_different_sources_are_distinct(self) -> None:
        a = _entry(source="healthkit")
        b = _entry(source="googlefit")
        assert dedupe_entries([a, b]) == [a, b]


class TestBuildUpsertQuery:
    def test_generates_on_conflict_update(self) -> None:
        sql = build_upsert_query(
            "step_entries",
            ["user_id", "date", "source", "step_count"],
            ["user_id", "date", "source"],
        )
        assert sql.startswith("INSERT INTO step_entries (user_id, date, source, step_count)")
        assert "VALUES ($1, $2, $3, $4)" in sql
        assert "ON CONFLICT (user_id, date, source) DO UPDATE SET step_count = EXCLUDED.step_count" in sql
        assert "updated_at = NOW()" in sql

    def test_returning_clause(self) -> None:
        sql = build_upsert_query("t", ["a", "b"], ["a"], returning="(xmax = 0) AS inserted")
        assert sql.endswith("RETURNING (xmax = 0) AS inserted")

    def test_no_update_columns_does_nothing(self) -> None:
        sql = build_upsert_query("t", ["a"], ["a"])
        assert "DO NOTHING" in sql


class TestDroppedEntriesDoNotFailRuns:
    def test_entry_validation_error_is_not_a_sync_error(self) -> None:
        with pytest.raises(EntryValidationError) as exc_info:
            validate_entry(_entry(step_count=-1), TEST_DATE)

        assert isinstance(exc_info.value, ValueError)
        assert not isinstance(exc_info.value, SyncError)
        assert exc_info.value.day == TEST_DATE
