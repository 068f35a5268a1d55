"""Pydantic models for the step sync API."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from pydantic import Field, field_validator

from src.models.base import StepperBase
from src.step_sync.base import MAX_SOURCE_LENGTH, MAX_STEP_COUNT

MAX_ENTRIES_PER_REQUEST = 31

# UTC+14 is the furthest-ahead civil offset; no client can be on a later day.
_MAX_UTC_OFFSET = timedelta(hours=14)


def latest_local_date() -> date:
    return (datetime.now(timezone.utc) + _MAX_UTC_OFFSET).date()


class SyncStepEntry(StepperBase):
    date: date
    step_count: int = Field(ge=0, le=MAX_STEP_COUNT)
    distance_meters: float | None = Field(default=None, ge=0)
    source: str = Field(min_length=1, max_length=MAX_SOURCE_LENGTH)

    @field_validator("date")
    @classmethod
    def _not_in_future(cls, value: date) -> date:
        if value > latest_local_date():
            raise ValueError("date cannot be in the future")
        return value


class SyncStepsRequest(StepperBase):
    entries: list[SyncStepEntry] = Field(min_length=1, max_length=MAX_ENTRIES_PER_REQUEST)


class SyncStepsResponse(StepperBase):
    created: int
    updated: int
    total: int
    errors: list[str] = Field(default_factory=list)


class DeleteBySourceResponse(StepperBase):
    deleted_count: int
