"""Apple Health export reader.

Apple does not provide a server-side API; users share an ``export.xml``
produced by the Health app.  This provider reads that file and aggregates
step and walking/running distance records into one StepDayEntry per local
calendar day.

Record dates in the export carry the device's local offset
(``2026-02-23 08:14:00 -0800``); the calendar day is taken as written.
Daily totals are kept between calls and re-parsed only when the file's
modification time or size changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime
from pathlib import Path
from xml.etree import ElementTree as ET

from src.step_sync.base import HealthDataProvider, StepDayEntry
from src.step_sync.errors import PermissionRevokedError, TransientSyncError

logger = logging.getLogger("stepper.sync.providers.apple_health")

_HK_STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
_HK_DISTANCE = "HKQuantityTypeIdentifierDistanceWalkingRunning"

# Export unit → meters
_DISTANCE_UNITS: dict[str, float] = {
    "m": 1.0,
    "km": 1000.0,
    "mi": 1609.344,
    "ft": 0.3048,
    "yd": 0.9144,
}


def _record_day(start_str: str) -> date | None:
    try:
        return datetime.fromisoformat(start_str.replace(" ", "T")[:19]).date()
    except ValueError:
        return None


class AppleHealthExportProvider(HealthDataProvider):
    """HealthDataProvider over an Apple Health ``export.xml``.

    Args:
        export_path: Path to the shared export file.
    """

    SOURCE_ID = "healthkit"

    def __init__(self, export_path: str | Path) -> None:
        self._export_path = Path(export_path).expanduser()
        self._cache_key: tuple[int, int] | None = None
        self._cached_days: dict[date, StepDayEntry] = {}

    async def get_step_data(self, start_date: date, end_date: date) -> list[StepDayEntry]:
        days = await asyncio.to_thread(self._load_days)
        return _in_range(days, start_date, end_date)

    def _load_days(self) -> dict[date, StepDayEntry]:
        """Daily totals for the whole export, re-parsed only when the file changes."""
        try:
            stat = self._export_path.stat()
        except (PermissionError, FileNotFoundError) as exc:
            raise PermissionRevokedError(
                f"Apple Health export is not accessible: {exc}"
            ) from exc
        except OSError as exc:
            raise TransientSyncError(f"Could not read Apple Health export: {exc}") from exc

        key = (stat.st_mtime_ns, stat.st_size)
        if key != self._cache_key:
            self._cached_days = self.aggregate_export(self._read_export())
            self._cache_key = key
        return self._cached_days

    def _read_export(self) -> bytes:
        try:
            return self._export_path.read_bytes()
        except (PermissionError, FileNotFoundError) as exc:
            raise PermissionRevokedError(
                f"Apple Health export is not accessible: {exc}"
            ) from exc
        except OSError as exc:
            raise TransientSyncError(f"Could not read Apple Health export: {exc}") from exc

    def parse_export(
        self, xml_bytes: bytes, start_date: date, end_date: date
    ) -> list[StepDayEntry]:
        """Aggregate step and distance records between two dates inclusive.

        Days with distance but no step records are omitted.

        Args:
            xml_bytes:  Contents of export.xml.
            start_date: First day to include.
            end_date:   Last day to include.

        Returns:
            One StepDayEntry per day with step records, oldest first.
        """
        return _in_range(self.aggregate_export(xml_bytes), start_date, end_date)

    def aggregate_export(self, xml_bytes: bytes) -> dict[date, StepDayEntry]:
        """One StepDayEntry per day with step records, across the whole export."""
        try:
            root = ET.fromstring(xml_bytes)
        except ET.ParseError as exc:
            logger.error("Apple Health XML parse error: %s", exc)
            raise TransientSyncError(f"Invalid Apple Health export: {exc}") from exc

        steps: dict[date, float] = defaultdict(float)
        distance: dict[date, float] = defaultdict(float)
        skipped = 0

        for record in root.iter("Record"):
            rec_type = record.get("type", "")
            if rec_type not in (_HK_STEP_COUNT, _HK_DISTANCE):
                continue

            day = _record_day(record.get("startDate", ""))
            if day is None:
                skipped += 1
                continue

            try:
                value = float(record.get("value", ""))
            except ValueError:
                skipped += 1
                continue

            if rec_type == _HK_STEP_COUNT:
                steps[day] += value
            else:
                factor = _DISTANCE_UNITS.get(record.get("unit", "km"))
                if factor is None:
                    skipped += 1
                    continue
                distance[day] += value * factor

        if skipped:
            logger.warning("Apple Health export: skipped %d unreadable record(s)", skipped)

        days = {
            day: StepDayEntry(
                date=day,
                step_count=int(round(total)),
                source=self.SOURCE_ID,
                distance_meters=round(distance[day], 2) if day in distance else None,
            )
            for day, total in steps.items()
        }
        logger.debug("Apple Health export: %d day(s) of steps", len(days))
        return days


def _in_range(days: dict[date, StepDayEntry], start_date: date, end_date: date) -> list[StepDayEntry]:
    return [days[day] for day in sorted(days) if start_date <= day <= end_date]
