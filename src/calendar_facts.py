# src/calendar_facts.py
from __future__ import annotations

import sqlite3
from datetime import date, datetime
from typing import Protocol

from models import AvailabilityBlock, BookedInterval, ReferenceData, TimeOffBlock
from indexes import (
    index_lessons_by_teacher,
    index_makeup_lessons_by_teacher,
    merge_busy_maps,
)


class CalendarFacts(Protocol):
    """Read-only calendar view consumed by slot generation."""

    def get_availability_blocks(self, teacher_id: str) -> list[AvailabilityBlock]: ...

    def get_booked_intervals(
        self, teacher_id: str, range_start: datetime, range_end: datetime
    ) -> list[BookedInterval]: ...

    def get_time_off(
        self, teacher_id: str, range_start: datetime, range_end: datetime
    ) -> list[TimeOffBlock]: ...

    def get_closure_dates(self, org_id: str) -> set[date]: ...


def _overlaps_range(start: datetime, end: datetime, range_start: datetime, range_end: datetime) -> bool:
    return start < range_end and end > range_start


class CsvCalendarFacts:
    """
    Reference CSV data plus make-up lessons already booked in the store.
    The busy map is rebuilt on every call; nothing is cached across requests.
    """

    def __init__(self, ref: ReferenceData, con: sqlite3.Connection | None = None) -> None:
        self.ref = ref
        self.con = con
        self._regular_map = index_lessons_by_teacher(ref.lessons_by_id)

    def get_availability_blocks(self, teacher_id: str) -> list[AvailabilityBlock]:
        teacher = self.ref.teachers_by_id.get(teacher_id)
        return list(teacher.availability) if teacher else []

    def get_booked_intervals(
        self, teacher_id: str, range_start: datetime, range_end: datetime
    ) -> list[BookedInterval]:
        makeup_map = index_makeup_lessons_by_teacher(self.con) if self.con else {}
        busy = merge_busy_maps(self._regular_map, makeup_map).get(teacher_id, [])
        return [b for b in busy if _overlaps_range(b.start_at, b.end_at, range_start, range_end)]

    def get_time_off(
        self, teacher_id: str, range_start: datetime, range_end: datetime
    ) -> list[TimeOffBlock]:
        return [
            t
            for t in self.ref.time_off
            if t.teacher_id == teacher_id
            and _overlaps_range(t.start_at, t.end_at, range_start, range_end)
        ]

    def get_closure_dates(self, org_id: str) -> set[date]:
        return set(self.ref.closures_by_org.get(org_id, set()))
