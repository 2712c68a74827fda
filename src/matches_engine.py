# src/matches_engine.py
from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from calendar_facts import CalendarFacts
from db import utc_now
from errors import NotFoundError, ValidationError
from lesson_repo import get_makeup_lesson
from match_finder import find_matches
from models import CandidateSlot, FreedLesson, Lesson, ReferenceData
from slot_generator import generate_slots
from waitlist_models import MatchResult, WaitlistEntry
from waitlist_repo import list_waiting_entries


def lookup_lesson(con: sqlite3.Connection, ref: ReferenceData, lesson_id: str) -> Lesson:
    lesson = ref.lessons_by_id.get(lesson_id) or get_makeup_lesson(con, lesson_id)
    if lesson is None:
        raise NotFoundError("lesson_not_found", lesson_id)
    return lesson


def require_bookable(lesson: Lesson, now: datetime) -> None:
    """Only a scheduled lesson that has not started can take a make-up student."""
    if lesson.status != "scheduled" or lesson.start_at < now:
        raise ValidationError(
            "lesson_not_bookable",
            f"{lesson.lesson_id} is {lesson.status}, starts {lesson.start_at.isoformat()}",
        )


def find_matches_for_lesson(
    con: sqlite3.Connection,
    ref: ReferenceData,
    org_id: str,
    lesson_id: str,
    tz: ZoneInfo,
    absent_student_id: str | None = None,
    now: datetime | None = None,
) -> list[MatchResult]:
    """
    A seat came free on lesson_id (absent_student_id dropped out).
    Returns ranked waiting entries that could take it. Cancelled or
    already-started lessons raise ValidationError.
    """
    lesson = lookup_lesson(con, ref, lesson_id)
    require_bookable(lesson, now or utc_now())
    freed = FreedLesson.from_lesson(lesson)

    return find_matches(
        freed,
        list_waiting_entries(con, org_id),
        tz,
        students_by_id=ref.students_by_id,
        guardians_by_id=ref.guardians_by_id,
        exclude_student_id=absent_student_id,
    )


def find_matches_for_slots(
    con: sqlite3.Connection,
    ref: ReferenceData,
    org_id: str,
    slots: Sequence[CandidateSlot],
    tz: ZoneInfo,
) -> list[MatchResult]:
    if not slots:
        return []
    return find_matches(
        slots,
        list_waiting_entries(con, org_id),
        tz,
        students_by_id=ref.students_by_id,
        guardians_by_id=ref.guardians_by_id,
    )


def _local_day_bounds(target_date: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(target_date, time(0, 0), tzinfo=tz)
    return start, start + timedelta(days=1)


def candidate_slots(
    facts: CalendarFacts,
    org_id: str,
    teacher_id: str,
    target_date: date,
    duration_minutes: int,
    tz: ZoneInfo,
    now: datetime,
    preferred_time: time | None = None,
) -> list[CandidateSlot]:
    day_start, day_end = _local_day_bounds(target_date, tz)

    return generate_slots(
        teacher_id=teacher_id,
        target_date=target_date,
        duration_minutes=duration_minutes,
        blocks=facts.get_availability_blocks(teacher_id),
        booked_intervals=facts.get_booked_intervals(teacher_id, day_start, day_end),
        closure_dates=facts.get_closure_dates(org_id),
        now=now,
        tz=tz,
        preferred_time=preferred_time,
        time_off=facts.get_time_off(teacher_id, day_start, day_end),
    )


def candidate_slots_for_entry(
    facts: CalendarFacts,
    entry: WaitlistEntry,
    target_date: date,
    tz: ZoneInfo,
    now: datetime,
) -> list[CandidateSlot]:
    """Slots for the entry's teacher, flagged where they repeat the missed start time."""
    teacher_id = entry.preferred_teacher_id or entry.teacher_id
    if not teacher_id:
        raise ValidationError("entry_has_no_teacher", entry.entry_id)

    missed_local = entry.missed_lesson_start_at.astimezone(tz)

    return candidate_slots(
        facts,
        org_id=entry.org_id,
        teacher_id=teacher_id,
        target_date=target_date,
        duration_minutes=entry.lesson_duration_minutes,
        tz=tz,
        now=now,
        preferred_time=time(missed_local.hour, missed_local.minute),
    )
