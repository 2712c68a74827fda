# src/match_finder.py
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from models import DAYS, CandidateSlot, FreedLesson, Guardian, Student
from slot_generator import time_to_min
from waitlist_models import (
    MATCH_QUALITY_ORDER,
    MatchQuality,
    MatchResult,
    WaitlistEntry,
    slot_key,
)


@dataclass(frozen=True)
class MatchTarget:
    target_id: str  # lesson id or slot key
    teacher_id: str | None
    start_at: datetime
    end_at: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)


def targets_for(target: FreedLesson | Sequence[CandidateSlot]) -> list[MatchTarget]:
    if isinstance(target, FreedLesson):
        return [
            MatchTarget(target.lesson_id, target.teacher_id, target.start_at, target.end_at)
        ]
    return [
        MatchTarget(
            slot_key(s.teacher_id, s.start_at.astimezone(timezone.utc)),
            s.teacher_id,
            s.start_at,
            s.end_at,
        )
        for s in target
    ]


def ineligibility_reasons(entry: WaitlistEntry, t: MatchTarget) -> list[str]:
    """
    Hard constraints only. Empty list == eligible.
    """
    reasons: list[str] = []

    if entry.missed_lesson_id == t.target_id:
        reasons.append("is_missed_lesson")

    # no partial-fit booking
    if entry.lesson_duration_minutes != t.duration_minutes:
        reasons.append(
            f"duration_mismatch({entry.lesson_duration_minutes}!={t.duration_minutes})"
        )

    if entry.preferred_teacher_id and entry.preferred_teacher_id != t.teacher_id:
        reasons.append(f"preferred_teacher_mismatch({entry.preferred_teacher_id})")

    return reasons


def has_preferred_window(entry: WaitlistEntry) -> bool:
    return bool(
        entry.preferred_days
        or entry.preferred_time_earliest
        or entry.preferred_time_latest
    )


def within_preferred_window(
    entry: WaitlistEntry, start_local: datetime, end_local: datetime
) -> bool:
    if not has_preferred_window(entry):
        return False

    if entry.preferred_days and DAYS[start_local.weekday()] not in entry.preferred_days:
        return False

    start_min = start_local.hour * 60 + start_local.minute
    end_min = end_local.hour * 60 + end_local.minute
    if entry.preferred_time_earliest and start_min < time_to_min(entry.preferred_time_earliest):
        return False
    if entry.preferred_time_latest and end_min > time_to_min(entry.preferred_time_latest):
        return False
    return True


def reproduces_original_time(entry: WaitlistEntry, start_local: datetime, tz: ZoneInfo) -> bool:
    missed_local = entry.missed_lesson_start_at.astimezone(tz)
    return (start_local.hour, start_local.minute) == (missed_local.hour, missed_local.minute)


def match_quality(entry: WaitlistEntry, t: MatchTarget, tz: ZoneInfo) -> MatchQuality:
    start_local = t.start_at.astimezone(tz)
    end_local = t.end_at.astimezone(tz)

    same_teacher = entry.teacher_id is not None and entry.teacher_id == t.teacher_id
    same_time = reproduces_original_time(entry, start_local, tz)

    if same_teacher and (same_time or within_preferred_window(entry, start_local, end_local)):
        return "exact_teacher_and_time"
    if same_teacher:
        return "same_teacher"
    if same_time:
        return "same_time_different_teacher"
    return "any_available"


def _rank(q: MatchQuality) -> int:
    return MATCH_QUALITY_ORDER.index(q)


def find_matches(
    target: FreedLesson | Sequence[CandidateSlot],
    entries: Iterable[WaitlistEntry],
    tz: ZoneInfo,
    students_by_id: dict[str, Student] | None = None,
    guardians_by_id: dict[str, Guardian] | None = None,
    exclude_student_id: str | None = None,
) -> list[MatchResult]:
    """
    Ranks waiting entries for a freed lesson or a set of candidate slots.

    Proposal only: nothing is written. With a slot set, each entry appears
    once, paired with its best slot (best tier, then earliest start).
    Order: tier, then first-waiting-first-served (created_at, entry_id).
    """
    students_by_id = students_by_id or {}
    guardians_by_id = guardians_by_id or {}
    targets = targets_for(target)

    results: list[MatchResult] = []
    for entry in entries:
        if entry.status != "waiting":
            continue
        if exclude_student_id and entry.student_id == exclude_student_id:
            continue

        best: tuple[int, datetime, MatchTarget, MatchQuality] | None = None
        for t in targets:
            if ineligibility_reasons(entry, t):
                continue
            q = match_quality(entry, t, tz)
            key = (_rank(q), t.start_at)
            if best is None or key < best[:2]:
                best = (key[0], key[1], t, q)

        if best is None:
            continue

        _, _, t, q = best
        results.append(_to_result(entry, t, q, students_by_id, guardians_by_id))

    results.sort(
        key=lambda r: (_rank(r.match_quality), r.waiting_since, r.entry_id)
    )
    return results


def _to_result(
    entry: WaitlistEntry,
    t: MatchTarget,
    q: MatchQuality,
    students_by_id: dict[str, Student],
    guardians_by_id: dict[str, Guardian],
) -> MatchResult:
    student = students_by_id.get(entry.student_id)
    guardian_id = entry.guardian_id or (student.guardian_id if student else None)
    guardian = guardians_by_id.get(guardian_id) if guardian_id else None

    return MatchResult(
        entry_id=entry.entry_id,
        student_id=entry.student_id,
        match_quality=q,
        target_id=t.target_id,
        teacher_id=t.teacher_id,
        start_at=t.start_at,
        end_at=t.end_at,
        student_name=student.full_name if student else entry.student_id,
        guardian_name=guardian.full_name if guardian else "",
        guardian_email=(guardian.email or "") if guardian else "",
        missed_lesson_title=entry.lesson_title,
        missed_lesson_date=entry.missed_lesson_start_at,
        waiting_since=entry.created_at,
    )
