from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Literal

WaitlistStatus = Literal[
    "waiting", "matched", "offered", "accepted", "booked", "expired", "cancelled"
]
STATUSES: tuple[WaitlistStatus, ...] = (
    "waiting",
    "matched",
    "offered",
    "accepted",
    "booked",
    "expired",
    "cancelled",
)

# one open entry per student + missed lesson
OPEN_STATUSES = frozenset({"waiting", "matched", "offered", "accepted"})
EXPIRABLE_STATUSES = frozenset({"waiting", "matched", "offered"})
MATCHED_STATUSES = frozenset({"matched", "offered", "accepted", "booked"})

AbsenceReason = Literal[
    "sick",
    "school_commitment",
    "family_emergency",
    "holiday",
    "teacher_cancelled",
    "weather_closure",
    "no_show",
    "other",
]
ABSENCE_REASONS = frozenset(
    {
        "sick",
        "school_commitment",
        "family_emergency",
        "holiday",
        "teacher_cancelled",
        "weather_closure",
        "no_show",
        "other",
    }
)

MatchQuality = Literal[
    "exact_teacher_and_time",
    "same_teacher",
    "same_time_different_teacher",
    "any_available",
]
# best first
MATCH_QUALITY_ORDER: tuple[MatchQuality, ...] = (
    "exact_teacher_and_time",
    "same_teacher",
    "same_time_different_teacher",
    "any_available",
)

SLOT_KEY_PREFIX = "slot:"


@dataclass
class WaitlistEntry:
    entry_id: str
    org_id: str
    student_id: str
    missed_lesson_id: str
    missed_lesson_start_at: datetime
    lesson_title: str
    lesson_duration_minutes: int
    absence_reason: AbsenceReason
    status: WaitlistStatus
    created_at: datetime
    updated_at: datetime

    teacher_id: str | None = None
    preferred_teacher_id: str | None = None
    location_id: str | None = None
    guardian_id: str | None = None
    credit_id: str | None = None
    attendance_record_id: str | None = None
    preferred_days: list[str] = field(default_factory=list)
    preferred_time_earliest: time | None = None
    preferred_time_latest: time | None = None

    matched_lesson_id: str | None = None
    matched_teacher_id: str | None = None
    matched_start_at: datetime | None = None
    matched_end_at: datetime | None = None
    matched_at: datetime | None = None
    offered_at: datetime | None = None
    responded_at: datetime | None = None
    booked_lesson_id: str | None = None
    expires_at: datetime | None = None
    notes: str | None = None

    @property
    def is_slot_match(self) -> bool:
        return bool(self.matched_lesson_id) and self.matched_lesson_id.startswith(
            SLOT_KEY_PREFIX
        )


@dataclass(frozen=True)
class MatchResult:
    entry_id: str
    student_id: str
    match_quality: MatchQuality
    target_id: str  # lesson id or slot key
    teacher_id: str | None
    start_at: datetime
    end_at: datetime

    student_name: str
    guardian_name: str
    guardian_email: str
    missed_lesson_title: str
    missed_lesson_date: datetime
    waiting_since: datetime


def slot_key(teacher_id: str, start_at: datetime) -> str:
    return f"{SLOT_KEY_PREFIX}{teacher_id}:{start_at.isoformat()}"
