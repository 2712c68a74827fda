from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Literal

Day = Literal["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
DAYS: tuple[Day, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

LessonStatus = Literal["scheduled", "completed", "cancelled"]


@dataclass(frozen=True)
class AvailabilityBlock:
    teacher_id: str
    day: Day
    start_time: time  # local
    end_time: time  # local


@dataclass(frozen=True)
class Teacher:
    teacher_id: str
    full_name: str
    slack_user_id: str | None
    availability: tuple[AvailabilityBlock, ...] = ()


@dataclass(frozen=True)
class Guardian:
    guardian_id: str
    full_name: str
    email: str | None
    slack_user_id: str | None


@dataclass(frozen=True)
class Student:
    student_id: str
    first_name: str
    last_name: str
    guardian_id: str | None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Lesson:
    lesson_id: str
    title: str
    teacher_id: str | None
    location_id: str | None
    start_at: datetime  # UTC
    end_at: datetime  # UTC
    status: LessonStatus
    student_ids: frozenset[str] = frozenset()

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)


@dataclass(frozen=True)
class BookedInterval:
    teacher_id: str
    start_at: datetime
    end_at: datetime
    lesson_id: str


@dataclass(frozen=True)
class TimeOffBlock:
    teacher_id: str
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True)
class CandidateSlot:
    teacher_id: str
    start_at: datetime
    end_at: datetime
    is_preferred: bool = False

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)


@dataclass(frozen=True)
class FreedLesson:
    """An existing lesson with an open seat."""

    lesson_id: str
    teacher_id: str | None
    start_at: datetime
    end_at: datetime

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)

    @staticmethod
    def from_lesson(lesson: Lesson) -> "FreedLesson":
        return FreedLesson(
            lesson_id=lesson.lesson_id,
            teacher_id=lesson.teacher_id,
            start_at=lesson.start_at,
            end_at=lesson.end_at,
        )


@dataclass
class ReferenceData:
    teachers_by_id: dict[str, Teacher] = field(default_factory=dict)
    students_by_id: dict[str, Student] = field(default_factory=dict)
    guardians_by_id: dict[str, Guardian] = field(default_factory=dict)
    lessons_by_id: dict[str, Lesson] = field(default_factory=dict)
    closures_by_org: dict[str, set[date]] = field(default_factory=dict)
    time_off: list[TimeOffBlock] = field(default_factory=list)
