"""Shared builders and fakes for the waitlist tests."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from models import AvailabilityBlock, Guardian, Lesson, ReferenceData, Student, Teacher
from waitlist_models import WaitlistEntry

UTC = timezone.utc
LONDON = ZoneInfo("Europe/London")
ORG = "org1"

# Monday 6 Jan 2025; London is on GMT so local == UTC in January
NOW = datetime(2025, 1, 6, 8, 0, tzinfo=UTC)


def utc(y: int, m: int, d: int, hh: int, mm: int = 0) -> datetime:
    return datetime(y, m, d, hh, mm, tzinfo=UTC)


def make_lesson(
    lesson_id: str,
    teacher_id: str | None,
    start_at: datetime,
    minutes: int = 30,
    students: tuple[str, ...] = (),
    title: str = "Piano 30",
    status: str = "scheduled",
) -> Lesson:
    return Lesson(
        lesson_id=lesson_id,
        title=title,
        teacher_id=teacher_id,
        location_id="LOC1",
        start_at=start_at,
        end_at=start_at + timedelta(minutes=minutes),
        status=status,
        student_ids=frozenset(students),
    )


def make_entry(
    entry_id: str = "W000001",
    student_id: str = "S1",
    missed_lesson_id: str = "L1",
    missed_start: datetime = utc(2025, 1, 6, 10),
    duration: int = 30,
    teacher_id: str | None = "T1",
    created_at: datetime = NOW,
    status: str = "waiting",
    **kw,
) -> WaitlistEntry:
    return WaitlistEntry(
        entry_id=entry_id,
        org_id=ORG,
        student_id=student_id,
        missed_lesson_id=missed_lesson_id,
        missed_lesson_start_at=missed_start,
        lesson_title="Piano 30",
        lesson_duration_minutes=duration,
        absence_reason="sick",
        status=status,
        created_at=created_at,
        updated_at=created_at,
        teacher_id=teacher_id,
        **kw,
    )


def sample_ref() -> ReferenceData:
    """
    T1 teaches Mon 09:00-12:00, T2 has no availability configured.
    L1 is the lesson S1/S2 missed; L2 and L3 are next week's lessons.
    """
    teachers = {
        "T1": Teacher(
            "T1",
            "Ada Teacher",
            "U_T1",
            (AvailabilityBlock("T1", "Mon", time(9, 0), time(12, 0)),),
        ),
        "T2": Teacher("T2", "Bea Teacher", None, ()),
    }
    guardians = {
        "G1": Guardian("G1", "Gina Parent", "gina@example.com", "U_G1"),
        "G2": Guardian("G2", "Gus Parent", None, None),
    }
    students = {
        "S1": Student("S1", "Sam", "One", "G1"),
        "S2": Student("S2", "Sue", "Two", "G2"),
        "S3": Student("S3", "Sid", "Three", "G1"),
    }
    lessons = {
        "L1": make_lesson("L1", "T1", utc(2025, 1, 6, 10), students=("S1", "S2")),
        "L2": make_lesson("L2", "T1", utc(2025, 1, 13, 10), students=("S3",)),
        "L3": make_lesson("L3", "T2", utc(2025, 1, 13, 14), students=("S2",)),
        "L4": make_lesson(
            "L4", "T1", utc(2025, 1, 14, 10), minutes=45, students=("S3",), title="Piano 45"
        ),
    }
    return ReferenceData(
        teachers_by_id=teachers,
        students_by_id=students,
        guardians_by_id=guardians,
        lessons_by_id=lessons,
    )


class FakeDispatcher:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[str] = []

    def dispatch_offer_notification(self, entry_id: str) -> None:
        self.sent.append(entry_id)
        if self.fail:
            raise RuntimeError("slack unavailable")


class FakeSlackClient:
    """Records Slack Web API calls; returns just enough for the callers."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self._ts = 0

    def _next_ts(self) -> str:
        self._ts += 1
        return f"1700000000.{self._ts:06d}"

    def conversations_open(self, users: str) -> dict:
        self.calls.append(("conversations_open", {"users": users}))
        return {"channel": {"id": f"D_{users}"}}

    def chat_postMessage(self, **kwargs) -> dict:
        self.calls.append(("chat_postMessage", kwargs))
        return {"channel": kwargs["channel"], "ts": self._next_ts()}

    def chat_postEphemeral(self, **kwargs) -> dict:
        self.calls.append(("chat_postEphemeral", kwargs))
        return {"ok": True}

    def chat_update(self, **kwargs) -> dict:
        self.calls.append(("chat_update", kwargs))
        return {"ok": True}

    def named(self, name: str) -> list[dict]:
        return [kw for n, kw in self.calls if n == name]
