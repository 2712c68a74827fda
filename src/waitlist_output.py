from __future__ import annotations

from zoneinfo import ZoneInfo

from models import CandidateSlot, Lesson, ReferenceData
from time_fmt import fmt_local_date, fmt_local_range
from waitlist_models import STATUSES, MatchResult, WaitlistEntry

QUALITY_LABELS = {
    "exact_teacher_and_time": "🟢 Same teacher, right time",
    "same_teacher": "🟢 Same teacher",
    "same_time_different_teacher": "🟡 Same time, different teacher",
    "any_available": "⚪ Any available",
}


def teacher_name(ref: ReferenceData, teacher_id: str | None) -> str:
    if not teacher_id:
        return "(no teacher)"
    t = ref.teachers_by_id.get(teacher_id)
    return t.full_name if t else teacher_id


def student_name(ref: ReferenceData, student_id: str) -> str:
    s = ref.students_by_id.get(student_id)
    return s.full_name if s else student_id


def format_lesson_header(lesson: Lesson, ref: ReferenceData, tz: ZoneInfo) -> str:
    when = fmt_local_range(lesson.start_at, lesson.end_at, tz)
    return f"*{lesson.lesson_id}* • {lesson.title} • {teacher_name(ref, lesson.teacher_id)} • {when}"


def format_match_line(r: MatchResult, ref: ReferenceData, tz: ZoneInfo) -> str:
    when = fmt_local_range(r.start_at, r.end_at, tz)
    guardian = f" • guardian {r.guardian_name}" if r.guardian_name else ""
    return (
        f"*{r.student_name}* (`{r.entry_id}`) — {QUALITY_LABELS[r.match_quality]}\n"
        f"missed {r.missed_lesson_title} on {fmt_local_date(r.missed_lesson_date, tz)}"
        f" • waiting since {fmt_local_date(r.waiting_since, tz)}{guardian}\n"
        f"{teacher_name(ref, r.teacher_id)} • {when}"
    )


def format_matches_message(
    lesson: Lesson,
    results: list[MatchResult],
    ref: ReferenceData,
    tz: ZoneInfo,
    max_shown: int = 10,
) -> str:
    lines: list[str] = []
    lines.append("📌 *Make-up candidates*")
    lines.append(format_lesson_header(lesson, ref, tz))
    lines.append("")

    if not results:
        lines.append("• (no waiting students fit this lesson)")
        return "\n".join(lines)

    for r in results[:max_shown]:
        lines.append(f"• {format_match_line(r, ref, tz)}")

    hidden = len(results) - max_shown
    if hidden > 0:
        lines.append(f"…and {hidden} more.")
    return "\n".join(lines)


def format_slots_message(
    entry: WaitlistEntry,
    slots: list[CandidateSlot],
    ref: ReferenceData,
    tz: ZoneInfo,
    max_shown: int = 12,
) -> str:
    lines = [
        f"🗓️ *Open slots for {student_name(ref, entry.student_id)}* (`{entry.entry_id}`)",
        f"{entry.lesson_title} • {entry.lesson_duration_minutes} min",
        "",
    ]
    if not slots:
        lines.append("• (no free slots that day)")
        return "\n".join(lines)

    for s in slots[:max_shown]:
        star = " ⭐" if s.is_preferred else ""
        lines.append(
            f"• {teacher_name(ref, s.teacher_id)} • {fmt_local_range(s.start_at, s.end_at, tz)}{star}"
        )
    return "\n".join(lines)


def format_entry_summary(entry: WaitlistEntry, ref: ReferenceData, tz: ZoneInfo) -> str:
    lines = [
        f"*{student_name(ref, entry.student_id)}* (`{entry.entry_id}`) — *{entry.status.upper()}*",
        f"Missed: {entry.lesson_title} on {fmt_local_date(entry.missed_lesson_start_at, tz)}"
        f" ({entry.absence_reason.replace('_', ' ')})",
    ]
    if entry.matched_start_at and entry.matched_end_at:
        when = fmt_local_range(entry.matched_start_at, entry.matched_end_at, tz)
        lines.append(f"Match: {teacher_name(ref, entry.matched_teacher_id)} • {when}")
    if entry.booked_lesson_id:
        lines.append(f"Booked on `{entry.booked_lesson_id}`")
    if entry.notes:
        lines.append(f"_{entry.notes}_")
    return "\n".join(lines)


def format_status_counts(counts: dict[str, int]) -> str:
    open_total = sum(counts.get(s, 0) for s in ("waiting", "matched", "offered", "accepted"))
    lines = ["📊 *Make-up waitlist*"]
    for s in STATUSES:
        lines.append(f"• {s.title()}: {counts.get(s, 0)}")
    lines.append("")
    lines.append(f"Open: {open_total}")
    return "\n".join(lines)
