# src/waitlist_service.py
r"""
Waitlist state machine.

  waiting -> matched -> offered -> accepted -> booked
                 \         \-> waiting (declined)
                  \-> waiting (dismissed, also from offered)
  waiting | matched | offered            -> expired
  waiting | matched | offered | accepted -> cancelled

Every transition checks the caller's copy, then re-reads the row inside
BEGIN IMMEDIATE and applies a conditional UPDATE on status and match. A
stale copy is rejected with ConflictError; nothing is overwritten blindly.
"""
from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from datetime import datetime, time, timezone
from typing import Any, Protocol

from app_logging import get_logger
from db import immediate, utc_now
from errors import ConflictError, NotFoundError, StateError, ValidationError
from event_repo import log_event
from match_finder import MatchTarget, ineligibility_reasons, targets_for
from models import DAYS, CandidateSlot, FreedLesson, Lesson
from waitlist_models import (
    ABSENCE_REASONS,
    EXPIRABLE_STATUSES,
    OPEN_STATUSES,
    WaitlistEntry,
)
from waitlist_repo import (
    find_match_holder,
    find_open_entry,
    get_entry,
    insert_entry,
    list_due_for_expiry,
    update_status,
)

log = get_logger(__name__)

MIN_DURATION_MIN = 15

ALLOWED_FROM: dict[str, frozenset[str]] = {
    "mark_matched": frozenset({"waiting"}),
    "dismiss_match": frozenset({"matched", "offered"}),
    "offer": frozenset({"matched", "offered"}),
    "record_response": frozenset({"offered"}),
    "confirm_booking": frozenset({"accepted"}),
    "expire": EXPIRABLE_STATUSES,
    "cancel": OPEN_STATUSES,
}

CLEARED_MATCH: dict[str, Any] = {
    "matched_lesson_id": None,
    "matched_teacher_id": None,
    "matched_start_at": None,
    "matched_end_at": None,
    "matched_at": None,
}


class OfferDispatcher(Protocol):
    def dispatch_offer_notification(self, entry_id: str) -> None: ...


# ----------------------------
# Guards shared with booking_service
# ----------------------------
def require_source(entry: WaitlistEntry, action: str) -> None:
    if entry.status not in ALLOWED_FROM[action]:
        raise StateError(
            f"invalid_transition({entry.status}:{action})",
            f"{action} is not allowed from {entry.status} ({entry.entry_id})",
        )


def fresh_or_conflict(con: sqlite3.Connection, entry: WaitlistEntry) -> WaitlistEntry:
    """Persisted row, provided it still has the status and match the caller saw."""
    current = get_entry(con, entry.entry_id)
    if current is None:
        raise NotFoundError("entry_not_found", entry.entry_id)
    if current.status != entry.status:
        raise ConflictError(
            "entry_changed",
            f"{entry.entry_id} is {current.status}, caller expected {entry.status}",
        )
    # dismissed and re-matched since the caller read it
    if current.matched_lesson_id != entry.matched_lesson_id:
        raise ConflictError(
            "entry_changed",
            f"{entry.entry_id} is matched to {current.matched_lesson_id}, "
            f"caller expected {entry.matched_lesson_id}",
        )
    return current


def apply_transition(
    con: sqlite3.Connection,
    current: WaitlistEntry,
    new_status: str,
    now: datetime,
    detail: str = "",
    **fields: Any,
) -> WaitlistEntry:
    """Conditional update + audit event. Must run inside immediate(con)."""
    ok = update_status(
        con,
        current.entry_id,
        current.status,
        new_status,
        now,
        expected_match=current.matched_lesson_id,
        **fields,
    )
    if not ok:
        raise ConflictError("entry_changed", current.entry_id)
    log_event(con, current.entry_id, current.status, new_status, now, detail)
    return get_entry(con, current.entry_id)


def get_entry_or_fail(con: sqlite3.Connection, entry_id: str) -> WaitlistEntry:
    entry = get_entry(con, entry_id)
    if entry is None:
        raise NotFoundError("entry_not_found", entry_id)
    return entry


# ----------------------------
# Create
# ----------------------------
def _validate_create(
    student_id: str,
    missed_lesson: Lesson,
    absence_reason: str,
    duration_minutes: int,
    preferred_days: list[str],
    earliest: time | None,
    latest: time | None,
) -> None:
    if student_id not in missed_lesson.student_ids:
        raise ValidationError(
            "student_not_in_lesson",
            f"{student_id} is not a participant of {missed_lesson.lesson_id}",
        )
    if absence_reason not in ABSENCE_REASONS:
        raise ValidationError("invalid_absence_reason", absence_reason)
    if not isinstance(duration_minutes, int) or duration_minutes < MIN_DURATION_MIN:
        raise ValidationError("invalid_duration", str(duration_minutes))
    bad_days = [d for d in preferred_days if d not in DAYS]
    if bad_days:
        raise ValidationError("invalid_preferred_days", str(bad_days))
    if earliest and latest and earliest >= latest:
        raise ValidationError("invalid_preferred_window", f"{earliest} >= {latest}")


def create_entry(
    con: sqlite3.Connection,
    org_id: str,
    student_id: str,
    missed_lesson: Lesson,
    absence_reason: str,
    duration_minutes: int | None = None,
    preferred_teacher_id: str | None = None,
    location_id: str | None = None,
    guardian_id: str | None = None,
    credit_id: str | None = None,
    attendance_record_id: str | None = None,
    preferred_days: Iterable[str] | None = None,
    preferred_time_earliest: time | None = None,
    preferred_time_latest: time | None = None,
    expires_at: datetime | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> WaitlistEntry:
    """
    Puts a student on the make-up waitlist for a lesson they missed.

    Idempotent: if an open entry already exists for the same student and
    missed lesson, that entry is returned unchanged.
    """
    now = now or utc_now()
    duration = duration_minutes if duration_minutes is not None else missed_lesson.duration_minutes
    days = list(preferred_days or [])

    _validate_create(
        student_id,
        missed_lesson,
        absence_reason,
        duration,
        days,
        preferred_time_earliest,
        preferred_time_latest,
    )

    with immediate(con):
        existing = find_open_entry(con, org_id, student_id, missed_lesson.lesson_id)
        if existing is not None:
            log.info(
                "waitlist_create_existing",
                entry_id=existing.entry_id,
                student_id=student_id,
                missed_lesson_id=missed_lesson.lesson_id,
            )
            return existing

        entry = WaitlistEntry(
            entry_id="",
            org_id=org_id,
            student_id=student_id,
            missed_lesson_id=missed_lesson.lesson_id,
            missed_lesson_start_at=missed_lesson.start_at.astimezone(timezone.utc),
            lesson_title=missed_lesson.title,
            lesson_duration_minutes=duration,
            absence_reason=absence_reason,
            status="waiting",
            created_at=now,
            updated_at=now,
            teacher_id=missed_lesson.teacher_id,
            preferred_teacher_id=preferred_teacher_id,
            location_id=location_id or missed_lesson.location_id,
            guardian_id=guardian_id,
            credit_id=credit_id,
            attendance_record_id=attendance_record_id,
            preferred_days=days,
            preferred_time_earliest=preferred_time_earliest,
            preferred_time_latest=preferred_time_latest,
            expires_at=expires_at,
            notes=notes,
        )
        entry_id = insert_entry(con, entry)
        log_event(con, entry_id, None, "waiting", now, absence_reason)
        created = get_entry(con, entry_id)

    log.info(
        "waitlist_created",
        entry_id=entry_id,
        student_id=student_id,
        missed_lesson_id=missed_lesson.lesson_id,
    )
    return created


# ----------------------------
# Transitions
# ----------------------------
def mark_matched(
    con: sqlite3.Connection,
    entry: WaitlistEntry,
    target: FreedLesson | CandidateSlot,
    now: datetime | None = None,
) -> WaitlistEntry:
    now = now or utc_now()
    require_source(entry, "mark_matched")

    t: MatchTarget = targets_for(target if isinstance(target, FreedLesson) else [target])[0]
    reasons = ineligibility_reasons(entry, t)
    if reasons:
        raise ValidationError(reasons[0], f"{entry.entry_id} cannot match {t.target_id}")

    with immediate(con):
        current = fresh_or_conflict(con, entry)
        holder = find_match_holder(con, t.target_id, current.entry_id)
        if holder is not None:
            raise ConflictError(
                "slot_taken",
                f"{t.target_id} is already held by {holder.entry_id} ({holder.status})",
            )
        updated = apply_transition(
            con,
            current,
            "matched",
            now,
            detail=t.target_id,
            matched_lesson_id=t.target_id,
            matched_teacher_id=t.teacher_id,
            matched_start_at=t.start_at,
            matched_end_at=t.end_at,
            matched_at=now,
        )

    log.info("waitlist_matched", entry_id=entry.entry_id, matched_lesson_id=t.target_id)
    return updated


def dismiss_match(
    con: sqlite3.Connection, entry: WaitlistEntry, now: datetime | None = None
) -> WaitlistEntry:
    """Operator says "wrong match": back to the open pool, entry kept."""
    now = now or utc_now()
    require_source(entry, "dismiss_match")

    with immediate(con):
        current = fresh_or_conflict(con, entry)
        updated = apply_transition(
            con,
            current,
            "waiting",
            now,
            detail=f"dismissed {current.matched_lesson_id}",
            offered_at=None,
            **CLEARED_MATCH,
        )

    log.info("waitlist_match_dismissed", entry_id=entry.entry_id)
    return updated


def offer(
    con: sqlite3.Connection,
    entry: WaitlistEntry,
    dispatcher: OfferDispatcher,
    now: datetime | None = None,
) -> WaitlistEntry:
    """
    matched -> offered, then one dispatch. Calling it on an offered entry
    is a resend: dispatches again, offered_at stays as it was.
    Dispatch happens after commit; a failure there is logged and re-raised
    with the status already committed (resend is the retry).
    """
    now = now or utc_now()
    require_source(entry, "offer")

    with immediate(con):
        current = fresh_or_conflict(con, entry)
        if current.status == "matched":
            updated = apply_transition(con, current, "offered", now, offered_at=now)
        else:
            log_event(con, current.entry_id, "offered", "offered", now, "resend")
            updated = current

    try:
        dispatcher.dispatch_offer_notification(updated.entry_id)
    except Exception:
        log.exception("offer_dispatch_failed", entry_id=updated.entry_id)
        raise

    log.info(
        "waitlist_offered",
        entry_id=updated.entry_id,
        resend=entry.status == "offered",
    )
    return updated


def record_response(
    con: sqlite3.Connection,
    entry: WaitlistEntry,
    accepted: bool,
    now: datetime | None = None,
) -> WaitlistEntry:
    now = now or utc_now()
    require_source(entry, "record_response")

    with immediate(con):
        current = fresh_or_conflict(con, entry)
        if accepted:
            updated = apply_transition(con, current, "accepted", now, responded_at=now)
        else:
            # declined: back to the pool, responded_at keeps the history
            updated = apply_transition(
                con,
                current,
                "waiting",
                now,
                detail="declined",
                responded_at=now,
                offered_at=None,
                **CLEARED_MATCH,
            )

    log.info("waitlist_response", entry_id=entry.entry_id, accepted=accepted)
    return updated


def expire(con: sqlite3.Connection, entry: WaitlistEntry, now: datetime) -> WaitlistEntry:
    require_source(entry, "expire")

    with immediate(con):
        current = fresh_or_conflict(con, entry)
        if current.expires_at is None or current.expires_at > now:
            raise StateError("entry_not_due", current.entry_id)
        updated = apply_transition(con, current, "expired", now, **CLEARED_MATCH)

    log.info("waitlist_expired", entry_id=entry.entry_id)
    return updated


def expire_due_entries(con: sqlite3.Connection, org_id: str, now: datetime) -> list[str]:
    """
    Background sweep. Entries an operator changed between the scan and the
    update are skipped; the next sweep sees their new state.
    """
    expired: list[str] = []
    for entry in list_due_for_expiry(con, org_id, now):
        try:
            expire(con, entry, now)
        except (ConflictError, StateError, NotFoundError) as e:
            log.info("expiry_skipped", entry_id=entry.entry_id, code=e.code)
            continue
        expired.append(entry.entry_id)

    log.info("expiry_sweep_done", org_id=org_id, expired=len(expired))
    return expired


def cancel(
    con: sqlite3.Connection,
    entry: WaitlistEntry,
    note: str | None = None,
    now: datetime | None = None,
) -> WaitlistEntry:
    now = now or utc_now()
    require_source(entry, "cancel")

    with immediate(con):
        current = fresh_or_conflict(con, entry)
        fields: dict[str, Any] = dict(CLEARED_MATCH)
        if note:
            fields["notes"] = f"{current.notes}\n{note}" if current.notes else note
        updated = apply_transition(con, current, "cancelled", now, detail=note or "", **fields)

    log.info("waitlist_cancelled", entry_id=entry.entry_id)
    return updated
