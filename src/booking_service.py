# src/booking_service.py
from __future__ import annotations

import sqlite3
from datetime import datetime

from app_logging import get_logger
from credit_repo import BookingLedger, SqliteBookingLedger
from db import immediate, utc_now
from errors import ConflictError
from lesson_repo import (
    add_participant,
    insert_makeup_lesson,
    list_makeup_intervals,
    list_participant_ids,
)
from waitlist_models import WaitlistEntry
from waitlist_service import apply_transition, fresh_or_conflict, require_source

log = get_logger(__name__)


def _lesson_for_match(con: sqlite3.Connection, entry: WaitlistEntry, now: datetime) -> str:
    """
    Lesson the student is added to. A freed lesson takes one make-up
    student. A slot match has no lesson yet: one is created, unless another
    make-up booking took the teacher's time first.
    """
    if not entry.is_slot_match:
        lesson_id = entry.matched_lesson_id
        # the student themselves is reported as already_on_lesson below
        seated = list_participant_ids(con, lesson_id) - {entry.student_id}
        if seated:
            raise ConflictError(
                "slot_taken",
                f"{lesson_id} already has make-up student {sorted(seated)[0]}",
            )
        return lesson_id

    clash = list_makeup_intervals(
        con,
        teacher_id=entry.matched_teacher_id,
        range_start=entry.matched_start_at,
        range_end=entry.matched_end_at,
    )
    if clash:
        raise ConflictError(
            "slot_taken",
            f"{entry.matched_lesson_id} overlaps {clash[0].lesson_id}",
        )

    return insert_makeup_lesson(
        con,
        org_id=entry.org_id,
        teacher_id=entry.matched_teacher_id,
        title=f"Make-up: {entry.lesson_title}",
        start_at=entry.matched_start_at,
        end_at=entry.matched_end_at,
        created_at=now,
        location_id=entry.location_id,
    )


def confirm_booking(
    con: sqlite3.Connection,
    entry: WaitlistEntry,
    ledger: BookingLedger | None = None,
    now: datetime | None = None,
) -> WaitlistEntry:
    """
    accepted -> booked, all or nothing:
      - student attached to the matched lesson (created first for slot matches)
      - status flip + booked_lesson_id
      - credit redeemed, attendance record linked (when the entry has them)

    Succeeds for exactly one caller; a concurrent confirm sees the booked row
    and gets ConflictError. Any failure rolls the whole booking back.
    """
    now = now or utc_now()
    ledger = ledger or SqliteBookingLedger()
    require_source(entry, "confirm_booking")

    with immediate(con):
        current = fresh_or_conflict(con, entry)
        lesson_id = _lesson_for_match(con, current, now)

        try:
            add_participant(con, lesson_id, current.student_id, current.entry_id, now)
        except sqlite3.IntegrityError:
            raise ConflictError(
                "already_on_lesson",
                f"{current.student_id} is already on {lesson_id}",
            )

        updated = apply_transition(
            con, current, "booked", now, detail=lesson_id, booked_lesson_id=lesson_id
        )

        if current.credit_id:
            ledger.redeem_credit(con, current.credit_id, lesson_id, now)
        if current.attendance_record_id:
            ledger.link_attendance_record(
                con, current.attendance_record_id, current.entry_id, lesson_id, now
            )

    log.info(
        "waitlist_booked",
        entry_id=entry.entry_id,
        lesson_id=lesson_id,
        credit_id=current.credit_id,
    )
    return updated
