# src/waitlist_repo.py
from __future__ import annotations

import sqlite3
from datetime import datetime, time
from typing import Any

from db import from_iso, to_iso
from waitlist_models import STATUSES, WaitlistEntry

# columns a transition may write; identity columns are never updatable
UPDATABLE_COLUMNS = frozenset(
    {
        "matched_lesson_id",
        "matched_teacher_id",
        "matched_start_at",
        "matched_end_at",
        "matched_at",
        "offered_at",
        "responded_at",
        "booked_lesson_id",
        "expires_at",
        "notes",
    }
)


def _hhmm(t: time | None) -> str | None:
    return t.strftime("%H:%M") if t else None


def _time(s: str | None) -> time | None:
    return time.fromisoformat(s) if s else None


def _db_value(v: Any) -> Any:
    if isinstance(v, datetime):
        return to_iso(v)
    return v


def entry_from_row(r: sqlite3.Row) -> WaitlistEntry:
    return WaitlistEntry(
        entry_id=r["entry_id"],
        org_id=r["org_id"],
        student_id=r["student_id"],
        missed_lesson_id=r["missed_lesson_id"],
        missed_lesson_start_at=from_iso(r["missed_lesson_start_at"]),
        lesson_title=r["lesson_title"],
        lesson_duration_minutes=int(r["lesson_duration_minutes"]),
        absence_reason=r["absence_reason"],
        status=r["status"],
        created_at=from_iso(r["created_at"]),
        updated_at=from_iso(r["updated_at"]),
        teacher_id=r["teacher_id"],
        preferred_teacher_id=r["preferred_teacher_id"],
        location_id=r["location_id"],
        guardian_id=r["guardian_id"],
        credit_id=r["credit_id"],
        attendance_record_id=r["attendance_record_id"],
        preferred_days=(r["preferred_days"].split("|") if r["preferred_days"] else []),
        preferred_time_earliest=_time(r["preferred_time_earliest"]),
        preferred_time_latest=_time(r["preferred_time_latest"]),
        matched_lesson_id=r["matched_lesson_id"],
        matched_teacher_id=r["matched_teacher_id"],
        matched_start_at=from_iso(r["matched_start_at"]),
        matched_end_at=from_iso(r["matched_end_at"]),
        matched_at=from_iso(r["matched_at"]),
        offered_at=from_iso(r["offered_at"]),
        responded_at=from_iso(r["responded_at"]),
        booked_lesson_id=r["booked_lesson_id"],
        expires_at=from_iso(r["expires_at"]),
        notes=r["notes"],
    )


def insert_entry(con: sqlite3.Connection, entry: WaitlistEntry) -> str:
    """
    Inserts with a numeric autoincrement id, then sets entry_id like W000001.
    IMPORTANT: does NOT commit. Caller decides.
    Raises sqlite3.IntegrityError if an open entry already exists for the
    same org + student + missed lesson.
    """
    cur = con.execute(
        """
        INSERT INTO make_up_waitlist (
          entry_id, org_id, student_id, missed_lesson_id, missed_lesson_start_at,
          lesson_title, lesson_duration_minutes, absence_reason, teacher_id,
          preferred_teacher_id, location_id, guardian_id, credit_id,
          attendance_record_id, preferred_days, preferred_time_earliest,
          preferred_time_latest, status, expires_at, notes, created_at, updated_at
        )
        VALUES (NULL, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entry.org_id,
            entry.student_id,
            entry.missed_lesson_id,
            to_iso(entry.missed_lesson_start_at),
            entry.lesson_title,
            entry.lesson_duration_minutes,
            entry.absence_reason,
            entry.teacher_id,
            entry.preferred_teacher_id,
            entry.location_id,
            entry.guardian_id,
            entry.credit_id,
            entry.attendance_record_id,
            "|".join(entry.preferred_days) or None,
            _hhmm(entry.preferred_time_earliest),
            _hhmm(entry.preferred_time_latest),
            entry.status,
            to_iso(entry.expires_at),
            entry.notes,
            to_iso(entry.created_at),
            to_iso(entry.updated_at),
        ),
    )
    new_id = cur.lastrowid
    entry_id = f"W{new_id:06d}"

    con.execute("UPDATE make_up_waitlist SET entry_id = ? WHERE id = ?", (entry_id, new_id))
    entry.entry_id = entry_id
    return entry_id


def get_entry(con: sqlite3.Connection, entry_id: str) -> WaitlistEntry | None:
    row = con.execute(
        "SELECT * FROM make_up_waitlist WHERE entry_id = ?", (entry_id,)
    ).fetchone()
    if row is None:
        return None
    return entry_from_row(row)


def find_open_entry(
    con: sqlite3.Connection, org_id: str, student_id: str, missed_lesson_id: str
) -> WaitlistEntry | None:
    row = con.execute(
        """
        SELECT * FROM make_up_waitlist
        WHERE org_id = ? AND student_id = ? AND missed_lesson_id = ?
          AND status IN ('waiting', 'matched', 'offered', 'accepted')
        """,
        (org_id, student_id, missed_lesson_id),
    ).fetchone()
    return entry_from_row(row) if row else None


def find_match_holder(
    con: sqlite3.Connection, matched_lesson_id: str, exclude_entry_id: str
) -> WaitlistEntry | None:
    """Another entry already matched (or booked) onto this lesson or slot key."""
    row = con.execute(
        """
        SELECT * FROM make_up_waitlist
        WHERE matched_lesson_id = ?
          AND entry_id != ?
          AND status IN ('matched', 'offered', 'accepted', 'booked')
        ORDER BY id ASC
        LIMIT 1
        """,
        (matched_lesson_id, exclude_entry_id),
    ).fetchone()
    return entry_from_row(row) if row else None


def list_entries(
    con: sqlite3.Connection,
    org_id: str,
    status: str | None = None,
    teacher_id: str | None = None,
    student_id: str | None = None,
) -> list[WaitlistEntry]:
    """
    Newest first, like the admin table. Filters are ANDed.
    """
    sql = "SELECT * FROM make_up_waitlist WHERE org_id = ?"
    params: list[Any] = [org_id]
    if status:
        sql += " AND status = ?"
        params.append(status)
    if teacher_id:
        sql += " AND teacher_id = ?"
        params.append(teacher_id)
    if student_id:
        sql += " AND student_id = ?"
        params.append(student_id)
    sql += " ORDER BY created_at DESC, id DESC"

    return [entry_from_row(r) for r in con.execute(sql, params).fetchall()]


def list_waiting_entries(con: sqlite3.Connection, org_id: str) -> list[WaitlistEntry]:
    # first-waiting-first-served order
    rows = con.execute(
        """
        SELECT * FROM make_up_waitlist
        WHERE org_id = ? AND status = 'waiting'
        ORDER BY created_at ASC, id ASC
        """,
        (org_id,),
    ).fetchall()
    return [entry_from_row(r) for r in rows]


def list_due_for_expiry(
    con: sqlite3.Connection, org_id: str, now: datetime
) -> list[WaitlistEntry]:
    rows = con.execute(
        """
        SELECT * FROM make_up_waitlist
        WHERE org_id = ?
          AND status IN ('waiting', 'matched', 'offered')
          AND expires_at IS NOT NULL
          AND expires_at <= ?
        ORDER BY expires_at ASC, id ASC
        """,
        (org_id, to_iso(now)),
    ).fetchall()
    return [entry_from_row(r) for r in rows]


def count_by_status(con: sqlite3.Connection, org_id: str) -> dict[str, int]:
    counts = {s: 0 for s in STATUSES}
    rows = con.execute(
        """
        SELECT status, COUNT(*) AS n FROM make_up_waitlist
        WHERE org_id = ?
        GROUP BY status
        """,
        (org_id,),
    ).fetchall()
    for r in rows:
        counts[r["status"]] = r["n"]
    return counts


def update_status(
    con: sqlite3.Connection,
    entry_id: str,
    expected_status: str,
    new_status: str,
    updated_at: datetime,
    expected_match: str | None = None,
    **fields: Any,
) -> bool:
    """
    Conditional update: only applies while the row still has expected_status
    and the match (matched_lesson_id) the caller read.
    IMPORTANT: does NOT commit. Caller decides.
    Returns True if exactly one row changed.
    """
    bad = set(fields) - UPDATABLE_COLUMNS
    if bad:
        raise ValueError(f"not updatable: {sorted(bad)}")

    assignments = ["status = ?", "updated_at = ?"]
    params: list[Any] = [new_status, to_iso(updated_at)]
    for col, value in fields.items():
        assignments.append(f"{col} = ?")
        params.append(_db_value(value))
    params.extend([entry_id, expected_status, expected_match])

    cur = con.execute(
        f"""
        UPDATE make_up_waitlist
        SET {", ".join(assignments)}
        WHERE entry_id = ?
          AND status = ?
          AND matched_lesson_id IS ?
        """,
        params,
    )
    return cur.rowcount == 1
