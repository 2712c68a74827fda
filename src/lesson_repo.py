# src/lesson_repo.py
from __future__ import annotations

import sqlite3
from datetime import datetime

from db import from_iso, to_iso
from models import BookedInterval, Lesson


def _lesson_from_row(r: sqlite3.Row, student_ids: frozenset[str]) -> Lesson:
    return Lesson(
        lesson_id=r["lesson_id"],
        title=r["title"],
        teacher_id=r["teacher_id"],
        location_id=r["location_id"],
        start_at=from_iso(r["start_at"]),
        end_at=from_iso(r["end_at"]),
        status="scheduled",
        student_ids=student_ids,
    )


def insert_makeup_lesson(
    con: sqlite3.Connection,
    org_id: str,
    teacher_id: str,
    title: str,
    start_at: datetime,
    end_at: datetime,
    created_at: datetime,
    location_id: str | None = None,
) -> str:
    """
    Creates a lesson for a slot match; lesson_id like MU000001.
    IMPORTANT: does NOT commit. Caller decides.
    """
    cur = con.execute(
        """
        INSERT INTO makeup_lessons (lesson_id, org_id, teacher_id, title, location_id, start_at, end_at, created_at)
        VALUES (NULL, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            org_id,
            teacher_id,
            title,
            location_id,
            to_iso(start_at),
            to_iso(end_at),
            to_iso(created_at),
        ),
    )
    new_id = cur.lastrowid
    lesson_id = f"MU{new_id:06d}"
    con.execute("UPDATE makeup_lessons SET lesson_id = ? WHERE id = ?", (lesson_id, new_id))
    return lesson_id


def get_makeup_lesson(con: sqlite3.Connection, lesson_id: str) -> Lesson | None:
    row = con.execute(
        "SELECT * FROM makeup_lessons WHERE lesson_id = ?", (lesson_id,)
    ).fetchone()
    if row is None:
        return None
    return _lesson_from_row(row, list_participant_ids(con, lesson_id))


def list_makeup_intervals(
    con: sqlite3.Connection,
    teacher_id: str | None = None,
    range_start: datetime | None = None,
    range_end: datetime | None = None,
) -> list[BookedInterval]:
    sql = "SELECT lesson_id, teacher_id, start_at, end_at FROM makeup_lessons WHERE 1 = 1"
    params: list[str] = []
    if teacher_id:
        sql += " AND teacher_id = ?"
        params.append(teacher_id)
    # half-open overlap with the requested window
    if range_end is not None:
        sql += " AND start_at < ?"
        params.append(to_iso(range_end))
    if range_start is not None:
        sql += " AND end_at > ?"
        params.append(to_iso(range_start))
    sql += " ORDER BY start_at ASC"

    return [
        BookedInterval(
            teacher_id=r["teacher_id"],
            start_at=from_iso(r["start_at"]),
            end_at=from_iso(r["end_at"]),
            lesson_id=r["lesson_id"],
        )
        for r in con.execute(sql, params).fetchall()
    ]


def add_participant(
    con: sqlite3.Connection,
    lesson_id: str,
    student_id: str,
    entry_id: str,
    added_at: datetime,
) -> None:
    """
    Raises sqlite3.IntegrityError if the entry already has a participant row
    or the student is already on this lesson.
    IMPORTANT: does NOT commit. Caller decides.
    """
    con.execute(
        """
        INSERT INTO lesson_participants (lesson_id, student_id, entry_id, added_at)
        VALUES (?, ?, ?, ?)
        """,
        (lesson_id, student_id, entry_id, to_iso(added_at)),
    )


def list_participant_ids(con: sqlite3.Connection, lesson_id: str) -> frozenset[str]:
    cur = con.execute(
        "SELECT student_id FROM lesson_participants WHERE lesson_id = ?", (lesson_id,)
    )
    return frozenset(r[0] for r in cur.fetchall())


def count_participants_for_entry(con: sqlite3.Connection, entry_id: str) -> int:
    row = con.execute(
        "SELECT COUNT(*) FROM lesson_participants WHERE entry_id = ?", (entry_id,)
    ).fetchone()
    return row[0]
