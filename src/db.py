# src/db.py
from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

DB_PATH = Path("state.db")


def to_iso(dt: datetime | None) -> str | None:
    # stored timestamps are always UTC
    if dt is None:
        return None
    if dt.tzinfo is None:
        raise ValueError(f"naive datetime cannot be stored: {dt!r}")
    return dt.astimezone(timezone.utc).isoformat()


def from_iso(s: str | None) -> datetime | None:
    return datetime.fromisoformat(s) if s else None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_con(path: Path | str = DB_PATH) -> sqlite3.Connection:
    # autocommit mode: every transaction is an explicit BEGIN IMMEDIATE
    con = sqlite3.connect(path, timeout=10.0, isolation_level=None)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON;")
    return con


@contextmanager
def immediate(con: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Write transaction holding SQLite's reserved lock from the first read.
    Commits on success, rolls back on any exception.
    """
    con.execute("BEGIN IMMEDIATE")
    try:
        yield con
    except BaseException:
        con.rollback()
        raise
    con.commit()


def init_db(con: sqlite3.Connection) -> None:
    """
    Central schema bootstrap.
    Repos/services assume these tables + column names exist.
    """
    con.executescript(
        """
        -- Waitlist entries (never deleted; status column + timestamps)
        CREATE TABLE IF NOT EXISTS make_up_waitlist (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          entry_id TEXT UNIQUE,
          org_id TEXT NOT NULL,
          student_id TEXT NOT NULL,
          missed_lesson_id TEXT NOT NULL,
          missed_lesson_start_at TEXT NOT NULL,   -- ISO string in UTC
          lesson_title TEXT NOT NULL,
          lesson_duration_minutes INTEGER NOT NULL,
          absence_reason TEXT NOT NULL,
          teacher_id TEXT,
          preferred_teacher_id TEXT,
          location_id TEXT,
          guardian_id TEXT,
          credit_id TEXT,
          attendance_record_id TEXT,
          preferred_days TEXT,                    -- "Mon|Wed" or NULL
          preferred_time_earliest TEXT,           -- "HH:MM" local
          preferred_time_latest TEXT,
          status TEXT NOT NULL,                   -- waiting | matched | offered | accepted | booked | expired | cancelled
          matched_lesson_id TEXT,                 -- lesson id or slot:<teacher>:<start>
          matched_teacher_id TEXT,
          matched_start_at TEXT,
          matched_end_at TEXT,
          matched_at TEXT,
          offered_at TEXT,
          responded_at TEXT,
          booked_lesson_id TEXT,
          expires_at TEXT,
          notes TEXT,
          created_at TEXT NOT NULL,
          updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_waitlist_org_status ON make_up_waitlist(org_id, status);
        CREATE INDEX IF NOT EXISTS idx_waitlist_student ON make_up_waitlist(student_id);

        CREATE UNIQUE INDEX IF NOT EXISTS uq_waitlist_open_entry
          ON make_up_waitlist(org_id, student_id, missed_lesson_id)
          WHERE status IN ('waiting', 'matched', 'offered', 'accepted');

        -- Transition log
        CREATE TABLE IF NOT EXISTS waitlist_events (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          entry_id TEXT NOT NULL,
          from_status TEXT,                       -- NULL on create
          to_status TEXT NOT NULL,
          occurred_at TEXT NOT NULL,
          detail TEXT NOT NULL DEFAULT ''
        );

        CREATE INDEX IF NOT EXISTS idx_events_entry ON waitlist_events(entry_id);

        -- Lessons created by make-up confirmations (slot matches)
        CREATE TABLE IF NOT EXISTS makeup_lessons (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          lesson_id TEXT UNIQUE,
          org_id TEXT NOT NULL,
          teacher_id TEXT NOT NULL,
          title TEXT NOT NULL,
          location_id TEXT,
          start_at TEXT NOT NULL,
          end_at TEXT NOT NULL,
          created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_makeup_lessons_teacher ON makeup_lessons(teacher_id);

        -- Students attached to a lesson by a make-up booking
        CREATE TABLE IF NOT EXISTS lesson_participants (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          lesson_id TEXT NOT NULL,
          student_id TEXT NOT NULL,
          entry_id TEXT NOT NULL UNIQUE,
          added_at TEXT NOT NULL,
          UNIQUE (lesson_id, student_id)
        );

        -- Credit ledger hook (owned by billing; we only redeem)
        CREATE TABLE IF NOT EXISTS make_up_credits (
          credit_id TEXT PRIMARY KEY,
          org_id TEXT NOT NULL,
          student_id TEXT NOT NULL,
          issued_at TEXT NOT NULL,
          expires_at TEXT,
          redeemed_at TEXT,
          redeemed_lesson_id TEXT
        );

        -- Attendance record -> make-up booking link
        CREATE TABLE IF NOT EXISTS attendance_makeup_links (
          attendance_record_id TEXT PRIMARY KEY,
          entry_id TEXT NOT NULL,
          booked_lesson_id TEXT NOT NULL,
          linked_at TEXT NOT NULL
        );

        -- Where the offer for an entry was posted (so it can be updated later)
        CREATE TABLE IF NOT EXISTS offer_messages (
          entry_id TEXT PRIMARY KEY,
          channel_id TEXT NOT NULL,
          message_ts TEXT NOT NULL,
          status TEXT NOT NULL,                   -- SENT | ACCEPTED | DECLINED | CLOSED
          updated_at TEXT NOT NULL
        );
        """
    )
