# src/event_repo.py
from __future__ import annotations

import sqlite3
from datetime import datetime

from db import to_iso


def log_event(
    con: sqlite3.Connection,
    entry_id: str,
    from_status: str | None,
    to_status: str,
    occurred_at: datetime,
    detail: str = "",
) -> None:
    con.execute(
        """
        INSERT INTO waitlist_events (entry_id, from_status, to_status, occurred_at, detail)
        VALUES (?, ?, ?, ?, ?)
        """,
        (entry_id, from_status, to_status, to_iso(occurred_at), detail),
    )


def list_events_for_entry(con: sqlite3.Connection, entry_id: str):
    return con.execute(
        """
        SELECT * FROM waitlist_events
        WHERE entry_id = ?
        ORDER BY id ASC
        """,
        (entry_id,),
    ).fetchall()
