# src/credit_repo.py
from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Protocol

from db import to_iso
from errors import ConflictError


class BookingLedger(Protocol):
    """
    Side effects owned by other subsystems that a make-up booking must apply.
    Called only from inside the booking transaction, on the same connection,
    so they commit or roll back together with the status flip.
    """

    def redeem_credit(
        self, con: sqlite3.Connection, credit_id: str, lesson_id: str, redeemed_at: datetime
    ) -> None: ...

    def link_attendance_record(
        self,
        con: sqlite3.Connection,
        attendance_record_id: str,
        entry_id: str,
        lesson_id: str,
        linked_at: datetime,
    ) -> None: ...


class SqliteBookingLedger:
    def redeem_credit(
        self, con: sqlite3.Connection, credit_id: str, lesson_id: str, redeemed_at: datetime
    ) -> None:
        cur = con.execute(
            """
            UPDATE make_up_credits
            SET redeemed_at = ?,
                redeemed_lesson_id = ?
            WHERE credit_id = ?
              AND redeemed_at IS NULL
            """,
            (to_iso(redeemed_at), lesson_id, credit_id),
        )
        if cur.rowcount != 1:
            raise ConflictError("credit_unavailable", f"credit {credit_id} is missing or already redeemed")

    def link_attendance_record(
        self,
        con: sqlite3.Connection,
        attendance_record_id: str,
        entry_id: str,
        lesson_id: str,
        linked_at: datetime,
    ) -> None:
        try:
            con.execute(
                """
                INSERT INTO attendance_makeup_links (attendance_record_id, entry_id, booked_lesson_id, linked_at)
                VALUES (?, ?, ?, ?)
                """,
                (attendance_record_id, entry_id, lesson_id, to_iso(linked_at)),
            )
        except sqlite3.IntegrityError:
            raise ConflictError(
                "attendance_already_linked",
                f"attendance record {attendance_record_id} already has a make-up",
            )


def get_credit(con: sqlite3.Connection, credit_id: str):
    return con.execute(
        "SELECT * FROM make_up_credits WHERE credit_id = ?", (credit_id,)
    ).fetchone()


def get_attendance_link(con: sqlite3.Connection, attendance_record_id: str):
    return con.execute(
        "SELECT * FROM attendance_makeup_links WHERE attendance_record_id = ?",
        (attendance_record_id,),
    ).fetchone()
