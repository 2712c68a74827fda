import sqlite3


def upsert_offer_message(
    con: sqlite3.Connection,
    entry_id: str,
    channel_id: str,
    message_ts: str,
    status: str,
    updated_at: str,
) -> None:
    con.execute(
        """
      INSERT INTO offer_messages (entry_id, channel_id, message_ts, status, updated_at)
      VALUES (?, ?, ?, ?, ?)
      ON CONFLICT(entry_id) DO UPDATE SET
        channel_id=excluded.channel_id,
        message_ts=excluded.message_ts,
        status=excluded.status,
        updated_at=excluded.updated_at
    """,
        (entry_id, channel_id, message_ts, status, updated_at),
    )


def set_offer_message_status(
    con: sqlite3.Connection, entry_id: str, status: str, updated_at: str
) -> None:
    con.execute(
        """
      UPDATE offer_messages SET status=?, updated_at=?
      WHERE entry_id=?
    """,
        (status, updated_at, entry_id),
    )


def get_offer_message(con: sqlite3.Connection, entry_id: str) -> tuple[str, str, str] | None:
    cur = con.execute(
        "SELECT channel_id, message_ts, status FROM offer_messages WHERE entry_id=?",
        (entry_id,),
    )
    row = cur.fetchone()
    return (row[0], row[1], row[2]) if row else None
