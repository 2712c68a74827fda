from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo


def fmt_local_range(start_utc: datetime, end_utc: datetime, tz: ZoneInfo) -> str:
    s = start_utc.astimezone(tz)
    e = end_utc.astimezone(tz)

    # Same day: "Tue 14 Jan 15:00–15:30"
    if s.date() == e.date():
        return f"{s:%a %d %b %H:%M}–{e:%H:%M}"
    # crosses midnight
    return f"{s:%a %d %b %H:%M}–{e:%a %d %b %H:%M}"


def fmt_local_date(dt: datetime, tz: ZoneInfo) -> str:
    return f"{dt.astimezone(tz):%a %d %b %Y}"
