from __future__ import annotations

from datetime import date, datetime, time
import pandas as pd

from models import DAYS


def split_pipe(s: str) -> list[str]:
    return [x.strip() for x in str(s).split("|") if x.strip()]


def hhmm_to_time(t: str) -> time:
    hh, mm = t.strip().split(":")
    return time(int(hh), int(mm))


def parse_availability_weekly(s: str) -> dict[str, list[tuple[time, time]]]:
    """
    Format:
      Mon:13:00-19:30;Sat:09:00-12:00|13:00-16:00
    Returns:
      {"Mon": [(13:00, 19:30)], "Sat": [(09:00, 12:00), (13:00, 16:00)]}
    Ranges are kept in the order written; they may overlap.
    """
    avail: dict[str, list[tuple[time, time]]] = {}
    if not str(s).strip():
        return avail

    day_chunks = [c.strip() for c in str(s).split(";") if c.strip()]
    for chunk in day_chunks:
        day, ranges_str = chunk.split(":", 1)
        day = day.strip()
        if day not in DAYS:
            raise ValueError(f"Invalid day '{day}' in availability '{s}'")
        ranges = avail.setdefault(day, [])
        for r in ranges_str.split("|"):
            r = r.strip()
            start_s, end_s = r.split("-", 1)
            start_t = hhmm_to_time(start_s)
            end_t = hhmm_to_time(end_s)
            if end_t <= start_t:
                raise ValueError(f"Invalid range {day}:{r} (end <= start)")
            ranges.append((start_t, end_t))

    return avail


def parse_rfc3339(dt: str) -> datetime:
    return pd.to_datetime(dt, utc=True).to_pydatetime()


def parse_date(d: str) -> date:
    return date.fromisoformat(str(d).strip())


def blank_to_none(s: str) -> str | None:
    return str(s).strip() or None
