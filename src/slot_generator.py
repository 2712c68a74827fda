# src/slot_generator.py
from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from models import DAYS, AvailabilityBlock, BookedInterval, CandidateSlot, TimeOffBlock

SLOT_GRANULARITY_MIN = 15

# used when the teacher has no block on that weekday, so organisations
# without configured availability still get slots
DEFAULT_DAY_START = time(9, 0)
DEFAULT_DAY_END = time(18, 0)


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    # half-open intervals: touching ends do not clash
    return a_start < b_end and a_end > b_start


def time_to_min(t: time) -> int:
    return t.hour * 60 + t.minute


def local_day(d: date) -> str:
    return DAYS[d.weekday()]


def slot_step_minutes(duration_minutes: int, granularity: int = SLOT_GRANULARITY_MIN) -> int:
    """Back-to-back spacing, rounded up to the granularity (30 -> 30, 50 -> 60)."""
    return math.ceil(duration_minutes / granularity) * granularity


def day_windows(blocks: Iterable[AvailabilityBlock], target_date: date) -> list[tuple[int, int]]:
    """
    (start_min, end_min) windows for the target weekday, in input order.
    Inverted or empty windows are kept here and simply yield no starts.
    """
    day = local_day(target_date)
    windows = [
        (time_to_min(b.start_time), time_to_min(b.end_time)) for b in blocks if b.day == day
    ]
    if not windows:
        return [(time_to_min(DEFAULT_DAY_START), time_to_min(DEFAULT_DAY_END))]
    return windows


def _local_dt(d: date, minute: int, tz: ZoneInfo) -> datetime:
    return datetime.combine(d, time(minute // 60, minute % 60), tzinfo=tz)


def generate_slots(
    teacher_id: str,
    target_date: date,
    duration_minutes: int,
    blocks: Iterable[AvailabilityBlock],
    booked_intervals: Iterable[BookedInterval],
    closure_dates: Iterable[date],
    now: datetime,
    tz: ZoneInfo,
    preferred_time: time | None = None,
    time_off: Iterable[TimeOffBlock] = (),
    granularity_minutes: int = SLOT_GRANULARITY_MIN,
) -> list[CandidateSlot]:
    """
    Bookable start times for one teacher on one local date.

    Pure: every input, including "now" and the organisation timezone, is a
    parameter. Returns [] for closures, impossible durations or fully booked
    days. Output is ascending by start; overlapping blocks that produce the
    same start are deduplicated (first one wins).
    """
    if target_date in set(closure_dates):
        return []
    if duration_minutes <= 0:
        return []

    busy = [
        (b.start_at, b.end_at) for b in booked_intervals if b.teacher_id == teacher_id
    ]
    busy += [(t.start_at, t.end_at) for t in time_off if t.teacher_id == teacher_id]

    step = slot_step_minutes(duration_minutes, granularity_minutes)
    length = timedelta(minutes=duration_minutes)

    slots: list[CandidateSlot] = []
    seen: set[datetime] = set()

    for block_start, block_end in day_windows(blocks, target_date):
        for minute in range(block_start, block_end - duration_minutes + 1, step):
            start_local = _local_dt(target_date, minute, tz)
            start_utc = start_local.astimezone(timezone.utc)
            end_utc = start_utc + length

            if start_utc < now:
                continue
            if start_utc in seen:
                continue
            if any(overlaps(start_utc, end_utc, b_start, b_end) for b_start, b_end in busy):
                continue

            is_preferred = preferred_time is not None and (
                start_local.hour == preferred_time.hour
                and start_local.minute == preferred_time.minute
            )
            seen.add(start_utc)
            slots.append(
                CandidateSlot(
                    teacher_id=teacher_id,
                    start_at=start_utc,
                    end_at=end_utc,
                    is_preferred=is_preferred,
                )
            )

    slots.sort(key=lambda s: s.start_at)
    return slots
