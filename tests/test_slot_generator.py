from datetime import date, time

from helpers import LONDON, NOW, utc
from models import AvailabilityBlock, BookedInterval, TimeOffBlock
from slot_generator import generate_slots, overlaps, slot_step_minutes

MONDAY = date(2025, 1, 6)
MORNING = [AvailabilityBlock("T1", "Mon", time(9, 0), time(12, 0))]


def _starts(slots):
    return [f"{s.start_at.astimezone(LONDON):%H:%M}" for s in slots]


def test_open_morning_yields_back_to_back_half_hours():
    slots = generate_slots("T1", MONDAY, 30, MORNING, [], [], NOW, LONDON)

    assert _starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
    assert all(s.teacher_id == "T1" for s in slots)
    assert all(s.duration_minutes == 30 for s in slots)


def test_booked_interval_removes_clashing_start():
    booked = [BookedInterval("T1", utc(2025, 1, 6, 10), utc(2025, 1, 6, 10, 30), "L1")]

    slots = generate_slots("T1", MONDAY, 30, MORNING, booked, [], NOW, LONDON)

    assert _starts(slots) == ["09:00", "09:30", "10:30", "11:00", "11:30"]


def test_no_slot_overlaps_any_booking():
    booked = [
        BookedInterval("T1", utc(2025, 1, 6, 9, 15), utc(2025, 1, 6, 9, 45), "A"),
        BookedInterval("T1", utc(2025, 1, 6, 11, 0), utc(2025, 1, 6, 12, 0), "B"),
    ]

    slots = generate_slots("T1", MONDAY, 30, MORNING, booked, [], NOW, LONDON)

    assert slots
    for s in slots:
        for b in booked:
            assert not overlaps(s.start_at, s.end_at, b.start_at, b.end_at)


def test_touching_booking_does_not_clash():
    booked = [BookedInterval("T1", utc(2025, 1, 6, 9, 30), utc(2025, 1, 6, 10), "A")]

    slots = generate_slots("T1", MONDAY, 30, MORNING, booked, [], NOW, LONDON)

    assert "09:00" in _starts(slots)
    assert "10:00" in _starts(slots)


def test_other_teachers_bookings_are_ignored():
    booked = [BookedInterval("T2", utc(2025, 1, 6, 10), utc(2025, 1, 6, 10, 30), "X")]

    slots = generate_slots("T1", MONDAY, 30, MORNING, booked, [], NOW, LONDON)

    assert len(slots) == 6


def test_closure_date_returns_nothing():
    assert generate_slots("T1", MONDAY, 30, MORNING, [], [MONDAY], NOW, LONDON) == []


def test_non_positive_duration_returns_nothing():
    assert generate_slots("T1", MONDAY, 0, MORNING, [], [], NOW, LONDON) == []
    assert generate_slots("T1", MONDAY, -30, MORNING, [], [], NOW, LONDON) == []


def test_duration_longer_than_block_returns_nothing():
    assert generate_slots("T1", MONDAY, 240, MORNING, [], [], NOW, LONDON) == []


def test_starts_before_now_are_skipped():
    now = utc(2025, 1, 6, 10, 15)

    slots = generate_slots("T1", MONDAY, 30, MORNING, [], [], now, LONDON)

    assert _starts(slots) == ["10:30", "11:00", "11:30"]


def test_inverted_block_yields_no_slots():
    blocks = [AvailabilityBlock("T1", "Mon", time(12, 0), time(9, 0))]

    assert generate_slots("T1", MONDAY, 30, blocks, [], [], NOW, LONDON) == []


def test_weekday_without_blocks_uses_default_window():
    # only a Tuesday block configured; Monday falls back to 09:00-18:00
    blocks = [AvailabilityBlock("T1", "Tue", time(9, 0), time(10, 0))]

    slots = generate_slots("T1", MONDAY, 60, blocks, [], [], NOW, LONDON)

    assert _starts(slots)[0] == "09:00"
    assert _starts(slots)[-1] == "17:00"
    assert len(slots) == 9


def test_overlapping_blocks_do_not_duplicate_starts():
    blocks = [
        AvailabilityBlock("T1", "Mon", time(9, 0), time(11, 0)),
        AvailabilityBlock("T1", "Mon", time(9, 0), time(10, 0)),
    ]

    slots = generate_slots("T1", MONDAY, 30, blocks, [], [], NOW, LONDON)

    assert _starts(slots) == ["09:00", "09:30", "10:00", "10:30"]


def test_output_sorted_even_when_blocks_are_not():
    blocks = [
        AvailabilityBlock("T1", "Mon", time(14, 0), time(15, 0)),
        AvailabilityBlock("T1", "Mon", time(9, 0), time(10, 0)),
    ]

    slots = generate_slots("T1", MONDAY, 30, blocks, [], [], NOW, LONDON)

    assert _starts(slots) == ["09:00", "09:30", "14:00", "14:30"]


def test_odd_duration_steps_to_next_quarter_hour():
    assert slot_step_minutes(50) == 60
    assert slot_step_minutes(45) == 45

    slots = generate_slots("T1", MONDAY, 50, MORNING, [], [], NOW, LONDON)

    assert _starts(slots) == ["09:00", "10:00", "11:00"]


def test_preferred_time_is_flagged():
    slots = generate_slots(
        "T1", MONDAY, 30, MORNING, [], [], NOW, LONDON, preferred_time=time(10, 0)
    )

    preferred = [s for s in slots if s.is_preferred]
    assert _starts(preferred) == ["10:00"]


def test_time_off_blocks_slots():
    off = [TimeOffBlock("T1", utc(2025, 1, 6, 9), utc(2025, 1, 6, 11))]

    slots = generate_slots("T1", MONDAY, 30, MORNING, [], [], NOW, LONDON, time_off=off)

    assert _starts(slots) == ["11:00", "11:30"]


def test_local_times_follow_daylight_saving():
    # clocks go forward on Sun 30 Mar 2025; 09:00 BST is 08:00 UTC
    sunday = date(2025, 3, 30)
    blocks = [AvailabilityBlock("T1", "Sun", time(9, 0), time(10, 0))]

    slots = generate_slots("T1", sunday, 30, blocks, [], [], NOW, LONDON)

    assert [s.start_at for s in slots] == [utc(2025, 3, 30, 8), utc(2025, 3, 30, 8, 30)]
