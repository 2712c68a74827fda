from dataclasses import replace
from datetime import date, timedelta

import pytest

from calendar_facts import CsvCalendarFacts
from errors import NotFoundError, ValidationError
from helpers import LONDON, NOW, ORG, make_entry, utc
from lesson_repo import insert_makeup_lesson
from matches_engine import (
    candidate_slots_for_entry,
    find_matches_for_lesson,
    find_matches_for_slots,
    lookup_lesson,
    require_bookable,
)
from waitlist_service import create_entry

NEXT_MONDAY = date(2025, 1, 20)


def _waiting(con, ref, student_id="S1"):
    return create_entry(
        con,
        org_id=ORG,
        student_id=student_id,
        missed_lesson=ref.lessons_by_id["L1"],
        absence_reason="sick",
        now=NOW,
    )


def _starts(slots):
    return [f"{s.start_at.astimezone(LONDON):%H:%M}" for s in slots]


def test_freed_seat_ranks_waiting_students(con, ref):
    s1 = _waiting(con, ref, "S1")
    s2 = _waiting(con, ref, "S2")

    results = find_matches_for_lesson(
        con, ref, ORG, "L2", LONDON, absent_student_id="S3", now=NOW
    )

    assert [r.entry_id for r in results] == [s1.entry_id, s2.entry_id]
    assert {r.match_quality for r in results} == {"exact_teacher_and_time"}
    assert results[0].guardian_name == "Gina Parent"


def test_absent_student_is_not_offered_their_own_seat(con, ref):
    _waiting(con, ref, "S1")

    results = find_matches_for_lesson(
        con, ref, ORG, "L2", LONDON, absent_student_id="S1", now=NOW
    )

    assert results == []


def test_unknown_lesson_is_not_found(con, ref):
    with pytest.raises(NotFoundError) as exc:
        find_matches_for_lesson(con, ref, ORG, "NOPE", LONDON, now=NOW)
    assert exc.value.code == "lesson_not_found"


def test_make_up_lessons_can_free_seats_too(con, ref):
    _waiting(con, ref, "S1")
    lesson_id = insert_makeup_lesson(
        con, ORG, "T2", "Make-up: Piano 30", utc(2025, 1, 21, 16), utc(2025, 1, 21, 16, 30), NOW
    )

    [r] = find_matches_for_lesson(con, ref, ORG, lesson_id, LONDON, now=NOW)

    assert r.target_id == lesson_id
    assert r.match_quality == "any_available"


def test_slots_for_entry_flag_original_time(con, ref):
    entry = _waiting(con, ref)

    slots = candidate_slots_for_entry(CsvCalendarFacts(ref, con), entry, NEXT_MONDAY, LONDON, NOW)

    assert _starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
    assert _starts([s for s in slots if s.is_preferred]) == ["10:00"]


def test_slots_skip_lessons_from_csv_and_store(con, ref):
    entry = _waiting(con, ref)
    insert_makeup_lesson(
        con, ORG, "T1", "Make-up", utc(2025, 1, 13, 11), utc(2025, 1, 13, 11, 30), NOW
    )

    # L2 holds T1 at 10:00 on 13 Jan
    slots = candidate_slots_for_entry(
        CsvCalendarFacts(ref, con), entry, date(2025, 1, 13), LONDON, NOW
    )

    assert _starts(slots) == ["09:00", "09:30", "10:30", "11:30"]


def test_closure_day_has_no_slots(con, ref):
    ref.closures_by_org[ORG] = {NEXT_MONDAY}
    entry = _waiting(con, ref)

    assert candidate_slots_for_entry(CsvCalendarFacts(ref, con), entry, NEXT_MONDAY, LONDON, NOW) == []


def test_entry_without_teacher_cannot_generate_slots(ref):
    entry = make_entry(teacher_id=None)

    with pytest.raises(ValidationError) as exc:
        candidate_slots_for_entry(CsvCalendarFacts(ref), entry, NEXT_MONDAY, LONDON, NOW)
    assert exc.value.code == "entry_has_no_teacher"


def test_matches_for_generated_slots(con, ref):
    entry = _waiting(con, ref)
    slots = candidate_slots_for_entry(CsvCalendarFacts(ref, con), entry, NEXT_MONDAY, LONDON, NOW)

    [r] = find_matches_for_slots(con, ref, ORG, slots, LONDON)

    assert r.entry_id == entry.entry_id
    assert r.start_at == utc(2025, 1, 20, 10)
    assert r.match_quality == "exact_teacher_and_time"
    assert find_matches_for_slots(con, ref, ORG, [], LONDON) == []


def test_lookup_lesson_checks_csv_then_store(con, ref):
    lesson_id = insert_makeup_lesson(
        con, ORG, "T1", "Make-up", utc(2025, 1, 27, 9), utc(2025, 1, 27, 9, 30), NOW
    )

    assert lookup_lesson(con, ref, "L2") is ref.lessons_by_id["L2"]
    assert lookup_lesson(con, ref, lesson_id).teacher_id == "T1"
    with pytest.raises(NotFoundError):
        lookup_lesson(con, ref, "MU999999")


def test_cancelled_lesson_offers_no_seat(con, ref):
    _waiting(con, ref)
    ref.lessons_by_id["L2"] = replace(ref.lessons_by_id["L2"], status="cancelled")

    with pytest.raises(ValidationError) as exc:
        find_matches_for_lesson(con, ref, ORG, "L2", LONDON, now=NOW)
    assert exc.value.code == "lesson_not_bookable"


def test_started_lesson_offers_no_seat(con, ref):
    _waiting(con, ref)
    started = utc(2025, 1, 13, 10) + timedelta(minutes=1)

    with pytest.raises(ValidationError) as exc:
        find_matches_for_lesson(con, ref, ORG, "L2", LONDON, now=started)
    assert exc.value.code == "lesson_not_bookable"


def test_lesson_starting_now_is_still_bookable(ref):
    require_bookable(ref.lessons_by_id["L2"], utc(2025, 1, 13, 10))
