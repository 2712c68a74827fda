import threading

import pytest

from booking_service import confirm_booking
from credit_repo import SqliteBookingLedger, get_attendance_link, get_credit
from db import get_con, to_iso
from errors import ConflictError, StateError
from helpers import NOW, ORG, FakeDispatcher, utc
from lesson_repo import (
    add_participant,
    count_participants_for_entry,
    get_makeup_lesson,
    list_makeup_intervals,
    list_participant_ids,
)
from models import CandidateSlot, FreedLesson
from waitlist_repo import get_entry
from waitlist_service import create_entry, dismiss_match, mark_matched, offer, record_response


def _accepted(con, ref, target, student_id="S1", **kw):
    entry = create_entry(
        con,
        org_id=ORG,
        student_id=student_id,
        missed_lesson=ref.lessons_by_id["L1"],
        absence_reason="sick",
        now=NOW,
        **kw,
    )
    entry = mark_matched(con, entry, target, now=NOW)
    entry = offer(con, entry, FakeDispatcher(), now=NOW)
    return record_response(con, entry, accepted=True, now=NOW)


def _freed_l2(ref):
    return FreedLesson.from_lesson(ref.lessons_by_id["L2"])


def _slot(hh, mm=0):
    return CandidateSlot("T1", utc(2025, 1, 20, hh, mm), utc(2025, 1, 20, hh, mm + 30))


def _add_credit(con, credit_id="CR1", redeemed=False):
    con.execute(
        """
        INSERT INTO make_up_credits (credit_id, org_id, student_id, issued_at, redeemed_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (credit_id, ORG, "S1", to_iso(NOW), to_iso(NOW) if redeemed else None),
    )


class FailingLedger(SqliteBookingLedger):
    def link_attendance_record(self, con, attendance_record_id, entry_id, lesson_id, linked_at):
        raise RuntimeError("attendance service down")


def test_confirm_books_student_on_freed_lesson(con, ref):
    entry = _accepted(con, ref, _freed_l2(ref))

    booked = confirm_booking(con, entry, now=NOW)

    assert booked.status == "booked"
    assert booked.booked_lesson_id == "L2"
    assert list_participant_ids(con, "L2") == frozenset({"S1"})


def test_confirm_redeems_credit_and_links_attendance(con, ref):
    _add_credit(con)
    entry = _accepted(con, ref, _freed_l2(ref), credit_id="CR1", attendance_record_id="AR1")

    confirm_booking(con, entry, now=NOW)

    credit = get_credit(con, "CR1")
    assert credit["redeemed_at"] == to_iso(NOW)
    assert credit["redeemed_lesson_id"] == "L2"
    link = get_attendance_link(con, "AR1")
    assert link["entry_id"] == entry.entry_id
    assert link["booked_lesson_id"] == "L2"


def test_used_credit_rolls_back_whole_booking(con, ref):
    _add_credit(con, redeemed=True)
    entry = _accepted(con, ref, _freed_l2(ref), credit_id="CR1")

    with pytest.raises(ConflictError) as exc:
        confirm_booking(con, entry, now=NOW)

    assert exc.value.code == "credit_unavailable"
    assert get_entry(con, entry.entry_id).status == "accepted"
    assert count_participants_for_entry(con, entry.entry_id) == 0


def test_ledger_failure_leaves_no_slot_lesson_behind(con, ref):
    entry = _accepted(con, ref, _slot(9), attendance_record_id="AR1")

    with pytest.raises(RuntimeError):
        confirm_booking(con, entry, ledger=FailingLedger(), now=NOW)

    assert get_entry(con, entry.entry_id).status == "accepted"
    assert list_makeup_intervals(con) == []


def test_slot_match_creates_make_up_lesson(con, ref):
    entry = _accepted(con, ref, _slot(9))

    booked = confirm_booking(con, entry, now=NOW)

    assert booked.booked_lesson_id == "MU000001"
    lesson = get_makeup_lesson(con, "MU000001")
    assert lesson.teacher_id == "T1"
    assert lesson.start_at == utc(2025, 1, 20, 9)
    assert lesson.end_at == utc(2025, 1, 20, 9, 30)
    assert lesson.student_ids == frozenset({"S1"})


def test_overlapping_slot_already_booked_conflicts(con, ref):
    first = _accepted(con, ref, _slot(9), student_id="S1")
    second = _accepted(con, ref, CandidateSlot("T1", utc(2025, 1, 20, 9, 15), utc(2025, 1, 20, 9, 45)), student_id="S2")
    confirm_booking(con, first, now=NOW)

    with pytest.raises(ConflictError) as exc:
        confirm_booking(con, second, now=NOW)

    assert exc.value.code == "slot_taken"
    assert get_entry(con, second.entry_id).status == "accepted"
    assert len(list_makeup_intervals(con)) == 1


def test_student_already_on_lesson_conflicts(con, ref):
    entry = _accepted(con, ref, _freed_l2(ref))
    add_participant(con, "L2", "S1", "W999999", NOW)

    with pytest.raises(ConflictError) as exc:
        confirm_booking(con, entry, now=NOW)

    assert exc.value.code == "already_on_lesson"
    assert get_entry(con, entry.entry_id).status == "accepted"


def test_second_confirm_is_rejected(con, ref):
    entry = _accepted(con, ref, _freed_l2(ref))
    booked = confirm_booking(con, entry, now=NOW)

    # stale copy still says accepted
    with pytest.raises(ConflictError):
        confirm_booking(con, entry, now=NOW)
    # fresh copy says booked
    with pytest.raises(StateError):
        confirm_booking(con, booked, now=NOW)

    assert count_participants_for_entry(con, entry.entry_id) == 1


def test_concurrent_confirms_book_exactly_once(con, db_path, ref):
    entry = _accepted(con, ref, _freed_l2(ref))

    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def worker():
        c = get_con(db_path)
        try:
            barrier.wait()
            confirm_booking(c, entry, now=NOW)
            result = "booked"
        except ConflictError as e:
            result = e.code
        finally:
            c.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["booked", "entry_changed"]
    assert count_participants_for_entry(con, entry.entry_id) == 1
    assert get_entry(con, entry.entry_id).status == "booked"


# ----------------------------
# one freed seat, one make-up student
# ----------------------------
def _waiting(con, ref, student_id):
    return create_entry(
        con,
        org_id=ORG,
        student_id=student_id,
        missed_lesson=ref.lessons_by_id["L1"],
        absence_reason="sick",
        now=NOW,
    )


def test_freed_seat_cannot_be_matched_twice(con, ref):
    mark_matched(con, _waiting(con, ref, "S1"), _freed_l2(ref), now=NOW)
    second = _waiting(con, ref, "S2")

    with pytest.raises(ConflictError) as exc:
        mark_matched(con, second, _freed_l2(ref), now=NOW)

    assert exc.value.code == "slot_taken"
    assert get_entry(con, second.entry_id).status == "waiting"


def test_booked_seat_stays_taken(con, ref):
    confirm_booking(con, _accepted(con, ref, _freed_l2(ref)), now=NOW)

    with pytest.raises(ConflictError) as exc:
        mark_matched(con, _waiting(con, ref, "S2"), _freed_l2(ref), now=NOW)

    assert exc.value.code == "slot_taken"
    assert list_participant_ids(con, "L2") == frozenset({"S1"})


def test_dismissed_match_releases_the_seat(con, ref):
    first = mark_matched(con, _waiting(con, ref, "S1"), _freed_l2(ref), now=NOW)
    dismiss_match(con, first, now=NOW)

    second = mark_matched(con, _waiting(con, ref, "S2"), _freed_l2(ref), now=NOW)

    assert second.status == "matched"
    assert second.matched_lesson_id == "L2"


def test_filled_seat_is_refused_at_confirmation(con, ref):
    entry = _accepted(con, ref, _freed_l2(ref))
    # seat filled outside this entry's match
    add_participant(con, "L2", "S2", "W999999", NOW)

    with pytest.raises(ConflictError) as exc:
        confirm_booking(con, entry, now=NOW)

    assert exc.value.code == "slot_taken"
    assert get_entry(con, entry.entry_id).status == "accepted"
    assert list_participant_ids(con, "L2") == frozenset({"S2"})
