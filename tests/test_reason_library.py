from reason_library import match_reason


def test_direct_codes():
    assert match_reason("slot_taken").startswith("That slot was booked")
    assert match_reason("entry_changed").endswith("Refresh and try again.")


def test_patterned_codes():
    assert match_reason("invalid_transition(waiting:record_response)") == (
        "Can’t record response an entry that is waiting. Refresh and try again."
    )
    assert match_reason("duration_mismatch(45!=30)") == "Needs a 45 min lesson (this one is 30 min)."
    assert match_reason("preferred_teacher_mismatch(T2)") == "Only wants lessons with T2."


def test_unknown_code_falls_back_to_code():
    assert match_reason("something_new") == "something_new"


def test_booking_guard_codes():
    assert match_reason("lesson_not_bookable") == "That lesson is cancelled or has already started."
    assert match_reason("slot_taken").endswith("Refresh and try again.")
