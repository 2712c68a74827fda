from __future__ import annotations

import re

REFRESH_HINT = "Refresh and try again."


def match_reason(code: str) -> str:
    # Direct matches
    if code == "entry_not_found":
        return "That waitlist entry doesn’t exist."
    if code == "lesson_not_found":
        return "That lesson could not be found."
    if code == "student_not_in_lesson":
        return "The student was not booked on the missed lesson."
    if code == "invalid_absence_reason":
        return "Choose a valid absence reason."
    if code == "invalid_duration":
        return "Lesson duration must be at least 15 minutes."
    if code == "invalid_preferred_days":
        return "Preferred days must be Mon–Sun."
    if code == "invalid_preferred_window":
        return "Earliest preferred time must be before the latest."
    if code == "entry_has_no_teacher":
        return "This entry has no teacher to generate slots for."
    if code == "entry_not_due":
        return "This entry has not reached its expiry date."
    if code == "entry_changed":
        return f"Someone else already acted on this entry. {REFRESH_HINT}"
    if code == "slot_taken":
        return f"That slot was booked by someone else. {REFRESH_HINT}"
    if code == "already_on_lesson":
        return "The student is already booked on that lesson."
    if code == "credit_unavailable":
        return "The make-up credit is missing or already used."
    if code == "attendance_already_linked":
        return "That absence already has a make-up booked."
    if code == "lesson_not_bookable":
        return "That lesson is cancelled or has already started."
    if code == "is_missed_lesson":
        return "This is the lesson the student missed."
    if code == "no_offer_recipient":
        return "The guardian has no Slack account and no coordinator channel is set."
    if code == "booked":
        return "Make-up lesson confirmed."

    # Patterned codes
    m = re.match(r"invalid_transition\((\w+):(\w+)\)", code)
    if m:
        status, action = m.group(1), m.group(2)
        return f"Can’t {action.replace('_', ' ')} an entry that is {status}. {REFRESH_HINT}"

    m = re.match(r"duration_mismatch\((\d+)!=(\d+)\)", code)
    if m:
        wanted, got = m.group(1), m.group(2)
        return f"Needs a {wanted} min lesson (this one is {got} min)."

    m = re.match(r"preferred_teacher_mismatch\((.+)\)", code)
    if m:
        return f"Only wants lessons with {m.group(1)}."

    # Fallback
    return code
