# src/slack_bot.py
from __future__ import annotations

import json
from collections.abc import Callable
from contextlib import closing
from datetime import date, datetime

from slack_bolt import App
from slack_bolt.adapter.socket_mode import SocketModeHandler

from app_logging import get_logger, setup_logging
from booking_service import confirm_booking
from config import Settings, load_settings
from csv_loader import load_reference_data
from db import from_iso, get_con, init_db, to_iso, utc_now
from errors import WaitlistError
from matches_engine import (
    candidate_slots_for_entry,
    find_matches_for_lesson,
    lookup_lesson,
    require_bookable,
)
from calendar_facts import CsvCalendarFacts
from models import CandidateSlot, FreedLesson, ReferenceData
from notifications import SlackOfferDispatcher, frozen_blocks, guardian_slack_id, offer_text
from offer_message_repo import get_offer_message, set_offer_message_status
from reason_library import match_reason
from waitlist_models import ABSENCE_REASONS, WaitlistEntry
from waitlist_output import (
    format_entry_summary,
    format_match_line,
    format_lesson_header,
    format_slots_message,
    format_status_counts,
)
from waitlist_repo import count_by_status
from waitlist_service import (
    cancel,
    create_entry,
    dismiss_match,
    get_entry_or_fail,
    mark_matched,
    offer,
    record_response,
)

log = get_logger(__name__)


# ----------------------------
# Small helpers
# ----------------------------
def _safe_feedback(client, body, text: str) -> None:
    """
    Sends a confirmation without replacing the message the user clicked on.
    In channels: ephemeral.
    In DMs: normal message.
    """
    channel_id = body["channel"]["id"]
    user_id = body["user"]["id"]

    if channel_id.startswith("D"):
        client.chat_postMessage(channel=channel_id, text=text)
    else:
        client.chat_postEphemeral(channel=channel_id, user=user_id, text=text)


def _button(text: str, action_id: str, value: dict, style: str | None = None) -> dict:
    b = {
        "type": "button",
        "text": {"type": "plain_text", "text": text},
        "action_id": action_id,
        "value": json.dumps(value),
    }
    if style:
        b["style"] = style
    return b


def _payload(body) -> dict:
    return json.loads(body["actions"][0]["value"])


# ----------------------------
# Blocks
# ----------------------------
def entry_card_blocks(entry: WaitlistEntry, ref: ReferenceData, tz) -> list[dict]:
    blocks: list[dict] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": format_entry_summary(entry, ref, tz)},
        }
    ]

    value = {"entry_id": entry.entry_id}
    buttons: list[dict] = []
    if entry.status == "matched":
        buttons.append(_button("Send offer", "offer_entry", value, "primary"))
        buttons.append(_button("Wrong match", "dismiss_match", value))
    elif entry.status == "offered":
        buttons.append(_button("Resend offer", "offer_entry", value))
        buttons.append(_button("Wrong match", "dismiss_match", value))
    elif entry.status == "accepted":
        buttons.append(_button("Confirm booking", "confirm_booking", value, "primary"))

    if entry.status in {"waiting", "matched", "offered", "accepted"}:
        buttons.append(_button("Cancel entry", "cancel_entry", value, "danger"))

    if buttons:
        blocks.append({"type": "actions", "elements": buttons})
    return blocks


def match_list_blocks(lesson, results, ref: ReferenceData, tz, max_shown: int = 10) -> list[dict]:
    blocks: list[dict] = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": "📌 *Make-up candidates*\n" + format_lesson_header(lesson, ref, tz),
            },
        },
        {"type": "divider"},
    ]

    if not results:
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": "No waiting students fit this lesson."},
            }
        )
        return blocks

    for r in results[:max_shown]:
        blocks.append(
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": format_match_line(r, ref, tz)},
                "accessory": _button(
                    "Match",
                    "match_entry",
                    {"entry_id": r.entry_id, "lesson_id": lesson.lesson_id},
                ),
            }
        )
    return blocks


def slot_list_blocks(entry: WaitlistEntry, slots: list[CandidateSlot], ref, tz) -> list[dict]:
    blocks: list[dict] = [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": format_slots_message(entry, slots, ref, tz)},
        }
    ]
    if not slots:
        return blocks

    # Slack allows 25 elements per actions block
    elements = [
        _button(
            f"{s.start_at.astimezone(tz):%H:%M}",
            "match_entry",
            {
                "entry_id": entry.entry_id,
                "teacher_id": s.teacher_id,
                "start_at": to_iso(s.start_at),
                "end_at": to_iso(s.end_at),
            },
            "primary" if s.is_preferred else None,
        )
        for s in slots[:25]
    ]
    blocks.append({"type": "actions", "elements": elements})
    return blocks


# ----------------------------
# Handlers
# ----------------------------
def register_handlers(
    app: App,
    settings: Settings,
    ref: ReferenceData,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    tz = settings.tz

    def open_con():
        con = get_con(settings.db_path)
        init_db(con)
        return con

    def is_coordinator(slack_user_id: str) -> bool:
        return slack_user_id in settings.coordinator_slack_ids

    def post_to_coordinators(client, user_id: str, text: str, blocks: list[dict]) -> None:
        # coordinator channel, or DM fallback
        channel = settings.coordinator_channel_id
        if not channel:
            channel = client.conversations_open(users=user_id)["channel"]["id"]
        client.chat_postMessage(channel=channel, text=text, blocks=blocks)

    def refresh_card(client, body, entry: WaitlistEntry) -> None:
        # panel messages are replaced in place; DMs never hold entry cards
        client.chat_update(
            channel=body["channel"]["id"],
            ts=body["message"]["ts"],
            text=f"Waitlist {entry.entry_id}",
            blocks=entry_card_blocks(entry, ref, tz),
        )

    def close_offer_message(client, con, entry_id: str, status: str, text: str) -> None:
        ptr = get_offer_message(con, entry_id)
        if not ptr:
            return
        channel_id, msg_ts, _ = ptr
        client.chat_update(
            channel=channel_id, ts=msg_ts, text=text, blocks=frozen_blocks(text)
        )
        set_offer_message_status(con, entry_id, status, to_iso(utc_now()))

    # ---- commands ----

    @app.command("/makeups")
    def makeups_command(ack, command, respond):
        ack()
        if not is_coordinator(command["user_id"]):
            respond("Not authorised.")
            return

        with closing(open_con()) as con:
            respond(format_status_counts(count_by_status(con, settings.org_id)))

    @app.command("/makeup-add")
    def makeup_add_command(ack, command, client, respond):
        ack()
        user_id = command["user_id"]
        if not is_coordinator(user_id):
            respond("Not authorised.")
            return

        parts = command.get("text", "").split()
        if len(parts) < 3 or parts[2] not in ABSENCE_REASONS:
            respond(
                "Usage: `/makeup-add <student_id> <lesson_id> <reason>`\n"
                f"Reasons: {', '.join(sorted(ABSENCE_REASONS))}"
            )
            return
        student_id, lesson_id, reason = parts[0], parts[1], parts[2]

        with closing(open_con()) as con:
            try:
                lesson = lookup_lesson(con, ref, lesson_id)
                student = ref.students_by_id.get(student_id)
                entry = create_entry(
                    con,
                    org_id=settings.org_id,
                    student_id=student_id,
                    missed_lesson=lesson,
                    absence_reason=reason,
                    guardian_id=student.guardian_id if student else None,
                )
            except WaitlistError as e:
                respond(match_reason(e.code))
                return

        post_to_coordinators(
            client, user_id, f"Waitlist {entry.entry_id}", entry_card_blocks(entry, ref, tz)
        )
        respond(f"On the waitlist as `{entry.entry_id}`.")

    @app.command("/makeup-matches")
    def makeup_matches_command(ack, command, client, respond):
        ack()
        user_id = command["user_id"]
        if not is_coordinator(user_id):
            respond("Not authorised.")
            return

        parts = command.get("text", "").split()
        if not parts:
            respond("Usage: `/makeup-matches <lesson_id> [absent_student_id]`")
            return
        lesson_id = parts[0]
        absent_student_id = parts[1] if len(parts) > 1 else None

        with closing(open_con()) as con:
            try:
                lesson = lookup_lesson(con, ref, lesson_id)
                results = find_matches_for_lesson(
                    con, ref, settings.org_id, lesson_id, tz, absent_student_id, now=clock()
                )
            except WaitlistError as e:
                respond(match_reason(e.code))
                return

        post_to_coordinators(
            client,
            user_id,
            f"Make-up candidates for {lesson_id}",
            match_list_blocks(lesson, results, ref, tz),
        )
        respond(f"Found {len(results)} candidate(s) for `{lesson_id}`.")

    @app.command("/makeup-slots")
    def makeup_slots_command(ack, command, client, respond):
        ack()
        user_id = command["user_id"]
        if not is_coordinator(user_id):
            respond("Not authorised.")
            return

        parts = command.get("text", "").split()
        if len(parts) != 2:
            respond("Usage: `/makeup-slots <entry_id> <YYYY-MM-DD>`")
            return
        try:
            target_date = date.fromisoformat(parts[1])
        except ValueError:
            respond(f"Not a date: `{parts[1]}`")
            return

        with closing(open_con()) as con:
            try:
                entry = get_entry_or_fail(con, parts[0])
                slots = candidate_slots_for_entry(
                    CsvCalendarFacts(ref, con), entry, target_date, tz, clock()
                )
            except WaitlistError as e:
                respond(match_reason(e.code))
                return

        post_to_coordinators(
            client,
            user_id,
            f"Open slots for {entry.entry_id}",
            slot_list_blocks(entry, slots, ref, tz),
        )
        respond(f"{len(slots)} open slot(s).")

    # ---- coordinator actions ----

    def coordinator_action(handler):
        """Auth check + WaitlistError -> friendly feedback."""

        def wrapped(ack, body, client):
            ack()
            if not is_coordinator(body["user"]["id"]):
                _safe_feedback(client, body, "Not authorised.")
                return
            con = open_con()
            try:
                handler(con, body, client, _payload(body))
            except WaitlistError as e:
                log.info("action_rejected", action=handler.__name__, code=e.code)
                _safe_feedback(client, body, match_reason(e.code))
            finally:
                con.close()

        return wrapped

    @app.action("match_entry")
    @coordinator_action
    def match_entry(con, body, client, payload):
        entry = get_entry_or_fail(con, payload["entry_id"])
        if "lesson_id" in payload:
            lesson = lookup_lesson(con, ref, payload["lesson_id"])
            require_bookable(lesson, clock())
            target = FreedLesson.from_lesson(lesson)
        else:
            target = CandidateSlot(
                teacher_id=payload["teacher_id"],
                start_at=from_iso(payload["start_at"]),
                end_at=from_iso(payload["end_at"]),
            )
        entry = mark_matched(con, entry, target)
        post_to_coordinators(
            client,
            body["user"]["id"],
            f"Waitlist {entry.entry_id}",
            entry_card_blocks(entry, ref, tz),
        )
        _safe_feedback(client, body, f"Matched `{entry.entry_id}`.")

    @app.action("offer_entry")
    @coordinator_action
    def offer_entry(con, body, client, payload):
        entry = get_entry_or_fail(con, payload["entry_id"])
        dispatcher = SlackOfferDispatcher(
            client, con, ref, tz, settings.coordinator_channel_id
        )
        entry = offer(con, entry, dispatcher)
        refresh_card(client, body, entry)
        _safe_feedback(client, body, f"Offer sent for `{entry.entry_id}`.")

    @app.action("dismiss_match")
    @coordinator_action
    def dismiss_match_action(con, body, client, payload):
        entry = get_entry_or_fail(con, payload["entry_id"])
        was_offered = entry.status == "offered"
        entry = dismiss_match(con, entry)
        if was_offered:
            close_offer_message(
                client, con, entry.entry_id, "CLOSED", "This offer has been withdrawn."
            )
        refresh_card(client, body, entry)

    @app.action("confirm_booking")
    @coordinator_action
    def confirm_booking_action(con, body, client, payload):
        entry = get_entry_or_fail(con, payload["entry_id"])
        entry = confirm_booking(con, entry)
        refresh_card(client, body, entry)
        _safe_feedback(client, body, match_reason("booked"))

    @app.action("cancel_entry")
    @coordinator_action
    def cancel_entry_action(con, body, client, payload):
        entry = get_entry_or_fail(con, payload["entry_id"])
        was_offered = entry.status == "offered"
        note = f"Cancelled by <@{body['user']['id']}>"
        entry = cancel(con, entry, note=note)
        if was_offered:
            close_offer_message(
                client, con, entry.entry_id, "CLOSED", "This offer has been withdrawn."
            )
        refresh_card(client, body, entry)

    # ---- guardian actions (offer DM) ----

    def answer_offer(con, body, client, accepted: bool) -> None:
        entry_id = _payload(body)["entry_id"]
        slack_user_id = body["user"]["id"]
        channel_id = body["channel"]["id"]
        msg_ts = body["message"]["ts"]

        try:
            entry = get_entry_or_fail(con, entry_id)
            guardian_slack = guardian_slack_id(entry, ref)
            if not is_coordinator(slack_user_id) and slack_user_id != guardian_slack:
                _safe_feedback(client, body, "Not authorised.")
                return
            entry = record_response(con, entry, accepted)
        except WaitlistError as e:
            log.info("offer_response_rejected", entry_id=entry_id, code=e.code)
            client.chat_update(
                channel=channel_id,
                ts=msg_ts,
                text="Offer closed",
                blocks=frozen_blocks(match_reason(e.code)),
            )
            return

        if accepted:
            text = offer_text(entry, ref, tz) + "\n\n✅ Accepted. We'll confirm shortly."
            status = "ACCEPTED"
        else:
            text = "Declined. You're still on the make-up waitlist."
            status = "DECLINED"

        client.chat_update(channel=channel_id, ts=msg_ts, text=status.title(), blocks=frozen_blocks(text))
        set_offer_message_status(con, entry_id, status, to_iso(utc_now()))

        # guardians have no coordinator DM fallback
        if settings.coordinator_channel_id:
            client.chat_postMessage(
                channel=settings.coordinator_channel_id,
                text=f"Waitlist {entry.entry_id} {status.lower()}",
                blocks=entry_card_blocks(entry, ref, tz),
            )

    def respond_to_offer(body, client, accepted: bool) -> None:
        con = open_con()
        try:
            answer_offer(con, body, client, accepted)
        finally:
            con.close()

    @app.action("accept_offer")
    def accept_offer_action(ack, body, client):
        ack()
        respond_to_offer(body, client, accepted=True)

    @app.action("decline_offer")
    def decline_offer_action(ack, body, client):
        ack()
        respond_to_offer(body, client, accepted=False)


def main() -> None:
    settings = load_settings()
    setup_logging(json_output=settings.log_json, log_level=settings.log_level)

    ref = load_reference_data(settings.assets_dir)
    with closing(get_con(settings.db_path)) as con:
        init_db(con)

    app = App(token=settings.slack_bot_token)
    register_handlers(app, settings, ref)

    log.info("slack_bot_starting", org_id=settings.org_id, timezone=settings.org_timezone)
    SocketModeHandler(app, settings.slack_app_token).start()


if __name__ == "__main__":
    main()
