# src/notifications.py
"""
Offer delivery over Slack.

The guardian gets a DM when their Slack account is known; otherwise the
offer lands in the coordinator channel so someone can phone them.
"""
from __future__ import annotations

import json
import sqlite3
from zoneinfo import ZoneInfo

from app_logging import get_logger
from db import to_iso, utc_now
from errors import NotFoundError, ValidationError
from models import ReferenceData
from offer_message_repo import upsert_offer_message
from time_fmt import fmt_local_range
from waitlist_models import WaitlistEntry
from waitlist_output import student_name, teacher_name
from waitlist_repo import get_entry

log = get_logger(__name__)


def frozen_blocks(text: str) -> list[dict]:
    return [{"type": "section", "text": {"type": "mrkdwn", "text": text}}]


def guardian_slack_id(entry: WaitlistEntry, ref: ReferenceData) -> str | None:
    guardian_id = entry.guardian_id
    if not guardian_id:
        student = ref.students_by_id.get(entry.student_id)
        guardian_id = student.guardian_id if student else None
    guardian = ref.guardians_by_id.get(guardian_id) if guardian_id else None
    return guardian.slack_user_id if guardian else None


def offer_text(entry: WaitlistEntry, ref: ReferenceData, tz: ZoneInfo) -> str:
    when = fmt_local_range(entry.matched_start_at, entry.matched_end_at, tz)
    return (
        "*Make-up lesson available*\n"
        f"*Student:* {student_name(ref, entry.student_id)}\n"
        f"*Lesson:* {entry.lesson_title} ({entry.lesson_duration_minutes} min)\n"
        f"*Teacher:* {teacher_name(ref, entry.matched_teacher_id)}\n"
        f"*When:* {when} ({tz.key} time)"
    )


def offer_blocks(entry: WaitlistEntry, ref: ReferenceData, tz: ZoneInfo) -> list[dict]:
    value = json.dumps({"entry_id": entry.entry_id})
    return [
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": offer_text(entry, ref, tz)},
        },
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Accept"},
                    "style": "primary",
                    "action_id": "accept_offer",
                    "value": value,
                },
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "Decline"},
                    "action_id": "decline_offer",
                    "value": value,
                },
            ],
        },
    ]


class SlackOfferDispatcher:
    """
    One call, one Slack message. Never changes entry status; the state
    machine has already committed the transition before this runs.
    """

    def __init__(
        self,
        client,
        con: sqlite3.Connection,
        ref: ReferenceData,
        tz: ZoneInfo,
        fallback_channel_id: str = "",
    ) -> None:
        self.client = client
        self.con = con
        self.ref = ref
        self.tz = tz
        self.fallback_channel_id = fallback_channel_id

    def _channel_for(self, entry: WaitlistEntry) -> str:
        slack_user_id = guardian_slack_id(entry, self.ref)
        if slack_user_id:
            im = self.client.conversations_open(users=slack_user_id)
            return im["channel"]["id"]
        if self.fallback_channel_id:
            return self.fallback_channel_id
        raise ValidationError("no_offer_recipient", entry.entry_id)

    def dispatch_offer_notification(self, entry_id: str) -> None:
        entry = get_entry(self.con, entry_id)
        if entry is None:
            raise NotFoundError("entry_not_found", entry_id)

        channel_id = self._channel_for(entry)
        resp = self.client.chat_postMessage(
            channel=channel_id,
            text=f"Make-up lesson offer for {student_name(self.ref, entry.student_id)}",
            blocks=offer_blocks(entry, self.ref, self.tz),
        )
        upsert_offer_message(
            self.con, entry_id, channel_id, resp["ts"], "SENT", to_iso(utc_now())
        )
        log.info("offer_dispatched", entry_id=entry_id, channel_id=channel_id)
