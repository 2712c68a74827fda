# src/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import find_dotenv, load_dotenv

DEFAULT_TIMEZONE = "Europe/London"


@dataclass(frozen=True)
class Settings:
    db_path: Path
    assets_dir: Path
    org_id: str
    org_timezone: str
    slack_bot_token: str
    slack_app_token: str
    coordinator_channel_id: str
    coordinator_slack_ids: frozenset[str]
    log_level: str
    log_json: bool

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.org_timezone)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def load_settings() -> Settings:
    """
    Reads .env (nearest one above the working directory) then the process
    environment; real environment variables win.
    Slack tokens may be blank for scripts that never talk to Slack.
    """
    load_dotenv(find_dotenv(usecwd=True))

    tz_name = os.environ.get("ORG_TIMEZONE", DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE
    try:
        ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        raise ValueError(f"ORG_TIMEZONE is not a known timezone: {tz_name}")

    return Settings(
        db_path=Path(os.environ.get("WAITLIST_DB_PATH", "state.db")),
        assets_dir=Path(os.environ.get("ASSETS_DIR", "assets")),
        org_id=os.environ.get("ORG_ID", "default").strip(),
        org_timezone=tz_name,
        slack_bot_token=os.environ.get("SLACK_BOT_TOKEN", "").strip(),
        slack_app_token=os.environ.get("SLACK_APP_TOKEN", "").strip(),
        coordinator_channel_id=os.environ.get("COORDINATOR_CHANNEL_ID", "").strip(),
        coordinator_slack_ids=frozenset(
            x.strip()
            for x in os.environ.get("COORDINATOR_SLACK_IDS", "").split(",")
            if x.strip()
        ),
        log_level=os.environ.get("LOG_LEVEL", "INFO").strip() or "INFO",
        log_json=_env_flag("LOG_JSON"),
    )
