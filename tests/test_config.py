from pathlib import Path

import pytest

from config import load_settings

ENV_KEYS = [
    "WAITLIST_DB_PATH",
    "ASSETS_DIR",
    "ORG_ID",
    "ORG_TIMEZONE",
    "SLACK_BOT_TOKEN",
    "SLACK_APP_TOKEN",
    "COORDINATOR_CHANNEL_ID",
    "COORDINATOR_SLACK_IDS",
    "LOG_LEVEL",
    "LOG_JSON",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    # no stray .env from the working directory
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        # setenv first so teardown also removes values load_dotenv adds
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


def test_defaults(clean_env):
    s = load_settings()

    assert s.db_path == Path("state.db")
    assert s.assets_dir == Path("assets")
    assert s.org_timezone == "Europe/London"
    assert s.tz.key == "Europe/London"
    assert s.coordinator_slack_ids == frozenset()
    assert s.log_json is False


def test_reads_environment(clean_env):
    clean_env.setenv("ORG_ID", "north")
    clean_env.setenv("ORG_TIMEZONE", "Australia/Sydney")
    clean_env.setenv("COORDINATOR_SLACK_IDS", "U1, U2,,")
    clean_env.setenv("LOG_JSON", "true")
    clean_env.setenv("WAITLIST_DB_PATH", "/tmp/w.db")

    s = load_settings()

    assert s.org_id == "north"
    assert s.tz.key == "Australia/Sydney"
    assert s.coordinator_slack_ids == frozenset({"U1", "U2"})
    assert s.log_json is True
    assert s.db_path == Path("/tmp/w.db")


def test_reads_dotenv_file(clean_env, tmp_path):
    (tmp_path / ".env").write_text("ORG_ID=from-dotenv\n")

    assert load_settings().org_id == "from-dotenv"


def test_unknown_timezone_is_rejected(clean_env):
    clean_env.setenv("ORG_TIMEZONE", "Mars/Olympus")

    with pytest.raises(ValueError, match="Mars/Olympus"):
        load_settings()
