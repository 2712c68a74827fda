# src/expiry_sweep.py
"""
Expires waitlist entries whose expires_at has passed.
Run from cron (or any scheduler), e.g. hourly:

    python src/expiry_sweep.py
"""
from __future__ import annotations

from contextlib import closing

from app_logging import setup_logging
from config import load_settings
from db import get_con, init_db, utc_now
from waitlist_service import expire_due_entries


def main() -> None:
    settings = load_settings()
    setup_logging(json_output=settings.log_json, log_level=settings.log_level)

    with closing(get_con(settings.db_path)) as con:
        init_db(con)
        expired = expire_due_entries(con, settings.org_id, utc_now())

    print(f"Expired {len(expired)} entr{'y' if len(expired) == 1 else 'ies'}.")
    for entry_id in expired:
        print(f"  - {entry_id}")


if __name__ == "__main__":
    main()
