"""Time utilities for consistent timestamp handling."""

import os
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def local_today() -> date:
    """Return today's date in the operator's timezone (APP_TIMEZONE, default UTC).

    Voucher validity windows are calendar dates at the campsite, not UTC dates.
    """
    tz_name = os.environ.get("APP_TIMEZONE") or "UTC"
    return utc_now().astimezone(ZoneInfo(tz_name)).date()
