from datetime import datetime
from zoneinfo import ZoneInfo

from flask import current_app


def club_tz() -> ZoneInfo:
    return ZoneInfo(current_app.config.get("CLUB_TIMEZONE", "UTC"))


def club_now() -> datetime:
    """Current wall-clock time at the club, naive like stored lesson times."""
    return datetime.now(club_tz()).replace(tzinfo=None)


def to_club_local(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(club_tz()).replace(tzinfo=None)
