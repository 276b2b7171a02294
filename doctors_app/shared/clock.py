"""Wall-clock helpers for scheduling rules"""

from datetime import date, datetime, timezone

from ..config import APP_TIMEZONE
from .validators import parse_time_hhmm


def app_now() -> datetime:
    """Current time as an aware datetime in the clinics' timezone"""
    return datetime.now(APP_TIMEZONE)


def slot_datetime(day: date, hhmm: str) -> datetime:
    """Combine a stored appointment date and "HH:MM" time into an aware datetime"""
    return datetime.combine(day, parse_time_hhmm(hhmm), tzinfo=APP_TIMEZONE)


def to_db_timestamp(moment: datetime) -> datetime:
    """Naive UTC, matching the server-side defaults of the timestamp columns"""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
