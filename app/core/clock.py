"""Server clock and time-of-day helpers.

Times of day are stored and compared as integer minutes since midnight.
The ``HH:MM`` text form only exists at the API boundary.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
import re

import pytz

from app.core.config import settings
from app.core.exceptions import ValidationError

MINUTES_PER_DAY = 24 * 60

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

_TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def utc_now() -> datetime:
    """The single trusted clock for every "now" comparison"""
    return datetime.now(timezone.utc)


def weekday_name(target_date: date) -> str:
    return WEEKDAYS[target_date.weekday()]


def parse_time_of_day(value: str, allow_end_of_day: bool = False) -> int:
    """Parse ``HH:MM`` into minutes since midnight"""
    match = _TIME_PATTERN.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")

    hours, minutes = int(match.group(1)), int(match.group(2))
    total = hours * 60 + minutes
    if minutes >= 60 or total > MINUTES_PER_DAY:
        raise ValidationError(f"Invalid time '{value}'")
    if total == MINUTES_PER_DAY and not allow_end_of_day:
        raise ValidationError(f"Invalid time '{value}'")
    return total


def format_time_of_day(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def session_datetime(session_date: date, minute: int, tz_name: Optional[str] = None) -> datetime:
    """Localize a session wall-clock time and return it in UTC"""
    tz = pytz.timezone(tz_name or settings.SCHEDULE_TIMEZONE)
    naive = datetime.combine(session_date, time.min) + timedelta(minutes=minute)
    return tz.localize(naive).astimezone(timezone.utc)


def local_today(now: datetime, tz_name: Optional[str] = None) -> date:
    tz = pytz.timezone(tz_name or settings.SCHEDULE_TIMEZONE)
    return now.astimezone(tz).date()


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600
