# music_portal/utils/scheduling.py
"""Calendar arithmetic shared by lessons, hybrid bookings and attendance.

Days of the week follow the convention used across the API: 0 = Sunday
through 6 = Saturday. Times of day are "HH:MM" strings.
"""
import logging
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes read back from the database as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_valid_time(value: str) -> bool:
    return bool(value and TIME_PATTERN.match(value))


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def minutes_to_time(total: int) -> str:
    return f"{total // 60:02d}:{total % 60:02d}"


def add_minutes(value: str, minutes: int) -> str:
    return minutes_to_time(time_to_minutes(value) + minutes)


def duration_between(start: str, end: str) -> int:
    return time_to_minutes(end) - time_to_minutes(start)


def time_ranges_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    """Half-open overlap: touching ranges (10:00-10:30, 10:30-11:00) do not conflict"""
    return time_to_minutes(start1) < time_to_minutes(end2) and time_to_minutes(start2) < time_to_minutes(end1)


def js_weekday(day: date) -> int:
    """Python's Monday=0 weekday converted to Sunday=0"""
    return (day.weekday() + 1) % 7


def week_number(term_start: date, day: date) -> int:
    """1-based week of the term a date falls in"""
    return (day - term_start).days // 7 + 1


def date_for_week(term_start: date, week: int, day_of_week: int) -> date:
    """Date of the given weekday within the given term week"""
    week_start = term_start + timedelta(days=(week - 1) * 7)
    offset = (day_of_week - js_weekday(term_start) + 7) % 7
    return week_start + timedelta(days=offset)


def term_week_count(term_start: date, term_end: date) -> int:
    return week_number(term_start, term_end)


def school_timezone(name: Optional[str]) -> tzinfo:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown school timezone {name!r}, using UTC")
        return timezone.utc


def combine(day: date, hhmm: str, tz: Optional[tzinfo] = None) -> datetime:
    """Aware datetime for a lesson date and "HH:MM" start in the school's timezone"""
    hours, minutes = (int(part) for part in hhmm.split(":"))
    return datetime.combine(day, time(hours, minutes), tzinfo=tz or timezone.utc)


def hours_until(day: date, hhmm: str, tz: Optional[tzinfo] = None, now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    return (combine(day, hhmm, tz) - now).total_seconds() / 3600


def has_minimum_notice(
    day: date, hhmm: str, hours: int, tz: Optional[tzinfo] = None, now: Optional[datetime] = None
) -> bool:
    return hours_until(day, hhmm, tz, now) >= hours


def week_start_monday(day: date) -> date:
    return day - timedelta(days=day.weekday())


def age_on(birth_date: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years
