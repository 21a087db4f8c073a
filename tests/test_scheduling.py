# tests/test_scheduling.py
from datetime import date, datetime, timezone

import pytest

from music_portal.utils.scheduling import (
    add_minutes, age_on, date_for_week, duration_between, has_minimum_notice, is_valid_time,
    js_weekday, school_timezone, term_week_count, time_ranges_overlap, week_number, week_start_monday,
)


@pytest.mark.parametrize("value,valid", [
    ("00:00", True),
    ("09:30", True),
    ("23:59", True),
    ("24:00", False),
    ("9:30", False),
    ("12:60", False),
    ("", False),
])
def test_is_valid_time(value, valid):
    assert is_valid_time(value) is valid


def test_time_arithmetic():
    assert add_minutes("09:45", 30) == "10:15"
    assert duration_between("16:00", "16:45") == 45
    assert duration_between("16:00", "15:00") == -60


def test_touching_ranges_do_not_overlap():
    assert not time_ranges_overlap("10:00", "10:30", "10:30", "11:00")
    assert time_ranges_overlap("10:00", "10:31", "10:30", "11:00")
    assert time_ranges_overlap("10:00", "12:00", "10:30", "11:00")


def test_weekday_convention_is_sunday_zero():
    assert js_weekday(date(2026, 10, 18)) == 0  # Sunday
    assert js_weekday(date(2026, 10, 19)) == 1  # Monday
    assert js_weekday(date(2026, 10, 24)) == 6  # Saturday


def test_term_weeks():
    start = date(2026, 2, 2)  # Monday
    assert week_number(start, start) == 1
    assert week_number(start, date(2026, 2, 8)) == 1
    assert week_number(start, date(2026, 2, 9)) == 2
    assert term_week_count(start, date(2026, 4, 12)) == 10


def test_date_for_week_finds_weekday_inside_the_week():
    start = date(2026, 2, 2)  # Monday
    assert date_for_week(start, 1, 2) == date(2026, 2, 3)  # Tuesday of week 1
    assert date_for_week(start, 3, 1) == date(2026, 2, 16)
    # Sunday falls at the end of a Monday-started week
    assert date_for_week(start, 1, 0) == date(2026, 2, 8)


def test_minimum_notice_uses_school_timezone():
    tz = school_timezone("Australia/Sydney")
    now = datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc)  # 11:00 in Sydney
    assert has_minimum_notice(date(2026, 3, 2), "12:00", 24, tz, now)
    assert not has_minimum_notice(date(2026, 3, 2), "10:00", 24, tz, now)


def test_unknown_timezone_falls_back_to_utc():
    assert school_timezone("Mars/Olympus") is timezone.utc
    assert school_timezone(None) is timezone.utc


def test_age_on_counts_birthdays():
    assert age_on(date(2015, 6, 1), date(2026, 5, 31)) == 10
    assert age_on(date(2015, 6, 1), date(2026, 6, 1)) == 11


def test_week_start_monday():
    assert week_start_monday(date(2026, 10, 18)) == date(2026, 10, 12)
    assert week_start_monday(date(2026, 10, 19)) == date(2026, 10, 19)
