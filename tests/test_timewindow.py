"""Tests for focusflow/timewindow.py: day, week and streak arithmetic."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from focusflow.timewindow import (
    consecutive_day_streak,
    day_bounds,
    is_same_day,
    local_day,
    parse_day,
    parse_timestamp,
    to_iso,
    week_bounds,
    week_start,
)

UTC = timezone.utc


def test_week_starts_on_sunday():
    assert week_start(date(2026, 3, 11)) == date(2026, 3, 8)
    assert week_start(date(2026, 3, 8)) == date(2026, 3, 8)
    assert week_start(date(2026, 3, 14)) == date(2026, 3, 8)
    assert week_start(date(2026, 3, 15)) == date(2026, 3, 15)


def test_week_bounds_half_open():
    start, end = week_bounds(date(2026, 3, 11), UTC)
    assert start == datetime(2026, 3, 8, tzinfo=UTC)
    assert end == datetime(2026, 3, 15, tzinfo=UTC)


def test_day_bounds_half_open():
    start, end = day_bounds(date(2026, 3, 11), UTC)
    assert start == datetime(2026, 3, 11, tzinfo=UTC)
    assert end == datetime(2026, 3, 12, tzinfo=UTC)


def test_local_day_respects_timezone():
    dt = datetime(2026, 3, 11, 2, 0, tzinfo=UTC)
    assert local_day(dt, UTC) == date(2026, 3, 11)
    assert local_day(dt, ZoneInfo("America/New_York")) == date(2026, 3, 10)


def test_is_same_day():
    a = datetime(2026, 3, 11, 0, 1, tzinfo=UTC)
    b = datetime(2026, 3, 11, 23, 59, tzinfo=UTC)
    c = datetime(2026, 3, 12, 0, 0, tzinfo=UTC)
    assert is_same_day(a, b, UTC)
    assert not is_same_day(b, c, UTC)


def test_iso_round_trip_is_utc():
    dt = datetime(2026, 3, 11, 10, 0, tzinfo=ZoneInfo("Europe/Berlin"))
    s = to_iso(dt)
    assert s.endswith("+00:00")
    assert parse_timestamp(s) == dt


def test_iso_strings_sort_chronologically():
    earlier = to_iso(datetime(2026, 3, 11, 9, 0, 0, tzinfo=UTC))
    later = to_iso(datetime(2026, 3, 11, 9, 0, 0, 500, tzinfo=UTC))
    assert earlier < later


def test_parse_day_accepts_timestamps_and_blanks():
    assert parse_day("2026-03-11") == date(2026, 3, 11)
    assert parse_day("2026-03-11T08:00:00+00:00") == date(2026, 3, 11)
    assert parse_day("") is None
    assert parse_day(None) is None


def test_streak_must_include_today():
    today = date(2026, 3, 11)
    assert consecutive_day_streak([date(2026, 3, 10), date(2026, 3, 9)], today) == 0
    assert consecutive_day_streak([date(2026, 3, 11), date(2026, 3, 10), date(2026, 3, 9)], today) == 3


def test_streak_broken_by_gap_and_ignores_future():
    today = date(2026, 3, 11)
    days = [date(2026, 3, 11), date(2026, 3, 10), date(2026, 3, 8), date(2026, 3, 12)]
    assert consecutive_day_streak(days, today) == 2


def test_streak_duplicates_count_once():
    today = date(2026, 3, 11)
    assert consecutive_day_streak([today, today, today], today) == 1
