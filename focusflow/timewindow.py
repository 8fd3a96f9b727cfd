"""Calendar-day and week arithmetic for FocusFlow.

All functions are pure. Timestamps are timezone-aware; calendar days are
naive ``date`` objects interpreted in the server time zone passed as ``tz``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta, timezone, tzinfo


# ── Serialization ─────────────────────────────────────────────


def to_iso(dt: datetime | None) -> str | None:
    """Serialise a timestamp as UTC ISO-8601 so stored values sort lexically."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_day(value: str | date | datetime | None) -> date | None:
    """Parse 'YYYY-MM-DD' (or a full ISO timestamp) into a calendar day."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value)
    if len(s) > 10:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    return date.fromisoformat(s)


# ── Day boundaries ────────────────────────────────────────────


def local_day(dt: datetime, tz: tzinfo) -> date:
    """Calendar day of ``dt`` in the server time zone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz).date()


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` interval covering ``day``."""
    start = start_of_day(day, tz)
    end = start_of_day(day + timedelta(days=1), tz)
    return start, end


def is_same_day(a: datetime, b: datetime, tz: tzinfo) -> bool:
    return local_day(a, tz) == local_day(b, tz)


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    # date.weekday(): Monday == 0 ... Sunday == 6
    return day - timedelta(days=(day.weekday() + 1) % 7)


def week_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open ``[sunday 00:00, next sunday 00:00)`` interval containing ``day``."""
    start_day = week_start(day)
    return start_of_day(start_day, tz), start_of_day(start_day + timedelta(days=7), tz)


# ── Streaks ───────────────────────────────────────────────────


def consecutive_day_streak(days: Iterable[date], today: date) -> int:
    """Count consecutive days ending at ``today`` that appear in ``days``.

    The run must include ``today`` itself; a day with no entry breaks it.
    Duplicate and future days are ignored.
    """
    present = {d for d in days if d <= today}
    streak = 0
    cursor = today
    while cursor in present:
        streak += 1
        cursor -= timedelta(days=1)
    return streak
