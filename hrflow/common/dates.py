"""Calendar-date helpers.

Day counts are computed on calendar dates (ordinal days), never on timestamp
deltas, so daylight-saving shifts and UTC offsets cannot move a leave by a day.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Union

DateLike = Union[date, datetime, str]


def parse_calendar_date(value: DateLike) -> date:
    """Return the calendar date a value names.

    ISO strings are read from their ``YYYY-MM-DD`` prefix, so
    ``"2024-03-01T23:30:00-05:00"`` is March 1st, the date the user picked,
    not March 2nd in UTC.

    Raises:
        ValueError: the value is not a date, datetime, or ISO date string.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) < 10:
            raise ValueError(f"'{value}' is not an ISO 8601 date.")
        return date.fromisoformat(text[:10])
    raise ValueError(f"Unsupported date value: {value!r}")


def inclusive_day_count(start: date, end: date) -> int:
    """Number of calendar days from start to end, both included."""
    return end.toordinal() - start.toordinal() + 1


def parse_timestamp(value: Union[datetime, str]) -> datetime:
    """Parse an ISO 8601 timestamp into an aware datetime (naive → UTC)."""
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Union[datetime, str]) -> datetime:
    """Parse (if needed) and convert to UTC; storage keeps timestamps in UTC."""
    return parse_timestamp(value).astimezone(timezone.utc)
