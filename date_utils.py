"""
Centralized date and time utilities.

All timestamps are handled as timezone-aware datetime objects, defaulting to
UTC. Calendar-day helpers used by trip detection and export filtering also
live here so that "which day does this point belong to" has one answer.
"""

import logging
from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta

from dateutil import parser

logger = logging.getLogger(__name__)


def get_current_utc_time() -> datetime:
    """Return the current time as a timezone-aware datetime object in UTC."""
    return datetime.now(UTC)


def parse_timestamp(ts: str | int | float | datetime | None) -> datetime | None:
    """
    Parse a timestamp (ISO string, epoch seconds or datetime) into an
    aware UTC datetime.

    Returns:
        A timezone-aware datetime object, or None if parsing fails.
    """
    if ts is None or ts == "":
        logger.debug("Received empty timestamp; returning None.")
        return None

    if isinstance(ts, datetime):
        # If the datetime object is naive, assume UTC.
        if ts.tzinfo is None:
            return ts.replace(tzinfo=UTC)
        return ts.astimezone(UTC)

    if isinstance(ts, int | float):
        try:
            return datetime.fromtimestamp(float(ts), tz=UTC)
        except (OverflowError, OSError, ValueError) as e:
            logger.warning("Failed to parse epoch timestamp '%s': %s", ts, e)
            return None

    try:
        parsed_time = parser.isoparse(ts)
        if parsed_time.tzinfo is None:
            return parsed_time.replace(tzinfo=UTC)
        return parsed_time.astimezone(UTC)
    except (ValueError, TypeError) as e:
        logger.warning("Failed to parse timestamp '%s': %s", ts, e)
        return None


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return the datetime as an explicit UTC-aware value."""

    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def parse_date(value: str | date | datetime | None) -> date | None:
    """Parse a YYYY-MM-DD string (or date/datetime) into a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    parsed = parse_timestamp(value)
    return parsed.date() if parsed else None


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def end_of_day(day: date) -> datetime:
    """Last whole second of the calendar day (23:59:59 UTC)."""
    return datetime.combine(day, time(23, 59, 59), tzinfo=UTC)


def iter_days(start: date, end: date) -> Iterator[date]:
    """Yield every calendar date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
