"""
Time and date utilities.

All timestamps in the system are UTC. Snapshot timestamps are stored in
SQLite as fixed-width ISO-8601 text (microsecond precision, ``Z`` suffix) so
that lexicographic ``ORDER BY`` matches chronological order.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

DB_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime.

    Naive datetimes are assumed to already be in UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_db_timestamp(dt: datetime) -> str:
    """Format ``dt`` for storage, e.g. ``2026-10-19T07:00:00.000000Z``."""
    return ensure_utc(dt).strftime(DB_TIMESTAMP_FORMAT)


def from_db_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime.

    Accepts the fixed-width storage format as well as any ISO-8601 string
    understood by ``datetime.fromisoformat``.
    """
    try:
        return datetime.strptime(value, DB_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return ensure_utc(datetime.fromisoformat(value))


def utc_day(dt: datetime) -> date:
    """Return the UTC calendar day ``dt`` falls on."""
    return ensure_utc(dt).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return ``[start, end)`` UTC datetimes covering ``day``."""
    start = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def parse_date(value: str) -> date:
    """Parse ``YYYY-MM-DD``.

    Raises:
        ValueError: If ``value`` is not a valid ISO date.
    """
    return date.fromisoformat(value.strip())


def parse_datetime(value: str) -> datetime:
    """Parse an ISO date or datetime string into an aware UTC datetime.

    A bare date (``YYYY-MM-DD``) maps to midnight UTC of that day.
    """
    value = value.strip()
    if len(value) == 10:
        start, _ = day_bounds(parse_date(value))
        return start
    return ensure_utc(datetime.fromisoformat(value))
