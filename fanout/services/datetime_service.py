"""Timestamp helpers for stored rows."""

from __future__ import annotations

from datetime import UTC, datetime

# Strict output format: YYYY-MM-DD HH:MM:SS.ffffff±TZ
STRICT_FORMAT = "%Y-%m-%d %H:%M:%S.%f%z"


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_datetime(dt: datetime) -> str:
    """Format a datetime to the strict storage format.

    Output: YYYY-MM-DD HH:MM:SS.ffffff+0000
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.strftime(STRICT_FORMAT)


def parse_stored(value: str) -> datetime:
    """Parse a value written by :func:`format_datetime`."""
    return datetime.strptime(value, STRICT_FORMAT)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()
