"""
Time and formatting helpers.

Datetimes are stored as fixed-width UTC strings ("2026-01-15T12:30:00.000000Z")
so that lexical order in the document store matches chronological order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

STORAGE_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Clock(Protocol):
    """Source of the current wall-clock time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Clock backed by the system time (UTC)."""

    def now(self) -> datetime:
        return get_utc_now()


def get_utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def format_datetime(dt: datetime) -> str:
    """
    Format a datetime for storage.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(STORAGE_FORMAT)


def parse_datetime(dt_str: str | None) -> datetime | None:
    """
    Parse a stored datetime string.

    Accepts the storage format, the second-precision variant and anything
    datetime.fromisoformat understands.

    Returns:
        datetime with UTC timezone, or None if parsing fails
    """
    if not dt_str:
        return None

    for fmt in (STORAGE_FORMAT, "%Y-%m-%dT%H:%M:%SZ"):
        try:
            return datetime.strptime(dt_str, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    try:
        parsed = datetime.fromisoformat(dt_str)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def get_utc_timestamp() -> str:
    """Get current UTC timestamp string."""
    return get_utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")
