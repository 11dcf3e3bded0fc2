"""Timestamp helpers.

All timestamps are stored as ISO 8601 strings in UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime for storage (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def days_until(deadline: datetime, now: datetime) -> int:
    """Whole calendar days from today until the deadline date.

    0 means the deadline falls today; negative values mean it has passed.
    """
    deadline_date: date = deadline.astimezone(timezone.utc).date()
    today: date = now.astimezone(timezone.utc).date()
    return (deadline_date - today).days


def days_overdue(deadline: datetime, now: datetime) -> int:
    """Whole days elapsed since the deadline (floor)."""
    return int((now - deadline).total_seconds() // 86400)
