"""
Time helpers.

Tracking timestamps are stored timezone-aware (UTC). Use these helpers instead of
`datetime.utcnow()` to avoid mixing naive and aware datetimes; SQLite test
databases hand back naive values, which `ensure_utc` treats as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def now_utc() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Coerce a datetime to timezone-aware UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_window_utc(day_key: date) -> tuple[datetime, datetime]:
    """Half-open [start, end) UTC window covering one calendar day."""
    start = datetime.combine(day_key, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)
