# Overview: UTC time helpers; the database stores naive UTC datetimes.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp column holds."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(dt: Optional[datetime]) -> Optional[datetime]:
    # Naive input is already UTC
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def elapsed_since(created_at: datetime, now: Optional[datetime] = None) -> timedelta:
    """Age of a row at `now` (defaults to the current time)."""
    return as_utc_naive(now or utcnow()) - as_utc_naive(created_at)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a query-string date filter.

    Accepts "YYYY-MM-DD", "YYYY-MM-DDTHH:MM[:SS]" (read as UTC) and offsets
    including a trailing "Z". Empty input gives None; anything else that does
    not parse raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return as_utc_naive(datetime.fromisoformat(text))


def is_date_only(value: Optional[str]) -> bool:
    """True for a bare "YYYY-MM-DD" value (no time part)."""
    return value is not None and len(value.strip()) == 10


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 at second precision with a 'Z' suffix, for JSON output."""
    if dt is None:
        return None
    stamp = as_utc_naive(dt).replace(microsecond=0)
    return stamp.isoformat() + "Z"
