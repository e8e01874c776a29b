"""Timestamp helpers shared by the normalizer, lifecycle engine and analytics.

Timestamps travel as ISO-8601 / RFC3339 strings. Naive values are read as UTC.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a date, datetime or ISO string. Returns None when unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_timestamp(value: Any) -> Optional[str]:
    """Full RFC3339 timestamp; date-only input becomes midnight UTC."""
    dt = parse_timestamp(value)
    return dt.isoformat() if dt else None


def day_key(value: Any) -> Optional[str]:
    """YYYY-MM-DD of a timestamp, in the offset it was written with."""
    dt = parse_timestamp(value)
    return dt.date().isoformat() if dt else None


def parse_day(value: Any) -> Optional[date]:
    dt = parse_timestamp(value)
    return dt.date() if dt else None
