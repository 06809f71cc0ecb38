# Overview: UTC clock and ISO-8601 helpers shared by models, services and routes.

"""
All timestamps are stored as naive UTC datetimes and serialized with a
trailing 'Z'. Due dates and reporting windows are computed from utcnow().
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_from_now(days: int, now: Optional[datetime] = None) -> datetime:
    """Credit due dates and promotion windows: `days` may be negative."""
    return (now or utcnow()) + timedelta(days=days)


def start_of_month(now: Optional[datetime] = None) -> datetime:
    now = now or utcnow()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a client-supplied date or datetime into naive UTC.

    Blank input gives None. Offsets (including 'Z') are converted to UTC;
    values without an offset, and bare dates, are taken as UTC already.
    Raises ValueError when the string is not ISO-8601.
    """
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to second precision, e.g. 2026-06-01T09:30:00Z. Naive input is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
