"""
Date helpers: UTC timestamps, recurrence interval arithmetic, and 'today' in the user's timezone.
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone

from zoneinfo import ZoneInfo

# Already ISO date
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

RECURRENCE_DAYS = {"daily": 1, "weekly": 7}


def now_iso() -> str:
    """Current UTC time as YYYY-MM-DDTHH:MM:SS.mmmZ."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today_in_tz(tz_name: str = "UTC") -> date:
    name = (tz_name or "").strip() or "UTC"
    return datetime.now(ZoneInfo(name)).date()


def date_only(value: str | None) -> str | None:
    """Leading YYYY-MM-DD of an ISO date or timestamp, or None."""
    if not value or not isinstance(value, str):
        return None
    part = value.strip()[:10]
    return part if _ISO_DATE.match(part) else None


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp; a trailing Z is read as UTC. Raises ValueError."""
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    return datetime.fromisoformat(raw)


def add_recurrence_interval(value: str | None, recurrence: str) -> str | None:
    """
    Shift a due/scheduled value by one recurrence step (daily +1 day, weekly +7 days).
    Keeps the shape of the input: a date stays a date, a Z timestamp stays a Z timestamp.
    None stays None; anything unparseable is returned unchanged.
    """
    days = RECURRENCE_DAYS.get(recurrence)
    if not value or not days:
        return value
    raw = value.strip()
    try:
        if _ISO_DATE.match(raw):
            return (date.fromisoformat(raw) + timedelta(days=days)).isoformat()
        shifted = parse_timestamp(raw) + timedelta(days=days)
    except ValueError:
        return value
    if raw.endswith("Z"):
        spec = "milliseconds" if "." in raw else "seconds"
        return shifted.astimezone(timezone.utc).isoformat(timespec=spec).replace("+00:00", "Z")
    return shifted.isoformat()
