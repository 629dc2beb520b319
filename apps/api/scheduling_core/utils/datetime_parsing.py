"""Datetime parsing helpers for booking and reschedule input."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from scheduling_core.db.enums import DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)

UTC = ZoneInfo("UTC")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


@dataclass
class ResolvedTimezone:
    name: str
    tz: ZoneInfo
    used_fallback: bool = False


def resolve_timezone(name: str | None, default: str = DEFAULT_TIMEZONE) -> ResolvedTimezone:
    """
    Resolve an IANA zone name, defaulting when unset.

    An unrecognized zone resolves to UTC instead of raising.
    """
    tz_name = name or default
    try:
        return ResolvedTimezone(name=tz_name, tz=ZoneInfo(tz_name))
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
        return ResolvedTimezone(name="UTC", tz=UTC, used_fallback=True)


def parse_iso_instant(raw_value: str | None, default_timezone: str | None = None) -> datetime | None:
    """
    Parse an ISO 8601 string into an aware UTC datetime.

    Values without an offset are read as wall-clock time in default_timezone.
    Returns None when the value is empty or not ISO 8601.
    """
    if not raw_value or not isinstance(raw_value, str):
        return None
    value = raw_value.strip()
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=resolve_timezone(default_timezone).tz)
    return dt.astimezone(timezone.utc)


def parse_local_date(raw_value: str | None) -> date | None:
    if not raw_value or not _DATE_RE.match(raw_value.strip()):
        return None
    try:
        return date.fromisoformat(raw_value.strip())
    except ValueError:
        return None


def parse_local_time(raw_value: str | None) -> time | None:
    """Parse HH:MM (or HH:MM:SS) 24-hour wall-clock time."""
    if not raw_value:
        return None
    match = _TIME_RE.match(raw_value.strip())
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        return None
    return time(hour, minute, second)


def combine_local_date_time(
    raw_date: str | None,
    raw_time: str | None,
    timezone_name: str | None,
) -> datetime | None:
    """Combine a local YYYY-MM-DD date and HH:MM time in a zone into a UTC instant."""
    local_date = parse_local_date(raw_date)
    local_time = parse_local_time(raw_time)
    if local_date is None or local_time is None:
        return None
    tz = resolve_timezone(timezone_name).tz
    return datetime.combine(local_date, local_time, tzinfo=tz).astimezone(timezone.utc)


def to_local(instant: datetime, timezone_name: str | None) -> datetime:
    """Convert an aware instant to wall-clock time in the named zone."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(resolve_timezone(timezone_name).tz)
