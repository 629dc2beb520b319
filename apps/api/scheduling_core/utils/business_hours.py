"""Business hours evaluator.

Config shape (stored as JSON on the organization):

    {
        "timezone": "America/New_York",
        "schedule": {
            "sunday": null,
            "monday": {"start": "09:00", "end": "17:00"},
            ...
        }
    }

Days are indexed 0=Sunday .. 6=Saturday. A missing or malformed day is closed.
Every function here degrades to None/False/defaults instead of raising, since
they run inside call routing and campaign gating.
"""

from __future__ import annotations

import copy
import re
from datetime import datetime, timedelta, timezone
from typing import Any, TypedDict

from scheduling_core.db.enums import DEFAULT_TIMEZONE
from scheduling_core.utils.datetime_parsing import resolve_timezone


class DaySchedule(TypedDict):
    start: str  # HH:MM, 24-hour
    end: str


class BusinessHoursConfig(TypedDict, total=False):
    timezone: str
    schedule: dict[str, DaySchedule | None]


DAY_NAMES = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]
DISPLAY_DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

NOT_CONFIGURED_MESSAGE = "Business hours not configured."

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_MINUTES_PER_DAY = 24 * 60

_DEFAULT_BUSINESS_HOURS: BusinessHoursConfig = {
    "timezone": DEFAULT_TIMEZONE,
    "schedule": {
        "sunday": None,
        "monday": {"start": "09:00", "end": "17:00"},
        "tuesday": {"start": "09:00", "end": "17:00"},
        "wednesday": {"start": "09:00", "end": "17:00"},
        "thursday": {"start": "09:00", "end": "17:00"},
        "friday": {"start": "09:00", "end": "17:00"},
        "saturday": None,
    },
}


# =============================================================================
# Parsing helpers
# =============================================================================

def _parse_minutes(value: Any) -> int | None:
    """Parse "HH:MM" into minutes since midnight. "24:00" is end of day."""
    if not isinstance(value, str):
        return None
    match = _TIME_RE.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59:
        return None
    total = hours * 60 + minutes
    if total > _MINUTES_PER_DAY:
        return None
    return total


def _get_schedule(config: Any) -> dict | None:
    if not isinstance(config, dict):
        return None
    schedule = config.get("schedule")
    return schedule if isinstance(schedule, dict) else None


def _get_window(config: Any, day_of_week: int) -> tuple[int, int] | None:
    """Day schedule as (start_minutes, end_minutes), or None when closed."""
    day = get_day_schedule(config, day_of_week)
    if day is None:
        return None
    return _parse_minutes(day["start"]), _parse_minutes(day["end"])


def _effective_timezone(config: Any, timezone_override: str | None) -> str:
    configured = config.get("timezone") if isinstance(config, dict) else None
    return timezone_override or configured or DEFAULT_TIMEZONE


def _local_now(tz_name: str, now: datetime | None) -> datetime:
    instant = now or datetime.now(timezone.utc)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(resolve_timezone(tz_name).tz)


def _day_index(local: datetime) -> int:
    # Python weekday(): Monday=0; this module uses Sunday=0
    return (local.weekday() + 1) % 7


def format_time_12h(value: str) -> str:
    """Format "HH:MM" as 12-hour display ("9:00 AM", "12:00 PM")."""
    minutes = _parse_minutes(value)
    if minutes is None:
        return value
    hours, mins = divmod(minutes % _MINUTES_PER_DAY, 60)
    period = "PM" if hours >= 12 else "AM"
    display_hours = hours % 12 or 12
    return f"{display_hours}:{mins:02d} {period}"


# =============================================================================
# Public API
# =============================================================================

def get_day_schedule(config: Any, day_of_week: int) -> DaySchedule | None:
    """Schedule for a weekday (0=Sunday..6=Saturday), or None if closed/invalid."""
    if isinstance(day_of_week, bool) or not isinstance(day_of_week, int):
        return None
    if not 0 <= day_of_week <= 6:
        return None
    schedule = _get_schedule(config)
    if schedule is None:
        return None
    day = schedule.get(DAY_NAMES[day_of_week])
    if not isinstance(day, dict):
        return None

    start = _parse_minutes(day.get("start"))
    end = _parse_minutes(day.get("end"))
    if start is None or end is None or start >= end:
        return None
    return {"start": day["start"], "end": day["end"]}


def is_within_business_hours(
    config: Any,
    timezone_override: str | None = None,
    now: datetime | None = None,
) -> bool:
    """
    Whether `now` falls inside the day's [start, end) window in the effective timezone.

    Timezone resolves as override, then config timezone, then America/New_York.
    Unknown zones evaluate in UTC.
    """
    if _get_schedule(config) is None:
        return False

    local = _local_now(_effective_timezone(config, timezone_override), now)
    window = _get_window(config, _day_index(local))
    if window is None:
        return False

    start, end = window
    current = local.hour * 60 + local.minute
    return start <= current < end


def get_next_open_time(
    config: Any,
    timezone_override: str | None = None,
    now: datetime | None = None,
) -> str | None:
    """
    Human-readable next opening ("today at 9:00 AM", "Monday at 9:00 AM").

    Returns None while currently open, when no schedule is configured, or when
    nothing opens within the next week.
    """
    if _get_schedule(config) is None:
        return None

    local = _local_now(_effective_timezone(config, timezone_override), now)
    today = _day_index(local)
    current = local.hour * 60 + local.minute

    for offset in range(8):
        day = (today + offset) % 7
        schedule = get_day_schedule(config, day)
        if schedule is None:
            continue

        if offset == 0:
            start, end = _get_window(config, day)
            if current < start:
                return f"today at {format_time_12h(schedule['start'])}"
            if current < end:
                return None  # Currently open
            continue

        return f"{DISPLAY_DAY_NAMES[day]} at {format_time_12h(schedule['start'])}"

    return None


def format_business_hours_for_prompt(config: Any) -> str:
    """Render the weekly schedule as a text block for agent prompts."""
    if _get_schedule(config) is None:
        return NOT_CONFIGURED_MESSAGE

    lines = [f"Business Hours ({_effective_timezone(config, None)}):"]
    for day in range(7):
        schedule = get_day_schedule(config, day)
        name = DISPLAY_DAY_NAMES[day]
        if schedule:
            lines.append(
                f"  {name}: {format_time_12h(schedule['start'])} - {format_time_12h(schedule['end'])}"
            )
        else:
            lines.append(f"  {name}: Closed")
    return "\n".join(lines)


def get_default_business_hours() -> BusinessHoursConfig:
    """Mon-Fri 09:00-17:00 America/New_York. Each call returns a fresh copy."""
    return copy.deepcopy(_DEFAULT_BUSINESS_HOURS)


def resolve_business_hours(stored: Any) -> BusinessHoursConfig:
    """Organization's stored config, or the default when none is set."""
    if _get_schedule(stored) is None:
        return get_default_business_hours()
    return copy.deepcopy(stored)


def local_day_window(
    config: Any,
    local_date,
    timezone_override: str | None = None,
) -> tuple[datetime, datetime] | None:
    """Open/close instants (UTC) for a local calendar date, or None if closed."""
    tz = resolve_timezone(_effective_timezone(config, timezone_override)).tz
    midnight = datetime(local_date.year, local_date.month, local_date.day, tzinfo=tz)
    window = _get_window(config, _day_index(midnight))
    if window is None:
        return None
    start, end = window
    opens = (midnight + timedelta(minutes=start)).astimezone(timezone.utc)
    closes = (midnight + timedelta(minutes=end)).astimezone(timezone.utc)
    return opens, closes
