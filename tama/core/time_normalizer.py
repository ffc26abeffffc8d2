"""Time normalization — pure business logic.

Turns classifier-resolved delays into the instants stored on a task and
renders the human-facing time strings used in replies.

All calendar reasoning happens in the deployment timezone via zoneinfo;
timestamps are timezone-aware UTC datetimes everywhere else.

No I/O: this module only transforms data.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from tama.data.models import Task


# Day-only tasks anchor to local noon: a rough delay that overshoots or
# undershoots by several hours still lands on the intended calendar day.
DAY_ONLY_ANCHOR = time(12, 0)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _zone(tz: str | ZoneInfo) -> ZoneInfo:
    return tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)


def local_noon(day: date, tz: str | ZoneInfo) -> datetime:
    """Return the UTC instant of 12:00 local time on *day*."""
    return datetime.combine(day, DAY_ONLY_ANCHOR, tzinfo=_zone(tz)).astimezone(timezone.utc)


def normalize_day_only(
    rough_delay_minutes: int,
    tz: str | ZoneInfo,
    now: datetime | None = None,
) -> datetime:
    """Anchor a day-only target to local noon of the day it falls on.

    Every rough delay landing inside the same local calendar day yields
    the identical instant.
    """
    now = now or utcnow()
    target_local = (now + timedelta(minutes=rough_delay_minutes)).astimezone(_zone(tz))
    return local_noon(target_local.date(), tz)


def compute_next_reminder(
    delay_minutes: int,
    is_day_only: bool,
    tz: str | ZoneInfo,
    now: datetime | None = None,
) -> datetime:
    """Return the trigger instant stored on a freshly created task."""
    now = now or utcnow()
    if is_day_only:
        return normalize_day_only(delay_minutes, tz, now)
    return now + timedelta(minutes=delay_minutes)


def local_date_key(tz: str | ZoneInfo, now: datetime | None = None) -> str:
    """Return the local calendar date as YYYY-MM-DD, used for per-day records."""
    return (now or utcnow()).astimezone(_zone(tz)).date().isoformat()


def local_day_bounds(
    tz: str | ZoneInfo, now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Return today's local [00:00, next 00:00) window as UTC instants."""
    zone = _zone(tz)
    today = (now or utcnow()).astimezone(zone).date()
    start = datetime.combine(today, time.min, tzinfo=zone)
    end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_relative_duration(minutes: int) -> str:
    """Format a delay: "45 minutes", "2h", "2h 30m"."""
    if minutes <= 0:
        return "any moment now"
    if minutes < 60:
        return _plural(minutes, "minute")

    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours}h"
    return f"{hours}h {remaining}m"


def format_elapsed_or_future(timestamp: datetime, now: datetime | None = None) -> str:
    """Return "in N units" for future instants and "N units ago" for past ones.

    Upcoming reminders and overdue tasks share this function so the sign
    handling lives in one place.
    """
    now = now or utcnow()
    diff_seconds = (timestamp - now).total_seconds()
    minutes = int(abs(diff_seconds) // 60)

    if minutes == 0:
        return "any moment now" if diff_seconds >= 0 else "just now"

    if minutes < 60:
        amount = _plural(minutes, "minute")
    elif minutes < 24 * 60:
        amount = _plural(minutes // 60, "hour")
    else:
        amount = _plural(minutes // (24 * 60), "day")

    return f"in {amount}" if diff_seconds > 0 else f"{amount} ago"


def format_day_label(
    timestamp: datetime, tz: str | ZoneInfo, now: datetime | None = None,
) -> str:
    """Return "today", "tomorrow", or the weekday name, by local calendar date."""
    zone = _zone(tz)
    now = now or utcnow()
    target_day = timestamp.astimezone(zone).date()
    today = now.astimezone(zone).date()
    tomorrow = (now + timedelta(hours=24)).astimezone(zone).date()

    if target_day == today:
        return "today"
    if target_day == tomorrow:
        return "tomorrow"
    return target_day.strftime("%A")


def format_time_of_day(hour: int, minute: int) -> str:
    """Format a wall-clock time as "9:05 PM"."""
    period = "PM" if hour >= 12 else "AM"
    display_hour = hour % 12 or 12
    return f"{display_hour}:{minute:02d} {period}"


def format_clock_time(timestamp: datetime, tz: str | ZoneInfo) -> str:
    """Format an instant as local clock time, e.g. "3:00 PM"."""
    local = timestamp.astimezone(_zone(tz))
    return format_time_of_day(local.hour, local.minute)


def describe_task_time(
    task: Task, tz: str | ZoneInfo, now: datetime | None = None,
) -> str:
    """Human-facing schedule for a task in listings."""
    if task.is_day_only:
        return format_day_label(task.next_reminder, tz, now)
    return format_elapsed_or_future(task.next_reminder, now)


def parse_clock(value: str) -> tuple[int, int]:
    """Parse "HH:MM" into (hour, minute).

    Raises ValueError on malformed input.
    """
    if ":" not in value:
        raise ValueError(f"No colon in clock value: {value!r}")
    hour, minute = map(int, value.split(":", 1))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
    return hour, minute
