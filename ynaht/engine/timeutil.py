"""Time and calendar helpers for day sessions, weeks and months."""

import calendar
import math
import secrets
import string
import time as _time
from datetime import date, datetime, time, timedelta
from typing import Optional

MINUTES_PER_DAY = 24 * 60

DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


def now_local() -> datetime:
    """Current wall-clock time as an aware datetime in the local zone."""
    return datetime.now().astimezone()


def ensure_aware(dt: datetime) -> datetime:
    """Attach the local zone to naive datetimes."""
    if dt.tzinfo is None:
        return dt.astimezone()
    return dt


def generate_id() -> str:
    """Generate a unique, roughly time-ordered identifier."""
    suffix = "".join(
        secrets.choice(string.ascii_lowercase + string.digits) for _ in range(9)
    )
    return f"{int(_time.time() * 1000)}-{suffix}"


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, truncated toward zero."""
    return math.trunc((end - start).total_seconds() / 60)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return math.floor(value + 0.5)


def parse_clock(value: str) -> time:
    """Parse an "HH:MM" clock string."""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def normalize_sleep_time(wake_time: datetime, sleep_time: datetime) -> datetime:
    """
    Move a sleep time that is not after the wake time into the next day.

    Args:
        wake_time: Start of the day session
        sleep_time: Planned sleep time, possibly on the same calendar day

    Returns:
        Sleep time strictly after wake time when the window is under a day
    """
    if sleep_time <= wake_time:
        return sleep_time + timedelta(days=1)
    return sleep_time


def day_window(
    wake_clock: str,
    sleep_clock: str,
    on_date: Optional[date] = None,
    spans_next_day: bool = False,
) -> tuple[datetime, datetime]:
    """
    Build wake and sleep instants from clock strings.

    A sleep clock time at or before the wake clock time (or an explicit
    spans_next_day) puts the sleep instant on the following day.

    Example:
        day_window("07:00", "01:00") spans 18 hours
    """
    on_date = on_date or now_local().date()
    tz = now_local().tzinfo

    wake = datetime.combine(on_date, parse_clock(wake_clock), tzinfo=tz)
    sleep = datetime.combine(on_date, parse_clock(sleep_clock), tzinfo=tz)

    if spans_next_day and sleep > wake:
        sleep += timedelta(days=1)

    return wake, normalize_sleep_time(wake, sleep)


def js_day_of_week(d: date) -> int:
    """Day of week where Sunday=0, Saturday=6."""
    # Python weekday: Monday=0, Sunday=6
    return (d.weekday() + 1) % 7


def days_into_week(d: date, week_starts_on: int) -> int:
    """Days elapsed since the configured week start (0-6)."""
    return (js_day_of_week(d) - week_starts_on + 7) % 7


def week_start(d: date, week_starts_on: int = 1) -> date:
    """First day of the week containing d (0=Sunday start, 1=Monday start)."""
    return d - timedelta(days=days_into_week(d, week_starts_on))


def week_of(now: datetime, week_starts_on: int = 1) -> str:
    """ISO date string identifying the week bucket of now."""
    return week_start(now.date(), week_starts_on).isoformat()


def _midnight(d: date, like: datetime) -> datetime:
    return datetime.combine(d, time.min, tzinfo=like.tzinfo)


def week_window(now: datetime, week_starts_on: int = 1) -> tuple[datetime, datetime]:
    """Half-open [start, end) window of the week containing now."""
    start = _midnight(week_start(now.date(), week_starts_on), now)
    return start, start + timedelta(days=7)


def month_window(now: datetime) -> tuple[datetime, datetime]:
    """Half-open [start, end) window of the month containing now."""
    first = now.date().replace(day=1)
    days = calendar.monthrange(first.year, first.month)[1]
    start = _midnight(first, now)
    return start, start + timedelta(days=days)


def period_window(
    frequency: str, now: datetime, week_starts_on: int = 1
) -> tuple[datetime, datetime, int, int]:
    """
    Window for a goal frequency.

    Returns:
        Tuple of (start, end, days_elapsed, period_length)
    """
    if frequency == "daily":
        start = _midnight(now.date(), now)
        return start, start + timedelta(days=1), 0, 1

    if frequency == "monthly":
        start, end = month_window(now)
        return start, end, now.day - 1, (end - start).days

    start, end = week_window(now, week_starts_on)
    return start, end, days_into_week(now.date(), week_starts_on), 7


def is_within(dt: datetime, start: datetime, end: datetime) -> bool:
    """Check start <= dt < end."""
    return start <= ensure_aware(dt) < end


def minutes_to_hours_minutes(minutes: int) -> str:
    """Format minutes as "1h 30m", "45m" or "-2h"."""
    hrs = abs(minutes) // 60
    mins = abs(minutes) % 60
    sign = "-" if minutes < 0 else ""

    if hrs == 0:
        return f"{sign}{mins}m"
    if mins == 0:
        return f"{sign}{hrs}h"
    return f"{sign}{hrs}h {mins}m"


def minutes_to_decimal_hours(minutes: int) -> str:
    """Format minutes as hours with one decimal place."""
    return f"{minutes / 60:.1f}"


def variance_color(planned: int, actual: int) -> str:
    """
    Classify how far actual time overran the plan.

    Returns:
        "green" (on or under budget), "yellow" (up to 20% over) or "red"
    """
    variance = actual - planned
    percent = (variance / planned) * 100 if planned > 0 else 0

    if percent <= 0:
        return "green"
    if percent <= 20:
        return "yellow"
    return "red"


def variance_text(planned: int, actual: int) -> str:
    """Describe the difference between actual and planned minutes."""
    variance = actual - planned
    if variance == 0:
        return "On track"
    if variance > 0:
        return f"+{minutes_to_hours_minutes(variance)} over"
    return f"{minutes_to_hours_minutes(abs(variance))} under"
