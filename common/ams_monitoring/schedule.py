"""Dose schedule arithmetic for antimicrobial courses.

All day arithmetic is done on ``datetime.date`` values so that a course
spanning a daylight-saving change never gains or loses a calendar day.
"""

import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable

MIN_DISPLAY_DAYS = 7
DEFAULT_FREQUENCY_HOURS = 8

_FREQUENCY_PATTERN = re.compile(r"q\s*(\d+(?:\.\d+)?)\s*h", re.IGNORECASE)


def to_date(value: date | datetime | str) -> date:
    """Coerce an ISO string, datetime or date to a calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # Accept full ISO timestamps ("2024-03-10T08:00:00") as well as plain dates
    return date.fromisoformat(str(value).strip()[:10])


def doses_per_day(frequency_hours: Any) -> int:
    """Number of dose slots per day for a dosing interval.

    Returns 1 when the interval is missing, non-numeric or not positive.
    """
    try:
        hours = float(frequency_hours)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(hours) or hours <= 0:
        return 1
    return max(1, math.floor(24 / hours))


def day_index(start_date: date | datetime | str, calendar_date: date | datetime | str) -> int:
    """1-based day of the course on which ``calendar_date`` falls."""
    return (to_date(calendar_date) - to_date(start_date)).days + 1


def calendar_date(start_date: date | datetime | str, index: int) -> date:
    """Calendar date for a 1-based course day. Inverse of ``day_index``."""
    return to_date(start_date) + timedelta(days=index - 1)


def day_of_therapy(start_date: date | datetime | str, today: date | datetime | None = None) -> int:
    """Day of therapy (DOT), counting the start date as day 1.

    Courses that start in the future report day 1.
    """
    today = to_date(today) if today is not None else date.today()
    return max(0, (today - to_date(start_date)).days) + 1


def total_planned_doses(planned_duration_days: int, per_day: int) -> int:
    """Total dose slots over the planned course."""
    return planned_duration_days * per_day


def parse_planned_duration(value: Any, default: int | None = None) -> int | None:
    """Parse a planned duration (stored as text) into whole days."""
    if value is None:
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        match = re.match(r"\s*(\d+)", str(value))
        if match:
            return int(match.group(1))
        return default


def parse_frequency_hours(frequency: str | None, default: int = DEFAULT_FREQUENCY_HOURS) -> int:
    """Convert a frequency descriptor such as ``q8h`` into hours."""
    if not frequency:
        return default
    match = _FREQUENCY_PATTERN.search(frequency)
    try:
        hours = int(float(match.group(1) if match else frequency))
    except (ValueError, OverflowError):
        return default
    # Sub-hourly intervals truncate to 0 and are not a usable schedule
    return hours if hours > 0 else default


def display_day_columns(planned_durations: Iterable[Any]) -> int:
    """Width of the administration grid for a patient.

    Short courses still render a week; unparseable durations count as a week.
    """
    widths = [parse_planned_duration(d, MIN_DISPLAY_DAYS) for d in planned_durations]
    return max([MIN_DISPLAY_DAYS, *widths])
