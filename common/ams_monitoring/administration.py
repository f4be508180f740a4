"""Per-day, per-slot administration log for therapy courses.

The log maps an ISO calendar date to a fixed-length list of dose slots
(one per dose of the day). Every writer goes through ``pad_slots`` so a
day's list always has exactly ``doses_per_day`` entries before a slot is
assigned. Slots are cleared individually and lists are never shrunk.
"""

import logging
from datetime import datetime
from typing import Any, Final

from .exceptions import PreconditionError, ValidationError
from .models import AdministrationEntry, AdministrationStatus, TherapyCourse
from .schedule import calendar_date

logger = logging.getLogger(__name__)


class _BeyondTherapyWindow:
    """Marker for grid cells past the planned duration."""

    def __repr__(self) -> str:
        return "BEYOND_THERAPY_WINDOW"

    def __bool__(self) -> bool:
        return False


BEYOND_THERAPY_WINDOW: Final = _BeyondTherapyWindow()


def pad_slots(slots: list[Any], length: int, fill: Any = None) -> list[Any]:
    """Pad a slot list in place to at least ``length`` entries."""
    while len(slots) < length:
        slots.append(fill)
    return slots


def date_key(course: TherapyCourse, day_index: int) -> str:
    """Log key (ISO date) for a 1-based course day."""
    return calendar_date(course.start_date, day_index).isoformat()


def _check_writable(course: TherapyCourse, day_index: int, slot_index: int) -> None:
    if not course.is_active:
        raise PreconditionError(
            f"Cannot log doses for {course.drug_name}: course is {course.status.value}"
        )
    planned = course.therapy_window_days
    if day_index < 1 or day_index > planned:
        raise PreconditionError(
            f"Day {day_index} is outside the {planned}-day therapy window for {course.drug_name}"
        )
    if slot_index < 0 or slot_index >= course.doses_per_day:
        raise PreconditionError(
            f"Dose slot {slot_index} is out of range for {course.drug_name} "
            f"({course.doses_per_day} doses/day)"
        )


def record_dose(
    course: TherapyCourse,
    day_index: int,
    slot_index: int,
    status: AdministrationStatus | str,
    actor: str | None,
    scheduled_time: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> AdministrationEntry:
    """Record a dose slot as Given or Missed.

    Re-recording the same slot overwrites it. When ``scheduled_time`` is not
    given, the course's default time for the slot is copied.

    Raises:
        PreconditionError: course not Active, or day/slot outside the window
        ValidationError: unknown status
    """
    try:
        status = AdministrationStatus(status)
    except ValueError:
        raise ValidationError(f"Unknown administration status: {status!r}")

    _check_writable(course, day_index, slot_index)

    if scheduled_time is None:
        times = course.scheduled_times
        scheduled_time = times[slot_index] if slot_index < len(times) else ""

    now = now or datetime.now()
    entry = AdministrationEntry(
        status=status,
        time=scheduled_time or "",
        user=actor,
        timestamp=now.isoformat(),
        reason=reason if status == AdministrationStatus.MISSED else None,
    )

    key = date_key(course, day_index)
    day_log = pad_slots(course.administration_log.setdefault(key, []), course.doses_per_day)
    day_log[slot_index] = entry

    logger.debug(f"{course.drug_name} day {day_index} slot {slot_index}: {status.value}")
    return entry


def clear_dose(course: TherapyCourse, day_index: int, slot_index: int) -> None:
    """Return a dose slot to the unlogged state."""
    _check_writable(course, day_index, slot_index)

    key = date_key(course, day_index)
    day_log = pad_slots(course.administration_log.setdefault(key, []), course.doses_per_day)
    day_log[slot_index] = None


def set_scheduled_time(course: TherapyCourse, slot_index: int, time: str) -> None:
    """Set the default administration time for a dose slot."""
    if slot_index < 0:
        raise PreconditionError(f"Dose slot {slot_index} is out of range")
    pad_slots(course.scheduled_times, max(course.doses_per_day, slot_index + 1), fill="")
    course.scheduled_times[slot_index] = time


def read_cell(course: TherapyCourse, day_index: int, slot_index: int):
    """Read one grid cell.

    Returns ``BEYOND_THERAPY_WINDOW`` past the planned duration, otherwise
    the logged entry or None.
    """
    if day_index > course.therapy_window_days:
        return BEYOND_THERAPY_WINDOW
    day_log = course.administration_log.get(date_key(course, day_index)) or []
    if 0 <= slot_index < len(day_log):
        return day_log[slot_index]
    return None


def count_doses(course: TherapyCourse) -> tuple[int, int]:
    """Count (given, missed) slots across the course."""
    given = missed = 0
    for entry in course.entries():
        if entry.is_given:
            given += 1
        elif entry.is_missed:
            missed += 1
    return given, missed


def build_grid(course: TherapyCourse, day_columns: int) -> list[list[dict[str, Any]]]:
    """Render the course's dose slots as rows of cells for display.

    One row per dose slot, one cell per day column.
    """
    rows = []
    for slot_index in range(course.doses_per_day):
        row = []
        for day in range(1, day_columns + 1):
            cell = read_cell(course, day, slot_index)
            if cell is BEYOND_THERAPY_WINDOW:
                row.append({"day": day, "state": "beyond", "clickable": False})
                continue
            row.append({
                "day": day,
                "date": date_key(course, day),
                "state": cell.status.value if cell else "empty",
                "entry": cell.to_dict() if cell else None,
                "clickable": course.is_active,
            })
        rows.append(row)
    return rows
