"""Course lifecycle state machine.

Every status change goes through one transition table. Terminal states
(Completed, Stopped, Shifted) can only be reversed with Undo, which clears
the terminal metadata and leaves the administration log and change history
untouched.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from .exceptions import PreconditionError, ValidationError
from .models import (
    ChangeHistoryEntry,
    ChangeType,
    CourseStatus,
    DoseChangeReason,
    ShiftReason,
    StopReason,
    TherapyCourse,
)

logger = logging.getLogger(__name__)


class CourseAction(str, Enum):
    """Lifecycle actions on a course."""
    COMPLETE = "Complete"
    STOP = "Stop"
    SHIFT = "Shift"
    UNDO = "Undo"


# (from, action) -> to. Pairs not listed are rejected.
TRANSITIONS: dict[tuple[CourseStatus, CourseAction], CourseStatus] = {
    (CourseStatus.ACTIVE, CourseAction.COMPLETE): CourseStatus.COMPLETED,
    (CourseStatus.ACTIVE, CourseAction.STOP): CourseStatus.STOPPED,
    (CourseStatus.ACTIVE, CourseAction.SHIFT): CourseStatus.SHIFTED,
    (CourseStatus.COMPLETED, CourseAction.UNDO): CourseStatus.ACTIVE,
    (CourseStatus.STOPPED, CourseAction.UNDO): CourseStatus.ACTIVE,
    (CourseStatus.SHIFTED, CourseAction.UNDO): CourseStatus.ACTIVE,
}


def next_status(current: CourseStatus, action: CourseAction) -> CourseStatus:
    """Look up the target state, raising PreconditionError if not allowed."""
    current = CourseStatus(current)
    action = CourseAction(action)
    target = TRANSITIONS.get((current, action))
    if target is None:
        raise PreconditionError(f"Cannot {action.value.lower()} a course that is {current.value}")
    return target


def allowed_actions(course: TherapyCourse) -> list[CourseAction]:
    """Actions available from the course's current state."""
    return [action for (status, action) in TRANSITIONS if status == course.status]


def resolve_reason(reason: str | None, other_text: str | None, options: type[Enum]) -> str:
    """Validate a reason against its option list.

    "Others (Specify)" requires free text, which becomes the recorded reason.
    """
    if not reason or not str(reason).strip():
        raise ValidationError("A reason is required")
    values = {option.value for option in options}
    if reason not in values:
        raise ValidationError(f"Unknown reason: {reason!r}")
    if reason == options.OTHER.value:
        if not other_text or not other_text.strip():
            raise ValidationError("Please specify the reason")
        return other_text.strip()
    return reason


def _require_confirmation(confirmed: bool, action: CourseAction) -> None:
    if not confirmed:
        raise ValidationError(f"{action.value} requires confirmation")


def complete(
    course: TherapyCourse,
    actor: str | None,
    confirmed: bool = False,
    now: datetime | None = None,
) -> TherapyCourse:
    """Mark an Active course as Completed."""
    target = next_status(course.status, CourseAction.COMPLETE)
    _require_confirmation(confirmed, CourseAction.COMPLETE)

    course.status = target
    course.completed_at = (now or datetime.now()).isoformat()
    course.action_by = actor
    logger.info(f"Course {course.id} ({course.drug_name}) completed by {actor}")
    return course


def stop(
    course: TherapyCourse,
    reason: str | None,
    actor: str | None,
    other_text: str | None = None,
    now: datetime | None = None,
) -> TherapyCourse:
    """Stop an Active course with a reason from the stop list."""
    target = next_status(course.status, CourseAction.STOP)
    recorded = resolve_reason(reason, other_text, StopReason)

    course.status = target
    course.stop_date = (now or datetime.now()).isoformat()
    course.stop_reason = recorded
    course.action_by = actor
    logger.info(f"Course {course.id} ({course.drug_name}) stopped by {actor}: {recorded}")
    return course


def shift(
    course: TherapyCourse,
    reason: str | None,
    actor: str | None,
    other_text: str | None = None,
    now: datetime | None = None,
) -> TherapyCourse:
    """Shift an Active course with a reason from the shift list."""
    target = next_status(course.status, CourseAction.SHIFT)
    recorded = resolve_reason(reason, other_text, ShiftReason)

    course.status = target
    course.shifted_at = (now or datetime.now()).isoformat()
    course.shift_reason = recorded
    course.action_by = actor
    logger.info(f"Course {course.id} ({course.drug_name}) shifted by {actor}: {recorded}")
    return course


def undo(course: TherapyCourse, confirmed: bool = False) -> TherapyCourse:
    """Return a terminal course to Active."""
    target = next_status(course.status, CourseAction.UNDO)
    _require_confirmation(confirmed, CourseAction.UNDO)

    previous = course.status
    course.status = target
    course.stop_date = None
    course.stop_reason = None
    course.shifted_at = None
    course.shift_reason = None
    course.completed_at = None
    course.action_by = None
    logger.info(f"Course {course.id} ({course.drug_name}) reverted from {previous.value}")
    return course


def adjust_dose(
    course: TherapyCourse,
    new_dose: str | None,
    reason: str | None,
    actor: str | None,
    other_text: str | None = None,
    now: datetime | None = None,
) -> ChangeHistoryEntry:
    """Change the dose of a course, recording the change in its history."""
    if not new_dose or not str(new_dose).strip():
        raise ValidationError("New dose is required")
    recorded = resolve_reason(reason, other_text, DoseChangeReason)

    entry = ChangeHistoryEntry(
        date=(now or datetime.now()).isoformat(),
        type=ChangeType.DOSE_CHANGE,
        old_value=course.dose,
        new_value=str(new_dose).strip(),
        reason=recorded,
        user=actor,
    )
    course.change_history.append(entry)
    course.dose = entry.new_value
    logger.info(f"Course {course.id} dose {entry.old_value} -> {entry.new_value} ({recorded})")
    return entry


ACTION_HANDLERS: dict[CourseAction, Callable[..., TherapyCourse]] = {
    CourseAction.COMPLETE: complete,
    CourseAction.STOP: stop,
    CourseAction.SHIFT: shift,
    CourseAction.UNDO: undo,
}


def apply_action(course: TherapyCourse, action: CourseAction | str, **kwargs) -> TherapyCourse:
    """Dispatch a lifecycle action by name."""
    try:
        action = CourseAction(action)
    except ValueError:
        raise ValidationError(f"Unknown action: {action!r}")
    return ACTION_HANDLERS[action](course, **kwargs)
