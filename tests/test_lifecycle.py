"""Tests for the course lifecycle state machine."""

from datetime import datetime

import pytest

from common.ams_monitoring.administration import record_dose
from common.ams_monitoring.exceptions import PreconditionError, ValidationError
from common.ams_monitoring.lifecycle import (
    TRANSITIONS,
    CourseAction,
    adjust_dose,
    allowed_actions,
    apply_action,
    complete,
    next_status,
    shift,
    stop,
    undo,
)
from common.ams_monitoring.models import ChangeType, CourseStatus, ShiftReason, StopReason

NOW = datetime(2024, 3, 4, 10, 0)

TERMINAL_FIELDS = ("stop_date", "stop_reason", "shifted_at", "shift_reason", "completed_at", "action_by")


class TestTransitionTable:
    """Tests for the transition table."""

    def test_every_pair_is_either_allowed_or_rejected(self):
        for status in CourseStatus:
            for action in CourseAction:
                if (status, action) in TRANSITIONS:
                    assert next_status(status, action) == TRANSITIONS[(status, action)]
                else:
                    with pytest.raises(PreconditionError):
                        next_status(status, action)

    def test_active_actions(self, make_course):
        course = make_course()
        assert set(allowed_actions(course)) == {CourseAction.COMPLETE, CourseAction.STOP, CourseAction.SHIFT}

    def test_terminal_actions(self, make_course):
        course = make_course(status=CourseStatus.SHIFTED)
        assert allowed_actions(course) == [CourseAction.UNDO]


class TestComplete:

    def test_complete_requires_confirmation(self, make_course):
        course = make_course()
        with pytest.raises(ValidationError):
            complete(course, "dr.b", confirmed=False, now=NOW)
        assert course.status == CourseStatus.ACTIVE
        assert course.completed_at is None

    def test_complete(self, make_course):
        course = make_course()
        complete(course, "dr.b", confirmed=True, now=NOW)
        assert course.status == CourseStatus.COMPLETED
        assert course.completed_at == NOW.isoformat()
        assert course.action_by == "dr.b"

    def test_complete_stopped_course_rejected(self, make_course):
        course = make_course(status=CourseStatus.STOPPED, stop_reason="No Infection")
        with pytest.raises(PreconditionError):
            complete(course, "dr.b", confirmed=True, now=NOW)
        assert course.status == CourseStatus.STOPPED
        assert course.completed_at is None


class TestStopAndShift:

    def test_stop_with_listed_reason(self, make_course):
        course = make_course()
        stop(course, StopReason.DE_ESCALATION.value, "dr.b", now=NOW)
        assert course.status == CourseStatus.STOPPED
        assert course.stop_reason == "De-escalation"
        assert course.stop_date == NOW.isoformat()
        assert course.action_by == "dr.b"

    def test_stop_other_uses_free_text(self, make_course):
        course = make_course()
        stop(course, "Others (Specify)", "dr.b", other_text="  Culture negative  ", now=NOW)
        assert course.stop_reason == "Culture negative"

    @pytest.mark.parametrize("reason,other_text", [
        (None, None),
        ("", None),
        ("Others (Specify)", None),
        ("Others (Specify)", "   "),
        ("Because", None),
    ])
    def test_stop_invalid_reason(self, make_course, reason, other_text):
        course = make_course()
        with pytest.raises(ValidationError):
            stop(course, reason, "dr.b", other_text=other_text, now=NOW)
        assert course.status == CourseStatus.ACTIVE
        assert course.stop_reason is None

    def test_stop_reason_from_shift_list_rejected(self, make_course):
        course = make_course()
        with pytest.raises(ValidationError):
            stop(course, ShiftReason.IV_TO_PO.value, "dr.b", now=NOW)

    def test_shift(self, make_course):
        course = make_course()
        shift(course, ShiftReason.IV_TO_PO.value, "dr.b", now=NOW)
        assert course.status == CourseStatus.SHIFTED
        assert course.shift_reason == "IV to PO Switch"
        assert course.shifted_at == NOW.isoformat()

    def test_shift_other_requires_text(self, make_course):
        course = make_course()
        with pytest.raises(ValidationError):
            shift(course, ShiftReason.OTHER.value, "dr.b", now=NOW)

    def test_stop_twice_rejected(self, make_course):
        course = make_course()
        stop(course, StopReason.NO_INFECTION.value, "dr.b", now=NOW)
        with pytest.raises(PreconditionError):
            stop(course, StopReason.DE_ESCALATION.value, "dr.c", now=NOW)
        assert course.stop_reason == "No Infection"
        assert course.action_by == "dr.b"


class TestUndo:

    def test_undo_requires_confirmation(self, make_course):
        course = make_course()
        complete(course, "dr.b", confirmed=True, now=NOW)
        with pytest.raises(ValidationError):
            undo(course, confirmed=False)
        assert course.status == CourseStatus.COMPLETED

    def test_undo_active_rejected(self, make_course):
        course = make_course()
        with pytest.raises(PreconditionError):
            undo(course, confirmed=True)

    @pytest.mark.parametrize("terminate", [
        lambda c: complete(c, "dr.b", confirmed=True, now=NOW),
        lambda c: stop(c, StopReason.ADVERSE_EVENT.value, "dr.b", now=NOW),
        lambda c: shift(c, ShiftReason.ESCALATION.value, "dr.b", now=NOW),
    ])
    def test_undo_clears_terminal_metadata(self, make_course, terminate):
        course = make_course()
        terminate(course)
        undo(course, confirmed=True)

        assert course.status == CourseStatus.ACTIVE
        for name in TERMINAL_FIELDS:
            assert getattr(course, name) is None

    def test_undo_after_stop_keeps_log_and_history(self, make_course):
        course = make_course()
        record_dose(course, 1, 0, "Given", "nurse.a", "08:00", now=NOW)
        record_dose(course, 1, 1, "Missed", "nurse.a", "16:00", reason="Off ward", now=NOW)
        adjust_dose(course, "500 mg", "Renal Adjustment", "dr.b", now=NOW)
        before = course.to_dict()

        stop(course, StopReason.CLINICAL_FAILURE.value, "dr.b", now=NOW)
        undo(course, confirmed=True)
        after = course.to_dict()

        assert after["administration_log"] == before["administration_log"]
        assert after["change_history"] == before["change_history"]
        assert after == before

    def test_logging_works_again_after_undo(self, make_course):
        course = make_course()
        stop(course, StopReason.NO_INFECTION.value, "dr.b", now=NOW)
        undo(course, confirmed=True)
        record_dose(course, 2, 0, "Given", "nurse.a", now=NOW)
        assert course.administration_log["2024-03-02"][0].is_given


class TestAdjustDose:

    def test_appends_history(self, make_course):
        course = make_course()
        entry = adjust_dose(course, "500 mg", "Renal Adjustment", "dr.b", now=NOW)

        assert course.dose == "500 mg"
        assert course.status == CourseStatus.ACTIVE
        assert course.change_history == [entry]
        assert entry.type == ChangeType.DOSE_CHANGE
        assert entry.old_value == "1 g"
        assert entry.new_value == "500 mg"
        assert entry.reason == "Renal Adjustment"
        assert entry.user == "dr.b"
        assert entry.date == NOW.isoformat()

    def test_history_accumulates(self, make_course):
        course = make_course()
        adjust_dose(course, "500 mg", "Renal Adjustment", "dr.b", now=NOW)
        adjust_dose(course, "1 g", "Clinical Improvement", "dr.b", now=NOW)
        assert [(h.old_value, h.new_value) for h in course.change_history] == [
            ("1 g", "500 mg"),
            ("500 mg", "1 g"),
        ]

    def test_empty_dose_rejected(self, make_course):
        course = make_course()
        with pytest.raises(ValidationError):
            adjust_dose(course, "  ", "Renal Adjustment", "dr.b", now=NOW)
        assert course.dose == "1 g"
        assert course.change_history == []

    def test_other_reason_uses_free_text(self, make_course):
        course = make_course()
        entry = adjust_dose(course, "2 g", "Others (Specify)", "dr.b", other_text="Meningitis dosing", now=NOW)
        assert entry.reason == "Meningitis dosing"


class TestApplyAction:

    def test_dispatch_by_name(self, make_course):
        course = make_course()
        apply_action(course, "Stop", reason="No Infection", actor="dr.b", now=NOW)
        assert course.status == CourseStatus.STOPPED

    def test_unknown_action(self, make_course):
        course = make_course()
        with pytest.raises(ValidationError):
            apply_action(course, "Pause", actor="dr.b")
