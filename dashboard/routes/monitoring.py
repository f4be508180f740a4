"""AMS Monitoring routes for the dashboard.

JSON API over the therapy monitoring service: patient list with red flags,
KPIs, administration grid, and the dose/lifecycle mutations.
"""

import logging

from flask import Blueprint, current_app, request

from common.ams_monitoring import administration, flags
from common.ams_monitoring.backup import DocumentBackup
from common.ams_monitoring.dosing_advisor import RenalDosingAdvisor
from common.ams_monitoring.exceptions import MonitoringError, ValidationError
from common.ams_monitoring.lifecycle import CourseAction, allowed_actions
from common.ams_monitoring.models import DoseChangeReason, ShiftReason, StopReason
from common.ams_monitoring.schedule import day_of_therapy, display_day_columns
from common.ams_monitoring.service import TherapyMonitoringService
from common.ams_monitoring.store import PatientStore
from dashboard.services.user import get_user_from_request
from dashboard.utils.api_response import api_error, api_exception, api_success

logger = logging.getLogger(__name__)

monitoring_bp = Blueprint("monitoring", __name__, url_prefix="/monitoring")


def _get_service():
    """Get the monitoring service, initializing if needed."""
    if not hasattr(current_app, "monitoring_service"):
        advisor = None
        if current_app.config.get("DOSING_ADVISOR_ENABLED"):
            advisor = RenalDosingAdvisor()
        current_app.monitoring_service = TherapyMonitoringService(
            store=PatientStore(db_path=current_app.config.get("AMS_MONITORING_DB_PATH")),
            backup=DocumentBackup(webhook_url=current_app.config.get("AMS_BACKUP_WEBHOOK_URL") or None),
            advisor=advisor,
        )
    return current_app.monitoring_service


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _int_field(data, name):
    value = data.get(name)
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{name} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _patient_detail(patient):
    """Patient document with flags, therapy days and per-course grids."""
    columns = display_day_columns(c.planned_duration for c in patient.antimicrobials)
    courses = []
    for course in patient.antimicrobials:
        given, missed = administration.count_doses(course)
        courses.append({
            **course.to_dict(),
            "doses_per_day": course.doses_per_day,
            "day_of_therapy": day_of_therapy(course.start_date),
            "adherence_percent": round(flags.adherence_percent(course), 1),
            "doses_given": given,
            "doses_missed": missed,
            "allowed_actions": [a.value for a in allowed_actions(course)],
            "grid": administration.build_grid(course, columns),
        })
    return {
        **patient.to_dict(),
        "antimicrobials": courses,
        "day_columns": columns,
        "flags": flags.evaluate_flags(patient).to_dict(),
        "days_on_therapy": flags.max_day_of_therapy(patient),
    }


# Read endpoints

@monitoring_bp.route("/api/patients", methods=["GET"])
def api_list_patients():
    """List patients for the monitoring table."""
    status = request.args.get("status", "Admitted")
    try:
        patients = _get_service().list_patients(
            status=None if status in ("", "All") else status,
            kpi_filter=request.args.get("filter", flags.FILTER_ALL),
            search=request.args.get("search"),
            sort_key=request.args.get("sort", flags.SORT_NAME),
            descending=request.args.get("order", "asc").lower() == "desc",
        )
        return api_success(data=[flags.patient_summary(p) for p in patients])
    except ValueError as e:
        return api_error(f"Invalid query parameter: {e}", 400)
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/kpis", methods=["GET"])
def api_kpis():
    """Fleet KPIs over admitted patients."""
    try:
        return api_success(data=_get_service().kpis().to_dict())
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/options", methods=["GET"])
def api_options():
    """Reason lists for the stop, shift and dose change dialogs."""
    return api_success(data={
        "stop_reasons": [value for value, _ in StopReason.all_options()],
        "shift_reasons": [value for value, _ in ShiftReason.all_options()],
        "dose_change_reasons": [value for value, _ in DoseChangeReason.all_options()],
        "filters": list(flags.KPI_FILTERS),
    })


@monitoring_bp.route("/api/patients/<patient_id>", methods=["GET"])
def api_patient_detail(patient_id):
    """Full patient view including administration grids."""
    try:
        return api_success(data=_patient_detail(_get_service().get_patient(patient_id)))
    except MonitoringError as e:
        return api_exception(e)


# Patient writes

@monitoring_bp.route("/api/patients", methods=["POST"])
def api_admit_patient():
    """Start monitoring a patient from approved requests."""
    try:
        data = _json_body()
        patient = _get_service().admit_patient(
            details=data.get("patient") or {},
            requests=data.get("requests") or [],
            actor=get_user_from_request(default="unknown"),
        )
        return api_success(data=_patient_detail(patient), message="Patient added to monitoring"), 201
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/patients/<patient_id>", methods=["PATCH"])
def api_edit_patient(patient_id):
    """Edit patient details."""
    try:
        updates = {k: v for k, v in _json_body().items() if k != "user"}
        patient = _get_service().edit_patient(
            patient_id, updates, actor=get_user_from_request(default="unknown")
        )
        return api_success(data=_patient_detail(patient))
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/patients/<patient_id>", methods=["DELETE"])
def api_delete_patient(patient_id):
    """Remove a patient and all of their courses."""
    try:
        _get_service().delete_patient(patient_id)
        return api_success(data={"id": patient_id}, message="Patient deleted")
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/patients/<patient_id>/courses", methods=["POST"])
def api_add_course(patient_id):
    """Add a course from an approved request."""
    try:
        patient = _get_service().add_course_from_request(
            patient_id, _json_body(), actor=get_user_from_request(default="unknown")
        )
        return api_success(data=_patient_detail(patient)), 201
    except MonitoringError as e:
        return api_exception(e)


# Administration log

@monitoring_bp.route("/api/patients/<patient_id>/courses/<course_id>/doses", methods=["POST"])
def api_record_dose(patient_id, course_id):
    """Record a dose slot as Given or Missed."""
    try:
        data = _json_body()
        patient = _get_service().record_dose(
            patient_id,
            course_id,
            day_index=_int_field(data, "day_index"),
            slot_index=_int_field(data, "slot_index"),
            status=data.get("status"),
            actor=get_user_from_request(default="unknown"),
            scheduled_time=data.get("time"),
            reason=data.get("reason"),
        )
        return api_success(data=_patient_detail(patient))
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/patients/<patient_id>/courses/<course_id>/doses/clear", methods=["POST"])
def api_clear_dose(patient_id, course_id):
    """Return a dose slot to the unlogged state."""
    try:
        data = _json_body()
        patient = _get_service().clear_dose(
            patient_id,
            course_id,
            day_index=_int_field(data, "day_index"),
            slot_index=_int_field(data, "slot_index"),
            actor=get_user_from_request(default="unknown"),
        )
        return api_success(data=_patient_detail(patient))
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route(
    "/api/patients/<patient_id>/courses/<course_id>/scheduled-times/<int:slot_index>",
    methods=["PUT"],
)
def api_set_scheduled_time(patient_id, course_id, slot_index):
    """Set the default administration time for a dose slot."""
    try:
        time = _json_body().get("time")
        if time is None:
            raise ValidationError("time is required")
        patient = _get_service().set_scheduled_time(
            patient_id, course_id, slot_index, str(time),
            actor=get_user_from_request(default="unknown"),
        )
        return api_success(data=_patient_detail(patient))
    except MonitoringError as e:
        return api_exception(e)


# Lifecycle

@monitoring_bp.route("/api/patients/<patient_id>/courses/<course_id>/actions/<action>", methods=["POST"])
def api_course_action(patient_id, course_id, action):
    """Complete, stop, shift or undo a course."""
    try:
        data = _json_body()
        service = _get_service()
        user = get_user_from_request(default="unknown")
        confirmed = bool(data.get("confirmed"))

        try:
            action = CourseAction(action.capitalize())
        except ValueError:
            return api_error(f"Unknown action: {action}", 400)

        if action == CourseAction.COMPLETE:
            patient = service.complete(patient_id, course_id, user, confirmed=confirmed)
        elif action == CourseAction.STOP:
            patient = service.stop(
                patient_id, course_id, data.get("reason"), user, other_text=data.get("other_text")
            )
        elif action == CourseAction.SHIFT:
            patient = service.shift(
                patient_id, course_id, data.get("reason"), user, other_text=data.get("other_text")
            )
        else:
            patient = service.undo(patient_id, course_id, user, confirmed=confirmed)

        return api_success(data=_patient_detail(patient), message=f"{action.value} applied")
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/patients/<patient_id>/courses/<course_id>/dose-change", methods=["POST"])
def api_adjust_dose(patient_id, course_id):
    """Change a course's dose with a reason."""
    try:
        data = _json_body()
        patient = _get_service().adjust_dose(
            patient_id,
            course_id,
            new_dose=data.get("new_dose"),
            reason=data.get("reason"),
            actor=get_user_from_request(default="unknown"),
            other_text=data.get("other_text"),
        )
        return api_success(data=_patient_detail(patient))
    except MonitoringError as e:
        return api_exception(e)


@monitoring_bp.route("/api/patients/<patient_id>/courses/<course_id>/renal-advice", methods=["GET"])
def api_renal_advice(patient_id, course_id):
    """Advisory renal dosing hint (null when unavailable)."""
    try:
        advice = _get_service().renal_advice(patient_id, course_id)
        return api_success(data=advice.to_dict() if advice else None)
    except MonitoringError as e:
        return api_exception(e)
