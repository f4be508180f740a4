"""Mutation orchestration for therapy monitoring.

Every write follows the same path: load the canonical patient from the
store, validate and apply the change to a copy, then submit the affected
top-level fields. Callers always get the re-read canonical patient back,
never the locally mutated copy.
"""

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, TypeVar

from . import administration, flags, lifecycle
from .backup import DocumentBackup
from .config import Config
from .dosing_advisor import DosingAdvice, RenalDosingAdvisor
from .exceptions import CourseNotFoundError, PatientNotFoundError, PreconditionError, ValidationError
from .models import (
    AdministrationStatus,
    ApprovedRequest,
    CourseStatus,
    MonitoringPatient,
    PatientStatus,
    TherapyCourse,
    TransferLog,
)
from .schedule import parse_frequency_hours, to_date
from .store import PatientStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ROUTE = "IV"
DEFAULT_PLANNED_DURATION = "7"

REQUIRED_ADMISSION_FIELDS = ("patient_name", "hospital_number", "ward", "bed_number")

EDITABLE_FIELDS = (
    "patient_name",
    "ward",
    "bed_number",
    "age",
    "sex",
    "date_of_admission",
    "latest_creatinine",
    "height_cm",
    "mode",
    "infectious_diagnosis",
    "dialysis_status",
    "status",
)


def _generate_course_id() -> str:
    return uuid.uuid4().hex[:9]


def course_from_request(request: ApprovedRequest | dict[str, Any], now: datetime | None = None) -> TherapyCourse:
    """Seed an Active course from an approved antimicrobial request."""
    if isinstance(request, dict):
        request = ApprovedRequest.from_dict(request)
    if not request.antimicrobial:
        raise ValidationError("Approved request has no antimicrobial")

    if request.req_date:
        try:
            start_date = to_date(request.req_date).isoformat()
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid request date: {request.req_date!r}")
    else:
        start_date = (now or datetime.now()).date().isoformat()

    return TherapyCourse(
        id=_generate_course_id(),
        drug_name=request.antimicrobial,
        dose=request.dose or "",
        route=request.route or DEFAULT_ROUTE,
        frequency=request.frequency or "",
        frequency_hours=parse_frequency_hours(request.frequency),
        start_date=start_date,
        planned_duration=str(request.duration or DEFAULT_PLANNED_DURATION),
        requesting_resident=request.resident_name or "",
        ids_in_charge=request.id_specialist or "",
    )


class TherapyMonitoringService:
    """Entry point for reading and mutating monitored patients."""

    def __init__(
        self,
        store: PatientStore | None = None,
        backup: DocumentBackup | None = None,
        advisor: RenalDosingAdvisor | None = None,
    ):
        self.store = store or PatientStore()
        self.backup = backup if backup is not None else DocumentBackup()
        if advisor is None and Config.DOSING_ADVISOR_ENABLED:
            advisor = RenalDosingAdvisor()
        self.advisor = advisor

    # Reads

    def get_patient(self, patient_id: str) -> MonitoringPatient:
        patient = self.store.get(patient_id)
        if patient is None:
            raise PatientNotFoundError(patient_id)
        return patient

    def list_patients(
        self,
        status: PatientStatus | str | None = PatientStatus.ADMITTED,
        kpi_filter: str = flags.FILTER_ALL,
        search: str | None = None,
        sort_key: str = flags.SORT_NAME,
        descending: bool = False,
        now: datetime | None = None,
    ) -> list[MonitoringPatient]:
        """Filtered, sorted patient list for the monitoring table."""
        if kpi_filter not in flags.KPI_FILTERS:
            raise ValidationError(f"Unknown filter: {kpi_filter!r}")
        patients = flags.filter_patients(self.store.list_patients(), status, kpi_filter, search, now)
        return flags.sort_patients(patients, sort_key, descending, now)

    def kpis(self, now: datetime | None = None) -> flags.MonitoringKPIs:
        return flags.compute_kpis(self.store.list_patients(), now)

    # Patient-level writes

    def admit_patient(
        self,
        details: dict[str, Any],
        requests: Iterable[ApprovedRequest | dict[str, Any]],
        actor: str | None,
        now: datetime | None = None,
    ) -> MonitoringPatient:
        """Start monitoring a patient with courses seeded from approved requests."""
        missing = [f for f in REQUIRED_ADMISSION_FIELDS if not str(details.get(f) or "").strip()]
        if missing:
            raise ValidationError(f"Please provide {', '.join(missing)}")

        now = now or datetime.now()
        courses = [course_from_request(r, now) for r in requests]
        names = [c.drug_name.lower() for c in courses]
        if len(names) != len(set(names)):
            raise ValidationError("The same antimicrobial was selected more than once")

        try:
            patient = MonitoringPatient.from_dict(details)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid patient details: {e}")
        patient.id = None
        patient.status = PatientStatus.ADMITTED
        patient.discharged_at = None
        patient.date_of_admission = patient.date_of_admission or now.date().isoformat()
        patient.created_at = now.isoformat()
        patient.last_updated_by = actor
        patient.antimicrobials = courses
        patient.transfer_history = []

        patient_id = self.store.create(patient)
        logger.info(f"Admitted {patient.hospital_number} to monitoring with {len(courses)} course(s)")
        return self._after_write(patient_id)

    def add_course_from_request(
        self,
        patient_id: str,
        request: ApprovedRequest | dict[str, Any],
        actor: str | None,
        now: datetime | None = None,
    ) -> MonitoringPatient:
        """Add a course for a drug the patient is not already monitored on."""
        patient = copy.deepcopy(self.get_patient(patient_id))
        course = course_from_request(request, now)

        existing = {c.drug_name.lower() for c in patient.antimicrobials}
        if course.drug_name.lower() in existing:
            raise PreconditionError(f"{course.drug_name} is already being monitored for this patient")

        patient.antimicrobials.append(course)
        self.store.update(patient_id, {
            "antimicrobials": patient.antimicrobials_payload(),
            "last_updated_by": actor,
        })
        logger.info(f"Added {course.drug_name} to patient {patient_id}")
        return self._after_write(patient_id)

    def edit_patient(
        self,
        patient_id: str,
        updates: dict[str, Any],
        actor: str | None,
        now: datetime | None = None,
    ) -> MonitoringPatient:
        """Edit demographic, location, renal and status fields.

        Ward or bed changes append a transfer record. Discharge or death
        stamps ``discharged_at``; readmission clears it.
        """
        unknown = set(updates) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        if "patient_name" in updates and not str(updates["patient_name"] or "").strip():
            raise ValidationError("Patient name is required")

        current = self.get_patient(patient_id)
        now = now or datetime.now()
        fields: dict[str, Any] = dict(updates)

        if "status" in fields:
            try:
                new_status = PatientStatus(fields["status"])
            except ValueError:
                raise ValidationError(f"Unknown patient status: {fields['status']!r}")
            fields["status"] = new_status.value
            if new_status != current.status:
                if new_status == PatientStatus.ADMITTED:
                    fields["discharged_at"] = None
                else:
                    fields["discharged_at"] = now.isoformat()

        new_ward = fields.get("ward", current.ward)
        new_bed = fields.get("bed_number", current.bed_number)
        if new_ward != current.ward or new_bed != current.bed_number:
            history = list(current.transfer_history)
            history.append(TransferLog(
                date=now.isoformat(),
                from_ward=current.ward,
                to_ward=new_ward,
                from_bed=current.bed_number,
                to_bed=new_bed,
            ))
            fields["transfer_history"] = [t.to_dict() for t in history]

        fields["last_updated_by"] = actor
        self.store.update(patient_id, fields)
        logger.info(f"Edited patient {patient_id}: {', '.join(sorted(updates))}")
        return self._after_write(patient_id)

    def delete_patient(self, patient_id: str) -> None:
        self.store.delete(patient_id)
        if self.backup.is_configured():
            self.backup.send_deletion(patient_id)

    # Course-level writes

    def record_dose(
        self,
        patient_id: str,
        course_id: str,
        day_index: int,
        slot_index: int,
        status: AdministrationStatus | str,
        actor: str | None,
        scheduled_time: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: administration.record_dose(
                course, day_index, slot_index, status, actor, scheduled_time, reason, now
            ),
        )

    def clear_dose(
        self,
        patient_id: str,
        course_id: str,
        day_index: int,
        slot_index: int,
        actor: str | None,
    ) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: administration.clear_dose(course, day_index, slot_index),
        )

    def set_scheduled_time(
        self,
        patient_id: str,
        course_id: str,
        slot_index: int,
        time: str,
        actor: str | None,
    ) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: administration.set_scheduled_time(course, slot_index, time),
        )

    def complete(self, patient_id: str, course_id: str, actor: str | None,
                 confirmed: bool = False, now: datetime | None = None) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: lifecycle.complete(course, actor, confirmed, now),
        )

    def stop(self, patient_id: str, course_id: str, reason: str | None, actor: str | None,
             other_text: str | None = None, now: datetime | None = None) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: lifecycle.stop(course, reason, actor, other_text, now),
        )

    def shift(self, patient_id: str, course_id: str, reason: str | None, actor: str | None,
              other_text: str | None = None, now: datetime | None = None) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: lifecycle.shift(course, reason, actor, other_text, now),
        )

    def undo(self, patient_id: str, course_id: str, actor: str | None,
             confirmed: bool = False) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: lifecycle.undo(course, confirmed),
        )

    def adjust_dose(self, patient_id: str, course_id: str, new_dose: str | None,
                    reason: str | None, actor: str | None, other_text: str | None = None,
                    now: datetime | None = None) -> MonitoringPatient:
        return self._mutate_course(
            patient_id, course_id, actor,
            lambda course: lifecycle.adjust_dose(course, new_dose, reason, actor, other_text, now),
        )

    # Advisory

    def renal_advice(self, patient_id: str, course_id: str) -> DosingAdvice | None:
        """Advisory renal dosing hint for a course, or None if unavailable."""
        if self.advisor is None:
            return None
        patient = self.get_patient(patient_id)
        course = patient.find_course(course_id)
        if course is None:
            raise CourseNotFoundError(patient_id, course_id)
        if course.status != CourseStatus.ACTIVE:
            return None
        return self.advisor.advise(
            course.drug_name,
            course.route,
            patient.egfr.display,
            course.dose,
            course.frequency,
        )

    # Internals

    def _mutate_course(
        self,
        patient_id: str,
        course_id: str,
        actor: str | None,
        mutation: Callable[[TherapyCourse], T],
    ) -> MonitoringPatient:
        """Apply ``mutation`` to a copy of one course and submit all courses."""
        patient = copy.deepcopy(self.get_patient(patient_id))
        course = patient.find_course(course_id)
        if course is None:
            raise CourseNotFoundError(patient_id, course_id)

        mutation(course)

        self.store.update(patient_id, {
            "antimicrobials": patient.antimicrobials_payload(),
            "last_updated_by": actor,
        })
        return self._after_write(patient_id)

    def _after_write(self, patient_id: str) -> MonitoringPatient:
        patient = self.get_patient(patient_id)
        if self.backup.is_configured():
            self.backup.send_patient(patient_id, patient.to_document())
        return patient
