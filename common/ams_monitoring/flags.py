"""Clinical risk flags and fleet KPIs.

Everything here is derived on read from the current patient documents and
never persisted.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from .administration import count_doses
from .models import MonitoringPatient, PatientStatus, TherapyCourse
from .schedule import day_of_therapy, total_planned_doses

RENAL_ALERT_THRESHOLD = 30
PROLONGED_THERAPY_DAYS = 14
NEARING_COMPLETION_DAYS = 2
NEW_PATIENT_WINDOW = timedelta(hours=24)

FILTER_ALL = "All"
FILTER_RED_FLAG = "RedFlag"
FILTER_NEW = "New"
FILTER_NEARING_STOP = "NearingStop"
KPI_FILTERS = (FILTER_ALL, FILTER_RED_FLAG, FILTER_NEW, FILTER_NEARING_STOP)

SORT_NAME = "patient_name"
SORT_DAYS_ON_THERAPY = "days_on_therapy"


def _today(today: date | datetime | None) -> date:
    if today is None:
        return date.today()
    if isinstance(today, datetime):
        return today.date()
    return today


def has_missed_dose(patient: MonitoringPatient) -> bool:
    """Any course has a Missed slot anywhere in its log."""
    return any(
        entry.is_missed
        for course in patient.antimicrobials
        for entry in course.entries()
    )


def has_renal_alert(patient: MonitoringPatient) -> bool:
    """Computed eGFR is below the renal alert threshold."""
    estimate = patient.egfr
    return estimate.is_numeric and estimate.value < RENAL_ALERT_THRESHOLD


def has_prolonged_therapy(patient: MonitoringPatient, today: date | datetime | None = None) -> bool:
    """An Active course is past day 14 of therapy."""
    today = _today(today)
    return any(
        day_of_therapy(course.start_date, today) > PROLONGED_THERAPY_DAYS
        for course in patient.active_courses()
    )


def is_nearing_completion(course: TherapyCourse, today: date | datetime | None = None) -> bool:
    """Active course with 0 to 2 days of planned therapy remaining."""
    planned = course.planned_days
    if not course.is_active or planned is None:
        return False
    remaining = planned - day_of_therapy(course.start_date, _today(today))
    return 0 <= remaining <= NEARING_COMPLETION_DAYS


def has_nearing_completion(patient: MonitoringPatient, today: date | datetime | None = None) -> bool:
    return any(is_nearing_completion(course, today) for course in patient.antimicrobials)


def is_new(patient: MonitoringPatient, now: datetime | None = None) -> bool:
    """Patient was added within the last 24 hours."""
    created = patient.created_datetime()
    if created is None:
        return False
    now = now or datetime.now()
    if now.tzinfo is not None:
        now = now.astimezone().replace(tzinfo=None)
    return now - created < NEW_PATIENT_WINDOW


@dataclass
class RiskFlags:
    """Derived risk flags for one patient."""
    has_missed_dose: bool = False
    has_renal_alert: bool = False
    has_prolonged_therapy: bool = False

    @property
    def is_flagged(self) -> bool:
        return self.has_missed_dose or self.has_renal_alert or self.has_prolonged_therapy

    def labels(self) -> list[str]:
        """Short labels for display badges."""
        labels = []
        if self.has_missed_dose:
            labels.append("Missed Dose")
        if self.has_renal_alert:
            labels.append("Renal Alert")
        if self.has_prolonged_therapy:
            labels.append(f"DOT > {PROLONGED_THERAPY_DAYS}")
        return labels

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_missed_dose": self.has_missed_dose,
            "has_renal_alert": self.has_renal_alert,
            "has_prolonged_therapy": self.has_prolonged_therapy,
            "is_flagged": self.is_flagged,
            "labels": self.labels(),
        }


def evaluate_flags(patient: MonitoringPatient, today: date | datetime | None = None) -> RiskFlags:
    return RiskFlags(
        has_missed_dose=has_missed_dose(patient),
        has_renal_alert=has_renal_alert(patient),
        has_prolonged_therapy=has_prolonged_therapy(patient, today),
    )


@dataclass
class MonitoringKPIs:
    """Fleet-level counts over admitted patients."""
    active_count: int = 0
    flagged_count: int = 0
    new_count: int = 0
    nearing_completion_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "active_count": self.active_count,
            "flagged_count": self.flagged_count,
            "new_count": self.new_count,
            "nearing_completion_count": self.nearing_completion_count,
        }


def compute_kpis(patients: Iterable[MonitoringPatient], now: datetime | None = None) -> MonitoringKPIs:
    """Compute KPIs over the Admitted patients in ``patients``."""
    now = now or datetime.now()
    kpis = MonitoringKPIs()
    for patient in patients:
        if not patient.is_admitted:
            continue
        kpis.active_count += 1
        if evaluate_flags(patient, now).is_flagged:
            kpis.flagged_count += 1
        if is_new(patient, now):
            kpis.new_count += 1
        if has_nearing_completion(patient, now):
            kpis.nearing_completion_count += 1
    return kpis


def adherence_percent(course: TherapyCourse) -> float:
    """Given doses as a percentage of planned doses, clamped to [0, 100]."""
    planned = total_planned_doses(course.planned_days or 0, course.doses_per_day)
    if planned <= 0:
        return 0.0
    given, _ = count_doses(course)
    return max(0.0, min(100.0, given / planned * 100))


def max_day_of_therapy(patient: MonitoringPatient, today: date | datetime | None = None) -> int:
    """Longest day of therapy over Active courses (0 when none)."""
    today = _today(today)
    return max(
        (day_of_therapy(course.start_date, today) for course in patient.active_courses()),
        default=0,
    )


def filter_patients(
    patients: Iterable[MonitoringPatient],
    status: PatientStatus | str | None = PatientStatus.ADMITTED,
    kpi_filter: str = FILTER_ALL,
    search: str | None = None,
    now: datetime | None = None,
) -> list[MonitoringPatient]:
    """Filter the patient list for the monitoring table."""
    now = now or datetime.now()
    status = PatientStatus(status) if status else None
    term = (search or "").strip().lower()

    result = []
    for patient in patients:
        if status is not None and patient.status != status:
            continue
        if kpi_filter == FILTER_RED_FLAG and not evaluate_flags(patient, now).is_flagged:
            continue
        if kpi_filter == FILTER_NEW and not is_new(patient, now):
            continue
        if kpi_filter == FILTER_NEARING_STOP and not has_nearing_completion(patient, now):
            continue
        if term and term not in patient.patient_name.lower() and term not in patient.hospital_number.lower():
            continue
        result.append(patient)
    return result


def sort_patients(
    patients: Iterable[MonitoringPatient],
    key: str = SORT_NAME,
    descending: bool = False,
    today: date | datetime | None = None,
) -> list[MonitoringPatient]:
    if key == SORT_DAYS_ON_THERAPY:
        today = _today(today)
        return sorted(patients, key=lambda p: max_day_of_therapy(p, today), reverse=descending)
    return sorted(patients, key=lambda p: p.patient_name.lower(), reverse=descending)


def patient_summary(patient: MonitoringPatient, now: datetime | None = None) -> dict[str, Any]:
    """Row for the patient list: identity, location, flags and therapy day."""
    now = now or datetime.now()
    flags = evaluate_flags(patient, now)
    return {
        "id": patient.id,
        "patient_name": patient.patient_name,
        "hospital_number": patient.hospital_number,
        "ward": patient.ward,
        "bed_number": patient.bed_number,
        "status": patient.status.value,
        "egfr": patient.egfr.display,
        "active_drugs": [course.drug_name for course in patient.active_courses()],
        "days_on_therapy": max_day_of_therapy(patient, now),
        "is_new": is_new(patient, now),
        "nearing_completion": has_nearing_completion(patient, now),
        "flags": flags.to_dict(),
    }
