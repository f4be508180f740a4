"""Data models for AMS therapy monitoring."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from . import renal
from .schedule import MIN_DISPLAY_DAYS, doses_per_day, parse_frequency_hours, parse_planned_duration


class CourseStatus(str, Enum):
    """Lifecycle state of a therapy course."""
    ACTIVE = "Active"
    COMPLETED = "Completed"
    STOPPED = "Stopped"
    SHIFTED = "Shifted"

    @property
    def is_terminal(self) -> bool:
        return self is not CourseStatus.ACTIVE


class AdministrationStatus(str, Enum):
    """Outcome recorded for a dose slot."""
    GIVEN = "Given"
    MISSED = "Missed"


class PatientStatus(str, Enum):
    """Admission status of a monitoring patient."""
    ADMITTED = "Admitted"
    DISCHARGED = "Discharged"
    EXPIRED = "Expired"


class StopReason(str, Enum):
    """Reasons for stopping a course."""
    DE_ESCALATION = "De-escalation"
    ADVERSE_EVENT = "Adverse Event / Toxicity"
    NO_INFECTION = "No Infection"
    CLINICAL_FAILURE = "Clinical Failure"
    RESISTANT_ORGANISM = "Resistant Organism"
    PALLIATIVE_CARE = "Palliative / Comfort Care"
    DISCHARGED_EXPIRED = "Patient Discharged / Expired"
    OTHER = "Others (Specify)"

    @classmethod
    def all_options(cls) -> list[tuple[str, str]]:
        """Get all options as (value, display_name) tuples for dropdowns."""
        return [(r.value, r.value) for r in cls]


class ShiftReason(str, Enum):
    """Reasons for shifting a course to another regimen."""
    IV_TO_PO = "IV to PO Switch"
    ESCALATION = "Escalation (Broadening)"
    DE_ESCALATION = "De-escalation (Narrowing)"
    RENAL_ADJUSTMENT = "Renal Adjustment"
    ADVERSE_EVENT = "Adverse Event"
    OTHER = "Others (Specify)"

    @classmethod
    def all_options(cls) -> list[tuple[str, str]]:
        """Get all options as (value, display_name) tuples for dropdowns."""
        return [(r.value, r.value) for r in cls]


class DoseChangeReason(str, Enum):
    """Reasons for a dose adjustment."""
    RENAL_ADJUSTMENT = "Renal Adjustment"
    HEPATIC_ADJUSTMENT = "Hepatic Adjustment"
    CLINICAL_IMPROVEMENT = "Clinical Improvement"
    CLINICAL_WORSENING = "Clinical Worsening"
    ADVERSE_EVENT = "Adverse Event"
    OTHER = "Others (Specify)"

    @classmethod
    def all_options(cls) -> list[tuple[str, str]]:
        """Get all options as (value, display_name) tuples for dropdowns."""
        return [(r.value, r.value) for r in cls]


class ChangeType(str, Enum):
    """Kinds of change history records."""
    DOSE_CHANGE = "Dose Change"


@dataclass
class AdministrationEntry:
    """A logged dose slot."""
    status: AdministrationStatus
    time: str = ""
    user: str | None = None
    timestamp: str | None = None
    reason: str | None = None

    @property
    def is_given(self) -> bool:
        return self.status == AdministrationStatus.GIVEN

    @property
    def is_missed(self) -> bool:
        return self.status == AdministrationStatus.MISSED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = {
            "status": self.status.value,
            "time": self.time,
            "user": self.user,
            "timestamp": self.timestamp,
        }
        if self.reason:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_value(cls, value: Any) -> "AdministrationEntry | None":
        """Read a stored slot value.

        Older documents store a bare time string for a given dose.
        """
        if not value:
            return None
        if isinstance(value, str):
            return cls(status=AdministrationStatus.GIVEN, time=value)
        if isinstance(value, AdministrationEntry):
            return value
        return cls(
            status=AdministrationStatus(value.get("status", AdministrationStatus.GIVEN.value)),
            time=value.get("time") or "",
            user=value.get("user"),
            timestamp=value.get("timestamp"),
            reason=value.get("reason"),
        )


@dataclass
class ChangeHistoryEntry:
    """A dose adjustment record."""
    date: str
    type: ChangeType
    old_value: str | None
    new_value: str | None
    reason: str | None = None
    user: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "date": self.date,
            "type": self.type.value,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "reason": self.reason,
            "user": self.user,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeHistoryEntry":
        return cls(
            date=data.get("date", ""),
            type=ChangeType(data.get("type", ChangeType.DOSE_CHANGE.value)),
            old_value=data.get("old_value", data.get("oldValue")),
            new_value=data.get("new_value", data.get("newValue")),
            reason=data.get("reason"),
            user=data.get("user"),
        )


@dataclass
class TransferLog:
    """A ward/bed move recorded when patient location changes."""
    date: str
    from_ward: str
    to_ward: str
    from_bed: str
    to_bed: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "from_ward": self.from_ward,
            "to_ward": self.to_ward,
            "from_bed": self.from_bed,
            "to_bed": self.to_bed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransferLog":
        return cls(
            date=data.get("date", ""),
            from_ward=data.get("from_ward", ""),
            to_ward=data.get("to_ward", ""),
            from_bed=data.get("from_bed", ""),
            to_bed=data.get("to_bed", ""),
        )


@dataclass
class ApprovedRequest:
    """Fields carried over from an approved antimicrobial request."""
    antimicrobial: str
    dose: str | None = None
    frequency: str | None = None
    route: str | None = None
    duration: str | None = None
    req_date: str | None = None
    resident_name: str | None = None
    id_specialist: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ApprovedRequest":
        return cls(
            antimicrobial=data.get("antimicrobial") or data.get("drug_name") or "",
            dose=data.get("dose"),
            frequency=data.get("frequency"),
            route=data.get("route"),
            duration=data.get("duration"),
            req_date=data.get("req_date"),
            resident_name=data.get("resident_name"),
            id_specialist=data.get("id_specialist"),
        )


@dataclass
class TherapyCourse:
    """One antimicrobial regimen tracked for a patient."""
    id: str
    drug_name: str
    dose: str
    route: str
    frequency: str
    start_date: str
    planned_duration: str
    frequency_hours: int | None = None
    requesting_resident: str | None = None
    ids_in_charge: str | None = None

    status: CourseStatus = CourseStatus.ACTIVE

    # Terminal metadata (cleared on undo)
    stop_date: str | None = None
    stop_reason: str | None = None
    shifted_at: str | None = None
    shift_reason: str | None = None
    completed_at: str | None = None
    action_by: str | None = None

    scheduled_times: list[str] = field(default_factory=list)
    administration_log: dict[str, list[AdministrationEntry | None]] = field(default_factory=dict)
    change_history: list[ChangeHistoryEntry] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == CourseStatus.ACTIVE

    @property
    def doses_per_day(self) -> int:
        return doses_per_day(self.frequency_hours)

    @property
    def planned_days(self) -> int | None:
        """Planned duration in whole days, or None if unparseable."""
        return parse_planned_duration(self.planned_duration)

    @property
    def therapy_window_days(self) -> int:
        """Days that can be logged; an unparseable duration is treated as a week."""
        return parse_planned_duration(self.planned_duration, MIN_DISPLAY_DAYS)

    def entries(self) -> list[AdministrationEntry]:
        """All logged (non-empty) slots across the course."""
        return [
            entry
            for day_log in self.administration_log.values()
            for entry in day_log
            if entry is not None
        ]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "drug_name": self.drug_name,
            "dose": self.dose,
            "route": self.route,
            "frequency": self.frequency,
            "frequency_hours": self.frequency_hours,
            "start_date": self.start_date,
            "planned_duration": self.planned_duration,
            "requesting_resident": self.requesting_resident,
            "ids_in_charge": self.ids_in_charge,
            "status": self.status.value,
            "stop_date": self.stop_date,
            "stop_reason": self.stop_reason,
            "shifted_at": self.shifted_at,
            "shift_reason": self.shift_reason,
            "completed_at": self.completed_at,
            "action_by": self.action_by,
            "scheduled_times": list(self.scheduled_times),
            "administration_log": {
                day: [entry.to_dict() if entry else None for entry in day_log]
                for day, day_log in self.administration_log.items()
            },
            "change_history": [entry.to_dict() for entry in self.change_history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TherapyCourse":
        """Create from a stored course document."""
        frequency_hours = data.get("frequency_hours")
        if frequency_hours in (None, ""):
            frequency_hours = parse_frequency_hours(data.get("frequency"))

        return cls(
            id=data["id"],
            drug_name=data.get("drug_name", ""),
            dose=data.get("dose") or "",
            route=data.get("route") or "",
            frequency=data.get("frequency") or "",
            frequency_hours=frequency_hours,
            start_date=data.get("start_date", ""),
            planned_duration=str(data.get("planned_duration") or ""),
            requesting_resident=data.get("requesting_resident"),
            ids_in_charge=data.get("ids_in_charge"),
            status=CourseStatus(data.get("status") or CourseStatus.ACTIVE.value),
            stop_date=data.get("stop_date"),
            stop_reason=data.get("stop_reason"),
            shifted_at=data.get("shifted_at"),
            shift_reason=data.get("shift_reason"),
            completed_at=data.get("completed_at"),
            action_by=data.get("action_by"),
            scheduled_times=list(data.get("scheduled_times") or []),
            administration_log={
                day: [AdministrationEntry.from_value(v) for v in (day_log or [])]
                for day, day_log in (data.get("administration_log") or {}).items()
            },
            change_history=[
                ChangeHistoryEntry.from_dict(entry)
                for entry in (data.get("change_history") or [])
            ],
        )


@dataclass
class MonitoringPatient:
    """A patient under antimicrobial monitoring (the stored document)."""
    id: str | None
    patient_name: str
    hospital_number: str
    ward: str = ""
    bed_number: str = ""
    age: str = ""
    sex: str = ""
    date_of_admission: str | None = None
    latest_creatinine: str = ""
    height_cm: str = ""
    mode: str = renal.MODE_ADULT
    infectious_diagnosis: str = ""
    dialysis_status: str = "No"
    status: PatientStatus = PatientStatus.ADMITTED
    discharged_at: str | None = None
    created_at: str | None = None
    last_updated_by: str | None = None
    antimicrobials: list[TherapyCourse] = field(default_factory=list)
    transfer_history: list[TransferLog] = field(default_factory=list)

    @property
    def egfr(self) -> renal.RenalEstimate:
        """eGFR recomputed from the current source fields."""
        return renal.patient_egfr(self)

    @property
    def is_admitted(self) -> bool:
        return self.status == PatientStatus.ADMITTED

    @property
    def on_dialysis(self) -> bool:
        return (self.dialysis_status or "").strip().lower() == "yes"

    def created_datetime(self) -> datetime | None:
        if not self.created_at:
            return None
        try:
            created = datetime.fromisoformat(self.created_at.replace("Z", "+00:00"))
        except (AttributeError, ValueError):
            return None
        if created.tzinfo is not None:
            # Compared against naive local times throughout
            created = created.astimezone().replace(tzinfo=None)
        return created

    def find_course(self, course_id: str) -> TherapyCourse | None:
        for course in self.antimicrobials:
            if course.id == course_id:
                return course
        return None

    def active_courses(self) -> list[TherapyCourse]:
        return [c for c in self.antimicrobials if c.is_active]

    def antimicrobials_payload(self) -> list[dict[str, Any]]:
        """The full course array as submitted to the store."""
        return [course.to_dict() for course in self.antimicrobials]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        ``egfr`` is included for display and ignored by ``from_dict``.
        """
        return {
            "id": self.id,
            "patient_name": self.patient_name,
            "hospital_number": self.hospital_number,
            "ward": self.ward,
            "bed_number": self.bed_number,
            "age": self.age,
            "sex": self.sex,
            "date_of_admission": self.date_of_admission,
            "latest_creatinine": self.latest_creatinine,
            "height_cm": self.height_cm,
            "mode": self.mode,
            "egfr": self.egfr.display,
            "infectious_diagnosis": self.infectious_diagnosis,
            "dialysis_status": self.dialysis_status,
            "status": self.status.value,
            "discharged_at": self.discharged_at,
            "created_at": self.created_at,
            "last_updated_by": self.last_updated_by,
            "antimicrobials": self.antimicrobials_payload(),
            "transfer_history": [t.to_dict() for t in self.transfer_history],
        }

    def to_document(self) -> dict[str, Any]:
        """Stored document form: everything except ``id`` and derived fields."""
        document = self.to_dict()
        document.pop("id")
        document.pop("egfr")
        return document

    @classmethod
    def from_dict(cls, data: dict[str, Any], patient_id: str | None = None) -> "MonitoringPatient":
        """Create from a stored patient document."""
        return cls(
            id=patient_id or data.get("id"),
            patient_name=data.get("patient_name", ""),
            hospital_number=data.get("hospital_number", ""),
            ward=data.get("ward") or "",
            bed_number=data.get("bed_number") or "",
            age=str(data.get("age") or ""),
            sex=data.get("sex") or "",
            date_of_admission=data.get("date_of_admission"),
            latest_creatinine=str(data.get("latest_creatinine") or ""),
            height_cm=str(data.get("height_cm") or ""),
            mode=data.get("mode") or renal.MODE_ADULT,
            infectious_diagnosis=data.get("infectious_diagnosis") or "",
            dialysis_status=data.get("dialysis_status") or "No",
            status=PatientStatus(data.get("status") or PatientStatus.ADMITTED.value),
            discharged_at=data.get("discharged_at"),
            created_at=data.get("created_at"),
            last_updated_by=data.get("last_updated_by"),
            antimicrobials=[
                TherapyCourse.from_dict(course)
                for course in (data.get("antimicrobials") or [])
                if course
            ],
            transfer_history=[
                TransferLog.from_dict(t) for t in (data.get("transfer_history") or [])
            ],
        )
