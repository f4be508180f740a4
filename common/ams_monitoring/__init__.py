"""AMS therapy monitoring: administration tracking and clinical risk flags."""

from .dosing_advisor import DosingAdvice, RenalDosingAdvisor
from .exceptions import (
    ComputationError,
    CourseNotFoundError,
    MonitoringError,
    PatientNotFoundError,
    PersistenceError,
    PreconditionError,
    ValidationError,
)
from .flags import MonitoringKPIs, RiskFlags, compute_kpis, evaluate_flags
from .lifecycle import CourseAction
from .models import (
    AdministrationEntry,
    AdministrationStatus,
    ApprovedRequest,
    ChangeHistoryEntry,
    CourseStatus,
    DoseChangeReason,
    MonitoringPatient,
    PatientStatus,
    ShiftReason,
    StopReason,
    TherapyCourse,
    TransferLog,
)
from .renal import RenalEstimate, estimate_egfr
from .service import TherapyMonitoringService
from .store import PatientStore

__all__ = [
    "AdministrationEntry",
    "AdministrationStatus",
    "ApprovedRequest",
    "ChangeHistoryEntry",
    "ComputationError",
    "CourseAction",
    "CourseNotFoundError",
    "CourseStatus",
    "DoseChangeReason",
    "DosingAdvice",
    "MonitoringError",
    "MonitoringKPIs",
    "MonitoringPatient",
    "PatientNotFoundError",
    "PatientStatus",
    "PatientStore",
    "PersistenceError",
    "PreconditionError",
    "RenalDosingAdvisor",
    "RenalEstimate",
    "RiskFlags",
    "ShiftReason",
    "StopReason",
    "TherapyCourse",
    "TherapyMonitoringService",
    "TransferLog",
    "ValidationError",
    "compute_kpis",
    "estimate_egfr",
    "evaluate_flags",
]
