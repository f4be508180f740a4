"""Error taxonomy for therapy monitoring operations."""


class MonitoringError(Exception):
    """Base class for all therapy monitoring errors."""


class ValidationError(MonitoringError):
    """A required field is missing or malformed before a mutation."""


class PatientNotFoundError(ValidationError):
    """No monitoring patient exists with the given ID."""

    def __init__(self, patient_id: str):
        super().__init__(f"Monitoring patient {patient_id} not found")
        self.patient_id = patient_id


class CourseNotFoundError(ValidationError):
    """The patient has no therapy course with the given ID."""

    def __init__(self, patient_id: str, course_id: str):
        super().__init__(f"Course {course_id} not found for patient {patient_id}")
        self.patient_id = patient_id
        self.course_id = course_id


class PreconditionError(MonitoringError):
    """Action attempted against a course in the wrong state."""


class PersistenceError(MonitoringError):
    """Patient store create/update/delete/read failure."""


class ComputationError(MonitoringError):
    """Malformed numeric input to a renal formula.

    Raised internally by the estimator and always converted to a sentinel
    display value before leaving the module.
    """
