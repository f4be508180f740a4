"""Renal function estimation for dosing alerts.

Adult eGFR uses the race-free CKD-EPI 2021 creatinine equation. Pediatric
eGFR uses the bedside (height-based) Schwartz equation. Both results are
display values only: they are recomputed from the patient's source fields on
every read and never stored as the field of record.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any

from .config import Config
from .exceptions import ComputationError

logger = logging.getLogger(__name__)

EGFR_UNIT = "mL/min/1.73m²"
UMOL_PER_MGDL = 88.4

# Display sentinels
NOT_AVAILABLE = "—"
PENDING = "Pending"

MODE_ADULT = "adult"
MODE_PEDIATRIC = "pediatric"


@dataclass(frozen=True)
class RenalEstimate:
    """A computed eGFR, or a sentinel when inputs are incomplete."""
    value: float | None
    display: str

    @property
    def is_numeric(self) -> bool:
        return self.value is not None

    @classmethod
    def sentinel(cls, display: str = NOT_AVAILABLE) -> "RenalEstimate":
        return cls(value=None, display=display)

    @classmethod
    def from_value(cls, value: float) -> "RenalEstimate":
        return cls(value=value, display=format_egfr(value))


def format_egfr(value: float) -> str:
    """Format an eGFR to one decimal with unit suffix."""
    return f"{value:.1f} {EGFR_UNIT}"


def is_female(sex: str | None) -> bool:
    return (sex or "").strip().lower() in ("female", "f")


def ckd_epi_2021(age: float, sex: str, scr_mgdl: float) -> float:
    """Adult eGFR (CKD-EPI 2021, race-free)."""
    female = is_female(sex)
    k = 0.7 if female else 0.9
    alpha = -0.241 if female else -0.302
    min_term = min(scr_mgdl / k, 1)
    max_term = max(scr_mgdl / k, 1)
    return (
        142
        * min_term ** alpha
        * max_term ** -1.2
        * 0.9938 ** age
        * (1.012 if female else 1)
    )


def bedside_schwartz(height_cm: float, scr_mgdl: float) -> float:
    """Pediatric eGFR (bedside Schwartz, height-based)."""
    return 0.413 * (height_cm / scr_mgdl)


def _parse_positive(value: Any, field_name: str) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ComputationError(f"{field_name} is missing")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ComputationError(f"{field_name} is not numeric: {value!r}")
    if not math.isfinite(number) or number <= 0:
        raise ComputationError(f"{field_name} must be positive: {value!r}")
    return number


def creatinine_to_mgdl(value: float, unit: str | None = None) -> float:
    """Convert serum creatinine to mg/dL."""
    unit = (unit or Config.CREATININE_UNIT).lower().replace("µ", "u")
    if unit in ("umol/l", "umol", "micromol/l"):
        return value / UMOL_PER_MGDL
    return value


def estimate_egfr(
    creatinine: Any,
    age: Any = None,
    sex: str | None = None,
    mode: str = MODE_ADULT,
    height_cm: Any = None,
    creatinine_unit: str | None = None,
) -> RenalEstimate:
    """Estimate eGFR from source fields.

    Never raises: incomplete or malformed inputs yield a sentinel estimate
    (``Pending`` when creatinine is awaited, ``—`` otherwise).
    """
    if isinstance(creatinine, str) and creatinine.strip().lower() == PENDING.lower():
        return RenalEstimate.sentinel(PENDING)

    try:
        scr = creatinine_to_mgdl(_parse_positive(creatinine, "creatinine"), creatinine_unit)
        if (mode or MODE_ADULT).lower() == MODE_PEDIATRIC:
            egfr = bedside_schwartz(_parse_positive(height_cm, "height"), scr)
        else:
            if not sex or not str(sex).strip():
                raise ComputationError("sex is missing")
            egfr = ckd_epi_2021(_parse_positive(age, "age"), sex, scr)
        if not math.isfinite(egfr):
            raise ComputationError(f"non-finite eGFR from creatinine {creatinine!r}")
    except ComputationError as e:
        logger.debug(f"eGFR not computable: {e}")
        return RenalEstimate.sentinel()
    except (OverflowError, ZeroDivisionError) as e:
        logger.debug(f"eGFR not computable: {e}")
        return RenalEstimate.sentinel()

    return RenalEstimate.from_value(egfr)


def patient_egfr(patient: Any, creatinine_unit: str | None = None) -> RenalEstimate:
    """Estimate eGFR from a monitoring patient's current fields."""
    return estimate_egfr(
        creatinine=getattr(patient, "latest_creatinine", None),
        age=getattr(patient, "age", None),
        sex=getattr(patient, "sex", None),
        mode=getattr(patient, "mode", None) or MODE_ADULT,
        height_cm=getattr(patient, "height_cm", None),
        creatinine_unit=creatinine_unit,
    )
