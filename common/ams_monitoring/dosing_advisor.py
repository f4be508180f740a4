"""Advisory renal dosing check backed by a local LLM.

The advisor compares an ordered dose against a drug's renal dosing guideline
for the patient's current eGFR and returns a free-text hint. Its output is
never authoritative: every failure (network, timeout, malformed reply) is
logged and reported as "no advice".
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

import requests

from .config import Config
from .renal import NOT_AVAILABLE, PENDING

logger = logging.getLogger(__name__)


# Adult renal dosing guidance keyed by the name used on the ward formulary.
# Drugs cleared hepatically or without renal adjustment are omitted.
RENAL_GUIDELINES: dict[str, str] = {
    "Amikacin": (
        "Extend interval by CrCl: 40-60 mL/min q24h; 20-40 mL/min q48h; "
        "<20 mL/min loading dose then dose by levels. HD: dose after dialysis."
    ),
    "Cefepime": (
        "CrCl 30-60 mL/min: 2 g q12h; 11-29 mL/min: 1-2 g q24h; "
        "<11 mL/min: 0.5-1 g q24h. Neurotoxicity risk if not adjusted."
    ),
    "Cefotaxime": "CrCl <20 mL/min: reduce dose by 50%.",
    "Ceftolozane-Tazobactam": (
        "CrCl 30-50 mL/min: 750 mg q8h; 15-29 mL/min: 375 mg q8h; "
        "ESRD on HD: 150 mg q8h after a 750 mg loading dose."
    ),
    "Ciprofloxacin": "CrCl 30-50 mL/min: 250-500 mg PO q12h; <30 mL/min: 250-500 mg PO q18-24h.",
    "Colistin": (
        "Loading dose unchanged. Daily maintenance dose (CBA) scaled to CrCl; "
        "supplemental dose after HD."
    ),
    "Doripenem": "CrCl 30-50 mL/min: 250 mg q8h; 10-29 mL/min: 250 mg q12h.",
    "Ertapenem": "CrCl <=30 mL/min: 500 mg q24h. HD: give 150 mg supplement if dosed within 6 h before HD.",
    "Fluconazole IV": "CrCl <=50 mL/min (no dialysis): give full loading dose then reduce maintenance dose by 50%.",
    "Fluconazole oral": "CrCl <=50 mL/min (no dialysis): give full loading dose then reduce maintenance dose by 50%.",
    "Gentamicin": (
        "Extended-interval: CrCl 40-60 mL/min q36h; 20-40 mL/min q48h; "
        "<20 mL/min dose by levels."
    ),
    "Levofloxacin": (
        "CrCl 20-49 mL/min: 750 mg q48h; 10-19 mL/min: 750 mg once then 500 mg q48h."
    ),
    "Meropenem": (
        "CrCl 26-50 mL/min: 1 g q12h; 10-25 mL/min: 500 mg q12h; <10 mL/min: 500 mg q24h."
    ),
    "Vancomycin": "AUC-guided dosing. Extend interval and dose by levels when CrCl <50 mL/min.",
}

SYSTEM_PROMPT = """You are a clinical pharmacist reviewing antimicrobial orders for renal dose adjustment.
Compare the ordered dose and frequency with the renal dosing guideline at the patient's eGFR.
Respond with JSON: {"requires_adjustment": true|false, "recommendation": "<one or two sentences>"}"""


@dataclass
class DosingAdvice:
    """Advisory renal dosing result (free text, not a recommendation of record)."""
    requires_adjustment: bool
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "requires_adjustment": self.requires_adjustment,
            "recommendation": self.recommendation,
        }


def resolve_guideline_key(drug_name: str, route: str | None = None) -> str:
    """Formulary key for a drug; fluconazole has separate IV and oral entries."""
    if drug_name == "Fluconazole":
        return "Fluconazole IV" if (route or "").upper() == "IV" else "Fluconazole oral"
    return drug_name


def get_renal_guideline(drug_name: str, route: str | None = None) -> str | None:
    return RENAL_GUIDELINES.get(resolve_guideline_key(drug_name, route))


def is_sentinel_egfr(egfr_text: str | None) -> bool:
    """True when the eGFR display text is not a computed value."""
    return not egfr_text or NOT_AVAILABLE in egfr_text or egfr_text == PENDING


class RenalDosingAdvisor:
    """Ollama-backed renal dosing advisor."""

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: int | None = None,
    ):
        """Initialize advisor.

        Args:
            base_url: Ollama API base URL. Uses config if None.
            model: Model to use. Uses config if None.
            timeout: Request timeout in seconds. Uses config if None.
        """
        self.base_url = (base_url or Config.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or Config.OLLAMA_MODEL
        self.timeout = timeout or Config.DOSING_ADVISOR_TIMEOUT
        self.session = requests.Session()

    def check(
        self,
        drug_name: str,
        egfr_text: str | None,
        renal_guideline: str | None,
        dose: str | None,
        frequency: str | None,
    ) -> DosingAdvice | None:
        """Ask the model whether the ordered regimen needs renal adjustment.

        Returns None when the eGFR is not a computed value, when there is no
        guideline for the drug, or when the call fails for any reason.
        """
        if is_sentinel_egfr(egfr_text) or not renal_guideline:
            return None

        prompt = (
            f"Drug: {drug_name}\n"
            f"Ordered dose: {dose or 'not specified'}\n"
            f"Ordered frequency: {frequency or 'not specified'}\n"
            f"Patient eGFR: {egfr_text}\n"
            f"Renal dosing guideline: {renal_guideline}"
        )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.0},
        }

        try:
            response = self.session.post(
                f"{self.base_url}/api/chat",
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            content = response.json().get("message", {}).get("content", "{}")
            parsed = json.loads(content)
        except requests.RequestException as e:
            logger.warning(f"Renal dosing advisor request failed for {drug_name}: {e}")
            return None
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            logger.warning(f"Renal dosing advisor returned invalid JSON for {drug_name}: {e}")
            return None

        if not isinstance(parsed, dict):
            logger.warning(f"Renal dosing advisor returned unexpected payload for {drug_name}")
            return None

        advice = DosingAdvice(
            requires_adjustment=bool(parsed.get("requires_adjustment", parsed.get("requiresAdjustment", False))),
            recommendation=str(parsed.get("recommendation") or ""),
        )
        logger.debug(f"Renal advice for {drug_name} at {egfr_text}: {advice.requires_adjustment}")
        return advice

    def advise(
        self,
        drug_name: str,
        route: str | None,
        egfr_text: str | None,
        dose: str | None,
        frequency: str | None,
    ) -> DosingAdvice | None:
        """Look up the drug's guideline by route and run ``check``."""
        return self.check(
            drug_name,
            egfr_text,
            get_renal_guideline(drug_name, route),
            dose,
            frequency,
        )
