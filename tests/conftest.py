"""Shared fixtures for AMS monitoring tests."""

from datetime import datetime

import pytest

from common.ams_monitoring.config import Config
from common.ams_monitoring.models import MonitoringPatient, TherapyCourse
from common.ams_monitoring.store import PatientStore


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Pin settings that a developer's .env could otherwise change."""
    monkeypatch.setattr(Config, "CREATININE_UNIT", "umol/L")
    monkeypatch.setattr(Config, "AMS_BACKUP_WEBHOOK_URL", None)
    monkeypatch.setattr(Config, "DOSING_ADVISOR_ENABLED", False)


@pytest.fixture
def make_course():
    """Factory for an Active 7-day q8h meropenem course starting 2024-03-01."""
    def _make(**overrides):
        fields = {
            "id": "c1",
            "drug_name": "Meropenem",
            "dose": "1 g",
            "route": "IV",
            "frequency": "q8h",
            "frequency_hours": 8,
            "start_date": "2024-03-01",
            "planned_duration": "7",
        }
        fields.update(overrides)
        return TherapyCourse(**fields)
    return _make


@pytest.fixture
def make_patient():
    """Factory for an admitted adult patient with normal renal function."""
    def _make(courses=None, **overrides):
        fields = {
            "id": "p1",
            "patient_name": "Dela Cruz, Juan",
            "hospital_number": "H-1001",
            "ward": "Medical Ward",
            "bed_number": "12",
            "age": "40",
            "sex": "Male",
            "latest_creatinine": "80",
            "created_at": datetime(2024, 3, 1, 8, 0).isoformat(),
        }
        fields.update(overrides)
        return MonitoringPatient(antimicrobials=list(courses or []), **fields)
    return _make


@pytest.fixture
def store(tmp_path):
    return PatientStore(db_path=str(tmp_path / "ams_monitoring.db"))
