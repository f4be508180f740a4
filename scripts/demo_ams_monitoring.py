#!/usr/bin/env python3
"""Seed demo monitoring patients that exercise each red flag and KPI.

Creates patients with:
- A missed dose on day 1
- Renal impairment (eGFR < 30)
- Prolonged therapy (day of therapy > 14)
- A course nearing its planned stop date
- A clean course for comparison

Usage:
    # One scenario
    python demo_ams_monitoring.py --scenario renal-impairment

    # Every scenario
    python demo_ams_monitoring.py --all

    # Seed a scratch database, then view it with the runner
    python demo_ams_monitoring.py --all --db /tmp/ams_demo.db
    python -m common.ams_monitoring.runner --once --db /tmp/ams_demo.db

    # List all scenarios
    python demo_ams_monitoring.py --list
"""

import argparse
import random
import sys
from datetime import date, timedelta
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.ams_monitoring import AdministrationStatus, PatientStore, TherapyMonitoringService

WARDS = ["Medical Ward", "Surgery Ward", "ICU", "SARI 1", "Pedia Ward"]

SCENARIOS = {
    "missed-dose": {
        "name": "Missed meropenem dose",
        "patient": {"age": "67", "sex": "Male", "latest_creatinine": "90",
                    "infectious_diagnosis": "Hospital-acquired pneumonia"},
        "request": {"antimicrobial": "Meropenem", "dose": "1 g", "frequency": "q8h",
                    "duration": "7", "start_offset_days": 1},
        "missed": [(1, 0)],
        "expected_flag": "Missed Dose",
    },
    "renal-impairment": {
        "name": "Cefepime with eGFR < 30",
        "patient": {"age": "78", "sex": "Female", "latest_creatinine": "280",
                    "infectious_diagnosis": "Complicated UTI"},
        "request": {"antimicrobial": "Cefepime", "dose": "2 g", "frequency": "q8h",
                    "duration": "7", "start_offset_days": 2},
        "expected_flag": "Renal Alert",
    },
    "prolonged-therapy": {
        "name": "Vancomycin beyond 14 days",
        "patient": {"age": "45", "sex": "Male", "latest_creatinine": "80",
                    "infectious_diagnosis": "MRSA osteomyelitis"},
        "request": {"antimicrobial": "Vancomycin", "dose": "1 g", "frequency": "q12h",
                    "duration": "42", "start_offset_days": 16},
        "expected_flag": "DOT > 14",
    },
    "nearing-completion": {
        "name": "Ciprofloxacin two days from stop",
        "patient": {"age": "52", "sex": "Female", "latest_creatinine": "70",
                    "infectious_diagnosis": "Pyelonephritis"},
        "request": {"antimicrobial": "Ciprofloxacin", "dose": "400 mg", "frequency": "q12h",
                    "duration": "7", "start_offset_days": 4},
        "expected_flag": None,
    },
    "clean": {
        "name": "Ertapenem, all doses given",
        "patient": {"age": "39", "sex": "Male", "latest_creatinine": "75",
                    "infectious_diagnosis": "Intra-abdominal infection"},
        "request": {"antimicrobial": "Ertapenem", "dose": "1 g", "frequency": "q24h",
                    "duration": "5", "start_offset_days": 1},
        "given_all": True,
        "expected_flag": None,
    },
}


def run_scenario(service: TherapyMonitoringService, key: str, actor: str) -> dict:
    """Create one scenario patient and log its doses."""
    scenario = SCENARIOS[key]
    request = dict(scenario["request"])
    start = date.today() - timedelta(days=request.pop("start_offset_days"))
    request["req_date"] = start.isoformat()

    details = {
        "patient_name": f"DEMO, {key.replace('-', ' ').title()}",
        "hospital_number": f"DEMO{random.randint(100000, 999999)}",
        "ward": random.choice(WARDS),
        "bed_number": str(random.randint(1, 30)),
        **scenario["patient"],
    }

    print(f"\n{'=' * 60}")
    print(f"Scenario: {scenario['name']}")
    print(f"{'=' * 60}")

    patient = service.admit_patient(details, [request], actor=actor)
    course = patient.antimicrobials[0]

    for day_index, slot_index in scenario.get("missed", []):
        patient = service.record_dose(
            patient.id, course.id, day_index, slot_index,
            AdministrationStatus.MISSED, actor, reason="Patient off ward",
        )

    if scenario.get("given_all"):
        elapsed = min((date.today() - start).days, course.planned_days or 0)
        for day_index in range(1, elapsed + 1):
            for slot_index in range(course.doses_per_day):
                patient = service.record_dose(
                    patient.id, course.id, day_index, slot_index,
                    AdministrationStatus.GIVEN, actor,
                )

    print(f"  Patient:      {patient.patient_name} ({patient.hospital_number}) id={patient.id}")
    print(f"  Course:       {course.drug_name} {course.dose} {course.frequency} from {course.start_date}")
    print(f"  eGFR:         {patient.egfr.display}")
    print(f"  Expected:     {scenario['expected_flag'] or 'No red flag'}")
    return {"scenario": key, "patient_id": patient.id}


def main():
    parser = argparse.ArgumentParser(
        description="Seed AMS monitoring demo patients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--scenario", "-s", choices=list(SCENARIOS.keys()), help="Specific scenario to run")
    parser.add_argument("--all", action="store_true", help="Run ALL scenarios")
    parser.add_argument("--db", help="SQLite database path (default: AMS_MONITORING_DB_PATH)")
    parser.add_argument("--user", default="demo", help="Name recorded as the acting user")
    parser.add_argument("--list", "-l", action="store_true", help="List available scenarios")

    args = parser.parse_args()

    if args.list:
        print("\nAvailable scenarios:\n")
        print(f"{'Scenario':<22} {'Expected flag':<16} Description")
        print("─" * 70)
        for key, scenario in SCENARIOS.items():
            print(f"{key:<22} {scenario['expected_flag'] or '-':<16} {scenario['name']}")
        return 0

    service = TherapyMonitoringService(store=PatientStore(db_path=args.db))

    if args.scenario:
        results = [run_scenario(service, args.scenario, args.user)]
    elif args.all:
        results = [run_scenario(service, key, args.user) for key in SCENARIOS]
    else:
        parser.error("Specify --scenario, --all, or --list")

    print(f"\nCreated {len(results)} demo patient(s) in {service.store.db_path}")
    print("\nTo view them, run:")
    print(f"  python -m common.ams_monitoring.runner --once --db {service.store.db_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
