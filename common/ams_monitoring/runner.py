#!/usr/bin/env python3
"""CLI entry point for AMS therapy monitoring.

Usage:
    # KPI and red-flag summary
    python -m common.ams_monitoring.runner --once

    # Follow changes (other processes included), polling every 30 seconds
    python -m common.ams_monitoring.runner --watch --interval 30

    # Administration grid for one patient
    python -m common.ams_monitoring.runner --patient a1b2c3d4

    # Use a different database
    python -m common.ams_monitoring.runner --once --db /tmp/ams.db
"""

import argparse
import logging
import sys
import time
from datetime import datetime

from . import administration, flags
from .config import Config
from .exceptions import MonitoringError
from .models import MonitoringPatient
from .schedule import display_day_columns
from .store import PatientStore

CELL_SYMBOLS = {
    "Given": "G",
    "Missed": "M",
    "empty": ".",
    "beyond": " ",
}


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def print_summary(patients: list[MonitoringPatient], now: datetime | None = None) -> None:
    """Print fleet KPIs and the flagged patients."""
    now = now or datetime.now()
    kpis = flags.compute_kpis(patients, now)

    print("\n" + "=" * 60)
    print("AMS MONITORING SUMMARY")
    print("=" * 60)
    for key, value in kpis.to_dict().items():
        print(f"  {key:26}: {value}")

    flagged = flags.filter_patients(patients, kpi_filter=flags.FILTER_RED_FLAG, now=now)
    if flagged:
        print("\nRed flags:")
        for patient in flags.sort_patients(flagged, flags.SORT_DAYS_ON_THERAPY, descending=True, today=now):
            summary = flags.patient_summary(patient, now)
            print(
                f"  {patient.patient_name} ({patient.hospital_number}) "
                f"{patient.ward}/{patient.bed_number} DOT {summary['days_on_therapy']}: "
                f"{', '.join(summary['flags']['labels'])}"
            )


def print_patient(patient: MonitoringPatient, now: datetime | None = None) -> None:
    """Print the administration grid for each of a patient's courses."""
    now = now or datetime.now()
    print("\n" + "=" * 60)
    print(f"{patient.patient_name} ({patient.hospital_number}) {patient.ward}/{patient.bed_number}")
    print(f"  eGFR: {patient.egfr.display}   status: {patient.status.value}")
    print("=" * 60)

    columns = display_day_columns(c.planned_duration for c in patient.antimicrobials)
    for course in patient.antimicrobials:
        given, missed = administration.count_doses(course)
        print(
            f"\n  {course.drug_name} {course.dose} {course.route} {course.frequency} "
            f"[{course.status.value}] adherence {flags.adherence_percent(course):.0f}% "
            f"(given {given}, missed {missed})"
        )
        print("    day  " + " ".join(f"{d:>2}" for d in range(1, columns + 1)))
        for slot, row in enumerate(administration.build_grid(course, columns)):
            cells = " ".join(f"{CELL_SYMBOLS.get(cell['state'], '?'):>2}" for cell in row)
            print(f"    #{slot + 1:<3} {cells}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="AMS Therapy Monitoring",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    # Mode
    mode_group = parser.add_mutually_exclusive_group(required=True)
    mode_group.add_argument("--once", action="store_true", help="Print KPI and red-flag summary and exit")
    mode_group.add_argument("--watch", action="store_true", help="Print the summary whenever patients change")
    mode_group.add_argument("--patient", metavar="ID", help="Print the administration grid for one patient")

    # Options
    parser.add_argument("--db", help="SQLite database path (default: AMS_MONITORING_DB_PATH)")
    parser.add_argument(
        "--interval", type=int, default=Config.WATCH_INTERVAL_SECONDS,
        help=f"Seconds between change checks in watch mode (default: {Config.WATCH_INTERVAL_SECONDS})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    try:
        store = PatientStore(db_path=args.db)
        logger.debug(f"Using database: {store.db_path}")

        if args.once:
            print_summary(store.list_patients())
            return 0

        elif args.patient:
            patient = store.get(args.patient)
            if patient is None:
                logger.error(f"Patient {args.patient} not found")
                return 1
            print_patient(patient)
            return 0

        elif args.watch:
            logger.info(f"Watching {store.db_path} (interval: {args.interval}s)")
            print(f"\nMonitoring active. Checking every {args.interval} seconds (Ctrl+C to stop)")
            unsubscribe = store.subscribe(print_summary)
            try:
                while True:
                    time.sleep(args.interval)
                    store.refresh()
            finally:
                unsubscribe()

    except KeyboardInterrupt:
        logger.info("\nShutdown requested by user")
        return 0
    except MonitoringError as e:
        logger.error(f"Monitoring error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
