"""SQLite-backed document store for monitoring patients.

Each patient is stored as one JSON document. ``update`` overwrites the
given top-level fields of the document and leaves the rest in place;
concurrent writers to the same patient are last-write-wins.
"""

import json
import logging
import os
import sqlite3
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from .exceptions import PatientNotFoundError, PersistenceError
from .models import MonitoringPatient

logger = logging.getLogger(__name__)

Subscriber = Callable[[list[MonitoringPatient]], None]


class PatientStore:
    """SQLite-backed storage for patients under antimicrobial monitoring."""

    def __init__(self, db_path: str | None = None):
        """Initialize patient store.

        Args:
            db_path: Path to SQLite database. Defaults to AMS_MONITORING_DB_PATH env var
                     or ~/.aegis/ams_monitoring.db
        """
        if db_path:
            self.db_path = os.path.expanduser(db_path)
        else:
            self.db_path = os.path.expanduser(
                os.environ.get("AMS_MONITORING_DB_PATH", "~/.aegis/ams_monitoring.db")
            )

        # Ensure directory exists
        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._last_token: tuple[int, str | None] | None = None

        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path) as f:
            schema = f.read()

        try:
            with self._connect() as conn:
                conn.executescript(schema)
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize monitoring database {self.db_path}: {e}")
            raise PersistenceError(f"Could not initialize database: {e}") from e

    def _connect(self) -> sqlite3.Connection:
        """Get database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _generate_id(self) -> str:
        """Generate a unique patient ID."""
        return str(uuid.uuid4())[:8]

    # Document operations

    def create(self, patient: MonitoringPatient | dict[str, Any]) -> str:
        """Store a new patient document.

        Returns:
            The generated patient ID
        """
        if isinstance(patient, MonitoringPatient):
            document = patient.to_document()
        else:
            document = {k: v for k, v in patient.items() if k not in ("id", "egfr")}

        patient_id = self._generate_id()
        now = datetime.now().isoformat()
        document["created_at"] = document.get("created_at") or now

        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO monitoring_patients (id, created_at, updated_at, document)
                    VALUES (?, ?, ?, ?)
                    """,
                    (patient_id, document["created_at"], now, json.dumps(document)),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to create patient document: {e}")
            raise PersistenceError(f"Could not save patient: {e}") from e

        logger.info(f"Created monitoring patient {patient_id} ({document.get('hospital_number')})")
        self._publish()
        return patient_id

    def update(self, patient_id: str, fields: dict[str, Any]) -> None:
        """Overwrite top-level fields of a patient document.

        Raises:
            PatientNotFoundError: no document with this ID
            PersistenceError: the database write failed
        """
        fields = {k: v for k, v in fields.items() if k not in ("id", "egfr")}
        now = datetime.now().isoformat()

        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT document FROM monitoring_patients WHERE id = ?",
                    (patient_id,),
                ).fetchone()
                if row is None:
                    raise PatientNotFoundError(patient_id)

                document = json.loads(row["document"])
                document.update(fields)

                conn.execute(
                    "UPDATE monitoring_patients SET document = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(document), now, patient_id),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to update patient {patient_id}: {e}")
            raise PersistenceError(f"Could not update patient {patient_id}: {e}") from e

        logger.debug(f"Updated patient {patient_id}: {', '.join(sorted(fields))}")
        self._publish()

    def delete(self, patient_id: str) -> None:
        """Delete a patient document and all of its courses."""
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM monitoring_patients WHERE id = ?",
                    (patient_id,),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to delete patient {patient_id}: {e}")
            raise PersistenceError(f"Could not delete patient {patient_id}: {e}") from e

        if cursor.rowcount == 0:
            raise PatientNotFoundError(patient_id)

        logger.info(f"Deleted monitoring patient {patient_id}")
        self._publish()

    def get(self, patient_id: str) -> MonitoringPatient | None:
        """Get a patient by ID."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT id, document FROM monitoring_patients WHERE id = ?",
                    (patient_id,),
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read patient {patient_id}: {e}")
            raise PersistenceError(f"Could not read patient {patient_id}: {e}") from e

        if row is None:
            return None
        return self._row_to_patient(row)

    def list_patients(self) -> list[MonitoringPatient]:
        """All patients, newest first."""
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT id, document FROM monitoring_patients ORDER BY created_at DESC, id"
                ).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Failed to list patients: {e}")
            raise PersistenceError(f"Could not list patients: {e}") from e

        return [self._row_to_patient(row) for row in rows]

    # Subscriptions

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback that receives the full patient list.

        The callback is called once with the current list, then again after
        every successful write. Returns a function that cancels the
        subscription.
        """
        token = self._change_token()
        with self._lock:
            self._subscribers.append(callback)
            self._last_token = token

        self._deliver(callback, self.list_patients())

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def refresh(self) -> bool:
        """Push the list to subscribers if another process changed the data.

        Returns:
            True if a change was detected
        """
        token = self._change_token()
        with self._lock:
            changed = token != self._last_token
        if changed:
            self._publish(token)
        return changed

    def _change_token(self) -> tuple[int, str | None]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) AS total, MAX(updated_at) AS latest FROM monitoring_patients"
                ).fetchone()
        except sqlite3.Error as e:
            logger.error(f"Failed to read change token: {e}")
            raise PersistenceError(f"Could not read change token: {e}") from e
        return (row["total"], row["latest"])

    def _publish(self, token: tuple[int, str | None] | None = None) -> None:
        with self._lock:
            self._last_token = token or self._change_token()
            subscribers = list(self._subscribers)
        if not subscribers:
            return

        patients = self.list_patients()
        for callback in subscribers:
            self._deliver(callback, patients)

    def _deliver(self, callback: Subscriber, patients: list[MonitoringPatient]) -> None:
        try:
            callback(patients)
        except Exception as e:
            logger.error(f"Subscriber {getattr(callback, '__name__', callback)} failed: {e}")

    def _row_to_patient(self, row: sqlite3.Row) -> MonitoringPatient:
        """Convert database row to MonitoringPatient."""
        return MonitoringPatient.from_dict(json.loads(row["document"]), patient_id=row["id"])
