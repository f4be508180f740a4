"""Spreadsheet backup of monitoring documents.

After each successful store write the patient document is flattened to one
row and POSTed to a web-app endpoint that appends it to a named sheet.
Backups are best effort and never interrupt the write that triggered them.
"""

import json
import logging
from datetime import datetime
from typing import Any

import requests

from .config import Config

logger = logging.getLogger(__name__)

SHEET_MONITORING = "Monitoring"
SHEET_MONITORING_DELETED = "Monitoring_Deleted"


def flatten_document(document: dict[str, Any]) -> dict[str, Any]:
    """Flatten a document to one spreadsheet row.

    Nested lists and dicts are JSON-encoded; scalars and None pass through.
    """
    row = {}
    for key, value in document.items():
        if isinstance(value, (dict, list)):
            row[key] = json.dumps(value)
        else:
            row[key] = value
    return row


class DocumentBackup:
    """POSTs flattened documents to the backup webhook."""

    def __init__(self, webhook_url: str | None = None, timeout: int | None = None):
        self.webhook_url = webhook_url or Config.AMS_BACKUP_WEBHOOK_URL
        self.timeout = timeout or Config.AMS_BACKUP_TIMEOUT
        self.session = requests.Session()

    def is_configured(self) -> bool:
        """Check if the backup webhook is configured."""
        return bool(self.webhook_url)

    def send(self, sheet_name: str, document: dict[str, Any]) -> bool:
        """Send one document to the named sheet.

        Returns:
            True if the webhook accepted the row
        """
        if not self.is_configured():
            return False

        payload = {"sheetName": sheet_name, "record": flatten_document(document)}
        try:
            response = self.session.post(
                self.webhook_url,
                data=json.dumps(payload),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Backup to sheet {sheet_name} failed: {e}")
            return False

        logger.debug(f"Backed up record {document.get('id')} to sheet {sheet_name}")
        return True

    def send_patient(self, patient_id: str, document: dict[str, Any]) -> bool:
        return self.send(SHEET_MONITORING, {**document, "id": patient_id})

    def send_deletion(self, patient_id: str) -> bool:
        return self.send(
            SHEET_MONITORING_DELETED,
            {"id": patient_id, "timestamp": datetime.now().isoformat()},
        )
