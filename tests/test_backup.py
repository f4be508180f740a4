"""Tests for spreadsheet backup."""

import json
from unittest.mock import MagicMock

import requests

from common.ams_monitoring.backup import (
    SHEET_MONITORING,
    SHEET_MONITORING_DELETED,
    DocumentBackup,
    flatten_document,
)


def make_backup(url="https://backup.test/exec"):
    backup = DocumentBackup(webhook_url=url, timeout=3)
    backup.session = MagicMock()
    return backup


class TestFlatten:

    def test_nested_values_become_json(self):
        row = flatten_document({
            "patient_name": "Santos, Maria",
            "age": 70,
            "discharged_at": None,
            "antimicrobials": [{"drug_name": "Meropenem"}],
            "meta": {"a": 1},
        })
        assert row["patient_name"] == "Santos, Maria"
        assert row["age"] == 70
        assert row["discharged_at"] is None
        assert json.loads(row["antimicrobials"]) == [{"drug_name": "Meropenem"}]
        assert row["meta"] == '{"a": 1}'


class TestDocumentBackup:

    def test_not_configured(self):
        backup = DocumentBackup(webhook_url=None)
        assert not backup.is_configured()
        assert backup.send(SHEET_MONITORING, {"id": "p1"}) is False

    def test_send_patient(self):
        backup = make_backup()

        assert backup.send_patient("p1", {"ward": "ICU", "antimicrobials": []}) is True

        args, kwargs = backup.session.post.call_args
        assert args[0] == "https://backup.test/exec"
        body = json.loads(kwargs["data"])
        assert body["sheetName"] == SHEET_MONITORING
        assert body["record"] == {"ward": "ICU", "antimicrobials": "[]", "id": "p1"}
        assert kwargs["timeout"] == 3

    def test_send_deletion(self):
        backup = make_backup()
        backup.send_deletion("p1")
        body = json.loads(backup.session.post.call_args[1]["data"])
        assert body["sheetName"] == SHEET_MONITORING_DELETED
        assert body["record"]["id"] == "p1"
        assert body["record"]["timestamp"]

    def test_failure_is_swallowed(self):
        backup = make_backup()
        backup.session.post.side_effect = requests.ConnectionError("offline")
        assert backup.send(SHEET_MONITORING, {"id": "p1"}) is False
