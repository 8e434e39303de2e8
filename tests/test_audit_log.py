"""Tests for the structured audit trail."""

import json
import logging
import os

from airflow_migrator.core import audit_log as audit_mod
from airflow_migrator.core import EventSeverity, EventType, get_audit_logger, log_audit_event


def _file_handlers():
    logger = logging.getLogger("airflow_migrator.audit")
    return [h for h in logger.handlers if isinstance(h, logging.FileHandler)]


class TestAuditLogger:

    def test_event_written_as_json(self, tmp_path):
        event_id = log_audit_event(
            EventType.EXPORT_COMPLETED,
            EventSeverity.INFO,
            "Exported 3 connection(s)",
            details={"count": 3},
        )

        lines = get_audit_logger().log_file.read_text().splitlines()
        event = json.loads(lines[-1])
        assert event["event_id"] == event_id
        assert event["event_type"] == "export.completed"
        assert event["details"] == {"count": 3}

    def test_singleton(self):
        assert get_audit_logger() is get_audit_logger()

    def test_does_not_propagate_to_root(self):
        get_audit_logger()
        assert logging.getLogger("airflow_migrator.audit").propagate is False

    def test_handlers_do_not_pile_up(self, tmp_path):
        audit_mod.AuditLogger(tmp_path / "one")
        audit_mod.AuditLogger(tmp_path / "one")
        assert len(_file_handlers()) == 1

        second = audit_mod.AuditLogger(tmp_path / "two")
        handlers = _file_handlers()
        assert len(handlers) == 1
        assert handlers[0].baseFilename == os.path.abspath(second.log_file)

    def test_events_go_to_latest_file_only(self, tmp_path):
        first = audit_mod.AuditLogger(tmp_path / "one")
        second = audit_mod.AuditLogger(tmp_path / "two")

        second.log_event(EventType.SYSTEM_START, EventSeverity.INFO, "started")

        assert "system.start" in second.log_file.read_text()
        assert first.log_file.read_text() == ""
