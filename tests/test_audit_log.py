"""Tests for the change audit log."""
import json
import logging

import pytest

from nut_enumerator.utils.audit_log import (
    ChangeRecord,
    ChangeTracker,
    audit_logger,
    get_recent_changes,
    setup_audit_logging,
)


@pytest.fixture
def audit_file(tmp_path):
    path = setup_audit_logging(str(tmp_path / "audit"))
    yield path
    for handler in list(audit_logger.handlers):
        audit_logger.removeHandler(handler)
        handler.close()


class TestChangeRecord:
    """Tests for ChangeRecord serialization."""

    def test_json_round_trip(self):
        record = ChangeRecord(
            timestamp="2024-01-01T00:00:00+00:00",
            framework="systemd",
            operation="register",
            subject="ups1",
            success=True,
            parameters={"identifier": "ups1"},
        )
        assert ChangeRecord.from_json(record.to_json()) == record

    def test_single_line(self):
        record = ChangeRecord("t", "smf", "unregister", "ups1", False, error="boom")
        assert "\n" not in record.to_json()
        assert json.loads(record.to_json())["error"] == "boom"

    def test_describe(self):
        ok = ChangeRecord("t0", "smf", "register", "ups1", True)
        failed = ChangeRecord("t1", "smf", "unregister", "ups2", False, error="boom")
        assert ok.describe() == "t0 smf register ups1 OK"
        assert failed.describe() == "t1 smf unregister ups2 FAILED: boom"


class TestChangeTracker:
    """Tests for ChangeTracker."""

    def test_records_kept(self):
        tracker = ChangeTracker("systemd")
        tracker.log_change("register", "ups1", True, parameters={"identifier": "ups1"})
        tracker.log_change("start", "ups1", False, error="timeout")

        assert [r.operation for r in tracker.records] == ["register", "start"]
        assert tracker.records[1].error == "timeout"
        assert tracker.records[0].framework == "systemd"
        assert [r.operation for r in tracker.failures()] == ["start"]

    def test_records_capped(self):
        """Long-running daemons keep only the most recent changes in memory."""
        tracker = ChangeTracker("systemd", max_records=3)
        for attempt in range(10):
            tracker.log_change("register", "ups1", False, error=f"attempt {attempt}")

        assert len(tracker.records) == 3
        assert [r.error for r in tracker.failures()] == ["attempt 7", "attempt 8", "attempt 9"]

    def test_output_truncated(self):
        record = ChangeTracker("smf").log_change("register", "ups1", True, output="x" * 5000)
        assert len(record.output) == 1000

    def test_written_to_file(self, audit_file):
        ChangeTracker("smf").log_change("unregister", "ups2", True)
        lines = audit_file.read_text().splitlines()
        assert json.loads(lines[-1])["subject"] == "ups2"

    def test_not_propagated(self, audit_file, caplog):
        with caplog.at_level(logging.INFO):
            ChangeTracker("smf").log_change("unregister", "ups2", True)
        assert not any(r.name == "nut_enumerator.audit" for r in caplog.records)


class TestGetRecentChanges:
    """Tests for reading the audit log back."""

    def test_filters_and_order(self, audit_file):
        tracker = ChangeTracker("systemd")
        tracker.log_change("register", "ups1", True)
        tracker.log_change("register", "ups2", True)
        tracker.log_change("unregister", "ups1", True)

        records = get_recent_changes(str(audit_file))
        assert [(r.operation, r.subject) for r in records] == [
            ("unregister", "ups1"), ("register", "ups2"), ("register", "ups1"),
        ]
        assert len(get_recent_changes(str(audit_file), subject="ups1")) == 2
        assert len(get_recent_changes(str(audit_file), operation="register")) == 2
        assert len(get_recent_changes(str(audit_file), limit=1)) == 1
        assert get_recent_changes(str(audit_file), framework="smf") == []

    def test_malformed_lines_skipped(self, tmp_path):
        path = tmp_path / "audit.log"
        good = ChangeRecord("t", "smf", "register", "ups1", True).to_json()
        path.write_text(f"not json\n\n{good}\n{{\"partial\": 1}}\n")
        records = get_recent_changes(str(path))
        assert [r.subject for r in records] == ["ups1"]

    def test_missing_file(self, tmp_path):
        assert get_recent_changes(str(tmp_path / "absent.log")) == []
