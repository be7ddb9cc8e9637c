"""Unit tests for audit/store.py and audit/models.py -- the JSON-lines audit log.

Covers:
- severity table: SECURITY_* and LOGIN_FAILURE are HIGH, registration MEDIUM
- record() writes one JSON object per line with timestamp, eventType, severity
- rotation renames the active file to .1 and writes the new entry to a fresh file
- rotation shifts older files and drops the oldest beyond max_files
- query() filters, returns newest first, and honours limit
- an unwritable path never raises out of record()
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from audit.models import EventType, Severity, severity_for
from audit.store import AuditLogger


@pytest.fixture
def audit(tmp_path) -> AuditLogger:
    return AuditLogger(tmp_path / "audit.log", max_bytes=10 * 1024 * 1024, max_files=5)


def _lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestSeverity:
    def test_security_events_are_high(self):
        assert severity_for(EventType.BRUTE_FORCE_ATTEMPT) is Severity.HIGH
        assert severity_for(EventType.SUSPICIOUS_ACTIVITY) is Severity.HIGH
        assert severity_for(EventType.RATE_LIMIT_EXCEEDED) is Severity.HIGH

    def test_table_entries(self):
        assert severity_for(EventType.LOGIN_FAILURE) is Severity.HIGH
        assert severity_for(EventType.USER_REGISTRATION) is Severity.MEDIUM
        assert severity_for(EventType.PASSWORD_CHANGE) is Severity.MEDIUM
        assert severity_for(EventType.LOGIN_SUCCESS) is Severity.LOW


class TestRecord:
    def test_writes_json_line(self, audit):
        entry = audit.log_login_failure("a@example.com", "10.0.0.1", "pytest", "Invalid email or password")

        lines = _lines(audit.path)
        assert lines == [entry]
        assert entry["eventType"] == "LOGIN_FAILURE"
        assert entry["severity"] == "HIGH"
        assert entry["email"] == "a@example.com"
        assert entry["ip"] == "10.0.0.1"
        assert datetime.fromisoformat(entry["timestamp"]).tzinfo is not None

    def test_brute_force_event_name(self, audit):
        entry = audit.log_brute_force_attempt("10.0.0.1", "a@example.com", 5)
        assert entry["eventType"] == "SECURITY_BRUTE_FORCE_ATTEMPT"
        assert entry["severity"] == "HIGH"

    def test_unwritable_path_does_not_raise(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        broken = AuditLogger(blocker / "audit.log")
        entry = broken.log_logout("user-1", "10.0.0.1")
        assert entry["eventType"] == "LOGOUT"


class TestRotation:
    def test_oversized_file_rotates_to_dot_one(self, tmp_path):
        audit = AuditLogger(tmp_path / "audit.log", max_bytes=100, max_files=5)
        audit.path.write_text("x" * 101 + "\n", encoding="utf-8")

        audit.log_logout("user-1", "10.0.0.1")

        rotated = tmp_path / "audit.log.1"
        assert rotated.exists()
        assert rotated.read_text(encoding="utf-8").startswith("x" * 101)
        lines = _lines(audit.path)
        assert len(lines) == 1
        assert lines[0]["eventType"] == "LOGOUT"

    def test_file_at_limit_does_not_rotate(self, tmp_path):
        audit = AuditLogger(tmp_path / "audit.log", max_bytes=100, max_files=5)
        audit.path.write_text("x" * 99 + "\n", encoding="utf-8")
        audit.log_logout("user-1", "10.0.0.1")
        assert not (tmp_path / "audit.log.1").exists()

    def test_shift_and_drop_oldest(self, tmp_path):
        audit = AuditLogger(tmp_path / "audit.log", max_bytes=10, max_files=3)
        (tmp_path / "audit.log.1").write_text("one\n")
        (tmp_path / "audit.log.2").write_text("two\n")
        audit.path.write_text("current-content\n")

        audit.log_logout("user-1", "10.0.0.1")

        assert (tmp_path / "audit.log.1").read_text() == "current-content\n"
        assert (tmp_path / "audit.log.2").read_text() == "one\n"
        assert not (tmp_path / "audit.log.3").exists()


class TestQuery:
    def test_filters_and_order(self, audit):
        audit.log_login_attempt("a@example.com", "10.0.0.1")
        audit.log_login_failure("a@example.com", "10.0.0.1", reason="bad")
        audit.log_login_failure("b@example.com", "10.0.0.2", reason="bad")

        failures = audit.query(event_type=EventType.LOGIN_FAILURE)
        assert [e["email"] for e in failures] == ["b@example.com", "a@example.com"]

        by_ip = audit.query(ip="10.0.0.1")
        assert {e["eventType"] for e in by_ip} == {"LOGIN_ATTEMPT", "LOGIN_FAILURE"}

        high = audit.query(severity="high")
        assert len(high) == 2

    def test_user_and_date_filters(self, audit):
        audit.log_logout("user-1", "10.0.0.1")
        audit.log_logout("user-2", "10.0.0.1")

        assert len(audit.query(user_id="user-1")) == 1
        tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        assert audit.query(start_date=tomorrow) == []

    def test_limit(self, audit):
        for i in range(5):
            audit.log_logout(f"user-{i}", "10.0.0.1")
        assert len(audit.query(limit=2)) == 2
        assert len(audit.query(limit=None)) == 5

    def test_skips_malformed_lines(self, audit):
        audit.log_logout("user-1", "10.0.0.1")
        with audit.path.open("a", encoding="utf-8") as fh:
            fh.write("not json\n")
        assert len(audit.query()) == 1

    def test_missing_file_returns_empty(self, tmp_path):
        assert AuditLogger(tmp_path / "none" / "audit.log").query() == []
