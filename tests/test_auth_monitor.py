"""Unit tests for audit/monitor.py -- AuthMonitor thresholds and reports.

Covers:
- 3rd failure for an (ip, email) flags the IP and audits suspicious activity
- 5th failure audits a SECURITY_BRUTE_FORCE_ATTEMPT
- a success resets the counter; the suspicious IP set is never pruned
- cleanup() drops counters below the suspicious threshold only
- rate limit violations are audited
- generate_report() summarises the audit log
"""

import pytest

from audit.models import EventType
from audit.monitor import AuthMonitor
from audit.store import AuditLogger

IP = "203.0.113.7"
EMAIL = "victim@example.com"


@pytest.fixture
def audit(tmp_path) -> AuditLogger:
    return AuditLogger(tmp_path / "audit.log")


@pytest.fixture
def monitor(audit) -> AuthMonitor:
    return AuthMonitor(audit)


def _events(audit: AuditLogger, event_type: EventType) -> list[dict]:
    return audit.query(event_type=event_type, limit=None)


class TestLoginFailures:
    def test_counts_per_ip_and_email(self, monitor):
        assert monitor.track_login_failure(IP, EMAIL) == 1
        assert monitor.track_login_failure(IP, EMAIL) == 2
        assert monitor.track_login_failure(IP, "other@example.com") == 1
        assert monitor.get_failure_stats(IP, EMAIL) == {"count": 2, "isBlocked": False}

    def test_third_failure_flags_ip(self, monitor, audit):
        for _ in range(2):
            monitor.track_login_failure(IP, EMAIL)
        assert not monitor.is_suspicious_ip(IP)
        assert _events(audit, EventType.SUSPICIOUS_ACTIVITY) == []

        monitor.track_login_failure(IP, EMAIL)
        assert monitor.is_suspicious_ip(IP)
        suspicious = _events(audit, EventType.SUSPICIOUS_ACTIVITY)
        assert len(suspicious) == 1
        assert suspicious[0]["activity"] == "MULTIPLE_LOGIN_FAILURES"

    def test_fifth_failure_records_brute_force(self, monitor, audit):
        for _ in range(4):
            monitor.track_login_failure(IP, EMAIL, "Invalid email or password")
        assert _events(audit, EventType.BRUTE_FORCE_ATTEMPT) == []

        monitor.track_login_failure(IP, EMAIL, "Invalid email or password")
        brute = _events(audit, EventType.BRUTE_FORCE_ATTEMPT)
        assert len(brute) == 1
        assert brute[0]["eventType"] == "SECURITY_BRUTE_FORCE_ATTEMPT"
        assert brute[0]["severity"] == "HIGH"
        assert brute[0]["attemptCount"] == 5
        assert monitor.get_failure_stats(IP, EMAIL)["isBlocked"] is True

    def test_reset_clears_counter_but_not_suspicious_ip(self, monitor):
        for _ in range(3):
            monitor.track_login_failure(IP, EMAIL)
        monitor.reset_failure_count(IP, EMAIL)

        assert monitor.get_failure_stats(IP, EMAIL)["count"] == 0
        assert monitor.is_suspicious_ip(IP)


class TestCleanup:
    def test_drops_only_low_counts(self, monitor):
        monitor.track_login_failure("10.0.0.1", EMAIL)
        for _ in range(3):
            monitor.track_login_failure("10.0.0.2", EMAIL)

        assert monitor.cleanup() == 1
        assert monitor.get_failure_stats("10.0.0.1", EMAIL)["count"] == 0
        assert monitor.get_failure_stats("10.0.0.2", EMAIL)["count"] == 3
        assert monitor.is_suspicious_ip("10.0.0.2")


class TestRateLimitAndReports:
    def test_rate_limit_violation_is_audited(self, monitor, audit):
        monitor.track_rate_limit_violation(IP, "/api/auth/login")
        events = _events(audit, EventType.RATE_LIMIT_EXCEEDED)
        assert len(events) == 1
        assert events[0]["endpoint"] == "/api/auth/login"

    def test_generate_report(self, monitor, audit):
        audit.log_login_attempt(EMAIL, IP)
        audit.log_login_failure(EMAIL, IP, reason="bad")
        audit.log_login_attempt(EMAIL, IP)
        audit.log_login_success("user-1", EMAIL, IP)
        monitor.track_rate_limit_violation(IP, "/api/auth/login")

        report = monitor.generate_report(60 * 60)

        summary = report["summary"]
        assert summary["loginAttempts"] == 2
        assert summary["loginFailures"] == 1
        assert summary["loginSuccesses"] == 1
        assert summary["suspiciousActivities"] == 1
        assert report["topFailingIPs"] == [{"ip": IP, "failures": 1}]
        assert report["eventCounts"]["LOGIN_ATTEMPT"] == 2
        assert set(report["period"]) == {"start", "end"}

    def test_health_status(self, monitor):
        monitor.track_login_failure(IP, EMAIL)
        health = monitor.get_health_status()
        assert health["status"] == "healthy"
        assert health["failureCounts"] == 1
        assert health["suspiciousIPs"] == 0
