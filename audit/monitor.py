"""
audit/monitor.py -- In-memory authentication failure tracking and alerting.

Counts login failures per (ip, email). Two independent thresholds act on
every failure, so both can fire on the same event:

  >= suspicious_threshold (3)  IP joins the suspicious set and a
                               SECURITY_SUSPICIOUS_ACTIVITY event is audited.
  >= brute_force_threshold (5) "BRUTE FORCE ALERT" logged at ERROR and a
                               SECURITY_BRUTE_FORCE_ATTEMPT event is audited.

The monitor does not observe successful logins; the login route calls
reset_failure_count() itself.

cleanup() runs every time_window seconds from the background loop in
api/main.py and drops counters below the suspicious threshold. The
suspicious IP set is never pruned.

Reports are computed from the audit log, not from the in-memory counters.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from audit.models import EventType
from audit.store import AuditLogger

logger = logging.getLogger("storefront.audit.monitor")


class AuthMonitor:
    def __init__(
        self,
        audit: AuditLogger,
        *,
        brute_force_threshold: int = 5,
        suspicious_threshold: int = 3,
        time_window: int = 15 * 60,
        suspicious_activity_alert_threshold: int = 10,
    ) -> None:
        self.audit = audit
        self.brute_force_threshold = brute_force_threshold
        self.suspicious_threshold = suspicious_threshold
        self.time_window = time_window
        self.suspicious_activity_alert_threshold = suspicious_activity_alert_threshold
        self._failures: dict[str, int] = {}
        self._suspicious_ips: set[str] = set()
        self._activity_counts: Counter[str] = Counter()
        self._last_cleanup = datetime.now(timezone.utc)
        self._lock = threading.Lock()

    @staticmethod
    def _key(ip: str, email: str) -> str:
        return f"{ip}:{email}"

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_login_failure(self, ip: str, email: str, reason: str = "") -> int:
        """Count one failure and fire any threshold it crosses. Returns the new count."""
        with self._lock:
            key = self._key(ip, email)
            count = self._failures.get(key, 0) + 1
            self._failures[key] = count
            if count >= self.suspicious_threshold:
                self._suspicious_ips.add(ip)

        if count >= self.brute_force_threshold:
            logger.error("BRUTE FORCE ALERT: %d failed logins for %s from %s", count, email, ip)
            self.audit.log_brute_force_attempt(ip, email, count)
        if count >= self.suspicious_threshold:
            self.audit.log_suspicious_activity(
                ip,
                "",
                "MULTIPLE_LOGIN_FAILURES",
                {"email": email, "failureCount": count, "reason": reason},
            )
        return count

    def reset_failure_count(self, ip: str, email: str) -> None:
        with self._lock:
            self._failures.pop(self._key(ip, email), None)

    def track_rate_limit_violation(self, ip: str, endpoint: str) -> None:
        self.audit.log_rate_limit_exceeded(ip, endpoint)
        if self.is_suspicious_ip(ip):
            logger.warning("Rate limit exceeded by suspicious IP %s on %s", ip, endpoint)

    def track_suspicious_activity(
        self, ip: str, user_agent: str, activity: str, details: Optional[dict[str, Any]] = None
    ) -> None:
        self.audit.log_suspicious_activity(ip, user_agent, activity, details)
        with self._lock:
            self._activity_counts[ip] += 1
            count = self._activity_counts[ip]
        if count >= self.suspicious_activity_alert_threshold:
            logger.error("SUSPICIOUS ACTIVITY ALERT: %d events from %s (latest: %s)", count, ip, activity)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get_failure_stats(self, ip: str, email: str) -> dict[str, Any]:
        with self._lock:
            count = self._failures.get(self._key(ip, email), 0)
        return {"count": count, "isBlocked": count >= self.brute_force_threshold}

    def is_suspicious_ip(self, ip: str) -> bool:
        with self._lock:
            return ip in self._suspicious_ips

    def cleanup(self) -> int:
        """Drop counters below the suspicious threshold. Returns the number dropped."""
        with self._lock:
            stale = [k for k, v in self._failures.items() if v < self.suspicious_threshold]
            for key in stale:
                del self._failures[key]
            self._activity_counts.clear()
            self._last_cleanup = datetime.now(timezone.utc)
        if stale:
            logger.info("Auth monitor cleanup dropped %d failure counters", len(stale))
        return len(stale)

    def generate_report(self, time_range_seconds: int = 24 * 60 * 60) -> dict[str, Any]:
        end = datetime.now(timezone.utc)
        start = end - timedelta(seconds=time_range_seconds)
        entries = self.audit.query(start_date=start, end_date=end, limit=None)

        event_counts = Counter(e.get("eventType") for e in entries)
        failing_ips = Counter(
            e.get("ip") for e in entries if e.get("eventType") == EventType.LOGIN_FAILURE.value and e.get("ip")
        )
        security_events = [e for e in entries if str(e.get("eventType", "")).startswith("SECURITY_")]

        return {
            "period": {"start": start.isoformat(), "end": end.isoformat()},
            "summary": {
                "totalEvents": len(entries),
                "loginAttempts": event_counts[EventType.LOGIN_ATTEMPT.value],
                "loginSuccesses": event_counts[EventType.LOGIN_SUCCESS.value],
                "loginFailures": event_counts[EventType.LOGIN_FAILURE.value],
                "registrations": event_counts[EventType.USER_REGISTRATION.value],
                "suspiciousActivities": len(security_events),
            },
            "eventCounts": dict(event_counts),
            "topFailingIPs": [{"ip": ip, "failures": n} for ip, n in failing_ips.most_common(10)],
            "recentSuspiciousActivities": security_events[:10],
        }

    def get_health_status(self) -> dict[str, Any]:
        with self._lock:
            return {
                "status": "healthy",
                "failureCounts": len(self._failures),
                "suspiciousIPs": len(self._suspicious_ips),
                "lastCleanup": self._last_cleanup.isoformat(),
            }
