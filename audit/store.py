"""
audit/store.py -- Append-only audit trail in newline-delimited JSON.

Each record is one JSON object per line:

    {"timestamp": "...", "eventType": "LOGIN_FAILURE", ...details, "severity": "HIGH"}

and is mirrored to the "storefront.audit" logger at a level derived from the
event type.

Rotation: before every append, an active file larger than max_bytes is
shifted out. audit.log.4 is deleted, .3 -> .4, .2 -> .3, .1 -> .2, and the
active file becomes audit.log.1. Appending then continues on a fresh file.

record() never raises. A failed write or rotation is logged and the
request that triggered it carries on.

query() reads the active file only; rotated files are history.

Usage:
    audit = AuditLogger("logs/audit.log")
    audit.log_login_failure(email, ip, user_agent, "Invalid email or password")
    entries = audit.query(event_type=EventType.LOGIN_FAILURE, limit=50)
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from audit.models import EventType, Severity, log_level_for, severity_for

logger = logging.getLogger("storefront.audit")

_DEFAULT_MAX_BYTES = 10 * 1024 * 1024
_DEFAULT_MAX_FILES = 5

DateLike = Union[datetime, str, None]


def _parse_ts(value: DateLike) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class AuditLogger:
    def __init__(
        self,
        path: Union[str, Path],
        max_bytes: int = _DEFAULT_MAX_BYTES,
        max_files: int = _DEFAULT_MAX_FILES,
    ) -> None:
        self.path = Path(path)
        self.max_bytes = max_bytes
        self.max_files = max_files
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.exception("Cannot create audit log directory %s", self.path.parent)

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def record(self, event_type: EventType, details: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Append one entry and return it. Never raises."""
        details = details or {}
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "eventType": event_type.value,
            **details,
            "severity": severity_for(event_type).value,
        }
        logger.log(log_level_for(event_type), "%s %s", event_type.value, json.dumps(details, default=str))
        line = json.dumps(entry, default=str) + "\n"
        with self._lock:
            self._rotate_if_needed()
            try:
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
            except OSError:
                logger.exception("Failed to write audit entry to %s", self.path)
        return entry

    def _rotated(self, index: int) -> Path:
        return self.path.with_name(f"{self.path.name}.{index}")

    def _rotate_if_needed(self) -> None:
        try:
            if not self.path.exists() or self.path.stat().st_size <= self.max_bytes:
                return
            oldest = self.max_files - 1
            for i in range(oldest, 0, -1):
                src = self._rotated(i)
                if not src.exists():
                    continue
                if i == oldest:
                    src.unlink()
                else:
                    src.rename(self._rotated(i + 1))
            self.path.rename(self._rotated(1))
            logger.info("Audit log rotated: %s", self.path)
        except OSError:
            logger.exception("Audit log rotation failed for %s", self.path)

    # ------------------------------------------------------------------
    # Event helpers
    # ------------------------------------------------------------------

    def log_login_attempt(self, email: str, ip: str, user_agent: str = "") -> dict:
        return self.record(EventType.LOGIN_ATTEMPT, {"email": email, "ip": ip, "userAgent": user_agent})

    def log_login_success(self, user_id: str, email: str, ip: str, user_agent: str = "") -> dict:
        return self.record(
            EventType.LOGIN_SUCCESS, {"userId": user_id, "email": email, "ip": ip, "userAgent": user_agent}
        )

    def log_login_failure(self, email: str, ip: str, user_agent: str = "", reason: str = "") -> dict:
        return self.record(
            EventType.LOGIN_FAILURE, {"email": email, "ip": ip, "userAgent": user_agent, "reason": reason}
        )

    def log_logout(self, user_id: str, ip: str) -> dict:
        return self.record(EventType.LOGOUT, {"userId": user_id, "ip": ip})

    def log_token_refresh(self, ip: str, user_id: Optional[str] = None) -> dict:
        return self.record(EventType.TOKEN_REFRESH, {"userId": user_id, "ip": ip})

    def log_registration(self, user_id: str, email: str, ip: str, user_agent: str = "") -> dict:
        return self.record(
            EventType.USER_REGISTRATION, {"userId": user_id, "email": email, "ip": ip, "userAgent": user_agent}
        )

    def log_password_change(self, user_id: str, ip: str) -> dict:
        return self.record(EventType.PASSWORD_CHANGE, {"userId": user_id, "ip": ip})

    def log_password_reset(self, user_id: str, ip: str) -> dict:
        return self.record(EventType.PASSWORD_RESET, {"userId": user_id, "ip": ip})

    def log_email_verification(self, user_id: str, ip: str) -> dict:
        return self.record(EventType.EMAIL_VERIFICATION, {"userId": user_id, "ip": ip})

    def log_profile_access(self, user_id: str, ip: str) -> dict:
        return self.record(EventType.PROFILE_ACCESS, {"userId": user_id, "ip": ip})

    def log_admin_action(
        self, action: str, performed_by: str, target_user_id: str, ip: str, details: Optional[dict] = None
    ) -> dict:
        return self.record(
            EventType.ADMIN_ACTION,
            {
                "action": action,
                "userId": performed_by,
                "targetUserId": target_user_id,
                "ip": ip,
                "details": details or {},
            },
        )

    def log_brute_force_attempt(self, ip: str, email: str, attempt_count: int) -> dict:
        return self.record(EventType.BRUTE_FORCE_ATTEMPT, {"ip": ip, "email": email, "attemptCount": attempt_count})

    def log_suspicious_activity(self, ip: str, user_agent: str, activity: str, details: Optional[dict] = None) -> dict:
        return self.record(
            EventType.SUSPICIOUS_ACTIVITY,
            {"ip": ip, "userAgent": user_agent, "activity": activity, "details": details or {}},
        )

    def log_rate_limit_exceeded(self, ip: str, endpoint: str) -> dict:
        return self.record(EventType.RATE_LIMIT_EXCEEDED, {"ip": ip, "endpoint": endpoint})

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def query(
        self,
        *,
        event_type: Union[EventType, str, None] = None,
        severity: Union[Severity, str, None] = None,
        user_id: Optional[str] = None,
        ip: Optional[str] = None,
        start_date: DateLike = None,
        end_date: DateLike = None,
        limit: Optional[int] = 100,
    ) -> list[dict[str, Any]]:
        """Return matching entries from the active file, newest first.

        Malformed lines are skipped. limit=None returns every match.
        """
        event_value = event_type.value if isinstance(event_type, EventType) else event_type
        severity_value = severity.value if isinstance(severity, Severity) else (severity or "").upper()
        start = _parse_ts(start_date)
        end = _parse_ts(end_date)

        try:
            with self._lock, self.path.open("r", encoding="utf-8") as fh:
                lines = fh.readlines()
        except FileNotFoundError:
            return []
        except OSError:
            logger.exception("Failed to read audit log %s", self.path)
            return []

        matched: list[tuple[datetime, dict]] = []
        for line in reversed(lines):
            try:
                entry = json.loads(line)
            except ValueError:
                continue
            if not isinstance(entry, dict):
                continue
            ts = _parse_ts(entry.get("timestamp"))
            if ts is None:
                continue
            if event_value and entry.get("eventType") != event_value:
                continue
            if severity_value and entry.get("severity") != severity_value:
                continue
            if user_id and entry.get("userId") != user_id:
                continue
            if ip and entry.get("ip") != ip:
                continue
            if start and ts < start:
                continue
            if end and ts > end:
                continue
            matched.append((ts, entry))

        matched.sort(key=lambda pair: pair[0], reverse=True)
        entries = [entry for _, entry in matched]
        return entries if limit is None else entries[:limit]
