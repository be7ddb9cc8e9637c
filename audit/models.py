"""
audit/models.py -- Audit event vocabulary and the static severity table.

Severity is derived from the event type alone; callers cannot override it.
Every SECURITY_* event is HIGH.

Layer rule: no imports from api/, auth/, vendors/, or cache/.
"""

from __future__ import annotations

import logging
from enum import Enum


class EventType(str, Enum):
    LOGIN_ATTEMPT = "LOGIN_ATTEMPT"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    USER_REGISTRATION = "USER_REGISTRATION"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PASSWORD_RESET = "PASSWORD_RESET"
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PROFILE_ACCESS = "PROFILE_ACCESS"
    ADMIN_ACTION = "ADMIN_ACTION"
    BRUTE_FORCE_ATTEMPT = "SECURITY_BRUTE_FORCE_ATTEMPT"
    SUSPICIOUS_ACTIVITY = "SECURITY_SUSPICIOUS_ACTIVITY"
    RATE_LIMIT_EXCEEDED = "SECURITY_RATE_LIMIT_EXCEEDED"

    @property
    def is_security(self) -> bool:
        return self.value.startswith("SECURITY_")


class Severity(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


_SEVERITY: dict[EventType, Severity] = {
    EventType.LOGIN_FAILURE: Severity.HIGH,
    EventType.USER_REGISTRATION: Severity.MEDIUM,
    EventType.PASSWORD_CHANGE: Severity.MEDIUM,
    EventType.ADMIN_ACTION: Severity.MEDIUM,
}

# Mirror level on the storefront.audit logger.
_LOG_LEVEL: dict[EventType, int] = {
    EventType.LOGIN_FAILURE: logging.ERROR,
    EventType.BRUTE_FORCE_ATTEMPT: logging.ERROR,
    EventType.SUSPICIOUS_ACTIVITY: logging.ERROR,
    EventType.RATE_LIMIT_EXCEEDED: logging.WARNING,
    EventType.USER_REGISTRATION: logging.WARNING,
}


def severity_for(event_type: EventType) -> Severity:
    if event_type.is_security:
        return Severity.HIGH
    return _SEVERITY.get(event_type, Severity.LOW)


def log_level_for(event_type: EventType) -> int:
    return _LOG_LEVEL.get(event_type, logging.INFO)
