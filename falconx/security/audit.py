"""In-memory security audit trail.

Every event is written to the security log stream and kept in a bounded
buffer. Repeat offenders accumulate weighted points per IP and are flagged as
suspicious once they reach ``SUSPICIOUS_THRESHOLD``.
"""

from __future__ import annotations

from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from falconx.logging import get_security_logger
from falconx.metrics import record_security_event

SUSPICIOUS_THRESHOLD = 10


class EventType(StrEnum):
    AUTH_FAILURE = "auth_failure"
    RATE_LIMIT = "rate_limit"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


SEVERITY_WEIGHTS = {
    Severity.LOW: 1,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


@dataclass
class SecurityEvent:
    type: EventType
    severity: Severity
    ip: str
    user_agent: str
    endpoint: str
    user_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class SecurityAuditor:
    """Bounded event buffer with per-IP suspicion tracking."""

    def __init__(
        self,
        max_events: int = 10000,
        retention: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.retention = retention
        self.clock = clock
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._ip_attempts: dict[str, int] = {}
        self._suspicious_ips: set[str] = set()
        self._logger = get_security_logger()

    def log_event(
        self,
        event_type: EventType,
        severity: Severity,
        *,
        ip: str,
        user_agent: str = "unknown",
        endpoint: str = "",
        user_id: str | None = None,
        **details: Any,
    ) -> SecurityEvent:
        event = SecurityEvent(
            type=event_type,
            severity=severity,
            ip=ip,
            user_agent=user_agent,
            endpoint=endpoint,
            user_id=user_id,
            details=details,
            timestamp=self.clock(),
        )
        self._events.append(event)
        self._track_ip(ip, event_type, severity)
        record_security_event(event_type.value)

        log = self._logger.error if severity == Severity.CRITICAL else self._logger.warning
        log(
            f"{event_type.value}_{severity.value}",
            event_type=event_type.value,
            severity=severity.value,
            ip=ip,
            endpoint=endpoint,
            user_id=user_id,
            **details,
        )
        return event

    def _track_ip(self, ip: str, event_type: EventType, severity: Severity) -> None:
        attempts = self._ip_attempts.get(ip, 0) + SEVERITY_WEIGHTS[severity]
        self._ip_attempts[ip] = attempts
        if attempts >= SUSPICIOUS_THRESHOLD and ip not in self._suspicious_ips:
            self._suspicious_ips.add(ip)
            self._logger.warning(
                "ip_marked_suspicious", ip=ip, attempts=attempts, event_type=event_type.value
            )

    # Helpers for the event types raised by the request pipeline

    def auth_failure(self, ip: str, user_agent: str, endpoint: str, **details: Any) -> None:
        self.log_event(
            EventType.AUTH_FAILURE,
            Severity.HIGH,
            ip=ip,
            user_agent=user_agent,
            endpoint=endpoint,
            **details,
        )

    def rate_limit(self, ip: str, user_agent: str, endpoint: str, **details: Any) -> None:
        self.log_event(
            EventType.RATE_LIMIT,
            Severity.MEDIUM,
            ip=ip,
            user_agent=user_agent,
            endpoint=endpoint,
            **details,
        )

    def unauthorized_access(
        self,
        ip: str,
        user_agent: str,
        endpoint: str,
        user_id: str | None = None,
        **details: Any,
    ) -> None:
        self.log_event(
            EventType.UNAUTHORIZED_ACCESS,
            Severity.HIGH,
            ip=ip,
            user_agent=user_agent,
            endpoint=endpoint,
            user_id=user_id,
            **details,
        )

    def suspicious_activity(self, ip: str, user_agent: str, endpoint: str, **details: Any) -> None:
        self.log_event(
            EventType.SUSPICIOUS_ACTIVITY,
            Severity.MEDIUM,
            ip=ip,
            user_agent=user_agent,
            endpoint=endpoint,
            **details,
        )

    # Queries

    def is_suspicious_ip(self, ip: str) -> bool:
        return ip in self._suspicious_ips

    def ip_attempts(self, ip: str) -> int:
        return self._ip_attempts.get(ip, 0)

    def reset_ip(self, ip: str) -> None:
        """Forget an IP's history (false positives)."""
        self._ip_attempts.pop(ip, None)
        self._suspicious_ips.discard(ip)

    def recent_events(
        self,
        event_type: EventType | None = None,
        ip: str | None = None,
        limit: int | None = None,
    ) -> list[SecurityEvent]:
        """Events newest first, optionally filtered."""
        events = [
            e
            for e in self._events
            if (event_type is None or e.type == event_type) and (ip is None or e.ip == ip)
        ]
        if limit:
            events = events[-limit:]
        return events[::-1]

    def metrics(self) -> dict[str, Any]:
        return {
            "total_events": len(self._events),
            "events_by_type": dict(Counter(e.type.value for e in self._events)),
            "events_by_severity": dict(Counter(e.severity.value for e in self._events)),
            "unique_ips": len({e.ip for e in self._events}),
            "suspicious_ips": sorted(self._suspicious_ips),
            "last_updated": self.clock().isoformat(),
        }

    def cleanup(self) -> int:
        """Drop events past retention and forget IPs with no recent activity."""
        cutoff = self.clock() - self.retention
        before = len(self._events)
        kept = [e for e in self._events if e.timestamp > cutoff]
        self._events.clear()
        self._events.extend(kept)

        recent_ips = {e.ip for e in kept}
        for ip in list(self._ip_attempts):
            if ip not in recent_ips:
                self._ip_attempts.pop(ip, None)
                self._suspicious_ips.discard(ip)

        removed = before - len(kept)
        if removed:
            self._logger.info("security_audit_cleanup", removed=removed)
        return removed
