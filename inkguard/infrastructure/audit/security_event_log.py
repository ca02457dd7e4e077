"""
SecurityEventLog - Append-only security event stream and alert sink.

Every monitored operation (portfolio access decisions, identity validation
failures, storage uploads, ...) is appended here, and the anomaly detector
writes its alerts through the same class.

Usage:
    from inkguard.infrastructure.audit import security_event_log

    await security_event_log.record(
        "unauthorized_portfolio_access",
        severity="high",
        subject_id=subject_id,
        target_id=artist_id,
        resource_ref=f"portfolio:{artist_id}",
    )

Design Principles:
- Write to both database (immutable) and structured logs (searchable)
- Never fail the triggering operation if the append fails
- High/critical entries are logged at error level for the external
  reporting pipeline
"""

from typing import Any

from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.domain.security_domain import SecurityAlert, SecurityEvent, Severity
from inkguard.repositories.security_repository import (
    SecurityEventRepository,
    security_event_repository,
)

logger = get_logger(__name__)


class ObservabilityFailure(Exception):
    """An event or alert could not be persisted. Logged, never propagated."""

    def __init__(self, message: str, kind: str):
        super().__init__(message)
        self.kind = kind


class SecurityEventLog:
    """
    Fail-open writer for security events and alerts.

    append() and raise_alert() return the new row id, or None when the write
    failed. They never raise.
    """

    def __init__(self, repository: SecurityEventRepository | None = None):
        self.repository = repository or security_event_repository

    async def append(self, event: SecurityEvent) -> str | None:
        """
        Append an event to the log.

        Args:
            event: Event to persist

        Returns:
            Event id, or None if the append failed
        """
        if event.is_elevated:
            logger.error(
                "Security event",
                security_event=event.event_type,
                severity=event.severity,
                subject_id=event.subject_id,
                target_id=event.target_id,
                resource_ref=event.resource_ref,
            )
        else:
            logger.info(
                "Security event",
                security_event=event.event_type,
                severity=event.severity,
                subject_id=event.subject_id,
            )

        try:
            return await self.repository.insert_event(event)
        except Exception as e:
            self._report_failure(
                ObservabilityFailure(str(e), kind="event"),
                error_type=type(e).__name__,
                fallback_data=event.model_dump(mode="json"),
            )
            return None

    async def record(
        self,
        event_type: str,
        *,
        severity: Severity = "low",
        subject_id: str | None = None,
        target_id: str | None = None,
        resource_ref: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Convenience wrapper building the SecurityEvent in place."""
        try:
            event = SecurityEvent(
                event_type=event_type,
                severity=severity,
                subject_id=subject_id,
                target_id=target_id,
                resource_ref=resource_ref,
                metadata=metadata or {},
            )
        except Exception as e:
            self._report_failure(
                ObservabilityFailure(str(e), kind="event"),
                error_type=type(e).__name__,
                fallback_data={"event_type": event_type, "severity": severity},
            )
            return None
        return await self.append(event)

    async def raise_alert(self, alert: SecurityAlert) -> str | None:
        """
        Persist a security alert and log it for the external alerting pipeline.

        Returns:
            Alert id, or None if the write failed
        """
        logger.error(
            "Security alert",
            alert_type=alert.alert_type,
            severity=alert.severity,
            subject_id=alert.subject_id,
            evidence=alert.evidence_summary,
        )

        try:
            return await self.repository.insert_alert(alert)
        except Exception as e:
            self._report_failure(
                ObservabilityFailure(str(e), kind="alert"),
                error_type=type(e).__name__,
                fallback_data=alert.model_dump(mode="json"),
            )
            return None

    @staticmethod
    def _report_failure(failure: ObservabilityFailure, **context: Any) -> None:
        # Include enough context to recreate the row manually if needed
        logger.error(
            "Failed to write security log entry",
            kind=failure.kind,
            error=str(failure),
            **context,
        )


# Global singleton instance
security_event_log = SecurityEventLog()
