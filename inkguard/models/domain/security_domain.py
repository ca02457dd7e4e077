from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Severity = Literal["low", "medium", "high", "critical"]
AlertStatus = Literal["active", "acknowledged", "resolved"]

ELEVATED_SEVERITIES = frozenset({"high", "critical"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SecurityEvent(BaseModel):
    """Immutable entry in the security event log."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    subject_id: str | None = None
    target_id: str | None = None
    resource_ref: str | None = None
    severity: Severity = "low"
    timestamp: datetime = Field(default_factory=_utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_elevated(self) -> bool:
        return self.severity in ELEVATED_SEVERITIES

    @property
    def is_unauthorized_signal(self) -> bool:
        """Counts towards the multiple_unauthorized_attempts aggregate."""
        return "unauthorized" in self.event_type or self.is_elevated


class SecurityAlert(BaseModel):
    """Alert raised by the anomaly detector. Status is owned by operators."""

    alert_type: str
    severity: Severity
    subject_id: str | None = None
    evidence_summary: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
    status: AlertStatus = "active"
