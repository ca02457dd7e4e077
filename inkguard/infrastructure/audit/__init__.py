"""
Security event logging infrastructure.

Append-only event stream and alert sink shared by the authorization,
identity validation and anomaly detection code paths.
"""

from inkguard.infrastructure.audit.security_event_log import (
    ObservabilityFailure,
    SecurityEventLog,
    security_event_log,
)

__all__ = ["ObservabilityFailure", "SecurityEventLog", "security_event_log"]
