"""
Persistence for security events (append-only) and security alerts.
"""

import json
import uuid
from datetime import datetime

from inkguard.config import settings
from inkguard.db.helpers import execute_query, fetch_all, fetch_val
from inkguard.models.domain.security_domain import SecurityAlert, SecurityEvent


class SecurityEventRepository:
    """Insert-only writes and windowed reads over security_events/alerts."""

    async def insert_event(self, event: SecurityEvent) -> str:
        event_id = str(uuid.uuid4())
        query = """
            INSERT INTO security_events (
                id, event_type, subject_id, target_id, resource_ref,
                severity, metadata, environment, occurred_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                event_id,
                event.event_type,
                event.subject_id,
                event.target_id,
                event.resource_ref,
                event.severity,
                json.dumps(event.metadata, default=str),
                settings.environment,
                event.timestamp,
            ),
        )
        return event_id

    async def insert_alert(self, alert: SecurityAlert) -> str:
        alert_id = str(uuid.uuid4())
        query = """
            INSERT INTO security_alerts (
                id, alert_type, severity, subject_id, evidence, status, raised_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s)
        """
        await execute_query(
            query,
            (
                alert_id,
                alert.alert_type,
                alert.severity,
                alert.subject_id,
                json.dumps(alert.evidence_summary, default=str),
                alert.status,
                alert.timestamp,
            ),
        )
        return alert_id

    async def fetch_events_since(self, since: datetime, limit: int) -> list[SecurityEvent]:
        """Newest first, at most `limit` rows."""
        query = """
            SELECT event_type, subject_id, target_id, resource_ref,
                   severity, metadata, occurred_at AS timestamp
            FROM security_events
            WHERE occurred_at >= %s
            ORDER BY occurred_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (since, limit))
        return [
            SecurityEvent(**{**row, "metadata": row.get("metadata") or {}}) for row in rows
        ]

    async def count_events_since(self, since: datetime) -> int:
        query = "SELECT COUNT(*) AS total FROM security_events WHERE occurred_at >= %s"
        return int(await fetch_val(query, (since,)) or 0)


security_event_repository = SecurityEventRepository()
