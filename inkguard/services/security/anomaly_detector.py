"""
Windowed anomaly detection over the security event log.

Each scan is a stateless rescan of the most recent window:

1. fetch events newer than now - window, newest first, capped at max_events
2. aggregate per-subject counts and the number of unauthorized/elevated events
3. raise high_frequency_access for each subject above the frequency threshold
4. raise multiple_unauthorized_attempts when the unauthorized count is above
   its threshold

The fetch cap truncates analysis under load. When the cap is hit, the full
window is counted and the difference is reported as events_dropped so
operators can see how much was skipped.
"""

from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from inkguard.config import settings
from inkguard.infrastructure.audit import SecurityEventLog, security_event_log
from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.domain.security_domain import SecurityAlert, SecurityEvent
from inkguard.repositories.security_repository import (
    SecurityEventRepository,
    security_event_repository,
)

logger = get_logger(__name__)

HIGH_FREQUENCY_ACCESS = "high_frequency_access"
MULTIPLE_UNAUTHORIZED_ATTEMPTS = "multiple_unauthorized_attempts"


@dataclass(slots=True)
class EventPatterns:
    subject_counts: Counter = field(default_factory=Counter)
    unauthorized_count: int = 0
    events_analyzed: int = 0


@dataclass(slots=True)
class ScanResult:
    window_start: datetime
    events_analyzed: int
    events_dropped: int
    alerts: list[SecurityAlert]
    alerts_persisted: int


def aggregate_events(events: Iterable[SecurityEvent]) -> EventPatterns:
    patterns = EventPatterns()
    for event in events:
        patterns.events_analyzed += 1
        if event.subject_id:
            patterns.subject_counts[event.subject_id] += 1
        if event.is_unauthorized_signal:
            patterns.unauthorized_count += 1
    return patterns


def detect_anomalies(
    patterns: EventPatterns,
    *,
    frequency_threshold: int,
    unauthorized_threshold: int,
    window_label: str,
    now: datetime | None = None,
) -> list[SecurityAlert]:
    """Turn aggregates into alerts. Thresholds are exclusive (count > threshold)."""
    now = now or datetime.now(UTC)
    alerts = []

    for subject_id, count in patterns.subject_counts.most_common():
        if count <= frequency_threshold:
            break
        alerts.append(
            SecurityAlert(
                alert_type=HIGH_FREQUENCY_ACCESS,
                severity="high",
                subject_id=subject_id,
                evidence_summary={
                    "subject_id": subject_id,
                    "event_count": count,
                    "time_window": window_label,
                },
                timestamp=now,
            )
        )

    if patterns.unauthorized_count > unauthorized_threshold:
        alerts.append(
            SecurityAlert(
                alert_type=MULTIPLE_UNAUTHORIZED_ATTEMPTS,
                severity="critical",
                evidence_summary={
                    "attempt_count": patterns.unauthorized_count,
                    "time_window": window_label,
                },
                timestamp=now,
            )
        )

    return alerts


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AnomalyDetector:
    """Fetches the recent window, analyzes it and raises alerts best-effort."""

    def __init__(
        self,
        repository: SecurityEventRepository | None = None,
        event_log: SecurityEventLog | None = None,
        window: timedelta | None = None,
        max_events: int | None = None,
        frequency_threshold: int | None = None,
        unauthorized_threshold: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        config = settings.get_detector_config()
        self.repository = repository or security_event_repository
        self.event_log = event_log or security_event_log
        self.window = window or timedelta(minutes=config["window_minutes"])
        self.max_events = max_events or config["max_events"]
        self.frequency_threshold = frequency_threshold or config["frequency_threshold"]
        self.unauthorized_threshold = unauthorized_threshold or config["unauthorized_threshold"]
        self.clock = clock

    @property
    def window_label(self) -> str:
        return f"{int(self.window.total_seconds() // 60)}_minutes"

    async def scan(self) -> ScanResult:
        """
        Run one detection pass.

        Raises:
            DatabaseError: If the event fetch fails. Alert writes never raise.
        """
        now = self.clock()
        window_start = now - self.window

        events = await self.repository.fetch_events_since(window_start, self.max_events)
        events_dropped = await self._count_dropped(window_start, len(events))

        patterns = aggregate_events(events)
        alerts = detect_anomalies(
            patterns,
            frequency_threshold=self.frequency_threshold,
            unauthorized_threshold=self.unauthorized_threshold,
            window_label=self.window_label,
            now=now,
        )

        persisted = 0
        for alert in alerts:
            if await self.event_log.raise_alert(alert) is not None:
                persisted += 1

        return ScanResult(
            window_start=window_start,
            events_analyzed=patterns.events_analyzed,
            events_dropped=events_dropped,
            alerts=alerts,
            alerts_persisted=persisted,
        )

    async def _count_dropped(self, window_start: datetime, fetched: int) -> int:
        if fetched < self.max_events:
            return 0

        try:
            total = await self.repository.count_events_since(window_start)
        except Exception as e:
            logger.warning("Could not count events in window", error=str(e))
            return 0

        dropped = max(0, total - fetched)
        if dropped:
            logger.warning(
                "Anomaly detection window truncated",
                events_in_window=total,
                events_analyzed=fetched,
                events_dropped=dropped,
                max_events=self.max_events,
            )
        return dropped


anomaly_detector = AnomalyDetector()
