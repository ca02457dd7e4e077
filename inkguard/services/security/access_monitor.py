"""
Resource access trigger: evaluate a portfolio view and log the outcome.
"""

from typing import Any

from inkguard.infrastructure.audit import SecurityEventLog, security_event_log
from inkguard.models.domain.security_domain import Severity
from inkguard.services.authorization.portfolio_access import (
    AccessDecision,
    PortfolioAccessEvaluator,
    portfolio_access_evaluator,
)


def _event_for(decision: AccessDecision) -> tuple[str, Severity]:
    if decision.degraded:
        return "authorization_backend_unavailable", "medium"
    if decision.granted:
        return "portfolio_access_granted", "low"
    return "unauthorized_portfolio_access", "high"


class PortfolioAccessMonitor:
    """Runs the evaluator and appends one security event per decision."""

    def __init__(
        self,
        evaluator: PortfolioAccessEvaluator | None = None,
        event_log: SecurityEventLog | None = None,
    ):
        self.evaluator = evaluator or portfolio_access_evaluator
        self.event_log = event_log or security_event_log

    async def handle_access_requested(
        self,
        subject_id: str | None,
        artist_id: str,
        resource_ref: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AccessDecision:
        decision = await self.evaluator.evaluate(subject_id, artist_id)
        event_type, severity = _event_for(decision)

        await self.event_log.record(
            event_type,
            severity=severity,
            subject_id=subject_id,
            target_id=artist_id,
            resource_ref=resource_ref or f"portfolio:{artist_id}",
            metadata={**(metadata or {}), "reason": decision.reason},
        )
        return decision


portfolio_access_monitor = PortfolioAccessMonitor()
