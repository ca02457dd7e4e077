"""
Authorization Evaluator for artist portfolios.

Answers "may subject S view artist A's portfolio?" by walking the
relationship records in precedence order; the first grant wins:

    owner > matching history > active inquiry > completed booking

Lookups are lazy so a grant stops further reads. A storage failure anywhere
in the chain denies access (fail-closed) and is logged as an operational
fault, never as an ordinary denial.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from inkguard.infrastructure.observability.logging import get_logger
from inkguard.models.domain.relationship_domain import RelationshipRecord
from inkguard.repositories.relationship_repository import (
    RelationshipRepository,
    StorageUnavailable,
    relationship_repository,
)

logger = get_logger(__name__)

RelationshipLookup = Callable[[str, str], Awaitable[RelationshipRecord | None]]


@dataclass(slots=True, frozen=True)
class AccessDecision:
    """Outcome of one evaluation. Only `granted` is ever shown to the subject."""

    granted: bool
    reason: str
    degraded: bool = False


class PortfolioAccessEvaluator:
    """Relationship-based portfolio access decisions."""

    def __init__(self, repository: RelationshipRepository | None = None):
        self.repository = repository or relationship_repository

    def _lookups(self) -> list[RelationshipLookup]:
        # Order is the grant precedence
        return [
            self.repository.get_matching_history,
            self.repository.get_inquiry,
            self.repository.get_confirmed_booking,
        ]

    async def evaluate(self, subject_id: str | None, artist_id: str | None) -> AccessDecision:
        if not subject_id or not artist_id:
            return AccessDecision(granted=False, reason="missing_identity")

        if subject_id == artist_id:
            return AccessDecision(granted=True, reason="owner")

        try:
            for lookup in self._lookups():
                record = await lookup(subject_id, artist_id)
                if record is not None and record.grants_access():
                    return AccessDecision(granted=True, reason=record.kind)
        except StorageUnavailable as e:
            logger.error(
                "Portfolio permission check failed, denying access",
                subject_id=subject_id,
                artist_id=artist_id,
                lookup=e.lookup,
                error=str(e),
            )
            return AccessDecision(granted=False, reason="storage_unavailable", degraded=True)
        except Exception as e:
            logger.error(
                "Unexpected error in portfolio permission check, denying access",
                subject_id=subject_id,
                artist_id=artist_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return AccessDecision(granted=False, reason="evaluation_error", degraded=True)

        return AccessDecision(granted=False, reason="no_relationship")

    async def can_view_portfolio(self, subject_id: str | None, artist_id: str | None) -> bool:
        decision = await self.evaluate(subject_id, artist_id)
        return decision.granted


portfolio_access_evaluator = PortfolioAccessEvaluator()


async def can_view_portfolio(subject_id: str | None, artist_id: str | None) -> bool:
    """Check portfolio view permission with the default evaluator."""
    return await portfolio_access_evaluator.can_view_portfolio(subject_id, artist_id)
