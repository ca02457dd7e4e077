"""
Read-only access to customer/artist relationship records.

All three tables are keyed by (customer_id, artist_id) and hold at most one
live row per pair. Any storage failure surfaces as StorageUnavailable so the
evaluator can tell an outage apart from a legitimate "no record".
"""

from inkguard.db.helpers import DatabaseError, fetch_one
from inkguard.models.domain.relationship_domain import ConfirmedBooking, Inquiry, MatchingHistory


class StorageUnavailable(Exception):
    """Raised when the relationship store cannot answer a lookup."""

    def __init__(self, message: str, lookup: str):
        super().__init__(message)
        self.lookup = lookup


class RelationshipRepository:
    """Lookups against the externally owned relationship tables."""

    async def get_matching_history(
        self, customer_id: str, artist_id: str
    ) -> MatchingHistory | None:
        row = await self._fetch(
            "matching_history",
            """
            SELECT customer_id, artist_id
            FROM matching_history
            WHERE customer_id = %s AND artist_id = %s
            """,
            (customer_id, artist_id),
        )
        return MatchingHistory(**row) if row else None

    async def get_inquiry(self, customer_id: str, artist_id: str) -> Inquiry | None:
        row = await self._fetch(
            "inquiry",
            """
            SELECT customer_id, artist_id, status
            FROM inquiries
            WHERE customer_id = %s AND artist_id = %s
            """,
            (customer_id, artist_id),
        )
        return Inquiry(**row) if row else None

    async def get_confirmed_booking(
        self, customer_id: str, artist_id: str
    ) -> ConfirmedBooking | None:
        row = await self._fetch(
            "confirmed_booking",
            """
            SELECT customer_id, artist_id, status
            FROM confirmed_bookings
            WHERE customer_id = %s AND artist_id = %s
            """,
            (customer_id, artist_id),
        )
        return ConfirmedBooking(**row) if row else None

    async def _fetch(self, lookup: str, query: str, params: tuple) -> dict | None:
        try:
            return await fetch_one(query, params)
        except (DatabaseError, RuntimeError) as e:
            # RuntimeError covers an uninitialized or closed pool
            raise StorageUnavailable(f"{lookup} lookup failed: {e}", lookup=lookup) from e


relationship_repository = RelationshipRepository()
