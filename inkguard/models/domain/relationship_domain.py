"""
Relationship records between a customer and an artist.

The matching and booking services own these rows; here they are read-only
facts that the portfolio access evaluator walks in precedence order.
"""

from dataclasses import dataclass

ACTIVE_INQUIRY_STATUSES = frozenset({"pending", "responded"})
COMPLETED_BOOKING_STATUS = "completed"


@dataclass(slots=True, frozen=True)
class MatchingHistory:
    """A past match. Existence alone grants access."""

    customer_id: str
    artist_id: str

    kind = "matching_history"

    def grants_access(self) -> bool:
        return True


@dataclass(slots=True, frozen=True)
class Inquiry:
    """Customer inquiry to an artist."""

    customer_id: str
    artist_id: str
    status: str

    kind = "inquiry"

    def grants_access(self) -> bool:
        return self.status in ACTIVE_INQUIRY_STATUSES


@dataclass(slots=True, frozen=True)
class ConfirmedBooking:
    """Booking between a customer and an artist."""

    customer_id: str
    artist_id: str
    status: str

    kind = "confirmed_booking"

    def grants_access(self) -> bool:
        return self.status == COMPLETED_BOOKING_STATUS


RelationshipRecord = MatchingHistory | Inquiry | ConfirmedBooking
