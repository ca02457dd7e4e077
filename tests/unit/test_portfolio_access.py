"""
Tests for relationship-based portfolio authorization.
"""

import pytest

from inkguard.models.domain.relationship_domain import ConfirmedBooking, Inquiry, MatchingHistory
from inkguard.services.authorization.portfolio_access import PortfolioAccessEvaluator
from inkguard.services.security.access_monitor import PortfolioAccessMonitor

CUSTOMER = "customer-1"
ARTIST = "artist-9"


@pytest.fixture
def evaluator(relationships):
    return PortfolioAccessEvaluator(repository=relationships)


@pytest.mark.asyncio
async def test_owner_always_granted(evaluator, relationships):
    relationships.failing.add("matching_history")

    decision = await evaluator.evaluate(ARTIST, ARTIST)

    assert decision.granted is True
    assert decision.reason == "owner"
    assert relationships.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(("subject_id", "artist_id"), [(None, ARTIST), ("", ARTIST), (CUSTOMER, None)])
async def test_missing_ids_denied(evaluator, subject_id, artist_id):
    assert await evaluator.can_view_portfolio(subject_id, artist_id) is False


@pytest.mark.asyncio
async def test_no_relationship_denied(evaluator, relationships):
    decision = await evaluator.evaluate(CUSTOMER, ARTIST)

    assert decision.granted is False
    assert decision.degraded is False
    assert relationships.calls == ["matching_history", "inquiry", "confirmed_booking"]


@pytest.mark.asyncio
async def test_matching_history_short_circuits(evaluator, relationships):
    relationships.matching_history[(CUSTOMER, ARTIST)] = MatchingHistory(CUSTOMER, ARTIST)

    decision = await evaluator.evaluate(CUSTOMER, ARTIST)

    assert decision.granted is True
    assert decision.reason == "matching_history"
    assert relationships.calls == ["matching_history"]


@pytest.mark.asyncio
@pytest.mark.parametrize(("status", "granted"), [("pending", True), ("responded", True), ("closed", False)])
async def test_inquiry_status(evaluator, relationships, status, granted):
    relationships.inquiries[(CUSTOMER, ARTIST)] = Inquiry(CUSTOMER, ARTIST, status)

    assert await evaluator.can_view_portfolio(CUSTOMER, ARTIST) is granted


@pytest.mark.asyncio
@pytest.mark.parametrize(("status", "granted"), [("completed", True), ("scheduled", False)])
async def test_booking_status(evaluator, relationships, status, granted):
    relationships.bookings[(CUSTOMER, ARTIST)] = ConfirmedBooking(CUSTOMER, ARTIST, status)

    assert await evaluator.can_view_portfolio(CUSTOMER, ARTIST) is granted


@pytest.mark.asyncio
async def test_closed_inquiry_falls_through_to_booking(evaluator, relationships):
    relationships.inquiries[(CUSTOMER, ARTIST)] = Inquiry(CUSTOMER, ARTIST, "closed")
    relationships.bookings[(CUSTOMER, ARTIST)] = ConfirmedBooking(CUSTOMER, ARTIST, "completed")

    decision = await evaluator.evaluate(CUSTOMER, ARTIST)

    assert decision.granted is True
    assert decision.reason == "confirmed_booking"


@pytest.mark.asyncio
async def test_storage_failure_denies(evaluator, relationships):
    relationships.failing.add("inquiry")
    relationships.bookings[(CUSTOMER, ARTIST)] = ConfirmedBooking(CUSTOMER, ARTIST, "completed")

    decision = await evaluator.evaluate(CUSTOMER, ARTIST)

    assert decision.granted is False
    assert decision.degraded is True
    assert decision.reason == "storage_unavailable"


@pytest.mark.asyncio
async def test_unexpected_error_denies(relationships):
    async def broken(customer_id, artist_id):
        raise ValueError("bad row")

    relationships.get_matching_history = broken
    evaluator = PortfolioAccessEvaluator(repository=relationships)

    decision = await evaluator.evaluate(CUSTOMER, ARTIST)

    assert decision.granted is False
    assert decision.degraded is True


@pytest.mark.asyncio
async def test_monitor_logs_denial_as_high(evaluator, event_log, event_repository):
    monitor = PortfolioAccessMonitor(evaluator=evaluator, event_log=event_log)

    decision = await monitor.handle_access_requested(CUSTOMER, ARTIST, metadata={"request_id": "r-1"})

    assert decision.granted is False
    event = event_repository.events[0]
    assert event.event_type == "unauthorized_portfolio_access"
    assert event.severity == "high"
    assert event.subject_id == CUSTOMER
    assert event.target_id == ARTIST
    assert event.resource_ref == f"portfolio:{ARTIST}"
    assert event.metadata == {"request_id": "r-1", "reason": "no_relationship"}


@pytest.mark.asyncio
async def test_monitor_separates_outage_from_denial(evaluator, relationships, event_log, event_repository):
    relationships.failing.add("matching_history")
    monitor = PortfolioAccessMonitor(evaluator=evaluator, event_log=event_log)

    await monitor.handle_access_requested(CUSTOMER, ARTIST)

    event = event_repository.events[0]
    assert event.event_type == "authorization_backend_unavailable"
    assert event.severity == "medium"


@pytest.mark.asyncio
async def test_monitor_grant_survives_event_log_failure(evaluator, relationships, event_log, event_repository):
    relationships.matching_history[(CUSTOMER, ARTIST)] = MatchingHistory(CUSTOMER, ARTIST)
    event_repository.fail_writes = True
    monitor = PortfolioAccessMonitor(evaluator=evaluator, event_log=event_log)

    decision = await monitor.handle_access_requested(CUSTOMER, ARTIST)

    assert decision.granted is True
