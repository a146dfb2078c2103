"""
Tests for `services/quote_service.py`.

Covers contract rules:
- Quotes require an active claim; one quote per claim; pricing computed server-side.
- Accepting one quote resolves the lead and declines every other pending quote.
- Exactly one accept wins per lead, including under concurrency.
- Pending quotes on expired or resolved leads are swept to expired.
- A lead past its expiry takes no new, revised or accepted quotes, even
  before the sweep runs.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from config import MarketplaceSettings
from domain.errors import (
    AlreadyResolvedError,
    ClaimRequiredError,
    ConcurrentUpdateError,
    MarketplaceError,
    PermissionDeniedError,
    QuoteAlreadySubmittedError,
    QuoteNotFoundError,
    ValidationFailedError,
)
from domain.events import EventType
from domain.lead import LeadStatus
from domain.quote import QuoteLineItem, QuoteStatus
from repositories.store import StaleRecordError
from services.claim_service import CLAIM_REFUNDED_QUOTE_REASON
from services.quote_service import ACCEPTED_ANOTHER_QUOTE_REASON, QuoteSubmission

START = date(2025, 3, 10)


@pytest.fixture
def settings() -> MarketplaceSettings:
    return MarketplaceSettings(store="memory", default_max_claims=3)


def _submission(hours: int = 3, *, start: date = START, days: int = 1) -> QuoteSubmission:
    return QuoteSubmission(
        items=[
            QuoteLineItem.create("labor", hours, "85.00", "Plumber"),
            QuoteLineItem.create("materials", 1, "42.50", "Pipe and fittings"),
        ],
        estimated_start_date=start,
        estimated_completion_date=start + timedelta(days=days),
    )


@pytest.fixture
def claimed_lead(marketplace, fund, new_lead):
    """A lead claimed by three professionals; returns (lead, [pro_a, pro_b, pro_c])."""

    pros = [uuid4(), uuid4(), uuid4()]
    lead = new_lead()
    for pro in pros:
        fund(pro, 10)
        marketplace.claims.claim(lead.lead_id, pro)
    return lead, pros


def test_submit_quote_computes_pricing_and_notifies(marketplace, claimed_lead, recorder) -> None:
    """Verify a submitted quote is pending, priced server-side and the homeowner is notified."""

    lead, (pro_a, _, _) = claimed_lead

    quote = marketplace.quotes.submit(lead.lead_id, pro_a, _submission(3))

    assert quote.status == QuoteStatus.PENDING
    assert quote.pricing.subtotal == Decimal("297.50")
    assert quote.pricing.vat == Decimal("14.88")
    assert quote.pricing.total == Decimal("312.38")

    (event,) = recorder.of_type(EventType.QUOTE_SUBMITTED)
    assert event.recipient_id == lead.homeowner_id
    assert event.payload["quote_id"] == str(quote.quote_id)

    claim = marketplace.store.find_active_claim(lead.lead_id, pro_a)
    assert claim.quote_submitted is True


def test_submit_without_claim_is_rejected(marketplace, claimed_lead) -> None:
    """Verify ClaimRequired for a professional without an active claim."""

    lead, _ = claimed_lead

    with pytest.raises(ClaimRequiredError):
        marketplace.quotes.submit(lead.lead_id, uuid4(), _submission())


def test_second_quote_on_same_claim_is_rejected(marketplace, claimed_lead) -> None:
    """Verify one quote per claim."""

    lead, (pro_a, _, _) = claimed_lead
    marketplace.quotes.submit(lead.lead_id, pro_a, _submission())

    with pytest.raises(QuoteAlreadySubmittedError):
        marketplace.quotes.submit(lead.lead_id, pro_a, _submission(5))

    assert len(marketplace.quotes.quotes_for_lead(lead.lead_id)) == 1


@pytest.mark.parametrize(
    "submission",
    [
        QuoteSubmission(items=[], estimated_start_date=START, estimated_completion_date=START),
        QuoteSubmission(
            items=[QuoteLineItem.create("labor", 1, "10")],
            estimated_start_date=START,
            estimated_completion_date=START - timedelta(days=1),
        ),
    ],
)
def test_invalid_submission_is_rejected_before_any_change(marketplace, claimed_lead, submission) -> None:
    """Verify empty items and reversed timelines fail validation and the claim stays unquoted."""

    lead, (pro_a, _, _) = claimed_lead

    with pytest.raises(ValidationFailedError):
        marketplace.quotes.submit(lead.lead_id, pro_a, submission)

    assert marketplace.store.find_active_claim(lead.lead_id, pro_a).quote_submitted is False


def test_accept_scenario(marketplace, claimed_lead, recorder) -> None:
    """Verify accepting A's quote declines C's, resolves the lead, and C can no longer be accepted."""

    lead, (pro_a, _, pro_c) = claimed_lead
    quote_a = marketplace.quotes.submit(lead.lead_id, pro_a, _submission(3))
    quote_c = marketplace.quotes.submit(lead.lead_id, pro_c, _submission(4))

    accepted = marketplace.quotes.accept(quote_a.quote_id, homeowner_id=lead.homeowner_id)

    assert accepted.status == QuoteStatus.ACCEPTED
    declined = marketplace.quotes.get_quote(quote_c.quote_id)
    assert declined.status == QuoteStatus.DECLINED
    assert declined.decline_reason == ACCEPTED_ANOTHER_QUOTE_REASON
    stored_lead = marketplace.leads.get_lead(lead.lead_id)
    assert stored_lead.status == LeadStatus.ACCEPTED
    assert stored_lead.accepted_quote_id == quote_a.quote_id

    with pytest.raises(AlreadyResolvedError):
        marketplace.quotes.accept(quote_c.quote_id)

    assert [e.recipient_id for e in recorder.of_type(EventType.QUOTE_ACCEPTED)] == [pro_a]
    assert [e.recipient_id for e in recorder.of_type(EventType.QUOTE_DECLINED)] == [pro_c]


def test_accept_by_other_homeowner_is_denied(marketplace, claimed_lead) -> None:
    """Verify only the lead's homeowner can accept when an identity is supplied."""

    lead, (pro_a, _, _) = claimed_lead
    quote = marketplace.quotes.submit(lead.lead_id, pro_a, _submission())

    with pytest.raises(PermissionDeniedError):
        marketplace.quotes.accept(quote.quote_id, homeowner_id=uuid4())

    assert marketplace.quotes.get_quote(quote.quote_id).status == QuoteStatus.PENDING


def test_concurrent_accepts_have_exactly_one_winner(marketplace, claimed_lead) -> None:
    """Verify racing accepts on different quotes of one lead yield one winner."""

    lead, pros = claimed_lead
    quotes = [marketplace.quotes.submit(lead.lead_id, pro, _submission()) for pro in pros]
    barrier = threading.Barrier(len(quotes))

    def attempt(quote):
        barrier.wait()
        try:
            return marketplace.quotes.accept(quote.quote_id)
        except MarketplaceError as e:
            return e

    with ThreadPoolExecutor(max_workers=len(quotes)) as pool:
        outcomes = list(pool.map(attempt, quotes))

    errors = [o for o in outcomes if isinstance(o, MarketplaceError)]
    winners = [o for o in outcomes if not isinstance(o, MarketplaceError)]
    assert len(winners) == 1
    assert len(errors) == 2
    assert all(isinstance(e, AlreadyResolvedError) for e in errors)

    statuses = [marketplace.quotes.get_quote(q.quote_id).status for q in quotes]
    assert statuses.count(QuoteStatus.ACCEPTED) == 1
    assert statuses.count(QuoteStatus.DECLINED) == 2
    assert marketplace.leads.get_lead(lead.lead_id).accepted_quote_id == winners[0].quote_id


def test_decline_single_quote_leaves_lead_open(marketplace, claimed_lead) -> None:
    """Verify a decline touches only the one quote."""

    lead, (pro_a, pro_b, _) = claimed_lead
    quote_a = marketplace.quotes.submit(lead.lead_id, pro_a, _submission())
    quote_b = marketplace.quotes.submit(lead.lead_id, pro_b, _submission())

    declined = marketplace.quotes.decline(quote_a.quote_id, "too expensive")

    assert declined.status == QuoteStatus.DECLINED
    assert declined.decline_reason == "too expensive"
    assert marketplace.quotes.get_quote(quote_b.quote_id).status == QuoteStatus.PENDING
    assert marketplace.leads.get_lead(lead.lead_id).status == LeadStatus.FULL

    with pytest.raises(AlreadyResolvedError):
        marketplace.quotes.decline(quote_a.quote_id, "again")
    with pytest.raises(ValidationFailedError):
        marketplace.quotes.decline(quote_b.quote_id, " ")


def test_revise_pending_quote(marketplace, claimed_lead) -> None:
    """Verify the author can revise a pending quote and nobody else can."""

    lead, (pro_a, pro_b, _) = claimed_lead
    quote = marketplace.quotes.submit(lead.lead_id, pro_a, _submission(3))

    with pytest.raises(PermissionDeniedError):
        marketplace.quotes.revise(quote.quote_id, pro_b, _submission(1))

    revised = marketplace.quotes.revise(quote.quote_id, pro_a, _submission(1, days=3))

    assert revised.pricing.subtotal == Decimal("127.50")
    assert revised.estimated_completion_date == START + timedelta(days=3)
    assert revised.quote_id == quote.quote_id


def test_refund_declines_refunded_professionals_pending_quote(marketplace, claimed_lead) -> None:
    """Verify a refunded claim takes its pending quote with it."""

    lead, (pro_a, _, _) = claimed_lead
    quote = marketplace.quotes.submit(lead.lead_id, pro_a, _submission())
    claim = marketplace.store.find_active_claim(lead.lead_id, pro_a)

    marketplace.claims.refund_claim(claim.claim_id, "job withdrawn")

    stored = marketplace.quotes.get_quote(quote.quote_id)
    assert stored.status == QuoteStatus.DECLINED
    assert stored.decline_reason == CLAIM_REFUNDED_QUOTE_REASON


def test_expire_stale_quotes(marketplace, claimed_lead, clock) -> None:
    """Verify pending quotes on an expired lead are expired and resolved ones untouched."""

    lead, (pro_a, pro_b, _) = claimed_lead
    pending = marketplace.quotes.submit(lead.lead_id, pro_a, _submission())
    declined = marketplace.quotes.submit(lead.lead_id, pro_b, _submission())
    marketplace.quotes.decline(declined.quote_id, "no")

    assert marketplace.quotes.expire_stale_quotes() == 0

    clock.advance(timedelta(days=8))
    assert marketplace.quotes.expire_stale_quotes() == 1
    assert marketplace.quotes.expire_stale_quotes() == 0

    assert marketplace.quotes.get_quote(pending.quote_id).status == QuoteStatus.EXPIRED
    assert marketplace.quotes.get_quote(declined.quote_id).status == QuoteStatus.DECLINED


def test_unknown_quote(marketplace) -> None:
    """Verify QuoteNotFound."""

    with pytest.raises(QuoteNotFoundError):
        marketplace.quotes.accept(uuid4())


def test_expired_lead_takes_no_quote_changes_before_sweep(marketplace, claimed_lead, clock) -> None:
    """Verify submit, revise and accept fail once the lead is past expires_at."""

    lead, (pro_a, pro_b, _) = claimed_lead
    quote = marketplace.quotes.submit(lead.lead_id, pro_a, _submission())

    clock.advance(timedelta(days=30))

    with pytest.raises(AlreadyResolvedError):
        marketplace.quotes.accept(quote.quote_id, lead.homeowner_id)
    with pytest.raises(AlreadyResolvedError):
        marketplace.quotes.submit(lead.lead_id, pro_b, _submission())
    with pytest.raises(AlreadyResolvedError):
        marketplace.quotes.revise(quote.quote_id, pro_a, _submission(1))

    assert marketplace.quotes.get_quote(quote.quote_id).status == QuoteStatus.PENDING
    assert marketplace.leads.get_lead(lead.lead_id).status == LeadStatus.FULL
    assert marketplace.quotes.expire_stale_quotes() == 1


def test_revise_losing_a_concurrent_write_is_concurrent_update(marketplace, claimed_lead, monkeypatch) -> None:
    """Verify a lost version check during revise surfaces as ConcurrentUpdate."""

    lead, (pro_a, _, _) = claimed_lead
    quote = marketplace.quotes.submit(lead.lead_id, pro_a, _submission(3))

    def conflicting_commit(changes) -> None:
        raise StaleRecordError("quote", quote.quote_id, 1, 2)

    monkeypatch.setattr(marketplace.store, "commit", conflicting_commit)

    with pytest.raises(ConcurrentUpdateError):
        marketplace.quotes.revise(quote.quote_id, pro_a, _submission(1))

    monkeypatch.undo()
    assert marketplace.quotes.get_quote(quote.quote_id).pricing.subtotal == Decimal("297.50")
