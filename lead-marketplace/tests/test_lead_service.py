"""
Tests for `services/lead_service.py`.

Covers contract rules:
- Cancelling a lead refunds every active claim and declines every pending quote.
- Resolved leads cannot be cancelled again; only the owner can cancel.
- Browsing shows only open marketplace leads with a free slot.
- Direct leads: accept by claiming, decline or time out into the marketplace.
- Expired leads take their pending quotes with them, without refunds.
"""

from __future__ import annotations

from datetime import date, timedelta
from uuid import uuid4

import pytest

from domain.credits import CreditTransactionType
from domain.errors import (
    AlreadyResolvedError,
    LeadNotClaimableError,
    PermissionDeniedError,
    ValidationFailedError,
)
from domain.events import EventType
from domain.lead import BudgetBracket, DirectLeadStatus, LeadStatus, LeadType, Urgency
from domain.quote import QuoteLineItem, QuoteStatus
from services.lead_service import LEAD_CANCELLED_REASON, LeadRequest
from services.quote_service import QuoteSubmission


def _request(homeowner_id=None, category: str = "roofing") -> LeadRequest:
    return LeadRequest(
        homeowner_id=homeowner_id or uuid4(),
        category=category,
        budget_bracket=BudgetBracket.UNDER_3K,
        urgency=Urgency.FLEXIBLE,
        title="Missing tiles",
    )


def _submission() -> QuoteSubmission:
    return QuoteSubmission(
        items=[QuoteLineItem.create("labor", 2, "60")],
        estimated_start_date=date(2025, 3, 10),
        estimated_completion_date=date(2025, 3, 11),
    )


def test_create_lead_uses_defaults(marketplace, clock) -> None:
    """Verify new marketplace leads are open, unpriced and expire after the lead lifetime."""

    lead = marketplace.leads.create_lead(_request())

    assert lead.status == LeadStatus.OPEN
    assert lead.lead_type == LeadType.MARKETPLACE
    assert lead.max_claims == 5
    assert lead.claim_count == 0
    assert lead.credits_required is None
    assert lead.expires_at == clock.now + timedelta(days=7)


def test_create_lead_requires_category(marketplace) -> None:
    """Verify a blank category is rejected."""

    with pytest.raises(ValidationFailedError):
        marketplace.leads.create_lead(_request(category="  "))


def test_cancel_refunds_claims_and_declines_quotes(marketplace, fund, new_lead, recorder) -> None:
    """Verify the cancellation cascade in one step."""

    homeowner = uuid4()
    pro_a, pro_b = uuid4(), uuid4()
    fund(pro_a, 10)
    fund(pro_b, 10)
    lead = new_lead(homeowner)
    marketplace.claims.claim(lead.lead_id, pro_a)
    marketplace.claims.claim(lead.lead_id, pro_b)
    quote = marketplace.quotes.submit(lead.lead_id, pro_a, _submission())

    cancelled = marketplace.leads.cancel_lead(lead.lead_id, "changed my mind", homeowner_id=homeowner)

    assert cancelled.status == LeadStatus.CANCELLED
    assert cancelled.cancel_reason == "changed my mind"
    assert cancelled.claim_count == 0

    assert marketplace.ledger.get_balance(pro_a).total_balance == 10
    assert marketplace.ledger.get_balance(pro_b).total_balance == 10
    refunds = marketplace.ledger.list_transactions(pro_a, transaction_type=CreditTransactionType.REFUND)
    assert [tx.amount for tx in refunds] == [5]

    assert all(claim.refunded for claim in marketplace.claims.claims_for_lead(lead.lead_id))

    stored_quote = marketplace.quotes.get_quote(quote.quote_id)
    assert stored_quote.status == QuoteStatus.DECLINED
    assert stored_quote.decline_reason == LEAD_CANCELLED_REASON

    notified = {event.recipient_id for event in recorder.of_type(EventType.LEAD_CANCELLED)}
    assert notified == {pro_a, pro_b}


def test_cancel_twice_is_already_resolved(marketplace, new_lead) -> None:
    """Verify a cancelled lead cannot be cancelled again."""

    lead = new_lead()
    marketplace.leads.cancel_lead(lead.lead_id, "duplicate")

    with pytest.raises(AlreadyResolvedError):
        marketplace.leads.cancel_lead(lead.lead_id, "duplicate")


def test_cancel_accepted_lead_is_already_resolved(marketplace, fund, new_lead) -> None:
    """Verify an accepted lead keeps its claims and cannot be cancelled."""

    pro = uuid4()
    fund(pro, 10)
    lead = new_lead()
    marketplace.claims.claim(lead.lead_id, pro)
    quote = marketplace.quotes.submit(lead.lead_id, pro, _submission())
    marketplace.quotes.accept(quote.quote_id)

    with pytest.raises(AlreadyResolvedError):
        marketplace.leads.cancel_lead(lead.lead_id, "too late")

    assert marketplace.ledger.get_balance(pro).total_balance == 5


def test_cancel_by_other_homeowner_is_denied(marketplace, fund, new_lead) -> None:
    """Verify ownership is checked and nothing is refunded."""

    pro = uuid4()
    fund(pro, 10)
    lead = new_lead(uuid4())
    marketplace.claims.claim(lead.lead_id, pro)

    with pytest.raises(PermissionDeniedError):
        marketplace.leads.cancel_lead(lead.lead_id, "not mine", homeowner_id=uuid4())

    assert marketplace.leads.get_lead(lead.lead_id).status == LeadStatus.OPEN
    assert marketplace.ledger.get_balance(pro).total_balance == 5


def test_cancel_requires_reason(marketplace, new_lead) -> None:
    """Verify an empty reason is rejected."""

    lead = new_lead()

    with pytest.raises(ValidationFailedError):
        marketplace.leads.cancel_lead(lead.lead_id, "")


def test_browse_shows_open_marketplace_leads_with_slots(marketplace, fund, new_lead, clock) -> None:
    """Verify browsing filters out full, cancelled, direct and other-category leads."""

    visible = new_lead(category="plumbing")
    clock.advance(timedelta(minutes=1))
    other_category = new_lead(category="electrical")
    clock.advance(timedelta(minutes=1))
    cancelled = new_lead()
    marketplace.leads.cancel_lead(cancelled.lead_id, "gone")
    marketplace.leads.create_direct_lead(_request(category="plumbing"), uuid4())

    full = new_lead()
    for _ in range(full.max_claims):
        claimant = uuid4()
        fund(claimant, 10)
        marketplace.claims.claim(full.lead_id, claimant)

    plumbing = marketplace.leads.browse_leads(category="Plumbing")
    assert [lead.lead_id for lead in plumbing] == [visible.lead_id]

    everything = marketplace.leads.browse_leads()
    assert [lead.lead_id for lead in everything] == [other_category.lead_id, visible.lead_id]

    assert marketplace.leads.browse_leads(limit=1, offset=1)[0].lead_id == visible.lead_id


def test_browse_hides_leads_past_expiry(marketplace, new_lead, clock) -> None:
    """Verify a lead past expires_at disappears before the sweep runs."""

    new_lead()
    clock.advance(timedelta(days=7))

    assert marketplace.leads.browse_leads() == []


def test_direct_lead_accepted_by_claiming(marketplace, fund, recorder) -> None:
    """Verify the target's accept is a regular claim and marks the direct lead accepted."""

    target = uuid4()
    fund(target, 10)
    lead = marketplace.leads.create_direct_lead(_request(), target)

    assert lead.max_claims == 1
    assert lead.direct_lead_status == DirectLeadStatus.PENDING
    (received,) = recorder.of_type(EventType.DIRECT_LEAD_RECEIVED)
    assert received.recipient_id == target
    assert [pending.lead_id for pending in marketplace.leads.pending_direct_leads(target)] == [lead.lead_id]

    result = marketplace.leads.accept_direct_lead(lead.lead_id, target)

    assert result.lead.direct_lead_status == DirectLeadStatus.ACCEPTED
    assert result.lead.status == LeadStatus.FULL
    assert result.remaining_credits == 7  # under-3k base 3, flexible x1.0
    assert marketplace.leads.pending_direct_leads(target) == []

    with pytest.raises(LeadNotClaimableError):
        marketplace.leads.accept_direct_lead(lead.lead_id, target)


def test_direct_lead_is_reserved_for_target(marketplace, fund) -> None:
    """Verify another professional cannot claim a pending direct lead."""

    intruder = uuid4()
    fund(intruder, 10)
    lead = marketplace.leads.create_direct_lead(_request(), uuid4())

    with pytest.raises(LeadNotClaimableError):
        marketplace.claims.claim(lead.lead_id, intruder)

    assert marketplace.ledger.get_balance(intruder).total_balance == 10


def test_declined_direct_lead_opens_to_marketplace(marketplace, fund, recorder) -> None:
    """Verify a decline converts the lead and another professional can then claim it."""

    homeowner, target, other = uuid4(), uuid4(), uuid4()
    fund(other, 10)
    lead = marketplace.leads.create_direct_lead(_request(homeowner), target)

    with pytest.raises(PermissionDeniedError):
        marketplace.leads.decline_direct_lead(lead.lead_id, other, "not for me")

    converted = marketplace.leads.decline_direct_lead(lead.lead_id, target, "fully booked")

    assert converted.lead_type == LeadType.MARKETPLACE
    assert converted.direct_lead_status == DirectLeadStatus.DECLINED
    assert converted.max_claims == 5
    (event,) = recorder.of_type(EventType.DIRECT_LEAD_CONVERTED)
    assert event.recipient_id == homeowner

    with pytest.raises(AlreadyResolvedError):
        marketplace.leads.decline_direct_lead(lead.lead_id, target, "again")

    assert marketplace.claims.claim(lead.lead_id, other).claim.credits_spent == 3


def test_unanswered_direct_leads_convert_after_window(marketplace, clock) -> None:
    """Verify the sweep converts only leads past their response window, once."""

    target = uuid4()
    lead = marketplace.leads.create_direct_lead(_request(), target)

    assert marketplace.leads.convert_expired_direct_leads() == 0

    clock.advance(timedelta(hours=24))
    assert marketplace.leads.convert_expired_direct_leads() == 1
    assert marketplace.leads.convert_expired_direct_leads() == 0

    stored = marketplace.leads.get_lead(lead.lead_id)
    assert stored.direct_lead_status == DirectLeadStatus.CONVERTED
    assert stored.lead_type == LeadType.MARKETPLACE
    assert stored.converted_at == clock.now
    assert marketplace.leads.pending_direct_leads(target) == []


def test_expire_leads_keeps_claims_and_expires_quotes(marketplace, fund, new_lead, clock) -> None:
    """Verify expiry moves open leads to expired without refunding claims."""

    pro = uuid4()
    fund(pro, 10)
    lead = new_lead()
    untouched = new_lead()
    marketplace.claims.claim(lead.lead_id, pro)
    quote = marketplace.quotes.submit(lead.lead_id, pro, _submission())
    marketplace.leads.cancel_lead(untouched.lead_id, "withdrawn")

    assert marketplace.leads.expire_leads() == 0

    clock.advance(timedelta(days=7))
    assert marketplace.leads.expire_leads() == 1
    assert marketplace.leads.expire_leads() == 0

    assert marketplace.leads.get_lead(lead.lead_id).status == LeadStatus.EXPIRED
    assert marketplace.leads.get_lead(untouched.lead_id).status == LeadStatus.CANCELLED
    assert marketplace.quotes.get_quote(quote.quote_id).status == QuoteStatus.EXPIRED
    assert marketplace.ledger.get_balance(pro).total_balance == 5


def test_leads_for_homeowner(marketplace, new_lead) -> None:
    """Verify a homeowner sees their own leads only."""

    homeowner = uuid4()
    mine = new_lead(homeowner)
    new_lead()

    assert [lead.lead_id for lead in marketplace.leads.leads_for_homeowner(homeowner)] == [mine.lead_id]
