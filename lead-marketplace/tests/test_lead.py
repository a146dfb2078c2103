"""
Tests for `domain/lead.py`.

Covers contract rules:
- claim_count stays within [0, max_claims]; FULL implies claim_count == max_claims.
- credits_required is frozen by the first reserved slot.
- Terminal statuses never change.
- Direct lead sub-states.
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timedelta, timezone
from uuid import UUID, uuid4

import pytest

from domain.lead import (
    BudgetBracket,
    DirectLeadStatus,
    Lead,
    LeadStatus,
    LeadType,
    Urgency,
)

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
PRO = UUID("00000000-0000-0000-0000-000000000201")


def _lead(**overrides) -> Lead:
    values = dict(
        lead_id=uuid4(),
        homeowner_id=uuid4(),
        category="roofing",
        budget_bracket=BudgetBracket.FROM_5K_TO_20K,
        urgency=Urgency.FLEXIBLE,
        expires_at=NOW + timedelta(days=7),
        created_at=NOW,
        max_claims=2,
    )
    values.update(overrides)
    return Lead(**values)


def _direct_lead() -> Lead:
    return _lead(
        max_claims=1,
        lead_type=LeadType.DIRECT,
        target_professional_id=PRO,
        direct_lead_status=DirectLeadStatus.PENDING,
        direct_expires_at=NOW + timedelta(hours=24),
    )


def test_lead_timestamps_must_be_utc() -> None:
    """Verify expires_at and created_at enforce UTC timezone-aware timestamps."""

    with pytest.raises(ValueError):
        _lead(created_at=datetime(2025, 1, 1, 0, 0, 0))

    with pytest.raises(ValueError):
        _lead(expires_at=datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone(timedelta(hours=2))))


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_claims": 0},
        {"claim_count": 3},
        {"claim_count": -1},
        {"status": LeadStatus.FULL, "claim_count": 1},
        {"credits_required": 0},
        {"lead_type": LeadType.DIRECT},
    ],
)
def test_lead_rejects_invalid_state(overrides) -> None:
    """Verify construction rejects states that break the slot invariants."""

    with pytest.raises(ValueError):
        _lead(**overrides)


def test_first_reservation_freezes_credits_required() -> None:
    """Verify the first claim fixes the price and later claims keep it."""

    lead = _lead().with_claim_reserved(5)
    assert lead.credits_required == 5
    assert lead.claim_count == 1
    assert lead.status == LeadStatus.OPEN

    lead = lead.with_claim_reserved(9)
    assert lead.credits_required == 5


def test_last_slot_moves_lead_to_full_and_release_reopens() -> None:
    """Verify open -> full on the last slot and full -> open when a slot is released."""

    lead = _lead().with_claim_reserved(5).with_claim_reserved(5)
    assert lead.status == LeadStatus.FULL
    assert lead.remaining_slots == 0

    with pytest.raises(ValueError):
        lead.with_claim_reserved(5)

    reopened = lead.with_claim_released()
    assert reopened.status == LeadStatus.OPEN
    assert reopened.claim_count == 1
    assert reopened.credits_required == 5


def test_release_on_terminal_lead_keeps_status() -> None:
    """Verify releasing a slot never reopens an accepted lead."""

    lead = _lead().with_claim_reserved(5).accepted(uuid4(), NOW)

    released = lead.with_claim_released()

    assert released.status == LeadStatus.ACCEPTED
    assert released.claim_count == 0


@pytest.mark.parametrize(
    "resolve",
    [
        lambda lead: lead.accepted(uuid4(), NOW),
        lambda lead: lead.expired(NOW),
        lambda lead: lead.cancelled("changed my mind", NOW),
    ],
)
def test_terminal_statuses_never_change(resolve) -> None:
    """Verify accepted, expired and cancelled leads reject every further transition."""

    lead = resolve(_lead())
    assert lead.status.is_terminal
    assert lead.resolved_at == NOW

    with pytest.raises(ValueError):
        lead.accepted(uuid4(), NOW)
    with pytest.raises(ValueError):
        lead.expired(NOW)
    with pytest.raises(ValueError):
        lead.cancelled("again", NOW)
    with pytest.raises(ValueError):
        lead.with_claim_reserved(5)


def test_is_expired_boundary() -> None:
    """Verify a lead is expired from its expires_at instant onwards."""

    lead = _lead()

    assert not lead.is_expired(lead.expires_at - timedelta(seconds=1))
    assert lead.is_expired(lead.expires_at)


def test_direct_lead_accept() -> None:
    """Verify the pending sub-state moves to accepted."""

    lead = _direct_lead()
    assert lead.is_direct_pending

    accepted = lead.with_claim_reserved(5).direct_accepted()

    assert accepted.direct_lead_status == DirectLeadStatus.ACCEPTED
    assert accepted.status == LeadStatus.FULL
    assert not accepted.is_direct_pending


@pytest.mark.parametrize("declined,expected", [(True, DirectLeadStatus.DECLINED), (False, DirectLeadStatus.CONVERTED)])
def test_direct_lead_converts_to_marketplace(declined: bool, expected: DirectLeadStatus) -> None:
    """Verify a declined or unanswered direct lead opens with the marketplace slot count."""

    converted = _direct_lead().converted_to_marketplace(5, NOW, declined=declined)

    assert converted.lead_type == LeadType.MARKETPLACE
    assert converted.direct_lead_status == expected
    assert converted.max_claims == 5
    assert converted.converted_at == NOW

    with pytest.raises(ValueError):
        converted.converted_to_marketplace(5, NOW)


def test_direct_window_elapsed() -> None:
    """Verify the response window boundary."""

    lead = _direct_lead()

    assert not lead.direct_window_elapsed(NOW)
    assert lead.direct_window_elapsed(NOW + timedelta(hours=24))


def test_lead_is_immutable() -> None:
    """Verify Lead cannot be mutated after creation (frozen entity)."""

    lead = _lead()

    with pytest.raises(FrozenInstanceError):
        lead.claim_count = 1  # type: ignore[misc]

    assert replace(lead, title="x").title == "x"
