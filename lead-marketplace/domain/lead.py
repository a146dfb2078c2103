"""
Domain: Lead entity and its lifecycle.

Rules implemented here:
- claim_count is always within [0, max_claims].
- status == FULL implies claim_count == max_claims.
- credits_required is set by the first successful claim and never changes after.
- Transitions: open -> full (last slot reserved), full -> open (slot released),
  open/full -> accepted | expired | cancelled. Terminal statuses never change.
- Direct leads target one professional (max_claims = 1) and carry a sub-status:
  pending -> accepted (the target claimed it), pending -> declined or converted
  (the lead becomes a marketplace lead).

Leads are never deleted, only moved to a terminal status.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from .time import require_optional_utc_timestamp, require_utc_timestamp


class BudgetBracket(str, Enum):
    UNDER_3K = "under-3k"
    FROM_3K_TO_5K = "3k-5k"
    FROM_5K_TO_20K = "5k-20k"
    FROM_20K_TO_50K = "20k-50k"
    FROM_50K_TO_100K = "50k-100k"
    FROM_100K_TO_250K = "100k-250k"
    OVER_250K = "over-250k"


class Urgency(str, Enum):
    EMERGENCY = "emergency"
    URGENT = "urgent"
    FLEXIBLE = "flexible"
    PLANNING = "planning"


class LeadStatus(str, Enum):
    OPEN = "open"
    FULL = "full"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (LeadStatus.ACCEPTED, LeadStatus.EXPIRED, LeadStatus.CANCELLED)


class LeadType(str, Enum):
    MARKETPLACE = "marketplace"
    DIRECT = "direct"


class DirectLeadStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CONVERTED = "converted"


DEFAULT_MAX_CLAIMS = 5


@dataclass(frozen=True, slots=True)
class Lead:
    """
    Pure domain entity for a homeowner's service request.

    Immutability:
    - Transitions return new instances; callers persist them through a unit of work.
    """

    lead_id: UUID
    homeowner_id: UUID
    category: str
    budget_bracket: BudgetBracket
    urgency: Urgency
    expires_at: datetime
    created_at: datetime
    title: str = ""
    max_claims: int = DEFAULT_MAX_CLAIMS
    claim_count: int = 0
    credits_required: Optional[int] = None
    status: LeadStatus = LeadStatus.OPEN
    lead_type: LeadType = LeadType.MARKETPLACE

    # Direct leads only
    target_professional_id: Optional[UUID] = None
    direct_lead_status: Optional[DirectLeadStatus] = None
    direct_expires_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None

    # Resolution
    accepted_quote_id: Optional[UUID] = None
    cancel_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None

    version: int = 0

    def __post_init__(self) -> None:
        require_utc_timestamp("expires_at", self.expires_at)
        require_utc_timestamp("created_at", self.created_at)
        require_optional_utc_timestamp("direct_expires_at", self.direct_expires_at)
        require_optional_utc_timestamp("converted_at", self.converted_at)
        require_optional_utc_timestamp("resolved_at", self.resolved_at)

        if self.max_claims < 1:
            raise ValueError("max_claims must be >= 1")
        if not 0 <= self.claim_count <= self.max_claims:
            raise ValueError("claim_count must be within [0, max_claims]")
        if self.status == LeadStatus.FULL and self.claim_count != self.max_claims:
            raise ValueError("a full lead must have claim_count == max_claims")
        if self.credits_required is not None and self.credits_required < 1:
            raise ValueError("credits_required must be >= 1")
        if self.lead_type == LeadType.DIRECT and self.target_professional_id is None:
            raise ValueError("direct leads require target_professional_id")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def remaining_slots(self) -> int:
        return self.max_claims - self.claim_count

    @property
    def is_direct_pending(self) -> bool:
        return self.lead_type == LeadType.DIRECT and self.direct_lead_status == DirectLeadStatus.PENDING

    def is_expired(self, as_of: datetime) -> bool:
        return as_of >= self.expires_at

    def direct_window_elapsed(self, as_of: datetime) -> bool:
        return self.direct_expires_at is not None and as_of >= self.direct_expires_at

    # ------------------------------------------------------------------
    # Slot accounting
    # ------------------------------------------------------------------

    def with_claim_reserved(self, credits_required: int) -> "Lead":
        """
        Reserve one slot. Freezes credits_required on the first claim and moves
        the lead to FULL when the last slot is taken.
        """

        if self.status.is_terminal:
            raise ValueError(f"cannot reserve a slot on a {self.status.value} lead")
        if self.claim_count >= self.max_claims:
            raise ValueError("no claim slots remaining")

        claim_count = self.claim_count + 1
        status = LeadStatus.FULL if claim_count == self.max_claims else self.status
        return replace(
            self,
            claim_count=claim_count,
            status=status,
            credits_required=self.credits_required if self.credits_required is not None else credits_required,
        )

    def with_claim_released(self) -> "Lead":
        """Release one slot. A FULL lead reopens; terminal statuses are kept."""

        if self.claim_count <= 0:
            raise ValueError("no claims to release")

        status = LeadStatus.OPEN if self.status == LeadStatus.FULL else self.status
        return replace(self, claim_count=self.claim_count - 1, status=status)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _require_active(self, action: str) -> None:
        if self.status.is_terminal:
            raise ValueError(f"cannot {action} a lead with status {self.status.value}")

    def accepted(self, quote_id: UUID, at: datetime) -> "Lead":
        self._require_active("accept")
        require_utc_timestamp("at", at)
        return replace(self, status=LeadStatus.ACCEPTED, accepted_quote_id=quote_id, resolved_at=at)

    def expired(self, at: datetime) -> "Lead":
        self._require_active("expire")
        require_utc_timestamp("at", at)
        return replace(self, status=LeadStatus.EXPIRED, resolved_at=at)

    def cancelled(self, reason: str, at: datetime) -> "Lead":
        self._require_active("cancel")
        require_utc_timestamp("at", at)
        return replace(self, status=LeadStatus.CANCELLED, cancel_reason=reason, resolved_at=at)

    # ------------------------------------------------------------------
    # Direct lead sub-states
    # ------------------------------------------------------------------

    def _require_direct_pending(self) -> None:
        if not self.is_direct_pending:
            raise ValueError("lead is not a pending direct lead")

    def direct_accepted(self) -> "Lead":
        self._require_direct_pending()
        return replace(self, direct_lead_status=DirectLeadStatus.ACCEPTED)

    def converted_to_marketplace(
        self, max_claims: int, at: datetime, *, declined: bool = False
    ) -> "Lead":
        """
        Open a pending direct lead to the marketplace, either because the target
        declined it or because the response window elapsed.
        """

        self._require_direct_pending()
        self._require_active("convert")
        require_utc_timestamp("at", at)
        return replace(
            self,
            lead_type=LeadType.MARKETPLACE,
            direct_lead_status=DirectLeadStatus.DECLINED if declined else DirectLeadStatus.CONVERTED,
            max_claims=max(max_claims, self.claim_count),
            converted_at=at,
        )


__all__ = [
    "BudgetBracket",
    "Urgency",
    "LeadStatus",
    "LeadType",
    "DirectLeadStatus",
    "DEFAULT_MAX_CLAIMS",
    "Lead",
]
