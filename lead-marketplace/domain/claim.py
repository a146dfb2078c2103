"""
Domain: Claim entity.

A Claim is a professional's paid reservation of one of a lead's slots.

Rules implemented here:
- At most one non-refunded Claim exists per (lead_id, professional_id).
- A Claim is created together with a `lead_claim` credit transaction.
- `refunded` flips exactly once; refunding twice is an error.
- Unconverted claims (no quote submitted) are never refunded automatically.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional
from uuid import UUID

from .errors import AlreadyRefundedError
from .time import require_optional_utc_timestamp, require_utc_timestamp


@dataclass(frozen=True, slots=True)
class Claim:
    claim_id: UUID
    lead_id: UUID
    professional_id: UUID
    credits_spent: int
    claimed_at: datetime
    quote_submitted: bool = False
    quote_submitted_at: Optional[datetime] = None
    refunded: bool = False
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.credits_spent < 1:
            raise ValueError("credits_spent must be >= 1")
        require_utc_timestamp("claimed_at", self.claimed_at)
        require_optional_utc_timestamp("quote_submitted_at", self.quote_submitted_at)
        require_optional_utc_timestamp("refunded_at", self.refunded_at)

    @property
    def is_active(self) -> bool:
        return not self.refunded

    def with_quote_submitted(self, at: datetime) -> "Claim":
        require_utc_timestamp("at", at)
        if self.refunded:
            raise ValueError("cannot submit a quote against a refunded claim")
        return replace(self, quote_submitted=True, quote_submitted_at=at)

    def refund(self, reason: str, at: datetime) -> "Claim":
        require_utc_timestamp("at", at)
        if self.refunded:
            raise AlreadyRefundedError(self.claim_id)
        return replace(self, refunded=True, refunded_at=at, refund_reason=reason)


__all__ = ["Claim"]
