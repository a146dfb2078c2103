"""
Domain: error taxonomy for the claim and credit engine.

Every error raised by the marketplace core derives from MarketplaceError and
carries a stable `code` (surfaced verbatim to API callers) and a `category`:

- validation: malformed input or a caller acting outside its rights; rejected
  before any state change.
- not_found: the addressed record does not exist.
- contention: expected under load (a slot or a quote was taken first). Always
  specific and user-actionable, never a generic failure.
- economic: the professional cannot afford the operation; carries the shortfall.
- integrity: the ledger disagrees with itself. Debits for the professional are
  halted until a manual reconciliation releases the hold.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONTENTION = "contention"
    ECONOMIC = "economic"
    INTEGRITY = "integrity"


class MarketplaceError(Exception):
    """Base class for every error raised by the marketplace core."""

    code: str = "MarketplaceError"
    category: ErrorCategory = ErrorCategory.VALIDATION

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def details(self) -> Dict[str, Any]:
        """Extra, serializable context for API responses."""
        return {}


# ============================================================================
# Validation
# ============================================================================

class ValidationFailedError(MarketplaceError):
    code = "ValidationFailed"


class PermissionDeniedError(MarketplaceError):
    code = "PermissionDenied"


class ClaimRequiredError(MarketplaceError):
    """Raised when a quote is submitted without an active claim on the lead."""

    code = "ClaimRequired"

    def __init__(self, lead_id: UUID, professional_id: UUID):
        self.lead_id = lead_id
        self.professional_id = professional_id
        super().__init__(
            f"Professional {professional_id} must hold an active claim on lead {lead_id} "
            f"before submitting a quote"
        )


# ============================================================================
# Not found
# ============================================================================

class LeadNotFoundError(MarketplaceError):
    code = "LeadNotFound"
    category = ErrorCategory.NOT_FOUND

    def __init__(self, lead_id: UUID):
        self.lead_id = lead_id
        super().__init__(f"Lead not found: {lead_id}")


class ClaimNotFoundError(MarketplaceError):
    code = "ClaimNotFound"
    category = ErrorCategory.NOT_FOUND

    def __init__(self, claim_id: UUID):
        self.claim_id = claim_id
        super().__init__(f"Claim not found: {claim_id}")


class QuoteNotFoundError(MarketplaceError):
    code = "QuoteNotFound"
    category = ErrorCategory.NOT_FOUND

    def __init__(self, quote_id: UUID):
        self.quote_id = quote_id
        super().__init__(f"Quote not found: {quote_id}")


# ============================================================================
# Resource contention
# ============================================================================

class LeadNotClaimableError(MarketplaceError):
    code = "LeadNotClaimable"
    category = ErrorCategory.CONTENTION

    def __init__(self, lead_id: UUID, reason: str):
        self.lead_id = lead_id
        self.reason = reason
        super().__init__(f"Lead {lead_id} cannot be claimed: {reason}")


class AlreadyClaimedError(MarketplaceError):
    code = "AlreadyClaimed"
    category = ErrorCategory.CONTENTION

    def __init__(self, lead_id: UUID, professional_id: UUID):
        self.lead_id = lead_id
        self.professional_id = professional_id
        super().__init__(f"Professional {professional_id} has already claimed lead {lead_id}")


class LeadFullError(MarketplaceError):
    code = "LeadFull"
    category = ErrorCategory.CONTENTION

    def __init__(self, lead_id: UUID, max_claims: int):
        self.lead_id = lead_id
        self.max_claims = max_claims
        super().__init__(f"Lead {lead_id} has reached its maximum of {max_claims} claims")

    def details(self) -> Dict[str, Any]:
        return {"max_claims": self.max_claims}


class AlreadyResolvedError(MarketplaceError):
    code = "AlreadyResolved"
    category = ErrorCategory.CONTENTION


class AlreadyRefundedError(MarketplaceError):
    code = "AlreadyRefunded"
    category = ErrorCategory.CONTENTION

    def __init__(self, claim_id: UUID):
        self.claim_id = claim_id
        super().__init__(f"Claim {claim_id} has already been refunded")


class QuoteAlreadySubmittedError(MarketplaceError):
    code = "QuoteAlreadySubmitted"
    category = ErrorCategory.CONTENTION

    def __init__(self, lead_id: UUID, professional_id: UUID):
        self.lead_id = lead_id
        self.professional_id = professional_id
        super().__init__(f"Professional {professional_id} has already submitted a quote for lead {lead_id}")


class ConcurrentUpdateError(MarketplaceError):
    """A versioned write lost against another writer and could not be re-evaluated."""

    code = "ConcurrentUpdate"
    category = ErrorCategory.CONTENTION


# ============================================================================
# Economic
# ============================================================================

class InsufficientCreditsError(MarketplaceError):
    code = "InsufficientCredits"
    category = ErrorCategory.ECONOMIC

    def __init__(self, required: int, available: int, professional_id: Optional[UUID] = None):
        self.required = required
        self.available = available
        self.professional_id = professional_id
        super().__init__(
            f"Insufficient credits. You have {available} credits but need {required} "
            f"(shortfall of {self.shortfall})."
        )

    @property
    def shortfall(self) -> int:
        return max(0, self.required - self.available)

    def details(self) -> Dict[str, Any]:
        return {
            "required": self.required,
            "available": self.available,
            "shortfall": self.shortfall,
        }


# ============================================================================
# Integrity
# ============================================================================

class LedgerIntegrityError(MarketplaceError):
    code = "LedgerIntegrityError"
    category = ErrorCategory.INTEGRITY

    def __init__(self, professional_id: UUID, problems: list[str]):
        self.professional_id = professional_id
        self.problems = list(problems)
        super().__init__(
            f"Credit ledger for professional {professional_id} failed reconciliation: "
            + "; ".join(self.problems)
        )

    def details(self) -> Dict[str, Any]:
        return {"problems": self.problems}


class LedgerOnHoldError(MarketplaceError):
    code = "LedgerOnHold"
    category = ErrorCategory.INTEGRITY

    def __init__(self, professional_id: UUID, reason: Optional[str]):
        self.professional_id = professional_id
        self.reason = reason
        super().__init__(
            f"Debits for professional {professional_id} are halted pending manual reconciliation"
            + (f": {reason}" if reason else "")
        )


__all__ = [
    "ErrorCategory",
    "MarketplaceError",
    "ValidationFailedError",
    "PermissionDeniedError",
    "ClaimRequiredError",
    "LeadNotFoundError",
    "ClaimNotFoundError",
    "QuoteNotFoundError",
    "LeadNotClaimableError",
    "AlreadyClaimedError",
    "LeadFullError",
    "AlreadyResolvedError",
    "AlreadyRefundedError",
    "QuoteAlreadySubmittedError",
    "ConcurrentUpdateError",
    "InsufficientCreditsError",
    "LedgerIntegrityError",
    "LedgerOnHoldError",
]
