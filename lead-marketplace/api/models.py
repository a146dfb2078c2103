"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.claim import Claim
from domain.credits import CreditLot, CreditTransaction, CreditTransactionType
from domain.lead import BudgetBracket, DirectLeadStatus, Lead, LeadStatus, LeadType, Urgency
from domain.quote import Quote, QuoteItemCategory, QuoteStatus


# ============================================================================
# Credit Models
# ============================================================================

class CreditLotResponse(BaseModel):
    """Paid credits that expire together."""
    lot_id: UUID
    amount: int
    created_at: datetime
    expires_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, lot: CreditLot) -> "CreditLotResponse":
        return cls(lot_id=lot.lot_id, amount=lot.amount, created_at=lot.created_at, expires_at=lot.expires_at)


class BalanceResponse(BaseModel):
    """A professional's credit balance."""
    professional_id: UUID
    free_credits: int
    paid_credits: int
    total_balance: int
    lifetime_earned: int
    lifetime_spent: int
    on_hold: bool
    hold_reason: Optional[str] = None
    expiring_lots: List[CreditLotResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "professional_id": "123e4567-e89b-12d3-a456-426614174010",
                "free_credits": 5,
                "paid_credits": 50,
                "total_balance": 55,
                "lifetime_earned": 80,
                "lifetime_spent": 25,
                "on_hold": False,
                "hold_reason": None,
                "expiring_lots": [],
            }
        }


class TransactionResponse(BaseModel):
    """One entry of the credit transaction log."""
    transaction_id: UUID
    type: CreditTransactionType
    amount: int
    balance_after: int
    related_lead_id: Optional[UUID] = None
    description: str
    reference: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_domain(cls, tx: CreditTransaction) -> "TransactionResponse":
        return cls(
            transaction_id=tx.transaction_id,
            type=tx.type,
            amount=tx.amount,
            balance_after=tx.balance_after,
            related_lead_id=tx.related_lead_id,
            description=tx.description,
            reference=tx.reference,
            created_at=tx.created_at,
        )


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    count: int


class PurchaseConfirmationRequest(BaseModel):
    """Confirmed checkout, as reported by the payment processor integration."""
    professional_id: UUID = Field(..., description="Professional who paid")
    package_id: str = Field(..., min_length=1, description="Credit package purchased")
    credits_amount: int = Field(..., gt=0, description="Credits in the package")
    bonus_credits: int = Field(0, ge=0, description="Bonus credits granted with the package")
    payment_reference: str = Field(..., min_length=1, description="Processor payment id; used for idempotency")

    class Config:
        json_schema_extra = {
            "example": {
                "professional_id": "123e4567-e89b-12d3-a456-426614174010",
                "package_id": "starter",
                "credits_amount": 50,
                "bonus_credits": 5,
                "payment_reference": "pi_3Nc1x2",
            }
        }


class PurchaseConfirmationResponse(BaseModel):
    total_balance: int
    transaction_id: Optional[UUID] = None
    already_processed: bool


class ClaimCostResponse(BaseModel):
    """Itemized claim cost."""
    credits: int
    base_credits: int
    urgency_multiplier: Decimal
    discount: Decimal
    verified: bool


class ClaimCostPreviewResponse(BaseModel):
    """What claiming a specific lead would cost a professional right now."""
    lead_id: UUID
    professional_id: UUID
    credits: int
    price_frozen: bool
    available_credits: int
    can_afford: bool
    shortfall: int
    breakdown: Optional[ClaimCostResponse] = None


# ============================================================================
# Lead Models
# ============================================================================

class LeadCreateRequest(BaseModel):
    """Request to post a lead."""
    homeowner_id: UUID
    category: str = Field(..., min_length=1, description="Service category, e.g. plumbing")
    budget_bracket: BudgetBracket
    urgency: Urgency
    title: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "homeowner_id": "123e4567-e89b-12d3-a456-426614174020",
                "category": "plumbing",
                "budget_bracket": "5k-20k",
                "urgency": "urgent",
                "title": "Replace water heater",
            }
        }


class DirectLeadCreateRequest(LeadCreateRequest):
    """Request to send a lead to one professional."""
    target_professional_id: UUID


class LeadResponse(BaseModel):
    lead_id: UUID
    homeowner_id: UUID
    category: str
    title: str
    budget_bracket: BudgetBracket
    urgency: Urgency
    status: LeadStatus
    lead_type: LeadType
    max_claims: int
    claim_count: int
    remaining_slots: int
    credits_required: Optional[int] = None
    expires_at: datetime
    created_at: datetime
    target_professional_id: Optional[UUID] = None
    direct_lead_status: Optional[DirectLeadStatus] = None
    direct_expires_at: Optional[datetime] = None
    accepted_quote_id: Optional[UUID] = None
    cancel_reason: Optional[str] = None
    resolved_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, lead: Lead) -> "LeadResponse":
        return cls(
            lead_id=lead.lead_id,
            homeowner_id=lead.homeowner_id,
            category=lead.category,
            title=lead.title,
            budget_bracket=lead.budget_bracket,
            urgency=lead.urgency,
            status=lead.status,
            lead_type=lead.lead_type,
            max_claims=lead.max_claims,
            claim_count=lead.claim_count,
            remaining_slots=lead.remaining_slots,
            credits_required=lead.credits_required,
            expires_at=lead.expires_at,
            created_at=lead.created_at,
            target_professional_id=lead.target_professional_id,
            direct_lead_status=lead.direct_lead_status,
            direct_expires_at=lead.direct_expires_at,
            accepted_quote_id=lead.accepted_quote_id,
            cancel_reason=lead.cancel_reason,
            resolved_at=lead.resolved_at,
        )


class LeadListResponse(BaseModel):
    items: List[LeadResponse]
    count: int


class CancelLeadRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    homeowner_id: Optional[UUID] = Field(None, description="When given, must own the lead")


class ClaimRequest(BaseModel):
    professional_id: UUID


class DirectLeadDeclineRequest(BaseModel):
    professional_id: UUID
    reason: str = ""


class ClaimResponse(BaseModel):
    claim_id: UUID
    lead_id: UUID
    professional_id: UUID
    credits_spent: int
    claimed_at: datetime
    quote_submitted: bool
    refunded: bool
    refunded_at: Optional[datetime] = None
    refund_reason: Optional[str] = None

    @classmethod
    def from_domain(cls, claim: Claim) -> "ClaimResponse":
        return cls(
            claim_id=claim.claim_id,
            lead_id=claim.lead_id,
            professional_id=claim.professional_id,
            credits_spent=claim.credits_spent,
            claimed_at=claim.claimed_at,
            quote_submitted=claim.quote_submitted,
            refunded=claim.refunded,
            refunded_at=claim.refunded_at,
            refund_reason=claim.refund_reason,
        )


class ClaimLeadResponse(BaseModel):
    """Successful claim: the claim, the updated lead and the credits left."""
    claim: ClaimResponse
    lead: LeadResponse
    remaining_credits: int


class ClaimListResponse(BaseModel):
    items: List[ClaimResponse]
    count: int


# ============================================================================
# Quote Models
# ============================================================================

class QuoteItemRequest(BaseModel):
    category: QuoteItemCategory
    description: str = ""
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)


class QuoteSubmitRequest(BaseModel):
    """
    Quote pricing and timeline. Totals are computed by the server; any total
    sent by a client is ignored.
    """
    professional_id: UUID
    items: List[QuoteItemRequest] = Field(..., min_length=1)
    estimated_start_date: date
    estimated_completion_date: date
    notes: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "professional_id": "123e4567-e89b-12d3-a456-426614174010",
                "items": [
                    {"category": "labor", "description": "Install", "quantity": "8", "unit_price": "45.00"},
                    {"category": "materials", "description": "Water heater", "quantity": "1", "unit_price": "900.00"},
                ],
                "estimated_start_date": "2025-03-01",
                "estimated_completion_date": "2025-03-02",
                "notes": "Includes haul-away of the old unit",
            }
        }


class QuoteItemResponse(BaseModel):
    category: QuoteItemCategory
    description: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal


class QuoteResponse(BaseModel):
    quote_id: UUID
    lead_id: UUID
    professional_id: UUID
    status: QuoteStatus
    items: List[QuoteItemResponse]
    subtotal: Decimal
    vat: Decimal
    total: Decimal
    estimated_start_date: date
    estimated_completion_date: date
    notes: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    expired_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, quote: Quote) -> "QuoteResponse":
        return cls(
            quote_id=quote.quote_id,
            lead_id=quote.lead_id,
            professional_id=quote.professional_id,
            status=quote.status,
            items=[
                QuoteItemResponse(
                    category=item.category,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total=item.total,
                )
                for item in quote.pricing.items
            ],
            subtotal=quote.pricing.subtotal,
            vat=quote.pricing.vat,
            total=quote.pricing.total,
            estimated_start_date=quote.estimated_start_date,
            estimated_completion_date=quote.estimated_completion_date,
            notes=quote.notes,
            created_at=quote.created_at,
            updated_at=quote.updated_at,
            accepted_at=quote.accepted_at,
            declined_at=quote.declined_at,
            decline_reason=quote.decline_reason,
            expired_at=quote.expired_at,
        )


class QuoteListResponse(BaseModel):
    items: List[QuoteResponse]
    count: int


class QuoteAcceptRequest(BaseModel):
    homeowner_id: Optional[UUID] = Field(None, description="When given, must own the lead")


class QuoteDeclineRequest(BaseModel):
    reason: str = Field(..., min_length=1)
    homeowner_id: Optional[UUID] = Field(None, description="When given, must own the lead")


# ============================================================================
# Admin Models
# ============================================================================

class AdminAdjustmentRequest(BaseModel):
    professional_id: UUID
    amount: int = Field(..., description="Positive to add credits, negative to deduct")
    reason: str = Field(..., min_length=1)
    expires_at: Optional[datetime] = Field(None, description="Added credits expire (paid lot) when set")


class AdminAdjustmentResponse(BaseModel):
    total_balance: int
    transaction: TransactionResponse


class RefundClaimRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RefundClaimResponse(BaseModel):
    claim: ClaimResponse
    balance_after: int


class ReleaseHoldRequest(BaseModel):
    note: str = ""


class ReconciliationResponse(BaseModel):
    professional_id: UUID
    consistent: bool
    problems: List[str]
    total_balance: int
    transaction_sum: int
    transaction_count: int
    on_hold: bool


class SweepRequest(BaseModel):
    reconcile: bool = False


class SweepResponse(BaseModel):
    as_of: datetime
    direct_leads_converted: int
    leads_expired: int
    quotes_expired: int
    lots_expired: int
    balances_reconciled: int
    inconsistent_balances: List[UUID]
    failed_sweeps: List[str]


# ============================================================================
# Error Models
# ============================================================================

class ErrorDetail(BaseModel):
    """`detail` of every marketplace error response."""
    error: str
    message: str

    class Config:
        extra = "allow"
        json_schema_extra = {
            "example": {
                "error": "InsufficientCredits",
                "message": "Insufficient credits. You have 3 credits but need 5 (shortfall of 2).",
                "required": 5,
                "available": 3,
                "shortfall": 2,
            }
        }


class ErrorResponse(BaseModel):
    """Standard error response."""
    detail: ErrorDetail
