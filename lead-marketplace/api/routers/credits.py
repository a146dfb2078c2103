"""
Credits API Endpoints.

Endpoints for balances, transaction history, purchase confirmation and claim
cost calculation.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_marketplace
from api.errors import to_http_exception
from api.models import (
    BalanceResponse,
    ClaimCostResponse,
    CreditLotResponse,
    ErrorResponse,
    PurchaseConfirmationRequest,
    PurchaseConfirmationResponse,
    TransactionListResponse,
    TransactionResponse,
)
from domain.credits import CreditTransactionType
from domain.errors import MarketplaceError
from domain.lead import BudgetBracket, Urgency
from services.credit_ledger import PurchaseConfirmation
from services.marketplace import Marketplace
from services.pricing_service import calculate_claim_cost

router = APIRouter()


@router.get(
    "/professionals/{professional_id}/credits",
    response_model=BalanceResponse,
    summary="Get Credit Balance",
    description="Free and paid credits, lifetime totals and lots expiring soon.",
)
def get_balance(professional_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    """
    Get a professional's credit balance.

    `expiring_lots` lists paid lots that expire within the configured window,
    soonest first.
    """
    try:
        summary = marketplace.ledger.balance_summary(professional_id)
        return BalanceResponse(
            professional_id=summary.professional_id,
            free_credits=summary.free_credits,
            paid_credits=summary.paid_credits,
            total_balance=summary.total_balance,
            lifetime_earned=summary.lifetime_earned,
            lifetime_spent=summary.lifetime_spent,
            on_hold=summary.on_hold,
            hold_reason=summary.hold_reason,
            expiring_lots=[CreditLotResponse.from_domain(lot) for lot in summary.expiring_lots],
        )

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get balance: {str(e)}"
        )


@router.get(
    "/professionals/{professional_id}/credits/transactions",
    response_model=TransactionListResponse,
    summary="List Credit Transactions",
    description="Credit transaction history, newest first.",
)
def list_transactions(
    professional_id: UUID,
    type: Optional[CreditTransactionType] = Query(None, description="Only this transaction type"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    marketplace: Marketplace = Depends(get_marketplace),
):
    try:
        transactions = marketplace.ledger.list_transactions(
            professional_id, transaction_type=type, limit=limit, offset=offset
        )
        return TransactionListResponse(
            items=[TransactionResponse.from_domain(tx) for tx in transactions],
            count=len(transactions),
        )

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list transactions: {str(e)}"
        )


@router.post(
    "/credits/purchases/confirm",
    response_model=PurchaseConfirmationResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Confirm Credit Purchase",
    description="Credit a confirmed checkout as a paid lot. Repeated confirmations are ignored.",
)
def confirm_purchase(
    request: PurchaseConfirmationRequest,
    marketplace: Marketplace = Depends(get_marketplace),
):
    """
    Convert a confirmed payment into purchased credits.

    **Idempotency:**
    The `payment_reference` is recorded on the purchase transaction. A second
    confirmation with the same reference returns the current balance with
    `already_processed: true` and credits nothing.
    """
    try:
        result = marketplace.ledger.confirm_purchase(
            PurchaseConfirmation(
                professional_id=request.professional_id,
                package_id=request.package_id,
                credits_amount=request.credits_amount,
                bonus_credits=request.bonus_credits,
                payment_reference=request.payment_reference,
            )
        )
        return PurchaseConfirmationResponse(
            total_balance=result.balance.total_balance,
            transaction_id=result.transaction.transaction_id if result.transaction else None,
            already_processed=result.already_processed,
        )

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to confirm purchase: {str(e)}"
        )


@router.get(
    "/credits/cost",
    response_model=ClaimCostResponse,
    summary="Calculate Claim Cost",
    description="Credit cost of claiming a lead with the given bracket and urgency.",
)
def get_claim_cost(
    budget_bracket: BudgetBracket,
    urgency: Urgency,
    verified: bool = False,
):
    """
    Pure cost calculation; no lead or balance is read.

    **Example:** `GET /api/v1/credits/cost?budget_bracket=5k-20k&urgency=emergency&verified=true`
    returns 6 credits (6 x 1.25 x 0.85 = 6.375, rounded half-up).
    """
    breakdown = calculate_claim_cost(budget_bracket, urgency, verified)
    return ClaimCostResponse(
        credits=breakdown.credits,
        base_credits=breakdown.base_credits,
        urgency_multiplier=breakdown.urgency_multiplier,
        discount=breakdown.discount,
        verified=breakdown.verified,
    )
