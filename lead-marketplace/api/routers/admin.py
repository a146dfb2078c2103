"""
Admin API Endpoints.

Manual credit adjustments, claim reversals, ledger reconciliation and sweeps.
Authentication of administrators happens in front of this API.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_marketplace
from api.errors import to_http_exception
from api.models import (
    AdminAdjustmentRequest,
    AdminAdjustmentResponse,
    BalanceResponse,
    ClaimResponse,
    CreditLotResponse,
    ErrorResponse,
    ReconciliationResponse,
    RefundClaimRequest,
    RefundClaimResponse,
    ReleaseHoldRequest,
    SweepRequest,
    SweepResponse,
    TransactionResponse,
)
from domain.errors import MarketplaceError
from services.marketplace import Marketplace
from services.sweep_service import run_sweeps

router = APIRouter(prefix="/admin")


@router.post(
    "/credits/adjustments",
    response_model=AdminAdjustmentResponse,
    responses={400: {"model": ErrorResponse}, 402: {"model": ErrorResponse}},
    summary="Adjust Credits",
    description="Add (admin_addition) or deduct (admin_deduction) credits with a reason.",
)
def adjust_credits(request: AdminAdjustmentRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        posting = marketplace.ledger.admin_adjust(
            request.professional_id,
            request.amount,
            request.reason,
            expires_at=request.expires_at,
        )
        return AdminAdjustmentResponse(
            total_balance=posting.balance.total_balance,
            transaction=TransactionResponse.from_domain(posting.transaction),
        )

    except MarketplaceError as e:
        raise to_http_exception(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to adjust credits: {str(e)}"
        )


@router.post(
    "/claims/{claim_id}/refund",
    response_model=RefundClaimResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Refund Claim",
    description="Administrative reversal of a claim. Refunding twice fails with AlreadyRefunded.",
)
def refund_claim(claim_id: UUID, request: RefundClaimRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        result = marketplace.claims.refund_claim(claim_id, request.reason)
        return RefundClaimResponse(
            claim=ClaimResponse.from_domain(result.claim),
            balance_after=result.balance_after,
        )

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to refund claim: {str(e)}"
        )


@router.post(
    "/professionals/{professional_id}/reconcile",
    response_model=ReconciliationResponse,
    summary="Reconcile Ledger",
    description="Check a balance against the transaction log. A mismatch halts debits.",
)
def reconcile(professional_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        report = marketplace.ledger.reconcile(professional_id)
        return ReconciliationResponse(
            professional_id=report.professional_id,
            consistent=report.consistent,
            problems=report.problems,
            total_balance=report.total_balance,
            transaction_sum=report.transaction_sum,
            transaction_count=report.transaction_count,
            on_hold=report.on_hold,
        )

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reconcile ledger: {str(e)}"
        )


@router.post(
    "/professionals/{professional_id}/release-hold",
    response_model=BalanceResponse,
    summary="Release Debit Hold",
    description="Resume debits after a manual reconciliation.",
)
def release_hold(
    professional_id: UUID,
    request: ReleaseHoldRequest,
    marketplace: Marketplace = Depends(get_marketplace),
):
    try:
        marketplace.ledger.release_hold(professional_id, request.note)
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
            detail=f"Failed to release hold: {str(e)}"
        )


@router.post(
    "/sweeps",
    response_model=SweepResponse,
    summary="Run Expiry Sweeps",
    description="Run every expiry sweep once (normally done by scripts/run_expiry_sweeps.py).",
)
def run_expiry_sweeps(request: SweepRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        report = run_sweeps(marketplace, reconcile=request.reconcile)
        return SweepResponse(
            as_of=report.as_of,
            direct_leads_converted=report.direct_leads_converted,
            leads_expired=report.leads_expired,
            quotes_expired=report.quotes_expired,
            lots_expired=report.lots_expired,
            balances_reconciled=report.balances_reconciled,
            inconsistent_balances=report.inconsistent_balances,
            failed_sweeps=report.failed_sweeps,
        )

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to run sweeps: {str(e)}"
        )
