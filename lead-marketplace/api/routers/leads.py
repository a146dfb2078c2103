"""
Leads API Endpoints.

Endpoints for posting, browsing, claiming and cancelling leads, including
direct leads sent to a single professional.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_marketplace
from api.errors import to_http_exception
from api.models import (
    CancelLeadRequest,
    ClaimCostPreviewResponse,
    ClaimCostResponse,
    ClaimLeadResponse,
    ClaimListResponse,
    ClaimRequest,
    ClaimResponse,
    DirectLeadCreateRequest,
    DirectLeadDeclineRequest,
    ErrorResponse,
    LeadCreateRequest,
    LeadListResponse,
    LeadResponse,
)
from domain.errors import MarketplaceError
from services.claim_service import ClaimResult
from services.lead_service import LeadRequest
from services.marketplace import Marketplace

router = APIRouter()


def _lead_request(request: LeadCreateRequest) -> LeadRequest:
    return LeadRequest(
        homeowner_id=request.homeowner_id,
        category=request.category,
        budget_bracket=request.budget_bracket,
        urgency=request.urgency,
        title=request.title,
    )


def _claim_response(result: ClaimResult) -> ClaimLeadResponse:
    return ClaimLeadResponse(
        claim=ClaimResponse.from_domain(result.claim),
        lead=LeadResponse.from_domain(result.lead),
        remaining_credits=result.remaining_credits,
    )


@router.post(
    "/leads",
    response_model=LeadResponse,
    status_code=201,
    summary="Post Lead",
    description="Post a homeowner's service request to the marketplace.",
)
def create_lead(request: LeadCreateRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        lead = marketplace.leads.create_lead(_lead_request(request))
        return LeadResponse.from_domain(lead)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to create lead: {str(e)}"
        )


@router.post(
    "/leads/direct",
    response_model=LeadResponse,
    status_code=201,
    summary="Send Direct Lead",
    description="Send a lead to one professional, who can accept (claim) or decline it.",
)
def create_direct_lead(request: DirectLeadCreateRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        lead = marketplace.leads.create_direct_lead(_lead_request(request), request.target_professional_id)
        return LeadResponse.from_domain(lead)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to create direct lead: {str(e)}"
        )


@router.get(
    "/leads",
    response_model=LeadListResponse,
    summary="Browse Leads",
    description="Open marketplace leads with at least one free claim slot, newest first.",
)
def browse_leads(
    category: Optional[str] = Query(None, description="Filter by service category"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    marketplace: Marketplace = Depends(get_marketplace),
):
    try:
        leads = marketplace.leads.browse_leads(category=category, limit=limit, offset=offset)
        return LeadListResponse(items=[LeadResponse.from_domain(lead) for lead in leads], count=len(leads))

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to browse leads: {str(e)}"
        )


@router.get(
    "/leads/{lead_id}",
    response_model=LeadResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get Lead",
)
def get_lead(lead_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        return LeadResponse.from_domain(marketplace.leads.get_lead(lead_id))

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get lead: {str(e)}"
        )


@router.get(
    "/leads/{lead_id}/cost",
    response_model=ClaimCostPreviewResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Preview Claim Cost",
    description="What claiming this lead would cost the professional, and whether they can afford it.",
)
def preview_claim_cost(
    lead_id: UUID,
    professional_id: UUID,
    marketplace: Marketplace = Depends(get_marketplace),
):
    try:
        preview = marketplace.claims.preview_claim_cost(lead_id, professional_id)
        breakdown = None
        if preview.breakdown is not None:
            breakdown = ClaimCostResponse(
                credits=preview.breakdown.credits,
                base_credits=preview.breakdown.base_credits,
                urgency_multiplier=preview.breakdown.urgency_multiplier,
                discount=preview.breakdown.discount,
                verified=preview.breakdown.verified,
            )
        return ClaimCostPreviewResponse(
            lead_id=preview.lead_id,
            professional_id=preview.professional_id,
            credits=preview.credits,
            price_frozen=preview.price_frozen,
            available_credits=preview.available_credits,
            can_afford=preview.can_afford,
            shortfall=preview.shortfall,
            breakdown=breakdown,
        )

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to preview claim cost: {str(e)}"
        )


@router.post(
    "/leads/{lead_id}/claims",
    response_model=ClaimLeadResponse,
    status_code=201,
    responses={
        402: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
    summary="Claim Lead",
    description="Spend credits to reserve one of the lead's claim slots.",
)
def claim_lead(lead_id: UUID, request: ClaimRequest, marketplace: Marketplace = Depends(get_marketplace)):
    """
    Claim a lead.

    **Process (atomic):**
    1. Checks the lead is open and the professional has no active claim on it
    2. Checks a slot is free
    3. Debits the claim cost (frozen on the lead by its first claim)
    4. Creates the claim and reserves the slot

    **Errors:**
    - 409 `LeadFull`, `AlreadyClaimed`, `LeadNotClaimable`
    - 402 `InsufficientCredits` with `required`, `available` and `shortfall`
    - 423 `LedgerOnHold` when debits are halted for the professional
    """
    try:
        result = marketplace.claims.claim(lead_id, request.professional_id)
        return _claim_response(result)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to claim lead: {str(e)}"
        )


@router.get(
    "/leads/{lead_id}/claims",
    response_model=ClaimListResponse,
    summary="List Claims On Lead",
)
def list_lead_claims(lead_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        marketplace.leads.get_lead(lead_id)
        claims = marketplace.claims.claims_for_lead(lead_id)
        return ClaimListResponse(items=[ClaimResponse.from_domain(c) for c in claims], count=len(claims))

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list claims: {str(e)}"
        )


@router.post(
    "/leads/{lead_id}/cancel",
    response_model=LeadResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Cancel Lead",
    description="Cancel a lead. Every active claim is refunded and pending quotes are declined.",
)
def cancel_lead(lead_id: UUID, request: CancelLeadRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        lead = marketplace.leads.cancel_lead(lead_id, request.reason, homeowner_id=request.homeowner_id)
        return LeadResponse.from_domain(lead)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to cancel lead: {str(e)}"
        )


@router.post(
    "/leads/{lead_id}/direct/accept",
    response_model=ClaimLeadResponse,
    responses={402: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Accept Direct Lead",
    description="The targeted professional accepts a direct lead; the claim cost is debited.",
)
def accept_direct_lead(lead_id: UUID, request: ClaimRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        result = marketplace.leads.accept_direct_lead(lead_id, request.professional_id)
        return _claim_response(result)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to accept direct lead: {str(e)}"
        )


@router.post(
    "/leads/{lead_id}/direct/decline",
    response_model=LeadResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Decline Direct Lead",
    description="The targeted professional declines; the lead opens to the marketplace.",
)
def decline_direct_lead(
    lead_id: UUID,
    request: DirectLeadDeclineRequest,
    marketplace: Marketplace = Depends(get_marketplace),
):
    try:
        lead = marketplace.leads.decline_direct_lead(lead_id, request.professional_id, request.reason)
        return LeadResponse.from_domain(lead)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to decline direct lead: {str(e)}"
        )


@router.get(
    "/professionals/{professional_id}/claims",
    response_model=ClaimListResponse,
    summary="List Professional's Claims",
)
def list_professional_claims(professional_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        claims = marketplace.claims.claims_for_professional(professional_id)
        return ClaimListResponse(items=[ClaimResponse.from_domain(c) for c in claims], count=len(claims))

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list claims: {str(e)}"
        )


@router.get(
    "/professionals/{professional_id}/direct-leads",
    response_model=LeadListResponse,
    summary="List Pending Direct Leads",
)
def list_direct_leads(professional_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        leads = marketplace.leads.pending_direct_leads(professional_id)
        return LeadListResponse(items=[LeadResponse.from_domain(lead) for lead in leads], count=len(leads))

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list direct leads: {str(e)}"
        )


@router.get(
    "/homeowners/{homeowner_id}/leads",
    response_model=LeadListResponse,
    summary="List Homeowner's Leads",
)
def list_homeowner_leads(homeowner_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        leads = marketplace.leads.leads_for_homeowner(homeowner_id)
        return LeadListResponse(items=[LeadResponse.from_domain(lead) for lead in leads], count=len(leads))

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list leads: {str(e)}"
        )
