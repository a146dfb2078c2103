"""
Quotes API Endpoints.

Endpoints for submitting, revising, accepting and declining quotes on claimed
leads.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_marketplace
from api.errors import to_http_exception
from api.models import (
    ErrorResponse,
    QuoteAcceptRequest,
    QuoteDeclineRequest,
    QuoteListResponse,
    QuoteResponse,
    QuoteSubmitRequest,
)
from domain.errors import MarketplaceError
from domain.quote import QuoteLineItem
from services.marketplace import Marketplace
from services.quote_service import QuoteSubmission

router = APIRouter()


def _submission(request: QuoteSubmitRequest) -> QuoteSubmission:
    return QuoteSubmission(
        items=[
            QuoteLineItem.create(item.category, item.quantity, item.unit_price, item.description)
            for item in request.items
        ],
        estimated_start_date=request.estimated_start_date,
        estimated_completion_date=request.estimated_completion_date,
        notes=request.notes,
    )


@router.post(
    "/leads/{lead_id}/quotes",
    response_model=QuoteResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Submit Quote",
    description="Submit a quote on a lead the professional has claimed.",
)
def submit_quote(lead_id: UUID, request: QuoteSubmitRequest, marketplace: Marketplace = Depends(get_marketplace)):
    """
    Submit a priced quote.

    **Pricing:**
    Each item total is `quantity x unit_price`; `vat` is 5% of the subtotal and
    `total = subtotal + vat`, rounded half-up to cents. All totals are computed
    by the server.

    **Errors:**
    - 400 `ClaimRequired` when the professional has no active claim on the lead
    - 409 `QuoteAlreadySubmitted` for a second quote on the same claim
    """
    try:
        quote = marketplace.quotes.submit(lead_id, request.professional_id, _submission(request))
        return QuoteResponse.from_domain(quote)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to submit quote: {str(e)}"
        )


@router.get(
    "/leads/{lead_id}/quotes",
    response_model=QuoteListResponse,
    summary="List Quotes On Lead",
)
def list_lead_quotes(lead_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        marketplace.leads.get_lead(lead_id)
        quotes = marketplace.quotes.quotes_for_lead(lead_id)
        return QuoteListResponse(items=[QuoteResponse.from_domain(q) for q in quotes], count=len(quotes))

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list quotes: {str(e)}"
        )


@router.get(
    "/quotes/{quote_id}",
    response_model=QuoteResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get Quote",
)
def get_quote(quote_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        return QuoteResponse.from_domain(marketplace.quotes.get_quote(quote_id))

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to get quote: {str(e)}"
        )


@router.put(
    "/quotes/{quote_id}",
    response_model=QuoteResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Revise Quote",
    description="Replace the pricing and timeline of a pending quote.",
)
def revise_quote(quote_id: UUID, request: QuoteSubmitRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        quote = marketplace.quotes.revise(quote_id, request.professional_id, _submission(request))
        return QuoteResponse.from_domain(quote)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to revise quote: {str(e)}"
        )


@router.post(
    "/quotes/{quote_id}/accept",
    response_model=QuoteResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Accept Quote",
    description="Accept a quote; the lead is resolved and every other pending quote declined.",
)
def accept_quote(
    quote_id: UUID,
    request: Optional[QuoteAcceptRequest] = None,
    marketplace: Marketplace = Depends(get_marketplace),
):
    """
    Accept a quote.

    Only one quote per lead can ever be accepted. A second accept on the same
    lead, concurrent or later, fails with 409 `AlreadyResolved`.
    """
    try:
        homeowner_id = request.homeowner_id if request is not None else None
        quote = marketplace.quotes.accept(quote_id, homeowner_id=homeowner_id)
        return QuoteResponse.from_domain(quote)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to accept quote: {str(e)}"
        )


@router.post(
    "/quotes/{quote_id}/decline",
    response_model=QuoteResponse,
    responses={403: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Decline Quote",
)
def decline_quote(quote_id: UUID, request: QuoteDeclineRequest, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        quote = marketplace.quotes.decline(quote_id, request.reason, homeowner_id=request.homeowner_id)
        return QuoteResponse.from_domain(quote)

    except MarketplaceError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to decline quote: {str(e)}"
        )


@router.get(
    "/professionals/{professional_id}/quotes",
    response_model=QuoteListResponse,
    summary="List Professional's Quotes",
)
def list_professional_quotes(professional_id: UUID, marketplace: Marketplace = Depends(get_marketplace)):
    try:
        quotes = marketplace.quotes.quotes_for_professional(professional_id)
        return QuoteListResponse(items=[QuoteResponse.from_domain(q) for q in quotes], count=len(quotes))

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list quotes: {str(e)}"
        )
