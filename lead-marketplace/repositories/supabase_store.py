"""
Supabase-backed marketplace store.

Reads are plain table queries; list reads walk .range() pages so PostgREST's
max-rows cap never truncates them. Every write goes through one call to the
Postgres function `commit_marketplace_changes()` (see sql/), which applies a
whole ChangeSet in a single database transaction:

- rows with expected_version 0 are inserted and must not exist yet
- other rows are updated WHERE version = expected_version
- credit transactions are inserted only (unique reference)

A lost version check raises inside the function, rolling back everything, and
surfaces here as StaleRecordError.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from postgrest.exceptions import APIError

from domain.claim import Claim
from domain.credits import (
    CreditBalance,
    CreditLot,
    CreditTransaction,
    CreditTransactionType,
    LotConsumption,
)
from domain.lead import BudgetBracket, DirectLeadStatus, Lead, LeadStatus, LeadType, Urgency
from domain.quote import Quote, QuoteItemCategory, QuoteLineItem, QuotePricing, QuoteStatus
from domain.time import require_utc_timestamp
from repositories.client import get_supabase
from repositories.store import ChangeSet, MarketplaceStore, StaleRecordError

# Keep these aligned with sql/001_marketplace_schema.sql.
_LEADS_TABLE: str = "leads"
_CLAIMS_TABLE: str = "lead_claims"
_QUOTES_TABLE: str = "quotes"
_BALANCES_TABLE: str = "credit_balances"
_TRANSACTIONS_TABLE: str = "credit_transactions"
_COMMIT_FUNCTION: str = "commit_marketplace_changes"

# PostgREST caps every response (max-rows, 1000 on Supabase by default).
_PAGE_SIZE: int = 1000


def _to_iso_utc(dt: Optional[datetime], *, name: str) -> Optional[str]:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    if dt is None:
        return None
    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Supabase commonly returns ISO-8601 strings, sometimes with a trailing 'Z'.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_optional_datetime(value: Any) -> Optional[datetime]:
    return _parse_utc_datetime(value) if value else None


def _optional_uuid(value: Any) -> Optional[UUID]:
    return UUID(str(value)) if value else None


def _rows(response: Any, action: str) -> List[Mapping[str, Any]]:
    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    return getattr(response, "data", None) or []


def _fetch_all(build_query: Callable[[], Any], action: str, page_size: int) -> List[Mapping[str, Any]]:
    """
    Read every row of a list query, one .range() page at a time.

    `build_query` must return a fresh, fully ordered query on each call. Paging
    stops at the first empty page, so a server cap below `page_size` still
    yields every row.
    """

    all_rows: List[Mapping[str, Any]] = []
    offset = 0

    while True:
        response = build_query().range(offset, offset + page_size - 1).execute()
        page_rows = _rows(response, action)
        if not page_rows:
            break
        all_rows.extend(page_rows)
        offset += len(page_rows)

    return all_rows


# ============================================================================
# Row converters
# ============================================================================

def _row_to_lead(row: Mapping[str, Any]) -> Lead:
    """Convert a Supabase row into a Lead."""

    direct_status = row.get("direct_lead_status")
    credits_required = row.get("credits_required")
    return Lead(
        lead_id=UUID(str(row["lead_id"])),
        homeowner_id=UUID(str(row["homeowner_id"])),
        category=str(row["category"]),
        title=str(row.get("title") or ""),
        budget_bracket=BudgetBracket(str(row["budget_bracket"])),
        urgency=Urgency(str(row["urgency"])),
        expires_at=_parse_utc_datetime(row["expires_at_utc"]),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        max_claims=int(row["max_claims"]),
        claim_count=int(row["claim_count"]),
        credits_required=int(credits_required) if credits_required is not None else None,
        status=LeadStatus(str(row["status"])),
        lead_type=LeadType(str(row["lead_type"])),
        target_professional_id=_optional_uuid(row.get("target_professional_id")),
        direct_lead_status=DirectLeadStatus(str(direct_status)) if direct_status else None,
        direct_expires_at=_parse_optional_datetime(row.get("direct_expires_at_utc")),
        converted_at=_parse_optional_datetime(row.get("converted_at_utc")),
        accepted_quote_id=_optional_uuid(row.get("accepted_quote_id")),
        cancel_reason=row.get("cancel_reason"),
        resolved_at=_parse_optional_datetime(row.get("resolved_at_utc")),
        version=int(row.get("version", 0)),
    )


def _lead_to_row(lead: Lead) -> Dict[str, Any]:
    return {
        "lead_id": str(lead.lead_id),
        "homeowner_id": str(lead.homeowner_id),
        "category": lead.category,
        "title": lead.title,
        "budget_bracket": lead.budget_bracket.value,
        "urgency": lead.urgency.value,
        "expires_at_utc": _to_iso_utc(lead.expires_at, name="expires_at"),
        "created_at_utc": _to_iso_utc(lead.created_at, name="created_at"),
        "max_claims": lead.max_claims,
        "claim_count": lead.claim_count,
        "credits_required": lead.credits_required,
        "status": lead.status.value,
        "lead_type": lead.lead_type.value,
        "target_professional_id": str(lead.target_professional_id) if lead.target_professional_id else None,
        "direct_lead_status": lead.direct_lead_status.value if lead.direct_lead_status else None,
        "direct_expires_at_utc": _to_iso_utc(lead.direct_expires_at, name="direct_expires_at"),
        "converted_at_utc": _to_iso_utc(lead.converted_at, name="converted_at"),
        "accepted_quote_id": str(lead.accepted_quote_id) if lead.accepted_quote_id else None,
        "cancel_reason": lead.cancel_reason,
        "resolved_at_utc": _to_iso_utc(lead.resolved_at, name="resolved_at"),
        "version": lead.version,
    }


def _row_to_claim(row: Mapping[str, Any]) -> Claim:
    """Convert a Supabase row into a Claim."""

    return Claim(
        claim_id=UUID(str(row["claim_id"])),
        lead_id=UUID(str(row["lead_id"])),
        professional_id=UUID(str(row["professional_id"])),
        credits_spent=int(row["credits_spent"]),
        claimed_at=_parse_utc_datetime(row["claimed_at_utc"]),
        quote_submitted=bool(row.get("quote_submitted", False)),
        quote_submitted_at=_parse_optional_datetime(row.get("quote_submitted_at_utc")),
        refunded=bool(row.get("refunded", False)),
        refunded_at=_parse_optional_datetime(row.get("refunded_at_utc")),
        refund_reason=row.get("refund_reason"),
        version=int(row.get("version", 0)),
    )


def _claim_to_row(claim: Claim) -> Dict[str, Any]:
    return {
        "claim_id": str(claim.claim_id),
        "lead_id": str(claim.lead_id),
        "professional_id": str(claim.professional_id),
        "credits_spent": claim.credits_spent,
        "claimed_at_utc": _to_iso_utc(claim.claimed_at, name="claimed_at"),
        "quote_submitted": claim.quote_submitted,
        "quote_submitted_at_utc": _to_iso_utc(claim.quote_submitted_at, name="quote_submitted_at"),
        "refunded": claim.refunded,
        "refunded_at_utc": _to_iso_utc(claim.refunded_at, name="refunded_at"),
        "refund_reason": claim.refund_reason,
        "version": claim.version,
    }


def _row_to_quote(row: Mapping[str, Any]) -> Quote:
    """Convert a Supabase row (pricing items stored as jsonb) into a Quote."""

    items = tuple(
        QuoteLineItem(
            category=QuoteItemCategory(str(item["category"])),
            quantity=Decimal(str(item["quantity"])),
            unit_price=Decimal(str(item["unit_price"])),
            total=Decimal(str(item["total"])),
            description=str(item.get("description") or ""),
        )
        for item in row.get("items") or []
    )
    pricing = QuotePricing(
        items=items,
        subtotal=Decimal(str(row["subtotal"])),
        vat=Decimal(str(row["vat"])),
        total=Decimal(str(row["total"])),
    )
    return Quote(
        quote_id=UUID(str(row["quote_id"])),
        lead_id=UUID(str(row["lead_id"])),
        professional_id=UUID(str(row["professional_id"])),
        pricing=pricing,
        estimated_start_date=date.fromisoformat(str(row["estimated_start_date"])),
        estimated_completion_date=date.fromisoformat(str(row["estimated_completion_date"])),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        status=QuoteStatus(str(row["status"])),
        notes=str(row.get("notes") or ""),
        updated_at=_parse_optional_datetime(row.get("updated_at_utc")),
        accepted_at=_parse_optional_datetime(row.get("accepted_at_utc")),
        declined_at=_parse_optional_datetime(row.get("declined_at_utc")),
        decline_reason=row.get("decline_reason"),
        expired_at=_parse_optional_datetime(row.get("expired_at_utc")),
        version=int(row.get("version", 0)),
    )


def _quote_to_row(quote: Quote) -> Dict[str, Any]:
    return {
        "quote_id": str(quote.quote_id),
        "lead_id": str(quote.lead_id),
        "professional_id": str(quote.professional_id),
        "status": quote.status.value,
        "items": [
            {
                "category": item.category.value,
                "description": item.description,
                "quantity": str(item.quantity),
                "unit_price": str(item.unit_price),
                "total": str(item.total),
            }
            for item in quote.pricing.items
        ],
        "subtotal": str(quote.pricing.subtotal),
        "vat": str(quote.pricing.vat),
        "total": str(quote.pricing.total),
        "estimated_start_date": quote.estimated_start_date.isoformat(),
        "estimated_completion_date": quote.estimated_completion_date.isoformat(),
        "notes": quote.notes,
        "created_at_utc": _to_iso_utc(quote.created_at, name="created_at"),
        "updated_at_utc": _to_iso_utc(quote.updated_at, name="updated_at"),
        "accepted_at_utc": _to_iso_utc(quote.accepted_at, name="accepted_at"),
        "declined_at_utc": _to_iso_utc(quote.declined_at, name="declined_at"),
        "decline_reason": quote.decline_reason,
        "expired_at_utc": _to_iso_utc(quote.expired_at, name="expired_at"),
        "version": quote.version,
    }


def _row_to_balance(row: Mapping[str, Any]) -> CreditBalance:
    """Convert a Supabase row (paid lots stored as jsonb) into a CreditBalance."""

    lots = tuple(
        CreditLot(
            lot_id=UUID(str(lot["lot_id"])),
            amount=int(lot["amount"]),
            created_at=_parse_utc_datetime(lot["created_at_utc"]),
            expires_at=_parse_optional_datetime(lot.get("expires_at_utc")),
        )
        for lot in row.get("paid_lots") or []
    )
    return CreditBalance(
        professional_id=UUID(str(row["professional_id"])),
        free_credits=int(row["free_credits"]),
        paid_lots=lots,
        lifetime_earned=int(row["lifetime_earned"]),
        lifetime_spent=int(row["lifetime_spent"]),
        on_hold=bool(row.get("on_hold", False)),
        hold_reason=row.get("hold_reason"),
        updated_at=_parse_optional_datetime(row.get("updated_at_utc")),
        version=int(row.get("version", 0)),
    )


def _balance_to_row(balance: CreditBalance) -> Dict[str, Any]:
    return {
        "professional_id": str(balance.professional_id),
        "free_credits": balance.free_credits,
        "paid_lots": [
            {
                "lot_id": str(lot.lot_id),
                "amount": lot.amount,
                "created_at_utc": _to_iso_utc(lot.created_at, name="lot.created_at"),
                "expires_at_utc": _to_iso_utc(lot.expires_at, name="lot.expires_at"),
            }
            for lot in balance.paid_lots
        ],
        "lifetime_earned": balance.lifetime_earned,
        "lifetime_spent": balance.lifetime_spent,
        "on_hold": balance.on_hold,
        "hold_reason": balance.hold_reason,
        "updated_at_utc": _to_iso_utc(balance.updated_at, name="updated_at"),
        "version": balance.version,
    }


def _row_to_transaction(row: Mapping[str, Any]) -> CreditTransaction:
    """Convert a Supabase row into a CreditTransaction."""

    return CreditTransaction(
        transaction_id=UUID(str(row["transaction_id"])),
        professional_id=UUID(str(row["professional_id"])),
        type=CreditTransactionType(str(row["type"])),
        amount=int(row["amount"]),
        balance_after=int(row["balance_after"]),
        created_at=_parse_utc_datetime(row["created_at_utc"]),
        related_lead_id=_optional_uuid(row.get("related_lead_id")),
        description=str(row.get("description") or ""),
        reference=row.get("reference"),
        consumed=tuple(
            LotConsumption(lot_id=_optional_uuid(item.get("lot_id")), amount=int(item["amount"]))
            for item in row.get("consumed") or []
        ),
    )


def _transaction_to_row(tx: CreditTransaction) -> Dict[str, Any]:
    return {
        "transaction_id": str(tx.transaction_id),
        "professional_id": str(tx.professional_id),
        "type": tx.type.value,
        "amount": tx.amount,
        "balance_after": tx.balance_after,
        "created_at_utc": _to_iso_utc(tx.created_at, name="created_at"),
        "related_lead_id": str(tx.related_lead_id) if tx.related_lead_id else None,
        "description": tx.description,
        "reference": tx.reference,
        "consumed": [
            {"lot_id": str(item.lot_id) if item.lot_id else None, "amount": item.amount}
            for item in tx.consumed
        ],
    }


def _versioned(rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{"row": row, "expected_version": row["version"] - 1} for row in rows]


def serialize_changes(changes: ChangeSet) -> Dict[str, Any]:
    """Build the jsonb payload accepted by commit_marketplace_changes()."""

    return {
        "leads": _versioned([_lead_to_row(lead) for lead in changes.leads.values()]),
        "claims": _versioned([_claim_to_row(claim) for claim in changes.claims.values()]),
        "quotes": _versioned([_quote_to_row(quote) for quote in changes.quotes.values()]),
        "balances": _versioned([_balance_to_row(balance) for balance in changes.balances.values()]),
        "transactions": [_transaction_to_row(tx) for tx in changes.transactions],
    }


def _parse_stale_error(message: str) -> StaleRecordError:
    """
    Parse 'stale_record:<kind>:<id>:<expected>:<actual>' raised by the commit function.
    """

    marker = message[message.index("stale_record"):]
    parts = marker.split(":")
    kind = parts[1] if len(parts) > 1 else "record"
    record_id = parts[2] if len(parts) > 2 else "?"
    try:
        expected = int(parts[3])
    except (IndexError, ValueError):
        expected = -1
    try:
        actual: Optional[int] = int(parts[4])
    except (IndexError, ValueError):
        actual = None
    return StaleRecordError(kind, record_id, expected, actual)


class SupabaseMarketplaceStore(MarketplaceStore):
    def __init__(self, client: Any = None, *, page_size: int = _PAGE_SIZE):
        self._client = client if client is not None else get_supabase()
        self._page_size = page_size

    # Leads
    def get_lead(self, lead_id: UUID) -> Optional[Lead]:
        response = (
            self._client.table(_LEADS_TABLE)
            .select("*")
            .eq("lead_id", str(lead_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get lead")
        return _row_to_lead(rows[0]) if rows else None

    def list_leads(
        self,
        *,
        statuses: Optional[Sequence[LeadStatus]] = None,
        homeowner_id: Optional[UUID] = None,
        lead_type: Optional[LeadType] = None,
        target_professional_id: Optional[UUID] = None,
    ) -> List[Lead]:
        def build_query():
            query = self._client.table(_LEADS_TABLE).select("*")
            if statuses is not None:
                query = query.in_("status", [status.value for status in statuses])
            if homeowner_id is not None:
                query = query.eq("homeowner_id", str(homeowner_id))
            if lead_type is not None:
                query = query.eq("lead_type", lead_type.value)
            if target_professional_id is not None:
                query = query.eq("target_professional_id", str(target_professional_id))
            return query.order("created_at_utc", desc=True).order("lead_id")

        rows = _fetch_all(build_query, "list leads", self._page_size)
        return [_row_to_lead(row) for row in rows]

    # Claims
    def get_claim(self, claim_id: UUID) -> Optional[Claim]:
        response = (
            self._client.table(_CLAIMS_TABLE)
            .select("*")
            .eq("claim_id", str(claim_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get claim")
        return _row_to_claim(rows[0]) if rows else None

    def list_claims(
        self,
        *,
        lead_id: Optional[UUID] = None,
        professional_id: Optional[UUID] = None,
    ) -> List[Claim]:
        def build_query():
            query = self._client.table(_CLAIMS_TABLE).select("*")
            if lead_id is not None:
                query = query.eq("lead_id", str(lead_id))
            if professional_id is not None:
                query = query.eq("professional_id", str(professional_id))
            return query.order("claimed_at_utc").order("claim_id")

        rows = _fetch_all(build_query, "list claims", self._page_size)
        return [_row_to_claim(row) for row in rows]

    # Quotes
    def get_quote(self, quote_id: UUID) -> Optional[Quote]:
        response = (
            self._client.table(_QUOTES_TABLE)
            .select("*")
            .eq("quote_id", str(quote_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get quote")
        return _row_to_quote(rows[0]) if rows else None

    def list_quotes(
        self,
        *,
        lead_id: Optional[UUID] = None,
        professional_id: Optional[UUID] = None,
        status: Optional[QuoteStatus] = None,
    ) -> List[Quote]:
        def build_query():
            query = self._client.table(_QUOTES_TABLE).select("*")
            if lead_id is not None:
                query = query.eq("lead_id", str(lead_id))
            if professional_id is not None:
                query = query.eq("professional_id", str(professional_id))
            if status is not None:
                query = query.eq("status", status.value)
            return query.order("created_at_utc").order("quote_id")

        rows = _fetch_all(build_query, "list quotes", self._page_size)
        return [_row_to_quote(row) for row in rows]

    # Credits
    def get_balance(self, professional_id: UUID) -> Optional[CreditBalance]:
        response = (
            self._client.table(_BALANCES_TABLE)
            .select("*")
            .eq("professional_id", str(professional_id))
            .limit(1)
            .execute()
        )
        rows = _rows(response, "get credit balance")
        return _row_to_balance(rows[0]) if rows else None

    def list_balances(self) -> List[CreditBalance]:
        rows = _fetch_all(
            lambda: self._client.table(_BALANCES_TABLE).select("*").order("professional_id"),
            "list credit balances",
            self._page_size,
        )
        return [_row_to_balance(row) for row in rows]

    def list_transactions(self, professional_id: UUID) -> List[CreditTransaction]:
        # Transactions written in one commit share created_at_utc; seq is the
        # insertion order the running balance was computed in.
        rows = _fetch_all(
            lambda: (
                self._client.table(_TRANSACTIONS_TABLE)
                .select("*")
                .eq("professional_id", str(professional_id))
                .order("created_at_utc")
                .order("seq")
            ),
            "list credit transactions",
            self._page_size,
        )
        return [_row_to_transaction(row) for row in rows]

    def find_transaction_by_reference(self, reference: str) -> Optional[CreditTransaction]:
        response = (
            self._client.table(_TRANSACTIONS_TABLE)
            .select("*")
            .eq("reference", reference)
            .limit(1)
            .execute()
        )
        rows = _rows(response, "find credit transaction")
        return _row_to_transaction(rows[0]) if rows else None

    # Writes
    def commit(self, changes: ChangeSet) -> None:
        payload = serialize_changes(changes)

        try:
            response = self._client.rpc(_COMMIT_FUNCTION, {"p_changes": payload}).execute()
        except APIError as e:
            message = getattr(e, "message", None) or str(e)
            if "stale_record" in message:
                raise _parse_stale_error(message) from e
            raise RuntimeError(f"Failed to commit marketplace changes: {message}") from e

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to commit marketplace changes: {error}")


__all__ = ["SupabaseMarketplaceStore", "serialize_changes"]
