"""
Tests for `repositories/supabase_store.py`.

These run against a recording fake of the supabase client; no database is
needed.

Covers contract rules:
- Every unit of work is sent as one commit_marketplace_changes() call.
- Staged versions become expected_version (0 means insert).
- A stale_record error from the database surfaces as StaleRecordError.
- Rows round-trip through the converters with UTC timestamps.
- List reads walk every .range() page.
- Transactions come back in write order even when timestamps tie.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
from postgrest.exceptions import APIError

from domain.claim import Claim
from domain.credits import CreditBalance, CreditLot, CreditTransaction, CreditTransactionType, LotConsumption
from domain.lead import BudgetBracket, Lead, LeadStatus, LeadType, Urgency
from domain.quote import Quote, QuoteLineItem, QuotePricing
from repositories.store import ChangeSet, StaleRecordError
from repositories.supabase_store import (
    SupabaseMarketplaceStore,
    _balance_to_row,
    _claim_to_row,
    _lead_to_row,
    _parse_stale_error,
    _parse_utc_datetime,
    _quote_to_row,
    _row_to_balance,
    _row_to_claim,
    _row_to_lead,
    _row_to_quote,
    _row_to_transaction,
    _transaction_to_row,
    serialize_changes,
)
from services.credit_ledger import CreditLedger
from services.locks import LockRegistry
from services.notification_service import NotificationService

NOW = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeQuery:
    """Minimal stand-in for the postgrest query builder."""

    def __init__(self, client: "FakeClient", table: str):
        self._client = client
        self.table = table
        self.filters: List[tuple] = []

    def select(self, *_columns: str) -> "FakeQuery":
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append(("eq", column, value))
        return self

    def in_(self, column: str, values: List[Any]) -> "FakeQuery":
        self.filters.append(("in", column, tuple(values)))
        return self

    def order(self, column: str, desc: bool = False) -> "FakeQuery":
        self.filters.append(("order", column, desc))
        return self

    def limit(self, _count: int) -> "FakeQuery":
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.filters.append(("range", start, end))
        return self

    def _matches(self, row: Dict[str, Any]) -> bool:
        for kind, column, value in self.filters:
            if kind == "eq" and row.get(column) != value:
                return False
            if kind == "in" and row.get(column) not in value:
                return False
        return True

    def execute(self) -> SimpleNamespace:
        self._client.queries.append(self)
        rows = [row for row in self._client.tables.get(self.table, []) if self._matches(row)]

        # Stable sorts from the last ordering back give a multi-column order.
        # Rows tied on every ordered column keep their stored order, like
        # Postgres returning ties in any order it likes.
        orderings = [(column, desc) for kind, column, desc in self.filters if kind == "order"]
        for column, desc in reversed(orderings):
            rows.sort(key=lambda row: row[column], reverse=desc)

        for kind, start, end in self.filters:
            if kind == "range":
                rows = rows[start:end + 1]
        return SimpleNamespace(data=rows, error=None)


class FakeRpc:
    def __init__(self, client: "FakeClient", name: str, params: Dict[str, Any]):
        self._client = client
        self.name = name
        self.params = params

    def execute(self) -> SimpleNamespace:
        self._client.rpc_calls.append((self.name, self.params))
        if self._client.rpc_error is not None:
            raise self._client.rpc_error
        return SimpleNamespace(data={"success": True}, error=None)


class FakeClient:
    def __init__(self) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.queries: List[FakeQuery] = []
        self.rpc_calls: List[tuple] = []
        self.rpc_error: Optional[Exception] = None

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rpc(self, name: str, params: Dict[str, Any]) -> FakeRpc:
        return FakeRpc(self, name, params)


def _lead(**overrides) -> Lead:
    values = dict(
        lead_id=uuid4(),
        homeowner_id=uuid4(),
        category="plumbing",
        budget_bracket=BudgetBracket.FROM_5K_TO_20K,
        urgency=Urgency.URGENT,
        expires_at=NOW + timedelta(days=7),
        created_at=NOW,
    )
    values.update(overrides)
    return Lead(**values)


def _quote(lead_id) -> Quote:
    return Quote(
        quote_id=uuid4(),
        lead_id=lead_id,
        professional_id=uuid4(),
        pricing=QuotePricing.from_items(
            [QuoteLineItem.create("labor", 3, "85.00", "Plumber"), QuoteLineItem.create("materials", 1, "42.50")]
        ),
        estimated_start_date=date(2025, 3, 10),
        estimated_completion_date=date(2025, 3, 11),
        created_at=NOW,
        notes="Includes cleanup",
    )


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def supabase_store(client) -> SupabaseMarketplaceStore:
    return SupabaseMarketplaceStore(client)


def test_parse_utc_datetime_handles_z_suffix_and_naive_values() -> None:
    """Verify Supabase timestamps become timezone-aware UTC datetimes."""

    assert _parse_utc_datetime("2025-03-01T09:00:00Z") == NOW
    assert _parse_utc_datetime("2025-03-01T10:00:00+01:00") == NOW
    assert _parse_utc_datetime("2025-03-01T09:00:00").tzinfo is not None

    with pytest.raises(TypeError):
        _parse_utc_datetime(1740819600)


def test_lead_row_round_trip() -> None:
    """Verify every lead field survives conversion, including direct-lead fields."""

    lead = _lead(
        lead_type=LeadType.DIRECT,
        target_professional_id=uuid4(),
        max_claims=1,
        direct_expires_at=NOW + timedelta(hours=24),
        credits_required=7,
        claim_count=1,
        version=3,
    )

    row = _lead_to_row(lead)

    assert row["expires_at_utc"] == "2025-03-08T09:00:00+00:00"
    assert row["budget_bracket"] == "5k-20k"
    assert _row_to_lead(row) == lead


def test_claim_and_quote_row_round_trip() -> None:
    """Verify claims and quotes (with jsonb line items) survive conversion."""

    lead = _lead()
    claim = Claim(
        claim_id=uuid4(),
        lead_id=lead.lead_id,
        professional_id=uuid4(),
        credits_spent=8,
        claimed_at=NOW,
        refunded=True,
        refunded_at=NOW + timedelta(hours=1),
        refund_reason="duplicate",
    )
    quote = _quote(lead.lead_id)

    assert _row_to_claim(_claim_to_row(claim)) == claim

    quote_row = _quote_to_row(quote)
    assert quote_row["total"] == "312.38"
    assert [item["total"] for item in quote_row["items"]] == ["255.00", "42.50"]
    restored = _row_to_quote(quote_row)
    assert restored == quote
    assert restored.pricing.vat == Decimal("14.88")


def test_balance_and_transaction_row_round_trip() -> None:
    """Verify paid lots and lot consumption survive conversion."""

    lot = CreditLot(lot_id=uuid4(), amount=50, created_at=NOW, expires_at=NOW + timedelta(days=365))
    balance = CreditBalance(
        professional_id=uuid4(),
        free_credits=5,
        paid_lots=(lot,),
        lifetime_earned=60,
        lifetime_spent=5,
        updated_at=NOW,
        version=2,
    )
    transaction = CreditTransaction(
        transaction_id=uuid4(),
        professional_id=balance.professional_id,
        type=CreditTransactionType.LEAD_CLAIM,
        amount=-8,
        balance_after=47,
        created_at=NOW,
        related_lead_id=uuid4(),
        description="Claimed lead",
        consumed=(LotConsumption(lot_id=None, amount=5), LotConsumption(lot_id=lot.lot_id, amount=3)),
    )

    assert _row_to_balance(_balance_to_row(balance)) == balance
    assert _row_to_transaction(_transaction_to_row(transaction)) == transaction


def test_serialize_changes_sends_expected_versions() -> None:
    """Verify new rows expect version 0 and updates expect their read version."""

    new_lead = _lead(version=1)
    updated_lead = _lead(version=4)
    changes = ChangeSet(leads={new_lead.lead_id: new_lead, updated_lead.lead_id: updated_lead})

    payload = serialize_changes(changes)

    expected = {entry["row"]["lead_id"]: entry["expected_version"] for entry in payload["leads"]}
    assert expected == {str(new_lead.lead_id): 0, str(updated_lead.lead_id): 3}
    assert payload["claims"] == []
    assert payload["transactions"] == []


def test_unit_of_work_commits_through_one_rpc(supabase_store, client) -> None:
    """Verify a unit of work becomes a single commit_marketplace_changes() call."""

    lead = _lead()

    with supabase_store.unit_of_work() as uow:
        uow.save_lead(lead)
        uow.save_quote(_quote(lead.lead_id))

    ((name, params),) = client.rpc_calls
    assert name == "commit_marketplace_changes"
    changes = params["p_changes"]
    assert [entry["expected_version"] for entry in changes["leads"]] == [0]
    assert changes["leads"][0]["row"]["version"] == 1
    assert len(changes["quotes"]) == 1


def test_empty_unit_of_work_does_not_call_database(supabase_store, client) -> None:
    """Verify nothing is sent when nothing was staged."""

    with supabase_store.unit_of_work():
        pass

    assert client.rpc_calls == []


def test_stale_record_error_is_translated(supabase_store, client) -> None:
    """Verify the database's version conflict surfaces as StaleRecordError."""

    lead = _lead()
    client.rpc_error = APIError({"message": f"stale_record:lead:{lead.lead_id}:1:2", "code": "P0001"})

    with pytest.raises(StaleRecordError) as exc_info:
        with supabase_store.unit_of_work() as uow:
            uow.save_lead(lead)

    assert exc_info.value.kind == "lead"
    assert exc_info.value.expected_version == 1
    assert exc_info.value.actual_version == 2


def test_other_database_errors_are_runtime_errors(supabase_store, client) -> None:
    """Verify unrelated database failures are not mistaken for conflicts."""

    client.rpc_error = APIError({"message": "connection reset", "code": "08006"})

    with pytest.raises(RuntimeError, match="connection reset"):
        with supabase_store.unit_of_work() as uow:
            uow.save_lead(_lead())


def test_parse_stale_error_with_missing_row() -> None:
    """Verify 'none' as the actual version means the row does not exist."""

    error = _parse_stale_error("ERROR: stale_record:claim:abc:0:none")

    assert error.kind == "claim"
    assert error.expected_version == 0
    assert error.actual_version is None


def test_reads_filter_and_convert_rows(supabase_store, client) -> None:
    """Verify reads query the right table and convert rows to domain objects."""

    lead = _lead()
    client.tables["leads"] = [_lead_to_row(lead)]

    assert supabase_store.get_lead(lead.lead_id) == lead
    assert supabase_store.get_lead(uuid4()) is None

    query = client.queries[0]
    assert query.table == "leads"
    assert ("eq", "lead_id", str(lead.lead_id)) in query.filters


def test_find_transaction_by_reference(supabase_store, client) -> None:
    """Verify purchase idempotency lookups go through the reference column."""

    transaction = CreditTransaction(
        transaction_id=uuid4(),
        professional_id=uuid4(),
        type=CreditTransactionType.PURCHASE,
        amount=50,
        balance_after=50,
        created_at=NOW,
        reference="payment:pi_123",
    )
    client.tables["credit_transactions"] = [_transaction_to_row(transaction)]

    assert supabase_store.find_transaction_by_reference("payment:pi_123") == transaction
    assert supabase_store.find_transaction_by_reference("payment:other") is None


def test_list_reads_walk_every_page(client) -> None:
    """Verify rows beyond the first page are returned, newest lead first."""

    paged_store = SupabaseMarketplaceStore(client, page_size=2)
    leads = [_lead(created_at=NOW - timedelta(hours=hours)) for hours in range(5)]
    client.tables["leads"] = [_lead_to_row(lead) for lead in reversed(leads)]

    listed = paged_store.list_leads()

    assert [lead.lead_id for lead in listed] == [lead.lead_id for lead in leads]
    ranges = [(start, end) for query in client.queries for kind, start, end in query.filters if kind == "range"]
    assert ranges == [(0, 1), (2, 3), (4, 5), (5, 6)]


def test_expired_leads_past_the_first_page_are_listed(client) -> None:
    """Verify the oldest leads still reach the expiry sweep when the table spans pages."""

    paged_store = SupabaseMarketplaceStore(client, page_size=2)
    oldest = _lead(created_at=NOW - timedelta(days=30), expires_at=NOW - timedelta(days=23))
    recent = [_lead(created_at=NOW - timedelta(minutes=minutes)) for minutes in range(3)]
    client.tables["leads"] = [_lead_to_row(lead) for lead in [oldest, *recent]]

    listed = paged_store.list_leads(statuses=[LeadStatus.OPEN, LeadStatus.FULL])

    assert listed[-1].lead_id == oldest.lead_id
    assert len(listed) == 4


def test_reconcile_with_tied_transaction_timestamps(marketplace, clock, client) -> None:
    """Verify lots expiring together reconcile cleanly when Postgres returns tied rows out of order."""

    pid = uuid4()
    expiry = clock() + timedelta(days=1)
    marketplace.ledger.admin_adjust(pid, 5, "promo batch one", expires_at=expiry)
    marketplace.ledger.admin_adjust(pid, 5, "promo batch two", expires_at=expiry)
    clock.advance(timedelta(days=2))
    assert marketplace.ledger.expire_lots() == 2

    history = marketplace.store.list_transactions(pid)
    rows = [dict(_transaction_to_row(tx), seq=index) for index, tx in enumerate(history, start=1)]
    # Every tied pair is stored swapped; only seq recovers the write order.
    client.tables["credit_transactions"] = [rows[1], rows[0], rows[3], rows[2]]
    client.tables["credit_balances"] = [_balance_to_row(marketplace.ledger.get_balance(pid))]

    ledger = CreditLedger(SupabaseMarketplaceStore(client), LockRegistry(), NotificationService([]), clock=clock)
    report = ledger.reconcile(pid)

    assert report.consistent, report.problems
    assert report.transaction_count == 4
    assert report.on_hold is False
    assert client.rpc_calls == []
