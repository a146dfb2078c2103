"""
In-process marketplace store.

Backs the API in local runs and the test-suite. All reads and the version-checked
commit happen under one re-entrant lock, so a commit is atomic with respect to
every other reader and writer in the process.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from domain.claim import Claim
from domain.credits import CreditBalance, CreditTransaction
from domain.lead import Lead, LeadStatus, LeadType
from domain.quote import Quote, QuoteStatus
from repositories.store import ChangeSet, MarketplaceStore, StaleRecordError


class InMemoryMarketplaceStore(MarketplaceStore):
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._leads: Dict[UUID, Lead] = {}
        self._claims: Dict[UUID, Claim] = {}
        self._quotes: Dict[UUID, Quote] = {}
        self._balances: Dict[UUID, CreditBalance] = {}
        self._transactions: List[CreditTransaction] = []
        self._transaction_ids: set[UUID] = set()
        self._references: Dict[str, CreditTransaction] = {}

    # Leads
    def get_lead(self, lead_id: UUID) -> Optional[Lead]:
        with self._lock:
            return self._leads.get(lead_id)

    def list_leads(
        self,
        *,
        statuses: Optional[Sequence[LeadStatus]] = None,
        homeowner_id: Optional[UUID] = None,
        lead_type: Optional[LeadType] = None,
        target_professional_id: Optional[UUID] = None,
    ) -> List[Lead]:
        with self._lock:
            leads = list(self._leads.values())

        if statuses is not None:
            leads = [lead for lead in leads if lead.status in statuses]
        if homeowner_id is not None:
            leads = [lead for lead in leads if lead.homeowner_id == homeowner_id]
        if lead_type is not None:
            leads = [lead for lead in leads if lead.lead_type == lead_type]
        if target_professional_id is not None:
            leads = [lead for lead in leads if lead.target_professional_id == target_professional_id]
        return sorted(leads, key=lambda lead: lead.created_at, reverse=True)

    # Claims
    def get_claim(self, claim_id: UUID) -> Optional[Claim]:
        with self._lock:
            return self._claims.get(claim_id)

    def list_claims(
        self,
        *,
        lead_id: Optional[UUID] = None,
        professional_id: Optional[UUID] = None,
    ) -> List[Claim]:
        with self._lock:
            claims = list(self._claims.values())

        if lead_id is not None:
            claims = [claim for claim in claims if claim.lead_id == lead_id]
        if professional_id is not None:
            claims = [claim for claim in claims if claim.professional_id == professional_id]
        return sorted(claims, key=lambda claim: claim.claimed_at)

    # Quotes
    def get_quote(self, quote_id: UUID) -> Optional[Quote]:
        with self._lock:
            return self._quotes.get(quote_id)

    def list_quotes(
        self,
        *,
        lead_id: Optional[UUID] = None,
        professional_id: Optional[UUID] = None,
        status: Optional[QuoteStatus] = None,
    ) -> List[Quote]:
        with self._lock:
            quotes = list(self._quotes.values())

        if lead_id is not None:
            quotes = [quote for quote in quotes if quote.lead_id == lead_id]
        if professional_id is not None:
            quotes = [quote for quote in quotes if quote.professional_id == professional_id]
        if status is not None:
            quotes = [quote for quote in quotes if quote.status == status]
        return sorted(quotes, key=lambda quote: quote.created_at)

    # Credits
    def get_balance(self, professional_id: UUID) -> Optional[CreditBalance]:
        with self._lock:
            return self._balances.get(professional_id)

    def list_balances(self) -> List[CreditBalance]:
        with self._lock:
            return list(self._balances.values())

    def list_transactions(self, professional_id: UUID) -> List[CreditTransaction]:
        with self._lock:
            return [tx for tx in self._transactions if tx.professional_id == professional_id]

    def find_transaction_by_reference(self, reference: str) -> Optional[CreditTransaction]:
        with self._lock:
            return self._references.get(reference)

    # Writes
    def commit(self, changes: ChangeSet) -> None:
        with self._lock:
            self._check_versions("lead", self._leads, changes.leads)
            self._check_versions("claim", self._claims, changes.claims)
            self._check_versions("quote", self._quotes, changes.quotes)
            self._check_versions("credit_balance", self._balances, changes.balances)

            seen_references: set[str] = set()
            for tx in changes.transactions:
                if tx.transaction_id in self._transaction_ids:
                    raise StaleRecordError("credit_transaction", tx.transaction_id, 0, 1)
                if tx.reference is not None:
                    if tx.reference in self._references or tx.reference in seen_references:
                        raise StaleRecordError("credit_transaction", tx.reference, 0, 1)
                    seen_references.add(tx.reference)

            self._leads.update(changes.leads)
            self._claims.update(changes.claims)
            self._quotes.update(changes.quotes)
            self._balances.update(changes.balances)
            for tx in changes.transactions:
                self._transactions.append(tx)
                self._transaction_ids.add(tx.transaction_id)
                if tx.reference is not None:
                    self._references[tx.reference] = tx

    @staticmethod
    def _check_versions(kind: str, current: Dict[UUID, object], staged: Dict[UUID, object]) -> None:
        for key, record in staged.items():
            expected = record.version - 1
            existing = current.get(key)
            actual = existing.version if existing is not None else None
            if expected == 0 and existing is None:
                continue
            if actual != expected:
                raise StaleRecordError(kind, key, expected, actual)


__all__ = ["InMemoryMarketplaceStore"]
