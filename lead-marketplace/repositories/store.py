"""
Marketplace store (persistence boundary).

This module defines *only* the persistence contract shared by every backend:

- `MarketplaceStore`: read operations plus one atomic `commit(ChangeSet)`.
- `ChangeSet`: every record a single state transition writes.
- `UnitOfWork`: stages writes, serves reads through the staged records and
  collects events to dispatch once the commit succeeded.

Optimistic versioning:
- Each Lead, Claim, Quote and CreditBalance row carries an integer `version`.
- Staging a record remembers the version it was read at and gives the staged
  copy `version + 1`. A staged version of 1 means "insert, must not exist".
- `commit` applies nothing unless every stored version still equals the staged
  version minus one; otherwise it raises StaleRecordError.
- CreditTransaction rows are insert-only. A transaction `reference` is unique.

Business rules live in the services; the store never decides anything.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Dict, Iterator, List, Optional, Sequence
from uuid import UUID

from domain.claim import Claim
from domain.credits import CreditBalance, CreditTransaction
from domain.events import MarketplaceEvent
from domain.lead import Lead, LeadStatus, LeadType
from domain.quote import Quote, QuoteStatus


class StaleRecordError(Exception):
    """A commit lost against another writer; nothing from it was applied."""

    def __init__(self, kind: str, record_id: object, expected_version: int, actual_version: Optional[int]):
        self.kind = kind
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stale {kind} {record_id}: expected version {expected_version}, "
            f"found {'none' if actual_version is None else actual_version}"
        )


@dataclass(slots=True)
class ChangeSet:
    leads: Dict[UUID, Lead] = field(default_factory=dict)
    claims: Dict[UUID, Claim] = field(default_factory=dict)
    quotes: Dict[UUID, Quote] = field(default_factory=dict)
    balances: Dict[UUID, CreditBalance] = field(default_factory=dict)
    transactions: List[CreditTransaction] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.leads or self.claims or self.quotes or self.balances or self.transactions)


class MarketplaceStore(ABC):
    """Read operations plus one atomic write."""

    # Leads
    @abstractmethod
    def get_lead(self, lead_id: UUID) -> Optional[Lead]: ...

    @abstractmethod
    def list_leads(
        self,
        *,
        statuses: Optional[Sequence[LeadStatus]] = None,
        homeowner_id: Optional[UUID] = None,
        lead_type: Optional[LeadType] = None,
        target_professional_id: Optional[UUID] = None,
    ) -> List[Lead]: ...

    # Claims
    @abstractmethod
    def get_claim(self, claim_id: UUID) -> Optional[Claim]: ...

    @abstractmethod
    def list_claims(
        self,
        *,
        lead_id: Optional[UUID] = None,
        professional_id: Optional[UUID] = None,
    ) -> List[Claim]: ...

    def find_active_claim(self, lead_id: UUID, professional_id: UUID) -> Optional[Claim]:
        for claim in self.list_claims(lead_id=lead_id, professional_id=professional_id):
            if claim.is_active:
                return claim
        return None

    # Quotes
    @abstractmethod
    def get_quote(self, quote_id: UUID) -> Optional[Quote]: ...

    @abstractmethod
    def list_quotes(
        self,
        *,
        lead_id: Optional[UUID] = None,
        professional_id: Optional[UUID] = None,
        status: Optional[QuoteStatus] = None,
    ) -> List[Quote]: ...

    # Credits
    @abstractmethod
    def get_balance(self, professional_id: UUID) -> Optional[CreditBalance]: ...

    @abstractmethod
    def list_balances(self) -> List[CreditBalance]: ...

    @abstractmethod
    def list_transactions(self, professional_id: UUID) -> List[CreditTransaction]:
        """All transactions of one professional, in the order they were written."""

    @abstractmethod
    def find_transaction_by_reference(self, reference: str) -> Optional[CreditTransaction]: ...

    # Writes
    @abstractmethod
    def commit(self, changes: ChangeSet) -> None:
        """Apply every change or none. Raises StaleRecordError on a version conflict."""

    @contextmanager
    def unit_of_work(self) -> Iterator["UnitOfWork"]:
        """
        Stage writes and commit them together when the block exits normally.

        An exception inside the block discards every staged write.

        Example:
            >>> with store.unit_of_work() as uow:
            ...     uow.save_lead(lead.with_claim_reserved(5))
            ...     uow.save_claim(claim)
        """

        uow = UnitOfWork(self)
        yield uow
        uow.commit()


class UnitOfWork:
    """
    Staged writes for one state transition.

    Reads go through the staged records first, so a service sees its own
    pending writes. Events are kept until the caller dispatches them after the
    commit.
    """

    def __init__(self, store: MarketplaceStore):
        self._store = store
        self._changes = ChangeSet()
        self.events: List[MarketplaceEvent] = []
        self.committed = False

    @property
    def store(self) -> MarketplaceStore:
        return self._store

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    @staticmethod
    def _stage(staged: Dict[UUID, object], key: UUID, record):
        current = staged.get(key)
        version = current.version if current is not None else record.version + 1
        staged[key] = replace(record, version=version)
        return staged[key]

    def save_lead(self, lead: Lead) -> Lead:
        return self._stage(self._changes.leads, lead.lead_id, lead)

    def save_claim(self, claim: Claim) -> Claim:
        return self._stage(self._changes.claims, claim.claim_id, claim)

    def save_quote(self, quote: Quote) -> Quote:
        return self._stage(self._changes.quotes, quote.quote_id, quote)

    def save_balance(self, balance: CreditBalance) -> CreditBalance:
        return self._stage(self._changes.balances, balance.professional_id, balance)

    def add_transaction(self, transaction: CreditTransaction) -> CreditTransaction:
        self._changes.transactions.append(transaction)
        return transaction

    def emit(self, event: MarketplaceEvent) -> None:
        self.events.append(event)

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    def get_lead(self, lead_id: UUID) -> Optional[Lead]:
        return self._changes.leads.get(lead_id) or self._store.get_lead(lead_id)

    def get_claim(self, claim_id: UUID) -> Optional[Claim]:
        return self._changes.claims.get(claim_id) or self._store.get_claim(claim_id)

    def get_quote(self, quote_id: UUID) -> Optional[Quote]:
        return self._changes.quotes.get(quote_id) or self._store.get_quote(quote_id)

    def get_balance(self, professional_id: UUID) -> Optional[CreditBalance]:
        return self._changes.balances.get(professional_id) or self._store.get_balance(professional_id)

    def list_claims(
        self, *, lead_id: Optional[UUID] = None, professional_id: Optional[UUID] = None
    ) -> List[Claim]:
        merged = {
            claim.claim_id: claim
            for claim in self._store.list_claims(lead_id=lead_id, professional_id=professional_id)
        }
        for claim in self._changes.claims.values():
            if lead_id is not None and claim.lead_id != lead_id:
                continue
            if professional_id is not None and claim.professional_id != professional_id:
                continue
            merged[claim.claim_id] = claim
        return sorted(merged.values(), key=lambda c: c.claimed_at)

    def find_active_claim(self, lead_id: UUID, professional_id: UUID) -> Optional[Claim]:
        for claim in self.list_claims(lead_id=lead_id, professional_id=professional_id):
            if claim.is_active:
                return claim
        return None

    def list_quotes(
        self,
        *,
        lead_id: Optional[UUID] = None,
        professional_id: Optional[UUID] = None,
        status: Optional[QuoteStatus] = None,
    ) -> List[Quote]:
        merged = {
            quote.quote_id: quote
            for quote in self._store.list_quotes(lead_id=lead_id, professional_id=professional_id)
        }
        for quote in self._changes.quotes.values():
            if lead_id is not None and quote.lead_id != lead_id:
                continue
            if professional_id is not None and quote.professional_id != professional_id:
                continue
            merged[quote.quote_id] = quote
        quotes = sorted(merged.values(), key=lambda q: q.created_at)
        if status is not None:
            quotes = [quote for quote in quotes if quote.status == status]
        return quotes

    def list_transactions(self, professional_id: UUID) -> List[CreditTransaction]:
        staged = [tx for tx in self._changes.transactions if tx.professional_id == professional_id]
        return self._store.list_transactions(professional_id) + staged

    def find_transaction_by_reference(self, reference: str) -> Optional[CreditTransaction]:
        for tx in self._changes.transactions:
            if tx.reference == reference:
                return tx
        return self._store.find_transaction_by_reference(reference)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    @property
    def changes(self) -> ChangeSet:
        return self._changes

    def commit(self) -> None:
        if self.committed:
            raise RuntimeError("Unit of work already committed")
        if not self._changes.is_empty():
            self._store.commit(self._changes)
        self.committed = True


__all__ = [
    "StaleRecordError",
    "ChangeSet",
    "MarketplaceStore",
    "UnitOfWork",
]
