"""
Domain: credit balances, paid lots and the transaction log.

Rules implemented here:
- total_balance = free_credits + sum(paid lot amounts), and it is never negative.
- Debits consume free credits first, then paid lots soonest-to-expire first
  (lots without an expiry last; ties broken by creation time).
- A debit larger than the total balance changes nothing and raises
  InsufficientCreditsError.
- lifetime_earned counts every credited amount (purchases, additions, refunds);
  lifetime_spent counts every debited amount (claims, deductions, expiries), so
  total_balance == lifetime_earned - lifetime_spent for a consistent balance.
- CreditTransaction is append-only and immutable once written.

This module contains only pure domain entities/value objects: no I/O, no database,
no frameworks. All timestamps must be passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple
from uuid import UUID

from .errors import InsufficientCreditsError
from .time import require_optional_utc_timestamp, require_utc_timestamp


class CreditTransactionType(str, Enum):
    PURCHASE = "purchase"
    LEAD_CLAIM = "lead_claim"
    REFUND = "refund"
    ADMIN_ADDITION = "admin_addition"
    ADMIN_DEDUCTION = "admin_deduction"

    @property
    def is_credit(self) -> bool:
        return self in (
            CreditTransactionType.PURCHASE,
            CreditTransactionType.REFUND,
            CreditTransactionType.ADMIN_ADDITION,
        )


@dataclass(frozen=True, slots=True)
class CreditLot:
    """A purchased block of credits that may expire."""

    lot_id: UUID
    amount: int
    created_at: datetime
    expires_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("CreditLot.amount must be >= 0")
        require_utc_timestamp("created_at", self.created_at)
        require_optional_utc_timestamp("expires_at", self.expires_at)

    def is_expired(self, as_of: datetime) -> bool:
        return self.expires_at is not None and as_of >= self.expires_at

    def consumption_key(self) -> Tuple[bool, datetime, datetime]:
        """Soonest-to-expire first, lots without expiry last."""
        return (self.expires_at is None, self.expires_at or self.created_at, self.created_at)


@dataclass(frozen=True, slots=True)
class LotConsumption:
    """How much of a single source a debit consumed."""

    lot_id: Optional[UUID]  # None for free credits
    amount: int


@dataclass(frozen=True, slots=True)
class CreditBalance:
    """
    One professional's credit balance.

    Only the credit ledger service writes this entity. Transitions return new
    instances; the version is managed by the persistence layer.
    """

    professional_id: UUID
    free_credits: int = 0
    paid_lots: Tuple[CreditLot, ...] = ()
    lifetime_earned: int = 0
    lifetime_spent: int = 0
    on_hold: bool = False
    hold_reason: Optional[str] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self) -> None:
        if self.free_credits < 0:
            raise ValueError("free_credits must be >= 0")
        require_optional_utc_timestamp("updated_at", self.updated_at)

    @staticmethod
    def empty(professional_id: UUID) -> "CreditBalance":
        return CreditBalance(professional_id=professional_id)

    @property
    def paid_credits(self) -> int:
        return sum(lot.amount for lot in self.paid_lots)

    @property
    def total_balance(self) -> int:
        return self.free_credits + self.paid_credits

    def arithmetic_problems(self) -> List[str]:
        """Self-consistency checks that do not need the transaction log."""

        problems: List[str] = []
        if self.total_balance < 0:
            problems.append(f"total balance is negative ({self.total_balance})")
        if self.total_balance != self.lifetime_earned - self.lifetime_spent:
            problems.append(
                f"total balance {self.total_balance} != lifetime_earned {self.lifetime_earned} "
                f"- lifetime_spent {self.lifetime_spent}"
            )
        return problems

    def debit(self, amount: int, at: datetime) -> Tuple["CreditBalance", List[LotConsumption]]:
        """
        Remove `amount` credits, all-or-nothing.

        Returns the new balance and the per-source consumption. Expired lots that
        the sweep has not zeroed yet are not spendable.
        """

        if amount <= 0:
            raise ValueError("debit amount must be positive")
        require_utc_timestamp("at", at)

        spendable_lots = [lot for lot in self.paid_lots if not lot.is_expired(at)]
        available = self.free_credits + sum(lot.amount for lot in spendable_lots)
        if amount > available:
            raise InsufficientCreditsError(
                required=amount, available=available, professional_id=self.professional_id
            )

        remaining = amount
        consumed: List[LotConsumption] = []

        from_free = min(self.free_credits, remaining)
        if from_free:
            consumed.append(LotConsumption(lot_id=None, amount=from_free))
            remaining -= from_free

        taken: dict[UUID, int] = {}
        for lot in sorted(spendable_lots, key=CreditLot.consumption_key):
            if remaining <= 0:
                break
            take = min(lot.amount, remaining)
            if take:
                taken[lot.lot_id] = take
                consumed.append(LotConsumption(lot_id=lot.lot_id, amount=take))
                remaining -= take

        lots = tuple(
            replace(lot, amount=lot.amount - taken.get(lot.lot_id, 0))
            for lot in self.paid_lots
        )

        return (
            replace(
                self,
                free_credits=self.free_credits - from_free,
                paid_lots=tuple(lot for lot in lots if lot.amount > 0),
                lifetime_spent=self.lifetime_spent + amount,
                updated_at=at,
            ),
            consumed,
        )

    def credit_free(self, amount: int, at: datetime) -> "CreditBalance":
        if amount <= 0:
            raise ValueError("credit amount must be positive")
        require_utc_timestamp("at", at)
        return replace(
            self,
            free_credits=self.free_credits + amount,
            lifetime_earned=self.lifetime_earned + amount,
            updated_at=at,
        )

    def add_lot(self, lot: CreditLot, at: datetime) -> "CreditBalance":
        if lot.amount <= 0:
            raise ValueError("credit amount must be positive")
        require_utc_timestamp("at", at)
        return replace(
            self,
            paid_lots=self.paid_lots + (lot,),
            lifetime_earned=self.lifetime_earned + lot.amount,
            updated_at=at,
        )

    def expired_lots(self, as_of: datetime) -> List[CreditLot]:
        return [lot for lot in self.paid_lots if lot.amount > 0 and lot.is_expired(as_of)]

    def without_lot(self, lot_id: UUID, at: datetime) -> "CreditBalance":
        """Zero out one lot (expiry). The removed amount counts as spent."""

        lot = next((item for item in self.paid_lots if item.lot_id == lot_id), None)
        if lot is None:
            raise ValueError(f"No paid lot {lot_id} on this balance")
        return replace(
            self,
            paid_lots=tuple(item for item in self.paid_lots if item.lot_id != lot_id),
            lifetime_spent=self.lifetime_spent + lot.amount,
            updated_at=at,
        )

    def held(self, reason: str, at: datetime) -> "CreditBalance":
        return replace(self, on_hold=True, hold_reason=reason, updated_at=at)

    def released(self, at: datetime) -> "CreditBalance":
        return replace(self, on_hold=False, hold_reason=None, updated_at=at)


@dataclass(frozen=True, slots=True)
class CreditTransaction:
    """
    Immutable, append-only record of one balance mutation.

    `amount` is signed: positive for credits, negative for debits.
    """

    transaction_id: UUID
    professional_id: UUID
    type: CreditTransactionType
    amount: int
    balance_after: int
    created_at: datetime
    related_lead_id: Optional[UUID] = None
    description: str = ""
    reference: Optional[str] = None  # payment reference, lot:<id>, ...
    consumed: Tuple[LotConsumption, ...] = field(default=())

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.amount == 0:
            raise ValueError("CreditTransaction.amount must not be zero")
        if self.type.is_credit and self.amount < 0:
            raise ValueError(f"{self.type.value} transactions must have a positive amount")
        if not self.type.is_credit and self.amount > 0:
            raise ValueError(f"{self.type.value} transactions must have a negative amount")
        if self.balance_after < 0:
            raise ValueError("balance_after must be >= 0")


__all__ = [
    "CreditTransactionType",
    "CreditLot",
    "LotConsumption",
    "CreditBalance",
    "CreditTransaction",
]
