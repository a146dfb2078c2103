"""
Credit ledger service.

The ledger is the only writer of CreditBalance records. Every balance mutation
writes exactly one CreditTransaction in the same unit of work.

Handles:
- Debits (free credits first, then paid lots soonest-to-expire first)
- Credits (refunds and free additions to free credits, purchases as paid lots)
- Idempotent purchase confirmation keyed by the payment reference
- Admin adjustments, transaction history and paid-lot expiry
- Reconciliation against the transaction log, and debit holds on mismatch

Operations that are part of a larger transition (a claim, a cancellation) pass
the caller's `uow`; the caller then holds the professional's lock and commits.
Without a `uow` the ledger locks the balance and commits on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, TypeVar
from uuid import UUID, uuid4

from domain.credits import CreditBalance, CreditLot, CreditTransaction, CreditTransactionType
from domain.errors import (
    ConcurrentUpdateError,
    LedgerIntegrityError,
    LedgerOnHoldError,
    ValidationFailedError,
)
from domain.events import EventType, MarketplaceEvent
from domain.time import utc_now
from repositories.store import MarketplaceStore, StaleRecordError, UnitOfWork
from services.locks import LockRegistry, professional_key
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

T = TypeVar("T")

CREDITS_EXPIRED_DESCRIPTION = "credits expired"


@dataclass(frozen=True, slots=True)
class LedgerPosting:
    """A balance after one mutation, with the transaction that recorded it."""
    balance: CreditBalance
    transaction: CreditTransaction


@dataclass(frozen=True, slots=True)
class BalanceSummary:
    """
    Read model for GET balance.

    expiring_lots: paid lots that expire within the configured window
    """
    professional_id: UUID
    free_credits: int
    paid_credits: int
    total_balance: int
    lifetime_earned: int
    lifetime_spent: int
    on_hold: bool
    hold_reason: Optional[str]
    expiring_lots: List[CreditLot]


@dataclass(frozen=True, slots=True)
class PurchaseConfirmation:
    """Confirmed-purchase event from payment checkout."""
    professional_id: UUID
    package_id: str
    credits_amount: int
    payment_reference: str
    bonus_credits: int = 0


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    """
    Outcome of a purchase confirmation.

    already_processed: True when the payment reference was credited before;
    the balance is returned unchanged and transaction is the original one.
    """
    balance: CreditBalance
    transaction: Optional[CreditTransaction]
    already_processed: bool


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    professional_id: UUID
    consistent: bool
    problems: List[str]
    total_balance: int
    transaction_sum: int
    transaction_count: int
    on_hold: bool


class CreditLedger:
    def __init__(
        self,
        store: MarketplaceStore,
        locks: LockRegistry,
        notifications: NotificationService,
        *,
        clock: Callable[[], datetime] = utc_now,
        low_credit_threshold: int = 10,
        purchased_credit_validity: timedelta = timedelta(days=365),
        expiring_lots_window: timedelta = timedelta(days=30),
    ):
        self._store = store
        self._locks = locks
        self._notifications = notifications
        self._clock = clock
        self._low_credit_threshold = low_credit_threshold
        self._purchased_credit_validity = purchased_credit_validity
        self._expiring_lots_window = expiring_lots_window

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, professional_id: UUID) -> CreditBalance:
        return self._store.get_balance(professional_id) or CreditBalance.empty(professional_id)

    def balance_summary(self, professional_id: UUID) -> BalanceSummary:
        balance = self.get_balance(professional_id)
        now = self._clock()
        horizon = now + self._expiring_lots_window
        expiring = sorted(
            (
                lot
                for lot in balance.paid_lots
                if lot.amount > 0 and lot.expires_at is not None and lot.expires_at <= horizon
            ),
            key=CreditLot.consumption_key,
        )
        return BalanceSummary(
            professional_id=professional_id,
            free_credits=balance.free_credits,
            paid_credits=balance.paid_credits,
            total_balance=balance.total_balance,
            lifetime_earned=balance.lifetime_earned,
            lifetime_spent=balance.lifetime_spent,
            on_hold=balance.on_hold,
            hold_reason=balance.hold_reason,
            expiring_lots=expiring,
        )

    def list_transactions(
        self,
        professional_id: UUID,
        *,
        transaction_type: Optional[CreditTransactionType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CreditTransaction]:
        """Transaction history, newest first."""

        if limit < 1 or offset < 0:
            raise ValidationFailedError("limit must be >= 1 and offset must be >= 0")

        transactions = self._store.list_transactions(professional_id)
        if transaction_type is not None:
            transactions = [tx for tx in transactions if tx.type == transaction_type]
        transactions = sorted(transactions, key=lambda tx: tx.created_at, reverse=True)
        return transactions[offset:offset + limit]

    # ------------------------------------------------------------------
    # Debit / credit
    # ------------------------------------------------------------------

    def debit(
        self,
        professional_id: UUID,
        amount: int,
        related_lead_id: Optional[UUID] = None,
        *,
        uow: Optional[UnitOfWork] = None,
        transaction_type: CreditTransactionType = CreditTransactionType.LEAD_CLAIM,
        description: str = "",
    ) -> LedgerPosting:
        """
        Remove credits all-or-nothing.

        Raises:
            InsufficientCreditsError: amount exceeds the spendable balance (nothing changes)
            LedgerOnHoldError: debits are halted for this professional
            LedgerIntegrityError: the balance failed its arithmetic check; a hold is placed
        """

        if transaction_type.is_credit:
            raise ValueError(f"{transaction_type.value} is not a debit type")
        if amount <= 0:
            raise ValidationFailedError("Debit amount must be a positive number of credits")

        def work(active: UnitOfWork) -> LedgerPosting:
            return self._debit_in(
                active, professional_id, amount, transaction_type, related_lead_id, description
            )

        if uow is not None:
            return work(uow)
        return self._run(professional_id, work)

    def credit(
        self,
        professional_id: UUID,
        amount: int,
        transaction_type: CreditTransactionType,
        related_lead_id: Optional[UUID] = None,
        *,
        uow: Optional[UnitOfWork] = None,
        expires_at: Optional[datetime] = None,
        reference: Optional[str] = None,
        description: str = "",
    ) -> LedgerPosting:
        """
        Add credits.

        Purchases, and any credit with an expiry, become a paid lot; everything
        else is added to free credits.
        """

        if not transaction_type.is_credit:
            raise ValueError(f"{transaction_type.value} is not a credit type")
        if amount <= 0:
            raise ValidationFailedError("Credit amount must be a positive number of credits")

        def work(active: UnitOfWork) -> LedgerPosting:
            return self._credit_in(
                active,
                professional_id,
                amount,
                transaction_type,
                related_lead_id,
                expires_at=expires_at,
                reference=reference,
                description=description,
            )

        if uow is not None:
            return work(uow)
        return self._run(professional_id, work)

    def confirm_purchase(self, confirmation: PurchaseConfirmation) -> PurchaseResult:
        """
        Convert a confirmed checkout into a `purchase` transaction and a paid lot.

        Idempotent on `payment_reference`: a repeated confirmation returns the
        current balance without crediting again.

        Example:
            result = ledger.confirm_purchase(PurchaseConfirmation(
                professional_id=pro_id, package_id="starter", credits_amount=50,
                bonus_credits=5, payment_reference="pi_123",
            ))
            print(result.balance.total_balance)
        """

        if confirmation.credits_amount <= 0:
            raise ValidationFailedError("credits_amount must be positive")
        if confirmation.bonus_credits < 0:
            raise ValidationFailedError("bonus_credits cannot be negative")
        if not confirmation.payment_reference.strip():
            raise ValidationFailedError("payment_reference is required")

        reference = f"payment:{confirmation.payment_reference.strip()}"
        pid = confirmation.professional_id

        def work(uow: UnitOfWork) -> PurchaseResult:
            existing = uow.find_transaction_by_reference(reference)
            if existing is not None:
                logger.warning(
                    f"Purchase {confirmation.payment_reference} already credited, ignoring duplicate",
                    extra={
                        "professional_id": str(pid),
                        "payment_reference": confirmation.payment_reference,
                        "transaction_id": str(existing.transaction_id),
                    },
                )
                balance = uow.get_balance(pid) or CreditBalance.empty(pid)
                return PurchaseResult(balance=balance, transaction=existing, already_processed=True)

            now = self._clock()
            total = confirmation.credits_amount + confirmation.bonus_credits
            posting = self._credit_in(
                uow,
                pid,
                total,
                CreditTransactionType.PURCHASE,
                None,
                expires_at=now + self._purchased_credit_validity,
                reference=reference,
                description=f"Purchased package {confirmation.package_id}",
            )
            logger.info(
                f"Purchase of {total} credits confirmed for {pid}",
                extra={
                    "professional_id": str(pid),
                    "package_id": confirmation.package_id,
                    "credits": total,
                    "payment_reference": confirmation.payment_reference,
                },
            )
            return PurchaseResult(
                balance=posting.balance, transaction=posting.transaction, already_processed=False
            )

        return self._run(pid, work)

    def admin_adjust(
        self,
        professional_id: UUID,
        amount: int,
        reason: str,
        *,
        expires_at: Optional[datetime] = None,
    ) -> LedgerPosting:
        """
        Manual adjustment: positive amounts are `admin_addition`, negative
        amounts `admin_deduction`. A reason is mandatory.
        """

        if not reason or not reason.strip():
            raise ValidationFailedError("An adjustment reason is required")
        if amount == 0:
            raise ValidationFailedError("Adjustment amount cannot be zero")

        logger.info(
            f"Admin adjustment of {amount} credits for {professional_id}",
            extra={"professional_id": str(professional_id), "amount": amount, "reason": reason},
        )

        if amount > 0:
            return self.credit(
                professional_id,
                amount,
                CreditTransactionType.ADMIN_ADDITION,
                expires_at=expires_at,
                description=reason.strip(),
            )
        return self.debit(
            professional_id,
            -amount,
            transaction_type=CreditTransactionType.ADMIN_DEDUCTION,
            description=reason.strip(),
        )

    # ------------------------------------------------------------------
    # Expiry, reconciliation, holds
    # ------------------------------------------------------------------

    def expire_lots(self, as_of: Optional[datetime] = None) -> int:
        """
        Zero out every paid lot past its expiry. One `admin_deduction` per lot,
        referenced `lot:<lot_id>`. Safe to re-run: expired lots are removed.

        Returns:
            Number of lots expired
        """

        now = as_of or self._clock()
        expired_count = 0

        for candidate in self._store.list_balances():
            if not candidate.expired_lots(now):
                continue
            pid = candidate.professional_id
            try:
                expired_count += self._run(pid, lambda uow: self._expire_lots_in(uow, pid, now))
            except Exception:
                logger.exception(
                    f"Failed to expire credit lots for {pid}",
                    extra={"professional_id": str(pid)},
                )

        return expired_count

    def reconcile(self, professional_id: UUID) -> ReconciliationReport:
        """
        Check the balance against its own arithmetic and the transaction log.

        A mismatch is logged at CRITICAL and places a debit hold; nothing is
        corrected automatically.
        """

        with self._locks.hold(professional_key(professional_id)):
            balance = self.get_balance(professional_id)
            transactions = self._store.list_transactions(professional_id)
            problems = balance.arithmetic_problems()

            running = 0
            for tx in transactions:
                running += tx.amount
                if tx.balance_after != running:
                    problems.append(
                        f"transaction {tx.transaction_id} records balance_after {tx.balance_after}, "
                        f"log total at that point is {running}"
                    )
            if running != balance.total_balance:
                problems.append(
                    f"total balance {balance.total_balance} != sum of transactions {running}"
                )

            on_hold = balance.on_hold
            if problems and not on_hold:
                self._place_hold(professional_id, problems)
                on_hold = True

        return ReconciliationReport(
            professional_id=professional_id,
            consistent=not problems,
            problems=problems,
            total_balance=balance.total_balance,
            transaction_sum=running,
            transaction_count=len(transactions),
            on_hold=on_hold,
        )

    def release_hold(self, professional_id: UUID, note: str = "") -> CreditBalance:
        """Lift a debit hold after manual reconciliation."""

        def work(uow: UnitOfWork) -> CreditBalance:
            balance = uow.get_balance(professional_id) or CreditBalance.empty(professional_id)
            if not balance.on_hold:
                return balance
            logger.info(
                f"Debit hold released for {professional_id}",
                extra={
                    "professional_id": str(professional_id),
                    "hold_reason": balance.hold_reason,
                    "note": note,
                },
            )
            return uow.save_balance(balance.released(self._clock()))

        return self._run(professional_id, work)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, professional_id: UUID, work: Callable[[UnitOfWork], T]) -> T:
        try:
            with self._locks.hold(professional_key(professional_id)):
                with self._store.unit_of_work() as uow:
                    result = work(uow)
        except StaleRecordError as e:
            logger.warning(
                f"Credit balance write lost a race: {e}",
                extra={"professional_id": str(professional_id)},
            )
            raise ConcurrentUpdateError(
                f"Credit balance for {professional_id} changed concurrently, retry the request"
            ) from e

        self._notifications.publish(uow.events)
        return result

    def _load_for_debit(self, uow: UnitOfWork, professional_id: UUID) -> CreditBalance:
        balance = uow.get_balance(professional_id) or CreditBalance.empty(professional_id)
        if balance.on_hold:
            raise LedgerOnHoldError(professional_id, balance.hold_reason)

        problems = balance.arithmetic_problems()
        if problems:
            self._place_hold(professional_id, problems)
            raise LedgerIntegrityError(professional_id, problems)
        return balance

    def _debit_in(
        self,
        uow: UnitOfWork,
        professional_id: UUID,
        amount: int,
        transaction_type: CreditTransactionType,
        related_lead_id: Optional[UUID],
        description: str,
    ) -> LedgerPosting:
        balance = self._load_for_debit(uow, professional_id)
        now = self._clock()

        new_balance, consumed = balance.debit(amount, now)
        new_balance = uow.save_balance(new_balance)
        transaction = uow.add_transaction(
            CreditTransaction(
                transaction_id=uuid4(),
                professional_id=professional_id,
                type=transaction_type,
                amount=-amount,
                balance_after=new_balance.total_balance,
                created_at=now,
                related_lead_id=related_lead_id,
                description=description,
                consumed=tuple(consumed),
            )
        )

        if (
            balance.total_balance >= self._low_credit_threshold
            and new_balance.total_balance < self._low_credit_threshold
        ):
            uow.emit(
                MarketplaceEvent(
                    type=EventType.CREDITS_LOW,
                    recipient_id=professional_id,
                    occurred_at=now,
                    payload={
                        "balance": new_balance.total_balance,
                        "threshold": self._low_credit_threshold,
                    },
                )
            )

        return LedgerPosting(balance=new_balance, transaction=transaction)

    def _credit_in(
        self,
        uow: UnitOfWork,
        professional_id: UUID,
        amount: int,
        transaction_type: CreditTransactionType,
        related_lead_id: Optional[UUID],
        *,
        expires_at: Optional[datetime],
        reference: Optional[str],
        description: str,
    ) -> LedgerPosting:
        balance = uow.get_balance(professional_id) or CreditBalance.empty(professional_id)
        now = self._clock()

        if transaction_type == CreditTransactionType.PURCHASE or expires_at is not None:
            new_balance = balance.add_lot(
                CreditLot(lot_id=uuid4(), amount=amount, created_at=now, expires_at=expires_at),
                now,
            )
        else:
            new_balance = balance.credit_free(amount, now)

        new_balance = uow.save_balance(new_balance)
        transaction = uow.add_transaction(
            CreditTransaction(
                transaction_id=uuid4(),
                professional_id=professional_id,
                type=transaction_type,
                amount=amount,
                balance_after=new_balance.total_balance,
                created_at=now,
                related_lead_id=related_lead_id,
                description=description,
                reference=reference,
            )
        )
        return LedgerPosting(balance=new_balance, transaction=transaction)

    def _expire_lots_in(self, uow: UnitOfWork, professional_id: UUID, as_of: datetime) -> int:
        balance = uow.get_balance(professional_id)
        if balance is None:
            return 0
        if balance.on_hold:
            logger.warning(
                f"Skipping lot expiry for {professional_id}: balance is on hold",
                extra={"professional_id": str(professional_id), "hold_reason": balance.hold_reason},
            )
            return 0

        expired = balance.expired_lots(as_of)
        for lot in expired:
            balance = balance.without_lot(lot.lot_id, as_of)
            uow.add_transaction(
                CreditTransaction(
                    transaction_id=uuid4(),
                    professional_id=professional_id,
                    type=CreditTransactionType.ADMIN_DEDUCTION,
                    amount=-lot.amount,
                    balance_after=balance.total_balance,
                    created_at=as_of,
                    description=CREDITS_EXPIRED_DESCRIPTION,
                    reference=f"lot:{lot.lot_id}",
                )
            )
            logger.info(
                f"Expired {lot.amount} credits from lot {lot.lot_id}",
                extra={"professional_id": str(professional_id), "lot_id": str(lot.lot_id)},
            )

        if expired:
            uow.save_balance(balance)
        return len(expired)

    def _place_hold(self, professional_id: UUID, problems: List[str]) -> None:
        """Persist a debit hold in its own unit of work, independent of the caller's."""

        reason = "; ".join(problems)
        logger.critical(
            f"Credit ledger integrity failure for {professional_id}, halting debits",
            extra={"professional_id": str(professional_id), "problems": problems},
        )

        try:
            with self._store.unit_of_work() as hold_uow:
                stored = self._store.get_balance(professional_id)
                if stored is not None and not stored.on_hold:
                    hold_uow.save_balance(stored.held(reason, self._clock()))
        except StaleRecordError:
            logger.critical(
                f"Could not persist debit hold for {professional_id}",
                extra={"professional_id": str(professional_id)},
            )


__all__ = [
    "CREDITS_EXPIRED_DESCRIPTION",
    "LedgerPosting",
    "BalanceSummary",
    "PurchaseConfirmation",
    "PurchaseResult",
    "ReconciliationReport",
    "CreditLedger",
]
