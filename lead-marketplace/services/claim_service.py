"""
Lead claim coordinator.

Claiming a lead spends credits and reserves one of the lead's claim slots as a
single atomic unit:

1. The lead must be claimable (open, or full which then fails as LeadFull;
   pending direct leads only by their target; not past its expiry).
2. The professional must not already hold an active claim on the lead.
3. A slot must be free.
4. Cost = lead.credits_required if frozen, else the pricing service result.
5. The credit ledger debits the professional (same unit of work).
6. The Claim is created and the lead's slot counter incremented.

The lead lock is taken before the professional's balance lock; both are held
for the in-memory transition and its commit only. Directory lookups happen
before any lock is taken.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
from uuid import UUID, uuid4

from domain.claim import Claim
from domain.credits import CreditTransaction, CreditTransactionType
from domain.errors import (
    AlreadyClaimedError,
    ClaimNotFoundError,
    ConcurrentUpdateError,
    LeadFullError,
    LeadNotClaimableError,
    LeadNotFoundError,
    MarketplaceError,
    ValidationFailedError,
)
from domain.events import EventType, MarketplaceEvent
from domain.lead import Lead, LeadStatus, LeadType
from domain.time import utc_now
from repositories.professional_repository import ProfessionalDirectory
from repositories.store import MarketplaceStore, StaleRecordError, UnitOfWork
from services.credit_ledger import CreditLedger
from services.locks import LockRegistry, lead_key, professional_key
from services.notification_service import NotificationService
from services.pricing_service import ClaimCostBreakdown, calculate_claim_cost

logger = logging.getLogger(__name__)

CLAIM_REFUNDED_QUOTE_REASON = "claim refunded"


@dataclass(frozen=True, slots=True)
class ClaimResult:
    """
    Result of a successful claim.

    remaining_credits: the professional's total balance after the debit
    """
    claim: Claim
    lead: Lead
    remaining_credits: int
    transaction: CreditTransaction


@dataclass(frozen=True, slots=True)
class RefundResult:
    claim: Claim
    lead: Optional[Lead]
    balance_after: int
    transaction: CreditTransaction


@dataclass(frozen=True, slots=True)
class ClaimCostPreview:
    """
    What a claim would cost right now.

    price_frozen: True when an earlier claim fixed the lead's price; the
    breakdown is then None because the frozen value is charged as-is.
    """
    lead_id: UUID
    professional_id: UUID
    credits: int
    price_frozen: bool
    breakdown: Optional[ClaimCostBreakdown]
    available_credits: int

    @property
    def can_afford(self) -> bool:
        return self.available_credits >= self.credits

    @property
    def shortfall(self) -> int:
        return max(0, self.credits - self.available_credits)


class LeadClaimCoordinator:
    def __init__(
        self,
        store: MarketplaceStore,
        locks: LockRegistry,
        ledger: CreditLedger,
        directory: ProfessionalDirectory,
        notifications: NotificationService,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._locks = locks
        self._ledger = ledger
        self._directory = directory
        self._notifications = notifications
        self._clock = clock

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, lead_id: UUID, professional_id: UUID) -> ClaimResult:
        """
        Spend credits and reserve a claim slot on a lead, atomically.

        Args:
            lead_id: Lead to claim
            professional_id: Claiming professional

        Returns:
            ClaimResult with the new claim and the professional's remaining credits

        Raises:
            LeadNotFoundError: unknown lead
            LeadNotClaimableError: lead is not open (or not a pending direct lead for this professional)
            AlreadyClaimedError: the professional already holds an active claim
            LeadFullError: no slot left (including losing a race for the last slot)
            InsufficientCreditsError: balance too low; nothing was changed

        Example:
            result = coordinator.claim(lead_id, pro_id)
            print(f"Claimed, {result.remaining_credits} credits left")
        """
        verified = self._directory.is_verified(professional_id)

        try:
            with self._locks.hold(lead_key(lead_id), professional_key(professional_id)):
                with self._store.unit_of_work() as uow:
                    result = self._claim_in(uow, lead_id, professional_id, verified)
        except StaleRecordError as e:
            raise self._lost_claim_race(lead_id, professional_id, e) from e

        logger.info(
            f"Lead {lead_id} claimed by {professional_id} for {result.claim.credits_spent} credits",
            extra={
                "lead_id": str(lead_id),
                "professional_id": str(professional_id),
                "claim_id": str(result.claim.claim_id),
                "credits_spent": result.claim.credits_spent,
                "claim_count": result.lead.claim_count,
                "max_claims": result.lead.max_claims,
            },
        )
        self._notifications.publish(uow.events)
        return result

    def _claim_in(
        self, uow: UnitOfWork, lead_id: UUID, professional_id: UUID, verified: bool
    ) -> ClaimResult:
        lead = uow.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)

        now = self._clock()
        self._require_claimable(lead, professional_id, now)

        if uow.find_active_claim(lead_id, professional_id) is not None:
            raise AlreadyClaimedError(lead_id, professional_id)

        if lead.claim_count >= lead.max_claims:
            raise LeadFullError(lead_id, lead.max_claims)

        if lead.credits_required is not None:
            cost = lead.credits_required
        else:
            cost = calculate_claim_cost(lead.budget_bracket, lead.urgency, verified).credits

        posting = self._ledger.debit(
            professional_id,
            cost,
            lead_id,
            uow=uow,
            transaction_type=CreditTransactionType.LEAD_CLAIM,
            description=f"Claimed lead {lead_id}",
        )

        claim = uow.save_claim(
            Claim(
                claim_id=uuid4(),
                lead_id=lead_id,
                professional_id=professional_id,
                credits_spent=cost,
                claimed_at=now,
            )
        )

        updated = lead.with_claim_reserved(cost)
        if lead.is_direct_pending:
            updated = updated.direct_accepted()
        updated = uow.save_lead(updated)

        uow.emit(
            MarketplaceEvent(
                type=EventType.LEAD_CLAIMED,
                recipient_id=lead.homeowner_id,
                occurred_at=now,
                payload={
                    "lead_id": str(lead_id),
                    "professional_id": str(professional_id),
                    "claim_id": str(claim.claim_id),
                    "remaining_slots": updated.remaining_slots,
                },
            )
        )

        return ClaimResult(
            claim=claim,
            lead=updated,
            remaining_credits=posting.balance.total_balance,
            transaction=posting.transaction,
        )

    @staticmethod
    def _require_claimable(lead: Lead, professional_id: UUID, now: datetime) -> None:
        # FULL passes here so the slot check reports it as LeadFull.
        if lead.status not in (LeadStatus.OPEN, LeadStatus.FULL):
            raise LeadNotClaimableError(lead.lead_id, f"lead is {lead.status.value}")

        if lead.lead_type == LeadType.DIRECT:
            if not lead.is_direct_pending:
                raise LeadNotClaimableError(lead.lead_id, "direct lead is no longer pending")
            if lead.target_professional_id != professional_id:
                raise LeadNotClaimableError(lead.lead_id, "direct lead is reserved for another professional")
            if lead.direct_window_elapsed(now):
                raise LeadNotClaimableError(lead.lead_id, "direct lead response window has passed")

        if lead.is_expired(now):
            raise LeadNotClaimableError(lead.lead_id, "lead has expired")

    def _lost_claim_race(
        self, lead_id: UUID, professional_id: UUID, error: StaleRecordError
    ) -> MarketplaceError:
        """Re-read after a lost version check and report the specific reason."""

        logger.warning(
            f"Claim on lead {lead_id} by {professional_id} lost a concurrent write",
            extra={
                "lead_id": str(lead_id),
                "professional_id": str(professional_id),
                "record": error.kind,
            },
        )

        lead = self._store.get_lead(lead_id)
        if lead is not None and lead.claim_count >= lead.max_claims:
            return LeadFullError(lead_id, lead.max_claims)
        if self._store.find_active_claim(lead_id, professional_id) is not None:
            return AlreadyClaimedError(lead_id, professional_id)
        return ConcurrentUpdateError(
            f"Lead {lead_id} changed while claiming; no credits were spent, retry the claim"
        )

    # ------------------------------------------------------------------
    # Refund
    # ------------------------------------------------------------------

    def refund_claim(self, claim_id: UUID, reason: str) -> RefundResult:
        """
        Reverse a claim: credit back exactly `credits_spent` and free the slot.

        Raises:
            ClaimNotFoundError: unknown claim
            AlreadyRefundedError: the claim was refunded before; nothing changes
        """
        if not reason or not reason.strip():
            raise ValidationFailedError("A refund reason is required")

        claim = self._store.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)

        try:
            with self._locks.hold(lead_key(claim.lead_id), professional_key(claim.professional_id)):
                with self._store.unit_of_work() as uow:
                    result = self.refund_in(uow, claim_id, reason.strip())
        except StaleRecordError as e:
            raise ConcurrentUpdateError(
                f"Claim {claim_id} changed while refunding; retry the refund"
            ) from e

        self._notifications.publish(uow.events)
        return result

    def refund_in(self, uow: UnitOfWork, claim_id: UUID, reason: str) -> RefundResult:
        """
        Refund inside a caller's unit of work. The caller holds the lead lock and
        the professional's lock.
        """
        claim = uow.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)

        now = self._clock()
        refunded = uow.save_claim(claim.refund(reason, now))

        posting = self._ledger.credit(
            claim.professional_id,
            claim.credits_spent,
            CreditTransactionType.REFUND,
            claim.lead_id,
            uow=uow,
            reference=f"refund:{claim_id}",
            description=reason,
        )

        lead = uow.get_lead(claim.lead_id)
        if lead is not None:
            lead = uow.save_lead(lead.with_claim_released())

        for quote in uow.list_quotes(lead_id=claim.lead_id, professional_id=claim.professional_id):
            if quote.is_pending:
                declined = uow.save_quote(quote.decline(CLAIM_REFUNDED_QUOTE_REASON, now))
                uow.emit(
                    MarketplaceEvent(
                        type=EventType.QUOTE_DECLINED,
                        recipient_id=declined.professional_id,
                        occurred_at=now,
                        payload={
                            "lead_id": str(declined.lead_id),
                            "quote_id": str(declined.quote_id),
                            "reason": CLAIM_REFUNDED_QUOTE_REASON,
                        },
                    )
                )

        logger.info(
            f"Claim {claim_id} refunded ({claim.credits_spent} credits)",
            extra={
                "claim_id": str(claim_id),
                "lead_id": str(claim.lead_id),
                "professional_id": str(claim.professional_id),
                "credits": claim.credits_spent,
                "reason": reason,
            },
        )

        return RefundResult(
            claim=refunded,
            lead=lead,
            balance_after=posting.balance.total_balance,
            transaction=posting.transaction,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def preview_claim_cost(self, lead_id: UUID, professional_id: UUID) -> ClaimCostPreview:
        lead = self._store.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)

        available = self._ledger.get_balance(professional_id).total_balance

        if lead.credits_required is not None:
            return ClaimCostPreview(
                lead_id=lead_id,
                professional_id=professional_id,
                credits=lead.credits_required,
                price_frozen=True,
                breakdown=None,
                available_credits=available,
            )

        breakdown = calculate_claim_cost(
            lead.budget_bracket, lead.urgency, self._directory.is_verified(professional_id)
        )
        return ClaimCostPreview(
            lead_id=lead_id,
            professional_id=professional_id,
            credits=breakdown.credits,
            price_frozen=False,
            breakdown=breakdown,
            available_credits=available,
        )

    def get_claim(self, claim_id: UUID) -> Claim:
        claim = self._store.get_claim(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        return claim

    def claims_for_lead(self, lead_id: UUID) -> List[Claim]:
        return self._store.list_claims(lead_id=lead_id)

    def claims_for_professional(self, professional_id: UUID) -> List[Claim]:
        return self._store.list_claims(professional_id=professional_id)


__all__ = [
    "CLAIM_REFUNDED_QUOTE_REASON",
    "ClaimResult",
    "RefundResult",
    "ClaimCostPreview",
    "LeadClaimCoordinator",
]
