"""
Lead lifecycle manager.

State machine:
    open -> full -> accepted          (quote acceptance, see quote_service)
    open/full -> expired              (time-based sweep)
    open/full -> cancelled            (homeowner; refunds every active claim)

Direct leads target one professional (max_claims = 1) with a response window:
    pending -> accepted               (the target claims it)
    pending -> declined | converted   (the lead opens to the marketplace)

All sweeps are idempotent: records that are already terminal, or no longer
match, are skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set
from uuid import UUID, uuid4

from domain.errors import (
    AlreadyResolvedError,
    ConcurrentUpdateError,
    LeadNotClaimableError,
    LeadNotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
)
from domain.events import EventType, MarketplaceEvent
from domain.lead import (
    BudgetBracket,
    DirectLeadStatus,
    Lead,
    LeadStatus,
    LeadType,
    Urgency,
)
from domain.time import utc_now
from repositories.store import MarketplaceStore, StaleRecordError, UnitOfWork
from services.claim_service import ClaimResult, LeadClaimCoordinator
from services.locks import LockRegistry, lead_key, professional_key
from services.notification_service import NotificationService
from services.quote_service import QuoteLifecycleManager

logger = logging.getLogger(__name__)

LEAD_CANCELLED_REASON = "lead cancelled"


@dataclass(frozen=True, slots=True)
class LeadRequest:
    """A homeowner's service request as submitted."""
    homeowner_id: UUID
    category: str
    budget_bracket: BudgetBracket
    urgency: Urgency
    title: str = ""


class LeadLifecycleManager:
    def __init__(
        self,
        store: MarketplaceStore,
        locks: LockRegistry,
        claims: LeadClaimCoordinator,
        quotes: QuoteLifecycleManager,
        notifications: NotificationService,
        *,
        clock: Callable[[], datetime] = utc_now,
        default_max_claims: int = 5,
        lead_expiry: timedelta = timedelta(days=7),
        direct_response_window: timedelta = timedelta(hours=24),
    ):
        self._store = store
        self._locks = locks
        self._claims = claims
        self._quotes = quotes
        self._notifications = notifications
        self._clock = clock
        self._default_max_claims = default_max_claims
        self._lead_expiry = lead_expiry
        self._direct_response_window = direct_response_window

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_lead(self, request: LeadRequest) -> Lead:
        """Post a marketplace lead with the default number of claim slots."""

        lead = self._new_lead(request, max_claims=self._default_max_claims)
        with self._store.unit_of_work() as uow:
            lead = uow.save_lead(lead)

        logger.info(
            f"Lead {lead.lead_id} created",
            extra={"lead_id": str(lead.lead_id), "category": lead.category, "max_claims": lead.max_claims},
        )
        return lead

    def create_direct_lead(self, request: LeadRequest, target_professional_id: UUID) -> Lead:
        """
        Send a lead to one professional. They accept by claiming it within the
        response window, or decline; either way without a response the lead is
        converted to a marketplace lead by the sweep.
        """

        lead = self._new_lead(
            request,
            max_claims=1,
            lead_type=LeadType.DIRECT,
            target_professional_id=target_professional_id,
        )
        with self._store.unit_of_work() as uow:
            lead = uow.save_lead(lead)
            uow.emit(
                MarketplaceEvent(
                    type=EventType.DIRECT_LEAD_RECEIVED,
                    recipient_id=target_professional_id,
                    occurred_at=lead.created_at,
                    payload={"lead_id": str(lead.lead_id), "respond_by": lead.direct_expires_at.isoformat()},
                )
            )

        logger.info(
            f"Direct lead {lead.lead_id} sent to {target_professional_id}",
            extra={"lead_id": str(lead.lead_id), "target_professional_id": str(target_professional_id)},
        )
        self._notifications.publish(uow.events)
        return lead

    def _new_lead(
        self,
        request: LeadRequest,
        *,
        max_claims: int,
        lead_type: LeadType = LeadType.MARKETPLACE,
        target_professional_id: Optional[UUID] = None,
    ) -> Lead:
        if not request.category or not request.category.strip():
            raise ValidationFailedError("A lead needs a service category")

        now = self._clock()
        direct = lead_type == LeadType.DIRECT
        return Lead(
            lead_id=uuid4(),
            homeowner_id=request.homeowner_id,
            category=request.category.strip(),
            title=request.title.strip(),
            budget_bracket=request.budget_bracket,
            urgency=request.urgency,
            expires_at=now + self._lead_expiry,
            created_at=now,
            max_claims=max_claims,
            lead_type=lead_type,
            target_professional_id=target_professional_id,
            direct_lead_status=DirectLeadStatus.PENDING if direct else None,
            direct_expires_at=now + self._direct_response_window if direct else None,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_lead(self, lead_id: UUID) -> Lead:
        lead = self._store.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        return lead

    def browse_leads(
        self,
        *,
        category: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> List[Lead]:
        """Open marketplace leads with a free slot, newest first."""

        if limit < 1 or offset < 0:
            raise ValidationFailedError("limit must be >= 1 and offset must be >= 0")

        now = self._clock()
        leads = [
            lead
            for lead in self._store.list_leads(statuses=[LeadStatus.OPEN], lead_type=LeadType.MARKETPLACE)
            if lead.remaining_slots > 0 and not lead.is_expired(now)
        ]
        if category:
            leads = [lead for lead in leads if lead.category.lower() == category.strip().lower()]
        return leads[offset:offset + limit]

    def leads_for_homeowner(self, homeowner_id: UUID) -> List[Lead]:
        return self._store.list_leads(homeowner_id=homeowner_id)

    def pending_direct_leads(self, professional_id: UUID) -> List[Lead]:
        return [
            lead
            for lead in self._store.list_leads(
                lead_type=LeadType.DIRECT, target_professional_id=professional_id
            )
            if lead.is_direct_pending
        ]

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_lead(self, lead_id: UUID, reason: str, homeowner_id: Optional[UUID] = None) -> Lead:
        """
        Cancel a lead: every active claim is refunded and every pending quote
        declined, in the same unit of work as the status change.

        Raises:
            LeadNotFoundError: unknown lead
            PermissionDeniedError: homeowner_id given and not the lead's owner
            AlreadyResolvedError: the lead is already accepted, expired or cancelled
        """
        if not reason or not reason.strip():
            raise ValidationFailedError("A cancellation reason is required")

        self.get_lead(lead_id)

        try:
            while True:
                claimants = self._active_claimants(lead_id)
                keys = [lead_key(lead_id)] + [professional_key(pid) for pid in claimants]
                with self._locks.hold(*keys):
                    # A claim that landed between listing and locking needs its
                    # balance lock too; start over with the new set.
                    if not self._active_claimants(lead_id) <= claimants:
                        continue
                    with self._store.unit_of_work() as uow:
                        cancelled = self._cancel_in(uow, lead_id, reason.strip(), homeowner_id)
                    break
        except StaleRecordError as e:
            raise ConcurrentUpdateError(f"Lead {lead_id} changed while cancelling; retry") from e

        logger.info(
            f"Lead {lead_id} cancelled",
            extra={"lead_id": str(lead_id), "reason": reason, "events": len(uow.events)},
        )
        self._notifications.publish(uow.events)
        return cancelled

    def _active_claimants(self, lead_id: UUID) -> Set[UUID]:
        return {claim.professional_id for claim in self._store.list_claims(lead_id=lead_id) if claim.is_active}

    def _cancel_in(
        self, uow: UnitOfWork, lead_id: UUID, reason: str, homeowner_id: Optional[UUID]
    ) -> Lead:
        lead = uow.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        if homeowner_id is not None and lead.homeowner_id != homeowner_id:
            raise PermissionDeniedError("Only the homeowner who posted the lead can cancel it")
        if lead.status.is_terminal:
            raise AlreadyResolvedError(f"Lead {lead_id} is already {lead.status.value}")

        now = self._clock()
        self._quotes.close_pending_quotes(uow, lead, reason=LEAD_CANCELLED_REASON, at=now)

        for claim in uow.list_claims(lead_id=lead_id):
            if not claim.is_active:
                continue
            self._claims.refund_in(uow, claim.claim_id, LEAD_CANCELLED_REASON)
            uow.emit(
                MarketplaceEvent(
                    type=EventType.LEAD_CANCELLED,
                    recipient_id=claim.professional_id,
                    occurred_at=now,
                    payload={
                        "lead_id": str(lead_id),
                        "refunded_credits": claim.credits_spent,
                        "reason": reason,
                    },
                )
            )

        lead = uow.get_lead(lead_id)
        return uow.save_lead(lead.cancelled(reason, now))

    # ------------------------------------------------------------------
    # Direct leads
    # ------------------------------------------------------------------

    def accept_direct_lead(self, lead_id: UUID, professional_id: UUID) -> ClaimResult:
        """The target professional accepts: a regular claim (debit + slot)."""

        lead = self.get_lead(lead_id)
        if not lead.is_direct_pending:
            raise LeadNotClaimableError(lead_id, "not a pending direct lead")
        return self._claims.claim(lead_id, professional_id)

    def decline_direct_lead(self, lead_id: UUID, professional_id: UUID, reason: str = "") -> Lead:
        """The target professional declines; the lead opens to the marketplace."""

        try:
            with self._locks.hold(lead_key(lead_id)):
                with self._store.unit_of_work() as uow:
                    lead = uow.get_lead(lead_id)
                    if lead is None:
                        raise LeadNotFoundError(lead_id)
                    if not lead.is_direct_pending or lead.status.is_terminal:
                        raise AlreadyResolvedError(f"Lead {lead_id} is not a pending direct lead")
                    if lead.target_professional_id != professional_id:
                        raise PermissionDeniedError("Only the targeted professional can decline a direct lead")

                    converted = self._convert_in(uow, lead, declined=True)
        except StaleRecordError as e:
            raise ConcurrentUpdateError(f"Lead {lead_id} changed while declining") from e

        logger.info(
            f"Direct lead {lead_id} declined by {professional_id}",
            extra={"lead_id": str(lead_id), "professional_id": str(professional_id), "reason": reason},
        )
        self._notifications.publish(uow.events)
        return converted

    def _convert_in(self, uow: UnitOfWork, lead: Lead, *, declined: bool) -> Lead:
        now = self._clock()
        converted = uow.save_lead(lead.converted_to_marketplace(self._default_max_claims, now, declined=declined))
        uow.emit(
            MarketplaceEvent(
                type=EventType.DIRECT_LEAD_CONVERTED,
                recipient_id=lead.homeowner_id,
                occurred_at=now,
                payload={
                    "lead_id": str(lead.lead_id),
                    "direct_lead_status": converted.direct_lead_status.value,
                },
            )
        )
        return converted

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def convert_expired_direct_leads(self, as_of: Optional[datetime] = None) -> int:
        """Open every pending direct lead whose response window has passed."""

        now = as_of or self._clock()
        converted = 0

        for candidate in self._store.list_leads(
            statuses=[LeadStatus.OPEN, LeadStatus.FULL], lead_type=LeadType.DIRECT
        ):
            if not (candidate.is_direct_pending and candidate.direct_window_elapsed(now)):
                continue
            try:
                with self._locks.hold(lead_key(candidate.lead_id)):
                    with self._store.unit_of_work() as uow:
                        lead = uow.get_lead(candidate.lead_id)
                        if lead is None or lead.status.is_terminal or not lead.is_direct_pending:
                            continue
                        self._convert_in(uow, lead, declined=False)
                self._notifications.publish(uow.events)
                converted += 1
            except Exception:
                logger.exception(
                    f"Failed to convert direct lead {candidate.lead_id}",
                    extra={"lead_id": str(candidate.lead_id)},
                )

        if converted:
            logger.info(f"Converted {converted} unanswered direct leads", extra={"converted": converted})
        return converted

    def expire_leads(self, as_of: Optional[datetime] = None) -> int:
        """
        Move every open or full lead past its expiry to expired, expiring its
        pending quotes with it. Claims are not refunded.
        """

        now = as_of or self._clock()
        expired = 0

        for candidate in self._store.list_leads(statuses=[LeadStatus.OPEN, LeadStatus.FULL]):
            if not candidate.is_expired(now):
                continue
            try:
                with self._locks.hold(lead_key(candidate.lead_id)):
                    with self._store.unit_of_work() as uow:
                        lead = uow.get_lead(candidate.lead_id)
                        if lead is None or lead.status.is_terminal or not lead.is_expired(now):
                            continue
                        self._quotes.close_pending_quotes(uow, lead, reason="", at=now, expire=True)
                        uow.save_lead(lead.expired(now))
                expired += 1
            except Exception:
                logger.exception(
                    f"Failed to expire lead {candidate.lead_id}",
                    extra={"lead_id": str(candidate.lead_id)},
                )

        if expired:
            logger.info(f"Expired {expired} leads", extra={"expired": expired})
        return expired


__all__ = [
    "LEAD_CANCELLED_REASON",
    "LeadRequest",
    "LeadLifecycleManager",
]
