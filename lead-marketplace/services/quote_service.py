"""
Quote lifecycle manager.

State machine per quote: pending -> accepted | declined | expired.

- submit: requires an active claim on the lead; one quote per claim; pricing
  is always computed here from the line items.
- accept: the quote must be pending and its lead open or full. Accepting sets
  the quote to accepted, the lead to accepted, and declines every other pending
  quote on the lead, all in one unit of work under the lead lock.
- decline: one pending quote, nothing else changes.
- Quotes still pending when their lead expires are swept to expired.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Dict, List, Optional, Sequence
from uuid import UUID, uuid4

from domain.errors import (
    AlreadyResolvedError,
    ClaimRequiredError,
    ConcurrentUpdateError,
    LeadNotFoundError,
    PermissionDeniedError,
    QuoteAlreadySubmittedError,
    QuoteNotFoundError,
    ValidationFailedError,
)
from domain.events import EventType, MarketplaceEvent
from domain.lead import Lead, LeadStatus
from domain.quote import Quote, QuoteLineItem, QuotePricing, QuoteStatus, validate_timeline
from domain.time import utc_now
from repositories.store import MarketplaceStore, StaleRecordError, UnitOfWork
from services.locks import LockRegistry, lead_key
from services.notification_service import NotificationService

logger = logging.getLogger(__name__)

ACCEPTED_ANOTHER_QUOTE_REASON = "lead accepted another quote"


@dataclass(frozen=True, slots=True)
class QuoteSubmission:
    """
    Pricing and timeline as entered by the professional.

    Only the line items are taken from the caller; subtotal, VAT and total are
    recomputed.
    """
    items: Sequence[QuoteLineItem]
    estimated_start_date: date
    estimated_completion_date: date
    notes: str = ""

    def pricing(self) -> QuotePricing:
        validate_timeline(self.estimated_start_date, self.estimated_completion_date)
        return QuotePricing.from_items(self.items)


class QuoteLifecycleManager:
    def __init__(
        self,
        store: MarketplaceStore,
        locks: LockRegistry,
        notifications: NotificationService,
        *,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._locks = locks
        self._notifications = notifications
        self._clock = clock

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, lead_id: UUID, professional_id: UUID, submission: QuoteSubmission) -> Quote:
        """
        Submit a quote against the professional's active claim.

        Raises:
            ValidationFailedError: no line items or an invalid timeline
            LeadNotFoundError: unknown lead
            AlreadyResolvedError: the lead is no longer open or full, or has expired
            ClaimRequiredError: no active claim for (lead, professional)
            QuoteAlreadySubmittedError: the claim already has a quote
        """
        pricing = submission.pricing()

        with self._locks.hold(lead_key(lead_id)):
            with self._store.unit_of_work() as uow:
                lead = self._require_open_lead(uow, lead_id, self._clock())

                claim = uow.find_active_claim(lead_id, professional_id)
                if claim is None:
                    raise ClaimRequiredError(lead_id, professional_id)
                if claim.quote_submitted:
                    raise QuoteAlreadySubmittedError(lead_id, professional_id)

                now = self._clock()
                quote = uow.save_quote(
                    Quote(
                        quote_id=uuid4(),
                        lead_id=lead_id,
                        professional_id=professional_id,
                        pricing=pricing,
                        estimated_start_date=submission.estimated_start_date,
                        estimated_completion_date=submission.estimated_completion_date,
                        created_at=now,
                        notes=submission.notes,
                    )
                )
                uow.save_claim(claim.with_quote_submitted(now))

                uow.emit(
                    MarketplaceEvent(
                        type=EventType.QUOTE_SUBMITTED,
                        recipient_id=lead.homeowner_id,
                        occurred_at=now,
                        payload={
                            "lead_id": str(lead_id),
                            "quote_id": str(quote.quote_id),
                            "professional_id": str(professional_id),
                            "total": str(pricing.total),
                        },
                    )
                )

        logger.info(
            f"Quote {quote.quote_id} submitted on lead {lead_id}",
            extra={
                "quote_id": str(quote.quote_id),
                "lead_id": str(lead_id),
                "professional_id": str(professional_id),
                "total": str(pricing.total),
            },
        )
        self._notifications.publish(uow.events)
        return quote

    def revise(self, quote_id: UUID, professional_id: UUID, submission: QuoteSubmission) -> Quote:
        """Replace the pricing and timeline of a pending quote."""

        pricing = submission.pricing()
        quote = self.get_quote(quote_id)

        try:
            with self._locks.hold(lead_key(quote.lead_id)):
                with self._store.unit_of_work() as uow:
                    quote = self._require_quote(uow, quote_id)
                    if quote.professional_id != professional_id:
                        raise PermissionDeniedError("Only the professional who submitted a quote can revise it")
                    now = self._clock()
                    self._require_open_lead(uow, quote.lead_id, now)

                    revised = uow.save_quote(
                        quote.revised(
                            pricing,
                            submission.estimated_start_date,
                            submission.estimated_completion_date,
                            now,
                            notes=submission.notes,
                        )
                    )
        except StaleRecordError as e:
            raise ConcurrentUpdateError(f"Quote {quote_id} changed while revising") from e

        logger.info(
            f"Quote {quote_id} revised",
            extra={"quote_id": str(quote_id), "total": str(pricing.total)},
        )
        return revised

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def accept(self, quote_id: UUID, homeowner_id: Optional[UUID] = None) -> Quote:
        """
        Accept one quote and resolve its lead.

        Exactly one quote per lead can win; every other caller receives
        AlreadyResolvedError.
        """
        quote = self.get_quote(quote_id)

        try:
            with self._locks.hold(lead_key(quote.lead_id)):
                with self._store.unit_of_work() as uow:
                    quote = self._require_quote(uow, quote_id)
                    lead = uow.get_lead(quote.lead_id)
                    if lead is None:
                        raise LeadNotFoundError(quote.lead_id)
                    self._require_homeowner(lead, homeowner_id)

                    if not quote.is_pending or lead.status not in (LeadStatus.OPEN, LeadStatus.FULL):
                        raise AlreadyResolvedError(
                            f"Quote {quote_id} cannot be accepted: quote is {quote.status.value}, "
                            f"lead is {lead.status.value}"
                        )

                    now = self._clock()
                    if lead.is_expired(now):
                        raise AlreadyResolvedError(
                            f"Quote {quote_id} cannot be accepted: lead {lead.lead_id} has expired"
                        )
                    accepted = uow.save_quote(quote.accept(now))
                    uow.save_lead(lead.accepted(quote_id, now))
                    declined = self.close_pending_quotes(
                        uow, lead, reason=ACCEPTED_ANOTHER_QUOTE_REASON, at=now
                    )

                    uow.emit(
                        MarketplaceEvent(
                            type=EventType.QUOTE_ACCEPTED,
                            recipient_id=accepted.professional_id,
                            occurred_at=now,
                            payload={"lead_id": str(lead.lead_id), "quote_id": str(quote_id)},
                        )
                    )
        except StaleRecordError as e:
            logger.warning(
                f"Accept of quote {quote_id} lost a concurrent write",
                extra={"quote_id": str(quote_id), "record": e.kind},
            )
            raise AlreadyResolvedError(f"Lead for quote {quote_id} was resolved concurrently") from e

        logger.info(
            f"Quote {quote_id} accepted, lead {accepted.lead_id} resolved",
            extra={
                "quote_id": str(quote_id),
                "lead_id": str(accepted.lead_id),
                "declined_quotes": len(declined),
            },
        )
        self._notifications.publish(uow.events)
        return accepted

    def decline(self, quote_id: UUID, reason: str, homeowner_id: Optional[UUID] = None) -> Quote:
        """Decline a single pending quote; the lead and other quotes are untouched."""

        if not reason or not reason.strip():
            raise ValidationFailedError("A decline reason is required")

        quote = self.get_quote(quote_id)

        try:
            with self._locks.hold(lead_key(quote.lead_id)):
                with self._store.unit_of_work() as uow:
                    quote = self._require_quote(uow, quote_id)
                    lead = uow.get_lead(quote.lead_id)
                    if lead is None:
                        raise LeadNotFoundError(quote.lead_id)
                    self._require_homeowner(lead, homeowner_id)

                    if not quote.is_pending:
                        raise AlreadyResolvedError(f"Quote {quote_id} is already {quote.status.value}")

                    now = self._clock()
                    declined = uow.save_quote(quote.decline(reason.strip(), now))
                    uow.emit(self._declined_event(declined, now))
        except StaleRecordError as e:
            raise ConcurrentUpdateError(f"Quote {quote_id} changed while declining") from e

        logger.info(
            f"Quote {quote_id} declined",
            extra={"quote_id": str(quote_id), "reason": reason},
        )
        self._notifications.publish(uow.events)
        return declined

    def close_pending_quotes(
        self,
        uow: UnitOfWork,
        lead: Lead,
        *,
        reason: str,
        at: datetime,
        expire: bool = False,
    ) -> List[Quote]:
        """
        Decline (or expire) every pending quote on a lead inside the caller's
        unit of work. The caller holds the lead lock.
        """
        closed: List[Quote] = []
        for quote in uow.list_quotes(lead_id=lead.lead_id, status=QuoteStatus.PENDING):
            if expire:
                closed.append(uow.save_quote(quote.expire(at)))
            else:
                declined = uow.save_quote(quote.decline(reason, at))
                uow.emit(self._declined_event(declined, at))
                closed.append(declined)
        return closed

    def expire_stale_quotes(self, as_of: Optional[datetime] = None) -> int:
        """
        Expire pending quotes whose lead is past its expiry or already terminal.
        Quotes that were resolved in the meantime are skipped.
        """
        now = as_of or self._clock()

        by_lead: Dict[UUID, List[Quote]] = defaultdict(list)
        for quote in self._store.list_quotes(status=QuoteStatus.PENDING):
            by_lead[quote.lead_id].append(quote)

        expired = 0
        for lead_id in by_lead:
            try:
                with self._locks.hold(lead_key(lead_id)):
                    with self._store.unit_of_work() as uow:
                        lead = uow.get_lead(lead_id)
                        if lead is None or not (lead.status.is_terminal or lead.is_expired(now)):
                            continue
                        expired += len(self.close_pending_quotes(uow, lead, reason="", at=now, expire=True))
            except Exception:
                logger.exception(
                    f"Failed to expire quotes for lead {lead_id}",
                    extra={"lead_id": str(lead_id)},
                )

        return expired

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_quote(self, quote_id: UUID) -> Quote:
        quote = self._store.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        return quote

    def quotes_for_lead(self, lead_id: UUID) -> List[Quote]:
        return self._store.list_quotes(lead_id=lead_id)

    def quotes_for_professional(self, professional_id: UUID) -> List[Quote]:
        return self._store.list_quotes(professional_id=professional_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_quote(uow: UnitOfWork, quote_id: UUID) -> Quote:
        quote = uow.get_quote(quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        return quote

    @staticmethod
    def _require_open_lead(uow: UnitOfWork, lead_id: UUID, now: datetime) -> Lead:
        lead = uow.get_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)
        if lead.status not in (LeadStatus.OPEN, LeadStatus.FULL):
            raise AlreadyResolvedError(f"Lead {lead_id} is {lead.status.value}; it no longer takes quotes")
        # expires_at is authoritative before the sweep catches up.
        if lead.is_expired(now):
            raise AlreadyResolvedError(f"Lead {lead_id} has expired; it no longer takes quotes")
        return lead

    @staticmethod
    def _require_homeowner(lead: Lead, homeowner_id: Optional[UUID]) -> None:
        if homeowner_id is not None and lead.homeowner_id != homeowner_id:
            raise PermissionDeniedError("Only the homeowner who posted the lead can resolve its quotes")

    @staticmethod
    def _declined_event(quote: Quote, at: datetime) -> MarketplaceEvent:
        return MarketplaceEvent(
            type=EventType.QUOTE_DECLINED,
            recipient_id=quote.professional_id,
            occurred_at=at,
            payload={
                "lead_id": str(quote.lead_id),
                "quote_id": str(quote.quote_id),
                "reason": quote.decline_reason,
            },
        )


__all__ = [
    "ACCEPTED_ANOTHER_QUOTE_REASON",
    "QuoteSubmission",
    "QuoteLifecycleManager",
]
