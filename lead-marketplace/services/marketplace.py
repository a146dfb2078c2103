"""
Service wiring.

Builds one store, one lock registry and one instance of every service, sharing
them so that all writers in the process serialize on the same locks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from config import MarketplaceSettings, load_settings
from domain.time import utc_now
from repositories.memory_store import InMemoryMarketplaceStore
from repositories.professional_repository import (
    InMemoryProfessionalDirectory,
    ProfessionalDirectory,
    SupabaseProfessionalDirectory,
)
from repositories.store import MarketplaceStore
from services.claim_service import LeadClaimCoordinator
from services.credit_ledger import CreditLedger
from services.lead_service import LeadLifecycleManager
from services.locks import LockRegistry
from services.notification_service import NotificationDispatcher, NotificationService
from services.quote_service import QuoteLifecycleManager


@dataclass(frozen=True)
class Marketplace:
    settings: MarketplaceSettings
    store: MarketplaceStore
    directory: ProfessionalDirectory
    notifications: NotificationService
    ledger: CreditLedger
    claims: LeadClaimCoordinator
    quotes: QuoteLifecycleManager
    leads: LeadLifecycleManager
    clock: Callable[[], datetime]


def _default_store(settings: MarketplaceSettings) -> MarketplaceStore:
    if settings.store == "supabase":
        from repositories.supabase_store import SupabaseMarketplaceStore

        return SupabaseMarketplaceStore()
    return InMemoryMarketplaceStore()


def _default_directory(settings: MarketplaceSettings) -> ProfessionalDirectory:
    if settings.store == "supabase":
        return SupabaseProfessionalDirectory()
    return InMemoryProfessionalDirectory()


def build_marketplace(
    settings: Optional[MarketplaceSettings] = None,
    *,
    store: Optional[MarketplaceStore] = None,
    directory: Optional[ProfessionalDirectory] = None,
    dispatchers: Optional[Sequence[NotificationDispatcher]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> Marketplace:
    """
    Wire every marketplace service.

    Args:
        settings: Runtime settings (default: read from the environment)
        store: Persistence backend (default: chosen by settings.store)
        directory: Professional verification lookup (default: matches the store)
        dispatchers: Notification dispatchers (default: log every event)
        clock: Source of the current UTC time

    Returns:
        Marketplace holding the shared store, locks and services
    """
    settings = settings or load_settings()
    store = store if store is not None else _default_store(settings)
    directory = directory if directory is not None else _default_directory(settings)

    locks = LockRegistry()
    notifications = NotificationService(dispatchers)

    ledger = CreditLedger(
        store,
        locks,
        notifications,
        clock=clock,
        low_credit_threshold=settings.credits_low_threshold,
        purchased_credit_validity=timedelta(days=settings.purchased_credit_validity_days),
        expiring_lots_window=timedelta(days=settings.expiring_lots_window_days),
    )
    claims = LeadClaimCoordinator(store, locks, ledger, directory, notifications, clock=clock)
    quotes = QuoteLifecycleManager(store, locks, notifications, clock=clock)
    leads = LeadLifecycleManager(
        store,
        locks,
        claims,
        quotes,
        notifications,
        clock=clock,
        default_max_claims=settings.default_max_claims,
        lead_expiry=timedelta(days=settings.lead_expiry_days),
        direct_response_window=timedelta(hours=settings.direct_lead_response_hours),
    )

    return Marketplace(
        settings=settings,
        store=store,
        directory=directory,
        notifications=notifications,
        ledger=ledger,
        claims=claims,
        quotes=quotes,
        leads=leads,
        clock=clock,
    )


__all__ = ["Marketplace", "build_marketplace"]
