"""
Pytest configuration for the marketplace tests.

This file adds the parent directory to the Python path so that tests
can import from the domain, repositories and services modules, and provides
a fully wired in-memory marketplace with a controllable clock.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List
from uuid import UUID, uuid4

import pytest

# Add the lead-marketplace directory to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import MarketplaceSettings  # noqa: E402
from domain.credits import CreditTransactionType  # noqa: E402
from domain.events import EventType, MarketplaceEvent  # noqa: E402
from domain.lead import BudgetBracket, Lead, Urgency  # noqa: E402
from repositories.memory_store import InMemoryMarketplaceStore  # noqa: E402
from repositories.professional_repository import InMemoryProfessionalDirectory  # noqa: E402
from services.lead_service import LeadRequest  # noqa: E402
from services.marketplace import Marketplace, build_marketplace  # noqa: E402
from services.notification_service import NotificationDispatcher  # noqa: E402

START = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable UTC clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self) -> None:
        self.events: List[MarketplaceEvent] = []

    def send(self, event: MarketplaceEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[MarketplaceEvent]:
        return [event for event in self.events if event.type == event_type]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryMarketplaceStore:
    return InMemoryMarketplaceStore()


@pytest.fixture
def directory() -> InMemoryProfessionalDirectory:
    return InMemoryProfessionalDirectory()


@pytest.fixture
def recorder() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def settings() -> MarketplaceSettings:
    return MarketplaceSettings(store="memory")


@pytest.fixture
def marketplace(settings, store, directory, recorder, clock) -> Marketplace:
    return build_marketplace(
        settings,
        store=store,
        directory=directory,
        dispatchers=[recorder],
        clock=clock,
    )


@pytest.fixture
def fund(marketplace, clock):
    """Give a professional free credits; returns the new total balance."""

    def _fund(professional_id: UUID, credits: int) -> int:
        posting = marketplace.ledger.credit(
            professional_id,
            credits,
            CreditTransactionType.ADMIN_ADDITION,
            description="test funds",
        )
        clock.advance(timedelta(seconds=1))
        return posting.balance.total_balance

    return _fund


@pytest.fixture
def new_lead(marketplace):
    """
    Post a marketplace lead. Defaults cost 5 credits to an unverified
    professional (3k-5k base 4 x 1.25 emergency).
    """

    def _new_lead(
        homeowner_id: UUID | None = None,
        *,
        budget_bracket: BudgetBracket = BudgetBracket.FROM_3K_TO_5K,
        urgency: Urgency = Urgency.EMERGENCY,
        category: str = "plumbing",
    ) -> Lead:
        return marketplace.leads.create_lead(
            LeadRequest(
                homeowner_id=homeowner_id or uuid4(),
                category=category,
                budget_bracket=budget_bracket,
                urgency=urgency,
                title="Leaking pipe",
            )
        )

    return _new_lead
