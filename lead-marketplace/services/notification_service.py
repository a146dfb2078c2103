"""
Notification dispatch for marketplace events.

Delivery is fire-and-forget: events are published only after the state change
that produced them has committed, and a failing dispatcher is logged without
failing the operation that emitted the event.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

from domain.events import MarketplaceEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    @abstractmethod
    def send(self, event: MarketplaceEvent) -> None: ...


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Default dispatcher: writes every event to the application log."""

    def send(self, event: MarketplaceEvent) -> None:
        logger.info(
            f"Notification {event.type.value} for {event.recipient_id}",
            extra={
                "event_type": event.type.value,
                "recipient_id": str(event.recipient_id),
                "payload": event.payload,
            },
        )


class NotificationService:
    def __init__(self, dispatchers: Optional[Sequence[NotificationDispatcher]] = None):
        self._dispatchers: List[NotificationDispatcher] = (
            list(dispatchers) if dispatchers is not None else [LoggingNotificationDispatcher()]
        )

    def publish(self, events: Iterable[MarketplaceEvent]) -> None:
        for event in events:
            for dispatcher in self._dispatchers:
                try:
                    dispatcher.send(event)
                except Exception:
                    logger.exception(
                        f"Notification dispatcher {type(dispatcher).__name__} failed for {event.type.value}",
                        extra={
                            "event_type": event.type.value,
                            "recipient_id": str(event.recipient_id),
                        },
                    )


__all__ = [
    "NotificationDispatcher",
    "LoggingNotificationDispatcher",
    "NotificationService",
]
