"""
Domain: marketplace events handed to notification dispatch.

Events are collected while a unit of work runs and dispatched only after it has
committed, so a rolled-back operation never notifies anyone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict
from uuid import UUID

from .time import require_utc_timestamp


class EventType(str, Enum):
    LEAD_CLAIMED = "lead_claimed"
    QUOTE_SUBMITTED = "quote_submitted"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_DECLINED = "quote_declined"
    CREDITS_LOW = "credits_low"
    LEAD_CANCELLED = "lead_cancelled"
    DIRECT_LEAD_RECEIVED = "direct_lead_received"
    DIRECT_LEAD_CONVERTED = "direct_lead_converted"


@dataclass(frozen=True, slots=True)
class MarketplaceEvent:
    type: EventType
    recipient_id: UUID
    occurred_at: datetime
    payload: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        require_utc_timestamp("occurred_at", self.occurred_at)


__all__ = ["EventType", "MarketplaceEvent"]
