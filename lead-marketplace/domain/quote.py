"""
Domain: Quote entity and server-side pricing.

Rules implemented here:
- Line item total = quantity * unit_price; subtotal = sum of item totals;
  vat = subtotal * 0.05; total = subtotal + vat. Money is rounded half-up to
  2 decimal places. Totals are always computed here, never taken from a client.
- State machine: pending -> accepted | declined | expired (all terminal).
- The estimated completion date cannot precede the estimated start date.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Optional, Tuple
from uuid import UUID

from .errors import AlreadyResolvedError, ValidationFailedError
from .time import require_optional_utc_timestamp, require_utc_timestamp

VAT_RATE = Decimal("0.05")
_CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


class QuoteStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class QuoteItemCategory(str, Enum):
    LABOR = "labor"
    MATERIALS = "materials"
    PERMITS = "permits"
    EQUIPMENT = "equipment"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class QuoteLineItem:
    category: QuoteItemCategory
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    description: str = ""

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be positive")
        if self.unit_price < 0:
            raise ValueError("unit_price must be >= 0")
        if self.total != to_money(self.quantity * self.unit_price):
            raise ValueError("line item total must equal quantity * unit_price")

    @staticmethod
    def create(
        category: QuoteItemCategory | str,
        quantity: Decimal | int | str,
        unit_price: Decimal | int | str,
        description: str = "",
    ) -> "QuoteLineItem":
        """Build a line item from caller input, raising ValidationFailedError on bad values."""

        try:
            item_category = QuoteItemCategory(category)
        except ValueError:
            raise ValidationFailedError(f"Unknown quote item category: {category!r}") from None

        try:
            qty = Decimal(str(quantity))
            price = Decimal(str(unit_price))
        except InvalidOperation:
            raise ValidationFailedError("quantity and unit_price must be numeric") from None

        if not qty.is_finite() or qty <= 0:
            raise ValidationFailedError("quantity must be a positive number")
        if not price.is_finite() or price < 0:
            raise ValidationFailedError("unit_price must be zero or positive")

        return QuoteLineItem(
            category=item_category,
            quantity=qty,
            unit_price=price,
            total=to_money(qty * price),
            description=description,
        )


@dataclass(frozen=True, slots=True)
class QuotePricing:
    items: Tuple[QuoteLineItem, ...]
    subtotal: Decimal
    vat: Decimal
    total: Decimal

    @staticmethod
    def from_items(items: Iterable[QuoteLineItem]) -> "QuotePricing":
        line_items = tuple(items)
        if not line_items:
            raise ValidationFailedError("A quote needs at least one line item")

        subtotal = to_money(sum((item.total for item in line_items), Decimal("0")))
        vat = to_money(subtotal * VAT_RATE)
        return QuotePricing(items=line_items, subtotal=subtotal, vat=vat, total=subtotal + vat)


@dataclass(frozen=True, slots=True)
class Quote:
    quote_id: UUID
    lead_id: UUID
    professional_id: UUID
    pricing: QuotePricing
    estimated_start_date: date
    estimated_completion_date: date
    created_at: datetime
    status: QuoteStatus = QuoteStatus.PENDING
    notes: str = ""
    updated_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    expired_at: Optional[datetime] = None
    version: int = 0

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        require_optional_utc_timestamp("updated_at", self.updated_at)
        require_optional_utc_timestamp("accepted_at", self.accepted_at)
        require_optional_utc_timestamp("declined_at", self.declined_at)
        require_optional_utc_timestamp("expired_at", self.expired_at)
        validate_timeline(self.estimated_start_date, self.estimated_completion_date)

    @property
    def is_pending(self) -> bool:
        return self.status == QuoteStatus.PENDING

    def _require_pending(self, action: str) -> None:
        if self.status != QuoteStatus.PENDING:
            raise AlreadyResolvedError(
                f"Cannot {action} quote {self.quote_id} with status {self.status.value}"
            )

    def accept(self, at: datetime) -> "Quote":
        self._require_pending("accept")
        return replace(self, status=QuoteStatus.ACCEPTED, accepted_at=at, updated_at=at)

    def decline(self, reason: str, at: datetime) -> "Quote":
        self._require_pending("decline")
        return replace(
            self, status=QuoteStatus.DECLINED, declined_at=at, decline_reason=reason, updated_at=at
        )

    def expire(self, at: datetime) -> "Quote":
        self._require_pending("expire")
        return replace(self, status=QuoteStatus.EXPIRED, expired_at=at, updated_at=at)

    def revised(
        self,
        pricing: QuotePricing,
        estimated_start_date: date,
        estimated_completion_date: date,
        at: datetime,
        notes: Optional[str] = None,
    ) -> "Quote":
        self._require_pending("revise")
        validate_timeline(estimated_start_date, estimated_completion_date)
        return replace(
            self,
            pricing=pricing,
            estimated_start_date=estimated_start_date,
            estimated_completion_date=estimated_completion_date,
            notes=self.notes if notes is None else notes,
            updated_at=at,
        )


def validate_timeline(start: date, completion: date) -> None:
    if completion < start:
        raise ValidationFailedError("estimated_completion_date cannot be before estimated_start_date")


__all__ = [
    "VAT_RATE",
    "to_money",
    "QuoteStatus",
    "QuoteItemCategory",
    "QuoteLineItem",
    "QuotePricing",
    "Quote",
    "validate_timeline",
]
