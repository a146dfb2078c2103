"""
Pricing service for lead claim costs.

Pure calculation: cost(budget_bracket, urgency, verified) -> int >= 1.

    cost = round_half_up(base[bracket] * multiplier[urgency] * (0.85 if verified))

with a floor of 1 credit. The coordinator computes this once, at the first
successful claim of a lead, and freezes it on the lead.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping

from domain.lead import BudgetBracket, Urgency

BASE_CREDITS: Mapping[BudgetBracket, int] = {
    BudgetBracket.UNDER_3K: 3,
    BudgetBracket.FROM_3K_TO_5K: 4,
    BudgetBracket.FROM_5K_TO_20K: 6,
    BudgetBracket.FROM_20K_TO_50K: 8,
    BudgetBracket.FROM_50K_TO_100K: 12,
    BudgetBracket.FROM_100K_TO_250K: 16,
    BudgetBracket.OVER_250K: 20,
}

URGENCY_MULTIPLIERS: Mapping[Urgency, Decimal] = {
    Urgency.EMERGENCY: Decimal("1.25"),
    Urgency.URGENT: Decimal("1.1"),
    Urgency.FLEXIBLE: Decimal("1.0"),
    Urgency.PLANNING: Decimal("0.9"),
}

VERIFIED_DISCOUNT: Decimal = Decimal("0.15")
MINIMUM_COST: int = 1


@dataclass(frozen=True, slots=True)
class ClaimCostBreakdown:
    """
    Itemized claim cost, as shown to a professional before claiming.
    """
    budget_bracket: BudgetBracket
    urgency: Urgency
    verified: bool
    base_credits: int
    urgency_multiplier: Decimal
    discount: Decimal
    credits: int


def calculate_claim_cost(
    budget_bracket: BudgetBracket,
    urgency: Urgency,
    verified: bool,
) -> ClaimCostBreakdown:
    """
    Calculate the credit cost of claiming a lead.

    Args:
        budget_bracket: Homeowner's budget bracket for the job
        urgency: How soon the homeowner needs the work done
        verified: Whether the claiming professional is verified

    Returns:
        ClaimCostBreakdown with the final integer cost in `credits`

    Example:
        breakdown = calculate_claim_cost(BudgetBracket.FROM_5K_TO_20K, Urgency.EMERGENCY, True)
        print(breakdown.credits)  # 6 * 1.25 * 0.85 = 6.375 -> 6
    """
    base = BASE_CREDITS[budget_bracket]
    multiplier = URGENCY_MULTIPLIERS[urgency]
    discount = VERIFIED_DISCOUNT if verified else Decimal("0")

    raw = Decimal(base) * multiplier * (Decimal("1") - discount)
    credits = int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    return ClaimCostBreakdown(
        budget_bracket=budget_bracket,
        urgency=urgency,
        verified=verified,
        base_credits=base,
        urgency_multiplier=multiplier,
        discount=discount,
        credits=max(MINIMUM_COST, credits),
    )


def claim_cost(budget_bracket: BudgetBracket, urgency: Urgency, verified: bool) -> int:
    """Integer credit cost of claiming a lead (always >= 1)."""
    return calculate_claim_cost(budget_bracket, urgency, verified).credits


__all__ = [
    "BASE_CREDITS",
    "URGENCY_MULTIPLIERS",
    "VERIFIED_DISCOUNT",
    "ClaimCostBreakdown",
    "calculate_claim_cost",
    "claim_cost",
]
