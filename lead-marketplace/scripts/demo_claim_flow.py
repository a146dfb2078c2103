#!/usr/bin/env python3
"""
Claim Flow Demo

Walks through a full marketplace round on the in-memory store:
two slots, three professionals, one who cannot afford the lead, quotes from
the two claimants and the homeowner accepting one of them.

Usage:
    python demo_claim_flow.py
"""

from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path
from uuid import uuid4

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import MarketplaceSettings, configure_logging
from domain.credits import CreditTransactionType
from domain.errors import MarketplaceError
from domain.lead import BudgetBracket, Urgency
from domain.quote import QuoteLineItem
from services.lead_service import LeadRequest
from services.marketplace import build_marketplace
from services.quote_service import QuoteSubmission


def main() -> int:
    configure_logging("WARNING")
    marketplace = build_marketplace(MarketplaceSettings(store="memory", default_max_claims=2))

    homeowner = uuid4()
    pro_a, pro_b, pro_c, pro_d = uuid4(), uuid4(), uuid4(), uuid4()
    names = {pro_a: "A", pro_b: "B", pro_c: "C", pro_d: "D"}

    for pro, credits in ((pro_a, 10), (pro_b, 3), (pro_c, 5), (pro_d, 50)):
        marketplace.ledger.credit(pro, credits, CreditTransactionType.ADMIN_ADDITION, description="demo funds")

    # 4 credits base x 1.25 emergency = 5 credits per claim
    lead = marketplace.leads.create_lead(
        LeadRequest(
            homeowner_id=homeowner,
            category="plumbing",
            budget_bracket=BudgetBracket.FROM_3K_TO_5K,
            urgency=Urgency.EMERGENCY,
            title="Burst pipe under the kitchen sink",
        )
    )
    print(f"Lead {lead.lead_id}: {lead.max_claims} slots")
    print()

    for pro in (pro_a, pro_b, pro_c, pro_d):
        try:
            result = marketplace.claims.claim(lead.lead_id, pro)
            print(
                f"  {names[pro]} claimed for {result.claim.credits_spent} credits, "
                f"{result.remaining_credits} left "
                f"(claims {result.lead.claim_count}/{result.lead.max_claims}, {result.lead.status.value})"
            )
        except MarketplaceError as e:
            print(f"  {names[pro]} failed: {e.code} - {e.message}")

    print()
    start = date.today() + timedelta(days=1)
    quotes = {}
    for pro, hours in ((pro_a, 3), (pro_c, 4)):
        quotes[pro] = marketplace.quotes.submit(
            lead.lead_id,
            pro,
            QuoteSubmission(
                items=[
                    QuoteLineItem.create("labor", hours, "85.00", "Plumber"),
                    QuoteLineItem.create("materials", 1, "42.50", "Pipe and fittings"),
                ],
                estimated_start_date=start,
                estimated_completion_date=start,
            ),
        )
        q = quotes[pro]
        print(f"  {names[pro]} quoted {q.pricing.subtotal} + VAT {q.pricing.vat} = {q.pricing.total}")

    print()
    marketplace.quotes.accept(quotes[pro_a].quote_id, homeowner_id=homeowner)
    for pro, quote in quotes.items():
        print(f"  {names[pro]}'s quote is {marketplace.quotes.get_quote(quote.quote_id).status.value}")
    print(f"  Lead is {marketplace.leads.get_lead(lead.lead_id).status.value}")

    try:
        marketplace.quotes.accept(quotes[pro_c].quote_id, homeowner_id=homeowner)
    except MarketplaceError as e:
        print(f"  Accepting C's quote again failed: {e.code}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
