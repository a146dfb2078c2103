"""
Background expiry sweeps.

Each sweep is idempotent and isolated: a failing sweep is logged and the
remaining sweeps still run. Sweeps are only retried by running them again on
the next schedule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID

if TYPE_CHECKING:
    from services.marketplace import Marketplace

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepReport:
    """
    Counts from one sweep run.

    failed_sweeps: names of sweeps that raised (details are in the log)
    """
    as_of: datetime
    direct_leads_converted: int = 0
    leads_expired: int = 0
    quotes_expired: int = 0
    lots_expired: int = 0
    balances_reconciled: int = 0
    inconsistent_balances: List[UUID] = field(default_factory=list)
    failed_sweeps: List[str] = field(default_factory=list)


def run_sweeps(
    marketplace: "Marketplace",
    *,
    as_of: Optional[datetime] = None,
    reconcile: bool = False,
) -> SweepReport:
    """
    Run every expiry sweep once.

    Order: direct-lead conversion, lead expiry (with its pending quotes),
    stale quotes, paid-lot expiry, then optionally reconciliation of every
    balance.

    Example:
        report = run_sweeps(build_marketplace(), reconcile=True)
        print(f"{report.leads_expired} leads expired")
    """
    now = as_of or marketplace.clock()
    report = SweepReport(as_of=now)

    def attempt(name: str, sweep) -> int:
        try:
            return sweep()
        except Exception:
            logger.exception(f"Sweep {name} failed", extra={"sweep": name})
            report.failed_sweeps.append(name)
            return 0

    report.direct_leads_converted = attempt(
        "direct_leads", lambda: marketplace.leads.convert_expired_direct_leads(now)
    )
    report.leads_expired = attempt("leads", lambda: marketplace.leads.expire_leads(now))
    report.quotes_expired = attempt("quotes", lambda: marketplace.quotes.expire_stale_quotes(now))
    report.lots_expired = attempt("credit_lots", lambda: marketplace.ledger.expire_lots(now))

    if reconcile:
        def reconcile_all() -> int:
            checked = 0
            for balance in marketplace.store.list_balances():
                result = marketplace.ledger.reconcile(balance.professional_id)
                checked += 1
                if not result.consistent:
                    report.inconsistent_balances.append(balance.professional_id)
            return checked

        report.balances_reconciled = attempt("reconciliation", reconcile_all)

    logger.info(
        "Sweep run finished",
        extra={
            "direct_leads_converted": report.direct_leads_converted,
            "leads_expired": report.leads_expired,
            "quotes_expired": report.quotes_expired,
            "lots_expired": report.lots_expired,
            "balances_reconciled": report.balances_reconciled,
            "failed_sweeps": report.failed_sweeps,
        },
    )
    return report


__all__ = ["SweepReport", "run_sweeps"]
