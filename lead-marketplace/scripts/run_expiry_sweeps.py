#!/usr/bin/env python3
"""
Expiry Sweep Runner

Runs the marketplace's background sweeps: overdue direct leads are opened to
the marketplace, expired leads and stale quotes are closed, and paid credit
lots past their expiry are written off.

Usage:
    python run_expiry_sweeps.py --once
    python run_expiry_sweeps.py --interval 300
    python run_expiry_sweeps.py --once --reconcile
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import configure_logging, load_settings
from services.marketplace import build_marketplace
from services.sweep_service import SweepReport, run_sweeps

logger = logging.getLogger("scripts.run_expiry_sweeps")


def print_report(report: SweepReport) -> None:
    print()
    print("=" * 60)
    print(f"SWEEP SUMMARY ({report.as_of.isoformat()})")
    print("=" * 60)
    print(f"Direct leads converted: {report.direct_leads_converted}")
    print(f"Leads expired:          {report.leads_expired}")
    print(f"Quotes expired:         {report.quotes_expired}")
    print(f"Credit lots expired:    {report.lots_expired}")
    if report.balances_reconciled:
        print(f"Balances reconciled:    {report.balances_reconciled}")
        print(f"  Inconsistent:         {len(report.inconsistent_balances)}")
        for professional_id in report.inconsistent_balances:
            print(f"    - {professional_id}")
    if report.failed_sweeps:
        print(f"Failed sweeps:          {', '.join(report.failed_sweeps)}")
    print("=" * 60)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Run lead, quote and credit expiry sweeps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every sweep once and exit
  python run_expiry_sweeps.py --once

  # Run forever, every 5 minutes
  python run_expiry_sweeps.py --interval 300

  # Also reconcile every balance against its transaction log
  python run_expiry_sweeps.py --once --reconcile
        """
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single pass and exit"
    )

    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between passes (default: MARKETPLACE_SWEEP_INTERVAL_SECONDS)"
    )

    parser.add_argument(
        "--reconcile",
        action="store_true",
        help="Reconcile every credit balance after the sweeps"
    )

    args = parser.parse_args()

    try:
        settings = load_settings()
        configure_logging(settings.log_level)
        interval = args.interval if args.interval is not None else settings.sweep_interval_seconds
        if interval < 1:
            print("ERROR: --interval must be at least 1 second", file=sys.stderr)
            return 2

        marketplace = build_marketplace(settings)

        while True:
            report = run_sweeps(marketplace, reconcile=args.reconcile)
            print_report(report)

            if args.once:
                return 1 if report.failed_sweeps else 0

            logger.info(f"Next sweep in {interval}s")
            time.sleep(interval)

    except KeyboardInterrupt:
        print("\n\nSweeps interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
