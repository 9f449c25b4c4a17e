#!/usr/bin/env python3
"""
Expired Reservation Sweep

Releases the stock held by reservations that passed their grace window without
payment starting (or whose payment failed and was never retried). Meant to run
on a schedule (cron, every minute or so).

Usage:
    python sweep_expired_reservations.py
    python sweep_expired_reservations.py --dry-run
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.purchase import PurchaseStatus
from domain.time import utc_now
from repositories.purchase_repository import SupabasePurchaseRepository
from repositories.stock_ledger_repository import SupabaseStockLedger
from services.reservation_service import sweep_expired_reservations


def preview_expired(purchases: SupabasePurchaseRepository, limit: int) -> int:
    """Print reservations the sweep would release, without releasing them."""

    now = utc_now()
    candidates = purchases.list_purchases(status=PurchaseStatus.PENDING, limit=limit)
    candidates += purchases.list_purchases(status=PurchaseStatus.FAILED, limit=limit)
    releasable = [r for r in candidates if r.is_releasable(now)]

    for record in releasable:
        print(
            f"  {record.purchase_id}  {record.status.value:<9} {record.transaction_step.value:<11} "
            f"wallet={record.wallet_address} expired_at={record.reservation_expires_at.isoformat()}"
        )
    return len(releasable)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Release stock held by expired trait reservations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Release every expired reservation
  python sweep_expired_reservations.py

  # Only list what would be released
  python sweep_expired_reservations.py --dry-run
        """
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List releasable reservations without releasing them"
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=1000,
        help="Maximum records to inspect per status in --dry-run mode (default: 1000)"
    )

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        if args.dry_run:
            print("Expired reservations (dry run):")
            count = preview_expired(SupabasePurchaseRepository(), args.limit)
            print(f"\n{count} reservation(s) would be released")
            return 0

        released = sweep_expired_reservations(SupabaseStockLedger())

        print("=" * 60)
        print("RESERVATION SWEEP")
        print("=" * 60)
        print(f"Released reservations: {len(released)}")
        for purchase_id in released:
            print(f"  {purchase_id}")
        print("=" * 60)
        return 0

    except KeyboardInterrupt:
        print("\n\nSweep interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
