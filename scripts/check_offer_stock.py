"""
Check offer stock - how much of each active trait is left, and how many
reservations are in flight.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.purchase import PurchaseStatus
from repositories.purchase_repository import SupabasePurchaseRepository
from repositories.trait_offer_repository import SupabaseTraitOfferRepository
from services.checkout_service import summarize_records


def check_offer_stock():
    """Print stock per active offer and purchase counts by status."""

    offers = SupabaseTraitOfferRepository().list_active_offers()
    purchases = SupabasePurchaseRepository()

    print("=" * 70)
    print("OFFER STOCK")
    print("=" * 70)
    print(f"{'Name':<30} {'Category':<15} {'Price':<14} {'Stock':>8}")
    print("-" * 70)

    for offer in offers:
        if offer.is_free:
            price = "free"
        else:
            price = f"{offer.burn_cost} burn / {offer.sol_price} SOL"
        stock = "unlimited" if offer.has_unlimited_stock else str(offer.stock_quantity)
        print(f"{offer.name:<30} {offer.category:<15} {price:<14} {stock:>8}")

    sold_out = sum(1 for offer in offers if offer.is_sold_out)
    print("-" * 70)
    print(f"Active offers: {len(offers)}  (sold out: {sold_out})")

    recent = []
    for status in PurchaseStatus:
        recent += purchases.list_purchases(status=status, limit=1000)
    counts = summarize_records(recent)

    print("\nPurchase records (up to 1000 per status):")
    for status, count in counts.items():
        print(f"  {status:<10} {count}")
    print("=" * 70)


if __name__ == "__main__":
    check_offer_stock()
