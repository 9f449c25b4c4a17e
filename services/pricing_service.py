"""
Pricing service for calculating checkout quotes.

Calculates what a cart costs for a given payment method, using the fee
configuration:
- free: nothing is charged
- burn: sum(burn_cost) NFTs are burned; the SOL fees (service + reimbursement) are charged
- sol: sum(sol_price) + service fee go to the collection wallet, the
  reimbursement fee goes to the reimbursement wallet
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Sequence
from uuid import UUID

from domain.purchase import PaymentMethod
from domain.trait_offer import TraitOffer
from services.shop_config import ShopConfig

_ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class PriceCalculation:
    """
    Individual line item of a quote.
    """
    offer_id: UUID
    name: str
    burn_cost: int
    sol_price: Decimal

    def charged_sol(self, method: PaymentMethod) -> Decimal:
        """SOL attributed to this line item (excluding fees) for the given method."""
        return self.sol_price if method is PaymentMethod.SOL else _ZERO


@dataclass(frozen=True, slots=True)
class CheckoutQuote:
    """
    Complete checkout quote with itemized breakdown.

    Includes:
    - Individual item prices
    - Items total, fees, and the split between collection and reimbursement wallets
    - Quote expiration (aligned with the reservation grace window)
    """
    items: List[PriceCalculation]
    payment_method: PaymentMethod
    items_total_sol: Decimal
    burn_count: int
    service_fee: Decimal
    reimbursement_fee: Decimal
    created_at: datetime
    expires_at: datetime

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def collection_amount(self) -> Decimal:
        """SOL sent to the collection wallet (items total + service fee)."""
        return self.items_total_sol + self.service_fee

    @property
    def total_fees(self) -> Decimal:
        return self.service_fee + self.reimbursement_fee

    @property
    def total_cost_sol(self) -> Decimal:
        return self.items_total_sol + self.total_fees

    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) > self.expires_at


def resolve_payment_method(items: Sequence[TraitOffer], requested: PaymentMethod | None) -> PaymentMethod:
    """
    Pick the payment method for a cart.

    An all-free cart is always claimed for free. Otherwise the caller must
    choose burn or sol.

    Raises:
        ValueError: if the cart is empty, no method was chosen for a paid cart,
            or "free" was chosen for a paid cart.
    """

    if not items:
        raise ValueError("Cart is empty")

    if all(item.is_free for item in items):
        return PaymentMethod.FREE

    if requested is None:
        raise ValueError("Choose a payment method: burn or sol")
    if requested is PaymentMethod.FREE:
        raise ValueError("Cart contains paid items; free checkout is not available")
    if requested is PaymentMethod.BURN and sum(item.burn_cost for item in items) == 0:
        raise ValueError("Cart items cannot be paid by burning; pay with SOL")
    if requested is PaymentMethod.SOL and all(item.sol_price == 0 for item in items):
        raise ValueError("Cart items cannot be paid with SOL; pay by burning")
    return requested


def build_checkout_quote(
    items: Sequence[TraitOffer],
    payment_method: PaymentMethod,
    config: ShopConfig,
) -> CheckoutQuote:
    """
    Calculate a checkout quote.

    Args:
        items: Cart items (non-empty)
        payment_method: Resolved payment method (see resolve_payment_method)
        config: Fee configuration

    Returns:
        CheckoutQuote with itemized pricing

    Example:
        quote = build_checkout_quote(cart.items(), PaymentMethod.SOL, config)
        print(f"Send {quote.collection_amount} SOL + {quote.reimbursement_fee} SOL")
    """
    if not items:
        raise ValueError("Cart is empty")

    line_items = [
        PriceCalculation(
            offer_id=item.offer_id,
            name=item.name,
            burn_cost=item.burn_cost,
            sol_price=item.sol_price,
        )
        for item in items
    ]

    if payment_method is PaymentMethod.FREE:
        items_total = _ZERO
        burn_count = 0
        service_fee = _ZERO
        reimbursement_fee = _ZERO
    else:
        items_total = sum((line.charged_sol(payment_method) for line in line_items), _ZERO)
        burn_count = sum(line.burn_cost for line in line_items) if payment_method is PaymentMethod.BURN else 0
        service_fee = config.service_fee
        reimbursement_fee = config.reimbursement_fee

    now = datetime.now(timezone.utc)

    return CheckoutQuote(
        items=line_items,
        payment_method=payment_method,
        items_total_sol=items_total,
        burn_count=burn_count,
        service_fee=service_fee,
        reimbursement_fee=reimbursement_fee,
        created_at=now,
        expires_at=now + timedelta(minutes=config.grace_minutes),
    )


__all__ = [
    "CheckoutQuote",
    "PriceCalculation",
    "build_checkout_quote",
    "resolve_payment_method",
]
