"""
Domain: Trait offers (purchasable visual traits).

Rules implemented here:
- burn_cost is an integer >= 0, sol_price is a decimal >= 0.
- stock_quantity is an integer >= 0, or None for unlimited stock.
- max_claims_per_wallet is an integer >= 1, or None for unlimited claims.
- An offer is "free" (claim-only) iff burn_cost == 0 and sol_price == 0.
- Offers are never deleted, only deactivated.

Pure domain entity: no I/O. Stock mutation is owned by the stock ledger; this
type only models a snapshot of the catalogue row.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from .time import require_utc_timestamp


@dataclass(frozen=True, slots=True)
class TraitOffer:
    """
    Immutable snapshot of a purchasable trait.

    trait_value is the attribute value written into the NFT metadata; when it
    is empty the offer name is used instead (see applied_value).
    """

    offer_id: UUID
    name: str
    category: str
    trait_value: Optional[str]
    image_url: Optional[str]
    burn_cost: int
    sol_price: Decimal
    stock_quantity: Optional[int] = None  # None = unlimited
    max_claims_per_wallet: Optional[int] = None  # None = unlimited
    is_active: bool = True
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("name must not be empty")
        if not self.category:
            raise ValueError("category must not be empty")
        if self.burn_cost < 0:
            raise ValueError("burn_cost must be >= 0")
        if self.sol_price < 0:
            raise ValueError("sol_price must be >= 0")
        if self.stock_quantity is not None and self.stock_quantity < 0:
            raise ValueError("stock_quantity must be >= 0 or None (unlimited)")
        if self.max_claims_per_wallet is not None and self.max_claims_per_wallet < 1:
            raise ValueError("max_claims_per_wallet must be >= 1 or None (unlimited)")
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)

    @property
    def is_free(self) -> bool:
        """Free offers are claim-only: no burn and no SOL price."""

        return self.burn_cost == 0 and self.sol_price == 0

    @property
    def has_unlimited_stock(self) -> bool:
        return self.stock_quantity is None

    @property
    def is_sold_out(self) -> bool:
        return self.stock_quantity is not None and self.stock_quantity == 0

    @property
    def applied_value(self) -> str:
        """Attribute value applied to the target NFT."""

        return self.trait_value or self.name

    def with_stock(self, stock_quantity: Optional[int]) -> "TraitOffer":
        return replace(self, stock_quantity=stock_quantity)


__all__ = ["TraitOffer"]
