"""
Trait offer repository (persistence).

This module provides *only* persistence operations for the TraitOffer catalogue
(`shop_traits` table). Stock decrements for purchases never go through here;
they are done atomically by the stock ledger stored procedures. The stock and
claim-limit setters below are admin actions.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence
from uuid import UUID

from domain.time import parse_optional_utc_datetime, to_iso_utc
from domain.trait_offer import TraitOffer
from repositories.client import get_supabase

# Supabase table name for trait offers.
# Keep this aligned with sql/schema.sql.
_TRAITS_TABLE: str = "shop_traits"


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


def _row_to_offer(row: Mapping[str, Any]) -> TraitOffer:
    """Convert a Supabase row into a TraitOffer."""

    return TraitOffer(
        offer_id=UUID(str(row["id"])),
        name=str(row["name"]),
        category=str(row["category"]),
        trait_value=row.get("trait_value"),
        image_url=row.get("image_url"),
        burn_cost=int(row.get("burn_cost") or 0),
        sol_price=Decimal(str(row.get("sol_price") or "0")),
        stock_quantity=_optional_int(row.get("stock_quantity")),
        max_claims_per_wallet=_optional_int(row.get("max_claims_per_wallet")),
        is_active=bool(row.get("is_active", True)),
        created_at=parse_optional_utc_datetime(row.get("created_at")),
    )


class SupabaseTraitOfferRepository:
    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def list_active_offers(self) -> List[TraitOffer]:
        """
        Active offers in catalogue order (oldest first).

        Returns:
            List[TraitOffer] (possibly empty)
        """

        response = (
            self.client.table(_TRAITS_TABLE)
            .select("*")
            .eq("is_active", True)
            .order("created_at")
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list trait offers: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_offer(row) for row in rows]

    def get_offer(self, offer_id: UUID) -> Optional[TraitOffer]:
        response = (
            self.client.table(_TRAITS_TABLE)
            .select("*")
            .eq("id", str(offer_id))
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to get trait offer: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_offer(rows[0])

    def get_offers(self, offer_ids: Sequence[UUID]) -> List[TraitOffer]:
        """Fetch offers by id, preserving the order of offer_ids and skipping unknown ids."""

        if not offer_ids:
            return []

        response = (
            self.client.table(_TRAITS_TABLE)
            .select("*")
            .in_("id", [str(offer_id) for offer_id in offer_ids])
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to get trait offers: {error}")

        rows = getattr(response, "data", None) or []
        by_id = {offer.offer_id: offer for offer in (_row_to_offer(row) for row in rows)}
        return [by_id[offer_id] for offer_id in offer_ids if offer_id in by_id]

    def create_offer(self, offer: TraitOffer) -> TraitOffer:
        payload: dict[str, Any] = {
            "id": str(offer.offer_id),
            "name": offer.name,
            "category": offer.category,
            "trait_value": offer.trait_value,
            "image_url": offer.image_url,
            "burn_cost": offer.burn_cost,
            "sol_price": str(offer.sol_price),
            "stock_quantity": offer.stock_quantity,
            "max_claims_per_wallet": offer.max_claims_per_wallet,
            "is_active": offer.is_active,
        }
        if offer.created_at is not None:
            payload["created_at"] = to_iso_utc(offer.created_at, name="created_at")

        response = self.client.table(_TRAITS_TABLE).insert(payload).execute()
        error = getattr(response, "error", None)
        if error:
            code = getattr(error, "code", None)
            if str(code) == "23505":
                raise ValueError(f"TraitOffer already exists: {offer.offer_id}") from None
            raise RuntimeError(f"Failed to create trait offer: {error}")
        return offer

    def _update(self, offer_id: UUID, payload: Mapping[str, Any], action: str) -> None:
        response = (
            self.client.table(_TRAITS_TABLE)
            .update(dict(payload))
            .eq("id", str(offer_id))
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to {action}: {error}")

        if not (getattr(response, "data", None) or []):
            raise ValueError(f"TraitOffer not found: {offer_id}")

    def set_offer_active(self, offer_id: UUID, is_active: bool) -> None:
        self._update(offer_id, {"is_active": is_active}, "update offer active flag")

    def set_stock_quantity(self, offer_id: UUID, stock_quantity: Optional[int]) -> None:
        if stock_quantity is not None and stock_quantity < 0:
            raise ValueError("stock_quantity must be >= 0 or None (unlimited)")
        self._update(offer_id, {"stock_quantity": stock_quantity}, "update offer stock")

    def set_max_claims_per_wallet(self, offer_id: UUID, max_claims: Optional[int]) -> None:
        if max_claims is not None and max_claims < 1:
            raise ValueError("max_claims_per_wallet must be >= 1 or None (unlimited)")
        self._update(offer_id, {"max_claims_per_wallet": max_claims}, "update offer claim limit")


__all__ = ["SupabaseTraitOfferRepository"]
