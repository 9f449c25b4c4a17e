"""
Quotes API Endpoints.

Endpoints for calculating checkout quotes.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_config, get_offer_repository
from api.models import QuoteLineItem, QuoteRequest, QuoteResponse
from domain.trait_offer import TraitOffer
from repositories.base import TraitOfferRepository
from services.pricing_service import build_checkout_quote, resolve_payment_method
from services.shop_config import ShopConfig

router = APIRouter()


def load_cart_offers(offers: TraitOfferRepository, offer_ids: List[UUID]) -> List[TraitOffer]:
    """
    Fetch the requested active offers, in request order.

    Raises:
        HTTPException: 400 on duplicate ids, 404 if any offer is missing or inactive
    """

    if len(set(offer_ids)) != len(offer_ids):
        raise HTTPException(status_code=400, detail="Each offer can only be in the cart once")

    found = {offer.offer_id: offer for offer in offers.get_offers(offer_ids) if offer.is_active}
    missing = [str(offer_id) for offer_id in offer_ids if offer_id not in found]
    if missing:
        raise HTTPException(
            status_code=404,
            detail=f"Some trait offers not found or inactive: {missing}"
        )
    return [found[offer_id] for offer_id in offer_ids]


@router.post(
    "/quotes",
    response_model=QuoteResponse,
    summary="Calculate Checkout Quote",
    description="Calculate the cost of a cart for a payment method. Quote is valid for the reservation grace window."
)
def calculate_quote(
    request: QuoteRequest,
    offers: TraitOfferRepository = Depends(get_offer_repository),
    config: ShopConfig = Depends(get_config),
):
    """
    Calculate a checkout quote for the specified offers.

    **How it works:**
    1. Validates that all requested offers exist and are active
    2. Resolves the payment method (an all-free cart is always free)
    3. Returns items total, fees, the collection-wallet amount and total cost

    **Example request:**
    ```json
    {
      "offer_ids": ["123e4567-e89b-12d3-a456-426614174000"],
      "payment_method": "sol"
    }
    ```
    """
    try:
        items = load_cart_offers(offers, request.offer_ids)

        try:
            method = resolve_payment_method(items, request.payment_method)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        quote = build_checkout_quote(items, method, config)

        return QuoteResponse(
            items=[
                QuoteLineItem(
                    offer_id=line.offer_id,
                    name=line.name,
                    burn_cost=line.burn_cost,
                    sol_price=line.sol_price,
                )
                for line in quote.items
            ],
            payment_method=quote.payment_method,
            items_total_sol=quote.items_total_sol,
            burn_count=quote.burn_count,
            service_fee=quote.service_fee,
            reimbursement_fee=quote.reimbursement_fee,
            collection_amount=quote.collection_amount,
            total_cost_sol=quote.total_cost_sol,
            total_items=quote.total_items,
            created_at=quote.created_at,
            expires_at=quote.expires_at,
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to calculate quote: {str(e)}"
        )
