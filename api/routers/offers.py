"""
Offers API Endpoints.

Endpoints for browsing the trait catalogue.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_offer_repository
from api.models import OfferListResponse, TraitOfferResponse
from repositories.base import TraitOfferRepository

router = APIRouter()


@router.get(
    "/offers",
    response_model=OfferListResponse,
    summary="List Active Offers",
    description="List every active trait offer, in catalogue order."
)
def list_offers(offers: TraitOfferRepository = Depends(get_offer_repository)):
    """
    List active trait offers.

    Sold-out offers are still listed (stock_quantity = 0) so the shop can show
    them as unavailable.
    """
    try:
        active = offers.list_active_offers()
        return OfferListResponse(
            items=[TraitOfferResponse.from_domain(offer) for offer in active],
            total_count=len(active),
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list offers: {str(e)}"
        )


@router.get(
    "/offers/{offer_id}",
    response_model=TraitOfferResponse,
    summary="Get Offer",
)
def get_offer(offer_id: UUID, offers: TraitOfferRepository = Depends(get_offer_repository)):
    try:
        offer = offers.get_offer(offer_id)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch offer: {str(e)}"
        )

    if offer is None:
        raise HTTPException(status_code=404, detail=f"Trait offer not found: {offer_id}")
    return TraitOfferResponse.from_domain(offer)
