"""
Reservations API Endpoints.

Endpoints for reserving a cart and releasing expired reservations.
"""

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_offer_repository, get_stock_ledger, get_transaction_log_repository
from api.models import PurchaseRecordResponse, ReservationRequest, ReservationResponse, SweepResponse
from api.routers.quotes import load_cart_offers
from domain.purchase import TransactionStep
from domain.time import utc_now
from repositories.base import StockLedger, TraitOfferRepository, TransactionLogRepository
from services.checkout_messages import failure_message
from services.pricing_service import resolve_payment_method
from services.reservation_service import reserve_cart, sweep_expired_reservations
from services.transaction_logger import TransactionLogger

router = APIRouter()


@router.post(
    "/reservations",
    response_model=ReservationResponse,
    summary="Reserve Cart",
    description="Reserve every offer in a cart atomically; all-or-nothing."
)
def reserve(
    request: ReservationRequest,
    offers: TraitOfferRepository = Depends(get_offer_repository),
    ledger: StockLedger = Depends(get_stock_ledger),
    logs: TransactionLogRepository = Depends(get_transaction_log_repository),
):
    """
    Reserve a cart for a wallet and target NFT.

    **All-or-Nothing Strategy:**
    Every offer is attempted. If any offer cannot be reserved (sold out, claim
    limit reached, inactive), every reservation made by this request is
    released and the response names the failed items.

    Reservations are held for the grace window (10 minutes by default); the
    payment must start before they expire.
    """
    try:
        items = load_cart_offers(offers, request.offer_ids)

        try:
            method = resolve_payment_method(items, request.payment_method)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        result = reserve_cart(ledger, items, request.wallet_address, request.target_nft_mint, method)

        if not result.success:
            code = result.error_code
            return ReservationResponse(
                success=False,
                purchases=[],
                error_code=code,
                message=failure_message(code, now=utc_now(), failed_items=result.failed_item_names) if code else None,
                failed_items=result.failed_item_names,
                retryable=code.retryable if code else False,
            )

        TransactionLogger(logs).info(
            [record.purchase_id for record in result.records],
            TransactionStep.RESERVATION,
            "Items reserved",
            wallet_address=request.wallet_address,
            target_nft_mint=request.target_nft_mint,
            payment_method=method.value,
        )

        return ReservationResponse(
            success=True,
            purchases=[PurchaseRecordResponse.from_domain(record) for record in result.records],
            message=f"Reserved {len(result.records)} item(s)",
        )

    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to reserve cart: {str(e)}"
        )


@router.post(
    "/reservations/sweep",
    response_model=SweepResponse,
    summary="Release Expired Reservations",
    description="Release the stock held by every reservation past its grace window."
)
def sweep(ledger: StockLedger = Depends(get_stock_ledger)):
    try:
        released = sweep_expired_reservations(ledger)
        return SweepResponse(released_purchase_ids=released, released_count=len(released))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to sweep expired reservations: {str(e)}"
        )
