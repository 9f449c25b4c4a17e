"""
Purchases API Endpoints.

Read-only admin surface over purchase records and their transaction logs.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_purchase_repository, get_transaction_log_repository
from api.models import PurchaseListResponse, PurchaseRecordResponse, TransactionLogResponse
from domain.purchase import PurchaseStatus
from repositories.base import PurchaseRepository, TransactionLogRepository

router = APIRouter()


@router.get(
    "/purchases",
    response_model=PurchaseListResponse,
    summary="List Purchases",
    description="List purchase records, by wallet or by status (newest first)."
)
def list_purchases(
    wallet: Optional[str] = Query(None, description="Only records for this wallet"),
    status: Optional[PurchaseStatus] = Query(None, description="pending, completed or failed"),
    limit: int = Query(100, ge=1, le=1000),
    purchases: PurchaseRepository = Depends(get_purchase_repository),
):
    """
    List purchase records.

    **Example usage:**
    ```
    GET /api/v1/purchases?wallet=7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU&status=failed
    ```
    """
    try:
        if wallet:
            records = purchases.list_purchases_by_wallet(wallet)
            if status is not None:
                records = [r for r in records if r.status is status]
            records = sorted(records, key=lambda r: r.created_at, reverse=True)[:limit]
        else:
            records = purchases.list_purchases(status=status, limit=limit)

        return PurchaseListResponse(
            items=[PurchaseRecordResponse.from_domain(r) for r in records],
            total_count=len(records),
        )
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list purchases: {str(e)}"
        )


@router.get(
    "/purchases/{purchase_id}",
    response_model=PurchaseRecordResponse,
    summary="Get Purchase",
)
def get_purchase(purchase_id: UUID, purchases: PurchaseRepository = Depends(get_purchase_repository)):
    try:
        record = purchases.get_purchase(purchase_id)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch purchase: {str(e)}"
        )

    if record is None:
        raise HTTPException(status_code=404, detail=f"Purchase not found: {purchase_id}")
    return PurchaseRecordResponse.from_domain(record)


@router.get(
    "/purchases/{purchase_id}/logs",
    response_model=list[TransactionLogResponse],
    summary="Get Purchase Transaction Log",
    description="Audit trail for one purchase, oldest first."
)
def get_purchase_logs(
    purchase_id: UUID,
    purchases: PurchaseRepository = Depends(get_purchase_repository),
    logs: TransactionLogRepository = Depends(get_transaction_log_repository),
):
    try:
        if purchases.get_purchase(purchase_id) is None:
            raise HTTPException(status_code=404, detail=f"Purchase not found: {purchase_id}")
        return [TransactionLogResponse.from_domain(entry) for entry in logs.list_for_purchase(purchase_id)]
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to fetch transaction logs: {str(e)}"
        )
