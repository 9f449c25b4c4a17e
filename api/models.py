"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.purchase import ErrorCode, PaymentMethod, PurchaseRecord, PurchaseStatus, TransactionStep
from domain.trait_offer import TraitOffer
from domain.transaction_log import LogLevel, TransactionLogEntry


# ============================================================================
# Offer Models
# ============================================================================

class TraitOfferResponse(BaseModel):
    """Single trait offer in API response."""
    offer_id: UUID
    name: str
    category: str
    trait_value: Optional[str] = None
    image_url: Optional[str] = None
    burn_cost: int
    sol_price: Decimal
    stock_quantity: Optional[int] = None  # None = unlimited
    max_claims_per_wallet: Optional[int] = None
    is_active: bool
    is_free: bool

    @staticmethod
    def from_domain(offer: TraitOffer) -> "TraitOfferResponse":
        return TraitOfferResponse(
            offer_id=offer.offer_id,
            name=offer.name,
            category=offer.category,
            trait_value=offer.trait_value,
            image_url=offer.image_url,
            burn_cost=offer.burn_cost,
            sol_price=offer.sol_price,
            stock_quantity=offer.stock_quantity,
            max_claims_per_wallet=offer.max_claims_per_wallet,
            is_active=offer.is_active,
            is_free=offer.is_free,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "offer_id": "123e4567-e89b-12d3-a456-426614174000",
                "name": "Gold Chain",
                "category": "necklace",
                "trait_value": "gold chain",
                "image_url": "https://example.com/traits/gold-chain.png",
                "burn_cost": 2,
                "sol_price": "0.5",
                "stock_quantity": 25,
                "max_claims_per_wallet": 1,
                "is_active": True,
                "is_free": False
            }
        }


class OfferListResponse(BaseModel):
    """Response for offer listing."""
    items: List[TraitOfferResponse]
    total_count: int


# ============================================================================
# Quote Models
# ============================================================================

class QuoteRequest(BaseModel):
    """Request to calculate a checkout quote."""
    offer_ids: List[UUID] = Field(
        ...,
        min_length=1,
        description="Trait offer IDs in the cart"
    )
    payment_method: Optional[PaymentMethod] = Field(
        None,
        description="burn or sol; ignored for an all-free cart"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "offer_ids": ["123e4567-e89b-12d3-a456-426614174000"],
                "payment_method": "sol"
            }
        }


class QuoteLineItem(BaseModel):
    """Single line item in a quote."""
    offer_id: UUID
    name: str
    burn_cost: int
    sol_price: Decimal


class QuoteResponse(BaseModel):
    """Response with checkout quote details."""
    items: List[QuoteLineItem]
    payment_method: PaymentMethod
    items_total_sol: Decimal
    burn_count: int
    service_fee: Decimal
    reimbursement_fee: Decimal
    collection_amount: Decimal
    total_cost_sol: Decimal
    total_items: int
    created_at: datetime
    expires_at: datetime

    class Config:
        json_schema_extra = {
            "example": {
                "items": [],
                "payment_method": "sol",
                "items_total_sol": "1.5",
                "burn_count": 0,
                "service_fee": "0.01",
                "reimbursement_fee": "0.05",
                "collection_amount": "1.51",
                "total_cost_sol": "1.56",
                "total_items": 1,
                "created_at": "2025-01-01T12:00:00Z",
                "expires_at": "2025-01-01T12:10:00Z"
            }
        }


# ============================================================================
# Reservation / Purchase Models
# ============================================================================

class ReservationRequest(BaseModel):
    """Request to reserve a whole cart (all-or-nothing)."""
    wallet_address: str = Field(..., min_length=1)
    target_nft_mint: str = Field(..., min_length=1)
    payment_method: Optional[PaymentMethod] = None
    offer_ids: List[UUID] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "wallet_address": "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU",
                "target_nft_mint": "9wFFyRfZBsuAha4YcuxcXLKwMxJR43S7fPfQLusDBzvT",
                "payment_method": "burn",
                "offer_ids": ["123e4567-e89b-12d3-a456-426614174000"]
            }
        }


class PurchaseRecordResponse(BaseModel):
    """Persisted purchase record (admin read surface)."""
    purchase_id: UUID
    trait_id: UUID
    wallet_address: str
    target_nft_mint: str
    payment_method: PaymentMethod
    sol_amount: Decimal
    nfts_burned_count: int
    burned_nft_mints: List[str]
    status: PurchaseStatus
    transaction_step: TransactionStep
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    error_details: Dict[str, Any] = Field(default_factory=dict)
    transaction_signature: Optional[str] = None
    created_at: datetime
    reservation_expires_at: datetime
    payment_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    compensated_at: Optional[datetime] = None
    superseded_by: Optional[UUID] = None

    @staticmethod
    def from_domain(record: PurchaseRecord) -> "PurchaseRecordResponse":
        return PurchaseRecordResponse(
            purchase_id=record.purchase_id,
            trait_id=record.trait_id,
            wallet_address=record.wallet_address,
            target_nft_mint=record.target_nft_mint,
            payment_method=record.payment_method,
            sol_amount=record.sol_amount,
            nfts_burned_count=record.nfts_burned_count,
            burned_nft_mints=list(record.burned_nft_mints),
            status=record.status,
            transaction_step=record.transaction_step,
            error_code=record.error_code,
            error_message=record.error_message,
            error_details=dict(record.error_details),
            transaction_signature=record.transaction_signature,
            created_at=record.created_at,
            reservation_expires_at=record.reservation_expires_at,
            payment_started_at=record.payment_started_at,
            completed_at=record.completed_at,
            updated_at=record.updated_at,
            compensated_at=record.compensated_at,
            superseded_by=record.superseded_by,
        )


class ReservationResponse(BaseModel):
    """Result of an all-or-nothing cart reservation."""
    success: bool
    purchases: List[PurchaseRecordResponse]
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None
    failed_items: List[str] = Field(default_factory=list)
    retryable: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "purchases": [],
                "error_code": "STOCK_DEPLETED",
                "message": "Sorry, Gold Chain sold out. Remove it from your cart to continue.",
                "failed_items": ["Gold Chain"],
                "retryable": False
            }
        }


class SweepResponse(BaseModel):
    """Result of the reservation expiry sweep."""
    released_purchase_ids: List[UUID]
    released_count: int


class PurchaseListResponse(BaseModel):
    items: List[PurchaseRecordResponse]
    total_count: int


class TransactionLogResponse(BaseModel):
    log_id: Optional[UUID] = None
    purchase_id: UUID
    level: LogLevel
    step: TransactionStep
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    @staticmethod
    def from_domain(entry: TransactionLogEntry) -> "TransactionLogResponse":
        return TransactionLogResponse(
            log_id=entry.log_id,
            purchase_id=entry.purchase_id,
            level=entry.level,
            step=entry.step,
            message=entry.message,
            details=dict(entry.details),
            created_at=entry.created_at,
        )


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Invalid request",
                "detail": "Trait offer not found",
                "status_code": 404
            }
        }
