"""
Repository interfaces.

Two implementations exist for every interface:
- Supabase (production): tables via PostgREST, atomic stock operations via
  stored procedures (see sql/).
- In-memory (tests, local development): repositories/memory_store.py.

The stock ledger is the only component allowed to mutate stock_quantity, and
its operations must be atomic with respect to each other.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Protocol, Sequence
from uuid import UUID

from domain.purchase import ErrorCode, PaymentMethod, PurchaseRecord, PurchaseStatus, TransactionStep
from domain.trait_offer import TraitOffer
from domain.transaction_log import TransactionLogEntry

# Minutes a reservation holds its stock unit while waiting for payment.
DEFAULT_GRACE_MINUTES = 10


@dataclass(frozen=True, slots=True)
class ReservationOutcome:
    """Result of an atomic reserve / reclaim call."""

    success: bool
    record: Optional[PurchaseRecord]
    error_code: Optional[ErrorCode]
    error_message: Optional[str]

    @staticmethod
    def ok(record: PurchaseRecord) -> "ReservationOutcome":
        return ReservationOutcome(success=True, record=record, error_code=None, error_message=None)

    @staticmethod
    def failure(error_code: ErrorCode, error_message: str) -> "ReservationOutcome":
        return ReservationOutcome(success=False, record=None, error_code=error_code, error_message=error_message)


class TraitOfferRepository(Protocol):
    def list_active_offers(self) -> List[TraitOffer]: ...

    def get_offer(self, offer_id: UUID) -> Optional[TraitOffer]: ...

    def get_offers(self, offer_ids: Sequence[UUID]) -> List[TraitOffer]: ...

    def create_offer(self, offer: TraitOffer) -> TraitOffer: ...

    def set_offer_active(self, offer_id: UUID, is_active: bool) -> None: ...

    def set_stock_quantity(self, offer_id: UUID, stock_quantity: Optional[int]) -> None: ...

    def set_max_claims_per_wallet(self, offer_id: UUID, max_claims: Optional[int]) -> None: ...


class PurchaseRepository(Protocol):
    def get_purchase(self, purchase_id: UUID) -> Optional[PurchaseRecord]: ...

    def list_purchases_by_wallet(self, wallet_address: str) -> List[PurchaseRecord]: ...

    def list_purchases(self, status: Optional[PurchaseStatus] = None, limit: int = 100) -> List[PurchaseRecord]: ...

    def update_status(
        self,
        purchase_id: UUID,
        status: PurchaseStatus,
        step: TransactionStep,
        error_code: Optional[ErrorCode] = None,
        error_message: Optional[str] = None,
        error_details: Optional[Mapping[str, Any]] = None,
        *,
        transaction_signature: Optional[str] = None,
        burned_nft_mints: Sequence[str] = (),
    ) -> PurchaseRecord: ...


class StockLedger(Protocol):
    def reserve(
        self,
        offer_id: UUID,
        wallet_address: str,
        target_nft_mint: str,
        payment_method: PaymentMethod,
        sol_amount: Decimal,
    ) -> ReservationOutcome: ...

    def compensate(
        self,
        purchase_id: UUID,
        error_code: ErrorCode = ErrorCode.RESERVATION_FAILED,
        error_message: str = "Reservation released",
    ) -> bool: ...

    def reclaim(self, purchase_id: UUID) -> ReservationOutcome: ...

    def expire_stale(self, now: datetime) -> List[UUID]: ...


class TransactionLogRepository(Protocol):
    def append(self, entry: TransactionLogEntry) -> None: ...

    def list_for_purchase(self, purchase_id: UUID) -> List[TransactionLogEntry]: ...


def apply_status_update(
    record: PurchaseRecord,
    status: PurchaseStatus,
    step: TransactionStep,
    at: datetime,
    error_code: Optional[ErrorCode] = None,
    error_message: Optional[str] = None,
    error_details: Optional[Mapping[str, Any]] = None,
    transaction_signature: Optional[str] = None,
    burned_nft_mints: Sequence[str] = (),
) -> PurchaseRecord:
    """
    Compute the record that an update_status call writes.

    Shared by both backends so they enforce identical transition rules.

    Raises:
        ValueError: on an invalid transition (see domain.purchase.check_transition).
    """

    if status is PurchaseStatus.COMPLETED:
        if not transaction_signature:
            raise ValueError("completing a purchase requires a transaction_signature")
        return record.completed(transaction_signature, at, tuple(burned_nft_mints))

    if status is PurchaseStatus.FAILED:
        return record.failed(
            step,
            error_code or ErrorCode.UNEXPECTED_ERROR,
            error_message or "",
            at,
            error_details,
        )

    return record.advanced_to(step, at)


__all__ = [
    "DEFAULT_GRACE_MINUTES",
    "PurchaseRepository",
    "ReservationOutcome",
    "StockLedger",
    "TraitOfferRepository",
    "TransactionLogRepository",
    "apply_status_update",
]
