"""
In-memory shop store.

Implements every repository interface (offers, purchase records, stock ledger,
transaction logs) on plain dictionaries guarded by one lock. The stock ledger
operations hold the lock for their whole check-and-write, which gives the same
serialization the stored procedures get from row locking in Postgres.

Used by the test suite and by local development (SHOP_BACKEND=memory).
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from uuid import UUID, uuid4

from domain.purchase import ErrorCode, PaymentMethod, PurchaseRecord, PurchaseStatus, TransactionStep
from domain.time import require_utc_timestamp, utc_now
from domain.trait_offer import TraitOffer
from domain.transaction_log import TransactionLogEntry
from repositories.base import DEFAULT_GRACE_MINUTES, ReservationOutcome, apply_status_update

_CLAIM_COUNTED_STATUSES = (PurchaseStatus.PENDING, PurchaseStatus.COMPLETED)


class InMemoryShopStore:
    def __init__(
        self,
        offers: Sequence[TraitOffer] = (),
        *,
        grace_minutes: int = DEFAULT_GRACE_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if grace_minutes <= 0:
            raise ValueError("grace_minutes must be > 0")
        self._lock = threading.Lock()
        self._offers: Dict[UUID, TraitOffer] = {offer.offer_id: offer for offer in offers}
        self._offer_order: List[UUID] = [offer.offer_id for offer in offers]
        self._purchases: Dict[UUID, PurchaseRecord] = {}
        self._logs: List[TransactionLogEntry] = []
        self._grace = timedelta(minutes=grace_minutes)
        self._clock = clock

    def _now(self) -> datetime:
        now = self._clock()
        require_utc_timestamp("now", now)
        return now

    # ------------------------------------------------------------------
    # Trait offers
    # ------------------------------------------------------------------

    def list_active_offers(self) -> List[TraitOffer]:
        with self._lock:
            return [self._offers[i] for i in self._offer_order if self._offers[i].is_active]

    def get_offer(self, offer_id: UUID) -> Optional[TraitOffer]:
        with self._lock:
            return self._offers.get(offer_id)

    def get_offers(self, offer_ids: Sequence[UUID]) -> List[TraitOffer]:
        with self._lock:
            return [self._offers[i] for i in offer_ids if i in self._offers]

    def create_offer(self, offer: TraitOffer) -> TraitOffer:
        with self._lock:
            if offer.offer_id in self._offers:
                raise ValueError(f"TraitOffer already exists: {offer.offer_id}")
            self._offers[offer.offer_id] = offer
            self._offer_order.append(offer.offer_id)
            return offer

    def _replace_offer(self, offer_id: UUID, **changes: Any) -> None:
        with self._lock:
            offer = self._offers.get(offer_id)
            if offer is None:
                raise ValueError(f"TraitOffer not found: {offer_id}")
            self._offers[offer_id] = replace(offer, **changes)

    def set_offer_active(self, offer_id: UUID, is_active: bool) -> None:
        self._replace_offer(offer_id, is_active=is_active)

    def set_stock_quantity(self, offer_id: UUID, stock_quantity: Optional[int]) -> None:
        self._replace_offer(offer_id, stock_quantity=stock_quantity)

    def set_max_claims_per_wallet(self, offer_id: UUID, max_claims: Optional[int]) -> None:
        self._replace_offer(offer_id, max_claims_per_wallet=max_claims)

    # ------------------------------------------------------------------
    # Purchase records
    # ------------------------------------------------------------------

    def get_purchase(self, purchase_id: UUID) -> Optional[PurchaseRecord]:
        with self._lock:
            return self._purchases.get(purchase_id)

    def list_purchases_by_wallet(self, wallet_address: str) -> List[PurchaseRecord]:
        with self._lock:
            return [r for r in self._purchases.values() if r.wallet_address == wallet_address]

    def list_purchases(self, status: Optional[PurchaseStatus] = None, limit: int = 100) -> List[PurchaseRecord]:
        with self._lock:
            rows = [r for r in self._purchases.values() if status is None or r.status is status]
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return rows[:limit]

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
    ) -> PurchaseRecord:
        with self._lock:
            record = self._purchases.get(purchase_id)
            if record is None:
                raise ValueError(f"PurchaseRecord not found: {purchase_id}")
            updated = apply_status_update(
                record,
                status,
                step,
                self._now(),
                error_code=error_code,
                error_message=error_message,
                error_details=error_details,
                transaction_signature=transaction_signature,
                burned_nft_mints=burned_nft_mints,
            )
            self._purchases[purchase_id] = updated
            return updated

    # ------------------------------------------------------------------
    # Stock ledger (every operation runs entirely under the lock)
    # ------------------------------------------------------------------

    def reserve(
        self,
        offer_id: UUID,
        wallet_address: str,
        target_nft_mint: str,
        payment_method: PaymentMethod,
        sol_amount: Decimal,
    ) -> ReservationOutcome:
        with self._lock:
            now = self._now()
            self._expire_locked(now, offer_id=offer_id)

            offer = self._offers.get(offer_id)
            if offer is None:
                return ReservationOutcome.failure(ErrorCode.RESERVATION_FAILED, f"Trait offer not found: {offer_id}")
            if not offer.is_active:
                return ReservationOutcome.failure(ErrorCode.RESERVATION_FAILED, f"{offer.name} is no longer available")

            if offer.stock_quantity is not None and offer.stock_quantity < 1:
                return ReservationOutcome.failure(ErrorCode.STOCK_DEPLETED, f"{offer.name} is out of stock")

            if offer.max_claims_per_wallet is not None:
                claims = sum(
                    1
                    for r in self._purchases.values()
                    if r.trait_id == offer_id
                    and r.wallet_address == wallet_address
                    and r.status in _CLAIM_COUNTED_STATUSES
                )
                if claims >= offer.max_claims_per_wallet:
                    return ReservationOutcome.failure(
                        ErrorCode.CLAIM_LIMIT_REACHED,
                        f"Claim limit of {offer.max_claims_per_wallet} reached for {offer.name}",
                    )

            if offer.stock_quantity is not None:
                self._offers[offer_id] = offer.with_stock(offer.stock_quantity - 1)

            record = PurchaseRecord(
                purchase_id=uuid4(),
                trait_id=offer_id,
                wallet_address=wallet_address,
                target_nft_mint=target_nft_mint,
                payment_method=payment_method,
                sol_amount=sol_amount,
                created_at=now,
                updated_at=now,
                reservation_expires_at=now + self._grace,
            )
            self._purchases[record.purchase_id] = record
            return ReservationOutcome.ok(record)

    def compensate(
        self,
        purchase_id: UUID,
        error_code: ErrorCode = ErrorCode.RESERVATION_FAILED,
        error_message: str = "Reservation released",
    ) -> bool:
        with self._lock:
            record = self._purchases.get(purchase_id)
            if record is None:
                raise ValueError(f"PurchaseRecord not found: {purchase_id}")
            return self._release_locked(record, self._now(), error_code, error_message)

    def reclaim(self, purchase_id: UUID) -> ReservationOutcome:
        with self._lock:
            now = self._now()
            record = self._purchases.get(purchase_id)
            if record is None:
                return ReservationOutcome.failure(ErrorCode.RESERVATION_FAILED, f"PurchaseRecord not found: {purchase_id}")
            if not record.is_reclaimable(now):
                if record.stock_released or record.is_reservation_expired(now):
                    return ReservationOutcome.failure(
                        ErrorCode.RESERVATION_EXPIRED,
                        "Reservation has expired; please start a new checkout",
                    )
                return ReservationOutcome.failure(
                    ErrorCode.RESERVATION_FAILED,
                    "Only reservations whose payment failed can be retried",
                )

            renewed = replace(
                record,
                purchase_id=uuid4(),
                status=PurchaseStatus.PENDING,
                transaction_step=TransactionStep.RESERVATION,
                error_code=None,
                error_message=None,
                error_details={},
                transaction_signature=None,
                payment_started_at=None,
                completed_at=None,
                created_at=now,
                updated_at=now,
                compensated_at=None,
                superseded_by=None,
            )
            self._purchases[renewed.purchase_id] = renewed
            self._purchases[purchase_id] = replace(record, superseded_by=renewed.purchase_id, updated_at=now)
            return ReservationOutcome.ok(renewed)

    def expire_stale(self, now: datetime) -> List[UUID]:
        require_utc_timestamp("now", now)
        with self._lock:
            return self._expire_locked(now)

    def _expire_locked(self, now: datetime, offer_id: Optional[UUID] = None) -> List[UUID]:
        released: List[UUID] = []
        for record in list(self._purchases.values()):
            if offer_id is not None and record.trait_id != offer_id:
                continue
            if record.is_releasable(now):
                self._release_locked(
                    record,
                    now,
                    ErrorCode.RESERVATION_EXPIRED,
                    "Reservation expired before payment completed",
                )
                released.append(record.purchase_id)
        return released

    def _release_locked(
        self,
        record: PurchaseRecord,
        now: datetime,
        error_code: ErrorCode,
        error_message: str,
    ) -> bool:
        if record.stock_released:
            return False
        if record.status is PurchaseStatus.COMPLETED or record.error_code is ErrorCode.METADATA_FAILED:
            raise ValueError("Paid purchases cannot be compensated")

        offer = self._offers.get(record.trait_id)
        if offer is not None and offer.stock_quantity is not None:
            self._offers[offer.offer_id] = offer.with_stock(offer.stock_quantity + 1)

        if record.status is PurchaseStatus.PENDING:
            record = record.failed(record.transaction_step, error_code, error_message, now)
        self._purchases[record.purchase_id] = replace(record, compensated_at=now, updated_at=now)
        return True

    # ------------------------------------------------------------------
    # Transaction logs (append-only)
    # ------------------------------------------------------------------

    def append(self, entry: TransactionLogEntry) -> None:
        with self._lock:
            self._logs.append(
                replace(
                    entry,
                    log_id=entry.log_id or uuid4(),
                    created_at=entry.created_at or self._now(),
                )
            )

    def list_for_purchase(self, purchase_id: UUID) -> List[TransactionLogEntry]:
        with self._lock:
            return [entry for entry in self._logs if entry.purchase_id == purchase_id]


__all__ = ["InMemoryShopStore"]
