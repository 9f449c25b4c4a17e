"""
Domain: Purchase records (reservations).

A PurchaseRecord is one unit of one TraitOffer being acquired by one wallet for
one target NFT. It is created by the stock ledger at reservation time and then
driven through the checkout steps by the checkout orchestrator.

Rules implemented here:
- Status moves monotonically: pending -> completed | failed, never back.
- transaction_step only moves forward in STEP_ORDER. A failure may record the
  step at which it occurred, including UNKNOWN.
- Once completed or failed a record is immutable, except for the stock release
  bookkeeping (compensated_at, superseded_by) owned by the stock ledger.
- A reservation holds its stock unit until reservation_expires_at; after that it
  is eligible for compensation if payment never started (or failed).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Tuple
from uuid import UUID

from .time import require_utc_timestamp


class PaymentMethod(str, Enum):
    FREE = "free"
    BURN = "burn"
    SOL = "sol"


class PurchaseStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionStep(str, Enum):
    RESERVATION = "reservation"
    VALIDATION = "validation"
    PAYMENT = "payment"
    BURN = "burn"
    METADATA = "metadata"
    RECORDING = "recording"
    COMPLETED = "completed"
    UNKNOWN = "unknown"

    @property
    def ordinal(self) -> int:
        """Position in STEP_ORDER; UNKNOWN sorts after everything."""

        if self is TransactionStep.UNKNOWN:
            return len(STEP_ORDER)
        return STEP_ORDER.index(self)


STEP_ORDER: Tuple[TransactionStep, ...] = (
    TransactionStep.RESERVATION,
    TransactionStep.VALIDATION,
    TransactionStep.PAYMENT,
    TransactionStep.BURN,
    TransactionStep.METADATA,
    TransactionStep.RECORDING,
    TransactionStep.COMPLETED,
)


class ErrorCode(str, Enum):
    STOCK_DEPLETED = "STOCK_DEPLETED"
    CLAIM_LIMIT_REACHED = "CLAIM_LIMIT_REACHED"
    RESERVATION_FAILED = "RESERVATION_FAILED"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    METADATA_FAILED = "METADATA_FAILED"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

    @property
    def retryable(self) -> bool:
        return self in (ErrorCode.RESERVATION_FAILED, ErrorCode.PAYMENT_FAILED)

    @staticmethod
    def parse(value: Optional[str]) -> "ErrorCode":
        """Map a backend error string to an ErrorCode, defaulting to RESERVATION_FAILED."""

        if value:
            try:
                return ErrorCode(value)
            except ValueError:
                pass
        return ErrorCode.RESERVATION_FAILED


def check_transition(
    current_status: PurchaseStatus,
    current_step: TransactionStep,
    new_status: PurchaseStatus,
    new_step: TransactionStep,
) -> None:
    """
    Validate a (status, step) transition.

    Raises:
        ValueError: if the record is terminal, the status would reverse, or the
            step would move backward on a non-failure write.
    """

    if current_status is not PurchaseStatus.PENDING:
        raise ValueError(f"PurchaseRecord is already {current_status.value}; it cannot change")

    if new_status is PurchaseStatus.FAILED:
        # Failure may record any step at or after the current one, or UNKNOWN.
        if new_step is not TransactionStep.UNKNOWN and new_step.ordinal < current_step.ordinal:
            raise ValueError(
                f"transaction_step cannot move backward ({current_step.value} -> {new_step.value})"
            )
        return

    if new_step is TransactionStep.UNKNOWN:
        raise ValueError("transaction_step UNKNOWN is only valid for failed records")
    if new_step.ordinal < current_step.ordinal:
        raise ValueError(
            f"transaction_step cannot move backward ({current_step.value} -> {new_step.value})"
        )
    if new_status is PurchaseStatus.COMPLETED and new_step is not TransactionStep.COMPLETED:
        raise ValueError("completed records must be at step 'completed'")
    if new_status is PurchaseStatus.PENDING and new_step is TransactionStep.COMPLETED:
        raise ValueError("step 'completed' requires status 'completed'")


@dataclass(frozen=True, slots=True)
class PurchaseRecord:
    """
    Immutable snapshot of a reserved unit.

    Transition methods return new instances and never mutate the original.
    """

    purchase_id: UUID
    trait_id: UUID
    wallet_address: str
    target_nft_mint: str
    payment_method: PaymentMethod
    created_at: datetime
    reservation_expires_at: datetime
    sol_amount: Decimal = Decimal("0")
    nfts_burned_count: int = 0
    burned_nft_mints: Tuple[str, ...] = ()
    status: PurchaseStatus = PurchaseStatus.PENDING
    transaction_step: TransactionStep = TransactionStep.RESERVATION
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    error_details: Mapping[str, Any] = field(default_factory=dict)
    transaction_signature: Optional[str] = None
    payment_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    compensated_at: Optional[datetime] = None
    superseded_by: Optional[UUID] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        require_utc_timestamp("reservation_expires_at", self.reservation_expires_at)
        for name in ("payment_started_at", "completed_at", "updated_at", "compensated_at"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)
        if self.sol_amount < 0:
            raise ValueError("sol_amount must be >= 0")
        if self.nfts_burned_count < 0:
            raise ValueError("nfts_burned_count must be >= 0")
        if self.status is PurchaseStatus.COMPLETED and self.transaction_step is not TransactionStep.COMPLETED:
            raise ValueError("completed records must be at step 'completed'")

    @property
    def is_terminal(self) -> bool:
        return self.status is not PurchaseStatus.PENDING

    @property
    def stock_released(self) -> bool:
        """True once the reserved stock unit was given back or handed to a retry record."""

        return self.compensated_at is not None or self.superseded_by is not None

    def is_reservation_expired(self, now: datetime) -> bool:
        require_utc_timestamp("now", now)
        return now >= self.reservation_expires_at

    def is_releasable(self, now: datetime) -> bool:
        """
        Whether the expiry sweep may compensate this record.

        Eligible: past expiry, stock still held, and either payment never
        started, payment failed, or the checkout failed unexpectedly before any
        transfer was sent. Paid records (metadata failures, completed) keep
        their stock.
        """

        if self.stock_released or not self.is_reservation_expired(now):
            return False
        if self.status is PurchaseStatus.PENDING:
            return self.transaction_step in (TransactionStep.RESERVATION, TransactionStep.VALIDATION)
        if self.status is not PurchaseStatus.FAILED:
            return False
        if self.error_code is ErrorCode.UNEXPECTED_ERROR:
            return self.error_details.get("payment_sent") is False
        return self.error_code is ErrorCode.PAYMENT_FAILED

    def is_reclaimable(self, now: datetime) -> bool:
        """Whether a retry may re-enter at the payment step using this record's stock unit."""

        return (
            self.status is PurchaseStatus.FAILED
            and self.error_code is ErrorCode.PAYMENT_FAILED
            and not self.stock_released
            and not self.is_reservation_expired(now)
        )

    def advanced_to(self, step: TransactionStep, at: datetime) -> "PurchaseRecord":
        check_transition(self.status, self.transaction_step, PurchaseStatus.PENDING, step)
        require_utc_timestamp("at", at)
        payment_started_at = self.payment_started_at
        if payment_started_at is None and step.ordinal >= TransactionStep.PAYMENT.ordinal:
            payment_started_at = at
        return replace(
            self,
            transaction_step=step,
            payment_started_at=payment_started_at,
            updated_at=at,
        )

    def failed(
        self,
        step: TransactionStep,
        error_code: ErrorCode,
        error_message: str,
        at: datetime,
        error_details: Optional[Mapping[str, Any]] = None,
    ) -> "PurchaseRecord":
        check_transition(self.status, self.transaction_step, PurchaseStatus.FAILED, step)
        require_utc_timestamp("at", at)
        return replace(
            self,
            status=PurchaseStatus.FAILED,
            transaction_step=step,
            error_code=error_code,
            error_message=error_message,
            error_details=dict(error_details or {}),
            updated_at=at,
        )

    def completed(
        self,
        transaction_signature: str,
        at: datetime,
        burned_nft_mints: Tuple[str, ...] = (),
    ) -> "PurchaseRecord":
        check_transition(self.status, self.transaction_step, PurchaseStatus.COMPLETED, TransactionStep.COMPLETED)
        require_utc_timestamp("at", at)
        return replace(
            self,
            status=PurchaseStatus.COMPLETED,
            transaction_step=TransactionStep.COMPLETED,
            transaction_signature=transaction_signature,
            burned_nft_mints=tuple(burned_nft_mints),
            nfts_burned_count=len(burned_nft_mints),
            completed_at=at,
            updated_at=at,
        )


__all__ = [
    "ErrorCode",
    "PaymentMethod",
    "PurchaseRecord",
    "PurchaseStatus",
    "STEP_ORDER",
    "TransactionStep",
    "check_transition",
]
