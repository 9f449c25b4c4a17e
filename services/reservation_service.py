"""
Cart reservation service.

Handles:
- All-or-nothing reservation of a whole cart through the atomic stock ledger
- Rollback (compensation) of partial reservations
- Reclaiming payment-failed reservations for a retry inside the grace window
- The expiry sweep that releases abandoned reservations
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID

from domain.purchase import ErrorCode, PaymentMethod, PurchaseRecord
from domain.time import require_utc_timestamp, utc_now
from domain.trait_offer import TraitOffer
from repositories.base import StockLedger

logger = logging.getLogger(__name__)

# Most specific first: when several items fail, the report uses the first
# code in this order that any item hit.
_FAILURE_PRECEDENCE = (
    ErrorCode.STOCK_DEPLETED,
    ErrorCode.CLAIM_LIMIT_REACHED,
    ErrorCode.RESERVATION_EXPIRED,
    ErrorCode.RESERVATION_FAILED,
)

ROLLBACK_MESSAGE = "Rolled back: another item in the cart could not be reserved"


@dataclass(frozen=True, slots=True)
class ItemFailure:
    offer_id: UUID
    name: str
    error_code: ErrorCode
    error_message: str


@dataclass(frozen=True, slots=True)
class CartReservationResult:
    """
    Result of reserving a cart.

    success: True if every item was reserved
    records: Pending purchase records, one per cart item (empty on failure)
    error_code: Most specific failure code (None if success=True)
    failures: Per-item failures
    """
    success: bool
    records: List[PurchaseRecord]
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None
    failures: List[ItemFailure] = field(default_factory=list)

    @property
    def failed_item_names(self) -> List[str]:
        return [failure.name for failure in self.failures]


def _most_specific(codes: Sequence[ErrorCode]) -> ErrorCode:
    for code in _FAILURE_PRECEDENCE:
        if code in codes:
            return code
    return ErrorCode.RESERVATION_FAILED


def _item_sol_amount(item: TraitOffer, method: PaymentMethod) -> Decimal:
    return item.sol_price if method is PaymentMethod.SOL else Decimal("0")


def _rollback(ledger: StockLedger, records: Sequence[PurchaseRecord], error_message: str) -> None:
    for record in records:
        try:
            ledger.compensate(record.purchase_id, ErrorCode.RESERVATION_FAILED, error_message)
        except Exception:
            # The expiry sweep releases anything a failed rollback leaves behind.
            logger.error(
                "Failed to compensate reservation during rollback",
                exc_info=True,
                extra={"purchase_id": str(record.purchase_id)},
            )


def _failed_result(failures: List[ItemFailure]) -> CartReservationResult:
    code = _most_specific([failure.error_code for failure in failures])
    names = ", ".join(failure.name for failure in failures)
    return CartReservationResult(
        success=False,
        records=[],
        error_code=code,
        error_message=f"Could not reserve: {names}",
        failures=failures,
    )


def reserve_cart(
    ledger: StockLedger,
    items: Sequence[TraitOffer],
    wallet_address: str,
    target_nft_mint: str,
    payment_method: PaymentMethod,
) -> CartReservationResult:
    """
    Reserve every cart item, all-or-nothing.

    Every item is attempted so the caller learns about all unavailable items at
    once. If any item fails, every reservation made in this call is
    compensated before returning.
    """

    if not items:
        raise ValueError("Cart is empty")

    reserved: List[PurchaseRecord] = []
    failures: List[ItemFailure] = []

    for item in items:
        try:
            outcome = ledger.reserve(
                item.offer_id,
                wallet_address,
                target_nft_mint,
                payment_method,
                _item_sol_amount(item, payment_method),
            )
        except Exception as e:
            logger.error(
                "Reservation call failed",
                exc_info=True,
                extra={"offer_id": str(item.offer_id), "wallet_address": wallet_address},
            )
            failures.append(ItemFailure(item.offer_id, item.name, ErrorCode.RESERVATION_FAILED, str(e)))
            continue

        if outcome.success and outcome.record is not None:
            reserved.append(outcome.record)
        else:
            failures.append(
                ItemFailure(
                    item.offer_id,
                    item.name,
                    outcome.error_code or ErrorCode.RESERVATION_FAILED,
                    outcome.error_message or "Reservation failed",
                )
            )

    if failures:
        _rollback(ledger, reserved, ROLLBACK_MESSAGE)
        result = _failed_result(failures)
        logger.warning(
            result.error_message,
            extra={
                "wallet_address": wallet_address,
                "error_code": result.error_code.value if result.error_code else None,
                "rolled_back": [str(r.purchase_id) for r in reserved],
            },
        )
        return result

    logger.info(
        f"Reserved {len(reserved)} item(s)",
        extra={"wallet_address": wallet_address, "purchase_ids": [str(r.purchase_id) for r in reserved]},
    )
    return CartReservationResult(success=True, records=reserved)


def reclaim_reservations(
    ledger: StockLedger,
    records: Sequence[PurchaseRecord],
    items: Sequence[TraitOffer],
    now: Optional[datetime] = None,
) -> CartReservationResult:
    """
    Turn payment-failed records back into pending reservations for a retry.

    The expiry timestamp on every record is checked before the ledger is
    asked; an expired reservation forces a fresh checkout. All-or-nothing like
    reserve_cart.
    """

    now = now or utc_now()
    require_utc_timestamp("now", now)
    names = {item.offer_id: item.name for item in items}

    expired = [r for r in records if not r.is_reclaimable(now)]
    if expired:
        return _failed_result(
            [
                ItemFailure(
                    r.trait_id,
                    names.get(r.trait_id, str(r.trait_id)),
                    ErrorCode.RESERVATION_EXPIRED,
                    "Reservation is no longer held",
                )
                for r in expired
            ]
        )

    renewed: List[PurchaseRecord] = []
    failures: List[ItemFailure] = []
    for record in records:
        outcome = ledger.reclaim(record.purchase_id)
        if outcome.success and outcome.record is not None:
            renewed.append(outcome.record)
        else:
            failures.append(
                ItemFailure(
                    record.trait_id,
                    names.get(record.trait_id, str(record.trait_id)),
                    outcome.error_code or ErrorCode.RESERVATION_FAILED,
                    outcome.error_message or "Reclaim failed",
                )
            )

    if failures:
        _rollback(ledger, renewed, ROLLBACK_MESSAGE)
        return _failed_result(failures)

    return CartReservationResult(success=True, records=renewed)


def sweep_expired_reservations(ledger: StockLedger, now: Optional[datetime] = None) -> List[UUID]:
    """
    Release every reservation past its grace window.

    Returns:
        Purchase ids whose stock was released
    """

    now = now or utc_now()
    released = ledger.expire_stale(now)
    if released:
        logger.warning(
            f"Released {len(released)} expired reservation(s)",
            extra={"purchase_ids": [str(purchase_id) for purchase_id in released]},
        )
    return released


__all__ = [
    "CartReservationResult",
    "ItemFailure",
    "reclaim_reservations",
    "reserve_cart",
    "sweep_expired_reservations",
]
