"""
Checkout orchestrator.

One CheckoutOrchestrator drives one wallet session's cart through:

    SELECT_TARGET -> SELECT_PAYMENT -> (SELECT_BURN_SET) -> CONFIRM -> PROCESSING -> SUCCESS | FAILURE

PROCESSING runs strictly in order for the whole cart:
1. Reserve  - all-or-nothing through the stock ledger
2. Pay      - chain transfers for the payment method
3. Apply    - merge traits, render, update metadata
4. Finalize - signature + burned mints written, records completed

Failure handling:
- Reservation failure: partial reservations are compensated; nothing is charged.
- Payment failure: records are failed with PAYMENT_FAILED but stock is kept for
  the grace window, so retry_payment() can re-enter at the payment step. The
  retry does not resend transfers that already landed.
- Unexpected error with nothing sent: reservations are compensated at once.
- Metadata failure: records are failed with METADATA_FAILED; payment already
  happened, so there is no automatic retry.
- Finalize failure: logged as a warning; the checkout still succeeds.

Writes of failure state and audit logs are best-effort and never replace the
primary error.

After SUCCESS or FAILURE, select_target() (or restart()) begins a new checkout
in the same session, unless a failed payment can still be retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import UUID

from domain.cart import Cart
from domain.nft import NFTAttribute, OwnedNFT
from domain.purchase import ErrorCode, PaymentMethod, PurchaseRecord, PurchaseStatus, TransactionStep
from domain.time import utc_now
from domain.trait_offer import TraitOffer
from repositories.base import PurchaseRepository, StockLedger
from services.capabilities import ChainService, ImageRenderer, WalletSigner
from services.checkout_messages import failure_message
from services.payment_service import PaymentError, PaymentReceipt, execute_payment
from services.pricing_service import CheckoutQuote, build_checkout_quote, resolve_payment_method
from services.reservation_service import CartReservationResult, reclaim_reservations, reserve_cart
from services.shop_config import ShopConfig
from services.trait_application_service import AppliedTraits, apply_traits
from services.transaction_logger import TransactionLogger

logger = logging.getLogger(__name__)


class CheckoutStage(str, Enum):
    SELECT_TARGET = "select_target"
    SELECT_PAYMENT = "select_payment"
    SELECT_BURN_SET = "select_burn_set"
    CONFIRM = "confirm"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILURE = "failure"


_SELECTION_STAGES = (
    CheckoutStage.SELECT_TARGET,
    CheckoutStage.SELECT_PAYMENT,
    CheckoutStage.SELECT_BURN_SET,
    CheckoutStage.CONFIRM,
)


class CheckoutStateError(ValueError):
    """Raised when a checkout call is made out of order or with invalid input."""


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    step: TransactionStep
    message: str
    failed: bool = False


ProgressListener = Callable[[ProgressEvent], None]


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    signature: str
    image_url: str
    metadata_url: str
    metadata_signature: str
    purchase_ids: List[UUID]
    burned_nft_mints: Tuple[str, ...] = ()
    attributes: Tuple[NFTAttribute, ...] = ()
    finalized: bool = True


@dataclass(frozen=True, slots=True)
class FailureReport:
    error_code: ErrorCode
    message: str
    raw_message: str
    retryable: bool
    step: TransactionStep
    failed_items: List[str] = field(default_factory=list)
    purchase_ids: List[UUID] = field(default_factory=list)
    retry_until: Optional[datetime] = None
    user_rejected: bool = False
    payment_signature: Optional[str] = None


CheckoutOutcome = Union[CheckoutResult, FailureReport]


class CheckoutOrchestrator:
    """
    Session-scoped checkout. Never share an instance between wallets.
    """

    def __init__(
        self,
        cart: Cart,
        wallet_address: str,
        *,
        stock_ledger: StockLedger,
        purchases: PurchaseRepository,
        transaction_logger: TransactionLogger,
        chain: ChainService,
        renderer: ImageRenderer,
        config: ShopConfig,
        signer: Optional[WalletSigner] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not wallet_address:
            raise ValueError("wallet_address must not be empty")
        self.cart = cart
        self.wallet_address = wallet_address
        self._ledger = stock_ledger
        self._purchases = purchases
        self._tx = transaction_logger
        self._chain = chain
        self._renderer = renderer
        self._config = config
        self._signer = signer
        self._clock = clock

        self._listeners: List[ProgressListener] = []
        self.events: List[ProgressEvent] = []

        self._stage = CheckoutStage.SELECT_TARGET
        self._target: Optional[OwnedNFT] = None
        self._method: Optional[PaymentMethod] = None
        self._burn_mints: Tuple[str, ...] = ()
        self._items: List[TraitOffer] = []
        self._records: List[PurchaseRecord] = []
        self._landed_transfers: Dict[str, str] = {}
        self._receipt: Optional[PaymentReceipt] = None
        self.last_failure: Optional[FailureReport] = None
        self.last_result: Optional[CheckoutResult] = None

    # ------------------------------------------------------------------
    # Progress stream
    # ------------------------------------------------------------------

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, step: TransactionStep, message: str, failed: bool = False) -> None:
        event = ProgressEvent(step=step, message=message, failed=failed)
        self.events.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.warning("Progress listener raised", exc_info=True)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    @property
    def stage(self) -> CheckoutStage:
        return self._stage

    @property
    def target(self) -> Optional[OwnedNFT]:
        return self._target

    @property
    def payment_method(self) -> Optional[PaymentMethod]:
        return self._method

    @property
    def burn_mints(self) -> Tuple[str, ...]:
        return self._burn_mints

    @property
    def records(self) -> List[PurchaseRecord]:
        return list(self._records)

    def _require_selecting(self) -> None:
        if self._stage not in _SELECTION_STAGES:
            raise CheckoutStateError(f"Checkout is {self._stage.value}; selections can no longer change")

    def _awaiting_payment_retry(self) -> bool:
        failure = self.last_failure
        if self._stage is not CheckoutStage.FAILURE or failure is None:
            return False
        if failure.error_code is not ErrorCode.PAYMENT_FAILED:
            return False
        return failure.retry_until is None or self._clock() < failure.retry_until

    def restart(self) -> CheckoutStage:
        """
        Start a new checkout in this session after SUCCESS or FAILURE.

        A failed payment still inside its grace window must be retried with
        retry_payment() instead; once the window has passed, restarting is
        allowed and the expiry sweep releases the held stock.
        """

        if self._stage is CheckoutStage.PROCESSING:
            raise CheckoutStateError("Checkout is processing")
        if self._awaiting_payment_retry():
            raise CheckoutStateError("A failed payment can still be retried; use retry_payment()")

        self._reset()
        self.last_failure = None
        return self._stage

    def _reset(self) -> None:
        self._stage = CheckoutStage.SELECT_TARGET
        self._target = None
        self._method = None
        self._burn_mints = ()
        self._items = []
        self._records = []
        self._landed_transfers = {}
        self._receipt = None

    def select_target(self, nft: OwnedNFT) -> CheckoutStage:
        """
        Choose the NFT that receives the traits.

        Resets any payment selection. An all-free cart skips straight to
        confirmation with method=free. Called after SUCCESS or FAILURE it
        starts a new checkout (see restart()).
        """

        if self._stage in (CheckoutStage.SUCCESS, CheckoutStage.FAILURE):
            self.restart()
        self._require_selecting()
        if self.cart.is_empty():
            raise CheckoutStateError("Cart is empty")

        self._target = nft
        self._burn_mints = ()
        if self.cart.is_all_free():
            self._method = PaymentMethod.FREE
            self._stage = CheckoutStage.CONFIRM
        else:
            self._method = None
            self._stage = CheckoutStage.SELECT_PAYMENT
        return self._stage

    def select_payment_method(self, method: PaymentMethod) -> CheckoutStage:
        self._require_selecting()
        if self._target is None:
            raise CheckoutStateError("Select a target NFT first")

        try:
            self._method = resolve_payment_method(self.cart.items(), method)
        except ValueError as e:
            raise CheckoutStateError(str(e)) from None

        self._burn_mints = ()
        if self._method is PaymentMethod.BURN:
            self._stage = CheckoutStage.SELECT_BURN_SET
        else:
            self._stage = CheckoutStage.CONFIRM
        return self._stage

    def select_burn_set(self, mints: Sequence[str]) -> CheckoutStage:
        """
        Choose the NFTs to burn: exactly sum(burn_cost) distinct mints, not
        including the target NFT.
        """

        self._require_selecting()
        if self._method is not PaymentMethod.BURN or self._target is None:
            raise CheckoutStateError("Burn selection is only available for burn payments")

        required = self.cart.total_burn_cost()
        chosen = tuple(mints)
        if len(set(chosen)) != len(chosen):
            raise CheckoutStateError("Each NFT can only be burned once")
        if self._target.mint in chosen:
            raise CheckoutStateError("The target NFT cannot be burned")
        if len(chosen) != required:
            raise CheckoutStateError(f"Select exactly {required} NFT(s) to burn; {len(chosen)} selected")

        self._burn_mints = chosen
        self._stage = CheckoutStage.CONFIRM
        return self._stage

    def quote(self) -> CheckoutQuote:
        if self._method is None:
            raise CheckoutStateError("Select a payment method first")
        return build_checkout_quote(self._items or self.cart.items(), self._method, self._config)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def confirm(self) -> CheckoutOutcome:
        """
        Run the whole purchase.

        Returns:
            CheckoutResult on success, FailureReport otherwise. Business failures
            are returned, not raised.
        """

        if self._stage is not CheckoutStage.CONFIRM or self._target is None or self._method is None:
            raise CheckoutStateError("Checkout is not ready to confirm")
        if self.cart.is_empty():
            raise CheckoutStateError("Cart is empty")
        if self._method is not PaymentMethod.FREE and self._signer is None:
            raise CheckoutStateError("Connect a wallet to pay")
        if self._method is PaymentMethod.BURN and len(self._burn_mints) != self.cart.total_burn_cost():
            raise CheckoutStateError("Cart changed since the burn selection; select the NFTs to burn again")

        self._items = self.cart.items()
        self._records = []
        self._landed_transfers = {}
        self._receipt = None
        self._stage = CheckoutStage.PROCESSING
        quote = build_checkout_quote(self._items, self._method, self._config)

        try:
            self._emit(TransactionStep.RESERVATION, "Reserving items...")
            reservation = reserve_cart(
                self._ledger,
                self._items,
                self.wallet_address,
                self._target.mint,
                self._method,
            )
            if not reservation.success:
                return self._reservation_failed(reservation)

            self._records = list(reservation.records)
            self._tx.info(
                self._ids(),
                TransactionStep.RESERVATION,
                "Items reserved",
                wallet_address=self.wallet_address,
                target_nft_mint=self._target.mint,
                payment_method=self._method.value,
                reservation_expires_at=min(r.reservation_expires_at for r in self._records).isoformat(),
            )
            return self._pay_and_apply(quote)
        except Exception as e:
            return self._unexpected(e)

    def retry_payment(self) -> CheckoutOutcome:
        """
        Retry after PAYMENT_FAILED, re-entering at the payment step.

        Only allowed while every reservation is still inside its grace window;
        otherwise the checkout is reset to target selection and must be
        started again.
        """

        failure = self.last_failure
        if self._stage is not CheckoutStage.FAILURE or failure is None or failure.error_code is not ErrorCode.PAYMENT_FAILED:
            raise CheckoutStateError("Only a failed payment can be retried")
        if self._target is None or self._method is None:
            raise CheckoutStateError("Checkout has no target or payment method")

        self._stage = CheckoutStage.PROCESSING
        quote = build_checkout_quote(self._items, self._method, self._config)

        try:
            current = [self._purchases.get_purchase(r.purchase_id) or r for r in self._records]
            reclaimed = reclaim_reservations(self._ledger, current, self._items, self._clock())
            if not reclaimed.success:
                report = self._fail(
                    reclaimed.error_code or ErrorCode.RESERVATION_EXPIRED,
                    TransactionStep.RESERVATION,
                    reclaimed.error_message or "Reservation expired",
                    failed_items=reclaimed.failed_item_names,
                    purchase_ids=[r.purchase_id for r in current],
                    mark_records=False,
                )
                self._reset()
                return report

            previous = self._ids()
            self._records = list(reclaimed.records)
            self._tx.info(
                self._ids(),
                TransactionStep.RESERVATION,
                "Reservation reclaimed for payment retry",
                previous_purchase_ids=[str(i) for i in previous],
            )
            return self._pay_and_apply(quote)
        except Exception as e:
            return self._unexpected(e)

    def _pay_and_apply(self, quote: CheckoutQuote) -> CheckoutOutcome:
        if self._target is None or self._method is None:
            raise CheckoutStateError("Checkout has no target or payment method")

        # Validation: reservations must still be held when payment starts.
        now = self._clock()
        self._advance(TransactionStep.VALIDATION, strict=True)
        if any(r.is_reservation_expired(now) for r in self._records):
            for record in self._records:
                self._ledger.compensate(record.purchase_id, ErrorCode.RESERVATION_EXPIRED, "Reservation expired before payment")
            return self._fail(
                ErrorCode.RESERVATION_EXPIRED,
                TransactionStep.VALIDATION,
                "Reservation expired before payment",
                mark_records=False,
            )

        # Payment
        self._emit(TransactionStep.PAYMENT, "Processing payment...")
        self._advance(TransactionStep.PAYMENT, strict=True)
        payment_step = TransactionStep.PAYMENT
        if self._method is PaymentMethod.BURN:
            payment_step = TransactionStep.BURN
            self._emit(TransactionStep.BURN, f"Burning {len(self._burn_mints)} NFT(s)...")
            self._advance(TransactionStep.BURN, strict=True)

        try:
            receipt = execute_payment(
                quote,
                self._signer,
                self._chain,
                self._config,
                self._burn_mints,
                landed_transfers=self._landed_transfers,
            )
        except PaymentError as e:
            return self._payment_failed(payment_step, e)
        self._receipt = receipt

        self._tx.info(
            self._ids(),
            payment_step,
            "Payment confirmed",
            payment_signature=receipt.signature,
            transfer_signatures=list(receipt.transfer_signatures),
            burned_nft_mints=list(receipt.burned_nft_mints),
        )

        # Apply traits + metadata
        self._emit(TransactionStep.METADATA, "Applying traits and updating metadata...")
        self._advance(TransactionStep.METADATA, strict=False)
        try:
            applied = apply_traits(self._target, self._items, self._renderer, self._chain, self._config)
        except Exception as e:
            return self._fail(
                ErrorCode.METADATA_FAILED,
                TransactionStep.METADATA,
                str(e),
                details={"payment_signature": receipt.signature, "raw_error": str(e)},
                payment_signature=receipt.signature,
            )

        self._tx.info(
            self._ids(),
            TransactionStep.METADATA,
            "Metadata updated",
            payment_signature=receipt.signature,
            metadata_signature=applied.update.signature,
            image_url=applied.update.image_url,
            metadata_url=applied.update.metadata_url,
            use_new_logo=applied.use_new_logo,
        )

        # Finalize
        self._emit(TransactionStep.RECORDING, "Completing purchase...")
        finalized = self._finalize(receipt)
        return self._succeed(receipt, applied, finalized)

    def _finalize(self, receipt: PaymentReceipt) -> bool:
        burn_slices = self._burn_slices(receipt.burned_nft_mints)
        completed: List[PurchaseRecord] = []
        ok = True
        for record, burned in zip(self._records, burn_slices):
            try:
                if record.transaction_step.ordinal < TransactionStep.RECORDING.ordinal:
                    record = self._purchases.update_status(
                        record.purchase_id, PurchaseStatus.PENDING, TransactionStep.RECORDING
                    )
                record = self._purchases.update_status(
                    record.purchase_id,
                    PurchaseStatus.COMPLETED,
                    TransactionStep.COMPLETED,
                    transaction_signature=receipt.signature,
                    burned_nft_mints=burned,
                )
            except Exception as e:
                ok = False
                logger.warning(
                    "Failed to finalize purchase record; purchase already succeeded on-chain",
                    exc_info=True,
                    extra={"purchase_id": str(record.purchase_id), "payment_signature": receipt.signature},
                )
                self._tx.warning(
                    [record.purchase_id],
                    TransactionStep.RECORDING,
                    "Failed to finalize purchase record",
                    payment_signature=receipt.signature,
                    raw_error=str(e),
                )
            completed.append(record)
        self._records = completed
        return ok

    def _burn_slices(self, burned: Sequence[str]) -> List[Tuple[str, ...]]:
        """Split burned mints across cart items by each item's burn_cost, in cart order."""

        slices: List[Tuple[str, ...]] = []
        offset = 0
        for item in self._items:
            if self._method is PaymentMethod.BURN:
                slices.append(tuple(burned[offset:offset + item.burn_cost]))
                offset += item.burn_cost
            else:
                slices.append(())
        return slices

    def _advance(self, step: TransactionStep, *, strict: bool) -> None:
        """
        Move every in-flight record to step.

        strict: errors propagate (before payment nothing has been charged);
        otherwise they are logged and processing continues.
        """

        advanced: List[PurchaseRecord] = []
        for record in self._records:
            try:
                advanced.append(self._purchases.update_status(record.purchase_id, PurchaseStatus.PENDING, step))
            except Exception:
                if strict:
                    raise
                logger.warning(
                    f"Failed to record step {step.value}",
                    exc_info=True,
                    extra={"purchase_id": str(record.purchase_id)},
                )
                advanced.append(record)
        self._records = advanced

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _ids(self) -> List[UUID]:
        return [record.purchase_id for record in self._records]

    def _succeed(self, receipt: PaymentReceipt, applied: AppliedTraits, finalized: bool) -> CheckoutResult:
        result = CheckoutResult(
            signature=receipt.signature,
            image_url=applied.update.image_url,
            metadata_url=applied.update.metadata_url,
            metadata_signature=applied.update.signature,
            purchase_ids=self._ids(),
            burned_nft_mints=receipt.burned_nft_mints,
            attributes=applied.attributes,
            finalized=finalized,
        )
        self._tx.info(self._ids(), TransactionStep.COMPLETED, "Purchase completed", payment_signature=receipt.signature)
        self._emit(TransactionStep.COMPLETED, "Purchase complete")
        self._stage = CheckoutStage.SUCCESS
        self.last_result = result
        self.last_failure = None
        self.cart.clear()
        return result

    def _reservation_failed(self, reservation: CartReservationResult) -> FailureReport:
        return self._fail(
            reservation.error_code or ErrorCode.RESERVATION_FAILED,
            TransactionStep.RESERVATION,
            reservation.error_message or "Reservation failed",
            failed_items=reservation.failed_item_names,
            details={"failures": [f"{f.name}: {f.error_message}" for f in reservation.failures]},
            mark_records=False,
        )

    def _payment_failed(self, step: TransactionStep, error: PaymentError) -> FailureReport:
        self._landed_transfers = dict(error.completed_transfers)
        return self._fail(
            ErrorCode.PAYMENT_FAILED,
            step,
            str(error.cause),
            details={
                "raw_error": str(error.cause),
                "user_rejected": error.user_rejected,
                "completed_transfers": dict(error.completed_transfers),
                "completed_signatures": list(error.completed_signatures),
                "burned_nft_mints": list(error.burned_nft_mints),
            },
            user_rejected=error.user_rejected,
            retry_until=min((r.reservation_expires_at for r in self._records), default=None),
        )

    def _unexpected(self, error: Exception) -> FailureReport:
        logger.exception("Unexpected checkout error", extra={"wallet_address": self.wallet_address})
        step = TransactionStep.UNKNOWN
        landed = self._landed_transfers or (
            {"payment": self._receipt.signature} if self._receipt is not None else {}
        )
        if landed:
            return self._fail(
                ErrorCode.UNEXPECTED_ERROR,
                step,
                str(error),
                details={"raw_error": repr(error), "payment_sent": True, "completed_signatures": list(landed.values())},
            )

        # Nothing was charged: give the stock back now. Records that cannot be
        # compensated are failed with payment_sent=False so the sweep releases them.
        ids = self._ids()
        held: List[PurchaseRecord] = []
        for record in self._records:
            if record.status is not PurchaseStatus.PENDING:
                continue
            try:
                self._ledger.compensate(record.purchase_id, ErrorCode.UNEXPECTED_ERROR, str(error))
            except Exception:
                logger.error(
                    "Failed to compensate reservation after unexpected error",
                    exc_info=True,
                    extra={"purchase_id": str(record.purchase_id)},
                )
                held.append(record)
        self._records = held
        return self._fail(
            ErrorCode.UNEXPECTED_ERROR,
            step,
            str(error),
            purchase_ids=ids,
            details={"raw_error": repr(error), "payment_sent": False},
        )

    def _fail(
        self,
        code: ErrorCode,
        step: TransactionStep,
        raw_message: str,
        *,
        failed_items: Sequence[str] = (),
        purchase_ids: Optional[Sequence[UUID]] = None,
        details: Optional[Mapping[str, Any]] = None,
        mark_records: bool = True,
        user_rejected: bool = False,
        retry_until: Optional[datetime] = None,
        payment_signature: Optional[str] = None,
    ) -> FailureReport:
        details = dict(details or {})
        message = failure_message(
            code,
            now=self._clock(),
            failed_items=failed_items,
            retry_until=retry_until,
            user_rejected=user_rejected,
            payment_signature=payment_signature,
        )

        if mark_records:
            failed: List[PurchaseRecord] = []
            for record in self._records:
                try:
                    failed.append(
                        self._purchases.update_status(
                            record.purchase_id,
                            PurchaseStatus.FAILED,
                            step,
                            code,
                            raw_message,
                            details,
                        )
                    )
                except Exception:
                    logger.error(
                        "Failed to record purchase failure",
                        exc_info=True,
                        extra={"purchase_id": str(record.purchase_id), "error_code": code.value},
                    )
                    failed.append(record)
            self._records = failed

        ids = list(purchase_ids) if purchase_ids is not None else self._ids()
        self._tx.error(ids, step, f"{code.value}: {raw_message}", error_code=code.value, **details)
        logger.error(
            f"Checkout failed with {code.value}",
            extra={"wallet_address": self.wallet_address, "step": step.value, "raw_message": raw_message},
        )

        report = FailureReport(
            error_code=code,
            message=message,
            raw_message=raw_message,
            retryable=code.retryable,
            step=step,
            failed_items=list(failed_items),
            purchase_ids=ids,
            retry_until=retry_until,
            user_rejected=user_rejected,
            payment_signature=payment_signature,
        )
        self._emit(step, message, failed=True)
        self._stage = CheckoutStage.FAILURE
        self.last_failure = report
        return report


def summarize_records(records: Sequence[PurchaseRecord]) -> Dict[str, int]:
    """Count records by status (used by the admin surface and scripts)."""

    counts: Dict[str, int] = {status.value: 0 for status in PurchaseStatus}
    for record in records:
        counts[record.status.value] += 1
    return counts


__all__ = [
    "CheckoutOrchestrator",
    "CheckoutOutcome",
    "CheckoutResult",
    "CheckoutStage",
    "CheckoutStateError",
    "FailureReport",
    "ProgressEvent",
    "summarize_records",
]
