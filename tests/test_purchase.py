"""
Tests for `domain/purchase.py`.

Covers contract rules:
- Status moves pending -> completed | failed and never reverses.
- transaction_step only moves forward; failures record the failing step.
- Timestamps are UTC; records are immutable.
- Reservation expiry, release and reclaim eligibility.
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest

from domain.purchase import (
    ErrorCode,
    PaymentMethod,
    PurchaseRecord,
    PurchaseStatus,
    TransactionStep,
    check_transition,
)

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _record(**overrides) -> PurchaseRecord:
    values = dict(
        purchase_id=UUID("00000000-0000-0000-0000-000000000010"),
        trait_id=UUID("00000000-0000-0000-0000-000000000001"),
        wallet_address="wallet",
        target_nft_mint="mint",
        payment_method=PaymentMethod.SOL,
        created_at=NOW,
        reservation_expires_at=NOW + timedelta(minutes=10),
    )
    values.update(overrides)
    return PurchaseRecord(**values)


def test_purchase_record_requires_utc_timestamps() -> None:
    with pytest.raises(ValueError):
        _record(created_at=datetime(2025, 1, 1))

    with pytest.raises(ValueError):
        _record(reservation_expires_at=datetime(2025, 1, 1, tzinfo=timezone(timedelta(hours=-5))))


def test_purchase_record_is_immutable() -> None:
    record = _record()

    with pytest.raises(FrozenInstanceError):
        record.status = PurchaseStatus.COMPLETED  # type: ignore[misc]


def test_new_record_is_pending_at_reservation() -> None:
    record = _record()

    assert record.status is PurchaseStatus.PENDING
    assert record.transaction_step is TransactionStep.RESERVATION
    assert not record.is_terminal


def test_advanced_to_moves_forward_and_stamps_payment_start() -> None:
    record = _record()
    validated = record.advanced_to(TransactionStep.VALIDATION, NOW)
    paying = validated.advanced_to(TransactionStep.PAYMENT, NOW + timedelta(seconds=5))

    assert validated.payment_started_at is None
    assert paying.payment_started_at == NOW + timedelta(seconds=5)
    assert record.transaction_step is TransactionStep.RESERVATION


def test_step_cannot_move_backward() -> None:
    paying = _record().advanced_to(TransactionStep.PAYMENT, NOW)

    with pytest.raises(ValueError):
        paying.advanced_to(TransactionStep.VALIDATION, NOW)

    with pytest.raises(ValueError):
        paying.failed(TransactionStep.RESERVATION, ErrorCode.PAYMENT_FAILED, "boom", NOW)


def test_failure_records_step_including_unknown() -> None:
    paying = _record().advanced_to(TransactionStep.PAYMENT, NOW)

    failed = paying.failed(TransactionStep.PAYMENT, ErrorCode.PAYMENT_FAILED, "rejected", NOW, {"raw": "x"})
    assert failed.status is PurchaseStatus.FAILED
    assert failed.transaction_step is TransactionStep.PAYMENT
    assert failed.error_details == {"raw": "x"}

    unknown = paying.failed(TransactionStep.UNKNOWN, ErrorCode.UNEXPECTED_ERROR, "?", NOW)
    assert unknown.transaction_step is TransactionStep.UNKNOWN


def test_unknown_step_only_valid_for_failures() -> None:
    with pytest.raises(ValueError):
        _record().advanced_to(TransactionStep.UNKNOWN, NOW)


def test_terminal_records_never_change() -> None:
    completed = _record().advanced_to(TransactionStep.METADATA, NOW).completed("sig", NOW)
    failed = _record().failed(TransactionStep.RESERVATION, ErrorCode.RESERVATION_FAILED, "x", NOW)

    for record in (completed, failed):
        with pytest.raises(ValueError):
            record.advanced_to(TransactionStep.COMPLETED, NOW)
        with pytest.raises(ValueError):
            record.failed(TransactionStep.UNKNOWN, ErrorCode.UNEXPECTED_ERROR, "x", NOW)


def test_completed_writes_signature_mints_and_completed_at() -> None:
    record = _record(payment_method=PaymentMethod.BURN)
    done = record.completed("sig-1", NOW, ("a", "b"))

    assert done.status is PurchaseStatus.COMPLETED
    assert done.transaction_step is TransactionStep.COMPLETED
    assert done.transaction_signature == "sig-1"
    assert done.burned_nft_mints == ("a", "b")
    assert done.nfts_burned_count == 2
    assert done.completed_at == NOW


def test_check_transition_completed_requires_completed_step() -> None:
    with pytest.raises(ValueError):
        check_transition(PurchaseStatus.PENDING, TransactionStep.METADATA, PurchaseStatus.COMPLETED, TransactionStep.RECORDING)
    with pytest.raises(ValueError):
        check_transition(PurchaseStatus.PENDING, TransactionStep.METADATA, PurchaseStatus.PENDING, TransactionStep.COMPLETED)


def test_releasable_only_after_expiry_and_before_payment() -> None:
    record = _record()
    expiry = record.reservation_expires_at

    assert not record.is_releasable(expiry - timedelta(seconds=1))
    assert record.is_releasable(expiry)

    paying = record.advanced_to(TransactionStep.PAYMENT, NOW)
    assert not paying.is_releasable(expiry + timedelta(minutes=1))

    payment_failed = paying.failed(TransactionStep.PAYMENT, ErrorCode.PAYMENT_FAILED, "x", NOW)
    assert payment_failed.is_releasable(expiry)

    metadata_failed = paying.failed(TransactionStep.METADATA, ErrorCode.METADATA_FAILED, "x", NOW)
    assert not metadata_failed.is_releasable(expiry + timedelta(hours=1))

    released = replace(payment_failed, compensated_at=NOW)
    assert not released.is_releasable(expiry)


def test_reclaimable_only_for_unexpired_payment_failures() -> None:
    paying = _record().advanced_to(TransactionStep.PAYMENT, NOW)
    failed = paying.failed(TransactionStep.PAYMENT, ErrorCode.PAYMENT_FAILED, "x", NOW)

    assert failed.is_reclaimable(NOW + timedelta(minutes=9))
    assert not failed.is_reclaimable(NOW + timedelta(minutes=10))
    assert not replace(failed, superseded_by=UUID(int=5)).is_reclaimable(NOW)
    assert not paying.is_reclaimable(NOW)


def test_error_code_retryable_and_parse() -> None:
    assert ErrorCode.PAYMENT_FAILED.retryable
    assert ErrorCode.RESERVATION_FAILED.retryable
    assert not ErrorCode.STOCK_DEPLETED.retryable
    assert not ErrorCode.METADATA_FAILED.retryable

    assert ErrorCode.parse("STOCK_DEPLETED") is ErrorCode.STOCK_DEPLETED
    assert ErrorCode.parse("SOMETHING_ELSE") is ErrorCode.RESERVATION_FAILED
    assert ErrorCode.parse(None) is ErrorCode.RESERVATION_FAILED


def test_unexpected_failure_is_releasable_only_when_nothing_was_sent() -> None:
    paying = _record().advanced_to(TransactionStep.PAYMENT, NOW)
    expiry = paying.reservation_expires_at

    unpaid = paying.failed(TransactionStep.UNKNOWN, ErrorCode.UNEXPECTED_ERROR, "x", NOW, {"payment_sent": False})
    paid = paying.failed(TransactionStep.UNKNOWN, ErrorCode.UNEXPECTED_ERROR, "x", NOW, {"payment_sent": True})
    unknown = paying.failed(TransactionStep.UNKNOWN, ErrorCode.UNEXPECTED_ERROR, "x", NOW)

    assert not unpaid.is_releasable(expiry - timedelta(seconds=1))
    assert unpaid.is_releasable(expiry)
    assert not paid.is_releasable(expiry + timedelta(hours=1))
    assert not unknown.is_releasable(expiry + timedelta(hours=1))
