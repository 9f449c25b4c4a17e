"""
Tests for the atomic stock ledger (`repositories/memory_store.py`).

Covers:
- Concurrent reservations never oversell finite stock.
- Per-wallet claim limits count pending + completed reservations.
- compensate() restores stock exactly once.
- Lazy expiry and the expiry sweep release abandoned reservations.
- reclaim() hands a payment-failed reservation's stock to a new pending record.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import BUYER_WALLET, make_offer
from domain.purchase import ErrorCode, PaymentMethod, PurchaseStatus, TransactionStep
from domain.transaction_log import LogLevel, TransactionLogEntry
from repositories.memory_store import InMemoryShopStore


def _reserve(store: InMemoryShopStore, offer_id, wallet: str = BUYER_WALLET):
    return store.reserve(offer_id, wallet, "TargetMint111", PaymentMethod.SOL, Decimal("0.5"))


def test_reserve_creates_pending_record_and_decrements_stock(store: InMemoryShopStore, clock) -> None:
    offer = store.create_offer(make_offer(stock_quantity=3))

    outcome = _reserve(store, offer.offer_id)

    assert outcome.success
    record = outcome.record
    assert record.status is PurchaseStatus.PENDING
    assert record.transaction_step is TransactionStep.RESERVATION
    assert record.reservation_expires_at == clock.now + timedelta(minutes=10)
    assert record.sol_amount == Decimal("0.5")
    assert store.get_offer(offer.offer_id).stock_quantity == 2
    assert store.get_purchase(record.purchase_id) == record


def test_unlimited_stock_is_never_decremented(store: InMemoryShopStore) -> None:
    offer = store.create_offer(make_offer(stock_quantity=None))

    for _ in range(5):
        assert _reserve(store, offer.offer_id).success

    assert store.get_offer(offer.offer_id).stock_quantity is None


def test_reserve_fails_for_missing_inactive_or_sold_out_offers(store: InMemoryShopStore) -> None:
    inactive = store.create_offer(make_offer(is_active=False))
    sold_out = store.create_offer(make_offer(stock_quantity=0))

    assert _reserve(store, uuid4()).error_code is ErrorCode.RESERVATION_FAILED
    assert _reserve(store, inactive.offer_id).error_code is ErrorCode.RESERVATION_FAILED

    outcome = _reserve(store, sold_out.offer_id)
    assert outcome.error_code is ErrorCode.STOCK_DEPLETED
    assert store.get_offer(sold_out.offer_id).stock_quantity == 0
    assert store.list_purchases() == []


def test_concurrent_reservations_never_oversell(store: InMemoryShopStore) -> None:
    """Exactly stock_quantity of 50 concurrent attempts succeed; stock ends at 0."""

    offer = store.create_offer(make_offer(stock_quantity=7))

    with ThreadPoolExecutor(max_workers=16) as pool:
        outcomes = list(pool.map(lambda i: _reserve(store, offer.offer_id, f"wallet-{i}"), range(50)))

    succeeded = [o for o in outcomes if o.success]
    failed = [o for o in outcomes if not o.success]

    assert len(succeeded) == 7
    assert all(o.error_code is ErrorCode.STOCK_DEPLETED for o in failed)
    assert store.get_offer(offer.offer_id).stock_quantity == 0


def test_free_offer_single_unit_two_wallets(store: InMemoryShopStore) -> None:
    offer = store.create_offer(make_offer(stock_quantity=1))

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = list(
            pool.map(
                lambda wallet: store.reserve(offer.offer_id, wallet, "Mint", PaymentMethod.FREE, Decimal("0")),
                ["wallet-a", "wallet-b"],
            )
        )

    assert sorted(o.success for o in outcomes) == [False, True]
    assert [o.error_code for o in outcomes if not o.success] == [ErrorCode.STOCK_DEPLETED]


def test_claim_limit_counts_pending_and_completed(store: InMemoryShopStore) -> None:
    offer = store.create_offer(make_offer(max_claims_per_wallet=2))

    first = _reserve(store, offer.offer_id).record
    store.update_status(first.purchase_id, PurchaseStatus.PENDING, TransactionStep.PAYMENT)
    store.update_status(first.purchase_id, PurchaseStatus.COMPLETED, TransactionStep.COMPLETED, transaction_signature="sig")
    assert _reserve(store, offer.offer_id).success

    third = _reserve(store, offer.offer_id)
    assert third.error_code is ErrorCode.CLAIM_LIMIT_REACHED
    assert _reserve(store, offer.offer_id, "other-wallet").success


def test_concurrent_claims_respect_limit(store: InMemoryShopStore) -> None:
    offer = store.create_offer(make_offer(max_claims_per_wallet=3))

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(lambda _: _reserve(store, offer.offer_id), range(20)))

    assert sum(o.success for o in outcomes) == 3
    assert {o.error_code for o in outcomes if not o.success} == {ErrorCode.CLAIM_LIMIT_REACHED}


def test_compensate_restores_stock_and_claims_once(store: InMemoryShopStore) -> None:
    offer = store.create_offer(make_offer(stock_quantity=1, max_claims_per_wallet=1))
    record = _reserve(store, offer.offer_id).record

    assert store.compensate(record.purchase_id) is True
    assert store.compensate(record.purchase_id) is False

    assert store.get_offer(offer.offer_id).stock_quantity == 1
    released = store.get_purchase(record.purchase_id)
    assert released.status is PurchaseStatus.FAILED
    assert released.error_code is ErrorCode.RESERVATION_FAILED
    assert released.compensated_at is not None
    assert _reserve(store, offer.offer_id).success


def test_compensate_rejects_paid_purchases(store: InMemoryShopStore) -> None:
    offer = store.create_offer(make_offer(stock_quantity=2))
    record = _reserve(store, offer.offer_id).record
    store.update_status(record.purchase_id, PurchaseStatus.PENDING, TransactionStep.PAYMENT)
    store.update_status(record.purchase_id, PurchaseStatus.FAILED, TransactionStep.METADATA, ErrorCode.METADATA_FAILED, "x")

    with pytest.raises(ValueError):
        store.compensate(record.purchase_id)
    assert store.get_offer(offer.offer_id).stock_quantity == 1


def test_expire_stale_releases_unpaid_and_payment_failed(store: InMemoryShopStore, clock) -> None:
    offer = store.create_offer(make_offer(stock_quantity=5))
    unpaid = _reserve(store, offer.offer_id).record
    paying = _reserve(store, offer.offer_id).record
    payment_failed = _reserve(store, offer.offer_id).record

    store.update_status(paying.purchase_id, PurchaseStatus.PENDING, TransactionStep.PAYMENT)
    store.update_status(payment_failed.purchase_id, PurchaseStatus.PENDING, TransactionStep.PAYMENT)
    store.update_status(payment_failed.purchase_id, PurchaseStatus.FAILED, TransactionStep.PAYMENT, ErrorCode.PAYMENT_FAILED, "x")

    assert store.expire_stale(clock.now) == []

    clock.advance(minutes=10)
    released = store.expire_stale(clock.now)

    assert set(released) == {unpaid.purchase_id, payment_failed.purchase_id}
    assert store.get_offer(offer.offer_id).stock_quantity == 4
    expired = store.get_purchase(unpaid.purchase_id)
    assert expired.status is PurchaseStatus.FAILED
    assert expired.error_code is ErrorCode.RESERVATION_EXPIRED
    assert store.get_purchase(payment_failed.purchase_id).error_code is ErrorCode.PAYMENT_FAILED
    assert store.expire_stale(clock.now) == []


def test_reserve_lazily_expires_abandoned_reservations(store: InMemoryShopStore, clock) -> None:
    offer = store.create_offer(make_offer(stock_quantity=1))
    abandoned = _reserve(store, offer.offer_id, "wallet-a").record

    assert _reserve(store, offer.offer_id, "wallet-b").error_code is ErrorCode.STOCK_DEPLETED

    clock.advance(minutes=11)
    assert _reserve(store, offer.offer_id, "wallet-b").success
    assert store.get_purchase(abandoned.purchase_id).error_code is ErrorCode.RESERVATION_EXPIRED


def test_reclaim_moves_stock_unit_to_new_pending_record(store: InMemoryShopStore, clock) -> None:
    offer = store.create_offer(make_offer(stock_quantity=1, max_claims_per_wallet=1))
    original = _reserve(store, offer.offer_id).record
    store.update_status(original.purchase_id, PurchaseStatus.PENDING, TransactionStep.PAYMENT)
    store.update_status(original.purchase_id, PurchaseStatus.FAILED, TransactionStep.PAYMENT, ErrorCode.PAYMENT_FAILED, "x")

    clock.advance(minutes=3)
    outcome = store.reclaim(original.purchase_id)

    assert outcome.success
    renewed = outcome.record
    assert renewed.purchase_id != original.purchase_id
    assert renewed.status is PurchaseStatus.PENDING
    assert renewed.transaction_step is TransactionStep.RESERVATION
    assert renewed.reservation_expires_at == original.reservation_expires_at
    assert store.get_purchase(original.purchase_id).superseded_by == renewed.purchase_id
    assert store.get_offer(offer.offer_id).stock_quantity == 0

    # The old record's stock unit now belongs to the new record.
    assert store.reclaim(original.purchase_id).error_code is ErrorCode.RESERVATION_EXPIRED
    clock.advance(minutes=8)
    assert store.expire_stale(clock.now) == [renewed.purchase_id]
    assert store.get_offer(offer.offer_id).stock_quantity == 1


def test_reclaim_rejects_expired_and_non_payment_failures(store: InMemoryShopStore, clock) -> None:
    offer = store.create_offer(make_offer(stock_quantity=2))
    pending = _reserve(store, offer.offer_id).record
    failed = _reserve(store, offer.offer_id).record
    store.update_status(failed.purchase_id, PurchaseStatus.FAILED, TransactionStep.PAYMENT, ErrorCode.PAYMENT_FAILED, "x")

    assert store.reclaim(pending.purchase_id).error_code is ErrorCode.RESERVATION_FAILED

    clock.advance(minutes=10)
    assert store.reclaim(failed.purchase_id).error_code is ErrorCode.RESERVATION_EXPIRED


def test_update_status_enforces_transitions(store: InMemoryShopStore) -> None:
    offer = store.create_offer(make_offer())
    record = _reserve(store, offer.offer_id).record
    store.update_status(record.purchase_id, PurchaseStatus.PENDING, TransactionStep.METADATA)

    with pytest.raises(ValueError):
        store.update_status(record.purchase_id, PurchaseStatus.PENDING, TransactionStep.PAYMENT)
    with pytest.raises(ValueError):
        store.update_status(record.purchase_id, PurchaseStatus.COMPLETED, TransactionStep.COMPLETED)
    with pytest.raises(ValueError):
        store.update_status(uuid4(), PurchaseStatus.PENDING, TransactionStep.PAYMENT)


def test_offer_admin_setters(store: InMemoryShopStore) -> None:
    first = store.create_offer(make_offer("A"))
    second = store.create_offer(make_offer("B"))

    store.set_offer_active(first.offer_id, False)
    store.set_stock_quantity(second.offer_id, 4)
    store.set_max_claims_per_wallet(second.offer_id, 2)

    assert [o.name for o in store.list_active_offers()] == ["B"]
    assert store.get_offer(second.offer_id).stock_quantity == 4
    assert store.get_offer(second.offer_id).max_claims_per_wallet == 2
    with pytest.raises(ValueError):
        store.create_offer(first)
    with pytest.raises(ValueError):
        store.set_offer_active(uuid4(), True)


def test_transaction_logs_are_appended_in_order(store: InMemoryShopStore) -> None:
    purchase_id = uuid4()
    store.append(TransactionLogEntry(purchase_id, LogLevel.INFO, TransactionStep.RESERVATION, "reserved"))
    store.append(TransactionLogEntry(purchase_id, LogLevel.ERROR, TransactionStep.PAYMENT, "failed"))
    store.append(TransactionLogEntry(uuid4(), LogLevel.INFO, TransactionStep.RESERVATION, "other"))

    entries = store.list_for_purchase(purchase_id)

    assert [e.message for e in entries] == ["reserved", "failed"]
    assert all(e.log_id is not None and e.created_at is not None for e in entries)
