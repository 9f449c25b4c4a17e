"""
Tests for `services/shop_config.py` and `services/checkout_messages.py`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.purchase import ErrorCode
from services.checkout_messages import failure_message, remaining_minutes
from services.shop_config import ShopConfig

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def test_from_env_reads_values_and_defaults() -> None:
    config = ShopConfig.from_env(
        {
            "COLLECTION_WALLET": "collect",
            "REIMBURSEMENT_WALLET": "reimburse",
            "SERVICE_FEE": "0.01",
            "SHOP_BACKEND": "Memory",
        }
    )

    assert config.service_fee == Decimal("0.01")
    assert config.reimbursement_fee == Decimal("0")
    assert config.grace_minutes == 10
    assert config.new_logo_trait_value == "uzi"
    assert config.collection_address is None
    assert config.backend == "memory"


@pytest.mark.parametrize(
    "env",
    [
        {"SERVICE_FEE": "-1"},
        {"REIMBURSEMENT_FEE": "abc"},
        {"RESERVATION_GRACE_MINUTES": "0"},
        {"RESERVATION_GRACE_MINUTES": "ten"},
        {"SHOP_BACKEND": "sqlite"},
    ],
)
def test_from_env_rejects_bad_values(env) -> None:
    with pytest.raises(ValueError):
        ShopConfig.from_env(env)


def test_remaining_minutes_rounds_up_and_never_negative() -> None:
    assert remaining_minutes(NOW + timedelta(minutes=9, seconds=1), NOW) == 10
    assert remaining_minutes(NOW + timedelta(minutes=3), NOW) == 3
    assert remaining_minutes(NOW - timedelta(minutes=1), NOW) == 0
    assert remaining_minutes(None, NOW) == 0


def test_payment_failure_message_states_grace_period() -> None:
    retry_until = NOW + timedelta(minutes=7)

    cancelled = failure_message(ErrorCode.PAYMENT_FAILED, now=NOW, retry_until=retry_until, user_rejected=True)
    errored = failure_message(ErrorCode.PAYMENT_FAILED, now=NOW, retry_until=retry_until)

    assert "cancelled" in cancelled
    assert "7 minutes" in cancelled
    assert "cancelled" not in errored
    assert "7 minutes" in errored


def test_stock_and_metadata_messages() -> None:
    assert "Gold Chain" in failure_message(ErrorCode.STOCK_DEPLETED, now=NOW, failed_items=["Gold Chain"])

    metadata = failure_message(ErrorCode.METADATA_FAILED, now=NOW, payment_signature="sig-123")
    assert "Do not pay again" in metadata
    assert "sig-123" in metadata
