"""
User-facing checkout messages.

The UI shows the message selected by error code, never the raw exception text
(the raw text is kept separately on the failure report for diagnostics).
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Optional, Sequence

from domain.purchase import ErrorCode


def remaining_minutes(retry_until: Optional[datetime], now: datetime) -> int:
    """Whole minutes left in the grace window, rounded up, never negative."""

    if retry_until is None:
        return 0
    seconds = (retry_until - now).total_seconds()
    return max(0, math.ceil(seconds / 60))


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def failure_message(
    code: ErrorCode,
    *,
    now: datetime,
    failed_items: Sequence[str] = (),
    retry_until: Optional[datetime] = None,
    user_rejected: bool = False,
    payment_signature: Optional[str] = None,
) -> str:
    items = ", ".join(failed_items) if failed_items else "an item in your cart"

    if code is ErrorCode.STOCK_DEPLETED:
        return f"Sorry, {items} sold out. Remove it from your cart to continue."

    if code is ErrorCode.CLAIM_LIMIT_REACHED:
        return f"You have already claimed the maximum allowed for {items}. Remove it from your cart to continue."

    if code is ErrorCode.RESERVATION_FAILED:
        return "We couldn't reserve your items. Please try again."

    if code is ErrorCode.RESERVATION_EXPIRED:
        return "Your reservation has expired. Please start a new checkout."

    if code is ErrorCode.PAYMENT_FAILED:
        window = _plural(remaining_minutes(retry_until, now), "minute")
        if user_rejected:
            return (
                "You cancelled the transaction in your wallet. "
                f"Your items stay reserved for {window}; you can retry the payment."
            )
        return f"Payment failed. Your items stay reserved for {window}; you can retry the payment."

    if code is ErrorCode.METADATA_FAILED:
        reference = f" and transaction {payment_signature}" if payment_signature else ""
        return (
            "Your payment went through, but we could not update your NFT. "
            f"Do not pay again. Please contact support with your wallet address{reference}."
        )

    return "Something went wrong while processing your purchase. Please try again or contact support."


__all__ = ["failure_message", "remaining_minutes"]
