"""
Stock ledger (Supabase).

Every operation here is a single call to a PostgreSQL function (see
sql/stock_ledger.sql) that runs in one transaction and locks the offer row
(FOR UPDATE), so concurrent checkouts are serialized at the database and the
client never does "read stock, then write".

RPC functions:
- reserve_trait_atomic: stock floor + claim limit check, decrement, insert pending record
- compensate_reservation: idempotent stock restore
- reclaim_reservation: hand a payment-failed record's unit to a new pending record
- expire_stale_reservations: release every reservation past its grace window
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping
from uuid import UUID

from postgrest.exceptions import APIError

from domain.purchase import ErrorCode, PaymentMethod
from domain.time import to_iso_utc
from repositories.base import DEFAULT_GRACE_MINUTES, ReservationOutcome
from repositories.client import get_supabase
from repositories.purchase_repository import row_to_purchase

logger = logging.getLogger(__name__)


def _unwrap_api_error(e: APIError) -> Mapping[str, Any]:
    """
    Extract the JSON body from a postgrest APIError.

    Supabase-py raises APIError when a PostgreSQL function returns a bare JSON
    object, for both success and error payloads, so the body has to be
    inspected before treating it as a failure.
    """

    try:
        data = e.json() if callable(getattr(e, "json", None)) else {}
    except (TypeError, ValueError):
        data = {}
    return data if isinstance(data, Mapping) else {}


class SupabaseStockLedger:
    def __init__(self, client: Any = None, grace_minutes: int = DEFAULT_GRACE_MINUTES) -> None:
        self._client = client
        self._grace_minutes = grace_minutes

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def _call(self, function: str, params: Mapping[str, Any]) -> Mapping[str, Any]:
        """
        Call an RPC function and return its JSON result.

        Raises:
            RuntimeError: if the RPC reports a transport / database error.
        """

        try:
            response = self.client.rpc(function, dict(params)).execute()
        except APIError as e:
            data = _unwrap_api_error(e)
            if "success" in data:
                return data
            raise RuntimeError(f"Failed to call {function}: {e}") from e

        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to call {function}: {error}")

        data = getattr(response, "data", None)
        if isinstance(data, list):
            data = data[0] if data else {}
        return data or {}

    def _outcome(self, function: str, params: Mapping[str, Any]) -> ReservationOutcome:
        try:
            result = self._call(function, params)
        except RuntimeError as e:
            logger.error(
                f"{function} failed",
                extra={"rpc": function, "error": str(e)},
            )
            return ReservationOutcome.failure(ErrorCode.RESERVATION_FAILED, str(e))

        if result.get("success"):
            return ReservationOutcome.ok(row_to_purchase(result["purchase"]))

        return ReservationOutcome.failure(
            ErrorCode.parse(result.get("error")),
            str(result.get("message") or result.get("error") or "Reservation failed"),
        )

    def reserve(
        self,
        offer_id: UUID,
        wallet_address: str,
        target_nft_mint: str,
        payment_method: PaymentMethod,
        sol_amount: Decimal,
    ) -> ReservationOutcome:
        return self._outcome(
            "reserve_trait_atomic",
            {
                "p_trait_id": str(offer_id),
                "p_wallet_address": wallet_address,
                "p_target_nft_mint": target_nft_mint,
                "p_payment_method": payment_method.value,
                "p_sol_amount": str(sol_amount),
                "p_grace_minutes": self._grace_minutes,
            },
        )

    def compensate(
        self,
        purchase_id: UUID,
        error_code: ErrorCode = ErrorCode.RESERVATION_FAILED,
        error_message: str = "Reservation released",
    ) -> bool:
        """
        Restore the stock unit held by a reservation.

        Returns:
            True if stock was released by this call, False if it already had been.
        """

        result = self._call(
            "compensate_reservation",
            {
                "p_purchase_id": str(purchase_id),
                "p_error_code": error_code.value,
                "p_error_message": error_message,
            },
        )
        if not result.get("success"):
            raise ValueError(str(result.get("message") or result.get("error") or "Compensation rejected"))
        return bool(result.get("released"))

    def reclaim(self, purchase_id: UUID) -> ReservationOutcome:
        return self._outcome("reclaim_reservation", {"p_purchase_id": str(purchase_id)})

    def expire_stale(self, now: datetime) -> List[UUID]:
        result = self._call("expire_stale_reservations", {"p_now": to_iso_utc(now, name="now")})
        return [UUID(str(value)) for value in result.get("released_ids") or []]


__all__ = ["SupabaseStockLedger"]
