"""
Purchase record repository (persistence).

CRUD over the `trait_purchases` table. Records are created only by the stock
ledger stored procedures; after that, update_status() is the sole mutation
entrypoint. Transition rules come from domain.purchase and the write is
conditional on the row still having the status/step that was read, so a
concurrent writer cannot be silently overwritten.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence
from uuid import UUID

from domain.purchase import ErrorCode, PaymentMethod, PurchaseRecord, PurchaseStatus, TransactionStep
from domain.time import parse_optional_utc_datetime, parse_utc_datetime, to_iso_utc, utc_now
from repositories.base import apply_status_update
from repositories.client import get_supabase

# Supabase table name for purchase records.
# Keep this aligned with sql/schema.sql.
_PURCHASES_TABLE: str = "trait_purchases"


def _optional_iso(dt: Optional[datetime], *, name: str) -> Optional[str]:
    return None if dt is None else to_iso_utc(dt, name=name)


def row_to_purchase(row: Mapping[str, Any]) -> PurchaseRecord:
    """Convert a Supabase row (or RPC JSON payload) into a PurchaseRecord."""

    error_code = row.get("error_code")
    superseded_by = row.get("superseded_by")

    return PurchaseRecord(
        purchase_id=UUID(str(row["id"])),
        trait_id=UUID(str(row["trait_id"])),
        wallet_address=str(row["wallet_address"]),
        target_nft_mint=str(row["target_nft_mint"]),
        payment_method=PaymentMethod(str(row["payment_method"])),
        sol_amount=Decimal(str(row.get("sol_amount") or "0")),
        nfts_burned_count=int(row.get("nfts_burned_count") or 0),
        burned_nft_mints=tuple(row.get("burned_nft_mints") or ()),
        status=PurchaseStatus(str(row["status"])),
        transaction_step=TransactionStep(str(row.get("transaction_step") or TransactionStep.UNKNOWN.value)),
        error_code=ErrorCode.parse(error_code) if error_code else None,
        error_message=row.get("error_message"),
        error_details=row.get("error_details") or {},
        transaction_signature=row.get("transaction_signature"),
        created_at=parse_utc_datetime(row["created_at"]),
        reservation_expires_at=parse_utc_datetime(row["reservation_expires_at"]),
        payment_started_at=parse_optional_utc_datetime(row.get("payment_started_at")),
        completed_at=parse_optional_utc_datetime(row.get("completed_at")),
        updated_at=parse_optional_utc_datetime(row.get("updated_at")),
        compensated_at=parse_optional_utc_datetime(row.get("compensated_at")),
        superseded_by=UUID(str(superseded_by)) if superseded_by else None,
    )


class SupabasePurchaseRepository:
    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def get_purchase(self, purchase_id: UUID) -> Optional[PurchaseRecord]:
        """
        Retrieve a single purchase record by its ID.

        Returns:
            PurchaseRecord or None if not found
        """

        response = (
            self.client.table(_PURCHASES_TABLE)
            .select("*")
            .eq("id", str(purchase_id))
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to get purchase: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return row_to_purchase(rows[0])

    def list_purchases_by_wallet(self, wallet_address: str) -> List[PurchaseRecord]:
        """Purchase history for one wallet, newest first."""

        response = (
            self.client.table(_PURCHASES_TABLE)
            .select("*")
            .eq("wallet_address", wallet_address)
            .order("created_at", desc=True)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list purchases: {error}")

        rows = getattr(response, "data", None) or []
        return [row_to_purchase(row) for row in rows]

    def list_purchases(self, status: Optional[PurchaseStatus] = None, limit: int = 100) -> List[PurchaseRecord]:
        query = self.client.table(_PURCHASES_TABLE).select("*")
        if status is not None:
            query = query.eq("status", status.value)

        response = query.order("created_at", desc=True).limit(limit).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list purchases: {error}")

        rows = getattr(response, "data", None) or []
        return [row_to_purchase(row) for row in rows]

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
        """
        Move a purchase record to a new status/step.

        Writes completed_at when the status becomes completed and
        payment_started_at the first time the step reaches payment.

        Raises:
            ValueError: if the record does not exist, the transition is invalid,
                or the row changed since it was read.
            RuntimeError: if Supabase reports an error.
        """

        current = self.get_purchase(purchase_id)
        if current is None:
            raise ValueError(f"PurchaseRecord not found: {purchase_id}")

        updated = apply_status_update(
            current,
            status,
            step,
            utc_now(),
            error_code=error_code,
            error_message=error_message,
            error_details=error_details,
            transaction_signature=transaction_signature,
            burned_nft_mints=burned_nft_mints,
        )

        payload: dict[str, Any] = {
            "status": updated.status.value,
            "transaction_step": updated.transaction_step.value,
            "error_code": updated.error_code.value if updated.error_code else None,
            "error_message": updated.error_message,
            "error_details": dict(updated.error_details),
            "transaction_signature": updated.transaction_signature,
            "burned_nft_mints": list(updated.burned_nft_mints),
            "nfts_burned_count": updated.nfts_burned_count,
            "payment_started_at": _optional_iso(updated.payment_started_at, name="payment_started_at"),
            "completed_at": _optional_iso(updated.completed_at, name="completed_at"),
            "updated_at": _optional_iso(updated.updated_at, name="updated_at"),
        }

        response = (
            self.client.table(_PURCHASES_TABLE)
            .update(payload)
            .eq("id", str(purchase_id))
            .eq("status", current.status.value)
            .eq("transaction_step", current.transaction_step.value)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to update purchase status: {error}")

        if not (getattr(response, "data", None) or []):
            raise ValueError(f"PurchaseRecord {purchase_id} changed concurrently; update rejected")

        return updated


__all__ = ["SupabasePurchaseRepository", "row_to_purchase"]
