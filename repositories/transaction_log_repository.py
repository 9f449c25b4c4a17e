"""
Transaction log repository (persistence).

Append-only: the `transaction_logs` table is only ever inserted into and read.
"""

from __future__ import annotations

from typing import Any, List, Mapping
from uuid import UUID

from domain.purchase import TransactionStep
from domain.time import parse_optional_utc_datetime, to_iso_utc
from domain.transaction_log import LogLevel, TransactionLogEntry
from repositories.client import get_supabase

_LOGS_TABLE: str = "transaction_logs"


def _row_to_entry(row: Mapping[str, Any]) -> TransactionLogEntry:
    log_id = row.get("id")
    return TransactionLogEntry(
        log_id=UUID(str(log_id)) if log_id else None,
        purchase_id=UUID(str(row["purchase_id"])),
        level=LogLevel(str(row["level"])),
        step=TransactionStep(str(row.get("step") or TransactionStep.UNKNOWN.value)),
        message=str(row.get("message") or ""),
        details=row.get("details") or {},
        created_at=parse_optional_utc_datetime(row.get("created_at")),
    )


class SupabaseTransactionLogRepository:
    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def append(self, entry: TransactionLogEntry) -> None:
        payload: dict[str, Any] = {
            "purchase_id": str(entry.purchase_id),
            "level": entry.level.value,
            "step": entry.step.value,
            "message": entry.message,
            "details": dict(entry.details),
        }
        if entry.created_at is not None:
            payload["created_at"] = to_iso_utc(entry.created_at, name="created_at")

        response = self.client.table(_LOGS_TABLE).insert(payload).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to write transaction log: {error}")

    def list_for_purchase(self, purchase_id: UUID) -> List[TransactionLogEntry]:
        response = (
            self.client.table(_LOGS_TABLE)
            .select("*")
            .eq("purchase_id", str(purchase_id))
            .order("created_at")
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list transaction logs: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_entry(row) for row in rows]


__all__ = ["SupabaseTransactionLogRepository"]
