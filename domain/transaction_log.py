"""
Domain: Transaction log entries.

Append-only audit trail per purchase. Entries are never updated or deleted once
written; the frozen dataclass models that immutability.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional
from uuid import UUID

from .purchase import TransactionStep
from .time import require_utc_timestamp


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TransactionLogEntry:
    purchase_id: UUID
    level: LogLevel
    step: TransactionStep
    message: str
    details: Mapping[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    log_id: Optional[UUID] = None

    def __post_init__(self) -> None:
        if self.created_at is not None:
            require_utc_timestamp("created_at", self.created_at)


__all__ = ["LogLevel", "TransactionLogEntry"]
