"""
Transaction logger.

Best-effort audit trail for purchases. Each call appends one entry per purchase
id to the transaction log repository and mirrors it to the Python logger.
A failure to persist is reported and swallowed: logging must never abort or
change the outcome of a checkout.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from domain.purchase import TransactionStep
from domain.transaction_log import LogLevel, TransactionLogEntry
from repositories.base import TransactionLogRepository

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class TransactionLogger:
    def __init__(self, repository: TransactionLogRepository) -> None:
        self._repository = repository

    def log(
        self,
        purchase_id: UUID,
        level: LogLevel,
        step: TransactionStep,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        details = dict(details or {})

        logger.log(
            _PY_LEVELS[level],
            message,
            extra={"purchase_id": str(purchase_id), "step": step.value, "details": details},
        )

        try:
            self._repository.append(
                TransactionLogEntry(
                    purchase_id=purchase_id,
                    level=level,
                    step=step,
                    message=message,
                    details=details,
                )
            )
        except Exception:
            logger.warning(
                "Failed to write transaction log entry",
                exc_info=True,
                extra={"purchase_id": str(purchase_id), "step": step.value},
            )

    def log_many(
        self,
        purchase_ids: Iterable[UUID],
        level: LogLevel,
        step: TransactionStep,
        message: str,
        details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        for purchase_id in purchase_ids:
            self.log(purchase_id, level, step, message, details)

    def info(self, purchase_ids: Iterable[UUID], step: TransactionStep, message: str, **details: Any) -> None:
        self.log_many(purchase_ids, LogLevel.INFO, step, message, details)

    def warning(self, purchase_ids: Iterable[UUID], step: TransactionStep, message: str, **details: Any) -> None:
        self.log_many(purchase_ids, LogLevel.WARNING, step, message, details)

    def error(self, purchase_ids: Iterable[UUID], step: TransactionStep, message: str, **details: Any) -> None:
        self.log_many(purchase_ids, LogLevel.ERROR, step, message, details)


__all__ = ["TransactionLogger"]
