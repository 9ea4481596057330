"""
SqlDeferredWorkScheduler -- table-backed queue for deferred operations.

Responsibility:
    Accepts operations the recovery path decided to run later and lists
    the ones that are due.  Execution belongs to whatever worker polls
    ``due()``; this class never runs anything itself.

Architecture position:
    Kernel > Services -- imperative shell.  Implements
    ``DeferredWorkScheduler``.

Failure modes:
    - SchedulerUnavailableError when the queue table cannot be written.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.values import to_jsonable
from procurement_kernel.exceptions import (
    InfrastructureError,
    SchedulerUnavailableError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.deferred_operation import (
    DeferredOperation,
    DeferredOperationStatus,
)
from procurement_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.scheduler")


class SqlDeferredWorkScheduler(BaseService):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def enqueue(
        self,
        operation_type: str,
        payload: dict[str, Any],
        scheduled_for: datetime,
    ) -> str:
        operation = DeferredOperation(
            operation_type=str(getattr(operation_type, "value", operation_type)),
            payload=to_jsonable(payload),
            scheduled_for=scheduled_for,
            enqueued_at=self._clock.now(),
            status=DeferredOperationStatus.PENDING.value,
        )
        try:
            with translate_db_errors("enqueue"):
                self.session.add(operation)
                self.session.flush()
        except InfrastructureError as e:
            raise SchedulerUnavailableError(operation.operation_type, str(e)) from e

        logger.info(
            "operation_enqueued",
            extra={
                "queue_id": str(operation.id),
                "operation_type": operation.operation_type,
                "scheduled_for": scheduled_for.isoformat(),
            },
        )
        return str(operation.id)

    def due(self, as_of: datetime) -> list[DeferredOperation]:
        """Pending operations scheduled at or before ``as_of``."""
        return list(
            self.session.execute(
                select(DeferredOperation)
                .where(
                    DeferredOperation.status == DeferredOperationStatus.PENDING.value,
                    DeferredOperation.scheduled_for <= as_of,
                )
                .order_by(DeferredOperation.scheduled_for)
            ).scalars()
        )

    def mark_completed(self, queue_id: str) -> None:
        operation = self.session.get(DeferredOperation, UUID(queue_id))
        if operation is None:
            raise KeyError(queue_id)
        operation.status = DeferredOperationStatus.COMPLETED.value
        operation.attempts += 1
        self.session.flush()
