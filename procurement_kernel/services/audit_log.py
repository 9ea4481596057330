"""
SqlAuditLog -- append-only audit trail writer.

Responsibility:
    Persists one AuditEvent per recorded action with before/after
    snapshots converted to JSON-safe structures.

Architecture position:
    Kernel > Services -- imperative shell.  Implements ``AuditLog``.

Invariants enforced:
    seq is allocated as MAX(seq) + 1 inside the caller's transaction; the
    UNIQUE constraint on seq rejects a concurrent duplicate.

Failure modes:
    Any failure propagates.  Callers treat audit writes as best-effort and
    log-and-continue.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.values import to_jsonable
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.audit_event import AuditEvent
from procurement_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.audit_log")


class SqlAuditLog(BaseService):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _next_seq(self) -> int:
        current = self.session.execute(select(func.max(AuditEvent.seq))).scalar()
        return (current or 0) + 1

    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: str | None,
        before_state: dict[str, Any] | None = None,
        after_state: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        with translate_db_errors("audit_record"):
            event = AuditEvent(
                seq=self._next_seq(),
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=str(getattr(action, "value", action)),
                actor=actor,
                occurred_at=self._clock.now(),
                before_state=to_jsonable(before_state),
                after_state=to_jsonable(after_state),
                details=to_jsonable(metadata),
            )
            self.session.add(event)
            self.session.flush()

        logger.debug(
            "audit_recorded",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": event.action,
                "seq": event.seq,
            },
        )

    def events_for(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        return list(
            self.session.execute(
                select(AuditEvent)
                .where(
                    AuditEvent.entity_type == entity_type,
                    AuditEvent.entity_id == str(entity_id),
                )
                .order_by(AuditEvent.seq)
            ).scalars()
        )
