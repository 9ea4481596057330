"""
Module: procurement_kernel.models.audit_event
Responsibility: ORM persistence for the append-only audit trail.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit rows are append-only; SqlAuditLog never updates or deletes.
    - seq is monotonically increasing per database.

Audit relevance:
    Every status transition, receipt, posting and recovery decision
    produces an AuditEvent carrying before/after snapshots.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Purchase-order lifecycle
    STATUS_CHANGED = "status_changed"
    GOODS_RECEIVED = "goods_received"

    # Valuation
    STOCK_UPDATED = "stock_updated"
    JOURNAL_POSTED = "journal_posted"

    # Recovery
    ERROR_RECOVERY_INITIATED = "error_recovery_initiated"
    ROLLBACK_INITIATED = "rollback_initiated"
    PARTIAL_RECOVERY = "partial_recovery"
    OPERATION_QUEUED = "operation_queued"
    ITEMS_SKIPPED = "items_skipped"


class AuditEvent(Base):
    """
    One audit record.

    Non-goals:
        - No hash chain; tamper evidence is the storage layer's concern.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "purchase_order", "journal_entry", "stock_level"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    actor: Mapped[str | None] = mapped_column(String(100), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    before_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    after_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.seq} {self.action} on {self.entity_type}:{self.entity_id}>"
