"""
Module: procurement_kernel.models.deferred_operation
Responsibility: ORM persistence for operations queued for later execution
    by the recovery path.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base


class DeferredOperationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class DeferredOperation(Base):
    """A queued operation; the row id is the queue id."""

    __tablename__ = "deferred_operations"

    __table_args__ = (
        Index("idx_deferred_due", "status", "scheduled_for"),
    )

    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)

    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    scheduled_for: Mapped[datetime] = mapped_column(nullable=False)

    enqueued_at: Mapped[datetime] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DeferredOperationStatus.PENDING.value,
    )

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
