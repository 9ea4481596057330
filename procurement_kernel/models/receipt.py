"""
Module: procurement_kernel.models.receipt
Responsibility: ORM persistence for receiving lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: a receipt line is never updated or deleted.  The
      previously-received tally for an order line is the SUM of its rows.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base


class ReceiptLine(Base):
    """One product line of one receiving event."""

    __tablename__ = "receipt_lines"

    __table_args__ = (
        Index("idx_receipt_order_product", "order_id", "product_id"),
        Index("idx_receipt_id", "receipt_id"),
    )

    # Groups the lines of one receiving event
    receipt_id: Mapped[str] = mapped_column(String(36), nullable=False)

    order_id: Mapped[str] = mapped_column(String(100), nullable=False)

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    received_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    previously_received: Mapped[Decimal] = mapped_column(nullable=False)

    ordered_quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    condition: Mapped[str] = mapped_column(String(10), nullable=False)

    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(nullable=True)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    received_by: Mapped[str] = mapped_column(String(100), nullable=False)

    received_at: Mapped[datetime] = mapped_column(nullable=False)
