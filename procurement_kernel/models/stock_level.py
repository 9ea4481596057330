"""
Module: procurement_kernel.models.stock_level
Responsibility: ORM persistence for per-product on-hand quantity and
    weighted-average unit cost.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per product_id.
    - version increments on every write; SqlStockStore uses it for
      optimistic concurrency (compare-and-set UPDATE).
"""

from decimal import Decimal

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import TrackedBase


class StockLevelRecord(TrackedBase):
    """Current stock and cost for one product."""

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_stock_level_product"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    product_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")

    quantity: Mapped[Decimal] = mapped_column(nullable=False)

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<StockLevel {self.product_id} qty={self.quantity} cost={self.unit_cost} v{self.version}>"
