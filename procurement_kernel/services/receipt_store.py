"""
SqlReceiptStore -- append-only receiving records.

Responsibility:
    Answers "how much of this product has already been received against
    this order" and appends new receiving lines.

Architecture position:
    Kernel > Services -- imperative shell.  Implements ``ReceiptStore``.

Invariants enforced:
    Receipt lines are never updated or deleted; the previously-received
    tally is always recomputed from the rows, so a fresh read immediately
    before commit reflects every concurrently committed receipt.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import func, select

from procurement_kernel.domain.purchase_order import ReceivingLineItem
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.receipt import ReceiptLine
from procurement_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.receipt_store")


class SqlReceiptStore(BaseService):

    def get_previously_received(self, order_id: str, product_id: str) -> Decimal:
        with translate_db_errors("get_previously_received"):
            total = self.session.execute(
                select(func.coalesce(func.sum(ReceiptLine.received_quantity), 0)).where(
                    ReceiptLine.order_id == order_id,
                    ReceiptLine.product_id == product_id,
                )
            ).scalar_one()
        return Decimal(str(total))

    def received_by_product(self, order_id: str) -> dict[str, Decimal]:
        """Cumulative received quantity per product for an order."""
        with translate_db_errors("received_by_product"):
            rows = self.session.execute(
                select(ReceiptLine.product_id, func.sum(ReceiptLine.received_quantity))
                .where(ReceiptLine.order_id == order_id)
                .group_by(ReceiptLine.product_id)
            ).all()
        return {product_id: Decimal(str(qty)) for product_id, qty in rows}

    def append_receipt(
        self,
        order_id: str,
        line_items: Sequence[ReceivingLineItem],
        received_by: str,
        received_at: datetime,
    ) -> str:
        """Append one receiving event and return its receipt id."""
        receipt_id = str(uuid4())
        with translate_db_errors("append_receipt"):
            for line in line_items:
                self.session.add(
                    ReceiptLine(
                        receipt_id=receipt_id,
                        order_id=order_id,
                        product_id=line.product_id,
                        received_quantity=line.received_quantity,
                        previously_received=line.previously_received,
                        ordered_quantity=line.ordered_quantity,
                        condition=line.condition.value,
                        batch_number=line.batch_number,
                        expiry_date=line.expiry_date,
                        unit_cost=line.unit_cost,
                        received_by=received_by,
                        received_at=received_at,
                    )
                )
            self.session.flush()

        logger.info(
            "receipt_appended",
            extra={
                "receipt_id": receipt_id,
                "order_id": order_id,
                "line_count": len(line_items),
            },
        )
        return receipt_id
