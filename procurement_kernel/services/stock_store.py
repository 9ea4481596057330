"""
SqlStockStore -- SQL-backed product stock store.

Responsibility:
    Reads and writes the on-hand quantity and weighted-average unit cost
    per product.  Writes are compare-and-set on ``version`` when the
    caller supplies the version it read.

Architecture position:
    Kernel > Services -- imperative shell.  Implements the ``StockStore``
    protocol from ``procurement_kernel.domain.collaborators``.

Invariants enforced:
    No two writers holding the same version can both succeed: the UPDATE
    is conditioned on ``version = expected_version`` and a zero row count
    raises ``ConcurrentModificationError``.

Failure modes:
    - ConcurrentModificationError on a stale ``expected_version``.
    - DatabaseError / ConnectionTimeoutError / DeadlockDetectedError from
      the driver.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from procurement_kernel.domain.valuation import StockLevel
from procurement_kernel.exceptions import ConcurrentModificationError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.stock_level import StockLevelRecord
from procurement_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.stock_store")


def _to_domain(record: StockLevelRecord) -> StockLevel:
    return StockLevel(
        product_id=record.product_id,
        quantity=record.quantity,
        unit_cost=record.unit_cost,
        version=record.version,
        product_name=record.product_name,
    )


class SqlStockStore(BaseService):
    """Stock levels keyed by product id."""

    def __init__(self, session: Session, actor: str = "system"):
        super().__init__(session)
        self._actor = actor

    def _record(self, product_id: str) -> StockLevelRecord | None:
        with translate_db_errors("get_stock"):
            return self.session.execute(
                select(StockLevelRecord).where(StockLevelRecord.product_id == product_id)
            ).scalar_one_or_none()

    def get_stock(self, product_id: str) -> StockLevel | None:
        record = self._record(product_id)
        return _to_domain(record) if record is not None else None

    def create_stock(
        self,
        product_id: str,
        quantity: Decimal,
        unit_cost: Decimal,
        product_name: str = "",
    ) -> StockLevel:
        """Insert the initial stock level for a product."""
        record = StockLevelRecord(
            product_id=product_id,
            product_name=product_name,
            quantity=Decimal(quantity),
            unit_cost=Decimal(unit_cost),
            version=0,
            created_by=self._actor,
        )
        with translate_db_errors("create_stock"):
            self.session.add(record)
            self.session.flush()
        logger.info(
            "stock_level_created",
            extra={"product_id": product_id, "quantity": str(quantity)},
        )
        return _to_domain(record)

    def set_stock(
        self,
        product_id: str,
        quantity: Decimal,
        unit_cost: Decimal,
        expected_version: int | None = None,
    ) -> StockLevel:
        """
        Persist a new quantity and unit cost.

        Preconditions:
            If ``expected_version`` is given it is the version the caller
            read before computing the new values.

        Postconditions:
            version is incremented by one.

        Raises:
            ConcurrentModificationError: The stored version differs from
                ``expected_version``.
        """
        record = self._record(product_id)
        if record is None:
            if expected_version not in (None, 0):
                raise ConcurrentModificationError(
                    "stock_level", product_id, expected_version, None,
                )
            return self.create_stock(product_id, quantity, unit_cost)

        current_version = record.version
        if expected_version is None:
            expected_version = current_version

        with translate_db_errors("set_stock"):
            result = self.session.execute(
                update(StockLevelRecord)
                .where(
                    StockLevelRecord.product_id == product_id,
                    StockLevelRecord.version == expected_version,
                )
                .values(
                    quantity=quantity,
                    unit_cost=unit_cost,
                    version=expected_version + 1,
                )
                .execution_options(synchronize_session="fetch")
            )

        if result.rowcount == 0:
            logger.warning(
                "stock_version_conflict",
                extra={
                    "product_id": product_id,
                    "expected_version": expected_version,
                    "actual_version": current_version,
                },
            )
            raise ConcurrentModificationError(
                "stock_level", product_id, expected_version, current_version,
            )

        logger.info(
            "stock_level_updated",
            extra={
                "product_id": product_id,
                "quantity": str(quantity),
                "unit_cost": str(unit_cost),
                "version": expected_version + 1,
            },
        )
        return StockLevel(
            product_id=product_id,
            quantity=quantity,
            unit_cost=unit_cost,
            version=expected_version + 1,
            product_name=record.product_name,
        )
