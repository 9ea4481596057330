"""
Stock and valuation value objects (``procurement_kernel.domain.valuation``).

Responsibility
--------------
Types shared by StockGuard, CostingEngine and LedgerPoster: stock levels
and policies, weighted-average results, valuation adjustments and price
variance records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, ZERO I/O.

Invariants enforced
-------------------
* ``ValuationAdjustment.adjustment_amount`` is signed and equals
  ``new_total_value - old_total_value``.
* ``adjustment_type`` is INCREASE iff the amount is positive; a zero or
  negative amount is DECREASE (zero adjustments are skipped by posting).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from procurement_kernel.domain.values import ZERO, as_decimal


@dataclass(frozen=True)
class StockPolicy:
    """Per-product stock policy.

    ``min_stock_threshold`` of None disables the low-stock warning.
    """

    prevent_negative: bool = False
    min_stock_threshold: Decimal | None = None

    def __post_init__(self) -> None:
        if self.min_stock_threshold is not None:
            object.__setattr__(
                self, "min_stock_threshold",
                as_decimal(self.min_stock_threshold, "min_stock_threshold"),
            )


@dataclass(frozen=True)
class StockLevel:
    """Current on-hand quantity and weighted-average unit cost.

    ``version`` supports optimistic concurrency in the stock store.
    """

    product_id: str
    quantity: Decimal
    unit_cost: Decimal = ZERO
    version: int = 0
    product_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", as_decimal(self.quantity, "quantity"))
        object.__setattr__(self, "unit_cost", as_decimal(self.unit_cost, "unit_cost"))

    @property
    def total_value(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class StockRequest:
    """One (product, quantity) pair in a bulk stock check."""

    product_id: str
    quantity: Decimal
    product_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", as_decimal(self.quantity, "quantity"))


@dataclass(frozen=True)
class WeightedAverageResult:
    """Result of merging incoming stock into an existing cost layer.

    Monetary fields are rounded to 2 places; ``new_stock`` is exact.
    """

    new_stock: Decimal
    new_cost: Decimal
    new_total_value: Decimal
    cost_variance: Decimal
    cost_variance_percentage: Decimal
    significant_variance: bool = False


class AdjustmentType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


@dataclass(frozen=True)
class ValuationAdjustment:
    """Per-product value change consumed by LedgerPoster. Transient."""

    product_id: str
    adjustment_type: AdjustmentType
    old_cost: Decimal
    new_cost: Decimal
    stock_quantity: Decimal
    adjustment_amount: Decimal
    new_total_value: Decimal
    product_name: str = ""
    quantity_received: Decimal = ZERO

    def __post_init__(self) -> None:
        object.__setattr__(self, "adjustment_type", AdjustmentType(self.adjustment_type))
        for name in (
            "old_cost", "new_cost", "stock_quantity",
            "adjustment_amount", "new_total_value", "quantity_received",
        ):
            object.__setattr__(self, name, as_decimal(getattr(self, name), name))

    @property
    def is_zero(self) -> bool:
        return self.adjustment_amount == ZERO

    @property
    def display_name(self) -> str:
        return self.product_name or self.product_id


@dataclass(frozen=True)
class PriceVariance:
    """Actual unit cost deviating from the purchase-order unit price."""

    product_id: str
    expected_unit_cost: Decimal
    actual_unit_cost: Decimal
    quantity: Decimal
    variance_amount: Decimal
    variance_percentage: Decimal

    @property
    def is_favorable(self) -> bool:
        return self.variance_amount < ZERO
