"""
procurement_engines.costing -- Weighted-average costing.

Responsibility:
    Merge incoming stock into an existing cost layer: new stock, new
    weighted-average unit cost, new total value and cost variance.  Turn
    that into the per-product ValuationAdjustment consumed by LedgerPoster,
    and flag purchase price variances against the order's unit price.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - new_stock == current_stock + incoming_qty, exactly.
    - incoming_qty == 0  =>  new_cost == current_cost and variance == 0.
    - current_stock == 0 =>  new_cost == incoming_cost.
    - new_stock == 0     =>  new_cost == 0.
    - Money is rounded half-up to 0.01 only on the returned values.
    - adjustment_amount = new_total_value - old_total_value, signed;
      INCREASE iff positive.

Failure modes:
    - ValueError on negative quantities or costs.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from procurement_kernel.domain.purchase_order import PurchaseOrder, ReceivingLineItem
from procurement_kernel.domain.valuation import (
    AdjustmentType,
    PriceVariance,
    StockLevel,
    ValuationAdjustment,
    WeightedAverageResult,
)
from procurement_kernel.domain.values import (
    HUNDRED,
    ZERO,
    as_decimal,
    round_money,
    round_percent,
)
from procurement_kernel.logging_config import get_logger
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.costing")

DEFAULT_SIGNIFICANT_VARIANCE_PERCENTAGE = Decimal("10")
DEFAULT_PRICE_VARIANCE_PERCENTAGE = Decimal("5")


@dataclass(frozen=True)
class CostingLine:
    """One incoming quantity at a unit cost, against a product's stock level."""

    product_id: str
    current_stock: Decimal
    current_cost: Decimal
    incoming_qty: Decimal
    incoming_cost: Decimal
    product_name: str = ""

    @classmethod
    def from_stock(
        cls,
        level: StockLevel,
        incoming_qty: Decimal,
        incoming_cost: Decimal,
    ) -> CostingLine:
        return cls(
            product_id=level.product_id,
            current_stock=level.quantity,
            current_cost=level.unit_cost,
            incoming_qty=as_decimal(incoming_qty, "incoming_qty"),
            incoming_cost=as_decimal(incoming_cost, "incoming_cost"),
            product_name=level.product_name,
        )


def _require_non_negative(**values: Decimal) -> None:
    for name, value in values.items():
        if value < ZERO:
            raise ValueError(f"{name} must be >= 0, got {value}")


class CostingEngine:
    """
    Pure weighted-average cost calculator.

    Contract:
        Deterministic: same inputs, same outputs.  No I/O, no clock.

    Non-goals:
        - FIFO/LIFO layers.
        - Persisting the proposed cost; the caller writes it back.
    """

    def __init__(
        self,
        significant_variance_percentage: Decimal = DEFAULT_SIGNIFICANT_VARIANCE_PERCENTAGE,
        price_variance_percentage: Decimal = DEFAULT_PRICE_VARIANCE_PERCENTAGE,
    ) -> None:
        self.significant_variance_percentage = as_decimal(significant_variance_percentage)
        self.price_variance_percentage = as_decimal(price_variance_percentage)

    @traced_engine(
        "costing", "1.0",
        fingerprint_fields=("current_stock", "current_cost", "incoming_qty", "incoming_cost"),
    )
    def weighted_average(
        self,
        current_stock: Decimal,
        current_cost: Decimal,
        incoming_qty: Decimal,
        incoming_cost: Decimal,
    ) -> WeightedAverageResult:
        """
        Merge ``incoming_qty`` units at ``incoming_cost`` into the current layer.

        Example:
            100 @ 10.00 + 50 @ 12.00 -> 150 @ 10.67, variance 6.67%.
        """
        current_stock = as_decimal(current_stock, "current_stock")
        current_cost = as_decimal(current_cost, "current_cost")
        incoming_qty = as_decimal(incoming_qty, "incoming_qty")
        incoming_cost = as_decimal(incoming_cost, "incoming_cost")
        _require_non_negative(
            current_stock=current_stock,
            current_cost=current_cost,
            incoming_qty=incoming_qty,
            incoming_cost=incoming_cost,
        )

        new_stock = current_stock + incoming_qty
        new_total = current_stock * current_cost + incoming_qty * incoming_cost

        if new_stock == ZERO:
            exact_cost = new_cost = ZERO
        elif incoming_qty == ZERO:
            exact_cost = new_cost = current_cost
        elif current_stock == ZERO:
            exact_cost = new_cost = incoming_cost
        else:
            exact_cost = new_total / new_stock
            new_cost = round_money(exact_cost)

        variance = ZERO if incoming_qty == ZERO else exact_cost - current_cost
        if current_cost > ZERO:
            variance_pct = round_percent(variance / current_cost * HUNDRED)
        else:
            variance_pct = ZERO

        return WeightedAverageResult(
            new_stock=new_stock,
            new_cost=new_cost,
            new_total_value=round_money(new_total),
            cost_variance=round_money(variance),
            cost_variance_percentage=variance_pct,
            significant_variance=abs(variance_pct) > self.significant_variance_percentage,
        )

    def build_adjustment(self, line: CostingLine) -> tuple[WeightedAverageResult, ValuationAdjustment]:
        """Cost one line and express the value change as an adjustment."""
        result = self.weighted_average(
            line.current_stock, line.current_cost, line.incoming_qty, line.incoming_cost,
        )
        old_total = round_money(
            as_decimal(line.current_stock, "current_stock")
            * as_decimal(line.current_cost, "current_cost")
        )
        amount = result.new_total_value - old_total
        adjustment = ValuationAdjustment(
            product_id=line.product_id,
            adjustment_type=AdjustmentType.INCREASE if amount > ZERO else AdjustmentType.DECREASE,
            old_cost=line.current_cost,
            new_cost=result.new_cost,
            stock_quantity=result.new_stock,
            adjustment_amount=amount,
            new_total_value=result.new_total_value,
            product_name=line.product_name,
            quantity_received=line.incoming_qty,
        )
        if result.significant_variance:
            logger.warning(
                "significant_cost_variance",
                extra={
                    "product_id": line.product_id,
                    "old_cost": str(line.current_cost),
                    "new_cost": str(result.new_cost),
                    "variance_percentage": str(result.cost_variance_percentage),
                },
            )
        return result, adjustment

    def batch(self, lines: Iterable[CostingLine]) -> list[ValuationAdjustment]:
        """
        Cost several lines, one adjustment per product.

        A product appearing on several lines is consolidated first, so the
        result matches costing the combined quantity in one step.
        """
        return [self.build_adjustment(line)[1] for line in self.consolidate(lines)]

    @staticmethod
    def consolidate(lines: Iterable[CostingLine]) -> list[CostingLine]:
        """
        Merge lines for the same product into one line whose incoming cost
        is the quantity-weighted mean of the merged lines.  The first
        line's current stock and cost are kept.
        """
        firsts: dict[str, CostingLine] = {}
        quantities: dict[str, Decimal] = {}
        values: dict[str, Decimal] = {}
        for line in lines:
            qty = as_decimal(line.incoming_qty, "incoming_qty")
            cost = as_decimal(line.incoming_cost, "incoming_cost")
            firsts.setdefault(line.product_id, line)
            quantities[line.product_id] = quantities.get(line.product_id, ZERO) + qty
            values[line.product_id] = values.get(line.product_id, ZERO) + qty * cost

        merged: list[CostingLine] = []
        for product_id, first in firsts.items():
            qty = quantities[product_id]
            merged.append(CostingLine(
                product_id=product_id,
                current_stock=first.current_stock,
                current_cost=first.current_cost,
                incoming_qty=qty,
                incoming_cost=values[product_id] / qty if qty > ZERO else first.incoming_cost,
                product_name=first.product_name,
            ))
        return merged

    @traced_engine("costing", "1.0", fingerprint_fields=("line_items",))
    def detect_price_variances(
        self,
        order: PurchaseOrder,
        line_items: Sequence[ReceivingLineItem],
    ) -> list[PriceVariance]:
        """
        PriceVariance records for lines whose actual unit cost deviates from
        the order's unit price by more than the configured percentage.

        Lines without a unit cost or without a matching order item are
        ignored.
        """
        variances: list[PriceVariance] = []
        for line in line_items:
            item = order.item_for(line.product_id)
            if item is None or line.unit_cost is None:
                continue
            expected = item.unit_price
            per_unit = line.unit_cost - expected
            pct = per_unit / expected * HUNDRED if expected > ZERO else ZERO
            if abs(pct) <= self.price_variance_percentage:
                continue
            variances.append(PriceVariance(
                product_id=line.product_id,
                expected_unit_cost=expected,
                actual_unit_cost=line.unit_cost,
                quantity=line.received_quantity,
                variance_amount=round_money(per_unit * line.received_quantity),
                variance_percentage=round_percent(pct),
            ))
        if variances:
            logger.info(
                "price_variances_detected",
                extra={
                    "order_id": order.id,
                    "product_ids": [v.product_id for v in variances],
                },
            )
        return variances
