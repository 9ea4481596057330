"""
procurement_engines.stock_guard -- Stock quantity invariant checks.

Responsibility:
    Validate requested and signed stock changes against a product's
    current on-hand quantity and its StockPolicy (prevent-negative,
    low-stock threshold).  Supports a bulk mode that consolidates
    duplicate product lines before checking, and a detector for several
    lines against one product whose combined quantity exceeds stock.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procurement_kernel.domain.

Invariants enforced:
    - Never raises for bad input; every outcome is a ValidationResult.
    - Bulk mode on [(p1, 3), (p1, 4)] yields exactly the same result as a
      single check of (p1, 7).
    - INSUFFICIENT_STOCK messages carry both "Available: <n>" and
      "Requested: <n>".

Failure modes:
    - INVALID_QUANTITY: requested quantity <= 0.
    - INSUFFICIENT_STOCK: stock < requested, prevent-negative off.
    - NEGATIVE_STOCK: the operation would take stock below zero with
      prevent-negative on.
    - PRODUCT_NOT_FOUND: bulk line for a product with no stock level.
    - CONCURRENT_MODIFICATION: several lines against one product exceed
      stock together.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from procurement_kernel.domain.validation import (
    ValidationError,
    ValidationResult,
    error,
    warning,
)
from procurement_kernel.domain.valuation import StockLevel, StockPolicy, StockRequest
from procurement_kernel.domain.values import ZERO, as_decimal, format_quantity as fq
from procurement_kernel.logging_config import get_logger
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.stock_guard")


def consolidate_requests(requests: Iterable[StockRequest]) -> dict[str, StockRequest]:
    """Sum quantities per product, keeping first-seen order and name."""
    consolidated: dict[str, StockRequest] = {}
    for request in requests:
        existing = consolidated.get(request.product_id)
        if existing is None:
            consolidated[request.product_id] = request
        else:
            consolidated[request.product_id] = StockRequest(
                product_id=request.product_id,
                quantity=existing.quantity + request.quantity,
                product_name=existing.product_name or request.product_name,
            )
    return consolidated


class StockGuard:
    """
    Pure checker for single-product stock invariants.

    Contract:
        No I/O, no clock, fully deterministic.

    Guarantees:
        - ``check_quantity`` validates a consumption of ``requested``
          units from ``current_stock``.
        - ``check_stock_change`` validates a signed delta.
        - ``check_bulk`` consolidates duplicates first.

    Non-goals:
        - Does not reserve or persist stock.
    """

    @staticmethod
    def _low_stock_warning(
        name: str,
        current: Decimal,
        resulting: Decimal,
        policy: StockPolicy,
    ) -> ValidationError | None:
        threshold = policy.min_stock_threshold
        if threshold is None or resulting < ZERO or resulting > threshold:
            return None
        return warning(
            "LOW_STOCK",
            f"Low stock warning for {name}. Current stock: {fq(current)}, "
            f"Minimum: {fq(threshold)} (after this operation: {fq(resulting)})",
            "Consider reordering soon",
            f"Recommended reorder quantity: {fq(threshold * 2)}",
            details={
                "current_stock": str(current),
                "resulting_stock": str(resulting),
                "minimum": str(threshold),
            },
        )

    @traced_engine("stock_guard", "1.0", fingerprint_fields=("current_stock", "requested_quantity"))
    def check_quantity(
        self,
        current_stock: Decimal,
        requested_quantity: Decimal,
        policy: StockPolicy | None = None,
        product_name: str = "product",
    ) -> ValidationResult:
        """
        Check that ``requested_quantity`` units can be taken from stock.

        Postconditions:
            Result is invalid iff the quantity is non-positive or exceeds
            ``current_stock``.  A low-stock warning never blocks.
        """
        policy = policy or StockPolicy()
        current = as_decimal(current_stock, "current_stock")
        requested = as_decimal(requested_quantity, "requested_quantity")

        errors: list[ValidationError] = []
        warnings: list[ValidationError] = []

        if requested <= ZERO:
            errors.append(error(
                "INVALID_QUANTITY",
                f"Quantity must be greater than zero for {product_name} (got {fq(requested)})",
                "Enter a positive quantity greater than zero",
                field="quantity",
            ))
            return ValidationResult(errors=tuple(errors))

        details = {"available": str(current), "requested": str(requested)}
        if current < requested:
            if policy.prevent_negative:
                errors.append(error(
                    "NEGATIVE_STOCK",
                    f"Operation would result in negative stock for {product_name}. "
                    f"Available: {fq(current)}, Requested: {fq(requested)}",
                    "Reduce the quantity to prevent negative stock",
                    "Verify current stock levels are accurate",
                    "Check for pending stock movements",
                    field="quantity",
                    details=details,
                ))
            else:
                suggestions = (
                    (f"Reduce quantity to {fq(current)} or less",
                     "Check if more stock is available in other locations")
                    if current > ZERO
                    else ("Product is out of stock", "Consider reordering this product")
                )
                errors.append(error(
                    "INSUFFICIENT_STOCK",
                    f"Not enough stock for {product_name}. "
                    f"Available: {fq(current)}, Requested: {fq(requested)}",
                    *suggestions,
                    field="quantity",
                    details=details,
                ))
        else:
            low = self._low_stock_warning(product_name, current, current - requested, policy)
            if low is not None:
                warnings.append(low)

        if errors:
            logger.info(
                "stock_check_failed",
                extra={"product_name": product_name, "codes": [e.code for e in errors]},
            )
        return ValidationResult(errors=tuple(errors), warnings=tuple(warnings))

    @traced_engine("stock_guard", "1.0", fingerprint_fields=("current_stock", "quantity_change"))
    def check_stock_change(
        self,
        current_stock: Decimal,
        quantity_change: Decimal,
        policy: StockPolicy | None = None,
        product_name: str = "product",
    ) -> ValidationResult:
        """
        Check a signed stock delta (positive for receipts, negative for issues).

        Postconditions:
            NEGATIVE_STOCK iff prevent-negative is set and the result
            would be below zero.  Low-stock warning on the resulting level.
        """
        policy = policy or StockPolicy()
        current = as_decimal(current_stock, "current_stock")
        change = as_decimal(quantity_change, "quantity_change")
        resulting = current + change

        if policy.prevent_negative and resulting < ZERO:
            return ValidationResult.failure(error(
                "NEGATIVE_STOCK",
                f"Stock update would result in negative stock for {product_name}. "
                f"Current: {fq(current)}, Change: {fq(change)}, Result: {fq(resulting)}",
                f"Maximum reduction allowed: {fq(current)}",
                "Verify the stock change amount",
                "Check if there are pending stock movements",
                field="quantity_change",
                details={"current": str(current), "change": str(change)},
            ))

        low = self._low_stock_warning(product_name, current, resulting, policy)
        return ValidationResult.success(low) if low is not None else ValidationResult.success()

    def check_bulk(
        self,
        requests: Iterable[StockRequest],
        stock_levels: Mapping[str, StockLevel],
        policy: StockPolicy | None = None,
        policies: Mapping[str, StockPolicy] | None = None,
    ) -> ValidationResult:
        """
        Consolidate duplicate product lines, then check each product once.

        ``policies`` overrides ``policy`` per product id.
        """
        result = ValidationResult.success()
        for product_id, request in consolidate_requests(requests).items():
            level = stock_levels.get(product_id)
            name = request.product_name or (level.product_name if level else "") or product_id
            if level is None:
                result = result.merge(ValidationResult.failure(error(
                    "PRODUCT_NOT_FOUND",
                    f"Product {name} not found or has been removed",
                    "Refresh the product list",
                    "Verify the product barcode or ID",
                    details={"product_id": product_id, "requested": str(request.quantity)},
                )))
                continue
            product_policy = (policies or {}).get(product_id, policy)
            result = result.merge(
                self.check_quantity(level.quantity, request.quantity, product_policy, name)
            )
        return result

    def detect_concurrent_modification(
        self,
        requests: Iterable[StockRequest],
        stock_levels: Mapping[str, StockLevel],
    ) -> ValidationResult:
        """
        Flag products referenced by several lines whose combined quantity
        exceeds stock, even when every single line fits.
        """
        requests = list(requests)
        line_counts: dict[str, int] = {}
        for request in requests:
            line_counts[request.product_id] = line_counts.get(request.product_id, 0) + 1

        errors: list[ValidationError] = []
        for product_id, request in consolidate_requests(requests).items():
            level = stock_levels.get(product_id)
            if line_counts[product_id] < 2 or level is None:
                continue
            if level.quantity < request.quantity:
                name = request.product_name or level.product_name or product_id
                errors.append(error(
                    "CONCURRENT_MODIFICATION",
                    f"Multiple entries for {name} exceed available stock. "
                    f"Available: {fq(level.quantity)}, Requested: {fq(request.quantity)} "
                    f"across {line_counts[product_id]} lines",
                    "Consolidate duplicate entries",
                    f"Reduce total quantity to {fq(level.quantity)} or less",
                    details={
                        "product_id": product_id,
                        "line_count": line_counts[product_id],
                        "available": str(level.quantity),
                        "requested": str(request.quantity),
                    },
                ))
        return ValidationResult(errors=tuple(errors))
