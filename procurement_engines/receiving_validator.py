"""
procurement_engines.receiving_validator -- Receiving action checks.

Responsibility:
    Validate a candidate receiving event (one or many line items) against
    its purchase order: status gating, unknown products, quantity sign,
    over-receiving with tolerance, expiry and condition, duplicate lines
    and the event's received date.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock.
    "Today" is ``ReceivingContext.as_of``.

Invariants enforced:
    - An order outside {approved, sent_to_supplier, partially_received}
      yields INVALID_RECEIVING_STATUS and no per-line checks run.
    - remaining = ordered - previously_received, where previously_received
      also counts earlier lines for the same product in this event.
    - received == remaining passes silently; over-receiving under
      ``allow_over_receiving`` is a warning, never an error.
    - Result is valid iff it holds zero errors.

Failure modes (ValidationError codes):
    INVALID_RECEIVING_STATUS, PRODUCT_NOT_IN_ORDER,
    INVALID_RECEIVED_QUANTITY, OVER_RECEIVING, EXPIRED_PRODUCT,
    DUPLICATE_RECEIVING_LINE, INVALID_RECEIVED_DATE, FUTURE_RECEIVED_DATE.
    Warnings: OVER_RECEIVING_TOLERANCE_EXCEEDED, NEAR_EXPIRY_PRODUCT,
    DAMAGED_GOODS.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import timedelta
from decimal import Decimal

from procurement_kernel.domain.purchase_order import (
    ItemCondition,
    PurchaseOrder,
    PurchaseOrderStatus,
    ReceivingContext,
    ReceivingLineItem,
)
from procurement_kernel.domain.validation import (
    ValidationError,
    ValidationResult,
    error,
    warning,
)
from procurement_kernel.domain.values import (
    HUNDRED,
    ZERO,
    as_decimal,
    format_percent,
    format_quantity as fq,
)
from procurement_kernel.domain.workflow import RECEIVABLE_STATUSES
from procurement_kernel.logging_config import get_logger
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.receiving_validator")

DEFAULT_NEAR_EXPIRY_DAYS = 30


def cumulative_received(
    order: PurchaseOrder,
    line_items: Sequence[ReceivingLineItem],
    previously_received: Mapping[str, Decimal] | None = None,
) -> dict[str, Decimal]:
    """
    Total received per ordered product once this event is applied.

    ``previously_received`` overrides the per-line value when given and
    also covers products with no line in this event.
    """
    prior: dict[str, Decimal] = {
        item.product_id: as_decimal((previously_received or {}).get(item.product_id, ZERO))
        for item in order.items
    }
    if previously_received is None:
        for line in line_items:
            if line.product_id in prior:
                prior[line.product_id] = max(prior[line.product_id], line.previously_received)

    totals = dict(prior)
    for line in line_items:
        if line.product_id in totals and line.received_quantity > ZERO:
            totals[line.product_id] += line.received_quantity
    return totals


class ReceivingValidator:
    """
    Pure validator for receiving events.

    Contract:
        ``validate_receiving(order, line_items, context)`` never raises for
        bad input and never reads a clock.

    Guarantees:
        - Status gating short-circuits.
        - OVER_RECEIVING suggestions state the exact remaining quantity.

    Non-goals:
        - Does not check the actor's role; that is a transition rule.
        - Does not re-read previously-received quantities.
    """

    def __init__(
        self,
        near_expiry_days: int = DEFAULT_NEAR_EXPIRY_DAYS,
        default_tolerance_percentage: Decimal = ZERO,
    ) -> None:
        self.near_expiry_days = near_expiry_days
        self.default_tolerance_percentage = as_decimal(
            default_tolerance_percentage, "default_tolerance_percentage",
        )

    @traced_engine("receiving_validator", "1.0", fingerprint_fields=("line_items", "context"))
    def validate_receiving(
        self,
        order: PurchaseOrder,
        line_items: Sequence[ReceivingLineItem],
        context: ReceivingContext,
    ) -> ValidationResult:
        """
        Validate one receiving event against ``order``.

        Postconditions:
            is_valid iff zero errors; can_proceed_with_warnings iff zero
            errors and at least one warning.
        """
        if order.status not in RECEIVABLE_STATUSES:
            logger.info(
                "receiving_status_rejected",
                extra={"order_id": order.id, "status": order.status.value},
            )
            return ValidationResult.failure(error(
                "INVALID_RECEIVING_STATUS",
                f"Cannot receive items for purchase order in {order.status.value} status",
                "Ensure purchase order is approved",
                "Check purchase order status",
                field="status",
            ))

        issues: list[ValidationError] = []
        seen_batches: set[tuple[str, str | None]] = set()
        received_in_event: dict[str, Decimal] = {}

        for index, line in enumerate(line_items):
            issues.extend(self._check_line(order, line, index, context, seen_batches, received_in_event))

        issues.extend(self._check_received_date(order, context))

        result = ValidationResult.from_issues(issues)
        logger.info(
            "receiving_validated",
            extra={
                "order_id": order.id,
                "line_count": len(line_items),
                "is_valid": result.is_valid,
                "error_codes": list(result.error_codes),
                "warning_codes": list(result.warning_codes),
            },
        )
        return result

    def _check_line(
        self,
        order: PurchaseOrder,
        line: ReceivingLineItem,
        index: int,
        context: ReceivingContext,
        seen_batches: set[tuple[str, str | None]],
        received_in_event: dict[str, Decimal],
    ) -> list[ValidationError]:
        prefix = f"line_items[{index}]"
        order_item = order.item_for(line.product_id)
        if order_item is None:
            return [error(
                "PRODUCT_NOT_IN_ORDER",
                f"Product {line.product_name or line.product_id} is not in the original purchase order",
                "Remove invalid product from receiving",
                "Check product ID",
                field=f"{prefix}.product_id",
                details={"product_id": line.product_id},
            )]

        issues: list[ValidationError] = []
        name = line.product_name or order_item.display_name

        batch_key = (line.product_id, line.batch_number)
        if batch_key in seen_batches:
            batch = line.batch_number or "no batch"
            issues.append(error(
                "DUPLICATE_RECEIVING_LINE",
                f"Duplicate receiving line for {name} ({batch})",
                "Combine duplicate lines into one",
                "Use distinct batch numbers for separate lots",
                field=f"{prefix}.batch_number",
            ))
        seen_batches.add(batch_key)

        received = line.received_quantity
        if received <= ZERO:
            issues.append(error(
                "INVALID_RECEIVED_QUANTITY",
                f"Invalid received quantity for {name}",
                "Enter a positive quantity",
                "Remove item if nothing received",
                field=f"{prefix}.received_quantity",
            ))
        else:
            earlier = received_in_event.get(line.product_id, ZERO)
            previously = line.previously_received + earlier
            issues.extend(self._check_over_receiving(
                name, order_item.quantity, previously, received, context, prefix,
            ))
            received_in_event[line.product_id] = earlier + received

        issues.extend(self._check_expiry(name, line, context, prefix))

        if line.condition == ItemCondition.DAMAGED:
            issues.append(warning(
                "DAMAGED_GOODS",
                f"Damaged goods received for {name}",
                "Document damage with photos",
                "Contact supplier about damaged goods",
                "Consider partial acceptance",
                field=f"{prefix}.condition",
            ))
        return issues

    def _check_over_receiving(
        self,
        name: str,
        ordered: Decimal,
        previously: Decimal,
        received: Decimal,
        context: ReceivingContext,
        prefix: str,
    ) -> list[ValidationError]:
        remaining = ordered - previously
        if received <= remaining:
            return []

        details = {
            "ordered": str(ordered),
            "previously_received": str(previously),
            "received": str(received),
            "remaining": str(remaining),
        }
        if not context.allow_over_receiving:
            return [error(
                "OVER_RECEIVING",
                f"Over-receiving detected for {name}. Ordered: {fq(ordered)}, "
                f"Already received: {fq(previously)}, Attempting to receive: {fq(received)}",
                f"Maximum receivable quantity: {fq(max(remaining, ZERO))}",
                "Reduce received quantity",
                "Enable over-receiving if intentional",
                field=f"{prefix}.received_quantity",
                details=details,
            )]

        tolerance = context.tolerance_percentage
        if tolerance is None:
            tolerance = self.default_tolerance_percentage

        if remaining <= ZERO:
            # Nothing outstanding: any quantity is unbounded overshoot.
            over_label = "nothing outstanding"
        else:
            over_pct = (received - remaining) / remaining * HUNDRED
            if over_pct <= tolerance:
                return []
            over_label = f"{format_percent(over_pct)}% over"
            details["over_percentage"] = str(over_pct)

        return [warning(
            "OVER_RECEIVING_TOLERANCE_EXCEEDED",
            f"Over-receiving tolerance exceeded for {name} ({over_label})",
            "Verify quantity is correct",
            "Document reason for over-receiving",
            field=f"{prefix}.received_quantity",
            details={**details, "tolerance_percentage": str(tolerance)},
        )]

    def _check_expiry(
        self,
        name: str,
        line: ReceivingLineItem,
        context: ReceivingContext,
        prefix: str,
    ) -> list[ValidationError]:
        if line.expiry_date is None:
            return []
        if line.expiry_date <= context.as_of:
            return [error(
                "EXPIRED_PRODUCT",
                f"Product {name} is already expired",
                "Do not receive expired products",
                "Contact supplier for replacement",
                field=f"{prefix}.expiry_date",
            )]
        if line.expiry_date <= context.as_of + timedelta(days=self.near_expiry_days):
            return [warning(
                "NEAR_EXPIRY_PRODUCT",
                f"Product {name} expires within {self.near_expiry_days} days",
                "Check expiry date is correct",
                "Plan for quick sale/use",
                field=f"{prefix}.expiry_date",
            )]
        return []

    @staticmethod
    def _check_received_date(
        order: PurchaseOrder,
        context: ReceivingContext,
    ) -> list[ValidationError]:
        issues: list[ValidationError] = []
        if context.received_date < order.order_date:
            issues.append(error(
                "INVALID_RECEIVED_DATE",
                "Received date cannot be before order date",
                "Set received date after order date",
                field="received_date",
            ))
        if context.received_date > context.as_of:
            issues.append(error(
                "FUTURE_RECEIVED_DATE",
                "Received date cannot be in the future",
                "Set received date to today or earlier",
                field="received_date",
            ))
        return issues

    def projected_status(
        self,
        order: PurchaseOrder,
        line_items: Sequence[ReceivingLineItem],
        previously_received: Mapping[str, Decimal] | None = None,
    ) -> PurchaseOrderStatus:
        """Status the order moves to once ``line_items`` are received."""
        totals = cumulative_received(order, line_items, previously_received)
        if order.items and all(totals[item.product_id] >= item.quantity for item in order.items):
            return PurchaseOrderStatus.FULLY_RECEIVED
        return PurchaseOrderStatus.PARTIALLY_RECEIVED
