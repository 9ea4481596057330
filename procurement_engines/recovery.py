"""
procurement_engines.recovery -- Pure recovery planning.

Responsibility:
    The fixed strategy table mapping error codes to ordered recovery
    actions and retry ceilings, plus the pure computations the
    orchestrator needs: backoff delay, rollback steps per operation type,
    and the valid/invalid split used by partial recovery.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by procurement_services.recovery_orchestrator.

Invariants enforced:
    - An error code appears in at most one strategy row.
    - retry_delay_ms(n) == min(base * 2**(n-1), cap); never sleeps.
    - The effective ceiling is the strategy's max_retries, lowered (never
      raised) by a caller-supplied max_retries.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from procurement_kernel.domain.purchase_order import PurchaseOrder, ReceivingContext, ReceivingLineItem
from procurement_kernel.domain.recovery import (
    FailureCategory,
    OperationType,
    RecoveryAction,
    RecoveryActionType,
    RecoveryContext,
    RecoveryStrategy,
)
from procurement_kernel.domain.values import ZERO, as_decimal, format_quantity

A = RecoveryActionType

DEFAULT_BACKOFF_BASE_MS = 1000
DEFAULT_BACKOFF_CAP_MS = 10000
DEFAULT_PARTIAL_RECOVERY_RATIO = Decimal("1.5")

_RETRY_AFTER_DELAY = RecoveryAction(
    A.RETRY_OPERATION, "Retry the operation after a short delay",
    auto_execute=True, priority=1, estimated_time="5-10 seconds",
)
_QUEUE_OFF_PEAK = RecoveryAction(
    A.QUEUE_FOR_LATER, "Queue the operation for retry during off-peak hours",
    auto_execute=False, priority=2, estimated_time="1-2 hours",
)

RECOVERY_STRATEGIES: tuple[RecoveryStrategy, ...] = (
    RecoveryStrategy(
        name="infrastructure",
        error_codes=frozenset({
            "DATABASE_ERROR",
            "CONNECTION_TIMEOUT",
            "DEADLOCK_DETECTED",
            "SCHEDULER_UNAVAILABLE",
        }),
        category=FailureCategory.INFRASTRUCTURE,
        actions=(_RETRY_AFTER_DELAY, _QUEUE_OFF_PEAK),
        auto_recoverable=True,
        max_retries=3,
    ),
    RecoveryStrategy(
        name="receiving_validation",
        error_codes=frozenset({
            "OVER_RECEIVING",
            "INVALID_RECEIVED_QUANTITY",
            "PRODUCT_NOT_IN_ORDER",
        }),
        category=FailureCategory.VALIDATION,
        actions=(
            RecoveryAction(
                A.PARTIAL_RECOVERY, "Process valid items and flag invalid ones for review",
                auto_execute=False, priority=1, estimated_time="Immediate",
                prerequisites=("User confirmation required",),
            ),
            RecoveryAction(
                A.MANUAL_INTERVENTION, "Require manual review and correction",
                auto_execute=False, priority=2, estimated_time="15-30 minutes",
            ),
        ),
        auto_recoverable=False,
        max_retries=1,
    ),
    RecoveryStrategy(
        name="stock_consistency",
        error_codes=frozenset({
            "INSUFFICIENT_STOCK",
            "NEGATIVE_STOCK",
            "CONCURRENT_MODIFICATION",
        }),
        category=FailureCategory.CONSISTENCY,
        actions=(
            RecoveryAction(
                A.RETRY_OPERATION, "Refresh stock data and retry calculation",
                auto_execute=True, priority=1, estimated_time="2-5 seconds",
            ),
            RecoveryAction(
                A.PARTIAL_RECOVERY, "Process available quantities and queue remaining",
                auto_execute=False, priority=2, estimated_time="5-10 minutes",
            ),
        ),
        auto_recoverable=True,
        max_retries=2,
    ),
    RecoveryStrategy(
        name="authorization",
        error_codes=frozenset({
            "INSUFFICIENT_PERMISSIONS",
            "APPROVAL_LIMIT_EXCEEDED",
            "AUTHENTICATION_REQUIRED",
            "INSUFFICIENT_APPROVAL_PERMISSION",
            "NO_APPROVAL_PERMISSION",
            "SELF_APPROVAL_NOT_ALLOWED",
            "INSUFFICIENT_CANCELLATION_PERMISSION",
            "INSUFFICIENT_RECEIVING_PERMISSION",
        }),
        category=FailureCategory.POLICY,
        actions=(
            RecoveryAction(
                A.MANUAL_INTERVENTION, "Require authorization from appropriate user role",
                auto_execute=False, priority=1, estimated_time="10-30 minutes",
                prerequisites=("Contact manager or admin", "Verify user permissions"),
            ),
        ),
        auto_recoverable=False,
        max_retries=0,
    ),
    RecoveryStrategy(
        name="workflow",
        error_codes=frozenset({
            "INVALID_STATUS_TRANSITION",
            "ALREADY_APPROVED",
            "CANNOT_CANCEL_RECEIVED_ORDER",
        }),
        category=FailureCategory.VALIDATION,
        actions=(
            RecoveryAction(
                A.ROLLBACK_CHANGES, "Revert to previous valid state",
                auto_execute=True, priority=1, estimated_time="5-10 seconds",
            ),
            RecoveryAction(
                A.MANUAL_INTERVENTION, "Review business rules and determine appropriate action",
                auto_execute=False, priority=2, estimated_time="15-45 minutes",
            ),
        ),
        auto_recoverable=True,
        max_retries=1,
    ),
    RecoveryStrategy(
        name="integrity",
        error_codes=frozenset({"UNBALANCED_ENTRY", "ROLLBACK_FAILED"}),
        category=FailureCategory.INTEGRITY,
        actions=(
            RecoveryAction(
                A.MANUAL_INTERVENTION, "Escalate integrity violation for manual review",
                auto_execute=False, priority=1, estimated_time="1-4 hours",
                prerequisites=("Contact system administrator", "Check data integrity"),
            ),
        ),
        auto_recoverable=False,
        max_retries=0,
        critical=True,
    ),
)

STRATEGY_BY_CODE: dict[str, RecoveryStrategy] = {
    code: strategy for strategy in RECOVERY_STRATEGIES for code in strategy.error_codes
}

ROLLBACK_STEPS: dict[OperationType, tuple[str, ...]] = {
    OperationType.RECEIVING: (
        "Reverse inventory adjustments",
        "Remove receiving records",
        "Reset purchase order status",
        "Clear receiving timestamps",
    ),
    OperationType.APPROVAL: (
        "Reset approval status",
        "Clear approval timestamp",
        "Remove approval user reference",
    ),
    OperationType.STATUS_CHANGE: (
        "Revert to previous status",
        "Remove status change audit entry",
    ),
}
GENERIC_ROLLBACK_STEPS: tuple[str, ...] = ("Generic rollback procedures apply",)


def find_strategy(code: str | None) -> RecoveryStrategy | None:
    return STRATEGY_BY_CODE.get(code) if code else None


def category_for(code: str | None) -> FailureCategory:
    strategy = find_strategy(code)
    return strategy.category if strategy else FailureCategory.UNKNOWN


def available_actions(code: str | None) -> tuple[RecoveryAction, ...]:
    """Candidate actions for ``code`` in priority order; empty when unmapped."""
    strategy = find_strategy(code)
    if strategy is None:
        return ()
    return tuple(sorted(strategy.actions, key=lambda a: a.priority))


def can_auto_recover(code: str | None) -> bool:
    strategy = find_strategy(code)
    return bool(strategy and strategy.auto_recoverable)


def estimate_recovery_time(code: str | None) -> str:
    strategy = find_strategy(code)
    if strategy is None:
        return "Unknown"
    return strategy.primary_action.estimated_time or "Unknown"


def retry_ceiling(strategy: RecoveryStrategy, context: RecoveryContext) -> int:
    if context.max_retries is None:
        return strategy.max_retries
    return min(context.max_retries, strategy.max_retries)


def retry_delay_ms(
    attempt_number: int,
    base_ms: int = DEFAULT_BACKOFF_BASE_MS,
    cap_ms: int = DEFAULT_BACKOFF_CAP_MS,
) -> int:
    """Exponential backoff: 1000, 2000, 4000, 8000, 10000, 10000, ..."""
    if attempt_number < 1:
        raise ValueError(f"attempt_number must be >= 1, got {attempt_number}")
    return min(base_ms * 2 ** (attempt_number - 1), cap_ms)


def rollback_steps(operation_type: OperationType | str) -> tuple[str, ...]:
    try:
        return ROLLBACK_STEPS.get(OperationType(operation_type), GENERIC_ROLLBACK_STEPS)
    except ValueError:
        return GENERIC_ROLLBACK_STEPS


@dataclass(frozen=True)
class RejectedLine:
    """A receiving line set aside by partial recovery, with the reason."""

    line: ReceivingLineItem
    reason: str

    @property
    def product_id(self) -> str:
        return self.line.product_id


def split_for_partial_recovery(
    order: PurchaseOrder | None,
    line_items: Sequence[ReceivingLineItem],
    max_ratio: Decimal = DEFAULT_PARTIAL_RECOVERY_RATIO,
    context: ReceivingContext | None = None,
) -> tuple[tuple[ReceivingLineItem, ...], tuple[RejectedLine, ...]]:
    """
    Split receiving lines into those safe to process and those needing review.

    A line is valid when its product is on the order, its quantity is
    positive, and it does not exceed ``max_ratio`` times the quantity
    still outstanding.  With a ``context`` the receiving rules tighten:
    expired lines are rejected, and when over-receiving is not allowed
    the bound is the outstanding quantity itself.  Earlier accepted lines
    for the same product count against the outstanding quantity.
    """
    max_ratio = as_decimal(max_ratio, "max_ratio")
    if context is not None and not context.allow_over_receiving:
        max_ratio = Decimal("1")
    valid: list[ReceivingLineItem] = []
    invalid: list[RejectedLine] = []
    accepted: dict[str, Decimal] = {}
    for line in line_items:
        item = order.item_for(line.product_id) if order is not None else None
        if item is None:
            invalid.append(RejectedLine(line, f"Product {line.product_id} is not in the purchase order"))
            continue
        if line.received_quantity <= ZERO:
            invalid.append(RejectedLine(line, "Received quantity must be greater than zero"))
            continue
        if context is not None and line.expiry_date is not None and line.expiry_date <= context.as_of:
            invalid.append(RejectedLine(line, f"Product {line.product_id} is already expired"))
            continue
        earlier = accepted.get(line.product_id, ZERO)
        outstanding = item.quantity - line.previously_received - earlier
        bound = outstanding * max_ratio
        if line.received_quantity > bound:
            invalid.append(RejectedLine(
                line,
                f"Received quantity {format_quantity(line.received_quantity)} exceeds "
                f"the recoverable bound of {format_quantity(max(bound, ZERO))}",
            ))
            continue
        accepted[line.product_id] = earlier + line.received_quantity
        valid.append(line)
    return tuple(valid), tuple(invalid)
