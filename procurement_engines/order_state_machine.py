"""
procurement_engines.order_state_machine -- Purchase-order lifecycle rules.

Responsibility:
    Validate and authorize status transitions (creation -> approval ->
    receiving -> closure) against the fixed transition table, role sets
    and per-role approval ceilings in ``procurement_kernel.domain.workflow``.
    Also validates a new order at creation time and applies an approved
    transition by producing a new order snapshot plus a transition record.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consulted before any receiving action is allowed.

Invariants enforced:
    - Closure: any (current, target) pair outside ORDER_TRANSITIONS yields
      INVALID_STATUS_TRANSITION, and ``apply_transition`` returns the input
      order unchanged.
    - Orders are never mutated; ``apply_transition`` uses
      ``dataclasses.replace``.
    - Rule checks do not short-circuit on the table check, so a single
      result lists every reason a transition is refused.

Failure modes (as ValidationError codes, never raised):
    INVALID_STATUS_TRANSITION, INSUFFICIENT_APPROVAL_PERMISSION,
    APPROVAL_LIMIT_EXCEEDED, NO_APPROVAL_PERMISSION, SELF_APPROVAL_NOT_ALLOWED,
    CANNOT_CANCEL_RECEIVED_ORDER, INSUFFICIENT_CANCELLATION_PERMISSION,
    INSUFFICIENT_RECEIVING_PERMISSION, NO_ITEMS, INVALID_TOTAL, NO_SUPPLIER,
    ALREADY_APPROVED, NOT_PENDING_APPROVAL, SUPPLIER_REQUIRED,
    INVALID_DELIVERY_DATE, TOTAL_MISMATCH, INVALID_PRODUCT_ID,
    INVALID_QUANTITY, INVALID_UNIT_PRICE, DUPLICATE_PRODUCTS.

Audit relevance:
    Every applied transition yields a StatusTransition record which the
    calling service hands to the audit log.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from procurement_kernel.domain.purchase_order import (
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    Role,
    StatusTransition,
    parse_role,
)
from procurement_kernel.domain.validation import (
    ValidationError,
    ValidationResult,
    error,
    warning,
)
from procurement_kernel.domain.values import (
    BALANCE_EPSILON,
    ZERO,
    as_decimal,
    format_quantity,
    round_money,
)
from procurement_kernel.domain.workflow import (
    APPROACHING_LIMIT_RATIO,
    APPROVAL_LIMITS,
    APPROVER_ROLES,
    CANCELLER_ROLES,
    ORDER_TRANSITIONS,
    RECEIVER_ROLES,
    RECEIVING_TARGETS,
    TERMINAL_ORDER_STATUSES,
)
from procurement_kernel.logging_config import get_logger
from procurement_engines.tracer import traced_engine

logger = get_logger("engines.order_state_machine")

PO_NUMBER_PATTERN = re.compile(r"^PO-\d{4}-\d{6}$")
LARGE_QUANTITY_THRESHOLD = Decimal("10000")
HIGH_VALUE_ITEM_THRESHOLD = Decimal("100000")
OLD_ORDER_DAYS = 365


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of ``apply_transition``.

    ``order`` is the new snapshot when valid, otherwise the input order.
    ``transition`` is None when the transition was refused.
    """

    validation: ValidationResult
    order: PurchaseOrder
    transition: StatusTransition | None

    @property
    def applied(self) -> bool:
        return self.transition is not None


def _money(value: Decimal) -> str:
    return f"{round_money(value):,.2f}"


def _role_name(role: Role | str | None) -> str:
    parsed = parse_role(role)
    return parsed.value if parsed is not None else str(role)


class OrderStateMachine:
    """
    Pure validator for purchase-order status transitions.

    Contract:
        No I/O, no clock.  Dates used for creation checks are passed in.

    Guarantees:
        - ``validate_transition`` reports INVALID_STATUS_TRANSITION for
          every pair outside the table.
        - ``apply_transition`` never mutates its input.

    Non-goals:
        - Not a generic workflow engine; the table is fixed.
        - Does not persist orders.
    """

    # ------------------------------------------------------------------
    # Table queries
    # ------------------------------------------------------------------

    @staticmethod
    def allowed_transitions(current: PurchaseOrderStatus | str) -> frozenset[PurchaseOrderStatus]:
        return ORDER_TRANSITIONS.get(PurchaseOrderStatus(current), frozenset())

    @classmethod
    def can_transition(
        cls,
        current: PurchaseOrderStatus | str,
        target: PurchaseOrderStatus | str,
    ) -> bool:
        return PurchaseOrderStatus(target) in cls.allowed_transitions(current)

    @staticmethod
    def is_terminal(status: PurchaseOrderStatus | str) -> bool:
        return PurchaseOrderStatus(status) in TERMINAL_ORDER_STATUSES

    # ------------------------------------------------------------------
    # Transition validation
    # ------------------------------------------------------------------

    @traced_engine("order_state_machine", "1.0", fingerprint_fields=("current", "target", "actor_role"))
    def validate_transition(
        self,
        current: PurchaseOrderStatus | str,
        target: PurchaseOrderStatus | str,
        actor_role: Role | str | None,
        order: PurchaseOrder,
        actor_id: str | None = None,
    ) -> ValidationResult:
        """
        Validate moving ``order`` from ``current`` to ``target``.

        Preconditions:
            ``current`` and ``target`` are PurchaseOrderStatus values.

        Postconditions:
            Result is valid iff the pair is in the table and every role,
            amount and data rule for the target passes.
        """
        current = PurchaseOrderStatus(current)
        target = PurchaseOrderStatus(target)
        role = parse_role(actor_role)
        issues: list[ValidationError] = []

        allowed = self.allowed_transitions(current)
        if target not in allowed:
            valid = ", ".join(sorted(s.value for s in allowed)) or "none"
            issues.append(error(
                "INVALID_STATUS_TRANSITION",
                f"Cannot transition from {current.value} to {target.value}",
                f"Valid transitions from {current.value}: {valid}",
                "Check business rules for status transitions",
                field="status",
                details={"from": current.value, "to": target.value},
            ))

        if target == PurchaseOrderStatus.PENDING_APPROVAL:
            issues.extend(self._submission_issues(order))
        elif target == PurchaseOrderStatus.APPROVED:
            issues.extend(self._approval_issues(order, role, actor_role, actor_id))
        elif target == PurchaseOrderStatus.REJECTED:
            if role not in APPROVER_ROLES:
                issues.append(self._approval_permission_error(actor_role, "reject"))
        elif target in RECEIVING_TARGETS:
            if role not in RECEIVER_ROLES:
                issues.append(error(
                    "INSUFFICIENT_RECEIVING_PERMISSION",
                    f"Role {_role_name(actor_role)} cannot receive purchase orders",
                    "Contact warehouse staff for receiving",
                    "Request receiving permissions",
                ))
        elif target == PurchaseOrderStatus.CANCELLED:
            if current == PurchaseOrderStatus.FULLY_RECEIVED:
                issues.append(error(
                    "CANNOT_CANCEL_RECEIVED_ORDER",
                    "Cannot cancel a fully received purchase order",
                    "Create a return order if needed",
                    "Contact a manager for assistance",
                ))
            if current != PurchaseOrderStatus.DRAFT and role not in CANCELLER_ROLES:
                issues.append(error(
                    "INSUFFICIENT_CANCELLATION_PERMISSION",
                    "Insufficient permissions to cancel non-draft purchase orders",
                    "Contact a manager for cancellation",
                    "Request cancellation permissions",
                ))

        result = ValidationResult.from_issues(issues)
        if not result.is_valid:
            logger.info(
                "transition_refused",
                extra={
                    "order_id": order.id,
                    "from_status": current.value,
                    "to_status": target.value,
                    "codes": list(result.error_codes),
                },
            )
        return result

    def validate_receivable(
        self,
        order: PurchaseOrder,
        actor_role: Role | str | None,
        actor_id: str | None = None,
    ) -> ValidationResult:
        """
        Can ``actor_role`` receive goods against ``order`` right now?

        An order is receivable iff ``fully_received`` is a legal target
        from its status, which holds for exactly the receivable statuses.
        """
        return self.validate_transition(
            order.status, PurchaseOrderStatus.FULLY_RECEIVED, actor_role, order, actor_id=actor_id,
        )

    @staticmethod
    def _approval_permission_error(actor_role: Role | str | None, verb: str) -> ValidationError:
        return error(
            "INSUFFICIENT_APPROVAL_PERMISSION",
            f"Role {_role_name(actor_role)} cannot {verb} purchase orders",
            "Contact a manager or admin for approval",
            "Request approval permissions",
        )

    @staticmethod
    def _submission_issues(order: PurchaseOrder) -> list[ValidationError]:
        issues: list[ValidationError] = []
        if not order.items:
            issues.append(error(
                "NO_ITEMS",
                "Purchase order must have at least one item before submission",
                "Add at least one product",
                field="items",
            ))
        if order.total <= ZERO:
            issues.append(error(
                "INVALID_TOTAL",
                "Purchase order total must be greater than zero before submission",
                "Check item quantities and prices",
                field="total",
            ))
        if not order.supplier_id:
            issues.append(error(
                "NO_SUPPLIER",
                "Purchase order must have a supplier before submission",
                "Select a supplier",
                field="supplier_id",
            ))
        return issues

    def _approval_issues(
        self,
        order: PurchaseOrder,
        role: Role | None,
        actor_role: Role | str | None,
        actor_id: str | None,
    ) -> list[ValidationError]:
        issues: list[ValidationError] = []
        if role not in APPROVER_ROLES:
            issues.append(self._approval_permission_error(actor_role, "approve"))
        issues.extend(self._self_approval_issues(order, role, actor_id))
        issues.extend(self.validate_approval_amount(order.total, actor_role).issues)
        return issues

    @staticmethod
    def _self_approval_issues(
        order: PurchaseOrder,
        role: Role | None,
        actor_id: str | None,
    ) -> list[ValidationError]:
        if actor_id is None or actor_id != order.created_by:
            return []
        if role == Role.ADMIN:
            return [warning(
                "SELF_APPROVAL_WARNING",
                "Approving your own purchase order (admin override)",
                "Consider having another admin review",
            )]
        return [error(
            "SELF_APPROVAL_NOT_ALLOWED",
            "Cannot approve your own purchase order",
            "Request approval from another manager or admin",
        )]

    @traced_engine("order_state_machine", "1.0", fingerprint_fields=("amount", "approver_role"))
    def validate_approval_amount(
        self,
        amount: Decimal,
        approver_role: Role | str | None,
    ) -> ValidationResult:
        """
        Check ``amount`` against the approver's ceiling.

        Postconditions:
            - NO_APPROVAL_PERMISSION when the ceiling is zero (or the role
              is unknown) and amount > 0.
            - APPROVAL_LIMIT_EXCEEDED when amount > ceiling > 0.
            - APPROACHING_APPROVAL_LIMIT warning at >= 80% of a positive
              ceiling.
            - Admin is unlimited.
        """
        amount = as_decimal(amount, "amount")
        role = parse_role(approver_role)
        limit = APPROVAL_LIMITS.get(role, ZERO) if role is not None else ZERO
        name = _role_name(approver_role)

        if limit is None:
            return ValidationResult.success()
        if amount > limit:
            if limit == ZERO:
                return ValidationResult.failure(error(
                    "NO_APPROVAL_PERMISSION",
                    f"Role {name} cannot approve purchase orders",
                    "Contact a manager or admin for approval",
                ))
            return ValidationResult.failure(error(
                "APPROVAL_LIMIT_EXCEEDED",
                f"Purchase amount {_money(amount)} exceeds approval limit "
                f"{_money(limit)} for {name}",
                "Request approval from higher authority",
                "Split order into smaller amounts",
                f"Contact admin for orders over {_money(limit)}",
                details={"amount": str(amount), "limit": str(limit), "role": name},
            ))
        if limit > ZERO and amount >= limit * APPROACHING_LIMIT_RATIO:
            return ValidationResult.success(warning(
                "APPROACHING_APPROVAL_LIMIT",
                f"Purchase amount {_money(amount)} is approaching approval limit {_money(limit)}",
                "Consider if amount is correct",
                "Document justification for high-value purchase",
                details={"amount": str(amount), "limit": str(limit), "role": name},
            ))
        return ValidationResult.success()

    @traced_engine("order_state_machine", "1.0", fingerprint_fields=("approver_role", "approver_id"))
    def validate_approval(
        self,
        order: PurchaseOrder,
        approver_role: Role | str | None,
        approver_id: str,
    ) -> ValidationResult:
        """
        Approval-specific checks independent of the transition table.

        ALREADY_APPROVED short-circuits every other check.
        """
        if order.status == PurchaseOrderStatus.APPROVED:
            return ValidationResult.failure(error(
                "ALREADY_APPROVED",
                "Purchase order is already approved",
                "Check purchase order status",
                "No action needed",
            ))

        issues: list[ValidationError] = []
        if order.status != PurchaseOrderStatus.PENDING_APPROVAL:
            issues.append(error(
                "NOT_PENDING_APPROVAL",
                "Purchase order must be in pending_approval status for approval "
                f"(current: {order.status.value})",
                "Submit purchase order for approval first",
            ))
        issues.extend(self._self_approval_issues(order, parse_role(approver_role), approver_id))
        issues.extend(self.validate_approval_amount(order.total, approver_role).issues)
        return ValidationResult.from_issues(issues)

    # ------------------------------------------------------------------
    # Creation-time validation
    # ------------------------------------------------------------------

    @traced_engine("order_state_machine", "1.0", fingerprint_fields=("as_of",))
    def validate_creation(self, order: PurchaseOrder, as_of: date) -> ValidationResult:
        """
        Validate a new order.

        Args:
            order: The draft order.
            as_of: Today's date, supplied by the caller.
        """
        issues: list[ValidationError] = []

        if not order.supplier_id:
            issues.append(error(
                "SUPPLIER_REQUIRED",
                "Supplier is required",
                "Select a supplier from the list",
                "Create a new supplier if needed",
                field="supplier_id",
            ))

        if not order.items:
            issues.append(error(
                "NO_ITEMS",
                "Purchase order must have at least one item",
                "Add at least one product to the purchase order",
                field="items",
            ))

        if order.order_number and not PO_NUMBER_PATTERN.match(order.order_number):
            issues.append(warning(
                "INVALID_PO_NUMBER_FORMAT",
                f"PO number {order.order_number} does not follow the standard format",
                "Expected format: PO-YYYY-NNNNNN",
                field="order_number",
            ))

        if order.order_date > as_of:
            issues.append(warning(
                "FUTURE_ORDER_DATE",
                "Order date is in the future",
                "Verify the order date is correct",
                field="order_date",
            ))
        elif order.order_date < as_of - timedelta(days=OLD_ORDER_DAYS):
            issues.append(warning(
                "OLD_ORDER_DATE",
                "Order date is more than one year in the past",
                "Verify the order date is correct",
                field="order_date",
            ))

        if (
            order.expected_delivery_date is not None
            and order.expected_delivery_date <= order.order_date
        ):
            issues.append(error(
                "INVALID_DELIVERY_DATE",
                "Expected delivery date must be after the order date",
                "Choose a delivery date after the order date",
                field="expected_delivery_date",
            ))

        issues.extend(self.validate_items(order.items).issues)

        items_total = order.items_total
        if order.items and abs(items_total - order.total) > BALANCE_EPSILON:
            issues.append(error(
                "TOTAL_MISMATCH",
                f"Order total {_money(order.total)} does not match the sum of "
                f"line items {_money(items_total)}",
                "Recalculate the order total",
                "Check item quantities and unit prices",
                field="total",
                details={"total": str(order.total), "items_total": str(items_total)},
            ))

        return ValidationResult.from_issues(issues)

    def validate_items(self, items: Iterable[PurchaseOrderItem]) -> ValidationResult:
        """Line-item checks; duplicates across lines are a hard error."""
        issues: list[ValidationError] = []
        seen: set[str] = set()
        duplicates: list[str] = []

        for index, item in enumerate(items):
            label = item.display_name
            prefix = f"items[{index}]"
            if not item.product_id:
                issues.append(error(
                    "INVALID_PRODUCT_ID",
                    f"Item {index + 1} has no product",
                    "Select a valid product",
                    field=f"{prefix}.product_id",
                ))
            elif item.product_id in seen:
                duplicates.append(item.product_id)
            else:
                seen.add(item.product_id)

            if item.quantity <= ZERO:
                issues.append(error(
                    "INVALID_QUANTITY",
                    f"Quantity for {label} must be greater than zero",
                    "Enter a positive quantity",
                    field=f"{prefix}.quantity",
                ))
            else:
                if item.quantity != item.quantity.to_integral_value():
                    issues.append(warning(
                        "NON_INTEGER_QUANTITY",
                        f"Quantity for {label} is not a whole number ({format_quantity(item.quantity)})",
                        "Verify the unit of measure",
                        field=f"{prefix}.quantity",
                    ))
                if item.quantity > LARGE_QUANTITY_THRESHOLD:
                    issues.append(warning(
                        "LARGE_QUANTITY",
                        f"Quantity for {label} is unusually large ({format_quantity(item.quantity)})",
                        "Verify the quantity is correct",
                        field=f"{prefix}.quantity",
                    ))

            if item.unit_price <= ZERO:
                issues.append(error(
                    "INVALID_UNIT_PRICE",
                    f"Unit price for {label} must be greater than zero",
                    "Enter a positive unit price",
                    field=f"{prefix}.unit_price",
                ))
            elif item.quantity > ZERO and item.total > HIGH_VALUE_ITEM_THRESHOLD:
                issues.append(warning(
                    "HIGH_VALUE_ITEM",
                    f"Line value for {label} is {_money(item.total)}",
                    "Verify pricing for high-value items",
                    "Consider additional approval",
                    field=f"{prefix}.unit_price",
                ))

        if duplicates:
            issues.append(error(
                "DUPLICATE_PRODUCTS",
                "Duplicate products in purchase order: " + ", ".join(sorted(set(duplicates))),
                "Combine duplicate lines into one",
                field="items",
                details={"product_ids": sorted(set(duplicates))},
            ))

        return ValidationResult.from_issues(issues)

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------

    def apply_transition(
        self,
        order: PurchaseOrder,
        target: PurchaseOrderStatus | str,
        actor_id: str,
        actor_role: Role | str | None,
        performed_at: datetime,
        reason: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TransitionOutcome:
        """
        Validate and, if valid, produce the new order and its transition record.

        Postconditions:
            The input ``order`` is never modified.  When refused, the
            returned ``order`` is the input and ``transition`` is None.
        """
        target = PurchaseOrderStatus(target)
        validation = self.validate_transition(
            order.status, target, actor_role, order, actor_id=actor_id,
        )
        if not validation.is_valid:
            return TransitionOutcome(validation, order, None)

        changes: dict[str, Any] = {"status": target, "updated_at": performed_at}
        if target == PurchaseOrderStatus.APPROVED:
            changes["approved_by"] = actor_id
            changes["approved_at"] = performed_at
        elif target == PurchaseOrderStatus.DRAFT:
            changes["approved_by"] = None
            changes["approved_at"] = None

        transition = StatusTransition(
            order_id=order.id,
            from_status=order.status,
            to_status=target,
            performed_by=actor_id,
            performed_at=performed_at,
            reason=reason,
            metadata=dict(metadata or {}),
        )
        logger.info(
            "transition_applied",
            extra={
                "order_id": order.id,
                "from_status": order.status.value,
                "to_status": target.value,
                "actor_id": actor_id,
            },
        )
        return TransitionOutcome(validation, replace(order, **changes), transition)

    # ------------------------------------------------------------------
    # Receiving progress
    # ------------------------------------------------------------------

    @staticmethod
    def is_fully_received(order: PurchaseOrder, received: Mapping[str, Decimal]) -> bool:
        return bool(order.items) and all(
            received.get(item.product_id, ZERO) >= item.quantity for item in order.items
        )

    def next_logical_status(
        self,
        order: PurchaseOrder,
        received: Mapping[str, Decimal],
    ) -> PurchaseOrderStatus:
        """
        Status implied by cumulative received quantities per product.

        Returns the current status when nothing has been received.
        """
        if self.is_fully_received(order, received):
            return PurchaseOrderStatus.FULLY_RECEIVED
        if any(qty > ZERO for qty in received.values()):
            return PurchaseOrderStatus.PARTIALLY_RECEIVED
        return order.status
