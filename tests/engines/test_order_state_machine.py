"""
Tests for OrderStateMachine.

Covers:
- Transition table closure and terminal statuses
- Role, amount and self-approval rules
- Submission, cancellation and receiving gates
- Creation-time and line-item validation
- apply_transition immutability and approval stamping
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from procurement_engines.order_state_machine import OrderStateMachine
from procurement_kernel.domain.purchase_order import PurchaseOrderStatus as S
from procurement_kernel.domain.purchase_order import Role
from procurement_kernel.domain.workflow import ORDER_TRANSITIONS
from tests.factories import TEST_CREATOR_ID, TEST_MANAGER_ID, TODAY, make_order

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestTransitionTable:

    def setup_method(self):
        self.machine = OrderStateMachine()

    @pytest.mark.parametrize("status", [S.CANCELLED, S.CLOSED, S.REJECTED])
    def test_terminal_statuses_have_no_targets(self, status):
        assert self.machine.is_terminal(status)
        assert self.machine.allowed_transitions(status) == frozenset()

    def test_every_pair_outside_table_is_invalid(self):
        order = make_order(status=S.DRAFT)
        for current in S:
            for target in S:
                if target in ORDER_TRANSITIONS[current]:
                    continue
                result = self.machine.validate_transition(current, target, Role.ADMIN, order)
                assert result.has_code("INVALID_STATUS_TRANSITION"), (current, target)

    def test_invalid_transition_lists_valid_targets(self):
        result = self.machine.validate_transition(S.DRAFT, S.APPROVED, Role.ADMIN, make_order(status=S.DRAFT))
        issue = next(e for e in result.errors if e.code == "INVALID_STATUS_TRANSITION")
        assert issue.message == "Cannot transition from draft to approved"
        assert issue.suggestions[0] == "Valid transitions from draft: cancelled, pending_approval"

    def test_rejected_only_from_pending_approval(self):
        assert self.machine.can_transition(S.PENDING_APPROVAL, S.REJECTED)
        assert not self.machine.can_transition(S.APPROVED, S.REJECTED)


class TestApprovalTransition:

    def setup_method(self):
        self.machine = OrderStateMachine()
        self.order = make_order(
            items=(("P1", "100", "20.00"),),
            status=S.PENDING_APPROVAL,
        )

    def test_manager_approves_within_limit(self):
        result = self.machine.validate_transition(
            S.PENDING_APPROVAL, S.APPROVED, Role.MANAGER, self.order, actor_id=TEST_MANAGER_ID,
        )
        assert result.is_valid

    def test_employee_cannot_approve(self):
        result = self.machine.validate_transition(
            S.PENDING_APPROVAL, S.APPROVED, Role.EMPLOYEE, self.order, actor_id="someone",
        )
        assert result.has_code("INSUFFICIENT_APPROVAL_PERMISSION")

    def test_self_approval_blocked_for_manager(self):
        result = self.machine.validate_transition(
            S.PENDING_APPROVAL, S.APPROVED, Role.MANAGER, self.order, actor_id=TEST_CREATOR_ID,
        )
        assert result.error_codes == ("SELF_APPROVAL_NOT_ALLOWED",)

    def test_self_approval_is_a_warning_for_admin(self):
        result = self.machine.validate_transition(
            S.PENDING_APPROVAL, S.APPROVED, Role.ADMIN, self.order, actor_id=TEST_CREATOR_ID,
        )
        assert result.is_valid
        assert result.warning_codes == ("SELF_APPROVAL_WARNING",)

    def test_manager_limit_exceeded(self):
        order = make_order(items=(("P1", "1000", "60.00"),), status=S.PENDING_APPROVAL)
        result = self.machine.validate_transition(
            S.PENDING_APPROVAL, S.APPROVED, Role.MANAGER, order, actor_id=TEST_MANAGER_ID,
        )
        assert result.error_codes == ("APPROVAL_LIMIT_EXCEEDED",)

    def test_rejection_requires_approver(self):
        result = self.machine.validate_transition(
            S.PENDING_APPROVAL, S.REJECTED, Role.ACCOUNTANT, self.order,
        )
        assert result.error_codes == ("INSUFFICIENT_APPROVAL_PERMISSION",)
        assert "cannot reject" in result.first_error().message


class TestApprovalAmount:

    def setup_method(self):
        self.machine = OrderStateMachine()

    @pytest.mark.parametrize(
        "role, amount, errors, warnings",
        [
            (Role.CASHIER, "1", ("NO_APPROVAL_PERMISSION",), ()),
            (Role.CASHIER, "0", (), ()),
            (Role.EMPLOYEE, "3999.99", (), ()),
            (Role.EMPLOYEE, "4000", (), ("APPROACHING_APPROVAL_LIMIT",)),
            (Role.EMPLOYEE, "5000", (), ("APPROACHING_APPROVAL_LIMIT",)),
            (Role.EMPLOYEE, "5000.01", ("APPROVAL_LIMIT_EXCEEDED",), ()),
            (Role.ACCOUNTANT, "15001", ("APPROVAL_LIMIT_EXCEEDED",), ()),
            (Role.MANAGER, "50000", (), ("APPROACHING_APPROVAL_LIMIT",)),
            (Role.ADMIN, "10000000", (), ()),
            ("intern", "1", ("NO_APPROVAL_PERMISSION",), ()),
        ],
    )
    def test_limits(self, role, amount, errors, warnings):
        result = self.machine.validate_approval_amount(Decimal(amount), role)
        assert result.error_codes == errors
        assert result.warning_codes == warnings

    def test_limit_exceeded_message(self):
        result = self.machine.validate_approval_amount(Decimal("6000"), Role.EMPLOYEE)
        assert result.first_error().message == (
            "Purchase amount 6,000.00 exceeds approval limit 5,000.00 for employee"
        )


class TestValidateApproval:

    def setup_method(self):
        self.machine = OrderStateMachine()

    def test_already_approved_short_circuits(self):
        order = make_order(status=S.APPROVED)
        result = self.machine.validate_approval(order, Role.CASHIER, TEST_CREATOR_ID)
        assert result.error_codes == ("ALREADY_APPROVED",)

    def test_not_pending(self):
        order = make_order(status=S.DRAFT)
        result = self.machine.validate_approval(order, Role.MANAGER, TEST_MANAGER_ID)
        assert result.error_codes == ("NOT_PENDING_APPROVAL",)


class TestGatedTransitions:

    def setup_method(self):
        self.machine = OrderStateMachine()

    def test_submission_requires_items_total_and_supplier(self):
        order = make_order(items=(), status=S.DRAFT, supplier_id=None, total=Decimal("0"))
        result = self.machine.validate_transition(S.DRAFT, S.PENDING_APPROVAL, Role.EMPLOYEE, order)
        assert set(result.error_codes) == {"NO_ITEMS", "INVALID_TOTAL", "NO_SUPPLIER"}

    def test_cashier_cannot_receive(self):
        order = make_order(status=S.APPROVED)
        result = self.machine.validate_receivable(order, Role.CASHIER)
        assert result.error_codes == ("INSUFFICIENT_RECEIVING_PERMISSION",)

    @pytest.mark.parametrize("status", [S.APPROVED, S.SENT_TO_SUPPLIER, S.PARTIALLY_RECEIVED])
    def test_receivable_statuses(self, status):
        assert self.machine.validate_receivable(make_order(status=status), Role.EMPLOYEE).is_valid

    @pytest.mark.parametrize("status", [S.DRAFT, S.PENDING_APPROVAL, S.FULLY_RECEIVED, S.CANCELLED])
    def test_non_receivable_statuses(self, status):
        result = self.machine.validate_receivable(make_order(status=status), Role.ADMIN)
        assert result.error_codes == ("INVALID_STATUS_TRANSITION",)

    def test_draft_cancel_by_anyone(self):
        order = make_order(status=S.DRAFT)
        assert self.machine.validate_transition(S.DRAFT, S.CANCELLED, Role.EMPLOYEE, order).is_valid

    def test_non_draft_cancel_needs_manager(self):
        order = make_order(status=S.APPROVED)
        result = self.machine.validate_transition(S.APPROVED, S.CANCELLED, Role.EMPLOYEE, order)
        assert result.error_codes == ("INSUFFICIENT_CANCELLATION_PERMISSION",)
        assert self.machine.validate_transition(S.APPROVED, S.CANCELLED, Role.MANAGER, order).is_valid

    def test_fully_received_cannot_be_cancelled(self):
        order = make_order(status=S.FULLY_RECEIVED)
        result = self.machine.validate_transition(S.FULLY_RECEIVED, S.CANCELLED, Role.ADMIN, order)
        assert set(result.error_codes) == {"INVALID_STATUS_TRANSITION", "CANNOT_CANCEL_RECEIVED_ORDER"}


class TestCreationValidation:

    def setup_method(self):
        self.machine = OrderStateMachine()

    def test_well_formed_order(self):
        order = make_order(status=S.DRAFT, order_date=TODAY, expected_delivery_date=date(2024, 1, 10))
        assert self.machine.validate_creation(order, TODAY).issues == ()

    def test_errors(self):
        order = make_order(
            items=(("P1", "2", "5.00"),),
            status=S.DRAFT,
            supplier_id=None,
            order_date=TODAY,
            expected_delivery_date=TODAY,
            total=Decimal("11.00"),
        )
        result = self.machine.validate_creation(order, TODAY)
        assert set(result.error_codes) == {"SUPPLIER_REQUIRED", "INVALID_DELIVERY_DATE", "TOTAL_MISMATCH"}

    def test_total_within_a_cent_matches(self):
        order = make_order(items=(("P1", "3", "3.33"),), status=S.DRAFT, order_date=TODAY, total=Decimal("10.00"))
        assert not self.machine.validate_creation(order, TODAY).has_code("TOTAL_MISMATCH")

    def test_warnings(self):
        order = make_order(status=S.DRAFT, order_number="PO-1", order_date=date(2022, 6, 1))
        result = self.machine.validate_creation(order, TODAY)
        assert result.is_valid
        assert set(result.warning_codes) == {"INVALID_PO_NUMBER_FORMAT", "OLD_ORDER_DATE"}

    def test_future_order_date(self):
        order = make_order(status=S.DRAFT, order_date=date(2024, 2, 1))
        assert self.machine.validate_creation(order, TODAY).warning_codes == ("FUTURE_ORDER_DATE",)

    def test_item_checks(self):
        order = make_order(
            items=(
                ("P1", "0", "5.00"),
                ("P2", "2.5", "0"),
                ("P3", "20000", "10.00"),
                ("P3", "1", "1.00"),
            ),
            status=S.DRAFT,
            order_date=TODAY,
        )
        result = self.machine.validate_items(order.items)
        assert set(result.error_codes) == {"INVALID_QUANTITY", "INVALID_UNIT_PRICE", "DUPLICATE_PRODUCTS"}
        assert set(result.warning_codes) == {"NON_INTEGER_QUANTITY", "LARGE_QUANTITY", "HIGH_VALUE_ITEM"}


class TestApplyTransition:

    def setup_method(self):
        self.machine = OrderStateMachine()

    def test_approval_stamps_approver(self):
        order = make_order(status=S.PENDING_APPROVAL)
        outcome = self.machine.apply_transition(order, S.APPROVED, TEST_MANAGER_ID, Role.MANAGER, NOW)

        assert outcome.applied
        assert outcome.order.status == S.APPROVED
        assert outcome.order.approved_by == TEST_MANAGER_ID
        assert outcome.order.approved_at == NOW
        assert outcome.transition.from_status == S.PENDING_APPROVAL
        assert outcome.transition.to_status == S.APPROVED
        assert order.status == S.PENDING_APPROVAL

    def test_refused_transition_returns_input(self):
        order = make_order(status=S.CLOSED)
        outcome = self.machine.apply_transition(order, S.DRAFT, TEST_MANAGER_ID, Role.ADMIN, NOW)
        assert not outcome.applied
        assert outcome.order is order
        assert outcome.transition is None

    def test_return_to_draft_clears_approval(self):
        order = make_order(status=S.PENDING_APPROVAL, approved_by="x", approved_at=NOW)
        outcome = self.machine.apply_transition(order, S.DRAFT, TEST_MANAGER_ID, Role.MANAGER, NOW)
        assert outcome.order.approved_by is None
        assert outcome.order.approved_at is None


class TestReceivingProgress:

    def setup_method(self):
        self.machine = OrderStateMachine()
        self.order = make_order(items=(("P1", "10", "1"), ("P2", "5", "1")))

    def test_next_logical_status(self):
        assert self.machine.next_logical_status(self.order, {}) == S.APPROVED
        assert self.machine.next_logical_status(self.order, {"P1": Decimal("10")}) == S.PARTIALLY_RECEIVED
        assert (
            self.machine.next_logical_status(self.order, {"P1": Decimal("10"), "P2": Decimal("6")})
            == S.FULLY_RECEIVED
        )
