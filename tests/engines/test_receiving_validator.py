"""
Tests for ReceivingValidator.

Covers:
- Status gating short-circuit
- Unknown products, non-positive quantities, duplicate lines
- Over-receiving with and without tolerance
- Expiry, damaged goods and received-date checks
- Projected status after the event
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from procurement_engines.receiving_validator import ReceivingValidator, cumulative_received
from procurement_kernel.domain.purchase_order import ItemCondition
from procurement_kernel.domain.purchase_order import PurchaseOrderStatus as S
from tests.factories import TODAY, make_context, make_line, make_order


class TestStatusGate:

    def setup_method(self):
        self.validator = ReceivingValidator()

    @pytest.mark.parametrize("status", [S.DRAFT, S.PENDING_APPROVAL, S.FULLY_RECEIVED, S.CLOSED])
    def test_non_receivable_status_short_circuits(self, status):
        order = make_order(status=status)
        result = self.validator.validate_receiving(
            order, [make_line(product_id="UNKNOWN", received="-1")], make_context(),
        )
        assert result.error_codes == ("INVALID_RECEIVING_STATUS",)
        assert status.value in result.first_error().message


class TestLineChecks:

    def setup_method(self):
        self.validator = ReceivingValidator()
        self.order = make_order(items=(("P1", "100", "10.00"), ("P2", "10", "5.00")))

    def test_clean_receipt(self):
        result = self.validator.validate_receiving(
            self.order, [make_line("P1", "40"), make_line("P2", "10")], make_context(),
        )
        assert result.is_valid
        assert result.issues == ()

    def test_product_not_in_order(self):
        result = self.validator.validate_receiving(
            self.order, [make_line("P9", "1", product_name="Gadget")], make_context(),
        )
        assert result.error_codes == ("PRODUCT_NOT_IN_ORDER",)
        assert result.first_error().details == {"product_id": "P9"}
        assert "Gadget" in result.first_error().message

    @pytest.mark.parametrize("qty", ["0", "-5"])
    def test_non_positive_quantity(self, qty):
        result = self.validator.validate_receiving(self.order, [make_line("P1", qty)], make_context())
        assert result.error_codes == ("INVALID_RECEIVED_QUANTITY",)

    def test_duplicate_product_and_batch(self):
        lines = [
            make_line("P1", "10", batch_number="B1"),
            make_line("P1", "10", batch_number="B1"),
            make_line("P1", "10", batch_number="B2"),
        ]
        result = self.validator.validate_receiving(self.order, lines, make_context())
        assert result.error_codes == ("DUPLICATE_RECEIVING_LINE",)


class TestOverReceiving:

    def setup_method(self):
        self.validator = ReceivingValidator()
        self.order = make_order(items=(("P1", "100", "10.00"),))

    def test_exact_remaining_passes_silently(self):
        result = self.validator.validate_receiving(
            self.order, [make_line("P1", "40", previously="60")], make_context(),
        )
        assert result.issues == ()

    def test_over_receiving_error_states_remaining(self):
        result = self.validator.validate_receiving(
            self.order, [make_line("P1", "50", previously="60")], make_context(),
        )
        issue = result.first_error()
        assert issue.code == "OVER_RECEIVING"
        assert "Ordered: 100, Already received: 60, Attempting to receive: 50" in issue.message
        assert issue.suggestions[0] == "Maximum receivable quantity: 40"

    def test_earlier_lines_in_event_count_as_received(self):
        lines = [
            make_line("P1", "70", batch_number="B1"),
            make_line("P1", "40", batch_number="B2"),
        ]
        result = self.validator.validate_receiving(self.order, lines, make_context())
        assert result.error_codes == ("OVER_RECEIVING",)
        assert result.first_error().suggestions[0] == "Maximum receivable quantity: 30"

    def test_allowed_within_tolerance(self):
        context = make_context(allow_over_receiving=True, tolerance_percentage=Decimal("10"))
        result = self.validator.validate_receiving(
            self.order, [make_line("P1", "44", previously="60")], context,
        )
        assert result.issues == ()

    def test_allowed_beyond_tolerance_warns(self):
        context = make_context(allow_over_receiving=True, tolerance_percentage=Decimal("10"))
        result = self.validator.validate_receiving(
            self.order, [make_line("P1", "50", previously="60")], context,
        )
        assert result.is_valid
        assert result.warning_codes == ("OVER_RECEIVING_TOLERANCE_EXCEEDED",)
        assert "25.0% over" in result.warnings[0].message

    def test_missing_tolerance_uses_default(self):
        validator = ReceivingValidator(default_tolerance_percentage=Decimal("30"))
        context = make_context(allow_over_receiving=True)
        result = validator.validate_receiving(
            self.order, [make_line("P1", "50", previously="60")], context,
        )
        assert result.issues == ()

    def test_nothing_outstanding_always_warns(self):
        context = make_context(allow_over_receiving=True, tolerance_percentage=Decimal("1000"))
        result = self.validator.validate_receiving(
            self.order, [make_line("P1", "1", previously="100")], context,
        )
        assert result.warning_codes == ("OVER_RECEIVING_TOLERANCE_EXCEEDED",)
        assert "nothing outstanding" in result.warnings[0].message


class TestExpiryAndCondition:

    def setup_method(self):
        self.validator = ReceivingValidator(near_expiry_days=30)
        self.order = make_order()

    def test_expired_product(self):
        result = self.validator.validate_receiving(
            self.order, [make_line(expiry_date=TODAY)], make_context(),
        )
        assert result.error_codes == ("EXPIRED_PRODUCT",)

    def test_near_expiry_warns(self):
        result = self.validator.validate_receiving(
            self.order, [make_line(expiry_date=TODAY + timedelta(days=30))], make_context(),
        )
        assert result.warning_codes == ("NEAR_EXPIRY_PRODUCT",)

    def test_far_expiry_is_silent(self):
        result = self.validator.validate_receiving(
            self.order, [make_line(expiry_date=TODAY + timedelta(days=31))], make_context(),
        )
        assert result.issues == ()

    def test_damaged_goods_warns(self):
        result = self.validator.validate_receiving(
            self.order, [make_line(condition=ItemCondition.DAMAGED)], make_context(),
        )
        assert result.can_proceed_with_warnings
        assert result.warning_codes == ("DAMAGED_GOODS",)


class TestReceivedDate:

    def setup_method(self):
        self.validator = ReceivingValidator()
        self.order = make_order(order_date=date(2023, 12, 15))

    def test_before_order_date(self):
        result = self.validator.validate_receiving(
            self.order, [make_line()], make_context(received_date=date(2023, 12, 1)),
        )
        assert result.error_codes == ("INVALID_RECEIVED_DATE",)

    def test_future_date(self):
        result = self.validator.validate_receiving(
            self.order, [make_line()], make_context(received_date=TODAY + timedelta(days=1)),
        )
        assert result.error_codes == ("FUTURE_RECEIVED_DATE",)


class TestProjectedStatus:

    def setup_method(self):
        self.validator = ReceivingValidator()
        self.order = make_order(items=(("P1", "10", "1"), ("P2", "5", "1")))

    def test_partial(self):
        status = self.validator.projected_status(self.order, [make_line("P1", "10")])
        assert status == S.PARTIALLY_RECEIVED

    def test_full_using_prior_receipts(self):
        status = self.validator.projected_status(
            self.order, [make_line("P2", "5")], {"P1": Decimal("10")},
        )
        assert status == S.FULLY_RECEIVED

    def test_cumulative_uses_line_previously_received(self):
        totals = cumulative_received(self.order, [make_line("P1", "3", previously="4")])
        assert totals == {"P1": Decimal("7"), "P2": Decimal("0")}
