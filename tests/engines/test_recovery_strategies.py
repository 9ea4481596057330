"""
Tests for the pure recovery helpers.

Covers:
- Strategy lookup by error code
- Action ordering, auto-recoverability and time estimates
- Retry ceiling and exponential backoff
- Rollback step tables
- Partial-recovery split of receiving lines
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from procurement_engines.recovery import (
    GENERIC_ROLLBACK_STEPS,
    RECOVERY_STRATEGIES,
    available_actions,
    can_auto_recover,
    category_for,
    estimate_recovery_time,
    find_strategy,
    retry_ceiling,
    retry_delay_ms,
    rollback_steps,
    split_for_partial_recovery,
)
from procurement_kernel.domain.recovery import (
    FailureCategory,
    OperationType,
    RecoveryActionType,
    RecoveryContext,
)
from tests.factories import TODAY, make_context, make_line, make_order


class TestStrategyTable:

    def test_codes_are_unique_across_strategies(self):
        seen: set[str] = set()
        for strategy in RECOVERY_STRATEGIES:
            assert not (seen & strategy.error_codes), strategy.name
            seen |= strategy.error_codes

    @pytest.mark.parametrize(
        "code, name, category",
        [
            ("DATABASE_ERROR", "infrastructure", FailureCategory.INFRASTRUCTURE),
            ("OVER_RECEIVING", "receiving_validation", FailureCategory.VALIDATION),
            ("CONCURRENT_MODIFICATION", "stock_consistency", FailureCategory.CONSISTENCY),
            ("APPROVAL_LIMIT_EXCEEDED", "authorization", FailureCategory.POLICY),
            ("INVALID_STATUS_TRANSITION", "workflow", FailureCategory.VALIDATION),
            ("UNBALANCED_ENTRY", "integrity", FailureCategory.INTEGRITY),
        ],
    )
    def test_lookup(self, code, name, category):
        assert find_strategy(code).name == name
        assert category_for(code) == category

    def test_unknown_code(self):
        assert find_strategy("NOPE") is None
        assert find_strategy(None) is None
        assert category_for("NOPE") == FailureCategory.UNKNOWN
        assert available_actions("NOPE") == ()
        assert estimate_recovery_time("NOPE") == "Unknown"
        assert not can_auto_recover("NOPE")

    def test_actions_in_priority_order(self):
        actions = available_actions("CONNECTION_TIMEOUT")
        assert [a.action_type for a in actions] == [
            RecoveryActionType.RETRY_OPERATION,
            RecoveryActionType.QUEUE_FOR_LATER,
        ]
        assert estimate_recovery_time("CONNECTION_TIMEOUT") == "5-10 seconds"

    def test_auto_recoverable(self):
        assert can_auto_recover("DEADLOCK_DETECTED")
        assert not can_auto_recover("OVER_RECEIVING")
        assert not can_auto_recover("UNBALANCED_ENTRY")

    def test_integrity_is_critical(self):
        assert find_strategy("UNBALANCED_ENTRY").critical
        assert find_strategy("ROLLBACK_FAILED").max_retries == 0


class TestRetryPolicy:

    @pytest.mark.parametrize(
        "attempt, delay",
        [(1, 1000), (2, 2000), (3, 4000), (4, 8000), (5, 10000), (9, 10000)],
    )
    def test_backoff(self, attempt, delay):
        assert retry_delay_ms(attempt) == delay

    def test_custom_base_and_cap(self):
        assert retry_delay_ms(3, base_ms=500, cap_ms=1500) == 1500

    def test_attempt_must_be_positive(self):
        with pytest.raises(ValueError):
            retry_delay_ms(0)

    def test_ceiling_takes_the_lower_limit(self):
        strategy = find_strategy("DATABASE_ERROR")
        assert retry_ceiling(strategy, RecoveryContext(OperationType.RECEIVING)) == 3
        assert retry_ceiling(strategy, RecoveryContext(OperationType.RECEIVING, max_retries=1)) == 1
        assert retry_ceiling(strategy, RecoveryContext(OperationType.RECEIVING, max_retries=9)) == 3


class TestRollbackSteps:

    def test_receiving_steps(self):
        assert rollback_steps(OperationType.RECEIVING)[0] == "Reverse inventory adjustments"

    def test_unknown_operation_gets_generic_steps(self):
        assert rollback_steps(OperationType.POSTING) == GENERIC_ROLLBACK_STEPS
        assert rollback_steps("bulk_import") == GENERIC_ROLLBACK_STEPS


class TestPartialSplit:

    def setup_method(self):
        self.order = make_order(items=(("P1", "100", "10.00"), ("P2", "10", "5.00")))

    def test_split(self):
        lines = [
            make_line("P1", "40", previously="60"),
            make_line("P2", "16"),
            make_line("P9", "1"),
            make_line("P1", "0"),
        ]
        valid, invalid = split_for_partial_recovery(self.order, lines)

        assert [line.product_id for line in valid] == ["P1"]
        assert [r.product_id for r in invalid] == ["P2", "P9", "P1"]
        assert invalid[0].reason == "Received quantity 16 exceeds the recoverable bound of 15"
        assert invalid[1].reason == "Product P9 is not in the purchase order"

    def test_line_up_to_bound_is_valid(self):
        valid, invalid = split_for_partial_recovery(self.order, [make_line("P2", "15")])
        assert len(valid) == 1
        assert invalid == ()

    def test_ratio_is_configurable(self):
        valid, _ = split_for_partial_recovery(
            self.order, [make_line("P2", "15")], max_ratio=Decimal("1"),
        )
        assert valid == ()

    def test_missing_order_rejects_everything(self):
        valid, invalid = split_for_partial_recovery(None, [make_line("P1", "1")])
        assert valid == ()
        assert len(invalid) == 1

    def test_disallowed_over_receiving_bounds_at_outstanding(self):
        lines = [make_line("P1", "40"), make_line("P2", "12")]
        valid, invalid = split_for_partial_recovery(self.order, lines, context=make_context())

        assert [line.product_id for line in valid] == ["P1"]
        assert invalid[0].reason == "Received quantity 12 exceeds the recoverable bound of 10"

    def test_allowed_over_receiving_keeps_ratio_bound(self):
        context = make_context(allow_over_receiving=True)
        valid, invalid = split_for_partial_recovery(self.order, [make_line("P2", "12")], context=context)
        assert len(valid) == 1
        assert invalid == ()

    def test_earlier_lines_count_against_outstanding(self):
        lines = [
            make_line("P2", "6", batch_number="B1"),
            make_line("P2", "6", batch_number="B2"),
        ]
        valid, invalid = split_for_partial_recovery(self.order, lines, context=make_context())

        assert [line.batch_number for line in valid] == ["B1"]
        assert [r.line.batch_number for r in invalid] == ["B2"]

    def test_expired_lines_are_rejected(self):
        lines = [
            make_line("P1", "5", expiry_date=TODAY),
            make_line("P1", "5", expiry_date=TODAY + timedelta(days=1), batch_number="B2"),
        ]
        valid, invalid = split_for_partial_recovery(self.order, lines, context=make_context())

        assert [line.batch_number for line in valid] == ["B2"]
        assert invalid[0].reason == "Product P1 is already expired"
