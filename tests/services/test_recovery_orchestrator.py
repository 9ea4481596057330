"""
Tests for RecoveryOrchestrator.

Covers:
- Failure classification across validation results, kernel exceptions
  and raw SQLAlchemy/driver errors
- Primary action per strategy and the retry ceiling
- Rollback, partial recovery, queue-for-later and skip-failed-items
- Best-effort auditing
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import exc as sa_exc

from procurement_kernel.domain.clock import DeterministicClock
from procurement_kernel.domain.recovery import (
    FailureCategory,
    OperationType,
    RecoveryActionType,
    RecoveryContext,
)
from procurement_kernel.domain.validation import ValidationResult, error
from procurement_kernel.exceptions import (
    ConcurrentModificationError,
    SchedulerUnavailableError,
    UnbalancedEntryError,
)
from procurement_services.recovery_orchestrator import (
    UNKNOWN_ERROR,
    RecoveryOrchestrator,
    classify_failure,
)
from tests.factories import TEST_ACTOR_ID, TODAY, make_context, make_line, make_order

# =============================================================================
# Fake collaborators
# =============================================================================


class RecordingAuditLog:
    def __init__(self, fail: bool = False):
        self.records: list[dict] = []
        self.fail = fail

    def record(self, entity_type, entity_id, action, actor, before=None, after=None, metadata=None):
        if self.fail:
            raise RuntimeError("audit store offline")
        self.records.append({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": action,
            "actor": actor,
            "metadata": metadata,
        })

    def actions(self) -> list[str]:
        return [r["action"] for r in self.records]


class RecordingScheduler:
    def __init__(self):
        self.calls: list[tuple] = []

    def enqueue(self, operation_type, payload, scheduled_for):
        self.calls.append((operation_type, payload, scheduled_for))
        return f"queue-{len(self.calls)}"


class FailingScheduler:
    def enqueue(self, operation_type, payload, scheduled_for):
        raise SchedulerUnavailableError(operation_type, "broker down")


class RecordingRollback:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple] = []
        self.fail = fail

    def execute(self, operation_type, steps, payload):
        self.calls.append((operation_type, tuple(steps)))
        if self.fail:
            raise RuntimeError("inventory table locked")


def _validation_failure(code, message="failed", **details):
    return ValidationResult.failure(error(code, message, details=details or None))


def _context(attempt=1, **kwargs):
    kwargs.setdefault("entity_id", "po-1")
    kwargs.setdefault("actor_id", TEST_ACTOR_ID)
    return RecoveryContext(OperationType.RECEIVING, attempt_number=attempt, **kwargs)


# =============================================================================
# Classification
# =============================================================================


class TestClassifyFailure:

    def test_validation_result_uses_first_error(self):
        failure = _validation_failure("OVER_RECEIVING", "too many", product_id="P1")
        info = classify_failure(failure)
        assert info.code == "OVER_RECEIVING"
        assert info.category == FailureCategory.VALIDATION
        assert info.product_ids == ("P1",)

    def test_valid_result_is_unknown(self):
        assert classify_failure(ValidationResult.success()).code == UNKNOWN_ERROR

    def test_kernel_exception_code(self):
        info = classify_failure(ConcurrentModificationError("stock_level", "P1", 1, 2))
        assert info.code == "CONCURRENT_MODIFICATION"
        assert info.category == FailureCategory.CONSISTENCY
        assert info.exception_type == "ConcurrentModificationError"

    @pytest.mark.parametrize(
        "failure, code",
        [
            (sa_exc.TimeoutError("pool exhausted"), "CONNECTION_TIMEOUT"),
            (sa_exc.OperationalError("UPDATE", {}, Exception("deadlock detected")), "DEADLOCK_DETECTED"),
            (sa_exc.OperationalError("UPDATE", {}, Exception("disk I/O error")), "DATABASE_ERROR"),
            (TimeoutError("read timed out"), "CONNECTION_TIMEOUT"),
            (ConnectionRefusedError("refused"), "DATABASE_ERROR"),
            (ValueError("boom"), UNKNOWN_ERROR),
        ],
    )
    def test_raw_errors(self, failure, code):
        assert classify_failure(failure).code == code


# =============================================================================
# Strategy dispatch
# =============================================================================


class TestHandleFailure:

    def setup_method(self):
        self.audit = RecordingAuditLog()
        self.clock = DeterministicClock()
        self.orchestrator = RecoveryOrchestrator(audit_log=self.audit, clock=self.clock)

    def test_unknown_error_requires_manual_intervention(self):
        result = self.orchestrator.handle_failure(ValueError("boom"), _context())

        assert result.requires_manual_intervention
        assert not result.success
        assert result.action == RecoveryActionType.MANUAL_INTERVENTION
        assert result.message == "Manual intervention required - unknown error type"
        assert result.next_steps == ("Contact system administrator", "Review error logs")

    def test_every_call_is_audited(self):
        self.orchestrator.handle_failure(sa_exc.TimeoutError("slow"), _context(attempt=2))

        record = self.audit.records[0]
        assert record["action"] == "error_recovery_initiated"
        assert record["entity_type"] == "purchase_order"
        assert record["entity_id"] == "po-1"
        assert record["actor"] == TEST_ACTOR_ID
        assert record["metadata"]["error_code"] == "CONNECTION_TIMEOUT"
        assert record["metadata"]["attempt_number"] == 2
        assert record["metadata"]["operation_type"] == "receiving"

    def test_missing_entity_is_audited_as_unknown(self):
        self.orchestrator.handle_failure(ValueError("x"), RecoveryContext(OperationType.POSTING))
        assert self.audit.records[0]["entity_id"] == "unknown"

    @pytest.mark.parametrize("attempt, delay", [(1, 1000), (2, 2000), (3, 4000)])
    def test_infrastructure_retries_with_backoff(self, attempt, delay):
        failure = sa_exc.OperationalError("SELECT", {}, Exception("server closed the connection"))
        result = self.orchestrator.handle_failure(failure, _context(attempt=attempt))

        assert result.success
        assert result.action == RecoveryActionType.RETRY_OPERATION
        assert result.retry_delay_ms == delay
        assert result.message == f"Retry scheduled with {delay}ms delay"
        assert not result.requires_manual_intervention

    def test_beyond_ceiling_requires_manual_intervention(self):
        result = self.orchestrator.handle_failure(TimeoutError("slow"), _context(attempt=4))

        assert result.requires_manual_intervention
        assert result.message == "Operation failed after 4 attempts"
        assert result.retry_delay_ms is None

    def test_caller_can_lower_the_ceiling(self):
        result = self.orchestrator.handle_failure(
            TimeoutError("slow"), _context(attempt=2, max_retries=1),
        )
        assert result.requires_manual_intervention

    def test_authorization_goes_straight_to_manual(self):
        failure = _validation_failure("INSUFFICIENT_RECEIVING_PERMISSION")
        result = self.orchestrator.handle_failure(failure, _context())

        assert result.requires_manual_intervention
        assert result.category == FailureCategory.POLICY
        assert result.message == "Operation failed after 1 attempts"

    def test_integrity_failure_is_critical(self):
        result = self.orchestrator.handle_failure(
            UnbalancedEntryError(100, 90, "entry-1"), _context(),
        )
        assert result.critical
        assert result.requires_manual_intervention
        assert result.category == FailureCategory.INTEGRITY

    def test_concurrent_modification_retries(self):
        result = self.orchestrator.handle_failure(
            ConcurrentModificationError("stock_level", "P1", 3, 4), _context(),
        )
        assert result.action == RecoveryActionType.RETRY_OPERATION
        assert result.retry_delay_ms == 1000

    def test_failing_audit_log_does_not_change_result(self, captured_logs):
        orchestrator = RecoveryOrchestrator(audit_log=RecordingAuditLog(fail=True), clock=self.clock)
        result = orchestrator.handle_failure(TimeoutError("slow"), _context())

        assert result.action == RecoveryActionType.RETRY_OPERATION
        assert any(r["message"] == "recovery_audit_failed" for r in captured_logs())

    def test_queries(self):
        failure = _validation_failure("OVER_RECEIVING")
        assert [a.action_type for a in self.orchestrator.available_actions(failure)] == [
            RecoveryActionType.PARTIAL_RECOVERY,
            RecoveryActionType.MANUAL_INTERVENTION,
        ]
        assert not self.orchestrator.can_auto_recover(failure)
        assert self.orchestrator.can_auto_recover(TimeoutError())
        assert self.orchestrator.estimate_recovery_time(ValueError()) == "Unknown"


# =============================================================================
# Actions
# =============================================================================


class TestRollback:

    def setup_method(self):
        self.audit = RecordingAuditLog()

    def test_workflow_failure_rolls_back(self):
        executor = RecordingRollback()
        orchestrator = RecoveryOrchestrator(audit_log=self.audit, rollback_executor=executor)
        result = orchestrator.handle_failure(
            _validation_failure("INVALID_STATUS_TRANSITION"), _context(),
        )

        assert result.success
        assert result.action == RecoveryActionType.ROLLBACK_CHANGES
        assert result.rollback_steps[0] == "Reverse inventory adjustments"
        assert executor.calls == [("receiving", result.rollback_steps)]
        assert self.audit.actions() == ["error_recovery_initiated", "rollback_initiated"]

    def test_failed_rollback_is_critical(self, captured_logs):
        orchestrator = RecoveryOrchestrator(
            audit_log=self.audit, rollback_executor=RecordingRollback(fail=True),
        )
        result = orchestrator.handle_failure(
            _validation_failure("INVALID_STATUS_TRANSITION"), _context(),
        )

        assert not result.success
        assert result.critical
        assert result.error_code == "ROLLBACK_FAILED"
        assert result.message == "CRITICAL: Rollback failed - inventory table locked"
        assert result.next_steps[0] == "URGENT: Contact system administrator"
        critical = [r for r in captured_logs() if r["message"] == "rollback_failed"]
        assert critical[0]["level"] == "CRITICAL"


class TestPartialRecovery:

    def setup_method(self):
        self.audit = RecordingAuditLog()
        self.orchestrator = RecoveryOrchestrator(audit_log=self.audit)
        self.order = make_order(items=(("P1", "100", "10.00"), ("P2", "10", "5.00")))

    def _payload(self, lines, **context_kwargs):
        return {"order": self.order, "line_items": lines, "context": make_context(**context_kwargs)}

    def test_splits_lines(self):
        lines = [make_line("P1", "40"), make_line("P2", "12")]
        result = self.orchestrator.handle_failure(
            _validation_failure("OVER_RECEIVING", product_id="P1"),
            _context(payload=self._payload(lines)),
        )

        assert result.action == RecoveryActionType.PARTIAL_RECOVERY
        assert result.success
        assert result.requires_manual_intervention
        assert [line.product_id for line in result.processed_items] == ["P1"]
        assert [r.product_id for r in result.failed_items] == ["P2"]
        assert result.message == (
            "Partial recovery completed: 1 items processed, 1 items require manual review"
        )
        partial = self.audit.records[-1]
        assert partial["action"] == "partial_recovery"
        assert partial["metadata"]["valid_product_ids"] == ["P1"]
        assert result.failed_items[0].reason == (
            "Received quantity 12 exceeds the recoverable bound of 10"
        )

    def test_over_receiving_allowed_uses_ratio_bound(self):
        lines = [make_line("P1", "40"), make_line("P2", "12"), make_line("P2", "4")]
        result = self.orchestrator.handle_failure(
            _validation_failure("OVER_RECEIVING", product_id="P2"),
            _context(payload=self._payload(lines, allow_over_receiving=True)),
        )

        assert [line.received_quantity for line in result.processed_items] == [Decimal("40"), Decimal("12")]
        assert [r.product_id for r in result.failed_items] == ["P2"]

    def test_expired_lines_need_review(self):
        lines = [make_line("P1", "40"), make_line("P2", "5", expiry_date=TODAY)]
        result = self.orchestrator.handle_failure(
            _validation_failure("OVER_RECEIVING", product_id="P1"),
            _context(payload=self._payload(lines)),
        )

        assert [line.product_id for line in result.processed_items] == ["P1"]
        assert result.failed_items[0].reason == "Product P2 is already expired"

    def test_nothing_valid(self):
        result = self.orchestrator.handle_failure(
            _validation_failure("PRODUCT_NOT_IN_ORDER"),
            _context(payload=self._payload([make_line("P9", "1")])),
        )
        assert not result.success
        assert result.requires_manual_intervention

    def test_everything_valid(self):
        result = self.orchestrator.handle_failure(
            _validation_failure("OVER_RECEIVING"),
            _context(payload=self._payload([make_line("P1", "10")])),
        )
        assert result.success
        assert not result.requires_manual_intervention
        assert result.next_steps == ("Verify processed items", "Complete remaining operations")

    def test_retry_ceiling_still_applies(self):
        result = self.orchestrator.handle_failure(
            _validation_failure("OVER_RECEIVING"),
            _context(attempt=2, payload=self._payload([make_line("P1", "10")])),
        )
        assert result.action == RecoveryActionType.MANUAL_INTERVENTION


class TestQueueForLater:

    def setup_method(self):
        self.audit = RecordingAuditLog()
        self.clock = DeterministicClock()

    def test_queues_an_hour_out(self):
        scheduler = RecordingScheduler()
        orchestrator = RecoveryOrchestrator(
            audit_log=self.audit, scheduler=scheduler, clock=self.clock,
        )
        result = orchestrator.execute_action(
            RecoveryActionType.QUEUE_FOR_LATER,
            TimeoutError("slow"),
            _context(payload={"order_id": "po-1"}),
        )

        expected = datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)
        assert result.success
        assert result.queue_id == "queue-1"
        assert result.scheduled_for == expected
        assert scheduler.calls == [("receiving", {"order_id": "po-1"}, expected)]
        assert self.audit.records[-1]["action"] == "operation_queued"
        assert self.audit.records[-1]["metadata"]["queue_id"] == "queue-1"

    def test_missing_scheduler_is_routed_as_infrastructure(self):
        orchestrator = RecoveryOrchestrator(audit_log=self.audit, clock=self.clock)
        result = orchestrator.execute_action("queue_for_later", TimeoutError("slow"), _context())

        assert result.error_code == "SCHEDULER_UNAVAILABLE"
        assert result.action == RecoveryActionType.RETRY_OPERATION
        assert result.retry_delay_ms == 1000

    def test_failing_scheduler_is_routed_as_infrastructure(self):
        orchestrator = RecoveryOrchestrator(
            audit_log=self.audit, scheduler=FailingScheduler(), clock=self.clock,
        )
        result = orchestrator.execute_action("queue_for_later", TimeoutError("slow"), _context())

        assert result.error_code == "SCHEDULER_UNAVAILABLE"
        assert "operation_queued" not in self.audit.actions()

    def test_delay_is_configurable(self):
        from procurement_config.schema import RecoverySettings

        orchestrator = RecoveryOrchestrator(
            scheduler=RecordingScheduler(),
            clock=self.clock,
            settings=RecoverySettings(queue_delay_seconds=60),
        )
        result = orchestrator.execute_action("queue_for_later", TimeoutError(), _context())
        assert result.scheduled_for == self.clock.now() + timedelta(seconds=60)


class TestExecuteAction:

    def setup_method(self):
        self.audit = RecordingAuditLog()
        self.orchestrator = RecoveryOrchestrator(audit_log=self.audit)

    def test_skip_failed_items(self):
        lines = [make_line("P1", "5"), make_line("P2", "5")]
        result = self.orchestrator.execute_action(
            RecoveryActionType.SKIP_FAILED_ITEMS,
            _validation_failure("PRODUCT_NOT_IN_ORDER", product_id="P2"),
            _context(payload={"line_items": lines}),
        )

        assert [line.product_id for line in result.skipped_items] == ["P2"]
        assert [line.product_id for line in result.processed_items] == ["P1"]
        assert result.requires_manual_intervention
        assert result.message == "1 items skipped, 1 items processed"
        assert self.audit.records[-1]["metadata"]["skipped_product_ids"] == ["P2"]

    def test_skip_list_from_payload(self):
        lines = [make_line("P1", "5"), make_line("P2", "5")]
        result = self.orchestrator.execute_action(
            "skip_failed_items",
            ValueError("x"),
            _context(payload={"line_items": lines, "skip_product_ids": ["P1", "P2"]}),
        )
        assert len(result.skipped_items) == 2
        assert result.processed_items == ()

    def test_manual_intervention_action(self):
        result = self.orchestrator.execute_action(
            RecoveryActionType.MANUAL_INTERVENTION,
            _validation_failure("OVER_RECEIVING"),
            _context(),
        )
        assert result.requires_manual_intervention
        assert result.message.startswith("Manual intervention required: ")

    def test_retry_beyond_ceiling_is_refused(self):
        result = self.orchestrator.execute_action(
            RecoveryActionType.RETRY_OPERATION,
            _validation_failure("INSUFFICIENT_PERMISSIONS"),
            _context(),
        )
        assert result.action == RecoveryActionType.MANUAL_INTERVENTION
        assert result.message == "Operation failed after 1 attempts"
        assert self.audit.actions() == ["error_recovery_initiated"]

    def test_retry_is_audited(self):
        result = self.orchestrator.execute_action(
            RecoveryActionType.RETRY_OPERATION, TimeoutError("slow"), _context(),
        )

        assert result.action == RecoveryActionType.RETRY_OPERATION
        (record,) = self.audit.records
        assert record["action"] == "error_recovery_initiated"
        assert record["metadata"]["error_code"] == "CONNECTION_TIMEOUT"
        assert record["metadata"]["requested_action"] == "retry_operation"

    def test_manual_intervention_is_audited(self):
        self.orchestrator.execute_action(
            RecoveryActionType.MANUAL_INTERVENTION,
            _validation_failure("OVER_RECEIVING"),
            _context(),
        )
        assert self.audit.actions() == ["error_recovery_initiated"]

    def test_audit_failure_does_not_mask_result(self):
        orchestrator = RecoveryOrchestrator(audit_log=RecordingAuditLog(fail=True))
        result = orchestrator.execute_action(
            RecoveryActionType.RETRY_OPERATION, TimeoutError("slow"), _context(),
        )
        assert result.success
        assert result.retry_delay_ms == 1000
