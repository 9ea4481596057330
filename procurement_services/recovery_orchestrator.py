"""
procurement_services.recovery_orchestrator -- Failure classification and recovery.

Responsibility:
    The single seam where a failure from any other component (a
    ValidationResult, a ValidationError, a kernel exception or a raw
    SQLAlchemy/driver error) is classified by code and turned into one
    bounded, auditable RecoveryResult: retry with backoff, rollback,
    partial recovery, queue for later, skip failed items, or manual
    intervention.

Architecture position:
    Services -- imperative shell.  Strategy selection, backoff, rollback
    steps and the partial split are pure functions in
    ``procurement_engines.recovery``; this module adds the collaborators
    (audit log, deferred-work scheduler, rollback executor) and the clock.

Invariants enforced:
    - attempt_number above the retry ceiling always yields
      requires_manual_intervention=True.
    - An unmapped code always yields requires_manual_intervention=True.
    - The orchestrator never sleeps; retry delays are returned as data.
    - Every call path ends in a recovery, a queued operation or an
      explicit manual-intervention result with next steps.
    - Audit writes are best-effort: a failing audit log is logged and
      never changes the returned result.

Failure modes:
    - Rollback executor failure: critical ROLLBACK_FAILED result,
      logged CRITICAL, manual intervention required.
    - Scheduler failure while queueing: the scheduler's error is routed
      back through ``handle_failure``.

Audit relevance:
    Each ``handle_failure`` and ``execute_action`` call writes
    ``error_recovery_initiated``, and each executed action writes its
    own record (``rollback_initiated``, ``partial_recovery``,
    ``operation_queued``, ``items_skipped``).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

from sqlalchemy import exc as sa_exc

from procurement_config.schema import RecoverySettings
from procurement_engines.recovery import (
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
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.collaborators import (
    AuditLog,
    DeferredWorkScheduler,
    RollbackExecutor,
)
from procurement_kernel.domain.purchase_order import ReceivingContext
from procurement_kernel.domain.recovery import (
    FailureCategory,
    FailureInfo,
    RecoveryAction,
    RecoveryActionType,
    RecoveryContext,
    RecoveryResult,
    RecoveryStrategy,
)
from procurement_kernel.domain.validation import ValidationError, ValidationResult
from procurement_kernel.exceptions import SchedulerUnavailableError
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.audit_event import AuditAction
from procurement_kernel.services.base import is_deadlock

logger = get_logger("services.recovery_orchestrator")

UNKNOWN_ERROR = "UNKNOWN_ERROR"
ENTITY_TYPE = "purchase_order"


def _product_ids(details: Mapping[str, Any] | None) -> tuple[str, ...]:
    if not details:
        return ()
    if "product_ids" in details:
        return tuple(str(p) for p in details["product_ids"])
    if "product_id" in details:
        return (str(details["product_id"]),)
    return ()


def classify_failure(failure: Any) -> FailureInfo:
    """
    Reduce any failure shape to the code the strategy table dispatches on.

    ValidationResult uses its first error.  SQLAlchemy errors are checked
    before the generic ``code`` attribute because SQLAlchemy sets its own
    ``code`` on every exception.
    """
    if isinstance(failure, ValidationResult):
        first = failure.first_error()
        if first is None:
            return FailureInfo(UNKNOWN_ERROR, "Validation failed without errors", FailureCategory.UNKNOWN)
        failure = first

    if isinstance(failure, ValidationError):
        return FailureInfo(
            code=failure.code,
            message=failure.message,
            category=category_for(failure.code),
            product_ids=_product_ids(failure.details),
        )

    exception_type = type(failure).__name__
    if isinstance(failure, sa_exc.TimeoutError):
        code = "CONNECTION_TIMEOUT"
    elif isinstance(failure, sa_exc.OperationalError) and is_deadlock(failure):
        code = "DEADLOCK_DETECTED"
    elif isinstance(failure, sa_exc.DBAPIError):
        code = "DATABASE_ERROR"
    elif isinstance(getattr(failure, "code", None), str) and not isinstance(failure, sa_exc.SQLAlchemyError):
        code = failure.code
    elif isinstance(failure, TimeoutError):
        code = "CONNECTION_TIMEOUT"
    elif isinstance(failure, ConnectionError):
        code = "DATABASE_ERROR"
    else:
        code = UNKNOWN_ERROR

    product_id = getattr(failure, "product_id", None)
    return FailureInfo(
        code=code,
        message=str(failure),
        category=category_for(code),
        exception_type=exception_type,
        product_ids=(str(product_id),) if product_id else (),
    )


class RecoveryOrchestrator:
    """
    Classifies failures and executes the selected recovery action.

    Contract:
        ``handle_failure`` never raises for a classifiable failure; it
        returns a RecoveryResult.

    Guarantees:
        - Retry delay = min(base * 2**(attempt-1), cap) ms, returned only.
        - Queue-for-later schedules ``queue_delay_seconds`` after now.

    Non-goals:
        - Re-invoking the failed operation.  The caller decides whether
          and when to act on a retry result.
    """

    def __init__(
        self,
        audit_log: AuditLog | None = None,
        scheduler: DeferredWorkScheduler | None = None,
        rollback_executor: RollbackExecutor | None = None,
        clock: Clock | None = None,
        settings: RecoverySettings | None = None,
    ):
        self._audit = audit_log
        self._scheduler = scheduler
        self._rollback = rollback_executor
        self._clock = clock or SystemClock()
        self._settings = settings or RecoverySettings()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def available_actions(self, failure: Any) -> tuple[RecoveryAction, ...]:
        return available_actions(classify_failure(failure).code)

    def can_auto_recover(self, failure: Any) -> bool:
        return can_auto_recover(classify_failure(failure).code)

    def estimate_recovery_time(self, failure: Any) -> str:
        return estimate_recovery_time(classify_failure(failure).code)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def handle_failure(
        self,
        failure: Any,
        context: RecoveryContext,
        original_payload: Mapping[str, Any] | None = None,
    ) -> RecoveryResult:
        """
        Classify ``failure`` and execute the primary action of its strategy.

        ``original_payload`` defaults to ``context.payload``.
        """
        payload = dict(original_payload if original_payload is not None else context.payload)
        info = classify_failure(failure)

        with LogContext.bind(operation=context.operation_name, purchase_order_id=context.entity_id):
            logger.warning(
                "recovery_started",
                extra={
                    "error_code": info.code,
                    "category": info.category.value,
                    "attempt_number": context.attempt_number,
                },
            )
            self._audit_initiated(context, info)

            strategy = find_strategy(info.code)
            if strategy is None:
                result = RecoveryResult(
                    success=False,
                    action=RecoveryActionType.MANUAL_INTERVENTION,
                    requires_manual_intervention=True,
                    message="Manual intervention required - unknown error type",
                    error_code=info.code,
                    category=FailureCategory.UNKNOWN,
                    attempt_number=context.attempt_number,
                    next_steps=("Contact system administrator", "Review error logs"),
                )
            elif context.attempt_number > retry_ceiling(strategy, context):
                manual = [a for a in strategy.actions if a.action_type == RecoveryActionType.MANUAL_INTERVENTION]
                prerequisites = manual[0].prerequisites if manual else ()
                result = RecoveryResult(
                    success=False,
                    action=RecoveryActionType.MANUAL_INTERVENTION,
                    requires_manual_intervention=True,
                    message=f"Operation failed after {context.attempt_number} attempts",
                    error_code=info.code,
                    category=strategy.category,
                    attempt_number=context.attempt_number,
                    next_steps=("Review error cause", "Consider alternative approach", *prerequisites),
                    critical=strategy.critical,
                )
            else:
                result = self._execute(strategy.primary_action, info, context, payload, strategy)

            self._log_result(result)
            return result

    def execute_action(
        self,
        action_type: RecoveryActionType | str,
        failure: Any,
        context: RecoveryContext,
        original_payload: Mapping[str, Any] | None = None,
    ) -> RecoveryResult:
        """
        Run an operator-chosen action for ``failure``, bypassing the
        strategy's priority order but not its retry ceiling.
        """
        action_type = RecoveryActionType(action_type)
        payload = dict(original_payload if original_payload is not None else context.payload)
        info = classify_failure(failure)
        strategy = find_strategy(info.code)
        action = next(
            (a for a in (strategy.actions if strategy else ()) if a.action_type == action_type),
            RecoveryAction(action_type, action_type.value.replace("_", " ").capitalize(), False, 1),
        )
        with LogContext.bind(operation=context.operation_name, purchase_order_id=context.entity_id):
            self._audit_initiated(context, info, requested_action=action_type)
            if (
                action_type == RecoveryActionType.RETRY_OPERATION
                and strategy is not None
                and context.attempt_number > retry_ceiling(strategy, context)
            ):
                result = RecoveryResult(
                    success=False,
                    action=RecoveryActionType.MANUAL_INTERVENTION,
                    requires_manual_intervention=True,
                    message=f"Operation failed after {context.attempt_number} attempts",
                    error_code=info.code,
                    category=strategy.category,
                    attempt_number=context.attempt_number,
                    next_steps=("Review error cause", "Consider alternative approach"),
                )
            else:
                result = self._execute(action, info, context, payload, strategy)
            self._log_result(result)
            return result

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _execute(
        self,
        action: RecoveryAction,
        info: FailureInfo,
        context: RecoveryContext,
        payload: dict[str, Any],
        strategy: RecoveryStrategy | None,
    ) -> RecoveryResult:
        handlers = {
            RecoveryActionType.RETRY_OPERATION: self._retry,
            RecoveryActionType.ROLLBACK_CHANGES: self._rollback_changes,
            RecoveryActionType.PARTIAL_RECOVERY: self._partial_recovery,
            RecoveryActionType.QUEUE_FOR_LATER: self._queue_for_later,
            RecoveryActionType.SKIP_FAILED_ITEMS: self._skip_failed_items,
        }
        handler = handlers.get(action.action_type)
        if handler is None:
            return RecoveryResult(
                success=False,
                action=RecoveryActionType.MANUAL_INTERVENTION,
                requires_manual_intervention=True,
                message=f"Manual intervention required: {action.description}",
                error_code=info.code,
                category=info.category,
                attempt_number=context.attempt_number,
                next_steps=("Review error details", "Contact appropriate personnel", *action.prerequisites),
                critical=bool(strategy and strategy.critical),
            )
        return handler(action, info, context, payload)

    def _retry(
        self,
        action: RecoveryAction,
        info: FailureInfo,
        context: RecoveryContext,
        payload: dict[str, Any],
    ) -> RecoveryResult:
        delay = retry_delay_ms(
            context.attempt_number,
            self._settings.backoff_base_ms,
            self._settings.backoff_cap_ms,
        )
        return RecoveryResult(
            success=True,
            action=RecoveryActionType.RETRY_OPERATION,
            requires_manual_intervention=False,
            message=f"Retry scheduled with {delay}ms delay",
            error_code=info.code,
            category=info.category,
            attempt_number=context.attempt_number,
            retry_delay_ms=delay,
            next_steps=("Monitor operation progress", "Check for completion"),
        )

    def _rollback_changes(
        self,
        action: RecoveryAction,
        info: FailureInfo,
        context: RecoveryContext,
        payload: dict[str, Any],
    ) -> RecoveryResult:
        steps = rollback_steps(context.operation_type)
        self._audit_best_effort(
            context,
            AuditAction.ROLLBACK_INITIATED,
            {
                "reason": "Error recovery rollback",
                "original_operation": context.operation_name,
                "attempt_number": context.attempt_number,
                "rollback_steps": list(steps),
            },
        )

        if self._rollback is not None:
            try:
                self._rollback.execute(context.operation_name, steps, payload)
            except Exception as e:
                logger.critical(
                    "rollback_failed",
                    extra={
                        "error_code": info.code,
                        "operation_type": context.operation_name,
                        "detail": str(e),
                    },
                    exc_info=True,
                )
                return RecoveryResult(
                    success=False,
                    action=RecoveryActionType.ROLLBACK_CHANGES,
                    requires_manual_intervention=True,
                    message=f"CRITICAL: Rollback failed - {e}",
                    error_code="ROLLBACK_FAILED",
                    category=FailureCategory.INTEGRITY,
                    attempt_number=context.attempt_number,
                    rollback_steps=steps,
                    next_steps=(
                        "URGENT: Contact system administrator",
                        "Manual database review required",
                        "Check data integrity",
                    ),
                    critical=True,
                )

        return RecoveryResult(
            success=True,
            action=RecoveryActionType.ROLLBACK_CHANGES,
            requires_manual_intervention=False,
            message="Changes successfully rolled back",
            error_code=info.code,
            category=info.category,
            attempt_number=context.attempt_number,
            rollback_steps=steps,
            next_steps=("Verify system state", "Investigate error cause before retrying"),
        )

    def _partial_recovery(
        self,
        action: RecoveryAction,
        info: FailureInfo,
        context: RecoveryContext,
        payload: dict[str, Any],
    ) -> RecoveryResult:
        receiving_context = payload.get("context")
        valid, invalid = split_for_partial_recovery(
            payload.get("order"),
            tuple(payload.get("line_items") or ()),
            self._settings.partial_recovery_ratio,
            receiving_context if isinstance(receiving_context, ReceivingContext) else None,
        )
        self._audit_best_effort(
            context,
            AuditAction.PARTIAL_RECOVERY,
            {
                "processed_items": len(valid),
                "failed_items": len(invalid),
                "valid_product_ids": [line.product_id for line in valid],
                "invalid_items": [
                    {"product_id": r.product_id, "reason": r.reason} for r in invalid
                ],
            },
        )
        return RecoveryResult(
            success=len(valid) > 0,
            action=RecoveryActionType.PARTIAL_RECOVERY,
            requires_manual_intervention=len(invalid) > 0,
            message=(
                f"Partial recovery completed: {len(valid)} items processed, "
                f"{len(invalid)} items require manual review"
            ),
            error_code=info.code,
            category=info.category,
            attempt_number=context.attempt_number,
            processed_items=valid,
            failed_items=invalid,
            next_steps=(
                ("Review failed items", "Correct validation errors", "Reprocess failed items")
                if invalid
                else ("Verify processed items", "Complete remaining operations")
            ),
        )

    def _queue_for_later(
        self,
        action: RecoveryAction,
        info: FailureInfo,
        context: RecoveryContext,
        payload: dict[str, Any],
    ) -> RecoveryResult:
        scheduled_for = self._clock.now() + timedelta(seconds=self._settings.queue_delay_seconds)
        try:
            if self._scheduler is None:
                raise SchedulerUnavailableError(context.operation_name, "no scheduler configured")
            queue_id = self._scheduler.enqueue(context.operation_name, payload, scheduled_for)
        except Exception as e:
            logger.error(
                "queue_for_later_failed",
                extra={"operation_type": context.operation_name, "detail": str(e)},
            )
            return self.handle_failure(e, context, payload)

        self._audit_best_effort(
            context,
            AuditAction.OPERATION_QUEUED,
            {
                "queue_id": queue_id,
                "scheduled_for": scheduled_for.isoformat(),
                "operation": context.operation_name,
            },
        )
        return RecoveryResult(
            success=True,
            action=RecoveryActionType.QUEUE_FOR_LATER,
            requires_manual_intervention=False,
            message=f"Operation queued for processing at {scheduled_for.isoformat()}",
            error_code=info.code,
            category=info.category,
            attempt_number=context.attempt_number,
            queue_id=queue_id,
            scheduled_for=scheduled_for,
            next_steps=(
                "Monitor queue processing",
                "Check operation status later",
                "Contact support if operation fails repeatedly",
            ),
        )

    def _skip_failed_items(
        self,
        action: RecoveryAction,
        info: FailureInfo,
        context: RecoveryContext,
        payload: dict[str, Any],
    ) -> RecoveryResult:
        failed_ids = set(payload.get("skip_product_ids") or info.product_ids)
        lines: Iterable[Any] = payload.get("line_items") or ()
        skipped = tuple(line for line in lines if line.product_id in failed_ids)
        processed = tuple(line for line in lines if line.product_id not in failed_ids)

        self._audit_best_effort(
            context,
            AuditAction.ITEMS_SKIPPED,
            {
                "skipped_count": len(skipped),
                "processed_count": len(processed),
                "skipped_product_ids": sorted(failed_ids),
                "reason": "Error recovery - skip failed items",
                "error": info.message,
            },
        )
        return RecoveryResult(
            success=True,
            action=RecoveryActionType.SKIP_FAILED_ITEMS,
            requires_manual_intervention=len(skipped) > 0,
            message=f"{len(skipped)} items skipped, {len(processed)} items processed",
            error_code=info.code,
            category=info.category,
            attempt_number=context.attempt_number,
            processed_items=processed,
            skipped_items=skipped,
            next_steps=(
                "Review skipped items",
                "Determine if manual processing needed",
                "Update purchase order status accordingly",
            ),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit_initiated(
        self,
        context: RecoveryContext,
        info: FailureInfo,
        requested_action: RecoveryActionType | None = None,
    ) -> None:
        metadata: dict[str, Any] = {
            "error_code": info.code,
            "error_message": info.message,
            "category": info.category.value,
            "attempt_number": context.attempt_number,
            "operation_type": context.operation_name,
        }
        if requested_action is not None:
            metadata["requested_action"] = requested_action.value
        self._audit_best_effort(context, AuditAction.ERROR_RECOVERY_INITIATED, metadata)

    def _audit_best_effort(
        self,
        context: RecoveryContext,
        action: AuditAction,
        metadata: dict[str, Any],
    ) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(
                ENTITY_TYPE,
                context.entity_id or "unknown",
                action.value,
                context.actor_id,
                None,
                None,
                metadata,
            )
        except Exception:
            logger.exception("recovery_audit_failed", extra={"audit_action": action.value})

    @staticmethod
    def _log_result(result: RecoveryResult) -> None:
        extra = {
            "action": result.action.value,
            "success": result.success,
            "requires_manual_intervention": result.requires_manual_intervention,
            "error_code": result.error_code,
            "attempt_number": result.attempt_number,
        }
        if result.critical:
            logger.critical("recovery_completed", extra=extra)
        elif result.requires_manual_intervention:
            logger.error("recovery_completed", extra=extra)
        else:
            logger.info("recovery_completed", extra=extra)
