"""
procurement_services.receiving_pipeline -- End-to-end goods receipt.

Responsibility:
    Runs one receiving attempt in the required order:

        1. OrderStateMachine   -- is the order receivable by this actor?
        2. ReceivingValidator  -- are these line items acceptable?
        3. fresh re-read of previously-received quantities
        4. CostingEngine       -- new weighted-average cost per product,
                                  written back with optimistic concurrency
        5. LedgerPoster        -- one balanced entry for the value change
        6. receipt append, status transition, audit records

    Failures in steps 2-5 are handed to the RecoveryOrchestrator.  A
    successful partial-recovery result re-runs the pipeline once with the
    valid subset of lines.

Architecture position:
    Services -- imperative shell composing the pure engines with the
    stock, receipt, journal and audit collaborators.

Invariants enforced:
    - Status validation strictly precedes receiving validation, which
      strictly precedes costing and posting.
    - A previously-received quantity that changed between validation and
      write is a CONCURRENT_MODIFICATION, routed to the retry path.
    - The pipeline flushes but never commits.  On a failed outcome the
      caller rolls back the session before acting on the recovery result.

Failure modes:
    Returned, never raised, for every kernel or storage failure: see
    ``ReceivingOutcome.recovery``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import Session

from procurement_config import get_active_config
from procurement_config.schema import ProcurementConfig
from procurement_engines.costing import CostingEngine, CostingLine
from procurement_engines.order_state_machine import OrderStateMachine
from procurement_engines.receiving_validator import ReceivingValidator
from procurement_engines.stock_guard import StockGuard
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.collaborators import AuditLog, ReceiptStore, StockStore
from procurement_kernel.domain.ledger import PostingResult, ReferenceType
from procurement_kernel.domain.purchase_order import (
    PurchaseOrder,
    ReceivingContext,
    ReceivingLineItem,
    StatusTransition,
)
from procurement_kernel.domain.recovery import (
    OperationType,
    RecoveryActionType,
    RecoveryContext,
    RecoveryResult,
)
from procurement_kernel.domain.validation import ValidationResult
from procurement_kernel.domain.valuation import (
    PriceVariance,
    StockLevel,
    StockPolicy,
    ValuationAdjustment,
)
from procurement_kernel.domain.values import ZERO
from procurement_kernel.exceptions import ConcurrentModificationError, ProcurementKernelError
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.audit_event import AuditAction
from procurement_kernel.services import (
    SqlAuditLog,
    SqlDeferredWorkScheduler,
    SqlJournalStore,
    SqlReceiptStore,
    SqlStockStore,
)
from procurement_services.ledger_poster import LedgerPoster
from procurement_services.recovery_orchestrator import RecoveryOrchestrator

logger = get_logger("services.receiving_pipeline")


class _StockCheckFailed(Exception):
    """Carries a failing StockGuard result out of ``_apply``."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__(result.summary())


_ROUTABLE_ERRORS = (
    ProcurementKernelError,
    sa_exc.SQLAlchemyError,
    TimeoutError,
    ConnectionError,
    _StockCheckFailed,
)


@dataclass(frozen=True)
class ReceivingOutcome:
    """
    Result of one ``ReceivingPipeline.receive`` call.

    ``order`` is the updated snapshot on success and the input order
    otherwise.  ``recovery`` is set whenever the orchestrator was involved,
    including a partial recovery that led to a successful re-run.
    """

    success: bool
    order: PurchaseOrder
    validation: ValidationResult | None = None
    receipt_id: str | None = None
    posting: PostingResult | None = None
    adjustments: tuple[ValuationAdjustment, ...] = ()
    price_variances: tuple[PriceVariance, ...] = ()
    transition: StatusTransition | None = None
    recovery: RecoveryResult | None = None
    received_items: tuple[ReceivingLineItem, ...] = ()
    failed_items: tuple[Any, ...] = ()

    @property
    def requires_manual_intervention(self) -> bool:
        return bool(self.recovery and self.recovery.requires_manual_intervention)


class ReceivingPipeline:
    """
    Goods-receipt orchestration over the pure engines.

    Contract:
        ``receive`` returns a ReceivingOutcome for every kernel, storage or
        validation failure.  Programming errors propagate.

    Non-goals:
        - Sleeping or re-invoking on a retry result; the caller decides.
        - Committing the session.
    """

    def __init__(
        self,
        stock_store: StockStore,
        receipt_store: ReceiptStore,
        poster: LedgerPoster,
        orchestrator: RecoveryOrchestrator,
        audit_log: AuditLog | None = None,
        clock: Clock | None = None,
        state_machine: OrderStateMachine | None = None,
        validator: ReceivingValidator | None = None,
        costing: CostingEngine | None = None,
        stock_guard: StockGuard | None = None,
        stock_policy: StockPolicy | None = None,
    ):
        self._stock = stock_store
        self._receipts = receipt_store
        self._poster = poster
        self._orchestrator = orchestrator
        self._audit = audit_log
        self._clock = clock or SystemClock()
        self._state_machine = state_machine or OrderStateMachine()
        self._validator = validator or ReceivingValidator()
        self._costing = costing or CostingEngine()
        self._guard = stock_guard or StockGuard()
        self._policy = stock_policy or StockPolicy()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def receive(
        self,
        order: PurchaseOrder,
        line_items: Sequence[ReceivingLineItem],
        context: ReceivingContext,
        actor_id: str,
        attempt_number: int = 1,
    ) -> ReceivingOutcome:
        """Receive ``line_items`` against ``order`` as ``actor_id``."""
        with LogContext.bind(
            purchase_order_id=order.id, actor_id=actor_id, operation="receiving",
        ):
            logger.info(
                "receiving_started",
                extra={"line_count": len(line_items), "attempt_number": attempt_number},
            )

            receivable = self._state_machine.validate_receivable(order, context.actor_role, actor_id)
            if not receivable.is_valid:
                logger.warning("receiving_refused", extra={"codes": list(receivable.error_codes)})
                return ReceivingOutcome(success=False, order=order, validation=receivable)

            lines = self._prepare_lines(order, line_items)
            validation = self._validator.validate_receiving(order, lines, context)
            if not validation.is_valid:
                return self._recover(
                    validation, order, lines, context, actor_id, attempt_number, validation,
                )

            try:
                return self._apply(order, lines, context, actor_id, validation)
            except _ROUTABLE_ERRORS as e:
                logger.error(
                    "receiving_failed",
                    extra={"error_type": type(e).__name__, "detail": str(e)},
                )
                return self._recover(e, order, lines, context, actor_id, attempt_number, validation)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _prepare_lines(
        self,
        order: PurchaseOrder,
        line_items: Sequence[ReceivingLineItem],
    ) -> tuple[ReceivingLineItem, ...]:
        """Stamp ordered and previously-received quantities from the stores."""
        prepared: list[ReceivingLineItem] = []
        for line in line_items:
            item = order.item_for(line.product_id)
            if item is None:
                prepared.append(line)
                continue
            prepared.append(replace(
                line,
                ordered_quantity=item.quantity,
                previously_received=self._receipts.get_previously_received(order.id, line.product_id),
                product_name=line.product_name or item.display_name,
            ))
        return tuple(prepared)

    def _check_fresh(self, order: PurchaseOrder, lines: Sequence[ReceivingLineItem]) -> dict[str, Any]:
        """Re-read previously-received quantities; raise when any moved."""
        prior: dict[str, Any] = {}
        for item in order.items:
            prior[item.product_id] = self._receipts.get_previously_received(order.id, item.product_id)
        for line in lines:
            fresh = prior.get(line.product_id)
            if fresh is not None and fresh != line.previously_received:
                raise ConcurrentModificationError(
                    "receipt", f"{order.id}:{line.product_id}",
                    line.previously_received, fresh,
                )
        return prior

    def _apply(
        self,
        order: PurchaseOrder,
        lines: Sequence[ReceivingLineItem],
        context: ReceivingContext,
        actor_id: str,
        validation: ValidationResult,
    ) -> ReceivingOutcome:
        prior = self._check_fresh(order, lines)
        now = self._clock.now()

        levels: dict[str, StockLevel] = {}
        costing_lines: list[CostingLine] = []
        for line in lines:
            item = order.item_for(line.product_id)
            level = levels.get(line.product_id)
            if level is None:
                level = self._stock.get_stock(line.product_id) or StockLevel(
                    product_id=line.product_id,
                    quantity=ZERO,
                    unit_cost=ZERO,
                    product_name=line.product_name,
                )
                levels[line.product_id] = level
            unit_cost = line.unit_cost if line.unit_cost is not None else item.unit_price
            costing_lines.append(CostingLine.from_stock(level, line.received_quantity, unit_cost))

        adjustments: list[ValuationAdjustment] = []
        for costing_line in self._costing.consolidate(costing_lines):
            level = levels[costing_line.product_id]
            check = self._guard.check_stock_change(
                level.quantity, costing_line.incoming_qty, self._policy,
                level.product_name or costing_line.product_name or level.product_id,
            )
            if not check.is_valid:
                raise _StockCheckFailed(check)
            result, adjustment = self._costing.build_adjustment(costing_line)
            self._stock.set_stock(
                level.product_id, result.new_stock, result.new_cost,
                expected_version=level.version,
            )
            adjustments.append(adjustment)
            self._audit_best_effort(
                "stock_level", level.product_id, AuditAction.STOCK_UPDATED, actor_id,
                {"quantity": level.quantity, "unit_cost": level.unit_cost},
                {"quantity": result.new_stock, "unit_cost": result.new_cost},
                {"purchase_order_id": order.id},
            )

        variances = self._costing.detect_price_variances(order, lines)

        posting = self._poster.post(
            adjustments,
            reference_id=order.id,
            reference_type=ReferenceType.PURCHASE_ORDER,
            description=f"Inventory receipt for {order.order_number}",
            actor=actor_id,
        )
        if posting.entry_id is not None:
            self._audit_best_effort(
                "journal_entry", posting.entry_id, AuditAction.JOURNAL_POSTED, actor_id,
                None,
                {"entry_number": posting.entry_number, "total_debits": posting.summary.total_debits},
                {"purchase_order_id": order.id},
            )

        receipt_id = self._receipts.append_receipt(order.id, lines, actor_id, now)
        LogContext.set(receipt_id=receipt_id)
        self._audit_best_effort(
            "purchase_order", order.id, AuditAction.GOODS_RECEIVED, actor_id,
            None,
            {"receipt_id": receipt_id, "lines": list(lines)},
            {"warnings": list(validation.warning_codes)},
        )

        target = self._validator.projected_status(order, lines, prior)
        new_order = order
        transition: StatusTransition | None = None
        if target != order.status:
            outcome = self._state_machine.apply_transition(
                order, target, actor_id, context.actor_role, now,
                reason="Goods received", metadata={"receipt_id": receipt_id},
            )
            new_order, transition = outcome.order, outcome.transition
            if transition is not None:
                self._audit_best_effort(
                    "purchase_order", order.id, AuditAction.STATUS_CHANGED, actor_id,
                    {"status": order.status}, {"status": target},
                    {"receipt_id": receipt_id},
                )
            else:
                logger.error(
                    "status_transition_refused_after_receipt",
                    extra={"target": target.value, "codes": list(outcome.validation.error_codes)},
                )

        logger.info(
            "receiving_completed",
            extra={
                "receipt_id": receipt_id,
                "entry_number": posting.entry_number,
                "new_status": new_order.status.value,
                "adjustment_count": len(adjustments),
            },
        )
        return ReceivingOutcome(
            success=True,
            order=new_order,
            validation=validation,
            receipt_id=receipt_id,
            posting=posting,
            adjustments=tuple(adjustments),
            price_variances=tuple(variances),
            transition=transition,
            received_items=tuple(lines),
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def _recover(
        self,
        failure: Any,
        order: PurchaseOrder,
        lines: Sequence[ReceivingLineItem],
        context: ReceivingContext,
        actor_id: str,
        attempt_number: int,
        validation: ValidationResult,
    ) -> ReceivingOutcome:
        if isinstance(failure, _StockCheckFailed):
            failure = failure.result
        recovery_context = RecoveryContext(
            operation_type=OperationType.RECEIVING,
            attempt_number=attempt_number,
            entity_id=order.id,
            actor_id=actor_id,
            payload={"order": order, "line_items": tuple(lines), "context": context},
        )
        recovery = self._orchestrator.handle_failure(failure, recovery_context)

        if (
            recovery.action == RecoveryActionType.PARTIAL_RECOVERY
            and recovery.success
            and attempt_number == 1
        ):
            valid = tuple(recovery.processed_items)
            logger.info(
                "partial_recovery_rerun",
                extra={"valid_count": len(valid), "invalid_count": len(recovery.failed_items)},
            )
            rerun = self.receive(order, valid, context, actor_id, attempt_number=attempt_number + 1)
            return replace(
                rerun,
                recovery=rerun.recovery or recovery,
                failed_items=tuple(recovery.failed_items) + tuple(rerun.failed_items),
            )

        return ReceivingOutcome(
            success=False,
            order=order,
            validation=validation,
            recovery=recovery,
            failed_items=tuple(recovery.failed_items),
        )

    def _audit_best_effort(
        self,
        entity_type: str,
        entity_id: str,
        action: AuditAction,
        actor_id: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        metadata: dict[str, Any] | None,
    ) -> None:
        if self._audit is None:
            return
        try:
            self._audit.record(entity_type, entity_id, action.value, actor_id, before, after, metadata)
        except Exception:
            logger.exception("receiving_audit_failed", extra={"audit_action": action.value})


def build_receiving_pipeline(
    session: Session,
    config: ProcurementConfig | None = None,
    clock: Clock | None = None,
    actor: str = "system",
) -> ReceivingPipeline:
    """Wire a ReceivingPipeline over the SQL collaborators for ``session``."""
    config = config or get_active_config()
    clock = clock or SystemClock()
    audit_log = SqlAuditLog(session, clock)
    orchestrator = RecoveryOrchestrator(
        audit_log=audit_log,
        scheduler=SqlDeferredWorkScheduler(session, clock),
        clock=clock,
        settings=config.recovery,
    )
    poster = LedgerPoster(
        SqlJournalStore(session),
        clock=clock,
        account_map=config.ledger_accounts.to_account_map(),
    )
    return ReceivingPipeline(
        stock_store=SqlStockStore(session, actor=actor),
        receipt_store=SqlReceiptStore(session),
        poster=poster,
        orchestrator=orchestrator,
        audit_log=audit_log,
        clock=clock,
        validator=ReceivingValidator(
            near_expiry_days=config.receiving.near_expiry_days,
            default_tolerance_percentage=config.receiving.default_tolerance_percentage,
        ),
        costing=CostingEngine(
            significant_variance_percentage=config.costing.significant_variance_percentage,
            price_variance_percentage=config.costing.price_variance_percentage,
        ),
        stock_policy=config.stock.to_policy(),
    )
