"""
Recovery value objects (``procurement_kernel.domain.recovery``).

Responsibility
--------------
Shapes used by the recovery planner and orchestrator: failure categories,
action types, strategy rows, the per-attempt recovery context, the
classified failure, and the audit-ready recovery result.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, ZERO I/O.

Invariants enforced
-------------------
* A ``RecoveryResult`` with ``success=False`` always has
  ``requires_manual_intervention=True`` unless a deferred operation was
  queued.
* ``RecoveryContext.attempt_number`` is 1-based.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class FailureCategory(str, Enum):
    VALIDATION = "validation"
    POLICY = "policy"
    CONSISTENCY = "consistency"
    INFRASTRUCTURE = "infrastructure"
    INTEGRITY = "integrity"
    UNKNOWN = "unknown"


class RecoveryActionType(str, Enum):
    RETRY_OPERATION = "retry_operation"
    ROLLBACK_CHANGES = "rollback_changes"
    MANUAL_INTERVENTION = "manual_intervention"
    PARTIAL_RECOVERY = "partial_recovery"
    SKIP_FAILED_ITEMS = "skip_failed_items"
    QUEUE_FOR_LATER = "queue_for_later"


class OperationType(str, Enum):
    RECEIVING = "receiving"
    APPROVAL = "approval"
    STATUS_CHANGE = "status_change"
    COSTING = "costing"
    POSTING = "posting"


@dataclass(frozen=True)
class RecoveryAction:
    """One candidate action in a strategy row.

    ``priority`` 1 is tried first.  ``estimated_time`` is an operator-facing
    range, not a scheduling input.
    """

    action_type: RecoveryActionType
    description: str
    auto_execute: bool
    priority: int
    estimated_time: str | None = None
    prerequisites: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecoveryStrategy:
    name: str
    error_codes: frozenset[str]
    category: FailureCategory
    actions: tuple[RecoveryAction, ...]
    auto_recoverable: bool
    max_retries: int
    critical: bool = False

    @property
    def primary_action(self) -> RecoveryAction:
        return min(self.actions, key=lambda a: a.priority)


@dataclass(frozen=True)
class FailureInfo:
    """A failure reduced to the fields recovery dispatches on."""

    code: str
    message: str
    category: FailureCategory
    exception_type: str | None = None
    product_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecoveryContext:
    """Per-attempt context handed to the orchestrator.

    ``payload`` is whatever the failed operation needs to retry or roll
    back.  For receiving it holds ``order`` (PurchaseOrder),
    ``line_items`` (sequence of ReceivingLineItem) and ``context``
    (ReceivingContext).  ``max_retries`` of None defers to the strategy.
    """

    operation_type: OperationType | str
    attempt_number: int = 1
    max_retries: int | None = None
    entity_id: str | None = None
    actor_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.attempt_number < 1:
            raise ValueError(f"attempt_number must be >= 1, got {self.attempt_number}")

    @property
    def operation_name(self) -> str:
        return str(getattr(self.operation_type, "value", self.operation_type))


@dataclass(frozen=True)
class RecoveryResult:
    """Audit-ready outcome of one recovery decision."""

    success: bool
    action: RecoveryActionType
    requires_manual_intervention: bool
    message: str
    error_code: str | None = None
    category: FailureCategory | None = None
    attempt_number: int = 1
    retry_delay_ms: int | None = None
    rollback_steps: tuple[str, ...] = ()
    processed_items: tuple[Any, ...] = ()
    failed_items: tuple[Any, ...] = ()
    skipped_items: tuple[Any, ...] = ()
    queue_id: str | None = None
    scheduled_for: datetime | None = None
    next_steps: tuple[str, ...] = ()
    critical: bool = False
