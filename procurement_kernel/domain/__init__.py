"""
Pure domain layer.

This module contains value objects, fixed rule tables and collaborator
protocols with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the Clock abstraction itself)
- I/O

All domain objects are immutable and deterministic.
"""

from procurement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from procurement_kernel.domain.ledger import (
    ACCOUNT_SELECTION,
    AccountMap,
    GLAccount,
    JournalEntryDraft,
    JournalEntryStatus,
    JournalLineSpec,
    PostingResult,
    PostingSummary,
    ReferenceType,
)
from procurement_kernel.domain.purchase_order import (
    ItemCondition,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    ReceivingContext,
    ReceivingLineItem,
    Role,
    StatusTransition,
    parse_role,
)
from procurement_kernel.domain.recovery import (
    FailureCategory,
    FailureInfo,
    OperationType,
    RecoveryAction,
    RecoveryActionType,
    RecoveryContext,
    RecoveryResult,
    RecoveryStrategy,
)
from procurement_kernel.domain.validation import (
    Severity,
    ValidationError,
    ValidationResult,
    format_issue,
    summarize_issues,
)
from procurement_kernel.domain.valuation import (
    AdjustmentType,
    PriceVariance,
    StockLevel,
    StockPolicy,
    StockRequest,
    ValuationAdjustment,
    WeightedAverageResult,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "ACCOUNT_SELECTION",
    "AccountMap",
    "GLAccount",
    "JournalEntryDraft",
    "JournalEntryStatus",
    "JournalLineSpec",
    "PostingResult",
    "PostingSummary",
    "ReferenceType",
    "ItemCondition",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderStatus",
    "ReceivingContext",
    "ReceivingLineItem",
    "Role",
    "StatusTransition",
    "parse_role",
    "FailureCategory",
    "FailureInfo",
    "OperationType",
    "RecoveryAction",
    "RecoveryActionType",
    "RecoveryContext",
    "RecoveryResult",
    "RecoveryStrategy",
    "Severity",
    "ValidationError",
    "ValidationResult",
    "format_issue",
    "summarize_issues",
    "AdjustmentType",
    "PriceVariance",
    "StockLevel",
    "StockPolicy",
    "StockRequest",
    "ValuationAdjustment",
    "WeightedAverageResult",
]
