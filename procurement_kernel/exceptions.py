"""
Typed exception hierarchy for the procurement kernel.

===============================================================================
TYPED EXCEPTIONS
===============================================================================

Validation outcomes are returned as ``ValidationResult`` values and never
raised.  Exceptions are reserved for conditions the caller cannot correct by
editing input: infrastructure failures, stale reads, ledger integrity
violations and failed rollbacks.

Every exception class carries a ``code`` class attribute.  The code is the
same string the recovery strategy table is keyed on, so a raised exception
can be routed to ``RecoveryOrchestrator.handle_failure`` without message
parsing.

    try:
        poster.post(adjustments, ...)
    except UnbalancedEntryError as e:
        orchestrator.handle_failure(e, context, payload)   # e.code == "UNBALANCED_ENTRY"

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementKernelError (base)
    |
    +-- PostingError
    |   +-- UnbalancedEntryError
    |   +-- EntryAlreadyPostedError
    |   +-- EntryNotFoundError
    |   +-- AccountMappingNotFoundError
    |
    +-- InfrastructureError
    |   +-- DatabaseError
    |   +-- ConnectionTimeoutError
    |   +-- DeadlockDetectedError
    |   +-- SchedulerUnavailableError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- StockError
    |   +-- StockNotFoundError
    |
    +-- RecoveryError
    |   +-- RollbackFailedError
    |
    +-- AuthenticationRequiredError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Posting         | UNBALANCED_ENTRY            | Debits != Credits beyond 0.01
                | ENTRY_ALREADY_POSTED        | mark_posted on a posted entry
                | ENTRY_NOT_FOUND             | Journal entry id does not exist
                | ACCOUNT_MAPPING_NOT_FOUND   | No account pair for reference/adjustment
----------------|-----------------------------|-----------------------------------------
Infrastructure  | DATABASE_ERROR              | Storage failure
                | CONNECTION_TIMEOUT          | Storage/connection timeout
                | DEADLOCK_DETECTED           | Storage reported a deadlock
                | SCHEDULER_UNAVAILABLE       | Deferred-work scheduler rejected enqueue
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_MODIFICATION     | Stale stock version or stale receipt tally
----------------|-----------------------------|-----------------------------------------
Stock           | PRODUCT_NOT_FOUND           | No stock level for product
----------------|-----------------------------|-----------------------------------------
Recovery        | ROLLBACK_FAILED             | Rollback executor raised
----------------|-----------------------------|-----------------------------------------
Auth            | AUTHENTICATION_REQUIRED     | Operation attempted without an actor
"""

from __future__ import annotations

from decimal import Decimal


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"


# Posting exceptions


class PostingError(ProcurementKernelError):
    """Base exception for journal posting errors."""

    code: str = "POSTING_ERROR"


class UnbalancedEntryError(PostingError):
    """Journal entry debits do not equal credits.

    This is an integrity violation, never a transient condition.
    """

    code: str = "UNBALANCED_ENTRY"

    def __init__(
        self,
        debits: Decimal,
        credits: Decimal,
        entry_id: str | None = None,
    ):
        self.debits = debits
        self.credits = credits
        self.entry_id = entry_id
        super().__init__(
            f"Entry unbalanced: debits={debits}, credits={credits}"
            + (f" (entry {entry_id})" if entry_id else "")
        )


class EntryAlreadyPostedError(PostingError):
    """Journal entry is already posted."""

    code: str = "ENTRY_ALREADY_POSTED"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry {entry_id} is already posted")


class EntryNotFoundError(PostingError):
    """Journal entry with given ID was not found."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class AccountMappingNotFoundError(PostingError):
    """No debit/credit account pair exists for the reference and adjustment type."""

    code: str = "ACCOUNT_MAPPING_NOT_FOUND"

    def __init__(self, reference_type: str, adjustment_type: str):
        self.reference_type = reference_type
        self.adjustment_type = adjustment_type
        super().__init__(
            f"No account mapping for reference type {reference_type!r} "
            f"and adjustment type {adjustment_type!r}"
        )


# Infrastructure exceptions


class InfrastructureError(ProcurementKernelError):
    """Base exception for storage and connectivity failures."""

    code: str = "INFRASTRUCTURE_ERROR"


class DatabaseError(InfrastructureError):
    """Storage layer failed."""

    code: str = "DATABASE_ERROR"

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Database error during {operation}" + (f": {detail}" if detail else "")
        )


class ConnectionTimeoutError(InfrastructureError):
    """Storage connection timed out."""

    code: str = "CONNECTION_TIMEOUT"

    def __init__(self, operation: str, timeout_seconds: float | None = None):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Connection timed out during {operation}"
            + (f" after {timeout_seconds}s" if timeout_seconds is not None else "")
        )


class DeadlockDetectedError(InfrastructureError):
    """Storage reported a deadlock."""

    code: str = "DEADLOCK_DETECTED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Deadlock detected during {operation}")


class SchedulerUnavailableError(InfrastructureError):
    """Deferred-work scheduler could not accept the operation."""

    code: str = "SCHEDULER_UNAVAILABLE"

    def __init__(self, operation_type: str, detail: str = ""):
        self.operation_type = operation_type
        self.detail = detail
        super().__init__(
            f"Scheduler unavailable for {operation_type}"
            + (f": {detail}" if detail else "")
        )


# Concurrency exceptions


class ConcurrencyError(ProcurementKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """A value read earlier in the operation was changed by another writer."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected: object = None,
        actual: object = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id}: "
            f"expected {expected}, found {actual}"
        )


# Stock exceptions


class StockError(ProcurementKernelError):
    """Base exception for stock store errors."""

    code: str = "STOCK_ERROR"


class StockNotFoundError(StockError):
    """No stock level exists for the product."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"No stock level for product {product_id}")


# Recovery exceptions


class RecoveryError(ProcurementKernelError):
    """Base exception for recovery errors."""

    code: str = "RECOVERY_ERROR"


class RollbackFailedError(RecoveryError):
    """Rollback of a failed operation itself failed.

    Always critical: the system state is unknown until an operator
    reconciles it.
    """

    code: str = "ROLLBACK_FAILED"

    def __init__(self, operation_type: str, entity_id: str | None, detail: str):
        self.operation_type = operation_type
        self.entity_id = entity_id
        self.detail = detail
        super().__init__(
            f"Rollback of {operation_type} for {entity_id} failed: {detail}"
        )


class AuthenticationRequiredError(ProcurementKernelError):
    """Operation attempted without an authenticated actor."""

    code: str = "AUTHENTICATION_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Authentication required for {operation}")
