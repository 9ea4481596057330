"""ORM models for the procurement kernel."""

from procurement_kernel.models.audit_event import AuditAction, AuditEvent
from procurement_kernel.models.deferred_operation import (
    DeferredOperation,
    DeferredOperationStatus,
)
from procurement_kernel.models.journal import JournalEntry, JournalLine
from procurement_kernel.models.receipt import ReceiptLine
from procurement_kernel.models.stock_level import StockLevelRecord

__all__ = [
    "AuditAction",
    "AuditEvent",
    "DeferredOperation",
    "DeferredOperationStatus",
    "JournalEntry",
    "JournalLine",
    "ReceiptLine",
    "StockLevelRecord",
]
