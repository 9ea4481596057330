"""SQL-backed collaborator services for the procurement kernel (write side)."""

from procurement_kernel.services.audit_log import SqlAuditLog
from procurement_kernel.services.base import BaseService, translate_db_errors
from procurement_kernel.services.journal_store import SqlJournalStore
from procurement_kernel.services.receipt_store import SqlReceiptStore
from procurement_kernel.services.scheduler import SqlDeferredWorkScheduler
from procurement_kernel.services.stock_store import SqlStockStore

__all__ = [
    "BaseService",
    "translate_db_errors",
    "SqlAuditLog",
    "SqlJournalStore",
    "SqlReceiptStore",
    "SqlDeferredWorkScheduler",
    "SqlStockStore",
]
