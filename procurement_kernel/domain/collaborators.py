"""
Collaborator contracts (``procurement_kernel.domain.collaborators``).

Responsibility
--------------
Protocols for the external collaborators the receiving core consumes.
SQLAlchemy implementations live in ``procurement_kernel.services``; tests
and callers may supply any object satisfying these shapes.

Architecture position
---------------------
**Kernel domain layer** -- interface definitions only.

Invariants enforced
-------------------
* ``StockStore.set_stock`` with ``expected_version`` must fail with
  ``ConcurrentModificationError`` when the stored version differs.
* ``JournalStore.mark_posted`` must reject an unbalanced entry with
  ``UnbalancedEntryError``, independently of the poster's own check.
* ``AuditLog.record`` is best-effort; callers log and continue on failure.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

from procurement_kernel.domain.ledger import JournalEntryDraft, JournalLineSpec
from procurement_kernel.domain.purchase_order import ReceivingLineItem
from procurement_kernel.domain.valuation import StockLevel


@runtime_checkable
class StockStore(Protocol):
    def get_stock(self, product_id: str) -> StockLevel | None: ...

    def set_stock(
        self,
        product_id: str,
        quantity: Decimal,
        unit_cost: Decimal,
        expected_version: int | None = None,
    ) -> StockLevel: ...


@runtime_checkable
class ReceiptStore(Protocol):
    def get_previously_received(self, order_id: str, product_id: str) -> Decimal: ...

    def append_receipt(
        self,
        order_id: str,
        line_items: Sequence[ReceivingLineItem],
        received_by: str,
        received_at: datetime,
    ) -> str: ...


@runtime_checkable
class AuditLog(Protocol):
    def record(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        actor: str | None,
        before_state: dict[str, Any] | None = None,
        after_state: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


@runtime_checkable
class JournalStore(Protocol):
    def next_entry_number(self) -> str: ...

    def insert_entry(self, entry: JournalEntryDraft) -> str: ...

    def insert_lines(self, entry_id: str, lines: Sequence[JournalLineSpec]) -> None: ...

    def mark_posted(self, entry_id: str, posted_by: str, posted_at: datetime) -> None: ...


@runtime_checkable
class DeferredWorkScheduler(Protocol):
    def enqueue(
        self,
        operation_type: str,
        payload: dict[str, Any],
        scheduled_for: datetime,
    ) -> str: ...


@runtime_checkable
class RollbackExecutor(Protocol):
    """Carries out rollback steps for a failed operation."""

    def execute(
        self,
        operation_type: str,
        steps: Sequence[str],
        payload: dict[str, Any],
    ) -> None: ...
