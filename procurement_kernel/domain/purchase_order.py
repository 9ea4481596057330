"""
Purchase-order domain types (``procurement_kernel.domain.purchase_order``).

Responsibility
--------------
Immutable value objects for purchase orders, their line items, receiving
line items, the receiving context, and status-transition records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, ZERO I/O.  No imports from
``db/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* All quantities and prices are ``Decimal`` (coerced in ``__post_init__``).
* Orders are never mutated: status changes produce a new instance via
  ``OrderStateMachine.apply_transition``.
* ``ReceivingLineItem`` is append-only relative to its order; receipts are
  never edited after creation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from procurement_kernel.domain.values import ZERO, as_decimal


class PurchaseOrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT_TO_SUPPLIER = "sent_to_supplier"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"
    CANCELLED = "cancelled"
    CLOSED = "closed"
    REJECTED = "rejected"


class Role(str, Enum):
    CASHIER = "cashier"
    EMPLOYEE = "employee"
    ACCOUNTANT = "accountant"
    MANAGER = "manager"
    ADMIN = "admin"


def parse_role(role: Role | str | None) -> Role | None:
    """Return the Role for a role name, or None for unknown roles."""
    if role is None or isinstance(role, Role):
        return role
    try:
        return Role(str(role).lower())
    except ValueError:
        return None


class ItemCondition(str, Enum):
    GOOD = "good"
    DAMAGED = "damaged"
    EXPIRED = "expired"


@dataclass(frozen=True)
class PurchaseOrderItem:
    """One ordered product line.

    Owned exclusively by its PurchaseOrder.
    """

    product_id: str
    quantity: Decimal
    unit_price: Decimal
    product_name: str = ""
    sku: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", as_decimal(self.quantity, "quantity"))
        object.__setattr__(self, "unit_price", as_decimal(self.unit_price, "unit_price"))

    @property
    def total(self) -> Decimal:
        return self.quantity * self.unit_price

    @property
    def display_name(self) -> str:
        return self.product_name or self.sku or self.product_id


@dataclass(frozen=True)
class PurchaseOrder:
    """A purchase order snapshot.

    Contract:
        Created in ``draft``; moved only through OrderStateMachine
        transitions; never deleted, only terminated into ``cancelled``,
        ``closed`` or ``rejected``.
    """

    id: str
    order_number: str
    supplier_id: str | None
    items: tuple[PurchaseOrderItem, ...]
    total: Decimal
    order_date: date
    created_by: str
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    subtotal: Decimal | None = None
    tax: Decimal = ZERO
    expected_delivery_date: date | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "total", as_decimal(self.total, "total"))
        object.__setattr__(self, "tax", as_decimal(self.tax, "tax"))
        object.__setattr__(self, "status", PurchaseOrderStatus(self.status))
        if self.subtotal is not None:
            object.__setattr__(self, "subtotal", as_decimal(self.subtotal, "subtotal"))

    @property
    def items_total(self) -> Decimal:
        return sum((item.total for item in self.items), ZERO)

    def item_for(self, product_id: str) -> PurchaseOrderItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None


@dataclass(frozen=True)
class ReceivingLineItem:
    """One line of a receiving event.

    ``ordered_quantity`` is copied from the order item at validation time
    when left as None.  ``previously_received`` is the cumulative quantity
    received before this event.
    """

    product_id: str
    received_quantity: Decimal
    previously_received: Decimal = ZERO
    ordered_quantity: Decimal | None = None
    condition: ItemCondition = ItemCondition.GOOD
    batch_number: str | None = None
    expiry_date: date | None = None
    unit_cost: Decimal | None = None
    product_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "received_quantity",
            as_decimal(self.received_quantity, "received_quantity"),
        )
        object.__setattr__(
            self, "previously_received",
            as_decimal(self.previously_received, "previously_received"),
        )
        object.__setattr__(self, "condition", ItemCondition(self.condition))
        if self.ordered_quantity is not None:
            object.__setattr__(
                self, "ordered_quantity",
                as_decimal(self.ordered_quantity, "ordered_quantity"),
            )
        if self.unit_cost is not None:
            object.__setattr__(self, "unit_cost", as_decimal(self.unit_cost, "unit_cost"))


@dataclass(frozen=True)
class ReceivingContext:
    """Per-event receiving parameters.

    ``as_of`` is "today" for expiry and received-date checks; engines never
    read a clock, so the caller supplies it.
    """

    received_date: date
    as_of: date
    allow_over_receiving: bool = False
    tolerance_percentage: Decimal | None = None
    received_by: str | None = None
    actor_role: Role | str | None = None
    notes: str | None = None

    def __post_init__(self) -> None:
        if self.tolerance_percentage is not None:
            object.__setattr__(
                self, "tolerance_percentage",
                as_decimal(self.tolerance_percentage, "tolerance_percentage"),
            )


@dataclass(frozen=True)
class StatusTransition:
    """Immutable record of one applied status change."""

    order_id: str
    from_status: PurchaseOrderStatus
    to_status: PurchaseOrderStatus
    performed_by: str
    performed_at: datetime
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
