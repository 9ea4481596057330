"""
Purchase-order workflow tables (``procurement_kernel.domain.workflow``).

Responsibility
--------------
Literal data tables for the purchase-order lifecycle: allowed transitions,
terminal and receivable statuses, role sets for each gated transition, and
per-role approval ceilings.

Architecture position
---------------------
**Kernel domain layer** -- pure data, ZERO I/O.  Consumed by
``procurement_engines.order_state_machine`` and
``procurement_engines.receiving_validator``.

Invariants enforced
-------------------
* Terminal statuses have an empty target set.
* ``rejected`` is reachable only from ``pending_approval``.
* ``admin`` has no approval ceiling; an unknown role has a ceiling of zero.
"""

from __future__ import annotations

from decimal import Decimal

from procurement_kernel.domain.purchase_order import PurchaseOrderStatus as S
from procurement_kernel.domain.purchase_order import Role

ORDER_TRANSITIONS: dict[S, frozenset[S]] = {
    S.DRAFT: frozenset({S.PENDING_APPROVAL, S.CANCELLED}),
    S.PENDING_APPROVAL: frozenset({S.APPROVED, S.DRAFT, S.CANCELLED, S.REJECTED}),
    S.APPROVED: frozenset({
        S.SENT_TO_SUPPLIER,
        S.PARTIALLY_RECEIVED,
        S.FULLY_RECEIVED,
        S.CANCELLED,
    }),
    S.SENT_TO_SUPPLIER: frozenset({S.PARTIALLY_RECEIVED, S.FULLY_RECEIVED, S.CANCELLED}),
    S.PARTIALLY_RECEIVED: frozenset({S.FULLY_RECEIVED}),
    S.FULLY_RECEIVED: frozenset({S.CLOSED}),
    S.CANCELLED: frozenset(),
    S.CLOSED: frozenset(),
    S.REJECTED: frozenset(),
}

TERMINAL_ORDER_STATUSES: frozenset[S] = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)

RECEIVABLE_STATUSES: frozenset[S] = frozenset({
    S.APPROVED,
    S.SENT_TO_SUPPLIER,
    S.PARTIALLY_RECEIVED,
})

RECEIVING_TARGETS: frozenset[S] = frozenset({S.PARTIALLY_RECEIVED, S.FULLY_RECEIVED})

APPROVER_ROLES: frozenset[Role] = frozenset({Role.MANAGER, Role.ADMIN})
CANCELLER_ROLES: frozenset[Role] = frozenset({Role.MANAGER, Role.ADMIN})
RECEIVER_ROLES: frozenset[Role] = frozenset({Role.EMPLOYEE, Role.MANAGER, Role.ADMIN})

# None means unlimited.
APPROVAL_LIMITS: dict[Role, Decimal | None] = {
    Role.CASHIER: Decimal("0"),
    Role.EMPLOYEE: Decimal("5000"),
    Role.ACCOUNTANT: Decimal("15000"),
    Role.MANAGER: Decimal("50000"),
    Role.ADMIN: None,
}

APPROACHING_LIMIT_RATIO = Decimal("0.8")
