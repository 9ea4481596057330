"""
Ledger value objects (``procurement_kernel.domain.ledger``).

Responsibility
--------------
The minimal double-entry shapes needed to keep inventory valuation
balanced: reference types, the fixed account map and account-selection
table, proposed journal lines, and the posting summary/result.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects, ZERO I/O.

Invariants enforced
-------------------
* Account selection is a literal table keyed by
  ``(ReferenceType, AdjustmentType)``; there is no fallback pair.
* Every ``JournalLineSpec`` has exactly one non-zero side.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from procurement_kernel.domain.valuation import AdjustmentType
from procurement_kernel.domain.values import ZERO
from procurement_kernel.exceptions import AccountMappingNotFoundError


class ReferenceType(str, Enum):
    PURCHASE_ORDER = "purchase_order"
    INVENTORY_ADJUSTMENT = "inventory_adjustment"
    COST_UPDATE = "cost_update"


class JournalEntryStatus(str, Enum):
    """Lifecycle status of a journal entry.

    DRAFT -> POSTED.  REVERSED is reserved and never produced here.
    """

    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


@dataclass(frozen=True)
class GLAccount:
    code: str
    name: str


@dataclass(frozen=True)
class AccountMap:
    """The five GL accounts inventory valuation posts to."""

    inventory_asset: GLAccount = GLAccount("1200", "Inventory Asset")
    accounts_payable: GLAccount = GLAccount("2000", "Accounts Payable")
    cost_of_goods_sold: GLAccount = GLAccount("5000", "Cost of Goods Sold")
    purchase_price_variance: GLAccount = GLAccount("5100", "Purchase Price Variance")
    inventory_adjustment: GLAccount = GLAccount("5200", "Inventory Adjustment")

    def select(
        self,
        reference_type: ReferenceType | str,
        adjustment_type: AdjustmentType | str,
    ) -> tuple[GLAccount, GLAccount]:
        """Return the (debit, credit) accounts for an adjustment.

        Raises:
            AccountMappingNotFoundError: No entry in ACCOUNT_SELECTION.
        """
        try:
            key = (ReferenceType(reference_type), AdjustmentType(adjustment_type))
            debit_role, credit_role = ACCOUNT_SELECTION[key]
        except (ValueError, KeyError):
            raise AccountMappingNotFoundError(
                str(getattr(reference_type, "value", reference_type)),
                str(getattr(adjustment_type, "value", adjustment_type)),
            ) from None
        return getattr(self, debit_role), getattr(self, credit_role)


# (reference type, adjustment type) -> (debit account role, credit account role)
ACCOUNT_SELECTION: dict[tuple[ReferenceType, AdjustmentType], tuple[str, str]] = {
    (ReferenceType.PURCHASE_ORDER, AdjustmentType.INCREASE):
        ("inventory_asset", "accounts_payable"),
    (ReferenceType.PURCHASE_ORDER, AdjustmentType.DECREASE):
        ("purchase_price_variance", "inventory_asset"),
    (ReferenceType.INVENTORY_ADJUSTMENT, AdjustmentType.INCREASE):
        ("inventory_asset", "inventory_adjustment"),
    (ReferenceType.INVENTORY_ADJUSTMENT, AdjustmentType.DECREASE):
        ("inventory_adjustment", "inventory_asset"),
    (ReferenceType.COST_UPDATE, AdjustmentType.INCREASE):
        ("inventory_asset", "cost_of_goods_sold"),
    (ReferenceType.COST_UPDATE, AdjustmentType.DECREASE):
        ("cost_of_goods_sold", "inventory_asset"),
}


@dataclass(frozen=True)
class JournalLineSpec:
    """One proposed journal line."""

    account_code: str
    account_name: str
    debit_amount: Decimal
    credit_amount: Decimal
    description: str
    product_id: str | None = None
    quantity: Decimal | None = None
    unit_cost: Decimal | None = None

    def __post_init__(self) -> None:
        if (self.debit_amount > ZERO) == (self.credit_amount > ZERO):
            raise ValueError(
                "Journal line must have exactly one non-zero side: "
                f"debit={self.debit_amount}, credit={self.credit_amount}"
            )


@dataclass(frozen=True)
class JournalEntryDraft:
    """Journal entry header as handed to the journal store."""

    entry_number: str
    reference_id: str
    reference_type: ReferenceType
    description: str
    entry_date: date
    created_by: str
    total_debit: Decimal
    total_credit: Decimal
    status: JournalEntryStatus = JournalEntryStatus.DRAFT


@dataclass(frozen=True)
class PostingSummary:
    """Totals reported to reporting collaborators; not recomputed elsewhere."""

    total_products: int
    total_inventory_value: Decimal
    total_adjustment_amount: Decimal
    increase_count: int
    increase_amount: Decimal
    decrease_count: int
    decrease_amount: Decimal
    total_debits: Decimal
    total_credits: Decimal
    entry_count: int
    line_count: int


@dataclass(frozen=True)
class PostingResult:
    entry_id: str | None
    entry_number: str | None
    status: JournalEntryStatus | None
    lines: tuple[JournalLineSpec, ...]
    summary: PostingSummary
    posted_at: datetime | None = None
    skipped_product_ids: tuple[str, ...] = field(default_factory=tuple)
