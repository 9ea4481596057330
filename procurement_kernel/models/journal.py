"""
Module: procurement_kernel.models.journal
Responsibility: ORM persistence for inventory-valuation journal entries and
    their lines.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain value enums only.

Invariants enforced:
    - entry_number is unique (JE-000001 style, assigned by the journal store).
    - Debits == Credits within 0.01 before status becomes POSTED (checked
      by SqlJournalStore.mark_posted and by LedgerPoster).

Audit relevance:
    JournalEntry rows tie every valuation change to a reference (purchase
    order, inventory adjustment or cost update) and the actor who posted it.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase, UUIDString
from procurement_kernel.domain.ledger import JournalEntryStatus


class JournalEntry(TrackedBase):
    """
    Journal entry header.

    Contract:
        Created in DRAFT with its lines; moved to POSTED once balanced.
        An unbalanced entry stays in DRAFT.

    Non-goals:
        - Reversal is not produced by this system.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("entry_number", name="uq_journal_entry_number"),
        Index("idx_journal_reference", "reference_type", "reference_id"),
        Index("idx_journal_status", "status"),
    )

    entry_number: Mapped[str] = mapped_column(String(20), nullable=False)

    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    reference_type: Mapped[str] = mapped_column(String(40), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    entry_date: Mapped[date] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(10),
        default=JournalEntryStatus.DRAFT.value,
        nullable=False,
    )

    total_debit: Mapped[Decimal] = mapped_column(nullable=False)

    total_credit: Mapped[Decimal] = mapped_column(nullable=False)

    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    posted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        order_by="JournalLine.line_number",
        cascade="all, delete-orphan",
    )

    @property
    def line_debits(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def line_credits(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), Decimal("0"))

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} {self.status}>"


class JournalLine(Base):
    """One debit or credit line of a journal entry."""

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("entry_id", "line_number", name="uq_journal_line_number"),
        Index("idx_journal_line_account", "account_code"),
    )

    entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    account_code: Mapped[str] = mapped_column(String(20), nullable=False)

    account_name: Mapped[str] = mapped_column(String(100), nullable=False)

    debit_amount: Mapped[Decimal] = mapped_column(nullable=False)

    credit_amount: Mapped[Decimal] = mapped_column(nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    product_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)

    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")
