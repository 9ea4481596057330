"""
SqlJournalStore -- journal entry persistence with a posting guard.

Responsibility:
    Inserts draft journal entries and their lines, assigns entry numbers,
    and flips an entry to POSTED.

Architecture position:
    Kernel > Services -- imperative shell.  Implements ``JournalStore``.

Invariants enforced:
    ``mark_posted`` recomputes debit and credit totals from the stored
    lines and refuses to post when they differ by more than 0.01.  This is
    a second check behind LedgerPoster's own.

Failure modes:
    - EntryNotFoundError: unknown entry id.
    - EntryAlreadyPostedError: entry is not in DRAFT.
    - UnbalancedEntryError: stored lines do not balance; the entry stays
      in DRAFT.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from procurement_kernel.domain.ledger import (
    JournalEntryDraft,
    JournalEntryStatus,
    JournalLineSpec,
)
from procurement_kernel.domain.values import BALANCE_EPSILON
from procurement_kernel.exceptions import (
    EntryAlreadyPostedError,
    EntryNotFoundError,
    UnbalancedEntryError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.journal import JournalEntry, JournalLine
from procurement_kernel.services.base import BaseService, translate_db_errors

logger = get_logger("services.journal_store")

ENTRY_NUMBER_PREFIX = "JE-"


class SqlJournalStore(BaseService):

    def next_entry_number(self) -> str:
        """Next sequential entry number, e.g. ``JE-000001``."""
        with translate_db_errors("next_entry_number"):
            count = self.session.execute(
                select(func.count()).select_from(JournalEntry)
            ).scalar_one()
        return f"{ENTRY_NUMBER_PREFIX}{count + 1:06d}"

    def insert_entry(self, entry: JournalEntryDraft) -> str:
        record = JournalEntry(
            entry_number=entry.entry_number,
            reference_id=entry.reference_id,
            reference_type=entry.reference_type.value,
            description=entry.description,
            entry_date=entry.entry_date,
            status=entry.status.value,
            total_debit=entry.total_debit,
            total_credit=entry.total_credit,
            created_by=entry.created_by,
        )
        with translate_db_errors("insert_entry"):
            self.session.add(record)
            self.session.flush()
        logger.info(
            "journal_entry_inserted",
            extra={
                "entry_id": str(record.id),
                "entry_number": record.entry_number,
                "reference_id": entry.reference_id,
            },
        )
        return str(record.id)

    def insert_lines(self, entry_id: str, lines: Sequence[JournalLineSpec]) -> None:
        with translate_db_errors("insert_lines"):
            for number, line in enumerate(lines, start=1):
                self.session.add(
                    JournalLine(
                        entry_id=UUID(entry_id),
                        line_number=number,
                        account_code=line.account_code,
                        account_name=line.account_name,
                        debit_amount=line.debit_amount,
                        credit_amount=line.credit_amount,
                        description=line.description,
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_cost=line.unit_cost,
                    )
                )
            self.session.flush()

    def get_entry(self, entry_id: str) -> JournalEntry:
        entry = self.session.get(JournalEntry, UUID(entry_id))
        if entry is None:
            raise EntryNotFoundError(entry_id)
        return entry

    def get_lines(self, entry_id: str) -> list[JournalLine]:
        return list(
            self.session.execute(
                select(JournalLine)
                .where(JournalLine.entry_id == UUID(entry_id))
                .order_by(JournalLine.line_number)
            ).scalars()
        )

    def line_totals(self, entry_id: str) -> tuple[Decimal, Decimal]:
        debits, credits = self.session.execute(
            select(
                func.coalesce(func.sum(JournalLine.debit_amount), 0),
                func.coalesce(func.sum(JournalLine.credit_amount), 0),
            ).where(JournalLine.entry_id == UUID(entry_id))
        ).one()
        return Decimal(str(debits)), Decimal(str(credits))

    def mark_posted(self, entry_id: str, posted_by: str, posted_at: datetime) -> None:
        """
        Move a DRAFT entry to POSTED.

        Raises:
            EntryNotFoundError, EntryAlreadyPostedError, UnbalancedEntryError
        """
        entry = self.get_entry(entry_id)
        if entry.status != JournalEntryStatus.DRAFT.value:
            raise EntryAlreadyPostedError(entry_id)

        with translate_db_errors("mark_posted"):
            debits, credits = self.line_totals(entry_id)
        if abs(debits - credits) > BALANCE_EPSILON:
            logger.critical(
                "journal_post_rejected_unbalanced",
                extra={
                    "entry_id": entry_id,
                    "debits": str(debits),
                    "credits": str(credits),
                },
            )
            raise UnbalancedEntryError(debits, credits, entry_id)

        with translate_db_errors("mark_posted"):
            entry.status = JournalEntryStatus.POSTED.value
            entry.posted_at = posted_at
            entry.posted_by = posted_by
            self.session.flush()
        logger.info(
            "journal_entry_posted",
            extra={"entry_id": entry_id, "entry_number": entry.entry_number},
        )
