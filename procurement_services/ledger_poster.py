"""
procurement_services.ledger_poster -- Balanced journal entries for valuation changes.

Responsibility:
    Turn a set of ValuationAdjustments into one journal entry with one
    debit and one matching credit line per non-zero adjustment, check the
    entry balances, then mark it posted through the journal store.

Architecture position:
    Services -- imperative shell over the JournalStore collaborator.
    Account selection is the literal ACCOUNT_SELECTION table in
    ``procurement_kernel.domain.ledger``.

Invariants enforced:
    - sum(debit) == sum(credit) within 0.01 before ``mark_posted`` is
      called; otherwise UnbalancedEntryError is raised and the entry stays
      in DRAFT.
    - Zero adjustments produce no lines.  When every adjustment is zero no
      entry is created at all.
    - Line amounts are abs(adjustment_amount), rounded half-up to 0.01.

Failure modes:
    - UnbalancedEntryError: integrity violation, logged CRITICAL, never
      retried.
    - AccountMappingNotFoundError: no (reference type, adjustment type) row.
    - InfrastructureError subclasses from the journal store.

Audit relevance:
    The PostingSummary is the single source of totals for reporting
    collaborators; they do not recompute it.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.collaborators import JournalStore
from procurement_kernel.domain.ledger import (
    AccountMap,
    JournalEntryDraft,
    JournalEntryStatus,
    JournalLineSpec,
    PostingResult,
    PostingSummary,
    ReferenceType,
)
from procurement_kernel.domain.valuation import AdjustmentType, ValuationAdjustment
from procurement_kernel.domain.values import BALANCE_EPSILON, ZERO, round_money
from procurement_kernel.exceptions import UnbalancedEntryError
from procurement_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.ledger_poster")


def is_balanced(debits: Decimal, credits: Decimal) -> bool:
    return abs(debits - credits) <= BALANCE_EPSILON


def build_journal_lines(
    adjustments: Sequence[ValuationAdjustment],
    reference_type: ReferenceType | str,
    account_map: AccountMap,
) -> tuple[list[JournalLineSpec], list[ValuationAdjustment], list[str]]:
    """
    Lines for the non-zero adjustments.

    Returns:
        (lines, posted adjustments, skipped product ids)
    """
    lines: list[JournalLineSpec] = []
    posted: list[ValuationAdjustment] = []
    skipped: list[str] = []
    for adjustment in adjustments:
        amount = round_money(abs(adjustment.adjustment_amount))
        if amount == ZERO:
            skipped.append(adjustment.product_id)
            continue
        debit, credit = account_map.select(reference_type, adjustment.adjustment_type)
        name = adjustment.display_name
        lines.append(JournalLineSpec(
            account_code=debit.code,
            account_name=debit.name,
            debit_amount=amount,
            credit_amount=ZERO,
            description=f"Inventory cost adjustment - {name}",
            product_id=adjustment.product_id,
            quantity=adjustment.stock_quantity,
            unit_cost=adjustment.new_cost,
        ))
        lines.append(JournalLineSpec(
            account_code=credit.code,
            account_name=credit.name,
            debit_amount=ZERO,
            credit_amount=amount,
            description=f"Inventory cost adjustment offset - {name}",
            product_id=adjustment.product_id,
            quantity=adjustment.stock_quantity,
            unit_cost=adjustment.new_cost,
        ))
        posted.append(adjustment)
    return lines, posted, skipped


def summarize_posting(
    posted: Sequence[ValuationAdjustment],
    lines: Sequence[JournalLineSpec],
) -> PostingSummary:
    increases = [a for a in posted if a.adjustment_type == AdjustmentType.INCREASE]
    decreases = [a for a in posted if a.adjustment_type == AdjustmentType.DECREASE]
    return PostingSummary(
        total_products=len({a.product_id for a in posted}),
        total_inventory_value=round_money(sum((a.new_total_value for a in posted), ZERO)),
        total_adjustment_amount=round_money(
            sum((abs(a.adjustment_amount) for a in posted), ZERO)
        ),
        increase_count=len(increases),
        increase_amount=round_money(sum((a.adjustment_amount for a in increases), ZERO)),
        decrease_count=len(decreases),
        decrease_amount=round_money(sum((abs(a.adjustment_amount) for a in decreases), ZERO)),
        total_debits=sum((line.debit_amount for line in lines), ZERO),
        total_credits=sum((line.credit_amount for line in lines), ZERO),
        entry_count=1 if lines else 0,
        line_count=len(lines),
    )


class LedgerPoster:
    """
    Posts valuation adjustments as one balanced journal entry.

    Contract:
        Flushes through the journal store; never commits.

    Guarantees:
        - A returned PostingResult with an entry id is POSTED and balanced.
        - An UnbalancedEntryError leaves the inserted entry in DRAFT.

    Non-goals:
        - Reversals, multi-currency, period locks.
    """

    def __init__(
        self,
        journal_store: JournalStore,
        clock: Clock | None = None,
        account_map: AccountMap | None = None,
    ):
        self._journal = journal_store
        self._clock = clock or SystemClock()
        self._accounts = account_map or AccountMap()

    @property
    def account_map(self) -> AccountMap:
        return self._accounts

    def post(
        self,
        adjustments: Sequence[ValuationAdjustment],
        reference_id: str,
        reference_type: ReferenceType | str,
        description: str,
        actor: str,
    ) -> PostingResult:
        """
        Post ``adjustments`` against ``reference_id``.

        Raises:
            UnbalancedEntryError, AccountMappingNotFoundError,
            InfrastructureError
        """
        reference_type = ReferenceType(reference_type)
        lines, posted, skipped = build_journal_lines(adjustments, reference_type, self._accounts)

        if skipped:
            logger.info(
                "zero_adjustments_skipped",
                extra={"reference_id": reference_id, "product_ids": skipped},
            )

        if not lines:
            logger.info(
                "posting_skipped_no_lines",
                extra={"reference_id": reference_id, "adjustment_count": len(adjustments)},
            )
            return PostingResult(
                entry_id=None,
                entry_number=None,
                status=None,
                lines=(),
                summary=summarize_posting(posted, lines),
                skipped_product_ids=tuple(skipped),
            )

        result = self.post_lines(lines, reference_id, reference_type, description, actor)
        return PostingResult(
            entry_id=result.entry_id,
            entry_number=result.entry_number,
            status=result.status,
            lines=result.lines,
            summary=summarize_posting(posted, lines),
            posted_at=result.posted_at,
            skipped_product_ids=tuple(skipped),
        )

    def post_lines(
        self,
        lines: Sequence[JournalLineSpec],
        reference_id: str,
        reference_type: ReferenceType | str,
        description: str,
        actor: str,
    ) -> PostingResult:
        """
        Insert a DRAFT entry with ``lines``, check balance, mark POSTED.

        Raises:
            UnbalancedEntryError: debits and credits differ by more than
                0.01.  The entry is left in DRAFT.
        """
        reference_type = ReferenceType(reference_type)
        total_debit = sum((line.debit_amount for line in lines), ZERO)
        total_credit = sum((line.credit_amount for line in lines), ZERO)
        now = self._clock.now()

        draft = JournalEntryDraft(
            entry_number=self._journal.next_entry_number(),
            reference_id=reference_id,
            reference_type=reference_type,
            description=description,
            entry_date=now.date(),
            created_by=actor,
            total_debit=total_debit,
            total_credit=total_credit,
        )
        entry_id = self._journal.insert_entry(draft)

        with LogContext.bind(entry_id=entry_id):
            self._journal.insert_lines(entry_id, lines)

            if not is_balanced(total_debit, total_credit):
                logger.critical(
                    "unbalanced_entry_rejected",
                    extra={
                        "entry_number": draft.entry_number,
                        "reference_id": reference_id,
                        "debits": str(total_debit),
                        "credits": str(total_credit),
                    },
                )
                raise UnbalancedEntryError(total_debit, total_credit, entry_id)

            self._journal.mark_posted(entry_id, actor, now)
            logger.info(
                "inventory_adjustment_posted",
                extra={
                    "entry_number": draft.entry_number,
                    "reference_id": reference_id,
                    "reference_type": reference_type.value,
                    "line_count": len(lines),
                    "total_debit": str(total_debit),
                },
            )

        return PostingResult(
            entry_id=entry_id,
            entry_number=draft.entry_number,
            status=JournalEntryStatus.POSTED,
            lines=tuple(lines),
            summary=summarize_posting((), lines),
            posted_at=now,
        )
