"""Expense and payroll sheets as EXPENSE ledger transactions."""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Generic, Iterable, Sequence, TypeVar

from loan_import.engine.context import ImportContext
from loan_import.engine.loans import chunked
from loan_import.engine.outcomes import EXPENSES, PAYROLL, BatchResult, RowOutcome
from loan_import.engine.rules import expense_account_type, expense_source, should_check_duplicate
from loan_import.exceptions import LoanImportError
from loan_import.logging import batch_context
from loan_import.models import (
    Account,
    ExpenseRow,
    ExpenseSource,
    OutcomeKind,
    PayrollRow,
    Transaction,
    TransactionType,
    new_id,
)
from loan_import.store.base import WriteBatch

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", ExpenseRow, PayrollRow)


class LedgerImporter(ABC, Generic[RowT]):
    """Base class for sheets that map one row to one EXPENSE transaction.

    Subclasses choose the debited account and the expense source. Rows
    dated before the duplicate cut-off are skipped when an EXPENSE with the
    same date, amount and description is already stored or was accepted
    earlier in the run.
    """

    sheet: str = ""

    def __init__(self, context: ImportContext) -> None:
        self.context = context
        self.repository = context.repository
        self._seen: set[tuple[date, object, str | None]] = set()

    @property
    @abstractmethod
    def cutoff(self) -> date:
        """Rows dated before this day are checked for duplicates."""

    @abstractmethod
    def account_for(self, row: RowT) -> Account:
        """Account debited by ``row``."""

    @abstractmethod
    def source_for(self, row: RowT) -> ExpenseSource:
        ...

    async def run(self, rows: Iterable[RowT]) -> list[BatchResult]:
        """Import ``rows`` in batches; returns one result per batch."""
        numbered = list(enumerate(rows, start=1))
        results = []
        for index, chunk in enumerate(chunked(numbered, self.context.config.batch_size), start=1):
            results.append(await self._run_batch(index, chunk))
        return results

    async def _run_batch(self, index: int, rows: Sequence[tuple[int, RowT]]) -> BatchResult:
        with batch_context(index):
            return await self._import_batch(index, rows)

    async def _import_batch(self, index: int, rows: Sequence[tuple[int, RowT]]) -> BatchResult:
        batch = WriteBatch()
        outcomes = []
        for number, row in rows:
            outcome, transaction = await self._plan(str(number), row)
            outcomes.append(outcome)
            if transaction is not None:
                batch.transactions.append(transaction)

        try:
            await self.repository.commit_batch(batch)
        except LoanImportError as e:
            logger.error(
                "Route %s %s batch %d rolled back: %s",
                self.context.snapshot.route_name,
                self.sheet,
                index,
                e,
                exc_info=True,
            )
            for transaction in batch.transactions:
                self._seen.discard((transaction.date, transaction.amount, transaction.description))
            outcomes = [
                RowOutcome(kind=OutcomeKind.ERROR, sheet=o.sheet, row_id=o.row_id, detail=str(e))
                if o.kind == OutcomeKind.PERSISTED
                else o
                for o in outcomes
            ]
            return BatchResult(index=index, outcomes=outcomes, error=str(e))
        return BatchResult(index=index, outcomes=outcomes)

    async def _plan(self, row_id: str, row: RowT) -> tuple[RowOutcome, Transaction | None]:
        if row.amount is None:
            outcome = RowOutcome(
                kind=OutcomeKind.SKIPPED_INVALID, sheet=self.sheet, row_id=row_id, detail="missing amount"
            )
            return outcome, None

        if should_check_duplicate(row.date, self.cutoff):
            key = (row.date, row.amount, row.description)
            if key in self._seen or await self.repository.transaction_exists(
                TransactionType.EXPENSE, row.date, row.amount, row.description
            ):
                logger.debug("Skipping duplicate %s row %s (%s %s)", self.sheet, row_id, row.date, row.amount)
                return RowOutcome(kind=OutcomeKind.SKIPPED_DUPLICATE, sheet=self.sheet, row_id=row_id), None
            self._seen.add(key)

        snapshot = self.context.snapshot
        transaction = Transaction(
            id=new_id(),
            type=TransactionType.EXPENSE,
            amount=row.amount,
            date=row.date,
            source_account_id=self.account_for(row).id,
            expense_source=self.source_for(row),
            description=row.description,
            route_id=snapshot.route_id,
            lead_id=self.context.lead_for(row.lead_id),
            **snapshot.stamp(),
        )
        outcome = RowOutcome(kind=OutcomeKind.PERSISTED, sheet=self.sheet, row_id=row_id, entity_id=transaction.id)
        return outcome, transaction


class ExpenseImporter(LedgerImporter[ExpenseRow]):
    """Operating expenses, routed to an account by type and description."""

    sheet = EXPENSES

    @property
    def cutoff(self) -> date:
        return self.context.config.expense_dedupe_before

    def account_for(self, row: ExpenseRow) -> Account:
        return self.context.accounts.for_type(expense_account_type(row.account_type, row.description))

    def source_for(self, row: ExpenseRow) -> ExpenseSource:
        return expense_source(row.account_type, row.description)


class PayrollImporter(LedgerImporter[PayrollRow]):
    """Salaries, always paid from the route bank account."""

    sheet = PAYROLL

    @property
    def cutoff(self) -> date:
        return self.context.config.payroll_dedupe_before

    def account_for(self, row: PayrollRow) -> Account:
        return self.context.accounts.bank

    def source_for(self, row: PayrollRow) -> ExpenseSource:
        return ExpenseSource.NOMINA_SALARY
