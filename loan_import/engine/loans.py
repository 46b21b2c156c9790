"""Loan import: rows to loans, payments, write-offs and ledger entries."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator, Sequence, TypeVar

from loan_import.engine.context import ImportContext
from loan_import.engine.outcomes import LOANS, PAYMENTS, BatchResult, RowOutcome
from loan_import.engine.profit import ZERO, loan_profit, pending_profit, quantize, split_payment
from loan_import.engine.rules import (
    DuplicateKey,
    duplicate_key,
    invalid_loan_reason,
    is_write_off_name,
    payment_route,
)
from loan_import.exceptions import LoanImportError
from loan_import.identity.names import normalize_name
from loan_import.logging import batch_context
from loan_import.models import (
    CompensatoryPayment,
    ExpenseSource,
    IncomeSource,
    Loan,
    LoanPayment,
    LoanRow,
    LoanStatus,
    OutcomeKind,
    PaymentRow,
    Transaction,
    TransactionType,
    WriteOff,
    new_id,
)
from loan_import.store.base import WriteBatch

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (write-off id, received date, amount)
RecoveryKey = tuple[str, date, Decimal]

# Outcomes that carry writes and turn into ERROR when their batch rolls back
WRITING_KINDS = (OutcomeKind.PERSISTED, OutcomeKind.WRITE_OFF)


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def group_payments(payments: Iterable[PaymentRow]) -> dict[str, list[PaymentRow]]:
    """Payments per loan sheet id, oldest first (undated last)."""
    grouped: dict[str, list[PaymentRow]] = defaultdict(list)
    for payment in payments:
        grouped[payment.loan_id].append(payment)
    for rows in grouped.values():
        rows.sort(key=lambda p: (p.payment_date is None, p.payment_date or 0))
    return dict(grouped)


def renewal_waves(rows: Sequence[LoanRow]) -> tuple[list[list[LoanRow]], list[LoanRow]]:
    """Order renewal rows by their depth inside the sheet's renewal chains.

    A renewal whose predecessor is not itself a renewal row of the sheet has
    depth 1; otherwise its depth is one more than its predecessor's. Rows of
    wave ``n`` only reference loans committed before wave ``n`` starts.

    Returns
    -------
    tuple[list[list[LoanRow]], list[LoanRow]]
        Waves in commit order, and rows caught in a renewal cycle.
    """
    by_id = {row.id: row for row in rows}
    depth: dict[str, int] = {}
    cyclic: set[str] = set()

    for row in rows:
        path: list[str] = []
        current: LoanRow | None = row
        base = 0
        while current is not None and current.id not in depth:
            if current.id in path or current.id in cyclic:
                cyclic.update(path)
                path = []
                break
            path.append(current.id)
            current = by_id.get(current.previous_loan_id or "")
        else:
            base = depth[current.id] if current is not None else 0
        for offset, row_id in enumerate(reversed(path), start=1):
            depth[row_id] = base + offset

    waves: dict[int, list[LoanRow]] = defaultdict(list)
    for row in rows:
        if row.id not in cyclic:
            waves[depth[row.id]].append(row)
    return [waves[d] for d in sorted(waves)], [row for row in rows if row.id in cyclic]


@dataclass
class RowPlan:
    """Outcomes and pending writes of one loan row."""

    outcomes: list[RowOutcome]
    writes: WriteBatch = field(default_factory=WriteBatch)
    reserved_key: DuplicateKey | None = None
    reserved_write_off: str | None = None
    claimed_predecessor: str | None = None
    reserved_recoveries: list[RecoveryKey] = field(default_factory=list)


class LoanImportEngine:
    """Import the loan and payment sheets of one route.

    Non-renewal rows go first, then renewal rows wave by wave. Every batch
    is evaluated with bounded concurrency and committed as one atomic write;
    a failed commit turns the batch's rows into ERROR outcomes and the run
    moves on.
    """

    def __init__(self, context: ImportContext) -> None:
        self.context = context
        self.repository = context.repository
        self._seen: set[DuplicateKey] = set()
        self._reserved_write_offs: set[str] = set()
        self._claimed: set[str] = set()
        self._recoveries: set[RecoveryKey] = set()
        self._write_offs: dict[str, WriteOff] = {}
        self._batch_index = 0

    @property
    def route_name(self) -> str:
        return self.context.snapshot.route_name

    async def run(self, loan_rows: Sequence[LoanRow], payment_rows: Iterable[PaymentRow]) -> list[BatchResult]:
        """Import all rows and return one result per batch."""
        payments = group_payments(payment_rows)
        size = self.context.config.batch_size
        results: list[BatchResult] = []

        first_pass = [row for row in loan_rows if not row.is_renewal]
        for rows in chunked(first_pass, size):
            results.append(await self._run_batch(rows, payments))

        waves, cyclic = renewal_waves([row for row in loan_rows if row.is_renewal])
        for depth, wave in enumerate(waves, start=1):
            logger.info("Route %s: renewal wave %d (%d rows)", self.route_name, depth, len(wave))
            for rows in chunked(wave, size):
                results.append(await self._run_batch(rows, payments))
        if cyclic:
            logger.warning(
                "Route %s: renewal cycle between rows %s",
                self.route_name,
                ", ".join(row.id for row in cyclic),
            )
            results.append(
                BatchResult(
                    index=self._next_index(),
                    outcomes=[
                        o
                        for row in cyclic
                        for o in self._skip(row, payments.get(row.id, []), OutcomeKind.SKIPPED_INVALID, "renewal cycle")
                    ],
                )
            )

        known = {row.id for row in loan_rows}
        orphans = {loan_id: rows for loan_id, rows in payments.items() if loan_id not in known}
        if orphans:
            results.append(await self._recover_orphans(orphans))
        return results

    def _next_index(self) -> int:
        self._batch_index += 1
        return self._batch_index

    async def _run_batch(self, rows: Sequence[LoanRow], payments: dict[str, list[PaymentRow]]) -> BatchResult:
        index = self._next_index()
        semaphore = asyncio.Semaphore(self.context.config.concurrency)

        async def guarded(row: LoanRow) -> RowPlan:
            row_payments = payments.get(row.id, [])
            async with semaphore:
                try:
                    return await self._plan_row(row, row_payments)
                except LoanImportError as e:
                    logger.error(
                        "Route %s batch %d: row %s (%s) failed: %s",
                        self.route_name,
                        index,
                        row.id,
                        row.full_name,
                        e,
                    )
                    return RowPlan(outcomes=self._skip(row, row_payments, OutcomeKind.ERROR, str(e)))

        with batch_context(index):
            plans = await asyncio.gather(*(guarded(row) for row in rows))
            return await self._commit(index, list(plans))

    async def _commit(self, index: int, plans: list[RowPlan]) -> BatchResult:
        batch = WriteBatch()
        for plan in plans:
            batch.extend(plan.writes)
        outcomes = [o for plan in plans for o in plan.outcomes]

        try:
            await self.repository.commit_batch(batch)
        except LoanImportError as e:
            logger.error(
                "Route %s batch %d rolled back (%d writes): %s",
                self.route_name,
                index,
                len(batch),
                e,
                exc_info=True,
            )
            for plan in plans:
                self._release(plan)
            failed = [
                replace(o, kind=OutcomeKind.ERROR, detail=f"batch {index} rolled back: {e}")
                if o.kind in WRITING_KINDS
                else o
                for o in outcomes
            ]
            return BatchResult(index=index, outcomes=failed, error=str(e))

        for write_off in batch.write_offs + batch.write_off_updates:
            self._write_offs[write_off.external_id] = write_off
        logger.info(
            "Route %s batch %d committed: %d loans, %d payments, %d transactions",
            self.route_name,
            index,
            len(batch.loans),
            len(batch.payments),
            len(batch.transactions),
        )
        return BatchResult(index=index, outcomes=outcomes)

    def _release(self, plan: RowPlan) -> None:
        if plan.reserved_key is not None:
            self._seen.discard(plan.reserved_key)
        if plan.reserved_write_off is not None:
            self._reserved_write_offs.discard(plan.reserved_write_off)
        if plan.claimed_predecessor is not None:
            self._claimed.discard(plan.claimed_predecessor)
        self._recoveries.difference_update(plan.reserved_recoveries)

    def _skip(
        self,
        row: LoanRow,
        payments: list[PaymentRow],
        kind: OutcomeKind,
        detail: str,
    ) -> list[RowOutcome]:
        outcomes = [RowOutcome(kind=kind, sheet=LOANS, row_id=row.id, detail=detail, renewal=row.is_renewal)]
        outcomes.extend(
            RowOutcome(kind=kind, sheet=PAYMENTS, row_id=row.id, detail=f"loan {detail}")
            for _ in payments
        )
        return outcomes

    async def _plan_row(self, row: LoanRow, payments: list[PaymentRow]) -> RowPlan:
        snapshot = self.context.snapshot
        external_id = snapshot.external_id(row.id)

        reason = invalid_loan_reason(row)
        if reason is not None:
            logger.warning("Route %s: row %s skipped: %s", self.route_name, row.id, reason)
            return RowPlan(outcomes=self._skip(row, payments, OutcomeKind.SKIPPED_INVALID, reason))

        if is_write_off_name(row.full_name):
            return await self._plan_write_off(row, external_id, payments)

        key = duplicate_key(row.full_name, row.gived_date, row.gived_amount)
        if key in self._seen:
            return RowPlan(outcomes=self._skip(row, payments, OutcomeKind.SKIPPED_DUPLICATE, "repeated in source"))
        self._seen.add(key)
        plan = RowPlan(outcomes=[], reserved_key=key)

        if await self.repository.loan_exists(*key):
            plan.outcomes = self._skip(row, payments, OutcomeKind.SKIPPED_DUPLICATE, "already imported")
            return plan
        if await self.repository.find_loan_by_external_id(external_id) is not None:
            plan.outcomes = self._skip(row, payments, OutcomeKind.SKIPPED_DUPLICATE, "external id exists")
            return plan

        lead_id = self.context.lead_for(row.lead_id)
        if lead_id is None:
            logger.warning(
                "Route %s: row %s (%s) skipped, lead %s not mapped",
                self.route_name,
                row.id,
                row.full_name,
                row.lead_id,
            )
            plan.outcomes = self._skip(row, payments, OutcomeKind.SKIPPED_NO_LEAD, f"lead {row.lead_id} not mapped")
            return plan

        predecessor = None
        if row.is_renewal:
            predecessor = await self._find_predecessor(row.previous_loan_id)
            if predecessor is None:
                if self.context.config.renewal_policy == "skip":
                    logger.warning(
                        "Route %s: renewal %s skipped, previous loan %s not found",
                        self.route_name,
                        row.id,
                        row.previous_loan_id,
                    )
                    plan.outcomes = self._skip(
                        row, payments, OutcomeKind.SKIPPED_NO_PREDECESSOR, f"previous loan {row.previous_loan_id} not found"
                    )
                    return plan
                logger.warning(
                    "Route %s: renewal %s imported standalone, previous loan %s not found",
                    self.route_name,
                    row.id,
                    row.previous_loan_id,
                )
            elif predecessor.id in self._claimed or await self.repository.has_successor(predecessor.id):
                plan.outcomes = self._skip(
                    row, payments, OutcomeKind.SKIPPED_INVALID, f"previous loan {row.previous_loan_id} already renewed"
                )
                return plan
            else:
                self._claimed.add(predecessor.id)
                plan.claimed_predecessor = predecessor.id

        await self._plan_loan(plan, row, external_id, lead_id, predecessor, payments)
        return plan

    async def _find_predecessor(self, previous_id: str | None) -> Loan | None:
        if previous_id is None:
            return None
        loan = await self.repository.find_loan_by_external_id(self.context.snapshot.external_id(previous_id))
        if loan is None:
            # Loans from runs before ids were route-prefixed
            loan = await self.repository.find_loan_by_external_id(previous_id)
        return loan

    async def _plan_loan(
        self,
        plan: RowPlan,
        row: LoanRow,
        external_id: str,
        lead_id: str,
        predecessor: Loan | None,
        payments: list[PaymentRow],
    ) -> None:
        context = self.context
        snapshot = context.snapshot

        if predecessor is not None:
            borrower_id = predecessor.borrower_id
            pending = await pending_profit(self.repository, predecessor)
        else:
            borrower_id = (await context.resolver.resolve_borrower(row.full_name, row.titular_phone)).borrower_id
            pending = ZERO

        loan_type = await context.loan_types.resolve(row.weeks, row.interest_rate)
        terms = loan_profit(row.requested_amount, loan_type.rate, pending)

        loan = Loan(
            id=new_id(),
            external_id=external_id,
            old_id=row.id,
            borrower_id=borrower_id,
            lead_id=lead_id,
            loan_type_id=loan_type.id,
            sign_date=row.gived_date,
            amount_gived=row.gived_amount,
            requested_amount=row.requested_amount,
            profit_amount=quantize(terms.total_profit),
            status=LoanStatus.FINISHED if row.finished_date else LoanStatus.ACTIVE,
            previous_loan_id=predecessor.id if predecessor else None,
            bad_debt_date=row.bad_debt_date,
            finished_date=row.finished_date,
            **snapshot.stamp(),
        )
        writes = plan.writes
        writes.loans.append(loan)
        writes.transactions.append(
            Transaction(
                id=new_id(),
                type=TransactionType.EXPENSE,
                amount=row.gived_amount,
                date=row.gived_date,
                source_account_id=context.accounts.cash.id,
                expense_source=ExpenseSource.LOAN_GRANTED,
                loan_id=loan.id,
                route_id=snapshot.route_id,
                lead_id=lead_id,
                **snapshot.stamp(),
            )
        )

        outcomes = [
            RowOutcome(
                kind=OutcomeKind.PERSISTED,
                sheet=LOANS,
                row_id=row.id,
                entity_id=loan.id,
                renewal=predecessor is not None,
                detail=None if predecessor is not None or not row.is_renewal else "previous loan missing, imported standalone",
            )
        ]
        for payment in payments:
            if payment.payment_date is None:
                outcomes.append(
                    RowOutcome(kind=OutcomeKind.SKIPPED_INVALID, sheet=PAYMENTS, row_id=row.id, detail="missing payment date")
                )
                continue
            split = split_payment(payment.amount, terms, payment.payment_date, row.bad_debt_date)
            route = payment_route(payment.description)
            loan_payment = LoanPayment(
                id=new_id(),
                loan_id=loan.id,
                received_at=payment.payment_date,
                amount=payment.amount,
                type=payment.type,
                profit_amount=split.profit,
                return_to_capital=split.capital,
                description=payment.description,
            )
            writes.payments.append(loan_payment)
            writes.transactions.append(
                Transaction(
                    id=new_id(),
                    type=TransactionType.INCOME,
                    amount=payment.amount,
                    date=payment.payment_date,
                    destination_account_id=context.accounts.for_type(route.account_type).id,
                    income_source=route.income_source,
                    loan_id=loan.id,
                    loan_payment_id=loan_payment.id,
                    profit_amount=split.profit,
                    return_to_capital=split.capital,
                    route_id=snapshot.route_id,
                    lead_id=lead_id,
                    **snapshot.stamp(),
                )
            )
            outcomes.append(
                RowOutcome(kind=OutcomeKind.PERSISTED, sheet=PAYMENTS, row_id=row.id, entity_id=loan_payment.id)
            )

        guarantor_id = await context.resolver.resolve_guarantor(row.aval_name, row.aval_phone)
        if guarantor_id is not None:
            writes.collateral_links.append((loan.id, guarantor_id))
        plan.outcomes = outcomes

    async def _plan_write_off(self, row: LoanRow, external_id: str, payments: list[PaymentRow]) -> RowPlan:
        if external_id in self._reserved_write_offs or external_id in self._write_offs:
            return RowPlan(outcomes=self._skip(row, payments, OutcomeKind.SKIPPED_DUPLICATE, "repeated write-off"))
        self._reserved_write_offs.add(external_id)
        plan = RowPlan(outcomes=[], reserved_write_off=external_id)
        if await self.repository.find_write_off(external_id) is not None:
            plan.outcomes = self._skip(row, payments, OutcomeKind.SKIPPED_DUPLICATE, "write-off already imported")
            return plan

        snapshot = self.context.snapshot
        lead_id = self.context.lead_for(row.lead_id)
        write_off_id = new_id()
        loss = Transaction(
            id=new_id(),
            type=TransactionType.EXPENSE,
            amount=row.gived_amount,
            date=row.gived_date,
            source_account_id=self.context.accounts.cash.id,
            expense_source=ExpenseSource.BAD_DEBT_LOSS,
            write_off_id=write_off_id,
            description=f"Castigo {normalize_name(row.full_name)}",
            route_id=snapshot.route_id,
            lead_id=lead_id,
            **snapshot.stamp(),
        )
        write_off = WriteOff(
            id=write_off_id,
            external_id=external_id,
            borrower_name=normalize_name(row.full_name),
            sign_date=row.gived_date,
            amount=row.gived_amount,
            outstanding_amount=row.gived_amount,
            transaction_id=loss.id,
            route_id=snapshot.route_id,
        )
        plan.writes.transactions.append(loss)
        recovered, outcomes = await self._recover(write_off, payments, plan, lead_id)
        plan.writes.write_offs.append(recovered)
        plan.outcomes = [
            RowOutcome(kind=OutcomeKind.WRITE_OFF, sheet=LOANS, row_id=row.id, entity_id=write_off.id),
            *outcomes,
        ]
        logger.info(
            "Route %s: row %s (%s) booked as write-off of %s",
            self.route_name,
            row.id,
            write_off.borrower_name,
            row.gived_amount,
        )
        return plan

    async def _recover(
        self,
        write_off: WriteOff,
        payments: list[PaymentRow],
        plan: RowPlan,
        lead_id: str | None,
    ) -> tuple[WriteOff, list[RowOutcome]]:
        """Book payments as recoveries against ``write_off``; returns the updated write-off.

        A payment already booked with the same date and amount, stored or
        earlier in the run, is a duplicate.
        """
        snapshot = self.context.snapshot
        outstanding = write_off.outstanding_amount
        outcomes = []
        for payment in payments:
            if payment.payment_date is None:
                outcomes.append(
                    RowOutcome(
                        kind=OutcomeKind.SKIPPED_INVALID,
                        sheet=PAYMENTS,
                        row_id=payment.loan_id,
                        detail="missing payment date",
                    )
                )
                continue
            key = (write_off.id, payment.payment_date, payment.amount)
            if key in self._recoveries or await self.repository.recovery_exists(*key):
                outcomes.append(
                    RowOutcome(
                        kind=OutcomeKind.SKIPPED_DUPLICATE,
                        sheet=PAYMENTS,
                        row_id=payment.loan_id,
                        detail="recovery already imported",
                    )
                )
                continue
            self._recoveries.add(key)
            plan.reserved_recoveries.append(key)
            route = payment_route(payment.description)
            income = Transaction(
                id=new_id(),
                type=TransactionType.INCOME,
                amount=payment.amount,
                date=payment.payment_date,
                destination_account_id=self.context.accounts.for_type(route.account_type).id,
                income_source=IncomeSource.WRITE_OFF_RECOVERY,
                write_off_id=write_off.id,
                description=payment.description,
                route_id=snapshot.route_id,
                lead_id=lead_id,
                **snapshot.stamp(),
            )
            recovery = CompensatoryPayment(
                id=new_id(),
                write_off_id=write_off.id,
                received_at=payment.payment_date,
                amount=payment.amount,
                transaction_id=income.id,
            )
            plan.writes.transactions.append(income)
            plan.writes.compensatory_payments.append(recovery)
            outstanding = max(outstanding - payment.amount, Decimal("0"))
            outcomes.append(
                RowOutcome(
                    kind=OutcomeKind.WRITE_OFF,
                    sheet=PAYMENTS,
                    row_id=payment.loan_id,
                    detail="recovery",
                    entity_id=recovery.id,
                )
            )
        return replace(write_off, outstanding_amount=outstanding), outcomes

    async def _recover_orphans(self, orphans: dict[str, list[PaymentRow]]) -> BatchResult:
        """Payments whose loan id has no loan row: recoveries of a stored write-off, or orphans."""
        plans = []
        unmatched = []
        for loan_id, payments in orphans.items():
            write_off = await self._find_write_off(loan_id)
            if write_off is None:
                unmatched.append(loan_id)
                plans.append(
                    RowPlan(
                        outcomes=[
                            RowOutcome(
                                kind=OutcomeKind.SKIPPED_INVALID,
                                sheet=PAYMENTS,
                                row_id=loan_id,
                                detail="no loan row",
                            )
                            for _ in payments
                        ]
                    )
                )
                continue
            plan = RowPlan(outcomes=[])
            updated, plan.outcomes = await self._recover(write_off, payments, plan, None)
            if plan.writes.compensatory_payments:
                plan.writes.write_off_updates.append(updated)
            plans.append(plan)
        if unmatched:
            logger.warning(
                "Route %s: payments for %d unknown loan ids left unimported: %s",
                self.route_name,
                len(unmatched),
                ", ".join(unmatched),
            )
        return await self._commit(self._next_index(), plans)

    async def _find_write_off(self, loan_id: str) -> WriteOff | None:
        external_id = self.context.snapshot.external_id(loan_id)
        if external_id in self._write_offs:
            return self._write_offs[external_id]
        write_off = await self.repository.find_write_off(external_id)
        if write_off is None:
            write_off = await self.repository.find_write_off(loan_id)
        return write_off
