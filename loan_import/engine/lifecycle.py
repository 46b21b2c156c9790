"""Post-import pass: denormalized loan totals, status closure and account balances."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from loan_import.engine.context import ImportContext
from loan_import.engine.profit import quantize
from loan_import.exceptions import InvalidEntityStateError
from loan_import.models import Loan, LoanPayment, LoanStatus, LoanType

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
PAID_OFF_THRESHOLD = Decimal("1")


@dataclass
class LifecycleStats:
    loans_updated: int = 0
    closed_predecessors: int = 0
    paid_off: int = 0
    renewed: int = 0
    accounts_updated: int = 0


def denormalize(loan: Loan, loan_type: LoanType, payments: list[LoanPayment]) -> None:
    """Refresh the stored totals of ``loan`` from its type and payments."""
    total = quantize(loan.requested_amount * (1 + loan_type.rate), CENTS)
    paid = quantize(sum((p.amount for p in payments), Decimal("0")), CENTS)
    loan.total_debt_acquired = total
    loan.expected_weekly_payment = quantize(total / max(loan_type.week_duration, 1), CENTS)
    loan.total_paid = paid
    loan.pending_amount_stored = max(total - paid, Decimal("0")).quantize(CENTS)


def successors_of(loans: list[Loan]) -> dict[str, Loan]:
    """Map each renewed loan id to its earliest-signed successor."""
    successors: dict[str, Loan] = {}
    for loan in loans:
        if loan.previous_loan_id is None:
            continue
        current = successors.get(loan.previous_loan_id)
        if current is None or loan.sign_date < current.sign_date:
            successors[loan.previous_loan_id] = loan
    return successors


class LifecyclePass:
    """Runs once per route after every batch has been written."""

    def __init__(self, context: ImportContext) -> None:
        self.context = context
        self.repository = context.repository

    async def run(self) -> LifecycleStats:
        stats = LifecycleStats()
        route = self.context.snapshot
        loans = await self.repository.list_loans(route.route_id)
        loan_types = {t.id: t for t in await self.repository.list_loan_types()}

        payments: dict[str, list[LoanPayment]] = {loan.id: [] for loan in loans}
        for payment in await self.repository.list_payments(list(payments)):
            payments[payment.loan_id].append(payment)

        for loan in loans:
            loan_type = loan_types.get(loan.loan_type_id)
            if loan_type is None:
                raise InvalidEntityStateError(f"Loan {loan.external_id} has unknown loan type {loan.loan_type_id}")
            denormalize(loan, loan_type, payments[loan.id])

        successors = successors_of(loans)
        closed_predecessors, paid_off, renewed = self._classify(loans, successors, payments)
        self._check_disjoint(closed_predecessors, paid_off, renewed)

        for loan in loans:
            if loan.id in closed_predecessors:
                loan.status = LoanStatus.FINISHED
                loan.renewed_date = successors[loan.id].sign_date
            elif loan.id in paid_off:
                loan.status = LoanStatus.FINISHED
                loan.finished_date = paid_off[loan.id]
            elif loan.id in renewed:
                loan.status = LoanStatus.FINISHED
                loan.finished_date = renewed[loan.id]
                loan.renewed_date = renewed[loan.id]

        if loans:
            await self.repository.save_loan_lifecycle(loans)
        stats.loans_updated = len(loans)
        stats.closed_predecessors = len(closed_predecessors)
        stats.paid_off = len(paid_off)
        stats.renewed = len(renewed)

        for account in await self.repository.list_accounts():
            income, expense = await self.repository.account_flows(account.id)
            await self.repository.update_account_balance(account.id, quantize(income - expense))
            stats.accounts_updated += 1

        logger.info(
            "Route %s lifecycle: %d loans, %d closed predecessors, %d paid off, %d renewed",
            route.route_name,
            stats.loans_updated,
            stats.closed_predecessors,
            stats.paid_off,
            stats.renewed,
        )
        return stats

    @staticmethod
    def _classify(
        loans: list[Loan],
        successors: dict[str, Loan],
        payments: dict[str, list[LoanPayment]],
    ) -> tuple[set[str], dict[str, date], dict[str, date]]:
        """Split loans into closed predecessors, paid-off loans and renewed loans.

        Returns
        -------
        tuple[set[str], dict[str, date], dict[str, date]]
            Predecessor ids that already carry a finished date, then paid-off
            and renewed loan ids mapped to the date they finished.
        """
        closed_predecessors: set[str] = set()
        paid_off: dict[str, date] = {}
        renewed: dict[str, date] = {}

        for loan in loans:
            successor = successors.get(loan.id)
            if loan.finished_date is not None:
                if successor is not None:
                    closed_predecessors.add(loan.id)
                continue

            loan_payments = payments[loan.id]
            last_payment = max((p.received_at for p in loan_payments), default=None)
            is_paid_off = last_payment is not None and loan.pending_amount_stored < PAID_OFF_THRESHOLD

            if successor is None:
                if is_paid_off:
                    paid_off[loan.id] = last_payment
            elif is_paid_off and last_payment < successor.sign_date:
                paid_off[loan.id] = last_payment
            else:
                renewed[loan.id] = successor.sign_date
        return closed_predecessors, paid_off, renewed

    @staticmethod
    def _check_disjoint(*groups) -> None:
        seen: set[str] = set()
        for group in groups:
            overlap = seen.intersection(group)
            if overlap:
                raise InvalidEntityStateError(f"Loans closed by more than one rule: {sorted(overlap)}")
            seen.update(group)
