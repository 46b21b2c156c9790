"""Tests for the post-import lifecycle pass."""

import asyncio
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from loan_import.engine import LifecyclePass, LoanImportEngine
from loan_import.engine.lifecycle import denormalize, successors_of
from loan_import.exceptions import InvalidEntityStateError
from loan_import.models import Account, AccountType, Loan, LoanPayment, LoanStatus, LoanType, Transaction, TransactionType
from loan_import.store import InMemoryRepository

D = date(2024, 1, 1)


def _import_and_close(make_context, loans, payments=()):
    async def run():
        context = await make_context()
        await LoanImportEngine(context).run(loans, payments)
        return await LifecyclePass(context).run()

    return asyncio.run(run())


def _by_old_id(repository: InMemoryRepository) -> dict[str, Loan]:
    return {loan.old_id: loan for loan in repository.loans.values()}


def _loan(loan_id: str, sign_date: date, previous: str | None = None) -> Loan:
    return Loan(
        id=loan_id,
        external_id=f"R-{loan_id}",
        old_id=loan_id,
        borrower_id="b",
        lead_id="l",
        loan_type_id="t",
        sign_date=sign_date,
        amount_gived=Decimal("1000"),
        requested_amount=Decimal("1000"),
        profit_amount=Decimal("0"),
        status=LoanStatus.ACTIVE,
        previous_loan_id=previous,
    )


class TestHelpers:
    def test_denormalize(self) -> None:
        loan = _loan("1", D)
        loan_type = LoanType(id="t", name="14w", week_duration=14, rate=Decimal("0.4"))
        payments = [
            LoanPayment(
                id=str(i),
                loan_id="1",
                received_at=D + timedelta(weeks=i),
                amount=Decimal("100"),
                type=None,
                profit_amount=Decimal("28.5714"),
                return_to_capital=Decimal("71.4286"),
            )
            for i in range(1, 4)
        ]

        denormalize(loan, loan_type, payments)

        assert loan.total_debt_acquired == Decimal("1400.00")
        assert loan.expected_weekly_payment == Decimal("100.00")
        assert loan.total_paid == Decimal("300.00")
        assert loan.pending_amount_stored == Decimal("1100.00")

    def test_pending_never_negative(self) -> None:
        loan = _loan("1", D)
        loan_type = LoanType(id="t", name="10w", week_duration=10, rate=Decimal("0"))
        overpaid = [
            LoanPayment(
                id="p",
                loan_id="1",
                received_at=D,
                amount=Decimal("1200"),
                type=None,
                profit_amount=Decimal("0"),
                return_to_capital=Decimal("1200"),
            )
        ]

        denormalize(loan, loan_type, overpaid)

        assert loan.pending_amount_stored == Decimal("0.00")

    def test_successors_earliest_wins(self) -> None:
        loans = [
            _loan("1", D),
            _loan("3", D + timedelta(days=20), previous="1"),
            _loan("2", D + timedelta(days=10), previous="1"),
        ]

        assert successors_of(loans)["1"].id == "2"


class TestLifecyclePass:
    """Status closure and account balances after import."""

    def test_unpaid_loan_stays_active(self, make_context, make_loan_row, make_payment_row, repository: InMemoryRepository) -> None:
        stats = _import_and_close(make_context, [make_loan_row("1")], [make_payment_row("1", "100", D + timedelta(days=7))])

        loan = _by_old_id(repository)["1"]
        assert loan.status == LoanStatus.ACTIVE
        assert loan.finished_date is None
        assert loan.total_debt_acquired == Decimal("1000.00")
        assert loan.expected_weekly_payment == Decimal("100.00")
        assert loan.total_paid == Decimal("100.00")
        assert loan.pending_amount_stored == Decimal("900.00")
        assert stats.loans_updated == 1
        assert (stats.paid_off, stats.renewed, stats.closed_predecessors) == (0, 0, 0)

    def test_paid_off_loan_finished(self, make_context, make_loan_row, make_payment_row, repository: InMemoryRepository) -> None:
        """A loan paid within the threshold finishes on its last payment date."""
        payments = [
            make_payment_row("1", "500", D + timedelta(days=7)),
            make_payment_row("1", "499.50", D + timedelta(days=14)),
        ]

        stats = _import_and_close(make_context, [make_loan_row("1")], payments)

        loan = _by_old_id(repository)["1"]
        assert loan.status == LoanStatus.FINISHED
        assert loan.finished_date == D + timedelta(days=14)
        assert loan.renewed_date is None
        assert stats.paid_off == 1

    def test_renewed_while_owing(self, make_context, make_loan_row, make_payment_row, repository: InMemoryRepository) -> None:
        rows = [
            make_loan_row("1"),
            make_loan_row("2", previous_loan_id="1", gived_date=D + timedelta(days=28)),
        ]

        stats = _import_and_close(make_context, rows, [make_payment_row("1", "300", D + timedelta(days=21))])

        loans = _by_old_id(repository)
        assert loans["1"].status == LoanStatus.FINISHED
        assert loans["1"].finished_date == D + timedelta(days=28)
        assert loans["1"].renewed_date == D + timedelta(days=28)
        assert loans["2"].status == LoanStatus.ACTIVE
        assert stats.renewed == 1

    def test_paid_off_before_renewal(self, make_context, make_loan_row, make_payment_row, repository: InMemoryRepository) -> None:
        """Paying off before the successor signs counts as paid off, not renewed."""
        rows = [
            make_loan_row("77"),
            make_loan_row(
                "78",
                previous_loan_id="77",
                weeks=14,
                interest_rate=Decimal("0.4"),
                gived_date=date(2024, 3, 18),
            ),
        ]
        payments = [
            make_payment_row("77", "1000", date(2024, 3, 11)),
            make_payment_row("78", "140", date(2024, 3, 25)),
        ]

        stats = _import_and_close(make_context, rows, payments)

        loans = _by_old_id(repository)
        assert loans["77"].status == LoanStatus.FINISHED
        assert loans["77"].finished_date == date(2024, 3, 11)
        assert loans["77"].renewed_date is None
        assert loans["77"].pending_amount_stored == Decimal("0.00")
        assert loans["78"].profit_amount == Decimal("400")
        payment = next(p for p in repository.payments.values() if p.loan_id == loans["78"].id)
        assert (payment.profit_amount, payment.return_to_capital) == (Decimal("40"), Decimal("100"))
        assert stats.paid_off == 1
        assert stats.renewed == 0

    def test_finished_predecessor_gets_renewed_date(self, make_context, make_loan_row, repository: InMemoryRepository) -> None:
        rows = [
            make_loan_row("1", finished_date=D + timedelta(days=60)),
            make_loan_row("2", previous_loan_id="1", gived_date=D + timedelta(days=63)),
        ]

        stats = _import_and_close(make_context, rows)

        loan = _by_old_id(repository)["1"]
        assert loan.status == LoanStatus.FINISHED
        assert loan.finished_date == D + timedelta(days=60)
        assert loan.renewed_date == D + timedelta(days=63)
        assert stats.closed_predecessors == 1

    def test_account_balances(self, make_context, make_loan_row, make_payment_row, repository: InMemoryRepository) -> None:
        """Balances are income minus expense per account."""
        payments = [
            make_payment_row("1", "300", D + timedelta(days=7)),
            make_payment_row("1", "200", D + timedelta(days=14), "DEPOSITO"),
        ]

        stats = _import_and_close(make_context, [make_loan_row("1")], payments)

        balances = {account.type.value: account.amount for account in repository.accounts.values()}
        assert balances["EMPLOYEE_CASH_FUND"] == Decimal("-700")
        assert balances["BANK"] == Decimal("200")
        assert balances["PREPAID_GAS"] == Decimal("0")
        assert stats.accounts_updated == 4

    def test_rerun_is_stable(self, make_context, make_loan_row, make_payment_row, repository: InMemoryRepository) -> None:
        rows = [make_loan_row("1")]
        payments = [make_payment_row("1", "1000", D + timedelta(days=70))]
        _import_and_close(make_context, rows, payments)
        first = _by_old_id(repository)["1"].finished_date

        _import_and_close(make_context, rows, payments)

        loan = _by_old_id(repository)["1"]
        assert loan.finished_date == first
        assert loan.total_paid == Decimal("1000.00")

    def test_unknown_loan_type(self, make_context, make_loan_row, repository: InMemoryRepository) -> None:
        async def run():
            context = await make_context()
            await LoanImportEngine(context).run([make_loan_row("1")], [])
            repository.loan_types.clear()
            await LifecyclePass(context).run()

        with pytest.raises(InvalidEntityStateError, match="unknown loan type"):
            asyncio.run(run())

    def test_refreshes_every_account(self, make_context, make_loan_row, repository: InMemoryRepository) -> None:
        """Accounts outside the imported route are recomputed too."""
        other = Account(id="acc-r2", name="Banco", type=AccountType.BANK, route_id="route-2", amount=Decimal("999"))
        asyncio.run(repository.add_account(other))
        asyncio.run(
            repository.add_transaction(
                Transaction(id="t-r2", type=TransactionType.INCOME, amount=Decimal("250"), date=D, destination_account_id="acc-r2")
            )
        )

        stats = _import_and_close(make_context, [make_loan_row("1")])

        assert repository.accounts["acc-r2"].amount == Decimal("250")
        assert stats.accounts_updated == 5


def _payment(loan_id: str, received_at: date, amount: str = "100") -> LoanPayment:
    return LoanPayment(
        id=f"{loan_id}-{received_at.isoformat()}",
        loan_id=loan_id,
        received_at=received_at,
        amount=Decimal(amount),
        type=None,
        profit_amount=Decimal("0"),
        return_to_capital=Decimal(amount),
    )


class TestClassification:
    """The closing rules never claim the same loan twice."""

    def test_mixed_population_is_disjoint(self) -> None:
        closed = replace(_loan("A", D), finished_date=D + timedelta(days=20))
        paid = replace(_loan("C", D), pending_amount_stored=Decimal("0.50"))
        owing = replace(_loan("E", D), pending_amount_stored=Decimal("500"))
        paid_late = replace(_loan("G", D), pending_amount_stored=Decimal("0"))
        loans = [
            closed,
            _loan("B", D + timedelta(days=21), previous="A"),
            paid,
            owing,
            _loan("F", D + timedelta(days=28), previous="E"),
            paid_late,
            _loan("H", D + timedelta(days=28), previous="G"),
        ]
        payments = {loan.id: [] for loan in loans}
        payments["C"] = [_payment("C", D + timedelta(days=14))]
        payments["E"] = [_payment("E", D + timedelta(days=21))]
        payments["G"] = [_payment("G", D + timedelta(days=21)), _payment("G", D + timedelta(days=35))]

        closed_predecessors, paid_off, renewed = LifecyclePass._classify(loans, successors_of(loans), payments)

        assert closed_predecessors == {"A"}
        assert paid_off == {"C": D + timedelta(days=14)}
        assert renewed == {"E": D + timedelta(days=28), "G": D + timedelta(days=28)}
        groups = [closed_predecessors, set(paid_off), set(renewed)]
        for i, group in enumerate(groups):
            for other in groups[i + 1 :]:
                assert group.isdisjoint(other)
        LifecyclePass._check_disjoint(*groups)

    def test_overlap_raises(self) -> None:
        with pytest.raises(InvalidEntityStateError, match=r"more than one rule: \['2'\]"):
            LifecyclePass._check_disjoint({"1", "2"}, {"2": D}, {"3": D})
