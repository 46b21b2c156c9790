"""Tests for the in-memory repository."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from loan_import.exceptions import EntityNotFoundError, InvalidEntityStateError, ReferentialIntegrityError
from loan_import.models import (
    Account,
    AccountType,
    Borrower,
    Loan,
    LoanPayment,
    LoanStatus,
    LoanType,
    PersonalData,
    PersonKind,
    Transaction,
    TransactionType,
    WriteOff,
)
from loan_import.store import InMemoryRepository, WriteBatch


@pytest.fixture
def store() -> InMemoryRepository:
    """Store with one borrower, one loan type and one cash account."""
    repository = InMemoryRepository()

    async def seed() -> None:
        await repository.add_personal_data(PersonalData(id="pd-1", full_name="ANA RUIZ", kind=PersonKind.BORROWER))
        await repository.add_borrower(Borrower(id="b-1", personal_data_id="pd-1"))
        await repository.add_loan_type(LoanType(id="t-1", name="10w", week_duration=10, rate=Decimal("0")))
        await repository.add_account(Account(id="a-cash", name="Caja", type=AccountType.EMPLOYEE_CASH_FUND, route_id="r-1"))

    asyncio.run(seed())
    return repository


def _loan(loan_id: str, external_id: str, previous_loan_id: str | None = None, borrower_id: str = "b-1") -> Loan:
    return Loan(
        id=loan_id,
        external_id=external_id,
        old_id=external_id.split("-")[-1],
        borrower_id=borrower_id,
        lead_id="e-1",
        loan_type_id="t-1",
        sign_date=date(2024, 1, 1),
        amount_gived=Decimal("1000"),
        requested_amount=Decimal("1000"),
        profit_amount=Decimal("0"),
        status=LoanStatus.ACTIVE,
        previous_loan_id=previous_loan_id,
        snapshot_route_id="r-1",
    )


def _payment(payment_id: str, loan_id: str) -> LoanPayment:
    return LoanPayment(
        id=payment_id,
        loan_id=loan_id,
        received_at=date(2024, 1, 8),
        amount=Decimal("100"),
        type="ABONO",
        profit_amount=Decimal("0"),
        return_to_capital=Decimal("100"),
    )


class TestPeople:
    """Tests for people, borrowers and employees."""

    def test_duplicate_name_per_kind_rejected(self, store: InMemoryRepository) -> None:
        with pytest.raises(InvalidEntityStateError):
            asyncio.run(store.add_personal_data(PersonalData(id="pd-2", full_name="ANA RUIZ", kind=PersonKind.BORROWER)))

    def test_same_name_other_kind_allowed(self, store: InMemoryRepository) -> None:
        asyncio.run(store.add_personal_data(PersonalData(id="pd-2", full_name="ANA RUIZ", kind=PersonKind.GUARANTOR)))

        assert asyncio.run(store.find_personal_data(PersonKind.GUARANTOR, "ANA RUIZ")).id == "pd-2"

    def test_borrower_requires_person(self, store: InMemoryRepository) -> None:
        with pytest.raises(ReferentialIntegrityError):
            asyncio.run(store.add_borrower(Borrower(id="b-2", personal_data_id="missing")))

    def test_update_phone_missing_person(self, store: InMemoryRepository) -> None:
        with pytest.raises(EntityNotFoundError):
            asyncio.run(store.update_phone("missing", "5512345678"))


class TestCommitBatch:
    """Tests for atomic batch commits."""

    def test_commit_applies_everything(self, store: InMemoryRepository) -> None:
        batch = WriteBatch(
            loans=[_loan("l-1", "R-1")],
            payments=[_payment("p-1", "l-1")],
            transactions=[
                Transaction(
                    id="t-1",
                    type=TransactionType.INCOME,
                    amount=Decimal("100"),
                    date=date(2024, 1, 8),
                    destination_account_id="a-cash",
                    loan_payment_id="p-1",
                    profit_amount=Decimal("0"),
                )
            ],
            collateral_links=[("l-1", "pd-1"), ("l-1", "pd-1")],
        )

        asyncio.run(store.commit_batch(batch))

        assert len(batch) == 5
        assert asyncio.run(store.find_loan_by_external_id("R-1")).id == "l-1"
        assert [p.id for p in asyncio.run(store.list_payments(["l-1"]))] == ["p-1"]
        assert asyncio.run(store.list_collateral("l-1")) == ["pd-1"]
        assert asyncio.run(store.loan_exists("ANA RUIZ", date(2024, 1, 1), Decimal("1000")))
        assert not asyncio.run(store.loan_exists("ANA RUIZ", date(2024, 1, 2), Decimal("1000")))

    def test_failed_commit_writes_nothing(self, store: InMemoryRepository) -> None:
        """A bad reference anywhere in the batch rolls the whole batch back."""
        batch = WriteBatch(
            loans=[_loan("l-1", "R-1")],
            payments=[_payment("p-1", "l-1"), _payment("p-2", "ghost")],
        )

        with pytest.raises(ReferentialIntegrityError):
            asyncio.run(store.commit_batch(batch))

        assert store.summary()["loans"] == 0
        assert store.summary()["payments"] == 0

    @pytest.mark.parametrize(
        "batch",
        [
            WriteBatch(loans=[_loan("l-1", "R-1", borrower_id="nobody")]),
            WriteBatch(loans=[_loan("l-2", "R-2", previous_loan_id="missing")]),
            WriteBatch(
                transactions=[
                    Transaction(id="t-1", type=TransactionType.EXPENSE, amount=Decimal("1"), date=date(2024, 1, 1), source_account_id="nope")
                ]
            ),
            WriteBatch(write_off_updates=[WriteOff(id="w-x", external_id="R-9", borrower_name="X", sign_date=date(2024, 1, 1), amount=Decimal("1"), outstanding_amount=Decimal("1"), transaction_id="t", route_id="r-1")]),
        ],
    )
    def test_referential_integrity(self, store: InMemoryRepository, batch: WriteBatch) -> None:
        with pytest.raises(ReferentialIntegrityError):
            asyncio.run(store.commit_batch(batch))

    def test_predecessor_renewed_once(self, store: InMemoryRepository) -> None:
        """A loan can have at most one successor."""
        asyncio.run(store.commit_batch(WriteBatch(loans=[_loan("l-1", "R-1"), _loan("l-2", "R-2", "l-1")])))

        assert asyncio.run(store.has_successor("l-1"))
        with pytest.raises(InvalidEntityStateError):
            asyncio.run(store.commit_batch(WriteBatch(loans=[_loan("l-3", "R-3", "l-1")])))

    def test_external_id_unique(self, store: InMemoryRepository) -> None:
        with pytest.raises(InvalidEntityStateError):
            asyncio.run(store.commit_batch(WriteBatch(loans=[_loan("l-1", "R-1"), _loan("l-2", "R-1")])))


class TestLedgerQueries:
    """Tests for balances, duplicates and lifecycle writes."""

    def test_account_flows_and_balance(self, store: InMemoryRepository) -> None:
        transactions = [
            Transaction(id="i", type=TransactionType.INCOME, amount=Decimal("300"), date=date(2024, 1, 8), destination_account_id="a-cash"),
            Transaction(id="e", type=TransactionType.EXPENSE, amount=Decimal("1000"), date=date(2024, 1, 1), source_account_id="a-cash", description="X"),
        ]

        async def run():
            await store.commit_batch(WriteBatch(transactions=transactions))
            flows = await store.account_flows("a-cash")
            await store.update_account_balance("a-cash", flows[0] - flows[1])
            return flows

        assert asyncio.run(run()) == (Decimal("300"), Decimal("1000"))
        assert store.accounts["a-cash"].amount == Decimal("-700")
        assert asyncio.run(store.transaction_exists(TransactionType.EXPENSE, date(2024, 1, 1), Decimal("1000"), "X"))
        assert not asyncio.run(store.transaction_exists(TransactionType.EXPENSE, date(2024, 1, 1), Decimal("1000"), "Y"))

    def test_save_loan_lifecycle_requires_stored_loans(self, store: InMemoryRepository) -> None:
        with pytest.raises(EntityNotFoundError):
            asyncio.run(store.save_loan_lifecycle([_loan("l-9", "R-9")]))

    def test_link_collateral_is_insert_or_ignore(self, store: InMemoryRepository) -> None:
        async def run():
            await store.commit_batch(WriteBatch(loans=[_loan("l-1", "R-1")]))
            await store.link_collateral("l-1", "pd-1")
            await store.link_collateral("l-1", "pd-1")
            return await store.list_collateral("l-1")

        assert asyncio.run(run()) == ["pd-1"]

    def test_summary(self, store: InMemoryRepository) -> None:
        summary = store.summary()

        assert summary["personal_data"] == 1
        assert summary["borrowers"] == 1
        assert summary["loan_types"] == 1
        assert summary["accounts"] == 1
        assert summary["loans"] == 0
