"""In-memory repository with referential integrity checks."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from loan_import.exceptions import (
    EntityNotFoundError,
    InvalidEntityStateError,
    ReferentialIntegrityError,
)
from loan_import.models import (
    Account,
    AccountType,
    Borrower,
    CompensatoryPayment,
    Employee,
    EmployeeType,
    Loan,
    LoanPayment,
    LoanType,
    PersonalData,
    PersonKind,
    Transaction,
    TransactionType,
    WriteOff,
)
from loan_import.store.base import Repository, WriteBatch


@dataclass
class InMemoryRepository(Repository):
    """Dict-backed store used by tests and dry runs."""

    personal_data: dict[str, PersonalData] = field(default_factory=dict)
    borrowers: dict[str, Borrower] = field(default_factory=dict)
    employees: dict[str, Employee] = field(default_factory=dict)
    loan_types: dict[str, LoanType] = field(default_factory=dict)
    accounts: dict[str, Account] = field(default_factory=dict)
    loans: dict[str, Loan] = field(default_factory=dict)
    payments: dict[str, LoanPayment] = field(default_factory=dict)
    transactions: list[Transaction] = field(default_factory=list)
    write_offs: dict[str, WriteOff] = field(default_factory=dict)
    compensatory_payments: list[CompensatoryPayment] = field(default_factory=list)
    collateral: set[tuple[str, str]] = field(default_factory=set)

    # Relationship indexes
    _names: dict[tuple[PersonKind, str], str] = field(default_factory=dict)
    _borrower_by_person: dict[str, str] = field(default_factory=dict)
    _loan_by_external_id: dict[str, str] = field(default_factory=dict)
    _successor_of: dict[str, str] = field(default_factory=dict)
    _loan_payments: dict[str, list[str]] = field(default_factory=dict)
    _write_off_by_external_id: dict[str, str] = field(default_factory=dict)

    # People

    async def find_personal_data(self, kind: PersonKind, full_name: str) -> PersonalData | None:
        personal_data_id = self._names.get((kind, full_name))
        return self.personal_data.get(personal_data_id) if personal_data_id else None

    async def find_personal_data_many(
        self, kind: PersonKind, full_names: list[str]
    ) -> dict[str, PersonalData]:
        found = {}
        for name in full_names:
            personal_data_id = self._names.get((kind, name))
            if personal_data_id:
                found[name] = self.personal_data[personal_data_id]
        return found

    async def get_personal_data(self, personal_data_id: str) -> PersonalData | None:
        return self.personal_data.get(personal_data_id)

    async def add_personal_data(self, personal_data: PersonalData) -> None:
        key = (personal_data.kind, personal_data.full_name)
        if key in self._names:
            raise InvalidEntityStateError(
                f"{personal_data.kind.value} {personal_data.full_name!r} already exists"
            )
        self.personal_data[personal_data.id] = personal_data
        self._names[key] = personal_data.id

    async def add_personal_data_many(self, personal_data: list[PersonalData]) -> None:
        for item in personal_data:
            await self.add_personal_data(item)

    async def update_phone(self, personal_data_id: str, phone: str) -> None:
        person = self.personal_data.get(personal_data_id)
        if person is None:
            raise EntityNotFoundError(f"PersonalData {personal_data_id} not found")
        if person.phones:
            person.phones[0] = phone
        else:
            person.phones.append(phone)
        person.updated_at = datetime.now()

    async def find_borrower(self, personal_data_id: str) -> Borrower | None:
        borrower_id = self._borrower_by_person.get(personal_data_id)
        return self.borrowers.get(borrower_id) if borrower_id else None

    async def add_borrower(self, borrower: Borrower) -> None:
        if borrower.personal_data_id not in self.personal_data:
            raise ReferentialIntegrityError(f"PersonalData {borrower.personal_data_id} not found")
        if borrower.personal_data_id in self._borrower_by_person:
            raise InvalidEntityStateError(
                f"PersonalData {borrower.personal_data_id} already has a borrower"
            )
        self.borrowers[borrower.id] = borrower
        self._borrower_by_person[borrower.personal_data_id] = borrower.id

    async def list_leads(self, route_id: str) -> list[tuple[Employee, PersonalData]]:
        return [
            (employee, self.personal_data[employee.personal_data_id])
            for employee in self.employees.values()
            if employee.type == EmployeeType.ROUTE_LEAD
            and employee.route_id in (route_id, None)
        ]

    async def add_employee(self, employee: Employee) -> None:
        if employee.personal_data_id not in self.personal_data:
            raise ReferentialIntegrityError(f"PersonalData {employee.personal_data_id} not found")
        self.employees[employee.id] = employee

    # Catalog and accounts

    async def list_loan_types(self) -> list[LoanType]:
        return list(self.loan_types.values())

    async def add_loan_type(self, loan_type: LoanType) -> None:
        for existing in self.loan_types.values():
            if existing.week_duration == loan_type.week_duration and existing.rate == loan_type.rate:
                raise InvalidEntityStateError(
                    f"Loan type {loan_type.week_duration}w/{loan_type.rate} already exists"
                )
        self.loan_types[loan_type.id] = loan_type

    async def find_account(self, route_id: str, account_type: AccountType) -> Account | None:
        for account in self.accounts.values():
            if account.route_id == route_id and account.type == account_type:
                return account
        return None

    async def add_account(self, account: Account) -> None:
        self.accounts[account.id] = account

    async def list_accounts(self, route_id: str | None = None) -> list[Account]:
        return [a for a in self.accounts.values() if route_id is None or a.route_id == route_id]

    async def update_account_balance(self, account_id: str, amount: Decimal) -> None:
        account = self.accounts.get(account_id)
        if account is None:
            raise EntityNotFoundError(f"Account {account_id} not found")
        account.amount = amount
        account.updated_at = datetime.now()

    async def account_flows(self, account_id: str) -> tuple[Decimal, Decimal]:
        income = sum(
            (
                t.amount
                for t in self.transactions
                if t.type == TransactionType.INCOME and t.destination_account_id == account_id
            ),
            Decimal("0"),
        )
        expense = sum(
            (
                t.amount
                for t in self.transactions
                if t.type == TransactionType.EXPENSE and t.source_account_id == account_id
            ),
            Decimal("0"),
        )
        return income, expense

    # Loans

    async def loan_exists(self, full_name: str, sign_date: date, amount_gived: Decimal) -> bool:
        for loan in self.loans.values():
            if loan.sign_date != sign_date or loan.amount_gived != amount_gived:
                continue
            borrower = self.borrowers.get(loan.borrower_id)
            person = self.personal_data.get(borrower.personal_data_id) if borrower else None
            if person is not None and person.full_name == full_name:
                return True
        return False

    async def find_loan_by_external_id(self, external_id: str) -> Loan | None:
        loan_id = self._loan_by_external_id.get(external_id)
        return self.loans.get(loan_id) if loan_id else None

    async def get_loan(self, loan_id: str) -> Loan | None:
        return self.loans.get(loan_id)

    async def has_successor(self, loan_id: str) -> bool:
        return loan_id in self._successor_of

    async def list_loans(self, route_id: str) -> list[Loan]:
        return [loan for loan in self.loans.values() if loan.snapshot_route_id == route_id]

    async def list_payments(self, loan_ids: list[str]) -> list[LoanPayment]:
        return [
            self.payments[payment_id]
            for loan_id in loan_ids
            for payment_id in self._loan_payments.get(loan_id, [])
        ]

    async def payment_profit_total(self, loan_id: str) -> Decimal:
        payment_ids = set(self._loan_payments.get(loan_id, []))
        return sum(
            (
                t.profit_amount or Decimal("0")
                for t in self.transactions
                if t.loan_payment_id in payment_ids
            ),
            Decimal("0"),
        )

    async def save_loan_lifecycle(self, loans: list[Loan]) -> None:
        missing = [loan.id for loan in loans if loan.id not in self.loans]
        if missing:
            raise EntityNotFoundError(f"Loans not found: {missing}")
        for loan in loans:
            loan.updated_at = datetime.now()
            self.loans[loan.id] = loan

    async def link_collateral(self, loan_id: str, personal_data_id: str) -> None:
        if loan_id not in self.loans:
            raise ReferentialIntegrityError(f"Loan {loan_id} not found")
        if personal_data_id not in self.personal_data:
            raise ReferentialIntegrityError(f"PersonalData {personal_data_id} not found")
        self.collateral.add((loan_id, personal_data_id))

    async def list_collateral(self, loan_id: str) -> list[str]:
        return sorted(pd_id for linked_loan, pd_id in self.collateral if linked_loan == loan_id)

    # Ledger

    async def find_write_off(self, external_id: str) -> WriteOff | None:
        write_off_id = self._write_off_by_external_id.get(external_id)
        return self.write_offs.get(write_off_id) if write_off_id else None

    async def recovery_exists(self, write_off_id: str, received_at: date, amount: Decimal) -> bool:
        return any(
            r.write_off_id == write_off_id and r.received_at == received_at and r.amount == amount
            for r in self.compensatory_payments
        )

    async def transaction_exists(
        self,
        transaction_type: TransactionType,
        on: date,
        amount: Decimal,
        description: str | None,
    ) -> bool:
        return any(
            t.type == transaction_type
            and t.date == on
            and t.amount == amount
            and t.description == description
            for t in self.transactions
        )

    async def add_transaction(self, transaction: Transaction) -> None:
        self._check_transaction(transaction)
        self.transactions.append(transaction)

    async def commit_batch(self, batch: WriteBatch) -> None:
        """Validate every write first, then apply them all."""
        self._validate_batch(batch)

        for loan in batch.loans:
            self.loans[loan.id] = loan
            self._loan_by_external_id[loan.external_id] = loan.id
            self._loan_payments.setdefault(loan.id, [])
            if loan.previous_loan_id:
                self._successor_of[loan.previous_loan_id] = loan.id
        for payment in batch.payments:
            self.payments[payment.id] = payment
            self._loan_payments.setdefault(payment.loan_id, []).append(payment.id)
        for write_off in batch.write_offs:
            self.write_offs[write_off.id] = write_off
            self._write_off_by_external_id[write_off.external_id] = write_off.id
        for write_off in batch.write_off_updates:
            self.write_offs[write_off.id] = write_off
        self.transactions.extend(batch.transactions)
        self.compensatory_payments.extend(batch.compensatory_payments)
        self.collateral.update(batch.collateral_links)

    def _validate_batch(self, batch: WriteBatch) -> None:
        loan_ids = set(self.loans) | {loan.id for loan in batch.loans}
        external_ids = set(self._loan_by_external_id)
        renewed = set(self._successor_of)
        for loan in batch.loans:
            if loan.borrower_id not in self.borrowers:
                raise ReferentialIntegrityError(f"Borrower {loan.borrower_id} not found")
            if loan.loan_type_id not in self.loan_types:
                raise ReferentialIntegrityError(f"Loan type {loan.loan_type_id} not found")
            if loan.external_id in external_ids:
                raise InvalidEntityStateError(f"Loan {loan.external_id} already exists")
            external_ids.add(loan.external_id)
            if loan.previous_loan_id:
                if loan.previous_loan_id not in loan_ids:
                    raise ReferentialIntegrityError(f"Previous loan {loan.previous_loan_id} not found")
                if loan.previous_loan_id in renewed:
                    raise InvalidEntityStateError(
                        f"Loan {loan.previous_loan_id} already has a successor"
                    )
                renewed.add(loan.previous_loan_id)

        for payment in batch.payments:
            if payment.loan_id not in loan_ids:
                raise ReferentialIntegrityError(f"Loan {payment.loan_id} not found")

        write_off_ids = set(self.write_offs) | {w.id for w in batch.write_offs}
        for write_off in batch.write_offs:
            if write_off.external_id in self._write_off_by_external_id:
                raise InvalidEntityStateError(f"Write-off {write_off.external_id} already exists")
        for write_off in batch.write_off_updates:
            if write_off.id not in write_off_ids:
                raise ReferentialIntegrityError(f"Write-off {write_off.id} not found")
        for recovery in batch.compensatory_payments:
            if recovery.write_off_id not in write_off_ids:
                raise ReferentialIntegrityError(f"Write-off {recovery.write_off_id} not found")

        for transaction in batch.transactions:
            self._check_transaction(transaction)

        for loan_id, personal_data_id in batch.collateral_links:
            if loan_id not in loan_ids:
                raise ReferentialIntegrityError(f"Loan {loan_id} not found")
            if personal_data_id not in self.personal_data:
                raise ReferentialIntegrityError(f"PersonalData {personal_data_id} not found")

    def _check_transaction(self, transaction: Transaction) -> None:
        for account_id in (transaction.source_account_id, transaction.destination_account_id):
            if account_id is not None and account_id not in self.accounts:
                raise ReferentialIntegrityError(f"Account {account_id} not found")

    def summary(self) -> dict[str, int]:
        """Get summary of stored entities."""
        return {
            "personal_data": len(self.personal_data),
            "borrowers": len(self.borrowers),
            "employees": len(self.employees),
            "loan_types": len(self.loan_types),
            "accounts": len(self.accounts),
            "loans": len(self.loans),
            "payments": len(self.payments),
            "transactions": len(self.transactions),
            "write_offs": len(self.write_offs),
            "compensatory_payments": len(self.compensatory_payments),
            "collateral_links": len(self.collateral),
        }
