"""Repository interface used by the import pipeline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from loan_import.models import (
    Account,
    AccountType,
    Borrower,
    CompensatoryPayment,
    Employee,
    Loan,
    LoanPayment,
    LoanType,
    PersonalData,
    PersonKind,
    Transaction,
    TransactionType,
    WriteOff,
)


@dataclass
class WriteBatch:
    """Writes that must land together or not at all."""

    loans: list[Loan] = field(default_factory=list)
    payments: list[LoanPayment] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    write_offs: list[WriteOff] = field(default_factory=list)
    write_off_updates: list[WriteOff] = field(default_factory=list)
    compensatory_payments: list[CompensatoryPayment] = field(default_factory=list)
    collateral_links: list[tuple[str, str]] = field(default_factory=list)

    def __len__(self) -> int:
        return (
            len(self.loans)
            + len(self.payments)
            + len(self.transactions)
            + len(self.write_offs)
            + len(self.write_off_updates)
            + len(self.compensatory_payments)
            + len(self.collateral_links)
        )

    def extend(self, other: "WriteBatch") -> None:
        self.loans.extend(other.loans)
        self.payments.extend(other.payments)
        self.transactions.extend(other.transactions)
        self.write_offs.extend(other.write_offs)
        self.write_off_updates.extend(other.write_off_updates)
        self.compensatory_payments.extend(other.compensatory_payments)
        self.collateral_links.extend(other.collateral_links)


class Repository(ABC):
    """Persistence verbs the importer needs.

    Identity rows (people, borrowers, employees, loan types, accounts) are
    written immediately. Loan, payment and ledger rows go through
    :meth:`commit_batch`, which is atomic.
    """

    # People

    @abstractmethod
    async def find_personal_data(self, kind: PersonKind, full_name: str) -> PersonalData | None:
        ...

    @abstractmethod
    async def find_personal_data_many(
        self, kind: PersonKind, full_names: list[str]
    ) -> dict[str, PersonalData]:
        ...

    @abstractmethod
    async def get_personal_data(self, personal_data_id: str) -> PersonalData | None:
        ...

    @abstractmethod
    async def add_personal_data(self, personal_data: PersonalData) -> None:
        ...

    @abstractmethod
    async def add_personal_data_many(self, personal_data: list[PersonalData]) -> None:
        ...

    @abstractmethod
    async def update_phone(self, personal_data_id: str, phone: str) -> None:
        """Replace the primary phone."""

    @abstractmethod
    async def find_borrower(self, personal_data_id: str) -> Borrower | None:
        ...

    @abstractmethod
    async def add_borrower(self, borrower: Borrower) -> None:
        ...

    @abstractmethod
    async def list_leads(self, route_id: str) -> list[tuple[Employee, PersonalData]]:
        """Route leads assigned to ``route_id`` or to no route."""

    @abstractmethod
    async def add_employee(self, employee: Employee) -> None:
        ...

    # Catalog and accounts

    @abstractmethod
    async def list_loan_types(self) -> list[LoanType]:
        ...

    @abstractmethod
    async def add_loan_type(self, loan_type: LoanType) -> None:
        ...

    @abstractmethod
    async def find_account(self, route_id: str, account_type: AccountType) -> Account | None:
        ...

    @abstractmethod
    async def add_account(self, account: Account) -> None:
        ...

    @abstractmethod
    async def list_accounts(self, route_id: str | None = None) -> list[Account]:
        ...

    @abstractmethod
    async def update_account_balance(self, account_id: str, amount: Decimal) -> None:
        ...

    @abstractmethod
    async def account_flows(self, account_id: str) -> tuple[Decimal, Decimal]:
        """Return (INCOME into the account, EXPENSE out of the account)."""

    # Loans

    @abstractmethod
    async def loan_exists(self, full_name: str, sign_date: date, amount_gived: Decimal) -> bool:
        """Whether a loan with this borrower name, sign date and amount exists on any route."""

    @abstractmethod
    async def find_loan_by_external_id(self, external_id: str) -> Loan | None:
        ...

    @abstractmethod
    async def get_loan(self, loan_id: str) -> Loan | None:
        ...

    @abstractmethod
    async def has_successor(self, loan_id: str) -> bool:
        ...

    @abstractmethod
    async def list_loans(self, route_id: str) -> list[Loan]:
        ...

    @abstractmethod
    async def list_payments(self, loan_ids: list[str]) -> list[LoanPayment]:
        ...

    @abstractmethod
    async def payment_profit_total(self, loan_id: str) -> Decimal:
        """Sum of profit on the payment transactions of a loan."""

    @abstractmethod
    async def save_loan_lifecycle(self, loans: list[Loan]) -> None:
        """Persist status, dates and denormalized fields of already stored loans."""

    @abstractmethod
    async def link_collateral(self, loan_id: str, personal_data_id: str) -> None:
        """Insert the guarantor link, ignoring it when already present."""

    @abstractmethod
    async def list_collateral(self, loan_id: str) -> list[str]:
        ...

    # Ledger

    @abstractmethod
    async def find_write_off(self, external_id: str) -> WriteOff | None:
        ...

    @abstractmethod
    async def recovery_exists(self, write_off_id: str, received_at: date, amount: Decimal) -> bool:
        """Whether a recovery of ``amount`` on ``received_at`` is booked against the write-off."""

    @abstractmethod
    async def transaction_exists(
        self,
        transaction_type: TransactionType,
        on: date,
        amount: Decimal,
        description: str | None,
    ) -> bool:
        ...

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> None:
        ...

    @abstractmethod
    async def commit_batch(self, batch: WriteBatch) -> None:
        """Apply every write in ``batch`` atomically."""

    async def close(self) -> None:
        return None
