"""Accounts and money-movement records."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from loan_import.models.enums import AccountType, ExpenseSource, IncomeSource, TransactionType


@dataclass
class Account:
    """A route money pool (cash fund, bank, prepaid gas, travel)."""

    id: str
    name: str
    type: AccountType
    route_id: str
    amount: Decimal = Decimal("0")
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime | None = None


@dataclass
class Transaction:
    """Ledger movement.

    INCOME transactions credit ``destination_account_id``; EXPENSE
    transactions debit ``source_account_id``.
    """

    id: str
    type: TransactionType
    amount: Decimal
    date: date
    source_account_id: str | None = None
    destination_account_id: str | None = None
    income_source: IncomeSource | None = None
    expense_source: ExpenseSource | None = None
    loan_id: str | None = None
    loan_payment_id: str | None = None
    write_off_id: str | None = None
    profit_amount: Decimal | None = None
    return_to_capital: Decimal | None = None
    description: str | None = None
    route_id: str | None = None
    lead_id: str | None = None  # Lead of the source row

    snapshot_route_id: str | None = None
    snapshot_route_name: str | None = None
    snapshot_lead_id: str | None = None
    snapshot_lead_name: str | None = None
    snapshot_lead_assigned_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class WriteOff:
    """Loss booked instead of a loan for a flagged source row."""

    id: str
    external_id: str
    borrower_name: str
    sign_date: date
    amount: Decimal
    outstanding_amount: Decimal
    transaction_id: str
    route_id: str
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class CompensatoryPayment:
    """Partial recovery received against a write-off."""

    id: str
    write_off_id: str
    received_at: date
    amount: Decimal
    transaction_id: str
    created_at: datetime = field(default_factory=datetime.now)
