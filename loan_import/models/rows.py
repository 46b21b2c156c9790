"""Typed source rows produced by the extractors."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class LoanRow:
    """One row of the loans sheet."""

    id: str
    full_name: str
    gived_date: date | None
    gived_amount: Decimal
    requested_amount: Decimal
    weeks: int
    interest_rate: Decimal
    lead_id: str | None
    status: str | None = None
    finished_date: date | None = None
    previous_loan_id: str | None = None
    bad_debt_date: date | None = None
    aval_name: str | None = None
    aval_phone: str | None = None
    titular_phone: str | None = None

    @property
    def is_renewal(self) -> bool:
        return self.previous_loan_id is not None


@dataclass(frozen=True)
class PaymentRow:
    """One row of the payments sheet, keyed by the loan's spreadsheet id."""

    loan_id: str
    payment_date: date | None
    amount: Decimal
    type: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class ExpenseRow:
    """One row of the expenses sheet."""

    date: date
    amount: Decimal | None
    full_name: str | None = None
    account_type: str | None = None
    lead_id: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class PayrollRow:
    """One row of the payroll sheet."""

    date: date
    amount: Decimal | None
    full_name: str | None = None
    description: str | None = None
    lead_id: str | None = None
    account_type: str | None = None


@dataclass(frozen=True)
class LeadRow:
    """One row of the leads sheet."""

    id: str
    first_name: str
    last_names: str
    phone: str | None = None
    active: bool = True
    route_name: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_names}".strip()
