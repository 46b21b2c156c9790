"""Loan, loan type and payment models."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from loan_import.models.enums import LoanStatus


@dataclass
class LoanType:
    """A (weeks, rate) loan product."""

    id: str
    name: str
    week_duration: int
    rate: Decimal  # Flat rate over the whole term (e.g., 0.4 for 40%)
    fees: tuple[Decimal, ...] = ()
    created_at: datetime = field(default_factory=datetime.now)


@dataclass
class Loan:
    """Imported loan contract."""

    id: str
    external_id: str  # "{route}-{spreadsheet id}"
    old_id: str
    borrower_id: str
    lead_id: str
    loan_type_id: str
    sign_date: date
    amount_gived: Decimal
    requested_amount: Decimal
    profit_amount: Decimal
    status: LoanStatus
    previous_loan_id: str | None = None
    bad_debt_date: date | None = None
    finished_date: date | None = None
    renewed_date: date | None = None

    # Denormalized by the lifecycle pass
    total_debt_acquired: Decimal = Decimal("0")
    expected_weekly_payment: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    pending_amount_stored: Decimal = Decimal("0")

    snapshot_route_id: str | None = None
    snapshot_route_name: str | None = None
    snapshot_lead_id: str | None = None
    snapshot_lead_name: str | None = None
    snapshot_lead_assigned_at: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime | None = None


@dataclass
class LoanPayment:
    """A payment received against a loan, with its profit/capital split."""

    id: str
    loan_id: str
    received_at: date
    amount: Decimal
    type: str | None
    profit_amount: Decimal
    return_to_capital: Decimal
    description: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
