"""Domain models for loan-import."""

from loan_import.models.base import Event, RouteSnapshot, new_id
from loan_import.models.enums import (
    AccountType,
    EmployeeType,
    ExpenseSource,
    IncomeSource,
    LoanStatus,
    OutcomeKind,
    PersonKind,
    TransactionType,
)
from loan_import.models.ledger import Account, CompensatoryPayment, Transaction, WriteOff
from loan_import.models.loan import Loan, LoanPayment, LoanType
from loan_import.models.people import Borrower, Employee, PersonalData
from loan_import.models.rows import ExpenseRow, LeadRow, LoanRow, PaymentRow, PayrollRow

__all__ = [
    "Account",
    "AccountType",
    "Borrower",
    "CompensatoryPayment",
    "Employee",
    "EmployeeType",
    "Event",
    "ExpenseRow",
    "ExpenseSource",
    "IncomeSource",
    "LeadRow",
    "Loan",
    "LoanPayment",
    "LoanRow",
    "LoanStatus",
    "LoanType",
    "OutcomeKind",
    "PaymentRow",
    "PayrollRow",
    "PersonKind",
    "PersonalData",
    "RouteSnapshot",
    "Transaction",
    "TransactionType",
    "WriteOff",
    "new_id",
]
