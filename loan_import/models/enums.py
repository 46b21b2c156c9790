"""Enumeration types for imported entities."""

from enum import Enum


class LoanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class IncomeSource(str, Enum):
    CASH_LOAN_PAYMENT = "CASH_LOAN_PAYMENT"
    BANK_LOAN_PAYMENT = "BANK_LOAN_PAYMENT"
    WRITE_OFF_RECOVERY = "WRITE_OFF_RECOVERY"


class ExpenseSource(str, Enum):
    LOAN_GRANTED = "LOAN_GRANTED"
    GASOLINE = "GASOLINE"
    TRAVEL_EXPENSES = "TRAVEL_EXPENSES"
    LOAN_PAYMENT_COMISSION = "LOAN_PAYMENT_COMISSION"
    BANK_EXPENSE = "BANK_EXPENSE"
    EMPLOYEE_EXPENSE = "EMPLOYEE_EXPENSE"
    GENERAL_EXPENSE = "GENERAL_EXPENSE"
    NOMINA_SALARY = "NOMINA_SALARY"
    BAD_DEBT_LOSS = "BAD_DEBT_LOSS"


class AccountType(str, Enum):
    EMPLOYEE_CASH_FUND = "EMPLOYEE_CASH_FUND"
    OFFICE_CASH_FUND = "OFFICE_CASH_FUND"
    BANK = "BANK"
    PREPAID_GAS = "PREPAID_GAS"
    TRAVEL_EXPENSES = "TRAVEL_EXPENSES"


class PersonKind(str, Enum):
    """Identity space a PersonalData row belongs to."""

    BORROWER = "BORROWER"
    GUARANTOR = "GUARANTOR"
    EMPLOYEE = "EMPLOYEE"


class EmployeeType(str, Enum):
    ROUTE_LEAD = "ROUTE_LEAD"


class OutcomeKind(str, Enum):
    """Terminal state of one source row."""

    PERSISTED = "PERSISTED"
    SKIPPED_DUPLICATE = "SKIPPED_DUPLICATE"
    SKIPPED_NO_LEAD = "SKIPPED_NO_LEAD"
    SKIPPED_NO_PREDECESSOR = "SKIPPED_NO_PREDECESSOR"
    SKIPPED_INVALID = "SKIPPED_INVALID"
    WRITE_OFF = "WRITE_OFF"
    ERROR = "ERROR"
