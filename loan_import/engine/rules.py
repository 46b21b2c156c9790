"""Pure classification rules used by the importers."""

import re
from datetime import date
from decimal import Decimal
from typing import NamedTuple

from loan_import.identity.names import normalize_name
from loan_import.models import AccountType, ExpenseSource, IncomeSource, LoanRow

WRITE_OFF_MARKER = re.compile(r"falco[\s\-_.,:;/]", re.IGNORECASE)

DuplicateKey = tuple[str, date, Decimal]


class PaymentRoute(NamedTuple):
    account_type: AccountType
    income_source: IncomeSource


def is_write_off_name(full_name: str | None) -> bool:
    """Borrower names carrying the write-off marker."""
    return bool(full_name) and WRITE_OFF_MARKER.search(full_name) is not None


def duplicate_key(full_name: str, sign_date: date, amount_gived: Decimal) -> DuplicateKey:
    """Identity of a loan across routes: borrower name, sign date, disbursed amount."""
    return normalize_name(full_name), sign_date, amount_gived


def invalid_loan_reason(row: LoanRow) -> str | None:
    """Why a loan row cannot be imported at all, or ``None``."""
    if not normalize_name(row.full_name):
        return "empty borrower name"
    if row.gived_date is None:
        return "missing sign date"
    if row.gived_amount <= 0:
        return "non-positive disbursed amount"
    return None


def payment_route(description: str | None) -> PaymentRoute:
    """Deposits go to the bank account, everything else to the cash fund."""
    if normalize_name(description) == "DEPOSITO":
        return PaymentRoute(AccountType.BANK, IncomeSource.BANK_LOAN_PAYMENT)
    return PaymentRoute(AccountType.EMPLOYEE_CASH_FUND, IncomeSource.CASH_LOAN_PAYMENT)


def is_past_bad_debt(bad_debt_date: date | None, received_at: date) -> bool:
    return bad_debt_date is not None and received_at > bad_debt_date


def expense_account_type(account_type: str | None, description: str | None) -> AccountType:
    kind = normalize_name(account_type)
    desc = normalize_name(description)
    if (kind == "GASTO BANCO" and desc == "TOKA") or (kind == "TOKA" and desc == "GASOLINA"):
        return AccountType.PREPAID_GAS
    if (kind == "GASTO BANCO" and desc == "CONNECT") or desc == "CONNECT CONEXION":
        return AccountType.TRAVEL_EXPENSES
    if kind == "GASTO BANCO":
        return AccountType.BANK
    return AccountType.EMPLOYEE_CASH_FUND


def expense_source(account_type: str | None, description: str | None) -> ExpenseSource:
    kind = normalize_name(account_type)
    desc = normalize_name(description)
    if desc in ("GASOLINA", "TOKA"):
        return ExpenseSource.GASOLINE
    if desc == "CONNECT":
        return ExpenseSource.TRAVEL_EXPENSES
    if kind == "COMISION":
        return ExpenseSource.LOAN_PAYMENT_COMISSION
    if kind == "GASTO BANCO":
        return ExpenseSource.BANK_EXPENSE
    if kind == "GASTO SOCIO":
        return ExpenseSource.EMPLOYEE_EXPENSE
    return ExpenseSource.GENERAL_EXPENSE


def should_check_duplicate(on: date, cutoff: date) -> bool:
    """Ledger rows dated before the cut-off are checked for duplicates."""
    return on < cutoff
