"""Import engines for one route: loans, ledger sheets and the lifecycle pass."""

from loan_import.engine.context import ImportContext, RouteAccounts, ensure_route_accounts
from loan_import.engine.expenses import ExpenseImporter, PayrollImporter
from loan_import.engine.lifecycle import LifecyclePass, LifecycleStats
from loan_import.engine.loans import LoanImportEngine
from loan_import.engine.outcomes import BatchResult, RowOutcome, RunSummary
from loan_import.engine.profit import loan_profit, profit_summary, split_payment

__all__ = [
    "BatchResult",
    "ExpenseImporter",
    "ImportContext",
    "LifecyclePass",
    "LifecycleStats",
    "LoanImportEngine",
    "PayrollImporter",
    "RouteAccounts",
    "RowOutcome",
    "RunSummary",
    "ensure_route_accounts",
    "loan_profit",
    "profit_summary",
    "split_payment",
]
