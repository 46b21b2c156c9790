"""Per-route import context shared by the importers."""

import logging
from dataclasses import dataclass, field
from typing import Mapping

from loan_import.config import ImportConfig
from loan_import.identity import IdentityResolver, LoanTypeResolver
from loan_import.models import Account, AccountType, RouteSnapshot, new_id
from loan_import.store.base import Repository

logger = logging.getLogger(__name__)

ROUTE_ACCOUNTS: dict[AccountType, str] = {
    AccountType.EMPLOYEE_CASH_FUND: "Caja",
    AccountType.BANK: "Banco",
    AccountType.PREPAID_GAS: "Toka",
    AccountType.TRAVEL_EXPENSES: "Connect",
}


@dataclass(frozen=True)
class RouteAccounts:
    """The money pools of one route."""

    cash: Account
    bank: Account
    prepaid_gas: Account
    travel: Account

    def for_type(self, account_type: AccountType) -> Account:
        return {
            AccountType.EMPLOYEE_CASH_FUND: self.cash,
            AccountType.BANK: self.bank,
            AccountType.PREPAID_GAS: self.prepaid_gas,
            AccountType.TRAVEL_EXPENSES: self.travel,
        }.get(account_type, self.cash)


async def ensure_route_accounts(repository: Repository, snapshot: RouteSnapshot) -> RouteAccounts:
    """Find or create the cash, bank, prepaid-gas and travel accounts of a route."""
    accounts: dict[AccountType, Account] = {}
    for account_type, label in ROUTE_ACCOUNTS.items():
        account = await repository.find_account(snapshot.route_id, account_type)
        if account is None:
            account = Account(
                id=new_id(),
                name=f"{label} {snapshot.route_name}",
                type=account_type,
                route_id=snapshot.route_id,
            )
            await repository.add_account(account)
            logger.info("Route %s: created account %s", snapshot.route_name, account.name)
        accounts[account_type] = account
    return RouteAccounts(
        cash=accounts[AccountType.EMPLOYEE_CASH_FUND],
        bank=accounts[AccountType.BANK],
        prepaid_gas=accounts[AccountType.PREPAID_GAS],
        travel=accounts[AccountType.TRAVEL_EXPENSES],
    )


@dataclass
class ImportContext:
    """Everything the importers of one route share.

    The lead mapping is built once before loans import and never changes
    afterwards.
    """

    repository: Repository
    config: ImportConfig
    snapshot: RouteSnapshot
    accounts: RouteAccounts
    resolver: IdentityResolver
    loan_types: LoanTypeResolver
    lead_mapping: Mapping[str, str] = field(default_factory=dict)

    def lead_for(self, old_lead_id: str | None) -> str | None:
        if old_lead_id is None:
            return None
        return self.lead_mapping.get(old_lead_id)
