"""PostgreSQL repository on psycopg's async connection."""

import logging
from dataclasses import fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import psycopg
from psycopg.rows import dict_row

from loan_import.exceptions import EntityNotFoundError, PersistenceError
from loan_import.models import (
    Account,
    AccountType,
    Borrower,
    Employee,
    EmployeeType,
    ExpenseSource,
    IncomeSource,
    Loan,
    LoanPayment,
    LoanStatus,
    LoanType,
    PersonalData,
    PersonKind,
    Transaction,
    TransactionType,
    WriteOff,
)
from loan_import.store.base import Repository, WriteBatch

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS personal_data (
    id TEXT PRIMARY KEY,
    full_name TEXT NOT NULL,
    kind TEXT NOT NULL,
    phones TEXT[] NOT NULL DEFAULT '{}',
    client_code TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP,
    UNIQUE (kind, full_name)
);
CREATE TABLE IF NOT EXISTS borrower (
    id TEXT PRIMARY KEY,
    personal_data_id TEXT NOT NULL UNIQUE REFERENCES personal_data (id),
    created_at TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS employee (
    id TEXT PRIMARY KEY,
    personal_data_id TEXT NOT NULL REFERENCES personal_data (id),
    old_id TEXT,
    type TEXT NOT NULL,
    route_id TEXT,
    created_at TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS loan_type (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    week_duration INTEGER NOT NULL,
    rate NUMERIC(10, 4) NOT NULL,
    fees NUMERIC(18, 4)[] NOT NULL DEFAULT '{}',
    created_at TIMESTAMP NOT NULL,
    UNIQUE (week_duration, rate)
);
CREATE TABLE IF NOT EXISTS account (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    route_id TEXT NOT NULL,
    amount NUMERIC(18, 4) NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP,
    UNIQUE (route_id, type)
);
CREATE TABLE IF NOT EXISTS loan (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    old_id TEXT NOT NULL,
    borrower_id TEXT NOT NULL REFERENCES borrower (id),
    lead_id TEXT NOT NULL,
    loan_type_id TEXT NOT NULL REFERENCES loan_type (id),
    sign_date DATE NOT NULL,
    amount_gived NUMERIC(18, 4) NOT NULL,
    requested_amount NUMERIC(18, 4) NOT NULL,
    profit_amount NUMERIC(18, 4) NOT NULL,
    status TEXT NOT NULL,
    previous_loan_id TEXT UNIQUE REFERENCES loan (id),
    bad_debt_date DATE,
    finished_date DATE,
    renewed_date DATE,
    total_debt_acquired NUMERIC(18, 2) NOT NULL DEFAULT 0,
    expected_weekly_payment NUMERIC(18, 2) NOT NULL DEFAULT 0,
    total_paid NUMERIC(18, 2) NOT NULL DEFAULT 0,
    pending_amount_stored NUMERIC(18, 2) NOT NULL DEFAULT 0,
    snapshot_route_id TEXT,
    snapshot_route_name TEXT,
    snapshot_lead_id TEXT,
    snapshot_lead_name TEXT,
    snapshot_lead_assigned_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP
);
CREATE INDEX IF NOT EXISTS loan_duplicate_key ON loan (sign_date, amount_gived);
CREATE TABLE IF NOT EXISTS loan_payment (
    id TEXT PRIMARY KEY,
    loan_id TEXT NOT NULL REFERENCES loan (id),
    received_at DATE NOT NULL,
    amount NUMERIC(18, 4) NOT NULL,
    type TEXT,
    profit_amount NUMERIC(18, 4) NOT NULL,
    return_to_capital NUMERIC(18, 4) NOT NULL,
    description TEXT,
    created_at TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS write_off (
    id TEXT PRIMARY KEY,
    external_id TEXT NOT NULL UNIQUE,
    borrower_name TEXT NOT NULL,
    sign_date DATE NOT NULL,
    amount NUMERIC(18, 4) NOT NULL,
    outstanding_amount NUMERIC(18, 4) NOT NULL,
    transaction_id TEXT NOT NULL,
    route_id TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS ledger_transaction (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    amount NUMERIC(18, 4) NOT NULL,
    "date" DATE NOT NULL,
    source_account_id TEXT REFERENCES account (id),
    destination_account_id TEXT REFERENCES account (id),
    income_source TEXT,
    expense_source TEXT,
    loan_id TEXT REFERENCES loan (id),
    loan_payment_id TEXT REFERENCES loan_payment (id),
    write_off_id TEXT REFERENCES write_off (id),
    profit_amount NUMERIC(18, 4),
    return_to_capital NUMERIC(18, 4),
    description TEXT,
    route_id TEXT,
    lead_id TEXT,
    snapshot_route_id TEXT,
    snapshot_route_name TEXT,
    snapshot_lead_id TEXT,
    snapshot_lead_name TEXT,
    snapshot_lead_assigned_at TIMESTAMP,
    created_at TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS compensatory_payment (
    id TEXT PRIMARY KEY,
    write_off_id TEXT NOT NULL REFERENCES write_off (id),
    received_at DATE NOT NULL,
    amount NUMERIC(18, 4) NOT NULL,
    transaction_id TEXT NOT NULL REFERENCES ledger_transaction (id),
    created_at TIMESTAMP NOT NULL
);
CREATE TABLE IF NOT EXISTS loan_collateral (
    loan_id TEXT NOT NULL REFERENCES loan (id),
    personal_data_id TEXT NOT NULL REFERENCES personal_data (id),
    PRIMARY KEY (loan_id, personal_data_id)
);
"""

# Enum-typed columns per model, used when reading rows back
ENUM_FIELDS: dict[type, dict[str, type[Enum]]] = {
    PersonalData: {"kind": PersonKind},
    Employee: {"type": EmployeeType},
    Account: {"type": AccountType},
    Loan: {"status": LoanStatus},
    Transaction: {
        "type": TransactionType,
        "income_source": IncomeSource,
        "expense_source": ExpenseSource,
    },
}


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, tuple):
        return list(value)
    return value


def _columns(model: type) -> list[str]:
    return [f.name for f in fields(model)]


def _from_row(model: type, row: dict[str, Any]) -> Any:
    data = dict(row)
    for name, enum_type in ENUM_FIELDS.get(model, {}).items():
        if data.get(name) is not None:
            data[name] = enum_type(data[name])
    if model is LoanType:
        data["fees"] = tuple(data.get("fees") or ())
    if model is PersonalData:
        data["phones"] = list(data.get("phones") or [])
    return model(**data)


class PostgresRepository(Repository):
    """Repository backed by PostgreSQL.

    Parameters
    ----------
    conn : psycopg.AsyncConnection
        Open connection in autocommit mode; :meth:`commit_batch` wraps its
        writes in an explicit transaction.
    """

    TABLES: dict[type, str] = {
        PersonalData: "personal_data",
        Borrower: "borrower",
        Employee: "employee",
        LoanType: "loan_type",
        Account: "account",
        Loan: "loan",
        LoanPayment: "loan_payment",
        WriteOff: "write_off",
        Transaction: "ledger_transaction",
    }

    def __init__(self, conn: Any) -> None:
        self.conn = conn

    @classmethod
    async def connect(cls, connection_string: str, create_schema: bool = True) -> "PostgresRepository":
        """Open a connection and make sure the schema exists.

        Raises
        ------
        PersistenceError
            If the database cannot be reached.
        """
        try:
            conn = await psycopg.AsyncConnection.connect(connection_string, autocommit=True)
        except psycopg.Error as e:
            raise PersistenceError(f"Cannot connect to PostgreSQL: {e}") from e
        repository = cls(conn)
        if create_schema:
            await repository.create_schema()
        return repository

    async def create_schema(self) -> None:
        async with self.conn.cursor() as cur:
            for statement in SCHEMA.split(";"):
                if statement.strip():
                    await cur.execute(statement)

    async def close(self) -> None:
        await self.conn.close()

    # Helpers

    async def _fetch_all(self, query: str, params: Any = None) -> list[dict[str, Any]]:
        try:
            async with self.conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        except psycopg.Error as e:
            raise PersistenceError(str(e)) from e

    async def _fetch_one(self, query: str, params: Any = None) -> dict[str, Any] | None:
        rows = await self._fetch_all(query, params)
        return rows[0] if rows else None

    async def _execute(self, query: str, params: Any = None) -> int:
        try:
            async with self.conn.cursor() as cur:
                await cur.execute(query, params)
                return cur.rowcount
        except psycopg.Error as e:
            raise PersistenceError(str(e)) from e

    def _insert_sql(self, model: type) -> str:
        cols = _columns(model)
        column_list = ", ".join(f'"{c}"' for c in cols)
        placeholders = ", ".join(["%s"] * len(cols))
        return f"INSERT INTO {self.TABLES[model]} ({column_list}) VALUES ({placeholders})"

    async def _insert(self, cur: Any, records: list[Any]) -> None:
        if not records:
            return
        model = type(records[0])
        cols = _columns(model)
        rows = [[_db_value(getattr(r, c)) for c in cols] for r in records]
        await cur.executemany(self._insert_sql(model), rows)

    async def _insert_one(self, record: Any) -> None:
        try:
            async with self.conn.cursor() as cur:
                await self._insert(cur, [record])
        except psycopg.Error as e:
            raise PersistenceError(str(e)) from e

    # People

    async def find_personal_data(self, kind: PersonKind, full_name: str) -> PersonalData | None:
        row = await self._fetch_one(
            "SELECT * FROM personal_data WHERE kind = %s AND full_name = %s",
            (kind.value, full_name),
        )
        return _from_row(PersonalData, row) if row else None

    async def find_personal_data_many(
        self, kind: PersonKind, full_names: list[str]
    ) -> dict[str, PersonalData]:
        if not full_names:
            return {}
        rows = await self._fetch_all(
            "SELECT * FROM personal_data WHERE kind = %s AND full_name = ANY(%s)",
            (kind.value, list(full_names)),
        )
        return {row["full_name"]: _from_row(PersonalData, row) for row in rows}

    async def get_personal_data(self, personal_data_id: str) -> PersonalData | None:
        row = await self._fetch_one("SELECT * FROM personal_data WHERE id = %s", (personal_data_id,))
        return _from_row(PersonalData, row) if row else None

    async def add_personal_data(self, personal_data: PersonalData) -> None:
        await self._insert_one(personal_data)

    async def add_personal_data_many(self, personal_data: list[PersonalData]) -> None:
        if not personal_data:
            return
        try:
            async with self.conn.transaction():
                async with self.conn.cursor() as cur:
                    await self._insert(cur, personal_data)
        except psycopg.Error as e:
            raise PersistenceError(str(e)) from e

    async def update_phone(self, personal_data_id: str, phone: str) -> None:
        updated = await self._execute(
            "UPDATE personal_data SET phones = "
            "CASE WHEN cardinality(phones) = 0 THEN ARRAY[%s] ELSE ARRAY[%s] || phones[2:] END, "
            "updated_at = %s WHERE id = %s",
            (phone, phone, datetime.now(), personal_data_id),
        )
        if updated == 0:
            raise EntityNotFoundError(f"PersonalData {personal_data_id} not found")

    async def find_borrower(self, personal_data_id: str) -> Borrower | None:
        row = await self._fetch_one(
            "SELECT * FROM borrower WHERE personal_data_id = %s", (personal_data_id,)
        )
        return _from_row(Borrower, row) if row else None

    async def add_borrower(self, borrower: Borrower) -> None:
        await self._insert_one(borrower)

    async def list_leads(self, route_id: str) -> list[tuple[Employee, PersonalData]]:
        rows = await self._fetch_all(
            "SELECT e.id AS e_id, e.old_id, e.type AS e_type, e.route_id, e.created_at AS e_created_at, "
            "p.* FROM employee e JOIN personal_data p ON p.id = e.personal_data_id "
            "WHERE e.type = %s AND (e.route_id = %s OR e.route_id IS NULL)",
            (EmployeeType.ROUTE_LEAD.value, route_id),
        )
        leads = []
        for row in rows:
            employee = Employee(
                id=row.pop("e_id"),
                personal_data_id=row["id"],
                old_id=row.pop("old_id"),
                type=EmployeeType(row.pop("e_type")),
                route_id=row.pop("route_id"),
                created_at=row.pop("e_created_at"),
            )
            leads.append((employee, _from_row(PersonalData, row)))
        return leads

    async def add_employee(self, employee: Employee) -> None:
        await self._insert_one(employee)

    # Catalog and accounts

    async def list_loan_types(self) -> list[LoanType]:
        rows = await self._fetch_all("SELECT * FROM loan_type ORDER BY week_duration, rate")
        return [_from_row(LoanType, row) for row in rows]

    async def add_loan_type(self, loan_type: LoanType) -> None:
        await self._insert_one(loan_type)

    async def find_account(self, route_id: str, account_type: AccountType) -> Account | None:
        row = await self._fetch_one(
            "SELECT * FROM account WHERE route_id = %s AND type = %s",
            (route_id, account_type.value),
        )
        return _from_row(Account, row) if row else None

    async def add_account(self, account: Account) -> None:
        await self._insert_one(account)

    async def list_accounts(self, route_id: str | None = None) -> list[Account]:
        if route_id is None:
            rows = await self._fetch_all("SELECT * FROM account")
        else:
            rows = await self._fetch_all("SELECT * FROM account WHERE route_id = %s", (route_id,))
        return [_from_row(Account, row) for row in rows]

    async def update_account_balance(self, account_id: str, amount: Decimal) -> None:
        updated = await self._execute(
            "UPDATE account SET amount = %s, updated_at = %s WHERE id = %s",
            (amount, datetime.now(), account_id),
        )
        if updated == 0:
            raise EntityNotFoundError(f"Account {account_id} not found")

    async def account_flows(self, account_id: str) -> tuple[Decimal, Decimal]:
        row = await self._fetch_one(
            "SELECT "
            "COALESCE(SUM(amount) FILTER (WHERE type = 'INCOME' AND destination_account_id = %s), 0) AS income, "
            "COALESCE(SUM(amount) FILTER (WHERE type = 'EXPENSE' AND source_account_id = %s), 0) AS expense "
            "FROM ledger_transaction",
            (account_id, account_id),
        )
        return Decimal(row["income"]), Decimal(row["expense"])

    # Loans

    async def loan_exists(self, full_name: str, sign_date: date, amount_gived: Decimal) -> bool:
        row = await self._fetch_one(
            "SELECT 1 AS found FROM loan l "
            "JOIN borrower b ON b.id = l.borrower_id "
            "JOIN personal_data p ON p.id = b.personal_data_id "
            "WHERE p.full_name = %s AND l.sign_date = %s AND l.amount_gived = %s LIMIT 1",
            (full_name, sign_date, amount_gived),
        )
        return row is not None

    async def find_loan_by_external_id(self, external_id: str) -> Loan | None:
        row = await self._fetch_one("SELECT * FROM loan WHERE external_id = %s", (external_id,))
        return _from_row(Loan, row) if row else None

    async def get_loan(self, loan_id: str) -> Loan | None:
        row = await self._fetch_one("SELECT * FROM loan WHERE id = %s", (loan_id,))
        return _from_row(Loan, row) if row else None

    async def has_successor(self, loan_id: str) -> bool:
        row = await self._fetch_one(
            "SELECT 1 AS found FROM loan WHERE previous_loan_id = %s LIMIT 1", (loan_id,)
        )
        return row is not None

    async def list_loans(self, route_id: str) -> list[Loan]:
        rows = await self._fetch_all(
            "SELECT * FROM loan WHERE snapshot_route_id = %s ORDER BY sign_date", (route_id,)
        )
        return [_from_row(Loan, row) for row in rows]

    async def list_payments(self, loan_ids: list[str]) -> list[LoanPayment]:
        if not loan_ids:
            return []
        rows = await self._fetch_all(
            "SELECT * FROM loan_payment WHERE loan_id = ANY(%s) ORDER BY received_at",
            (list(loan_ids),),
        )
        return [_from_row(LoanPayment, row) for row in rows]

    async def payment_profit_total(self, loan_id: str) -> Decimal:
        row = await self._fetch_one(
            "SELECT COALESCE(SUM(t.profit_amount), 0) AS total FROM ledger_transaction t "
            "JOIN loan_payment p ON p.id = t.loan_payment_id WHERE p.loan_id = %s",
            (loan_id,),
        )
        return Decimal(row["total"])

    async def save_loan_lifecycle(self, loans: list[Loan]) -> None:
        if not loans:
            return
        now = datetime.now()
        rows = [
            (
                loan.status.value,
                loan.finished_date,
                loan.renewed_date,
                loan.total_debt_acquired,
                loan.expected_weekly_payment,
                loan.total_paid,
                loan.pending_amount_stored,
                now,
                loan.id,
            )
            for loan in loans
        ]
        try:
            async with self.conn.transaction():
                async with self.conn.cursor() as cur:
                    await cur.executemany(
                        "UPDATE loan SET status = %s, finished_date = %s, renewed_date = %s, "
                        "total_debt_acquired = %s, expected_weekly_payment = %s, total_paid = %s, "
                        "pending_amount_stored = %s, updated_at = %s WHERE id = %s",
                        rows,
                    )
        except psycopg.Error as e:
            raise PersistenceError(str(e)) from e

    async def link_collateral(self, loan_id: str, personal_data_id: str) -> None:
        await self._execute(
            "INSERT INTO loan_collateral (loan_id, personal_data_id) VALUES (%s, %s) "
            "ON CONFLICT DO NOTHING",
            (loan_id, personal_data_id),
        )

    async def list_collateral(self, loan_id: str) -> list[str]:
        rows = await self._fetch_all(
            "SELECT personal_data_id FROM loan_collateral WHERE loan_id = %s ORDER BY personal_data_id",
            (loan_id,),
        )
        return [row["personal_data_id"] for row in rows]

    # Ledger

    async def find_write_off(self, external_id: str) -> WriteOff | None:
        row = await self._fetch_one("SELECT * FROM write_off WHERE external_id = %s", (external_id,))
        return _from_row(WriteOff, row) if row else None

    async def recovery_exists(self, write_off_id: str, received_at: date, amount: Decimal) -> bool:
        row = await self._fetch_one(
            "SELECT 1 AS found FROM compensatory_payment "
            "WHERE write_off_id = %s AND received_at = %s AND amount = %s LIMIT 1",
            (write_off_id, received_at, amount),
        )
        return row is not None

    async def transaction_exists(
        self,
        transaction_type: TransactionType,
        on: date,
        amount: Decimal,
        description: str | None,
    ) -> bool:
        row = await self._fetch_one(
            'SELECT 1 AS found FROM ledger_transaction WHERE type = %s AND "date" = %s '
            "AND amount = %s AND description IS NOT DISTINCT FROM %s LIMIT 1",
            (transaction_type.value, on, amount, description),
        )
        return row is not None

    async def add_transaction(self, transaction: Transaction) -> None:
        await self._insert_one(transaction)

    async def commit_batch(self, batch: WriteBatch) -> None:
        """Insert the batch inside one database transaction."""
        if not len(batch):
            return
        try:
            async with self.conn.transaction():
                async with self.conn.cursor() as cur:
                    await self._insert(cur, batch.loans)
                    await self._insert(cur, batch.payments)
                    await self._insert(cur, batch.write_offs)
                    await self._insert(cur, batch.transactions)
                    if batch.write_off_updates:
                        await cur.executemany(
                            "UPDATE write_off SET outstanding_amount = %s WHERE id = %s",
                            [(w.outstanding_amount, w.id) for w in batch.write_off_updates],
                        )
                    if batch.compensatory_payments:
                        await cur.executemany(
                            "INSERT INTO compensatory_payment "
                            "(id, write_off_id, received_at, amount, transaction_id, created_at) "
                            "VALUES (%s, %s, %s, %s, %s, %s)",
                            [
                                (c.id, c.write_off_id, c.received_at, c.amount, c.transaction_id, c.created_at)
                                for c in batch.compensatory_payments
                            ],
                        )
                    if batch.collateral_links:
                        await cur.executemany(
                            "INSERT INTO loan_collateral (loan_id, personal_data_id) VALUES (%s, %s) "
                            "ON CONFLICT DO NOTHING",
                            batch.collateral_links,
                        )
        except psycopg.Error as e:
            raise PersistenceError(f"Batch of {len(batch)} writes rolled back: {e}") from e
        logger.debug("Committed batch: %d loans, %d payments, %d transactions",
                     len(batch.loans), len(batch.payments), len(batch.transactions))
