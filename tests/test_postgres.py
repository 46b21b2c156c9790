"""Tests for the PostgreSQL repository against a mocked async connection."""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import psycopg
import pytest

from loan_import.exceptions import EntityNotFoundError, PersistenceError
from loan_import.models import (
    Employee,
    EmployeeType,
    Loan,
    LoanStatus,
    PersonalData,
    PersonKind,
    Transaction,
    TransactionType,
    WriteOff,
)
from loan_import.store.base import WriteBatch
from loan_import.store.postgres import SCHEMA, PostgresRepository, _from_row


def _connection(rows: list[dict[str, Any]] | None = None, rowcount: int = 1) -> tuple[MagicMock, AsyncMock]:
    """Mocked connection whose cursors all share one cursor mock."""
    cursor = AsyncMock()
    cursor.fetchall.return_value = rows or []
    cursor.rowcount = rowcount
    conn = MagicMock()
    conn.cursor.return_value.__aenter__.return_value = cursor
    conn.close = AsyncMock()
    return conn, cursor


def _loan(loan_id: str = "loan-1") -> Loan:
    return Loan(
        id=loan_id,
        external_id="RUTA1-1",
        old_id="1",
        borrower_id="b-1",
        lead_id="e-1",
        loan_type_id="t-1",
        sign_date=date(2024, 1, 1),
        amount_gived=Decimal("1000"),
        requested_amount=Decimal("1000"),
        profit_amount=Decimal("400"),
        status=LoanStatus.ACTIVE,
    )


class TestRowMapping:
    def test_from_row_enums_and_arrays(self) -> None:
        person = _from_row(
            PersonalData,
            {
                "id": "p-1",
                "full_name": "ANA RUIZ",
                "kind": "BORROWER",
                "phones": None,
                "client_code": None,
                "created_at": datetime(2024, 1, 1),
                "updated_at": None,
            },
        )

        assert person.kind == PersonKind.BORROWER
        assert person.phones == []

    def test_insert_sql_uses_ledger_table(self) -> None:
        repository = PostgresRepository(MagicMock())

        sql = repository._insert_sql(Transaction)

        assert sql.startswith("INSERT INTO ledger_transaction (")
        assert '"date"' in sql
        assert sql.count("%s") == len(Transaction.__dataclass_fields__)


class TestPostgresRepository:
    """Query and write paths of PostgresRepository."""

    def test_find_personal_data(self) -> None:
        conn, cursor = _connection(
            [
                {
                    "id": "p-1",
                    "full_name": "ANA RUIZ",
                    "kind": "GUARANTOR",
                    "phones": ["5511111111"],
                    "client_code": None,
                    "created_at": datetime(2024, 1, 1),
                    "updated_at": None,
                }
            ]
        )
        repository = PostgresRepository(conn)

        person = asyncio.run(repository.find_personal_data(PersonKind.GUARANTOR, "ANA RUIZ"))

        assert person.phone == "5511111111"
        assert person.kind == PersonKind.GUARANTOR
        query, params = cursor.execute.call_args.args
        assert "FROM personal_data" in query
        assert params == ("GUARANTOR", "ANA RUIZ")

    def test_find_missing_returns_none(self) -> None:
        conn, _ = _connection([])
        repository = PostgresRepository(conn)

        assert asyncio.run(repository.find_loan_by_external_id("RUTA1-404")) is None

    def test_recovery_exists(self) -> None:
        conn, cursor = _connection([{"found": 1}])

        found = asyncio.run(PostgresRepository(conn).recovery_exists("w-1", date(2024, 4, 10), Decimal("500")))

        assert found is True
        query, params = cursor.execute.call_args.args
        assert "FROM compensatory_payment" in query
        assert params == ("w-1", date(2024, 4, 10), Decimal("500"))

    def test_list_leads_splits_employee_and_person(self) -> None:
        conn, _ = _connection(
            [
                {
                    "e_id": "e-1",
                    "old_id": "7",
                    "e_type": "ROUTE_LEAD",
                    "route_id": "route-1",
                    "e_created_at": datetime(2024, 1, 1),
                    "id": "p-1",
                    "full_name": "MARIA LOPEZ",
                    "kind": "EMPLOYEE",
                    "phones": [],
                    "client_code": "LID-1",
                    "created_at": datetime(2024, 1, 1),
                    "updated_at": None,
                }
            ]
        )
        repository = PostgresRepository(conn)

        [(employee, person)] = asyncio.run(repository.list_leads("route-1"))

        assert isinstance(employee, Employee)
        assert employee.type == EmployeeType.ROUTE_LEAD
        assert employee.personal_data_id == "p-1"
        assert person.full_name == "MARIA LOPEZ"

    def test_commit_batch_order(self) -> None:
        """Loans, payments, write-offs and transactions are inserted in one transaction."""
        conn, cursor = _connection()
        repository = PostgresRepository(conn)
        write_off = WriteOff(
            id="w-1",
            external_id="RUTA1-90",
            borrower_name="JUAN FALCO",
            sign_date=date(2024, 1, 3),
            amount=Decimal("2000"),
            outstanding_amount=Decimal("2000"),
            transaction_id="t-9",
            route_id="route-1",
        )
        batch = WriteBatch(
            loans=[_loan()],
            write_offs=[write_off],
            transactions=[
                Transaction(id="t-9", type=TransactionType.EXPENSE, amount=Decimal("2000"), date=date(2024, 1, 3))
            ],
            collateral_links=[("loan-1", "p-2")],
        )

        asyncio.run(repository.commit_batch(batch))

        conn.transaction.assert_called_once()
        statements = [call.args[0] for call in cursor.executemany.call_args_list]
        assert [s.split(" (")[0] for s in statements] == [
            "INSERT INTO loan",
            "INSERT INTO write_off",
            "INSERT INTO ledger_transaction",
            "INSERT INTO loan_collateral",
        ]
        transaction_row = cursor.executemany.call_args_list[2].args[1][0]
        assert "EXPENSE" in transaction_row

    def test_commit_empty_batch(self) -> None:
        conn, cursor = _connection()

        asyncio.run(PostgresRepository(conn).commit_batch(WriteBatch()))

        conn.transaction.assert_not_called()
        cursor.executemany.assert_not_called()

    def test_commit_batch_failure(self) -> None:
        conn, cursor = _connection()
        cursor.executemany.side_effect = psycopg.Error("deadlock detected")

        with pytest.raises(PersistenceError, match="rolled back: deadlock detected"):
            asyncio.run(PostgresRepository(conn).commit_batch(WriteBatch(loans=[_loan()])))

    def test_query_failure(self) -> None:
        conn, cursor = _connection()
        cursor.execute.side_effect = psycopg.Error("relation does not exist")

        with pytest.raises(PersistenceError):
            asyncio.run(PostgresRepository(conn).has_successor("loan-1"))

    def test_update_missing_account(self) -> None:
        conn, _ = _connection(rowcount=0)

        with pytest.raises(EntityNotFoundError):
            asyncio.run(PostgresRepository(conn).update_account_balance("acc-404", Decimal("10")))

    def test_account_flows(self) -> None:
        conn, _ = _connection([{"income": Decimal("500"), "expense": Decimal("1200")}])

        income, expense = asyncio.run(PostgresRepository(conn).account_flows("acc-1"))

        assert (income, expense) == (Decimal("500"), Decimal("1200"))

    def test_create_schema(self) -> None:
        conn, cursor = _connection()

        asyncio.run(PostgresRepository(conn).create_schema())

        statements = [s for s in SCHEMA.split(";") if s.strip()]
        assert cursor.execute.call_count == len(statements)

    @patch("loan_import.store.postgres.psycopg.AsyncConnection.connect", new_callable=AsyncMock)
    def test_connect(self, mock_connect: AsyncMock) -> None:
        conn, cursor = _connection()
        mock_connect.return_value = conn

        repository = asyncio.run(PostgresRepository.connect("postgresql://localhost/loans"))

        assert repository.conn is conn
        assert mock_connect.call_args.kwargs["autocommit"] is True
        assert cursor.execute.call_count > 0

    @patch("loan_import.store.postgres.psycopg.AsyncConnection.connect", new_callable=AsyncMock)
    def test_connect_failure(self, mock_connect: AsyncMock) -> None:
        mock_connect.side_effect = psycopg.OperationalError("connection refused")

        with pytest.raises(PersistenceError, match="Cannot connect"):
            asyncio.run(PostgresRepository.connect("postgresql://localhost/loans"))
