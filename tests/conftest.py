"""Pytest configuration and fixtures."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

import pytest

from loan_import.config import ImportConfig, WorkbookConfig
from loan_import.engine import ImportContext, ensure_route_accounts
from loan_import.extract import StaticWorkbook
from loan_import.generators import sheet_rows
from loan_import.identity import IdentityResolver, LoanTypeResolver, resolve_lead_mapping
from loan_import.models import LeadRow, LoanRow, PaymentRow, RouteSnapshot
from loan_import.store import InMemoryRepository

SIGN_DATE = date(2024, 1, 1)
LEAD_ID = "7"


@pytest.fixture
def seed() -> int:
    """Fixed seed for reproducible tests."""
    return 42


@pytest.fixture
def repository() -> InMemoryRepository:
    """Empty in-memory store."""
    return InMemoryRepository()


@pytest.fixture
def snapshot() -> RouteSnapshot:
    """Route RUTA1 with its lead."""
    return RouteSnapshot(
        route_id="route-1",
        route_name="RUTA1",
        lead_id="emp-boss",
        lead_name="JEFE DE RUTA",
        assigned_at=datetime(2024, 1, 1),
    )


@pytest.fixture
def import_config() -> ImportConfig:
    """Small batches so multi-batch paths run."""
    return ImportConfig(batch_size=10, concurrency=4)


@pytest.fixture
def lead_row() -> LeadRow:
    """Active lead of RUTA1 with sheet id 7."""
    return LeadRow(id=LEAD_ID, first_name="MARIA", last_names="LOPEZ DIAZ", phone="5512345678", route_name="RUTA1")


@pytest.fixture
def make_context(
    repository: InMemoryRepository,
    snapshot: RouteSnapshot,
    import_config: ImportConfig,
    lead_row: LeadRow,
) -> Callable[..., Awaitable[ImportContext]]:
    """Async factory for a ready import context (accounts, lead, loan types)."""

    async def build(config: ImportConfig | None = None, store: InMemoryRepository | None = None) -> ImportContext:
        config = config or import_config
        store = store or repository
        accounts = await ensure_route_accounts(store, snapshot)
        mapping = await resolve_lead_mapping(store, snapshot.route_id, [lead_row], seed_missing=True)
        loan_types = LoanTypeResolver(store, config.fallback_loan_type)
        await loan_types.ensure_catalog(config.loan_types)
        return ImportContext(
            repository=store,
            config=config,
            snapshot=snapshot,
            accounts=accounts,
            resolver=IdentityResolver(store),
            loan_types=loan_types,
            lead_mapping=mapping,
        )

    return build


@pytest.fixture
def make_loan_row() -> Callable[..., LoanRow]:
    """Factory for loan rows with sensible defaults (10 weeks, 0%, 1000)."""

    def build(row_id: str = "1", **overrides: Any) -> LoanRow:
        values: dict[str, Any] = {
            "id": row_id,
            "full_name": f"CLIENTE {row_id}",
            "gived_date": SIGN_DATE,
            "gived_amount": Decimal("1000"),
            "requested_amount": Decimal("1000"),
            "weeks": 10,
            "interest_rate": Decimal("0"),
            "lead_id": LEAD_ID,
        }
        values.update(overrides)
        return LoanRow(**values)

    return build


@pytest.fixture
def make_payment_row() -> Callable[..., PaymentRow]:
    """Factory for payment rows."""

    def build(loan_id: str, amount: str | Decimal, payment_date: date | None, description: str = "EFECTIVO") -> PaymentRow:
        return PaymentRow(
            loan_id=loan_id,
            payment_date=payment_date,
            amount=Decimal(amount),
            type="ABONO",
            description=description,
        )

    return build


@pytest.fixture
def make_workbook() -> Callable[..., StaticWorkbook]:
    """Build a StaticWorkbook from field-name records laid out per WorkbookConfig."""

    def build(
        loans: list[dict[str, Any]],
        payments: list[dict[str, Any]] | None = None,
        leads: list[dict[str, Any]] | None = None,
        expenses: list[dict[str, Any]] | None = None,
        payroll: list[dict[str, Any]] | None = None,
    ) -> StaticWorkbook:
        sheets = WorkbookConfig()
        if leads is None:
            leads = [{"id": LEAD_ID, "first_name": "MARIA", "last_names": "LOPEZ DIAZ", "active": "SI", "route_name": "RUTA1"}]
        data = {
            sheets.loans.name: sheet_rows(sheets.loans, loans),
            sheets.payments.name: sheet_rows(sheets.payments, payments or []),
            sheets.leads.name: sheet_rows(sheets.leads, leads),
        }
        if expenses is not None:
            data[sheets.expenses.name] = sheet_rows(sheets.expenses, expenses)
        if payroll is not None:
            data[sheets.payroll.name] = sheet_rows(sheets.payroll, payroll)
        return StaticWorkbook(data)

    return build
