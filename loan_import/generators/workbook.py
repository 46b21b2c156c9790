"""Sample route workbook generator."""

import logging
import random
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.utils import column_index_from_string

from loan_import.config import SheetSpec, WorkbookConfig
from loan_import.extract.workbook import StaticWorkbook
from loan_import.generators.base import BaseGenerator

logger = logging.getLogger(__name__)


@dataclass
class _SampleLoan:
    id: str
    full_name: str
    sign_date: date
    requested: Decimal
    weeks: int
    rate: Decimal
    lead_id: str
    previous_id: str | None = None
    renewed: bool = False
    payments: list[tuple[date, Decimal, str]] = field(default_factory=list)
    finished_date: date | None = None

    @property
    def total(self) -> Decimal:
        return self.requested * (1 + self.rate)

    @property
    def weekly(self) -> Decimal:
        return (self.total / self.weeks).quantize(Decimal("1"), rounding=ROUND_HALF_UP)


class SampleWorkbookGenerator(BaseGenerator):
    """Generate a consistent workbook for one route.

    The workbook holds route leads, weekly-paid loans (some of them renewed
    by later loans of the same borrower), one write-off row flagged with
    ``FALCO`` in the borrower name, operating expenses and payroll. Sheet
    names and columns follow :class:`WorkbookConfig`.
    """

    LOAN_TERMS = [
        (14, Decimal("0.4")),
        (10, Decimal("0")),
        (20, Decimal("0.1")),
    ]
    AMOUNTS = [Decimal(n) for n in (1000, 1500, 2000, 3000, 5000)]
    EXPENSES = [
        ("GASTO BANCO", "TOKA"),
        ("GASTO BANCO", "CONNECT"),
        ("GASTO BANCO", "COMISION BANCARIA"),
        ("COMISION", "COMISION COBRANZA"),
        ("GASTO SOCIO", "VIATICOS"),
        ("EFECTIVO", "PAPELERIA"),
    ]

    def __init__(
        self,
        route_name: str = "RUTA1",
        num_loans: int = 30,
        num_leads: int = 3,
        renewal_rate: float = 0.3,
        start_date: date = date(2024, 1, 8),
        seed: int | None = None,
        workbook: WorkbookConfig | None = None,
    ) -> None:
        """Initialize the generator.

        Parameters
        ----------
        route_name : str
            Route written on every lead row.
        num_loans : int
            Loan rows to generate, renewals included.
        num_leads : int
            Route leads to generate.
        renewal_rate : float
            Probability that a loan renews an earlier one.
        start_date : date
            Sign date of the first loan.
        seed : int | None
            Random seed for reproducibility.
        workbook : WorkbookConfig | None
            Sheet layout to write.
        """
        super().__init__(seed)
        self.route_name = route_name
        self.num_loans = num_loans
        self.num_leads = num_leads
        self.renewal_rate = renewal_rate
        self.start_date = start_date
        self.workbook = workbook or WorkbookConfig()

    def generate(self) -> dict[str, list[list[Any]]]:
        """Generate every sheet as header-first positional rows."""
        leads = self._leads()
        lead_ids = [lead["id"] for lead in leads]
        loans = self._loans(lead_ids)
        write_off = self._write_off(lead_ids)

        sheets = self.workbook
        payments = [
            {"loan_id": loan.id, "payment_date": on, "amount": amount, "type": "ABONO", "description": desc}
            for loan in loans + [write_off]
            for on, amount, desc in loan.payments
        ]
        payments.sort(key=lambda p: p["payment_date"])

        result = {
            sheets.leads.name: sheet_rows(sheets.leads, leads),
            sheets.loans.name: sheet_rows(sheets.loans, [self._loan_record(loan) for loan in loans + [write_off]]),
            sheets.payments.name: sheet_rows(sheets.payments, payments),
            sheets.expenses.name: sheet_rows(sheets.expenses, self._expenses(lead_ids)),
            sheets.payroll.name: sheet_rows(sheets.payroll, self._payroll(leads)),
        }
        logger.info(
            "Generated workbook for %s: %d loans, %d payments",
            self.route_name,
            len(loans) + 1,
            len(payments),
        )
        return result

    def to_static(self) -> StaticWorkbook:
        return StaticWorkbook(self.generate())

    def save(self, path: str | Path) -> Path:
        """Write the workbook as an ``.xlsx`` file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        book = Workbook()
        book.remove(book.active)
        for name, rows in self.generate().items():
            sheet = book.create_sheet(name)
            for row in rows:
                sheet.append([float(v) if isinstance(v, Decimal) else v for v in row])
        book.save(path)
        logger.info("Workbook written to %s", path)
        return path

    def _leads(self) -> list[dict[str, Any]]:
        return [
            {
                "id": str(100 + i),
                "first_name": self.fake.first_name().upper(),
                "last_names": f"{self.fake.last_name()} {self.fake.last_name()}".upper(),
                "phone": self.fake.msisdn()[:10],
                "active": "SI",
                "route_name": self.route_name,
            }
            for i in range(1, self.num_leads + 1)
        ]

    def _loans(self, lead_ids: list[str]) -> list[_SampleLoan]:
        loans: list[_SampleLoan] = []
        sign_date = self.start_date
        for number in range(1, self.num_loans + 1):
            weeks, rate = random.choice(self.LOAN_TERMS)
            candidates = [loan for loan in loans if not loan.renewed and loan.finished_date is None]
            if candidates and random.random() < self.renewal_rate:
                previous = random.choice(candidates)
                previous.renewed = True
                renewal_date = previous.sign_date + timedelta(weeks=random.randint(4, previous.weeks))
                self._pay(previous, until=renewal_date)
                loan = _SampleLoan(
                    id=str(number),
                    full_name=previous.full_name,
                    sign_date=renewal_date,
                    requested=random.choice(self.AMOUNTS),
                    weeks=weeks,
                    rate=rate,
                    lead_id=previous.lead_id,
                    previous_id=previous.id,
                )
            else:
                sign_date += timedelta(days=random.randint(0, 3))
                loan = _SampleLoan(
                    id=str(number),
                    full_name=self.fake.name().upper(),
                    sign_date=sign_date,
                    requested=random.choice(self.AMOUNTS),
                    weeks=weeks,
                    rate=rate,
                    lead_id=random.choice(lead_ids),
                )
            loans.append(loan)

        for loan in loans:
            if not loan.renewed:
                self._pay(loan)
        return loans

    def _pay(self, loan: _SampleLoan, until: date | None = None) -> None:
        """Weekly payments from one week after signing, up to ``until`` or payoff."""
        paid = Decimal("0")
        on = loan.sign_date + timedelta(weeks=1)
        while paid < loan.total and (until is None or on < until):
            amount = min(loan.weekly, loan.total - paid)
            loan.payments.append((on, amount, random.choice(["EFECTIVO", "EFECTIVO", "DEPOSITO"])))
            paid += amount
            on += timedelta(weeks=1)
        if until is None and paid >= loan.total and loan.payments and random.random() < 0.5:
            loan.finished_date = loan.payments[-1][0]

    def _write_off(self, lead_ids: list[str]) -> _SampleLoan:
        loan = _SampleLoan(
            id=str(self.num_loans + 1),
            full_name=f"{self.fake.first_name()} FALCO {self.fake.last_name()}".upper(),
            sign_date=self.start_date + timedelta(days=2),
            requested=Decimal("2000"),
            weeks=14,
            rate=Decimal("0.4"),
            lead_id=random.choice(lead_ids),
        )
        loan.payments.append((loan.sign_date + timedelta(weeks=8), Decimal("300"), "EFECTIVO"))
        return loan

    def _loan_record(self, loan: _SampleLoan) -> dict[str, Any]:
        return {
            "id": loan.id,
            "full_name": loan.full_name,
            "gived_date": loan.sign_date,
            "status": "FINALIZADO" if loan.finished_date else "ACTIVO",
            "gived_amount": loan.requested,
            "requested_amount": loan.requested,
            "weeks": loan.weeks,
            "interest_rate": loan.rate,
            "amount_to_pay": loan.total,
            "weekly_payment": loan.weekly,
            "lead_id": loan.lead_id,
            "finished_date": loan.finished_date,
            "aval_name": self.fake.name().upper() if random.random() < 0.7 else "NA",
            "aval_phone": self.fake.msisdn()[:10],
            "titular_phone": self.fake.msisdn()[:10],
            "previous_loan_id": loan.previous_id,
        }

    def _expenses(self, lead_ids: list[str]) -> list[dict[str, Any]]:
        rows = []
        for week in range(12):
            account_type, description = random.choice(self.EXPENSES)
            rows.append(
                {
                    "full_name": self.route_name,
                    "date": self.start_date + timedelta(weeks=week, days=4),
                    "amount": Decimal(random.randint(2, 40) * 25),
                    "account_type": account_type,
                    "lead_id": random.choice(lead_ids),
                    "description": description,
                }
            )
        return rows

    def _payroll(self, leads: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "full_name": f"{lead['first_name']} {lead['last_names']}",
                "date": self.start_date + timedelta(weeks=2 * fortnight + 1),
                "amount": Decimal("3500"),
                "description": f"NOMINA {fortnight + 1} {lead['first_name']}",
                "lead_id": lead["id"],
                "account_type": "GASTO BANCO",
            }
            for fortnight in range(4)
            for lead in leads
        ]


def sheet_rows(spec: SheetSpec, records: list[dict[str, Any]]) -> list[list[Any]]:
    """Place record fields at their column letters, header row first."""
    positions = {name: column_index_from_string(letter) - 1 for letter, name in spec.columns.items()}
    width = max(positions.values()) + 1
    header: list[Any] = [None] * width
    for name, index in positions.items():
        header[index] = name.upper()
    rows = [header]
    for record in records:
        row: list[Any] = [None] * width
        for name, value in record.items():
            if name in positions:
                row[positions[name]] = value
        rows.append(row)
    return rows
