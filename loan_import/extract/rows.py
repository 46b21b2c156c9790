"""Sheet extraction: positional rows to typed records."""

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Generic, Iterator, TypeVar

from openpyxl.utils import column_index_from_string

from loan_import.config import SheetSpec
from loan_import.extract.dates import to_date
from loan_import.extract.workbook import WorkbookSource
from loan_import.models.rows import ExpenseRow, LeadRow, LoanRow, PaymentRow, PayrollRow


T = TypeVar("T")

Record = dict[str, Any]


def normalize_external_id(value: Any) -> str | None:
    """Canonical string form of a spreadsheet id (``5.0`` becomes ``"5"``)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, Decimal):
        return str(int(value)) if value == value.to_integral_value() else str(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith(".0") and text[:-2].isdigit():
        return text[:-2]
    return text


def to_decimal(value: Any) -> Decimal | None:
    """Parse a money cell (number or string with ``$`` and thousands separators)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    text = str(value).replace("$", "").replace(",", "").strip()
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def to_rate(value: Any) -> Decimal:
    """Interest rate as a fraction; values above 1 are read as percentages."""
    if isinstance(value, str):
        value = value.replace("%", "")
    rate = to_decimal(value)
    if rate is None:
        return Decimal("0")
    return rate / 100 if rate > 1 else rate


def to_int(value: Any) -> int | None:
    number = to_decimal(value)
    if number is None:
        return None
    return int(number)


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class SheetExtractor(Generic[T]):
    """Lazy, restartable sequence of typed records from one sheet.

    Each iteration re-reads the sheet from the source, skips the header and
    empty rows, maps column letters to field names, decodes date fields and
    drops rows without an identifying value before handing the record to
    ``build``.
    """

    def __init__(
        self,
        source: WorkbookSource,
        sheet: SheetSpec,
        build: Callable[[Record], T],
    ) -> None:
        self.source = source
        self.sheet = sheet
        self.build = build
        self._positions = {
            field_name: column_index_from_string(letter) - 1
            for letter, field_name in sheet.columns.items()
        }

    def records(self) -> Iterator[Record]:
        """Yield raw field mappings for every identified data row."""
        rows = self.source.read_rows(self.sheet.name)
        next(rows, None)  # header
        for row in rows:
            if row is None or all(cell is None or cell == "" for cell in row):
                continue
            record: Record = {}
            for field_name, index in self._positions.items():
                value = row[index] if index < len(row) else None
                if field_name in self.sheet.date_fields:
                    value = to_date(value)
                record[field_name] = value
            if record.get(self.sheet.id_field) in (None, ""):
                continue
            yield record

    def __iter__(self) -> Iterator[T]:
        for record in self.records():
            yield self.build(record)


def build_loan_row(record: Record) -> LoanRow:
    return LoanRow(
        id=normalize_external_id(record["id"]) or "",
        full_name=to_text(record.get("full_name")) or "",
        gived_date=record.get("gived_date"),
        gived_amount=to_decimal(record.get("gived_amount")) or Decimal("0"),
        requested_amount=to_decimal(record.get("requested_amount")) or Decimal("0"),
        weeks=to_int(record.get("weeks")) or 0,
        interest_rate=to_rate(record.get("interest_rate")),
        lead_id=normalize_external_id(record.get("lead_id")),
        status=to_text(record.get("status")),
        finished_date=record.get("finished_date"),
        previous_loan_id=normalize_external_id(record.get("previous_loan_id")),
        bad_debt_date=record.get("bad_debt_date"),
        aval_name=to_text(record.get("aval_name")),
        aval_phone=to_text(record.get("aval_phone")),
        titular_phone=to_text(record.get("titular_phone")),
    )


def build_payment_row(record: Record) -> PaymentRow:
    return PaymentRow(
        loan_id=normalize_external_id(record["loan_id"]) or "",
        payment_date=record.get("payment_date"),
        amount=to_decimal(record.get("amount")) or Decimal("0"),
        type=to_text(record.get("type")),
        description=to_text(record.get("description")),
    )


def build_expense_row(record: Record) -> ExpenseRow:
    return ExpenseRow(
        date=record["date"],
        amount=to_decimal(record.get("amount")),
        full_name=to_text(record.get("full_name")),
        account_type=to_text(record.get("account_type")),
        lead_id=normalize_external_id(record.get("lead_id")),
        description=to_text(record.get("description")),
    )


def build_payroll_row(record: Record) -> PayrollRow:
    return PayrollRow(
        date=record["date"],
        amount=to_decimal(record.get("amount")),
        full_name=to_text(record.get("full_name")),
        description=to_text(record.get("description")),
        lead_id=normalize_external_id(record.get("lead_id")),
        account_type=to_text(record.get("account_type")),
    )


def build_lead_row(record: Record) -> LeadRow:
    active = to_text(record.get("active"))
    return LeadRow(
        id=normalize_external_id(record["id"]) or "",
        first_name=to_text(record.get("first_name")) or "",
        last_names=to_text(record.get("last_names")) or "",
        phone=to_text(record.get("phone")),
        active=active is None or active.upper() == "SI",
        route_name=to_text(record.get("route_name")),
    )


def loan_rows(source: WorkbookSource, sheet: SheetSpec) -> SheetExtractor[LoanRow]:
    return SheetExtractor(source, sheet, build_loan_row)


def payment_rows(source: WorkbookSource, sheet: SheetSpec) -> SheetExtractor[PaymentRow]:
    return SheetExtractor(source, sheet, build_payment_row)


def expense_rows(source: WorkbookSource, sheet: SheetSpec) -> SheetExtractor[ExpenseRow]:
    return SheetExtractor(source, sheet, build_expense_row)


def payroll_rows(source: WorkbookSource, sheet: SheetSpec) -> SheetExtractor[PayrollRow]:
    return SheetExtractor(source, sheet, build_payroll_row)


def lead_rows(source: WorkbookSource, sheet: SheetSpec) -> SheetExtractor[LeadRow]:
    return SheetExtractor(source, sheet, build_lead_row)
