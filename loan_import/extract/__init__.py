"""Row extraction from route workbooks."""

from loan_import.extract.dates import to_date
from loan_import.extract.rows import (
    SheetExtractor,
    expense_rows,
    lead_rows,
    loan_rows,
    normalize_external_id,
    payment_rows,
    payroll_rows,
    to_decimal,
)
from loan_import.extract.workbook import OpenpyxlWorkbook, StaticWorkbook, WorkbookSource

__all__ = [
    "OpenpyxlWorkbook",
    "SheetExtractor",
    "StaticWorkbook",
    "WorkbookSource",
    "expense_rows",
    "lead_rows",
    "loan_rows",
    "normalize_external_id",
    "payment_rows",
    "payroll_rows",
    "to_date",
    "to_decimal",
]
