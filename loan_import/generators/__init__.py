"""Synthetic route workbooks for demos and tests."""

from loan_import.generators.workbook import SampleWorkbookGenerator, sheet_rows

__all__ = ["SampleWorkbookGenerator", "sheet_rows"]
