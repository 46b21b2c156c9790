"""Workbook sources: anything that can return a named sheet as positional rows."""

import logging
from pathlib import Path
from typing import Any, Iterator, Protocol, Sequence
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from loan_import.exceptions import SourceReadError

logger = logging.getLogger(__name__)

Row = Sequence[Any]


class WorkbookSource(Protocol):
    """Read a named sheet as header-included positional rows."""

    def read_rows(self, sheet_name: str) -> Iterator[Row]:
        ...

    def has_sheet(self, sheet_name: str) -> bool:
        ...


class OpenpyxlWorkbook:
    """Workbook file opened with openpyxl in read-only, cached-value mode."""

    def __init__(self, path: str | Path) -> None:
        """Open the workbook.

        Parameters
        ----------
        path : str | Path
            Path to an ``.xlsx``/``.xlsm`` file.

        Raises
        ------
        SourceReadError
            If the file is missing or not a readable workbook.
        """
        self.path = Path(path)
        try:
            self._workbook = load_workbook(self.path, read_only=True, data_only=True)
        except (OSError, BadZipFile, InvalidFileException, KeyError, ValueError) as e:
            raise SourceReadError(f"Cannot open workbook {self.path}: {e}") from e
        logger.info("Opened workbook %s (sheets: %s)", self.path, self._workbook.sheetnames)

    def has_sheet(self, sheet_name: str) -> bool:
        return sheet_name in self._workbook.sheetnames

    def read_rows(self, sheet_name: str) -> Iterator[Row]:
        if not self.has_sheet(sheet_name):
            raise SourceReadError(f"Sheet {sheet_name!r} not found in {self.path}")
        worksheet = self._workbook[sheet_name]
        yield from worksheet.iter_rows(values_only=True)

    def close(self) -> None:
        self._workbook.close()

    def __enter__(self) -> "OpenpyxlWorkbook":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class StaticWorkbook:
    """In-memory workbook: sheet name to list of rows (header first)."""

    def __init__(self, sheets: dict[str, list[list[Any]]] | None = None) -> None:
        self.sheets: dict[str, list[list[Any]]] = sheets or {}

    def has_sheet(self, sheet_name: str) -> bool:
        return sheet_name in self.sheets

    def read_rows(self, sheet_name: str) -> Iterator[Row]:
        if sheet_name not in self.sheets:
            raise SourceReadError(f"Sheet {sheet_name!r} not found")
        yield from (tuple(row) for row in self.sheets[sheet_name])
