"""
Ledger workbook access (openpyxl).

A thin grid view over one worksheet: the first row holds the column
headers, every following row is a data row. Supports a full-range read,
targeted cell writes, row background fills and an atomic save.
"""

import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.styles import PatternFill

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """The ledger workbook cannot be opened or does not have the expected layout."""

    pass


class LedgerSheet:
    """
    One worksheet of the ledger workbook.

    Usage:
        sheet = LedgerSheet.open(path, "Control 2025")
        col = sheet.column_index("Total Sales")
        sheet.set_value(row, col, 123.45)
        sheet.save()
    """

    def __init__(self, workbook: Workbook, sheet_name: str, path: Optional[Path] = None):
        if sheet_name not in workbook.sheetnames:
            raise LedgerError(f"Sheet not found: {sheet_name}")
        self.workbook = workbook
        self.worksheet = workbook[sheet_name]
        self.path = path
        self.headers = self._read_headers()

    @classmethod
    def open(cls, path: Path, sheet_name: str) -> "LedgerSheet":
        path = Path(path)
        if not path.exists():
            raise LedgerError(f"Ledger workbook not found: {path}")
        try:
            workbook = load_workbook(path)
        except (OSError, ValueError, KeyError) as e:
            raise LedgerError(f"Could not open ledger {path}: {e}") from e
        return cls(workbook, sheet_name, path)

    def _read_headers(self) -> dict[str, int]:
        """Header text -> 1-based column number (first occurrence wins)."""
        headers: dict[str, int] = {}
        for cell in next(self.worksheet.iter_rows(min_row=1, max_row=1), ()):
            if cell.value is None:
                continue
            name = str(cell.value).strip()
            if name and name not in headers:
                headers[name] = cell.column
        return headers

    @property
    def width(self) -> int:
        return self.worksheet.max_column

    def column_index(self, header: str) -> Optional[int]:
        return self.headers.get(header)

    def data_rows(self) -> Iterator[tuple[int, tuple[Any, ...]]]:
        """(row number, cell values) for every row below the header."""
        for row_number, values in enumerate(
            self.worksheet.iter_rows(min_row=2, values_only=True), start=2
        ):
            yield row_number, values

    def get_value(self, row: int, column: int) -> Any:
        return self.worksheet.cell(row=row, column=column).value

    def set_value(self, row: int, column: int, value: Any) -> None:
        self.worksheet.cell(row=row, column=column, value=value)

    def fill_row(self, row: int, color: str) -> None:
        """Solid background over the row's used columns."""
        fill = PatternFill("solid", fgColor=color)
        for column in range(1, self.width + 1):
            self.worksheet.cell(row=row, column=column).fill = fill

    def save(self, path: Optional[Path] = None) -> Path:
        """Write the workbook via a temp file and rename."""
        target = Path(path or self.path or "")
        if not target.name:
            raise LedgerError("No path to save the ledger to")
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".ledger-", suffix=".xlsx")
        os.close(fd)
        try:
            self.workbook.save(tmp_name)
            os.replace(tmp_name, target)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise LedgerError(f"Could not save ledger {target}: {e}") from e
        logger.debug(f"Saved ledger {target}")
        return target
