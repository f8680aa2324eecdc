"""
Fill-only ledger merge.

Matches extracted records to existing ledger rows by composite key and
writes amounts only into cells that are empty, blank or zero. Populated
cells are never overwritten and rows are never created.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from ..config import LedgerConfig
from ..schemas.amounts import normalize_amount
from ..schemas.closure_record import MONETARY_FIELDS, FinancialRecord
from ..schemas.keys import composite_key
from .workbook import LedgerError, LedgerSheet

logger = logging.getLogger(__name__)


def is_blank(value: Any) -> bool:
    """Empty, whitespace-only or zero (numeric or zero-valued text)."""
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return value == 0
    text = str(value).strip()
    if not text:
        return True
    return normalize_amount(text) == 0


@dataclass
class CellWrite:
    row: int
    column: int
    field_name: str
    value: Decimal


@dataclass
class MergeResult:
    """Outcome of one merge invocation."""

    records_seen: int = 0
    matched: int = 0
    unmatched_keys: list[str] = field(default_factory=list)
    writes: list[CellWrite] = field(default_factory=list)
    skipped_populated: int = 0

    @property
    def updates_applied(self) -> int:
        return len(self.writes)

    @property
    def rows_updated(self) -> int:
        return len({w.row for w in self.writes})

    @property
    def summary(self) -> str:
        if not self.writes:
            return "No updates needed"
        return f"{self.updates_applied} cell(s) updated in {self.rows_updated} row(s)"


class LedgerMergeWriter:
    """
    Merge FinancialRecords into the ledger sheet.

    The row index is built once per merge() call from the full data range.
    """

    def __init__(self, config: LedgerConfig):
        self.config = config

    def _open(self) -> LedgerSheet:
        return LedgerSheet.open(Path(self.config.workbook_path), self.config.sheet_name)

    def _key_columns(self, sheet: LedgerSheet) -> tuple[int, int, int]:
        columns = []
        for key in ("date", "shift", "branch"):
            header = self.config.columns.get(key, "")
            index = sheet.column_index(header)
            if index is None:
                raise LedgerError(f"Ledger column not found: {header!r} ({key})")
            columns.append(index)
        return columns[0], columns[1], columns[2]

    def build_row_index(self, sheet: LedgerSheet) -> dict[str, int]:
        """Composite key -> row number (first row wins on duplicate keys)."""
        date_col, shift_col, branch_col = self._key_columns(sheet)
        index: dict[str, int] = {}
        for row_number, values in sheet.data_rows():
            date_value = values[date_col - 1] if len(values) >= date_col else None
            if date_value in (None, ""):
                continue
            shift_value = values[shift_col - 1] if len(values) >= shift_col else None
            branch_value = values[branch_col - 1] if len(values) >= branch_col else None
            key = composite_key(
                date_value, shift_value, str(branch_value) if branch_value is not None else ""
            )
            if key in index:
                logger.debug(f"Duplicate ledger key {key} at row {row_number}, ignored")
                continue
            index[key] = row_number
        return index

    def plan(self, sheet: LedgerSheet, records: list[FinancialRecord]) -> MergeResult:
        """Decide every write without touching the sheet."""
        result = MergeResult(records_seen=len(records))
        row_index = self.build_row_index(sheet)
        field_columns = self._field_columns(sheet)
        planned: set[tuple[int, int]] = set()

        for record in records:
            key = record.composite_key
            row = row_index.get(key)
            if row is None:
                logger.info(f"No ledger row for {key} ({record.source_name}), skipping")
                result.unmatched_keys.append(key)
                continue
            result.matched += 1

            for field_name, value in record.amounts().items():
                column = field_columns.get(field_name)
                if value is None or column is None:
                    continue
                if (row, column) in planned or not is_blank(sheet.get_value(row, column)):
                    result.skipped_populated += 1
                    continue
                planned.add((row, column))
                result.writes.append(CellWrite(row, column, field_name, value))

        return result

    def _field_columns(self, sheet: LedgerSheet) -> dict[str, int]:
        columns: dict[str, int] = {}
        for field_name in MONETARY_FIELDS:
            header = self.config.columns.get(field_name)
            if not header:
                continue
            index = sheet.column_index(header)
            if index is None:
                logger.warning(f"Ledger column not found: {header!r}, {field_name} not merged")
                continue
            columns[field_name] = index
        return columns

    def apply(self, sheet: LedgerSheet, result: MergeResult) -> None:
        """Apply planned writes grouped by row and highlight touched rows."""
        by_row: dict[int, list[CellWrite]] = {}
        for write in result.writes:
            by_row.setdefault(write.row, []).append(write)

        for row, writes in sorted(by_row.items()):
            for write in writes:
                sheet.set_value(row, write.column, float(write.value))
            sheet.fill_row(row, self.config.highlight_color)
            logger.debug(f"Row {row}: {', '.join(w.field_name for w in writes)}")

    def merge(
        self, records: list[FinancialRecord], sheet: Optional[LedgerSheet] = None
    ) -> MergeResult:
        """
        Merge records into the ledger and save it when anything changed.

        Args:
            records: Successfully extracted records
            sheet: Already opened sheet (opened from config when omitted)

        Raises:
            LedgerError: If the workbook, sheet or key columns are missing
        """
        if not records:
            return MergeResult()

        sheet = sheet or self._open()
        result = self.plan(sheet, records)

        if not result.writes:
            logger.info("No updates needed")
            return result

        self.apply(sheet, result)
        sheet.save()
        logger.info(f"Ledger updated: {result.summary}")
        return result
