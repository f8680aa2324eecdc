"""
Ledger workbook integration.

Fill-only merge of extracted closure records into existing ledger rows.
"""

from .merge_writer import CellWrite, LedgerMergeWriter, MergeResult, is_blank
from .workbook import LedgerError, LedgerSheet

__all__ = [
    "LedgerSheet",
    "LedgerError",
    "LedgerMergeWriter",
    "MergeResult",
    "CellWrite",
    "is_blank",
]
