"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas and identity functions are the ONLY ones used
across all modules.
"""

from .amounts import format_amount, normalize_amount
from .closure_record import MONETARY_FIELDS, FinancialRecord, Shift
from .keys import (
    DATE_FOLDER_PATTERN,
    IDENTIFIER_LABEL_LENGTH,
    KEY_SEPARATOR,
    artifact_filename,
    composite_key,
    epoch_millis,
    item_identifier,
    normalize_date,
    parse_identifier,
    sanitize_label,
    shift_for_time,
)

__all__ = [
    # Records
    "FinancialRecord",
    "Shift",
    "MONETARY_FIELDS",
    # Amounts
    "normalize_amount",
    "format_amount",
    # Keys
    "composite_key",
    "normalize_date",
    "shift_for_time",
    "item_identifier",
    "parse_identifier",
    "sanitize_label",
    "epoch_millis",
    "artifact_filename",
    "DATE_FOLDER_PATTERN",
    "IDENTIFIER_LABEL_LENGTH",
    "KEY_SEPARATOR",
]
