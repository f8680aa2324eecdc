"""
Cash closure documents → Structured records → Ledger

A resumable, idempotent batch pipeline that pulls cash-register closure
reports from an inbox and a file store, extracts typed financial fields
from their text, fills them into an existing ledger workbook and files the
source documents into date folders.
"""

__version__ = "2.1.0"
