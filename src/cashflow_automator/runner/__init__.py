"""
CLI runner module.

Provides commands:
- start / continue / run-due: Batch processing of the source folder
- pause / resume / status: Control and inspect the current run
- ingest-mail / reprocess-date / diagnose: Inbox attachments
- process-date / organize / folder-stats / cleanup-folders / duplicates:
  Date folder maintenance
- test-extract: Extractor check on one file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
