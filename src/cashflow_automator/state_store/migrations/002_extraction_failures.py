"""
Migration 002: Add extraction_failures table.

A document whose extraction failed stays in the source root. Recording the
failure per run keeps later batches of the same run from selecting it
again; a new run (new run_started_at) retries it.
"""

import sqlite3

VERSION = 2
NAME = "extraction_failures"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the extraction_failures table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS extraction_failures (
            run_started_at TEXT NOT NULL,
            item_id TEXT NOT NULL,
            source_name TEXT NOT NULL,
            reason TEXT NOT NULL,
            failed_at TEXT NOT NULL,
            PRIMARY KEY (run_started_at, item_id)
        )
    """)
