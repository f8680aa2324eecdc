"""
Migration 003: Add batch_runs audit table.

One row per batch attempt, whatever its outcome. The run properties only
hold the latest counters; this table is the history behind them.
"""

import sqlite3

VERSION = 3
NAME = "batch_runs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the batch_runs table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS batch_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_started_at TEXT NOT NULL,
            batch_number INTEGER NOT NULL,
            documents_selected INTEGER NOT NULL DEFAULT 0,
            succeeded INTEGER NOT NULL DEFAULT 0,
            failed INTEGER NOT NULL DEFAULT 0,

            -- CONTINUED, COMPLETED, TIME_LIMIT, RETRYING, ERROR_MULTIPLE, PAUSED
            outcome TEXT NOT NULL,
            error_message TEXT,
            duration_ms INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_batch_runs_run
        ON batch_runs (run_started_at)
    """)
