"""
Migration 001: Add scheduled_jobs table.

Backs the delayed re-invocation primitive: a row means "run job_name once
due_at has passed". Rows are deleted when claimed or cancelled.
"""

import sqlite3

VERSION = 1
NAME = "scheduled_jobs"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create the scheduled_jobs table."""
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS scheduled_jobs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            job_name TEXT NOT NULL,
            due_at TEXT NOT NULL,      -- ISO timestamp (UTC)
            created_at TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_scheduled_jobs_due
        ON scheduled_jobs (due_at)
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_scheduled_jobs_name
        ON scheduled_jobs (job_name)
    """)
