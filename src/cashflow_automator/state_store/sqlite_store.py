"""
SQLite-based state store implementation.

Tables:
- run_properties: String key/value property store (RunState lives here)
- scheduled_jobs: Delayed re-invocations of named jobs
- extraction_failures: Documents that failed extraction, per run
- batch_runs: Audit trail of every batch attempt
"""

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Fixed-width ISO timestamp in UTC with a trailing Z, so strings sort by time."""
    stamp = value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    return stamp.replace("+00:00", "Z")


class BatchOutcome(str, Enum):
    """Outcome of one batch attempt."""

    CONTINUED = "CONTINUED"  # More documents remain, continuation scheduled
    COMPLETED = "COMPLETED"  # Nothing left to process
    TIME_LIMIT = "TIME_LIMIT"  # Stopped early at the wall-clock ceiling
    RETRYING = "RETRYING"  # Batch error, retry scheduled
    ERROR_MULTIPLE = "ERROR_MULTIPLE"  # Batch error, retry limit reached
    PAUSED = "PAUSED"  # Active flag was off at batch start


@dataclass
class ScheduledJob:
    """A pending delayed invocation."""

    id: int
    job_name: str
    due_at: str  # ISO timestamp
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ScheduledJob":
        """Create from database row."""
        return cls(
            id=row["id"],
            job_name=row["job_name"],
            due_at=row["due_at"],
            created_at=row["created_at"],
        )


@dataclass
class BatchRunRecord:
    """Audit record of one batch attempt."""

    id: int
    run_started_at: str
    batch_number: int
    documents_selected: int
    succeeded: int
    failed: int
    outcome: BatchOutcome
    error_message: Optional[str]
    duration_ms: int
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BatchRunRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            run_started_at=row["run_started_at"],
            batch_number=row["batch_number"],
            documents_selected=row["documents_selected"],
            succeeded=row["succeeded"],
            failed=row["failed"],
            outcome=BatchOutcome(row["outcome"]),
            error_message=row["error_message"],
            duration_ms=row["duration_ms"],
            created_at=row["created_at"],
        )


class StateStore:
    """
    SQLite-based state store for the pipeline.

    Provides persistent tracking of:
    - Run properties (scheduler RunState)
    - Scheduled continuations
    - Per-run extraction failures
    - Batch attempt audit trail

    Safe for the single-invocation-at-a-time model only; there is no
    cross-process run lock.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            # Property store: string keys, string values
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS run_properties (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Property methods

    def get_property(self, key: str) -> Optional[str]:
        """Get a single property value (None if unset)."""
        with self._transaction() as conn:
            row = conn.execute("SELECT value FROM run_properties WHERE key = ?", (key,)).fetchone()
            return row["value"] if row else None

    def get_properties(self) -> dict[str, str]:
        """Get all properties."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT key, value FROM run_properties").fetchall()
            return {row["key"]: row["value"] for row in rows}

    def set_properties(self, values: dict[str, str]) -> None:
        """Set several properties in one transaction."""
        now = to_iso(utc_now())
        with self._transaction() as conn:
            conn.executemany(
                """
                INSERT INTO run_properties (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                    updated_at = excluded.updated_at
            """,
                [(key, str(value), now) for key, value in values.items()],
            )

    def set_property(self, key: str, value: str) -> None:
        self.set_properties({key: value})

    def delete_properties(self, keys: Iterable[str]) -> None:
        with self._transaction() as conn:
            conn.executemany("DELETE FROM run_properties WHERE key = ?", [(k,) for k in keys])

    # Scheduled job methods

    def schedule_job(self, job_name: str, due_at: datetime) -> int:
        """Insert a delayed invocation. Returns the job ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO scheduled_jobs (job_name, due_at, created_at) VALUES (?, ?, ?)",
                (job_name, to_iso(due_at), to_iso(utc_now())),
            )
            return cursor.lastrowid or 0

    def cancel_jobs(self, job_name: str) -> int:
        """Delete every pending invocation of a job. Returns rows removed."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM scheduled_jobs WHERE job_name = ?", (job_name,))
            return cursor.rowcount

    def get_pending_jobs(self, job_name: Optional[str] = None) -> list[ScheduledJob]:
        """Pending invocations ordered by due time."""
        with self._transaction() as conn:
            if job_name:
                rows = conn.execute(
                    "SELECT * FROM scheduled_jobs WHERE job_name = ? ORDER BY due_at, id",
                    (job_name,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM scheduled_jobs ORDER BY due_at, id").fetchall()
            return [ScheduledJob.from_row(row) for row in rows]

    def claim_due_jobs(self, now: Optional[datetime] = None) -> list[ScheduledJob]:
        """
        Remove and return jobs that are due.

        Select and delete happen in one transaction, so a job is handed out
        at most once.
        """
        cutoff = to_iso(now or utc_now())
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM scheduled_jobs WHERE due_at <= ? ORDER BY due_at, id", (cutoff,)
            ).fetchall()
            jobs = [ScheduledJob.from_row(row) for row in rows]
            if jobs:
                conn.executemany(
                    "DELETE FROM scheduled_jobs WHERE id = ?", [(job.id,) for job in jobs]
                )
            return jobs

    # Extraction failure methods

    def record_extraction_failure(
        self, run_started_at: str, item_id: str, source_name: str, reason: str
    ) -> None:
        """Remember that a document failed extraction during a run."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO extraction_failures
                (run_started_at, item_id, source_name, reason, failed_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (run_started_at, item_id, source_name, reason, to_iso(utc_now())),
            )

    def get_failed_items(self, run_started_at: str) -> set[str]:
        """Item IDs that already failed extraction in this run."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT item_id FROM extraction_failures WHERE run_started_at = ?",
                (run_started_at,),
            ).fetchall()
            return {row["item_id"] for row in rows}

    def get_extraction_failures(self, run_started_at: str) -> list[dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT item_id, source_name, reason, failed_at FROM extraction_failures
                WHERE run_started_at = ? ORDER BY failed_at
            """,
                (run_started_at,),
            ).fetchall()
            return [dict(row) for row in rows]

    # Batch run methods

    def create_batch_run(
        self,
        run_started_at: str,
        batch_number: int,
        documents_selected: int,
        succeeded: int,
        failed: int,
        outcome: BatchOutcome,
        duration_ms: int,
        error_message: Optional[str] = None,
    ) -> int:
        """Record one batch attempt. Returns the row ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO batch_runs
                (run_started_at, batch_number, documents_selected, succeeded, failed,
                 outcome, error_message, duration_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    run_started_at,
                    batch_number,
                    documents_selected,
                    succeeded,
                    failed,
                    outcome.value,
                    error_message,
                    duration_ms,
                    to_iso(utc_now()),
                ),
            )
            return cursor.lastrowid or 0

    def get_batch_runs(self, run_started_at: Optional[str] = None) -> list[BatchRunRecord]:
        """Batch attempts, oldest first (optionally for one run only)."""
        with self._transaction() as conn:
            if run_started_at:
                rows = conn.execute(
                    "SELECT * FROM batch_runs WHERE run_started_at = ? ORDER BY id",
                    (run_started_at,),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM batch_runs ORDER BY id").fetchall()
            return [BatchRunRecord.from_row(row) for row in rows]

    # Statistics

    def get_stats(self, run_started_at: Optional[str] = None) -> dict[str, Any]:
        """Get batch statistics (for one run, or overall)."""
        where = "WHERE run_started_at = ?" if run_started_at else ""
        params: tuple = (run_started_at,) if run_started_at else ()

        with self._transaction() as conn:
            totals = conn.execute(
                f"""
                SELECT COUNT(*) as attempts,
                       COALESCE(SUM(succeeded), 0) as succeeded,
                       COALESCE(SUM(failed), 0) as failed
                FROM batch_runs {where}
            """,
                params,
            ).fetchone()
            errors = conn.execute(
                f"""
                SELECT COUNT(*) as count FROM batch_runs {where}
                {"AND" if where else "WHERE"} outcome IN (?, ?)
            """,
                params + (BatchOutcome.RETRYING.value, BatchOutcome.ERROR_MULTIPLE.value),
            ).fetchone()
            pending_jobs = conn.execute("SELECT COUNT(*) as count FROM scheduled_jobs").fetchone()

            return {
                "batch_attempts": totals["attempts"] if totals else 0,
                "documents_succeeded": totals["succeeded"] if totals else 0,
                "documents_failed": totals["failed"] if totals else 0,
                "batch_errors": errors["count"] if errors else 0,
                "scheduled_jobs": pending_jobs["count"] if pending_jobs else 0,
            }


def due_in(seconds: float, now: Optional[datetime] = None) -> datetime:
    """Timestamp `seconds` from now."""
    return (now or utc_now()) + timedelta(seconds=seconds)
