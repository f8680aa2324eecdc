"""
Ordered schema migrations for the state store.

Files are named {version}_{name}.py (e.g. 001_scheduled_jobs.py) and define:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None

Migrations only move forward; applied versions are recorded in the
`migrations` table.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

PACKAGE = "cashflow_automator.state_store.migrations"


@dataclass
class Migration:
    """One schema step."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """Load every migration module in this package, sorted by version."""
    migrations = []
    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{PACKAGE}.{py_file.stem}")
        migrations.append(Migration(module.VERSION, module.NAME, module.upgrade))
    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """Applies pending migrations on an open connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def apply(self, migration: Migration) -> None:
        """Apply one migration and record it, or roll back and re-raise."""
        logger.info(f"Applying migration {migration.version}: {migration.name}")
        try:
            migration.upgrade(self.conn)
            applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            )
            self.conn.commit()
        except Exception as e:
            self.conn.rollback()
            logger.error(f"Migration {migration.version} failed: {e}")
            raise

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded. Returns applied versions."""
        applied = self.get_applied_versions()
        done = []
        for migration in get_all_migrations():
            if migration.version not in applied:
                self.apply(migration)
                done.append(migration.version)

        if done:
            logger.info(f"Applied {len(done)} migrations: {done}")
        else:
            logger.debug("No pending migrations")
        return done
