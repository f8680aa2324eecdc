"""
Durable processed-item index.

A plain-text log in the destination root, one item identifier per line.
It only grows by append; the single exception is the maintenance
operation that drops all entries of one date, which rewrites the file.

The whole log is loaded into memory once per run. Appends update the
in-memory set in the same call, so later items of the same run see them
without re-reading the file.
"""

import logging
import os
import tempfile
from collections.abc import Iterable
from datetime import date, datetime
from pathlib import Path
from typing import Union

from ..schemas.keys import parse_identifier

logger = logging.getLogger(__name__)


def _parse_day(value: Union[str, date]) -> date:
    """Accept a date, YYYY-MM-DD or YYYY/MM/DD."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(value.strip().replace("/", "-"), "%Y-%m-%d").date()


class ProcessedIndex:
    """
    Append-only identifier log with an in-memory mirror.

    Usage:
        index = ProcessedIndex(destination / "index.doc")
        if item_id not in index: ...
        index.append(["id1", "id2"])
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.entries: set[str] = set()
        self.load()

    def load(self) -> set[str]:
        """(Re)load the log, creating an empty one if missing."""
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("", encoding="utf-8")
            logger.info(f"Created processed index: {self.path}")

        content = self.path.read_text(encoding="utf-8")
        self.entries = {line.strip() for line in content.splitlines() if line.strip()}
        return self.entries

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.entries

    def __len__(self) -> int:
        return len(self.entries)

    def append(self, identifiers: Iterable[str]) -> int:
        """
        Append identifiers in one write and mirror them in memory.

        Returns:
            Number of lines written
        """
        batch = [i.strip() for i in identifiers if i and i.strip()]
        if not batch:
            return 0

        prefix = ""
        if self.path.exists() and self.path.stat().st_size > 0:
            with open(self.path, "rb") as f:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    prefix = "\n"

        with open(self.path, "a", encoding="utf-8") as f:
            f.write(prefix + "\n".join(batch) + "\n")

        self.entries.update(batch)
        logger.info(f"Index batch saved: {len(batch)} item(s)")
        return len(batch)

    def rewrite(self, identifiers: Iterable[str]) -> None:
        """Replace the whole log atomically (maintenance only)."""
        lines = [i.strip() for i in identifiers if i and i.strip()]
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".index-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + ("\n" if lines else ""))
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self.entries = set(lines)

    def remove_entries_for_date(self, day: Union[str, date]) -> int:
        """
        Drop every entry belonging to a date.

        An entry belongs to the date when its timestamp falls on that local
        calendar day, or when its label mentions the date (YYYY-MM-DD or
        the DDMMYYYY form a sanitized DD/MM/YYYY subject leaves behind).

        Returns:
            Number of entries removed
        """
        target = _parse_day(day)
        markers = (target.isoformat(), target.strftime("%d%m%Y"))

        lines = [
            line.strip()
            for line in self.path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]

        def belongs(identifier: str) -> bool:
            timestamp, label = parse_identifier(identifier)
            if timestamp is not None and timestamp.astimezone().date() == target:
                return True
            return any(marker in label for marker in markers)

        kept = [line for line in lines if not belongs(line)]
        removed = len(lines) - len(kept)
        self.rewrite(kept)
        logger.info(f"Removed {removed} entries for {target.isoformat()} from index")
        return removed
