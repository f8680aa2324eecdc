"""
Mail ingest service.

Pulls closure report attachments from the inbox into the destination
folder, named after the branch, date and shift in the mail subject.
Each mail is recorded in the processed index once handled, so running
the same date range again creates nothing new.

Also provides:
- reprocess_date: drop one date from the index and ingest it again
- diagnose: compare the index with the files actually present
"""

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from ..config import Config
from ..mail.client import MailMessage, MailSource
from ..schemas.keys import artifact_filename, item_identifier
from ..state_store.processed_index import ProcessedIndex
from ..storage.artifact_cache import build_artifact_cache
from ..storage.folder_store import LocalFolderStore, StorageError
from .idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)


@dataclass
class IngestStats:
    found: int = 0
    already_processed: int = 0
    newly_processed: int = 0
    files_created: int = 0
    files_existing: int = 0
    errors: int = 0


@dataclass
class IngestResult:
    stats: IngestStats = field(default_factory=IngestStats)
    created_files: list[str] = field(default_factory=list)
    time_limit_reached: bool = False


class FindingKind(str, Enum):
    INVALID_FORMAT = "INVALID_FORMAT"
    INDEXED_BUT_MISSING_FILE = "INDEXED_BUT_MISSING_FILE"
    ARTIFACT_NOT_INDEXED = "ARTIFACT_NOT_INDEXED"


@dataclass
class DiagnosticFinding:
    kind: FindingKind
    identifier: str
    subject: str
    received_at: datetime
    filename: Optional[str] = None


@dataclass
class DiagnosticReport:
    analyzed: int = 0
    findings: list[DiagnosticFinding] = field(default_factory=list)
    backfilled: int = 0

    def of_kind(self, kind: FindingKind) -> list[DiagnosticFinding]:
        return [f for f in self.findings if f.kind == kind]


class MailIngestService:
    """
    Ingest closure mails into the destination folder.

    Usage:
        with ImapMailSource(config.mail) as source:
            service = MailIngestService(config, source)
            result = service.ingest(date(2025, 7, 5), date(2025, 7, 5))
    """

    def __init__(
        self,
        config: Config,
        source: MailSource,
        store: Optional[LocalFolderStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.source = source
        self.store = store or LocalFolderStore(config.destination_dir)
        self.clock = clock
        self.subject_pattern = re.compile(config.mail.subject_pattern)
        self.cutoff_hour = config.extraction.shift_cutoff_hour

    def _identifier(self, message: MailMessage) -> str:
        return item_identifier(message.received_at, message.subject.strip())

    def _filenames(self, match: re.Match, total: int) -> list[str]:
        branch, closure_date, closure_time = match.groups()
        return [
            artifact_filename(branch, closure_date, closure_time, self.cutoff_hour, i, total)
            for i in range(total)
        ]

    def ingest(
        self,
        date_from: date,
        date_to: date,
        forced: bool = False,
        ignore_cache: bool = False,
    ) -> IngestResult:
        """
        Save the PDF attachments of every closure mail in a date range.

        Args:
            date_from: First day (inclusive)
            date_to: Last day (inclusive)
            forced: Process mails that are already in the index
            ignore_cache: Recreate files that already exist

        Raises:
            MailError: If the inbox search fails (index progress is saved first)
        """
        started = self.clock()
        mode = " (FORCED)" if forced else ""
        logger.info(f"Processing emails from {date_from} to {date_to}{mode}")

        self.store.ensure_root()
        index = ProcessedIndex(self.config.index_path)
        logger.info(f"Emails already in index: {len(index)}")
        cache = build_artifact_cache(self.store)
        logger.info(f"Files in cache: {len(cache)}")

        guard = IdempotencyGuard(
            index,
            cache,
            write_batch_size=self.config.index.write_batch_size,
            forced=forced,
            ignore_cache=ignore_cache,
        )
        result = IngestResult()

        try:
            messages = self.source.search(date_from, date_to)
            if not messages:
                logger.info("No emails found in this date range")
                return result

            for message in messages:
                if self.clock() - started > self.config.scheduler.max_execution_seconds:
                    logger.info("Time limit reached, saving progress...")
                    result.time_limit_reached = True
                    break
                self._ingest_message(message, guard, result, forced)

            guard.flush()
        except Exception:
            guard.flush_best_effort()
            raise

        self._log_summary(result)
        return result

    def _ingest_message(
        self,
        message: MailMessage,
        guard: IdempotencyGuard,
        result: IngestResult,
        forced: bool,
    ) -> None:
        stats = result.stats
        stats.found += 1
        identifier = self._identifier(message)
        subject = message.subject.strip()

        if guard.should_skip_item(identifier):
            stats.already_processed += 1
            logger.debug(f"Already processed: {subject}")
            return

        action = "Reprocessing" if forced else "Processing"
        logger.info(f"{action}: {subject} - {message.received_at:%Y-%m-%d}")

        match = self.subject_pattern.search(subject)
        if not match:
            logger.warning(f"Invalid format: {subject}")
            stats.errors += 1
            return

        pdfs = message.pdf_attachments()
        if not pdfs:
            logger.info("No PDF attachments found")
            return

        created: list[str] = []
        existing = 0
        failure: Optional[StorageError] = None
        try:
            for attachment, filename in zip(pdfs, self._filenames(match, len(pdfs))):
                if not guard.should_create_artifact(filename):
                    logger.debug(f"File already exists: {filename}")
                    existing += 1
                    continue
                self.store.create_file(filename, attachment.data)
                created.append(filename)
                logger.info(f"{'Recreated' if forced else 'Created'}: {filename}")
        except StorageError as e:
            failure = e

        stats.files_existing += existing
        stats.files_created += len(created)
        result.created_files.extend(created)

        # A mail with a failed attachment stays unindexed and is retried next time
        if failure is not None:
            logger.warning(f"Error processing {subject}: {failure}")
            stats.errors += 1
            return

        if guard.mark_processed(identifier, artifacts_created=len(created)):
            stats.newly_processed += 1

    def _log_summary(self, result: IngestResult) -> None:
        stats = result.stats
        logger.info("=== PROCESSING SUMMARY ===")
        logger.info(f"Emails found: {stats.found}")
        logger.info(f"Already processed: {stats.already_processed}")
        logger.info(f"Newly processed: {stats.newly_processed}")
        logger.info(f"Files created: {stats.files_created}")
        logger.info(f"Files already existed: {stats.files_existing}")
        logger.info(f"Errors: {stats.errors}")

    def reprocess_date(self, day: date, remove_from_index: bool = True) -> IngestResult:
        """Ingest one day again, recreating its files."""
        logger.info(f"=== REPROCESSING DATE: {day} ===")
        if remove_from_index:
            ProcessedIndex(self.config.index_path).remove_entries_for_date(day)
        return self.ingest(day, day, forced=True, ignore_cache=True)

    def diagnose(self, date_from: date, date_to: date, backfill: bool = False) -> DiagnosticReport:
        """
        Cross-check mails, index and files for a date range.

        Findings:
        - INVALID_FORMAT: subject does not follow the closure report format
        - INDEXED_BUT_MISSING_FILE: mail indexed, its first file is missing
        - ARTIFACT_NOT_INDEXED: file present, mail not indexed

        With backfill, ARTIFACT_NOT_INDEXED mails are appended to the index.
        Nothing else is repaired.
        """
        logger.info("=== EMAIL DIAGNOSIS ===")
        index = ProcessedIndex(self.config.index_path)
        cache = build_artifact_cache(self.store)
        report = DiagnosticReport()

        for message in self.source.search(date_from, date_to):
            report.analyzed += 1
            identifier = self._identifier(message)
            subject = message.subject.strip()

            match = self.subject_pattern.search(subject)
            if not match:
                report.findings.append(
                    DiagnosticFinding(
                        FindingKind.INVALID_FORMAT, identifier, subject, message.received_at
                    )
                )
                continue

            total = max(1, len(message.pdf_attachments()))
            filename = self._filenames(match, total)[0]
            indexed = identifier in index
            exists = filename in cache

            kind = None
            if indexed and not exists:
                kind = FindingKind.INDEXED_BUT_MISSING_FILE
            elif exists and not indexed:
                kind = FindingKind.ARTIFACT_NOT_INDEXED
            if kind is not None:
                report.findings.append(
                    DiagnosticFinding(kind, identifier, subject, message.received_at, filename)
                )

        if backfill:
            missing = [f.identifier for f in report.of_kind(FindingKind.ARTIFACT_NOT_INDEXED)]
            report.backfilled = index.append(missing)

        logger.info("=== DIAGNOSIS COMPLETE ===")
        logger.info(f"Emails analyzed: {report.analyzed}")
        logger.info(f"Problematic emails: {len(report.findings)}")
        for i, finding in enumerate(report.findings, start=1):
            expected = f" (expected file: {finding.filename})" if finding.filename else ""
            logger.info(f"{i}. {finding.kind.value}: {finding.subject}{expected}")
        return report
