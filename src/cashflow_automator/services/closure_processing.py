"""
Closure document processing.

One pass over a list of pending closure PDFs:

1. Extract a FinancialRecord from each document, checking the time limit
   before each one. Extraction failures are recorded per document.
2. Fill the extracted amounts into the ledger (fill-only merge).
3. Move each extracted document into its YYYY-MM-DD folder.
4. Mark moved documents as processed and flush the index buffer.

Documents not reached before the time limit are left untouched.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..config import Config
from ..extractors.base import ExtractionError
from ..extractors.closure_extractor import ClosureExtractor
from ..extractors.pdf_text import read_pdf_text
from ..ledger.merge_writer import LedgerMergeWriter, MergeResult
from ..schemas.closure_record import FinancialRecord
from ..schemas.keys import DATE_FOLDER_PATTERN, item_identifier
from ..state_store.processed_index import ProcessedIndex
from ..storage.artifact_cache import build_artifact_cache
from ..storage.folder_store import LocalFolderStore
from ..storage.organizer import RelocationResult, organize_files
from .idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)

TextReader = Callable[[Path], str]


@dataclass
class PendingDocument:
    """A closure PDF waiting to be processed."""

    path: Path
    modified_at: datetime

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def identifier(self) -> str:
        return item_identifier(self.modified_at, self.name)


@dataclass
class DocumentFailure:
    identifier: str
    source_name: str
    reason: str
    stage: str = "extraction"  # extraction | relocation


@dataclass
class ProcessingResult:
    """Outcome of one processing pass."""

    selected: int = 0
    reached: int = 0
    skipped: int = 0
    records: list[FinancialRecord] = field(default_factory=list)
    failures: list[DocumentFailure] = field(default_factory=list)
    merge: Optional[MergeResult] = None
    relocation: Optional[RelocationResult] = None
    marked: list[str] = field(default_factory=list)
    time_limit_reached: bool = False

    @property
    def succeeded(self) -> int:
        """Extracted documents that were not lost to a relocation failure."""
        relocation_failures = sum(1 for f in self.failures if f.stage == "relocation")
        return len(self.records) - relocation_failures

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def dates(self) -> list[str]:
        return sorted({r.iso_date for r in self.records})


class ClosureBatchProcessor:
    """
    Extract, merge and relocate closure PDFs.

    Usage:
        processor = ClosureBatchProcessor(config)
        pending = processor.list_pending(exclude=failed_ids)
        result = processor.process(pending[:18], guard)
    """

    def __init__(
        self,
        config: Config,
        extractor: Optional[ClosureExtractor] = None,
        merge_writer: Optional[LedgerMergeWriter] = None,
        text_reader: Optional[TextReader] = None,
    ):
        self.config = config
        self.extractor = extractor or ClosureExtractor(
            config.extraction.anchors, config.extraction.shift_cutoff_hour
        )
        self.merge_writer = merge_writer or LedgerMergeWriter(config.ledger)
        self.text_reader: TextReader = text_reader or read_pdf_text
        self.source_store = LocalFolderStore(config.source_dir)
        self.destination_store = LocalFolderStore(config.destination_dir)

    def open_index(self) -> ProcessedIndex:
        return ProcessedIndex(self.config.index_path)

    def new_guard(
        self, index: Optional[ProcessedIndex] = None, forced: bool = False
    ) -> IdempotencyGuard:
        """Guard for one invocation: index loaded and cache scanned now."""
        return IdempotencyGuard(
            index or self.open_index(),
            build_artifact_cache(self.destination_store),
            write_batch_size=self.config.index.write_batch_size,
            forced=forced,
        )

    def list_pending(
        self,
        exclude: frozenset[str] | set[str] = frozenset(),
        index: Optional[ProcessedIndex] = None,
    ) -> list[PendingDocument]:
        """
        PDFs directly in the source root, by name.

        Documents whose identifier is in `exclude` (failed earlier in this
        run) or already in the index are not pending.
        """
        indexed = index.entries if index is not None else set()
        pending = []
        for stored in self.source_store.list_files(extension=".pdf"):
            doc = PendingDocument(stored.path, stored.modified_at)
            if doc.identifier in exclude or doc.identifier in indexed:
                continue
            pending.append(doc)
        return pending

    def process(
        self,
        documents: list[PendingDocument],
        guard: IdempotencyGuard,
        time_exceeded: Callable[[], bool] = lambda: False,
        relocate: bool = True,
        on_failure: Optional[Callable[[DocumentFailure], None]] = None,
    ) -> ProcessingResult:
        """
        Run one processing pass.

        Args:
            documents: Documents to process, in order
            guard: Idempotency guard of the current invocation
            time_exceeded: Checked before each document
            relocate: Move extracted documents into date folders
            on_failure: Called for every per-document failure

        Raises:
            LedgerError: If the ledger cannot be opened or saved
        """
        result = ProcessingResult(selected=len(documents))
        extracted: list[tuple[PendingDocument, FinancialRecord]] = []

        def fail(doc: PendingDocument, reason: str, stage: str = "extraction") -> None:
            failure = DocumentFailure(doc.identifier, doc.name, reason, stage)
            result.failures.append(failure)
            logger.warning(f"Failed: {doc.name} -> {reason}")
            if on_failure is not None:
                on_failure(failure)

        logger.info(f"Processing {len(documents)} files...")
        for i, doc in enumerate(documents):
            if time_exceeded():
                logger.info("Time limit reached, saving progress...")
                result.time_limit_reached = True
                break
            result.reached += 1

            if guard.should_skip_item(doc.identifier):
                logger.debug(f"Already processed: {doc.name}")
                result.skipped += 1
                continue

            if i % 5 == 0 or i == len(documents) - 1:
                logger.info(f"Progress: {i + 1}/{len(documents)} - {doc.name}")

            try:
                text = self.text_reader(doc.path)
                record = self.extractor.extract(text, doc.name)
            except ExtractionError as e:
                fail(doc, e.reason)
                continue

            extracted.append((doc, record))
            result.records.append(record)
            logger.debug(f"Processed: {doc.name} -> {record.composite_key}")

        if result.records:
            logger.info(f"Dates processed in this batch: {', '.join(result.dates)}")
            logger.info(f"Updating {len(result.records)} rows in ledger...")
            result.merge = self.merge_writer.merge(result.records)

        if relocate and extracted:
            files_by_date: dict[str, list[Path]] = {}
            for doc, record in extracted:
                files_by_date.setdefault(record.iso_date, []).append(doc.path)
            logger.info(f"Organizing files into {len(files_by_date)} date folders...")
            result.relocation = organize_files(self.destination_store, files_by_date)

            moved = {p.name for p in result.relocation.moved}
            move_errors = dict(result.relocation.failed)
            for doc, _ in extracted:
                if doc.name in moved:
                    if guard.mark_processed(doc.identifier, artifacts_created=1):
                        result.marked.append(doc.identifier)
                else:
                    reason = f"Relocation failed: {move_errors.get(doc.name, 'not moved')}"
                    fail(doc, reason, stage="relocation")
        else:
            for doc, _ in extracted:
                if guard.mark_processed(doc.identifier, artifacts_created=0):
                    result.marked.append(doc.identifier)

        guard.flush()
        return result

    def process_date_folder(self, date_iso: str) -> ProcessingResult:
        """
        Re-run extraction and ledger merge over the PDFs already filed in
        one date folder. The index check is bypassed and nothing is moved.

        Raises:
            ValueError: If date_iso is not YYYY-MM-DD
            FileNotFoundError: If the date folder does not exist
        """
        if not DATE_FOLDER_PATTERN.match(date_iso or ""):
            raise ValueError(f"Expected a YYYY-MM-DD date, got {date_iso!r}")

        folder = self.destination_store.find_folder(date_iso)
        if folder is None:
            raise FileNotFoundError(f"Date folder not found: {date_iso}")

        documents = [
            PendingDocument(stored.path, stored.modified_at)
            for stored in self.destination_store.list_files(folder, extension=".pdf")
        ]
        logger.info(f"=== MANUAL FOLDER PROCESSING: {date_iso} ({len(documents)} PDFs) ===")

        guard = self.new_guard(forced=True)
        return self.process(documents, guard, relocate=False)
