"""
CLI main entry point.
"""

import argparse
import logging
import sys
from datetime import date, datetime
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..extractors import ClosureExtractor, ExtractionError, read_pdf_text
from ..ledger import LedgerError
from ..mail import ImapMailSource, MailError
from ..schemas import MONETARY_FIELDS, format_amount
from ..services import (
    BATCH_JOB,
    BatchScheduler,
    BatchStepResult,
    ClosureBatchProcessor,
    FindingKind,
    IngestResult,
    MailIngestService,
    SqliteJobScheduler,
)
from ..state_store import StateStore
from ..storage import (
    LocalFolderStore,
    cleanup_empty_folders,
    count_duplicate_files,
    get_folder_stats,
    organize_all_files,
    remove_duplicate_files,
)

logger = logging.getLogger(__name__)

SAMPLE_CLOSURE_TEXT = (
    "Razon Social: Cafe de Barrio - Sucursal Centro\n"
    "Closure date: 15/07/2025 14:30:00\n"
    "Opening cash: $ 1.500,00\n"
    "Total sales: $ 45.230,75\n"
    "Cash: $ 25.100,00\n"
    "Cards: $ 18.130,75\n"
    "Digital: $ 2.000,00\n"
    "Closing cash: $ 3.200,50\n"
    "Withdrawal at Closure\n"
    "-$ 23.400,50\n"
)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def parse_day(value: str) -> date:
    """argparse type for YYYY-MM-DD or YYYY/MM/DD."""
    try:
        return datetime.strptime(value.strip().replace("/", "-"), "%Y-%m-%d").date()
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r} (use YYYY-MM-DD)") from e


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="cashflow-automator",
        description="Extract cash closure reports and fill them into the ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    # batch processing
    subparsers.add_parser("start", help="Start batch processing of the source folder")
    subparsers.add_parser("continue", help="Process the next batch now")
    subparsers.add_parser("run-due", help="Run scheduled continuations that are due (cron)")
    subparsers.add_parser("pause", help="Pause batch processing")
    subparsers.add_parser("resume", help="Resume batch processing")
    subparsers.add_parser("status", help="Show processing status")

    # mail
    ingest_parser = subparsers.add_parser("ingest-mail", help="Save closure mail attachments")
    ingest_parser.add_argument("--from", dest="date_from", type=parse_day, required=True)
    ingest_parser.add_argument("--to", dest="date_to", type=parse_day, required=True)
    ingest_parser.add_argument(
        "--force",
        action="store_true",
        help="Process mails that are already in the index",
    )
    ingest_parser.add_argument(
        "--ignore-cache",
        action="store_true",
        help="Recreate files that already exist",
    )

    reprocess_parser = subparsers.add_parser(
        "reprocess-date", help="Ingest one day of mail again, recreating its files"
    )
    reprocess_parser.add_argument("date", type=parse_day)
    reprocess_parser.add_argument(
        "--keep-index",
        action="store_true",
        help="Do not remove the day's entries from the index first",
    )

    diagnose_parser = subparsers.add_parser(
        "diagnose", help="Compare mails, index and files for a date range"
    )
    diagnose_parser.add_argument("--from", dest="date_from", type=parse_day, required=True)
    diagnose_parser.add_argument("--to", dest="date_to", type=parse_day, required=True)
    diagnose_parser.add_argument(
        "--backfill",
        action="store_true",
        help="Add mails whose files exist to the index",
    )

    # folders
    process_date_parser = subparsers.add_parser(
        "process-date", help="Re-extract one date folder into the ledger"
    )
    process_date_parser.add_argument("date", type=parse_day)

    subparsers.add_parser("organize", help="Move root PDFs into their date folders")
    subparsers.add_parser("folder-stats", help="Show date folder statistics")
    subparsers.add_parser("cleanup-folders", help="Remove empty date folders")

    duplicates_parser = subparsers.add_parser("duplicates", help="Find duplicate file names")
    duplicates_parser.add_argument(
        "--remove",
        action="store_true",
        help="Trash every copy but the first",
    )

    test_parser = subparsers.add_parser("test-extract", help="Run the extractor on a file")
    test_parser.add_argument(
        "file",
        type=Path,
        nargs="?",
        help="PDF or text file (default: built-in sample)",
    )

    return parser


def _build_scheduler(config: Config) -> BatchScheduler:
    store = StateStore(config.state_db_path)
    return BatchScheduler(config, store, SqliteJobScheduler(store))


def _print_step(result: BatchStepResult) -> None:
    icons = {
        "COMPLETED": "✓",
        "CONTINUED": "⏭️ ",
        "TIME_LIMIT": "⏱️ ",
        "RETRYING": "⚠️ ",
        "ERROR_MULTIPLE": "❌",
        "PAUSED": "⏸️ ",
    }
    outcome = result.outcome.value
    print(f"\n{icons.get(outcome, '')} Batch {result.batch_number}: {outcome}")
    if result.selected:
        print(f"  Selected:    {result.selected}")
        print(f"  Successful:  {result.succeeded}")
        print(f"  Failed:      {result.failed}")
        print(f"  Remaining:   {result.remaining}")
    print(f"  Total processed: {result.state.total_processed_count}")
    if result.error is not None:
        print(f"  Error: {result.error}")


def _step_exit_code(result: BatchStepResult) -> int:
    return 1 if result.outcome.value == "ERROR_MULTIPLE" else 0


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ Config already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def cmd_start(config: Config) -> int:
    """Start batch processing."""
    print(f"🚀 Starting batch processing of {config.source_dir}")
    result = _build_scheduler(config).start()
    _print_step(result)
    return _step_exit_code(result)


def cmd_continue(config: Config) -> int:
    """Run the next batch immediately."""
    result = _build_scheduler(config).run_batch()
    _print_step(result)
    return _step_exit_code(result)


def cmd_run_due(config: Config) -> int:
    """Execute scheduled continuations that are due."""
    store = StateStore(config.state_db_path)
    jobs = SqliteJobScheduler(store)
    scheduler = BatchScheduler(config, store, jobs)

    results: list[BatchStepResult] = []

    def run_batch() -> None:
        results.append(scheduler.run_batch())

    executed = jobs.run_due({BATCH_JOB: run_batch})
    if not executed:
        logger.debug("No scheduled jobs due")
        return 0
    for result in results:
        _print_step(result)
    return max((_step_exit_code(r) for r in results), default=0)


def cmd_pause(config: Config) -> int:
    _build_scheduler(config).pause()
    print("⏸️  Processing paused")
    return 0


def cmd_resume(config: Config) -> int:
    _build_scheduler(config).resume()
    print(f"▶️  Processing resumed, next batch in {config.scheduler.delay_seconds}s")
    return 0


def cmd_status(config: Config) -> int:
    """Show processing status."""
    status = _build_scheduler(config).status()
    state = status.state

    print("\n📊 Processing Status")
    print("=" * 40)
    print(f"  Status:                 {'ACTIVE 🟢' if state.active else 'PAUSED 🔴'}")
    print(f"  Current batch:          {state.current_batch_number}")
    print(f"  Files processed:        {state.total_processed_count}")
    print(f"  Failed attempts:        {state.failed_attempt_count}")
    if state.started_at:
        print(f"  Started:                {state.started_at}")
    if state.last_outcome:
        print(f"  Last outcome:           {state.last_outcome}")
    if state.last_error:
        print(f"  Last error:             {state.last_error}")
    print(f"  Pending files in root:  {status.pending_files}")
    if status.batches_remaining:
        print(f"  Batches remaining:      ~{status.batches_remaining}")
        print(f"  Estimated time:         ~{status.estimated_minutes} minutes")
    print(f"  Scheduled continuations: {len(status.scheduled)}")
    print(f"  Batch attempts:         {status.stats['batch_attempts']}")
    print(f"  Batch errors:           {status.stats['batch_errors']}")
    print()
    return 0


def _print_ingest(result: IngestResult) -> None:
    stats = result.stats
    print("\n📬 Mail Ingest Summary")
    print("=" * 40)
    print(f"  Emails found:           {stats.found}")
    print(f"  Already processed:      {stats.already_processed}")
    print(f"  Newly processed:        {stats.newly_processed}")
    print(f"  Files created:          {stats.files_created}")
    print(f"  Files already existed:  {stats.files_existing}")
    print(f"  Errors:                 {stats.errors}")
    if result.time_limit_reached:
        print("  ⏱️  Time limit reached, run again to continue")
    for name in result.created_files:
        print(f"  📄 {name}")
    print()


def cmd_ingest_mail(
    config: Config, date_from: date, date_to: date, forced: bool, ignore_cache: bool
) -> int:
    """Save closure mail attachments for a date range."""
    try:
        with ImapMailSource(config.mail) as source:
            result = MailIngestService(config, source).ingest(
                date_from, date_to, forced=forced, ignore_cache=ignore_cache
            )
    except MailError as e:
        print(f"❌ Mail error: {e}")
        return 1
    _print_ingest(result)
    return 0


def cmd_reprocess_date(config: Config, day: date, keep_index: bool) -> int:
    """Ingest one day of mail again."""
    try:
        with ImapMailSource(config.mail) as source:
            result = MailIngestService(config, source).reprocess_date(
                day, remove_from_index=not keep_index
            )
    except MailError as e:
        print(f"❌ Mail error: {e}")
        return 1
    _print_ingest(result)
    return 0


def cmd_diagnose(config: Config, date_from: date, date_to: date, backfill: bool) -> int:
    """Cross-check mails, index and files."""
    try:
        with ImapMailSource(config.mail) as source:
            report = MailIngestService(config, source).diagnose(
                date_from, date_to, backfill=backfill
            )
    except MailError as e:
        print(f"❌ Mail error: {e}")
        return 1

    print("\n🩺 Diagnosis")
    print("=" * 40)
    print(f"  Emails analyzed:        {report.analyzed}")
    for kind in FindingKind:
        print(f"  {kind.value + ':':<26}{len(report.of_kind(kind))}")
    for finding in report.findings:
        expected = f" → {finding.filename}" if finding.filename else ""
        print(f"  ⚠️  {finding.kind.value}: {finding.subject}{expected}")
    if backfill:
        print(f"  ✓ Backfilled {report.backfilled} index entries")
    print()
    return 0


def cmd_process_date(config: Config, day: date) -> int:
    """Re-extract one date folder into the ledger."""
    processor = ClosureBatchProcessor(config)
    try:
        result = processor.process_date_folder(day.isoformat())
    except FileNotFoundError as e:
        print(f"❌ {e}")
        return 1
    except LedgerError as e:
        print(f"❌ Ledger error: {e}")
        return 1

    print(f"\n📁 {day.isoformat()}: {result.succeeded} extracted, {result.failed} failed")
    if result.merge is not None:
        print(f"  Ledger: {result.merge.summary}")
    for failure in result.failures:
        print(f"  ❌ {failure.source_name}: {failure.reason}")
    return 0


def cmd_organize(config: Config) -> int:
    result = organize_all_files(LocalFolderStore(config.destination_dir))
    print(f"✓ Moved {len(result.moved)} file(s) into date folders")
    for name, error in result.failed:
        print(f"  ❌ {name}: {error}")
    return 0


def cmd_folder_stats(config: Config) -> int:
    stats = get_folder_stats(LocalFolderStore(config.destination_dir))

    print("\n🗂️  Folder Statistics")
    print("=" * 40)
    print(f"  Total files:   {stats.total_files}")
    print(f"  PDF files:     {stats.total_pdfs}")
    print(f"  Date folders:  {stats.date_folders}")
    print(f"  Total size:    {stats.total_size_mb:.2f} MB")
    for name in sorted(stats.by_date):
        folder = stats.by_date[name]
        print(f"   • {name}: {folder.pdf_files} PDFs, {folder.total_files} total files")
    print()
    return 0


def cmd_cleanup_folders(config: Config) -> int:
    removed = cleanup_empty_folders(LocalFolderStore(config.destination_dir))
    print(f"✓ Removed {removed} empty folder(s)")
    return 0


def cmd_duplicates(config: Config, remove: bool) -> int:
    store = LocalFolderStore(config.destination_dir)
    if remove:
        removed = remove_duplicate_files(store)
        print(f"✓ Moved {removed} duplicate file(s) to trash")
    else:
        names, files = count_duplicate_files(store)
        print(f"🔍 {names} duplicated name(s), {files} file(s) would be removed")
    return 0


def cmd_test_extract(config: Config, file: Path | None) -> int:
    """Run the extractor and print the parsed record."""
    extractor = ClosureExtractor(config.extraction.anchors, config.extraction.shift_cutoff_hour)
    try:
        if file is None:
            text, name = SAMPLE_CLOSURE_TEXT, "sample.pdf"
        elif file.suffix.lower() == ".pdf":
            text, name = read_pdf_text(file), file.name
        else:
            text, name = file.read_text(encoding="utf-8"), file.name
        record = extractor.extract(text, name)
    except ExtractionError as e:
        print(f"❌ {e}")
        return 1
    except OSError as e:
        print(f"❌ Could not read {file}: {e}")
        return 1

    print("\n🧪 Data Extraction Test")
    print("=" * 40)
    print(f"  Branch:  {record.branch or '-'}")
    print(f"  Date:    {record.closure_date}")
    print(f"  Time:    {record.closure_time}")
    print(f"  Shift:   {record.shift.value}")
    print(f"  Key:     {record.composite_key}")
    for field_name in MONETARY_FIELDS:
        label = field_name.replace("_", " ").capitalize()
        print(f"  {label + ':':<18}{format_amount(getattr(record, field_name))}")
    print()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return 1

    # Route to command
    if parsed.command == "start":
        return cmd_start(config)
    elif parsed.command == "continue":
        return cmd_continue(config)
    elif parsed.command == "run-due":
        return cmd_run_due(config)
    elif parsed.command == "pause":
        return cmd_pause(config)
    elif parsed.command == "resume":
        return cmd_resume(config)
    elif parsed.command == "status":
        return cmd_status(config)
    elif parsed.command == "ingest-mail":
        return cmd_ingest_mail(
            config, parsed.date_from, parsed.date_to, parsed.force, parsed.ignore_cache
        )
    elif parsed.command == "reprocess-date":
        return cmd_reprocess_date(config, parsed.date, parsed.keep_index)
    elif parsed.command == "diagnose":
        return cmd_diagnose(config, parsed.date_from, parsed.date_to, parsed.backfill)
    elif parsed.command == "process-date":
        return cmd_process_date(config, parsed.date)
    elif parsed.command == "organize":
        return cmd_organize(config)
    elif parsed.command == "folder-stats":
        return cmd_folder_stats(config)
    elif parsed.command == "cleanup-folders":
        return cmd_cleanup_folders(config)
    elif parsed.command == "duplicates":
        return cmd_duplicates(config, parsed.remove)
    elif parsed.command == "test-extract":
        return cmd_test_extract(config, parsed.file)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
