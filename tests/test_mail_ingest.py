"""Tests for mail ingest, date reprocessing and diagnostics."""

from datetime import date, datetime, timezone

import pytest
from conftest import SAMPLE_SUBJECT, FakeMailSource, make_message

from cashflow_automator.mail import MailError
from cashflow_automator.schemas.keys import item_identifier
from cashflow_automator.services import FindingKind, MailIngestService
from cashflow_automator.state_store import ProcessedIndex
from cashflow_automator.storage import LocalFolderStore, StorageError

DAY = date(2025, 7, 15)
PALERMO_FILE = "Palermo_Soho_2025-07-15_MORNING.pdf"
BELGRANO_SUBJECT = "comercio Belgrano - Reporte de Cierre de Caja - 15/07/2025 - 18:10:00"


def identifier_of(message) -> str:
    return item_identifier(message.received_at, message.subject.strip())


class FailingStore(LocalFolderStore):
    """Store that fails to write selected filenames."""

    def __init__(self, root, fail_on, error):
        super().__init__(root)
        self.fail_on = fail_on
        self.error = error

    def create_file(self, name, data, folder=None):
        if name in self.fail_on:
            raise self.error
        return super().create_file(name, data, folder)


class SlowStore(LocalFolderStore):
    """Store whose writes advance a fake clock."""

    def __init__(self, root, clock, seconds):
        super().__init__(root)
        self.clock = clock
        self.seconds = seconds

    def create_file(self, name, data, folder=None):
        self.clock.advance(self.seconds)
        return super().create_file(name, data, folder)


class TestIngest:
    def test_creates_named_file_and_indexes_mail(self, config):
        message = make_message()
        service = MailIngestService(config, FakeMailSource([message]))

        result = service.ingest(DAY, DAY)

        assert result.stats.found == 1
        assert result.stats.newly_processed == 1
        assert result.created_files == [PALERMO_FILE]
        assert (config.destination_dir / PALERMO_FILE).read_bytes() == b"%PDF-1.4 1-0"
        assert identifier_of(message) in ProcessedIndex(config.index_path)

    def test_second_run_creates_nothing(self, config):
        source = FakeMailSource([make_message()])
        MailIngestService(config, source).ingest(DAY, DAY)

        result = MailIngestService(config, source).ingest(DAY, DAY)

        assert result.stats.already_processed == 1
        assert result.stats.files_created == 0
        assert config.index_path.read_text(encoding="utf-8").count("\n") == 1

    def test_several_pdfs_get_attachment_suffix(self, config):
        service = MailIngestService(config, FakeMailSource([make_message(pdf_count=2)]))

        result = service.ingest(DAY, DAY)

        assert result.created_files == [
            "Palermo_Soho_2025-07-15_MORNING_A1.pdf",
            "Palermo_Soho_2025-07-15_MORNING_A2.pdf",
        ]

    def test_evening_shift_from_subject_time(self, config):
        service = MailIngestService(
            config, FakeMailSource([make_message(subject=BELGRANO_SUBJECT)])
        )
        assert service.ingest(DAY, DAY).created_files == ["Belgrano_2025-07-15_EVENING.pdf"]

    def test_existing_file_not_recreated_and_mail_not_indexed(self, config):
        (config.destination_dir / PALERMO_FILE).write_bytes(b"old")
        message = make_message()

        result = MailIngestService(config, FakeMailSource([message])).ingest(DAY, DAY)

        assert result.stats.files_existing == 1
        assert result.stats.newly_processed == 0
        assert (config.destination_dir / PALERMO_FILE).read_bytes() == b"old"
        assert identifier_of(message) not in ProcessedIndex(config.index_path)

    def test_file_in_date_folder_counts_as_existing(self, config):
        folder = config.destination_dir / "2025-07-15"
        folder.mkdir()
        (folder / PALERMO_FILE).write_bytes(b"old")

        result = MailIngestService(config, FakeMailSource([make_message()])).ingest(DAY, DAY)

        assert result.stats.files_existing == 1
        assert not (config.destination_dir / PALERMO_FILE).exists()

    def test_forced_reprocesses_indexed_mail_but_keeps_cached_files(self, config):
        source = FakeMailSource([make_message()])
        MailIngestService(config, source).ingest(DAY, DAY)
        (config.destination_dir / PALERMO_FILE).write_bytes(b"old")

        result = MailIngestService(config, source).ingest(DAY, DAY, forced=True)

        assert result.stats.already_processed == 0
        assert result.stats.files_existing == 1
        assert result.stats.newly_processed == 1
        assert (config.destination_dir / PALERMO_FILE).read_bytes() == b"old"

    def test_repeated_forced_runs_keep_one_index_line(self, config):
        message = make_message()
        source = FakeMailSource([message])
        MailIngestService(config, source).ingest(DAY, DAY)
        MailIngestService(config, source).ingest(DAY, DAY, forced=True)
        MailIngestService(config, source).ingest(DAY, DAY, forced=True)

        lines = config.index_path.read_text(encoding="utf-8").splitlines()
        assert lines == [identifier_of(message)]

    def test_ignore_cache_recreates_files(self, config):
        (config.destination_dir / PALERMO_FILE).write_bytes(b"old")

        result = MailIngestService(config, FakeMailSource([make_message()])).ingest(
            DAY, DAY, ignore_cache=True
        )

        assert result.stats.files_created == 1
        assert (config.destination_dir / PALERMO_FILE).read_bytes() == b"%PDF-1.4 1-0"

    def test_invalid_subject_counts_as_error(self, config):
        message = make_message(subject="Reporte de Cierre de Caja sin formato")

        result = MailIngestService(config, FakeMailSource([message])).ingest(DAY, DAY)

        assert result.stats.errors == 1
        assert result.created_files == []
        assert identifier_of(message) not in ProcessedIndex(config.index_path)

    def test_mail_without_pdf_skipped(self, config):
        message = make_message(pdf_count=0)

        result = MailIngestService(config, FakeMailSource([message])).ingest(DAY, DAY)

        assert result.stats.errors == 0
        assert result.stats.newly_processed == 0
        assert identifier_of(message) not in ProcessedIndex(config.index_path)

    def test_no_messages(self, config):
        result = MailIngestService(config, FakeMailSource([])).ingest(DAY, DAY)
        assert result.stats.found == 0

    def test_storage_error_leaves_mail_unindexed(self, config):
        first = make_message(uid="1")
        second = make_message(subject=BELGRANO_SUBJECT, uid="2")
        store = FailingStore(
            config.destination_dir, {PALERMO_FILE}, StorageError("disk full")
        )
        service = MailIngestService(config, FakeMailSource([first, second]), store=store)

        result = service.ingest(DAY, DAY)

        index = ProcessedIndex(config.index_path)
        assert result.stats.errors == 1
        assert identifier_of(first) not in index
        assert identifier_of(second) in index

    def test_unexpected_error_saves_progress_then_raises(self, config):
        # write_batch_size is 2, so the first mail is still buffered when the second fails
        first = make_message(subject=BELGRANO_SUBJECT, uid="1")
        second = make_message(uid="2")
        store = FailingStore(config.destination_dir, {PALERMO_FILE}, RuntimeError("boom"))
        service = MailIngestService(config, FakeMailSource([first, second]), store=store)

        with pytest.raises(RuntimeError):
            service.ingest(DAY, DAY)

        assert identifier_of(first) in ProcessedIndex(config.index_path)

    def test_search_failure_propagates(self, config):
        source = FakeMailSource(error=MailError("connection reset"))
        with pytest.raises(MailError):
            MailIngestService(config, source).ingest(DAY, DAY)

    def test_time_limit_stops_before_next_mail(self, config, fake_clock):
        first = make_message(uid="1")
        second = make_message(subject=BELGRANO_SUBJECT, uid="2")
        store = SlowStore(config.destination_dir, fake_clock, seconds=400)
        service = MailIngestService(
            config, FakeMailSource([first, second]), store=store, clock=fake_clock.monotonic
        )

        result = service.ingest(DAY, DAY)

        assert result.time_limit_reached is True
        assert result.stats.found == 1
        index = ProcessedIndex(config.index_path)
        assert identifier_of(first) in index
        assert identifier_of(second) not in index


class TestReprocessDate:
    def test_recreates_files_of_the_day(self, config):
        message = make_message()
        source = FakeMailSource([message])
        MailIngestService(config, source).ingest(DAY, DAY)
        (config.destination_dir / PALERMO_FILE).write_bytes(b"tampered")

        result = MailIngestService(config, source).reprocess_date(DAY)

        assert result.stats.files_created == 1
        assert (config.destination_dir / PALERMO_FILE).read_bytes() == b"%PDF-1.4 1-0"
        lines = config.index_path.read_text(encoding="utf-8").splitlines()
        assert lines == [identifier_of(message)]

    def test_other_days_stay_indexed(self, config):
        other = make_message(
            subject="comercio Palermo Soho - Reporte de Cierre de Caja - 16/07/2025 - 10:00:00",
            received_at=datetime(2025, 7, 16, 13, 0, tzinfo=timezone.utc),
            uid="9",
        )
        source = FakeMailSource([make_message(), other])
        MailIngestService(config, source).ingest(DAY, date(2025, 7, 16))

        MailIngestService(config, source).reprocess_date(DAY)

        assert identifier_of(other) in ProcessedIndex(config.index_path)
        assert source.searches[-1] == (DAY, DAY)


class TestDiagnose:
    def test_findings_and_backfill(self, config):
        indexed_missing = make_message(uid="1")
        not_indexed = make_message(subject=BELGRANO_SUBJECT, uid="2")
        invalid = make_message(subject="Reporte de Cierre de Caja ???", uid="3")
        ProcessedIndex(config.index_path).append([identifier_of(indexed_missing)])
        (config.destination_dir / "Belgrano_2025-07-15_EVENING.pdf").write_bytes(b"x")

        service = MailIngestService(
            config, FakeMailSource([indexed_missing, not_indexed, invalid])
        )
        report = service.diagnose(DAY, DAY, backfill=True)

        assert report.analyzed == 3
        assert [f.identifier for f in report.of_kind(FindingKind.INDEXED_BUT_MISSING_FILE)] == [
            identifier_of(indexed_missing)
        ]
        assert [f.filename for f in report.of_kind(FindingKind.ARTIFACT_NOT_INDEXED)] == [
            "Belgrano_2025-07-15_EVENING.pdf"
        ]
        assert len(report.of_kind(FindingKind.INVALID_FORMAT)) == 1
        assert report.backfilled == 1
        assert identifier_of(not_indexed) in ProcessedIndex(config.index_path)

    def test_without_backfill_index_untouched(self, config):
        message = make_message()
        (config.destination_dir / PALERMO_FILE).write_bytes(b"x")

        report = MailIngestService(config, FakeMailSource([message])).diagnose(DAY, DAY)

        assert report.backfilled == 0
        assert identifier_of(message) not in ProcessedIndex(config.index_path)

    def test_multi_pdf_mail_checks_first_suffixed_name(self, config):
        message = make_message(pdf_count=2)
        (config.destination_dir / "Palermo_Soho_2025-07-15_MORNING_A1.pdf").write_bytes(b"x")

        report = MailIngestService(config, FakeMailSource([message])).diagnose(DAY, DAY)

        assert [f.kind for f in report.findings] == [FindingKind.ARTIFACT_NOT_INDEXED]
