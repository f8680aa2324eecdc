"""Test fixtures and utilities."""

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest
from openpyxl import Workbook

from cashflow_automator.config import Config, IndexConfig, LedgerConfig, SchedulerConfig
from cashflow_automator.extractors import ExtractionError
from cashflow_automator.mail import MailAttachment, MailMessage

# Closure report as printed by the point-of-sale system
SAMPLE_CLOSURE_TEXT_ES = """
CIERRE DE CAJA
Razon Social: CAFE DE BARRIO - Palermo
CUIT: 30-71234567-8
Fecha de cierre: 15/07/2025 14:30:00
Cajero: Maria

Efectivo en caja apertura: $ 1.500,00
Total de Ventas: $ 45.230,75
Efectivo: $ 25.100,00
Tarjetas: $ 18.130,75
QR: $ 2.000,00
Efectivo en caja cierre: $ 3.200,50

Retiro por Cierre
Importe
-$ 23.400,50
"""

SAMPLE_CLOSURE_TEXT_EN = """
Razon Social: Cafe de Barrio - Belgrano
Closure date: 15/07/2025 18:05:10
Opening cash: $ 2.000,00
Total sales: $ 12.345,67
Cash: $ 8.000,00
Cards: $ 4.345,67
Closing cash: $ 1.000,00
Withdrawal at Closure - $ 9.000,00
"""

SAMPLE_SUBJECT = "comercio Palermo Soho - Reporte de Cierre de Caja - 15/07/2025 - 14:30:00"


def closure_text(
    branch: str = "Palermo",
    closure_date: str = "15/07/2025",
    closure_time: str = "14:30:00",
    total_sales: str = "45.230,75",
) -> str:
    """Minimal closure report text with the given key fields."""
    return (
        f"Razon Social: CAFE DE BARRIO - {branch}\n"
        f"Fecha de cierre: {closure_date} {closure_time}\n"
        f"Efectivo en caja apertura: $ 1.500,00\n"
        f"Total de Ventas: $ {total_sales}\n"
    )


class FakeClock:
    """Controllable monotonic and wall-clock time."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = 1000.0
        self.wall = start or datetime(2025, 7, 15, 12, 0, tzinfo=timezone.utc)

    def monotonic(self) -> float:
        return self.current

    def now(self) -> datetime:
        return self.wall

    def advance(self, seconds: float) -> None:
        self.current += seconds
        self.wall += timedelta(seconds=seconds)


class InMemoryJobScheduler:
    """JobScheduler that only records what was asked of it."""

    def __init__(self):
        self.scheduled: list[tuple[float, str]] = []
        self.cancelled: list[str] = []

    def schedule_after(self, delay_seconds: float, job_name: str) -> None:
        self.scheduled.append((delay_seconds, job_name))

    def cancel_all(self, job_name: str) -> int:
        removed = len([j for j in self.scheduled if j[1] == job_name])
        self.scheduled = [j for j in self.scheduled if j[1] != job_name]
        self.cancelled.append(job_name)
        return removed

    def pending(self, job_name: Optional[str] = None) -> list[str]:
        return [name for _, name in self.scheduled if job_name is None or name == job_name]


class FakeMailSource:
    """MailSource over a fixed list of messages."""

    def __init__(
        self, messages: Optional[list[MailMessage]] = None, error: Optional[Exception] = None
    ):
        self.messages = messages or []
        self.error = error
        self.searches: list[tuple[date, date]] = []

    def search(self, date_from: date, date_to: date) -> list[MailMessage]:
        self.searches.append((date_from, date_to))
        if self.error is not None:
            raise self.error
        return [
            m for m in self.messages if date_from <= m.received_at.date() <= date_to
        ]


class FakeTextReader:
    """Text reader keyed by filename; unknown files have no text."""

    def __init__(self, texts: Optional[dict[str, object]] = None):
        self.texts: dict[str, object] = dict(texts or {})
        self.calls: list[str] = []

    def __call__(self, path: Path) -> str:
        name = Path(path).name
        self.calls.append(name)
        value = self.texts.get(name)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise ExtractionError(name, "PDF without extractable text")
        return str(value)


def make_message(
    subject: str = SAMPLE_SUBJECT,
    received_at: Optional[datetime] = None,
    pdf_count: int = 1,
    uid: str = "1",
) -> MailMessage:
    attachments = [
        MailAttachment(f"cierre_{i}.pdf", "application/pdf", f"%PDF-1.4 {uid}-{i}".encode())
        for i in range(pdf_count)
    ]
    return MailMessage(
        uid=uid,
        subject=subject,
        received_at=received_at or datetime(2025, 7, 15, 17, 31, 2, tzinfo=timezone.utc),
        attachments=attachments,
    )


def write_ledger(path: Path, rows: list[list[object]], sheet_name: str = "Control 2025") -> Path:
    """Create a ledger workbook with the default headers and the given rows."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_name
    sheet.append(
        [
            "Date",
            "Shift",
            "Branch",
            "Opening Cash",
            "Cash Sales",
            "Total Sales",
            "Card Payments",
            "Digital Payments",
            "Closing Cash",
            "Cash Withdrawal",
        ]
    )
    for row in rows:
        sheet.append(row)
    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
    return path


@pytest.fixture
def sample_closure_es() -> str:
    """Spanish closure report text."""
    return SAMPLE_CLOSURE_TEXT_ES


@pytest.fixture
def sample_closure_en() -> str:
    """English closure report text."""
    return SAMPLE_CLOSURE_TEXT_EN


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def job_scheduler() -> InMemoryJobScheduler:
    return InMemoryJobScheduler()


@pytest.fixture
def closures_dir(tmp_path) -> Path:
    folder = tmp_path / "closures"
    folder.mkdir()
    return folder


@pytest.fixture
def ledger_path(tmp_path) -> Path:
    """Ledger with one Morning and one Evening row for Palermo."""
    return write_ledger(
        tmp_path / "ledger.xlsx",
        [
            ["15/07/2025", "Mañana", "Palermo"],
            ["15/07/2025", "Tarde", "Palermo"],
            ["16/07/2025", "Mañana", "Palermo"],
        ],
    )


@pytest.fixture
def config(tmp_path, closures_dir, ledger_path, temp_db) -> Config:
    """Config rooted in tmp_path with small batches."""
    return Config(
        source_dir=closures_dir,
        destination_dir=closures_dir,
        state_db_path=temp_db,
        scheduler=SchedulerConfig(
            batch_size=3, delay_seconds=30, max_retries=3, max_execution_seconds=300
        ),
        index=IndexConfig(index_file_name="index.doc", write_batch_size=2),
        ledger=LedgerConfig(workbook_path=ledger_path),
    )
