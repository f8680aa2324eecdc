"""
Configuration management (SSOT).

This module defines ALL configuration for the cash closure pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Batch constants (size, delay, retries, time ceiling) are read once and
  handed to the scheduler at construction; nothing reads them globally.
- Field anchors are regex fragments, matched case-insensitively.
- Secrets (IMAP password) come from the environment in production.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class SchedulerConfig:
    """Batch scheduler constants."""

    # Documents taken from the pending list per batch
    batch_size: int = 18
    # Delay before the next batch invocation (seconds)
    delay_seconds: int = 30
    # Consecutive failed batch attempts before the run is stopped
    max_retries: int = 3
    # Wall-clock ceiling for a single invocation (seconds)
    max_execution_seconds: int = 300


@dataclass
class FieldAnchors:
    """Label regex fragments that anchor each extracted field.

    Defaults accept the Spanish labels printed by the point-of-sale system
    as well as their English equivalents.
    """

    organization_marker: str = "razon social:"
    business_marker: str = "cafe de barrio"
    closure_date: str = r"(?:Fecha de cierre|Closure date):"
    opening_cash: str = r"(?:Efectivo en caja apertura|Opening cash):"
    total_sales: str = r"(?:Total de Ventas|Total sales):"
    # Line-anchored so "Opening cash:" / "Closing cash:" never match
    cash_sales: str = r"(?:^|\n)\s*(?:Efectivo|Cash):"
    card_sales: str = r"(?:Tarjetas|Cards):"
    digital_payments: str = r"(?:QR|Digital):"
    closing_cash: str = r"(?:Efectivo en (?:caja cierre|cierre de caja)|Closing cash):"
    cash_withdrawal: str = r"(?:Retiro\s+por\s+Cierre|Withdrawal\s+at\s+Closure)\s*-?"

    def amount_labels(self) -> dict[str, str]:
        """Anchors for fields matched by immediate adjacency."""
        return {
            "opening_cash": self.opening_cash,
            "total_sales": self.total_sales,
            "cash_sales": self.cash_sales,
            "card_sales": self.card_sales,
            "digital_payments": self.digital_payments,
            "closing_cash": self.closing_cash,
        }


@dataclass
class ExtractionConfig:
    """Record extraction settings."""

    # Closure hour below this is the morning shift
    shift_cutoff_hour: int = 16
    anchors: FieldAnchors = field(default_factory=FieldAnchors)


@dataclass
class IndexConfig:
    """Processed-item index settings."""

    # Index file lives in the destination root
    index_file_name: str = "index.doc"
    # Identifiers buffered before one append to the index
    write_batch_size: int = 8


@dataclass
class MailConfig:
    """Inbox (IMAP) settings."""

    host: str = ""
    port: int = 993
    username: str = ""
    password: str = ""
    mailbox: str = "INBOX"
    # Server-side subject filter
    search_subject: str = "Reporte de Cierre de Caja"
    # Groups: branch, DD/MM/YYYY, HH:MM:SS
    subject_pattern: str = (
        r"comercio\s+(.*?)\s+-\s+Reporte de Cierre de Caja\s+-\s+"
        r"(\d{2}/\d{2}/\d{4})\s+-\s+(\d{2}:\d{2}:\d{2})"
    )

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.username)


DEFAULT_LEDGER_COLUMNS = {
    "date": "Date",
    "shift": "Shift",
    "branch": "Branch",
    "opening_cash": "Opening Cash",
    "cash_sales": "Cash Sales",
    "total_sales": "Total Sales",
    "card_sales": "Card Payments",
    "digital_payments": "Digital Payments",
    "closing_cash": "Closing Cash",
    "cash_withdrawal": "Cash Withdrawal",
}


@dataclass
class LedgerConfig:
    """Ledger workbook settings.

    columns maps record field names (plus the key fields date/shift/branch)
    to the header text found in the sheet's first row.
    """

    workbook_path: Path = field(default_factory=lambda: Path("data/ledger.xlsx"))
    sheet_name: str = "Control 2025"
    columns: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LEDGER_COLUMNS))
    # Background colour (RGB hex) for rows that received a write
    highlight_color: str = "D9EAD3"


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    source_dir: Path = field(default_factory=lambda: Path("data/closures"))
    destination_dir: Path = field(default_factory=lambda: Path("data/closures"))
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)

    @property
    def index_path(self) -> Path:
        return self.destination_dir / self.index.index_file_name

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.scheduler.batch_size < 1:
            errors.append("scheduler.batch_size must be >= 1")
        if self.scheduler.max_retries < 1:
            errors.append("scheduler.max_retries must be >= 1")
        if self.scheduler.delay_seconds < 0:
            errors.append("scheduler.delay_seconds must be >= 0")
        if self.scheduler.max_execution_seconds <= 0:
            errors.append("scheduler.max_execution_seconds must be > 0")
        if not 0 <= self.extraction.shift_cutoff_hour <= 23:
            errors.append("extraction.shift_cutoff_hour must be between 0 and 23")
        if self.index.write_batch_size < 1:
            errors.append("index.write_batch_size must be >= 1")

        missing = [key for key in ("date", "shift", "branch") if key not in self.ledger.columns]
        if missing:
            errors.append(f"ledger.columns is missing key columns: {', '.join(missing)}")

        if self.mail.host and not self.mail.username:
            errors.append("mail.username is required when mail.host is set")

        return errors


def _env_path(name: str, fallback: str) -> Path:
    return Path(os.environ.get(name, fallback))


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - CASHFLOW_SOURCE_DIR
    - CASHFLOW_DESTINATION_DIR
    - CASHFLOW_STATE_DB
    - CASHFLOW_LEDGER_PATH
    - CASHFLOW_IMAP_HOST
    - CASHFLOW_IMAP_USER
    - CASHFLOW_IMAP_PASSWORD
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Scheduler
    sched_data = data.get("scheduler", {})
    scheduler = SchedulerConfig(
        batch_size=int(sched_data.get("batch_size", 18)),
        delay_seconds=int(sched_data.get("delay_seconds", 30)),
        max_retries=int(sched_data.get("max_retries", 3)),
        max_execution_seconds=int(sched_data.get("max_execution_seconds", 300)),
    )

    # Extraction (unknown anchor keys are rejected by the dataclass)
    extraction_data = data.get("extraction", {})
    anchors = FieldAnchors(**(extraction_data.get("anchors") or {}))
    extraction = ExtractionConfig(
        shift_cutoff_hour=int(extraction_data.get("shift_cutoff_hour", 16)),
        anchors=anchors,
    )

    # Index
    index_data = data.get("index", {})
    index = IndexConfig(
        index_file_name=index_data.get("index_file_name", "index.doc"),
        write_batch_size=int(index_data.get("write_batch_size", 8)),
    )

    # Mail
    mail_data = data.get("mail", {})
    defaults = MailConfig()
    mail = MailConfig(
        host=os.environ.get("CASHFLOW_IMAP_HOST", mail_data.get("host", "")),
        port=int(mail_data.get("port", 993)),
        username=os.environ.get("CASHFLOW_IMAP_USER", mail_data.get("username", "")),
        password=os.environ.get("CASHFLOW_IMAP_PASSWORD", mail_data.get("password", "")),
        mailbox=mail_data.get("mailbox", "INBOX"),
        search_subject=mail_data.get("search_subject", defaults.search_subject),
        subject_pattern=mail_data.get("subject_pattern", defaults.subject_pattern),
    )

    # Ledger
    ledger_data = data.get("ledger", {})
    columns = dict(DEFAULT_LEDGER_COLUMNS)
    columns.update(ledger_data.get("columns") or {})
    ledger = LedgerConfig(
        workbook_path=_env_path(
            "CASHFLOW_LEDGER_PATH", ledger_data.get("workbook_path", "data/ledger.xlsx")
        ),
        sheet_name=ledger_data.get("sheet_name", "Control 2025"),
        columns=columns,
        highlight_color=ledger_data.get("highlight_color", "D9EAD3"),
    )

    source_dir = _env_path("CASHFLOW_SOURCE_DIR", data.get("source_dir", "data/closures"))
    # The destination defaults to the source folder: ingested mail lands
    # where the batch scheduler looks for pending documents.
    destination_dir = _env_path(
        "CASHFLOW_DESTINATION_DIR", data.get("destination_dir", str(source_dir))
    )

    return Config(
        source_dir=source_dir,
        destination_dir=destination_dir,
        state_db_path=_env_path("CASHFLOW_STATE_DB", data.get("state_db_path", "data/state.db")),
        scheduler=scheduler,
        extraction=extraction,
        index=index,
        mail=mail,
        ledger=ledger,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Cash closure pipeline configuration
#
# source_dir: folder scanned for pending closure PDFs (root only)
# destination_dir: folder receiving mail attachments, date folders and index.doc
# Usually both point at the same folder.

source_dir: "data/closures"
destination_dir: "data/closures"
state_db_path: "data/state.db"

scheduler:
  batch_size: 18                # PDFs per batch
  delay_seconds: 30             # Pause between batches
  max_retries: 3                # Failed batch attempts before giving up
  max_execution_seconds: 300    # Wall-clock ceiling per invocation

extraction:
  shift_cutoff_hour: 16         # Closures before 16:00 belong to the morning shift
  anchors:
    organization_marker: "razon social:"
    business_marker: "cafe de barrio"

index:
  index_file_name: "index.doc"
  write_batch_size: 8           # Identifiers buffered per index append

mail:
  host: ""                      # IMAP host; leave empty to disable mail ingest
  port: 993
  username: ""
  password: ""                  # Prefer CASHFLOW_IMAP_PASSWORD
  mailbox: "INBOX"
  search_subject: "Reporte de Cierre de Caja"

ledger:
  workbook_path: "data/ledger.xlsx"
  sheet_name: "Control 2025"
  highlight_color: "D9EAD3"
  columns:                      # Header text of each ledger column
    date: "Date"
    shift: "Shift"
    branch: "Branch"
    opening_cash: "Opening Cash"
    cash_sales: "Cash Sales"
    total_sales: "Total Sales"
    card_sales: "Card Payments"
    digital_payments: "Digital Payments"
    closing_cash: "Closing Cash"
    cash_withdrawal: "Cash Withdrawal"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
