"""Pipeline services: batch scheduling, document processing and mail ingest."""

from .batch_scheduler import BatchError, BatchScheduler, BatchStepResult, FatalRunFailure
from .closure_processing import ClosureBatchProcessor, PendingDocument, ProcessingResult
from .idempotency import IdempotencyGuard
from .job_scheduler import BATCH_JOB, JobScheduler, SqliteJobScheduler
from .mail_ingest import DiagnosticReport, FindingKind, IngestResult, MailIngestService

__all__ = [
    "BatchScheduler",
    "BatchStepResult",
    "BatchError",
    "FatalRunFailure",
    "ClosureBatchProcessor",
    "PendingDocument",
    "ProcessingResult",
    "IdempotencyGuard",
    "JobScheduler",
    "SqliteJobScheduler",
    "BATCH_JOB",
    "MailIngestService",
    "IngestResult",
    "DiagnosticReport",
    "FindingKind",
]
