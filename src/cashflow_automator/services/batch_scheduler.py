"""
Batch scheduler.

Processes pending closure PDFs in bounded batches and continues itself
through a delayed job instead of blocking between batches. All progress
lives in the durable RunState and processed index, so any invocation can
pick up where the previous one stopped.

States:
    Idle -> Active -> (Active ...) -> Completed | Failed (ERROR_MULTIPLE)
plus the active flag: when it is off the next batch exits without
scheduling a continuation (paused).

Only one invocation may run at a time. Nothing here takes a lock; the
cron/timer that runs `run-due` must not overlap with a manual `start`.
"""

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..config import Config
from ..state_store.processed_index import ProcessedIndex
from ..state_store.run_state import RunState, RunStateStore
from ..state_store.sqlite_store import BatchOutcome, StateStore, utc_now
from .closure_processing import ClosureBatchProcessor, DocumentFailure, ProcessingResult
from .idempotency import IdempotencyGuard
from .job_scheduler import BATCH_JOB, JobScheduler

logger = logging.getLogger(__name__)


class BatchError(Exception):
    """An exception escaped per-document handling and aborted a batch."""

    def __init__(self, batch_number: int, cause: BaseException):
        self.batch_number = batch_number
        self.cause = cause
        super().__init__(f"Batch {batch_number} error: {cause}")


class FatalRunFailure(Exception):
    """The retry limit was reached; the run stopped and needs a manual restart."""

    def __init__(self, batch_number: int, attempts: int, last_error: str):
        self.batch_number = batch_number
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Stopped after {attempts} failed attempts at batch {batch_number}: {last_error}"
        )


@dataclass
class BatchStepResult:
    """Outcome of one batch step."""

    outcome: BatchOutcome
    batch_number: int
    state: RunState
    pending: int = 0
    selected: int = 0
    succeeded: int = 0
    failed: int = 0
    remaining: int = 0
    processing: Optional[ProcessingResult] = None
    error: Optional[Exception] = None

    @property
    def continues(self) -> bool:
        return self.outcome in (
            BatchOutcome.CONTINUED,
            BatchOutcome.TIME_LIMIT,
            BatchOutcome.RETRYING,
        )


@dataclass
class SchedulerStatus:
    state: RunState
    pending_files: int
    batches_remaining: int
    estimated_minutes: int
    scheduled: list[str]
    stats: dict


class BatchScheduler:
    """
    Checkpointed batch runner.

    Args:
        config: Application configuration
        state_store: Durable property/audit store
        jobs: Delayed continuation primitive
        processor: Document processor (built from config when omitted)
        clock: Monotonic seconds, used for the time ceiling
        now: Wall-clock time, used for the run start timestamp
    """

    def __init__(
        self,
        config: Config,
        state_store: StateStore,
        jobs: JobScheduler,
        processor: Optional[ClosureBatchProcessor] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ):
        self.config = config
        self.settings = config.scheduler
        self.store = state_store
        self.run_states = RunStateStore(state_store)
        self.jobs = jobs
        self.processor = processor or ClosureBatchProcessor(config)
        self.clock = clock
        self.now = now

    def start(self) -> BatchStepResult:
        """Reset the run state and process the first batch right away."""
        self.jobs.cancel_all(BATCH_JOB)
        state = self.run_states.reset(self.now())

        logger.info("=== PROCESSING STARTED ===")
        logger.info(f"Folder: {self.config.source_dir}")
        logger.info(
            f"Batch size: {self.settings.batch_size} files, "
            f"{self.settings.delay_seconds}s delay"
        )
        logger.debug(f"Run started at {state.started_at}")
        return self.run_batch()

    def run_batch(self) -> BatchStepResult:
        """Process the next batch (no-op while paused)."""
        started = self.clock()
        state = self.run_states.load()

        if not state.active:
            logger.info("Processing paused")
            return BatchStepResult(BatchOutcome.PAUSED, state.current_batch_number, state)

        batch_number = state.current_batch_number
        logger.info(f"=== BATCH {batch_number} ===")
        logger.info(f"Total processed: {state.total_processed_count} files")

        guard: Optional[IdempotencyGuard] = None
        try:
            index = self.processor.open_index()
            guard = self.processor.new_guard(index)
            pending = self._pending(state, index)
            logger.info(f"Pending files in root folder: {len(pending)}")

            if not pending:
                logger.info("=== PROCESSING COMPLETED ===")
                logger.info("No more files to process")
                self._finish(state, BatchOutcome.COMPLETED)
                result = BatchStepResult(BatchOutcome.COMPLETED, batch_number, state)
                self._audit(state, result, started)
                return result

            batch = pending[: self.settings.batch_size]
            logger.info(f"Processing {len(batch)} files in this batch...")

            deadline = started + self.settings.max_execution_seconds

            def record_failure(failure: DocumentFailure) -> None:
                self.store.record_extraction_failure(
                    state.started_at, failure.identifier, failure.source_name, failure.reason
                )

            processing = self.processor.process(
                batch,
                guard,
                time_exceeded=lambda: self.clock() >= deadline,
                on_failure=record_failure,
            )
        except Exception as e:
            return self._handle_error(state, guard, e, started)

        result = BatchStepResult(
            outcome=BatchOutcome.CONTINUED,
            batch_number=batch_number,
            state=state,
            pending=len(pending),
            selected=len(batch),
            succeeded=processing.succeeded,
            failed=processing.failed,
            remaining=len(pending) - len(batch),
            processing=processing,
        )

        state.total_processed_count += processing.succeeded
        state.failed_attempt_count = 0

        if processing.time_limit_reached:
            # The batch number only advances when a batch runs to its end
            result.outcome = BatchOutcome.TIME_LIMIT
            result.remaining = len(pending) - processing.reached
            self.run_states.save(state)
            self._log_batch(result)
            self._schedule_next()
        else:
            state.current_batch_number += 1
            self.run_states.save(state)
            self._log_batch(result)
            if result.remaining > 0:
                self._schedule_next()
            else:
                logger.info("All batches completed")
                result.outcome = BatchOutcome.COMPLETED
                self._finish(state, BatchOutcome.COMPLETED)

        self._audit(state, result, started)
        return result

    def _pending(self, state: RunState, index: ProcessedIndex) -> list:
        failed_ids = self.store.get_failed_items(state.started_at)
        return self.processor.list_pending(exclude=failed_ids, index=index)

    def _handle_error(
        self,
        state: RunState,
        guard: Optional[IdempotencyGuard],
        error: Exception,
        started: float,
    ) -> BatchStepResult:
        batch_error = BatchError(state.current_batch_number, error)
        logger.exception(str(batch_error))

        if guard is not None:
            guard.flush_best_effort()

        attempts = state.failed_attempt_count + 1
        state.failed_attempt_count = attempts
        result = BatchStepResult(
            BatchOutcome.RETRYING, state.current_batch_number, state, error=batch_error
        )

        if attempts >= self.settings.max_retries:
            fatal = FatalRunFailure(state.current_batch_number, attempts, str(error))
            logger.error(str(fatal))
            result.outcome = BatchOutcome.ERROR_MULTIPLE
            result.error = fatal
            self._finish(state, BatchOutcome.ERROR_MULTIPLE, last_error=str(error))
        else:
            self.run_states.save(state)
            logger.info(f"Retry {attempts}/{self.settings.max_retries}")
            self._schedule_next()

        self._audit(state, result, started, error_message=str(error))
        return result

    def _schedule_next(self) -> None:
        self.jobs.cancel_all(BATCH_JOB)
        self.jobs.schedule_after(self.settings.delay_seconds, BATCH_JOB)
        logger.info(f"Next batch in {self.settings.delay_seconds} seconds...")

    def _finish(
        self, state: RunState, outcome: BatchOutcome, last_error: Optional[str] = None
    ) -> None:
        state.active = False
        state.last_outcome = outcome.value
        state.last_error = last_error
        self.run_states.save(state)
        self.jobs.cancel_all(BATCH_JOB)
        logger.info(f"Finished: {outcome.value} - {state.total_processed_count} files processed")

    def _log_batch(self, result: BatchStepResult) -> None:
        logger.info(f"=== BATCH {result.batch_number} RESULTS ===")
        logger.info(f"Successful: {result.succeeded}")
        logger.info(f"Failed: {result.failed}")
        logger.info(f"Total accumulated: {result.state.total_processed_count}")
        logger.info(f"Remaining: {result.remaining}")

    def _audit(
        self,
        state: RunState,
        result: BatchStepResult,
        started: float,
        error_message: Optional[str] = None,
    ) -> None:
        duration_ms = int(max(0.0, self.clock() - started) * 1000)
        self.store.create_batch_run(
            run_started_at=state.started_at,
            batch_number=result.batch_number,
            documents_selected=result.selected,
            succeeded=result.succeeded,
            failed=result.failed,
            outcome=result.outcome,
            duration_ms=duration_ms,
            error_message=error_message,
        )

    def pause(self) -> None:
        """Stop after the current batch; pending continuations are cancelled."""
        self.run_states.set_active(False)
        self.jobs.cancel_all(BATCH_JOB)

    def resume(self) -> None:
        """Re-enable processing and schedule the next batch."""
        self.run_states.set_active(True)
        self._schedule_next()

    def status(self) -> SchedulerStatus:
        state = self.run_states.load()
        pending = len(self._pending(state, self.processor.open_index()))
        batches = math.ceil(pending / self.settings.batch_size) if pending and state.active else 0
        return SchedulerStatus(
            state=state,
            pending_files=pending,
            batches_remaining=batches,
            estimated_minutes=round(batches * self.settings.delay_seconds / 60),
            scheduled=self.jobs.pending(BATCH_JOB),
            stats=self.store.get_stats(state.started_at or None),
        )
