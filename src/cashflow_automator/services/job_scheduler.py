"""
Delayed self-continuation.

The scheduler never sleeps between batches: it asks a JobScheduler to run
a named job after a delay and returns. SqliteJobScheduler stores due jobs
in the state database; `cashflow-automator run-due`, run every minute by
cron or a systemd timer, claims and executes them.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Optional, Protocol

from ..state_store.sqlite_store import StateStore, due_in, utc_now

logger = logging.getLogger(__name__)

# Job name of the batch scheduler's continuation
BATCH_JOB = "process_next_batch"


class JobScheduler(Protocol):
    """Run a named job after a delay; cancel every pending run of a job."""

    def schedule_after(self, delay_seconds: float, job_name: str) -> None: ...

    def cancel_all(self, job_name: str) -> int: ...

    def pending(self, job_name: Optional[str] = None) -> list[str]: ...


class SqliteJobScheduler:
    """JobScheduler backed by the scheduled_jobs table."""

    def __init__(self, state_store: StateStore, clock: Callable[[], datetime] = utc_now):
        self.store = state_store
        self.clock = clock

    def schedule_after(self, delay_seconds: float, job_name: str) -> None:
        due_at = due_in(delay_seconds, self.clock())
        job_id = self.store.schedule_job(job_name, due_at)
        logger.info(f"Scheduled {job_name} in {delay_seconds:g}s (job #{job_id})")

    def cancel_all(self, job_name: str) -> int:
        removed = self.store.cancel_jobs(job_name)
        if removed:
            logger.info(f"Cancelled {removed} pending {job_name} job(s)")
        return removed

    def pending(self, job_name: Optional[str] = None) -> list[str]:
        """Due times of pending jobs (ISO), soonest first."""
        return [job.due_at for job in self.store.get_pending_jobs(job_name)]

    def run_due(self, handlers: dict[str, Callable[[], object]]) -> int:
        """
        Claim due jobs and run their handlers in due order.

        Several due rows of the same job run it once. Unknown job names are
        logged and dropped.

        Returns:
            Number of handlers executed
        """
        claimed = self.store.claim_due_jobs(self.clock())
        executed = 0
        seen: set[str] = set()
        for job in claimed:
            if job.job_name in seen:
                continue
            seen.add(job.job_name)
            handler = handlers.get(job.job_name)
            if handler is None:
                logger.warning(f"No handler for scheduled job {job.job_name}, dropped")
                continue
            logger.info(f"Running scheduled job {job.job_name} (due {job.due_at})")
            handler()
            executed += 1
        return executed
