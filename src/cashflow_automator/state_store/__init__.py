"""
State Store.

Durable state for the pipeline:
- SQLite property store holding the scheduler RunState
- Scheduled continuations, per-run extraction failures, batch audit rows
- Plain-text processed-item index in the destination folder
"""

from .processed_index import ProcessedIndex
from .run_state import RunState, RunStateStore
from .sqlite_store import BatchOutcome, BatchRunRecord, ScheduledJob, StateStore

__all__ = [
    "StateStore",
    "BatchOutcome",
    "BatchRunRecord",
    "ScheduledJob",
    "RunState",
    "RunStateStore",
    "ProcessedIndex",
]
