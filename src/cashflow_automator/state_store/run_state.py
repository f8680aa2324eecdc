"""
Scheduler run state on top of the property store.

The property keys are fixed; values are strings, as in any key/value
property store. RunState is the typed view the scheduler passes around.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .sqlite_store import StateStore, to_iso, utc_now

logger = logging.getLogger(__name__)

KEY_ACTIVE = "processing_active"
KEY_BATCH = "current_batch"
KEY_PROCESSED = "files_processed"
KEY_FAILED_ATTEMPTS = "failed_attempts"
KEY_START_TIME = "start_time"
KEY_LAST_OUTCOME = "last_outcome"
KEY_LAST_ERROR = "last_error"


@dataclass
class RunState:
    """Durable progress of one scheduler run."""

    active: bool = False
    current_batch_number: int = 1
    total_processed_count: int = 0
    failed_attempt_count: int = 0
    started_at: str = ""  # ISO timestamp, identifies the run
    last_outcome: Optional[str] = None
    last_error: Optional[str] = None

    @classmethod
    def fresh(cls, now: Optional[datetime] = None) -> "RunState":
        """State of a run that is just starting."""
        return cls(
            active=True,
            current_batch_number=1,
            total_processed_count=0,
            failed_attempt_count=0,
            started_at=to_iso(now or utc_now()),
        )

    def to_properties(self) -> dict[str, str]:
        props = {
            KEY_ACTIVE: "true" if self.active else "false",
            KEY_BATCH: str(self.current_batch_number),
            KEY_PROCESSED: str(self.total_processed_count),
            KEY_FAILED_ATTEMPTS: str(self.failed_attempt_count),
            KEY_START_TIME: self.started_at,
        }
        if self.last_outcome is not None:
            props[KEY_LAST_OUTCOME] = self.last_outcome
        if self.last_error is not None:
            props[KEY_LAST_ERROR] = self.last_error
        return props

    @classmethod
    def from_properties(cls, props: dict[str, str]) -> "RunState":
        return cls(
            active=props.get(KEY_ACTIVE) == "true",
            current_batch_number=int(props.get(KEY_BATCH) or 1),
            total_processed_count=int(props.get(KEY_PROCESSED) or 0),
            failed_attempt_count=int(props.get(KEY_FAILED_ATTEMPTS) or 0),
            started_at=props.get(KEY_START_TIME, ""),
            last_outcome=props.get(KEY_LAST_OUTCOME),
            last_error=props.get(KEY_LAST_ERROR),
        )


class RunStateStore:
    """Load and save RunState through a StateStore's property table."""

    def __init__(self, state_store: StateStore):
        self.store = state_store

    def load(self) -> RunState:
        return RunState.from_properties(self.store.get_properties())

    def save(self, state: RunState) -> None:
        self.store.set_properties(state.to_properties())

    def reset(self, now: Optional[datetime] = None) -> RunState:
        """Start a new run: fresh counters, active, no previous outcome."""
        state = RunState.fresh(now)
        self.store.delete_properties([KEY_LAST_OUTCOME, KEY_LAST_ERROR])
        self.save(state)
        return state

    def set_active(self, active: bool) -> None:
        """Flip only the active flag (pause/resume)."""
        self.store.set_property(KEY_ACTIVE, "true" if active else "false")
        logger.info(f"Processing {'resumed' if active else 'paused'}")
