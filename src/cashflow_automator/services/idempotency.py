"""
Idempotency guard.

Combines the durable processed index with the destination artifact cache
and owns the buffer of identifiers waiting to be appended to the index.

Decision rules:
- Item: skipped when not forced and its identifier is already indexed
- Artifact: skipped when the cache is consulted and already holds the name
- Marking: an item is marked processed when it created at least one
  artifact, or unconditionally in forced mode
- Marked identifiers are appended to the index in groups of
  write_batch_size; flush() writes whatever is left
"""

import logging
from collections.abc import Iterable

from ..state_store.processed_index import ProcessedIndex

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    """
    Per-run idempotency decisions.

    forced bypasses the index check only; ignore_cache bypasses the
    artifact cache check. Reprocessing a date sets both.
    """

    def __init__(
        self,
        index: ProcessedIndex,
        artifact_cache: Iterable[str] = (),
        write_batch_size: int = 8,
        forced: bool = False,
        ignore_cache: bool = False,
    ):
        self.index = index
        self.artifact_cache = frozenset(artifact_cache)
        self.write_batch_size = max(1, write_batch_size)
        self.forced = forced
        self.ignore_cache = ignore_cache
        self._pending: list[str] = []

    @property
    def pending(self) -> list[str]:
        """Identifiers marked but not yet written."""
        return list(self._pending)

    def is_processed(self, identifier: str) -> bool:
        return identifier in self.index or identifier in self._pending

    def should_skip_item(self, identifier: str) -> bool:
        return not self.forced and self.is_processed(identifier)

    def should_create_artifact(self, filename: str) -> bool:
        return self.ignore_cache or filename not in self.artifact_cache

    def mark_processed(self, identifier: str, artifacts_created: int) -> bool:
        """
        Buffer an identifier according to the marking rule.

        Returns:
            True if the item counts as processed
        """
        if artifacts_created <= 0 and not self.forced:
            return False

        if not self.is_processed(identifier):
            self._pending.append(identifier)
            if len(self._pending) >= self.write_batch_size:
                self.flush()
        return True

    def flush(self) -> int:
        """Append buffered identifiers in one write. Returns lines written."""
        if not self._pending:
            return 0
        batch, self._pending = self._pending, []
        try:
            return self.index.append(batch)
        except OSError:
            self._pending = batch + self._pending
            raise

    def flush_best_effort(self) -> int:
        """flush() for error paths: failures are logged, not raised."""
        try:
            written = self.flush()
        except OSError as e:
            logger.error(f"Could not save index progress: {e}")
            return 0
        if written:
            logger.info(f"Progress saved before error ({written} item(s))")
        return written
