"""Keyed run registry: at most one ingestion run per document.

The registry lives on a single event loop. try_acquire() checks and claims
a key without awaiting, so two concurrent requests for the same document
can never both succeed: the loser gets None immediately instead of
waiting.
"""

from __future__ import annotations

import uuid

import structlog

from src.training.errors import IngestionCancelled

logger = structlog.get_logger(__name__)


class RunHandle:
    """Ownership token of one ingestion run.

    Cancellation is cooperative: cancel() only sets a flag, and the run
    stops the next time it calls checkpoint().
    """

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        self.run_id = str(uuid.uuid4())
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def checkpoint(self) -> None:
        """Raise IngestionCancelled if the run was cancelled."""
        if self._cancelled:
            raise IngestionCancelled(self.document_id)


class DocumentLockRegistry:
    """Maps document ids to the handle of their active run."""

    def __init__(self) -> None:
        self._runs: dict[str, RunHandle] = {}

    def try_acquire(self, document_id: str) -> RunHandle | None:
        """Claim the document, or return None if a run already holds it."""
        if document_id in self._runs:
            return None
        handle = RunHandle(document_id)
        self._runs[document_id] = handle
        return handle

    def release(self, handle: RunHandle) -> None:
        """Free the document if ``handle`` still owns it."""
        if self._runs.get(handle.document_id) is handle:
            del self._runs[handle.document_id]

    def get(self, document_id: str) -> RunHandle | None:
        return self._runs.get(document_id)

    def cancel(self, document_id: str) -> bool:
        """Cancel the document's active run. Returns False if none is active."""
        handle = self._runs.get(document_id)
        if handle is None:
            return False
        handle.cancel()
        logger.info("ingestion.run_cancel_requested", document_id=document_id, run_id=handle.run_id)
        return True

    def is_held(self, document_id: str) -> bool:
        return document_id in self._runs

    def __len__(self) -> int:
        return len(self._runs)
