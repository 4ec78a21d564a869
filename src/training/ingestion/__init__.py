"""Background ingestion of training documents.

Provides:
- IngestionOrchestrator: queue-backed worker pool running the per-document
  state machine (extract, chunk, embed, persist)
- DocumentLockRegistry / RunHandle: one active run per document, with
  cooperative cancellation
"""

from src.training.ingestion.locks import DocumentLockRegistry, RunHandle
from src.training.ingestion.orchestrator import IngestionOrchestrator

__all__ = [
    "DocumentLockRegistry",
    "IngestionOrchestrator",
    "RunHandle",
]
