"""Error taxonomy for document ingestion and search.

Every error carries an ErrorKind so the ingestion orchestrator can record
failures against a document uniformly, and a ``retryable`` flag that drives
the retry policy:

- ValidationError: rejected upload, surfaced synchronously, never queued.
- ExtractionError: unreadable PDF, fatal to the run.
- EmbeddingTimeout / EmbeddingServiceError: transient, retried with backoff.
- EmbeddingRejected: bad model input, the passage is dropped.
- PersistenceError: failed chunk-set replace, retried as a whole.
- NotFoundError: document/tenant combination not visible to the caller.
- IngestionCancelled: the document was deleted while its run was in flight.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    validation = "validation"
    extraction = "extraction"
    embedding_timeout = "embedding_timeout"
    embedding_rejected = "embedding_rejected"
    embedding_service = "embedding_service"
    persistence = "persistence"
    not_found = "not_found"
    cancelled = "cancelled"
    internal = "internal"


class TrainingError(Exception):
    """Base class for all training library errors."""

    kind: ErrorKind = ErrorKind.internal
    retryable: bool = False


class ValidationError(TrainingError):
    """Upload rejected: wrong content type, empty or oversized file, bad metadata."""

    kind = ErrorKind.validation


class ExtractionError(TrainingError):
    """PDF could not be parsed, is password-protected, or holds no text."""

    kind = ErrorKind.extraction


class EmbeddingError(TrainingError):
    """Base class for embedding failures."""


class EmbeddingTimeout(EmbeddingError):
    """The embedding call did not answer in time."""

    kind = ErrorKind.embedding_timeout
    retryable = True


class EmbeddingRejected(EmbeddingError):
    """The model refused the input (too long or malformed)."""

    kind = ErrorKind.embedding_rejected


class EmbeddingServiceError(EmbeddingError):
    """Upstream failure of the embedding service."""

    kind = ErrorKind.embedding_service
    retryable = True


class PersistenceError(TrainingError):
    """The chunk store could not commit a unit of work."""

    kind = ErrorKind.persistence
    retryable = True


class NotFoundError(TrainingError):
    """Raised when a document does not exist or belongs to another tenant."""

    kind = ErrorKind.not_found

    def __init__(self, document_id: str, tenant_id: str | None = None) -> None:
        self.document_id = document_id
        self.tenant_id = tenant_id
        if tenant_id is None:
            super().__init__(f"Document not found: {document_id}")
        else:
            super().__init__(f"Document not found: {document_id} (tenant {tenant_id})")


class IngestionCancelled(TrainingError):
    """Raised at a checkpoint when the run's document was deleted."""

    kind = ErrorKind.cancelled

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Ingestion cancelled for document {document_id}")
