"""Pydantic models for the training document domain.

Defines the types shared by extraction, chunking, storage, ingestion and
search: documents with their descriptive metadata, chunks with embeddings,
ingestion status, and search hits. These models are the contract between
the store, the orchestrator, the search engine and the API layer.

Document types match the categories used by clubs:
- rotary_manual: Official Rotary manuals
- club_procedure: Club procedures
- leadership_training: Leadership training material
- internal_rules: Internal regulations
- project_guide: Project guides
- other: Anything else
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class DocumentType(str, Enum):
    rotary_manual = "rotary_manual"
    club_procedure = "club_procedure"
    leadership_training = "leadership_training"
    internal_rules = "internal_rules"
    project_guide = "project_guide"
    other = "other"


class IngestionState(str, Enum):
    """Per-document ingestion state machine.

    queued -> extracting -> chunking -> embedding -> persisting -> completed,
    with failed reachable from any non-terminal state, partially_completed
    when some passages permanently failed, and cancelled when the document
    was deleted mid-run.
    """

    queued = "queued"
    extracting = "extracting"
    chunking = "chunking"
    embedding = "embedding"
    persisting = "persisting"
    completed = "completed"
    partially_completed = "partially_completed"
    failed = "failed"
    cancelled = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        IngestionState.completed,
        IngestionState.partially_completed,
        IngestionState.failed,
        IngestionState.cancelled,
    }
)


class SubmitResult(str, Enum):
    """Answer to an ingestion request."""

    queued = "queued"
    already_running = "already_running"


# ── Documents ───────────────────────────────────────────────────────────────


class DocumentCreate(BaseModel):
    """Descriptive metadata supplied with an upload."""

    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    document_type: DocumentType = DocumentType.other
    is_active: bool = True

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value


class DocumentUpdate(BaseModel):
    """Partial metadata update (all fields optional)."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    document_type: DocumentType | None = None
    is_active: bool | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value


class DocumentRead(BaseModel):
    """A persisted training document.

    Attributes:
        id: Document UUID string.
        tenant_id: Owning club.
        title: Display title.
        description: Optional free-text description.
        source_path: Where the original PDF bytes are kept.
        uploaded_by: Identity of the uploading user.
        uploaded_at: Upload timestamp.
        document_type: Category tag.
        is_active: Inactive documents are excluded from search.
        chunk_count: Number of persisted chunks (0 until ingestion completes).
        ingestion_state: Last recorded ingestion state.
        ingestion_error: Message of the last ingestion failure, if any.
    """

    id: str
    tenant_id: str
    title: str
    description: str | None = None
    source_path: str
    uploaded_by: str
    uploaded_at: datetime
    document_type: DocumentType = DocumentType.other
    is_active: bool = True
    chunk_count: int = 0
    ingestion_state: IngestionState = IngestionState.queued
    ingestion_error: str | None = None


# ── Chunks ──────────────────────────────────────────────────────────────────


class ChunkMetadata(BaseModel):
    """Provenance of a chunk: source page, passage length, creation time."""

    page: int
    length: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Chunk(BaseModel):
    """A passage of a document with its embedding.

    Chunks are immutable once persisted: reprocessing a document replaces
    its entire chunk set.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_id: str
    content: str
    chunk_index: int
    embedding: list[float]
    metadata: ChunkMetadata


class CandidateChunk(BaseModel):
    """A chunk joined with the document fields search needs for ranking."""

    chunk_id: str
    document_id: str
    document_title: str
    document_uploaded_at: datetime
    chunk_index: int
    content: str
    embedding: list[float]
    page: int | None = None


@dataclass(frozen=True)
class Passage:
    """A chunked passage before embedding.

    Attributes:
        text: Passage text.
        page: 1-based page number the passage came from.
        sequence: Position of the passage in document order.
    """

    text: str
    page: int
    sequence: int


@dataclass(frozen=True)
class UploadedFile:
    """Raw upload as received from the caller."""

    filename: str
    content_type: str
    data: bytes


# ── Search ──────────────────────────────────────────────────────────────────


class DocumentHit(BaseModel):
    """A document ranked by its best-scoring chunk."""

    document_id: str
    title: str
    score: float
    best_chunk_index: int
    uploaded_at: datetime


class ChunkHit(BaseModel):
    """A single chunk ranked against a query."""

    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    score: float
    page: int | None = None


# ── Ingestion Status ────────────────────────────────────────────────────────


class IngestionStatus(BaseModel):
    """Live status of a document's most recent ingestion run.

    Attributes:
        document_id: Document being ingested.
        run_id: Identifier of the run.
        state: Current state.
        error_kind: Kind of the failure that ended the run, if any.
        error_message: Human-readable failure description.
        total_passages: Passages produced by the chunker.
        failed_passages: Passages dropped after exhausting retries.
        persisted_chunks: Chunks written by the final replace.
        started_at: When the run was queued.
        finished_at: When the run reached a terminal state.
    """

    document_id: str
    run_id: str
    state: IngestionState = IngestionState.queued
    error_kind: str | None = None
    error_message: str | None = None
    total_passages: int = 0
    failed_passages: int = 0
    persisted_chunks: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
