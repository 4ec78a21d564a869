"""Persistence models for training documents and their chunks.

Two SQLAlchemy models on TrainingBase:
- TrainingDocumentModel: one row per uploaded PDF, scoped by tenant_id
- DocumentChunkModel: embedded passages of a document, ordered by chunk_index

Column types are dialect-neutral (Uuid, JSON) so the same models run on
PostgreSQL through asyncpg and on SQLite in tests. Embeddings are stored as
JSON arrays of floats; search scores them in-process.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TrainingBase(DeclarativeBase):
    """Declarative base for the training document tables."""


class TrainingDocumentModel(TrainingBase):
    """An uploaded training document owned by one club (tenant).

    chunk_count and ingestion_state are written in the same transaction as
    the chunk set, so a reader never sees a count that disagrees with the
    stored chunks.
    """

    __tablename__ = "training_documents"
    __table_args__ = (
        Index("ix_training_documents_tenant_active", "tenant_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    source_path: Mapped[str] = mapped_column(String(500), nullable=False)
    uploaded_by: Mapped[str] = mapped_column(String(200), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    document_type: Mapped[str] = mapped_column(String(50), nullable=False, default="other")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ingestion_state: Mapped[str] = mapped_column(String(32), nullable=False, default="queued")
    ingestion_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, onupdate=_utcnow
    )


class DocumentChunkModel(TrainingBase):
    """One embedded passage of a training document.

    Indices are contiguous from 0 within a document. The set is replaced as
    a whole on reprocessing and removed with its document.
    """

    __tablename__ = "training_document_chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_training_chunk_document_index"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    document_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("training_documents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list] = mapped_column(JSON, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
