"""Chunk store -- atomic per-document persistence of embedded passages.

persist() replaces a document's entire chunk set in a single transaction
and updates the document's chunk_count (and optionally its ingestion
state) in the same commit, so readers see either the old set or the new
one, never a mix. Reads are lock-free and tenant-scoped.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from src.training.errors import NotFoundError, PersistenceError
from src.training.models import CandidateChunk, Chunk, ChunkMetadata, IngestionState
from src.training.store.documents import SessionFactory, as_utc, parse_document_id
from src.training.store.tables import DocumentChunkModel, TrainingDocumentModel

logger = structlog.get_logger(__name__)


def _model_to_chunk(model: DocumentChunkModel) -> Chunk:
    """Convert DocumentChunkModel to Chunk schema."""
    meta = model.metadata_json or {}
    return Chunk(
        id=str(model.id),
        document_id=str(model.document_id),
        content=model.content,
        chunk_index=model.chunk_index,
        embedding=list(model.embedding),
        metadata=ChunkMetadata(
            page=meta.get("page", 0),
            length=meta.get("length", len(model.content)),
            created_at=meta.get("created_at") or as_utc(model.created_at),
        ),
    )


def _row_to_candidate(
    chunk: DocumentChunkModel, document: TrainingDocumentModel
) -> CandidateChunk:
    return CandidateChunk(
        chunk_id=str(chunk.id),
        document_id=str(chunk.document_id),
        document_title=document.title,
        document_uploaded_at=as_utc(document.uploaded_at),
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        embedding=list(chunk.embedding),
        page=(chunk.metadata_json or {}).get("page"),
    )


class ChunkStore:
    """Persists and reads document chunks.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        dimensions: Required length of every stored embedding.
    """

    def __init__(self, session_factory: SessionFactory, dimensions: int) -> None:
        self._session_factory = session_factory
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def validate(self, document_id: str, chunks: Sequence[Chunk]) -> None:
        """Check the chunk-set invariants.

        Raises:
            ValueError: Indices not contiguous from 0, empty content, wrong
                embedding length, or a chunk of another document.
        """
        for position, chunk in enumerate(chunks):
            if chunk.document_id != document_id:
                raise ValueError(
                    f"Chunk {chunk.id} belongs to document {chunk.document_id}, not {document_id}"
                )
            if chunk.chunk_index != position:
                raise ValueError(
                    f"Chunk indices must be contiguous from 0: expected {position}, got {chunk.chunk_index}"
                )
            if not chunk.content.strip():
                raise ValueError(f"Chunk {position} has empty content")
            if len(chunk.embedding) != self._dimensions:
                raise ValueError(
                    f"Chunk {position} embedding has {len(chunk.embedding)} dimensions, "
                    f"expected {self._dimensions}"
                )

    async def persist(
        self,
        document_id: str,
        chunks: Sequence[Chunk],
        ingestion_state: IngestionState | None = None,
        ingestion_error: str | None = None,
    ) -> int:
        """Replace a document's chunk set atomically.

        Args:
            document_id: Owning document.
            chunks: The complete new set, indices 0..N-1 in order.
            ingestion_state: State to record in the same transaction.
            ingestion_error: Error message recorded with the state.

        Returns:
            Number of chunks stored.

        Raises:
            ValueError: The chunk set violates an invariant.
            NotFoundError: The document does not exist.
            PersistenceError: The transaction failed and was rolled back.
        """
        self.validate(document_id, chunks)
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            raise NotFoundError(document_id)

        async for session in self._session_factory():
            try:
                document = await session.get(TrainingDocumentModel, doc_uuid)
                if document is None:
                    raise NotFoundError(document_id)

                await session.execute(
                    delete(DocumentChunkModel).where(DocumentChunkModel.document_id == doc_uuid)
                )
                session.add_all(
                    [
                        DocumentChunkModel(
                            id=parse_document_id(chunk.id) or uuid.uuid4(),
                            document_id=doc_uuid,
                            chunk_index=chunk.chunk_index,
                            content=chunk.content,
                            embedding=list(chunk.embedding),
                            metadata_json=chunk.metadata.model_dump(mode="json"),
                            created_at=chunk.metadata.created_at,
                        )
                        for chunk in chunks
                    ]
                )
                document.chunk_count = len(chunks)
                if ingestion_state is not None:
                    document.ingestion_state = ingestion_state.value
                    document.ingestion_error = ingestion_error
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error(
                    "chunks.persist_failed",
                    document_id=document_id,
                    chunk_count=len(chunks),
                    error=str(exc),
                )
                raise PersistenceError(f"Failed to persist chunks: {exc}") from exc

            logger.info("chunks.persisted", document_id=document_id, chunk_count=len(chunks))
            return len(chunks)

    async def fetch(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks in index order (empty if none)."""
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(DocumentChunkModel)
                .where(DocumentChunkModel.document_id == doc_uuid)
                .order_by(DocumentChunkModel.chunk_index)
            )
            result = await session.execute(stmt)
            return [_model_to_chunk(m) for m in result.scalars().all()]

    async def fetch_for_tenant(self, tenant_id: str) -> list[CandidateChunk]:
        """Return every chunk of the tenant's active documents."""
        async for session in self._session_factory():
            stmt = (
                select(DocumentChunkModel, TrainingDocumentModel)
                .join(
                    TrainingDocumentModel,
                    DocumentChunkModel.document_id == TrainingDocumentModel.id,
                )
                .where(
                    TrainingDocumentModel.tenant_id == tenant_id,
                    TrainingDocumentModel.is_active.is_(True),
                )
                .order_by(TrainingDocumentModel.id, DocumentChunkModel.chunk_index)
            )
            result = await session.execute(stmt)
            return [_row_to_candidate(chunk, doc) for chunk, doc in result.all()]

    async def fetch_for_document(self, tenant_id: str, document_id: str) -> list[CandidateChunk]:
        """Return one document's chunks, provided the tenant owns it."""
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return []
        async for session in self._session_factory():
            stmt = (
                select(DocumentChunkModel, TrainingDocumentModel)
                .join(
                    TrainingDocumentModel,
                    DocumentChunkModel.document_id == TrainingDocumentModel.id,
                )
                .where(
                    TrainingDocumentModel.tenant_id == tenant_id,
                    TrainingDocumentModel.id == doc_uuid,
                )
                .order_by(DocumentChunkModel.chunk_index)
            )
            result = await session.execute(stmt)
            return [_row_to_candidate(chunk, doc) for chunk, doc in result.all()]
