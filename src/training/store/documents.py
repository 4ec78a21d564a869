"""Document repository -- async CRUD for training document metadata.

Uses the session_factory callable pattern: every method opens its own
session, so the repository is safe to share between request handlers and
ingestion workers. Tenant-facing methods take tenant_id first and never
return another tenant's rows; the unscoped get_by_id and
set_ingestion_state serve the ingestion orchestrator, which only knows
document ids.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.training.errors import NotFoundError, PersistenceError
from src.training.models import (
    DocumentCreate,
    DocumentRead,
    DocumentType,
    DocumentUpdate,
    IngestionState,
)
from src.training.store.tables import DocumentChunkModel, TrainingDocumentModel

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


# ── Serialization Helpers ───────────────────────────────────────────────────


def parse_document_id(value: str) -> uuid.UUID | None:
    """Parse a document id, returning None for malformed input."""
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _model_to_document(model: TrainingDocumentModel) -> DocumentRead:
    """Convert TrainingDocumentModel to DocumentRead schema."""
    return DocumentRead(
        id=str(model.id),
        tenant_id=model.tenant_id,
        title=model.title,
        description=model.description,
        source_path=model.source_path,
        uploaded_by=model.uploaded_by,
        uploaded_at=as_utc(model.uploaded_at),
        document_type=DocumentType(model.document_type),
        is_active=model.is_active,
        chunk_count=model.chunk_count,
        ingestion_state=IngestionState(model.ingestion_state),
        ingestion_error=model.ingestion_error,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class DocumentRepository:
    """Async CRUD operations for training documents.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        tenant_id: str,
        data: DocumentCreate,
        *,
        source_path: str,
        uploaded_by: str,
        document_id: str | None = None,
    ) -> DocumentRead:
        """Create a document record with chunk count 0 and state queued.

        Args:
            tenant_id: Owning club.
            data: Descriptive metadata from the upload.
            source_path: Where the PDF bytes were saved.
            uploaded_by: Uploading user identity.
            document_id: Pre-allocated id (generated when omitted).

        Returns:
            DocumentRead with all persisted fields.
        """
        async for session in self._session_factory():
            model = TrainingDocumentModel(
                id=uuid.UUID(document_id) if document_id else uuid.uuid4(),
                tenant_id=tenant_id,
                title=data.title,
                description=data.description,
                source_path=source_path,
                uploaded_by=uploaded_by,
                uploaded_at=datetime.now(timezone.utc),
                document_type=data.document_type.value,
                is_active=data.is_active,
                chunk_count=0,
                ingestion_state=IngestionState.queued.value,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info(
                "documents.created",
                tenant_id=tenant_id,
                document_id=str(model.id),
                title=model.title,
            )
            return _model_to_document(model)

    async def get(self, tenant_id: str, document_id: str) -> DocumentRead | None:
        """Get a document by id within a tenant.

        Returns:
            DocumentRead if found and owned by tenant_id, None otherwise.
        """
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return None
        async for session in self._session_factory():
            stmt = select(TrainingDocumentModel).where(
                TrainingDocumentModel.tenant_id == tenant_id,
                TrainingDocumentModel.id == doc_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_document(model)

    async def get_by_id(self, document_id: str) -> DocumentRead | None:
        """Get a document by id regardless of tenant (ingestion workers only)."""
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return None
        async for session in self._session_factory():
            model = await session.get(TrainingDocumentModel, doc_uuid)
            if model is None:
                return None
            return _model_to_document(model)

    async def list_for_tenant(self, tenant_id: str) -> list[DocumentRead]:
        """List a tenant's documents, most recently uploaded first."""
        async for session in self._session_factory():
            stmt = (
                select(TrainingDocumentModel)
                .where(TrainingDocumentModel.tenant_id == tenant_id)
                .order_by(
                    TrainingDocumentModel.uploaded_at.desc(),
                    TrainingDocumentModel.id,
                )
            )
            result = await session.execute(stmt)
            return [_model_to_document(m) for m in result.scalars().all()]

    async def list_all(self, tenant_id: str | None = None) -> list[DocumentRead]:
        """List every document, optionally restricted to one tenant.

        Used by maintenance tooling (bulk reprocessing).
        """
        async for session in self._session_factory():
            stmt = select(TrainingDocumentModel).order_by(TrainingDocumentModel.uploaded_at)
            if tenant_id is not None:
                stmt = stmt.where(TrainingDocumentModel.tenant_id == tenant_id)
            result = await session.execute(stmt)
            return [_model_to_document(m) for m in result.scalars().all()]

    async def update(
        self, tenant_id: str, document_id: str, data: DocumentUpdate
    ) -> DocumentRead | None:
        """Apply a partial metadata update.

        Only fields explicitly set on ``data`` are written.

        Returns:
            Updated DocumentRead, or None if the document is not visible.
        """
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return None
        changes = data.model_dump(exclude_unset=True)
        async for session in self._session_factory():
            stmt = select(TrainingDocumentModel).where(
                TrainingDocumentModel.tenant_id == tenant_id,
                TrainingDocumentModel.id == doc_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None

            for field, value in changes.items():
                if field == "title" and value is not None:
                    value = value.strip()
                if field == "document_type" and value is not None:
                    value = DocumentType(value).value
                if value is None and field != "description":
                    continue
                setattr(model, field, value)

            await session.commit()
            await session.refresh(model)
            logger.info(
                "documents.updated",
                tenant_id=tenant_id,
                document_id=document_id,
                fields=sorted(changes),
            )
            return _model_to_document(model)

    async def delete(self, tenant_id: str, document_id: str) -> DocumentRead | None:
        """Delete a document and all its chunks in one transaction.

        Returns:
            The deleted document, or None if it was not visible.
        """
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            return None
        async for session in self._session_factory():
            stmt = select(TrainingDocumentModel).where(
                TrainingDocumentModel.tenant_id == tenant_id,
                TrainingDocumentModel.id == doc_uuid,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None

            deleted = _model_to_document(model)
            await session.execute(
                delete(DocumentChunkModel).where(DocumentChunkModel.document_id == doc_uuid)
            )
            await session.delete(model)
            await session.commit()
            logger.info("documents.deleted", tenant_id=tenant_id, document_id=document_id)
            return deleted

    async def set_ingestion_state(
        self,
        document_id: str,
        state: IngestionState,
        error: str | None = None,
    ) -> None:
        """Record the ingestion state (and last error) of a document.

        Raises:
            NotFoundError: The document no longer exists.
            PersistenceError: The write failed.
        """
        doc_uuid = parse_document_id(document_id)
        if doc_uuid is None:
            raise NotFoundError(document_id)
        async for session in self._session_factory():
            try:
                model = await session.get(TrainingDocumentModel, doc_uuid)
                if model is None:
                    raise NotFoundError(document_id)
                model.ingestion_state = state.value
                model.ingestion_error = error
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Failed to record ingestion state: {exc}") from exc
