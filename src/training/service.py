"""Training document service -- the entry point used by the HTTP layer.

Wires validation, source storage, the document repository, the ingestion
orchestrator and the search engine behind tenant-scoped operations:

- upload: validate, store the PDF, create the record, queue ingestion
- list / get / status: read document metadata and live ingestion status
- update: edit title, description, type or the active flag
- delete: cancel any run, remove record and chunks, remove the source file
- reprocess: re-run ingestion from the stored source
- get_chunks / search / search_document: read the embedded passages

Every operation raises NotFoundError when the document is not visible to
the given tenant; upload raises ValidationError for unacceptable input.
"""

from __future__ import annotations

import uuid

import structlog

from src.training.config import TrainingConfig
from src.training.embeddings import EmbeddingGenerator, create_embedding_generator
from src.training.errors import NotFoundError, ValidationError
from src.training.ingestion import IngestionOrchestrator
from src.training.models import (
    Chunk,
    ChunkHit,
    DocumentCreate,
    DocumentHit,
    DocumentRead,
    DocumentUpdate,
    IngestionStatus,
    SubmitResult,
    UploadedFile,
)
from src.training.search import SemanticSearchEngine
from src.training.sources import LocalSourceStorage
from src.training.store import ChunkStore, DocumentRepository, SessionFactory

logger = structlog.get_logger(__name__)

PDF_MAGIC = b"%PDF-"
# The PDF header may be preceded by junk bytes within the first kilobyte
_HEADER_WINDOW = 1024


class TrainingDocumentService:
    """Tenant-scoped operations over training documents.

    Args:
        documents: Document metadata repository.
        chunk_store: Store of embedded chunks.
        sources: Storage of original PDF bytes.
        orchestrator: Background ingestion pipeline.
        search_engine: Semantic search over stored chunks.
        config: Upload limits and search defaults.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        chunk_store: ChunkStore,
        sources: LocalSourceStorage,
        orchestrator: IngestionOrchestrator,
        search_engine: SemanticSearchEngine,
        config: TrainingConfig,
    ) -> None:
        self._documents = documents
        self._chunk_store = chunk_store
        self._sources = sources
        self._orchestrator = orchestrator
        self._search = search_engine
        self._config = config

    @property
    def orchestrator(self) -> IngestionOrchestrator:
        return self._orchestrator

    @property
    def documents(self) -> DocumentRepository:
        return self._documents

    @property
    def config(self) -> TrainingConfig:
        return self._config

    # ── Upload ──────────────────────────────────────────────────────────────

    def validate_upload(self, file: UploadedFile) -> None:
        """Reject uploads that cannot be a usable PDF.

        Raises:
            ValidationError: Wrong content type, empty, too large, or no PDF header.
        """
        content_type = (file.content_type or "").split(";")[0].strip().lower()
        allowed = {t.lower() for t in self._config.allowed_content_types}
        if content_type not in allowed:
            raise ValidationError(
                f"Unsupported content type '{file.content_type}'; expected one of {sorted(allowed)}"
            )
        if not file.data:
            raise ValidationError("Uploaded file is empty")
        if len(file.data) > self._config.max_upload_bytes:
            raise ValidationError(
                f"Uploaded file exceeds the upload limit of {self._config.max_upload_bytes} bytes"
            )
        if PDF_MAGIC not in file.data[:_HEADER_WINDOW]:
            raise ValidationError("Uploaded file is not a PDF document")

    async def upload(
        self,
        tenant_id: str,
        user_id: str,
        file: UploadedFile,
        data: DocumentCreate,
    ) -> DocumentRead:
        """Store an uploaded PDF and queue it for ingestion.

        Returns synchronously with chunk_count 0; chunks appear once the
        background run completes.
        """
        self.validate_upload(file)

        document_id = str(uuid.uuid4())
        source_path = await self._sources.save(tenant_id, file.filename, file.data)
        try:
            document = await self._documents.create(
                tenant_id,
                data,
                source_path=source_path,
                uploaded_by=user_id,
                document_id=document_id,
            )
        except Exception:
            await self._sources.delete(source_path)
            raise

        result = await self._orchestrator.ingest(document.id)
        logger.info(
            "training.document_uploaded",
            tenant_id=tenant_id,
            document_id=document.id,
            user_id=user_id,
            size_bytes=len(file.data),
            submit_result=result.value,
        )
        return document

    # ── Read / Update ───────────────────────────────────────────────────────

    async def list_documents(self, tenant_id: str) -> list[DocumentRead]:
        return await self._documents.list_for_tenant(tenant_id)

    async def get_document(self, tenant_id: str, document_id: str) -> DocumentRead:
        document = await self._documents.get(tenant_id, document_id)
        if document is None:
            raise NotFoundError(document_id, tenant_id)
        return document

    async def get_ingestion_status(
        self, tenant_id: str, document_id: str
    ) -> IngestionStatus | None:
        """Live status of the document's latest run (None if none ran in this process)."""
        await self.get_document(tenant_id, document_id)
        return self._orchestrator.status(document_id)

    async def update_document(
        self, tenant_id: str, document_id: str, data: DocumentUpdate
    ) -> DocumentRead:
        document = await self._documents.update(tenant_id, document_id, data)
        if document is None:
            raise NotFoundError(document_id, tenant_id)
        return document

    # ── Delete / Reprocess ──────────────────────────────────────────────────

    async def delete_document(self, tenant_id: str, document_id: str) -> None:
        """Delete a document, its chunks and its source file.

        An in-flight ingestion run is cancelled and stops at its next
        checkpoint without persisting anything.
        """
        document = await self.get_document(tenant_id, document_id)
        cancelled = self._orchestrator.cancel(document_id)

        deleted = await self._documents.delete(tenant_id, document_id)
        if deleted is None:
            raise NotFoundError(document_id, tenant_id)
        self._orchestrator.forget(document_id)

        try:
            await self._sources.delete(document.source_path)
        except OSError as exc:
            logger.warning(
                "training.source_delete_failed",
                tenant_id=tenant_id,
                document_id=document_id,
                path=document.source_path,
                error=str(exc),
            )

        logger.info(
            "training.document_deleted",
            tenant_id=tenant_id,
            document_id=document_id,
            run_cancelled=cancelled,
        )

    async def reprocess(self, tenant_id: str, document_id: str) -> SubmitResult:
        """Re-run ingestion; the new chunk set replaces the old one atomically."""
        await self.get_document(tenant_id, document_id)
        result = await self._orchestrator.ingest(document_id)
        logger.info(
            "training.reprocess_requested",
            tenant_id=tenant_id,
            document_id=document_id,
            submit_result=result.value,
        )
        return result

    # ── Chunks / Search ─────────────────────────────────────────────────────

    async def get_chunks(self, tenant_id: str, document_id: str) -> list[Chunk]:
        await self.get_document(tenant_id, document_id)
        return await self._chunk_store.fetch(document_id)

    async def search(
        self, tenant_id: str, query: str, limit: int | None = None
    ) -> list[DocumentHit]:
        return await self._search.search(tenant_id, query, limit)

    async def search_document(
        self,
        tenant_id: str,
        document_id: str,
        query: str,
        limit: int | None = None,
    ) -> list[ChunkHit]:
        await self.get_document(tenant_id, document_id)
        return await self._search.search_document(tenant_id, document_id, query, limit)


def create_training_service(
    session_factory: SessionFactory,
    config: TrainingConfig | None = None,
    embedder: EmbeddingGenerator | None = None,
) -> TrainingDocumentService:
    """Assemble the service and its collaborators from configuration.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        config: Training configuration (loaded from the environment when None).
        embedder: Embedding generator override (built from config when None).
    """
    config = config or TrainingConfig()
    embedder = embedder or create_embedding_generator(config)

    documents = DocumentRepository(session_factory)
    chunk_store = ChunkStore(session_factory, dimensions=embedder.dimensions)
    sources = LocalSourceStorage(config.storage_path)
    orchestrator = IngestionOrchestrator(documents, chunk_store, sources, embedder, config)
    search_engine = SemanticSearchEngine(
        chunk_store,
        embedder,
        similarity_threshold=config.similarity_threshold,
        default_limit=config.default_search_limit,
    )
    return TrainingDocumentService(
        documents, chunk_store, sources, orchestrator, search_engine, config
    )
