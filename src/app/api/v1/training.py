"""REST API endpoints for club training documents.

Upload PDFs, follow their ingestion, edit or delete them, trigger
reprocessing, inspect their chunks, and run semantic search. Every endpoint
is scoped to the tenant from X-Tenant-ID; uploads record the X-User-ID
caller as the uploader.
"""

from __future__ import annotations

from typing import Any

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
    status,
)
from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError

from src.app.api.deps import CallerIdentity, get_current_user, get_tenant
from src.app.core.tenant import TenantContext
from src.training.errors import EmbeddingError, NotFoundError, TrainingError, ValidationError
from src.training.models import (
    ChunkHit,
    DocumentCreate,
    DocumentHit,
    DocumentRead,
    DocumentType,
    DocumentUpdate,
    IngestionStatus,
    SubmitResult,
    UploadedFile,
)

router = APIRouter(prefix="/training", tags=["training"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class DocumentDetailResponse(DocumentRead):
    """Document metadata with the live status of its latest ingestion run."""

    ingestion_status: IngestionStatus | None = None


class ChunkResponse(BaseModel):
    """A stored chunk without its embedding vector."""

    id: str
    chunk_index: int
    content: str
    page: int
    length: int
    embedding_dimensions: int


class ChunkListResponse(BaseModel):
    document_id: str
    chunks: list[ChunkResponse] = Field(default_factory=list)


class ReprocessResponse(BaseModel):
    document_id: str
    result: SubmitResult


class SearchResponse(BaseModel):
    query: str
    results: list[DocumentHit] = Field(default_factory=list)


class DocumentSearchResponse(BaseModel):
    document_id: str
    query: str
    results: list[ChunkHit] = Field(default_factory=list)


# ── Dependency Injection Helper ──────────────────────────────────────────────


def _get_training_service(request: Request) -> Any:
    """Retrieve TrainingDocumentService from app.state, 503 if not available."""
    service = getattr(request.app.state, "training_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Training library not initialized",
        )
    return service


def _to_http_error(exc: TrainingError) -> HTTPException:
    """Map a training error onto an HTTP error response."""
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document not found: {exc.document_id}",
        )
    if isinstance(exc, EmbeddingError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Embedding service unavailable: {exc}",
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ── Document Endpoints ───────────────────────────────────────────────────────


@router.post("/documents", response_model=DocumentRead, status_code=201)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    title: str = Form(...),
    description: str | None = Form(None),
    document_type: DocumentType = Form(DocumentType.other),
    is_active: bool = Form(True),
    user: CallerIdentity = Depends(get_current_user),
    tenant: TenantContext = Depends(get_tenant),
) -> DocumentRead:
    """Upload a PDF; ingestion runs in the background."""
    service = _get_training_service(request)

    try:
        metadata = DocumentCreate(
            title=title,
            description=description or None,
            document_type=document_type,
            is_active=is_active,
        )
    except SchemaValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

    # One byte past the limit is enough for validate_upload to reject it
    upload = UploadedFile(
        filename=file.filename or "document.pdf",
        content_type=file.content_type or "",
        data=await file.read(service.config.max_upload_bytes + 1),
    )
    try:
        return await service.upload(tenant.tenant_id, user.user_id, upload, metadata)
    except TrainingError as exc:
        raise _to_http_error(exc)


@router.get("/documents", response_model=list[DocumentRead])
async def list_documents(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> list[DocumentRead]:
    """List the club's documents, most recent first."""
    service = _get_training_service(request)
    return await service.list_documents(tenant.tenant_id)


@router.get("/documents/{document_id}", response_model=DocumentDetailResponse)
async def get_document(
    document_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> DocumentDetailResponse:
    """Get a document with its ingestion status."""
    service = _get_training_service(request)
    try:
        document = await service.get_document(tenant.tenant_id, document_id)
        ingestion_status = await service.get_ingestion_status(tenant.tenant_id, document_id)
    except TrainingError as exc:
        raise _to_http_error(exc)
    return DocumentDetailResponse(**document.model_dump(), ingestion_status=ingestion_status)


@router.patch("/documents/{document_id}", response_model=DocumentRead)
async def update_document(
    document_id: str,
    body: DocumentUpdate,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> DocumentRead:
    """Update title, description, type or active flag."""
    service = _get_training_service(request)
    try:
        return await service.update_document(tenant.tenant_id, document_id, body)
    except TrainingError as exc:
        raise _to_http_error(exc)


@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> Response:
    """Delete a document, its chunks and its source file."""
    service = _get_training_service(request)
    try:
        await service.delete_document(tenant.tenant_id, document_id)
    except TrainingError as exc:
        raise _to_http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/documents/{document_id}/reprocess",
    response_model=ReprocessResponse,
    status_code=202,
)
async def reprocess_document(
    document_id: str,
    request: Request,
    response: Response,
    tenant: TenantContext = Depends(get_tenant),
) -> ReprocessResponse:
    """Queue the document for re-ingestion.

    Answers 202 when a run was queued and 200 when one is already active.
    """
    service = _get_training_service(request)
    try:
        result = await service.reprocess(tenant.tenant_id, document_id)
    except TrainingError as exc:
        raise _to_http_error(exc)
    if result == SubmitResult.already_running:
        response.status_code = status.HTTP_200_OK
    return ReprocessResponse(document_id=document_id, result=result)


@router.get("/documents/{document_id}/chunks", response_model=ChunkListResponse)
async def get_document_chunks(
    document_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
) -> ChunkListResponse:
    """List the stored chunks of a document in index order."""
    service = _get_training_service(request)
    try:
        chunks = await service.get_chunks(tenant.tenant_id, document_id)
    except TrainingError as exc:
        raise _to_http_error(exc)
    return ChunkListResponse(
        document_id=document_id,
        chunks=[
            ChunkResponse(
                id=chunk.id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                page=chunk.metadata.page,
                length=chunk.metadata.length,
                embedding_dimensions=len(chunk.embedding),
            )
            for chunk in chunks
        ],
    )


# ── Search Endpoints ─────────────────────────────────────────────────────────


@router.get("/documents/{document_id}/search", response_model=DocumentSearchResponse)
async def search_document(
    document_id: str,
    request: Request,
    query: str = Query("", max_length=1000),
    limit: int | None = Query(None, ge=1, le=100),
    tenant: TenantContext = Depends(get_tenant),
) -> DocumentSearchResponse:
    """Find the passages of one document closest to the query."""
    service = _get_training_service(request)
    try:
        results = await service.search_document(tenant.tenant_id, document_id, query, limit)
    except TrainingError as exc:
        raise _to_http_error(exc)
    return DocumentSearchResponse(document_id=document_id, query=query, results=results)


@router.get("/search", response_model=SearchResponse)
async def search_documents(
    request: Request,
    query: str = Query("", max_length=1000),
    limit: int | None = Query(None, ge=1, le=100),
    tenant: TenantContext = Depends(get_tenant),
) -> SearchResponse:
    """Rank the club's active documents against a free-text query."""
    service = _get_training_service(request)
    try:
        results = await service.search(tenant.tenant_id, query, limit)
    except TrainingError as exc:
        raise _to_http_error(exc)
    return SearchResponse(query=query, results=results)
