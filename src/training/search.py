"""Semantic search over a tenant's embedded chunks.

Scores every candidate chunk by cosine similarity to the query vector,
drops chunks under the similarity threshold, and ranks documents by their
best chunk. Ties break on earlier upload time, then lower chunk index, then
document id, so identical inputs always give the same order.

Searches read without taking any ingestion lock: a document becomes
visible once its chunk set has been committed.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import structlog

from src.training.embeddings import EmbeddingGenerator
from src.training.errors import EmbeddingRejected
from src.training.metrics import search_requests_total
from src.training.models import CandidateChunk, ChunkHit, DocumentHit
from src.training.store.chunks import ChunkStore

logger = structlog.get_logger(__name__)


def cosine_scores(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Cosine similarity of ``query`` against each row of ``vectors``.

    Zero-norm vectors (on either side) score 0.0.
    """
    if not vectors:
        return np.zeros(0, dtype=np.float64)
    matrix = np.asarray(vectors, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    denominators = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    scores = np.zeros(len(matrix), dtype=np.float64)
    nonzero = denominators > 0
    scores[nonzero] = dots[nonzero] / denominators[nonzero]
    return scores


class SemanticSearchEngine:
    """Ranks a tenant's documents against free-text queries.

    Args:
        chunk_store: Source of candidate chunks.
        embedder: Generator used to embed the query.
        similarity_threshold: Minimum cosine score for a chunk to match.
        default_limit: Result count when the caller gives none.
    """

    def __init__(
        self,
        chunk_store: ChunkStore,
        embedder: EmbeddingGenerator,
        similarity_threshold: float = 0.2,
        default_limit: int = 10,
    ) -> None:
        self._chunk_store = chunk_store
        self._embedder = embedder
        self._threshold = similarity_threshold
        self._default_limit = default_limit

    async def search(
        self, tenant_id: str, query: str, limit: int | None = None
    ) -> list[DocumentHit]:
        """Return the tenant's most relevant active documents.

        Args:
            tenant_id: Club whose documents are searched.
            query: Free-text query.
            limit: Maximum number of documents (default_limit when None).

        Returns:
            Documents ordered by descending best-chunk score; [] when the
            query is blank or nothing clears the threshold.
        """
        limit = self._default_limit if limit is None else limit
        if not query or not query.strip() or limit <= 0:
            return []

        query_vector = await self._embed_query(query)
        if query_vector is None:
            return []

        candidates = await self._chunk_store.fetch_for_tenant(tenant_id)
        scored = self._score(query_vector, candidates, tenant_id)

        best: dict[str, tuple[float, CandidateChunk]] = {}
        for score, candidate in scored:
            current = best.get(candidate.document_id)
            if (
                current is None
                or score > current[0]
                or (score == current[0] and candidate.chunk_index < current[1].chunk_index)
            ):
                best[candidate.document_id] = (score, candidate)

        ranked = sorted(
            best.values(),
            key=lambda item: (
                -item[0],
                item[1].document_uploaded_at,
                item[1].chunk_index,
                item[1].document_id,
            ),
        )
        hits = [
            DocumentHit(
                document_id=candidate.document_id,
                title=candidate.document_title,
                score=score,
                best_chunk_index=candidate.chunk_index,
                uploaded_at=candidate.document_uploaded_at,
            )
            for score, candidate in ranked[:limit]
        ]

        search_requests_total.labels(scope="tenant", matched=str(bool(hits)).lower()).inc()
        logger.info(
            "search.completed",
            tenant_id=tenant_id,
            candidates=len(candidates),
            matched_documents=len(best),
            returned=len(hits),
        )
        return hits

    async def search_document(
        self,
        tenant_id: str,
        document_id: str,
        query: str,
        limit: int | None = None,
    ) -> list[ChunkHit]:
        """Return the best matching chunks within one document."""
        limit = self._default_limit if limit is None else limit
        if not query or not query.strip() or limit <= 0:
            return []

        query_vector = await self._embed_query(query)
        if query_vector is None:
            return []

        candidates = await self._chunk_store.fetch_for_document(tenant_id, document_id)
        scored = self._score(query_vector, candidates, tenant_id)
        scored.sort(key=lambda item: (-item[0], item[1].chunk_index))

        hits = [
            ChunkHit(
                chunk_id=candidate.chunk_id,
                document_id=candidate.document_id,
                chunk_index=candidate.chunk_index,
                content=candidate.content,
                score=score,
                page=candidate.page,
            )
            for score, candidate in scored[:limit]
        ]
        search_requests_total.labels(scope="document", matched=str(bool(hits)).lower()).inc()
        logger.info(
            "search.document_completed",
            tenant_id=tenant_id,
            document_id=document_id,
            candidates=len(candidates),
            returned=len(hits),
        )
        return hits

    async def _embed_query(self, query: str) -> list[float] | None:
        try:
            return await self._embedder.embed(query.strip())
        except EmbeddingRejected as exc:
            # A query the model cannot embed matches nothing
            logger.info("search.query_rejected", error=str(exc))
            return None

    def _score(
        self,
        query_vector: list[float],
        candidates: list[CandidateChunk],
        tenant_id: str,
    ) -> list[tuple[float, CandidateChunk]]:
        usable = [c for c in candidates if len(c.embedding) == len(query_vector)]
        if len(usable) != len(candidates):
            logger.warning(
                "search.dimension_mismatch",
                tenant_id=tenant_id,
                skipped=len(candidates) - len(usable),
                expected=len(query_vector),
            )

        scores = cosine_scores(query_vector, [c.embedding for c in usable])
        return [
            (float(score), candidate)
            for score, candidate in zip(scores, usable)
            if score >= self._threshold
        ]
