"""Ingestion orchestrator -- queue-backed worker pool turning PDFs into chunks.

Each submitted document becomes a run that walks the state machine

    queued -> extracting -> chunking -> embedding -> persisting -> completed

with failed reachable from any non-terminal state, partially_completed when
some passages could not be embedded, and cancelled when the document was
deleted while the run was in flight.

Concurrency model (one event loop):
- A bounded asyncio.Queue feeds ``max_concurrent_documents`` workers.
- DocumentLockRegistry guarantees one run per document; a second request
  is answered with SubmitResult.already_running instead of waiting.
- Within a run, embedding calls fan out under a semaphore of
  ``per_document_concurrency`` and are reassembled in passage order.
- PDF extraction runs in a worker thread under a timeout.

Failures never propagate to the submitter: every error is recorded on the
document (state + message), in the live status, and in the log.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.training.chunker import PassageChunker
from src.training.config import TrainingConfig
from src.training.embeddings import EmbeddingGenerator
from src.training.errors import (
    EmbeddingError,
    EmbeddingRejected,
    EmbeddingServiceError,
    EmbeddingTimeout,
    ErrorKind,
    ExtractionError,
    IngestionCancelled,
    NotFoundError,
    PersistenceError,
    TrainingError,
)
from src.training.extraction import PdfTextExtractor
from src.training.ingestion.locks import DocumentLockRegistry, RunHandle
from src.training.metrics import (
    ingestion_duration_seconds,
    ingestion_runs_in_flight,
    ingestion_runs_total,
)
from src.training.models import (
    Chunk,
    ChunkMetadata,
    IngestionState,
    IngestionStatus,
    Passage,
    SubmitResult,
)
from src.training.sources import LocalSourceStorage
from src.training.store.chunks import ChunkStore
from src.training.store.documents import DocumentRepository

logger = structlog.get_logger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "ingestion.retrying",
        attempt=retry_state.attempt_number,
        error_kind=getattr(exc, "kind", ErrorKind.internal).value,
        error=str(exc),
    )


class IngestionOrchestrator:
    """Runs document ingestion in the background.

    Args:
        documents: Repository used to load documents and record states.
        chunk_store: Store receiving the final chunk set.
        sources: Storage holding the original PDF bytes.
        embedder: Embedding generator for passages.
        config: Pool sizes, timeouts and retry policy.
        extractor: PDF text extractor (default PdfTextExtractor()).
        chunker: Passage chunker (default sized from config.chunk_size).
        locks: Keyed run registry (a fresh one by default).

    Usage:
        orchestrator = IngestionOrchestrator(documents, chunks, sources, embedder, config)
        orchestrator.start()
        await orchestrator.ingest(document_id)
        await orchestrator.join()
        await orchestrator.stop()
    """

    def __init__(
        self,
        documents: DocumentRepository,
        chunk_store: ChunkStore,
        sources: LocalSourceStorage,
        embedder: EmbeddingGenerator,
        config: TrainingConfig,
        *,
        extractor: PdfTextExtractor | None = None,
        chunker: PassageChunker | None = None,
        locks: DocumentLockRegistry | None = None,
    ) -> None:
        self._documents = documents
        self._chunk_store = chunk_store
        self._sources = sources
        self._embedder = embedder
        self._config = config
        self._extractor = extractor or PdfTextExtractor()
        self._chunker = chunker or PassageChunker(max_chunk_size=config.chunk_size)
        self._locks = locks or DocumentLockRegistry()

        self._queue: asyncio.Queue[RunHandle] = asyncio.Queue(maxsize=config.queue_maxsize)
        self._workers: list[asyncio.Task[None]] = []
        self._statuses: dict[str, IngestionStatus] = {}

    # ── Lifecycle ───────────────────────────────────────────────────────────

    @property
    def started(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        """Spawn the worker pool (idempotent)."""
        if self._workers:
            return
        for worker_id in range(self._config.max_concurrent_documents):
            task = asyncio.create_task(
                self._worker(worker_id), name=f"training_ingestion_worker_{worker_id}"
            )
            self._workers.append(task)
        logger.info("ingestion.workers_started", workers=len(self._workers))

    async def stop(self) -> None:
        """Cancel the workers and wait for them to exit.

        Runs interrupted here keep their last recorded stage; reprocess them
        to finish ingestion.
        """
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        logger.info("ingestion.workers_stopped", workers=len(workers))

    async def join(self) -> None:
        """Wait until every queued run has finished."""
        await self._queue.join()

    async def _worker(self, worker_id: int) -> None:
        while True:
            handle = await self._queue.get()
            try:
                await self._process(handle)
            except Exception:
                logger.exception(
                    "ingestion.worker_error",
                    worker_id=worker_id,
                    document_id=handle.document_id,
                )
            finally:
                self._queue.task_done()

    # ── Submission ──────────────────────────────────────────────────────────

    async def ingest(self, document_id: str) -> SubmitResult:
        """Queue a document for ingestion.

        Returns immediately with SubmitResult.already_running if a run for
        the same document is queued or in progress. Blocks only while the
        queue is full.
        """
        handle = self._acquire(document_id)
        if handle is None:
            return SubmitResult.already_running

        try:
            await self._record_state(document_id, IngestionState.queued)
            await self._queue.put(handle)
        except BaseException:
            self._abandon(handle)
            raise
        logger.info(
            "ingestion.queued",
            document_id=document_id,
            run_id=handle.run_id,
            queue_size=self._queue.qsize(),
        )
        return SubmitResult.queued

    async def run(self, document_id: str) -> IngestionStatus | None:
        """Ingest a document inline, bypassing the queue.

        Returns:
            The final status, or None if a run for the document is already active.
        """
        handle = self._acquire(document_id)
        if handle is None:
            return None
        try:
            await self._record_state(document_id, IngestionState.queued)
        except BaseException:
            self._abandon(handle)
            raise
        return await self._process(handle)

    def cancel(self, document_id: str) -> bool:
        """Cancel the document's active run at its next checkpoint."""
        return self._locks.cancel(document_id)

    def is_running(self, document_id: str) -> bool:
        """True while a run for the document is queued or in progress."""
        return self._locks.is_held(document_id)

    def status(self, document_id: str) -> IngestionStatus | None:
        """Snapshot of the document's most recent run, if any."""
        status = self._statuses.get(document_id)
        return status.model_copy() if status is not None else None

    def forget(self, document_id: str) -> None:
        """Drop the live status of a deleted document."""
        self._statuses.pop(document_id, None)

    def _acquire(self, document_id: str) -> RunHandle | None:
        handle = self._locks.try_acquire(document_id)
        if handle is None:
            logger.info("ingestion.already_running", document_id=document_id)
            return None
        self._statuses[document_id] = IngestionStatus(document_id=document_id, run_id=handle.run_id)
        ingestion_runs_in_flight.inc()
        return handle

    def _abandon(self, handle: RunHandle) -> None:
        """Release a run that never reached a worker."""
        self._locks.release(handle)
        self._statuses.pop(handle.document_id, None)
        ingestion_runs_in_flight.dec()
        logger.warning("ingestion.submit_aborted", document_id=handle.document_id, run_id=handle.run_id)

    # ── Run ─────────────────────────────────────────────────────────────────

    async def _process(self, handle: RunHandle) -> IngestionStatus:
        """Execute one run to a terminal state. Never raises TrainingError."""
        document_id = handle.document_id
        status = self._statuses.setdefault(
            document_id, IngestionStatus(document_id=document_id, run_id=handle.run_id)
        )
        log = logger.bind(document_id=document_id, run_id=handle.run_id)
        started = time.perf_counter()
        log.info("ingestion.run_started")

        try:
            await self._execute(handle, status, log)
        except IngestionCancelled:
            log.info("ingestion.run_cancelled", stage=self._stage(status))
            status.state = IngestionState.cancelled
            status.error_kind = ErrorKind.cancelled.value
            status.error_message = "Document was deleted during ingestion"
            await self._record_state(document_id, IngestionState.cancelled, status.error_message)
        except TrainingError as exc:
            await self._fail(status, exc.kind, str(exc), log)
        except Exception as exc:
            log.exception("ingestion.unexpected_error", stage=self._stage(status))
            await self._fail(status, ErrorKind.internal, f"Unexpected error: {exc}", log)
        finally:
            status.finished_at = datetime.now(timezone.utc)
            self._locks.release(handle)
            ingestion_runs_in_flight.dec()
            ingestion_duration_seconds.observe(time.perf_counter() - started)
            if status.state.is_terminal:
                ingestion_runs_total.labels(state=status.state.value).inc()

        log.info(
            "ingestion.run_finished",
            state=status.state.value,
            total_passages=status.total_passages,
            failed_passages=status.failed_passages,
            persisted_chunks=status.persisted_chunks,
            duration_seconds=round(time.perf_counter() - started, 3),
        )
        return status.model_copy()

    async def _execute(
        self, handle: RunHandle, status: IngestionStatus, log: structlog.BoundLogger
    ) -> None:
        document = await self._documents.get_by_id(handle.document_id)
        if document is None:
            raise IngestionCancelled(handle.document_id)

        # extracting
        await self._transition(handle, status, IngestionState.extracting, log)
        pages = await self._extract(document.source_path)

        # chunking
        await self._transition(handle, status, IngestionState.chunking, log)
        passages = self._chunker.chunk_pages(pages)
        status.total_passages = len(passages)
        if not passages:
            raise ExtractionError("Document text produced no passages")
        log.info("ingestion.chunked", pages=len(pages), passages=len(passages))

        # embedding
        await self._transition(handle, status, IngestionState.embedding, log)
        vectors, failures = await self._embed_passages(handle, passages, log)
        status.failed_passages = len(failures)
        embedded = [(p, vectors[i]) for i, p in enumerate(passages) if vectors[i] is not None]
        if not embedded:
            first_error = failures[min(failures)]
            raise type(first_error)(
                f"All {len(passages)} passages failed to embed: {first_error}"
            )

        # persisting
        await self._transition(handle, status, IngestionState.persisting, log)
        chunks = [
            Chunk(
                document_id=handle.document_id,
                content=passage.text,
                chunk_index=index,
                embedding=vector,
                metadata=ChunkMetadata(page=passage.page, length=len(passage.text)),
            )
            for index, (passage, vector) in enumerate(embedded)
        ]

        final_state = IngestionState.completed
        error_message = None
        if failures:
            final_state = IngestionState.partially_completed
            error_message = f"{len(failures)} of {len(passages)} passages failed to embed"
            status.error_kind = failures[min(failures)].kind.value
            status.error_message = error_message

        status.persisted_chunks = await self._persist(handle, chunks, final_state, error_message)
        status.state = final_state

    async def _fail(
        self,
        status: IngestionStatus,
        kind: ErrorKind,
        message: str,
        log: structlog.BoundLogger,
    ) -> None:
        stage = self._stage(status)
        status.state = IngestionState.failed
        status.error_kind = kind.value
        status.error_message = message
        log.error("ingestion.run_failed", stage=stage, error_kind=kind.value, error=message)
        await self._record_state(status.document_id, IngestionState.failed, f"[{kind.value}] {message}")

    # ── Stages ──────────────────────────────────────────────────────────────

    async def _transition(
        self,
        handle: RunHandle,
        status: IngestionStatus,
        state: IngestionState,
        log: structlog.BoundLogger,
    ) -> None:
        handle.checkpoint()
        status.state = state
        log.info("ingestion.stage_started", stage=state.value)
        await self._record_state(handle.document_id, state)

    async def _extract(self, source_path: str) -> list[str]:
        try:
            data = await self._sources.read(source_path)
        except OSError as exc:
            raise ExtractionError(f"Source file unavailable: {exc}") from exc

        pages = self._extractor.extract(data)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(pages.to_list),
                timeout=self._config.extraction_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ExtractionError(
                f"Extraction timed out after {self._config.extraction_timeout_seconds}s"
            ) from exc

    async def _embed_passages(
        self,
        handle: RunHandle,
        passages: list[Passage],
        log: structlog.BoundLogger,
    ) -> tuple[list[list[float] | None], dict[int, EmbeddingError]]:
        """Embed all passages, keeping results aligned with passage order.

        Returns:
            (vectors, failures): vectors[i] is None for every passage i that
            permanently failed, failures maps those positions to their error.
        """
        semaphore = asyncio.Semaphore(self._config.per_document_concurrency)
        vectors: list[list[float] | None] = [None] * len(passages)
        failures: dict[int, EmbeddingError] = {}
        pending = list(range(len(passages)))
        batch_size = max(1, self._config.embedding_batch_size)

        for round_number in range(1 + self._config.embedding_retry_rounds):
            if round_number:
                delay = min(
                    self._config.embedding_backoff_base_seconds * 2**round_number,
                    self._config.embedding_backoff_max_seconds,
                )
                log.info("ingestion.retry_round", round=round_number, passages=len(pending), delay=delay)
                await asyncio.sleep(delay)
                handle.checkpoint()

            batches = [pending[i : i + batch_size] for i in range(0, len(pending), batch_size)]
            tasks = [
                asyncio.create_task(
                    self._embed_group(handle, semaphore, passages, batch, vectors, failures)
                )
                for batch in batches
            ]
            try:
                await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise

            pending = sorted(i for i, exc in failures.items() if exc.retryable)
            if not pending:
                break
            if round_number < self._config.embedding_retry_rounds:
                for index in pending:
                    del failures[index]

        if failures:
            log.warning(
                "ingestion.passages_failed",
                failed=len(failures),
                total=len(passages),
                kinds=sorted({exc.kind.value for exc in failures.values()}),
            )
        return vectors, failures

    async def _embed_group(
        self,
        handle: RunHandle,
        semaphore: asyncio.Semaphore,
        passages: list[Passage],
        indices: list[int],
        vectors: list[list[float] | None],
        failures: dict[int, EmbeddingError],
    ) -> None:
        texts = [passages[i].text for i in indices]
        try:
            results = await self._embed_with_retry(handle, semaphore, texts)
        except EmbeddingRejected as exc:
            if len(indices) == 1:
                failures[indices[0]] = exc
                return
            # One bad passage spoils the batch; isolate it
            for index in indices:
                await self._embed_group(handle, semaphore, passages, [index], vectors, failures)
            return
        except (EmbeddingTimeout, EmbeddingServiceError) as exc:
            for index in indices:
                failures[index] = exc
            return

        for index, vector in zip(indices, results):
            vectors[index] = vector

    async def _embed_with_retry(
        self,
        handle: RunHandle,
        semaphore: asyncio.Semaphore,
        texts: list[str],
    ) -> list[list[float]]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._config.embedding_max_attempts),
            wait=wait_exponential(
                multiplier=self._config.embedding_backoff_base_seconds,
                max=self._config.embedding_backoff_max_seconds,
            ),
            retry=retry_if_exception_type((EmbeddingTimeout, EmbeddingServiceError)),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                async with semaphore:
                    handle.checkpoint()
                    results = await self._embedder.embed_batch(texts)
                self._check_vectors(results, len(texts))
        return results

    def _check_vectors(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise EmbeddingServiceError(f"Expected {expected} embeddings, got {len(vectors)}")
        for vector in vectors:
            if len(vector) != self._chunk_store.dimensions:
                raise EmbeddingServiceError(
                    f"Embedding has {len(vector)} dimensions, expected {self._chunk_store.dimensions}"
                )

    async def _persist(
        self,
        handle: RunHandle,
        chunks: list[Chunk],
        final_state: IngestionState,
        error_message: str | None,
    ) -> int:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._config.persist_max_attempts),
                wait=wait_exponential(
                    multiplier=self._config.embedding_backoff_base_seconds,
                    max=self._config.embedding_backoff_max_seconds,
                ),
                retry=retry_if_exception_type(PersistenceError),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    handle.checkpoint()
                    persisted = await self._chunk_store.persist(
                        handle.document_id,
                        chunks,
                        ingestion_state=final_state,
                        ingestion_error=error_message,
                    )
        except NotFoundError as exc:
            raise IngestionCancelled(handle.document_id) from exc
        return persisted

    async def _record_state(
        self, document_id: str, state: IngestionState, error: str | None = None
    ) -> None:
        try:
            await self._documents.set_ingestion_state(document_id, state, error)
        except NotFoundError:
            logger.debug("ingestion.state_target_missing", document_id=document_id, state=state.value)
        except PersistenceError as exc:
            logger.warning(
                "ingestion.state_record_failed",
                document_id=document_id,
                state=state.value,
                error=str(exc),
            )

    @staticmethod
    def _stage(status: IngestionStatus) -> str:
        return status.state.value
