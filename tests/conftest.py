"""Shared fixtures for the training library tests.

Provides:
- A file-backed SQLite database (aiosqlite) with the training tables
- A session_factory matching the production get_session() contract
- TrainingConfig tuned for fast tests (hashing embeddings, no backoff)
- make_pdf: builds small real PDF documents from page texts
- ScriptedEmbedder: deterministic embedder with injectable failures and a
  gate for holding runs mid-embedding
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine

from src.training.config import TrainingConfig
from src.training.embeddings import HashingEmbeddingGenerator
from src.training.store import TrainingBase

TEST_DIMENSIONS = 256


# ── PDF Builder ──────────────────────────────────────────────────────────────


def _escape_pdf_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(pages: list[str | list[str]]) -> bytes:
    """Build a minimal PDF with one Helvetica text line per list item.

    Args:
        pages: One entry per page; a string is a single line, a list is a
            sequence of lines. An empty string or list makes a blank page.
    """
    page_count = len(pages)
    font_obj = 3
    first_page_obj = 4
    objects: list[bytes] = []

    kids = " ".join(f"{first_page_obj + 2 * i} 0 R" for i in range(page_count))
    objects.append(b"<< /Type /Catalog /Pages 2 0 R >>")
    objects.append(f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>".encode("latin-1"))
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    for i, page in enumerate(pages):
        lines = [page] if isinstance(page, str) else list(page)
        lines = [line for line in lines if line]
        content_obj = first_page_obj + 2 * i + 1
        objects.append(
            (
                f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 {font_obj} 0 R >> >> /Contents {content_obj} 0 R >>"
            ).encode("latin-1")
        )
        if lines:
            body = " T* ".join(f"({_escape_pdf_text(line)}) Tj" for line in lines)
            stream = f"BT /F1 10 Tf 12 TL 36 756 Td {body} ET".encode("latin-1")
        else:
            stream = b""
        objects.append(
            b"<< /Length " + str(len(stream)).encode() + b" >>\nstream\n" + stream + b"\nendstream"
        )

    out = bytearray(b"%PDF-1.4\n")
    offsets: list[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


@pytest.fixture
def make_pdf() -> Callable[[list[str | list[str]]], bytes]:
    """Factory fixture returning the PDF builder."""
    return build_pdf


# ── Embedders ────────────────────────────────────────────────────────────────


@dataclass
class FailureRule:
    """Raise ``error`` for texts containing ``marker``; ``times=None`` means forever."""

    marker: str
    error: Callable[[], Exception]
    times: int | None = None


class ScriptedEmbedder:
    """Hashing embedder with scripted failures, call counting and a gate.

    When ``gate`` is set, every call signals ``entered`` and then waits for
    the gate before embedding, which lets tests hold a run mid-flight.
    """

    def __init__(self, dimensions: int = TEST_DIMENSIONS) -> None:
        self._inner = HashingEmbeddingGenerator(dimensions)
        self.rules: list[FailureRule] = []
        self.calls = 0
        self.texts_seen: list[str] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    @property
    def dimensions(self) -> int:
        return self._inner.dimensions

    def fail(self, marker: str, error: Callable[[], Exception], times: int | None = None) -> None:
        self.rules.append(FailureRule(marker=marker, error=error, times=times))

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        self.texts_seen.extend(texts)
        if self.gate is not None:
            self.entered.set()
            await self.gate.wait()
        for text in texts:
            for rule in self.rules:
                if rule.marker in text and (rule.times is None or rule.times > 0):
                    if rule.times is not None:
                        rule.times -= 1
                    raise rule.error()
        return await self._inner.embed_batch(texts)


@pytest.fixture
def embedder() -> ScriptedEmbedder:
    return ScriptedEmbedder()


# ── Configuration ────────────────────────────────────────────────────────────


@pytest.fixture
def training_config(tmp_path) -> TrainingConfig:
    """TrainingConfig with hashing embeddings and zero backoff."""
    return TrainingConfig(
        embedding_provider="hashing",
        embedding_dimensions=TEST_DIMENSIONS,
        embedding_batch_size=1,
        similarity_threshold=0.05,
        default_search_limit=10,
        embedding_max_attempts=3,
        embedding_retry_rounds=1,
        embedding_backoff_base_seconds=0.0,
        embedding_backoff_max_seconds=0.0,
        persist_max_attempts=3,
        max_concurrent_documents=2,
        per_document_concurrency=4,
        queue_maxsize=50,
        extraction_timeout_seconds=30.0,
        storage_path=str(tmp_path / "uploads"),
        max_upload_bytes=1024 * 1024,
    )


# ── Database ─────────────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with the training tables created."""
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'training.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(TrainingBase.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine):
    """Session factory with the same contract as src.app.core.database.get_session."""

    async def factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session

    return factory
