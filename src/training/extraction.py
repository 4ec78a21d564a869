"""PDF text extraction, one string per page.

The extractor reads its input exactly once and hands back a PdfPages
iterable. Each iteration re-parses the buffered bytes, so the sequence is
lazy (pages are decoded on demand) and can be restarted from scratch, which
the orchestrator relies on for idempotent reprocessing.
"""

from __future__ import annotations

import io
from collections.abc import Iterator
from typing import BinaryIO

import structlog
from pypdf import PdfReader
from pypdf.errors import PyPdfError

from src.training.errors import ExtractionError

logger = structlog.get_logger(__name__)

# Exceptions pypdf lets escape on malformed input besides its own hierarchy
_PARSE_ERRORS = (PyPdfError, ValueError, KeyError, TypeError, IndexError, AttributeError, OSError)


class PdfPages:
    """Lazy, finite, restartable sequence of page texts in page order.

    Blank pages yield an empty string so page numbers stay aligned with
    positions. Iteration raises ExtractionError if the document cannot be
    parsed, is password-protected, or yields no text on any page.

    Args:
        data: Raw PDF bytes.
    """

    def __init__(self, data: bytes) -> None:
        self._data = data

    def __iter__(self) -> Iterator[str]:
        reader = self._open()
        has_text = False
        try:
            for page in reader.pages:
                text = (page.extract_text() or "").strip()
                if text:
                    has_text = True
                yield text
        except _PARSE_ERRORS as exc:
            raise ExtractionError(f"Failed to extract PDF text: {exc}") from exc

        if not has_text:
            raise ExtractionError("PDF contains no extractable text")

    def to_list(self) -> list[str]:
        """Materialize every page."""
        return list(self)

    @property
    def size_bytes(self) -> int:
        return len(self._data)

    def _open(self) -> PdfReader:
        if not self._data:
            raise ExtractionError("PDF stream is empty")
        try:
            reader = PdfReader(io.BytesIO(self._data))
            encrypted = reader.is_encrypted
        except _PARSE_ERRORS as exc:
            raise ExtractionError(f"Not a parseable PDF: {exc}") from exc

        if encrypted:
            # Owner-password-only files open with an empty user password
            try:
                unlocked = reader.decrypt("")
            except _PARSE_ERRORS as exc:
                raise ExtractionError(f"PDF is password-protected: {exc}") from exc
            if not unlocked:
                raise ExtractionError("PDF is password-protected")
        return reader


class PdfTextExtractor:
    """Turns a PDF byte stream into per-page plain text.

    Usage:
        pages = PdfTextExtractor().extract(pdf_bytes)
        for page_text in pages:
            ...
    """

    def extract(self, source: bytes | BinaryIO) -> PdfPages:
        """Read the source once and return its pages.

        Args:
            source: PDF bytes or a readable binary stream.

        Returns:
            PdfPages over the buffered bytes.
        """
        data = source if isinstance(source, bytes) else source.read()
        logger.debug("extraction.source_read", size_bytes=len(data))
        return PdfPages(data)
