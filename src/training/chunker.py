"""Boundary-aware passage chunking with a hard character limit.

Page text is first normalized (control characters removed, whitespace
collapsed, blank-line runs squeezed), then split with
RecursiveCharacterTextSplitter, which prefers paragraph, line, sentence and
word boundaries before cutting inside a word. Chunks never overlap and
blank segments are discarded.

Chunking is pure: identical input always yields identical output, which
keeps reprocessing idempotent.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from langchain_text_splitters import RecursiveCharacterTextSplitter

from src.training.models import Passage

DEFAULT_CHUNK_SIZE = 800

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_HORIZONTAL_SPACE = re.compile(r"[ \t]+")
_LINE_BREAKS = re.compile(r"\r\n|\r")
_BLANK_LINE_RUNS = re.compile(r"\n\s*\n\s*\n+")

BOUNDARY_SEPARATORS: list[str] = ["\n\n", "\n", ". ", " "]


def clean_text(text: str) -> str:
    """Normalize extracted text before chunking."""
    if not text:
        return ""
    text = _CONTROL_CHARS.sub("", text)
    text = _HORIZONTAL_SPACE.sub(" ", text)
    text = _LINE_BREAKS.sub("\n", text)
    text = _BLANK_LINE_RUNS.sub("\n\n", text)
    return text.strip()


class PassageChunker:
    """Splits page text into bounded, non-overlapping passages.

    Args:
        max_chunk_size: Maximum passage length in characters.
        keep_oversized_tokens: When True, a single token longer than
            max_chunk_size is emitted whole. When False (default), text with
            no usable boundary is cut at the limit, so a break-free text of
            length L yields ceil(L / max_chunk_size) chunks. The default
            keeps max_chunk_size a hard upper bound on every passage, which
            the embedding input limit is sized against; whole oversized
            tokens are opt-in.

    Usage:
        chunker = PassageChunker(max_chunk_size=800)
        passages = chunker.chunk_pages(["page one text", "page two text"])
    """

    def __init__(
        self,
        max_chunk_size: int = DEFAULT_CHUNK_SIZE,
        keep_oversized_tokens: bool = False,
    ) -> None:
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        self.max_chunk_size = max_chunk_size
        self.keep_oversized_tokens = keep_oversized_tokens

        separators = list(BOUNDARY_SEPARATORS)
        if not keep_oversized_tokens:
            separators.append("")

        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=max_chunk_size,
            chunk_overlap=0,
            separators=separators,
            keep_separator="end",
            strip_whitespace=True,
        )

    def chunk(self, text: str) -> list[str]:
        """Split one page of text into ordered passages."""
        cleaned = clean_text(text)
        if not cleaned:
            return []
        segments = (segment.strip() for segment in self._splitter.split_text(cleaned))
        return [segment for segment in segments if segment]

    def chunk_pages(self, pages: Iterable[str]) -> list[Passage]:
        """Chunk every page, tagging passages with page number and sequence.

        Args:
            pages: Page texts in page order (blank pages allowed).

        Returns:
            Passages in document order.
        """
        passages: list[Passage] = []
        for page_number, page_text in enumerate(pages, start=1):
            for segment in self.chunk(page_text):
                passages.append(
                    Passage(text=segment, page=page_number, sequence=len(passages))
                )
        return passages
