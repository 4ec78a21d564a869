"""Tests for text cleaning and passage chunking.

Tests cover:
- Text normalization (control characters, whitespace, blank-line runs)
- Size bound and boundary preference (words are not torn apart)
- Hard split of break-free text into ceil(L / max) chunks
- Oversized tokens kept whole when requested
- Page tagging and sequence numbering in chunk_pages
"""

from __future__ import annotations

import math

import pytest

from src.training.chunker import DEFAULT_CHUNK_SIZE, PassageChunker, clean_text

PROSE_SENTENCE = "The club treasurer presents the quarterly budget to the board for approval. "


def _prose(length: int) -> str:
    text = PROSE_SENTENCE * (length // len(PROSE_SENTENCE) + 1)
    return text[:length]


# ── Test: Cleaning ─────────────────────────────────────────────────────────


class TestCleanText:
    """Tests for clean_text normalization."""

    def test_control_characters_removed(self):
        assert clean_text("Rotary\x00 club\x07 manual") == "Rotary club manual"

    def test_horizontal_whitespace_collapsed(self):
        assert clean_text("Service   \t above\t\tself") == "Service above self"

    def test_line_endings_normalized(self):
        assert clean_text("line one\r\nline two\rline three") == "line one\nline two\nline three"

    def test_blank_line_runs_squeezed(self):
        assert clean_text("Intro\n\n\n\n\nBody") == "Intro\n\nBody"

    def test_empty_and_whitespace_only(self):
        assert clean_text("") == ""
        assert clean_text("  \n\t \n ") == ""


# ── Test: Chunking ─────────────────────────────────────────────────────────


class TestPassageChunker:
    """Tests for PassageChunker.chunk."""

    def test_default_size_is_800(self):
        assert PassageChunker().max_chunk_size == DEFAULT_CHUNK_SIZE == 800

    def test_short_text_single_chunk(self):
        chunker = PassageChunker()
        assert chunker.chunk("Welcome to the leadership training.") == [
            "Welcome to the leadership training."
        ]

    def test_blank_text_yields_nothing(self):
        assert PassageChunker().chunk("   \n\n  ") == []

    def test_chunks_never_exceed_max_size(self):
        chunker = PassageChunker(max_chunk_size=200)
        chunks = chunker.chunk(_prose(3000))
        assert chunks
        assert all(0 < len(c) <= 200 for c in chunks)

    def test_words_are_not_torn_apart(self):
        """Prose split on word boundaries keeps every word intact and in order."""
        text = _prose(2500).rsplit(" ", 1)[0]
        chunks = PassageChunker(max_chunk_size=300).chunk(text)
        assert len(chunks) > 1
        assert " ".join(chunks).split() == text.split()

    def test_paragraph_boundary_preferred(self):
        first = "A" * 10 + " " + "first paragraph text. " * 10
        second = "second paragraph text. " * 10
        text = first.strip() + "\n\n" + second.strip()
        chunks = PassageChunker(max_chunk_size=300).chunk(text)
        assert chunks == [first.strip(), second.strip()]

    @pytest.mark.parametrize("length", [800, 1600, 2400, 2401, 5000])
    def test_break_free_text_splits_into_ceil_chunks(self, length):
        text = "x" * length
        chunks = PassageChunker(max_chunk_size=800).chunk(text)
        assert len(chunks) == math.ceil(length / 800)
        assert "".join(chunks) == text

    def test_oversized_token_kept_whole_when_requested(self):
        token = "y" * 1000
        chunker = PassageChunker(max_chunk_size=800, keep_oversized_tokens=True)
        chunks = chunker.chunk(f"before {token} after")
        assert token in chunks
        assert chunks[0] == "before"
        assert chunks[-1] == "after"

    def test_chunking_is_deterministic(self):
        text = _prose(4000)
        chunker = PassageChunker()
        assert chunker.chunk(text) == PassageChunker().chunk(text)

    def test_invalid_size_rejected(self):
        with pytest.raises(ValueError):
            PassageChunker(max_chunk_size=0)


# ── Test: Pages ────────────────────────────────────────────────────────────


class TestChunkPages:
    """Tests for PassageChunker.chunk_pages."""

    def test_two_page_document(self):
        """1500 characters of prose on page 1 and 100 on page 2."""
        page_one = _prose(1500)
        page_two = ("Meeting notes for the district conference. " * 3)[:100]

        passages = PassageChunker().chunk_pages([page_one, page_two])

        page_one_passages = [p for p in passages if p.page == 1]
        page_two_passages = [p for p in passages if p.page == 2]
        assert len(page_one_passages) >= 2
        assert len(page_two_passages) == 1

    def test_blank_pages_keep_numbering(self):
        passages = PassageChunker().chunk_pages(["First page.", "", "Third page."])
        assert [(p.page, p.text) for p in passages] == [(1, "First page."), (3, "Third page.")]

    def test_sequence_is_contiguous_across_pages(self):
        passages = PassageChunker(max_chunk_size=100).chunk_pages([_prose(450), _prose(250)])
        assert [p.sequence for p in passages] == list(range(len(passages)))
