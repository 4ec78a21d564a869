"""Tests for PDF text extraction.

PDFs are generated in-test (see conftest.build_pdf) so the suite needs no
binary fixtures. Tests cover per-page extraction, blank-page alignment,
restartable iteration, stream input, and every ExtractionError path.
"""

from __future__ import annotations

import io

import pytest
from pypdf import PdfWriter

from src.training.errors import ErrorKind, ExtractionError
from src.training.extraction import PdfTextExtractor


def _encrypted_pdf(user_password: str) -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    writer.encrypt(user_password=user_password, owner_password="owner-secret")
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


class TestPdfTextExtractor:
    """Tests for PdfTextExtractor.extract and PdfPages iteration."""

    def test_one_string_per_page_in_order(self, make_pdf):
        data = make_pdf(["Rotary manual introduction", "Club procedures chapter"])
        pages = PdfTextExtractor().extract(data).to_list()

        assert len(pages) == 2
        assert "Rotary manual introduction" in pages[0]
        assert "Club procedures chapter" in pages[1]

    def test_multiline_page(self, make_pdf):
        data = make_pdf([["First line of the guide", "Second line of the guide"]])
        (page,) = PdfTextExtractor().extract(data).to_list()
        assert "First line of the guide" in page
        assert "Second line of the guide" in page

    def test_blank_page_yields_empty_string(self, make_pdf):
        data = make_pdf(["Cover page", "", "Appendix"])
        pages = PdfTextExtractor().extract(data).to_list()

        assert len(pages) == 3
        assert pages[1] == ""
        assert "Appendix" in pages[2]

    def test_iteration_is_restartable(self, make_pdf):
        pages = PdfTextExtractor().extract(make_pdf(["Alpha page", "Beta page"]))
        assert list(pages) == list(pages)

    def test_stream_read_once(self, make_pdf):
        data = make_pdf(["Stream input page"])
        stream = io.BytesIO(data)
        pages = PdfTextExtractor().extract(stream)

        assert stream.tell() == len(data)
        assert pages.size_bytes == len(data)
        assert "Stream input page" in pages.to_list()[0]

    def test_not_a_pdf(self):
        pages = PdfTextExtractor().extract(b"hello, this is plain text")
        with pytest.raises(ExtractionError) as exc_info:
            pages.to_list()
        assert exc_info.value.kind == ErrorKind.extraction
        assert exc_info.value.retryable is False

    def test_empty_stream(self):
        with pytest.raises(ExtractionError):
            PdfTextExtractor().extract(b"").to_list()

    def test_no_text_on_any_page(self, make_pdf):
        with pytest.raises(ExtractionError, match="no extractable text"):
            PdfTextExtractor().extract(make_pdf(["", ""])).to_list()

    def test_password_protected(self):
        with pytest.raises(ExtractionError, match="password"):
            PdfTextExtractor().extract(_encrypted_pdf("club-secret")).to_list()
