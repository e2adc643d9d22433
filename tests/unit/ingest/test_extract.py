"""Tests for source-kind dispatch and file parsing."""

from __future__ import annotations

from io import BytesIO
from unittest.mock import MagicMock, patch

import docx
import pytest

from lexrag.errors import IngestionError
from lexrag.ingest.extract import (
    DOCX,
    PDF,
    TEXT,
    FileSource,
    UrlSource,
    extract_text,
    guess_content_type,
    parse_file,
)
from lexrag.ingest.web import WebPage
from lexrag.storage import LocalObjectStorage


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(tmp_path / "storage")


@pytest.mark.parametrize(
    "filename,expected",
    [("lease.PDF", PDF), ("memo.docx", DOCX), ("notes.txt", TEXT), ("image.png", None)],
)
def test_guess_content_type(filename, expected):
    assert guess_content_type(filename) == expected


def test_extract_text_file(storage):
    storage.upload("documents/a.txt", "Article 1. Tenants pay rent.".encode())
    result = extract_text(FileSource(path="documents/a.txt", content_type=TEXT), storage)
    assert result.text == "Article 1. Tenants pay rent."
    assert result.title is None


def test_extract_text_missing_object_is_storage_failed(storage):
    with pytest.raises(IngestionError) as exc_info:
        extract_text(FileSource(path="documents/gone.pdf", content_type=PDF), storage)
    assert exc_info.value.reason == "storage_failed"


def test_extract_text_url_uses_fetcher():
    fetcher = MagicMock()
    fetcher.fetch.return_value = WebPage(
        url="https://example.com", content="Body text", title="Title",
        description="Desc", content_type="text/html",
    )
    result = extract_text(UrlSource(url="https://example.com"), fetcher=fetcher)
    fetcher.fetch.assert_called_once_with("https://example.com")
    assert (result.text, result.title, result.description) == ("Body text", "Title", "Desc")


def test_parse_docx():
    document = docx.Document()
    document.add_paragraph("Section 1. Definitions.")
    document.add_paragraph("Section 2. Obligations.")
    buf = BytesIO()
    document.save(buf)
    assert parse_file(buf.getvalue(), DOCX) == "Section 1. Definitions.\nSection 2. Obligations."


def test_parse_pdf_skips_empty_pages():
    pages = [MagicMock(), MagicMock(), MagicMock()]
    pages[0].extract_text.return_value = "Page one."
    pages[1].extract_text.return_value = "   "
    pages[2].extract_text.return_value = "Page three."
    with patch("lexrag.ingest.extract.pypdf.PdfReader") as reader:
        reader.return_value.pages = pages
        assert parse_file(b"%PDF-1.4", PDF) == "Page one.\n\nPage three."


def test_parse_corrupt_pdf_is_extraction_failed():
    with pytest.raises(IngestionError) as exc_info:
        parse_file(b"not a pdf", PDF)
    assert exc_info.value.reason == "extraction_failed"


def test_parse_unsupported_type():
    with pytest.raises(IngestionError, match="Unsupported"):
        parse_file(b"data", "image/png")


def test_parse_invalid_utf8_is_extraction_failed():
    with pytest.raises(IngestionError) as exc_info:
        parse_file(b"\xff\xfe\xfa", TEXT)
    assert exc_info.value.reason == "extraction_failed"
