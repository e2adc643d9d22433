"""Raw text extraction for uploaded files and web pages.

A document's source is a tagged variant, ``FileSource`` or ``UrlSource``;
``extract_text`` is the single place that branches on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Union

import docx
import pypdf

from lexrag.errors import IngestionError
from lexrag.ingest.web import WebFetcher
from lexrag.storage import LocalObjectStorage, StorageError

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT = "text/plain"

SUPPORTED_FILE_TYPES = {PDF, DOCX, TEXT}

_EXTENSION_TYPES = {".pdf": PDF, ".docx": DOCX, ".txt": TEXT}


@dataclass(frozen=True)
class FileSource:
    path: str  # object-storage key
    content_type: str
    filename: str = ""


@dataclass(frozen=True)
class UrlSource:
    url: str


Source = Union[FileSource, UrlSource]


@dataclass
class ExtractedText:
    text: str
    title: str | None = None
    description: str | None = None
    content_type: str = TEXT


def guess_content_type(filename: str) -> str | None:
    """Map a file extension to a supported content type, or None."""
    for ext, content_type in _EXTENSION_TYPES.items():
        if filename.lower().endswith(ext):
            return content_type
    return None


def extract_text(
    source: Source,
    storage: LocalObjectStorage | None = None,
    fetcher: WebFetcher | None = None,
) -> ExtractedText:
    """Return the raw text of *source*.

    Raises:
        IngestionError: ``storage_failed`` or ``extraction_failed``.
        FetchError: URL sources that cannot be fetched.
    """
    if isinstance(source, UrlSource):
        page = (fetcher or WebFetcher()).fetch(source.url)
        return ExtractedText(
            text=page.content,
            title=page.title,
            description=page.description,
            content_type=page.content_type,
        )

    if storage is None:
        raise ValueError("A file source needs object storage")
    try:
        data = storage.download(source.path)
    except StorageError as exc:
        raise IngestionError("storage_failed", f"Could not download '{source.path}': {exc}") from exc
    return ExtractedText(text=parse_file(data, source.content_type), content_type=source.content_type)


def parse_file(data: bytes, content_type: str) -> str:
    """Decode file bytes by content type."""
    try:
        if content_type == PDF:
            return _parse_pdf(data)
        if content_type == DOCX:
            return _parse_docx(data)
        if content_type == TEXT:
            return data.decode("utf-8")
    except IngestionError:
        raise
    except Exception as exc:
        raise IngestionError(
            "extraction_failed", f"Could not extract text from {content_type} file: {exc}"
        ) from exc
    raise IngestionError("extraction_failed", f"Unsupported file type: {content_type}")


def _parse_pdf(data: bytes) -> str:
    # Pages that yield no text (scanned images, etc.) are skipped.
    reader = pypdf.PdfReader(BytesIO(data))
    parts: list[str] = []
    for page in reader.pages:
        page_text = (page.extract_text() or "").strip()
        if page_text:
            parts.append(page_text)
    return "\n\n".join(parts)


def _parse_docx(data: bytes) -> str:
    document = docx.Document(BytesIO(data))
    return "\n".join(p.text for p in document.paragraphs)
