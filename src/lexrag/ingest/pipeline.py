"""Ingestion pipeline: extract → chunk → embed in batches → store → mark processed.

A document is only ever flagged ``processed`` in the same transaction that
commits its complete chunk set. Any failure before that leaves the document
with no chunks and ``processed = 0`` so it can be retried.
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from pathlib import PurePosixPath
from typing import Callable

import structlog

from lexrag.config import LexragConfig
from lexrag.db.models import SOURCE_URL, Chunk, Document
from lexrag.db.repository import DocumentStore
from lexrag.errors import DimensionMismatchError, EmbeddingError, FetchError, IngestionError
from lexrag.ingest.chunker import SentenceChunker
from lexrag.ingest.extract import (
    SUPPORTED_FILE_TYPES,
    FileSource,
    Source,
    UrlSource,
    extract_text,
)
from lexrag.ingest.web import WebFetcher
from lexrag.rag.llm_client import EmbeddingClient
from lexrag.storage import LocalObjectStorage, StorageError

log = structlog.get_logger(__name__)


class IngestionPipeline:
    """Index documents already registered in the document store."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingClient,
        storage: LocalObjectStorage,
        *,
        chunker: SentenceChunker | None = None,
        fetcher: WebFetcher | None = None,
        batch_size: int = 5,
        batch_delay: float = 1.0,
        min_text_length: int = 100,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.store = store
        self.embedder = embedder
        self.storage = storage
        self.chunker = chunker or SentenceChunker()
        self.fetcher = fetcher or WebFetcher()
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.min_text_length = min_text_length
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_file(
        self,
        filename: str,
        data: bytes,
        content_type: str,
        *,
        uploaded_by: str | None = None,
    ) -> Document:
        """Upload *data* to object storage and register it as a new document."""
        if content_type not in SUPPORTED_FILE_TYPES:
            raise IngestionError(
                "extraction_failed",
                f"Unsupported file type '{content_type}'. Supported: PDF, DOCX, plain text.",
            )
        suffix = PurePosixPath(filename).suffix.lower()
        key = f"documents/{uuid.uuid4()}{suffix}"
        try:
            self.storage.upload(key, data)
        except OSError as exc:
            raise IngestionError("storage_failed", f"Could not store '{filename}': {exc}") from exc
        try:
            return self.store.register_file(
                filename=PurePosixPath(filename).name,
                file_path=key,
                content_type=content_type,
                file_size=len(data),
                uploaded_by=uploaded_by,
            )
        except sqlite3.Error:
            self._discard_upload(key)
            raise

    def _discard_upload(self, key: str) -> None:
        try:
            self.storage.remove(key)
        except (StorageError, OSError) as exc:
            log.warning("upload.orphaned", key=key, error=str(exc))

    def add_url(self, url: str, *, uploaded_by: str | None = None) -> Document:
        """Register *url* as a new document. Its page is fetched during ingest()."""
        return self.store.register_url(url, uploaded_by=uploaded_by)

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def ingest(self, document_id: str) -> int:
        """Index *document_id* and return the number of chunks created.

        Raises:
            IngestionError: Extraction, chunking, embedding or storage failure.
            FetchError: The document's URL could not be fetched (classified).
        """
        doc = self.store.get_document(document_id)
        if doc is None:
            raise IngestionError("not_found", f"Document '{document_id}' not found.")
        if doc.processed:
            raise IngestionError(
                "already_processed", f"Document '{doc.filename}' is already processed."
            )

        bound = log.bind(document_id=doc.id, filename=doc.filename, source_kind=doc.source_kind)
        bound.info("ingest.started")
        try:
            count = self._ingest(doc)
        except (IngestionError, FetchError) as exc:
            self._mark_failed(doc.id)
            bound.error("ingest.failed", error=str(exc), reason=_failure_reason(exc))
            raise
        except sqlite3.Error as exc:
            self._mark_failed(doc.id)
            bound.error("ingest.failed", error=str(exc), reason="storage_failed")
            raise IngestionError("storage_failed", f"Could not store chunks: {exc}") from exc
        bound.info("ingest.completed", chunks=count)
        return count

    def _ingest(self, doc: Document) -> int:
        extracted = extract_text(_source_of(doc), self.storage, self.fetcher)
        if doc.source_kind == SOURCE_URL:
            self.store.update_url_metadata(doc.id, extracted.title, extracted.description)

        text = extracted.text.strip()
        if not text:
            raise IngestionError("empty_text", f"No text could be extracted from '{doc.filename}'.")
        if len(text) < self.min_text_length:
            raise IngestionError(
                "empty_text",
                f"Extracted text from '{doc.filename}' is too short "
                f"({len(text)} < {self.min_text_length} characters).",
            )

        pieces = self.chunker.chunk(text)
        if not pieces:
            raise IngestionError("no_chunks", f"Text of '{doc.filename}' produced no chunks.")

        embeddings = self._embed_batches(pieces)

        chunks = [
            Chunk(
                document_id=doc.id,
                chunk_index=i,
                content=piece,
                embedding=embedding,
                metadata=json.dumps(_chunk_metadata(doc, extracted.title, piece)),
            )
            for i, (piece, embedding) in enumerate(zip(pieces, embeddings))
        ]
        try:
            return self.store.replace_chunks(doc.id, chunks)
        except DimensionMismatchError as exc:
            raise IngestionError("embedding_failed", f"Could not store chunks: {exc}") from exc

    def _embed_batches(self, pieces: list[str]) -> list[list[float]]:
        embeddings: list[list[float]] = []
        for start in range(0, len(pieces), self.batch_size):
            if start > 0 and self.batch_delay > 0:
                self._sleep(self.batch_delay)
            for piece in pieces[start : start + self.batch_size]:
                try:
                    embeddings.append(self.embedder.embed(piece))
                except (EmbeddingError, DimensionMismatchError) as exc:
                    raise IngestionError(
                        "embedding_failed",
                        f"Embedding failed at chunk {len(embeddings)}: {exc}",
                    ) from exc
        return embeddings

    def _mark_failed(self, document_id: str) -> None:
        try:
            self.store.reset_processed(document_id)
        except sqlite3.Error as exc:
            log.error("ingest.reset_failed", document_id=document_id, error=str(exc))

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, document_id: str) -> int:
        """Delete chunks, then the stored file, then the document record.

        A storage failure is logged and does not block the record deletion.
        Returns the number of chunks deleted.
        """
        doc = self.store.get_document(document_id)
        if doc is None:
            raise IngestionError("not_found", f"Document '{document_id}' not found.")

        deleted = self.store.delete_chunks(doc.id)
        if doc.file_path:
            try:
                self.storage.remove(doc.file_path)
            except (StorageError, OSError) as exc:
                log.warning("delete.storage_failed", document_id=doc.id, key=doc.file_path, error=str(exc))
        self.store.delete_document(doc.id)
        log.info("document.deleted", document_id=doc.id, chunks=deleted)
        return deleted


def _source_of(doc: Document) -> Source:
    if doc.source_kind == SOURCE_URL:
        return UrlSource(url=doc.source_url or "")
    return FileSource(path=doc.file_path or "", content_type=doc.content_type, filename=doc.filename)


def _chunk_metadata(doc: Document, title: str | None, piece: str) -> dict:
    meta = {
        "filename": doc.filename,
        "version": doc.version,
        "source_kind": doc.source_kind,
        "chunk_length": len(piece),
    }
    if doc.source_kind == SOURCE_URL:
        meta["source_url"] = doc.source_url
        meta["url_title"] = title or doc.url_title
    return meta


def _failure_reason(exc: Exception) -> str:
    if isinstance(exc, FetchError):
        return f"fetch_{exc.kind}"
    return getattr(exc, "reason", "unknown")


def build_pipeline(conn: sqlite3.Connection, config: LexragConfig) -> IngestionPipeline:
    """Wire an IngestionPipeline from configuration on an open connection."""
    return IngestionPipeline(
        store=DocumentStore(conn, dimensions=config.embedding.dimensions),
        embedder=EmbeddingClient(config.embedding.model, config.embedding.dimensions),
        storage=LocalObjectStorage(config.storage.directory),
        chunker=SentenceChunker(config.chunking.max_length, config.chunking.min_length),
        fetcher=WebFetcher(
            timeout=config.ingestion.fetch_timeout,
            max_bytes=config.ingestion.max_bytes,
            validate_timeout=config.ingestion.validate_timeout,
            min_content_length=config.ingestion.min_text_length,
        ),
        batch_size=config.embedding.batch_size,
        batch_delay=config.embedding.batch_delay,
        min_text_length=config.ingestion.min_text_length,
    )
