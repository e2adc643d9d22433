from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, File, Form, UploadFile

from lexrag.api.dependencies import get_config, get_conn, require_admin
from lexrag.api.schemas import (
    DeleteDocumentResponse,
    DocumentListResponse,
    DocumentOut,
    ProcessResponse,
    RegisteredDocumentResponse,
    UrlRequest,
    UrlValidationResponse,
)
from lexrag.config import LexragConfig
from lexrag.db.models import Document
from lexrag.db.repository import DocumentStore
from lexrag.errors import URL_INVALID, RejectionError
from lexrag.ingest.extract import guess_content_type
from lexrag.ingest.pipeline import build_pipeline

admin_router = APIRouter(
    prefix="/api/admin/documents",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


def _document_out(doc: Document) -> DocumentOut:
    return DocumentOut(
        id=doc.id,
        filename=doc.filename,
        source_kind=doc.source_kind,
        content_type=doc.content_type,
        file_size=doc.file_size,
        source_url=doc.source_url,
        url_title=doc.url_title,
        url_description=doc.url_description,
        version=doc.version,
        is_current=doc.is_current,
        processed=doc.processed,
        uploaded_by=doc.uploaded_by,
        created_at=doc.created_at,
    )


@admin_router.get("", response_model=DocumentListResponse)
def list_documents(
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> DocumentListResponse:
    store = DocumentStore(conn, dimensions=config.embedding.dimensions)
    return DocumentListResponse(
        documents=[_document_out(d) for d in store.list_documents()],
        stats=store.stats(),
    )


@admin_router.post("", response_model=RegisteredDocumentResponse)
def upload_document(
    file: UploadFile = File(...),
    process: bool = Form(default=True),
    uploaded_by: str | None = Form(default=None),
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> RegisteredDocumentResponse:
    """Store an uploaded file as the new current version and optionally index it."""
    filename = file.filename or "upload"
    content_type = guess_content_type(filename) or (file.content_type or "")
    data = file.file.read()
    pipeline = build_pipeline(conn, config)
    doc = pipeline.add_file(filename, data, content_type, uploaded_by=uploaded_by)
    chunks = pipeline.ingest(doc.id) if process else None
    return RegisteredDocumentResponse(
        document=_document_out(pipeline.store.get_document(doc.id)),
        chunks_created=chunks,
    )


@admin_router.post("/validate-url", response_model=UrlValidationResponse)
def validate_url(
    body: UrlRequest,
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> UrlValidationResponse:
    result = build_pipeline(conn, config).fetcher.validate(body.url)
    return UrlValidationResponse(
        valid=result.valid, error=result.error, content_type=result.content_type
    )


@admin_router.post("/url", response_model=RegisteredDocumentResponse)
def add_url(
    body: UrlRequest,
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> RegisteredDocumentResponse:
    """Register a web page as the new current version and optionally index it."""
    pipeline = build_pipeline(conn, config)
    check = pipeline.fetcher.validate(body.url)
    if not check.valid:
        raise RejectionError(URL_INVALID, check.error or "URL is not valid.")
    doc = pipeline.add_url(body.url)
    chunks = pipeline.ingest(doc.id) if body.process else None
    return RegisteredDocumentResponse(
        document=_document_out(pipeline.store.get_document(doc.id)),
        chunks_created=chunks,
    )


@admin_router.post("/{document_id}/process", response_model=ProcessResponse)
def process_document(
    document_id: str,
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> ProcessResponse:
    chunks = build_pipeline(conn, config).ingest(document_id)
    return ProcessResponse(document_id=document_id, chunks_created=chunks)


@admin_router.delete("/{document_id}", response_model=DeleteDocumentResponse)
def delete_document(
    document_id: str,
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> DeleteDocumentResponse:
    """Delete chunks, then the stored file, then the document record."""
    chunks = build_pipeline(conn, config).delete(document_id)
    return DeleteDocumentResponse(deleted=True, chunks_deleted=chunks)
