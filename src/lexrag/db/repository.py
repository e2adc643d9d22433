"""Document store: documents, their chunks, and cosine similarity search.

Every document belongs to a logical *slot* (the filename for uploads, the URL
for web pages unless the caller names one). Registering a new document demotes
the slot's current version and inserts the new one in the same transaction, so
a slot never has zero or two current documents.
"""

from __future__ import annotations

import json
import sqlite3
import uuid

import structlog

from lexrag.db.connection import write_transaction
from lexrag.db.models import SOURCE_FILE, SOURCE_URL, Chunk, Document, SearchResult
from lexrag.db.vectors import check_dimensions, deserialize, get_embedding_space, serialize
from lexrag.errors import SearchError

log = structlog.get_logger(__name__)

_DOCUMENT_COLUMNS = """
    id, slot, filename, source_kind, content_type, file_path, file_size,
    source_url, url_title, url_description, version, is_current, processed,
    uploaded_by, created_at, updated_at
"""


class DocumentStore:
    """Data access layer for documents and chunks.

    Wraps an open sqlite3.Connection (sqlite-vec loaded, schema initialised).
    The connection is owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int | None = None) -> None:
        """Initialise with an open connection.

        Args:
            conn: Connection from lexrag.db.connection.Database.
            dimensions: Expected embedding length. When None, the dimensionality
                recorded in the embedding_space table is used.
        """
        self._conn = conn
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int | None:
        if self._dimensions is None:
            space = get_embedding_space(self._conn)
            if space is not None:
                self._dimensions = space.dimensions
        return self._dimensions

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def register_file(
        self,
        filename: str,
        file_path: str,
        content_type: str,
        file_size: int,
        *,
        uploaded_by: str | None = None,
        slot: str | None = None,
    ) -> Document:
        """Register an uploaded file as the new current version of its slot."""
        return self._register(
            Document(
                id=str(uuid.uuid4()),
                filename=filename,
                slot=slot or filename,
                source_kind=SOURCE_FILE,
                content_type=content_type,
                file_path=file_path,
                file_size=file_size,
                uploaded_by=uploaded_by,
            )
        )

    def register_url(
        self,
        url: str,
        *,
        title: str | None = None,
        description: str | None = None,
        content_type: str = "text/html",
        uploaded_by: str | None = None,
        slot: str | None = None,
    ) -> Document:
        """Register a web page as the new current version of its slot.

        The filename is the page title when known, else the URL itself.
        """
        return self._register(
            Document(
                id=str(uuid.uuid4()),
                filename=(title or url)[:255],
                slot=slot or url,
                source_kind=SOURCE_URL,
                content_type=content_type,
                source_url=url,
                url_title=title,
                url_description=description,
                uploaded_by=uploaded_by,
            )
        )

    def _register(self, doc: Document) -> Document:
        with write_transaction(self._conn):
            self._conn.execute(
                """
                UPDATE documents SET is_current = 0, updated_at = datetime('now')
                WHERE slot = ? AND is_current = 1
                """,
                (doc.slot,),
            )
            doc.version = self._conn.execute(
                "SELECT COALESCE(MAX(version), 0) + 1 FROM documents WHERE slot = ?",
                (doc.slot,),
            ).fetchone()[0]
            self._conn.execute(
                """
                INSERT INTO documents (
                    id, slot, filename, source_kind, content_type, file_path,
                    file_size, source_url, url_title, url_description, version,
                    is_current, processed, uploaded_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, 0, ?)
                """,
                (
                    doc.id,
                    doc.slot,
                    doc.filename,
                    doc.source_kind,
                    doc.content_type,
                    doc.file_path,
                    doc.file_size,
                    doc.source_url,
                    doc.url_title,
                    doc.url_description,
                    doc.version,
                    doc.uploaded_by,
                ),
            )
        log.info("document.registered", document_id=doc.id, slot=doc.slot, version=doc.version)
        return self.get_document(doc.id)  # type: ignore[return-value]

    def get_document(self, document_id: str) -> Document | None:
        row = self._conn.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?", (document_id,)
        ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(self, *, current_only: bool = False) -> list[Document]:
        """Return documents, newest first.

        Args:
            current_only: Exclude superseded versions.
        """
        sql = f"SELECT {_DOCUMENT_COLUMNS} FROM documents"
        if current_only:
            sql += " WHERE is_current = 1"
        sql += " ORDER BY created_at DESC, version DESC"
        return [_row_to_document(r) for r in self._conn.execute(sql).fetchall()]

    def mark_processed(self, document_id: str) -> None:
        self._set_processed(document_id, True)

    def reset_processed(self, document_id: str) -> None:
        """Flag a document as not processed so it can be retried."""
        self._set_processed(document_id, False)

    def _set_processed(self, document_id: str, processed: bool) -> None:
        self._conn.execute(
            "UPDATE documents SET processed = ?, updated_at = datetime('now') WHERE id = ?",
            (int(processed), document_id),
        )
        self._conn.commit()

    def update_url_metadata(
        self, document_id: str, title: str | None, description: str | None
    ) -> None:
        """Record the title and description scraped from a URL document."""
        self._conn.execute(
            """
            UPDATE documents
            SET url_title = COALESCE(?, url_title),
                url_description = COALESCE(?, url_description),
                updated_at = datetime('now')
            WHERE id = ? AND source_kind = 'url'
            """,
            (title, description, document_id),
        )
        self._conn.commit()

    def delete_document(self, document_id: str) -> None:
        """Delete a document record. Its chunks must already be gone."""
        self._conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        self._conn.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def replace_chunks(self, document_id: str, chunks: list[Chunk]) -> int:
        """Replace every chunk of *document_id* and mark it processed.

        All-or-nothing: either the full chunk set is committed together with
        ``processed = 1``, or nothing changes.

        Raises:
            ValueError: If a chunk has no embedding or belongs to another document.
            DimensionMismatchError: If an embedding has the wrong length.
        """
        expected = self.dimensions
        rows = []
        for chunk in chunks:
            if chunk.document_id != document_id:
                raise ValueError(f"Chunk {chunk.chunk_index} belongs to {chunk.document_id}")
            if chunk.embedding is None:
                raise ValueError(f"Chunk {chunk.chunk_index} has no embedding")
            if expected is None:
                expected = len(chunk.embedding)
            check_dimensions(chunk.embedding, expected)
            rows.append(
                (
                    document_id,
                    chunk.chunk_index,
                    chunk.content,
                    serialize(chunk.embedding),
                    chunk.metadata,
                )
            )

        with write_transaction(self._conn):
            self._conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            self._conn.executemany(
                """
                INSERT INTO chunks (document_id, chunk_index, content, embedding, metadata)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )
            self._conn.execute(
                "UPDATE documents SET processed = 1, updated_at = datetime('now') WHERE id = ?",
                (document_id,),
            )
        return len(rows)

    def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return the chunks of *document_id* in chunk_index order."""
        rows = self._conn.execute(
            """
            SELECT id, document_id, chunk_index, content, embedding, metadata, created_at
            FROM chunks WHERE document_id = ? ORDER BY chunk_index
            """,
            (document_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, document_id: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchone()[0]

    def delete_chunks(self, document_id: str) -> int:
        """Delete all chunks of *document_id* and clear its processed flag.

        Both changes commit together, so a document is never left processed
        with no chunks. Returns the number deleted.
        """
        with write_transaction(self._conn):
            cur = self._conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            self._conn.execute(
                "UPDATE documents SET processed = 0, updated_at = datetime('now') WHERE id = ?",
                (document_id,),
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Similarity search
    # ------------------------------------------------------------------

    def search(
        self, query_embedding: list[float], threshold: float, limit: int
    ) -> list[SearchResult]:
        """Rank embedded chunks of current, processed documents by cosine similarity.

        Args:
            query_embedding: Vector from the same embedding model as the chunks.
            threshold: Results must score strictly above this similarity.
            limit: Maximum number of results.

        Returns:
            SearchResult list, most similar first.

        Raises:
            DimensionMismatchError: If the query length differs from the store's.
            SearchError: If the query itself fails.
        """
        expected = self.dimensions
        if expected is not None:
            check_dimensions(query_embedding, expected)
        if limit <= 0:
            return []

        try:
            rows = self._conn.execute(
                """
                SELECT * FROM (
                    SELECT c.id AS chunk_id, c.document_id, c.content, c.metadata,
                           1 - vec_distance_cosine(c.embedding, ?) AS similarity,
                           d.filename, d.source_kind, d.source_url, d.url_title
                    FROM chunks c
                    JOIN documents d ON d.id = c.document_id
                    WHERE d.processed = 1
                      AND d.is_current = 1
                      AND c.embedding IS NOT NULL
                )
                WHERE similarity > ?
                ORDER BY similarity DESC
                LIMIT ?
                """,
                (serialize(query_embedding), threshold, limit),
            ).fetchall()
        except sqlite3.Error as exc:
            raise SearchError(f"Similarity search failed: {exc}") from exc

        return [
            SearchResult(
                chunk_id=r["chunk_id"],
                document_id=r["document_id"],
                content=r["content"],
                metadata=json.loads(r["metadata"] or "{}"),
                similarity=min(1.0, max(0.0, r["similarity"])),
                filename=r["filename"],
                source_kind=r["source_kind"],
                source_url=r["source_url"],
                url_title=r["url_title"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> dict[str, int]:
        """Return document and chunk counts."""
        row = self._conn.execute(
            """
            SELECT
                COUNT(*) AS documents,
                COALESCE(SUM(is_current), 0) AS current,
                COALESCE(SUM(CASE WHEN is_current = 1 AND processed = 1 THEN 1 ELSE 0 END), 0)
                    AS searchable,
                COALESCE(SUM(CASE WHEN processed = 0 THEN 1 ELSE 0 END), 0) AS pending
            FROM documents
            """
        ).fetchone()
        chunks = self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
        return {
            "documents": row["documents"],
            "current": row["current"],
            "searchable": row["searchable"],
            "pending": row["pending"],
            "chunks": chunks,
        }


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        slot=row["slot"],
        filename=row["filename"],
        source_kind=row["source_kind"],
        content_type=row["content_type"],
        file_path=row["file_path"],
        file_size=row["file_size"],
        source_url=row["source_url"],
        url_title=row["url_title"],
        url_description=row["url_description"],
        version=row["version"],
        is_current=bool(row["is_current"]),
        processed=bool(row["processed"]),
        uploaded_by=row["uploaded_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        content=row["content"],
        embedding=deserialize(row["embedding"]) if row["embedding"] is not None else None,
        metadata=row["metadata"],
        created_at=row["created_at"],
    )
