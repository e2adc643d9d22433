"""Embedding vector space bookkeeping and float32 serialization.

A database holds embeddings from exactly one model. The model and its
dimensionality are recorded on first use; vectors of any other length are
rejected on write and on search instead of silently matching nothing.
"""

from __future__ import annotations

import sqlite3
import struct
from dataclasses import dataclass

import sqlite_vec

from lexrag.errors import DimensionMismatchError


@dataclass
class EmbeddingSpace:
    model: str
    dimensions: int


def ensure_embedding_space(
    conn: sqlite3.Connection, model: str, dimensions: int
) -> EmbeddingSpace:
    """Record *model*/*dimensions* for this database, or verify the recorded one.

    Args:
        conn: Active database connection.
        model: LiteLLM embedding model string.
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-ada-002).

    Returns:
        The recorded EmbeddingSpace.

    Raises:
        ValueError: If *dimensions* < 1, or the database already holds
            embeddings from a different model.
        DimensionMismatchError: If the recorded dimensionality differs.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    existing = get_embedding_space(conn)
    if existing is None:
        conn.execute(
            "INSERT INTO embedding_space (id, model, dimensions) VALUES (1, ?, ?)",
            (model, dimensions),
        )
        conn.commit()
        return EmbeddingSpace(model=model, dimensions=dimensions)

    if existing.model != model:
        raise ValueError(
            f"Database embeddings were created with '{existing.model}', not '{model}'. "
            "Re-ingest the documents or configure the original embedding model."
        )
    if existing.dimensions != dimensions:
        raise DimensionMismatchError(expected=existing.dimensions, actual=dimensions)
    return existing


def get_embedding_space(conn: sqlite3.Connection) -> EmbeddingSpace | None:
    row = conn.execute("SELECT model, dimensions FROM embedding_space WHERE id = 1").fetchone()
    if row is None:
        return None
    return EmbeddingSpace(model=row["model"], dimensions=row["dimensions"])


def check_dimensions(embedding: list[float], expected: int) -> None:
    """Raise DimensionMismatchError unless ``len(embedding) == expected``."""
    if len(embedding) != expected:
        raise DimensionMismatchError(expected=expected, actual=len(embedding))


def serialize(embedding: list[float]) -> bytes:
    """Pack *embedding* as the float32 BLOB layout sqlite-vec reads."""
    return sqlite_vec.serialize_float32(embedding)


def deserialize(blob: bytes) -> list[float]:
    """Inverse of serialize()."""
    count = len(blob) // 4
    return list(struct.unpack(f"{count}f", blob))
