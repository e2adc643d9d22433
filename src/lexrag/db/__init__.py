"""lexrag database layer."""

from lexrag.db.connection import Database, write_transaction
from lexrag.db.migrations import MIGRATIONS, initialize, run_migrations
from lexrag.db.repository import DocumentStore
from lexrag.db.vectors import ensure_embedding_space, get_embedding_space

__all__ = [
    "Database",
    "DocumentStore",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "write_transaction",
    "ensure_embedding_space",
    "get_embedding_space",
]
