"""Dense retriever: embed the query, then cosine search over current documents."""

from __future__ import annotations

from dataclasses import dataclass

from lexrag.db.models import SearchResult
from lexrag.db.repository import DocumentStore
from lexrag.rag.llm_client import EmbeddingClient


@dataclass
class RetrieverConfig:
    """Configuration for the retriever.

    Attributes:
        similarity_threshold: Results must score strictly above this (0-1).
        match_count: Maximum number of chunks returned.
    """

    similarity_threshold: float = 0.7
    match_count: int = 5


def retrieve(
    query: str,
    store: DocumentStore,
    embedder: EmbeddingClient,
    config: RetrieverConfig,
) -> list[SearchResult]:
    """Return the chunks most similar to *query*, best-first.

    Raises:
        EmbeddingError: If the query cannot be embedded.
        SearchError: If the similarity search fails.
    """
    query_embedding = embedder.embed(query)
    return store.search(
        query_embedding,
        threshold=config.similarity_threshold,
        limit=config.match_count,
    )
