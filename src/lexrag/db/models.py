"""Domain models for the lexrag database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

SOURCE_FILE = "file"
SOURCE_URL = "url"


@dataclass
class Document:
    id: str
    filename: str
    slot: str = ""  # logical slot; versions of the same slot replace each other
    source_kind: str = SOURCE_FILE  # file | url
    content_type: str = "text/plain"
    file_path: str | None = None  # object-storage key (file documents)
    file_size: int = 0
    source_url: str | None = None
    url_title: str | None = None
    url_description: str | None = None
    version: int = 1
    is_current: bool = True
    processed: bool = False
    uploaded_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Chunk:
    document_id: str
    chunk_index: int
    content: str
    embedding: list[float] | None = None
    metadata: str = field(default_factory=lambda: "{}")
    id: int | None = None  # set after insert
    created_at: str | None = None

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)


@dataclass
class SearchResult:
    """A chunk returned by similarity search, joined with its document.

    Attributes:
        similarity: 1 - cosine distance, in [0, 1] for non-negative embeddings;
            higher is more similar.
    """

    chunk_id: int
    document_id: str
    content: str
    metadata: dict
    similarity: float
    filename: str
    source_kind: str
    source_url: str | None = None
    url_title: str | None = None

    @property
    def citation(self) -> str:
        """Human-readable source label for citations."""
        if self.source_kind == SOURCE_URL:
            return self.url_title or self.source_url or self.filename
        return self.filename


@dataclass
class UserAccount:
    id: str
    email: str
    plan_type: str = "free"
    metered: bool = True
    status: str = "active"
    tokens_limit: int = 0
    tokens_used_this_period: int = 0
    total_tokens_purchased: int = 0
    period_start: str | None = None
    period_end: str | None = None
    created_at: str | None = None

    @property
    def effective_limit(self) -> int:
        """Plan allowance plus every purchased token."""
        return self.tokens_limit + self.total_tokens_purchased

    @property
    def tokens_remaining(self) -> int:
        return max(0, self.effective_limit - self.tokens_used_this_period)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass
class UsageLogEntry:
    user_id: str
    tokens_used: int  # negative for credits
    action_type: str
    request_details: dict = field(default_factory=dict)
    id: int | None = None
    created_at: str | None = None


@dataclass
class PurchaseRecord:
    session_id: str
    user_id: str
    tokens: int
    package_name: str = "Token Package"
    amount: float | None = None
    currency: str = "usd"
    processed_via: str = "webhook"
    created_at: str | None = None


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str
    message_count: int = 0
    last_message_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Message:
    conversation_id: str
    role: str  # user | assistant
    content: str
    tokens_used: int = 0
    sources_count: int = 0
    metadata: dict = field(default_factory=dict)
    id: str | None = None
    created_at: str | None = None
