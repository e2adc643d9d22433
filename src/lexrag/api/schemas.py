"""Request and response bodies for the HTTP API (camelCase on the wire)."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class HistoryMessage(ApiModel):
    role: str
    content: str


class ChatRequest(ApiModel):
    message: Optional[str] = ""
    conversation_history: Optional[list[HistoryMessage]] = None
    conversation_id: Optional[str] = None


class ChatResponse(ApiModel):
    response: str
    sources: int
    tokens_used: int
    tokens_remaining: Optional[int] = None
    conversation_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Tokens and purchases
# ---------------------------------------------------------------------------


class TokenStatsResponse(ApiModel):
    tokens_used: int
    tokens_limit: int
    tokens_remaining: int
    plan_type: str
    metered: bool
    usage_percentage: float
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    was_reset: bool = False


class UsageEntry(ApiModel):
    id: int
    tokens_used: int
    action_type: str
    request_details: dict
    created_at: Optional[str] = None


class UsageHistoryResponse(ApiModel):
    history: list[UsageEntry]


class PurchaseRequest(ApiModel):
    user_id: str
    session_id: str = Field(min_length=1)
    tokens: int = Field(gt=0)
    package_name: str = "Token Package"
    amount: Optional[float] = None
    currency: str = "usd"
    processed_via: str = "webhook"


class PurchaseResponse(ApiModel):
    success: bool
    already_processed: bool
    tokens_added: int
    previous_total: int
    new_total: int


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class DocumentOut(ApiModel):
    id: str
    filename: str
    source_kind: str
    content_type: str
    file_size: int
    source_url: Optional[str] = None
    url_title: Optional[str] = None
    url_description: Optional[str] = None
    version: int
    is_current: bool
    processed: bool
    uploaded_by: Optional[str] = None
    created_at: Optional[str] = None


class DocumentListResponse(ApiModel):
    documents: list[DocumentOut]
    stats: dict[str, int]


class UrlRequest(ApiModel):
    url: str
    process: bool = True


class UrlValidationResponse(ApiModel):
    valid: bool
    error: Optional[str] = None
    content_type: Optional[str] = None


class RegisteredDocumentResponse(ApiModel):
    document: DocumentOut
    chunks_created: Optional[int] = None


class ProcessResponse(ApiModel):
    document_id: str
    chunks_created: int


class DeleteDocumentResponse(ApiModel):
    deleted: bool
    chunks_deleted: int


class ResetPeriodsResponse(ApiModel):
    users_reset: int


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


class ConversationOut(ApiModel):
    id: str
    title: str
    message_count: int
    last_message_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class MessageOut(ApiModel):
    id: str
    role: str
    content: str
    tokens_used: int
    sources_count: int
    metadata: dict
    created_at: Optional[str] = None
