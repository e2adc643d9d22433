"""Chat core: answers one user turn.

Turn states, in order::

    Received → Authorized → (balance pre-check) → ContextRetrieved → Generated
             → Persisted → (Metered) → Responded

Early exits: ``RejectionError`` before anything is spent, ``GenerationError``
or ``EmbeddingError`` as hard failures. Search, persistence and metering
failures are degradations: logged, recorded in ``TurnResult.degraded``, and
the answer is still returned. Unmetered plans skip the pre-check and metering.

The pre-check uses a cheap length-based estimate; metering always charges the
usage the model actually reported.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Callable

import structlog

from lexrag.chat.conversations import ConversationStore
from lexrag.config import LexragConfig
from lexrag.db.models import SearchResult, UserAccount
from lexrag.db.repository import DocumentStore
from lexrag.errors import (
    ACCOUNT_INACTIVE,
    EMPTY_MESSAGE,
    TOKEN_LIMIT_EXCEEDED,
    TOKENS_REQUIRED,
    UNAUTHORIZED,
    USER_NOT_FOUND,
    DimensionMismatchError,
    PersistenceError,
    RejectionError,
    SearchError,
)
from lexrag.ledger import TokenLedger
from lexrag.rag.assembler import build_messages, build_system_prompt, source_previews
from lexrag.rag.llm_client import EmbeddingClient, LanguageModelClient
from lexrag.rag.retriever import RetrieverConfig, retrieve

log = structlog.get_logger(__name__)

DEGRADED_SEARCH = "search"
DEGRADED_HISTORY = "history"
DEGRADED_PERSISTENCE = "persistence"
DEGRADED_METERING = "metering"


@dataclass
class UserIdentity:
    """Identity vouched for by the upstream auth provider."""

    id: str
    email: str | None = None


@dataclass
class TurnRequest:
    user: UserIdentity | None
    message: str
    conversation_history: list[dict] | None = None
    conversation_id: str | None = None


@dataclass
class TurnResult:
    response: str
    sources: int
    tokens_used: int
    tokens_remaining: int | None  # None for unmetered plans
    conversation_id: str | None
    degraded: list[str] = field(default_factory=list)
    source_previews: list[dict] = field(default_factory=list)


class ChatCore:
    """Orchestrates retrieval, generation, persistence and metering for one turn."""

    def __init__(
        self,
        store: DocumentStore,
        ledger: TokenLedger,
        conversations: ConversationStore,
        embedder: EmbeddingClient,
        llm: LanguageModelClient,
        *,
        retrieval: RetrieverConfig | None = None,
        history_window: int = 10,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.conversations = conversations
        self.embedder = embedder
        self.llm = llm
        self.retrieval = retrieval or RetrieverConfig()
        self.history_window = history_window

    def handle_turn(self, request: TurnRequest) -> TurnResult:
        """Answer one user message.

        Raises:
            RejectionError: EMPTY_MESSAGE, UNAUTHORIZED, USER_NOT_FOUND,
                ACCOUNT_INACTIVE, TOKENS_REQUIRED or TOKEN_LIMIT_EXCEEDED.
                Nothing has been spent or written.
            EmbeddingError: The message could not be embedded.
            DimensionMismatchError: Query and corpus vectors disagree in length.
            GenerationError: The model call failed or timed out.
        """
        # Received
        message = (request.message or "").strip()
        if not message:
            raise RejectionError(EMPTY_MESSAGE, "Message is required.")

        # Authorized
        account = self._authorize(request.user)
        bound = log.bind(user_id=account.id)
        degraded: list[str] = []

        # Balance pre-check
        estimate = self.ledger.estimate_tokens(message)
        if account.metered:
            self._precheck(account, estimate)

        # ContextRetrieved
        context = self._retrieve(message, bound, degraded)

        # Generated
        history = self._history(request, account, bound, degraded)
        messages = build_messages(
            build_system_prompt(context), history, message, window=self.history_window
        )
        completion = self.llm.generate(messages)
        bound.info(
            "turn.generated",
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            estimate=estimate,
            sources=len(context),
        )

        # Persisted
        previews = source_previews(context)
        conversation_id = self._persist(
            request, account, message, completion, context, previews, bound, degraded
        )

        # Metered
        tokens_remaining: int | None = None
        if account.metered:
            tokens_remaining = self._meter(
                account, completion, estimate, conversation_id, len(context), bound, degraded
            )

        # Responded
        return TurnResult(
            response=completion.text,
            sources=len(context),
            tokens_used=completion.total_tokens,
            tokens_remaining=tokens_remaining,
            conversation_id=conversation_id,
            degraded=degraded,
            source_previews=previews,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _authorize(self, user: UserIdentity | None) -> UserAccount:
        if user is None or not user.id:
            raise RejectionError(UNAUTHORIZED, "Authentication required.")
        # get_stats applies a due period reset before the balance is read.
        self.ledger.get_stats(user.id)
        account = self.ledger.get_user(user.id)
        if account is None:
            raise RejectionError(USER_NOT_FOUND, "User not found.")
        if not account.is_active:
            raise RejectionError(ACCOUNT_INACTIVE, "An active account is required.")
        return account

    def _precheck(self, account: UserAccount, estimate: int) -> None:
        if self.ledger.can_consume(account.id, estimate):
            return
        remaining = account.tokens_remaining
        if account.effective_limit == 0:
            raise RejectionError(
                TOKENS_REQUIRED,
                "Purchase tokens to start chatting.",
                tokens_remaining=remaining,
                tokens_needed=estimate,
            )
        raise RejectionError(
            TOKEN_LIMIT_EXCEEDED,
            "Token limit exceeded. Please upgrade your plan or purchase more tokens.",
            tokens_remaining=remaining,
            tokens_needed=estimate,
        )

    def _retrieve(self, message: str, bound, degraded: list[str]) -> list[SearchResult]:
        try:
            return retrieve(message, self.store, self.embedder, self.retrieval)
        except DimensionMismatchError:
            raise
        except SearchError as exc:
            bound.warning("turn.search_failed", error=str(exc))
            degraded.append(DEGRADED_SEARCH)
            return []

    def _history(
        self, request: TurnRequest, account: UserAccount, bound, degraded: list[str]
    ) -> list[dict]:
        if request.conversation_history is not None:
            return request.conversation_history
        if not request.conversation_id:
            return []
        try:
            if self.conversations.get(request.conversation_id, account.id) is None:
                return []
            return self.conversations.recent_history(
                request.conversation_id, limit=self.history_window
            )
        except PersistenceError as exc:
            bound.warning("turn.history_failed", error=str(exc))
            degraded.append(DEGRADED_HISTORY)
            return []

    def _persist(
        self, request, account, message, completion, context, previews, bound, degraded
    ) -> str | None:
        conversation_id = request.conversation_id
        try:
            if conversation_id and self.conversations.get(conversation_id, account.id) is None:
                bound.warning("turn.conversation_not_found", conversation_id=conversation_id)
                conversation_id = None
            if not conversation_id:
                conversation_id = self.conversations.create(account.id, message).id
            self.conversations.save_exchange(
                conversation_id,
                message,
                completion.text,
                tokens_used=completion.total_tokens,
                sources_count=len(context),
                metadata={
                    "model": completion.model,
                    "prompt_tokens": completion.prompt_tokens,
                    "completion_tokens": completion.completion_tokens,
                    "sources": previews,
                },
            )
        except PersistenceError as exc:
            bound.error("turn.persistence_failed", conversation_id=conversation_id, error=str(exc))
            degraded.append(DEGRADED_PERSISTENCE)
        return conversation_id

    def _meter(
        self, account, completion, estimate, conversation_id, sources, bound, degraded
    ) -> int | None:
        try:
            result = self.ledger.consume(
                account.id,
                completion.total_tokens,
                "chat",
                {
                    "conversation_id": conversation_id,
                    "prompt_tokens": completion.prompt_tokens,
                    "completion_tokens": completion.completion_tokens,
                    "estimated_tokens": estimate,
                    "sources": sources,
                    "model": completion.model,
                },
            )
        except sqlite3.Error as exc:
            bound.error(
                "turn.metering_failed", tokens=completion.total_tokens, error=str(exc)
            )
            degraded.append(DEGRADED_METERING)
            return None

        if not result.success:
            # The answer is already delivered; the shortfall is reconciled offline.
            bound.error(
                "turn.metering_discrepancy",
                tokens=completion.total_tokens,
                estimate=estimate,
                remaining=result.remaining,
                reason=result.reason,
            )
            degraded.append(DEGRADED_METERING)
        return result.remaining


def build_chat_core(
    conn: sqlite3.Connection,
    config: LexragConfig,
    *,
    connect: Callable[[], sqlite3.Connection] | None = None,
) -> ChatCore:
    """Wire a ChatCore from configuration on an open connection."""
    return ChatCore(
        store=DocumentStore(conn, dimensions=config.embedding.dimensions),
        ledger=TokenLedger(conn, config.ledger),
        conversations=ConversationStore(
            conn,
            connect=connect,
            max_per_user=config.conversations.max_per_user,
            title_max_length=config.conversations.title_max_length,
        ),
        embedder=EmbeddingClient(config.embedding.model, config.embedding.dimensions),
        llm=LanguageModelClient(
            config.generation.model,
            temperature=config.generation.temperature,
            max_tokens=config.generation.max_tokens,
            timeout=config.generation.timeout,
        ),
        retrieval=RetrieverConfig(
            similarity_threshold=config.retrieval.similarity_threshold,
            match_count=config.retrieval.match_count,
        ),
        history_window=config.generation.history_messages,
    )
