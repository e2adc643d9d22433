"""Exception hierarchy shared by the chat, ingestion and ledger layers.

Three families matter to callers:

- ``RejectionError``: the caller can fix it (empty message, unknown user,
  balance too low). Raised before any side effect; carries a stable ``code``.
- Hard failures (``GenerationError``, ``EmbeddingError``, ``IngestionError``,
  ``FetchError``): the operation is aborted and nothing partial is committed.
- Degradations (``SearchError``, ``PersistenceError``): raised by the stores,
  but caught and logged by the chat core so a turn still produces an answer.
"""

from __future__ import annotations


class LexragError(Exception):
    """Base class for all lexrag errors."""


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------

EMPTY_MESSAGE = "EMPTY_MESSAGE"
UNAUTHORIZED = "UNAUTHORIZED"
USER_NOT_FOUND = "USER_NOT_FOUND"
ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
TOKENS_REQUIRED = "TOKENS_REQUIRED"
TOKEN_LIMIT_EXCEEDED = "TOKEN_LIMIT_EXCEEDED"
URL_INVALID = "URL_INVALID"


class RejectionError(LexragError):
    """A precondition failed; nothing was attempted or written."""

    def __init__(self, code: str, message: str, **details: object) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


# ---------------------------------------------------------------------------
# Hard failures
# ---------------------------------------------------------------------------


class GenerationError(LexragError):
    """The language model call failed or timed out."""

    def __init__(self, message: str, *, timeout: bool = False) -> None:
        super().__init__(message)
        self.timeout = timeout


class EmbeddingError(LexragError):
    """The embedding model call failed. Never replaced by a placeholder vector."""


class IngestionError(LexragError):
    """An ingestion job was aborted.

    Attributes:
        reason: Short machine-readable cause, one of ``empty_text``,
            ``no_chunks``, ``embedding_failed``, ``extraction_failed``,
            ``storage_failed``, ``already_processed``, ``not_found``.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class FetchError(LexragError):
    """A URL could not be fetched or converted.

    Attributes:
        kind: ``timeout`` and ``unreachable`` are transient; ``invalid_url``,
            ``blocked``, ``unsupported_content_type``, ``too_large`` and
            ``http_error`` are permanent for the same URL.
    """

    TRANSIENT = frozenset({"timeout", "unreachable"})

    def __init__(self, kind: str, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.kind = kind
        self.url = url

    @property
    def transient(self) -> bool:
        return self.kind in self.TRANSIENT


# ---------------------------------------------------------------------------
# Degradations
# ---------------------------------------------------------------------------


class SearchError(LexragError):
    """Similarity search failed."""


class DimensionMismatchError(SearchError):
    """An embedding's length does not match the store's vector space."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Embedding has {actual} dimensions but the document store expects {expected}."
        )
        self.expected = expected
        self.actual = actual


class PersistenceError(LexragError):
    """Conversation or message persistence failed."""
