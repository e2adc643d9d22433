"""LiteLLM wrappers for embeddings and chat completions, plus API key validation.

All embedding and generation calls route through this module. Retries are
disabled (``num_retries=0``); every upstream failure reaches the caller.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import litellm
import structlog

from lexrag.db.vectors import check_dimensions
from lexrag.errors import EmbeddingError, GenerationError

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

log = structlog.get_logger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def provider_of(model: str) -> str:
    return model.split("/")[0].lower() if "/" in model else "openai"


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = provider_of(model)
    env_var = _PROVIDER_ENV.get(provider, f"{provider.upper()}_API_KEY")

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Embeddings
# ------------------------------------------------------------------


class EmbeddingClient:
    """Turn text into a fixed-length vector with one embedding call per text."""

    def __init__(self, model: str, dimensions: int | None = None, timeout: float = 60) -> None:
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout

    def embed(self, text: str) -> list[float]:
        """Return the embedding of *text* exactly as the model produced it.

        Raises:
            EmbeddingError: On any upstream failure or an empty response.
            DimensionMismatchError: If the vector length differs from ``dimensions``.
        """
        try:
            response = litellm.embedding(
                model=self.model,
                input=[text],
                timeout=self.timeout,
                num_retries=0,
            )
            vector = list(response.data[0]["embedding"])
        except Exception as exc:
            log.error("embedding.failed", model=self.model, error=str(exc))
            raise EmbeddingError(f"Embedding call to '{self.model}' failed: {exc}") from exc

        if not vector:
            raise EmbeddingError(f"Embedding model '{self.model}' returned an empty vector.")
        if self.dimensions is not None:
            check_dimensions(vector, self.dimensions)
        return vector


# ------------------------------------------------------------------
# Chat completions
# ------------------------------------------------------------------


@dataclass
class Completion:
    """Generated answer plus the usage the provider reported for it."""

    text: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


class LanguageModelClient:
    """Chat-completion wrapper with a caller-configurable timeout."""

    def __init__(
        self,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 1000,
        timeout: float = 60,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

    def generate(self, messages: list[dict]) -> Completion:
        """Call litellm.completion() once. Never retried.

        Args:
            messages: OpenAI-style message list (system, history, user).

        Raises:
            GenerationError: On timeout (``timeout=True``) or any API failure.
        """
        try:
            response = litellm.completion(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout,
                num_retries=0,
            )
        except litellm.exceptions.Timeout as exc:
            log.error("generation.timeout", model=self.model, timeout=self.timeout)
            raise GenerationError(
                f"Generation timed out after {self.timeout}s", timeout=True
            ) from exc
        except Exception as exc:
            log.error("generation.failed", model=self.model, error=str(exc))
            raise GenerationError(f"Generation with '{self.model}' failed: {exc}") from exc

        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        prompt_tokens = int(getattr(usage, "prompt_tokens", 0) or 0)
        completion_tokens = int(getattr(usage, "completion_tokens", 0) or 0)
        total_tokens = int(getattr(usage, "total_tokens", 0) or 0) or (
            prompt_tokens + completion_tokens
        )
        return Completion(
            text=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            model=self.model,
        )
