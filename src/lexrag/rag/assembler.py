"""Prompt assembly: system prompt with retrieved context, bounded history window."""

from __future__ import annotations

from lexrag.db.models import SearchResult

NO_CONTEXT_NOTICE = "No relevant legal documents found."

_SYSTEM_PROMPT = """\
You are a helpful AI legal assistant. You provide information about local laws and \
regulations based on the provided context.

IMPORTANT GUIDELINES:
- Base your answers primarily on the provided legal document context
- If the context doesn't contain relevant information, clearly state this limitation
- Always include disclaimers that this is not legal advice and users should consult \
with a qualified attorney
- Reference specific sections or parts of the legal documents when possible
- Be precise and factual in your responses
- If a question is outside the scope of local law, acknowledge this

Context from legal documents:
{context}

Remember to always remind users that this information is for educational purposes \
only and does not constitute legal advice."""

_PREVIEW_CHARS = 100


def build_system_prompt(context: list[SearchResult]) -> str:
    """Embed *context* (or the explicit no-documents notice) in the system prompt."""
    if not context:
        return _SYSTEM_PROMPT.format(context=NO_CONTEXT_NOTICE)
    blocks = [f"[{i}] {r.citation}\n{r.content}" for i, r in enumerate(context, start=1)]
    return _SYSTEM_PROMPT.format(context="\n\n".join(blocks))


def build_messages(
    system_prompt: str,
    history: list[dict],
    message: str,
    window: int = 10,
) -> list[dict]:
    """System prompt, then the last *window* history messages oldest-first, then *message*.

    History entries are ``{"role": ..., "content": ...}`` dicts; anything that is
    not a user or assistant turn is skipped.
    """
    turns = [
        {"role": h["role"], "content": h["content"]}
        for h in history
        if h.get("role") in ("user", "assistant") and h.get("content")
    ]
    recent = turns[-window:] if window > 0 else []
    return [
        {"role": "system", "content": system_prompt},
        *recent,
        {"role": "user", "content": message},
    ]


def source_previews(results: list[SearchResult]) -> list[dict]:
    """Short, JSON-safe summaries of the sources used for an answer."""
    previews = []
    for r in results:
        preview = r.content[:_PREVIEW_CHARS]
        if len(r.content) > _PREVIEW_CHARS:
            preview += "..."
        previews.append(
            {
                "document_id": r.document_id,
                "source": r.citation,
                "source_kind": r.source_kind,
                "source_url": r.source_url,
                "similarity": round(r.similarity, 4),
                "preview": preview,
            }
        )
    return previews
