"""Tests for prompt assembly."""

from __future__ import annotations

from lexrag.db.models import SearchResult
from lexrag.rag.assembler import (
    NO_CONTEXT_NOTICE,
    build_messages,
    build_system_prompt,
    source_previews,
)


def _result(content="The deposit is returned within 30 days.", **kwargs):
    defaults = dict(
        chunk_id=1, document_id="doc-1", content=content, metadata={},
        similarity=0.912345, filename="tenancy.pdf", source_kind="file",
    )
    defaults.update(kwargs)
    return SearchResult(**defaults)


def test_system_prompt_without_context_says_so():
    prompt = build_system_prompt([])
    assert NO_CONTEXT_NOTICE in prompt
    assert "not legal advice" in prompt


def test_system_prompt_numbers_and_cites_sources():
    prompt = build_system_prompt(
        [
            _result(),
            _result(content="Rent is due monthly.", source_kind="url",
                    url_title="Tenancy Act", source_url="https://example.com"),
        ]
    )
    assert "[1] tenancy.pdf\nThe deposit is returned within 30 days." in prompt
    assert "[2] Tenancy Act\nRent is due monthly." in prompt
    assert NO_CONTEXT_NOTICE not in prompt


def test_build_messages_order_and_window():
    history = [{"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"} for i in range(14)]
    messages = build_messages("SYS", history, "question", window=10)
    assert messages[0] == {"role": "system", "content": "SYS"}
    assert [m["content"] for m in messages[1:-1]] == [f"m{i}" for i in range(4, 14)]
    assert messages[-1] == {"role": "user", "content": "question"}


def test_build_messages_skips_foreign_roles():
    history = [
        {"role": "system", "content": "ignore me"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": ""},
    ]
    messages = build_messages("SYS", history, "q")
    assert [m["content"] for m in messages] == ["SYS", "hi", "q"]


def test_source_previews_truncate_and_round():
    [preview] = source_previews([_result(content="x" * 150)])
    assert preview["preview"] == "x" * 100 + "..."
    assert preview["similarity"] == 0.9123
    assert preview["source"] == "tenancy.pdf"
    assert preview["document_id"] == "doc-1"
