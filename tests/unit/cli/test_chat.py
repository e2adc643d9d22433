"""Tests for lexrag chat."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

from lexrag.cli.main import app
from lexrag.db.connection import Database
from lexrag.ledger import TokenLedger
from lexrag.rag.llm_client import Completion

runner = CliRunner()


class FakeEmbedder:
    def embed(self, text: str) -> list[float]:
        return [1.0] + [0.0] * 1535


@pytest.fixture
def llm(project, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    llm = MagicMock()
    llm.generate.return_value = Completion(
        text="**Notice** must be given in writing.",
        prompt_tokens=100,
        completion_tokens=20,
        total_tokens=120,
        model="openai/gpt-4",
    )
    monkeypatch.setattr("lexrag.chat.core.EmbeddingClient", lambda *a, **kw: FakeEmbedder())
    monkeypatch.setattr("lexrag.chat.core.LanguageModelClient", lambda *a, **kw: llm)
    runner.invoke(app, ["init"])
    runner.invoke(app, ["users", "add", "tenant@example.com", "--id", "u1"])
    return llm


def test_chat_answers_and_meters(project, llm):
    result = runner.invoke(app, ["chat", "What notice is needed?", "--user", "u1"])
    assert result.exit_code == 0, result.output
    assert "Notice must be given in writing." in result.output
    assert "120 tokens" in result.output
    assert "9,880 left" in result.output
    with Database(project / ".lexrag.db") as conn:
        assert TokenLedger(conn).get_user("u1").tokens_used_this_period == 120


def test_chat_rejection_exits_with_code(llm):
    result = runner.invoke(app, ["chat", "hello", "--user", "ghost"])
    assert result.exit_code == 1
    assert "USER_NOT_FOUND" in result.output
    llm.generate.assert_not_called()


def test_chat_requires_api_key(llm, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    result = runner.invoke(app, ["chat", "hello", "--user", "u1"])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output
