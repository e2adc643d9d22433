"""Fixtures for CLI tests: an isolated project directory and global config."""

from __future__ import annotations

import os

import pytest

from lexrag.cli.common import console


@pytest.fixture
def project(tmp_path, monkeypatch):
    """Run commands inside tmp_path with a private global config path."""
    for var in list(os.environ):
        if var.startswith("LEXRAG_"):
            monkeypatch.delenv(var)
    monkeypatch.setattr("lexrag.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    monkeypatch.setattr(console, "width", 200)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class FakeEmbedder:
    def __init__(self, dimensions: int = 1536):
        self.dimensions = dimensions

    def embed(self, text: str) -> list[float]:
        return [1.0] + [0.0] * (self.dimensions - 1)


@pytest.fixture
def fake_embeddings(monkeypatch):
    """Index with a constant vector instead of calling the provider."""
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(
        "lexrag.ingest.pipeline.EmbeddingClient", lambda model, dims=None, **kw: FakeEmbedder()
    )
