"""Tests for the lexrag config loader."""

from __future__ import annotations

import os
import stat
import warnings
from pathlib import Path

import pytest
import yaml

from lexrag.config import (
    ConfigError,
    LedgerCfg,
    LexragConfig,
    PlanCfg,
    ensure_global_config,
    load_config,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _write_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.dump(data), encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in list(os.environ):
        if var.startswith("LEXRAG_"):
            monkeypatch.delenv(var)


def _load(tmp_path: Path) -> LexragConfig:
    return load_config(tmp_path, global_config_path=tmp_path / "global" / "config.yaml")


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


def test_defaults_without_files(tmp_path: Path) -> None:
    cfg = _load(tmp_path)
    assert cfg.database == ".lexrag.db"
    assert cfg.embedding.model == "openai/text-embedding-ada-002"
    assert cfg.embedding.dimensions == 1536
    assert cfg.embedding.batch_size == 5
    assert cfg.generation.temperature == 0.3
    assert cfg.generation.max_tokens == 1000
    assert cfg.retrieval.similarity_threshold == 0.7
    assert cfg.retrieval.match_count == 5
    assert cfg.chunking.max_length == 1000
    assert cfg.conversations.max_per_user == 20
    assert cfg.server.admin_token is None


def test_default_plans() -> None:
    ledger = LedgerCfg()
    assert ledger.plan("free") == PlanCfg(monthly_tokens=10_000, metered=True)
    assert ledger.plan("unlimited").metered is False
    with pytest.raises(ConfigError, match="Unknown plan 'gold'"):
        ledger.plan("gold")


# ---------------------------------------------------------------------------
# Layering
# ---------------------------------------------------------------------------


def test_project_overrides_global(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "global" / "config.yaml", {"generation": {"model": "openai/gpt-4o"}})
    _write_yaml(
        tmp_path / "lexrag.yaml",
        {"generation": {"model": "anthropic/claude-3-haiku"}, "retrieval": {"match_count": 8}},
    )
    cfg = _load(tmp_path)
    assert cfg.generation.model == "anthropic/claude-3-haiku"
    assert cfg.retrieval.match_count == 8
    assert cfg.retrieval.similarity_threshold == 0.7


def test_global_applies_without_project(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "global" / "config.yaml", {"embedding": {"model": "openai/text-embedding-3-small"}})
    assert _load(tmp_path).embedding.model == "openai/text-embedding-3-small"


def test_env_overrides_files(tmp_path: Path, monkeypatch) -> None:
    _write_yaml(tmp_path / "lexrag.yaml", {"database": "project.db", "logging": {"level": "info"}})
    monkeypatch.setenv("LEXRAG_DB", "env.db")
    monkeypatch.setenv("LEXRAG_LOG_LEVEL", "debug")
    monkeypatch.setenv("LEXRAG_ADMIN_TOKEN", "s3cret")
    monkeypatch.setenv("LEXRAG_STORAGE_DIR", "/srv/lexrag")
    cfg = _load(tmp_path)
    assert cfg.database == "env.db"
    assert cfg.logging.level == "DEBUG"
    assert cfg.server.admin_token == "s3cret"
    assert cfg.storage.directory == "/srv/lexrag"


def test_database_path_form(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "lexrag.yaml", {"database": {"path": "data/lexrag.db"}})
    assert _load(tmp_path).database == "data/lexrag.db"


# ---------------------------------------------------------------------------
# Ledger section
# ---------------------------------------------------------------------------


def test_plans_merge_with_defaults(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "lexrag.yaml",
        {
            "ledger": {
                "default_plan": "trial",
                "plans": {"trial": {"monthly_tokens": 500}, "free": {"monthly_tokens": 2000}},
                "period_days": 7,
            }
        },
    )
    ledger = _load(tmp_path).ledger
    assert ledger.default_plan == "trial"
    assert ledger.plan("trial") == PlanCfg(monthly_tokens=500, metered=True)
    assert ledger.plan("free").monthly_tokens == 2000
    assert ledger.plan("basic").monthly_tokens == 100_000
    assert ledger.period_days == 7


def test_unknown_default_plan_rejected(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "lexrag.yaml", {"ledger": {"default_plan": "gold"}})
    with pytest.raises(ConfigError, match="gold"):
        _load(tmp_path)


def test_zero_estimate_divisor_rejected(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "lexrag.yaml", {"ledger": {"estimate_divisor": 0}})
    with pytest.raises(ConfigError):
        _load(tmp_path)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("key", ["api_key", "openai_api_key", "admin_token", "password"])
def test_credentials_rejected_in_global_config(tmp_path: Path, key: str) -> None:
    _write_yaml(tmp_path / "global" / "config.yaml", {"server": {key: "x"}})
    with pytest.raises(ConfigError, match="forbidden key"):
        _load(tmp_path)


def test_credentials_rejected_in_project_config(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "lexrag.yaml", {"generation": {"api_key": "sk-123"}})
    with pytest.raises(ConfigError, match="environment variables"):
        _load(tmp_path)


def test_token_counts_are_not_credentials(tmp_path: Path) -> None:
    _write_yaml(
        tmp_path / "lexrag.yaml",
        {"generation": {"max_tokens": 500}, "ledger": {"plans": {"free": {"monthly_tokens": 1}}}},
    )
    cfg = _load(tmp_path)
    assert cfg.generation.max_tokens == 500


def test_unknown_section_warns(tmp_path: Path) -> None:
    _write_yaml(tmp_path / "lexrag.yaml", {"billing": {"currency": "eur"}})
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        _load(tmp_path)
    assert any("billing" in str(w.message) for w in caught)


# ---------------------------------------------------------------------------
# ensure_global_config
# ---------------------------------------------------------------------------


def test_ensure_global_config_creates_private_file(tmp_path: Path) -> None:
    target = tmp_path / "home" / ".lexrag" / "config.yaml"
    assert ensure_global_config(target) == target
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert stat.S_IMODE(target.parent.stat().st_mode) == 0o700
    data = yaml.safe_load(target.read_text())
    assert data["embedding"]["dimensions"] == 1536


def test_ensure_global_config_keeps_existing(tmp_path: Path) -> None:
    target = tmp_path / "config.yaml"
    target.write_text("generation:\n  model: mine\n")
    ensure_global_config(target)
    assert "mine" in target.read_text()


def test_generated_global_config_passes_credential_check(tmp_path: Path) -> None:
    target = ensure_global_config(tmp_path / "global" / "config.yaml")
    cfg = load_config(tmp_path, global_config_path=target)
    assert cfg.generation.model == "openai/gpt-4"
