"""Tests for lexrag rich error messages."""

from __future__ import annotations

import pytest

from lexrag.cli.errors import (
    err_config,
    err_document_not_found,
    err_embedding_model_mismatch,
    err_fetch,
    err_ingestion,
    err_no_db,
    err_user_not_found,
)
from lexrag.errors import FetchError, IngestionError


def _has_action(msg: str) -> bool:
    """Every error must name a concrete next step."""
    lower = msg.lower()
    return any(kw in lower for kw in ["run:", "check", "use ", "re-ingest", "try again", "retry"])


def test_err_no_db_names_path_and_init():
    msg = err_no_db("data/.lexrag.db")
    assert "data/.lexrag.db" in msg
    assert "lexrag init" in msg


def test_err_config_includes_message():
    assert "Unknown plan 'gold'" in err_config("Unknown plan 'gold'")


def test_err_embedding_model_mismatch_has_action():
    assert _has_action(err_embedding_model_mismatch("expected 1536, got 3"))


@pytest.mark.parametrize(
    "msg",
    [err_document_not_found("doc-1"), err_user_not_found("u1")],
)
def test_not_found_errors_point_to_listing(msg):
    assert "run:" in msg.lower()


def test_err_fetch_blocked_mentions_ssrf():
    msg = err_fetch(FetchError("blocked", "private", url="http://10.0.0.1/"))
    assert "SSRF" in msg
    assert "http://10.0.0.1/" in msg


def test_err_fetch_transient_suggests_retry():
    assert "Try again later" in err_fetch(FetchError("timeout", "slow", url="https://x.org"))
    assert "Check the URL" in err_fetch(FetchError("http_error", "404", url="https://x.org"))


@pytest.mark.parametrize(
    "reason", ["extraction_failed", "embedding_failed", "storage_failed", "empty_text"]
)
def test_err_ingestion_has_hint(reason):
    msg = err_ingestion(IngestionError(reason, "boom"))
    assert "boom" in msg
    assert len(msg.splitlines()) == 2
