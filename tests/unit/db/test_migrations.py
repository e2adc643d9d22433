"""Tests for the forward-only migration runner and the V1 schema."""

from __future__ import annotations

import sqlite3

import pytest

from lexrag.db.connection import Database
from lexrag.db.migrations import MIGRATIONS, run_migrations
from lexrag.db.migrations import initialize


def _fresh_conn(tmp_path):
    """Open a new connection without running migrations."""
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    return conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone() is not None


def test_run_migrations_records_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    version = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_idempotent(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    initialize(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


@pytest.mark.parametrize(
    "table",
    [
        "embedding_space",
        "documents",
        "chunks",
        "users",
        "token_usage_logs",
        "token_purchases",
        "conversations",
        "messages",
    ],
)
def test_v1_creates_table(tmp_path, table):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert _table_exists(conn, table)
    conn.close()


def test_two_current_documents_in_one_slot_rejected(tmp_db):
    sql = (
        "INSERT INTO documents (id, slot, filename, source_kind, content_type, version, is_current)"
        " VALUES (?, 'a.pdf', 'a.pdf', 'file', 'application/pdf', ?, 1)"
    )
    tmp_db.execute(sql, ("d1", 1))
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(sql, ("d2", 2))


def test_superseded_documents_share_a_slot(tmp_db):
    sql = (
        "INSERT INTO documents (id, slot, filename, source_kind, content_type, version, is_current)"
        " VALUES (?, 'a.pdf', 'a.pdf', 'file', 'application/pdf', ?, ?)"
    )
    tmp_db.execute(sql, ("d1", 1, 0))
    tmp_db.execute(sql, ("d2", 2, 0))
    tmp_db.execute(sql, ("d3", 3, 1))
    count = tmp_db.execute("SELECT COUNT(*) FROM documents WHERE slot = 'a.pdf'").fetchone()[0]
    assert count == 3


def test_negative_usage_rejected(tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO users (id, email, plan_type, tokens_used_this_period)"
            " VALUES ('u1', 'a@example.com', 'free', -1)"
        )
