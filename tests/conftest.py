"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from lexrag.db.connection import Database
from lexrag.db.migrations import initialize


@pytest.fixture
def db_path(tmp_path):
    """Path of a file-based DB in tmp_path with the schema applied."""
    path = tmp_path / ".lexrag.db"
    with Database(path) as conn:
        initialize(conn)
    return path


@pytest.fixture
def tmp_db(db_path):
    """Open connection on the initialized DB, closed after test."""
    conn = Database(db_path).connect()
    yield conn
    conn.close()
