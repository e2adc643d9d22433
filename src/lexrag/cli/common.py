"""Helpers shared by the lexrag commands: config resolution and DB access."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from lexrag.cli.errors import err_config, err_no_db
from lexrag.config import ConfigError, LexragConfig, load_config
from lexrag.db.connection import Database
from lexrag.db.migrations import initialize
from lexrag.logging_setup import configure_logging

console = Console()


def resolve_config(db: Path | None = None) -> LexragConfig:
    """Load config from the current directory; ``--db`` overrides the database path."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.database = str(db)
    configure_logging(cfg.logging.level, cfg.logging.json)
    return cfg


def open_db(cfg: LexragConfig, *, must_exist: bool = True) -> sqlite3.Connection:
    """Open the configured database and apply pending migrations."""
    if must_exist and not Path(cfg.database).exists():
        console.print(err_no_db(cfg.database))
        raise typer.Exit(1)
    conn = Database(cfg.database).connect()
    initialize(conn)
    return conn
