"""lexrag serve — run the HTTP API under uvicorn."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
import uvicorn

from lexrag.api.app import create_app
from lexrag.cli.common import console, resolve_config
from lexrag.cli.errors import err_embedding_model_mismatch
from lexrag.errors import DimensionMismatchError


def serve_cmd(
    host: Annotated[str | None, typer.Option("--host", help="Bind address.")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Bind port.")] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
    ] = None,
) -> None:
    """Start the chat, token and admin HTTP API."""
    cfg = resolve_config(db)
    if host:
        cfg.server.host = host
    if port:
        cfg.server.port = port
    if not cfg.server.admin_token:
        console.print(
            "[yellow]⚠[/] LEXRAG_ADMIN_TOKEN is not set — admin and purchase routes are disabled."
        )

    try:
        app = create_app(cfg)
    except (DimensionMismatchError, ValueError) as exc:
        console.print(err_embedding_model_mismatch(str(exc)))
        raise typer.Exit(1) from exc

    console.print(f"[bold]lexrag API[/] on http://{cfg.server.host}:{cfg.server.port}")
    uvicorn.run(app, host=cfg.server.host, port=cfg.server.port, log_config=None)
