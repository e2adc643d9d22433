"""lexrag chat — answer one question from the terminal, metered like the API."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markdown import Markdown

from lexrag.chat.core import TurnRequest, UserIdentity, build_chat_core
from lexrag.cli.common import console, open_db, resolve_config
from lexrag.cli.errors import err_embedding_model_mismatch, err_no_api_key
from lexrag.db.connection import Database
from lexrag.errors import (
    DimensionMismatchError,
    EmbeddingError,
    GenerationError,
    RejectionError,
)
from lexrag.rag.llm_client import validate_api_key


def chat_cmd(
    message: Annotated[str, typer.Argument(help="The question to ask.")],
    user_id: Annotated[str, typer.Option("--user", "-u", help="Account id to charge.")],
    conversation: Annotated[
        str | None,
        typer.Option("--conversation", "-c", help="Continue an existing conversation."),
    ] = None,
    show_sources: Annotated[
        bool,
        typer.Option("--sources", help="List the passages the answer was grounded on."),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
    ] = None,
) -> None:
    """Ask the legal assistant a question as USER."""
    cfg = resolve_config(db)
    try:
        validate_api_key(cfg.embedding.model)
        validate_api_key(cfg.generation.model)
    except EnvironmentError as exc:
        console.print(err_no_api_key(str(exc)))
        raise typer.Exit(1) from exc

    conn = open_db(cfg)
    try:
        core = build_chat_core(conn, cfg, connect=Database(cfg.database).connect)
        try:
            result = core.handle_turn(
                TurnRequest(
                    user=UserIdentity(id=user_id),
                    message=message,
                    conversation_id=conversation,
                )
            )
        except RejectionError as exc:
            console.print(f"[red]✗ {exc.code}:[/] {exc.message}")
            raise typer.Exit(1) from exc
        except DimensionMismatchError as exc:
            console.print(err_embedding_model_mismatch(str(exc)))
            raise typer.Exit(1) from exc
        except (EmbeddingError, GenerationError) as exc:
            console.print(f"[red]Error:[/] {exc}")
            raise typer.Exit(1) from exc
    finally:
        conn.close()

    console.print(Markdown(result.response))
    console.print()
    if show_sources:
        for i, src in enumerate(result.source_previews, 1):
            console.print(f"  [dim][{i}] {src['source']} ({src['similarity']:.2f})[/]")
    remaining = "unmetered" if result.tokens_remaining is None else f"{result.tokens_remaining:,} left"
    console.print(
        f"[dim]{result.sources} source(s) · {result.tokens_used:,} tokens · {remaining} · "
        f"conversation {result.conversation_id}[/]"
    )
    for part in result.degraded:
        console.print(f"[yellow]⚠[/] Degraded: {part}")
