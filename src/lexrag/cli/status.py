"""lexrag status — corpus, embedding space and ledger overview."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.panel import Panel
from rich.table import Table

from lexrag.cli.common import console, open_db, resolve_config
from lexrag.config import LexragConfig
from lexrag.db.repository import DocumentStore
from lexrag.db.vectors import get_embedding_space
from lexrag.ledger import TokenLedger


def status_cmd(
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
    ] = None,
    all_versions: Annotated[
        bool,
        typer.Option("--all", help="List superseded versions too."),
    ] = False,
) -> None:
    """Show documents, index state and token ledger totals."""
    cfg = resolve_config(db)
    _show_project_panel(cfg)

    if not Path(cfg.database).exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  lexrag init",
                title="[bold]Corpus[/]",
                expand=False,
            )
        )
        return

    conn = open_db(cfg)
    try:
        space = get_embedding_space(conn)
        store = DocumentStore(conn, dimensions=cfg.embedding.dimensions)
        _show_corpus_panel(store, all_versions)
        _show_ledger_panel(TokenLedger(conn, cfg.ledger))
    finally:
        conn.close()

    if space is not None and (
        space.model != cfg.embedding.model or space.dimensions != cfg.embedding.dimensions
    ):
        console.print(
            f"[yellow]⚠[/] Database embeddings use {space.model} ({space.dimensions}d); "
            f"config has {cfg.embedding.model} ({cfg.embedding.dimensions}d)."
        )


def _show_project_panel(cfg: LexragConfig) -> None:
    db = Path(cfg.database)
    db_info = str(db)
    if db.exists():
        db_info = f"{db} ({db.stat().st_size / (1024 * 1024):.1f} MB)"
    lines = [
        f"Database:    {db_info}",
        f"Embedding:   {cfg.embedding.model} ({cfg.embedding.dimensions}d)",
        f"Generation:  {cfg.generation.model}",
        f"Storage:     {cfg.storage.directory}",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Project[/]", expand=False))


def _show_corpus_panel(store: DocumentStore, all_versions: bool) -> None:
    stats = store.stats()
    docs = store.list_documents(current_only=not all_versions)
    summary = (
        f"Documents: [bold]{stats['documents']}[/]  |  "
        f"Current: [bold]{stats['current']}[/]  |  "
        f"Searchable: [bold]{stats['searchable']}[/]  |  "
        f"Pending: [bold]{stats['pending']}[/]  |  "
        f"Chunks: [bold]{stats['chunks']:,}[/]"
    )
    if not docs:
        console.print(
            Panel(f"{summary}\n[dim]No documents ingested yet.[/]", title="[bold]Corpus[/]", expand=False)
        )
        return

    table = Table(show_header=True, box=None, padding=(0, 1))
    table.add_column("", width=2)
    table.add_column("Document")
    table.add_column("Ver", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Id", style="dim")
    for doc in docs:
        mark = "[green]✓[/]" if doc.processed else "[yellow]✗[/]"
        label = doc.slot if doc.is_current else f"[dim]{doc.slot}[/]"
        table.add_row(mark, label, str(doc.version), str(store.count_chunks(doc.id)), doc.id)

    console.print(summary)
    console.print(Panel(table, title="[bold]Corpus[/]", expand=False))


def _show_ledger_panel(ledger: TokenLedger) -> None:
    totals = ledger.totals()
    lines = [
        f"Users: [bold]{totals['users']}[/]  |  Purchases: [bold]{totals['purchases']}[/]",
        f"Tokens used this period: [bold]{totals['tokens_used']:,}[/]",
        f"Tokens purchased: [bold]{totals['tokens_purchased']:,}[/]",
    ]
    console.print(Panel("\n".join(lines), title="[bold]Token Ledger[/]", expand=False))
