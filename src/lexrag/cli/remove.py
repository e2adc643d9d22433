"""lexrag remove — delete a document, its chunks and its stored file.

Usage:
  lexrag remove 3f2a...           (asks for confirmation)
  lexrag remove 3f2a... --yes
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from lexrag.cli.common import console, open_db, resolve_config
from lexrag.cli.errors import err_document_not_found
from lexrag.ingest.pipeline import build_pipeline


def remove_cmd(
    document_id: Annotated[str, typer.Argument(help="Id of the document to remove.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip confirmation prompt."),
    ] = False,
) -> None:
    """Remove a document and all its chunks from the corpus."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        pipeline = build_pipeline(conn, cfg)
        doc = pipeline.store.get_document(document_id)
        if doc is None:
            console.print(err_document_not_found(document_id))
            raise typer.Exit(1)

        chunk_count = pipeline.store.count_chunks(doc.id)
        console.print(f"\nRemove document: [bold]{doc.slot}[/] (version {doc.version})")
        console.print(
            f"  Chunks: {chunk_count}  |  "
            f"Current: {'yes' if doc.is_current else 'no'}  |  "
            f"Stored file: {doc.file_path or 'none'}"
        )

        if not yes and not typer.confirm("Confirm removal?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

        deleted = pipeline.delete(doc.id)
    finally:
        conn.close()

    console.print(f"\n[green]✓[/] Removed: {doc.slot}")
    console.print(f"  {deleted} chunks deleted")
    if doc.is_current:
        console.print(
            "[yellow]⚠[/] No version of this document is searchable now.\n"
            "  Re-ingest an earlier file if it should stay in the corpus."
        )
