"""lexrag ingest — register documents and index them.

Source dispatch:
  http:// / https://   → fetched web page (HTML or plain text)
  .pdf / .docx / .txt  → uploaded to object storage, then extracted

Each source becomes the new current version of its slot (the filename for
files, the URL for web pages). A failing source is reported and the rest
still run.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from lexrag.cli.common import console, open_db, resolve_config
from lexrag.cli.errors import err_fetch, err_ingestion, err_no_api_key
from lexrag.db.models import Document
from lexrag.errors import FetchError, IngestionError
from lexrag.ingest.extract import guess_content_type
from lexrag.ingest.pipeline import IngestionPipeline, build_pipeline
from lexrag.rag.llm_client import validate_api_key


def ingest_cmd(
    source: Annotated[
        list[str] | None,
        typer.Option("--source", "-s", help="File path or URL (repeatable)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
    ] = None,
    process: Annotated[
        bool,
        typer.Option("--process/--no-process", help="Index right away, or only register."),
    ] = True,
    uploaded_by: Annotated[
        str | None,
        typer.Option("--uploaded-by", help="Recorded as the document's uploader."),
    ] = None,
) -> None:
    """Add documents to the corpus and index them."""
    sources = source or []
    if not sources:
        console.print("[red]Error:[/] No --source specified. Use --source PATH_OR_URL.")
        raise typer.Exit(1)

    cfg = resolve_config(db)
    if process:
        try:
            validate_api_key(cfg.embedding.model)
        except EnvironmentError as exc:
            console.print(err_no_api_key(str(exc)))
            raise typer.Exit(1) from exc

    conn = open_db(cfg, must_exist=False)
    failures = 0
    try:
        pipeline = build_pipeline(conn, cfg)
        for src in sources:
            if not _ingest_source(pipeline, src, process=process, uploaded_by=uploaded_by):
                failures += 1
    finally:
        conn.close()

    if failures:
        console.print(f"\n[red]{failures} of {len(sources)} source(s) failed.[/]")
        raise typer.Exit(1)


def process_cmd(
    document_id: Annotated[str, typer.Argument(help="Id of a registered document.")],
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
    ] = None,
) -> None:
    """Index a registered, unprocessed document (also retries failed ingests)."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        pipeline = build_pipeline(conn, cfg)
        try:
            count = pipeline.ingest(document_id)
        except IngestionError as exc:
            console.print(err_ingestion(exc))
            raise typer.Exit(1) from exc
        except FetchError as exc:
            console.print(err_fetch(exc))
            raise typer.Exit(1) from exc
    finally:
        conn.close()
    console.print(f"[green]✓[/] {count} chunks")


def _ingest_source(
    pipeline: IngestionPipeline, source: str, *, process: bool, uploaded_by: str | None
) -> bool:
    console.print(f"\n[bold]→ {source}[/]")
    try:
        doc = _register(pipeline, source, uploaded_by)
    except IngestionError as exc:
        console.print(err_ingestion(exc))
        return False
    except OSError as exc:
        console.print(f"  [red]✗ Error:[/] Could not read '{source}': {exc}")
        return False

    console.print(f"  [green]✓[/] Registered {doc.slot} (version {doc.version}, id {doc.id})")
    if not process:
        console.print(f"  [dim]Not indexed. Run:  lexrag process {doc.id}[/]")
        return True

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
        console=console,
    ) as prog:
        prog.add_task("Extracting, chunking and embedding…", total=None)
        try:
            count = pipeline.ingest(doc.id)
        except IngestionError as exc:
            console.print(err_ingestion(exc))
            return False
        except FetchError as exc:
            console.print(err_fetch(exc))
            return False

    console.print(f"  [green]✓[/] {count} chunks")
    return True


def _register(pipeline: IngestionPipeline, source: str, uploaded_by: str | None) -> Document:
    if source.startswith(("http://", "https://")):
        return pipeline.add_url(source, uploaded_by=uploaded_by)
    path = Path(source)
    content_type = guess_content_type(path.name)
    if content_type is None:
        raise IngestionError(
            "extraction_failed",
            f"Unsupported file type {path.suffix!r}. Supported: .pdf, .docx, .txt",
        )
    return pipeline.add_file(path.name, path.read_bytes(), content_type, uploaded_by=uploaded_by)
