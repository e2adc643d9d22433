"""lexrag init — create the database and a project config.

Creates:
  .lexrag.db               — database with schema and recorded embedding space
  lexrag.yaml              — project config template (no credentials)
  .lexrag-storage/         — object storage for uploaded files
  ~/.lexrag/config.yaml    — global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from lexrag.cli.common import console
from lexrag.cli.errors import err_embedding_model_mismatch
from lexrag.config import LexragConfig, ensure_global_config
from lexrag.db.connection import Database
from lexrag.db.migrations import initialize
from lexrag.db.vectors import ensure_embedding_space
from lexrag.errors import DimensionMismatchError

_PROJECT_CONFIG = "lexrag.yaml"


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Re-initialize without asking."),
    ] = False,
) -> None:
    """Initialize a lexrag project: database, config and storage directory."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    cfg = LexragConfig()
    db_path = project_dir / cfg.database

    if db_path.exists() and not yes:
        console.print(f"[yellow]⚠[/]  {db_path} already exists.")
        if not typer.confirm("Re-initialize? Existing data is preserved.", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)

    console.print(f"\n[bold]Creating lexrag project in {project_dir} …[/]\n")

    try:
        _create_database(db_path, cfg)
    except (DimensionMismatchError, ValueError) as exc:
        console.print(err_embedding_model_mismatch(str(exc)))
        raise typer.Exit(1) from exc

    config_path = project_dir / _PROJECT_CONFIG
    if config_path.exists():
        console.print(f"  [dim]↷ {_PROJECT_CONFIG} exists — kept[/]")
    else:
        config_path.write_text(_config_template(cfg), encoding="utf-8")
        console.print(f"  [green]✓[/] {_PROJECT_CONFIG}")

    (project_dir / cfg.storage.directory).mkdir(exist_ok=True)
    console.print(f"  [green]✓[/] {cfg.storage.directory}/")

    global_path = ensure_global_config()
    console.print(f"  [green]✓[/] {global_path} (global config)")

    console.print("\n[bold green]✓ Project initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=sk-...                 (model credentials)")
    console.print("  2. lexrag ingest --source <file-or-url>          (build the corpus)")
    console.print("  3. lexrag users add <email>                      (create an account)")
    console.print("  4. lexrag serve                                  (start the HTTP API)")


def _create_database(db_path: Path, cfg: LexragConfig) -> None:
    with Database(db_path) as conn:
        initialize(conn)
        ensure_embedding_space(conn, cfg.embedding.model, cfg.embedding.dimensions)
    console.print(f"  [green]✓[/] {db_path.name}")


def _config_template(cfg: LexragConfig) -> str:
    plans = "\n".join(
        f"    {name}:\n"
        f"      monthly_tokens: {plan.monthly_tokens}\n"
        f"      metered: {str(plan.metered).lower()}"
        for name, plan in cfg.ledger.plans.items()
    )
    return (
        "# lexrag project configuration.\n"
        "# Credentials come from the environment only (OPENAI_API_KEY, LEXRAG_ADMIN_TOKEN).\n"
        "\n"
        f"database: {cfg.database}\n"
        "\n"
        "embedding:\n"
        f"  model: {cfg.embedding.model}\n"
        f"  dimensions: {cfg.embedding.dimensions}\n"
        "\n"
        "generation:\n"
        f"  model: {cfg.generation.model}\n"
        f"  temperature: {cfg.generation.temperature}\n"
        f"  max_tokens: {cfg.generation.max_tokens}\n"
        "\n"
        "retrieval:\n"
        f"  similarity_threshold: {cfg.retrieval.similarity_threshold}\n"
        f"  match_count: {cfg.retrieval.match_count}\n"
        "\n"
        "ledger:\n"
        f"  default_plan: {cfg.ledger.default_plan}\n"
        "  plans:\n"
        f"{plans}\n"
        "\n"
        "storage:\n"
        f"  directory: {cfg.storage.directory}\n"
    )
