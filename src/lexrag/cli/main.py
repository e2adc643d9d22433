"""lexrag CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from lexrag.cli.chat import chat_cmd
from lexrag.cli.ingest import ingest_cmd, process_cmd
from lexrag.cli.init import init_cmd
from lexrag.cli.remove import remove_cmd
from lexrag.cli.serve import serve_cmd
from lexrag.cli.status import status_cmd
from lexrag.cli.tokens import tokens_app
from lexrag.cli.users import users_app


def _installed_version() -> str:
    try:
        return importlib.metadata.version("lexrag")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lexrag {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="lexrag",
    help=(
        "lexrag — retrieval-augmented legal assistant.\n\n"
        "  lexrag ingest   Add PDF, DOCX, text files or web pages to the corpus.\n"
        "  lexrag serve    Run the chat, token and admin HTTP API."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """lexrag — retrieval-augmented legal assistant."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("process")(process_cmd)
app.command("remove")(remove_cmd)
app.command("status")(status_cmd)
app.command("chat")(chat_cmd)
app.command("serve")(serve_cmd)
app.add_typer(users_app, name="users")
app.add_typer(tokens_app, name="tokens")


@app.command("version")
def version_cmd() -> None:
    """Show the installed lexrag version."""
    typer.echo(f"lexrag {_installed_version()}")


if __name__ == "__main__":
    app()
