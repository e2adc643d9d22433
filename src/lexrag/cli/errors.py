"""lexrag rich error messages.

Every error shown to the user states what went wrong and the exact action
that fixes it.

Usage:
    from lexrag.cli.errors import err_no_db
    console.print(err_no_db(".lexrag.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from lexrag.errors import FetchError, IngestionError


def err_no_api_key(message: str) -> str:
    return f"[red]Error:[/] {message}\n  Keys are read from the environment, never from config files."


def err_no_db(db_path: str = ".lexrag.db") -> str:
    """No database found at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  lexrag init"
    )


def err_config(message: str) -> str:
    return f"[red]Error:[/] Invalid configuration.\n  {message}"


def err_embedding_model_mismatch(message: str) -> str:
    """Embedding model or dimensions recorded in the DB differ from config."""
    return (
        f"[red]Error:[/] Embedding model mismatch.\n"
        f"  {message}\n"
        "  Re-ingest your documents or update the config to match the database."
    )


def err_document_not_found(document_id: str) -> str:
    return (
        f"[yellow]Document not found:[/] '{document_id}'.\n"
        "  Run:  lexrag status  to see all documents."
    )


def err_user_not_found(user_id: str) -> str:
    return (
        f"[red]Error:[/] User '{user_id}' not found.\n"
        "  Run:  lexrag users list"
    )


def err_fetch(exc: FetchError) -> str:
    """URL could not be fetched; transient failures are worth a retry."""
    if exc.kind == "blocked":
        return (
            f"[red]Error:[/] URL resolves to a private address (SSRF protection): '{exc.url}'\n"
            "  Use a publicly reachable URL."
        )
    hint = "  Try again later." if exc.transient else "  Check the URL and try again."
    return f"[red]Error:[/] Could not fetch '{exc.url}' ({exc.kind}).\n  {exc}\n{hint}"


def err_ingestion(exc: IngestionError) -> str:
    hints = {
        "extraction_failed": "Check that the file is a readable PDF, DOCX or plain-text file.",
        "empty_text": "The document has too little text to index.",
        "no_chunks": "The document has too little text to index.",
        "embedding_failed": "Check the embedding provider key and retry:  lexrag process <id>",
        "storage_failed": "Check the database and storage directory permissions.",
        "already_processed": "Nothing to do.",
    }
    hint = hints.get(exc.reason, "See the log output for details.")
    return f"[red]✗ Error:[/] {exc}\n  {hint}"
