"""lexrag tokens CLI commands.

Commands:
  lexrag tokens stats <user-id>                             — balance and period
  lexrag tokens history <user-id>                           — usage log
  lexrag tokens credit <user-id> --session ID --tokens N    — reconcile a purchase
  lexrag tokens reset-periods                               — reset every due period
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from lexrag.cli.common import console, open_db, resolve_config
from lexrag.cli.errors import err_user_not_found
from lexrag.errors import RejectionError
from lexrag.ledger import TokenLedger

tokens_app = typer.Typer(
    name="tokens",
    help="Inspect and adjust token balances.",
    add_completion=False,
)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
]


@tokens_app.command("stats")
def tokens_stats_cmd(
    user_id: Annotated[str, typer.Argument(help="Account id.")],
    db: _DbOption = None,
) -> None:
    """Show the current period's usage for an account."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        stats = TokenLedger(conn, cfg.ledger).get_stats(user_id)
    finally:
        conn.close()
    if stats is None:
        console.print(err_user_not_found(user_id))
        raise typer.Exit(1)

    if stats.was_reset:
        console.print("[dim]Billing period was due and has been reset.[/]")
    console.print(f"Plan:       [bold]{stats.plan_type}[/]{'' if stats.metered else ' (unmetered)'}")
    console.print(f"Used:       {stats.used:,} / {stats.limit:,} ({stats.usage_percentage:.1f}%)")
    console.print(f"Remaining:  {stats.remaining:,}")
    console.print(f"Period:     {stats.period_start} → {stats.period_end}")


@tokens_app.command("history")
def tokens_history_cmd(
    user_id: Annotated[str, typer.Argument(help="Account id.")],
    limit: Annotated[int, typer.Option("--limit", help="Entries to show.")] = 20,
    db: _DbOption = None,
) -> None:
    """Show the newest usage log entries for an account."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        entries = TokenLedger(conn, cfg.ledger).usage_history(user_id, limit=limit)
    finally:
        conn.close()
    if not entries:
        console.print("[yellow]No usage recorded.[/]")
        raise typer.Exit(0)

    table = Table(title=f"Usage — {user_id}", show_header=True, header_style="bold")
    table.add_column("When", style="dim")
    table.add_column("Action")
    table.add_column("Tokens", justify="right")
    for e in entries:
        table.add_row(e.created_at or "", e.action_type, f"{e.tokens_used:,}")
    console.print(table)


@tokens_app.command("credit")
def tokens_credit_cmd(
    user_id: Annotated[str, typer.Argument(help="Account id.")],
    session: Annotated[str, typer.Option("--session", help="Checkout session id.")],
    tokens: Annotated[int, typer.Option("--tokens", min=1, help="Tokens purchased.")],
    package: Annotated[str, typer.Option("--package", help="Package name.")] = "Token Package",
    db: _DbOption = None,
) -> None:
    """Credit a completed purchase. Replays of the same session are no-ops."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        result = TokenLedger(conn, cfg.ledger).credit_purchase(
            user_id, session, tokens, package_name=package, processed_via="manual"
        )
    except RejectionError as exc:
        console.print(err_user_not_found(user_id))
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    if result.already_processed:
        console.print(f"[dim]↷ Session {session} already credited — balance unchanged.[/]")
        return
    console.print(
        f"[green]✓[/] +{result.tokens_added:,} tokens "
        f"(purchased total {result.previous_total:,} → {result.new_total:,})"
    )


@tokens_app.command("reset-periods")
def tokens_reset_periods_cmd(db: _DbOption = None) -> None:
    """Start a new billing period for every account whose period has ended."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        count = TokenLedger(conn, cfg.ledger).reset_all_periods()
    finally:
        conn.close()
    console.print(f"[green]✓[/] {count} account(s) reset")
