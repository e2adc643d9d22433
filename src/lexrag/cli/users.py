"""lexrag users CLI commands.

Commands:
  lexrag users add <email> [--plan NAME]     — create an account
  lexrag users list                          — show all accounts and balances
  lexrag users set-plan <user-id> <plan>     — move an account to another plan
  lexrag users deactivate <user-id>          — block chat for an account
  lexrag users activate <user-id>            — unblock an account
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from lexrag.cli.common import console, open_db, resolve_config
from lexrag.cli.errors import err_config, err_user_not_found
from lexrag.config import ConfigError
from lexrag.errors import RejectionError
from lexrag.ledger import TokenLedger

users_app = typer.Typer(
    name="users",
    help="Manage user accounts and plans.",
    add_completion=False,
)

_DbOption = Annotated[
    Path | None,
    typer.Option("--db", help="Path to the database (default from lexrag.yaml)."),
]


@users_app.command("add")
def users_add_cmd(
    email: Annotated[str, typer.Argument(help="Account email (unique).")],
    plan: Annotated[
        str | None,
        typer.Option("--plan", help="Plan name (default from ledger.default_plan)."),
    ] = None,
    user_id: Annotated[
        str | None,
        typer.Option("--id", help="Account id as issued by the auth provider."),
    ] = None,
    db: _DbOption = None,
) -> None:
    """Create a user account."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        account = TokenLedger(conn, cfg.ledger).create_user(email, plan=plan, user_id=user_id)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    except sqlite3.IntegrityError as exc:
        console.print(f"[red]Error:[/] An account with this id or email already exists: {email}")
        raise typer.Exit(1) from exc
    finally:
        conn.close()
    console.print(f"[green]✓[/] Created {account.email} ({account.plan_type}) id={account.id}")


@users_app.command("list")
def users_list_cmd(db: _DbOption = None) -> None:
    """List accounts with plan and balance."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        accounts = TokenLedger(conn, cfg.ledger).list_users()
    finally:
        conn.close()

    if not accounts:
        console.print("[yellow]No users yet.[/]  Run:  lexrag users add <email>")
        raise typer.Exit(0)

    table = Table(title="Users", show_header=True, header_style="bold")
    table.add_column("Email", style="bold")
    table.add_column("Plan")
    table.add_column("Status")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Id", style="dim")
    for a in accounts:
        status = "[green]active[/]" if a.is_active else "[yellow]inactive[/]"
        remaining = f"{a.tokens_remaining:,}" if a.metered else "unmetered"
        table.add_row(
            a.email, a.plan_type, status, f"{a.tokens_used_this_period:,}", remaining, a.id
        )
    console.print(table)


@users_app.command("set-plan")
def users_set_plan_cmd(
    user_id: Annotated[str, typer.Argument(help="Account id.")],
    plan: Annotated[str, typer.Argument(help="Configured plan name.")],
    db: _DbOption = None,
) -> None:
    """Move an account to another plan."""
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        account = TokenLedger(conn, cfg.ledger).set_plan(user_id, plan)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    except RejectionError as exc:
        console.print(err_user_not_found(user_id))
        raise typer.Exit(1) from exc
    finally:
        conn.close()
    console.print(f"[green]✓[/] {account.email} is now on '{account.plan_type}'")


@users_app.command("deactivate")
def users_deactivate_cmd(
    user_id: Annotated[str, typer.Argument(help="Account id.")],
    db: _DbOption = None,
) -> None:
    """Block chat for an account."""
    _set_status(user_id, "inactive", db)


@users_app.command("activate")
def users_activate_cmd(
    user_id: Annotated[str, typer.Argument(help="Account id.")],
    db: _DbOption = None,
) -> None:
    """Re-enable chat for an account."""
    _set_status(user_id, "active", db)


def _set_status(user_id: str, status: str, db: Path | None) -> None:
    cfg = resolve_config(db)
    conn = open_db(cfg)
    try:
        TokenLedger(conn, cfg.ledger).set_status(user_id, status)
    except RejectionError as exc:
        console.print(err_user_not_found(user_id))
        raise typer.Exit(1) from exc
    finally:
        conn.close()
    console.print(f"[green]✓[/] {user_id} is now {status}")
