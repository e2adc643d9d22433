"""Tests for lexrag users commands."""

from __future__ import annotations

from typer.testing import CliRunner

from lexrag.cli.main import app
from lexrag.db.connection import Database
from lexrag.ledger import TokenLedger

runner = CliRunner()


def _account(project, user_id):
    with Database(project / ".lexrag.db") as conn:
        return TokenLedger(conn).get_user(user_id)


def test_add_user_on_default_plan(project):
    runner.invoke(app, ["init"])
    result = runner.invoke(app, ["users", "add", "tenant@example.com", "--id", "u1"])
    assert result.exit_code == 0, result.output
    assert "Created tenant@example.com (free) id=u1" in result.output
    assert _account(project, "u1").tokens_limit == 10_000


def test_add_user_unknown_plan(project):
    runner.invoke(app, ["init"])
    result = runner.invoke(app, ["users", "add", "tenant@example.com", "--plan", "gold"])
    assert result.exit_code == 1
    assert "Unknown plan 'gold'" in result.output


def test_add_duplicate_email(project):
    runner.invoke(app, ["init"])
    runner.invoke(app, ["users", "add", "tenant@example.com"])
    result = runner.invoke(app, ["users", "add", "tenant@example.com"])
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_list_users(project):
    runner.invoke(app, ["init"])
    assert "No users yet" in runner.invoke(app, ["users", "list"]).output
    runner.invoke(app, ["users", "add", "firm@example.com", "--plan", "unlimited"])
    result = runner.invoke(app, ["users", "list"])
    assert "firm@example.com" in result.output
    assert "unmetered" in result.output


def test_set_plan_and_status(project):
    runner.invoke(app, ["init"])
    runner.invoke(app, ["users", "add", "tenant@example.com", "--id", "u1"])

    result = runner.invoke(app, ["users", "set-plan", "u1", "basic"])
    assert result.exit_code == 0, result.output
    assert _account(project, "u1").tokens_limit == 100_000

    runner.invoke(app, ["users", "deactivate", "u1"])
    assert _account(project, "u1").is_active is False
    runner.invoke(app, ["users", "activate", "u1"])
    assert _account(project, "u1").is_active is True


def test_unknown_user(project):
    runner.invoke(app, ["init"])
    for args in (["set-plan", "ghost", "basic"], ["deactivate", "ghost"]):
        result = runner.invoke(app, ["users", *args])
        assert result.exit_code == 1
        assert "User 'ghost' not found" in result.output
