"""Tests for lexrag tokens commands."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from lexrag.cli.main import app
from lexrag.db.connection import Database
from lexrag.ledger import TokenLedger

runner = CliRunner()


@pytest.fixture
def account(project):
    runner.invoke(app, ["init"])
    runner.invoke(app, ["users", "add", "tenant@example.com", "--id", "u1"])
    return "u1"


def test_credit_is_idempotent(project, account):
    args = ["tokens", "credit", account, "--session", "cs_test_123", "--tokens", "5000"]
    first = runner.invoke(app, args)
    assert first.exit_code == 0, first.output
    assert "+5,000 tokens" in first.output

    second = runner.invoke(app, args)
    assert second.exit_code == 0
    assert "already credited" in second.output

    with Database(project / ".lexrag.db") as conn:
        ledger = TokenLedger(conn)
        assert ledger.get_user(account).total_tokens_purchased == 5000
        assert ledger.get_purchase("cs_test_123").processed_via == "manual"


def test_credit_rejects_zero_tokens(account):
    result = runner.invoke(app, ["tokens", "credit", account, "--session", "cs_1", "--tokens", "0"])
    assert result.exit_code != 0


def test_credit_unknown_user(account):
    result = runner.invoke(
        app, ["tokens", "credit", "ghost", "--session", "cs_1", "--tokens", "10"]
    )
    assert result.exit_code == 1
    assert "not found" in result.output


def test_stats(account):
    result = runner.invoke(app, ["tokens", "stats", account])
    assert result.exit_code == 0, result.output
    assert "free" in result.output
    assert "0 / 10,000" in result.output


def test_stats_unknown_user(account):
    assert runner.invoke(app, ["tokens", "stats", "ghost"]).exit_code == 1


def test_history(account):
    assert "No usage recorded" in runner.invoke(app, ["tokens", "history", account]).output
    runner.invoke(app, ["tokens", "credit", account, "--session", "cs_1", "--tokens", "10"])
    result = runner.invoke(app, ["tokens", "history", account])
    assert "token_purchase" in result.output
    assert "-10" in result.output


def test_reset_periods(project, account):
    with Database(project / ".lexrag.db") as conn:
        TokenLedger(conn).consume(account, 500)
        conn.execute("UPDATE users SET period_end = datetime('now', '-1 day')")
        conn.commit()
    result = runner.invoke(app, ["tokens", "reset-periods"])
    assert "1 account(s) reset" in result.output
    with Database(project / ".lexrag.db") as conn:
        assert TokenLedger(conn).get_user(account).tokens_used_this_period == 0
