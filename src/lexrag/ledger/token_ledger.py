"""Token ledger: per-user balances, atomic consumption, idempotent purchase credits.

Balance model::

    effective limit = tokens_limit (plan allowance) + total_tokens_purchased
    remaining       = max(0, effective limit - tokens_used_this_period)

Every balance mutation is a single conditional UPDATE inside a
``BEGIN IMMEDIATE`` transaction together with its usage-log row, so the check
and the increment can never be separated by another writer.
"""

from __future__ import annotations

import json
import math
import sqlite3
import uuid
from dataclasses import dataclass

import structlog

from lexrag.config import LedgerCfg
from lexrag.db.connection import write_transaction
from lexrag.db.models import PurchaseRecord, UsageLogEntry, UserAccount
from lexrag.errors import USER_NOT_FOUND, RejectionError

log = structlog.get_logger(__name__)

ACTION_CHAT = "chat"
ACTION_PURCHASE = "token_purchase"
ACTION_FREE_STARTER = "free_starter_kit"

INSUFFICIENT_TOKENS = "insufficient_tokens"
REASON_USER_NOT_FOUND = "user_not_found"

_USER_COLUMNS = """
    id, email, plan_type, metered, status, tokens_limit, tokens_used_this_period,
    total_tokens_purchased, period_start, period_end, created_at
"""

_RESET_IF_DUE_SQL = """
UPDATE users
SET tokens_used_this_period = 0,
    period_start = datetime('now'),
    period_end = datetime('now', ?)
WHERE {where} AND period_end <= datetime('now')
"""


@dataclass
class TokenStats:
    used: int
    limit: int
    remaining: int
    plan_type: str
    metered: bool
    usage_percentage: float
    period_start: str | None = None
    period_end: str | None = None
    was_reset: bool = False


@dataclass
class ConsumeResult:
    """Outcome of consume().

    Attributes:
        reason: ``insufficient_tokens`` (caller should prompt an upgrade) or
            ``user_not_found`` when ``success`` is False.
    """

    success: bool
    remaining: int
    consumed: int = 0
    reason: str | None = None

    @property
    def needs_upgrade(self) -> bool:
        return self.reason == INSUFFICIENT_TOKENS


@dataclass
class PurchaseResult:
    success: bool
    already_processed: bool
    tokens_added: int
    previous_total: int
    new_total: int


class TokenLedger:
    """Balance tracking for user accounts on an open sqlite3 connection."""

    def __init__(self, conn: sqlite3.Connection, config: LedgerCfg | None = None) -> None:
        self._conn = conn
        self.config = config or LedgerCfg()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        *,
        plan: str | None = None,
        user_id: str | None = None,
    ) -> UserAccount:
        """Create an account on *plan* (default plan when omitted).

        Raises:
            ConfigError: Unknown plan.
            sqlite3.IntegrityError: Duplicate id or email.
        """
        plan_name = plan or self.config.default_plan
        plan_cfg = self.config.plan(plan_name)
        uid = user_id or str(uuid.uuid4())
        self._conn.execute(
            """
            INSERT INTO users (id, email, plan_type, metered, tokens_limit, period_end)
            VALUES (?, ?, ?, ?, ?, datetime('now', ?))
            """,
            (uid, email, plan_name, int(plan_cfg.metered), plan_cfg.monthly_tokens, self._period()),
        )
        self._conn.commit()
        log.info("ledger.user_created", user_id=uid, plan=plan_name)
        return self.get_user(uid)  # type: ignore[return-value]

    def get_user(self, user_id: str) -> UserAccount | None:
        row = self._conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> UserAccount | None:
        row = self._conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = ?", (email,)
        ).fetchone()
        return _row_to_user(row) if row else None

    def list_users(self) -> list[UserAccount]:
        rows = self._conn.execute(f"SELECT {_USER_COLUMNS} FROM users ORDER BY created_at").fetchall()
        return [_row_to_user(r) for r in rows]

    def set_plan(self, user_id: str, plan: str) -> UserAccount:
        """Move *user_id* to *plan*; the plan's allowance replaces tokens_limit."""
        plan_cfg = self.config.plan(plan)
        cur = self._conn.execute(
            "UPDATE users SET plan_type = ?, metered = ?, tokens_limit = ? WHERE id = ?",
            (plan, int(plan_cfg.metered), plan_cfg.monthly_tokens, user_id),
        )
        self._conn.commit()
        if cur.rowcount == 0:
            raise RejectionError(USER_NOT_FOUND, f"User '{user_id}' not found.")
        return self.get_user(user_id)  # type: ignore[return-value]

    def set_status(self, user_id: str, status: str) -> None:
        if status not in ("active", "inactive"):
            raise ValueError(f"Unknown status '{status}'")
        cur = self._conn.execute("UPDATE users SET status = ? WHERE id = ?", (status, user_id))
        self._conn.commit()
        if cur.rowcount == 0:
            raise RejectionError(USER_NOT_FOUND, f"User '{user_id}' not found.")

    # ------------------------------------------------------------------
    # Balance
    # ------------------------------------------------------------------

    def estimate_tokens(self, text: str) -> int:
        """Cheap pre-check estimate: ``max(floor, ceil(len / divisor))``."""
        return max(self.config.estimate_floor, math.ceil(len(text) / self.config.estimate_divisor))

    def get_stats(self, user_id: str) -> TokenStats | None:
        """Balance summary for *user_id*, after applying a due period reset.

        Returns None for unknown users.
        """
        was_reset = self.reset_period_if_due(user_id)
        user = self.get_user(user_id)
        if user is None:
            return None
        limit = user.effective_limit
        return TokenStats(
            used=user.tokens_used_this_period,
            limit=limit,
            remaining=user.tokens_remaining,
            plan_type=user.plan_type,
            metered=user.metered,
            usage_percentage=(
                round(user.tokens_used_this_period / limit * 100, 2) if limit > 0 else 0.0
            ),
            period_start=user.period_start,
            period_end=user.period_end,
            was_reset=was_reset,
        )

    def can_consume(self, user_id: str, amount: int) -> bool:
        """Read-only affordability check. Unmetered plans can always consume."""
        stats = self.get_stats(user_id)
        if stats is None:
            return False
        if not stats.metered:
            return True
        return stats.remaining >= amount

    def consume(
        self,
        user_id: str,
        amount: int,
        action_type: str = ACTION_CHAT,
        details: dict | None = None,
    ) -> ConsumeResult:
        """Atomically check and charge *amount* tokens.

        The balance check is part of the UPDATE's WHERE clause, so concurrent
        calls for one user can never jointly overdraw the balance. On rejection
        nothing is written.
        """
        if amount < 0:
            raise ValueError("amount must be >= 0")

        with write_transaction(self._conn):
            self._conn.execute(_RESET_IF_DUE_SQL.format(where="id = ?"), (self._period(), user_id))
            cur = self._conn.execute(
                """
                UPDATE users
                SET tokens_used_this_period = tokens_used_this_period + ?
                WHERE id = ?
                  AND (metered = 0
                       OR tokens_limit + total_tokens_purchased - tokens_used_this_period >= ?)
                """,
                (amount, user_id, amount),
            )
            if cur.rowcount == 1:
                self._log_usage(user_id, amount, action_type, details or {})
            user = self.get_user(user_id)

        if user is None:
            return ConsumeResult(success=False, remaining=0, reason=REASON_USER_NOT_FOUND)
        if cur.rowcount == 0:
            log.info(
                "ledger.insufficient_tokens",
                user_id=user_id,
                requested=amount,
                remaining=user.tokens_remaining,
            )
            return ConsumeResult(
                success=False, remaining=user.tokens_remaining, reason=INSUFFICIENT_TOKENS
            )
        return ConsumeResult(success=True, remaining=user.tokens_remaining, consumed=amount)

    # ------------------------------------------------------------------
    # Purchases
    # ------------------------------------------------------------------

    def credit_purchase(
        self,
        user_id: str,
        session_id: str,
        tokens: int,
        *,
        package_name: str = "Token Package",
        amount: float | None = None,
        currency: str = "usd",
        processed_via: str = "webhook",
        action_type: str = ACTION_PURCHASE,
    ) -> PurchaseResult:
        """Credit purchased tokens exactly once per *session_id*.

        A replay (duplicate webhook, or the client-side fallback racing the
        webhook) is reported as ``already_processed=True`` with the balance
        unchanged, never as an error.

        Raises:
            RejectionError: USER_NOT_FOUND.
            ValueError: ``tokens`` < 1 or empty ``session_id``.
        """
        if tokens < 1:
            raise ValueError("tokens must be >= 1")
        if not session_id:
            raise ValueError("session_id is required")

        with write_transaction(self._conn):
            row = self._conn.execute(
                "SELECT total_tokens_purchased FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            if row is None:
                raise RejectionError(USER_NOT_FOUND, f"User '{user_id}' not found.")
            previous_total = row["total_tokens_purchased"]

            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO token_purchases
                    (session_id, user_id, tokens, package_name, amount, currency, processed_via)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (session_id, user_id, tokens, package_name, amount, currency, processed_via),
            )
            if cur.rowcount == 0:
                already = True
            else:
                already = False
                self._conn.execute(
                    "UPDATE users SET total_tokens_purchased = total_tokens_purchased + ? WHERE id = ?",
                    (tokens, user_id),
                )
                self._log_usage(
                    user_id,
                    -tokens,
                    action_type,
                    {
                        "session_id": session_id,
                        "package_name": package_name,
                        "amount": amount,
                        "currency": currency,
                        "processed_via": processed_via,
                    },
                )

        if already:
            log.info("ledger.purchase_replay", user_id=user_id, session_id=session_id)
            return PurchaseResult(
                success=True,
                already_processed=True,
                tokens_added=0,
                previous_total=previous_total,
                new_total=previous_total,
            )
        log.info("ledger.purchase_credited", user_id=user_id, session_id=session_id, tokens=tokens)
        return PurchaseResult(
            success=True,
            already_processed=False,
            tokens_added=tokens,
            previous_total=previous_total,
            new_total=previous_total + tokens,
        )

    def claim_free_tokens(self, user_id: str) -> PurchaseResult:
        """Grant the one-time free starter kit; idempotent per user."""
        return self.credit_purchase(
            user_id,
            f"free_starter:{user_id}",
            self.config.free_starter_tokens,
            package_name="Free Starter Kit",
            amount=0.0,
            processed_via="free_starter",
            action_type=ACTION_FREE_STARTER,
        )

    def get_purchase(self, session_id: str) -> PurchaseRecord | None:
        row = self._conn.execute(
            """
            SELECT session_id, user_id, tokens, package_name, amount, currency,
                   processed_via, created_at
            FROM token_purchases WHERE session_id = ?
            """,
            (session_id,),
        ).fetchone()
        if row is None:
            return None
        return PurchaseRecord(**{k: row[k] for k in row.keys()})

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    def reset_period_if_due(self, user_id: str) -> bool:
        """Start a new period for *user_id* if the current one has ended."""
        cur = self._conn.execute(
            _RESET_IF_DUE_SQL.format(where="id = ?"), (self._period(), user_id)
        )
        self._conn.commit()
        if cur.rowcount:
            log.info("ledger.period_reset", user_id=user_id)
        return cur.rowcount > 0

    def reset_all_periods(self) -> int:
        """Start a new period for every account whose period has ended."""
        cur = self._conn.execute(_RESET_IF_DUE_SQL.format(where="1 = 1"), (self._period(),))
        self._conn.commit()
        log.info("ledger.periods_reset", users=cur.rowcount)
        return cur.rowcount

    # ------------------------------------------------------------------
    # Usage log
    # ------------------------------------------------------------------

    def usage_history(self, user_id: str, limit: int = 50) -> list[UsageLogEntry]:
        """Most recent usage-log entries for *user_id*, newest first."""
        rows = self._conn.execute(
            """
            SELECT id, user_id, tokens_used, action_type, request_details, created_at
            FROM token_usage_logs WHERE user_id = ?
            ORDER BY created_at DESC, id DESC LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
        return [
            UsageLogEntry(
                id=r["id"],
                user_id=r["user_id"],
                tokens_used=r["tokens_used"],
                action_type=r["action_type"],
                request_details=json.loads(r["request_details"] or "{}"),
                created_at=r["created_at"],
            )
            for r in rows
        ]

    def totals(self) -> dict[str, int]:
        """Aggregate figures for the status command."""
        row = self._conn.execute(
            """
            SELECT COUNT(*) AS users,
                   COALESCE(SUM(tokens_used_this_period), 0) AS used,
                   COALESCE(SUM(total_tokens_purchased), 0) AS purchased
            FROM users
            """
        ).fetchone()
        purchases = self._conn.execute("SELECT COUNT(*) FROM token_purchases").fetchone()[0]
        return {
            "users": row["users"],
            "tokens_used": row["used"],
            "tokens_purchased": row["purchased"],
            "purchases": purchases,
        }

    def _log_usage(self, user_id: str, tokens: int, action_type: str, details: dict) -> None:
        self._conn.execute(
            """
            INSERT INTO token_usage_logs (user_id, tokens_used, action_type, request_details)
            VALUES (?, ?, ?, ?)
            """,
            (user_id, tokens, action_type, json.dumps(details, default=str)),
        )

    def _period(self) -> str:
        return f"+{self.config.period_days} days"


def _row_to_user(row: sqlite3.Row) -> UserAccount:
    return UserAccount(
        id=row["id"],
        email=row["email"],
        plan_type=row["plan_type"],
        metered=bool(row["metered"]),
        status=row["status"],
        tokens_limit=row["tokens_limit"],
        tokens_used_this_period=row["tokens_used_this_period"],
        total_tokens_purchased=row["total_tokens_purchased"],
        period_start=row["period_start"],
        period_end=row["period_end"],
        created_at=row["created_at"],
    )
