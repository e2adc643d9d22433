from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, Query

from lexrag.api.dependencies import get_config, get_conn, require_admin, require_user
from lexrag.api.schemas import (
    PurchaseRequest,
    PurchaseResponse,
    ResetPeriodsResponse,
    TokenStatsResponse,
    UsageEntry,
    UsageHistoryResponse,
)
from lexrag.chat.core import UserIdentity
from lexrag.config import LexragConfig
from lexrag.errors import USER_NOT_FOUND, RejectionError
from lexrag.ledger import PurchaseResult, TokenLedger

tokens_router = APIRouter(prefix="/api", tags=["tokens"])


def _purchase_response(result: PurchaseResult) -> PurchaseResponse:
    return PurchaseResponse(
        success=result.success,
        already_processed=result.already_processed,
        tokens_added=result.tokens_added,
        previous_total=result.previous_total,
        new_total=result.new_total,
    )


@tokens_router.get("/tokens/usage", response_model=TokenStatsResponse)
def token_usage(
    user: UserIdentity = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> TokenStatsResponse:
    stats = TokenLedger(conn, config.ledger).get_stats(user.id)
    if stats is None:
        raise RejectionError(USER_NOT_FOUND, "User not found.")
    return TokenStatsResponse(
        tokens_used=stats.used,
        tokens_limit=stats.limit,
        tokens_remaining=stats.remaining,
        plan_type=stats.plan_type,
        metered=stats.metered,
        usage_percentage=stats.usage_percentage,
        period_start=stats.period_start,
        period_end=stats.period_end,
        was_reset=stats.was_reset,
    )


@tokens_router.get("/tokens/history", response_model=UsageHistoryResponse)
def token_history(
    limit: int = Query(default=50, ge=1, le=500),
    user: UserIdentity = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> UsageHistoryResponse:
    entries = TokenLedger(conn, config.ledger).usage_history(user.id, limit=limit)
    return UsageHistoryResponse(
        history=[
            UsageEntry(
                id=e.id,
                tokens_used=e.tokens_used,
                action_type=e.action_type,
                request_details=e.request_details,
                created_at=e.created_at,
            )
            for e in entries
        ]
    )


@tokens_router.post("/tokens/claim-free", response_model=PurchaseResponse)
def claim_free_tokens(
    user: UserIdentity = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> PurchaseResponse:
    """Grant the one-time free starter kit."""
    return _purchase_response(TokenLedger(conn, config.ledger).claim_free_tokens(user.id))


@tokens_router.post(
    "/purchases/complete",
    response_model=PurchaseResponse,
    dependencies=[Depends(require_admin)],
)
def complete_purchase(
    body: PurchaseRequest,
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> PurchaseResponse:
    """Credit a completed checkout session (billing callback or reconciliation).

    Replays of the same session id answer ``alreadyProcessed: true``.
    """
    result = TokenLedger(conn, config.ledger).credit_purchase(
        body.user_id,
        body.session_id,
        body.tokens,
        package_name=body.package_name,
        amount=body.amount,
        currency=body.currency,
        processed_via=body.processed_via,
    )
    return _purchase_response(result)


@tokens_router.post(
    "/admin/tokens/reset-periods",
    response_model=ResetPeriodsResponse,
    dependencies=[Depends(require_admin)],
)
def reset_periods(
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
) -> ResetPeriodsResponse:
    return ResetPeriodsResponse(users_reset=TokenLedger(conn, config.ledger).reset_all_periods())
