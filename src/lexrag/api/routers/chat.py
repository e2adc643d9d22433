from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends

from lexrag.api.dependencies import current_user, get_config, get_conn, get_database
from lexrag.api.schemas import ChatRequest, ChatResponse
from lexrag.chat.core import TurnRequest, UserIdentity, build_chat_core
from lexrag.config import LexragConfig
from lexrag.db.connection import Database

chat_router = APIRouter(prefix="/api", tags=["chat"])


@chat_router.post("/chat", response_model=ChatResponse)
def chat_turn(
    body: ChatRequest,
    user: UserIdentity | None = Depends(current_user),
    conn: sqlite3.Connection = Depends(get_conn),
    config: LexragConfig = Depends(get_config),
    database: Database = Depends(get_database),
) -> ChatResponse:
    """Answer one chat turn for the authenticated user."""
    core = build_chat_core(conn, config, connect=database.connect)
    history = (
        [m.model_dump() for m in body.conversation_history]
        if body.conversation_history is not None
        else None
    )
    result = core.handle_turn(
        TurnRequest(
            user=user,
            message=body.message or "",
            conversation_history=history,
            conversation_id=body.conversation_id,
        )
    )
    return ChatResponse(
        response=result.response,
        sources=result.sources,
        tokens_used=result.tokens_used,
        tokens_remaining=result.tokens_remaining,
        conversation_id=result.conversation_id,
    )
