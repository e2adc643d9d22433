from __future__ import annotations

import sqlite3

from fastapi import APIRouter, Depends, HTTPException

from lexrag.api.dependencies import get_conn, require_user
from lexrag.api.schemas import ConversationOut, MessageOut
from lexrag.chat.conversations import ConversationStore
from lexrag.chat.core import UserIdentity

conversations_router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@conversations_router.get("", response_model=list[ConversationOut])
def list_conversations(
    user: UserIdentity = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
) -> list[ConversationOut]:
    return [
        ConversationOut(
            id=c.id,
            title=c.title,
            message_count=c.message_count,
            last_message_at=c.last_message_at,
            created_at=c.created_at,
            updated_at=c.updated_at,
        )
        for c in ConversationStore(conn).list_for_user(user.id)
    ]


@conversations_router.get("/{conversation_id}/messages", response_model=list[MessageOut])
def conversation_messages(
    conversation_id: str,
    user: UserIdentity = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
) -> list[MessageOut]:
    store = ConversationStore(conn)
    if store.get(conversation_id, user.id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return [
        MessageOut(
            id=m.id,
            role=m.role,
            content=m.content,
            tokens_used=m.tokens_used,
            sources_count=m.sources_count,
            metadata=m.metadata,
            created_at=m.created_at,
        )
        for m in store.get_messages(conversation_id)
    ]


@conversations_router.delete("/{conversation_id}")
def delete_conversation(
    conversation_id: str,
    user: UserIdentity = Depends(require_user),
    conn: sqlite3.Connection = Depends(get_conn),
) -> dict:
    if not ConversationStore(conn).delete(conversation_id, user.id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"deleted": True}
