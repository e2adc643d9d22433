"""Conversation and message persistence.

Conversations are capped per user; after each create, the oldest-updated ones
beyond the cap are deleted on a background thread with its own connection.
Cleanup is best-effort: a failure is logged and never fails the create.
"""

from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator

import structlog

from lexrag.db.connection import write_transaction
from lexrag.db.models import Conversation, Message
from lexrag.errors import PersistenceError

log = structlog.get_logger(__name__)

DEFAULT_TITLE = "New Conversation"

# Millisecond timestamps keep "oldest-updated" well defined within one second.
_NOW = "strftime('%Y-%m-%d %H:%M:%f', 'now')"


def derive_title(first_message: str, max_length: int = 50) -> str:
    """Title from the first user message, cut at a word boundary.

    ``...`` is appended when anything was cut. A first word longer than
    *max_length* is itself cut.
    """
    text = " ".join(first_message.split())
    if not text:
        return DEFAULT_TITLE
    if len(text) <= max_length:
        return text

    title = ""
    for word in text.split(" "):
        candidate = f"{title} {word}" if title else word
        if len(candidate) > max_length:
            break
        title = candidate
    if not title:
        title = text[:max_length]
    return f"{title}..."


@contextmanager
def _persistence(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise PersistenceError(f"Could not {operation}: {exc}") from exc


class ConversationStore:
    """Conversation threads and their messages on an open connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        connect: Callable[[], sqlite3.Connection] | None = None,
        max_per_user: int = 20,
        title_max_length: int = 50,
    ) -> None:
        """Initialise with an open connection.

        Args:
            conn: Connection used for all foreground operations.
            connect: Opens a fresh connection for background cleanup. When None,
                cleanup runs inline on *conn* (still best-effort).
            max_per_user: Conversations kept per user.
            title_max_length: Bound for derived titles.
        """
        self._conn = conn
        self._connect = connect
        self.max_per_user = max_per_user
        self.title_max_length = title_max_length

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def create(self, user_id: str, first_message: str | None = None) -> Conversation:
        """Create a conversation titled from *first_message*, then schedule cleanup."""
        title = derive_title(first_message or "", self.title_max_length)
        conversation_id = str(uuid.uuid4())
        with _persistence("create conversation"):
            self._conn.execute(
                f"""
                INSERT INTO conversations (id, user_id, title, created_at, updated_at)
                VALUES (?, ?, ?, {_NOW}, {_NOW})
                """,
                (conversation_id, user_id, title),
            )
            self._conn.commit()
        log.debug("conversation.created", conversation_id=conversation_id, user_id=user_id)
        self._schedule_cleanup(user_id)
        return self.get(conversation_id)  # type: ignore[return-value]

    def get(self, conversation_id: str, user_id: str | None = None) -> Conversation | None:
        """Return the conversation, or None if missing or not owned by *user_id*."""
        sql = """
            SELECT id, user_id, title, message_count, last_message_at, created_at, updated_at
            FROM conversations WHERE id = ?
        """
        params: tuple = (conversation_id,)
        if user_id is not None:
            sql += " AND user_id = ?"
            params += (user_id,)
        with _persistence("read conversation"):
            row = self._conn.execute(sql, params).fetchone()
        return _row_to_conversation(row) if row else None

    def list_for_user(self, user_id: str) -> list[Conversation]:
        """Conversations of *user_id*, most recently updated first."""
        with _persistence("list conversations"):
            rows = self._conn.execute(
                """
                SELECT id, user_id, title, message_count, last_message_at, created_at, updated_at
                FROM conversations WHERE user_id = ?
                ORDER BY updated_at DESC, rowid DESC
                """,
                (user_id,),
            ).fetchall()
        return [_row_to_conversation(r) for r in rows]

    def update_title(self, conversation_id: str, user_id: str, title: str) -> bool:
        with _persistence("update conversation title"):
            cur = self._conn.execute(
                f"UPDATE conversations SET title = ?, updated_at = {_NOW} WHERE id = ? AND user_id = ?",
                (title, conversation_id, user_id),
            )
            self._conn.commit()
        return cur.rowcount > 0

    def delete(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation and (by cascade) its messages."""
        with _persistence("delete conversation"):
            cur = self._conn.execute(
                "DELETE FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup(self, user_id: str, conn: sqlite3.Connection | None = None) -> int:
        """Delete *user_id*'s conversations beyond the cap, oldest-updated first."""
        conn = conn or self._conn
        with _persistence("clean up conversations"):
            cur = conn.execute(
                """
                DELETE FROM conversations WHERE id IN (
                    SELECT id FROM conversations WHERE user_id = ?
                    ORDER BY updated_at DESC, rowid DESC
                    LIMIT -1 OFFSET ?
                )
                """,
                (user_id, self.max_per_user),
            )
            conn.commit()
        if cur.rowcount:
            log.info("conversation.cleanup", user_id=user_id, deleted=cur.rowcount)
        return cur.rowcount

    def _schedule_cleanup(self, user_id: str) -> threading.Thread | None:
        if self._connect is None:
            self._safe_cleanup(user_id)
            return None
        thread = threading.Thread(
            target=self._background_cleanup, args=(user_id,), name="conversation-cleanup", daemon=True
        )
        thread.start()
        return thread

    def _background_cleanup(self, user_id: str) -> None:
        try:
            conn = self._connect()  # type: ignore[misc]
        except sqlite3.Error as exc:
            log.warning("conversation.cleanup_failed", user_id=user_id, error=str(exc))
            return
        try:
            self._safe_cleanup(user_id, conn)
        finally:
            conn.close()

    def _safe_cleanup(self, user_id: str, conn: sqlite3.Connection | None = None) -> None:
        try:
            self.cleanup(user_id, conn)
        except PersistenceError as exc:
            log.warning("conversation.cleanup_failed", user_id=user_id, error=str(exc))

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        tokens_used: int = 0,
        sources_count: int = 0,
        metadata: dict | None = None,
    ) -> Message:
        with _persistence("add message"):
            with write_transaction(self._conn):
                message = self._insert_message(
                    conversation_id, role, content, tokens_used, sources_count, metadata or {}
                )
        return message

    def save_exchange(
        self,
        conversation_id: str,
        user_message: str,
        answer: str,
        *,
        tokens_used: int,
        sources_count: int,
        metadata: dict | None = None,
    ) -> tuple[Message, Message]:
        """Write the user message (0 tokens) and the assistant answer together."""
        with _persistence("save exchange"):
            with write_transaction(self._conn):
                user_msg = self._insert_message(conversation_id, "user", user_message, 0, 0, {})
                assistant_msg = self._insert_message(
                    conversation_id, "assistant", answer, tokens_used, sources_count, metadata or {}
                )
        return user_msg, assistant_msg

    def get_messages(self, conversation_id: str) -> list[Message]:
        """All messages of a conversation in write order."""
        with _persistence("read messages"):
            rows = self._conn.execute(
                """
                SELECT id, conversation_id, role, content, tokens_used, sources_count,
                       metadata, created_at
                FROM messages WHERE conversation_id = ? ORDER BY seq
                """,
                (conversation_id,),
            ).fetchall()
        return [_row_to_message(r) for r in rows]

    def recent_history(self, conversation_id: str, limit: int = 10) -> list[dict]:
        """The last *limit* messages as ``{"role", "content"}`` dicts, oldest first."""
        with _persistence("read history"):
            rows = self._conn.execute(
                """
                SELECT role, content FROM (
                    SELECT role, content, seq FROM messages
                    WHERE conversation_id = ? ORDER BY seq DESC LIMIT ?
                ) ORDER BY seq
                """,
                (conversation_id, limit),
            ).fetchall()
        return [{"role": r["role"], "content": r["content"]} for r in rows]

    def _insert_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tokens_used: int,
        sources_count: int,
        metadata: dict,
    ) -> Message:
        message_id = str(uuid.uuid4())
        self._conn.execute(
            """
            INSERT INTO messages (
                id, conversation_id, role, content, tokens_used, sources_count, metadata, seq
            )
            VALUES (?, ?, ?, ?, ?, ?, ?,
                    (SELECT COALESCE(MAX(seq), 0) + 1 FROM messages WHERE conversation_id = ?))
            """,
            (
                message_id,
                conversation_id,
                role,
                content,
                tokens_used,
                sources_count,
                json.dumps(metadata, default=str),
                conversation_id,
            ),
        )
        self._conn.execute(
            f"""
            UPDATE conversations
            SET message_count = message_count + 1,
                last_message_at = {_NOW},
                updated_at = {_NOW}
            WHERE id = ?
            """,
            (conversation_id,),
        )
        return Message(
            id=message_id,
            conversation_id=conversation_id,
            role=role,
            content=content,
            tokens_used=tokens_used,
            sources_count=sources_count,
            metadata=metadata,
        )


def _row_to_conversation(row: sqlite3.Row) -> Conversation:
    return Conversation(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        message_count=row["message_count"],
        last_message_at=row["last_message_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        tokens_used=row["tokens_used"],
        sources_count=row["sources_count"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=row["created_at"],
    )
