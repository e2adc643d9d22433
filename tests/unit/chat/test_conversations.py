"""Tests for conversation persistence, titles and per-user retention."""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest

from lexrag.chat.conversations import DEFAULT_TITLE, ConversationStore, derive_title
from lexrag.db.connection import Database
from lexrag.errors import PersistenceError
from lexrag.ledger import TokenLedger


@pytest.fixture(autouse=True)
def users(tmp_db):
    ledger = TokenLedger(tmp_db)
    ledger.create_user("one@example.com", user_id="u1")
    ledger.create_user("two@example.com", user_id="u2")


@pytest.fixture
def conversations(tmp_db):
    return ConversationStore(tmp_db, max_per_user=3)


def test_derive_title_short_message_kept():
    assert derive_title("  Can my landlord   keep the deposit?  ") == "Can my landlord keep the deposit?"


def test_derive_title_cuts_at_word_boundary():
    message = "What happens when the tenant leaves before the end of the fixed term?"
    title = derive_title(message, max_length=30)
    assert title == "What happens when the tenant..."
    assert len(title) <= 33


def test_derive_title_long_first_word():
    assert derive_title("x" * 80, max_length=10) == "xxxxxxxxxx..."


def test_derive_title_empty():
    assert derive_title("   ") == DEFAULT_TITLE


def test_create_and_get(conversations):
    conv = conversations.create("u1", "Deposit question")
    assert conv.title == "Deposit question"
    assert conv.message_count == 0
    assert conversations.get(conv.id, "u1") == conv


def test_get_respects_ownership(conversations):
    conv = conversations.create("u1", "hello")
    assert conversations.get(conv.id, "u2") is None
    assert conversations.delete(conv.id, "u2") is False
    assert conversations.update_title(conv.id, "u2", "stolen") is False
    assert conversations.get(conv.id).title == "hello"


def test_save_exchange_writes_both_messages(conversations):
    conv = conversations.create("u1", "q")
    user_msg, assistant_msg = conversations.save_exchange(
        conv.id, "q", "a", tokens_used=120, sources_count=2, metadata={"model": "m"}
    )
    assert user_msg.tokens_used == 0
    assert assistant_msg.tokens_used == 120

    messages = conversations.get_messages(conv.id)
    assert [(m.role, m.content) for m in messages] == [("user", "q"), ("assistant", "a")]
    assert messages[1].metadata == {"model": "m"}
    refreshed = conversations.get(conv.id)
    assert refreshed.message_count == 2
    assert refreshed.last_message_at is not None


def test_recent_history_oldest_first_and_limited(conversations):
    conv = conversations.create("u1", "q")
    for i in range(6):
        conversations.add_message(conv.id, "user" if i % 2 == 0 else "assistant", f"m{i}")
    history = conversations.recent_history(conv.id, limit=4)
    assert [h["content"] for h in history] == ["m2", "m3", "m4", "m5"]
    assert set(history[0]) == {"role", "content"}


def test_delete_cascades_messages(tmp_db, conversations):
    conv = conversations.create("u1", "q")
    conversations.add_message(conv.id, "user", "q")
    assert conversations.delete(conv.id, "u1") is True
    count = tmp_db.execute(
        "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conv.id,)
    ).fetchone()[0]
    assert count == 0


def test_list_most_recently_updated_first(tmp_db, conversations):
    first = conversations.create("u1", "first")
    second = conversations.create("u1", "second")
    tmp_db.execute(
        "UPDATE conversations SET updated_at = ? WHERE id = ?",
        ("2000-01-01 00:00:00.000", second.id),
    )
    tmp_db.commit()
    assert [c.id for c in conversations.list_for_user("u1")] == [first.id, second.id]


def test_cap_deletes_oldest_updated_inline(conversations):
    created = [conversations.create("u1", f"c{i}") for i in range(5)]
    other = conversations.create("u2", "other user")
    remaining = [c.id for c in conversations.list_for_user("u1")]
    assert remaining == [c.id for c in reversed(created[2:])]
    assert conversations.get(other.id) is not None


def test_cap_cleanup_on_background_connection(db_path):
    database = Database(db_path)
    conn = database.connect()
    store = ConversationStore(conn, connect=database.connect, max_per_user=2)
    for i in range(3):
        store.create("u1", f"c{i}")
        thread = store._schedule_cleanup("u1")
        thread.join(timeout=10)
    assert len(store.list_for_user("u1")) == 2
    conn.close()


def test_cleanup_failure_does_not_fail_create(tmp_db):
    store = ConversationStore(
        tmp_db, connect=MagicMock(side_effect=sqlite3.OperationalError("locked"))
    )
    conv = store.create("u1", "still created")
    assert store.get(conv.id) is not None


def test_sqlite_errors_become_persistence_errors():
    conn = MagicMock()
    conn.execute.side_effect = sqlite3.OperationalError("disk I/O error")
    store = ConversationStore(conn)
    with pytest.raises(PersistenceError, match="disk I/O error"):
        store.list_for_user("u1")
