"""
Tests for SQLite storage.
Uses a temp database for each test.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

from lawline.storage.models import Account, Conversation, Message, UsageLogEntry, to_iso
from lawline.storage.sqlite_store import SQLiteStore


def _conv(owner="acct1", text="劳动合同纠纷怎么办", conv_id="c1"):
    return Conversation.start(conv_id, owner, "system prompt", text)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

def test_find_account_by_username_or_name(store):
    created = store.create_account(Account(username="li", name="李四"))

    assert store.find_account("li").id == created.id
    assert store.find_account("李四").id == created.id
    assert store.find_account("nobody") is None


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def test_create_and_get_conversation(store):
    store.create_conversation(_conv())

    conv = store.get_conversation("c1")
    assert conv is not None
    assert conv.owner_id == "acct1"
    assert conv.title == "劳动合同纠纷怎么办"
    assert [m.role for m in conv.messages] == ["system", "user"]


def test_get_missing_conversation(store):
    assert store.get_conversation("nope") is None


def test_append_keeps_insertion_order(store):
    store.create_conversation(_conv())
    store.append_message("c1", Message(role="assistant", content="请提供详情"))
    store.append_message("c1", Message(role="user", content="2024年3月受伤"))

    roles = [m.role for m in store.get_conversation("c1").messages]
    assert roles == ["system", "user", "assistant", "user"]


def test_append_updates_display_time(store):
    store.create_conversation(_conv())
    store.append_message("c1", Message(role="assistant", content="ok"), time="2026-10-19 09:30:00")

    assert store.get_conversation("c1").time == "2026-10-19 09:30:00"


def test_remove_last_message(store):
    store.create_conversation(_conv())
    store.append_message("c1", Message(role="user", content="second"))

    assert store.remove_last_message("c1") is True
    conv = store.get_conversation("c1")
    assert len(conv.messages) == 2
    assert conv.messages[-1].content == "劳动合同纠纷怎么办"


def test_remove_last_message_on_empty(store):
    assert store.remove_last_message("missing") is False


def test_remove_last_message_with_role_filter(store):
    store.create_conversation(_conv())
    store.append_message("c1", Message(role="assistant", content="answer"))

    assert store.remove_last_message("c1", role="user") is False
    assert store.get_conversation("c1").messages[-1].content == "answer"

    assert store.remove_last_message("c1", role="assistant") is True
    assert len(store.get_conversation("c1").messages) == 2


def test_delete_conversation_removes_messages(store):
    store.create_conversation(_conv())

    assert store.delete_conversation("c1") is True
    assert store.get_conversation("c1") is None
    assert store.get_stats()["user_messages"] == 0
    assert store.delete_conversation("c1") is False


def test_find_unfinished_conversation_requires_two_messages(store):
    store.create_conversation(_conv(conv_id="open"))
    assert store.find_unfinished_conversation("acct1", "劳动合同纠纷怎么办").id == "open"

    store.append_message("open", Message(role="assistant", content="reply"))
    assert store.find_unfinished_conversation("acct1", "劳动合同纠纷怎么办") is None


def test_find_unfinished_conversation_is_per_owner(store):
    store.create_conversation(_conv(owner="someone-else"))
    assert store.find_unfinished_conversation("acct1", "劳动合同纠纷怎么办") is None


def test_list_conversations_most_recent_first(store):
    older = replace(Conversation.start("old", "acct1", "p", "first question"),
                    created_at="2026-10-01T08:00:00.000000+00:00")
    newer = replace(Conversation.start("new", "acct1", "p", "second question"),
                    created_at="2026-10-02T08:00:00.000000+00:00")
    store.create_conversation(older)
    store.create_conversation(newer)
    store.create_conversation(_conv(owner="other", conv_id="x"))

    ids = [c.id for c in store.list_conversations("acct1")]
    assert ids == ["new", "old"]


# ---------------------------------------------------------------------------
# Usage log and counting
# ---------------------------------------------------------------------------

def test_query_log_counts_and_first_timestamp(store):
    base = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
    for hours in (5, 1, 30):
        store.log_query(UsageLogEntry(
            actor_id="g1", is_guest=True, timestamp=to_iso(base + timedelta(hours=hours)),
        ))

    assert store.first_query_timestamp() == base + timedelta(hours=1)
    assert store.count_queries_since(base + timedelta(hours=2)) == 2
    assert store.get_stats()["queries"] == {"total": 3, "guest": 3}


def test_first_query_timestamp_empty(store):
    assert store.first_query_timestamp() is None


def test_count_user_messages_window(store):
    base = datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)
    store.create_conversation(Conversation(id="c1", title="t", owner_id="a"))
    for hours, role in ((-1, "user"), (1, "user"), (2, "assistant"), (3, "system"), (5, "user")):
        store.append_message("c1", Message(
            role=role, content="x", timestamp=to_iso(base + timedelta(hours=hours)),
        ))

    assert store.count_user_messages(base) == 2
    assert store.count_user_messages(base, before=base + timedelta(hours=5)) == 1


def test_reopening_database_is_safe(tmp_path):
    db = str(tmp_path / "test.db")
    SQLiteStore(db).create_account(Account(username="a"))
    assert SQLiteStore(db).find_account("a") is not None
