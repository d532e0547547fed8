from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

import pytest

from bicochat.store.chat_store import ChatStore
from bicochat.store.errors import ChatNotFoundError, DataInconsistencyError, InvalidOperationError


class _FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _build_payload() -> dict[str, Any]:
    return {
        "users": {
            "u_alice": {
                "username": "alice",
                "status": "online",
                "chatUser": {
                    "chat_ab": {
                        "name": "bob",
                        "type": "individual",
                        "lastMessage": "see you",
                        "lastUser": "u_bob",
                        "timestamp": "2025-01-01T10:05:00+00:00",
                        "unreadCount": 1,
                    },
                    "group_abc": {
                        "name": "Study group",
                        "type": "group",
                        "title": "Study group",
                        "lastMessage": "morning",
                        "lastUser": "u_carol",
                        "timestamp": "2025-01-01T09:00:00+00:00",
                        "unreadCount": 1,
                    },
                },
                "friends": {
                    "u_bob": {"status": "active", "since": "2024-05-01"},
                    "u_ghost": {"status": "active", "since": "2024-06-01"},
                },
            },
            "u_bob": {
                "username": "bob",
                "status": "offline",
                "chatUser": {
                    "chat_ab": {
                        "name": "alice",
                        "type": "individual",
                        "lastMessage": "see you",
                        "lastUser": "u_bob",
                        "timestamp": "2025-01-01T10:05:00+00:00",
                        "unreadCount": 0,
                    },
                    "group_abc": {
                        "name": "Study group",
                        "type": "group",
                        "title": "Study group",
                        "unreadCount": 1,
                    },
                },
            },
            "u_carol": {
                "username": "carol",
                "status": "online",
                "chatUser": {
                    "group_abc": {
                        "name": "Study group",
                        "type": "group",
                        "title": "Study group",
                        "unreadCount": 0,
                    }
                },
            },
        },
        "chats": {
            "chat_ab": {
                "type": "individual",
                "participants": ["u_alice", "u_bob"],
                "messages": {
                    "msg_1": {
                        "chatId": "chat_ab",
                        "sender": "u_alice",
                        "content": "hi bob",
                        "timestamp": "2025-01-01T10:00:00+00:00",
                        "read": True,
                    },
                    "msg_2": {
                        "chatId": "chat_ab",
                        "sender": "u_bob",
                        "content": "see you",
                        "timestamp": "2025-01-01T10:05:00+00:00",
                        "read": False,
                    },
                },
            },
            "group_abc": {
                "type": "group",
                "title": "Study group",
                "creator": "u_alice",
                "admin": {"creator": "u_alice"},
                "participants": ["u_alice", "u_bob", "u_carol"],
                "messages": {
                    "msg_g1": {
                        "chatId": "group_abc",
                        "sender": "u_carol",
                        "content": "morning",
                        "timestamp": "2025-01-01T09:00:00+00:00",
                        "read": False,
                    }
                },
            },
        },
    }


def _store(now: datetime | None = None) -> ChatStore:
    clock = _FixedClock(now or datetime(2025, 1, 2, 12, 0, tzinfo=UTC))
    return ChatStore(_build_payload(), clock=clock)


def _summary(store: ChatStore, user_id: str, chat_id: str) -> dict[str, Any]:
    user = store.get_user_by_id(user_id) or {}
    return user["chatUser"][chat_id]


def test_get_current_user_and_user_by_id_include_id() -> None:
    store = _store()

    current = store.get_current_user("u_alice")
    other = store.get_user_by_id("u_bob")

    assert current is not None
    assert current["id"] == "u_alice"
    assert current["username"] == "alice"
    assert other is not None and other["username"] == "bob"
    assert store.get_user_by_id("u_missing") is None


def test_get_messages_sorted_by_timestamp_with_ties_in_insertion_order() -> None:
    payload = _build_payload()
    payload["chats"]["chat_ab"]["messages"] = {
        "msg_late": {
            "sender": "u_bob",
            "content": "late",
            "timestamp": "2025-01-01T11:00:00+00:00",
        },
        "msg_tie_a": {
            "sender": "u_alice",
            "content": "tie a",
            "timestamp": "2025-01-01T10:00:00+00:00",
        },
        "msg_tie_b": {
            "sender": "u_bob",
            "content": "tie b",
            "timestamp": "2025-01-01T10:00:00Z",
        },
    }
    store = ChatStore(payload)

    messages = store.get_messages_by_chat_id("chat_ab")

    assert [item["id"] for item in messages] == ["msg_tie_a", "msg_tie_b", "msg_late"]
    assert all(item["chatId"] == "chat_ab" for item in messages)


def test_get_messages_and_chat_for_missing_chat() -> None:
    store = _store()

    assert store.get_messages_by_chat_id("chat_missing") == []
    assert store.get_chat_by_id("chat_missing") is None
    assert store.get_message_by_id("chat_missing", "msg_1") is None


def test_get_chat_by_id_returns_full_record() -> None:
    store = _store()

    chat = store.get_chat_by_id("group_abc")

    assert chat is not None
    assert chat["id"] == "group_abc"
    assert chat["type"] == "group"
    assert chat["participants"] == ["u_alice", "u_bob", "u_carol"]
    assert chat["creator"] == "u_alice"
    assert "msg_g1" in chat["messages"]


def test_send_message_updates_summaries_and_unread_counts() -> None:
    store = _store()

    message = store.send_message("chat_ab", "hello", "u_alice")

    assert message["content"] == "hello"
    assert message["read"] is False
    assert message["sender"] == "u_alice"
    assert message["timestamp"] == "2025-01-02T12:00:00+00:00"
    assert message["id"] == f"msg_{int(datetime(2025, 1, 2, 12, 0, tzinfo=UTC).timestamp() * 1000)}"
    assert store.get_messages_by_chat_id("chat_ab")[-1]["id"] == message["id"]

    sender_summary = _summary(store, "u_alice", "chat_ab")
    other_summary = _summary(store, "u_bob", "chat_ab")
    assert sender_summary["unreadCount"] == 0
    assert other_summary["unreadCount"] == 1
    for summary in (sender_summary, other_summary):
        assert summary["lastMessage"] == "hello"
        assert summary["lastUser"] == "u_alice"
        assert summary["timestamp"] == message["timestamp"]


def test_send_message_to_group_increments_every_other_member() -> None:
    store = _store()

    store.send_message("group_abc", "who is in?", "u_bob")

    assert _summary(store, "u_alice", "group_abc")["unreadCount"] == 2
    assert _summary(store, "u_bob", "group_abc")["unreadCount"] == 0
    assert _summary(store, "u_carol", "group_abc")["unreadCount"] == 1


def test_send_message_to_missing_chat_raises() -> None:
    store = _store()

    with pytest.raises(ChatNotFoundError):
        store.send_message("chat_missing", "hello", "u_alice")
    with pytest.raises(InvalidOperationError):
        store.send_message("chat_missing", "hello", "u_alice")


def test_send_message_rejects_blank_content_without_image() -> None:
    store = _store()

    with pytest.raises(InvalidOperationError):
        store.send_message("chat_ab", "   ", "u_alice")

    message = store.send_message("chat_ab", "", "u_alice", image="aGVsbG8=")
    assert message["image"] == "aGVsbG8="
    assert _summary(store, "u_bob", "chat_ab")["lastMessage"] == "[image]"


def test_send_message_timestamp_never_precedes_newest_message() -> None:
    store = _store(now=datetime(2024, 12, 31, 8, 0, tzinfo=UTC))

    message = store.send_message("chat_ab", "clock skew", "u_alice")

    assert message["timestamp"] == "2025-01-01T10:05:00+00:00"
    assert store.get_messages_by_chat_id("chat_ab")[-1]["id"] == message["id"]
    assert store.validate() == []


def test_send_message_ids_stay_unique_within_same_millisecond() -> None:
    store = _store()

    first = store.send_message("chat_ab", "one", "u_alice")
    second = store.send_message("chat_ab", "two", "u_alice")

    assert first["id"] != second["id"]
    assert second["id"] == f"{first['id']}_1"


def test_send_message_creates_missing_summary_for_participant() -> None:
    payload = _build_payload()
    del payload["users"]["u_carol"]["chatUser"]["group_abc"]
    store = ChatStore(payload)

    store.send_message("group_abc", "ping", "u_alice")

    summary = _summary(store, "u_carol", "group_abc")
    assert summary["unreadCount"] == 1
    assert summary["title"] == "Study group"
    assert summary["lastMessage"] == "ping"


def test_failed_staging_leaves_store_untouched(monkeypatch: pytest.MonkeyPatch) -> None:
    store = _store()
    before = store.to_payload()

    def _explode(*_args: object, **_kwargs: object) -> dict[str, object]:
        raise RuntimeError("boom")

    monkeypatch.setattr(store, "_stage_summaries_for", _explode)

    with pytest.raises(RuntimeError):
        store.send_message("chat_ab", "lost", "u_alice")
    assert store.to_payload() == before


def test_mark_chat_as_read_marks_all_received_messages_and_is_idempotent() -> None:
    payload = _build_payload()
    payload["chats"]["chat_ab"]["messages"]["msg_3"] = {
        "chatId": "chat_ab",
        "sender": "u_bob",
        "content": "are you there?",
        "timestamp": "2025-01-01T10:06:00+00:00",
        "read": False,
    }
    store = ChatStore(payload)

    marked = store.mark_chat_as_read("chat_ab", "u_alice")

    assert marked == 2
    assert _summary(store, "u_alice", "chat_ab")["unreadCount"] == 0
    assert all(item["read"] for item in store.get_messages_by_chat_id("chat_ab"))

    assert store.mark_chat_as_read("chat_ab", "u_alice") == 0
    assert _summary(store, "u_alice", "chat_ab")["unreadCount"] == 0


def test_mark_chat_as_read_leaves_own_messages_alone() -> None:
    store = _store()
    store.send_message("chat_ab", "unread by bob", "u_alice")

    store.mark_chat_as_read("chat_ab", "u_alice")

    last = store.get_messages_by_chat_id("chat_ab")[-1]
    assert last["content"] == "unread by bob"
    assert last["read"] is False
    assert _summary(store, "u_bob", "chat_ab")["unreadCount"] == 1


def test_mark_chat_as_read_by_outsider_is_a_no_op() -> None:
    store = _store()

    assert store.mark_chat_as_read("chat_ab", "u_carol") == 0
    assert store.get_message_by_id("chat_ab", "msg_2")["read"] is False
    assert store.mark_chat_as_read("chat_missing", "u_alice") == 0


def test_get_chats_returns_one_entry_per_summary_key() -> None:
    payload = _build_payload()
    payload["users"]["u_alice"]["chatUser"]["chat_gone"] = {"name": "old chat", "unreadCount": 4}
    store = ChatStore(payload)

    chats = store.get_chats("u_alice")

    assert [item["id"] for item in chats] == ["chat_ab", "group_abc", "chat_gone"]
    by_id = {item["id"]: item for item in chats}
    assert by_id["chat_ab"]["participants"] == ["u_alice", "u_bob"]
    assert by_id["chat_ab"]["name"] == "bob"
    assert by_id["chat_ab"]["unreadCount"] == 1
    assert by_id["group_abc"]["title"] == "Study group"
    assert by_id["chat_gone"]["name"] == "old chat"
    assert by_id["chat_gone"]["unreadCount"] == 4
    assert all(item["hidden"] is False for item in chats)
    assert store.get_chats("u_missing") == []


def test_get_friends_list_uses_placeholder_for_unknown_ids() -> None:
    store = _store()

    friends = store.get_friends_list("u_alice")

    assert len(friends) == 2
    by_id = {item["id"]: item for item in friends}
    assert by_id["u_bob"]["username"] == "bob"
    assert by_id["u_bob"]["friendshipStatus"] == "active"
    assert by_id["u_bob"]["friendsSince"] == "2024-05-01"
    assert by_id["u_ghost"]["username"] == "Unknown"
    assert by_id["u_ghost"]["status"] == "offline"
    assert store.get_friends_list("u_carol") == []


def test_export_and_reimport_round_trip_is_deep_equal() -> None:
    store = _store()
    store.send_message("group_abc", "round trip", "u_alice")
    store.hide_chat("u_bob", "chat_ab", "4321")

    exported = store.to_payload()
    from_payload = ChatStore(exported)
    from_text = ChatStore.from_json(store.export_data())

    assert from_payload.to_payload() == exported
    assert from_text.to_payload() == exported


def test_returned_views_are_detached_from_store_state() -> None:
    payload = _build_payload()
    store = ChatStore(payload)

    payload["chats"]["chat_ab"]["participants"].append("u_intruder")
    chat = store.get_chat_by_id("chat_ab")
    assert chat is not None
    chat["participants"].append("u_intruder")
    chat["messages"]["msg_1"]["content"] = "tampered"
    user = store.get_user_by_id("u_alice")
    assert user is not None
    user["chatUser"]["chat_ab"]["unreadCount"] = 99

    fresh = store.get_chat_by_id("chat_ab")
    assert fresh is not None
    assert fresh["participants"] == ["u_alice", "u_bob"]
    assert fresh["messages"]["msg_1"]["content"] == "hi bob"
    assert _summary(store, "u_alice", "chat_ab")["unreadCount"] == 1


def test_strict_store_rejects_inconsistent_fixture() -> None:
    payload = _build_payload()
    payload["chats"]["chat_ab"]["participants"].append("u_carol")

    with pytest.raises(DataInconsistencyError) as exc_info:
        ChatStore(payload, strict=True)

    assert "individual_chat_participants:chat_ab" in exc_info.value.issues
    lenient = ChatStore(payload)
    assert "individual_chat_participants:chat_ab" in lenient.load_issues


def test_concurrent_sends_keep_counters_consistent() -> None:
    store = ChatStore(_build_payload())
    per_thread = 25

    def _worker() -> None:
        for index in range(per_thread):
            store.send_message("group_abc", f"burst {index}", "u_carol")

    threads = [threading.Thread(target=_worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    sent = 4 * per_thread
    assert len(store.get_messages_by_chat_id("group_abc")) == 1 + sent
    assert _summary(store, "u_alice", "group_abc")["unreadCount"] == 1 + sent
    assert _summary(store, "u_bob", "group_abc")["unreadCount"] == 1 + sent
    assert _summary(store, "u_carol", "group_abc")["unreadCount"] == 0
    assert store.validate() == []


def test_ops_snapshot_counts_records() -> None:
    store = _store()

    snapshot = store.ops_snapshot()

    assert snapshot["user_total"] == 3
    assert snapshot["online_user_total"] == 2
    assert snapshot["chat_total"] == 2
    assert snapshot["group_chat_total"] == 1
    assert snapshot["message_total"] == 3
    assert snapshot["unread_total"] == 3
    assert snapshot["persistence"]["enabled"] is False


def test_deleting_latest_message_clears_its_text_from_summaries() -> None:
    store = _store()
    message = store.send_message("chat_ab", "secret text", "u_alice")

    store.delete_message("chat_ab", message["id"], "u_alice")

    for user_id in ("u_alice", "u_bob"):
        view = next(item for item in store.get_chats(user_id) if item["id"] == "chat_ab")
        assert view["lastMessage"] == "[message deleted]"
    assert "secret text" not in store.export_data()


def test_deleting_older_message_keeps_summary_preview() -> None:
    store = _store()

    store.delete_message("chat_ab", "msg_1", "u_alice")

    assert _summary(store, "u_alice", "chat_ab")["lastMessage"] == "see you"
    assert _summary(store, "u_bob", "chat_ab")["lastMessage"] == "see you"


def test_unknown_chat_ids_do_not_allocate_chat_locks() -> None:
    store = _store()

    for index in range(50):
        chat_id = f"chat_unknown_{index}"
        assert store.mark_chat_as_read(chat_id, "u_alice") == 0
        assert store.get_messages_by_chat_id(chat_id) == []
        assert store.get_chat_by_id(chat_id) is None
        assert store.delete_chat(chat_id) is False
        with pytest.raises(ChatNotFoundError):
            store.send_message(chat_id, "hello", "u_alice")
        with pytest.raises(ChatNotFoundError):
            store.delete_message(chat_id, "msg_1", "u_alice")

    assert not [key for key in store._chat_locks if key.startswith("chat_unknown_")]


def test_deleted_chat_releases_its_lock() -> None:
    store = _store()
    store.send_message("chat_ab", "ciao", "u_alice")
    assert "chat_ab" in store._chat_locks

    assert store.delete_chat("chat_ab") is True

    assert "chat_ab" not in store._chat_locks
    assert store.mark_chat_as_read("chat_ab", "u_alice") == 0
    assert "chat_ab" not in store._chat_locks
