from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from bicochat.store.models import (
    Chat,
    ChatType,
    User,
    chat_from_payload,
    parse_timestamp,
    user_from_payload,
)

_USER_MAPPING_KEYS = ("chatUser", "friends", "friendRequests", "hiddenChats")


def validate_payload(payload: Mapping[str, Any]) -> list[str]:
    """List invariant violations in a raw fixture document without raising."""
    issues: list[str] = []
    raw_users = payload.get("users", {})
    raw_chats = payload.get("chats", {})
    if not isinstance(raw_users, Mapping):
        issues.append("users_not_a_mapping")
        raw_users = {}
    if not isinstance(raw_chats, Mapping):
        issues.append("chats_not_a_mapping")
        raw_chats = {}
    users = {
        str(uid): user_from_payload(str(uid), item)
        for uid, item in raw_users.items()
        if isinstance(item, Mapping)
    }
    chats = {
        str(cid): chat_from_payload(str(cid), item)
        for cid, item in raw_chats.items()
        if isinstance(item, Mapping)
    }
    issues.extend(find_shape_issues(payload))
    issues.extend(find_invariant_issues(users=users, chats=chats))
    return issues


def find_shape_issues(payload: Mapping[str, Any]) -> list[str]:
    """Nested sections of the wrong JSON type; they load as empty."""
    issues: list[str] = []
    raw_users = payload.get("users")
    raw_chats = payload.get("chats")
    if isinstance(raw_users, Mapping):
        for uid, item in raw_users.items():
            if not isinstance(item, Mapping):
                issues.append(f"malformed_user:{uid}")
                continue
            for key in _USER_MAPPING_KEYS:
                if item.get(key) is not None and not isinstance(item.get(key), Mapping):
                    issues.append(f"malformed_{_issue_name(key)}:{uid}")
    if isinstance(raw_chats, Mapping):
        for cid, item in raw_chats.items():
            if not isinstance(item, Mapping):
                issues.append(f"malformed_chat:{cid}")
                continue
            admin = item.get("admin")
            if admin is not None and not isinstance(admin, (Mapping, list)):
                issues.append(f"malformed_admin:{cid}")
            if item.get("participants") is not None and not isinstance(
                item.get("participants"), list
            ):
                issues.append(f"malformed_participants:{cid}")
            if item.get("messages") is not None and not isinstance(item.get("messages"), Mapping):
                issues.append(f"malformed_messages:{cid}")
    return issues


def _issue_name(key: str) -> str:
    return "".join(f"_{char.lower()}" if char.isupper() else char for char in key)


def find_invariant_issues(*, users: Mapping[str, User], chats: Mapping[str, Chat]) -> list[str]:
    issues: list[str] = []
    for chat_id, chat in chats.items():
        issues.extend(_chat_issues(chat_id, chat))

    for user_id, user in users.items():
        for chat_id in user.chat_user:
            chat = chats.get(chat_id)
            if chat is None:
                issues.append(f"orphan_chat_summary:{user_id}:{chat_id}")
            elif user_id not in chat.participants:
                issues.append(f"summary_for_non_member:{user_id}:{chat_id}")
    return issues


def _chat_issues(chat_id: str, chat: Chat) -> list[str]:
    issues: list[str] = []
    if chat.type not in {ChatType.INDIVIDUAL, ChatType.GROUP}:
        issues.append(f"unknown_chat_type:{chat_id}")
    if len(set(chat.participants)) != len(chat.participants):
        issues.append(f"duplicate_participants:{chat_id}")
    if chat.type == ChatType.INDIVIDUAL and len(chat.participants) != 2:
        issues.append(f"individual_chat_participants:{chat_id}")
    if chat.type == ChatType.GROUP:
        if not chat.creator or chat.creator not in chat.participants:
            issues.append(f"group_creator_not_member:{chat_id}")
        for admin_id in sorted(chat.admin_ids()):
            if admin_id not in chat.participants:
                issues.append(f"group_admin_not_member:{chat_id}:{admin_id}")

    previous = None
    for message_id, message in chat.messages.items():
        if message.chat_id != chat_id:
            issues.append(f"message_chat_mismatch:{chat_id}:{message_id}")
        current = parse_timestamp(message.timestamp)
        if previous is not None and current < previous:
            issues.append(f"message_out_of_order:{chat_id}:{message_id}")
        previous = current
    return issues
