from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class ChatType(StrEnum):
    INDIVIDUAL = "individual"
    GROUP = "group"


class UserStatus(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class GroupRole(StrEnum):
    ADMIN = "admin"
    MEMBER = "member"


FRIEND_ACTIVE = "active"
FRIEND_PENDING = "pending"
UNKNOWN_USERNAME = "Unknown"

_EPOCH = datetime.min.replace(tzinfo=UTC)

_MESSAGE_KEYS = {"chatId", "sender", "content", "timestamp", "read", "image", "deleted"}
_SUMMARY_KEYS = {
    "name",
    "type",
    "title",
    "avatar",
    "lastMessage",
    "lastUser",
    "timestamp",
    "unreadCount",
}
_CHAT_KEYS = {
    "type",
    "participants",
    "name",
    "title",
    "description",
    "avatar",
    "creator",
    "admin",
    "messages",
}
_USER_KEYS = {
    "username",
    "status",
    "bio",
    "avatar",
    "firstName",
    "lastName",
    "email",
    "chatUser",
    "friends",
    "friendRequests",
    "hiddenChats",
}


@dataclass
class Message:
    message_id: str
    chat_id: str
    sender: str
    content: str
    timestamp: str
    read: bool = False
    image: str | None = None
    deleted: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChatSummary:
    """One user's personalised view of a chat, kept next to the canonical record."""

    name: str | None = None
    type: str | None = None
    title: str | None = None
    avatar: str | None = None
    last_message: str | None = None
    last_user: str | None = None
    timestamp: str | None = None
    unread_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class Friendship:
    status: str
    since: str | None = None
    # Older fixtures store the status as a bare string.
    bare: bool = False


@dataclass
class HiddenChat:
    pin_hash: str
    hidden_at: str


@dataclass
class Chat:
    chat_id: str
    type: str
    participants: list[str] = field(default_factory=list)
    name: str | None = None
    title: str | None = None
    description: str | None = None
    avatar: str | None = None
    creator: str | None = None
    admin: dict[str, str] = field(default_factory=dict)
    messages: dict[str, Message] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_group(self) -> bool:
        return self.type == ChatType.GROUP

    def admin_ids(self) -> set[str]:
        return {str(uid) for uid in self.admin.values()}

    def is_admin(self, user_id: str) -> bool:
        return user_id == self.creator or user_id in self.admin_ids()


@dataclass
class User:
    user_id: str
    username: str
    status: str = UserStatus.OFFLINE.value
    bio: str | None = None
    avatar: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    chat_user: dict[str, ChatSummary] = field(default_factory=dict)
    friends: dict[str, Friendship] = field(default_factory=dict)
    friend_requests: dict[str, str] = field(default_factory=dict)
    hidden_chats: dict[str, HiddenChat] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp; naive values are UTC and garbage sorts first."""
    if not isinstance(value, str) or not value.strip():
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _safe_unread(value: Any) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return 0


def _extra(payload: dict[str, Any], known: set[str]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if key not in known}


def _mapping(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _put(target: dict[str, Any], key: str, value: Any) -> None:
    if value is not None:
        target[key] = value


def message_from_payload(message_id: str, chat_id: str, payload: dict[str, Any]) -> Message:
    return Message(
        message_id=message_id,
        chat_id=str(payload.get("chatId") or chat_id),
        sender=str(payload.get("sender", "")),
        content=str(payload.get("content") or ""),
        timestamp=str(payload.get("timestamp") or ""),
        read=bool(payload.get("read", False)),
        image=_optional_str(payload.get("image")),
        deleted=bool(payload.get("deleted", False)),
        extra=_extra(payload, _MESSAGE_KEYS),
    )


def message_to_payload(message: Message) -> dict[str, Any]:
    payload: dict[str, Any] = dict(message.extra)
    payload.update(
        {
            "chatId": message.chat_id,
            "sender": message.sender,
            "content": message.content,
            "timestamp": message.timestamp,
            "read": message.read,
        }
    )
    _put(payload, "image", message.image)
    if message.deleted:
        payload["deleted"] = True
    return payload


def summary_from_payload(payload: dict[str, Any]) -> ChatSummary:
    return ChatSummary(
        name=_optional_str(payload.get("name")),
        type=_optional_str(payload.get("type")),
        title=_optional_str(payload.get("title")),
        avatar=_optional_str(payload.get("avatar")),
        last_message=_optional_str(payload.get("lastMessage")),
        last_user=_optional_str(payload.get("lastUser")),
        timestamp=_optional_str(payload.get("timestamp")),
        unread_count=_safe_unread(payload.get("unreadCount", 0)),
        extra=_extra(payload, _SUMMARY_KEYS),
    )


def summary_to_payload(summary: ChatSummary) -> dict[str, Any]:
    payload: dict[str, Any] = dict(summary.extra)
    _put(payload, "name", summary.name)
    _put(payload, "type", summary.type)
    _put(payload, "title", summary.title)
    _put(payload, "avatar", summary.avatar)
    _put(payload, "lastMessage", summary.last_message)
    _put(payload, "lastUser", summary.last_user)
    _put(payload, "timestamp", summary.timestamp)
    payload["unreadCount"] = summary.unread_count
    return payload


def friendship_from_payload(payload: Any) -> Friendship:
    if isinstance(payload, dict):
        return Friendship(
            status=str(payload.get("status") or FRIEND_PENDING),
            since=_optional_str(payload.get("since")),
        )
    return Friendship(status=str(payload or FRIEND_PENDING), bare=True)


def friendship_to_payload(friendship: Friendship) -> Any:
    if friendship.bare:
        return friendship.status
    payload: dict[str, Any] = {"status": friendship.status}
    _put(payload, "since", friendship.since)
    return payload


def chat_from_payload(chat_id: str, payload: dict[str, Any]) -> Chat:
    raw_admin = payload.get("admin")
    if isinstance(raw_admin, list):
        admin = {str(uid): str(uid) for uid in raw_admin}
    else:
        admin = {str(key): str(uid) for key, uid in _mapping(raw_admin).items()}
    raw_participants = payload.get("participants")
    if not isinstance(raw_participants, list):
        raw_participants = []
    return Chat(
        chat_id=chat_id,
        type=str(payload.get("type") or ChatType.INDIVIDUAL.value),
        participants=[str(uid) for uid in raw_participants],
        name=_optional_str(payload.get("name")),
        title=_optional_str(payload.get("title")),
        description=_optional_str(payload.get("description")),
        avatar=_optional_str(payload.get("avatar")),
        creator=_optional_str(payload.get("creator")),
        admin=admin,
        messages={
            str(message_id): message_from_payload(str(message_id), chat_id, item)
            for message_id, item in _mapping(payload.get("messages")).items()
            if isinstance(item, dict)
        },
        extra=_extra(payload, _CHAT_KEYS),
    )


def chat_to_payload(chat: Chat, *, include_messages: bool = True) -> dict[str, Any]:
    payload: dict[str, Any] = dict(chat.extra)
    payload["type"] = chat.type
    payload["participants"] = list(chat.participants)
    _put(payload, "name", chat.name)
    _put(payload, "title", chat.title)
    _put(payload, "description", chat.description)
    _put(payload, "avatar", chat.avatar)
    _put(payload, "creator", chat.creator)
    if chat.admin:
        payload["admin"] = dict(chat.admin)
    if include_messages:
        payload["messages"] = {
            message_id: message_to_payload(message)
            for message_id, message in chat.messages.items()
        }
    return payload


def user_from_payload(user_id: str, payload: dict[str, Any]) -> User:
    hidden: dict[str, HiddenChat] = {}
    for chat_id, item in _mapping(payload.get("hiddenChats")).items():
        if not isinstance(item, dict):
            continue
        hidden[str(chat_id)] = HiddenChat(
            pin_hash=str(item.get("pinHash", "")),
            hidden_at=str(item.get("hiddenAt", "")),
        )
    return User(
        user_id=user_id,
        username=str(payload.get("username") or ""),
        status=str(payload.get("status") or UserStatus.OFFLINE.value),
        bio=_optional_str(payload.get("bio")),
        avatar=_optional_str(payload.get("avatar")),
        first_name=_optional_str(payload.get("firstName")),
        last_name=_optional_str(payload.get("lastName")),
        email=_optional_str(payload.get("email")),
        chat_user={
            str(chat_id): summary_from_payload(item)
            for chat_id, item in _mapping(payload.get("chatUser")).items()
            if isinstance(item, dict)
        },
        friends={
            str(friend_id): friendship_from_payload(item)
            for friend_id, item in _mapping(payload.get("friends")).items()
        },
        friend_requests={
            str(from_id): str(state)
            for from_id, state in _mapping(payload.get("friendRequests")).items()
        },
        hidden_chats=hidden,
        extra=_extra(payload, _USER_KEYS),
    )


def user_to_payload(user: User) -> dict[str, Any]:
    payload: dict[str, Any] = dict(user.extra)
    payload["username"] = user.username
    payload["status"] = user.status
    _put(payload, "bio", user.bio)
    _put(payload, "avatar", user.avatar)
    _put(payload, "firstName", user.first_name)
    _put(payload, "lastName", user.last_name)
    _put(payload, "email", user.email)
    payload["chatUser"] = {
        chat_id: summary_to_payload(summary) for chat_id, summary in user.chat_user.items()
    }
    if user.friends:
        payload["friends"] = {
            friend_id: friendship_to_payload(item) for friend_id, item in user.friends.items()
        }
    if user.friend_requests:
        payload["friendRequests"] = dict(user.friend_requests)
    if user.hidden_chats:
        payload["hiddenChats"] = {
            chat_id: {"pinHash": item.pin_hash, "hiddenAt": item.hidden_at}
            for chat_id, item in user.hidden_chats.items()
        }
    return payload
