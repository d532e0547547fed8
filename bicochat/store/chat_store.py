from __future__ import annotations

import copy
import hashlib
import hmac
import json
import logging
import re
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from bicochat.store.errors import (
    ChatNotFoundError,
    DataInconsistencyError,
    InvalidOperationError,
    PermissionDeniedError,
    UserNotFoundError,
)
from bicochat.store.models import (
    FRIEND_ACTIVE,
    FRIEND_PENDING,
    UNKNOWN_USERNAME,
    Chat,
    ChatSummary,
    ChatType,
    Friendship,
    GroupRole,
    HiddenChat,
    Message,
    User,
    UserStatus,
    chat_from_payload,
    chat_to_payload,
    message_to_payload,
    parse_timestamp,
    summary_to_payload,
    user_from_payload,
    user_to_payload,
)
from bicochat.store.persistence import SnapshotFile
from bicochat.store.validation import find_invariant_issues, find_shape_issues

_PIN_PATTERN = re.compile(r"^[0-9]{4,8}$")
_DEFAULT_PIN_SALT = "bicochat-pin-salt"
_IMAGE_PREVIEW = "[image]"
_DELETED_PREVIEW = "[message deleted]"
logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ChatStore:
    """In-memory users, chats and messages with per-participant chat summaries.

    The store owns a private copy of the fixture it is built from. Every call
    names the acting user explicitly; nothing is resolved from ambient state.

    Locking: each chat has its own ``RLock`` that covers its message log, and
    ``_lock`` covers users, summaries and the chat table. Writers always take
    the chat lock first and ``_lock`` second, so every write is serialised
    while readers of one chat's messages only wait on writers of that chat.
    """

    def __init__(
        self,
        payload: Mapping[str, Any] | None = None,
        *,
        storage_path: str | None = None,
        strict: bool = False,
        pin_salt: str = _DEFAULT_PIN_SALT,
        clock: Clock | None = None,
    ) -> None:
        self._users: dict[str, User] = {}
        self._chats: dict[str, Chat] = {}
        self._lock = threading.RLock()
        self._chat_locks: dict[str, threading.RLock] = {}
        self._chat_locks_guard = threading.Lock()
        self._clock: Clock = clock or (lambda: datetime.now(UTC))
        self._pin_salt = pin_salt
        self._snapshot = SnapshotFile(storage_path) if storage_path else None

        source = payload
        if self._snapshot is not None:
            restored = self._snapshot.load()
            if restored is not None:
                source = restored
        if source is not None:
            self._load_payload(source)

        self.load_issues = find_shape_issues(source or {}) + find_invariant_issues(
            users=self._users, chats=self._chats
        )
        if self.load_issues:
            if strict:
                raise DataInconsistencyError(self.load_issues)
            logger.warning(
                "chat_store_fixture_issues count=%s first=%s",
                len(self.load_issues),
                self.load_issues[0],
            )
        if self._snapshot is not None and not self._snapshot.exists():
            with self._lock:
                self._save_to_disk()
        logger.info(
            "chat_store_loaded users=%s chats=%s persistence=%s",
            len(self._users),
            len(self._chats),
            self._snapshot.path if self._snapshot else "memory",
        )

    @classmethod
    def from_json(cls, text: str, **kwargs: Any) -> ChatStore:
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise DataInconsistencyError(["fixture_not_an_object"])
        return cls(payload, **kwargs)

    # Users

    def get_current_user(self, current_user_id: str) -> dict[str, Any] | None:
        return self.get_user_by_id(current_user_id)

    def get_user_by_id(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return None
            return self._user_view(user)

    def list_users(self) -> list[dict[str, Any]]:
        with self._lock:
            return [self._user_view(user) for user in self._users.values()]

    def register_user(
        self,
        user_id: str,
        username: str,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        email: str | None = None,
        avatar: str | None = None,
        bio: str | None = None,
    ) -> dict[str, Any]:
        clean_id = (user_id or "").strip()
        clean_username = (username or "").strip()
        if not clean_id or not clean_username:
            raise InvalidOperationError("user id and username are required")
        with self._lock:
            if clean_id in self._users:
                raise InvalidOperationError(f"user already exists: {clean_id}")
            if self._username_taken(clean_username):
                raise InvalidOperationError(f"username already taken: {clean_username}")
            user = User(
                user_id=clean_id,
                username=clean_username,
                status=UserStatus.ONLINE.value,
                bio=bio,
                avatar=avatar,
                first_name=first_name,
                last_name=last_name,
                email=email,
            )
            self._users[clean_id] = user
            self._save_to_disk()
            view = self._user_view(user)
        logger.info("chat_user_registered user_id=%s", clean_id)
        return view

    def update_user_status(self, user_id: str, status: str) -> dict[str, Any]:
        try:
            normalized = UserStatus((status or "").strip().lower())
        except ValueError as exc:
            raise InvalidOperationError(f"unsupported user status: {status}") from exc
        with self._lock:
            user = self._require_user(user_id)
            user.status = normalized.value
            self._save_to_disk()
            return self._user_view(user)

    def update_profile(
        self,
        user_id: str,
        *,
        username: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        bio: str | None = None,
        avatar: str | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            user = self._require_user(user_id)
            if username is not None:
                clean_username = username.strip()
                if not clean_username:
                    raise InvalidOperationError("username must not be empty")
                if clean_username != user.username and self._username_taken(
                    clean_username, exclude=user_id
                ):
                    raise InvalidOperationError(f"username already taken: {clean_username}")
                if clean_username != user.username:
                    self._rename_partner_summaries(
                        user, old_name=user.username, new_name=clean_username
                    )
                    user.username = clean_username
            if first_name is not None:
                user.first_name = first_name
            if last_name is not None:
                user.last_name = last_name
            if bio is not None:
                user.bio = bio
            if avatar is not None:
                user.avatar = avatar
            self._save_to_disk()
            return self._user_view(user)

    # Chats

    def get_chats(self, current_user_id: str) -> list[dict[str, Any]]:
        """One denormalised view per summary the user holds, in mapping order."""
        with self._lock:
            user = self._users.get(current_user_id)
            if user is None:
                return []
            views: list[dict[str, Any]] = []
            for chat_id, summary in user.chat_user.items():
                chat = self._chats.get(chat_id)
                view: dict[str, Any] = {"id": chat_id, "chatId": chat_id}
                if chat is not None:
                    view.update(chat_to_payload(chat, include_messages=False))
                view.update(summary_to_payload(summary))
                if summary.name is None and chat is not None:
                    view["name"] = self._display_name(chat, viewer_id=current_user_id)
                for key in ("name", "lastMessage", "lastUser", "timestamp"):
                    view.setdefault(key, None)
                view["hidden"] = chat_id in user.hidden_chats
                views.append(copy.deepcopy(view))
            return views

    def get_chat_by_id(self, chat_id: str) -> dict[str, Any] | None:
        lock = self._chat_lock(chat_id)
        if lock is None:
            return None
        with lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return None
            return {"id": chat_id, **copy.deepcopy(chat_to_payload(chat))}

    def create_individual_chat(
        self,
        sender_id: str,
        receiver_id: str,
        message: str | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Open (or reuse) the one-to-one chat between two users.

        Returns the chat view and whether it already existed. A non-blank
        ``message`` is sent into the chat either way.
        """
        if sender_id == receiver_id:
            raise InvalidOperationError("cannot start a chat with yourself")
        with self._lock:
            for uid in (sender_id, receiver_id):
                self._require_user(uid)
            chat = self._find_individual_chat(sender_id, receiver_id)
            already_existed = chat is not None
            if chat is None:
                chat = Chat(
                    chat_id=self._new_chat_id("chat"),
                    type=ChatType.INDIVIDUAL.value,
                    participants=[sender_id, receiver_id],
                )
                self._chats[chat.chat_id] = chat
            for uid in chat.participants:
                self._users[uid].chat_user.setdefault(
                    chat.chat_id, self._new_summary(chat, viewer_id=uid)
                )
            self._save_to_disk()
            chat_id = chat.chat_id
        logger.info(
            "chat_individual_opened chat_id=%s sender=%s receiver=%s already_existed=%s",
            chat_id,
            sender_id,
            receiver_id,
            already_existed,
        )
        if message and message.strip():
            self.send_message(chat_id, message, sender_id)
        view = self.get_chat_by_id(chat_id)
        if view is None:
            raise ChatNotFoundError(chat_id)
        return view, already_existed

    def create_group_chat(
        self,
        creator_id: str,
        participants: Iterable[str],
        title: str,
        *,
        description: str | None = None,
        avatar: str | None = None,
        initial_message: str | None = None,
    ) -> dict[str, Any]:
        clean_title = (title or "").strip()
        if not clean_title:
            raise InvalidOperationError("group title must not be empty")
        members: list[str] = [creator_id]
        for uid in participants:
            if uid not in members:
                members.append(uid)
        if len(members) < 2:
            raise InvalidOperationError("a group needs at least two members")

        with self._lock:
            for uid in members:
                self._require_user(uid)
            chat = Chat(
                chat_id=self._new_chat_id("group"),
                type=ChatType.GROUP.value,
                participants=members,
                title=clean_title,
                description=description,
                avatar=avatar,
                creator=creator_id,
                admin={creator_id: creator_id},
            )
            self._chats[chat.chat_id] = chat
            for uid in members:
                self._users[uid].chat_user[chat.chat_id] = self._new_summary(chat, viewer_id=uid)
            self._save_to_disk()
            chat_id = chat.chat_id
        logger.info(
            "chat_group_created chat_id=%s creator=%s members=%s",
            chat_id,
            creator_id,
            len(members),
        )
        if initial_message and initial_message.strip():
            self.send_message(chat_id, initial_message, creator_id)
        view = self.get_chat_by_id(chat_id)
        if view is None:
            raise ChatNotFoundError(chat_id)
        return view

    def update_group_info(
        self,
        chat_id: str,
        requester_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        avatar: str | None = None,
    ) -> dict[str, Any]:
        with self._writing(chat_id):
            chat = self._require_group(chat_id)
            if not chat.is_admin(requester_id):
                raise PermissionDeniedError("only group admins can edit the group")
            old_title = chat.title
            if title is not None:
                clean_title = title.strip()
                if not clean_title:
                    raise InvalidOperationError("group title must not be empty")
                chat.title = clean_title
            if description is not None:
                chat.description = description
            if avatar is not None:
                chat.avatar = avatar
            for uid in chat.participants:
                summary = self._summary_of(uid, chat_id)
                if summary is None:
                    continue
                if summary.name is None or summary.name == old_title:
                    summary.name = chat.title
                summary.title = chat.title
                summary.avatar = chat.avatar
            self._save_to_disk()
            return {"id": chat_id, **copy.deepcopy(chat_to_payload(chat))}

    def update_user_role(
        self,
        chat_id: str,
        requester_id: str,
        target_user_id: str,
        new_role: str,
    ) -> dict[str, Any]:
        try:
            role = GroupRole((new_role or "").strip().lower())
        except ValueError as exc:
            raise InvalidOperationError(f"unsupported group role: {new_role}") from exc
        with self._writing(chat_id):
            chat = self._require_group(chat_id)
            if requester_id != chat.creator:
                raise PermissionDeniedError("only the group creator can change roles")
            if target_user_id == chat.creator:
                raise InvalidOperationError("the creator's role cannot change")
            if target_user_id not in chat.participants:
                raise InvalidOperationError(f"user is not a group member: {target_user_id}")
            if role == GroupRole.ADMIN:
                if target_user_id not in chat.admin_ids():
                    chat.admin[target_user_id] = target_user_id
            else:
                self._drop_admin(chat, target_user_id)
            self._save_to_disk()
            view = {"id": chat_id, **copy.deepcopy(chat_to_payload(chat))}
        logger.info(
            "chat_group_role_updated chat_id=%s target=%s role=%s",
            chat_id,
            target_user_id,
            role.value,
        )
        return view

    def add_user_to_group(self, chat_id: str, user_id: str, requester_id: str) -> dict[str, Any]:
        with self._writing(chat_id):
            chat = self._require_group(chat_id)
            if not chat.is_admin(requester_id):
                raise PermissionDeniedError("only group admins can add members")
            user = self._require_user(user_id)
            if user_id in chat.participants:
                raise InvalidOperationError(f"user is already a group member: {user_id}")
            summary = self._new_summary(chat, viewer_id=user_id)
            latest = self._latest_message(chat)
            if latest is not None:
                summary.last_message = latest.content or _IMAGE_PREVIEW
                summary.last_user = latest.sender
                summary.timestamp = latest.timestamp
            chat.participants.append(user_id)
            user.chat_user[chat_id] = summary
            self._save_to_disk()
            view = {"id": chat_id, **copy.deepcopy(chat_to_payload(chat))}
        logger.info("chat_group_member_added chat_id=%s user_id=%s", chat_id, user_id)
        return view

    def remove_user_from_group(
        self,
        chat_id: str,
        target_user_id: str,
        requester_id: str,
    ) -> bool:
        """Remove a member; returns True when the group itself was deleted."""
        with self._writing(chat_id):
            chat = self._require_group(chat_id)
            if target_user_id not in chat.participants:
                raise InvalidOperationError(f"user is not a group member: {target_user_id}")
            if requester_id == target_user_id:
                if target_user_id == chat.creator:
                    self._drop_chat(chat_id)
                    self._save_to_disk()
                    logger.info("chat_group_deleted chat_id=%s reason=creator_left", chat_id)
                    return True
            elif requester_id == chat.creator:
                pass
            elif chat.is_admin(requester_id):
                if chat.is_admin(target_user_id):
                    raise PermissionDeniedError("admins can only remove plain members")
            else:
                raise PermissionDeniedError("only group admins can remove members")

            chat.participants.remove(target_user_id)
            self._drop_admin(chat, target_user_id)
            user = self._users.get(target_user_id)
            if user is not None:
                user.chat_user.pop(chat_id, None)
                user.hidden_chats.pop(chat_id, None)
            self._save_to_disk()
        logger.info(
            "chat_group_member_removed chat_id=%s user_id=%s requester=%s",
            chat_id,
            target_user_id,
            requester_id,
        )
        return False

    def delete_group_chat(self, chat_id: str, requester_id: str) -> None:
        with self._writing(chat_id):
            chat = self._require_group(chat_id)
            if requester_id != chat.creator:
                raise PermissionDeniedError("only the group creator can delete the group")
            self._drop_chat(chat_id)
            self._save_to_disk()
        logger.info("chat_group_deleted chat_id=%s reason=creator_request", chat_id)

    def delete_chat(self, chat_id: str) -> bool:
        with self._writing(chat_id):
            if chat_id not in self._chats:
                return False
            self._drop_chat(chat_id)
            self._save_to_disk()
        logger.info("chat_deleted chat_id=%s", chat_id)
        return True

    def hide_chat(self, user_id: str, chat_id: str, pin: str) -> None:
        if not _PIN_PATTERN.fullmatch(pin or ""):
            raise InvalidOperationError("pin must be 4 to 8 digits")
        with self._lock:
            user = self._require_user(user_id)
            if chat_id not in user.chat_user:
                raise InvalidOperationError(f"chat is not in the user's list: {chat_id}")
            user.hidden_chats[chat_id] = HiddenChat(
                pin_hash=self._hash_pin(user_id=user_id, chat_id=chat_id, pin=pin),
                hidden_at=self._now().isoformat(),
            )
            self._save_to_disk()

    def unhide_chat(self, user_id: str, chat_id: str) -> bool:
        with self._lock:
            user = self._require_user(user_id)
            removed = user.hidden_chats.pop(chat_id, None) is not None
            if removed:
                self._save_to_disk()
            return removed

    def verify_hidden_chat_pin(self, user_id: str, chat_id: str, pin: str) -> bool:
        with self._lock:
            user = self._users.get(user_id)
            hidden = user.hidden_chats.get(chat_id) if user is not None else None
            if hidden is None:
                return False
            incoming = self._hash_pin(user_id=user_id, chat_id=chat_id, pin=pin or "")
            return hmac.compare_digest(hidden.pin_hash, incoming)

    # Messages

    def get_messages_by_chat_id(self, chat_id: str) -> list[dict[str, Any]]:
        """All messages of a chat, oldest first; ties keep insertion order."""
        lock = self._chat_lock(chat_id)
        if lock is None:
            return []
        with lock:
            chat = self._chats.get(chat_id)
            if chat is None:
                return []
            ordered = sorted(
                enumerate(chat.messages.values()),
                key=lambda item: (parse_timestamp(item[1].timestamp), item[0]),
            )
            return [
                {"id": message.message_id, **copy.deepcopy(message_to_payload(message))}
                for _, message in ordered
            ]

    def get_message_by_id(self, chat_id: str, message_id: str) -> dict[str, Any] | None:
        lock = self._chat_lock(chat_id)
        if lock is None:
            return None
        with lock:
            chat = self._chats.get(chat_id)
            message = chat.messages.get(message_id) if chat is not None else None
            if message is None:
                return None
            return {"id": message_id, **copy.deepcopy(message_to_payload(message))}

    def send_message(
        self,
        chat_id: str,
        content: str,
        sender_id: str,
        *,
        image: str | None = None,
    ) -> dict[str, Any]:
        """Append a message and refresh every participant's summary of the chat.

        The new participant summaries are staged before anything is written,
        then the message and the summaries are committed together under the
        chat's lock.
        """
        text = content if isinstance(content, str) else str(content or "")
        if not text.strip() and not image:
            raise InvalidOperationError("message content must not be empty")
        with self._writing(chat_id):
            chat = self._chats.get(chat_id)
            if chat is None:
                raise ChatNotFoundError(chat_id)
            sent_at = self._next_timestamp(chat)
            message = Message(
                message_id=self._next_message_id(chat, sent_at),
                chat_id=chat_id,
                sender=sender_id,
                content=text,
                timestamp=sent_at.isoformat(),
                read=False,
                image=image,
            )
            staged = self._stage_summaries_for(chat, message)
            sender_is_member = sender_id in chat.participants

            chat.messages[message.message_id] = message
            for uid, summary in staged.items():
                self._users[uid].chat_user[chat_id] = summary
            self._save_to_disk()
            view = {"id": message.message_id, **copy.deepcopy(message_to_payload(message))}
        if not sender_is_member:
            logger.warning(
                "chat_message_sender_not_member chat_id=%s sender=%s",
                chat_id,
                sender_id,
            )
        logger.info(
            "chat_message_sent chat_id=%s message_id=%s sender=%s summaries=%s",
            chat_id,
            message.message_id,
            sender_id,
            len(staged),
        )
        return view

    def mark_chat_as_read(self, chat_id: str, current_user_id: str) -> int:
        """Zero the reader's unread counter and flag every message they received.

        Returns how many messages flipped to read; calling it again returns 0.
        """
        with self._writing(chat_id):
            chat = self._chats.get(chat_id)
            summary = self._summary_of(current_user_id, chat_id)
            is_member = chat is not None and current_user_id in chat.participants
            if summary is None and not is_member:
                return 0
            unread = (
                [
                    message
                    for message in chat.messages.values()
                    if not message.read and message.sender != current_user_id
                ]
                if chat is not None
                else []
            )
            changed = bool(unread) or (summary is not None and summary.unread_count != 0)
            for message in unread:
                message.read = True
            if summary is not None:
                summary.unread_count = 0
            if changed:
                self._save_to_disk()
        if unread:
            logger.info(
                "chat_marked_read chat_id=%s user_id=%s messages=%s",
                chat_id,
                current_user_id,
                len(unread),
            )
        return len(unread)

    def delete_message(self, chat_id: str, message_id: str, requester_id: str) -> dict[str, Any]:
        with self._writing(chat_id):
            chat = self._chats.get(chat_id)
            if chat is None:
                raise ChatNotFoundError(chat_id)
            message = chat.messages.get(message_id)
            if message is None:
                raise InvalidOperationError(f"message not found: {message_id}")
            if message.sender != requester_id:
                raise PermissionDeniedError("only the sender can delete a message")
            message.deleted = True
            message.content = ""
            message.image = None
            if self._latest_message(chat) is message:
                for uid in chat.participants:
                    summary = self._summary_of(uid, chat_id)
                    if summary is not None:
                        summary.last_message = _DELETED_PREVIEW
            self._save_to_disk()
            view = {"id": message_id, **copy.deepcopy(message_to_payload(message))}
        logger.info("chat_message_deleted chat_id=%s message_id=%s", chat_id, message_id)
        return view

    # Friends

    def get_friends_list(self, current_user_id: str) -> list[dict[str, Any]]:
        with self._lock:
            user = self._users.get(current_user_id)
            if user is None:
                return []
            friends: list[dict[str, Any]] = []
            for friend_id, friendship in user.friends.items():
                friend = self._users.get(friend_id)
                friends.append(
                    {
                        "id": friend_id,
                        "username": (friend.username if friend else "") or UNKNOWN_USERNAME,
                        "status": (friend.status if friend else "") or UserStatus.OFFLINE.value,
                        "friendshipStatus": friendship.status,
                        "friendsSince": friendship.since,
                    }
                )
            return friends

    def get_friend_requests(self, user_id: str) -> list[dict[str, Any]]:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return []
            requests: list[dict[str, Any]] = []
            for from_id in user.friend_requests:
                sender = self._users.get(from_id)
                if sender is None:
                    continue
                requests.append(
                    {
                        "id": from_id,
                        "username": sender.username or UNKNOWN_USERNAME,
                        "status": sender.status,
                        "friendshipStatus": FRIEND_PENDING,
                    }
                )
            return requests

    def send_friend_request(self, from_id: str, to_id: str) -> None:
        if from_id == to_id:
            raise InvalidOperationError("cannot befriend yourself")
        with self._lock:
            sender = self._require_user(from_id)
            receiver = self._require_user(to_id)
            existing = sender.friends.get(to_id)
            if existing is not None and existing.status == FRIEND_ACTIVE:
                raise InvalidOperationError(f"already friends: {to_id}")
            if receiver.friend_requests.get(from_id) == FRIEND_PENDING:
                return
            receiver.friend_requests[from_id] = FRIEND_PENDING
            self._save_to_disk()
        logger.info("friend_request_sent from=%s to=%s", from_id, to_id)

    def accept_friend_request(self, from_id: str, to_id: str) -> None:
        with self._lock:
            sender = self._require_user(from_id)
            receiver = self._require_user(to_id)
            if receiver.friend_requests.get(from_id) != FRIEND_PENDING:
                raise InvalidOperationError(f"no pending friend request from {from_id}")
            since = self._now().date().isoformat()
            receiver.friends[from_id] = Friendship(status=FRIEND_ACTIVE, since=since)
            sender.friends[to_id] = Friendship(status=FRIEND_ACTIVE, since=since)
            receiver.friend_requests.pop(from_id, None)
            sender.friend_requests.pop(to_id, None)
            self._save_to_disk()
        logger.info("friend_request_accepted from=%s to=%s", from_id, to_id)

    def reject_friend_request(self, from_id: str, to_id: str) -> bool:
        with self._lock:
            receiver = self._users.get(to_id)
            if receiver is None:
                return False
            removed = receiver.friend_requests.pop(from_id, None) is not None
            if removed:
                self._save_to_disk()
            return removed

    # Snapshots

    def to_payload(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._payload_locked())

    def export_data(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, indent=2)

    def validate(self) -> list[str]:
        with self._lock:
            return find_invariant_issues(users=self._users, chats=self._chats)

    def save(self) -> bool:
        if self._snapshot is None:
            return False
        with self._lock:
            return self._snapshot.write(self._payload_locked())

    def ops_snapshot(self) -> dict[str, Any]:
        with self._lock:
            message_total = sum(len(chat.messages) for chat in self._chats.values())
            unread_total = sum(
                summary.unread_count
                for user in self._users.values()
                for summary in user.chat_user.values()
            )
            group_total = sum(1 for chat in self._chats.values() if chat.is_group)
            status = self._snapshot.status if self._snapshot is not None else None
            return {
                "user_total": len(self._users),
                "online_user_total": sum(
                    1 for user in self._users.values() if user.status == UserStatus.ONLINE
                ),
                "chat_total": len(self._chats),
                "group_chat_total": group_total,
                "message_total": message_total,
                "unread_total": unread_total,
                "persistence": {
                    "enabled": status is not None,
                    "path": self._snapshot.path if self._snapshot is not None else None,
                    "last_load_source": status.last_load_source if status else "memory",
                    "last_save_ok": status.last_save_ok if status else True,
                    "last_save_error": status.last_save_error if status else None,
                    "save_count": status.save_count if status else 0,
                },
            }

    # Internals

    def _load_payload(self, payload: Mapping[str, Any]) -> None:
        raw_users = payload.get("users") or {}
        raw_chats = payload.get("chats") or {}
        if not isinstance(raw_users, Mapping) or not isinstance(raw_chats, Mapping):
            raise DataInconsistencyError(["fixture_top_level_not_mapping"])
        for user_id, item in raw_users.items():
            if not isinstance(item, Mapping):
                logger.warning("chat_store_user_skipped user_id=%s", user_id)
                continue
            self._users[str(user_id)] = user_from_payload(str(user_id), copy.deepcopy(dict(item)))
        for chat_id, item in raw_chats.items():
            if not isinstance(item, Mapping):
                logger.warning("chat_store_chat_skipped chat_id=%s", chat_id)
                continue
            self._chats[str(chat_id)] = chat_from_payload(str(chat_id), copy.deepcopy(dict(item)))

    def _payload_locked(self) -> dict[str, Any]:
        return {
            "users": {user_id: user_to_payload(user) for user_id, user in self._users.items()},
            "chats": {chat_id: chat_to_payload(chat) for chat_id, chat in self._chats.items()},
        }

    def _save_to_disk(self) -> None:
        if self._snapshot is None:
            return
        self._snapshot.write(self._payload_locked())

    def _chat_lock(self, chat_id: str) -> threading.RLock | None:
        """The chat's lock, or ``None`` when no such chat exists."""
        with self._chat_locks_guard:
            lock = self._chat_locks.get(chat_id)
            if lock is None:
                if chat_id not in self._chats:
                    return None
                lock = threading.RLock()
                self._chat_locks[chat_id] = lock
            return lock

    @contextmanager
    def _writing(self, chat_id: str) -> Iterator[None]:
        while True:
            lock = self._chat_lock(chat_id)
            if lock is not None:
                break
            with self._lock:
                if chat_id not in self._chats:
                    # Unknown chat: the body only sees a missing record.
                    yield
                    return
        with lock, self._lock:
            yield
            if chat_id not in self._chats:
                self._forget_chat_lock(chat_id)

    def _forget_chat_lock(self, chat_id: str) -> None:
        with self._chat_locks_guard:
            self._chat_locks.pop(chat_id, None)

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return now

    def _next_timestamp(self, chat: Chat) -> datetime:
        now = self._now()
        latest = max(
            (parse_timestamp(message.timestamp) for message in chat.messages.values()),
            default=None,
        )
        if latest is not None and latest > now:
            return latest
        return now

    def _next_message_id(self, chat: Chat, sent_at: datetime) -> str:
        base = f"msg_{int(sent_at.timestamp() * 1000)}"
        candidate = base
        suffix = 1
        while candidate in chat.messages:
            candidate = f"{base}_{suffix}"
            suffix += 1
        return candidate

    def _new_chat_id(self, prefix: str) -> str:
        while True:
            candidate = f"{prefix}_{uuid4().hex[:12]}"
            if candidate not in self._chats:
                return candidate

    def _stage_summaries_for(self, chat: Chat, message: Message) -> dict[str, ChatSummary]:
        preview = message.content if message.content else _IMAGE_PREVIEW
        staged: dict[str, ChatSummary] = {}
        for uid in chat.participants:
            user = self._users.get(uid)
            if user is None:
                continue
            current = user.chat_user.get(chat.chat_id) or self._new_summary(chat, viewer_id=uid)
            staged[uid] = replace(
                current,
                last_message=preview,
                last_user=message.sender,
                timestamp=message.timestamp,
                unread_count=0 if uid == message.sender else current.unread_count + 1,
                extra=dict(current.extra),
            )
        return staged

    def _new_summary(self, chat: Chat, *, viewer_id: str) -> ChatSummary:
        return ChatSummary(
            name=self._display_name(chat, viewer_id=viewer_id),
            type=chat.type,
            title=chat.title if chat.is_group else None,
            avatar=chat.avatar if chat.is_group else None,
            unread_count=0,
        )

    def _display_name(self, chat: Chat, *, viewer_id: str) -> str:
        if chat.is_group:
            return chat.title or chat.name or "Group"
        for uid in chat.participants:
            if uid == viewer_id:
                continue
            other = self._users.get(uid)
            if other is not None and other.username:
                return other.username
        return chat.name or "Chat"

    def _rename_partner_summaries(self, user: User, *, old_name: str, new_name: str) -> None:
        for chat_id in user.chat_user:
            chat = self._chats.get(chat_id)
            if chat is None or chat.is_group:
                continue
            for uid in chat.participants:
                if uid == user.user_id:
                    continue
                summary = self._summary_of(uid, chat_id)
                if summary is not None and summary.name in {None, old_name}:
                    summary.name = new_name

    def _find_individual_chat(self, first_id: str, second_id: str) -> Chat | None:
        wanted = {first_id, second_id}
        for chat in self._chats.values():
            if chat.type == ChatType.INDIVIDUAL and set(chat.participants) == wanted:
                return chat
        return None

    def _latest_message(self, chat: Chat) -> Message | None:
        latest: Message | None = None
        for message in chat.messages.values():
            stamp = parse_timestamp(message.timestamp)
            if latest is None or stamp >= parse_timestamp(latest.timestamp):
                latest = message
        return latest

    def _drop_chat(self, chat_id: str) -> None:
        self._chats.pop(chat_id, None)
        self._forget_chat_lock(chat_id)
        for user in self._users.values():
            user.chat_user.pop(chat_id, None)
            user.hidden_chats.pop(chat_id, None)

    @staticmethod
    def _drop_admin(chat: Chat, user_id: str) -> None:
        for key in [key for key, uid in chat.admin.items() if uid == user_id]:
            chat.admin.pop(key, None)

    def _summary_of(self, user_id: str, chat_id: str) -> ChatSummary | None:
        user = self._users.get(user_id)
        if user is None:
            return None
        return user.chat_user.get(chat_id)

    def _require_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def _require_group(self, chat_id: str) -> Chat:
        chat = self._chats.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(chat_id)
        if not chat.is_group:
            raise InvalidOperationError(f"chat is not a group: {chat_id}")
        return chat

    def _username_taken(self, username: str, *, exclude: str | None = None) -> bool:
        lowered = username.lower()
        return any(
            user.username.lower() == lowered
            for user_id, user in self._users.items()
            if user_id != exclude
        )

    def _hash_pin(self, *, user_id: str, chat_id: str, pin: str) -> str:
        payload = f"{self._pin_salt}:{user_id}:{chat_id}:{pin}"
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def _user_view(self, user: User) -> dict[str, Any]:
        payload = copy.deepcopy(user_to_payload(user))
        hidden = payload.pop("hiddenChats", None)
        if hidden:
            payload["hiddenChats"] = {
                chat_id: {"hiddenAt": item["hiddenAt"]} for chat_id, item in hidden.items()
            }
        return {"id": user.user_id, **payload}
