from __future__ import annotations


class ChatStoreError(Exception):
    """Base class for every error raised by the chat store."""


class InvalidOperationError(ChatStoreError, ValueError):
    """The requested write cannot proceed against the current store state."""


class ChatNotFoundError(InvalidOperationError):
    def __init__(self, chat_id: str) -> None:
        super().__init__(f"chat not found: {chat_id}")
        self.chat_id = chat_id


class UserNotFoundError(InvalidOperationError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"user not found: {user_id}")
        self.user_id = user_id


class PermissionDeniedError(ChatStoreError):
    """A group administration rule forbids the requester from doing this."""


class DataInconsistencyError(ChatStoreError):
    def __init__(self, issues: list[str]) -> None:
        preview = ", ".join(issues[:5])
        super().__init__(f"fixture violates store invariants: {preview}")
        self.issues = list(issues)
