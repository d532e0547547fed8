from typing import Literal

from pydantic import BaseModel, Field


class UserResponse(BaseModel):
    ok: bool
    user: dict[str, object]


class UserListResponse(BaseModel):
    ok: bool
    total: int
    users: list[dict[str, object]] = Field(default_factory=list)


class RegisterUserRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    username: str = Field(min_length=1, max_length=64)
    first_name: str | None = Field(default=None, max_length=64)
    last_name: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=254)
    avatar: str | None = None
    bio: str | None = Field(default=None, max_length=500)


class UserStatusRequest(BaseModel):
    status: Literal["online", "offline"]


class ProfileUpdateRequest(BaseModel):
    username: str | None = Field(default=None, min_length=1, max_length=64)
    first_name: str | None = Field(default=None, max_length=64)
    last_name: str | None = Field(default=None, max_length=64)
    bio: str | None = Field(default=None, max_length=500)
    avatar: str | None = None


class ChatListResponse(BaseModel):
    ok: bool
    user_id: str
    total: int
    chats: list[dict[str, object]] = Field(default_factory=list)


class ChatResponse(BaseModel):
    ok: bool
    chat: dict[str, object]


class CreateIndividualChatRequest(BaseModel):
    receiver_id: str = Field(min_length=1, max_length=128)
    message: str | None = Field(default=None, max_length=4000)


class CreateGroupChatRequest(BaseModel):
    participants: list[str] = Field(min_length=1, max_length=256)
    title: str = Field(min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=500)
    avatar: str | None = None
    initial_message: str | None = Field(default=None, max_length=4000)


class CreateChatResponse(BaseModel):
    ok: bool
    chat_id: str
    already_exists: bool = False
    chat: dict[str, object]


class GroupUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=500)
    avatar: str | None = None


class RoleUpdateRequest(BaseModel):
    target_user_id: str = Field(min_length=1, max_length=128)
    new_role: Literal["admin", "member"]


class MemberRemovalResponse(BaseModel):
    ok: bool
    chat_id: str
    user_id: str
    group_deleted: bool = False


class DeleteChatResponse(BaseModel):
    ok: bool
    chat_id: str
    deleted: bool


class MarkReadResponse(BaseModel):
    ok: bool
    chat_id: str
    marked: int


class PinRequest(BaseModel):
    pin: str = Field(min_length=4, max_length=8, pattern=r"^[0-9]+$")


class PinVerifyResponse(BaseModel):
    ok: bool
    valid: bool


class SendMessageRequest(BaseModel):
    content: str = Field(default="", max_length=4000)
    image: str | None = None


class MessageResponse(BaseModel):
    ok: bool
    message: dict[str, object]


class MessageListResponse(BaseModel):
    ok: bool
    chat_id: str
    total: int
    messages: list[dict[str, object]] = Field(default_factory=list)


class FriendListResponse(BaseModel):
    ok: bool
    total: int
    friends: list[dict[str, object]] = Field(default_factory=list)


class FriendRequestListResponse(BaseModel):
    ok: bool
    total: int
    requests: list[dict[str, object]] = Field(default_factory=list)


class FriendRequestCreate(BaseModel):
    target_user_id: str = Field(min_length=1, max_length=128)


class OkResponse(BaseModel):
    ok: bool
    detail: str | None = None
