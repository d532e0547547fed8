from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from bicochat.api.deps import get_container, require_user_id, to_http_error
from bicochat.schemas import (
    ChatListResponse,
    ChatResponse,
    CreateChatResponse,
    CreateGroupChatRequest,
    CreateIndividualChatRequest,
    DeleteChatResponse,
    GroupUpdateRequest,
    MarkReadResponse,
    MemberRemovalResponse,
    MessageListResponse,
    MessageResponse,
    OkResponse,
    PinRequest,
    PinVerifyResponse,
    RoleUpdateRequest,
    SendMessageRequest,
)
from bicochat.store.errors import ChatStoreError

router = APIRouter(prefix="/api/v1/chats", tags=["chats"])
_LOGGER = logging.getLogger(__name__)


@router.get("", response_model=ChatListResponse)
def list_chats(request: Request, user_id: str = Depends(require_user_id)) -> ChatListResponse:
    chats = get_container(request).chat_store.get_chats(user_id)
    return ChatListResponse(ok=True, user_id=user_id, total=len(chats), chats=chats)


@router.post("/individual", response_model=CreateChatResponse, status_code=status.HTTP_201_CREATED)
def create_individual_chat(
    payload: CreateIndividualChatRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> CreateChatResponse:
    store = get_container(request).chat_store
    try:
        chat, already_exists = store.create_individual_chat(
            user_id,
            payload.receiver_id,
            payload.message,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return CreateChatResponse(
        ok=True,
        chat_id=str(chat["id"]),
        already_exists=already_exists,
        chat=chat,
    )


@router.post("/group", response_model=CreateChatResponse, status_code=status.HTTP_201_CREATED)
def create_group_chat(
    payload: CreateGroupChatRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> CreateChatResponse:
    store = get_container(request).chat_store
    try:
        chat = store.create_group_chat(
            user_id,
            payload.participants,
            payload.title,
            description=payload.description,
            avatar=payload.avatar,
            initial_message=payload.initial_message,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return CreateChatResponse(ok=True, chat_id=str(chat["id"]), chat=chat)


@router.get("/{chat_id}", response_model=ChatResponse)
def get_chat(chat_id: str, request: Request) -> ChatResponse:
    chat = get_container(request).chat_store.get_chat_by_id(chat_id)
    if chat is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"chat not found: {chat_id}",
        )
    return ChatResponse(ok=True, chat=chat)


@router.patch("/{chat_id}", response_model=ChatResponse)
def update_group_info(
    chat_id: str,
    payload: GroupUpdateRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> ChatResponse:
    try:
        chat = get_container(request).chat_store.update_group_info(
            chat_id,
            user_id,
            title=payload.title,
            description=payload.description,
            avatar=payload.avatar,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return ChatResponse(ok=True, chat=chat)


@router.delete("/{chat_id}", response_model=DeleteChatResponse)
def delete_chat(
    chat_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> DeleteChatResponse:
    store = get_container(request).chat_store
    chat = store.get_chat_by_id(chat_id)
    if chat is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"chat not found: {chat_id}",
        )
    try:
        if chat.get("type") == "group":
            store.delete_group_chat(chat_id, user_id)
            deleted = True
        else:
            if user_id not in chat.get("participants", []):
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="only participants can delete a chat",
                )
            deleted = store.delete_chat(chat_id)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return DeleteChatResponse(ok=True, chat_id=chat_id, deleted=deleted)


@router.patch("/{chat_id}/read", response_model=MarkReadResponse)
def mark_read(
    chat_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> MarkReadResponse:
    marked = get_container(request).chat_store.mark_chat_as_read(chat_id, user_id)
    return MarkReadResponse(ok=True, chat_id=chat_id, marked=marked)


@router.patch("/{chat_id}/role", response_model=ChatResponse)
def update_role(
    chat_id: str,
    payload: RoleUpdateRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> ChatResponse:
    try:
        chat = get_container(request).chat_store.update_user_role(
            chat_id,
            user_id,
            payload.target_user_id,
            payload.new_role,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return ChatResponse(ok=True, chat=chat)


@router.post("/{chat_id}/members/{member_id}", response_model=ChatResponse)
def add_member(
    chat_id: str,
    member_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> ChatResponse:
    try:
        chat = get_container(request).chat_store.add_user_to_group(chat_id, member_id, user_id)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return ChatResponse(ok=True, chat=chat)


@router.delete("/{chat_id}/members/{member_id}", response_model=MemberRemovalResponse)
def remove_member(
    chat_id: str,
    member_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> MemberRemovalResponse:
    try:
        group_deleted = get_container(request).chat_store.remove_user_from_group(
            chat_id,
            member_id,
            user_id,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return MemberRemovalResponse(
        ok=True,
        chat_id=chat_id,
        user_id=member_id,
        group_deleted=group_deleted,
    )


@router.post("/{chat_id}/hide", response_model=OkResponse)
def hide_chat(
    chat_id: str,
    payload: PinRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> OkResponse:
    try:
        get_container(request).chat_store.hide_chat(user_id, chat_id, payload.pin)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return OkResponse(ok=True)


@router.post("/{chat_id}/unhide", response_model=OkResponse)
def unhide_chat(
    chat_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> OkResponse:
    try:
        removed = get_container(request).chat_store.unhide_chat(user_id, chat_id)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return OkResponse(ok=removed, detail=None if removed else "chat was not hidden")


@router.post("/{chat_id}/verify-pin", response_model=PinVerifyResponse)
def verify_pin(
    chat_id: str,
    payload: PinRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> PinVerifyResponse:
    valid = get_container(request).chat_store.verify_hidden_chat_pin(user_id, chat_id, payload.pin)
    if not valid:
        _LOGGER.info("hidden_chat_pin_rejected chat_id=%s user_id=%s", chat_id, user_id)
    return PinVerifyResponse(ok=True, valid=valid)


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
def list_messages(chat_id: str, request: Request) -> MessageListResponse:
    messages = get_container(request).chat_store.get_messages_by_chat_id(chat_id)
    return MessageListResponse(ok=True, chat_id=chat_id, total=len(messages), messages=messages)


@router.post(
    "/{chat_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    chat_id: str,
    payload: SendMessageRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> MessageResponse:
    try:
        message = get_container(request).chat_store.send_message(
            chat_id,
            payload.content,
            user_id,
            image=payload.image,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return MessageResponse(ok=True, message=message)


@router.get("/{chat_id}/messages/{message_id}", response_model=MessageResponse)
def get_message(chat_id: str, message_id: str, request: Request) -> MessageResponse:
    message = get_container(request).chat_store.get_message_by_id(chat_id, message_id)
    if message is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"message not found: {message_id}",
        )
    return MessageResponse(ok=True, message=message)


@router.delete("/{chat_id}/messages/{message_id}", response_model=MessageResponse)
def delete_message(
    chat_id: str,
    message_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> MessageResponse:
    try:
        message = get_container(request).chat_store.delete_message(chat_id, message_id, user_id)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return MessageResponse(ok=True, message=message)
