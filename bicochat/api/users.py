from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from bicochat.api.deps import get_container, require_user_id, to_http_error
from bicochat.schemas import (
    ProfileUpdateRequest,
    RegisterUserRequest,
    UserListResponse,
    UserResponse,
    UserStatusRequest,
)
from bicochat.store.errors import ChatStoreError

router = APIRouter(prefix="/api/v1/users", tags=["users"])
_LOGGER = logging.getLogger(__name__)


@router.get("", response_model=UserListResponse)
def list_users(request: Request) -> UserListResponse:
    users = get_container(request).chat_store.list_users()
    return UserListResponse(ok=True, total=len(users), users=users)


@router.get("/current", response_model=UserResponse)
def current_user(request: Request, user_id: str = Depends(require_user_id)) -> UserResponse:
    user = get_container(request).chat_store.get_current_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"user not found: {user_id}",
        )
    return UserResponse(ok=True, user=user)


@router.get("/{uid}", response_model=UserResponse)
def get_user(uid: str, request: Request) -> UserResponse:
    user = get_container(request).chat_store.get_user_by_id(uid)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"user not found: {uid}",
        )
    return UserResponse(ok=True, user=user)


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register_user(payload: RegisterUserRequest, request: Request) -> UserResponse:
    store = get_container(request).chat_store
    try:
        user = store.register_user(
            payload.user_id,
            payload.username,
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            avatar=payload.avatar,
            bio=payload.bio,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return UserResponse(ok=True, user=user)


@router.put("/{uid}/status", response_model=UserResponse)
def update_status(
    uid: str,
    payload: UserStatusRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> UserResponse:
    _require_self(uid, user_id)
    try:
        user = get_container(request).chat_store.update_user_status(uid, payload.status)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return UserResponse(ok=True, user=user)


@router.patch("/{uid}/profile", response_model=UserResponse)
def update_profile(
    uid: str,
    payload: ProfileUpdateRequest,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> UserResponse:
    _require_self(uid, user_id)
    try:
        user = get_container(request).chat_store.update_profile(
            uid,
            username=payload.username,
            first_name=payload.first_name,
            last_name=payload.last_name,
            bio=payload.bio,
            avatar=payload.avatar,
        )
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    _LOGGER.info("user_profile_updated user_id=%s", uid)
    return UserResponse(ok=True, user=user)


def _require_self(uid: str, user_id: str) -> None:
    if uid != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="users can only edit themselves",
        )
