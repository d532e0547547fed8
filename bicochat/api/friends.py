from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status

from bicochat.api.deps import get_container, require_user_id, to_http_error
from bicochat.schemas import (
    FriendListResponse,
    FriendRequestCreate,
    FriendRequestListResponse,
    OkResponse,
)
from bicochat.store.errors import ChatStoreError

router = APIRouter(prefix="/api/v1/friends", tags=["friends"])


@router.get("", response_model=FriendListResponse)
def list_friends(request: Request, user_id: str = Depends(require_user_id)) -> FriendListResponse:
    friends = get_container(request).chat_store.get_friends_list(user_id)
    return FriendListResponse(ok=True, total=len(friends), friends=friends)


@router.get("/requests", response_model=FriendRequestListResponse)
def list_requests(
    request: Request,
    user_id: str = Depends(require_user_id),
) -> FriendRequestListResponse:
    requests = get_container(request).chat_store.get_friend_requests(user_id)
    return FriendRequestListResponse(ok=True, total=len(requests), requests=requests)


@router.post("/requests", response_model=OkResponse, status_code=status.HTTP_201_CREATED)
def send_request(
    payload: FriendRequestCreate,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> OkResponse:
    try:
        get_container(request).chat_store.send_friend_request(user_id, payload.target_user_id)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return OkResponse(ok=True)


@router.post("/requests/{from_id}/accept", response_model=OkResponse)
def accept_request(
    from_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> OkResponse:
    try:
        get_container(request).chat_store.accept_friend_request(from_id, user_id)
    except ChatStoreError as exc:
        raise to_http_error(exc) from exc
    return OkResponse(ok=True)


@router.delete("/requests/{from_id}", response_model=OkResponse)
def reject_request(
    from_id: str,
    request: Request,
    user_id: str = Depends(require_user_id),
) -> OkResponse:
    removed = get_container(request).chat_store.reject_friend_request(from_id, user_id)
    return OkResponse(ok=removed, detail=None if removed else "no pending request")
