from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from bicochat.container import ServiceContainer
from bicochat.store.errors import (
    ChatNotFoundError,
    ChatStoreError,
    InvalidOperationError,
    PermissionDeniedError,
    UserNotFoundError,
)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def require_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """The acting user, taken from the ``x-user-id`` header."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing x-user-id header",
        )
    return user_id


def to_http_error(exc: ChatStoreError) -> HTTPException:
    if isinstance(exc, ChatNotFoundError | UserNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, InvalidOperationError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_409_CONFLICT
    return HTTPException(status_code=code, detail=str(exc))
