from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from os import getenv
from typing import Any

from bicochat.store.chat_store import ChatStore
from bicochat.store.persistence import read_json_file

_DEFAULT_PIN_SALT = "bicochat-pin-salt"
logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    chat_store: ChatStore
    fixture_path: str
    storage_path: str | None
    strict_fixture: bool


def default_fixture_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), "data", "fixture.json")


def load_fixture(path: str) -> dict[str, Any]:
    payload = read_json_file(path)
    if payload is None:
        logger.warning("fixture_unreadable path=%s detail=starting_with_empty_store", path)
        return {"users": {}, "chats": {}}
    return payload


def build_container() -> ServiceContainer:
    fixture_path = getenv("BICOCHAT_FIXTURE_FILE") or default_fixture_path()
    storage_path = getenv("BICOCHAT_STORE_FILE") or None
    strict_fixture = _parse_bool(getenv("BICOCHAT_STRICT_FIXTURE"), default=False)
    chat_store = ChatStore(
        load_fixture(fixture_path),
        storage_path=storage_path,
        strict=strict_fixture,
        pin_salt=getenv("BICOCHAT_PIN_SALT") or _DEFAULT_PIN_SALT,
    )
    return ServiceContainer(
        chat_store=chat_store,
        fixture_path=fixture_path,
        storage_path=storage_path,
        strict_fixture=strict_fixture,
    )


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default
