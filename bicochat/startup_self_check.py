from __future__ import annotations

import logging
from dataclasses import dataclass

from bicochat.store.chat_store import ChatStore

_ISSUE_PREVIEW = 20


@dataclass(frozen=True)
class StartupSelfCheckResult:
    user_count: int
    chat_count: int
    fixture_issue_count: int
    issues: list[str]
    persistence_enabled: bool = False
    persistence_ok: bool = True


def run_startup_self_check(logger: logging.Logger, store: ChatStore) -> StartupSelfCheckResult:
    snapshot = store.ops_snapshot()
    persistence = snapshot["persistence"]
    result = analyze_store_snapshot(
        fixture_issues=store.validate(),
        user_count=snapshot["user_total"],
        chat_count=snapshot["chat_total"],
        persistence_enabled=bool(persistence["enabled"]),
        persistence_ok=bool(persistence["last_save_ok"]),
        persistence_source=str(persistence["last_load_source"]),
    )

    if result.fixture_issue_count:
        logger.warning(
            "startup_self_check anomaly=fixture_invariants count=%s first=%s",
            result.fixture_issue_count,
            result.issues[0],
        )
    if result.persistence_enabled and not result.persistence_ok:
        logger.warning(
            "startup_self_check anomaly=store_snapshot_unwritable path=%s",
            persistence["path"],
        )
    if "store_snapshot_unrecoverable" in result.issues:
        logger.warning(
            "startup_self_check anomaly=store_snapshot_unrecoverable path=%s",
            persistence["path"],
        )
    if not result.issues:
        logger.info(
            "startup_self_check ok users=%s chats=%s",
            result.user_count,
            result.chat_count,
        )
    return result


def analyze_store_snapshot(
    *,
    fixture_issues: list[str],
    user_count: int,
    chat_count: int,
    persistence_enabled: bool = False,
    persistence_ok: bool = True,
    persistence_source: str = "memory",
) -> StartupSelfCheckResult:
    issues = [f"fixture:{issue}" for issue in fixture_issues[:_ISSUE_PREVIEW]]
    if len(fixture_issues) > _ISSUE_PREVIEW:
        issues.append(f"fixture:truncated:{len(fixture_issues) - _ISSUE_PREVIEW}")
    if user_count == 0:
        issues.append("store_has_no_users")
    if persistence_enabled and not persistence_ok:
        issues.append("store_snapshot_unwritable")
    if persistence_enabled and persistence_source == "unrecoverable":
        issues.append("store_snapshot_unrecoverable")

    return StartupSelfCheckResult(
        user_count=user_count,
        chat_count=chat_count,
        fixture_issue_count=len(fixture_issues),
        issues=issues,
        persistence_enabled=persistence_enabled,
        persistence_ok=persistence_ok,
    )
