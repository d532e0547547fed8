import logging

import pytest

from bicochat.container import default_fixture_path, load_fixture
from bicochat.startup_self_check import analyze_store_snapshot, run_startup_self_check
from bicochat.store.chat_store import ChatStore


def test_analyze_store_snapshot_ok() -> None:
    result = analyze_store_snapshot(fixture_issues=[], user_count=4, chat_count=4)

    assert result.issues == []
    assert result.fixture_issue_count == 0
    assert result.persistence_enabled is False


def test_analyze_store_snapshot_reports_fixture_and_persistence_problems() -> None:
    result = analyze_store_snapshot(
        fixture_issues=["orphan_chat_summary:u_a:chat_gone"],
        user_count=0,
        chat_count=0,
        persistence_enabled=True,
        persistence_ok=False,
        persistence_source="unrecoverable",
    )

    assert result.fixture_issue_count == 1
    assert "fixture:orphan_chat_summary:u_a:chat_gone" in result.issues
    assert "store_has_no_users" in result.issues
    assert "store_snapshot_unwritable" in result.issues
    assert "store_snapshot_unrecoverable" in result.issues


def test_analyze_store_snapshot_truncates_long_issue_lists() -> None:
    fixture_issues = [f"duplicate_participants:chat_{index}" for index in range(25)]

    result = analyze_store_snapshot(fixture_issues=fixture_issues, user_count=1, chat_count=25)

    assert result.fixture_issue_count == 25
    assert len(result.issues) == 21
    assert result.issues[-1] == "fixture:truncated:5"


def test_run_startup_self_check_on_bundled_fixture() -> None:
    store = ChatStore(load_fixture(default_fixture_path()))

    result = run_startup_self_check(logger=logging.getLogger("test"), store=store)

    assert result.issues == []
    assert result.user_count == 4
    assert result.chat_count == 4


def test_run_startup_self_check_logs_fixture_anomalies(
    caplog: pytest.LogCaptureFixture,
) -> None:
    payload = load_fixture(default_fixture_path())
    payload["chats"]["chat_giulia_luca"]["participants"].append("aQ7mN2bV5xC8zL1kJ4hG6fD9sP3o")
    store = ChatStore(payload)

    with caplog.at_level(logging.WARNING, logger="test"):
        result = run_startup_self_check(logger=logging.getLogger("test"), store=store)

    assert result.fixture_issue_count == 1
    assert "anomaly=fixture_invariants" in caplog.text
