#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


def _bootstrap_path() -> None:
    root_dir = Path(__file__).resolve().parents[1]
    if str(root_dir) not in sys.path:
        sys.path.insert(0, str(root_dir))


_bootstrap_path()

from bicochat.container import default_fixture_path  # noqa: E402
from bicochat.store.chat_store import ChatStore  # noqa: E402
from bicochat.store.persistence import read_json_file  # noqa: E402
from bicochat.store.validation import validate_payload  # noqa: E402


def run_check(fixture_file: Path) -> dict[str, Any]:
    payload = read_json_file(str(fixture_file))
    if payload is None:
        return {
            "ok": False,
            "fixture_file": str(fixture_file),
            "checked_at": datetime.now(UTC).isoformat(),
            "issues": ["fixture_unreadable"],
        }
    issues = validate_payload(payload)
    return {
        "ok": not issues,
        "fixture_file": str(fixture_file),
        "checked_at": datetime.now(UTC).isoformat(),
        "issue_count": len(issues),
        "issues": issues,
    }


def run_stats(fixture_file: Path) -> dict[str, Any]:
    payload = read_json_file(str(fixture_file))
    if payload is None:
        return {"ok": False, "fixture_file": str(fixture_file), "error": "fixture_unreadable"}
    store = ChatStore(payload)
    snapshot = store.ops_snapshot()
    snapshot.pop("persistence", None)
    per_user = {
        item["id"]: {
            "username": item.get("username"),
            "chat_count": len(item.get("chatUser") or {}),
            "friend_count": len(item.get("friends") or {}),
        }
        for item in store.list_users()
    }
    return {"ok": True, "fixture_file": str(fixture_file), **snapshot, "users": per_user}


def run_export(fixture_file: Path, output_file: Path) -> dict[str, Any]:
    """Load a fixture through the store and write the normalised document back out."""
    payload = read_json_file(str(fixture_file))
    if payload is None:
        return {"ok": False, "fixture_file": str(fixture_file), "error": "fixture_unreadable"}
    store = ChatStore(payload)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(store.export_data() + "\n", encoding="utf-8")
    return {
        "ok": True,
        "fixture_file": str(fixture_file),
        "output_file": str(output_file),
        "exported_at": datetime.now(UTC).isoformat(),
        "issues": store.validate(),
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="BicoChat fixture checker and exporter")
    parser.add_argument("command", choices=["check", "stats", "export"])
    parser.add_argument("--fixture-file", default=None, help="Path to a fixture JSON file")
    parser.add_argument("--output", default=None, help="Target file for the export command")
    args = parser.parse_args()

    fixture_file = Path(args.fixture_file) if args.fixture_file else Path(default_fixture_path())
    if args.command == "check":
        result = run_check(fixture_file)
    elif args.command == "stats":
        result = run_stats(fixture_file)
    else:
        if not args.output:
            parser.error("export needs --output")
        result = run_export(fixture_file, Path(args.output))
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0 if result["ok"] else 1


if __name__ == "__main__":
    sys.exit(main())
