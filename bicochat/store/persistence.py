from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Any

_SNAPSHOT_BACKUP_KEEP = 3
logger = logging.getLogger(__name__)


@dataclass
class SnapshotStatus:
    enabled: bool
    last_load_source: str
    last_save_ok: bool = True
    last_save_error: str | None = None
    save_count: int = 0


class SnapshotFile:
    """Whole-store JSON snapshots with atomic replace and rotating backups."""

    def __init__(self, path: str, *, backup_keep: int = _SNAPSHOT_BACKUP_KEEP) -> None:
        self._path = path
        self._backup_keep = max(backup_keep, 0)
        self.status = SnapshotStatus(enabled=True, last_load_source="empty")

    @property
    def path(self) -> str:
        return self._path

    def exists(self) -> bool:
        return os.path.exists(self._path)

    def load(self) -> dict[str, Any] | None:
        candidates = [("primary", self._path)] + [
            (f"backup_{index}", path) for index, path in enumerate(self.backup_paths(), start=1)
        ]
        for source, path in candidates:
            payload = read_json_file(path)
            if payload is None:
                continue
            if source != "primary":
                logger.warning("store_snapshot_recovered path=%s source=%s", self._path, source)
            self.status.last_load_source = source
            return payload
        self.status.last_load_source = "unrecoverable" if self.exists() else "empty"
        return None

    def write(self, payload: dict[str, Any]) -> bool:
        directory = os.path.dirname(self._path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                prefix=".bicochat_store_",
                suffix=".tmp",
                dir=directory,
                text=True,
            )
        except OSError as exc:
            self._record_failure(exc)
            return False
        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, ensure_ascii=False, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            self._rotate_backups()
            os.replace(temp_path, self._path)
            self.status.last_save_ok = True
            self.status.last_save_error = None
            self.status.save_count += 1
        except (OSError, TypeError, ValueError) as exc:
            self._record_failure(exc)
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass
        return self.status.last_save_ok

    def _record_failure(self, exc: Exception) -> None:
        self.status.last_save_ok = False
        self.status.last_save_error = str(exc)
        logger.warning("store_snapshot_write_failed path=%s err=%s", self._path, exc)

    def backup_paths(self) -> list[str]:
        return [f"{self._path}.bak{index}" for index in range(1, self._backup_keep + 1)]

    def _rotate_backups(self) -> None:
        backup_paths = self.backup_paths()
        if not backup_paths:
            return
        for index in range(len(backup_paths) - 1, 0, -1):
            src = backup_paths[index - 1]
            dst = backup_paths[index]
            if os.path.exists(src):
                try:
                    os.replace(src, dst)
                except OSError:
                    continue
        if os.path.exists(self._path):
            try:
                shutil.copy2(self._path, backup_paths[0])
            except OSError:
                logger.warning("store_backup_rotate_failed path=%s", self._path)


def read_json_file(path: str) -> dict[str, Any] | None:
    try:
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload
