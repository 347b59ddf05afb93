"""Title -> content-hash ledger persisted between sync runs."""

from __future__ import annotations

import hashlib
import json
import threading
from pathlib import Path

from tasksync import log
from tasksync.io_utils import read_text, write_json_atomic


def content_hash(title: str, body: str) -> str:
    return hashlib.sha256((title + body).encode("utf-8")).hexdigest()


class ContentHashLedger:
    """Flat JSON map of issue title to the hash of its last synced content.

    A missing title means "new content", never an error. Safe to share
    between batch worker threads.
    """

    def __init__(self, path: Path | None = None, entries: dict[str, str] | None = None) -> None:
        self.path = path
        self._entries: dict[str, str] = dict(entries or {})
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path) -> ContentHashLedger:
        if not path.is_file():
            log.debug(f"No ledger at {path}; starting empty")
            return cls(path)
        try:
            data = json.loads(read_text(path))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            log.warn(f"Ignoring unreadable ledger {path}: {exc}")
            return cls(path)
        if not isinstance(data, dict):
            log.warn(f"Ignoring ledger {path}: expected a JSON object")
            return cls(path)
        return cls(path, {str(k): str(v) for k, v in data.items()})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, title: object) -> bool:
        with self._lock:
            return title in self._entries

    def has_changed(self, title: str, body: str) -> bool:
        with self._lock:
            return self._entries.get(title) != content_hash(title, body)

    def record(self, title: str, body: str) -> None:
        digest = content_hash(title, body)
        with self._lock:
            self._entries[title] = digest

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._entries)

    def save(self, path: Path | None = None) -> None:
        target = path or self.path
        if target is None:
            return
        write_json_atomic(target, dict(sorted(self.snapshot().items())))
        log.debug(f"Saved {len(self)} ledger entries to {target}")
