"""In-memory authoritative map from relative path to FileRecord."""

from __future__ import annotations

import threading

from codemem.index.models import FileRecord


class IndexStore:
    """Insertion-ordered record map. Never touches disk.

    Replacing an existing key keeps its original position so iteration order
    stays stable for a given set of keys.
    """

    def __init__(self) -> None:
        self._records: dict[str, FileRecord] = {}
        self._lock = threading.RLock()

    def put(self, record: FileRecord) -> None:
        with self._lock:
            self._records[record.path] = record

    def get(self, relative_path: str) -> FileRecord | None:
        with self._lock:
            return self._records.get(relative_path)

    def remove(self, relative_path: str) -> FileRecord | None:
        """Delete an entry; absence is not an error."""
        with self._lock:
            return self._records.pop(relative_path, None)

    def remove_prefix(self, relative_dir: str) -> list[str]:
        """Delete every entry under a directory and return the removed keys."""
        prefix = f"{relative_dir.rstrip('/')}/"
        with self._lock:
            doomed = [path for path in self._records if path.startswith(prefix)]
            for path in doomed:
                del self._records[path]
        return doomed

    def all(self) -> list[FileRecord]:
        """Snapshot of all records in insertion order."""
        with self._lock:
            return list(self._records.values())

    def keys(self) -> set[str]:
        with self._lock:
            return set(self._records.keys())

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, relative_path: object) -> bool:
        with self._lock:
            return relative_path in self._records
