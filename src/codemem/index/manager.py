"""Process-scoped index context: one store, one mirror, one watcher."""

from __future__ import annotations

import posixpath
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from codemem.config import CoreConfig
from codemem.index.discovery import accept_file
from codemem.index.ignore import IgnorePolicy, build_ignore_policy
from codemem.index.mirror import ManifestError, Mirror
from codemem.index.models import FileRecord, RepairReport, SearchOptions, SearchResult, VerifyReport
from codemem.index.scanner import Scanner, ScanSummary
from codemem.index.search import search_records
from codemem.index.store import IndexStore
from codemem.index.verify import Verifier
from codemem.index.watcher import Watcher
from codemem.logging import IndexEventLog
from codemem.security import to_relative_path

EVENTS_FILE_NAME = "events.jsonl"


@dataclass(slots=True, frozen=True)
class IndexStatus:
    """Current index status snapshot."""

    index_status: str
    indexed_file_count: int
    scan_running: bool
    last_scan_timestamp: str | None
    last_scan_indexed: int | None
    watcher_state: str


class IndexManager:
    """Owns Index Store, Mirror, Scanner, Watcher and Verifier for one project.

    Every Store + Mirror + Manifest sequence runs under one re-entrant lock
    because watcher callbacks arrive on observer and timer threads.
    """

    def __init__(
        self,
        config: CoreConfig,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self._config = config
        self._repo_root = config.repo_root.resolve()
        self._data_dir = config.data_dir.resolve()
        self._lock = threading.RLock()
        self._policy: IgnorePolicy | None = None
        self._opened = False

        self._store = IndexStore()
        self._mirror = Mirror(self._data_dir)
        self._events = IndexEventLog(self._data_dir / EVENTS_FILE_NAME, self._repo_root)
        self._scanner = Scanner(
            repo_root=self._repo_root,
            store=self._store,
            mirror=self._mirror,
            load_policy=self.ignore_policy,
            max_file_bytes=config.index.max_file_bytes,
            events=self._events,
            default_patterns=config.index.default_patterns,
            mutation_lock=self._lock,
        )
        self._verifier = Verifier(self._store, self._mirror, self._events, mutation_lock=self._lock)
        self._watcher = Watcher(
            repo_root=self._repo_root,
            upsert=self.upsert,
            remove=self.remove,
            remove_dir=self.remove_dir,
            load_policy=self.ignore_policy,
            events=self._events,
            debounce_seconds=config.watcher.debounce_ms / 1000.0,
            observer_factory=observer_factory,
        )

    @property
    def config(self) -> CoreConfig:
        return self._config

    @property
    def repo_root(self) -> Path:
        return self._repo_root

    @property
    def store(self) -> IndexStore:
        return self._store

    @property
    def mirror(self) -> Mirror:
        return self._mirror

    @property
    def watcher(self) -> Watcher:
        return self._watcher

    @property
    def events(self) -> IndexEventLog:
        return self._events

    @property
    def last_scan(self) -> ScanSummary | None:
        return self._scanner.last_summary

    def open(self) -> IndexManager:
        """Create storage and cold-load the store from Manifest + Mirror."""
        with self._lock:
            if self._opened:
                return self
            self._mirror.ensure_directories()
            self._store.clear()
            try:
                loaded, failed = self._verifier.load_from_disk(source="scan")
            except ManifestError as error:
                # start empty; verify keeps raising until a scan rewrites the manifest
                self._events.failure("scan", "cold_load", None, error)
                self._opened = True
                return self
            self._events.record(
                source="scan",
                action="cold_load",
                ok=not failed,
                detail=f"loaded={len(loaded)} failed={len(failed)}",
            )
            self._opened = True
        return self

    def close(self) -> None:
        self._watcher.stop()
        with self._lock:
            self._opened = False

    def __enter__(self) -> IndexManager:
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def ignore_policy(self) -> IgnorePolicy:
        """Effective ignore policy, built once and rebuilt on each full scan."""
        with self._lock:
            if self._policy is None:
                self._policy = build_ignore_policy(
                    repo_root=self._repo_root,
                    data_dir=self._data_dir,
                    user_patterns=self._config.index.ignore_patterns,
                    use_vcs_ignore=self._config.index.use_vcs_ignore,
                )
            return self._policy

    def scan(self, patterns: Sequence[str] | None = None) -> int:
        """Full rebuild with the watcher paused; returns the indexed count.

        Raises ScanInProgressError or DirectoryEnumerationError.
        """
        self._watcher.pause()
        try:
            with self._lock:
                self._policy = None
            return self._scanner.scan(patterns)
        finally:
            self._watcher.resume()

    def is_scanning(self) -> bool:
        return self._scanner.is_running()

    def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        if options is None:
            options = SearchOptions(max_results=self._config.search.max_results)
        return search_records(self._store.all(), query, options)

    def get_file(self, path: str | Path) -> FileRecord | None:
        return self._store.get(to_relative_path(self._repo_root, path))

    def upsert(self, path: str | Path, source: str = "upsert") -> FileRecord | None:
        """Re-read one file and apply it to Store, Mirror and Manifest.

        Returns None when the file is ignored, unreadable or rejected by the
        acceptance checks; an existing record is then left untouched.
        Raises PathTraversalError for unsafe paths.
        """
        key = to_relative_path(self._repo_root, path)
        if self.ignore_policy().is_ignored(key):
            self._events.record(source=source, action="skip", path=key, detail="ignored")
            return None
        try:
            record = accept_file(self._repo_root, key, self._config.index.max_file_bytes)
        except OSError as error:
            self._events.failure(source, "skip", key, error)
            return None
        if record is None:
            self._events.record(source=source, action="skip", path=key, detail="rejected")
            return None
        with self._lock:
            self._store.put(record)
            self._mirror.write_content(key, record.content)
            self._write_manifest()
        self._events.record(source=source, action="upsert", path=key)
        return record

    def remove(self, path: str | Path, source: str = "remove") -> bool:
        """Drop one path from Store, Mirror and Manifest; True if it was indexed."""
        key = to_relative_path(self._repo_root, path)
        with self._lock:
            existed = self._store.remove(key) is not None
            self._mirror.delete_content(key)
            self._write_manifest()
        self._events.record(source=source, action="remove", path=key, detail=None if existed else "absent")
        return existed

    def remove_dir(self, path: str | Path, source: str = "remove") -> list[str]:
        """Drop every record under a directory; returns the removed keys."""
        key = to_relative_path(self._repo_root, path)
        with self._lock:
            removed = self._store.remove_prefix(key)
            for relative in removed:
                self._mirror.delete_content(relative)
            if removed:
                self._write_manifest()
        for relative in removed:
            self._events.record(source=source, action="remove", path=relative, detail="directory")
        return removed

    def verify(self) -> VerifyReport:
        return self._verifier.verify()

    def repair(self) -> RepairReport:
        return self._verifier.repair()

    def status(self) -> IndexStatus:
        summary = self._scanner.last_summary
        count = len(self._store)
        return IndexStatus(
            index_status="ready" if count or summary is not None else "not_indexed",
            indexed_file_count=count,
            scan_running=self._scanner.is_running(),
            last_scan_timestamp=summary.timestamp if summary else None,
            last_scan_indexed=summary.indexed if summary else None,
            watcher_state=self._watcher.state.value,
        )

    def files_by_language(self, language: str) -> list[FileRecord]:
        wanted = language.lower()
        return [record for record in self._store.all() if record.language == wanted]

    def project_structure(self) -> str:
        """Text tree: sorted directories, each followed by its sorted file names."""
        tree: dict[str, list[str]] = {}
        for record in self._store.all():
            directory = posixpath.dirname(record.path) or "."
            tree.setdefault(directory, []).append(posixpath.basename(record.path))
        lines: list[str] = []
        for directory in sorted(tree):
            lines.append(f"{directory}/")
            lines.extend(f"  {name}" for name in sorted(tree[directory]))
        return "\n".join(lines)

    def find_similar_files(self, path: str | Path, limit: int = 5) -> list[FileRecord]:
        """Records sharing the target's directory or extension, in store order."""
        target = self.get_file(path)
        if target is None or limit < 1:
            return []
        target_dir = posixpath.dirname(target.path)
        target_ext = posixpath.splitext(target.path)[1]
        similar: list[FileRecord] = []
        for record in self._store.all():
            if record.path == target.path:
                continue
            same_dir = posixpath.dirname(record.path) == target_dir
            same_ext = posixpath.splitext(record.path)[1] == target_ext
            if same_dir or same_ext:
                similar.append(record)
                if len(similar) >= limit:
                    break
        return similar

    def _write_manifest(self) -> None:
        self._mirror.write_manifest(
            {record.path: record.manifest_entry() for record in self._store.all()}
        )
