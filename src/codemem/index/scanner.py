"""Full-project scan that rebuilds Index Store and Mirror from scratch."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from pathlib import Path

from codemem.index.discovery import accept_file, discover_paths
from codemem.index.ignore import IgnorePolicy, compile_globs
from codemem.index.mirror import Mirror
from codemem.index.store import IndexStore
from codemem.logging import IndexEventLog, utc_timestamp
from codemem.security import PathTraversalError


class ScanInProgressError(Exception):
    """Raised when a full scan is requested while another one is running."""


@dataclass(slots=True, frozen=True)
class ScanSummary:
    """Deterministic counters for one completed scan."""

    indexed: int
    total_candidates: int
    excluded_by_ignore: int
    excluded_by_pattern: int
    rejected: int
    failed: int
    unreadable_dirs: tuple[str, ...]
    timestamp: str
    duration_ms: int


class Scanner:
    """Clears and repopulates the index. Only one scan runs at a time."""

    def __init__(
        self,
        repo_root: Path,
        store: IndexStore,
        mirror: Mirror,
        load_policy: Callable[[], IgnorePolicy],
        max_file_bytes: int,
        events: IndexEventLog,
        default_patterns: Sequence[str] = ("**/*",),
        mutation_lock: AbstractContextManager[object] | None = None,
    ) -> None:
        self._repo_root = repo_root.resolve()
        self._store = store
        self._mirror = mirror
        self._load_policy = load_policy
        self._max_file_bytes = max_file_bytes
        self._events = events
        self._default_patterns = tuple(default_patterns)
        self._mutation_lock = mutation_lock if mutation_lock is not None else nullcontext()
        self._scan_lock = threading.Lock()
        self._last_summary: ScanSummary | None = None

    @property
    def last_summary(self) -> ScanSummary | None:
        return self._last_summary

    def is_running(self) -> bool:
        return self._scan_lock.locked()

    def scan(self, patterns: Sequence[str] | None = None) -> int:
        """Rebuild the index and return the number of files indexed.

        The tree is enumerated before anything is cleared, so a fatal
        enumeration failure leaves the previous index untouched.
        """
        if not self._scan_lock.acquire(blocking=False):
            raise ScanInProgressError("A full scan is already running.")
        try:
            summary = self._run(tuple(patterns) if patterns else self._default_patterns)
        finally:
            self._scan_lock.release()
        self._last_summary = summary
        return summary.indexed

    def _run(self, patterns: tuple[str, ...]) -> ScanSummary:
        started = time.perf_counter()
        policy = self._load_policy()
        include = compile_globs(patterns)
        discovery = discover_paths(self._repo_root, policy)
        for directory in discovery.unreadable_dirs:
            self._events.record(
                source="scan", action="skip_dir", path=directory, ok=False, detail="unreadable"
            )

        indexed = 0
        excluded_by_pattern = 0
        rejected = 0
        failed = 0
        with self._mutation_lock:
            self._store.clear()
            self._mirror.clear_all()
            for relative in discovery.paths:
                if not include.match_file(relative):
                    excluded_by_pattern += 1
                    continue
                try:
                    record = accept_file(self._repo_root, relative, self._max_file_bytes)
                except (OSError, PathTraversalError) as error:
                    failed += 1
                    self._events.failure("scan", "skip", relative, error)
                    continue
                if record is None:
                    rejected += 1
                    continue
                self._store.put(record)
                try:
                    self._mirror.write_content(record.path, record.content)
                except OSError as error:
                    failed += 1
                    self._events.failure("scan", "persist", relative, error)
                    continue
                indexed += 1
            self._mirror.write_manifest(
                {record.path: record.manifest_entry() for record in self._store.all()}
            )

        summary = ScanSummary(
            indexed=indexed,
            total_candidates=discovery.total_candidates,
            excluded_by_ignore=discovery.excluded_by_ignore,
            excluded_by_pattern=excluded_by_pattern,
            rejected=rejected,
            failed=failed,
            unreadable_dirs=discovery.unreadable_dirs,
            timestamp=utc_timestamp(),
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        self._events.record(source="scan", action="complete", detail=f"indexed={indexed}")
        return summary
