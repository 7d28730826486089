"""Typed models for indexing state."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class FileRecord:
    """One indexed source file."""

    path: str
    content: str
    language: str
    size: int
    mtime_ns: int

    def absolute_path(self, repo_root: Path) -> Path:
        return repo_root / self.path

    def manifest_entry(self) -> ManifestEntry:
        return ManifestEntry(language=self.language, size=self.size, mtime_ns=self.mtime_ns)


@dataclass(slots=True, frozen=True)
class ManifestEntry:
    """Persisted metadata for one path, without content."""

    language: str
    size: int
    mtime_ns: int


@dataclass(slots=True, frozen=True)
class SearchOptions:
    """Search flags and filters."""

    regex: bool = False
    case_sensitive: bool = False
    whole_word: bool = False
    path_filter: str | None = None
    language: str | None = None
    max_results: int = 50


@dataclass(slots=True, frozen=True)
class LineMatch:
    """One match inside one line; offsets are within the untrimmed line."""

    line: int
    content: str
    start: int
    end: int


@dataclass(slots=True, frozen=True)
class SearchResult:
    """All matches for one file."""

    path: str
    language: str
    matches: tuple[LineMatch, ...]


@dataclass(slots=True, frozen=True)
class VerifyStats:
    """Raw counts and key sets from a three-way consistency check."""

    manifest_count: int
    memory_count: int
    disk_count: int
    missing_from_memory: tuple[str, ...]
    missing_from_manifest: tuple[str, ...]
    missing_from_disk: tuple[str, ...]
    orphaned: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class VerifyReport:
    """Result of comparing Manifest, Index Store and Mirror content objects."""

    valid: bool
    issues: tuple[str, ...]
    stats: VerifyStats


@dataclass(slots=True, frozen=True)
class RepairReport:
    """Actions taken by a repair pass and the verification that followed it."""

    mode: str
    succeeded: bool
    before: VerifyReport
    after: VerifyReport
    removed_orphans: tuple[str, ...] = ()
    restored_to_disk: tuple[str, ...] = ()
    reloaded_into_memory: tuple[str, ...] = ()
    dropped_from_manifest: tuple[str, ...] = ()
    failures: tuple[str, ...] = ()
    log: tuple[str, ...] = ()
