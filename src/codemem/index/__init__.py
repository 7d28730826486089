"""Indexing, mirror persistence, watching and search."""

from .discovery import DirectoryEnumerationError, accept_file, discover_paths
from .ignore import DEFAULT_IGNORE_PATTERNS, IgnorePolicy, build_ignore_policy
from .languages import language_for_path
from .manager import IndexManager, IndexStatus
from .mirror import ManifestError, Mirror, NotFoundError
from .models import (
    FileRecord,
    LineMatch,
    ManifestEntry,
    RepairReport,
    SearchOptions,
    SearchResult,
    VerifyReport,
    VerifyStats,
)
from .scanner import Scanner, ScanInProgressError, ScanSummary
from .search import search_records
from .store import IndexStore
from .verify import Verifier
from .watcher import Watcher, WatcherError, WatcherState

__all__ = [
    "DEFAULT_IGNORE_PATTERNS",
    "DirectoryEnumerationError",
    "FileRecord",
    "IgnorePolicy",
    "IndexManager",
    "IndexStatus",
    "IndexStore",
    "LineMatch",
    "ManifestEntry",
    "ManifestError",
    "Mirror",
    "NotFoundError",
    "RepairReport",
    "ScanInProgressError",
    "ScanSummary",
    "Scanner",
    "SearchOptions",
    "SearchResult",
    "Verifier",
    "VerifyReport",
    "VerifyStats",
    "Watcher",
    "WatcherError",
    "WatcherState",
    "accept_file",
    "build_ignore_policy",
    "discover_paths",
    "language_for_path",
    "search_records",
]
