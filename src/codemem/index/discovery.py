"""Deterministic project walk and the shared file-acceptance predicate."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from codemem.index.ignore import IgnorePolicy
from codemem.index.languages import language_for_path
from codemem.index.models import FileRecord
from codemem.security import resolve_repo_path, validate_relative_path


class DirectoryEnumerationError(Exception):
    """Raised when the project root itself cannot be enumerated."""


@dataclass(slots=True, frozen=True)
class DiscoveryResult:
    """Candidate paths and deterministic walk counters."""

    paths: tuple[str, ...]
    total_candidates: int
    excluded_by_ignore: int
    unreadable_dirs: tuple[str, ...]


def accept_file(repo_root: Path, relative_path: str, max_file_bytes: int) -> FileRecord | None:
    """Build a record when the file passes size, binary and encoding checks.

    Returns None for a file that must not be indexed: empty, larger than
    ``max_file_bytes``, containing a NUL byte, or not valid UTF-8. Raises
    PathTraversalError for unsafe paths and OSError when the file cannot be
    read; callers decide whether that is fatal.
    """
    key = validate_relative_path(relative_path)
    full_path = resolve_repo_path(repo_root, key)
    stat = full_path.stat()
    if not _size_ok(stat.st_size, max_file_bytes):
        return None
    raw = full_path.read_bytes()
    # the file may have grown between stat and read
    if not _size_ok(len(raw), max_file_bytes):
        return None
    if b"\x00" in raw:
        return None
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return FileRecord(
        path=key,
        content=content,
        language=language_for_path(key),
        size=len(raw),
        mtime_ns=stat.st_mtime_ns,
    )


def _size_ok(size: int, max_file_bytes: int) -> bool:
    return 0 < size <= max_file_bytes


def discover_paths(repo_root: Path, policy: IgnorePolicy) -> DiscoveryResult:
    """Walk the tree in sorted order, pruning ignored directories."""
    root = repo_root.resolve()
    try:
        with os.scandir(root) as entries:
            top_level = sorted(entries, key=lambda item: item.name)
    except OSError as error:
        raise DirectoryEnumerationError(f"Cannot enumerate project root: {error}") from error

    paths: list[str] = []
    unreadable: list[str] = []
    total_candidates = 0
    excluded_by_ignore = 0
    stack: list[list[os.DirEntry[str]]] = [list(reversed(top_level))]
    while stack:
        pending = stack[-1]
        if not pending:
            stack.pop()
            continue
        entry = pending.pop()
        relative = Path(entry.path).relative_to(root).as_posix()
        if entry.is_dir(follow_symlinks=False):
            if policy.is_ignored_dir(relative):
                continue
            try:
                with os.scandir(entry.path) as children:
                    ordered = sorted(children, key=lambda item: item.name)
            except OSError:
                unreadable.append(relative)
                continue
            stack.append(list(reversed(ordered)))
            continue
        if not entry.is_file(follow_symlinks=False):
            continue
        total_candidates += 1
        if policy.is_ignored(relative):
            excluded_by_ignore += 1
            continue
        paths.append(relative)

    return DiscoveryResult(
        paths=tuple(paths),
        total_candidates=total_candidates,
        excluded_by_ignore=excluded_by_ignore,
        unreadable_dirs=tuple(unreadable),
    )
