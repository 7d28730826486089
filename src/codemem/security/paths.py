"""Path guard for project-scoped reads and writes."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Final

WINDOWS_ABSOLUTE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z]:[\\/]?")
CONTROL_CHAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"[\x00-\x1f\x7f-\x9f]")


class PathTraversalError(Exception):
    """Raised when a path escapes the project root or carries disallowed characters."""

    def __init__(self, reason: str, hint: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.hint = hint


def _is_absolute_style(normalized: str) -> bool:
    return normalized.startswith("/") or bool(WINDOWS_ABSOLUTE_PATTERN.match(normalized))


def validate_relative_path(candidate: str) -> str:
    """Return the normalized POSIX form of a project-relative path.

    Rejects empty input, control characters, absolute paths and any ``..``
    segment. Backslashes are treated as separators so Windows-style input
    normalizes to the same key as POSIX input.
    """
    if not isinstance(candidate, str) or not candidate:
        raise PathTraversalError(
            reason="Path is empty.",
            hint="Provide a project-relative path such as 'src/module.py'.",
        )
    if CONTROL_CHAR_PATTERN.search(candidate):
        raise PathTraversalError(
            reason="Path contains control characters.",
            hint="Remove NUL and other control characters from the path.",
        )
    normalized = candidate.replace("\\", "/")
    if _is_absolute_style(normalized):
        raise PathTraversalError(
            reason="Absolute paths are not allowed.",
            hint="Use a path relative to the project root.",
        )
    parts = [part for part in normalized.split("/") if part not in ("", ".")]
    if any(part == ".." for part in parts):
        raise PathTraversalError(
            reason="Path traversal is blocked.",
            hint="Remove '..' segments and use a project-relative path.",
        )
    if not parts:
        raise PathTraversalError(
            reason="Path is empty.",
            hint="Provide a project-relative path such as 'src/module.py'.",
        )
    return "/".join(parts)


def resolve_repo_path(repo_root: Path, candidate: str) -> Path:
    """Resolve a relative path against the root, blocking symlink escapes."""
    root = repo_root.resolve()
    relative = validate_relative_path(candidate)
    resolved = (root / relative).resolve(strict=False)
    if not resolved.is_relative_to(root):
        raise PathTraversalError(
            reason="Resolved path escapes repo_root.",
            hint="Use a path located under the project root.",
        )
    return resolved


def to_relative_path(repo_root: Path, candidate: str | Path) -> str:
    """Convert an absolute or relative path into a validated relative key.

    Absolute inputs are accepted only when they sit under the project root;
    this is how filesystem event paths enter the index.
    """
    root = repo_root.resolve()
    text = str(candidate)
    if CONTROL_CHAR_PATTERN.search(text):
        raise PathTraversalError(
            reason="Path contains control characters.",
            hint="Remove NUL and other control characters from the path.",
        )
    normalized = text.replace("\\", "/")
    if not _is_absolute_style(normalized):
        return validate_relative_path(text)
    absolute = Path(text)
    if not absolute.is_relative_to(root):
        absolute = absolute.resolve(strict=False)
    if not absolute.is_relative_to(root):
        raise PathTraversalError(
            reason="Absolute path is outside repo_root.",
            hint="Use a path located under the project root.",
        )
    return validate_relative_path(absolute.relative_to(root).as_posix())
