"""Structured audit and index events."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from codemem.logging.jsonl import JsonlLogger, utc_timestamp


@dataclass(slots=True, frozen=True)
class AuditEvent:
    """Sanitized representation of a single command request."""

    timestamp: str
    request_id: str
    command: str
    ok: bool
    blocked: bool
    error_code: str | None
    metadata: dict[str, object]


@dataclass(slots=True, frozen=True)
class IndexEvent:
    """One index mutation, skip, or failure."""

    timestamp: str
    source: str
    action: str
    path: str | None
    ok: bool
    detail: str | None


def sanitize_arguments(arguments: dict[str, object]) -> dict[str, object]:
    """Sanitize command arguments; free-text queries are logged as length only."""
    sanitized: dict[str, object] = {}
    for key in sorted(arguments.keys()):
        value = arguments[key]
        if key in {"path", "language", "path_filter"} and isinstance(value, str):
            sanitized[key] = value
            continue
        if key in {"query"} and isinstance(value, str):
            sanitized[f"{key}_present"] = True
            sanitized[f"{key}_length"] = len(value)
            continue
        if isinstance(value, (int, float, bool)) or value is None:
            sanitized[key] = value
            continue
        if isinstance(value, str):
            sanitized[f"{key}_present"] = True
            sanitized[f"{key}_length"] = len(value)
            continue
        if isinstance(value, list):
            sanitized[f"{key}_type"] = "list"
            sanitized[f"{key}_length"] = len(value)
            continue
        if isinstance(value, dict):
            sanitized[f"{key}_type"] = "dict"
            sanitized[f"{key}_keys"] = sorted(str(k) for k in value.keys())
            continue
        sanitized[f"{key}_type"] = type(value).__name__
    return sanitized


_LONG_TOKEN = re.compile(r"[A-Za-z0-9]{32,}")


def sanitize_error(error: BaseException, repo_root: Path) -> str:
    """Render an exception without leaking absolute paths or token-like strings."""
    message = str(error) or type(error).__name__
    root = str(repo_root.resolve())
    message = message.replace(root, ".")
    home = str(Path.home())
    if home and home != "/":
        message = message.replace(home, "~")
    message = _LONG_TOKEN.sub("[REDACTED]", message)
    return f"{type(error).__name__}: {message}"


class IndexEventLog:
    """Writes IndexEvent rows for one project."""

    def __init__(self, path: Path, repo_root: Path) -> None:
        self._logger = JsonlLogger(path)
        self._repo_root = repo_root

    @property
    def path(self) -> Path:
        return self._logger.path

    def record(
        self,
        source: str,
        action: str,
        path: str | None = None,
        ok: bool = True,
        detail: str | None = None,
    ) -> None:
        self._logger.append(
            IndexEvent(
                timestamp=utc_timestamp(),
                source=source,
                action=action,
                path=path,
                ok=ok,
                detail=detail,
            )
        )

    def failure(self, source: str, action: str, path: str | None, error: BaseException) -> None:
        """Record a failed operation with a sanitized error message."""
        self.record(
            source=source,
            action=action,
            path=path,
            ok=False,
            detail=sanitize_error(error, self._repo_root),
        )

    def read(self, since: str | None = None, limit: int = 50) -> list[dict[str, object]]:
        return self._logger.read(since=since, limit=limit)
