"""Durable projection of the index: content objects plus one manifest."""

from __future__ import annotations

import json
import os
import shutil
import threading
from pathlib import Path

from codemem.index.models import ManifestEntry
from codemem.security import validate_relative_path

CONTENT_SUFFIX = ".snapshot"
DIR_SUFFIX = ".d"
TMP_SUFFIX = ".tmp"
MANIFEST_FILE_NAME = "manifest.json"
MIRROR_DIR_NAME = "mirror"


class NotFoundError(Exception):
    """Raised when a content object does not exist."""

    def __init__(self, relative_path: str) -> None:
        super().__init__(f"No mirror content for: {relative_path}")
        self.relative_path = relative_path


class ManifestError(Exception):
    """Raised when the manifest exists but cannot be decoded."""


class Mirror:
    """On-disk content objects and manifest under one data directory.

    Layout::

        <data_dir>/manifest.json
        <data_dir>/mirror/<dir>.d/.../<name>.snapshot

    Directory components carry their own suffix so a file ``x`` and a
    directory ``x.snapshot/`` never map onto the same mirror entry.

    Every write completes before the call returns; manifest and content
    writes go through a temp file and ``os.replace``.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir.resolve()
        self._mirror_dir = self._data_dir / MIRROR_DIR_NAME
        self._manifest_path = self._data_dir / MANIFEST_FILE_NAME
        self._manifest_lock = threading.Lock()

    @property
    def mirror_dir(self) -> Path:
        return self._mirror_dir

    @property
    def manifest_path(self) -> Path:
        return self._manifest_path

    def ensure_directories(self) -> None:
        self._mirror_dir.mkdir(parents=True, exist_ok=True)

    def content_path(self, relative_path: str) -> Path:
        parts = validate_relative_path(relative_path).split("/")
        directories = [f"{part}{DIR_SUFFIX}" for part in parts[:-1]]
        return self._mirror_dir.joinpath(*directories, f"{parts[-1]}{CONTENT_SUFFIX}")

    def write_content(self, relative_path: str, content: str) -> int:
        """Write content bytes, creating parents; returns the byte count written."""
        target = self.content_path(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = content.encode("utf-8")
        tmp = target.with_name(target.name + TMP_SUFFIX)
        with tmp.open("wb") as handle:
            handle.write(payload)
        tmp.replace(target)
        return len(payload)

    def read_content(self, relative_path: str) -> str:
        target = self.content_path(relative_path)
        try:
            return target.read_bytes().decode("utf-8")
        except FileNotFoundError as error:
            raise NotFoundError(relative_path) from error

    def has_content(self, relative_path: str) -> bool:
        return self.content_path(relative_path).is_file()

    def delete_content(self, relative_path: str) -> None:
        """Delete a content object; absence is not an error."""
        target = self.content_path(relative_path)
        target.unlink(missing_ok=True)
        self._prune_empty_parents(target.parent)

    def list_content_keys(self) -> list[str]:
        """Relative paths of every content object present on disk, sorted."""
        if not self._mirror_dir.is_dir():
            return []
        keys: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self._mirror_dir):
            dirnames[:] = [name for name in dirnames if name.endswith(DIR_SUFFIX)]
            prefix = [
                part[: -len(DIR_SUFFIX)]
                for part in Path(dirpath).relative_to(self._mirror_dir).parts
            ]
            for name in filenames:
                if not name.endswith(CONTENT_SUFFIX):
                    continue
                keys.append("/".join([*prefix, name[: -len(CONTENT_SUFFIX)]]))
        keys.sort()
        return keys

    def write_manifest(self, entries: dict[str, ManifestEntry]) -> None:
        """Replace the whole manifest atomically."""
        payload = {
            path: {"language": entry.language, "size": entry.size, "mtime_ns": entry.mtime_ns}
            for path, entry in entries.items()
        }
        with self._manifest_lock:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            tmp = self._manifest_path.with_suffix(self._manifest_path.suffix + TMP_SUFFIX)
            with tmp.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, sort_keys=True, indent=2)
                handle.write("\n")
            tmp.replace(self._manifest_path)

    def read_manifest(self) -> dict[str, ManifestEntry]:
        """Read the manifest; empty on first run. Malformed rows are skipped."""
        if not self._manifest_path.exists():
            return {}
        try:
            with self._manifest_path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (json.JSONDecodeError, UnicodeDecodeError) as error:
            raise ManifestError(f"Manifest is not valid JSON: {error}") from error
        if not isinstance(payload, dict):
            raise ManifestError("Manifest must contain a JSON object.")
        output: dict[str, ManifestEntry] = {}
        for path, obj in payload.items():
            if not isinstance(obj, dict):
                continue
            language = obj.get("language")
            size = obj.get("size")
            mtime_ns = obj.get("mtime_ns")
            if not isinstance(language, str):
                continue
            if not isinstance(size, int):
                continue
            if not isinstance(mtime_ns, int):
                continue
            output[path] = ManifestEntry(language=language, size=size, mtime_ns=mtime_ns)
        return output

    def clear_all(self) -> None:
        """Delete every content object and reset the manifest to empty."""
        if self._mirror_dir.exists():
            shutil.rmtree(self._mirror_dir)
        self._mirror_dir.mkdir(parents=True, exist_ok=True)
        self.write_manifest({})

    def _prune_empty_parents(self, directory: Path) -> None:
        current = directory
        while current != self._mirror_dir and current.is_relative_to(self._mirror_dir):
            try:
                current.rmdir()
            except OSError:
                return
            current = current.parent
