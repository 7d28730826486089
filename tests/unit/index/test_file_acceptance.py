from __future__ import annotations

from pathlib import Path

import pytest

from codemem.index.discovery import DirectoryEnumerationError, accept_file, discover_paths
from codemem.index.ignore import DEFAULT_IGNORE_PATTERNS, IgnorePolicy
from codemem.security import PathTraversalError

LIMIT = 64


def test_file_at_exact_limit_is_accepted(tmp_path: Path) -> None:
    (tmp_path / "edge.py").write_bytes(b"x" * LIMIT)

    record = accept_file(tmp_path, "edge.py", LIMIT)

    assert record is not None
    assert record.size == LIMIT
    assert record.language == "python"


def test_file_one_byte_over_limit_is_skipped(tmp_path: Path) -> None:
    (tmp_path / "over.py").write_bytes(b"x" * (LIMIT + 1))

    assert accept_file(tmp_path, "over.py", LIMIT) is None


def test_nul_byte_anywhere_marks_file_binary(tmp_path: Path) -> None:
    (tmp_path / "blob.ts").write_bytes(b"const a = 1;\n" + b"\x00" + b"rest")

    assert accept_file(tmp_path, "blob.ts", LIMIT) is None


def test_empty_and_non_utf8_files_are_skipped(tmp_path: Path) -> None:
    (tmp_path / "empty.ts").write_bytes(b"")
    (tmp_path / "latin.txt").write_bytes("café".encode("latin-1"))

    assert accept_file(tmp_path, "empty.ts", LIMIT) is None
    assert accept_file(tmp_path, "latin.txt", LIMIT) is None


def test_recorded_size_is_byte_length_not_character_count(tmp_path: Path) -> None:
    text = "const s = 'éè';\n"
    (tmp_path / "u.ts").write_text(text, encoding="utf-8")

    record = accept_file(tmp_path, "u.ts", LIMIT)

    assert record is not None
    assert record.size == len(text.encode("utf-8"))
    assert record.content == text


def test_missing_file_raises_os_error(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        accept_file(tmp_path, "ghost.ts", LIMIT)


def test_traversal_is_rejected_before_reading(tmp_path: Path) -> None:
    with pytest.raises(PathTraversalError):
        accept_file(tmp_path, "../outside.ts", LIMIT)


def test_walk_is_sorted_and_prunes_ignored_directories(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "b.ts").write_text("b", encoding="utf-8")
    (tmp_path / "src" / "a.ts").write_text("a", encoding="utf-8")
    (tmp_path / "node_modules" / "pkg").mkdir(parents=True)
    (tmp_path / "node_modules" / "pkg" / "index.js").write_text("x", encoding="utf-8")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG")
    (tmp_path / "README.md").write_text("readme", encoding="utf-8")

    result = discover_paths(tmp_path, IgnorePolicy.from_patterns(DEFAULT_IGNORE_PATTERNS))

    assert result.paths == ("README.md", "src/a.ts", "src/b.ts")
    assert result.excluded_by_ignore == 1
    assert result.total_candidates == 4


def test_unenumerable_root_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(DirectoryEnumerationError):
        discover_paths(tmp_path / "missing", IgnorePolicy.from_patterns(()))
