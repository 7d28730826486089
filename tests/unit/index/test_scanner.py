from __future__ import annotations

import threading
from pathlib import Path

import pytest

from codemem.config import CliOverrides, load_effective_config
from codemem.index import IndexManager, ScanInProgressError
from codemem.index.ignore import DEFAULT_IGNORE_PATTERNS, IgnorePolicy
from codemem.index.mirror import Mirror
from codemem.index.scanner import Scanner
from codemem.index.store import IndexStore
from codemem.logging import IndexEventLog


def _manager(root: Path, **overrides: object) -> IndexManager:
    return IndexManager(load_effective_config(root, CliOverrides(**overrides))).open()


def test_scan_indexes_source_and_skips_default_ignored(tmp_path: Path) -> None:
    (tmp_path / "a.ts").write_bytes(b"export const answer = 42; // fifty bytes long!!!\n\n")
    (tmp_path / "b.png").write_bytes(b"\x89PNG\r\n")
    manager = _manager(tmp_path)

    assert manager.scan() == 1
    record = manager.get_file("a.ts")
    assert record is not None
    assert record.language == "typescript"
    assert record.size == 50
    assert manager.get_file("b.png") is None


def test_scan_enforces_size_and_binary_rules(tmp_path: Path) -> None:
    (tmp_path / "exact.ts").write_bytes(b"a" * 128)
    (tmp_path / "over.ts").write_bytes(b"a" * 129)
    (tmp_path / "nul.ts").write_bytes(b"abc\x00def")
    manager = _manager(tmp_path, max_file_bytes=128)

    assert manager.scan() == 1
    assert manager.get_file("exact.ts") is not None
    assert manager.get_file("over.ts") is None
    assert manager.get_file("nul.ts") is None
    summary = manager.last_scan
    assert summary is not None
    assert summary.rejected == 2


def test_recorded_size_matches_mirror_bytes(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "one.py").write_text("x = 'ü'\n", encoding="utf-8")
    (tmp_path / "src" / "two.rs").write_text("fn main() {}\n", encoding="utf-8")
    manager = _manager(tmp_path)
    manager.scan()

    for record in manager.store.all():
        assert manager.mirror.content_path(record.path).stat().st_size == record.size
    assert set(manager.mirror.read_manifest()) == {"src/one.py", "src/two.rs"}


def test_rescan_drops_entries_for_files_deleted_offline(tmp_path: Path) -> None:
    (tmp_path / "keep.ts").write_text("keep", encoding="utf-8")
    (tmp_path / "gone.ts").write_text("gone", encoding="utf-8")
    manager = _manager(tmp_path)
    manager.scan()

    (tmp_path / "gone.ts").unlink()
    assert manager.scan() == 1

    assert manager.store.keys() == {"keep.ts"}
    assert manager.mirror.list_content_keys() == ["keep.ts"]
    assert list(manager.mirror.read_manifest()) == ["keep.ts"]


def test_scan_patterns_restrict_candidates(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("a", encoding="utf-8")
    (tmp_path / "notes.md").write_text("n", encoding="utf-8")
    manager = _manager(tmp_path)

    assert manager.scan(["*.py"]) == 1
    assert manager.store.keys() == {"src/a.py"}


def test_storage_directory_is_never_indexed(tmp_path: Path) -> None:
    (tmp_path / "a.ts").write_text("a", encoding="utf-8")
    manager = _manager(tmp_path)
    manager.scan()

    assert manager.scan() == 1
    assert all(not key.startswith(".codemem") for key in manager.store.keys())


def test_concurrent_scan_is_rejected(tmp_path: Path) -> None:
    (tmp_path / "a.ts").write_text("a", encoding="utf-8")
    entered = threading.Event()
    release = threading.Event()

    def slow_policy() -> IgnorePolicy:
        entered.set()
        release.wait(timeout=5)
        return IgnorePolicy.from_patterns(DEFAULT_IGNORE_PATTERNS)

    data_dir = tmp_path / ".codemem"
    scanner = Scanner(
        repo_root=tmp_path,
        store=IndexStore(),
        mirror=Mirror(data_dir),
        load_policy=slow_policy,
        max_file_bytes=1024,
        events=IndexEventLog(data_dir / "events.jsonl", tmp_path),
    )
    results: list[int] = []
    worker = threading.Thread(target=lambda: results.append(scanner.scan()))
    worker.start()
    assert entered.wait(timeout=5)

    assert scanner.is_running()
    with pytest.raises(ScanInProgressError):
        scanner.scan()

    release.set()
    worker.join(timeout=5)
    assert results == [1]
    assert not scanner.is_running()
