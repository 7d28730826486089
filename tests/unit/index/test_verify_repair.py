from __future__ import annotations

from pathlib import Path

import pytest

from codemem.config import load_effective_config
from codemem.index import IndexManager, ManifestError
from codemem.index.models import ManifestEntry


def _scanned(root: Path) -> IndexManager:
    (root / "a.ts").write_text("export const a = 1;\n", encoding="utf-8")
    (root / "b.py").write_text("b = 2\n", encoding="utf-8")
    manager = IndexManager(load_effective_config(root)).open()
    assert manager.scan() == 2
    return manager


def test_fresh_scan_verifies_clean(tmp_path: Path) -> None:
    report = _scanned(tmp_path).verify()

    assert report.valid is True
    assert report.issues == ()
    assert report.stats.manifest_count == report.stats.memory_count == report.stats.disk_count == 2


def test_deleted_content_object_is_missing_from_disk_and_repaired(tmp_path: Path) -> None:
    manager = _scanned(tmp_path)
    manager.mirror.content_path("a.ts").unlink()

    report = manager.verify()
    assert report.valid is False
    assert report.stats.missing_from_disk == ("a.ts",)
    assert "Missing from disk: a.ts" in report.issues

    repaired = manager.repair()
    assert repaired.mode == "live"
    assert repaired.restored_to_disk == ("a.ts",)
    assert repaired.succeeded is True
    assert manager.verify().valid is True
    assert manager.mirror.read_content("a.ts") == "export const a = 1;\n"


def test_verify_does_not_mutate(tmp_path: Path) -> None:
    manager = _scanned(tmp_path)
    manager.mirror.write_content("stray.ts", "x")

    first = manager.verify()
    second = manager.verify()

    assert first == second
    assert first.stats.orphaned == ("stray.ts",)
    assert manager.mirror.has_content("stray.ts")


def test_repair_removes_orphans_and_rewrites_manifest_from_memory(tmp_path: Path) -> None:
    manager = _scanned(tmp_path)
    manager.mirror.write_content("stray.ts", "x")
    entries = manager.mirror.read_manifest()
    entries["phantom.ts"] = ManifestEntry("typescript", 3, 1)
    del entries["b.py"]
    manager.mirror.write_manifest(entries)

    before = manager.verify()
    assert before.stats.orphaned == ("stray.ts",)
    assert before.stats.missing_from_memory == ("phantom.ts",)
    assert before.stats.missing_from_manifest == ("b.py",)

    report = manager.repair()

    assert report.removed_orphans == ("stray.ts",)
    assert report.dropped_from_manifest == ("phantom.ts",)
    assert report.after.valid is True
    assert set(manager.mirror.read_manifest()) == {"a.ts", "b.py"}


def test_repair_is_idempotent(tmp_path: Path) -> None:
    manager = _scanned(tmp_path)
    manager.mirror.content_path("b.py").unlink()
    manager.mirror.write_content("orphan.md", "o")

    manager.repair()
    second = manager.repair()

    assert second.before.valid is True
    assert second.removed_orphans == ()
    assert second.restored_to_disk == ()
    assert manager.verify().valid is True


def test_cold_start_rehydrates_from_disk(tmp_path: Path) -> None:
    _scanned(tmp_path)
    cold = IndexManager(load_effective_config(tmp_path))
    cold.mirror.write_content("orphan.ts", "o")

    report = cold.repair()

    assert report.mode == "cold_start"
    assert set(report.reloaded_into_memory) == {"a.ts", "b.py"}
    assert report.removed_orphans == ("orphan.ts",)
    assert report.succeeded is True
    record = cold.get_file("a.ts")
    assert record is not None
    assert record.language == "typescript"


def test_cold_start_drops_unloadable_manifest_entries(tmp_path: Path) -> None:
    manager = _scanned(tmp_path)
    manager.mirror.content_path("b.py").unlink()
    cold = IndexManager(load_effective_config(tmp_path))

    report = cold.repair()

    assert report.mode == "cold_start"
    assert report.reloaded_into_memory == ("a.ts",)
    assert report.dropped_from_manifest == ("b.py",)
    assert report.succeeded is True
    assert set(cold.mirror.read_manifest()) == {"a.ts"}


def test_single_unloadable_entry_is_valid_after_repeated_repair(tmp_path: Path) -> None:
    (tmp_path / "a.ts").write_text("export const a = 1;\n", encoding="utf-8")
    scanned = IndexManager(load_effective_config(tmp_path)).open()
    assert scanned.scan() == 1
    scanned.mirror.content_path("a.ts").unlink()

    reopened = IndexManager(load_effective_config(tmp_path)).open()
    assert len(reopened.store) == 0

    first = reopened.repair()
    second = reopened.repair()

    assert first.mode == "cold_start"
    assert first.dropped_from_manifest == ("a.ts",)
    assert second.before.valid is True
    assert reopened.verify().valid is True
    assert reopened.mirror.read_manifest() == {}


def test_open_skips_entries_without_content(tmp_path: Path) -> None:
    manager = _scanned(tmp_path)
    manager.mirror.content_path("a.ts").unlink()

    reopened = IndexManager(load_effective_config(tmp_path)).open()

    assert reopened.store.keys() == {"b.py"}
    assert reopened.verify().stats.missing_from_memory == ("a.ts",)


def test_unreadable_manifest_raises_from_verify(tmp_path: Path) -> None:
    manager = _scanned(tmp_path)
    manager.mirror.manifest_path.write_text("[]", encoding="utf-8")

    with pytest.raises(ManifestError):
        manager.verify()


def test_file_beside_snapshot_named_directory_verifies_clean(tmp_path: Path) -> None:
    (tmp_path / "a.ts").write_text("export const a = 1;\n", encoding="utf-8")
    (tmp_path / "a.ts.snapshot").mkdir()
    (tmp_path / "a.ts.snapshot" / "b.ts").write_text("export const b = 2;\n", encoding="utf-8")
    manager = IndexManager(load_effective_config(tmp_path)).open()

    assert manager.scan() == 2
    assert manager.verify().valid is True
    assert manager.mirror.read_content("a.ts.snapshot/b.ts") == "export const b = 2;\n"
