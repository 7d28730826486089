from __future__ import annotations

import json
from pathlib import Path

import pytest

from codemem.index.mirror import ManifestError, Mirror, NotFoundError
from codemem.index.models import FileRecord, ManifestEntry
from codemem.index.store import IndexStore


def _record(path: str, content: str = "x") -> FileRecord:
    return FileRecord(path=path, content=content, language="text", size=len(content), mtime_ns=1)


def test_store_replacement_keeps_key_unique_and_position() -> None:
    store = IndexStore()
    store.put(_record("a.ts", "one"))
    store.put(_record("b.ts"))
    store.put(_record("a.ts", "two"))

    assert len(store) == 2
    assert [record.path for record in store.all()] == ["a.ts", "b.ts"]
    assert store.get("a.ts") is not None
    assert store.get("a.ts").content == "two"


def test_store_remove_is_idempotent_and_prefix_removal_scopes_to_directory() -> None:
    store = IndexStore()
    for path in ("src/a.ts", "src/sub/b.ts", "srcx/c.ts"):
        store.put(_record(path))

    assert store.remove("missing.ts") is None
    assert sorted(store.remove_prefix("src")) == ["src/a.ts", "src/sub/b.ts"]
    assert store.keys() == {"srcx/c.ts"}


def test_content_round_trip_and_byte_count(tmp_path: Path) -> None:
    mirror = Mirror(tmp_path / "data")
    content = "print('héllo')\n"

    written = mirror.write_content("pkg/mod.py", content)

    assert written == len(content.encode("utf-8"))
    assert mirror.content_path("pkg/mod.py").name == "mod.py.snapshot"
    assert mirror.read_content("pkg/mod.py") == content
    assert mirror.list_content_keys() == ["pkg/mod.py"]


def test_file_and_suffixed_directory_do_not_collide(tmp_path: Path) -> None:
    mirror = Mirror(tmp_path / "data")

    mirror.write_content("x", "file")
    mirror.write_content("x.snapshot/y", "nested")

    assert mirror.read_content("x") == "file"
    assert mirror.read_content("x.snapshot/y") == "nested"
    assert mirror.list_content_keys() == ["x", "x.snapshot/y"]


def test_read_missing_content_raises_not_found(tmp_path: Path) -> None:
    mirror = Mirror(tmp_path / "data")

    with pytest.raises(NotFoundError):
        mirror.read_content("nope.ts")


def test_delete_is_idempotent_and_prunes_empty_parents(tmp_path: Path) -> None:
    mirror = Mirror(tmp_path / "data")
    mirror.write_content("deep/nested/file.ts", "x")

    mirror.delete_content("deep/nested/file.ts")
    mirror.delete_content("deep/nested/file.ts")

    assert not (mirror.mirror_dir / "deep.d").exists()
    assert mirror.list_content_keys() == []


def test_manifest_is_full_replace_and_empty_on_first_run(tmp_path: Path) -> None:
    mirror = Mirror(tmp_path / "data")
    assert mirror.read_manifest() == {}

    mirror.write_manifest({"a.ts": ManifestEntry("typescript", 10, 5)})
    mirror.write_manifest({"b.py": ManifestEntry("python", 3, 7)})

    assert mirror.read_manifest() == {"b.py": ManifestEntry("python", 3, 7)}
    payload = json.loads(mirror.manifest_path.read_text(encoding="utf-8"))
    assert payload == {"b.py": {"language": "python", "mtime_ns": 7, "size": 3}}


def test_corrupt_manifest_raises(tmp_path: Path) -> None:
    mirror = Mirror(tmp_path / "data")
    mirror.ensure_directories()
    mirror.manifest_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ManifestError):
        mirror.read_manifest()


def test_clear_all_removes_content_and_resets_manifest(tmp_path: Path) -> None:
    mirror = Mirror(tmp_path / "data")
    mirror.write_content("a.ts", "a")
    mirror.write_manifest({"a.ts": ManifestEntry("typescript", 1, 1)})

    mirror.clear_all()

    assert mirror.list_content_keys() == []
    assert mirror.read_manifest() == {}
