from __future__ import annotations

import threading
import time
from pathlib import Path

from codemem.config import CliOverrides, load_effective_config
from codemem.index import IndexManager
from codemem.index.watcher import ADD, CHANGE, REMOVE, Debouncer, merge_kinds


class _Collector:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fired = threading.Event()

    def __call__(self, key: str, kind: str) -> None:
        self.calls.append((key, kind))
        self.fired.set()


def test_merge_rules() -> None:
    assert merge_kinds(None, CHANGE) == CHANGE
    assert merge_kinds(ADD, CHANGE) == ADD
    assert merge_kinds(CHANGE, REMOVE) == REMOVE
    assert merge_kinds(REMOVE, ADD) == ADD


def test_burst_of_writes_coalesces_into_one_callback() -> None:
    collector = _Collector()
    debouncer = Debouncer(0.2, collector)

    for _ in range(10):
        debouncer.submit("a.ts", CHANGE)
        time.sleep(0.005)

    assert collector.fired.wait(timeout=3)
    time.sleep(0.3)
    assert collector.calls == [("a.ts", CHANGE)]


def test_paused_events_are_held_until_resume() -> None:
    collector = _Collector()
    debouncer = Debouncer(0.02, collector)

    debouncer.pause()
    debouncer.pause()
    debouncer.submit("a.ts", ADD)
    time.sleep(0.1)
    assert collector.calls == []

    debouncer.resume()
    time.sleep(0.1)
    assert collector.calls == []

    debouncer.resume()
    assert collector.fired.wait(timeout=2)
    assert collector.calls == [("a.ts", ADD)]


def test_cancel_all_drops_pending_events() -> None:
    collector = _Collector()
    debouncer = Debouncer(0.05, collector)

    debouncer.submit("a.ts", CHANGE)
    debouncer.cancel_all()
    time.sleep(0.15)

    assert collector.calls == []
    assert debouncer.pending() == {}


def test_watcher_notify_applies_after_settling_window(tmp_path: Path) -> None:
    manager = IndexManager(load_effective_config(tmp_path, CliOverrides(debounce_ms=200))).open()
    target = tmp_path / "live.ts"
    for index in range(5):
        target.write_text(f"v{index}", encoding="utf-8")
        manager.watcher.notify(CHANGE, target)

    deadline = time.monotonic() + 3
    while manager.get_file("live.ts") is None and time.monotonic() < deadline:
        time.sleep(0.01)

    record = manager.get_file("live.ts")
    assert record is not None
    assert record.content == "v4"
    upserts = [line for line in manager.events.read(limit=100) if line["action"] == "upsert"]
    assert len(upserts) == 1
