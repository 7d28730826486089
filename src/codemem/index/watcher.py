"""Incremental index updates driven by filesystem events."""

from __future__ import annotations

import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from codemem.index.ignore import IgnorePolicy
from codemem.index.models import FileRecord
from codemem.logging import IndexEventLog
from codemem.security import PathTraversalError, to_relative_path

ADD = "add"
CHANGE = "change"
REMOVE = "remove"
REMOVE_DIR = "remove_dir"
EVENT_KINDS = (ADD, CHANGE, REMOVE, REMOVE_DIR)


class WatcherState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    ACTIVE = "active"


class WatcherError(Exception):
    """Raised when the filesystem subscription cannot be established."""


def merge_kinds(previous: str | None, current: str) -> str:
    """Coalesce two pending events for the same path; add followed by change stays add."""
    if previous == ADD and current == CHANGE:
        return ADD
    return current


class Debouncer:
    """Per-key settling timer: a burst of submits yields one callback.

    Pauses nest. While paused, timers that expire are held and re-armed on
    the final resume.
    """

    def __init__(self, delay_seconds: float, callback: Callable[[str, str], None]) -> None:
        self._delay = delay_seconds
        self._callback = callback
        self._lock = threading.Lock()
        self._pending: dict[str, str] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._held: set[str] = set()
        self._pause_depth = 0

    def submit(self, key: str, kind: str) -> None:
        with self._lock:
            self._pending[key] = merge_kinds(self._pending.get(key), kind)
            self._held.discard(key)
            self._arm(key)

    def pause(self) -> None:
        with self._lock:
            self._pause_depth += 1

    def resume(self) -> None:
        """Undo one pause; held keys are re-armed once no pause remains."""
        with self._lock:
            if self._pause_depth > 0:
                self._pause_depth -= 1
            if self._pause_depth:
                return
            held = sorted(self._held)
            self._held.clear()
            for key in held:
                self._arm(key)

    def cancel_all(self) -> None:
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._pending.clear()
            self._held.clear()

    def pending(self) -> dict[str, str]:
        with self._lock:
            return dict(self._pending)

    def _arm(self, key: str) -> None:
        existing = self._timers.get(key)
        if existing is not None:
            existing.cancel()
        timer = threading.Timer(self._delay, self._fire, args=(key,))
        timer.daemon = True
        self._timers[key] = timer
        timer.start()

    def _fire(self, key: str) -> None:
        with self._lock:
            if self._timers.get(key) is not threading.current_thread():
                return
            del self._timers[key]
            if self._pause_depth:
                self._held.add(key)
                return
            kind = self._pending.pop(key, None)
        if kind is not None:
            self._callback(key, kind)


class _EventForwarder(FileSystemEventHandler):
    """Translates watchdog events into watcher notifications."""

    def __init__(self, watcher: Watcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(ADD, _as_str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(CHANGE, _as_str(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._watcher.notify(REMOVE, _as_str(event.src_path), is_directory=event.is_directory)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._watcher.notify(REMOVE, _as_str(event.src_path), is_directory=event.is_directory)
        if not event.is_directory:
            self._watcher.notify(ADD, _as_str(event.dest_path))


def _as_str(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="surrogateescape")
    return path


class Watcher:
    """Keeps Index Store and Mirror current after the initial scan.

    States move stopped -> starting -> active -> stopped. Events are applied
    through the same upsert/remove path that external callers use, so the
    acceptance rules cannot drift from the scanner's.
    """

    def __init__(
        self,
        repo_root: Path,
        upsert: Callable[[str, str], FileRecord | None],
        remove: Callable[[str, str], bool],
        remove_dir: Callable[[str, str], list[str]],
        load_policy: Callable[[], IgnorePolicy],
        events: IndexEventLog,
        debounce_seconds: float = 0.5,
        observer_factory: Callable[[], BaseObserver] = Observer,
        health_check_seconds: float = 1.0,
    ) -> None:
        self._repo_root = repo_root.resolve()
        self._upsert = upsert
        self._remove = remove
        self._remove_dir = remove_dir
        self._load_policy = load_policy
        self._events = events
        self._observer_factory = observer_factory
        self._observer: BaseObserver | None = None
        self._state = WatcherState.STOPPED
        self._state_lock = threading.RLock()
        self._debouncer = Debouncer(debounce_seconds, self._dispatch)
        self._health_check_seconds = health_check_seconds
        self._supervisor_stop: threading.Event | None = None

    @property
    def state(self) -> WatcherState:
        with self._state_lock:
            self._check_observer()
            return self._state

    def is_active(self) -> bool:
        return self.state is WatcherState.ACTIVE

    def start(self) -> None:
        """Subscribe to filesystem events; no-op unless stopped."""
        with self._state_lock:
            self._check_observer()
            if self._state is not WatcherState.STOPPED:
                return
            self._state = WatcherState.STARTING
            observer = self._observer_factory()
            try:
                observer.schedule(_EventForwarder(self), str(self._repo_root), recursive=True)
                observer.daemon = True
                observer.start()
            except OSError as error:
                self._state = WatcherState.STOPPED
                self._events.failure("watcher", "start", None, error)
                raise WatcherError(f"Could not watch project root: {error}") from error
            self._observer = observer
            self._state = WatcherState.ACTIVE
            self._supervisor_stop = threading.Event()
            threading.Thread(
                target=self._supervise, args=(self._supervisor_stop,), daemon=True
            ).start()
            self._events.record(source="watcher", action="start")

    def stop(self) -> None:
        """Release the subscription and drop pending events."""
        with self._state_lock:
            observer = self._observer
            self._observer = None
            self._release_supervisor()
            self._debouncer.cancel_all()
            was_running = self._state is not WatcherState.STOPPED
            self._state = WatcherState.STOPPED
        if observer is not None:
            observer.stop()
            if observer.is_alive():
                observer.join(timeout=5.0)
        if was_running:
            self._events.record(source="watcher", action="stop")

    def pause(self) -> None:
        """Hold debounced events, e.g. while a full scan rebuilds the index."""
        self._debouncer.pause()

    def resume(self) -> None:
        self._debouncer.resume()

    def pending(self) -> dict[str, str]:
        return self._debouncer.pending()

    def notify(self, kind: str, path: str | Path, is_directory: bool = False) -> None:
        """Queue an event behind the settling window."""
        routed = self._route(kind, path, is_directory)
        if routed is not None:
            self._debouncer.submit(*routed)

    def handle_event(self, kind: str, path: str | Path, is_directory: bool = False) -> None:
        """Apply an event immediately, bypassing the settling window."""
        routed = self._route(kind, path, is_directory)
        if routed is not None:
            self._dispatch(*routed)

    def _route(self, kind: str, path: str | Path, is_directory: bool) -> tuple[str, str] | None:
        if kind not in EVENT_KINDS:
            raise ValueError(f"Unknown watcher event kind: {kind}")
        try:
            relative = to_relative_path(self._repo_root, path)
        except PathTraversalError as error:
            self._events.record(
                source="watcher", action="reject", path=None, ok=False, detail=error.reason
            )
            return None
        policy = self._load_policy()
        if is_directory or kind == REMOVE_DIR:
            if kind not in (REMOVE, REMOVE_DIR) or policy.is_ignored_dir(relative):
                return None
            return relative, REMOVE_DIR
        if policy.is_ignored(relative):
            return None
        return relative, kind

    def _dispatch(self, relative: str, kind: str) -> None:
        try:
            if kind in (ADD, CHANGE):
                self._upsert(relative, "watcher")
            elif kind == REMOVE:
                self._remove(relative, "watcher")
            else:
                self._remove_dir(relative, "watcher")
        except Exception as error:
            # one bad event must not take the observer or timer thread down
            self._events.failure("watcher", kind, relative, error)

    def _supervise(self, stopped: threading.Event) -> None:
        """Poll subscription health so a lost observer is reported when it dies."""
        while not stopped.wait(self._health_check_seconds):
            with self._state_lock:
                self._check_observer()
                if self._state is not WatcherState.ACTIVE:
                    return

    def _release_supervisor(self) -> None:
        if self._supervisor_stop is not None:
            self._supervisor_stop.set()
            self._supervisor_stop = None

    def _check_observer(self) -> None:
        observer = self._observer
        if self._state is not WatcherState.ACTIVE or observer is None:
            return
        if observer.is_alive() and all(emitter.is_alive() for emitter in observer.emitters):
            return
        observer.stop()
        self._observer = None
        self._state = WatcherState.STOPPED
        self._release_supervisor()
        self._debouncer.cancel_all()
        self._events.record(
            source="watcher", action="subscription_lost", ok=False, detail="observer exited"
        )
