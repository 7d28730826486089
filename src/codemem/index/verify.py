"""Three-way consistency check and reconciliation of Manifest, Store and Mirror."""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractContextManager, nullcontext

from codemem.index.mirror import Mirror, NotFoundError
from codemem.index.models import FileRecord, RepairReport, VerifyReport, VerifyStats
from codemem.index.store import IndexStore
from codemem.logging import IndexEventLog

MODE_COLD_START = "cold_start"
MODE_LIVE = "live"


def build_report(
    manifest_keys: set[str],
    memory_keys: set[str],
    disk_keys: set[str],
) -> VerifyReport:
    """Pure comparison of three key sets."""
    missing_from_memory = tuple(sorted(manifest_keys - memory_keys))
    missing_from_manifest = tuple(sorted(memory_keys - manifest_keys))
    missing_from_disk = tuple(sorted(memory_keys - disk_keys))
    orphaned = tuple(sorted(disk_keys - memory_keys))

    issues: list[str] = []
    issues.extend(f"In manifest but not in memory: {path}" for path in missing_from_memory)
    issues.extend(f"In memory but not in manifest: {path}" for path in missing_from_manifest)
    issues.extend(f"Missing from disk: {path}" for path in missing_from_disk)
    issues.extend(f"Orphaned content object: {path}" for path in orphaned)

    stats = VerifyStats(
        manifest_count=len(manifest_keys),
        memory_count=len(memory_keys),
        disk_count=len(disk_keys),
        missing_from_memory=missing_from_memory,
        missing_from_manifest=missing_from_manifest,
        missing_from_disk=missing_from_disk,
        orphaned=orphaned,
    )
    return VerifyReport(valid=not issues, issues=tuple(issues), stats=stats)


class Verifier:
    """Audits persisted state against the live store and reconciles it.

    ``verify`` never mutates. ``repair`` takes one of two paths: a cold
    start (empty store) rehydrates memory from Manifest and Mirror, while a
    live repair trusts the store and rewrites disk state to match it. Both
    paths end by rewriting the manifest from memory, so manifest entries that
    cannot be loaded are dropped and listed in the report.
    """

    def __init__(
        self,
        store: IndexStore,
        mirror: Mirror,
        events: IndexEventLog,
        mutation_lock: AbstractContextManager[object] | None = None,
    ) -> None:
        self._store = store
        self._mirror = mirror
        self._events = events
        self._mutation_lock = mutation_lock if mutation_lock is not None else nullcontext()

    def verify(self) -> VerifyReport:
        """Compare a cold Manifest read with the store and the content objects.

        Raises ManifestError only when the manifest exists but is unreadable.
        """
        with self._mutation_lock:
            manifest_keys = set(self._mirror.read_manifest().keys())
            memory_keys = self._store.keys()
            disk_keys = set(self._mirror.list_content_keys())
        return build_report(manifest_keys, memory_keys, disk_keys)

    def repair(self) -> RepairReport:
        with self._mutation_lock:
            before = self.verify()
            if len(self._store) == 0:
                report = self._repair_cold_start(before)
            else:
                report = self._repair_live(before)
        self._events.record(
            source="repair",
            action="complete",
            ok=report.succeeded,
            detail=f"mode={report.mode} residual={len(report.after.issues)}",
        )
        return report

    def load_from_disk(self, source: str = "repair") -> tuple[list[str], list[str]]:
        """Populate the store from Manifest + Mirror; returns (loaded, failed) keys."""
        loaded: list[str] = []
        failed: list[str] = []
        with self._mutation_lock:
            for path, entry in self._mirror.read_manifest().items():
                try:
                    content = self._mirror.read_content(path)
                except (NotFoundError, OSError, UnicodeDecodeError) as error:
                    failed.append(path)
                    self._events.failure(source, "load", path, error)
                    continue
                self._store.put(
                    FileRecord(
                        path=path,
                        content=content,
                        language=entry.language,
                        size=len(content.encode("utf-8")),
                        mtime_ns=entry.mtime_ns,
                    )
                )
                loaded.append(path)
        return loaded, failed

    def _repair_cold_start(self, before: VerifyReport) -> RepairReport:
        log: list[str] = []
        failures: list[str] = []

        loaded, unloadable = self.load_from_disk()
        log.extend(f"Reloaded {path} from mirror" for path in loaded)
        self._log_dropped(unloadable, "its content could not be reloaded", log)
        self._rewrite_manifest(log, failures)

        kept = set(loaded)
        removed: list[str] = []
        for path in before.stats.orphaned:
            if path in kept:
                continue
            if self._delete_orphan(path, failures):
                removed.append(path)
                log.append(f"Removed orphaned content object {path}")

        after = self.verify()
        return RepairReport(
            mode=MODE_COLD_START,
            succeeded=after.valid,
            before=before,
            after=after,
            removed_orphans=tuple(removed),
            reloaded_into_memory=tuple(loaded),
            dropped_from_manifest=tuple(unloadable),
            failures=tuple(failures),
            log=tuple(log),
        )

    def _repair_live(self, before: VerifyReport) -> RepairReport:
        log: list[str] = []
        failures: list[str] = []

        removed: list[str] = []
        for path in before.stats.orphaned:
            if self._delete_orphan(path, failures):
                removed.append(path)
                log.append(f"Removed orphaned content object {path}")

        restored: list[str] = []
        for path in before.stats.missing_from_disk:
            record = self._store.get(path)
            if record is None:
                continue
            try:
                self._mirror.write_content(path, record.content)
            except OSError as error:
                failures.append(f"Could not restore {path}")
                self._events.failure("repair", "restore", path, error)
                continue
            restored.append(path)
            log.append(f"Restored {path} from memory")
            self._events.record(source="repair", action="restore", path=path)

        dropped = before.stats.missing_from_memory
        self._log_dropped(dropped, "it was not loaded in memory", log)
        self._rewrite_manifest(log, failures)

        after = self.verify()
        return RepairReport(
            mode=MODE_LIVE,
            succeeded=after.valid,
            before=before,
            after=after,
            removed_orphans=tuple(removed),
            restored_to_disk=tuple(restored),
            dropped_from_manifest=tuple(dropped),
            failures=tuple(failures),
            log=tuple(log),
        )

    def _delete_orphan(self, path: str, failures: list[str]) -> bool:
        try:
            self._mirror.delete_content(path)
        except OSError as error:
            failures.append(f"Could not delete orphan {path}")
            self._events.failure("repair", "delete_orphan", path, error)
            return False
        self._events.record(source="repair", action="delete_orphan", path=path)
        return True

    def _log_dropped(self, paths: Sequence[str], reason: str, log: list[str]) -> None:
        for path in paths:
            log.append(f"Dropped {path} from manifest; {reason}")
            self._events.record(source="repair", action="drop_manifest_entry", path=path)

    def _rewrite_manifest(self, log: list[str], failures: list[str]) -> None:
        try:
            self._mirror.write_manifest(
                {record.path: record.manifest_entry() for record in self._store.all()}
            )
        except OSError as error:
            failures.append("Could not rewrite manifest")
            self._events.failure("repair", "write_manifest", None, error)
            return
        log.append("Rewrote manifest from memory")
