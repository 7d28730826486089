"""Index, watcher and log commands exposed through the command registry."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict

from codemem.config import MAX_RESULTS_CAP
from codemem.index import FileRecord, IndexManager, SearchOptions, SearchResult, WatcherError
from codemem.tools.registry import CommandDispatchError, CommandHandler, CommandRegistry

ReadEntries = Callable[[str | None, int], list[dict[str, object]]]


def register_index_commands(
    registry: CommandRegistry,
    manager: IndexManager,
    read_audit_entries: ReadEntries,
) -> None:
    """Register the full command set in a fixed order."""
    registry.register("index.scan", _scan_handler(manager))
    registry.register("index.search", _search_handler(manager))
    registry.register("index.get_file", _get_file_handler(manager))
    registry.register("index.upsert", _upsert_handler(manager))
    registry.register("index.remove", _remove_handler(manager))
    registry.register("index.verify", lambda _: asdict(manager.verify()))
    registry.register("index.repair", lambda _: asdict(manager.repair()))
    registry.register("index.status", _status_handler(manager))
    registry.register("index.structure", lambda _: {"structure": manager.project_structure()})
    registry.register("index.files_by_language", _files_by_language_handler(manager))
    registry.register("index.similar", _similar_handler(manager))
    registry.register("watcher.start", _watcher_start_handler(manager))
    registry.register("watcher.stop", _watcher_stop_handler(manager))
    registry.register("watcher.status", lambda _: {"state": manager.watcher.state.value})
    registry.register("log.audit", _log_handler(manager, read_audit_entries))
    registry.register("log.events", _log_handler(manager, manager.events.read))


def _scan_handler(manager: IndexManager) -> CommandHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        patterns_value = arguments.get("patterns")
        patterns: list[str] | None = None
        if patterns_value is not None:
            if not isinstance(patterns_value, list) or not all(
                isinstance(item, str) and item for item in patterns_value
            ):
                raise CommandDispatchError(
                    code="INVALID_PARAMS",
                    message="index.scan patterns must be a list of non-empty strings.",
                )
            patterns = patterns_value

        indexed = manager.scan(patterns)
        warnings: list[str] = []
        if indexed > 0 and manager.config.watcher.enabled_after_scan:
            try:
                manager.watcher.start()
            except WatcherError as error:
                warnings.append(f"Watcher not started: {error}")
        summary = manager.last_scan
        return {
            "indexed": indexed,
            "summary": asdict(summary) if summary is not None else None,
            "watcher_state": manager.watcher.state.value,
            "__warnings__": warnings,
        }

    return handler


def _search_handler(manager: IndexManager) -> CommandHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        query = arguments.get("query")
        if not isinstance(query, str) or not query:
            raise CommandDispatchError(
                code="INVALID_PARAMS",
                message="index.search query must be a non-empty string.",
            )
        max_results = arguments.get("max_results", manager.config.search.max_results)
        if not isinstance(max_results, int) or isinstance(max_results, bool) or max_results < 1:
            raise CommandDispatchError(
                code="INVALID_PARAMS",
                message="index.search max_results must be an integer >= 1.",
            )
        if max_results > MAX_RESULTS_CAP:
            raise CommandDispatchError(
                code="INVALID_PARAMS",
                message=f"index.search max_results must be <= {MAX_RESULTS_CAP}.",
            )
        options = SearchOptions(
            regex=_flag(arguments, "regex", "index.search"),
            case_sensitive=_flag(arguments, "case_sensitive", "index.search"),
            whole_word=_flag(arguments, "whole_word", "index.search"),
            path_filter=_optional_str(arguments, "path_filter", "index.search"),
            language=_optional_str(arguments, "language", "index.search"),
            max_results=max_results,
        )
        results = manager.search(query, options)
        return {
            "results": [_result_to_dict(result) for result in results],
            "file_count": len(results),
            "match_count": sum(len(result.matches) for result in results),
        }

    return handler


def _get_file_handler(manager: IndexManager) -> CommandHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        path = _required_str(arguments, "path", "index.get_file")
        record = manager.get_file(path)
        if record is None:
            return {"path": path, "found": False}
        return {"found": True, **_record_to_dict(record, include_content=True)}

    return handler


def _upsert_handler(manager: IndexManager) -> CommandHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        path = _required_str(arguments, "path", "index.upsert")
        record = manager.upsert(path)
        if record is None:
            return {
                "path": path,
                "indexed": False,
                "__warnings__": ["File was ignored, unreadable, or failed acceptance checks."],
            }
        return {"indexed": True, **_record_to_dict(record, include_content=False)}

    return handler


def _remove_handler(manager: IndexManager) -> CommandHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        path = _required_str(arguments, "path", "index.remove")
        return {"path": path, "removed": manager.remove(path)}

    return handler


def _status_handler(manager: IndexManager) -> CommandHandler:
    def handler(_: dict[str, object]) -> dict[str, object]:
        status = manager.status()
        return {**asdict(status), "effective_config": manager.config.to_public_dict()}

    return handler


def _files_by_language_handler(manager: IndexManager) -> CommandHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        language = _required_str(arguments, "language", "index.files_by_language")
        records = manager.files_by_language(language)
        return {"language": language.lower(), "files": [record.path for record in records]}

    return handler


def _similar_handler(manager: IndexManager) -> CommandHandler:
    def handler(arguments: dict[str, object]) -> dict[str, object]:
        path = _required_str(arguments, "path", "index.similar")
        limit = arguments.get("limit", 5)
        if not isinstance(limit, int) or isinstance(limit, bool) or limit < 1:
            raise CommandDispatchError(
                code="INVALID_PARAMS", message="index.similar limit must be an integer >= 1."
            )
        records = manager.find_similar_files(path, limit=limit)
        return {"path": path, "files": [record.path for record in records]}

    return handler


def _watcher_start_handler(manager: IndexManager) -> CommandHandler:
    def handler(_: dict[str, object]) -> dict[str, object]:
        manager.watcher.start()
        return {"state": manager.watcher.state.value}

    return handler


def _watcher_stop_handler(manager: IndexManager) -> CommandHandler:
    def handler(_: dict[str, object]) -> dict[str, object]:
        manager.watcher.stop()
        return {"state": manager.watcher.state.value}

    return handler


def _log_handler(manager: IndexManager, read_entries: ReadEntries) -> CommandHandler:
    default_limit = manager.config.search.max_results

    def handler(arguments: dict[str, object]) -> dict[str, object]:
        since_value = arguments.get("since")
        limit_value = arguments.get("limit", default_limit)

        since: str | None = since_value if isinstance(since_value, str) else None
        limit = limit_value if isinstance(limit_value, int) else default_limit
        if limit < 1:
            limit = 1
        if limit > MAX_RESULTS_CAP:
            limit = MAX_RESULTS_CAP
        return {"entries": read_entries(since, limit)}

    return handler


def _required_str(arguments: dict[str, object], key: str, command: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value:
        raise CommandDispatchError(
            code="INVALID_PARAMS", message=f"{command} {key} must be a non-empty string."
        )
    return value


def _optional_str(arguments: dict[str, object], key: str, command: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise CommandDispatchError(
            code="INVALID_PARAMS", message=f"{command} {key} must be a string."
        )
    return value or None


def _flag(arguments: dict[str, object], key: str, command: str) -> bool:
    value = arguments.get(key, False)
    if not isinstance(value, bool):
        raise CommandDispatchError(
            code="INVALID_PARAMS", message=f"{command} {key} must be a boolean."
        )
    return value


def _record_to_dict(record: FileRecord, include_content: bool) -> dict[str, object]:
    payload: dict[str, object] = {
        "path": record.path,
        "language": record.language,
        "size": record.size,
        "mtime_ns": record.mtime_ns,
    }
    if include_content:
        payload["content"] = record.content
    return payload


def _result_to_dict(result: SearchResult) -> dict[str, object]:
    return {
        "path": result.path,
        "language": result.language,
        "matches": [asdict(match) for match in result.matches],
    }
