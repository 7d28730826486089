"""JSON-lines command server entrypoint."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from codemem.config import CliOverrides, CoreConfig, load_effective_config
from codemem.index import (
    DirectoryEnumerationError,
    IndexManager,
    ManifestError,
    ScanInProgressError,
    WatcherError,
)
from codemem.logging import AuditEvent, JsonlLogger, sanitize_arguments, sanitize_error, utc_timestamp
from codemem.security import InvalidPatternError, PathTraversalError, UnsafePatternError
from codemem.tools.commands import register_index_commands
from codemem.tools.registry import CommandDispatchError, CommandRegistry

AUDIT_FILE_NAME = "audit.jsonl"


@dataclass(slots=True, frozen=True)
class Request:
    """Normalized incoming request."""

    request_id: str
    method: str
    params: dict[str, object]


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for server startup configuration."""
    parser = argparse.ArgumentParser(prog="codemem")
    parser.add_argument("--repo-root", required=False, default=".")
    parser.add_argument("--data-dir", required=False, default=None)
    parser.add_argument("--max-file-bytes", type=int, required=False, default=None)
    parser.add_argument("--debounce-ms", type=int, required=False, default=None)
    parser.add_argument("--max-results", type=int, required=False, default=None)
    return parser


class StdioServer:
    """Routes JSON-line requests to registered commands over one IndexManager."""

    def __init__(
        self,
        config: CoreConfig,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self._config = config
        self._repo_root = config.repo_root
        self._audit_logger = JsonlLogger(path=config.data_dir / AUDIT_FILE_NAME)
        self._manager = IndexManager(config, observer_factory=observer_factory)
        self._registry = CommandRegistry()
        register_index_commands(
            self._registry,
            manager=self._manager,
            read_audit_entries=self._audit_logger.read,
        )
        self._fallback_request_counter = 0

    @property
    def manager(self) -> IndexManager:
        return self._manager

    @property
    def registry(self) -> CommandRegistry:
        return self._registry

    def serve(self, in_stream: TextIO, out_stream: TextIO) -> None:
        """Process requests until end of input, then stop the watcher."""
        self._manager.open()
        try:
            for raw_line in in_stream:
                line = raw_line.strip()
                if not line:
                    continue
                response = self.handle_json_line(line)
                out_stream.write(f"{json.dumps(response, sort_keys=True)}\n")
                out_stream.flush()
        finally:
            self._manager.close()

    def handle_json_line(self, raw_line: str) -> dict[str, object]:
        """Handle a single JSON-line request."""
        try:
            payload = json.loads(raw_line)
        except json.JSONDecodeError:
            request_id = self.next_request_id()
            response = self.error_response(
                request_id=request_id,
                code="INVALID_JSON",
                message="Request must be valid JSON.",
            )
            self.log_request(
                request_id=request_id,
                command="invalid_json",
                arguments={"raw_line_length": len(raw_line)},
                response=response,
            )
            return response
        return self.handle_payload(payload)

    def handle_payload(self, payload: object) -> dict[str, object]:
        """Validate and dispatch a parsed payload."""
        parsed = self.parse_request(payload)
        if isinstance(parsed, dict):
            request_id_value = parsed.get("request_id")
            request_id = (
                request_id_value if isinstance(request_id_value, str) else self.next_request_id()
            )
            self.log_request(
                request_id=request_id,
                command="invalid_request",
                arguments={},
                response=parsed,
            )
            return parsed

        request = parsed
        response = self._dispatch(request)
        self.log_request(
            request_id=request.request_id,
            command=request.method,
            arguments=request.params,
            response=response,
        )
        return response

    def _dispatch(self, request: Request) -> dict[str, object]:
        request_id = request.request_id
        try:
            result = self._registry.dispatch(name=request.method, arguments=request.params)
        except PathTraversalError as error:
            return self.blocked_response(request_id=request_id, reason=error.reason, hint=error.hint)
        except UnsafePatternError as error:
            return self.error_response(request_id, "UNSAFE_PATTERN", error.reason)
        except InvalidPatternError as error:
            return self.error_response(request_id, "INVALID_PATTERN", str(error))
        except CommandDispatchError as error:
            return self.error_response(request_id, error.code, error.message)
        except ScanInProgressError as error:
            return self.error_response(request_id, "SCAN_IN_PROGRESS", str(error))
        except DirectoryEnumerationError as error:
            return self.error_response(
                request_id, "SCAN_FAILED", sanitize_error(error, self._repo_root)
            )
        except ManifestError as error:
            return self.error_response(
                request_id, "MANIFEST_UNREADABLE", sanitize_error(error, self._repo_root)
            )
        except WatcherError as error:
            return self.error_response(
                request_id, "WATCHER_FAILED", sanitize_error(error, self._repo_root)
            )
        except Exception:
            return self.error_response(
                request_id=request_id,
                code="INTERNAL_ERROR",
                message="Unhandled server error while executing command.",
            )

        warnings = _extract_result_warnings(result)
        return self.success_response(request_id=request_id, result=result, warnings=warnings)

    def parse_request(self, payload: object) -> Request | dict[str, object]:
        """Validate request payload and return normalized Request."""
        if not isinstance(payload, dict):
            return self.error_response(
                request_id=self.next_request_id(),
                code="INVALID_REQUEST",
                message="Request must be an object.",
            )

        request_id = self.extract_request_id(payload.get("id"))
        method = payload.get("method")
        params = payload.get("params", {})

        if not isinstance(method, str) or not method:
            return self.error_response(
                request_id=request_id,
                code="INVALID_REQUEST",
                message="Request method must be a non-empty string.",
            )
        if not isinstance(params, dict):
            return self.error_response(
                request_id=request_id,
                code="INVALID_PARAMS",
                message="Request params must be an object.",
            )

        return Request(request_id=request_id, method=method, params=params)

    def extract_request_id(self, request_id: object) -> str:
        """Extract request ID from payload or synthesize a sequential fallback."""
        if isinstance(request_id, str) and request_id:
            return request_id
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return str(request_id)
        return self.next_request_id()

    def next_request_id(self) -> str:
        self._fallback_request_counter += 1
        return f"req-{self._fallback_request_counter:06d}"

    @staticmethod
    def success_response(
        request_id: str,
        result: dict[str, object],
        warnings: list[str] | None = None,
    ) -> dict[str, object]:
        return {
            "request_id": request_id,
            "ok": True,
            "result": result,
            "warnings": warnings or [],
            "blocked": False,
        }

    @staticmethod
    def error_response(request_id: str, code: str, message: str) -> dict[str, object]:
        return {
            "request_id": request_id,
            "ok": False,
            "result": {},
            "warnings": [],
            "blocked": False,
            "error": {"code": code, "message": message},
        }

    @staticmethod
    def blocked_response(request_id: str, reason: str, hint: str) -> dict[str, object]:
        return {
            "request_id": request_id,
            "ok": False,
            "result": {"reason": reason, "hint": hint},
            "warnings": [],
            "blocked": True,
            "error": {"code": "PATH_BLOCKED", "message": reason},
        }

    def log_request(
        self,
        request_id: str,
        command: str,
        arguments: dict[str, object],
        response: dict[str, object],
    ) -> None:
        """Log one sanitized request event."""
        error_payload = response.get("error")
        error_code: str | None = None
        if isinstance(error_payload, dict):
            code_value = error_payload.get("code")
            if isinstance(code_value, str):
                error_code = code_value
        event = AuditEvent(
            timestamp=utc_timestamp(),
            request_id=request_id,
            command=command,
            ok=bool(response.get("ok", False)),
            blocked=bool(response.get("blocked", False)),
            error_code=error_code,
            metadata=sanitize_arguments(arguments),
        )
        self._audit_logger.append(event)


def create_server(
    repo_root: str | Path,
    cli_overrides: CliOverrides | None = None,
    observer_factory: Callable[[], BaseObserver] = Observer,
) -> StdioServer:
    """Create a configured server instance."""
    config = load_effective_config(repo_root=Path(repo_root).resolve(), overrides=cli_overrides)
    return StdioServer(config=config, observer_factory=observer_factory)


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for the codemem server process."""
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    overrides = CliOverrides(
        data_dir=Path(args.data_dir).resolve() if args.data_dir is not None else None,
        max_file_bytes=args.max_file_bytes,
        debounce_ms=args.debounce_ms,
        max_results=args.max_results,
    )
    try:
        server = create_server(repo_root=args.repo_root, cli_overrides=overrides)
    except ValueError as error:
        parser.error(str(error))
    server.serve(in_stream=sys.stdin, out_stream=sys.stdout)
    return 0


def _extract_result_warnings(result: dict[str, object]) -> list[str]:
    raw = result.pop("__warnings__", None)
    if not isinstance(raw, list):
        return []
    return [item for item in raw if isinstance(item, str)]


if __name__ == "__main__":
    raise SystemExit(main())
