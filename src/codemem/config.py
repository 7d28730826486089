"""Configuration loading and deterministic merge order."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path

MAX_FILE_BYTES_DEFAULT = 10 * 1024 * 1024
MAX_FILE_BYTES_CAP = 64 * 1024 * 1024
DEBOUNCE_MS_DEFAULT = 500
DEBOUNCE_MS_CAP = 60_000
MAX_RESULTS_DEFAULT = 50
MAX_RESULTS_CAP = 1_000

CONFIG_FILE_NAME = "codemem.toml"
DEFAULT_DATA_DIR_NAME = ".codemem"
DEFAULT_SCAN_PATTERNS = ("**/*",)


@dataclass(slots=True, frozen=True)
class IndexConfig:
    """Discovery and acceptance settings."""

    ignore_patterns: tuple[str, ...] = ()
    use_vcs_ignore: bool = True
    max_file_bytes: int = MAX_FILE_BYTES_DEFAULT
    default_patterns: tuple[str, ...] = DEFAULT_SCAN_PATTERNS


@dataclass(slots=True, frozen=True)
class WatcherConfig:
    """Filesystem watcher settings."""

    debounce_ms: int = DEBOUNCE_MS_DEFAULT
    enabled_after_scan: bool = True


@dataclass(slots=True, frozen=True)
class SearchConfig:
    """Search defaults."""

    max_results: int = MAX_RESULTS_DEFAULT


@dataclass(slots=True, frozen=True)
class CoreConfig:
    """Fully merged configuration for one project."""

    repo_root: Path
    data_dir: Path
    index: IndexConfig
    watcher: WatcherConfig
    search: SearchConfig

    def to_public_dict(self) -> dict[str, object]:
        """Return serializable config snapshot for status output."""
        return {
            "repo_root": str(self.repo_root),
            "data_dir": str(self.data_dir),
            "index": {
                "ignore_patterns": list(self.index.ignore_patterns),
                "use_vcs_ignore": self.index.use_vcs_ignore,
                "max_file_bytes": self.index.max_file_bytes,
                "default_patterns": list(self.index.default_patterns),
            },
            "watcher": {
                "debounce_ms": self.watcher.debounce_ms,
                "enabled_after_scan": self.watcher.enabled_after_scan,
            },
            "search": {
                "max_results": self.search.max_results,
            },
        }


@dataclass(slots=True, frozen=True)
class CliOverrides:
    """Optional startup overrides applied at highest precedence."""

    data_dir: Path | None = None
    max_file_bytes: int | None = None
    debounce_ms: int | None = None
    max_results: int | None = None


def default_config(repo_root: Path) -> CoreConfig:
    """Build default config for a given project root."""
    resolved_root = repo_root.resolve()
    return CoreConfig(
        repo_root=resolved_root,
        data_dir=resolved_root / DEFAULT_DATA_DIR_NAME,
        index=IndexConfig(),
        watcher=WatcherConfig(),
        search=SearchConfig(),
    )


def load_repo_config_file(repo_root: Path) -> dict[str, object]:
    """Load optional codemem.toml from the project root."""
    config_path = repo_root / CONFIG_FILE_NAME
    if not config_path.exists():
        return {}
    with config_path.open("rb") as handle:
        payload = tomllib.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"{CONFIG_FILE_NAME} must contain a top-level table.")
    return payload


def _get_table(payload: dict[str, object], key: str) -> dict[str, object]:
    value = payload.get(key, {})
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{key}' must be a table.")
    return value


def _tuple_of_strings(value: object, name: str) -> tuple[str, ...]:
    if not isinstance(value, list):
        raise ValueError(f"Config field '{name}' must be a list of strings.")
    output: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"Config field '{name}' must contain only strings.")
        output.append(item)
    return tuple(output)


def _optional_bool(value: object, name: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValueError(f"Config field '{name}' must be a boolean.")
    return value


def merge_config(
    base: CoreConfig, repo_payload: dict[str, object], overrides: CliOverrides
) -> CoreConfig:
    """Merge defaults, project config, then startup overrides."""
    index_payload = _get_table(repo_payload, "index")
    watcher_payload = _get_table(repo_payload, "watcher")
    search_payload = _get_table(repo_payload, "search")

    ignore_patterns = base.index.ignore_patterns
    if "ignore_patterns" in index_payload:
        ignore_patterns = _tuple_of_strings(
            index_payload["ignore_patterns"], "index.ignore_patterns"
        )
    default_patterns = base.index.default_patterns
    if "default_patterns" in index_payload:
        default_patterns = _tuple_of_strings(
            index_payload["default_patterns"], "index.default_patterns"
        )
        if not default_patterns:
            raise ValueError("Config field 'index.default_patterns' must not be empty.")

    data_dir = base.data_dir
    raw_data_dir = repo_payload.get("data_dir")
    if raw_data_dir is not None:
        if not isinstance(raw_data_dir, str) or not raw_data_dir.strip():
            raise ValueError("Config field 'data_dir' must be a non-empty string.")
        data_dir = base.repo_root / raw_data_dir

    merged = CoreConfig(
        repo_root=base.repo_root,
        data_dir=data_dir,
        index=IndexConfig(
            ignore_patterns=ignore_patterns,
            use_vcs_ignore=_optional_bool(
                index_payload.get("use_vcs_ignore"),
                "index.use_vcs_ignore",
                base.index.use_vcs_ignore,
            ),
            max_file_bytes=_optional_positive_int_with_cap(
                index_payload.get("max_file_bytes"),
                "index.max_file_bytes",
                base.index.max_file_bytes,
                MAX_FILE_BYTES_CAP,
            ),
            default_patterns=default_patterns,
        ),
        watcher=WatcherConfig(
            debounce_ms=_optional_positive_int_with_cap(
                watcher_payload.get("debounce_ms"),
                "watcher.debounce_ms",
                base.watcher.debounce_ms,
                DEBOUNCE_MS_CAP,
            ),
            enabled_after_scan=_optional_bool(
                watcher_payload.get("enabled_after_scan"),
                "watcher.enabled_after_scan",
                base.watcher.enabled_after_scan,
            ),
        ),
        search=SearchConfig(
            max_results=_optional_positive_int_with_cap(
                search_payload.get("max_results"),
                "search.max_results",
                base.search.max_results,
                MAX_RESULTS_CAP,
            ),
        ),
    )
    return apply_cli_overrides(merged, overrides)


def apply_cli_overrides(config: CoreConfig, overrides: CliOverrides) -> CoreConfig:
    """Apply startup overrides at highest precedence."""
    index = IndexConfig(
        ignore_patterns=config.index.ignore_patterns,
        use_vcs_ignore=config.index.use_vcs_ignore,
        max_file_bytes=_optional_positive_int_with_cap(
            overrides.max_file_bytes,
            "overrides.max_file_bytes",
            config.index.max_file_bytes,
            MAX_FILE_BYTES_CAP,
        ),
        default_patterns=config.index.default_patterns,
    )
    watcher = WatcherConfig(
        debounce_ms=_optional_positive_int_with_cap(
            overrides.debounce_ms,
            "overrides.debounce_ms",
            config.watcher.debounce_ms,
            DEBOUNCE_MS_CAP,
        ),
        enabled_after_scan=config.watcher.enabled_after_scan,
    )
    search = SearchConfig(
        max_results=_optional_positive_int_with_cap(
            overrides.max_results,
            "overrides.max_results",
            config.search.max_results,
            MAX_RESULTS_CAP,
        )
    )
    data_dir = overrides.data_dir or config.data_dir
    return CoreConfig(
        repo_root=config.repo_root,
        data_dir=data_dir.resolve(),
        index=index,
        watcher=watcher,
        search=search,
    )


def load_effective_config(repo_root: Path, overrides: CliOverrides | None = None) -> CoreConfig:
    """Load effective config using merge order defaults -> project config -> overrides."""
    resolved_root = repo_root.resolve()
    base = default_config(resolved_root)
    payload = load_repo_config_file(resolved_root)
    return merge_config(base, payload, overrides or CliOverrides())


def _optional_positive_int_with_cap(
    value: object,
    name: str,
    default: int,
    cap: int | None,
) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"Config field '{name}' must be a positive integer.")
    if cap is not None and value > cap:
        raise ValueError(f"Config field '{name}' must be <= {cap}.")
    return value
