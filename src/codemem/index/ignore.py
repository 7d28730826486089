"""Effective exclusion globs: built-in defaults, VCS ignore file, user config."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import pathspec

VCS_IGNORE_FILE = ".gitignore"

DEFAULT_IGNORE_PATTERNS: tuple[str, ...] = (
    # version control
    ".git/",
    ".svn/",
    ".hg/",
    # dependencies and build output
    "node_modules/",
    "vendor/",
    "target/",
    "dist/",
    "build/",
    "out/",
    "bin/",
    "obj/",
    ".bundle/",
    "bower_components/",
    # python
    "__pycache__/",
    "*.pyc",
    ".venv/",
    "venv/",
    "*.egg-info/",
    ".pytest_cache/",
    ".mypy_cache/",
    ".tox/",
    # jvm / .net
    "*.class",
    ".gradle/",
    "*.iml",
    "*.dll",
    "*.exe",
    "*.pdb",
    ".vs/",
    # editors
    ".vscode/",
    ".idea/",
    "*.swp",
    "*.swo",
    "*~",
    ".DS_Store",
    "Thumbs.db",
    # logs and temp files
    "*.log",
    "*.tmp",
    "*.temp",
    "*.cache",
    # lockfiles
    "*.lock",
    "package-lock.json",
    "pnpm-lock.yaml",
    # coverage
    "coverage/",
    ".coverage",
    "htmlcov/",
    ".nyc_output/",
    # minified and archives
    "*.min.js",
    "*.min.css",
    "*.zip",
    "*.tar",
    "*.gz",
    "*.rar",
    "*.7z",
    # binary and media
    "*.jpg",
    "*.jpeg",
    "*.png",
    "*.gif",
    "*.ico",
    "*.bmp",
    "*.webp",
    "*.pdf",
    "*.doc",
    "*.docx",
    "*.so",
    "*.dylib",
    "*.o",
    "*.a",
)


def parse_ignore_lines(lines: Iterable[str]) -> tuple[str, ...]:
    """Keep non-blank, non-comment lines from an ignore file."""
    output: list[str] = []
    for raw in lines:
        line = raw.rstrip("\r\n").strip()
        if not line or line.startswith("#"):
            continue
        output.append(line)
    return tuple(output)


def load_vcs_ignore(repo_root: Path) -> tuple[str, ...]:
    """Read the project's .gitignore; a missing or unreadable file yields nothing."""
    ignore_path = repo_root / VCS_IGNORE_FILE
    try:
        text = ignore_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ()
    return parse_ignore_lines(text.splitlines())


def data_dir_pattern(repo_root: Path, data_dir: Path) -> str | None:
    """Return an anchored pattern for the storage directory when it lives in the tree."""
    root = repo_root.resolve()
    resolved = data_dir.resolve()
    if resolved == root or not resolved.is_relative_to(root):
        return None
    return f"/{resolved.relative_to(root).as_posix()}/"


def compile_globs(patterns: Iterable[str]) -> pathspec.GitIgnoreSpec:
    """Compile globs with gitignore semantics."""
    return pathspec.GitIgnoreSpec.from_lines(list(patterns))


@dataclass(slots=True, frozen=True)
class IgnorePolicy:
    """Resolved exclusion set. Pure: holds patterns only, reads nothing."""

    patterns: tuple[str, ...]
    spec: pathspec.GitIgnoreSpec

    @classmethod
    def from_patterns(cls, patterns: Iterable[str]) -> IgnorePolicy:
        ordered = tuple(patterns)
        return cls(patterns=ordered, spec=compile_globs(ordered))

    def is_ignored(self, relative_path: str) -> bool:
        """Return True when a file path is excluded."""
        return self.spec.match_file(relative_path)

    def is_ignored_dir(self, relative_dir: str) -> bool:
        """Return True when a directory and everything below it is excluded."""
        return self.spec.match_file(f"{relative_dir.rstrip('/')}/")


def resolve_ignore_patterns(
    vcs_patterns: Iterable[str],
    user_patterns: Iterable[str],
    storage_pattern: str | None = None,
) -> tuple[str, ...]:
    """Union in precedence order: defaults, VCS rules, user config, storage dir.

    Later gitignore lines win, so a VCS negation can re-include a default
    exclusion, and the storage directory can never be re-included.
    """
    combined = [*DEFAULT_IGNORE_PATTERNS, *vcs_patterns, *user_patterns]
    if storage_pattern is not None:
        combined.append(storage_pattern)
    return tuple(combined)


def build_ignore_policy(
    repo_root: Path,
    data_dir: Path,
    user_patterns: Iterable[str] = (),
    use_vcs_ignore: bool = True,
) -> IgnorePolicy:
    """Build the effective policy for one project."""
    vcs_patterns = load_vcs_ignore(repo_root) if use_vcs_ignore else ()
    return IgnorePolicy.from_patterns(
        resolve_ignore_patterns(
            vcs_patterns=vcs_patterns,
            user_patterns=user_patterns,
            storage_pattern=data_dir_pattern(repo_root, data_dir),
        )
    )
