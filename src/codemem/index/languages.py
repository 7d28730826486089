"""Static extension to language table."""

from __future__ import annotations

from pathlib import PurePosixPath

DEFAULT_LANGUAGE = "text"

LANGUAGE_BY_EXTENSION: dict[str, str] = {
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".py": "python",
    ".pyw": "python",
    ".pyx": "python",
    ".pyi": "python",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".hh": "cpp",
    ".hxx": "cpp",
    ".cs": "csharp",
    ".csx": "csharp",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".erb": "ruby",
    ".rake": "ruby",
    ".php": "php",
    ".phtml": "php",
    ".swift": "swift",
    ".m": "objective-c",
    ".mm": "objective-c",
    ".scala": "scala",
    ".sc": "scala",
    ".r": "r",
    ".rmd": "r",
    ".jl": "julia",
    ".dart": "dart",
    ".lua": "lua",
    ".pl": "perl",
    ".pm": "perl",
    ".sh": "shell",
    ".bash": "bash",
    ".zsh": "zsh",
    ".fish": "fish",
    ".ps1": "powershell",
    ".psm1": "powershell",
    ".html": "html",
    ".htm": "html",
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".less": "less",
    ".json": "json",
    ".jsonc": "json",
    ".xml": "xml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".ini": "ini",
    ".cfg": "ini",
    ".conf": "conf",
    ".properties": "properties",
    ".md": "markdown",
    ".markdown": "markdown",
    ".mdx": "markdown",
    ".rst": "rst",
    ".tex": "latex",
    ".sql": "sql",
    ".vue": "vue",
    ".svelte": "svelte",
    ".dockerfile": "dockerfile",
    ".mk": "makefile",
    ".cmake": "cmake",
}

LANGUAGE_BY_FILENAME: dict[str, str] = {
    "dockerfile": "dockerfile",
    "makefile": "makefile",
    "cmakelists.txt": "cmake",
}


def language_for_path(relative_path: str) -> str:
    """Return the language tag for a path, or 'text' when unknown."""
    name = PurePosixPath(relative_path).name.lower()
    by_name = LANGUAGE_BY_FILENAME.get(name)
    if by_name is not None:
        return by_name
    suffix = PurePosixPath(name).suffix
    return LANGUAGE_BY_EXTENSION.get(suffix, DEFAULT_LANGUAGE)
