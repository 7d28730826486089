"""Line-oriented literal and regex search over indexed records."""

from __future__ import annotations

import re
from collections.abc import Iterable

from codemem.index.models import FileRecord, LineMatch, SearchOptions, SearchResult
from codemem.security import compile_search_pattern


def search_records(
    records: Iterable[FileRecord],
    query: str,
    options: SearchOptions,
) -> list[SearchResult]:
    """Return per-file matches in record order, stopping at ``max_results`` files.

    Raises UnsafePatternError or InvalidPatternError before any record is read.
    """
    if not query:
        raise ValueError("query must be a non-empty string.")
    pattern = compile_search_pattern(
        query,
        regex=options.regex,
        case_sensitive=options.case_sensitive,
        whole_word=options.whole_word,
    )
    if options.max_results < 1:
        return []
    language = options.language.lower() if options.language else None

    results: list[SearchResult] = []
    for record in records:
        if options.path_filter and options.path_filter not in record.path:
            continue
        if language is not None and record.language != language:
            continue
        matches = match_lines(pattern, record.content)
        if not matches:
            continue
        results.append(SearchResult(path=record.path, language=record.language, matches=matches))
        if len(results) >= options.max_results:
            break
    return results


def match_lines(pattern: re.Pattern[str], content: str) -> tuple[LineMatch, ...]:
    """Every non-empty match on every line, with offsets into the raw line."""
    found: list[LineMatch] = []
    for number, line in enumerate(content.split("\n"), start=1):
        if line.endswith("\r"):
            line = line[:-1]
        trimmed = line.strip()
        for match in pattern.finditer(line):
            if match.start() == match.end():
                continue
            found.append(LineMatch(line=number, content=trimmed, start=match.start(), end=match.end()))
    return tuple(found)
