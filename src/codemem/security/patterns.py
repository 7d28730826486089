"""Search pattern validation and compilation."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Final

MAX_PATTERN_LENGTH: Final[int] = 1_000
MAX_REPETITION_COUNT: Final[int] = 100

_BRACE_QUANTIFIER: Final[re.Pattern[str]] = re.compile(r"\{(\d*)(,?)(\d*)\}")
_REPETITION_BOUNDS: Final[re.Pattern[str]] = re.compile(r"\{(\d+)(?:,(\d*))?\}")


@dataclass(slots=True)
class _GroupFrame:
    """One open group while walking a pattern."""

    repeats: bool = False
    heads: list[str] = field(default_factory=list)
    branch_started: bool = False


class UnsafePatternError(Exception):
    """Raised when a regex has a shape prone to exponential backtracking."""

    def __init__(self, reason: str, hint: str) -> None:
        super().__init__(reason)
        self.reason = reason
        self.hint = hint


class InvalidPatternError(ValueError):
    """Raised when a pattern does not compile."""


def find_unsafe_shape(pattern: str) -> str | None:
    """Return a description of the first dangerous shape, or None when safe."""
    if len(pattern) > MAX_PATTERN_LENGTH:
        return "pattern too long"
    for match in _REPETITION_BOUNDS.finditer(pattern):
        for bound in match.groups():
            if bound and int(bound) > MAX_REPETITION_COUNT:
                return "large repetition count"
    return _find_backtracking_shape(pattern)


def _find_backtracking_shape(pattern: str) -> str | None:
    """Walk the pattern tracking group depth.

    A group that repeats something at any depth must not itself repeat, and a
    repeated group must not hold alternation branches that start alike.
    """
    stack: list[_GroupFrame] = [_GroupFrame()]
    index = 0
    length = len(pattern)
    while index < length:
        char = pattern[index]
        if char == "\\":
            _note_atom(stack[-1], pattern[index : index + 2])
            index += 2
        elif char == "[":
            end = _class_end(pattern, index)
            _note_atom(stack[-1], pattern[index:end])
            index = end
        elif char == "(":
            _note_atom(stack[-1], f"({index}")
            stack.append(_GroupFrame())
            index = _group_body_start(pattern, index)
        elif char == ")" and len(stack) > 1:
            group = stack.pop()
            quantifier = _read_quantifier(pattern, index + 1)
            if quantifier is not None and _repeats(quantifier[1]):
                if group.repeats:
                    return "nested quantifier on a group"
                if len(set(group.heads)) < len(group.heads):
                    return "overlapping alternation in a repeated group"
            if group.repeats:
                stack[-1].repeats = True
            index += 1
        elif char == "|":
            stack[-1].branch_started = False
            index += 1
        else:
            quantifier = _read_quantifier(pattern, index)
            if quantifier is None:
                _note_atom(stack[-1], char)
                index += 1
                continue
            index, maximum = quantifier
            if _repeats(maximum):
                stack[-1].repeats = True
            if index < length and pattern[index] == "?":
                index += 1
            elif index < length and pattern[index] in "+*":
                return "stacked quantifiers"
    return None


def _note_atom(frame: _GroupFrame, token: str) -> None:
    if not frame.branch_started:
        frame.heads.append(token)
        frame.branch_started = True


def _repeats(maximum: int | None) -> bool:
    return maximum is None or maximum > 1


def _read_quantifier(pattern: str, index: int) -> tuple[int, int | None] | None:
    """Return (end, maximum) for a quantifier at index; maximum None is unbounded."""
    if index >= len(pattern):
        return None
    char = pattern[index]
    if char in "+*":
        return index + 1, None
    if char == "?":
        return index + 1, 1
    if char != "{":
        return None
    match = _BRACE_QUANTIFIER.match(pattern, index)
    if match is None:
        return None
    low, comma, high = match.groups()
    if not low and not high:
        return None
    if not comma:
        return match.end(), int(low)
    return match.end(), int(high) if high else None


def _class_end(pattern: str, index: int) -> int:
    position = index + 1
    if position < len(pattern) and pattern[position] == "^":
        position += 1
    if position < len(pattern) and pattern[position] == "]":
        position += 1
    while position < len(pattern):
        if pattern[position] == "\\":
            position += 2
        elif pattern[position] == "]":
            return position + 1
        else:
            position += 1
    return len(pattern)


def _group_body_start(pattern: str, index: int) -> int:
    if not pattern.startswith("(?", index):
        return index + 1
    position = index + 2
    if pattern.startswith("P<", position):
        close = pattern.find(">", position)
        return close + 1 if close != -1 else len(pattern)
    if pattern.startswith(("<=", "<!"), position):
        return position + 2
    if pattern.startswith("#", position):
        close = pattern.find(")", position)
        return close if close != -1 else len(pattern)
    if position < len(pattern) and pattern[position] in ":=!":
        return position + 1
    while position < len(pattern) and (pattern[position].isalpha() or pattern[position] == "-"):
        position += 1
    if position < len(pattern) and pattern[position] == ":":
        position += 1
    return position


def is_pattern_safe(pattern: str) -> bool:
    """Return True when the pattern passes every ReDoS shape check."""
    return find_unsafe_shape(pattern) is None


def compile_search_pattern(
    query: str,
    regex: bool = False,
    case_sensitive: bool = False,
    whole_word: bool = False,
) -> re.Pattern[str]:
    """Compile a literal or regex query, rejecting unsafe regexes before use."""
    if regex:
        unsafe = find_unsafe_shape(query)
        if unsafe is not None:
            raise UnsafePatternError(
                reason=f"Potentially unsafe regex pattern: {unsafe}.",
                hint="Simplify the pattern or search with a literal query.",
            )
        body = query
    else:
        body = re.escape(query)
    if whole_word:
        body = rf"\b(?:{body})\b"
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(body, flags)
    except re.error as error:
        raise InvalidPatternError(f"Invalid regex pattern: {error}") from error
