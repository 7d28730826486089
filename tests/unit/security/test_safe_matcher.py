from __future__ import annotations

import pytest

from codemem.security import (
    InvalidPatternError,
    UnsafePatternError,
    compile_search_pattern,
    is_pattern_safe,
)


@pytest.mark.parametrize(
    "pattern",
    [
        "(a+)+",
        "(a*)*",
        "(x+)*y",
        "a++b",
        "(ab{1,5})+",
        "a{1,5000}",
        "((a+))+$",
        r"(\w+\s?)+$",
        "(a+b?)+$",
        "(a|aa)+$",
        "(?:x(?:y*))+z",
        "(a+){3,}",
    ],
)
def test_pathological_shapes_are_rejected(pattern: str) -> None:
    assert not is_pattern_safe(pattern)
    with pytest.raises(UnsafePatternError):
        compile_search_pattern(pattern, regex=True)


@pytest.mark.parametrize(
    "pattern",
    [
        r"def \w+\(",
        r"(foo|bar)+",
        r"^import .*$",
        r"a{2,4}",
        r"(?P<name>\w+)\s*=",
        r"\++",
        r"(?:get|set)_\w+",
        r"[(+]+\d",
        r"(\w+)?x",
    ],
)
def test_ordinary_regexes_compile(pattern: str) -> None:
    assert is_pattern_safe(pattern)
    compile_search_pattern(pattern, regex=True)


def test_literal_queries_are_escaped() -> None:
    pattern = compile_search_pattern("(a+)+", regex=False)

    assert pattern.search("x = (a+)+ y") is not None
    assert pattern.search("aaaa") is None


def test_case_and_whole_word_flags() -> None:
    insensitive = compile_search_pattern("foo")
    sensitive = compile_search_pattern("foo", case_sensitive=True)
    whole = compile_search_pattern("foo", whole_word=True)

    assert insensitive.search("Foo()") is not None
    assert sensitive.search("Foo()") is None
    assert whole.search("foobar") is None
    assert whole.search("call foo now") is not None


def test_uncompilable_regex_raises_invalid_pattern() -> None:
    with pytest.raises(InvalidPatternError):
        compile_search_pattern("[unclosed", regex=True)
