"""Path and pattern safety primitives."""

from .paths import PathTraversalError, resolve_repo_path, to_relative_path, validate_relative_path
from .patterns import (
    InvalidPatternError,
    UnsafePatternError,
    compile_search_pattern,
    find_unsafe_shape,
    is_pattern_safe,
)

__all__ = [
    "InvalidPatternError",
    "PathTraversalError",
    "UnsafePatternError",
    "compile_search_pattern",
    "find_unsafe_shape",
    "is_pattern_safe",
    "resolve_repo_path",
    "to_relative_path",
    "validate_relative_path",
]
