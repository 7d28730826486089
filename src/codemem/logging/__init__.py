"""Structured logging utilities."""

from .events import AuditEvent, IndexEvent, IndexEventLog, sanitize_arguments, sanitize_error
from .jsonl import JsonlLogger, utc_timestamp

__all__ = [
    "AuditEvent",
    "IndexEvent",
    "IndexEventLog",
    "JsonlLogger",
    "sanitize_arguments",
    "sanitize_error",
    "utc_timestamp",
]
