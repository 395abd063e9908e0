"""Observability helpers."""

from snatch.observability.otel import (
    initialize,
    is_enabled,
    shutdown,
    start_span,
    record_ingestion,
    record_lines_skipped,
    record_parser_failure,
    record_tokens,
)

__all__ = [
    "initialize",
    "is_enabled",
    "shutdown",
    "start_span",
    "record_ingestion",
    "record_lines_skipped",
    "record_parser_failure",
    "record_tokens",
]
