"""Observability helpers."""

from sessionvault.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_index_build,
    record_parser_failure,
    record_sync,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_index_build",
    "record_parser_failure",
    "record_sync",
]
