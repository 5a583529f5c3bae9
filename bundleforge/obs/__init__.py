"""
Observability utilities exposed for bundleforge tooling.

This package currently provides ``StructLogAdapter``, a light-weight
structured logging helper that formats records as JSON payloads.
"""

from .structlog_adapter import StructLogAdapter, get_logger, serialize_event

__all__ = ["StructLogAdapter", "get_logger", "serialize_event"]
