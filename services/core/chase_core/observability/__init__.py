"""Observability package for logging."""

from chase_core.observability.logging import (
    JsonFormatter,
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
)

__all__ = [
    "StructuredLogger",
    "JsonFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
]
