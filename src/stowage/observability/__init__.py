"""Observability helpers for stowage.

Provides structured logging and tracing:
- JSON and console log formatters with storage context
- OpenTelemetry spans around every storage operation
"""

from stowage.observability.logging import (
    LogContext,
    backend_var,
    configure_logging,
    get_logger,
    operation_var,
    path_var,
)
from stowage.observability.tracing import get_tracer, traced

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    "LogContext",
    "backend_var",
    "operation_var",
    "path_var",
    # Tracing
    "get_tracer",
    "traced",
]
