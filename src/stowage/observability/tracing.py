"""OpenTelemetry spans for storage operations.

Only the OpenTelemetry API is used here; the embedding application owns the
tracer provider and exporters. Without a configured provider every span is a
no-op.

Usage:
    from stowage.observability.tracing import traced

    class MyStorageService(StorageService):
        @traced("open")
        async def open(self, path):
            ...
"""

from __future__ import annotations

import functools
import os
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from opentelemetry import trace

from stowage.config import settings
from stowage.observability.logging import LogContext

if TYPE_CHECKING:
    from stowage.service import StorageService

P = ParamSpec("P")
R = TypeVar("R")


def get_tracer(name: str) -> trace.Tracer:
    """Get a tracer for the given module name.

    Args:
        name: Module name (typically __name__)

    Returns:
        OpenTelemetry tracer, or a no-op tracer when tracing is disabled
    """
    if not settings.enable_tracing:
        return trace.NoOpTracer()
    return trace.get_tracer(name)


def _describe_path(path: Any) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    try:
        return os.fspath(path)
    except TypeError:
        return str(path)


def traced(
    operation: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Wrap a storage method in a ``stowage.<scheme>.<operation>`` span.

    The first positional argument after ``self``, when present and not
    ``None``, is recorded as the ``stowage.path`` attribute and bound to the
    log context.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            # Resolved per call, enable_tracing may change after import
            tracer = get_tracer(func.__module__)
            service: StorageService = args[0]  # type: ignore[assignment]
            raw_path = args[1] if len(args) > 1 else kwargs.get("path")
            path = _describe_path(raw_path) if raw_path is not None else ""

            attributes = {"stowage.service": service.name}
            if path:
                attributes["stowage.path"] = path

            context = LogContext(
                storage_backend=service.name,
                storage_operation=operation,
                storage_path=path,
            )
            with tracer.start_as_current_span(
                f"stowage.{service.scheme}.{operation}", attributes=attributes
            ), context:
                return await func(*args, **kwargs)

        return wrapper

    return decorator
