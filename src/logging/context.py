# src/logging/context.py - v1
"""Contextual logging support: attach graph, operation and request id to records.

Context variables are per asyncio task, so concurrent store operations
never see each other's context.
"""

from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

_graph: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "graph", default=None
)
_operation: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "operation", default=None
)
_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    graph: str | None = None
    operation: str | None = None
    request_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        graph=_graph.get(),
        operation=_operation.get(),
        request_id=_request_id.get(),
    )


def set_operation_context(
    graph: str | None, operation: str, request_id: str | None = None
) -> None:
    """Set context for one store operation."""
    _graph.set(graph)
    _operation.set(operation)
    _request_id.set(request_id or uuid.uuid4().hex[:12])


@contextmanager
def operation_context(graph: str | None, operation: str) -> Iterator[LogContext]:
    """Scope the logging context to a block, restoring the previous one on exit."""
    tokens = (
        _graph.set(graph),
        _operation.set(operation),
        _request_id.set(_request_id.get() or uuid.uuid4().hex[:12]),
    )
    try:
        yield get_context()
    finally:
        _request_id.reset(tokens[2])
        _operation.reset(tokens[1])
        _graph.reset(tokens[0])


def clear_context() -> None:
    """Reset all context variables."""
    _graph.set(None)
    _operation.set(None)
    _request_id.set(None)
