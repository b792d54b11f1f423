# src/core/errors.py - v1
"""Error taxonomy surfaced to callers of the graph store.

Every driver failure is translated into one of these kinds by
translate_error(); callers never need to import neo4j.exceptions.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class GraphStoreError(Exception):
    """Base class for every error raised by kgbridge."""


class NotConnectedError(GraphStoreError):
    """Operation attempted before connect() or after disconnect()."""

    def __init__(self, message: str = "graph store is not connected") -> None:
        super().__init__(message)


class ConnectError(GraphStoreError):
    """Authentication, network or protocol failure while connecting."""


class GraphValidationError(GraphStoreError, ValueError):
    """Invalid request detected before any network I/O."""


class GraphNameUnsupportedError(GraphValidationError):
    """Graph name passes local grammar but the engine rejects it."""

    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        detail = f": {reason}" if reason else ""
        super().__init__(f"graph name {name!r} is not supported by the engine{detail}")


class NotFoundError(GraphStoreError):
    """A referenced graph, node or relationship cannot be resolved."""


class ConflictError(GraphStoreError):
    """A create without upsert collided with existing data."""


class TransientError(GraphStoreError):
    """Retryable driver failure surfaced after driver retries were exhausted."""


class OperationTimeoutError(GraphStoreError, TimeoutError):
    """The operation deadline was exceeded."""


class InternalError(GraphStoreError):
    """Driver or server failure that fits no other kind."""


class SchemaError(InternalError):
    """DDL statement failed. Carries the offending definition."""

    def __init__(self, message: str, definition: str) -> None:
        self.definition = definition
        super().__init__(f"{message} (definition: {definition})")


class BatchError(GraphStoreError):
    """A batch inside a multi-batch write failed.

    Batches before ``start`` were committed and stay persisted.

    Attributes:
        start: Index of the first input item of the failing batch.
        end: Index of the last input item of the failing batch (inclusive).
        cause: The translated error raised by the batch.
    """

    def __init__(self, operation: str, start: int, end: int, cause: GraphStoreError) -> None:
        self.operation = operation
        self.start = start
        self.end = end
        self.cause = cause
        super().__init__(f"failed to {operation} batch [{start}, {end}]: {cause}")


class DryRunResult(GraphStoreError):
    """Sentinel raised by dry-run deletes, carrying the would-be count."""

    def __init__(self, count: int) -> None:
        self.count = count
        super().__init__(f"dry run: {count} item(s) would be deleted")


class RestoreError(GraphStoreError):
    """Restore stopped part-way.

    ``applied`` counts what was committed before the failure: statements for
    Cypher backups, nodes plus relationships for JSON backups.
    """

    def __init__(self, message: str, applied: int) -> None:
        self.applied = applied
        super().__init__(f"{message} ({applied} applied before the failure)")


_CONFLICT_CODES = (
    "Neo.ClientError.Schema.ConstraintValidationFailed",
    "Neo.ClientError.Schema.ConstraintViolation",
)
_NOT_FOUND_CODES = (
    "Neo.ClientError.Database.DatabaseNotFound",
    "Neo.ClientError.Statement.EntityNotFound",
)
_INVALID_NAME_MARKERS = (
    "is not a valid database name",
    "contains illegal characters",
    "must start with",
    "database name",
)


def translate_error(exc: BaseException, graph: str | None = None) -> GraphStoreError:
    """Map a driver exception onto the kgbridge taxonomy.

    Args:
        exc: Exception raised by the neo4j driver (or already translated).
        graph: Graph being operated on, used for name-rejection errors.

    Returns:
        A GraphStoreError instance; the caller raises it ``from exc``.
    """
    if isinstance(exc, GraphStoreError):
        return exc

    from neo4j import exceptions as neo4j_exc

    if isinstance(exc, neo4j_exc.ConstraintError):
        return ConflictError(str(exc))
    if isinstance(exc, (neo4j_exc.TransientError, neo4j_exc.ServiceUnavailable,
                        neo4j_exc.SessionExpired)):
        return TransientError(str(exc))
    if isinstance(exc, neo4j_exc.Neo4jError):
        code = exc.code or ""
        message = exc.message or str(exc)
        if code in _CONFLICT_CODES:
            return ConflictError(message)
        if code in _NOT_FOUND_CODES:
            return NotFoundError(message)
        if (
            graph is not None
            and code.startswith("Neo.ClientError")
            and any(marker in message for marker in _INVALID_NAME_MARKERS)
        ):
            return GraphNameUnsupportedError(graph, message)
        return InternalError(f"{code}: {message}" if code else message)
    if isinstance(exc, TimeoutError):
        return OperationTimeoutError(str(exc) or "operation timed out")

    logger.debug("Untyped driver failure: %r", exc)
    return InternalError(str(exc) or exc.__class__.__name__)
