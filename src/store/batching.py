# src/store/batching.py - v1
"""Batch partitioning and label-set grouping for UNWIND writes.

Labels and relationship types cannot be parameterised, so each distinct
label-set (or type) inside a batch becomes one UNWIND statement.
"""

from __future__ import annotations

from typing import Callable, Iterator, Sequence, TypeVar

T = TypeVar("T")

SIGNATURE_DELIMITER = "|"


def iter_batches(items: Sequence[T], batch_size: int) -> Iterator[tuple[int, int, Sequence[T]]]:
    """Yield ``(start, end, chunk)`` with inclusive 0-based input indices."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    for start in range(0, len(items), batch_size):
        chunk = items[start:start + batch_size]
        yield start, start + len(chunk) - 1, chunk


def signature(labels: Sequence[str]) -> str:
    return SIGNATURE_DELIMITER.join(labels)


def group_by_signature(items: Sequence[T], key: Callable[[T], str]) -> dict[str, list[T]]:
    """Group items by signature, preserving first-seen group order and item order."""
    groups: dict[str, list[T]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups
