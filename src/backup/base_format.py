# src/backup/base_format.py - v1
"""Abstract backup format interface and the in-memory graph snapshot."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

BACKUP_VERSION = 1


@dataclass
class GraphSnapshot:
    """Everything a backup carries for one graph, in stable scan order.

    Nodes are ``{id, labels, properties}`` maps and relationships are
    ``{id, type, start, end, properties}`` maps. ``properties`` holds the
    stored property map minus ``id``.
    """

    graph: str
    scope_label: str
    nodes: list[dict[str, Any]] = field(default_factory=list)
    relationships: list[dict[str, Any]] = field(default_factory=list)
    exported_at: int = 0


class BaseBackupFormat(ABC):
    """Unified interface for backup serialisation formats."""

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Format identifier ('json' or 'cypher')."""

    @property
    @abstractmethod
    def file_extension(self) -> str:
        """Backup file extension, without compression suffix."""

    @abstractmethod
    def encode(self, snapshot: GraphSnapshot) -> str:
        """Serialise a snapshot; identical snapshots give identical text."""

    @abstractmethod
    def matches(self, text: str) -> bool:
        """True when ``text`` looks like a backup written by this format."""
