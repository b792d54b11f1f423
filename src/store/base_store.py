# src/store/base_store.py - v1
"""Abstract graph store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from kgbridge.core.models import (
    AddNodesOptions,
    AddRelationshipsOptions,
    BackupOptions,
    CommunityOptions,
    ConstraintInfo,
    ConstraintSpec,
    DeleteNodesOptions,
    DeleteRelationshipsOptions,
    ExtractionResult,
    GetNodesOptions,
    GetRelationshipsOptions,
    GraphNode,
    GraphQuery,
    GraphRelationship,
    GraphSchema,
    GraphStats,
    IndexInfo,
    IndexSpec,
    QueryResult,
    RestoreOptions,
    RestoreReport,
    SaveExtractionReport,
    StoreConfig,
)


class BaseGraphStore(ABC):
    """Unified interface for graph store backends."""

    # --- Lifecycle ---

    @abstractmethod
    async def connect(self, config: StoreConfig | dict[str, Any] | None = None) -> None:
        """Open the backend connection."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the backend connection."""

    @abstractmethod
    def is_connected(self) -> bool:
        """True between a successful connect() and disconnect()."""

    # --- Graph catalog ---

    @abstractmethod
    async def create_graph(self, graph: str) -> None:
        """Create a logical graph (idempotent)."""

    @abstractmethod
    async def drop_graph(self, graph: str) -> None:
        """Drop a logical graph and all its data."""

    @abstractmethod
    async def graph_exists(self, graph: str) -> bool:
        """Authoritative existence check."""

    @abstractmethod
    async def list_graphs(self) -> list[str]:
        """Names of all graphs, sorted."""

    @abstractmethod
    async def describe_graph(self, graph: str) -> GraphStats:
        """Counts for one graph."""

    # --- Node CRUD ---

    @abstractmethod
    async def add_nodes(self, opts: AddNodesOptions) -> list[str]:
        """Persist nodes; returns their ids in input order."""

    @abstractmethod
    async def get_nodes(self, opts: GetNodesOptions) -> list[GraphNode]:
        """Nodes matching the filters, ordered by id."""

    @abstractmethod
    async def delete_nodes(self, opts: DeleteNodesOptions) -> int:
        """Delete matching nodes; returns the deleted count."""

    # --- Relationship CRUD ---

    @abstractmethod
    async def add_relationships(self, opts: AddRelationshipsOptions) -> list[str]:
        """Persist relationships; returns their ids in input order."""

    @abstractmethod
    async def get_relationships(self, opts: GetRelationshipsOptions) -> list[GraphRelationship]:
        """Relationships matching the filters, ordered by id."""

    @abstractmethod
    async def delete_relationships(self, opts: DeleteRelationshipsOptions) -> int:
        """Delete matching relationships; returns the deleted count."""

    # --- Schema ---

    @abstractmethod
    async def create_index(self, spec: IndexSpec) -> str:
        """Create an index; returns its logical name."""

    @abstractmethod
    async def drop_index(self, graph: str, name: str) -> None:
        """Drop an index by logical name."""

    @abstractmethod
    async def list_indexes(self, graph: str) -> list[IndexInfo]:
        """Indexes visible to one graph."""

    @abstractmethod
    async def create_constraint(self, spec: ConstraintSpec) -> str:
        """Create a constraint; returns its logical name."""

    @abstractmethod
    async def drop_constraint(self, graph: str, name: str) -> None:
        """Drop a constraint by logical name."""

    @abstractmethod
    async def list_constraints(self, graph: str) -> list[ConstraintInfo]:
        """Constraints visible to one graph."""

    @abstractmethod
    async def get_schema(self, graph: str) -> GraphSchema:
        """Labels, types, property keys, indexes and constraints."""

    # --- Query and analytics ---

    @abstractmethod
    async def query(self, query: GraphQuery | dict[str, Any]) -> QueryResult:
        """Run a cypher, traversal, path or analytics query."""

    @abstractmethod
    async def communities(self, opts: CommunityOptions) -> dict[int, list[str]]:
        """Community id -> member node ids."""

    # --- Ingestion and backup ---

    @abstractmethod
    async def save_extraction_results(
        self, graph: str | None, results: list[ExtractionResult | None]
    ) -> SaveExtractionReport:
        """Ingest extraction results with entity deduplication."""

    @abstractmethod
    async def backup(self, opts: BackupOptions) -> bytes:
        """Serialise one graph."""

    @abstractmethod
    async def restore(self, opts: RestoreOptions) -> RestoreReport:
        """Replay a backup into one graph."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider identifier."""
