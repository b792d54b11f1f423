# src/store/store.py - v1
"""Store facade: one object exposing the whole graph-store contract.

Usage:
    async with Store() as store:
        await store.connect({"url": "bolt://localhost:7687", "password": "secret"})
        await store.add_nodes(AddNodesOptions(graph="docs", nodes=[...]))

Subsystems are built leaf-first and share the ConnectionManager; none of
them holds a reference back to the Store. Option arguments accept either
the pydantic model or a plain dict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from kgbridge.backup.engine import BackupEngine
from kgbridge.core.errors import ConnectError, GraphValidationError
from kgbridge.core.models import (
    AddNodesOptions,
    AddRelationshipsOptions,
    BackupOptions,
    CommunityOptions,
    ConstraintInfo,
    ConstraintSpec,
    DEFAULT_BATCH_SIZE,
    DEFAULT_QUERY_LIMIT,
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
from kgbridge.ingestion.pipeline import ExtractionIngestor
from kgbridge.store.base_store import BaseGraphStore
from kgbridge.store.catalog import GraphCatalog
from kgbridge.store.communities import CommunityEngine
from kgbridge.store.connection import ConnectionManager, DriverFactory
from kgbridge.store.nodes import NodeEngine
from kgbridge.store.query import QueryEngine
from kgbridge.store.relationships import RelationshipEngine
from kgbridge.store.schema import SchemaManager

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_QUERY_ADAPTER: TypeAdapter[Any] = TypeAdapter(GraphQuery)


def _validated(model: type[M], value: M | dict[str, Any]) -> M:
    if isinstance(value, model):
        return value
    try:
        return model.model_validate(value)
    except ValidationError as exc:
        raise GraphValidationError(f"invalid {model.__name__}: {exc}") from exc


_BATCHED_OPTIONS = (
    AddNodesOptions,
    AddRelationshipsOptions,
    DeleteNodesOptions,
    DeleteRelationshipsOptions,
    RestoreOptions,
)
_LIMITED_OPTIONS = (GetNodesOptions, GetRelationshipsOptions)
_LIMITED_QUERY_KINDS = ("traversal", "analytics")


@dataclass(frozen=True)
class OperationDefaults:
    """Configured fallbacks for options passed as plain dicts.

    Options passed as models are used as-is; their own field defaults apply.
    """

    batch_size: int = DEFAULT_BATCH_SIZE
    query_limit: int = DEFAULT_QUERY_LIMIT
    community_algorithm: str = "leiden"
    community_resolution: float = 1.0
    community_seed: int | None = 42
    community_min_size: int = 1
    backup_format: str = "json"
    backup_compress: bool = False

    def for_model(self, model: type[BaseModel]) -> dict[str, Any]:
        if model in _BATCHED_OPTIONS:
            return {"batch_size": self.batch_size}
        if model in _LIMITED_OPTIONS:
            return {"limit": self.query_limit}
        if model is CommunityOptions:
            return {
                "algorithm": self.community_algorithm,
                "resolution": self.community_resolution,
                "seed": self.community_seed,
                "min_community_size": self.community_min_size,
            }
        if model is BackupOptions:
            return {"format": self.backup_format, "compress": self.backup_compress}
        return {}


class Store(BaseGraphStore):
    """Graph store backed by Neo4j over Bolt."""

    def __init__(
        self,
        config: StoreConfig | dict[str, Any] | None = None,
        driver_factory: DriverFactory | None = None,
        defaults: OperationDefaults | None = None,
    ) -> None:
        self._config = _validated(StoreConfig, config) if config is not None else None
        self.defaults = defaults or OperationDefaults()
        self.connection = ConnectionManager(driver_factory)
        self.catalog = GraphCatalog(self.connection)
        self.nodes = NodeEngine(self.connection, self.catalog)
        self.relationships = RelationshipEngine(self.connection, self.catalog)
        self.schema = SchemaManager(self.connection)
        self.queries = QueryEngine(self.connection)
        self.community_engine = CommunityEngine(self.connection)
        self.ingestor = ExtractionIngestor(
            self.connection, self.nodes, self.relationships, batch_size=self.defaults.batch_size
        )
        self.backups = BackupEngine(self.connection, self.catalog, self.nodes, self.relationships)

    def _options(self, model: type[M], value: M | dict[str, Any]) -> M:
        if isinstance(value, dict):
            value = {**self.defaults.for_model(model), **value}
        return _validated(model, value)

    @property
    def provider_name(self) -> str:
        return "neo4j"

    async def __aenter__(self) -> Store:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    # --- Lifecycle ---

    async def connect(self, config: StoreConfig | dict[str, Any] | None = None) -> None:
        """Connect with ``config`` or the configuration given at construction.

        Raises:
            ConnectError: No configuration available, or the connection failed.
            GraphValidationError: ``config`` does not describe a valid StoreConfig.
        """
        if config is not None:
            self._config = _validated(StoreConfig, config)
        if self._config is None:
            raise ConnectError("no connection configuration supplied")
        await self.connection.connect(self._config)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    def is_connected(self) -> bool:
        return self.connection.is_connected()

    async def reconnect(self) -> None:
        await self.connection.reconnect()

    def set_use_separate_database(self, value: bool) -> None:
        self.connection.set_use_separate_database(value)

    def set_enterprise_edition(self, value: bool) -> None:
        self.connection.set_enterprise_edition(value)

    def set_graph_label_prefix(self, prefix: str) -> None:
        self.connection.set_graph_label_prefix(prefix)

    # --- Graph catalog ---

    async def create_graph(self, graph: str) -> None:
        await self.catalog.create_graph(graph)

    async def drop_graph(self, graph: str) -> None:
        await self.catalog.drop_graph(graph)

    async def graph_exists(self, graph: str) -> bool:
        return await self.catalog.graph_exists(graph)

    async def list_graphs(self) -> list[str]:
        return await self.catalog.list_graphs()

    async def describe_graph(self, graph: str) -> GraphStats:
        return await self.catalog.describe_graph(graph)

    # --- Nodes ---

    async def add_nodes(self, opts: AddNodesOptions | dict[str, Any]) -> list[str]:
        return await self.nodes.add_nodes(self._options(AddNodesOptions, opts))

    async def get_nodes(self, opts: GetNodesOptions | dict[str, Any]) -> list[GraphNode]:
        return await self.nodes.get_nodes(self._options(GetNodesOptions, opts))

    async def delete_nodes(self, opts: DeleteNodesOptions | dict[str, Any]) -> int:
        return await self.nodes.delete_nodes(self._options(DeleteNodesOptions, opts))

    # --- Relationships ---

    async def add_relationships(self, opts: AddRelationshipsOptions | dict[str, Any]) -> list[str]:
        return await self.relationships.add_relationships(self._options(AddRelationshipsOptions, opts))

    async def get_relationships(
        self, opts: GetRelationshipsOptions | dict[str, Any]
    ) -> list[GraphRelationship]:
        return await self.relationships.get_relationships(self._options(GetRelationshipsOptions, opts))

    async def delete_relationships(self, opts: DeleteRelationshipsOptions | dict[str, Any]) -> int:
        return await self.relationships.delete_relationships(
            self._options(DeleteRelationshipsOptions, opts)
        )

    # --- Schema ---

    async def create_index(self, spec: IndexSpec | dict[str, Any]) -> str:
        return await self.schema.create_index(self._options(IndexSpec, spec))

    async def drop_index(self, graph: str, name: str) -> None:
        await self.schema.drop_index(graph, name)

    async def list_indexes(self, graph: str) -> list[IndexInfo]:
        return await self.schema.list_indexes(graph)

    async def create_constraint(self, spec: ConstraintSpec | dict[str, Any]) -> str:
        return await self.schema.create_constraint(self._options(ConstraintSpec, spec))

    async def drop_constraint(self, graph: str, name: str) -> None:
        await self.schema.drop_constraint(graph, name)

    async def list_constraints(self, graph: str) -> list[ConstraintInfo]:
        return await self.schema.list_constraints(graph)

    async def get_schema(self, graph: str) -> GraphSchema:
        return await self.schema.get_schema(graph)

    # --- Query and analytics ---

    async def query(self, query: GraphQuery | dict[str, Any]) -> QueryResult:
        """Run a query variant; a dict is dispatched on its ``kind`` key."""
        if isinstance(query, dict):
            if query.get("kind") in _LIMITED_QUERY_KINDS:
                query = {"limit": self.defaults.query_limit, **query}
            try:
                query = _QUERY_ADAPTER.validate_python(query)
            except ValidationError as exc:
                raise GraphValidationError(f"invalid query: {exc}") from exc
        return await self.queries.query(query)

    async def communities(self, opts: CommunityOptions | dict[str, Any]) -> dict[int, list[str]]:
        return await self.community_engine.communities(self._options(CommunityOptions, opts))

    # --- Ingestion and backup ---

    async def save_extraction_results(
        self,
        graph: str | None,
        results: list[ExtractionResult | dict[str, Any] | None],
    ) -> SaveExtractionReport:
        return await self.ingestor.save_extraction_results(graph, results)

    async def backup(self, opts: BackupOptions | dict[str, Any]) -> bytes:
        return await self.backups.backup(self._options(BackupOptions, opts))

    async def restore(self, opts: RestoreOptions | dict[str, Any]) -> RestoreReport:
        return await self.backups.restore(self._options(RestoreOptions, opts))
