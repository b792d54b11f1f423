# src/store/catalog.py - v1
"""Graph catalog: create, drop, list, exists and describe logical graphs.

Separate-database mode maps a graph to a physical database managed through
the system database. Label-based mode records graphs with a marker node
(which carries no graph label, so node queries never see it) and scopes
data with the synthetic label.
"""

from __future__ import annotations

import logging
import threading
import time

from kgbridge.core.errors import GraphValidationError, NotFoundError
from kgbridge.core.models import GraphStats
from kgbridge.store.connection import ConnectionManager
from kgbridge.store.scope import (
    DEFAULT_DATABASE,
    GRAPH_MARKER_LABEL,
    SYSTEM_DATABASE,
    Scope,
    ensure_database_name,
    escape_identifier,
    visible_labels,
)

logger = logging.getLogger(__name__)

DROP_BATCH_SIZE = 10_000
_PROTECTED_DATABASES = frozenset({DEFAULT_DATABASE, SYSTEM_DATABASE})


def id_constraint_name(scope: Scope) -> str:
    """Name of the uniqueness constraint anchoring node ids in a scope."""
    if scope.kind == "database":
        return "kgbridge_node_id"
    return f"kgbridge_{scope.anchor_label}_id"


class GraphCatalog:
    """Lifecycle of logical graphs."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._conn = connection
        self._known: set[Scope] = set()
        self._known_lock = threading.Lock()

    # --- Registry ---

    def _remember(self, scope: Scope) -> None:
        with self._known_lock:
            self._known.add(scope)

    def _forget(self, scope: Scope) -> None:
        with self._known_lock:
            self._known.discard(scope)

    def is_known(self, scope: Scope) -> bool:
        with self._known_lock:
            return scope in self._known

    # --- Operations ---

    async def create_graph(self, graph: str) -> None:
        """Create a graph. Idempotent in both modes."""
        scope = self._conn.scope(graph)
        await self.create_scope(scope)

    async def create_scope(self, scope: Scope) -> None:
        if scope.kind == "database":
            ensure_database_name(scope.graph)
            await self._conn.system(
                f"CREATE DATABASE {escape_identifier(scope.database)} IF NOT EXISTS WAIT",
                graph=scope.graph,
            )
        else:
            await self._conn.write(
                scope.database,
                f"MERGE (m:{escape_identifier(GRAPH_MARKER_LABEL)} {{name: $name}}) "
                "ON CREATE SET m.created_at = $now, m.graph_label = $label",
                {"name": scope.graph, "now": int(time.time()), "label": scope.anchor_label},
                graph=scope.graph,
            )
        await self._conn.run_auto(
            scope.database,
            f"CREATE CONSTRAINT {escape_identifier(id_constraint_name(scope))} IF NOT EXISTS "
            f"FOR (n:{escape_identifier(scope.anchor_label)}) REQUIRE n.id IS UNIQUE",
            graph=scope.graph,
        )
        self._remember(scope)
        logger.info("Created graph %s (%s)", scope.graph, scope.storage_type)

    async def ensure_scope(self, scope: Scope) -> None:
        """Create the graph behind ``scope`` unless it is already known to exist."""
        if self.is_known(scope):
            return
        if await self.scope_exists(scope):
            self._remember(scope)
            return
        await self.create_scope(scope)

    async def drop_graph(self, graph: str) -> None:
        """Drop a graph and all its data. Dropping a missing graph is a no-op."""
        scope = self._conn.scope(graph)
        if scope.kind == "database":
            if scope.database in _PROTECTED_DATABASES:
                raise GraphValidationError(f"refusing to drop the {scope.database!r} database")
            await self._conn.system(
                f"DROP DATABASE {escape_identifier(scope.database)} IF EXISTS DESTROY DATA WAIT",
                graph=graph,
            )
            self._forget(scope)
            logger.info("Dropped database %s", scope.database)
            return

        total = await self.clear_scope(scope)
        await self._conn.write(
            scope.database,
            f"MATCH (m:{escape_identifier(GRAPH_MARKER_LABEL)} {{name: $name}}) DELETE m",
            {"name": graph},
            graph=graph,
        )
        await self._conn.run_auto(
            scope.database,
            f"DROP CONSTRAINT {escape_identifier(id_constraint_name(scope))} IF EXISTS",
            graph=graph,
        )
        self._forget(scope)
        logger.info("Dropped graph %s (%d node(s) deleted)", graph, total)

    async def clear_scope(self, scope: Scope) -> int:
        """Detach-delete every node of a scope in bounded batches; returns the count."""
        label = escape_identifier(scope.anchor_label)
        total = 0
        while True:
            records = await self._conn.write(
                scope.database,
                f"MATCH (n:{label}) WITH n LIMIT $limit DETACH DELETE n "
                "RETURN count(n) AS deleted",
                {"limit": DROP_BATCH_SIZE},
                graph=scope.graph,
            )
            deleted = records[0]["deleted"] if records else 0
            total += deleted
            logger.debug("Clear %s: deleted batch of %d node(s)", scope.graph, deleted)
            if deleted < DROP_BATCH_SIZE:
                return total

    def is_protected(self, scope: Scope) -> bool:
        return scope.kind == "database" and scope.database in _PROTECTED_DATABASES

    async def graph_exists(self, graph: str) -> bool:
        """Authoritative existence check; always queries the server."""
        return await self.scope_exists(self._conn.scope(graph))

    async def scope_exists(self, scope: Scope) -> bool:
        if scope.kind == "database":
            records = await self._conn.system(
                "SHOW DATABASES YIELD name WHERE name = $name RETURN name",
                {"name": scope.database},
                graph=scope.graph,
            )
            return bool(records)
        records = await self._conn.read(
            scope.database,
            f"RETURN EXISTS {{ MATCH (m:{escape_identifier(GRAPH_MARKER_LABEL)} {{name: $name}}) }} "
            f"OR EXISTS {{ MATCH (n:{escape_identifier(scope.anchor_label)}) }} AS present",
            {"name": scope.graph},
            graph=scope.graph,
        )
        return bool(records and records[0]["present"])

    async def list_graphs(self) -> list[str]:
        """Names of all graphs visible in the current mode, sorted."""
        state = self._conn.snapshot()
        if state.use_separate_database:
            records = await self._conn.system("SHOW DATABASES YIELD name RETURN DISTINCT name")
            return sorted({r["name"] for r in records if r["name"] != SYSTEM_DATABASE})

        names: set[str] = set()
        records = await self._conn.read(
            DEFAULT_DATABASE,
            f"MATCH (m:{escape_identifier(GRAPH_MARKER_LABEL)}) RETURN m.name AS name",
        )
        names.update(r["name"] for r in records if r["name"])

        prefix = state.graph_label_prefix
        if prefix:
            records = await self._conn.read(
                DEFAULT_DATABASE,
                "CALL db.labels() YIELD label WHERE label STARTS WITH $prefix RETURN label",
                {"prefix": prefix},
            )
            names.update(r["label"][len(prefix):] for r in records if len(r["label"]) > len(prefix))
        return sorted(names)

    async def describe_graph(self, graph: str) -> GraphStats:
        """Node and relationship counts for one graph.

        Raises:
            NotFoundError: If the graph does not exist.
        """
        scope = self._conn.scope(graph)
        if not await self.scope_exists(scope):
            raise NotFoundError(f"graph {graph!r} does not exist")

        label = escape_identifier(scope.anchor_label)
        label_rows = await self._conn.read(
            scope.database,
            f"MATCH (n:{label}) UNWIND labels(n) AS label "
            "RETURN label, count(*) AS count ORDER BY label",
            graph=graph,
        )
        node_rows = await self._conn.read(
            scope.database, f"MATCH (n:{label}) RETURN count(n) AS count", graph=graph
        )
        type_rows = await self._conn.read(
            scope.database,
            f"MATCH (:{label})-[r]->(:{label}) "
            "RETURN type(r) AS type, count(*) AS count ORDER BY type",
            graph=graph,
        )

        shown = set(visible_labels([r["label"] for r in label_rows], scope))
        return GraphStats(
            graph=graph,
            total_nodes=node_rows[0]["count"] if node_rows else 0,
            total_relationships=sum(r["count"] for r in type_rows),
            node_labels={r["label"]: r["count"] for r in label_rows if r["label"] in shown},
            relationship_types={r["type"]: r["count"] for r in type_rows},
            storage_type=scope.storage_type,  # type: ignore[arg-type]
            database_name=scope.database,
            graph_label=scope.graph_label,
        )
