# src/store/query.py - v1
"""Query engine: dispatch of cypher, traversal, path and analytics queries.

Traversal and path queries project nodes and relationships into plain maps
server-side, so results are parsed with the same helpers as the node and
relationship engines. Analytics other than degree and stats run
client-side over a NetworkX projection; the graph data science plugin is
not assumed to be installed.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any

import networkx as nx

from kgbridge.analytics.centrality import compute_centrality, rank_scores
from kgbridge.analytics.projection import load_projection
from kgbridge.core.errors import GraphValidationError, InternalError, NotFoundError
from kgbridge.core.models import (
    AnalyticsQuery,
    CypherQuery,
    GraphNode,
    GraphQuery,
    GraphRelationship,
    PathQuery,
    PathResult,
    QueryResult,
    TraversalQuery,
)
from kgbridge.logging.context import operation_context
from kgbridge.store.connection import ConnectionManager, bounded
from kgbridge.store.nodes import parse_node
from kgbridge.store.relationships import parse_relationship, type_expression
from kgbridge.store.scope import Scope, escape_identifier, property_predicates

logger = logging.getLogger(__name__)

_WRITE_KEYWORDS_RE = re.compile(
    r"\b(CREATE|MERGE|DELETE|DETACH|SET|REMOVE|DROP|FOREACH|LOAD\s+CSV)\b", re.IGNORECASE
)

# Server-side projection of a path into plain maps.
_PATH_PROJECTION = (
    "[x IN nodes(p) | {id: x.id, labels: labels(x), properties: properties(x)}] AS nodes, "
    "[r IN relationships(p) | {id: r.id, type: type(r), start_node: startNode(r).id, "
    "end_node: endNode(r).id, properties: properties(r)}] AS relationships"
)


def is_read_only(statement: str) -> bool:
    """Heuristic: a statement without write keywords runs in a read transaction."""
    return _WRITE_KEYWORDS_RE.search(statement) is None


def _arrow(direction: str, pattern: str) -> str:
    if direction == "out":
        return f"-{pattern}->"
    if direction == "in":
        return f"<-{pattern}-"
    return f"-{pattern}-"


class QueryEngine:
    """Structured query dispatch for one ConnectionManager."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._conn = connection

    async def query(self, query: GraphQuery) -> QueryResult:
        """Run a query variant; records are returned in server order."""
        scope = self._conn.scope(query.graph)
        with operation_context(query.graph, f"query:{query.kind}"):
            started = time.perf_counter()
            result = await bounded(self._dispatch(scope, query), query.timeout)
            result.elapsed_ms = int((time.perf_counter() - started) * 1000)
            result.row_count = len(result.records)
            logger.debug(
                "%s query returned %d row(s) in %d ms",
                query.kind, result.row_count, result.elapsed_ms,
            )
            return result

    async def _dispatch(self, scope: Scope, query: GraphQuery) -> QueryResult:
        if isinstance(query, CypherQuery):
            return await self._cypher(scope, query)
        if isinstance(query, TraversalQuery):
            return await self._traversal(scope, query)
        if isinstance(query, PathQuery):
            return await self._path(scope, query)
        if isinstance(query, AnalyticsQuery):
            return await self._analytics(scope, query)
        raise GraphValidationError(f"unsupported query kind: {getattr(query, 'kind', query)!r}")

    # --- cypher ---

    async def _cypher(self, scope: Scope, query: CypherQuery) -> QueryResult:
        if not query.statement.strip():
            raise GraphValidationError("cypher statement must not be empty")
        params = dict(query.parameters)
        params.setdefault("graph", scope.graph)
        if scope.graph_label is not None:
            params.setdefault("graph_label", scope.graph_label)
        read_only = query.read_only if query.read_only is not None else is_read_only(query.statement)
        if read_only:
            records = await self._conn.read(scope.database, query.statement, params, graph=scope.graph)
        else:
            records = await self._conn.write(scope.database, query.statement, params, graph=scope.graph)
        return QueryResult(kind="cypher", records=records)

    # --- traversal ---

    async def _traversal(self, scope: Scope, query: TraversalQuery) -> QueryResult:
        if query.min_depth > query.max_depth:
            raise GraphValidationError("min_depth must not exceed max_depth")
        anchor = escape_identifier(scope.anchor_label)
        params: dict[str, Any] = {"start_nodes": list(query.start_nodes), "limit": query.limit}
        pattern = f"[{type_expression(query.relationship_types)}*{query.min_depth}..{query.max_depth}]"
        arrow = _arrow(query.direction, pattern)
        clauses = ["start.id IN $start_nodes", f"all(x IN nodes(p) WHERE x:{anchor})"]
        clauses.extend(property_predicates("n", query.node_filter, "f", params))
        statement = (
            f"MATCH p = (start:{anchor}){arrow}(n:{anchor}) "
            f"WHERE {' AND '.join(clauses)} "
            f"RETURN n.id AS end_node, length(p) AS depth, {_PATH_PROJECTION} "
            "ORDER BY depth, end_node LIMIT $limit"
        )
        try:
            rows = await self._conn.read(scope.database, statement, params, graph=scope.graph)
        except NotFoundError:
            rows = []
        return self._path_result("traversal", rows, scope)

    # --- path ---

    async def _path(self, scope: Scope, query: PathQuery) -> QueryResult:
        if query.source == query.target:
            raise GraphValidationError("path source and target must differ")
        anchor = escape_identifier(scope.anchor_label)
        function = "allShortestPaths" if query.all_shortest else "shortestPath"
        pattern = f"[{type_expression(query.relationship_types)}*..{query.max_depth}]"
        statement = (
            f"MATCH (source:{anchor} {{id: $source}}), (target:{anchor} {{id: $target}}) "
            f"MATCH p = {function}((source)-{pattern}-(target)) "
            f"WHERE all(x IN nodes(p) WHERE x:{anchor}) "
            f"RETURN $target AS end_node, length(p) AS depth, {_PATH_PROJECTION}"
        )
        params = {"source": query.source, "target": query.target}
        try:
            rows = await self._conn.read(scope.database, statement, params, graph=scope.graph)
        except NotFoundError:
            rows = []
        return self._path_result("path", rows, scope)

    def _path_result(self, kind: str, rows: list[dict[str, Any]], scope: Scope) -> QueryResult:
        nodes: dict[str, GraphNode] = {}
        relationships: dict[str, GraphRelationship] = {}
        paths: list[PathResult] = []
        records: list[dict[str, Any]] = []
        for row in rows:
            path_nodes = [parse_node(n, scope) for n in row.get("nodes") or []]
            path_rels = [parse_relationship(r) for r in row.get("relationships") or []]
            for node in path_nodes:
                nodes.setdefault(node.id, node)
            for rel in path_rels:
                relationships.setdefault(rel.id, rel)
            paths.append(PathResult(nodes=path_nodes, relationships=path_rels))
            records.append({
                "end_node": row.get("end_node"),
                "depth": row.get("depth"),
                "node_ids": [n.id for n in path_nodes],
                "relationship_ids": [r.id for r in path_rels],
            })
        return QueryResult(
            kind=kind,
            records=records,
            nodes=list(nodes.values()),
            relationships=list(relationships.values()),
            paths=paths,
        )

    # --- analytics ---

    async def _analytics(self, scope: Scope, query: AnalyticsQuery) -> QueryResult:
        anchor = escape_identifier(scope.anchor_label)
        if query.algorithm == "degree":
            direction = query.parameters.get("direction", "both")
            arrow = _arrow(direction, "[r]")
            records = await self._conn.read(
                scope.database,
                f"MATCH (n:{anchor}) OPTIONAL MATCH (n){arrow}(:{anchor}) "
                "RETURN n.id AS node_id, toFloat(count(r)) AS score "
                "ORDER BY score DESC, node_id LIMIT $limit",
                {"limit": query.limit},
                graph=scope.graph,
            )
            return QueryResult(kind="analytics", records=records)

        if query.algorithm == "stats":
            nodes = await self._conn.read(
                scope.database, f"MATCH (n:{anchor}) RETURN count(n) AS count", graph=scope.graph
            )
            rels = await self._conn.read(
                scope.database,
                f"MATCH (:{anchor})-[r]->(:{anchor}) RETURN count(r) AS count",
                graph=scope.graph,
            )
            node_count = nodes[0]["count"] if nodes else 0
            rel_count = rels[0]["count"] if rels else 0
            density = rel_count / (node_count * (node_count - 1)) if node_count > 1 else 0.0
            return QueryResult(kind="analytics", records=[{
                "node_count": node_count,
                "relationship_count": rel_count,
                "average_degree": (2 * rel_count / node_count) if node_count else 0.0,
                "density": density,
            }])

        graph = await load_projection(
            self._conn, scope,
            weight_property=query.parameters.get("weight_property"),
            directed=query.algorithm == "pageRank",
        )
        try:
            scores = compute_centrality(graph, query.algorithm, query.parameters)
        except nx.NetworkXException as exc:
            raise InternalError(f"{query.algorithm} failed: {exc}") from exc
        return QueryResult(kind="analytics", records=rank_scores(scores, query.limit))
