# src/analytics/projection.py - v1
"""Load a scoped graph from the store into NetworkX for client-side analytics.

Parallel edges are collapsed, summing their weights. Edges without the
weight property (or with a non-numeric one) count as 1.0.
"""

from __future__ import annotations

import logging

import networkx as nx

from kgbridge.store.connection import ConnectionManager
from kgbridge.store.scope import Scope, escape_identifier

logger = logging.getLogger(__name__)


def _as_weight(value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 1.0
    return float(value)


async def load_projection(
    connection: ConnectionManager,
    scope: Scope,
    weight_property: str | None = None,
    directed: bool = False,
) -> nx.Graph:
    """Project the nodes and relationships of ``scope`` into a NetworkX graph.

    Args:
        connection: Connected manager used for the read transactions.
        scope: Resolved graph scope.
        weight_property: Relationship property used as edge weight.
        directed: Build a DiGraph instead of an undirected Graph.

    Returns:
        Graph whose node keys are node ids, inserted in id order so that
        seeded algorithms are reproducible.
    """
    anchor = escape_identifier(scope.anchor_label)
    node_rows = await connection.read(
        scope.database, f"MATCH (n:{anchor}) RETURN n.id AS id ORDER BY id", graph=scope.graph
    )
    edge_rows = await connection.read(
        scope.database,
        f"MATCH (s:{anchor})-[r]->(e:{anchor}) "
        "RETURN s.id AS source, e.id AS target, "
        "CASE WHEN $weight IS NULL THEN null ELSE r[$weight] END AS weight "
        "ORDER BY source, target",
        {"weight": weight_property},
        graph=scope.graph,
    )

    graph: nx.Graph = nx.DiGraph() if directed else nx.Graph()
    graph.add_nodes_from(r["id"] for r in node_rows if r["id"] is not None)
    for row in edge_rows:
        source, target = row["source"], row["target"]
        if source is None or target is None:
            continue
        weight = _as_weight(row["weight"]) if weight_property else 1.0
        if graph.has_edge(source, target):
            graph[source][target]["weight"] += weight
        else:
            graph.add_edge(source, target, weight=weight)

    logger.debug(
        "Projected %s: %d node(s), %d edge(s)",
        scope.graph, graph.number_of_nodes(), graph.number_of_edges(),
    )
    return graph
