# src/analytics/centrality.py - v1
"""Centrality scores over a projected graph (pageRank, betweenness, closeness).

Degree is computed server-side by the query engine; it is also available
here for graphs that are already projected.
"""

from __future__ import annotations

import logging
from typing import Any

import networkx as nx

logger = logging.getLogger(__name__)

DEFAULT_DAMPING = 0.85
DEFAULT_MAX_ITER = 100
DEFAULT_TOL = 1e-6

CENTRALITY_ALGORITHMS = ("pageRank", "betweenness", "closeness", "degree")


def compute_centrality(
    graph: nx.Graph, algorithm: str, parameters: dict[str, Any] | None = None
) -> dict[str, float]:
    """Score every node of ``graph``.

    Args:
        graph: Projected graph (DiGraph for pageRank keeps edge direction).
        algorithm: One of CENTRALITY_ALGORITHMS.
        parameters: ``damping_factor``, ``max_iterations``, ``tolerance``
            (pageRank); ``normalized`` (betweenness); ``weighted`` uses the
            edge weight as pageRank weight / path distance.

    Returns:
        Dict mapping node id to score.
    """
    params = parameters or {}
    if graph.number_of_nodes() == 0:
        return {}
    weight = "weight" if params.get("weighted") else None
    logger.debug("Computing %s over %d node(s)", algorithm, graph.number_of_nodes())

    if algorithm == "pageRank":
        return nx.pagerank(
            graph,
            alpha=float(params.get("damping_factor", DEFAULT_DAMPING)),
            max_iter=int(params.get("max_iterations", DEFAULT_MAX_ITER)),
            tol=float(params.get("tolerance", DEFAULT_TOL)),
            weight=weight,
        )
    if algorithm == "betweenness":
        return nx.betweenness_centrality(
            graph, normalized=bool(params.get("normalized", True)), weight=weight
        )
    if algorithm == "closeness":
        return nx.closeness_centrality(graph, distance=weight)
    if algorithm == "degree":
        return {node: float(deg) for node, deg in graph.degree()}
    raise ValueError(f"Unsupported centrality algorithm: {algorithm!r}")


def rank_scores(scores: dict[str, float], limit: int | None = None) -> list[dict[str, Any]]:
    """Records sorted by descending score, ties broken by node id."""
    ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ranked = ranked[:limit]
    return [{"node_id": node, "score": score} for node, score in ranked]
