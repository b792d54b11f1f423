# src/analytics/community_detector.py - v1
"""Community detection: Leiden, Louvain and label propagation.

Pure functions over a NetworkX graph; loading from the store happens in
store/communities.py. Output is a mapping from community id to sorted
member ids. Communities are numbered by their smallest member id, so two
runs over the same graph with the same seed compare equal.
"""

from __future__ import annotations

import logging
from typing import Iterable

import networkx as nx

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("leiden", "louvain", "label_propagation")


class UnsupportedAlgorithmError(ValueError):
    """Raised for a community algorithm name that is not supported."""


def detect_communities(
    graph: nx.Graph,
    algorithm: str = "leiden",
    resolution: float = 1.0,
    max_iterations: int = 10,
    tolerance: float = 1e-7,
    seed: int | None = 42,
    min_community_size: int = 1,
) -> dict[int, list[str]]:
    """Partition an undirected graph into communities.

    Args:
        graph: Undirected graph; edge attribute ``weight`` is honoured.
        algorithm: "leiden", "louvain" or "label_propagation".
        resolution: Resolution parameter (Leiden and Louvain only).
        max_iterations: Iteration cap (Leiden only; Louvain stops on
            ``tolerance``, label propagation on convergence).
        tolerance: Modularity gain threshold for Louvain.
        seed: Random seed for reproducibility.
        min_community_size: Communities smaller than this are discarded.

    Returns:
        Dict mapping community id to the sorted list of member node ids.
    """
    if graph.number_of_nodes() == 0:
        return {}

    if algorithm == "leiden":
        partition = _leiden_partition(graph, resolution, max_iterations, seed)
    elif algorithm == "louvain":
        partition = nx.community.louvain_communities(
            graph, weight="weight", resolution=resolution, threshold=tolerance, seed=seed
        )
    elif algorithm == "label_propagation":
        partition = nx.community.asyn_lpa_communities(graph, weight="weight", seed=seed)
    else:
        raise UnsupportedAlgorithmError(
            f"Unsupported community algorithm: {algorithm!r}. "
            f"Supported: {', '.join(SUPPORTED_ALGORITHMS)}"
        )

    communities = number_communities(partition, min_community_size)
    covered = sum(len(members) for members in communities.values())
    if graph.number_of_edges() > 0 and covered == graph.number_of_nodes():
        modularity = nx.community.modularity(
            graph, [set(m) for m in communities.values()], weight="weight"
        )
        logger.info(
            "%s found %d communities (modularity=%.4f)", algorithm, len(communities), modularity
        )
    else:
        logger.info("%s found %d communities", algorithm, len(communities))
    return communities


def number_communities(
    partition: Iterable[Iterable[str]], min_community_size: int = 1
) -> dict[int, list[str]]:
    """Deterministic numbering: sort members, order communities by first member."""
    groups = [sorted(members) for members in partition]
    groups = [g for g in groups if g and len(g) >= min_community_size]
    groups.sort(key=lambda members: members[0])
    return {i: members for i, members in enumerate(groups)}


def _leiden_partition(
    graph: nx.Graph,
    resolution: float,
    max_iterations: int,
    seed: int | None,
) -> list[list[str]]:
    """Leiden-based detection via leidenalg + igraph."""
    import igraph as ig
    import leidenalg

    # Convert NetworkX -> igraph with a stable vertex order
    node_list = sorted(graph.nodes)
    node_index = {n: i for i, n in enumerate(node_list)}
    edges = sorted(
        (min(node_index[u], node_index[v]), max(node_index[u], node_index[v]), d.get("weight", 1.0))
        for u, v, d in graph.edges(data=True)
    )
    ig_graph = ig.Graph(n=len(node_list), edges=[(u, v) for u, v, _ in edges])
    ig_graph.vs["name"] = node_list
    ig_graph.es["weight"] = [w for _, _, w in edges]

    partition = leidenalg.find_partition(
        ig_graph,
        leidenalg.RBConfigurationVertexPartition,
        weights="weight",
        resolution_parameter=resolution,
        n_iterations=max_iterations,
        seed=seed if seed is not None else 0,
    )
    return [[node_list[i] for i in members] for members in partition]
