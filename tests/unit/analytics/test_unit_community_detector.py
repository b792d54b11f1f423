# tests/unit/analytics/test_unit_community_detector.py - v1
"""Tests for analytics/community_detector.py."""

from __future__ import annotations

import networkx as nx
import pytest

from kgbridge.analytics.community_detector import (
    UnsupportedAlgorithmError,
    detect_communities,
    number_communities,
)


@pytest.fixture
def barbell() -> nx.Graph:
    """Two 4-cliques joined by a single bridge edge."""
    graph = nx.Graph()
    left, right = ["a", "b", "c", "d"], ["w", "x", "y", "z"]
    for group in (left, right):
        for i, u in enumerate(group):
            for v in group[i + 1:]:
                graph.add_edge(u, v, weight=1.0)
    graph.add_edge("d", "w", weight=1.0)
    return graph


class TestNumbering:
    def test_ordered_by_smallest_member(self):
        assert number_communities([{"z", "y"}, {"b", "a"}]) == {0: ["a", "b"], 1: ["y", "z"]}

    def test_min_size_filter(self):
        assert number_communities([["a"], ["b", "c"]], min_community_size=2) == {0: ["b", "c"]}


class TestDetectCommunities:
    def test_empty_graph(self):
        assert detect_communities(nx.Graph()) == {}

    @pytest.mark.parametrize("algorithm", ["leiden", "louvain"])
    def test_barbell_splits(self, barbell, algorithm):
        result = detect_communities(barbell, algorithm=algorithm, seed=7)
        assert result == {0: ["a", "b", "c", "d"], 1: ["w", "x", "y", "z"]}

    def test_seeded_runs_are_stable(self, barbell):
        first = detect_communities(barbell, algorithm="louvain", seed=1)
        second = detect_communities(barbell, algorithm="louvain", seed=1)
        assert first == second

    def test_isolated_nodes_are_singletons(self):
        graph = nx.Graph()
        graph.add_nodes_from(["a", "b"])
        assert detect_communities(graph, algorithm="label_propagation") == {0: ["a"], 1: ["b"]}

    def test_unknown_algorithm(self, barbell):
        with pytest.raises(UnsupportedAlgorithmError):
            detect_communities(barbell, algorithm="girvan_newman")
