# tests/integration/store/test_int_neo4j_store.py - v1
"""Integration tests for the Neo4j store via testcontainers.

Runs the end-to-end contract against a real Neo4j 5 server in label-based
mode (the community image has no multi-database support).

Container: session-scoped via conftest.neo4j_container
Isolation: per-test unique graph name via conftest.graph_name
"""

from __future__ import annotations

import asyncio

import pytest

from kgbridge import Store
from kgbridge.core.errors import ConnectError, GraphValidationError
from kgbridge.core.models import (
    AddNodesOptions,
    AddRelationshipsOptions,
    DeleteNodesOptions,
    ExtractedNode,
    ExtractedRelationship,
    ExtractionResult,
    GetNodesOptions,
    GetRelationshipsOptions,
    GraphNode,
    GraphRelationship,
    RestoreOptions,
)

pytestmark = [pytest.mark.neo4j]


# =====================================================================
#  LIFECYCLE
# =====================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_list_drop(self, neo4j_store, graph_name):
        await neo4j_store.create_graph(graph_name)
        assert await neo4j_store.graph_exists(graph_name)
        assert graph_name in await neo4j_store.list_graphs()
        await neo4j_store.drop_graph(graph_name)
        assert not await neo4j_store.graph_exists(graph_name)

    @pytest.mark.asyncio
    async def test_separate_database_needs_enterprise(self, neo4j_config):
        store = Store({**neo4j_config, "use_separate_database": True})
        with pytest.raises(ConnectError):
            await store.connect()
        assert store.is_connected() is False


# =====================================================================
#  NODES AND RELATIONSHIPS
# =====================================================================


class TestNodes:
    @pytest.mark.asyncio
    async def test_empty_add_creates_nothing(self, neo4j_store, graph_name):
        assert await neo4j_store.add_nodes(AddNodesOptions(graph=graph_name)) == []
        assert not await neo4j_store.graph_exists(graph_name)

    @pytest.mark.asyncio
    async def test_upsert_cycle_keeps_created_at(self, neo4j_store, graph_name):
        await neo4j_store.add_nodes(AddNodesOptions(
            graph=graph_name, nodes=[GraphNode(id="a", properties={"k": 1}, version=1)],
        ))
        first = (await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name, ids=["a"])))[0]
        await neo4j_store.add_nodes(AddNodesOptions(
            graph=graph_name, nodes=[GraphNode(id="a", properties={"k": 2})],
        ))
        nodes = await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name, ids=["a"]))
        assert len(nodes) == 1
        assert nodes[0].properties["k"] == 2
        assert nodes[0].created_at == first.created_at
        assert nodes[0].updated_at >= first.updated_at
        assert nodes[0].version == 2

    @pytest.mark.asyncio
    async def test_graphs_are_isolated(self, neo4j_store, graph_name):
        other = f"{graph_name}-other"
        try:
            await neo4j_store.add_nodes(AddNodesOptions(graph=graph_name, nodes=[GraphNode(id="x")]))
            await neo4j_store.add_nodes(AddNodesOptions(graph=other, nodes=[GraphNode(id="x")]))
            assert len(await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name))) == 1
            await neo4j_store.drop_graph(other)
            assert len(await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name))) == 1
        finally:
            await neo4j_store.drop_graph(other)

    @pytest.mark.asyncio
    async def test_delete_guardrail(self, neo4j_store, graph_name):
        await neo4j_store.add_nodes(AddNodesOptions(graph=graph_name, nodes=[GraphNode(id="a")]))
        with pytest.raises(GraphValidationError):
            await neo4j_store.delete_nodes(DeleteNodesOptions(graph=graph_name))
        assert len(await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name))) == 1

    @pytest.mark.asyncio
    async def test_relationships_roundtrip(self, neo4j_store, graph_name):
        await neo4j_store.add_nodes(AddNodesOptions(
            graph=graph_name, nodes=[GraphNode(id="a"), GraphNode(id="b")],
        ))
        ids = await neo4j_store.add_relationships(AddRelationshipsOptions(
            graph=graph_name,
            relationships=[GraphRelationship(type="KNOWS", start_node="a", end_node="b", weight=0.5)],
        ))
        assert ids == ["a_KNOWS_b"]
        rels = await neo4j_store.get_relationships(GetRelationshipsOptions(
            graph=graph_name, node_ids=["a"], direction="out",
        ))
        assert [(r.start_node, r.end_node, r.weight) for r in rels] == [("a", "b", 0.5)]

    @pytest.mark.asyncio
    async def test_concurrent_writers(self, neo4j_store, graph_name):
        await neo4j_store.create_graph(graph_name)

        async def worker(w: int) -> None:
            for op in range(5):
                await neo4j_store.add_nodes(AddNodesOptions(
                    graph=graph_name, nodes=[GraphNode(id=f"w{w}-{op}")],
                ))

        before = asyncio.all_tasks()
        await asyncio.gather(*(worker(w) for w in range(10)))
        stats = await neo4j_store.describe_graph(graph_name)
        assert stats.total_nodes == 50
        assert asyncio.all_tasks() == before


# =====================================================================
#  INGESTION
# =====================================================================


class TestIngestion:
    @pytest.mark.asyncio
    async def test_dedup_across_calls(self, neo4j_store, graph_name):
        await neo4j_store.save_extraction_results(graph_name, [ExtractionResult(nodes=[
            ExtractedNode(id="alice_1", name="Alice Smith", type="Person", source_documents=["d1"]),
        ])])
        await neo4j_store.save_extraction_results(graph_name, [ExtractionResult(nodes=[
            ExtractedNode(id="alice_2", name="Alice Smith", type="Person", source_documents=["d2"]),
        ])])
        nodes = await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name, labels=["Person"]))
        assert len(nodes) == 1
        assert nodes[0].properties["name"] == "Alice Smith"
        assert set(nodes[0].source_documents) == {"d1", "d2"}

    @pytest.mark.asyncio
    async def test_dedup_across_calls_without_type(self, neo4j_store, graph_name):
        await neo4j_store.save_extraction_results(graph_name, [ExtractionResult(nodes=[
            ExtractedNode(id="x1", name="Alice"),
        ])])
        report = await neo4j_store.save_extraction_results(graph_name, [ExtractionResult(nodes=[
            ExtractedNode(id="x2", name="alice"),
        ])])
        assert report.saved_entities == ["x1"]
        nodes = await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name))
        assert [n.id for n in nodes] == ["x1"]

    @pytest.mark.asyncio
    async def test_relationship_remap_to_persisted(self, neo4j_store, graph_name):
        await neo4j_store.save_extraction_results(graph_name, [ExtractionResult(nodes=[
            ExtractedNode(id="alice_persisted", name="Alice", type="Person"),
        ])])
        report = await neo4j_store.save_extraction_results(graph_name, [ExtractionResult(
            nodes=[
                ExtractedNode(id="alice_new", name="alice", type="Person"),
                ExtractedNode(id="co_x", name="Co X", type="Company"),
            ],
            relationships=[ExtractedRelationship(type="WORKS_FOR", start_node="alice_new", end_node="co_x")],
        )])
        assert report.failed_count == 0
        rels = await neo4j_store.get_relationships(GetRelationshipsOptions(
            graph=graph_name, types=["WORKS_FOR"],
        ))
        assert [(r.start_node, r.end_node) for r in rels] == [("alice_persisted", "co_x")]


# =====================================================================
#  BACKUP / RESTORE
# =====================================================================


class TestBackupRestore:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("fmt", ["json", "cypher"])
    async def test_roundtrip_into_empty_graph(self, neo4j_store, graph_name, fmt):
        copy = f"{graph_name}-copy"
        await neo4j_store.add_nodes(AddNodesOptions(graph=graph_name, nodes=[
            GraphNode(id="a", labels=["Person"], properties={"name": 'Ann "the" first', "tags": ["x"]}),
            GraphNode(id="b", labels=["Person"], properties={"name": "Bob"}),
        ]))
        await neo4j_store.add_relationships(AddRelationshipsOptions(graph=graph_name, relationships=[
            GraphRelationship(type="KNOWS", start_node="a", end_node="b", properties={"since": 2020}),
        ]))
        try:
            payload = await neo4j_store.backup({"graph": graph_name, "format": fmt, "compress": True})
            report = await neo4j_store.restore(RestoreOptions(graph=copy, data=payload, mode="create"))
            assert report.nodes_restored == 2
            assert report.relationships_restored == 1

            original = await neo4j_store.get_nodes(GetNodesOptions(graph=graph_name))
            restored = await neo4j_store.get_nodes(GetNodesOptions(graph=copy))
            assert [(n.id, n.labels, n.properties, n.created_at) for n in restored] == [
                (n.id, n.labels, n.properties, n.created_at) for n in original
            ]
            rels = await neo4j_store.get_relationships(GetRelationshipsOptions(graph=copy))
            assert [(r.id, r.properties) for r in rels] == [("a_KNOWS_b", {"since": 2020})]
        finally:
            await neo4j_store.drop_graph(copy)

    @pytest.mark.asyncio
    async def test_backup_is_stable(self, neo4j_store, graph_name):
        await neo4j_store.add_nodes(AddNodesOptions(graph=graph_name, nodes=[GraphNode(id="a")]))
        first = await neo4j_store.backup({"graph": graph_name})
        second = await neo4j_store.backup({"graph": graph_name})
        assert first == second


# =====================================================================
#  ANALYTICS
# =====================================================================


class TestAnalytics:
    @pytest.mark.asyncio
    async def test_communities_and_pagerank(self, neo4j_store, graph_name):
        ids = ["a", "b", "c", "x", "y", "z"]
        await neo4j_store.add_nodes(AddNodesOptions(graph=graph_name, nodes=[GraphNode(id=i) for i in ids]))
        edges = [("a", "b"), ("b", "c"), ("c", "a"), ("x", "y"), ("y", "z"), ("z", "x")]
        await neo4j_store.add_relationships(AddRelationshipsOptions(graph=graph_name, relationships=[
            GraphRelationship(type="LINKS", start_node=s, end_node=e) for s, e in edges
        ]))
        communities = await neo4j_store.communities({"graph": graph_name, "algorithm": "louvain"})
        assert communities == {0: ["a", "b", "c"], 1: ["x", "y", "z"]}

        result = await neo4j_store.query({"kind": "analytics", "graph": graph_name, "algorithm": "pageRank"})
        assert len(result.records) == 6

    @pytest.mark.asyncio
    async def test_traversal_and_path(self, neo4j_store, graph_name):
        await neo4j_store.add_relationships(AddRelationshipsOptions(
            graph=graph_name, create_nodes=True, relationships=[
                GraphRelationship(type="NEXT", start_node="a", end_node="b"),
                GraphRelationship(type="NEXT", start_node="b", end_node="c"),
            ],
        ))
        traversal = await neo4j_store.query({
            "kind": "traversal", "graph": graph_name, "start_nodes": ["a"], "max_depth": 2,
        })
        assert [r["end_node"] for r in traversal.records] == ["b", "c"]
        path = await neo4j_store.query({"kind": "path", "graph": graph_name, "source": "a", "target": "c"})
        assert [n.id for n in path.paths[0].nodes] == ["a", "b", "c"]
