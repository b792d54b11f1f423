# tests/unit/store/test_unit_catalog.py - v1
"""Tests for store/catalog.py - graph lifecycle in both storage modes."""

from __future__ import annotations

import pytest

from fakes import connected_manager
from kgbridge.core.errors import GraphNameUnsupportedError, GraphValidationError, NotFoundError
from kgbridge.store.catalog import DROP_BATCH_SIZE, GraphCatalog, id_constraint_name
from kgbridge.store.scope import DatabaseScope, LabelScope


class TestConstraintName:
    def test_names(self):
        assert id_constraint_name(LabelScope("docs", prefix="kg_")) == "kgbridge_kg_docs_id"
        assert id_constraint_name(DatabaseScope("docs")) == "kgbridge_node_id"


class TestLabelMode:
    @pytest.mark.asyncio
    async def test_create_graph_merges_marker_and_constraint(self, fake_driver):
        catalog = GraphCatalog(await connected_manager(fake_driver))
        await catalog.create_graph("docs")
        marker = fake_driver.queries("MERGE (m:`__KGBridgeGraph`")
        assert len(marker) == 1
        assert marker[0].params["name"] == "docs"
        assert marker[0].database == "neo4j"
        constraint = fake_driver.queries("CREATE CONSTRAINT")
        assert "FOR (n:`docs`) REQUIRE n.id IS UNIQUE" in constraint[0].query
        assert not fake_driver.queries("CREATE DATABASE")

    @pytest.mark.asyncio
    async def test_invalid_name_before_io(self, fake_driver):
        catalog = GraphCatalog(await connected_manager(fake_driver))
        with pytest.raises(GraphValidationError):
            await catalog.create_graph("bad name")
        assert fake_driver.calls == []

    @pytest.mark.asyncio
    async def test_drop_loops_until_empty(self, fake_driver):
        fake_driver.on("DETACH DELETE n", [{"deleted": DROP_BATCH_SIZE}], [{"deleted": 3}])
        catalog = GraphCatalog(await connected_manager(fake_driver))
        await catalog.drop_graph("docs")
        assert len(fake_driver.queries("DETACH DELETE n")) == 2
        assert fake_driver.queries("DELETE m")
        assert fake_driver.queries("DROP CONSTRAINT `kgbridge_docs_id` IF EXISTS")

    @pytest.mark.asyncio
    async def test_exists(self, fake_driver):
        fake_driver.on("RETURN EXISTS", [{"present": True}], [{"present": False}])
        catalog = GraphCatalog(await connected_manager(fake_driver))
        assert await catalog.graph_exists("docs") is True
        assert await catalog.graph_exists("other") is False

    @pytest.mark.asyncio
    async def test_list_graphs_with_prefix(self, fake_driver):
        fake_driver.on("MATCH (m:`__KGBridgeGraph`)", [{"name": "a"}, {"name": "b"}])
        fake_driver.on("db.labels()", [{"label": "kg_b"}, {"label": "kg_c"}, {"label": "kg_"}])
        catalog = GraphCatalog(await connected_manager(fake_driver, graph_label_prefix="kg_"))
        assert await catalog.list_graphs() == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_list_graphs_without_prefix_skips_labels(self, fake_driver):
        fake_driver.on("MATCH (m:`__KGBridgeGraph`)", [{"name": "a"}])
        catalog = GraphCatalog(await connected_manager(fake_driver))
        assert await catalog.list_graphs() == ["a"]
        assert not fake_driver.queries("db.labels()")

    @pytest.mark.asyncio
    async def test_ensure_scope_caches(self, fake_driver):
        fake_driver.on("RETURN EXISTS", [{"present": True}])
        conn = await connected_manager(fake_driver)
        catalog = GraphCatalog(conn)
        scope = conn.scope("docs")
        await catalog.ensure_scope(scope)
        await catalog.ensure_scope(scope)
        assert len(fake_driver.queries("RETURN EXISTS")) == 1
        assert catalog.is_known(scope)

    @pytest.mark.asyncio
    async def test_describe_graph(self, fake_driver):
        fake_driver.on("RETURN EXISTS", [{"present": True}])
        fake_driver.on("UNWIND labels(n)", [
            {"label": "Person", "count": 2}, {"label": "docs", "count": 3},
        ])
        fake_driver.on("RETURN count(n) AS count", [{"count": 3}])
        fake_driver.on("RETURN type(r) AS type", [{"type": "KNOWS", "count": 4}])
        catalog = GraphCatalog(await connected_manager(fake_driver))
        stats = await catalog.describe_graph("docs")
        assert stats.total_nodes == 3
        assert stats.total_relationships == 4
        assert stats.node_labels == {"Person": 2}
        assert stats.relationship_types == {"KNOWS": 4}
        assert stats.storage_type == "label_based"
        assert stats.graph_label == "docs"

    @pytest.mark.asyncio
    async def test_describe_missing(self, fake_driver):
        fake_driver.on("RETURN EXISTS", [{"present": False}])
        catalog = GraphCatalog(await connected_manager(fake_driver))
        with pytest.raises(NotFoundError):
            await catalog.describe_graph("nope")


class TestDatabaseMode:
    @pytest.mark.asyncio
    async def test_create_database(self, fake_driver):
        catalog = GraphCatalog(await connected_manager(fake_driver, use_separate_database=True))
        await catalog.create_graph("docs")
        create = fake_driver.queries("CREATE DATABASE")
        assert create[0].query == "CREATE DATABASE `docs` IF NOT EXISTS WAIT"
        assert create[0].database == "system"
        constraint = fake_driver.queries("CREATE CONSTRAINT")
        assert constraint[0].database == "docs"
        assert "`__KGNode`" in constraint[0].query

    @pytest.mark.asyncio
    async def test_unsupported_database_name(self, fake_driver):
        catalog = GraphCatalog(await connected_manager(fake_driver, use_separate_database=True))
        with pytest.raises(GraphNameUnsupportedError, match="try 'my-graph'"):
            await catalog.create_graph("my_graph")
        assert fake_driver.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["neo4j", "system"])
    async def test_drop_protected(self, fake_driver, name):
        catalog = GraphCatalog(await connected_manager(fake_driver, use_separate_database=True))
        with pytest.raises(GraphValidationError):
            await catalog.drop_graph(name)

    @pytest.mark.asyncio
    async def test_drop_database(self, fake_driver):
        catalog = GraphCatalog(await connected_manager(fake_driver, use_separate_database=True))
        await catalog.drop_graph("docs")
        assert fake_driver.queries("DROP DATABASE `docs` IF EXISTS DESTROY DATA WAIT")

    @pytest.mark.asyncio
    async def test_list_excludes_system(self, fake_driver):
        fake_driver.on("SHOW DATABASES", [{"name": "system"}, {"name": "neo4j"}, {"name": "docs"}])
        catalog = GraphCatalog(await connected_manager(fake_driver, use_separate_database=True))
        assert await catalog.list_graphs() == ["docs", "neo4j"]

    @pytest.mark.asyncio
    async def test_exists(self, fake_driver):
        fake_driver.on("SHOW DATABASES YIELD name WHERE", [{"name": "docs"}], [])
        catalog = GraphCatalog(await connected_manager(fake_driver, use_separate_database=True))
        assert await catalog.graph_exists("docs") is True
        assert await catalog.graph_exists("gone") is False
