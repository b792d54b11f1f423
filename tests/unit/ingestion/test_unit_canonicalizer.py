# tests/unit/ingestion/test_unit_canonicalizer.py - v1
"""Tests for ingestion/canonicalizer.py - grouping, merging, remapping."""

from __future__ import annotations

from kgbridge.core.models import ExtractedNode, ExtractedRelationship, GraphNode, GraphRelationship
from kgbridge.ingestion.canonicalizer import (
    canonicalize_nodes,
    dedupe_relationships,
    entity_to_node,
    merge_relationship,
    merge_with_persisted,
    normalize_name,
    remap_relationships,
)


class TestNormalizeName:
    def test_case_and_whitespace(self):
        assert normalize_name("  European\tUNION ") == "european union"


class TestCanonicalizeNodes:
    def test_groups_by_name_and_type(self, sample_extraction):
        entities, alias = canonicalize_nodes(sample_extraction.nodes)
        assert [e.canonical_id for e in entities] == ["c1", "c3"]
        assert alias == {"c1": "c1", "c2": "c1", "c3": "c3"}
        eu = entities[0]
        assert eu.source_documents == ["doc1", "doc2"]
        assert eu.confidence == 0.9
        assert eu.name == "European Union"

    def test_same_name_different_type_stays_apart(self):
        entities, _ = canonicalize_nodes([
            ExtractedNode(id="a", name="Mercury", type="Planet"),
            ExtractedNode(id="b", name="Mercury", type="Element"),
        ])
        assert len(entities) == 2

    def test_skips_none_and_nameless(self):
        entities, alias = canonicalize_nodes([None, ExtractedNode(), ExtractedNode(id="x")])
        assert [e.canonical_id for e in entities] == ["x"]
        assert alias == {"x": "x"}

    def test_generated_id_when_missing(self):
        entities, _ = canonicalize_nodes([ExtractedNode(name="Acme Corp", type="Org")])
        assert entities[0].canonical_id == "Org_acme_corp"


class TestNodeBuilding:
    def test_entity_to_node(self, sample_extraction):
        entities, _ = canonicalize_nodes(sample_extraction.nodes)
        node = entity_to_node(entities[0], now=100)
        assert node.id == "c1"
        assert node.labels == ["Organization"]
        assert node.properties["name_key"] == "european union"
        assert node.entity_type == "Organization"
        assert node.version == 1

    def test_merge_with_persisted(self, sample_extraction):
        entities, _ = canonicalize_nodes(sample_extraction.nodes)
        existing = GraphNode(
            id="eu", labels=["Organization", "Body"], properties={"name": "EU"},
            entity_type="Organization", confidence=0.95, source_documents=["doc0"],
            created_at=10, version=2,
        )
        node = merge_with_persisted(entities[0], existing, now=100)
        assert node.id == "eu"
        assert node.properties["name"] == "EU"
        assert node.labels == ["Organization", "Body"]
        assert node.source_documents == ["doc0", "doc1", "doc2"]
        assert node.confidence == 0.95
        assert node.created_at == 10
        assert node.updated_at == 100
        assert node.version == 3

    def test_merge_keeps_persisted_name_key(self, sample_extraction):
        entities, _ = canonicalize_nodes(sample_extraction.nodes)
        stored = GraphNode(id="c1", properties={"name": "EU", "name_key": "eu"})
        legacy = GraphNode(id="c1", properties={"name": " The  EU "})
        assert merge_with_persisted(entities[0], stored, now=100).properties["name_key"] == "eu"
        assert merge_with_persisted(entities[0], legacy, now=100).properties["name_key"] == "the eu"


class TestRelationships:
    def test_remap_and_drop(self, sample_extraction):
        _, alias = canonicalize_nodes(sample_extraction.nodes)
        remapped, dropped = remap_relationships(sample_extraction.relationships, alias)
        assert [(r.start_node, r.end_node) for r in remapped] == [("c1", "c3"), ("c1", "c3")]
        assert [r.type for r in dropped] == ["MENTIONS"]

    def test_known_ids_resolve(self):
        rel = ExtractedRelationship(type="T", start_node="a", end_node="persisted")
        remapped, dropped = remap_relationships([rel], {"a": "a"}, known_ids={"persisted"})
        assert remapped[0].end_node == "persisted"
        assert dropped == []

    def test_untyped_dropped(self):
        rel = ExtractedRelationship(start_node="a", end_node="a")
        assert remap_relationships([rel, None], {"a": "a"}) == ([], [rel])

    def test_dedupe_merges_provenance(self):
        rels = [
            ExtractedRelationship(type="T", start_node="a", end_node="b", source_documents=["d1"],
                                  confidence=0.2, weight=1.0),
            ExtractedRelationship(type="T", start_node="a", end_node="b", source_documents=["d2"],
                                  confidence=0.6, properties={"note": "x"}),
        ]
        merged = dedupe_relationships(rels, now=5)
        assert len(merged) == 1
        assert merged[0].id == "a_T_b"
        assert merged[0].source_documents == ["d1", "d2"]
        assert merged[0].confidence == 0.6
        assert merged[0].weight == 1.0
        assert merged[0].properties == {"note": "x"}

    def test_merge_relationship(self):
        new = GraphRelationship(id="a_T_b", type="T", start_node="a", end_node="b",
                                source_documents=["d2"], created_at=50)
        existing = GraphRelationship(id="a_T_b", type="T", start_node="a", end_node="b",
                                     source_documents=["d1"], created_at=10, version=4,
                                     properties={"old": 1})
        merged = merge_relationship(new, existing, now=60)
        assert merged.source_documents == ["d1", "d2"]
        assert merged.created_at == 10
        assert merged.updated_at == 60
        assert merged.version == 5
        assert merged.properties == {"old": 1}
