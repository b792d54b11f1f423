# tests/unit/backup/test_unit_backup_formats.py - v1
"""Tests for backup formats - JSON document, Cypher script, detection."""

from __future__ import annotations

import json

import pytest

from kgbridge.backup.base_format import GraphSnapshot
from kgbridge.backup.cypher_format import (
    CypherBackupFormat,
    cypher_literal,
    cypher_map,
    rewrite_statement,
)
from kgbridge.backup.format_factory import available_formats, create_format, detect_format
from kgbridge.backup.json_format import JsonBackupFormat
from kgbridge.core.errors import GraphValidationError


@pytest.fixture
def snapshot() -> GraphSnapshot:
    return GraphSnapshot(
        graph="docs",
        scope_label="docs",
        nodes=[
            {"id": "a", "labels": ["Person"], "properties": {"name": 'Ann "A"', "age": 3, "version": 1}},
            {"id": "b", "labels": [], "properties": {"note": "line1\nline2", "tags": ["x", "y"]}},
        ],
        relationships=[
            {"id": "a_KNOWS_b", "type": "KNOWS", "start": "a", "end": "b",
             "properties": {"weight": 0.5, "updated_at": 20}},
        ],
        exported_at=20,
    )


class TestLiterals:
    @pytest.mark.parametrize("value, expected", [
        (None, "null"),
        (True, "true"),
        (7, "7"),
        (0.25, "0.25"),
        ('say "hi"\n', '"say \\"hi\\"\\n"'),
        (["a", 1], '["a", 1]'),
    ])
    def test_literal(self, value, expected):
        assert cypher_literal(value) == expected

    def test_non_finite_rejected(self):
        with pytest.raises(GraphValidationError):
            cypher_literal(float("nan"))

    def test_map_sorted(self):
        assert cypher_map({"b": 1, "a": "x"}) == '{`a`: "x", `b`: 1}'


class TestJsonFormat:
    def test_document_layout(self, snapshot):
        document = json.loads(JsonBackupFormat().encode(snapshot))
        assert document["version"] == 1
        assert document["graph"] == "docs"
        assert document["metadata"] == {
            "exported_at": 20, "node_count": 2, "rel_count": 1, "scope": "docs",
        }
        assert document["relationships"][0]["start"] == "a"

    def test_deterministic(self, snapshot):
        fmt = JsonBackupFormat()
        assert fmt.encode(snapshot) == fmt.encode(snapshot)

    def test_decode(self, snapshot):
        fmt = JsonBackupFormat()
        decoded = fmt.decode(fmt.encode(snapshot))
        assert decoded.nodes == snapshot.nodes
        assert decoded.scope_label == "docs"
        assert decoded.exported_at == 20

    @pytest.mark.parametrize("text", [
        "{not json",
        "[]",
        '{"version": 2}',
        '{"version": 1, "nodes": [{"labels": []}]}',
        '{"version": 1, "relationships": [{"type": "T", "start": "a"}]}',
    ])
    def test_decode_rejects(self, text):
        with pytest.raises(GraphValidationError):
            JsonBackupFormat().decode(text)


class TestCypherFormat:
    def test_script_shape(self, snapshot):
        lines = CypherBackupFormat().encode(snapshot).splitlines()
        assert lines[0] == "// kgbridge-backup version=1 format=cypher graph=docs scope=docs"
        assert lines[1] == "// exported_at=20 nodes=2 relationships=1"
        assert lines[2].startswith('MERGE (n:`docs` {id: "a"}) SET n = {')
        assert lines[2].endswith(", n:`Person`;")
        assert '"line1\\nline2"' in lines[3]
        assert lines[4] == (
            'MATCH (s:`docs` {id: "a"}), (e:`docs` {id: "b"}) '
            'MERGE (s)-[r:`KNOWS` {id: "a_KNOWS_b"}]->(e) '
            'SET r = {`id`: "a_KNOWS_b", `updated_at`: 20, `weight`: 0.5};'
        )
        assert len(lines) == 5

    def test_decode(self, snapshot):
        fmt = CypherBackupFormat()
        script = fmt.decode(fmt.encode(snapshot))
        assert script.graph == "docs"
        assert script.scope_label == "docs"
        assert script.node_statements == 2
        assert script.relationship_statements == 1
        assert not any(s.endswith(";") for s in script.statements)

    def test_decode_requires_header(self):
        with pytest.raises(GraphValidationError):
            CypherBackupFormat().decode('MERGE (n:`x` {id: "a"})')

    def test_decode_rejects_version(self):
        with pytest.raises(GraphValidationError):
            CypherBackupFormat().decode("// kgbridge-backup version=9 format=cypher graph=g scope=g\n")


class TestRewriteStatement:
    def test_node_to_other_scope(self):
        statement = 'MERGE (n:`docs` {id: "a"}) SET n = {`id`: "a"}, n:`Person`'
        assert rewrite_statement(statement, "docs", "copy", create=False) == (
            'MERGE (n:`copy` {id: "a"}) SET n = {`id`: "a"}, n:`Person`'
        )

    def test_node_as_create(self):
        statement = 'MERGE (n:`docs` {id: "a"}) SET n = {`id`: "a"}'
        assert rewrite_statement(statement, "docs", "docs", create=True).startswith("CREATE (n:`docs` ")

    def test_relationship_labels_only(self):
        statement = (
            'MATCH (s:`docs` {id: "x`docs` MERGE (s)-["}), (e:`docs` {id: "b"}) '
            'MERGE (s)-[r:`T` {id: "r"}]->(e) SET r = {`note`: "`docs`"}'
        )
        rewritten = rewrite_statement(statement, "docs", "copy", create=True)
        assert rewritten == (
            'MATCH (s:`copy` {id: "x`docs` MERGE (s)-["}), (e:`copy` {id: "b"}) '
            'CREATE (s)-[r:`T` {id: "r"}]->(e) SET r = {`note`: "`docs`"}'
        )

    def test_unknown_statement_untouched(self):
        assert rewrite_statement("RETURN 1", "a", "b", create=True) == "RETURN 1"


class TestFactory:
    def test_available(self):
        assert available_formats() == ["cypher", "json"]

    def test_unknown(self):
        with pytest.raises(GraphValidationError):
            create_format("xml")

    def test_detect(self, snapshot):
        assert isinstance(detect_format(JsonBackupFormat().encode(snapshot)), JsonBackupFormat)
        assert isinstance(detect_format(CypherBackupFormat().encode(snapshot)), CypherBackupFormat)
        with pytest.raises(GraphValidationError):
            detect_format("hello")
