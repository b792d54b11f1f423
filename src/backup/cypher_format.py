# src/backup/cypher_format.py - v1
"""Cypher script backup format.

The first line is a header naming the graph and the scope label the
statements were written against::

    // kgbridge-backup version=1 format=cypher graph=<g> scope=<label>

followed by one statement per line: a MERGE per node, then a MATCH/MERGE
per relationship. Every statement ends with ``;`` and string literals never
contain raw newlines, so a restore can split on lines.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any

from kgbridge.backup.base_format import BACKUP_VERSION, BaseBackupFormat, GraphSnapshot
from kgbridge.core.errors import GraphValidationError
from kgbridge.store.scope import escape_identifier, label_expression

HEADER_PREFIX = "// kgbridge-backup"
_HEADER_FIELD_RE = re.compile(r"(\w+)=(\S+)")
NODE_STATEMENT_PREFIX = "MERGE (n:"
RELATIONSHIP_STATEMENT_PREFIX = "MATCH (s:"

_LABEL = r"`(?:[^`]|``)*`"
_STRING = r'"(?:[^"\\]|\\.)*"'
_NODE_HEAD_RE = re.compile(rf"^(MERGE|CREATE) \(n:({_LABEL}) ")
_RELATIONSHIP_HEAD_RE = re.compile(
    rf"^MATCH \(s:({_LABEL}) (\{{id: {_STRING}\}}\)), \(e:({_LABEL}) (\{{id: {_STRING}\}}\)) "
    r"MERGE \(s\)-\["
)


def _escape(value: str) -> str:
    """Escape a string for a double-quoted Cypher literal."""
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def cypher_literal(value: Any) -> str:
    """Render a stored property value as a Cypher literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise GraphValidationError(f"cannot back up non-finite float {value!r}")
        return repr(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(cypher_literal(item) for item in value) + "]"
    if isinstance(value, dict):
        return cypher_map(value)
    return f'"{_escape(str(value))}"'


def cypher_map(properties: dict[str, Any]) -> str:
    """``{key: literal, ...}`` with keys in sorted order."""
    items = ", ".join(
        f"{escape_identifier(key)}: {cypher_literal(properties[key])}"
        for key in sorted(properties)
    )
    return "{" + items + "}"


@dataclass
class CypherScript:
    """A parsed Cypher backup: header fields plus its statements."""

    graph: str
    scope_label: str
    statements: list[str] = field(default_factory=list)

    @property
    def node_statements(self) -> int:
        return sum(1 for s in self.statements if is_node_statement(s))

    @property
    def relationship_statements(self) -> int:
        return sum(1 for s in self.statements if is_relationship_statement(s))


def is_node_statement(statement: str) -> bool:
    return statement.startswith(NODE_STATEMENT_PREFIX) or statement.startswith("CREATE (n:")


def is_relationship_statement(statement: str) -> bool:
    return statement.startswith(RELATIONSHIP_STATEMENT_PREFIX)


def rewrite_statement(statement: str, source_label: str, target_label: str, create: bool) -> str:
    """Point a statement at another scope label, optionally as a CREATE.

    Only the statement head (scope labels and the MERGE keyword) is
    rewritten; id literals are matched as whole strings and never touched.
    """
    source = escape_identifier(source_label)
    target = escape_identifier(target_label)
    match = _RELATIONSHIP_HEAD_RE.match(statement)
    if match is not None:
        start_label, start_id, end_label, end_id = match.groups()
        start_label = target if start_label == source else start_label
        end_label = target if end_label == source else end_label
        keyword = "CREATE" if create else "MERGE"
        head = f"MATCH (s:{start_label} {start_id}), (e:{end_label} {end_id}) {keyword} (s)-["
        return head + statement[match.end():]
    match = _NODE_HEAD_RE.match(statement)
    if match is not None:
        keyword, label = match.groups()
        if create:
            keyword = "CREATE"
        label = target if label == source else label
        return f"{keyword} (n:{label} " + statement[match.end():]
    return statement


class CypherBackupFormat(BaseBackupFormat):
    """Replayable MERGE script."""

    @property
    def format_name(self) -> str:
        return "cypher"

    @property
    def file_extension(self) -> str:
        return ".cypher"

    def encode(self, snapshot: GraphSnapshot) -> str:
        scope = escape_identifier(snapshot.scope_label)
        lines = [
            f"{HEADER_PREFIX} version={BACKUP_VERSION} format=cypher "
            f"graph={snapshot.graph} scope={snapshot.scope_label}",
            f"// exported_at={snapshot.exported_at} nodes={len(snapshot.nodes)} "
            f"relationships={len(snapshot.relationships)}",
        ]

        for node in snapshot.nodes:
            properties = {**(node.get("properties") or {}), "id": node["id"]}
            labels = label_expression(list(node.get("labels") or []))
            set_labels = f", n{labels}" if labels else ""
            lines.append(
                f"MERGE (n:{scope} {{id: {cypher_literal(node['id'])}}}) "
                f"SET n = {cypher_map(properties)}{set_labels};"
            )

        for rel in snapshot.relationships:
            properties = dict(rel.get("properties") or {})
            if rel.get("id"):
                properties["id"] = rel["id"]
            identity = f" {{id: {cypher_literal(rel['id'])}}}" if rel.get("id") else ""
            lines.append(
                f"MATCH (s:{scope} {{id: {cypher_literal(rel['start'])}}}), "
                f"(e:{scope} {{id: {cypher_literal(rel['end'])}}}) "
                f"MERGE (s)-[r:{escape_identifier(rel['type'])}{identity}]->(e) "
                f"SET r = {cypher_map(properties)};"
            )
        return "\n".join(lines) + "\n"

    def matches(self, text: str) -> bool:
        return text.lstrip().startswith(HEADER_PREFIX)

    def decode(self, text: str) -> CypherScript:
        """Split a script into header fields and statements.

        Raises:
            GraphValidationError: Missing header or unsupported version.
        """
        lines = text.splitlines()
        header = lines[0].strip() if lines else ""
        if not header.startswith(HEADER_PREFIX):
            raise GraphValidationError("Cypher backup is missing its header line")
        fields = dict(_HEADER_FIELD_RE.findall(header[len(HEADER_PREFIX):]))
        if fields.get("version") != str(BACKUP_VERSION):
            raise GraphValidationError(f"unsupported backup version {fields.get('version')!r}")
        if not fields.get("scope"):
            raise GraphValidationError("Cypher backup header has no scope label")

        statements = []
        for line in lines[1:]:
            line = line.strip()
            if not line or line.startswith("//"):
                continue
            statements.append(line.rstrip(";"))
        return CypherScript(
            graph=fields.get("graph", ""),
            scope_label=fields["scope"],
            statements=statements,
        )
