# src/store/schema.py - v1
"""Schema manager: indexes, constraints and schema introspection.

DDL runs as auto-commit statements in the graph's database. Creates use
IF NOT EXISTS and drops use IF EXISTS, so every operation is idempotent.
In label-based mode all graphs share one database; index and constraint
names are namespaced ``<graph>__<name>`` and listings only show the
graph's own namespace.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from kgbridge.core.errors import (
    GraphStoreError,
    NotConnectedError,
    NotFoundError,
    SchemaError,
)
from kgbridge.core.models import (
    ConstraintInfo,
    ConstraintSpec,
    GraphSchema,
    IndexInfo,
    IndexSpec,
)
from kgbridge.logging.context import operation_context
from kgbridge.store.connection import ConnectionManager
from kgbridge.store.scope import Scope, escape_identifier, visible_labels

logger = logging.getLogger(__name__)

NAMESPACE_SEPARATOR = "__"
_EQUIVALENT_MARKERS = ("equivalent", "already exists")
_NAME_CLEAN_RE = re.compile(r"[^A-Za-z0-9_]+")


def generate_index_name(spec: IndexSpec) -> str:
    """``idx_<graph>_<node|rel>_<label>_<props>_<type>`` with unsafe chars replaced."""
    target = "node" if spec.target == "node" else "rel"
    raw = f"idx_{spec.graph}_{target}_{spec.label}_{'_'.join(spec.properties)}_{spec.index_type}"
    return _NAME_CLEAN_RE.sub("_", raw).lower()


def generate_constraint_name(spec: ConstraintSpec) -> str:
    raw = f"cons_{spec.graph}_{spec.label}_{'_'.join(spec.properties)}_{spec.kind}"
    return _NAME_CLEAN_RE.sub("_", raw).lower()


def physical_name(scope: Scope, name: str) -> str:
    if scope.kind == "label":
        return f"{scope.graph}{NAMESPACE_SEPARATOR}{name}"
    return name


def logical_name(scope: Scope, name: str) -> str | None:
    """Strip the graph namespace; None when the name belongs to another graph."""
    if scope.kind == "database":
        return name
    prefix = f"{scope.graph}{NAMESPACE_SEPARATOR}"
    return name[len(prefix):] if name.startswith(prefix) else None


def _pattern(target: str, label: str) -> tuple[str, str]:
    if target == "node":
        return f"(n:{escape_identifier(label)})", "n"
    return f"()-[n:{escape_identifier(label)}]-()", "n"


def index_statement(spec: IndexSpec, name: str) -> str:
    """Cypher DDL for an index definition."""
    pattern, var = _pattern(spec.target, spec.label)
    props = [f"{var}.{escape_identifier(p)}" for p in spec.properties]
    guard = " IF NOT EXISTS" if spec.if_not_exists else ""
    quoted = escape_identifier(name)

    if spec.index_type == "fulltext":
        return f"CREATE FULLTEXT INDEX {quoted}{guard} FOR {pattern} ON EACH [{', '.join(props)}]"
    if spec.index_type == "vector":
        if len(props) != 1:
            raise SchemaError("vector indexes take exactly one property", definition=name)
        return (
            f"CREATE VECTOR INDEX {quoted}{guard} FOR {pattern} ON ({props[0]}) "
            f"OPTIONS {{indexConfig: {{`vector.dimensions`: {spec.dimensions}, "
            f"`vector.similarity_function`: '{spec.similarity}'}}}}"
        )
    if spec.index_type in ("text", "point"):
        if len(props) != 1:
            raise SchemaError(
                f"{spec.index_type} indexes take exactly one property", definition=name
            )
        keyword = spec.index_type.upper()
        return f"CREATE {keyword} INDEX {quoted}{guard} FOR {pattern} ON ({props[0]})"
    return f"CREATE INDEX {quoted}{guard} FOR {pattern} ON ({', '.join(props)})"


def constraint_statement(spec: ConstraintSpec, name: str) -> str:
    """Cypher DDL for a constraint definition."""
    props = [f"n.{escape_identifier(p)}" for p in spec.properties]
    target = props[0] if len(props) == 1 else f"({', '.join(props)})"
    guard = " IF NOT EXISTS" if spec.if_not_exists else ""
    head = f"CREATE CONSTRAINT {escape_identifier(name)}{guard} FOR (n:{escape_identifier(spec.label)})"
    if spec.kind == "unique":
        return f"{head} REQUIRE {target} IS UNIQUE"
    if spec.kind == "node_key":
        return f"{head} REQUIRE {target} IS NODE KEY"
    if len(props) != 1:
        raise SchemaError("existence constraints take exactly one property", definition=name)
    return f"{head} REQUIRE {target} IS NOT NULL"


class SchemaManager:
    """DDL lifecycle for one ConnectionManager."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._conn = connection

    async def _ddl(self, scope: Scope, statement: str, creating: bool) -> None:
        try:
            await self._conn.run_auto(scope.database, statement, graph=scope.graph)
        except (NotConnectedError, NotFoundError):
            raise
        except GraphStoreError as exc:
            if creating and any(m in str(exc).lower() for m in _EQUIVALENT_MARKERS):
                logger.info("Schema object already present, skipping: %s", statement)
                return
            raise SchemaError(str(exc), definition=statement) from exc
        logger.debug("Applied DDL on %s: %s", scope.database, statement)

    # --- Indexes ---

    async def create_index(self, spec: IndexSpec) -> str:
        """Create an index; returns its (logical) name."""
        scope = self._conn.scope(spec.graph)
        name = spec.name or generate_index_name(spec)
        statement = index_statement(spec, physical_name(scope, name))
        with operation_context(spec.graph, "create_index"):
            await self._ddl(scope, statement, creating=True)
        logger.info("Index %s ready on %s", name, spec.graph)
        return name

    async def drop_index(self, graph: str, name: str) -> None:
        scope = self._conn.scope(graph)
        statement = f"DROP INDEX {escape_identifier(physical_name(scope, name))} IF EXISTS"
        with operation_context(graph, "drop_index"):
            await self._ddl(scope, statement, creating=False)

    async def list_indexes(self, graph: str) -> list[IndexInfo]:
        scope = self._conn.scope(graph)
        records = await self._conn.read(
            scope.database,
            "SHOW INDEXES YIELD name, type, entityType, labelsOrTypes, properties, state "
            "RETURN name, type, entityType, labelsOrTypes, properties, state ORDER BY name",
            graph=graph,
        )
        indexes: list[IndexInfo] = []
        for r in records:
            name = logical_name(scope, r["name"])
            if name is None:
                continue
            indexes.append(IndexInfo(
                name=name,
                index_type=str(r.get("type") or ""),
                entity_type=str(r.get("entityType") or ""),
                labels_or_types=list(r.get("labelsOrTypes") or []),
                properties=list(r.get("properties") or []),
                state=r.get("state"),
            ))
        return indexes

    # --- Constraints ---

    async def create_constraint(self, spec: ConstraintSpec) -> str:
        scope = self._conn.scope(spec.graph)
        name = spec.name or generate_constraint_name(spec)
        statement = constraint_statement(spec, physical_name(scope, name))
        with operation_context(spec.graph, "create_constraint"):
            await self._ddl(scope, statement, creating=True)
        logger.info("Constraint %s ready on %s", name, spec.graph)
        return name

    async def drop_constraint(self, graph: str, name: str) -> None:
        scope = self._conn.scope(graph)
        statement = f"DROP CONSTRAINT {escape_identifier(physical_name(scope, name))} IF EXISTS"
        with operation_context(graph, "drop_constraint"):
            await self._ddl(scope, statement, creating=False)

    async def list_constraints(self, graph: str) -> list[ConstraintInfo]:
        scope = self._conn.scope(graph)
        records = await self._conn.read(
            scope.database,
            "SHOW CONSTRAINTS YIELD name, type, entityType, labelsOrTypes, properties "
            "RETURN name, type, entityType, labelsOrTypes, properties ORDER BY name",
            graph=graph,
        )
        constraints: list[ConstraintInfo] = []
        for r in records:
            name = logical_name(scope, r["name"])
            if name is None:
                continue
            constraints.append(ConstraintInfo(
                name=name,
                constraint_type=str(r.get("type") or ""),
                entity_type=str(r.get("entityType") or ""),
                labels_or_types=list(r.get("labelsOrTypes") or []),
                properties=list(r.get("properties") or []),
            ))
        return constraints

    # --- Introspection ---

    async def get_schema(self, graph: str) -> GraphSchema:
        """Labels, relationship types and property keys observed in the graph."""
        scope = self._conn.scope(graph)
        anchor = escape_identifier(scope.anchor_label)
        node_rows: list[dict[str, Any]] = await self._conn.read(
            scope.database,
            f"MATCH (n:{anchor}) WITH labels(n) AS labels, keys(n) AS keys "
            "UNWIND labels AS label "
            "UNWIND (CASE WHEN size(keys) = 0 THEN [null] ELSE keys END) AS key "
            "RETURN label, collect(DISTINCT key) AS keys ORDER BY label",
            graph=graph,
        )
        rel_rows: list[dict[str, Any]] = await self._conn.read(
            scope.database,
            f"MATCH (:{anchor})-[r]->(:{anchor}) WITH type(r) AS type, keys(r) AS keys "
            "UNWIND (CASE WHEN size(keys) = 0 THEN [null] ELSE keys END) AS key "
            "RETURN type, collect(DISTINCT key) AS keys ORDER BY type",
            graph=graph,
        )
        shown = set(visible_labels([r["label"] for r in node_rows], scope))
        node_properties = {
            r["label"]: sorted(r["keys"]) for r in node_rows if r["label"] in shown
        }
        rel_properties = {r["type"]: sorted(r["keys"]) for r in rel_rows}
        return GraphSchema(
            graph=graph,
            node_labels=sorted(node_properties),
            relationship_types=sorted(rel_properties),
            node_properties=node_properties,
            relationship_properties=rel_properties,
            indexes=await self.list_indexes(graph),
            constraints=await self.list_constraints(graph),
        )
