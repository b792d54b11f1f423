# src/store/relationships.py - v1
"""Relationship engine: batched add, filtered get and guarded delete.

Same batching discipline as the node engine, grouped by relationship type
(types cannot be parameterised either). Endpoints are resolved through the
scope's anchor label, so a relationship never crosses graphs.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from typing import Any

from kgbridge.core.errors import (
    BatchError,
    ConflictError,
    DryRunResult,
    GraphStoreError,
    GraphValidationError,
    NotConnectedError,
    NotFoundError,
)
from kgbridge.core.models import (
    AddRelationshipsOptions,
    DeleteRelationshipsOptions,
    GetRelationshipsOptions,
    GraphRelationship,
)
from kgbridge.logging.context import operation_context
from kgbridge.store.batching import group_by_signature, iter_batches
from kgbridge.store.catalog import GraphCatalog
from kgbridge.store.connection import ConnectionManager, bounded, fetch_all, run_statements
from kgbridge.store.scope import (
    Scope,
    encode_properties,
    escape_identifier,
    property_predicates,
)

logger = logging.getLogger(__name__)

PROMOTED_RELATIONSHIP_FIELDS = (
    "description",
    "confidence",
    "weight",
    "embedding",
    "source_documents",
    "source_chunks",
    "created_at",
    "updated_at",
    "version",
)
METADATA_FIELDS = ("created_at", "updated_at", "version")


def default_relationship_id(start_node: str, rel_type: str, end_node: str) -> str:
    return f"{start_node}_{rel_type}_{end_node}"


def relationship_row(rel: GraphRelationship, now: int) -> dict[str, Any]:
    """Build the UNWIND row for one relationship."""
    rel_id = rel.id or default_relationship_id(rel.start_node, rel.type, rel.end_node)
    properties: dict[str, Any] = {"id": rel_id}
    properties.update(encode_properties(rel.properties))
    properties.update(encode_properties({
        "description": rel.description,
        "confidence": rel.confidence,
        "weight": rel.weight,
        "embedding": rel.embedding,
    }))
    if rel.source_documents:
        properties["source_documents"] = list(rel.source_documents)
    if rel.source_chunks:
        properties["source_chunks"] = list(rel.source_chunks)
    created_at = rel.created_at if rel.created_at is not None else now
    properties["id"] = rel_id
    properties["created_at"] = created_at
    properties["updated_at"] = max(now, created_at)
    properties.pop("version", None)
    return {
        "id": rel_id,
        "start_node": rel.start_node,
        "end_node": rel.end_node,
        "properties": properties,
        "version": rel.version,
        "now": now,
    }


def parse_relationship(
    record: dict[str, Any],
    include_properties: bool = True,
    include_metadata: bool = True,
    fields: list[str] | None = None,
) -> GraphRelationship:
    """Turn an ``{id, type, start_node, end_node, properties}`` record into a model."""
    properties = dict(record.get("properties") or {})
    rel_id = properties.pop("id", None) or record.get("id") or ""
    promoted = {
        key: properties.pop(key) for key in PROMOTED_RELATIONSHIP_FIELDS if key in properties
    }
    if not include_metadata:
        for key in METADATA_FIELDS:
            promoted.pop(key, None)
    if not include_properties:
        properties = {}
    elif fields:
        wanted = set(fields)
        properties = {k: v for k, v in properties.items() if k in wanted}
    return GraphRelationship(
        id=rel_id,
        type=record.get("type") or "",
        start_node=record.get("start_node") or "",
        end_node=record.get("end_node") or "",
        properties=properties,
        **promoted,
    )


def type_expression(types: list[str]) -> str:
    """``:`A`|`B``` for a relationship type filter."""
    if not types:
        return ""
    return ":" + "|".join(escape_identifier(t) for t in types)


async def _missing_endpoints(tx: Any, anchor: str, ids: list[str]) -> list[str]:
    records = await fetch_all(
        tx,
        f"UNWIND $ids AS id OPTIONAL MATCH (n:{escape_identifier(anchor)} {{id: id}}) "
        "WITH id, n WHERE n IS NULL RETURN collect(DISTINCT id) AS missing",
        {"ids": ids},
    )
    return sorted(records[0]["missing"]) if records else []


async def write_relationships_batch(
    tx: Any,
    anchor: str,
    endpoint_ids: list[str] | None,
    conflict_ids: list[str] | None,
    statements: list[tuple[str, dict[str, Any]]],
) -> int:
    """One batch in one transaction: checks first, then the UNWIND writes."""
    if endpoint_ids is not None:
        missing = await _missing_endpoints(tx, anchor, endpoint_ids)
        if missing:
            raise NotFoundError(f"endpoint node(s) not found: {', '.join(missing)}")
    if conflict_ids is not None:
        duplicates = sorted(i for i, seen in Counter(conflict_ids).items() if seen > 1)
        if duplicates:
            raise ConflictError(f"duplicate relationship id(s) in batch: {', '.join(duplicates)}")
        label = escape_identifier(anchor)
        existing = await fetch_all(
            tx,
            f"UNWIND $ids AS id MATCH (:{label})-[r {{id: id}}]->(:{label}) "
            "RETURN collect(DISTINCT r.id) AS existing",
            {"ids": conflict_ids},
        )
        taken = existing[0]["existing"] if existing else []
        if taken:
            raise ConflictError(f"relationship id(s) already exist: {', '.join(sorted(taken))}")
    return await run_statements(tx, statements)


class RelationshipEngine:
    """Batched relationship writes and reads for one ConnectionManager."""

    def __init__(self, connection: ConnectionManager, catalog: GraphCatalog) -> None:
        self._conn = connection
        self._catalog = catalog

    # --- Statement builders ---

    @staticmethod
    def endpoint_clause(scope: Scope, create_nodes: bool) -> str:
        anchor = escape_identifier(scope.anchor_label)
        if not create_nodes:
            return (
                f"MATCH (s:{anchor} {{id: row.start_node}}) "
                f"MATCH (e:{anchor} {{id: row.end_node}}) "
            )
        placeholder = (
            "ON CREATE SET {v}.created_at = row.now, {v}.updated_at = row.now, "
            "{v}.version = 1, {v}.placeholder = true "
        )
        return (
            f"MERGE (s:{anchor} {{id: row.start_node}}) {placeholder.format(v='s')}"
            f"MERGE (e:{anchor} {{id: row.end_node}}) {placeholder.format(v='e')}"
        )

    def upsert_statement(self, scope: Scope, rel_type: str, create_nodes: bool) -> str:
        return (
            "UNWIND $batch AS row "
            f"{self.endpoint_clause(scope, create_nodes)}"
            f"MERGE (s)-[r:{escape_identifier(rel_type)} {{id: row.id}}]->(e) "
            "WITH r, row, r.created_at AS previous_created, r.version AS previous_version "
            "SET r = row.properties "
            "SET r.created_at = coalesce(previous_created, row.properties.created_at), "
            "r.version = coalesce(row.version, coalesce(previous_version, 0) + 1) "
            "RETURN r.id AS id"
        )

    def create_statement(self, scope: Scope, rel_type: str, create_nodes: bool) -> str:
        return (
            "UNWIND $batch AS row "
            f"{self.endpoint_clause(scope, create_nodes)}"
            f"CREATE (s)-[r:{escape_identifier(rel_type)}]->(e) "
            "SET r = row.properties, r.version = coalesce(row.version, 1) "
            "RETURN r.id AS id"
        )

    # --- Add ---

    async def add_relationships(self, opts: AddRelationshipsOptions) -> list[str]:
        """Persist relationships in batches; returns their ids in input order.

        Raises:
            GraphValidationError: Missing start_node, end_node or type.
            BatchError: A batch failed (for example a missing endpoint, with
                ``cause`` a NotFoundError); earlier batches stay committed.
        """
        if not opts.relationships:
            return []
        for i, rel in enumerate(opts.relationships):
            if not rel.start_node or not rel.end_node:
                raise GraphValidationError(
                    f"relationship at index {i} requires start_node and end_node"
                )
            if not rel.type:
                raise GraphValidationError(f"relationship at index {i} requires a type")
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "add_relationships"):
            return await bounded(self._add_relationships(scope, opts), opts.timeout)

    async def _add_relationships(self, scope: Scope, opts: AddRelationshipsOptions) -> list[str]:
        await self._catalog.ensure_scope(scope)
        persisted: list[str] = []
        for start, end, batch in iter_batches(opts.relationships, opts.batch_size):
            now = int(time.time())
            rows = [relationship_row(rel, now) for rel in batch]
            groups = group_by_signature(list(zip(batch, rows)), lambda pair: pair[0].type)
            statements = []
            for rel_type, members in groups.items():
                query = (
                    self.upsert_statement(scope, rel_type, opts.create_nodes)
                    if opts.upsert
                    else self.create_statement(scope, rel_type, opts.create_nodes)
                )
                statements.append((query, {"batch": [row for _, row in members]}))

            endpoint_ids = None
            if not opts.create_nodes:
                endpoint_ids = list(dict.fromkeys(
                    node_id for row in rows for node_id in (row["start_node"], row["end_node"])
                ))
            conflict_ids = None if opts.upsert else [row["id"] for row in rows]
            try:
                await self._conn.execute(
                    scope.database, write_relationships_batch, scope.anchor_label,
                    endpoint_ids, conflict_ids, statements, graph=scope.graph,
                )
            except NotConnectedError:
                raise
            except GraphStoreError as exc:
                logger.error("Add relationships batch [%d, %d] failed: %s", start, end, exc)
                raise BatchError("add relationships", start, end, exc) from exc
            persisted.extend(row["id"] for row in rows)
            logger.debug(
                "Added relationships batch [%d, %d] in %d statement(s)",
                start, end, len(statements),
            )
        logger.info("Persisted %d relationship(s) into %s", len(persisted), scope.graph)
        return persisted

    # --- Get ---

    async def get_relationships(self, opts: GetRelationshipsOptions) -> list[GraphRelationship]:
        """Relationships matching the filters, ordered by id. Missing graph returns []."""
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "get_relationships"):
            return await bounded(self._get_relationships(scope, opts), opts.timeout)

    async def _get_relationships(
        self, scope: Scope, opts: GetRelationshipsOptions
    ) -> list[GraphRelationship]:
        anchor = escape_identifier(scope.anchor_label)
        params: dict[str, Any] = {"limit": opts.limit}
        clauses: list[str] = []
        if opts.ids:
            clauses.append("r.id IN $ids")
            params["ids"] = list(opts.ids)
        if opts.node_ids:
            params["node_ids"] = list(opts.node_ids)
            clauses.append({
                "out": "s.id IN $node_ids",
                "in": "e.id IN $node_ids",
                "both": "(s.id IN $node_ids OR e.id IN $node_ids)",
            }[opts.direction])
        clauses.extend(property_predicates("r", opts.filter, "f", params))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        query = (
            f"MATCH (s:{anchor})-[r{type_expression(opts.types)}]->(e:{anchor}){where} "
            "RETURN r.id AS id, type(r) AS type, s.id AS start_node, e.id AS end_node, "
            "properties(r) AS properties ORDER BY r.id LIMIT $limit"
        )
        try:
            records = await self._conn.read(scope.database, query, params, graph=scope.graph)
        except NotFoundError:
            return []
        return [
            parse_relationship(
                record,
                include_properties=opts.include_properties,
                include_metadata=opts.include_metadata,
                fields=opts.fields,
            )
            for record in records
        ]

    # --- Delete ---

    async def delete_relationships(self, opts: DeleteRelationshipsOptions) -> int:
        """Delete by id, endpoint, type or property filter (combined with AND).

        Raises:
            GraphValidationError: No selector supplied (no I/O).
            DryRunResult: With ``dry_run``; carries the matching count.
        """
        if not (opts.ids or opts.start_node or opts.end_node or opts.types or opts.filter):
            raise GraphValidationError(
                "delete_relationships requires ids, start_node, end_node, types or filter"
            )
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "delete_relationships"):
            return await bounded(self._delete_relationships(scope, opts), opts.timeout)

    def _selector(
        self, scope: Scope, opts: DeleteRelationshipsOptions, params: dict[str, Any],
        ids: list[str] | None = None,
    ) -> str:
        anchor = escape_identifier(scope.anchor_label)
        clauses: list[str] = []
        if ids:
            clauses.append("r.id IN $ids")
            params["ids"] = list(ids)
        if opts.start_node:
            clauses.append("s.id = $start_node")
            params["start_node"] = opts.start_node
        if opts.end_node:
            clauses.append("e.id = $end_node")
            params["end_node"] = opts.end_node
        clauses.extend(property_predicates("r", opts.filter, "f", params))
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return f"MATCH (s:{anchor})-[r{type_expression(opts.types)}]->(e:{anchor}){where}"

    async def _delete_relationships(self, scope: Scope, opts: DeleteRelationshipsOptions) -> int:
        if opts.dry_run:
            params: dict[str, Any] = {}
            match = self._selector(scope, opts, params, ids=opts.ids)
            try:
                records = await self._conn.read(
                    scope.database, f"{match} RETURN count(r) AS count", params, graph=scope.graph
                )
            except NotFoundError:
                records = []
            raise DryRunResult(records[0]["count"] if records else 0)

        total = 0
        try:
            if opts.ids:
                for start, end, batch in iter_batches(opts.ids, opts.batch_size):
                    params = {}
                    match = self._selector(scope, opts, params, ids=list(batch))
                    try:
                        records = await self._conn.write(
                            scope.database, f"{match} DELETE r RETURN count(r) AS deleted",
                            params, graph=scope.graph,
                        )
                    except (NotConnectedError, NotFoundError):
                        raise
                    except GraphStoreError as exc:
                        raise BatchError("delete relationships", start, end, exc) from exc
                    total += records[0]["deleted"] if records else 0
            else:
                params = {"limit": opts.batch_size}
                match = self._selector(scope, opts, params)
                query = f"{match} WITH r LIMIT $limit DELETE r RETURN count(r) AS deleted"
                while True:
                    records = await self._conn.write(scope.database, query, params, graph=scope.graph)
                    deleted = records[0]["deleted"] if records else 0
                    total += deleted
                    if deleted < opts.batch_size:
                        break
        except NotFoundError:
            return total
        logger.info("Deleted %d relationship(s) from %s", total, scope.graph)
        return total
