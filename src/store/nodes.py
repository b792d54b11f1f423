# src/store/nodes.py - v1
"""Node engine: batched add, filtered get and guarded delete.

Writes are partitioned into batches of ``batch_size`` (executed in input
order, one managed transaction per batch) and grouped by label-set inside a
batch. Every node is anchored on its scope label, so identity is
``(anchor, id)`` whatever user labels it carries.
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
    AddNodesOptions,
    DeleteNodesOptions,
    GetNodesOptions,
    GraphNode,
)
from kgbridge.logging.context import operation_context
from kgbridge.store.batching import group_by_signature, iter_batches, signature
from kgbridge.store.catalog import GraphCatalog
from kgbridge.store.connection import ConnectionManager, bounded, fetch_all, run_statements
from kgbridge.store.scope import (
    Scope,
    decode_json_property,
    encode_properties,
    escape_identifier,
    label_expression,
    property_predicates,
    visible_labels,
)

logger = logging.getLogger(__name__)

# Properties routed to dedicated GraphNode fields on read.
PROMOTED_NODE_FIELDS = (
    "entity_type",
    "description",
    "confidence",
    "importance",
    "embedding",
    "embeddings",
    "source_documents",
    "source_chunks",
    "created_at",
    "updated_at",
    "version",
)
METADATA_FIELDS = ("created_at", "updated_at", "version")


def node_row(node: GraphNode, now: int) -> dict[str, Any]:
    """Build the UNWIND row for one node.

    Property order: id, user properties, promoted fields, lifecycle.
    """
    properties: dict[str, Any] = {"id": node.id}
    properties.update(encode_properties(node.properties))
    properties.update(encode_properties({
        "entity_type": node.entity_type,
        "description": node.description,
        "confidence": node.confidence,
        "importance": node.importance,
        "embedding": node.embedding,
        "embeddings": node.embeddings,
    }))
    if node.source_documents:
        properties["source_documents"] = list(node.source_documents)
    if node.source_chunks:
        properties["source_chunks"] = list(node.source_chunks)
    created_at = node.created_at if node.created_at is not None else now
    properties["id"] = node.id
    properties["created_at"] = created_at
    properties["updated_at"] = max(now, created_at)
    properties.pop("version", None)
    return {"id": node.id, "properties": properties, "version": node.version}


def parse_node(
    record: dict[str, Any],
    scope: Scope,
    include_properties: bool = True,
    include_metadata: bool = True,
    fields: list[str] | None = None,
) -> GraphNode:
    """Turn an ``{id, labels, properties}`` record into a GraphNode."""
    properties = dict(record.get("properties") or {})
    node_id = properties.pop("id", None) or record.get("id") or ""
    promoted = {key: properties.pop(key) for key in PROMOTED_NODE_FIELDS if key in properties}
    if "embeddings" in promoted:
        promoted["embeddings"] = decode_json_property(promoted["embeddings"])
    if not include_metadata:
        for key in METADATA_FIELDS:
            promoted.pop(key, None)

    if not include_properties:
        properties = {}
    elif fields:
        wanted = set(fields)
        properties = {k: v for k, v in properties.items() if k in wanted}

    return GraphNode(
        id=node_id,
        labels=visible_labels(record.get("labels") or [], scope),
        properties=properties,
        **promoted,
    )


def _node_where(
    opts_ids: list[str], filters: dict[str, Any], params: dict[str, Any], ids_param: str = "ids"
) -> str:
    clauses: list[str] = []
    if opts_ids:
        clauses.append(f"n.id IN ${ids_param}")
        params[ids_param] = list(opts_ids)
    clauses.extend(property_predicates("n", filters, "f", params))
    return f" WHERE {' AND '.join(clauses)}" if clauses else ""


async def create_nodes_batch(
    tx: Any, anchor: str, ids: list[str], statements: list[tuple[str, dict[str, Any]]]
) -> int:
    """Reject ids that already exist, then run the CREATE statements."""
    duplicates = sorted(i for i, seen in Counter(ids).items() if seen > 1)
    if duplicates:
        raise ConflictError(f"duplicate node id(s) in batch: {', '.join(duplicates)}")
    existing = await fetch_all(
        tx,
        f"UNWIND $ids AS id MATCH (n:{escape_identifier(anchor)} {{id: id}}) "
        "RETURN collect(n.id) AS existing",
        {"ids": ids},
    )
    taken = existing[0]["existing"] if existing else []
    if taken:
        raise ConflictError(f"node id(s) already exist: {', '.join(sorted(taken))}")
    return await run_statements(tx, statements)


class NodeEngine:
    """Batched node writes and reads for one ConnectionManager."""

    def __init__(self, connection: ConnectionManager, catalog: GraphCatalog) -> None:
        self._conn = connection
        self._catalog = catalog

    # --- Statement builders ---

    @staticmethod
    def upsert_statement(scope: Scope, labels: list[str]) -> str:
        extra = [label for label in labels if label != scope.anchor_label]
        set_labels = f" SET n{label_expression(extra)}" if extra else ""
        return (
            "UNWIND $batch AS row "
            f"MERGE (n:{escape_identifier(scope.anchor_label)} {{id: row.id}}) "
            "WITH n, row, n.created_at AS previous_created, n.version AS previous_version "
            "SET n = row.properties "
            "SET n.created_at = coalesce(previous_created, row.properties.created_at), "
            "n.version = coalesce(row.version, coalesce(previous_version, 0) + 1)"
            f"{set_labels} "
            "RETURN n.id AS id"
        )

    @staticmethod
    def create_statement(scope: Scope, labels: list[str]) -> str:
        return (
            "UNWIND $batch AS row "
            f"CREATE (n{label_expression(labels)}) "
            "SET n = row.properties, n.version = coalesce(row.version, 1) "
            "RETURN n.id AS id"
        )

    @staticmethod
    def label_set(node: GraphNode, scope: Scope) -> list[str]:
        """User labels plus the anchor label, anchor last."""
        labels = [label for label in node.labels if label != scope.anchor_label]
        return labels + [scope.anchor_label]

    # --- Add ---

    async def add_nodes(self, opts: AddNodesOptions) -> list[str]:
        """Persist nodes in batches; returns the persisted ids in input order.

        Raises:
            GraphValidationError: A node has no id (nothing is written).
            BatchError: A batch failed; earlier batches stay committed.
        """
        if not opts.nodes:
            return []
        missing = [i for i, node in enumerate(opts.nodes) if not node.id]
        if missing:
            raise GraphValidationError(f"node id is required (missing at index {missing[0]})")
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "add_nodes"):
            return await bounded(self._add_nodes(scope, opts), opts.timeout)

    async def _add_nodes(self, scope: Scope, opts: AddNodesOptions) -> list[str]:
        await self._catalog.ensure_scope(scope)
        persisted: list[str] = []
        for start, end, batch in iter_batches(opts.nodes, opts.batch_size):
            now = int(time.time())
            groups = group_by_signature(batch, lambda n: signature(self.label_set(n, scope)))
            statements = []
            for members in groups.values():
                labels = self.label_set(members[0], scope)
                query = (
                    self.upsert_statement(scope, labels)
                    if opts.upsert else self.create_statement(scope, labels)
                )
                statements.append((query, {"batch": [node_row(n, now) for n in members]}))
            try:
                if opts.upsert:
                    await self._conn.execute(
                        scope.database, run_statements, statements, graph=scope.graph
                    )
                else:
                    await self._conn.execute(
                        scope.database, create_nodes_batch, scope.anchor_label,
                        [n.id for n in batch], statements, graph=scope.graph,
                    )
            except NotConnectedError:
                raise
            except GraphStoreError as exc:
                logger.error("Add nodes batch [%d, %d] failed: %s", start, end, exc)
                raise BatchError("add nodes", start, end, exc) from exc
            persisted.extend(n.id for n in batch)
            logger.debug(
                "Added nodes batch [%d, %d] in %d statement(s)", start, end, len(statements)
            )
        logger.info("Persisted %d node(s) into %s", len(persisted), scope.graph)
        return persisted

    # --- Get ---

    async def get_nodes(self, opts: GetNodesOptions) -> list[GraphNode]:
        """Nodes matching the filters, ordered by id. Missing graph returns []."""
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "get_nodes"):
            return await bounded(self._get_nodes(scope, opts), opts.timeout)

    async def _get_nodes(self, scope: Scope, opts: GetNodesOptions) -> list[GraphNode]:
        params: dict[str, Any] = {"limit": opts.limit}
        labels = [scope.anchor_label] + [label for label in opts.labels if label != scope.anchor_label]
        query = (
            f"MATCH (n{label_expression(labels)})"
            f"{_node_where(opts.ids, opts.filter, params)} "
            "RETURN n.id AS id, labels(n) AS labels, properties(n) AS properties "
            "ORDER BY n.id LIMIT $limit"
        )
        try:
            records = await self._conn.read(scope.database, query, params, graph=scope.graph)
        except NotFoundError:
            return []
        return [
            parse_node(
                record, scope,
                include_properties=opts.include_properties,
                include_metadata=opts.include_metadata,
                fields=opts.fields,
            )
            for record in records
        ]

    async def find_by_name_type(
        self, scope: Scope, keys: list[dict[str, str]]
    ) -> dict[tuple[str, str], GraphNode]:
        """Persisted nodes keyed by ``(name_key, type)``; earliest created wins.

        Nodes written without a ``name_key`` property are matched on their
        lower-cased, trimmed name. Nodes without an ``entity_type`` match
        the empty type.
        """
        if not keys:
            return {}
        query = (
            "UNWIND $keys AS key "
            f"MATCH (n:{escape_identifier(scope.anchor_label)}) "
            "WHERE coalesce(n.entity_type, '') = key.type "
            "AND coalesce(n.name_key, toLower(trim(n.name))) = key.name_key "
            "WITH key, n ORDER BY n.created_at, n.id "
            "WITH key, collect(n)[0] AS n "
            "RETURN key.name_key AS name_key, key.type AS type, "
            "n.id AS id, labels(n) AS labels, properties(n) AS properties"
        )
        try:
            records = await self._conn.read(scope.database, query, {"keys": keys}, graph=scope.graph)
        except NotFoundError:
            return {}
        return {(r["name_key"], r["type"]): parse_node(r, scope) for r in records}

    # --- Delete ---

    async def delete_nodes(self, opts: DeleteNodesOptions) -> int:
        """Delete nodes by ids and/or property filter; returns the deleted count.

        Raises:
            GraphValidationError: Neither ids nor filter supplied (no I/O).
            DryRunResult: With ``dry_run``; carries the matching count.
        """
        if not opts.ids and not opts.filter:
            raise GraphValidationError(
                "delete_nodes requires ids or filter; refusing to delete the whole graph"
            )
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "delete_nodes"):
            return await bounded(self._delete_nodes(scope, opts), opts.timeout)

    async def _delete_nodes(self, scope: Scope, opts: DeleteNodesOptions) -> int:
        anchor = escape_identifier(scope.anchor_label)
        delete = "DETACH DELETE n" if opts.delete_rels else "DELETE n"

        if opts.dry_run:
            params: dict[str, Any] = {}
            where = _node_where(opts.ids, opts.filter, params)
            try:
                records = await self._conn.read(
                    scope.database, f"MATCH (n:{anchor}){where} RETURN count(n) AS count",
                    params, graph=scope.graph,
                )
            except NotFoundError:
                records = []
            raise DryRunResult(records[0]["count"] if records else 0)

        total = 0
        try:
            if opts.ids:
                for start, end, batch in iter_batches(opts.ids, opts.batch_size):
                    params = {"batch": list(batch)}
                    filters = property_predicates("n", opts.filter, "f", params)
                    where = f" WHERE {' AND '.join(filters)}" if filters else ""
                    query = (
                        f"UNWIND $batch AS id MATCH (n:{anchor} {{id: id}}){where} "
                        f"{delete} RETURN count(n) AS deleted"
                    )
                    try:
                        records = await self._conn.write(
                            scope.database, query, params, graph=scope.graph
                        )
                    except (NotConnectedError, NotFoundError):
                        raise
                    except GraphStoreError as exc:
                        raise BatchError("delete nodes", start, end, exc) from exc
                    total += records[0]["deleted"] if records else 0
            else:
                params = {"limit": opts.batch_size}
                where = _node_where([], opts.filter, params)
                query = (
                    f"MATCH (n:{anchor}){where} WITH n LIMIT $limit "
                    f"{delete} RETURN count(n) AS deleted"
                )
                while True:
                    records = await self._conn.write(scope.database, query, params, graph=scope.graph)
                    deleted = records[0]["deleted"] if records else 0
                    total += deleted
                    if deleted < opts.batch_size:
                        break
        except NotFoundError:
            return total
        logger.info("Deleted %d node(s) from %s", total, scope.graph)
        return total
