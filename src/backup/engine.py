# src/backup/engine.py - v1
"""Backup and restore of one logical graph.

A backup scans nodes and relationships in id order, so an unchanged graph
produces byte-identical output: ``exported_at`` is the latest ``updated_at``
in the graph rather than the wall clock, and gzip output carries ``mtime=0``.

Restore accepts either format (detected from the payload), gzip-compressed
or not. JSON backups replay through the node and relationship statement
builders; Cypher backups replay their statements after pointing them at
the target scope label.
"""

from __future__ import annotations

import gzip
import logging
from pathlib import Path
from typing import Any

from kgbridge.backup.base_format import GraphSnapshot
from kgbridge.backup.cypher_format import (
    CypherBackupFormat,
    is_node_statement,
    is_relationship_statement,
    rewrite_statement,
)
from kgbridge.backup.format_factory import create_format, detect_format
from kgbridge.backup.json_format import JsonBackupFormat
from kgbridge.core.errors import (
    GraphStoreError,
    GraphValidationError,
    NotFoundError,
    RestoreError,
)
from kgbridge.core.models import BackupOptions, RestoreOptions, RestoreReport
from kgbridge.logging.context import operation_context
from kgbridge.store.batching import group_by_signature, iter_batches, signature
from kgbridge.store.catalog import GraphCatalog
from kgbridge.store.connection import ConnectionManager, bounded, run_statements
from kgbridge.store.nodes import NodeEngine, create_nodes_batch
from kgbridge.store.relationships import (
    RelationshipEngine,
    default_relationship_id,
    write_relationships_batch,
)
from kgbridge.store.scope import Scope, escape_identifier, visible_labels

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def compress(data: bytes) -> bytes:
    return gzip.compress(data, mtime=0)


def maybe_decompress(data: bytes) -> bytes:
    if data[:2] == GZIP_MAGIC:
        return gzip.decompress(data)
    return data


def _latest_timestamp(*groups: list[dict[str, Any]]) -> int:
    stamps = [
        item["properties"].get("updated_at")
        for group in groups
        for item in group
    ]
    return max((s for s in stamps if isinstance(s, int)), default=0)


class BackupEngine:
    """Serialises graphs to bytes and replays them back."""

    def __init__(
        self,
        connection: ConnectionManager,
        catalog: GraphCatalog,
        nodes: NodeEngine,
        relationships: RelationshipEngine,
    ) -> None:
        self._conn = connection
        self._catalog = catalog
        self._nodes = nodes
        self._relationships = relationships

    # --- Backup ---

    async def backup(self, opts: BackupOptions) -> bytes:
        """Serialise ``opts.graph``; also writes the bytes to ``opts.path`` when set.

        Raises:
            NotFoundError: The graph does not exist.
        """
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "backup"):
            return await bounded(self._backup(scope, opts), opts.timeout)

    async def _backup(self, scope: Scope, opts: BackupOptions) -> bytes:
        if not await self._catalog.scope_exists(scope):
            raise NotFoundError(f"graph {scope.graph!r} does not exist")

        snapshot = await self.snapshot(scope)
        fmt = create_format(opts.format)
        payload = fmt.encode(snapshot).encode("utf-8")
        if opts.compress:
            payload = compress(payload)
        if opts.path:
            path = Path(opts.path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(payload)
        logger.info(
            "Backed up %s as %s%s: %d node(s), %d relationship(s), %d bytes",
            scope.graph, fmt.format_name, " (gzip)" if opts.compress else "",
            len(snapshot.nodes), len(snapshot.relationships), len(payload),
        )
        return payload

    async def snapshot(self, scope: Scope) -> GraphSnapshot:
        """Read the whole scope in stable order."""
        anchor = escape_identifier(scope.anchor_label)
        node_rows = await self._conn.read(
            scope.database,
            f"MATCH (n:{anchor}) "
            "RETURN n.id AS id, labels(n) AS labels, properties(n) AS properties "
            "ORDER BY n.id",
            graph=scope.graph,
        )
        rel_rows = await self._conn.read(
            scope.database,
            f"MATCH (s:{anchor})-[r]->(e:{anchor}) "
            "RETURN r.id AS id, type(r) AS rel_type, s.id AS start_node, e.id AS end_node, "
            "properties(r) AS properties "
            "ORDER BY id, start_node, end_node, rel_type",
            graph=scope.graph,
        )

        nodes = []
        for row in node_rows:
            properties = dict(row.get("properties") or {})
            properties.pop("id", None)
            nodes.append({
                "id": row["id"],
                "labels": visible_labels(row.get("labels") or [], scope),
                "properties": properties,
            })
        relationships = []
        for row in rel_rows:
            properties = dict(row.get("properties") or {})
            properties.pop("id", None)
            relationships.append({
                "id": row.get("id"),
                "type": row["rel_type"],
                "start": row["start_node"],
                "end": row["end_node"],
                "properties": properties,
            })
        return GraphSnapshot(
            graph=scope.graph,
            scope_label=scope.anchor_label,
            nodes=nodes,
            relationships=relationships,
            exported_at=_latest_timestamp(nodes, relationships),
        )

    # --- Restore ---

    async def restore(self, opts: RestoreOptions) -> RestoreReport:
        """Replay a backup into ``opts.graph``.

        Raises:
            GraphValidationError: No payload, or the payload is not a backup.
            RestoreError: A batch failed; ``applied`` counts what was committed.
        """
        text = self._load(opts)
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "restore"):
            return await bounded(self._restore(scope, opts, text), opts.timeout)

    @staticmethod
    def _load(opts: RestoreOptions) -> str:
        if opts.data is not None:
            data = opts.data
        elif opts.path:
            data = Path(opts.path).read_bytes()
        else:
            raise GraphValidationError("restore requires data or path")
        try:
            return maybe_decompress(data).decode("utf-8")
        except (OSError, EOFError, UnicodeDecodeError) as exc:
            raise GraphValidationError(f"unreadable backup payload: {exc}") from exc

    async def _restore(self, scope: Scope, opts: RestoreOptions, text: str) -> RestoreReport:
        fmt = detect_format(text)
        # Parse before touching the graph so a bad payload never clears it
        if isinstance(fmt, CypherBackupFormat):
            parsed: Any = fmt.decode(text)
        else:
            parsed = JsonBackupFormat().decode(text)

        if opts.mode == "replace":
            await self._reset(scope)
        else:
            await self._catalog.ensure_scope(scope)

        if isinstance(fmt, CypherBackupFormat):
            report = await self._replay_cypher(scope, opts, parsed)
        else:
            report = await self._replay_json(scope, opts, parsed)
        logger.info(
            "Restored %s from %s (%s): %d node(s), %d relationship(s)",
            scope.graph, report.format, opts.mode,
            report.nodes_restored, report.relationships_restored,
        )
        return report

    async def _reset(self, scope: Scope) -> None:
        if self._catalog.is_protected(scope):
            await self._catalog.ensure_scope(scope)
            deleted = await self._catalog.clear_scope(scope)
            logger.info("Cleared %d node(s) from %s before restore", deleted, scope.graph)
            return
        await self._catalog.drop_graph(scope.graph)
        await self._catalog.create_scope(scope)

    async def _replay_json(
        self, scope: Scope, opts: RestoreOptions, snapshot: GraphSnapshot
    ) -> RestoreReport:
        report = RestoreReport(graph=scope.graph, format="json")
        create = opts.mode == "create"

        for start, end, batch in iter_batches(snapshot.nodes, opts.batch_size):
            groups = group_by_signature(
                batch, lambda n: signature(self._node_labels(n, scope))
            )
            statements = []
            for members in groups.values():
                labels = self._node_labels(members[0], scope)
                query = (
                    NodeEngine.create_statement(scope, labels)
                    if create else NodeEngine.upsert_statement(scope, labels)
                )
                statements.append((query, {"batch": [self._node_row(n) for n in members]}))
            try:
                if create:
                    await self._conn.execute(
                        scope.database, create_nodes_batch, scope.anchor_label,
                        [n["id"] for n in batch], statements, graph=scope.graph,
                    )
                else:
                    await self._conn.execute(
                        scope.database, run_statements, statements, graph=scope.graph
                    )
            except GraphStoreError as exc:
                raise self._failed(report, "nodes", start, end, exc) from exc
            report.nodes_restored += len(batch)
            report.statements_applied += len(statements)
            logger.debug("Restored nodes [%d, %d]", start, end)

        for start, end, batch in iter_batches(snapshot.relationships, opts.batch_size):
            rows = [self._relationship_row(r) for r in batch]
            groups = group_by_signature(list(zip(batch, rows)), lambda pair: pair[0]["type"])
            statements = []
            for rel_type, members in groups.items():
                query = (
                    self._relationships.create_statement(scope, rel_type, False)
                    if create else self._relationships.upsert_statement(scope, rel_type, False)
                )
                statements.append((query, {"batch": [row for _, row in members]}))
            endpoint_ids = list(dict.fromkeys(
                node_id for row in rows for node_id in (row["start_node"], row["end_node"])
            ))
            try:
                await self._conn.execute(
                    scope.database, write_relationships_batch, scope.anchor_label,
                    endpoint_ids, [row["id"] for row in rows] if create else None,
                    statements, graph=scope.graph,
                )
            except GraphStoreError as exc:
                raise self._failed(report, "relationships", start, end, exc) from exc
            report.relationships_restored += len(batch)
            report.statements_applied += len(statements)
            logger.debug("Restored relationships [%d, %d]", start, end)
        return report

    async def _replay_cypher(self, scope: Scope, opts: RestoreOptions, script: Any) -> RestoreReport:
        report = RestoreReport(graph=scope.graph, format="cypher")
        create = opts.mode == "create"
        statements = [
            rewrite_statement(s, script.scope_label, scope.anchor_label, create)
            for s in script.statements
        ]
        for start, end, batch in iter_batches(statements, opts.batch_size):
            try:
                await self._conn.execute(
                    scope.database, run_statements, [(s, {}) for s in batch], graph=scope.graph
                )
            except GraphStoreError as exc:
                raise self._failed(report, "statements", start, end, exc) from exc
            report.statements_applied += len(batch)
            report.nodes_restored += sum(1 for s in batch if is_node_statement(s))
            report.relationships_restored += sum(1 for s in batch if is_relationship_statement(s))
            logger.debug("Replayed statements [%d, %d]", start, end)
        return report

    @staticmethod
    def _failed(
        report: RestoreReport, what: str, start: int, end: int, exc: GraphStoreError
    ) -> RestoreError:
        applied = (
            report.statements_applied if report.format == "cypher"
            else report.nodes_restored + report.relationships_restored
        )
        logger.error("Restore of %s [%d, %d] failed: %s", what, start, end, exc)
        return RestoreError(f"restore failed on {what} [{start}, {end}]: {exc}", applied)

    @staticmethod
    def _node_labels(node: dict[str, Any], scope: Scope) -> list[str]:
        labels = [label for label in node.get("labels") or [] if label != scope.anchor_label]
        return labels + [scope.anchor_label]

    @staticmethod
    def _node_row(node: dict[str, Any]) -> dict[str, Any]:
        properties = {**(node.get("properties") or {}), "id": node["id"]}
        return {"id": node["id"], "properties": properties, "version": properties.get("version")}

    @staticmethod
    def _relationship_row(rel: dict[str, Any]) -> dict[str, Any]:
        properties = dict(rel.get("properties") or {})
        rel_id = rel.get("id") or default_relationship_id(rel["start"], rel["type"], rel["end"])
        properties["id"] = rel_id
        return {
            "id": rel_id,
            "start_node": rel["start"],
            "end_node": rel["end"],
            "properties": properties,
            "version": properties.get("version"),
            "now": properties.get("updated_at"),
        }
