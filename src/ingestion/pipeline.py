# src/ingestion/pipeline.py - v1
"""save_extraction_results: persist LLM extraction batches into a graph.

Results are processed in order. For each result:
  1. Canonicalise candidate nodes by (normalised name, type)
  2. Look up persisted nodes with the same key (or the same id) and merge
  3. Upsert the canonical nodes
  4. Remap relationship endpoints through the alias map, dropping unresolved ones
  5. Deduplicate relationships, merge with persisted ones, upsert them

The alias map spans the whole call, so a later result may reference a
candidate id introduced by an earlier one. A failing result is counted and
reported; earlier results stay persisted.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from kgbridge.core.errors import GraphStoreError, GraphValidationError, NotConnectedError
from kgbridge.core.models import (
    AddNodesOptions,
    AddRelationshipsOptions,
    DEFAULT_BATCH_SIZE,
    ExtractionResult,
    GetNodesOptions,
    GetRelationshipsOptions,
    GraphNode,
    SaveExtractionReport,
)
from kgbridge.ingestion.canonicalizer import (
    canonicalize_nodes,
    dedupe_relationships,
    entity_to_node,
    merge_relationship,
    merge_with_persisted,
    remap_relationships,
)
from kgbridge.logging.context import operation_context
from kgbridge.store.connection import ConnectionManager
from kgbridge.store.nodes import NodeEngine
from kgbridge.store.relationships import RelationshipEngine
from kgbridge.store.scope import Scope

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_NAME = "default"


@dataclass
class ResultOutcome:
    """What one extraction result contributed."""

    entity_ids: list[str] = field(default_factory=list)
    relationship_ids: list[str] = field(default_factory=list)
    dropped: int = 0


class ExtractionIngestor:
    """Composes the node and relationship engines into the ingestion pipeline."""

    def __init__(
        self,
        connection: ConnectionManager,
        nodes: NodeEngine,
        relationships: RelationshipEngine,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._conn = connection
        self._nodes = nodes
        self._relationships = relationships
        self._batch_size = batch_size

    async def save_extraction_results(
        self, graph: str | None, results: list[ExtractionResult | dict[str, Any] | None]
    ) -> SaveExtractionReport:
        """Ingest extraction results into ``graph`` (``default`` when empty).

        A result that fails validation or persistence is counted in
        ``failed_count`` and reported in ``errors``; the others still run.

        Raises:
            GraphValidationError: Invalid graph name.
            NotConnectedError: The store is disconnected.
        """
        graph = graph or DEFAULT_GRAPH_NAME
        scope = self._conn.scope(graph)
        report = SaveExtractionReport()
        alias: dict[str, str] = {}

        with operation_context(graph, "save_extraction_results"):
            for index, result in enumerate(results):
                if result is None:
                    continue
                try:
                    outcome = await self._ingest_result(scope, _parse_result(result), alias)
                except NotConnectedError:
                    raise
                except GraphStoreError as exc:
                    report.failed_count += 1
                    report.errors.append(f"result {index}: {exc}")
                    logger.warning("Extraction result %d failed: %s", index, exc)
                    continue
                report.processed_count += 1
                report.entities_count += len(outcome.entity_ids)
                report.relationships_count += len(outcome.relationship_ids)
                report.dropped_relationships += outcome.dropped
                report.saved_entities.extend(outcome.entity_ids)
                report.saved_relationships.extend(outcome.relationship_ids)

        logger.info(
            "Ingested %d/%d result(s): %d entities, %d relationships, %d failed",
            report.processed_count, len([r for r in results if r is not None]),
            report.entities_count, report.relationships_count, report.failed_count,
        )
        return report

    async def _ingest_result(
        self, scope: Scope, result: ExtractionResult, alias: dict[str, str]
    ) -> ResultOutcome:
        now = int(time.time())
        outcome = ResultOutcome()

        entities, local_alias = canonicalize_nodes(list(result.nodes))
        persisted = await self._nodes.find_by_name_type(
            scope, [{"name_key": e.key[0], "type": e.type} for e in entities]
        )

        unmatched_ids = [e.canonical_id for e in entities if e.key not in persisted]
        by_id: dict[str, GraphNode] = {}
        if unmatched_ids:
            found = await self._nodes.get_nodes(GetNodesOptions(
                graph=scope.graph, ids=unmatched_ids, limit=len(unmatched_ids),
            ))
            by_id = {node.id: node for node in found}

        nodes: list[GraphNode] = []
        for entity in entities:
            existing = persisted.get(entity.key) or by_id.get(entity.canonical_id)
            if existing is not None:
                node = merge_with_persisted(entity, existing, now)
                for member in entity.member_ids:
                    local_alias[member] = node.id
            else:
                node = entity_to_node(entity, now)
            nodes.append(node)

        if nodes:
            outcome.entity_ids = await self._nodes.add_nodes(AddNodesOptions(
                graph=scope.graph, nodes=nodes, upsert=True, batch_size=self._batch_size,
            ))

        # Canonical ids written by this result also resolve to themselves
        for node in nodes:
            local_alias.setdefault(node.id, node.id)
        candidate_alias = {**alias, **local_alias}

        unresolved = sorted({
            endpoint
            for rel in result.relationships if rel is not None
            for endpoint in (rel.start_node, rel.end_node)
            if endpoint and endpoint not in candidate_alias
        })
        known: set[str] = set()
        if unresolved:
            found = await self._nodes.get_nodes(GetNodesOptions(
                graph=scope.graph, ids=unresolved, limit=len(unresolved),
                include_properties=False, include_metadata=False,
            ))
            known = {node.id for node in found}

        remapped, dropped = remap_relationships(list(result.relationships), candidate_alias, known)
        for rel in dropped:
            logger.warning(
                "Dropping relationship %s -[%s]-> %s: endpoint not resolved",
                rel.start_node, rel.type or "?", rel.end_node,
            )
        outcome.dropped = len(dropped)

        relationships = dedupe_relationships(remapped, now)
        if relationships:
            existing_rels = await self._relationships.get_relationships(GetRelationshipsOptions(
                graph=scope.graph, ids=[r.id for r in relationships], limit=len(relationships),
            ))
            existing_by_id = {r.id: r for r in existing_rels}
            relationships = [
                merge_relationship(r, existing_by_id[r.id], now) if r.id in existing_by_id else r
                for r in relationships
            ]
            outcome.relationship_ids = await self._relationships.add_relationships(
                AddRelationshipsOptions(
                    graph=scope.graph,
                    relationships=relationships,
                    upsert=True,
                    create_nodes=False,
                    batch_size=self._batch_size,
                )
            )

        alias.update(local_alias)
        logger.debug(
            "Result ingested: %d entities, %d relationships, %d dropped",
            len(outcome.entity_ids), len(outcome.relationship_ids), outcome.dropped,
        )
        return outcome


def _parse_result(result: ExtractionResult | dict[str, Any]) -> ExtractionResult:
    if isinstance(result, ExtractionResult):
        return result
    try:
        return ExtractionResult.model_validate(result)
    except ValidationError as exc:
        raise GraphValidationError(f"invalid extraction result: {exc}") from exc
