# src/store/communities.py - v1
"""Community engine: project the scoped graph and run a detection algorithm."""

from __future__ import annotations

import logging

from kgbridge.analytics.community_detector import detect_communities
from kgbridge.analytics.projection import load_projection
from kgbridge.core.models import CommunityOptions
from kgbridge.logging.context import operation_context
from kgbridge.store.batching import iter_batches
from kgbridge.store.connection import ConnectionManager, bounded
from kgbridge.store.scope import Scope, escape_identifier

logger = logging.getLogger(__name__)

WRITE_BATCH_SIZE = 1000


class CommunityEngine:
    """Runs Leiden, Louvain or label propagation over one graph."""

    def __init__(self, connection: ConnectionManager) -> None:
        self._conn = connection

    async def communities(self, opts: CommunityOptions) -> dict[int, list[str]]:
        """Community id -> sorted member ids, numbered by smallest member id.

        With ``write_property`` set, each member node also gets its community
        id stored under that property.
        """
        scope = self._conn.scope(opts.graph)
        with operation_context(opts.graph, "communities"):
            return await bounded(self._communities(scope, opts), opts.timeout)

    async def _communities(self, scope: Scope, opts: CommunityOptions) -> dict[int, list[str]]:
        graph = await load_projection(self._conn, scope, opts.weight_property, directed=False)
        result = detect_communities(
            graph,
            algorithm=opts.algorithm,
            resolution=opts.resolution,
            max_iterations=opts.max_iterations,
            tolerance=opts.tolerance,
            seed=opts.seed,
            min_community_size=opts.min_community_size,
        )
        if opts.write_property and result:
            await self._write_back(scope, opts.write_property, result)
        return result

    async def _write_back(
        self, scope: Scope, prop: str, communities: dict[int, list[str]]
    ) -> None:
        rows = [
            {"id": node_id, "community": community_id}
            for community_id, members in communities.items()
            for node_id in members
        ]
        query = (
            "UNWIND $rows AS row "
            f"MATCH (n:{escape_identifier(scope.anchor_label)} {{id: row.id}}) "
            f"SET n.{escape_identifier(prop)} = row.community"
        )
        for start, end, batch in iter_batches(rows, WRITE_BATCH_SIZE):
            await self._conn.write(scope.database, query, {"rows": list(batch)}, graph=scope.graph)
            logger.debug("Wrote community ids [%d, %d] to %s", start, end, prop)
        logger.info("Stored %d community assignment(s) in property %s", len(rows), prop)
