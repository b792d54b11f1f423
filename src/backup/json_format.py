# src/backup/json_format.py - v1
"""JSON backup format.

Layout::

    {"version": 1, "graph": ..., "nodes": [...], "relationships": [...],
     "metadata": {"exported_at": ..., "node_count": ..., "rel_count": ...,
                  "scope": ...}}
"""

from __future__ import annotations

import json
from typing import Any

from kgbridge.backup.base_format import BACKUP_VERSION, BaseBackupFormat, GraphSnapshot
from kgbridge.core.errors import GraphValidationError


class JsonBackupFormat(BaseBackupFormat):
    """Sorted-key JSON document, one per graph."""

    @property
    def format_name(self) -> str:
        return "json"

    @property
    def file_extension(self) -> str:
        return ".json"

    def encode(self, snapshot: GraphSnapshot) -> str:
        document = {
            "version": BACKUP_VERSION,
            "graph": snapshot.graph,
            "nodes": snapshot.nodes,
            "relationships": snapshot.relationships,
            "metadata": {
                "exported_at": snapshot.exported_at,
                "node_count": len(snapshot.nodes),
                "rel_count": len(snapshot.relationships),
                "scope": snapshot.scope_label,
            },
        }
        return json.dumps(document, ensure_ascii=False, indent=2, sort_keys=True, default=str)

    def matches(self, text: str) -> bool:
        return text.lstrip().startswith("{")

    def decode(self, text: str) -> GraphSnapshot:
        """Parse a JSON backup.

        Raises:
            GraphValidationError: Malformed document or unsupported version.
        """
        try:
            document: Any = json.loads(text)
        except ValueError as exc:
            raise GraphValidationError(f"malformed JSON backup: {exc}") from exc
        if not isinstance(document, dict):
            raise GraphValidationError("JSON backup must be an object")
        if document.get("version") != BACKUP_VERSION:
            raise GraphValidationError(
                f"unsupported backup version {document.get('version')!r}"
            )

        metadata = document.get("metadata") or {}
        nodes = document.get("nodes") or []
        relationships = document.get("relationships") or []
        for node in nodes:
            if not isinstance(node, dict) or not node.get("id"):
                raise GraphValidationError("every backed-up node needs an id")
        for rel in relationships:
            if not isinstance(rel, dict) or not (rel.get("type") and rel.get("start") and rel.get("end")):
                raise GraphValidationError("every backed-up relationship needs type, start and end")

        return GraphSnapshot(
            graph=str(document.get("graph") or ""),
            scope_label=str(metadata.get("scope") or ""),
            nodes=nodes,
            relationships=relationships,
            exported_at=int(metadata.get("exported_at") or 0),
        )
