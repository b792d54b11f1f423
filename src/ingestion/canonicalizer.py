# src/ingestion/canonicalizer.py - v1
"""Entity canonicalisation and provenance merging for extraction results.

Pure functions, no I/O. Candidates are grouped by ``(normalised_name, type)``;
the first id seen in a group becomes the canonical id and every other id of
the group is recorded as an alias of it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from kgbridge.core.models import (
    ExtractedNode,
    ExtractedRelationship,
    GraphNode,
    GraphRelationship,
)
from kgbridge.store.relationships import default_relationship_id
from kgbridge.store.scope import encode_property

logger = logging.getLogger(__name__)

EntityKey = tuple[str, str]


def normalize_name(name: str) -> str:
    """Case-fold and collapse whitespace."""
    return " ".join(name.split()).casefold()


def _max_optional(a: float | None, b: float | None) -> float | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _union(*groups: list[str]) -> list[str]:
    return sorted({item for group in groups for item in group if item})


@dataclass
class CanonicalEntity:
    """One deduplicated entity built from one or more candidates."""

    key: EntityKey
    canonical_id: str
    name: str
    type: str
    member_ids: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    properties: dict[str, Any] = field(default_factory=dict)
    description: str | None = None
    confidence: float | None = None
    embedding: list[float] | None = None
    source_documents: list[str] = field(default_factory=list)
    source_chunks: list[str] = field(default_factory=list)

    def absorb(self, candidate: ExtractedNode) -> None:
        """Fold another candidate of the same key into this entity."""
        if candidate.id and candidate.id not in self.member_ids:
            self.member_ids.append(candidate.id)
        for label in candidate.labels:
            if label and label not in self.labels:
                self.labels.append(label)
        for key, value in candidate.properties.items():
            self.properties.setdefault(key, value)
        self.description = self.description or candidate.description
        self.confidence = _max_optional(self.confidence, candidate.confidence)
        self.embedding = self.embedding or candidate.embedding
        self.source_documents = _union(self.source_documents, candidate.source_documents)
        self.source_chunks = _union(self.source_chunks, candidate.source_chunks)


def candidate_key(candidate: ExtractedNode) -> EntityKey | None:
    name = candidate.name or candidate.id
    if not name.strip():
        return None
    return normalize_name(name), candidate.type


def canonicalize_nodes(
    candidates: list[ExtractedNode | None],
) -> tuple[list[CanonicalEntity], dict[str, str]]:
    """Group candidates by key.

    Returns:
        (entities in first-seen order, alias map candidate id -> canonical id).
        Canonical ids map to themselves.
    """
    entities: dict[EntityKey, CanonicalEntity] = {}
    for candidate in candidates:
        if candidate is None:
            continue
        key = candidate_key(candidate)
        if key is None:
            logger.warning("Skipping candidate node without id or name")
            continue
        entity = entities.get(key)
        if entity is None:
            canonical_id = candidate.id or f"{key[1] or 'entity'}_{key[0]}".replace(" ", "_")
            entity = CanonicalEntity(
                key=key,
                canonical_id=canonical_id,
                name=(candidate.name or candidate.id).strip(),
                type=candidate.type,
                member_ids=[canonical_id],
            )
            entities[key] = entity
        entity.absorb(candidate)

    alias: dict[str, str] = {}
    for entity in entities.values():
        for member in entity.member_ids:
            alias.setdefault(member, entity.canonical_id)
    return list(entities.values()), alias


def entity_labels(entity: CanonicalEntity, existing: list[str] | None = None) -> list[str]:
    """Type first, then extracted labels, then labels already persisted."""
    labels = [entity.type] if entity.type else []
    for label in [*entity.labels, *(existing or [])]:
        if label and label not in labels:
            labels.append(label)
    return labels


def entity_to_node(entity: CanonicalEntity, now: int) -> GraphNode:
    """A brand-new node for an entity with no persisted counterpart."""
    properties = {k: encode_property(v) for k, v in entity.properties.items() if v is not None}
    properties["name"] = entity.name
    properties["name_key"] = entity.key[0]
    return GraphNode(
        id=entity.canonical_id,
        labels=entity_labels(entity),
        properties=properties,
        entity_type=entity.type or None,
        description=entity.description,
        confidence=entity.confidence,
        embedding=entity.embedding,
        source_documents=entity.source_documents,
        source_chunks=entity.source_chunks,
        created_at=now,
        updated_at=now,
        version=1,
    )


def merge_with_persisted(entity: CanonicalEntity, existing: GraphNode, now: int) -> GraphNode:
    """Merge an entity into its persisted node, keeping the persisted id.

    Provenance is unioned, confidence is the max, the earliest created_at
    wins and updated_at is refreshed.
    """
    properties = dict(existing.properties)
    for key, value in entity.properties.items():
        if value is not None:
            properties[key] = encode_property(value)
    properties.setdefault("name", entity.name)
    # The persisted name keeps resolving after a merge by id
    if not properties.get("name_key"):
        properties["name_key"] = normalize_name(str(properties["name"]))

    created = [t for t in (existing.created_at, now) if t is not None]
    return GraphNode(
        id=existing.id,
        labels=entity_labels(entity, existing.labels),
        properties=properties,
        entity_type=existing.entity_type or entity.type or None,
        description=existing.description or entity.description,
        confidence=_max_optional(existing.confidence, entity.confidence),
        importance=existing.importance,
        embedding=entity.embedding or existing.embedding,
        embeddings=existing.embeddings,
        source_documents=_union(existing.source_documents, entity.source_documents),
        source_chunks=_union(existing.source_chunks, entity.source_chunks),
        created_at=min(created),
        updated_at=now,
        version=(existing.version or 0) + 1,
    )


def remap_relationships(
    relationships: list[ExtractedRelationship | None],
    alias: dict[str, str],
    known_ids: set[str] | frozenset[str] = frozenset(),
) -> tuple[list[ExtractedRelationship], list[ExtractedRelationship]]:
    """Rewrite endpoints through the alias map.

    Endpoints that are not aliases but already exist in the graph
    (``known_ids``) are kept as-is.

    Returns:
        (remapped relationships, dropped relationships).
    """
    remapped: list[ExtractedRelationship] = []
    dropped: list[ExtractedRelationship] = []
    for rel in relationships:
        if rel is None:
            continue
        start = alias.get(rel.start_node) or (rel.start_node if rel.start_node in known_ids else None)
        end = alias.get(rel.end_node) or (rel.end_node if rel.end_node in known_ids else None)
        if not start or not end or not rel.type:
            dropped.append(rel)
            continue
        remapped.append(rel.model_copy(update={"start_node": start, "end_node": end}))
    return remapped, dropped


def dedupe_relationships(
    relationships: list[ExtractedRelationship], now: int
) -> list[GraphRelationship]:
    """Collapse relationships sharing ``(start, end, type)`` and merge provenance.

    The id is derived from the triple, so the same fact extracted in later
    calls upserts the same relationship.
    """
    merged: dict[tuple[str, str, str], GraphRelationship] = {}
    for rel in relationships:
        key = (rel.start_node, rel.end_node, rel.type)
        current = merged.get(key)
        if current is None:
            merged[key] = GraphRelationship(
                id=default_relationship_id(rel.start_node, rel.type, rel.end_node),
                type=rel.type,
                start_node=rel.start_node,
                end_node=rel.end_node,
                properties={k: encode_property(v) for k, v in rel.properties.items() if v is not None},
                description=rel.description,
                confidence=rel.confidence,
                weight=rel.weight,
                source_documents=rel.source_documents,
                source_chunks=rel.source_chunks,
                created_at=now,
                updated_at=now,
            )
            continue
        for k, v in rel.properties.items():
            if v is not None:
                current.properties.setdefault(k, encode_property(v))
        current.description = current.description or rel.description
        current.confidence = _max_optional(current.confidence, rel.confidence)
        current.weight = _max_optional(current.weight, rel.weight)
        current.source_documents = _union(current.source_documents, rel.source_documents)
        current.source_chunks = _union(current.source_chunks, rel.source_chunks)
    return list(merged.values())


def merge_relationship(new: GraphRelationship, existing: GraphRelationship, now: int) -> GraphRelationship:
    """Fold a deduplicated relationship into its persisted counterpart."""
    created = [t for t in (existing.created_at, new.created_at) if t is not None]
    return new.model_copy(update={
        "properties": {**existing.properties, **new.properties},
        "description": existing.description or new.description,
        "confidence": _max_optional(existing.confidence, new.confidence),
        "weight": _max_optional(existing.weight, new.weight),
        "source_documents": _union(existing.source_documents, new.source_documents),
        "source_chunks": _union(existing.source_chunks, new.source_chunks),
        "created_at": min(created) if created else now,
        "updated_at": now,
        "version": (existing.version or 0) + 1,
    })
