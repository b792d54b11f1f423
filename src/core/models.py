# src/core/models.py - v1
"""Shared Pydantic domain models used across modules.

No module redefines these types, all imports come from core.models.
Identity checks (empty ids, missing selectors) are left to the engines so
they surface as GraphValidationError rather than pydantic errors.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

DEFAULT_BATCH_SIZE = 100
DEFAULT_QUERY_LIMIT = 1000


def _as_provenance_set(values: list[str] | None) -> list[str]:
    """Provenance is a set: drop empties and duplicates, keep it sorted."""
    if not values:
        return []
    return sorted({v for v in values if v})


# === CONNECTION ===


class StoreConfig(BaseModel):
    """Connection options accepted by Store.connect()."""

    url: str = "bolt://localhost:7687"
    username: str = "neo4j"
    password: str = ""
    use_separate_database: bool = False
    max_connection_pool: int = Field(default=100, ge=1)
    connection_timeout: float = Field(default=30.0, gt=0)
    graph_label_prefix: str = ""


# === GRAPH ENTITIES ===


class GraphNode(BaseModel):
    """A node as stored in (and read back from) a logical graph."""

    id: str = ""
    labels: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)

    # --- Promoted semantic fields ---
    entity_type: str | None = None
    description: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    importance: float | None = Field(default=None, ge=0.0, le=1.0)
    embedding: list[float] | None = None
    embeddings: list[list[float]] | None = None

    # --- Provenance ---
    source_documents: list[str] = Field(default_factory=list)
    source_chunks: list[str] = Field(default_factory=list)

    # --- Lifecycle (UTC Unix seconds) ---
    created_at: int | None = None
    updated_at: int | None = None
    version: int | None = Field(default=None, ge=1)

    @field_validator("source_documents", "source_chunks", mode="before")
    @classmethod
    def _dedupe_provenance(cls, v: list[str] | None) -> list[str]:
        return _as_provenance_set(v)

    @field_validator("labels")
    @classmethod
    def _unique_labels(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(label for label in v if label))


class GraphRelationship(BaseModel):
    """A directed edge between two nodes of the same graph."""

    id: str = ""
    type: str = ""
    start_node: str = ""
    end_node: str = ""
    properties: dict[str, Any] = Field(default_factory=dict)

    description: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    weight: float | None = None
    embedding: list[float] | None = None

    source_documents: list[str] = Field(default_factory=list)
    source_chunks: list[str] = Field(default_factory=list)

    created_at: int | None = None
    updated_at: int | None = None
    version: int | None = Field(default=None, ge=1)

    @field_validator("source_documents", "source_chunks", mode="before")
    @classmethod
    def _dedupe_provenance(cls, v: list[str] | None) -> list[str]:
        return _as_provenance_set(v)


# === NODE / RELATIONSHIP OPTIONS ===


class AddNodesOptions(BaseModel):
    graph: str
    nodes: list[GraphNode] = Field(default_factory=list)
    upsert: bool = True
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    timeout: float | None = Field(default=None, gt=0)


class GetNodesOptions(BaseModel):
    graph: str
    ids: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    filter: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1)
    include_properties: bool = True
    include_metadata: bool = True
    fields: list[str] = Field(default_factory=list)
    timeout: float | None = Field(default=None, gt=0)


class DeleteNodesOptions(BaseModel):
    graph: str
    ids: list[str] = Field(default_factory=list)
    filter: dict[str, Any] = Field(default_factory=dict)
    delete_rels: bool = False
    dry_run: bool = False
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    timeout: float | None = Field(default=None, gt=0)


class AddRelationshipsOptions(BaseModel):
    graph: str
    relationships: list[GraphRelationship] = Field(default_factory=list)
    upsert: bool = True
    create_nodes: bool = False
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    timeout: float | None = Field(default=None, gt=0)


class GetRelationshipsOptions(BaseModel):
    graph: str
    ids: list[str] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)
    node_ids: list[str] = Field(default_factory=list)
    direction: Literal["in", "out", "both"] = "both"
    filter: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1)
    include_properties: bool = True
    include_metadata: bool = True
    fields: list[str] = Field(default_factory=list)
    timeout: float | None = Field(default=None, gt=0)


class DeleteRelationshipsOptions(BaseModel):
    graph: str
    ids: list[str] = Field(default_factory=list)
    start_node: str | None = None
    end_node: str | None = None
    types: list[str] = Field(default_factory=list)
    filter: dict[str, Any] = Field(default_factory=dict)
    dry_run: bool = False
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    timeout: float | None = Field(default=None, gt=0)


# === CATALOG ===


class GraphStats(BaseModel):
    """Simple counts describing one logical graph."""

    graph: str
    total_nodes: int = 0
    total_relationships: int = 0
    node_labels: dict[str, int] = Field(default_factory=dict)
    relationship_types: dict[str, int] = Field(default_factory=dict)
    storage_type: Literal["separate_database", "label_based"]
    database_name: str
    graph_label: str | None = None


# === SCHEMA ===


class IndexSpec(BaseModel):
    graph: str
    name: str | None = None
    target: Literal["node", "relationship"] = "node"
    label: str
    properties: list[str] = Field(min_length=1)
    index_type: Literal["range", "text", "point", "fulltext", "vector"] = "range"
    dimensions: int = Field(default=1536, ge=1)
    similarity: Literal["cosine", "euclidean"] = "cosine"
    if_not_exists: bool = True


class ConstraintSpec(BaseModel):
    graph: str
    name: str | None = None
    label: str
    properties: list[str] = Field(min_length=1)
    kind: Literal["unique", "exists", "node_key"] = "unique"
    if_not_exists: bool = True


class IndexInfo(BaseModel):
    name: str
    index_type: str
    entity_type: str
    labels_or_types: list[str] = Field(default_factory=list)
    properties: list[str] = Field(default_factory=list)
    state: str | None = None


class ConstraintInfo(BaseModel):
    name: str
    constraint_type: str
    entity_type: str
    labels_or_types: list[str] = Field(default_factory=list)
    properties: list[str] = Field(default_factory=list)


class GraphSchema(BaseModel):
    """Introspected schema of one logical graph."""

    graph: str
    node_labels: list[str] = Field(default_factory=list)
    relationship_types: list[str] = Field(default_factory=list)
    node_properties: dict[str, list[str]] = Field(default_factory=dict)
    relationship_properties: dict[str, list[str]] = Field(default_factory=dict)
    indexes: list[IndexInfo] = Field(default_factory=list)
    constraints: list[ConstraintInfo] = Field(default_factory=list)


# === QUERIES ===


class CypherQuery(BaseModel):
    kind: Literal["cypher"] = "cypher"
    graph: str
    statement: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    read_only: bool | None = None
    timeout: float | None = Field(default=None, gt=0)


class TraversalQuery(BaseModel):
    kind: Literal["traversal"] = "traversal"
    graph: str
    start_nodes: list[str] = Field(min_length=1)
    min_depth: int = Field(default=1, ge=0)
    max_depth: int = Field(default=3, ge=1, le=10)
    direction: Literal["in", "out", "both"] = "out"
    relationship_types: list[str] = Field(default_factory=list)
    node_filter: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1)
    timeout: float | None = Field(default=None, gt=0)


class PathQuery(BaseModel):
    kind: Literal["path"] = "path"
    graph: str
    source: str
    target: str
    max_depth: int = Field(default=10, ge=1, le=50)
    relationship_types: list[str] = Field(default_factory=list)
    all_shortest: bool = False
    timeout: float | None = Field(default=None, gt=0)


class AnalyticsQuery(BaseModel):
    kind: Literal["analytics"] = "analytics"
    graph: str
    algorithm: Literal["pageRank", "betweenness", "closeness", "degree", "stats"]
    parameters: dict[str, Any] = Field(default_factory=dict)
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1)
    timeout: float | None = Field(default=None, gt=0)


GraphQuery = Annotated[
    Union[CypherQuery, TraversalQuery, PathQuery, AnalyticsQuery],
    Field(discriminator="kind"),
]


class PathResult(BaseModel):
    nodes: list[GraphNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.relationships)


class QueryResult(BaseModel):
    """Ordered records plus execution provenance."""

    kind: str
    records: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    elapsed_ms: int = 0
    nodes: list[GraphNode] = Field(default_factory=list)
    relationships: list[GraphRelationship] = Field(default_factory=list)
    paths: list[PathResult] = Field(default_factory=list)


# === COMMUNITIES ===


class CommunityOptions(BaseModel):
    graph: str
    algorithm: Literal["leiden", "louvain", "label_propagation"] = "leiden"
    max_iterations: int = Field(default=10, ge=1)
    tolerance: float = Field(default=1e-7, gt=0)
    resolution: float = Field(default=1.0, gt=0)
    weight_property: str | None = None
    seed: int | None = 42
    min_community_size: int = Field(default=1, ge=1)
    write_property: str | None = None
    timeout: float | None = Field(default=None, gt=0)


# === INGESTION ===


class ExtractedNode(BaseModel):
    """Candidate node produced by an extraction pass (identity is tentative)."""

    id: str = ""
    name: str = ""
    type: str = ""
    labels: list[str] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)
    description: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    embedding: list[float] | None = None
    source_documents: list[str] = Field(default_factory=list)
    source_chunks: list[str] = Field(default_factory=list)

    @field_validator("source_documents", "source_chunks", mode="before")
    @classmethod
    def _dedupe_provenance(cls, v: list[str] | None) -> list[str]:
        return _as_provenance_set(v)


class ExtractedRelationship(BaseModel):
    id: str = ""
    type: str = ""
    start_node: str = ""
    end_node: str = ""
    description: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    weight: float | None = None
    properties: dict[str, Any] = Field(default_factory=dict)
    source_documents: list[str] = Field(default_factory=list)
    source_chunks: list[str] = Field(default_factory=list)

    @field_validator("source_documents", "source_chunks", mode="before")
    @classmethod
    def _dedupe_provenance(cls, v: list[str] | None) -> list[str]:
        return _as_provenance_set(v)


class ExtractionUsage(BaseModel):
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_texts: int = 0


class ExtractionResult(BaseModel):
    """One LLM-produced batch of candidate nodes and relationships."""

    nodes: list[ExtractedNode] = Field(default_factory=list)
    relationships: list[ExtractedRelationship] = Field(default_factory=list)
    usage: ExtractionUsage = Field(default_factory=ExtractionUsage)
    model: str = ""


class SaveExtractionReport(BaseModel):
    """Outcome of one save_extraction_results call.

    ``processed_count`` counts the results that were ingested successfully;
    ``None`` entries are skipped and failed results only count towards
    ``failed_count``, so the two never overlap.
    """

    entities_count: int = 0
    relationships_count: int = 0
    processed_count: int = 0
    failed_count: int = 0
    dropped_relationships: int = 0
    saved_entities: list[str] = Field(default_factory=list)
    saved_relationships: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# === BACKUP / RESTORE ===


class BackupOptions(BaseModel):
    graph: str
    format: Literal["json", "cypher"] = "json"
    compress: bool = False
    path: str | None = None
    timeout: float | None = Field(default=None, gt=0)


class RestoreOptions(BaseModel):
    graph: str
    data: bytes | None = None
    path: str | None = None
    mode: Literal["create", "upsert", "replace"] = "upsert"
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    timeout: float | None = Field(default=None, gt=0)


class RestoreReport(BaseModel):
    graph: str
    format: Literal["json", "cypher"]
    nodes_restored: int = 0
    relationships_restored: int = 0
    statements_applied: int = 0
