# src/store/scope.py - v1
"""Scope resolution for the two physical storage strategies.

A logical graph resolves to one of two tagged variants:

- DatabaseScope: the graph is its own physical database. Nodes carry the
  constant anchor label so identity lookups can use an index.
- LabelScope: all graphs share one database. Every node carries the
  synthetic label ``<prefix><graph>`` and every query filters on it.

Both variants expose the same attributes, so query builders never branch on
the storage mode themselves. Also hosts the Cypher identifier helpers shared
by every engine.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Literal, Union

from kgbridge.core.errors import GraphNameUnsupportedError, GraphValidationError

DEFAULT_DATABASE = "neo4j"
SYSTEM_DATABASE = "system"
NODE_ANCHOR_LABEL = "__KGNode"
GRAPH_MARKER_LABEL = "__KGBridgeGraph"

GRAPH_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
# Neo4j database naming rule (5.x): letter first, 3-63 chars, ascii
# letters, digits, dots and dashes.
DATABASE_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9.-]{2,62}$")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class DatabaseScope:
    """Separate-database mode: graph == physical database."""

    graph: str
    kind: Literal["database"] = "database"

    @property
    def database(self) -> str:
        return self.graph

    @property
    def anchor_label(self) -> str:
        return NODE_ANCHOR_LABEL

    @property
    def graph_label(self) -> str | None:
        return None

    @property
    def storage_type(self) -> str:
        return "separate_database"


@dataclass(frozen=True)
class LabelScope:
    """Label-based mode: graph == synthetic label in the shared database."""

    graph: str
    prefix: str = ""
    database: str = DEFAULT_DATABASE
    kind: Literal["label"] = "label"

    @property
    def anchor_label(self) -> str:
        return f"{self.prefix}{self.graph}"

    @property
    def graph_label(self) -> str | None:
        return self.anchor_label

    @property
    def storage_type(self) -> str:
        return "label_based"


Scope = Union[DatabaseScope, LabelScope]


def resolve_scope(graph: str, use_separate_database: bool, label_prefix: str) -> Scope:
    """Pick the scope variant for a validated graph name."""
    if use_separate_database:
        return DatabaseScope(graph=graph)
    return LabelScope(graph=graph, prefix=label_prefix)


# === Validation ===


def validate_graph_name(name: str | None) -> str:
    """Enforce the graph name grammar ``[A-Za-z0-9_-]+``."""
    if not name:
        raise GraphValidationError("graph name must not be empty")
    if not GRAPH_NAME_RE.match(name):
        raise GraphValidationError(
            f"invalid graph name {name!r}: only letters, digits, '_' and '-' are allowed"
        )
    return name


def ensure_database_name(name: str) -> str:
    """Reject names the engine cannot use as a database name."""
    if not DATABASE_NAME_RE.match(name):
        raise GraphNameUnsupportedError(
            name, "database names must start with a letter, be 3-63 characters "
            "and contain only letters, digits, '.' or '-' "
            f"(try {sanitize_graph_name(name)!r})"
        )
    return name


def sanitize_graph_name(name: str) -> str:
    """Derive a database-safe name from an arbitrary graph name.

    Underscores become dashes, other invalid characters are dropped, a
    leading ``g`` is added when the name does not start with a letter and
    short names are padded.
    """
    cleaned = re.sub(r"[^A-Za-z0-9.-]", "", name.replace("_", "-")).lower()
    if not cleaned or not cleaned[0].isalpha():
        cleaned = f"g{cleaned}"
    while len(cleaned) < 3:
        cleaned = f"{cleaned}0"
    return cleaned[:63]


# === Cypher helpers ===


def escape_identifier(name: str) -> str:
    """Quote a label, type or property key with backticks."""
    if not name:
        raise GraphValidationError("identifier must not be empty")
    return "`" + name.replace("`", "``") + "`"


def label_expression(labels: list[str]) -> str:
    """``:`A`:`B``` for a label list (empty string for no labels)."""
    return "".join(f":{escape_identifier(label)}" for label in labels)


def require_identifier(value: str, what: str) -> str:
    """Relationship types and property keys used in DDL must be plain identifiers."""
    if not value or not _IDENTIFIER_RE.match(value):
        raise GraphValidationError(f"invalid {what} {value!r}")
    return value


def property_predicates(
    variable: str, filters: dict[str, Any], param_prefix: str, params: dict[str, Any]
) -> list[str]:
    """Equality predicates for a property filter, registering parameters."""
    clauses: list[str] = []
    for i, (key, value) in enumerate(sorted(filters.items())):
        param = f"{param_prefix}{i}"
        clauses.append(f"{variable}.{escape_identifier(key)} = ${param}")
        params[param] = value
    return clauses


def visible_labels(labels: list[str] | tuple[str, ...], scope: Scope) -> list[str]:
    """Strip the anchor and synthetic graph labels from a returned label set."""
    hidden = {scope.anchor_label, NODE_ANCHOR_LABEL}
    return sorted(label for label in labels if label not in hidden)


# === Property encoding ===


def _is_scalar(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def encode_property(value: Any) -> Any:
    """Convert a value into something the engine can store.

    Scalars and homogeneous lists of scalars pass through; mappings and
    nested lists become canonical JSON strings.
    """
    if value is None or _is_scalar(value):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else list(value)
        if all(_is_scalar(item) for item in items):
            kinds = {type(item) for item in items}
            if len(kinds) <= 1 or kinds <= {int, float}:
                return items
        return json.dumps(items, sort_keys=True, default=str)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def encode_properties(properties: dict[str, Any]) -> dict[str, Any]:
    """Encode a property map, dropping None values."""
    return {
        key: encode_property(value)
        for key, value in properties.items()
        if value is not None
    }


def decode_json_property(value: Any) -> Any:
    """Inverse of encode_property for fields known to hold nested data."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value
