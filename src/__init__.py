# src/__init__.py - v1
"""kgbridge: dual-mode Neo4j graph store for GraphRAG pipelines."""

from kgbridge.store.store import Store

__all__ = ["Store"]
__version__ = "0.1.0"
