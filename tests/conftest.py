# tests/conftest.py - v1
"""Shared test fixtures for all unit and integration tests.

Provides a scripted fake Bolt driver and sample graph data. Unit tests never
touch a real server.
"""

from __future__ import annotations

import pytest

from fakes import FakeDriver
from kgbridge.core.models import (
    ExtractedNode,
    ExtractedRelationship,
    ExtractionResult,
    GraphNode,
    GraphRelationship,
)
from kgbridge.logging.context import clear_context


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_context()
    yield
    clear_context()


@pytest.fixture
def fake_driver() -> FakeDriver:
    """Enterprise-edition fake driver with no scripted answers."""
    return FakeDriver()


@pytest.fixture
def sample_nodes() -> list[GraphNode]:
    return [
        GraphNode(id="eu", labels=["Organization"], properties={"name": "European Union"},
                  entity_type="Organization", source_documents=["doc1"]),
        GraphNode(id="nis2", labels=["Regulation"], properties={"name": "NIS2 Directive"},
                  entity_type="Regulation", confidence=0.9),
        GraphNode(id="acme", labels=["Organization"], properties={"name": "Acme"}),
    ]


@pytest.fixture
def sample_relationships() -> list[GraphRelationship]:
    return [
        GraphRelationship(type="REGULATES", start_node="eu", end_node="nis2", weight=1.0),
        GraphRelationship(id="r2", type="COMPLIES_WITH", start_node="acme", end_node="nis2"),
    ]


@pytest.fixture
def sample_extraction() -> ExtractionResult:
    """Two candidates for the same entity plus one distinct entity."""
    return ExtractionResult(
        nodes=[
            ExtractedNode(id="c1", name="European Union", type="Organization",
                          source_documents=["doc1"], confidence=0.7),
            ExtractedNode(id="c2", name="  european   union ", type="Organization",
                          source_documents=["doc2"], confidence=0.9),
            ExtractedNode(id="c3", name="NIS2", type="Regulation", source_chunks=["chunk_1"]),
        ],
        relationships=[
            ExtractedRelationship(type="REGULATES", start_node="c1", end_node="c3",
                                  source_documents=["doc1"]),
            ExtractedRelationship(type="REGULATES", start_node="c2", end_node="c3",
                                  source_documents=["doc2"]),
            ExtractedRelationship(type="MENTIONS", start_node="c1", end_node="ghost"),
        ],
        model="test-model",
    )
