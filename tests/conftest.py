"""
Pytest configuration and fixtures for the knowledge graph tests.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from garden_graph.knowledge_graph.builder import GraphBuilder
from garden_graph.knowledge_graph.cache import GraphCache
from garden_graph.knowledge_graph.documents import InMemoryDocumentSource, SourceDocument
from garden_graph.knowledge_graph.extractors import ConceptMention, EntityMention
from garden_graph.knowledge_graph.loader import GraphLoader
from garden_graph.knowledge_graph.memory_store import InMemoryGraphStore
from garden_graph.knowledge_graph.models import (
    RELATED_TO,
    GraphRecord,
    KnowledgeEdge,
    KnowledgeGraph,
    KnowledgeNode,
)
from garden_graph.knowledge_graph.service import KnowledgeGraphService


class StaticExtractor:
    """Extractor double returning canned mentions, or raising `error`."""

    def __init__(self, entities=None, concepts=None, error: Exception | None = None):
        self.entities = list(entities or [])
        self.concepts = list(concepts or [])
        self.error = error
        self.calls = 0

    async def extract_entities(self, documents):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.entities)

    async def extract_concepts(self, documents):
        if self.error is not None:
            raise self.error
        return list(self.concepts)


def make_doc(doc_id: str, kb: str = "kb1", title: str | None = None, content: str = "") -> SourceDocument:
    metadata = {"contentType": "text/plain"}
    if title is not None:
        metadata["title"] = title
    return SourceDocument(id=doc_id, knowledge_base_id=kb, metadata=metadata, content=content)


def make_record(graph_id: str = "g1", kb: str | None = "kb1", name: str = "test graph") -> GraphRecord:
    now = datetime.now(UTC)
    return GraphRecord(id=graph_id, name=name, knowledge_base_id=kb, created_at=now, updated_at=now)


# =============================================================================
# BUILD FIXTURES
# =============================================================================

@pytest.fixture
def documents() -> InMemoryDocumentSource:
    """Three documents in kb1; doc 3 has no title."""
    src = InMemoryDocumentSource()
    src.set_documents(
        "kb1",
        [
            make_doc("1", title="Doc One"),
            make_doc("2", title="Doc Two"),
            make_doc("3"),
        ],
    )
    return src


@pytest.fixture
def extractor() -> StaticExtractor:
    """E1 appears in docs 1-2, C1 in docs 1-3."""
    return StaticExtractor(
        entities=[EntityMention(id="E1", name="Entity One", type="PERSON", frequency=0.8, document_ids=("1", "2"))],
        concepts=[ConceptMention(id="C1", name="Concept One", relevance=0.9, document_ids=("1", "2", "3"))],
    )


@pytest.fixture
def store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def cache() -> GraphCache:
    return GraphCache(max_graphs=8)


@pytest.fixture
def builder(store, documents, extractor, cache) -> GraphBuilder:
    return GraphBuilder(store, documents, extractor, cache=cache)


@pytest.fixture
def service(store, builder, cache) -> KnowledgeGraphService:
    return KnowledgeGraphService(store, builder, GraphLoader(store, cache))


# =============================================================================
# GRAPH FIXTURES
# =============================================================================

@pytest.fixture
def make_graph():
    """Build a snapshot from `(source, target, weight[, label])` tuples.

    Nodes are created in first-mention order unless `nodes` maps ids to types.
    """

    def _make(edges, *, nodes: dict[str, str] | None = None, graph_id: str = "g1") -> KnowledgeGraph:
        types = dict(nodes or {})
        for e in edges:
            types.setdefault(e[0], "entity")
            types.setdefault(e[1], "entity")
        node_list = [KnowledgeNode(id=n, label=n, type=t) for n, t in types.items()]
        edge_list = [
            KnowledgeEdge(
                id=f"{e[0]}-{e[1]}",
                source_id=e[0],
                target_id=e[1],
                label=e[3] if len(e) > 3 else RELATED_TO,
                weight=e[2],
            )
            for e in edges
        ]
        return KnowledgeGraph(record=make_record(graph_id), nodes=node_list, edges=edge_list)

    return _make
