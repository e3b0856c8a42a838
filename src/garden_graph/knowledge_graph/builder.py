from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from ..errors import ExtractionFailure, GardenGraphError, GraphNotFound
from .cache import GraphCache
from .documents import DocumentSource, SourceDocument
from .extractors import ConceptMention, EntityMention, MentionExtractor
from .models import (
    APPEARS_IN,
    RELATED_TO,
    KnowledgeEdge,
    KnowledgeNode,
    concept_node_id,
    document_node_id,
    entity_node_id,
)
from .store import GraphStore

logger = logging.getLogger(__name__)

DEFAULT_RELATED_WEIGHT = 0.5
DEFAULT_MIN_WEIGHT = 0.1
UNTITLED = "Untitled Document"


@dataclass(slots=True)
class GraphAssembly:
    nodes: list[KnowledgeNode]
    edges: list[KnowledgeEdge]
    document_count: int
    entity_count: int
    concept_count: int
    dropped: list[str] = field(default_factory=list)

    def metadata(self) -> dict[str, Any]:
        return {
            "node_count": len(self.nodes),
            "edge_count": len(self.edges),
            "entity_count": self.entity_count,
            "concept_count": self.concept_count,
            "document_count": self.document_count,
        }


@dataclass(slots=True)
class BuildStats:
    graph_id: str
    knowledge_base_id: str | None
    documents: int
    entities: int
    concepts: int
    nodes: int
    edges: int
    dropped_references: int
    fetch_ms: float
    extract_ms: float
    write_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "graph_id": self.graph_id,
            "knowledge_base_id": self.knowledge_base_id,
            "documents": self.documents,
            "entities": self.entities,
            "concepts": self.concepts,
            "nodes": self.nodes,
            "edges": self.edges,
            "dropped_references": self.dropped_references,
            "timing_ms": {"fetch": self.fetch_ms, "extract": self.extract_ms, "write": self.write_ms},
        }


def _union(a: tuple[str, ...], b: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(a + b))


def merge_entities(mentions: list[EntityMention]) -> list[EntityMention]:
    """Collapse duplicate ids: first name wins, max score, unioned references."""
    merged: dict[str, EntityMention] = {}
    for m in mentions:
        prev = merged.get(m.id)
        if prev is None:
            merged[m.id] = m
            continue
        merged[m.id] = replace(
            prev,
            frequency=max(prev.frequency, m.frequency),
            document_ids=_union(prev.document_ids, m.document_ids),
            related_entity_ids=_union(prev.related_entity_ids, m.related_entity_ids),
        )
    return list(merged.values())


def merge_concepts(mentions: list[ConceptMention]) -> list[ConceptMention]:
    merged: dict[str, ConceptMention] = {}
    for m in mentions:
        prev = merged.get(m.id)
        if prev is None:
            merged[m.id] = m
            continue
        merged[m.id] = replace(
            prev,
            relevance=max(prev.relevance, m.relevance),
            document_ids=_union(prev.document_ids, m.document_ids),
            related_concept_ids=_union(prev.related_concept_ids, m.related_concept_ids),
        )
    return list(merged.values())


class _EdgeSink:
    """Collects edges, dropping duplicates and dangling references.

    Duplicates are judged by label and endpoints (unordered for symmetric
    relations), never by id. Ids are joined with `_`, so two distinct edges can
    render to the same id; the later one gets a hash suffix.
    """

    def __init__(self, node_ids: set[str], min_weight: float):
        self.node_ids = node_ids
        self.min_weight = min_weight
        self.edges: list[KnowledgeEdge] = []
        self.dropped: list[str] = []
        self._ids: set[str] = set()
        self._seen: set[tuple[str, Any]] = set()

    def weight(self, score: float, what: str) -> float:
        if isinstance(score, (int, float)) and math.isfinite(score) and score > 0:
            return float(score)
        logger.warning("Non-positive weight %r for %s; using %s", score, what, self.min_weight)
        return self.min_weight

    def add(self, edge_id: str, source: str, target: str, label: str, weight: float, *, symmetric: bool) -> None:
        if source not in self.node_ids or target not in self.node_ids:
            self.dropped.append(edge_id)
            return
        if source == target:
            return
        key = (label, frozenset((source, target)) if symmetric else (source, target))
        if key in self._seen:
            return
        self._seen.add(key)
        if edge_id in self._ids:
            digest = hashlib.sha1(f"{label}\0{source}\0{target}".encode()).hexdigest()[:8]
            logger.warning("Edge id %s already used; storing %s -> %s as %s_%s", edge_id, source, target, edge_id, digest)
            edge_id = f"{edge_id}_{digest}"
        self._ids.add(edge_id)
        self.edges.append(
            KnowledgeEdge(id=edge_id, source_id=source, target_id=target, label=label, weight=weight)
        )


def assemble_graph(
    documents: list[SourceDocument],
    entities: list[EntityMention],
    concepts: list[ConceptMention],
    *,
    related_weight: float = DEFAULT_RELATED_WEIGHT,
    min_weight: float = DEFAULT_MIN_WEIGHT,
) -> GraphAssembly:
    """Materialize nodes and edges from documents and extractor output.

    Node order: documents, then entities, then concepts. Edge order: entity
    occurrences, concept occurrences, entity relations, concept relations.
    Related pairs are emitted once per unordered pair since traversal treats
    edges as bidirectional.
    """
    unique: dict[str, SourceDocument] = {}
    for d in documents:
        unique.setdefault(d.id, d)
    docs = list(unique.values())
    entities = merge_entities(entities)
    concepts = merge_concepts(concepts)

    nodes: list[KnowledgeNode] = []
    for d in docs:
        nodes.append(
            KnowledgeNode(
                id=document_node_id(d.id),
                label=d.title or UNTITLED,
                type="document",
                properties={"document_id": d.id, "content_type": d.content_type},
                metadata=dict(d.metadata),
            )
        )
    for e in entities:
        nodes.append(
            KnowledgeNode(
                id=entity_node_id(e.id),
                label=e.name,
                type="entity",
                properties={"entity_type": e.type, "frequency": e.frequency},
            )
        )
    for c in concepts:
        nodes.append(
            KnowledgeNode(
                id=concept_node_id(c.id),
                label=c.name,
                type="concept",
                properties={"relevance": c.relevance},
            )
        )

    sink = _EdgeSink({n.id for n in nodes}, min_weight)

    for e in entities:
        w = sink.weight(e.frequency, f"entity {e.id}")
        for doc_id in e.document_ids:
            sink.add(
                f"edge_entity_{e.id}_doc_{doc_id}",
                entity_node_id(e.id),
                document_node_id(doc_id),
                APPEARS_IN,
                w,
                symmetric=False,
            )

    for c in concepts:
        w = sink.weight(c.relevance, f"concept {c.id}")
        for doc_id in c.document_ids:
            sink.add(
                f"edge_concept_{c.id}_doc_{doc_id}",
                concept_node_id(c.id),
                document_node_id(doc_id),
                RELATED_TO,
                w,
                symmetric=False,
            )

    for e in entities:
        for rel_id in e.related_entity_ids:
            sink.add(
                f"edge_entity_{e.id}_entity_{rel_id}",
                entity_node_id(e.id),
                entity_node_id(rel_id),
                RELATED_TO,
                related_weight,
                symmetric=True,
            )

    for c in concepts:
        for rel_id in c.related_concept_ids:
            sink.add(
                f"edge_concept_{c.id}_concept_{rel_id}",
                concept_node_id(c.id),
                concept_node_id(rel_id),
                RELATED_TO,
                related_weight,
                symmetric=True,
            )

    return GraphAssembly(
        nodes=nodes,
        edges=sink.edges,
        document_count=len(docs),
        entity_count=len(entities),
        concept_count=len(concepts),
        dropped=sink.dropped,
    )


class BuildLocks:
    """One asyncio.Lock per graph id, kept only while someone holds or awaits it.

    Builds of different graphs never wait on each other. The entry is removed
    when its last user leaves, so the map only holds graphs in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, graph_id: str) -> AsyncIterator[None]:
        lk = self._locks.get(graph_id)
        if lk is None:
            lk = self._locks[graph_id] = asyncio.Lock()
        self._users[graph_id] = self._users.get(graph_id, 0) + 1
        try:
            async with lk:
                yield
        finally:
            self._users[graph_id] -= 1
            if not self._users[graph_id]:
                del self._users[graph_id]
                del self._locks[graph_id]

    def is_building(self, graph_id: str) -> bool:
        lk = self._locks.get(graph_id)
        return lk is not None and lk.locked()

    def __len__(self) -> int:
        return len(self._locks)


class GraphBuilder:
    """Turns a knowledge base into the node/edge set of one graph.

    Each build fully replaces the graph's previous nodes and edges in a single
    store write; the record's metadata is stamped in that same write, so a
    failed write leaves the previous graph untouched.
    """

    def __init__(
        self,
        store: GraphStore,
        documents: DocumentSource,
        extractor: MentionExtractor,
        *,
        cache: GraphCache | None = None,
        locks: BuildLocks | None = None,
        related_weight: float = DEFAULT_RELATED_WEIGHT,
        min_weight: float = DEFAULT_MIN_WEIGHT,
    ):
        if related_weight <= 0 or min_weight <= 0:
            raise ValueError("edge weights must be positive")
        self.store = store
        self.documents = documents
        self.extractor = extractor
        self.cache = cache
        self.locks = locks or BuildLocks()
        self.related_weight = related_weight
        self.min_weight = min_weight

    async def build(self, knowledge_base_id: str | None, graph_id: str) -> BuildStats:
        async with self.locks.lock(graph_id):
            return await self._build(knowledge_base_id, graph_id)

    async def _build(self, knowledge_base_id: str | None, graph_id: str) -> BuildStats:
        record = await self.store.get_graph(graph_id)
        if record is None:
            raise GraphNotFound(graph_id)

        t0 = time.perf_counter()
        docs = await self.documents.list_documents(knowledge_base_id) if knowledge_base_id else []
        t1 = time.perf_counter()

        entities: list[EntityMention] = []
        concepts: list[ConceptMention] = []
        if docs:
            try:
                entities = await self.extractor.extract_entities(docs)
                concepts = await self.extractor.extract_concepts(docs)
            except GardenGraphError:
                raise
            except Exception as e:
                logger.error("Extraction failed for graph %s (kb %s): %s", graph_id, knowledge_base_id, e)
                raise ExtractionFailure(f"extraction failed for knowledge base {knowledge_base_id}: {e}") from e
        t2 = time.perf_counter()

        assembly = assemble_graph(
            docs,
            entities,
            concepts,
            related_weight=self.related_weight,
            min_weight=self.min_weight,
        )
        if assembly.dropped:
            logger.warning(
                "Graph %s: dropped %d edge(s) referencing unknown nodes, e.g. %s",
                graph_id,
                len(assembly.dropped),
                ", ".join(assembly.dropped[:5]),
            )

        await self.store.replace_contents(
            graph_id,
            nodes=assembly.nodes,
            edges=assembly.edges,
            metadata={**record.metadata, **assembly.metadata()},
            updated_at=datetime.now(UTC),
        )
        t3 = time.perf_counter()

        if self.cache is not None:
            self.cache.invalidate(graph_id)

        stats = BuildStats(
            graph_id=graph_id,
            knowledge_base_id=knowledge_base_id,
            documents=assembly.document_count,
            entities=assembly.entity_count,
            concepts=assembly.concept_count,
            nodes=len(assembly.nodes),
            edges=len(assembly.edges),
            dropped_references=len(assembly.dropped),
            fetch_ms=(t1 - t0) * 1000.0,
            extract_ms=(t2 - t1) * 1000.0,
            write_ms=(t3 - t2) * 1000.0,
        )
        logger.info(
            "Built graph %s from kb %s: %d nodes, %d edges (%d docs, %d entities, %d concepts)",
            graph_id,
            knowledge_base_id,
            stats.nodes,
            stats.edges,
            stats.documents,
            stats.entities,
            stats.concepts,
        )
        return stats
