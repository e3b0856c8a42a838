from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal, Union

from ..errors import InvalidQuery

NodeType = Literal[
    "entity",
    "concept",
    "document",
    "chunk",
    "topic",
]

NODE_TYPES: frozenset[str] = frozenset({"entity", "concept", "document", "chunk", "topic"})

APPEARS_IN = "APPEARS_IN"
RELATED_TO = "RELATED_TO"


def document_node_id(document_id: str) -> str:
    return f"node_doc_{document_id}"


def entity_node_id(entity_id: str) -> str:
    return f"node_entity_{entity_id}"


def concept_node_id(concept_id: str) -> str:
    return f"node_concept_{concept_id}"


@dataclass(frozen=True, slots=True)
class EntityProps:
    entity_type: str | None
    frequency: float | None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ConceptProps:
    relevance: float | None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DocumentProps:
    document_id: str | None
    content_type: str | None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class GenericProps:
    extra: dict[str, Any] = field(default_factory=dict)


NodeProps = Union[EntityProps, ConceptProps, DocumentProps, GenericProps]

_KNOWN_KEYS: dict[str, tuple[str, ...]] = {
    "entity": ("entity_type", "frequency"),
    "concept": ("relevance",),
    "document": ("document_id", "content_type"),
}


@dataclass(frozen=True, slots=True)
class KnowledgeNode:
    """A vertex of a knowledge graph.

    `id` is derived deterministically from the source record
    (see `document_node_id`, `entity_node_id`, `concept_node_id`).
    """

    id: str
    label: str
    type: NodeType
    properties: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def typed_properties(self) -> NodeProps:
        """Typed view over the property bag; unknown keys land in `extra`."""
        known = _KNOWN_KEYS.get(self.type, ())
        extra = {k: v for k, v in self.properties.items() if k not in known}
        p = self.properties
        if self.type == "entity":
            return EntityProps(entity_type=p.get("entity_type"), frequency=p.get("frequency"), extra=extra)
        if self.type == "concept":
            return ConceptProps(relevance=p.get("relevance"), extra=extra)
        if self.type == "document":
            return DocumentProps(
                document_id=p.get("document_id"), content_type=p.get("content_type"), extra=extra
            )
        return GenericProps(extra=extra)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class KnowledgeEdge:
    """A weighted, labeled relationship.

    Stored as source/target but navigable from either endpoint. Higher weight
    means a stronger relationship.
    """

    id: str
    source_id: str
    target_id: str
    label: str
    weight: float
    properties: dict[str, Any] = field(default_factory=dict)

    def other_end(self, node_id: str) -> str:
        return self.target_id if self.source_id == node_id else self.source_id

    def touches(self, node_id: str) -> bool:
        return self.source_id == node_id or self.target_id == node_id

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class GraphRecord:
    """Graph metadata record as kept by the graph store."""

    id: str
    name: str
    description: str | None = None
    knowledge_base_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "knowledge_base_id": self.knowledge_base_id,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class KnowledgeGraph:
    """An in-memory snapshot of one graph: record plus all nodes and edges."""

    record: GraphRecord
    nodes: list[KnowledgeNode] = field(default_factory=list)
    edges: list[KnowledgeEdge] = field(default_factory=list)
    _nodes_by_id: dict[str, KnowledgeNode] | None = field(default=None, init=False, repr=False, compare=False)
    _incident: dict[str, list[KnowledgeEdge]] | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def id(self) -> str:
        return self.record.id

    def node(self, node_id: str) -> KnowledgeNode | None:
        return self._node_index().get(node_id)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._node_index()

    def incident_edges(self, node_id: str) -> list[KnowledgeEdge]:
        """Edges touching `node_id` by either endpoint, in stored edge order."""
        if self._incident is None:
            incident: dict[str, list[KnowledgeEdge]] = {}
            for e in self.edges:
                incident.setdefault(e.source_id, []).append(e)
                if e.target_id != e.source_id:
                    incident.setdefault(e.target_id, []).append(e)
            self._incident = incident
        return self._incident.get(node_id, [])

    def _node_index(self) -> dict[str, KnowledgeNode]:
        if self._nodes_by_id is None:
            self._nodes_by_id = {n.id: n for n in self.nodes}
        return self._nodes_by_id

    def to_dict(self) -> dict[str, Any]:
        out = self.record.to_dict()
        out["nodes"] = [n.to_dict() for n in self.nodes]
        out["edges"] = [e.to_dict() for e in self.edges]
        return out


@dataclass(slots=True)
class Subgraph:
    """Result of a neighborhood or shortest-path query."""

    nodes: list[KnowledgeNode] = field(default_factory=list)
    edges: list[KnowledgeEdge] = field(default_factory=list)
    cost: float | None = None

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def edge_ids(self) -> list[str]:
        return [e.id for e in self.edges]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }
        if self.cost is not None:
            out["cost"] = self.cost
        return out


@dataclass(frozen=True, slots=True)
class NeighborhoodQuery:
    """Options for a bounded neighborhood exploration.

    Empty `start_node_ids` means every node. `node_types` filters the starting
    set only; `edge_labels` filters which edges may be traversed.
    """

    start_node_ids: tuple[str, ...] = ()
    node_types: tuple[str, ...] = ()
    edge_labels: tuple[str, ...] = ()
    max_depth: int = 2
    limit: int = 100

    def validate(self) -> None:
        if self.max_depth < 0:
            raise InvalidQuery(f"max_depth must be >= 0, got {self.max_depth}")
        if self.limit < 1:
            raise InvalidQuery(f"limit must be >= 1, got {self.limit}")
        unknown = set(self.node_types) - NODE_TYPES
        if unknown:
            raise InvalidQuery(f"unknown node types: {sorted(unknown)}")
