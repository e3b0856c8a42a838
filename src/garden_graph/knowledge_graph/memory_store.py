from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any

from ..errors import GraphNotFound
from .models import GraphRecord, KnowledgeEdge, KnowledgeGraph, KnowledgeNode

logger = logging.getLogger(__name__)


class InMemoryGraphStore:
    """Process-local graph store. Used by tests and the `memory` store setting."""

    def __init__(self) -> None:
        self._graphs: dict[str, GraphRecord] = {}
        self._nodes: dict[str, list[KnowledgeNode]] = {}
        self._edges: dict[str, list[KnowledgeEdge]] = {}

    async def create_graph(self, record: GraphRecord) -> None:
        self._graphs[record.id] = replace(record, metadata=dict(record.metadata))
        self._nodes[record.id] = []
        self._edges[record.id] = []

    async def get_graph(self, graph_id: str) -> GraphRecord | None:
        rec = self._graphs.get(graph_id)
        return replace(rec, metadata=dict(rec.metadata)) if rec else None

    async def list_graphs(self, knowledge_base_id: str | None = None) -> list[GraphRecord]:
        return [
            replace(r, metadata=dict(r.metadata))
            for r in self._graphs.values()
            if knowledge_base_id is None or r.knowledge_base_id == knowledge_base_id
        ]

    async def read_graph(self, graph_id: str) -> KnowledgeGraph | None:
        rec = await self.get_graph(graph_id)
        if rec is None:
            return None
        return KnowledgeGraph(record=rec, nodes=list(self._nodes[graph_id]), edges=list(self._edges[graph_id]))

    async def replace_contents(
        self,
        graph_id: str,
        *,
        nodes: list[KnowledgeNode],
        edges: list[KnowledgeEdge],
        metadata: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        rec = self._graphs.get(graph_id)
        if rec is None:
            raise GraphNotFound(graph_id)
        self._nodes[graph_id] = list(nodes)
        self._edges[graph_id] = list(edges)
        self._graphs[graph_id] = replace(rec, metadata=dict(metadata), updated_at=updated_at)
        logger.debug("Replaced graph %s: %d nodes, %d edges", graph_id, len(nodes), len(edges))

    async def delete_graph(self, graph_id: str) -> bool:
        if graph_id not in self._graphs:
            return False
        del self._graphs[graph_id]
        self._nodes.pop(graph_id, None)
        self._edges.pop(graph_id, None)
        return True
