from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import GraphNotFound
from .cache import GraphCache
from .models import KnowledgeGraph
from .store import GraphStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GraphLoader:
    """Reconstructs an in-memory `KnowledgeGraph` from the graph store."""

    store: GraphStore
    cache: GraphCache | None = None

    async def load(self, graph_id: str) -> KnowledgeGraph:
        generation = None
        if self.cache is not None:
            cached = self.cache.get(graph_id)
            if cached is not None:
                return cached
            generation = self.cache.generation(graph_id)

        graph = await self.store.read_graph(graph_id)
        if graph is None:
            raise GraphNotFound(graph_id)
        logger.debug("Loaded graph %s: %d nodes, %d edges", graph_id, len(graph.nodes), len(graph.edges))

        if self.cache is not None:
            self.cache.put(graph, generation=generation)
        return graph
