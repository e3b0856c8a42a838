from __future__ import annotations

import logging
from collections import OrderedDict

from .models import KnowledgeGraph

logger = logging.getLogger(__name__)


class GraphCache:
    """Loaded-graph cache with invalidate-on-write semantics.

    Entries never expire on a timer; the builder invalidates a graph after a
    successful replace and the service does so on delete. Bounded LRU.

    Every invalidation bumps a per-graph generation. A loader passes the
    generation it observed before reading the store to `put`, so a snapshot read
    before a rebuild committed is never cached after it.
    """

    def __init__(self, max_graphs: int = 64):
        if max_graphs < 1:
            raise ValueError("max_graphs must be >= 1")
        self.max_graphs = max_graphs
        self._entries: OrderedDict[str, KnowledgeGraph] = OrderedDict()
        self._generations: dict[str, int] = {}
        self.hits = 0
        self.misses = 0

    def generation(self, graph_id: str) -> int:
        return self._generations.get(graph_id, 0)

    def get(self, graph_id: str) -> KnowledgeGraph | None:
        graph = self._entries.get(graph_id)
        if graph is None:
            self.misses += 1
            return None
        self._entries.move_to_end(graph_id)
        self.hits += 1
        return graph

    def put(self, graph: KnowledgeGraph, *, generation: int | None = None) -> bool:
        if generation is not None and generation != self.generation(graph.id):
            logger.debug("Discarded stale snapshot of graph %s", graph.id)
            return False
        self._entries[graph.id] = graph
        self._entries.move_to_end(graph.id)
        while len(self._entries) > self.max_graphs:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted graph %s from cache", evicted)
        return True

    def invalidate(self, graph_id: str) -> None:
        self._generations[graph_id] = self.generation(graph_id) + 1
        if self._entries.pop(graph_id, None) is not None:
            logger.debug("Invalidated cached graph %s", graph_id)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, graph_id: object) -> bool:
        return graph_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
