from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import networkx as nx

from ..errors import NodeNotFound
from .models import KnowledgeEdge, KnowledgeGraph, Subgraph

# Weights at or below this are treated as missing.
NEAR_ZERO = 1e-9


def edge_cost(weight: float, fallback: float = 0.1) -> float:
    """Traversal cost of an edge: stronger relationships are shorter hops."""
    if not math.isfinite(weight) or weight <= NEAR_ZERO:
        weight = fallback
    return 1.0 / weight


def _cheapest(parallel: dict[str, dict[str, Any]]) -> dict[str, Any]:
    # min() keeps the first of equal costs, i.e. stored edge order.
    return min(parallel.values(), key=lambda attrs: attrs["cost"])


@dataclass(slots=True)
class ShortestPathEngine:
    """Dijkstra over a loaded snapshot with cost = 1 / weight.

    The snapshot is viewed as an undirected multigraph keyed by edge id, so
    parallel edges survive and the cheapest one is reported for each hop.
    """

    zero_weight_fallback: float = 0.1

    def to_networkx(self, graph: KnowledgeGraph) -> nx.MultiGraph:
        g = nx.MultiGraph()
        g.add_nodes_from(n.id for n in graph.nodes)
        for edge in graph.edges:
            if not (graph.has_node(edge.source_id) and graph.has_node(edge.target_id)):
                continue
            g.add_edge(
                edge.source_id,
                edge.target_id,
                key=edge.id,
                edge=edge,
                cost=edge_cost(edge.weight, self.zero_weight_fallback),
            )
        return g

    def shortest_path(self, graph: KnowledgeGraph, source_id: str, target_id: str) -> Subgraph:
        """Minimum-cost path from `source_id` to `target_id`.

        Returns an empty `Subgraph` (cost None) when the target is unreachable.
        Raises NodeNotFound if either endpoint is not in the graph.
        """
        for node_id in (source_id, target_id):
            if not graph.has_node(node_id):
                raise NodeNotFound(graph.id, node_id)

        if source_id == target_id:
            return Subgraph(nodes=[graph.node(source_id)], edges=[], cost=0.0)

        g = self.to_networkx(graph)
        try:
            cost, path = nx.single_source_dijkstra(
                g, source_id, target_id, weight=lambda _u, _v, parallel: _cheapest(parallel)["cost"]
            )
        except nx.NetworkXNoPath:
            return Subgraph()

        edges: list[KnowledgeEdge] = [_cheapest(g[u][v])["edge"] for u, v in zip(path, path[1:])]
        return Subgraph(nodes=[graph.node(i) for i in path], edges=edges, cost=float(cost))
