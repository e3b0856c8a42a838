from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from .models import KnowledgeEdge, KnowledgeGraph, KnowledgeNode, NeighborhoodQuery, Subgraph


@dataclass(slots=True)
class NeighborhoodQueryEngine:
    """Bounded breadth-first exploration over a loaded graph snapshot.

    Traversal is multi-source: every qualifying start node is queued at depth 0
    in graph node order, then the queue is drained FIFO. Edges are walked from
    either endpoint, in stored edge order. When `limit` truncates the result,
    the nodes kept are the first ones reached in that order.

    Only edges whose both endpoints made it into the result are returned, so
    the subgraph never references a node it does not contain.
    """

    def query(self, graph: KnowledgeGraph, spec: NeighborhoodQuery | None = None) -> Subgraph:
        spec = spec or NeighborhoodQuery()
        spec.validate()

        starts = set(spec.start_node_ids)
        types = set(spec.node_types)
        labels = set(spec.edge_labels)

        queue: deque[tuple[KnowledgeNode, int]] = deque(
            (n, 0)
            for n in graph.nodes
            if (not starts or n.id in starts) and (not types or n.type in types)
        )

        visited: set[str] = set()
        result: list[KnowledgeNode] = []
        seen_edges: set[str] = set()
        traversed: list[KnowledgeEdge] = []

        while queue and len(result) < spec.limit:
            node, depth = queue.popleft()
            if node.id in visited:
                continue
            visited.add(node.id)
            result.append(node)

            if depth >= spec.max_depth:
                continue

            for edge in graph.incident_edges(node.id):
                if labels and edge.label not in labels:
                    continue
                if edge.id not in seen_edges:
                    seen_edges.add(edge.id)
                    traversed.append(edge)
                neighbor_id = edge.other_end(node.id)
                if neighbor_id in visited:
                    continue
                neighbor = graph.node(neighbor_id)
                if neighbor is not None:
                    queue.append((neighbor, depth + 1))

        kept = {n.id for n in result}
        edges = [e for e in traversed if e.source_id in kept and e.target_id in kept]
        return Subgraph(nodes=result, edges=edges)
