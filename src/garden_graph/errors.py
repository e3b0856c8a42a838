"""Error taxonomy for graph build and query operations.

Shortest-path queries between disconnected nodes are not errors; they return an
empty ``Subgraph``.
"""

from __future__ import annotations


class GardenGraphError(Exception):
    """Base class for all graph engine errors."""


class NotFound(GardenGraphError):
    """A referenced graph or node does not exist."""


class GraphNotFound(NotFound):
    def __init__(self, graph_id: str):
        super().__init__(f"knowledge graph not found: {graph_id}")
        self.graph_id = graph_id


class NodeNotFound(NotFound):
    def __init__(self, graph_id: str, node_id: str):
        super().__init__(f"node {node_id} not found in knowledge graph {graph_id}")
        self.graph_id = graph_id
        self.node_id = node_id


class ExtractionFailure(GardenGraphError):
    """The extraction collaborator failed or timed out during a build."""


class PersistenceFailure(GardenGraphError):
    """A graph store read or write failed."""


class InvalidQuery(GardenGraphError, ValueError):
    """Neighborhood query options are out of range."""
