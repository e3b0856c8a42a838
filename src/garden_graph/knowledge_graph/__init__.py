"""Knowledge graph subsystem.

This module provides:
- A builder that turns a knowledge base into document/entity/concept nodes
- Graph store implementations (memory, SQLite, Postgres) behind one protocol
- Neighborhood (BFS) and shortest-path (Dijkstra) queries over loaded snapshots

The default extractor is lightweight and has no heavy NLP dependencies.
"""

from .builder import BuildStats, GraphBuilder
from .cache import GraphCache
from .loader import GraphLoader
from .models import KnowledgeEdge, KnowledgeGraph, KnowledgeNode, NeighborhoodQuery, Subgraph
from .neighborhood import NeighborhoodQueryEngine
from .paths import ShortestPathEngine
from .service import KnowledgeGraphService, build_service
from .store import GraphStore

__all__ = [
    "BuildStats",
    "GraphBuilder",
    "GraphCache",
    "GraphLoader",
    "GraphStore",
    "KnowledgeEdge",
    "KnowledgeGraph",
    "KnowledgeGraphService",
    "KnowledgeNode",
    "NeighborhoodQuery",
    "NeighborhoodQueryEngine",
    "ShortestPathEngine",
    "Subgraph",
    "build_service",
]
