from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from .models import GraphRecord, KnowledgeEdge, KnowledgeGraph, KnowledgeNode


class GraphStore(Protocol):
    """Flat-record persistence for graphs, keyed by graph id.

    Implementations raise `PersistenceFailure` when the backend fails and
    `GraphNotFound` when a write targets a graph record that does not exist.
    """

    async def create_graph(self, record: GraphRecord) -> None: ...

    async def get_graph(self, graph_id: str) -> GraphRecord | None: ...

    async def list_graphs(self, knowledge_base_id: str | None = None) -> list[GraphRecord]: ...

    async def read_graph(self, graph_id: str) -> KnowledgeGraph | None:
        """Record, nodes and edges read as one consistent snapshot.

        Nodes and edges come back in the order they were written.
        """
        ...

    async def replace_contents(
        self,
        graph_id: str,
        *,
        nodes: list[KnowledgeNode],
        edges: list[KnowledgeEdge],
        metadata: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        """Atomically swap all nodes and edges of a graph and stamp its record.

        Either everything is written or the previous state is kept.
        """
        ...

    async def delete_graph(self, graph_id: str) -> bool:
        """Remove the record with its nodes and edges. False if it did not exist."""
        ...
