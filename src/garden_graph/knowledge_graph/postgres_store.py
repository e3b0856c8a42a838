from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import asyncpg

from ..errors import GraphNotFound, PersistenceFailure
from .models import GraphRecord, KnowledgeEdge, KnowledgeGraph, KnowledgeNode

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS knowledge_graphs (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  description TEXT,
  knowledge_base_id TEXT,
  metadata JSONB NOT NULL DEFAULT '{}',
  created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
  updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS knowledge_graph_nodes (
  graph_id TEXT NOT NULL REFERENCES knowledge_graphs(id) ON DELETE CASCADE,
  id TEXT NOT NULL,
  position INTEGER NOT NULL,
  label TEXT NOT NULL,
  type TEXT NOT NULL,
  properties JSONB NOT NULL DEFAULT '{}',
  metadata JSONB NOT NULL DEFAULT '{}',
  PRIMARY KEY (graph_id, id)
);

CREATE TABLE IF NOT EXISTS knowledge_graph_edges (
  graph_id TEXT NOT NULL REFERENCES knowledge_graphs(id) ON DELETE CASCADE,
  id TEXT NOT NULL,
  position INTEGER NOT NULL,
  source_id TEXT NOT NULL,
  target_id TEXT NOT NULL,
  label TEXT NOT NULL,
  weight DOUBLE PRECISION NOT NULL CHECK (weight > 0),
  properties JSONB NOT NULL DEFAULT '{}',
  PRIMARY KEY (graph_id, id),
  FOREIGN KEY (graph_id, source_id) REFERENCES knowledge_graph_nodes(graph_id, id) ON DELETE CASCADE,
  FOREIGN KEY (graph_id, target_id) REFERENCES knowledge_graph_nodes(graph_id, id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_knowledge_graphs_kb ON knowledge_graphs(knowledge_base_id);
"""

_RECORD_COLS = """
id, name, description, knowledge_base_id, metadata::text AS metadata, created_at, updated_at
"""


def _row_to_record(r: asyncpg.Record) -> GraphRecord:
    return GraphRecord(
        id=r["id"],
        name=r["name"],
        description=r["description"],
        knowledge_base_id=r["knowledge_base_id"],
        metadata=json.loads(r["metadata"] or "{}"),
        created_at=r["created_at"],
        updated_at=r["updated_at"],
    )


@dataclass
class PostgresGraphStore:
    """asyncpg-backed graph store; each replace runs in one transaction."""

    pool: asyncpg.Pool

    @classmethod
    async def connect(cls, dsn: str) -> "PostgresGraphStore":
        try:
            pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=10)
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceFailure(f"cannot connect to postgres: {e}") from e
        return cls(pool=pool)

    async def close(self) -> None:
        await self.pool.close()

    async def ensure_schema(self) -> None:
        try:
            async with self.pool.acquire() as con:
                await con.execute(SCHEMA)
        except asyncpg.PostgresError as e:
            raise PersistenceFailure(f"failed to create graph schema: {e}") from e

    async def create_graph(self, record: GraphRecord) -> None:
        q = """
        INSERT INTO knowledge_graphs(id, name, description, knowledge_base_id, metadata, created_at, updated_at)
        VALUES($1,$2,$3,$4,$5::jsonb,$6,$7)
        """
        try:
            async with self.pool.acquire() as con:
                await con.execute(
                    q,
                    record.id,
                    record.name,
                    record.description,
                    record.knowledge_base_id,
                    json.dumps(record.metadata, ensure_ascii=False),
                    record.created_at,
                    record.updated_at or record.created_at,
                )
        except asyncpg.PostgresError as e:
            raise PersistenceFailure(f"failed to create graph {record.id}: {e}") from e

    async def get_graph(self, graph_id: str) -> GraphRecord | None:
        q = f"SELECT {_RECORD_COLS} FROM knowledge_graphs WHERE id=$1"
        try:
            async with self.pool.acquire() as con:
                row = await con.fetchrow(q, graph_id)
        except asyncpg.PostgresError as e:
            raise PersistenceFailure(f"failed to read graph {graph_id}: {e}") from e
        return _row_to_record(row) if row else None

    async def list_graphs(self, knowledge_base_id: str | None = None) -> list[GraphRecord]:
        try:
            async with self.pool.acquire() as con:
                if knowledge_base_id is None:
                    rows = await con.fetch(f"SELECT {_RECORD_COLS} FROM knowledge_graphs ORDER BY created_at, id")
                else:
                    rows = await con.fetch(
                        f"SELECT {_RECORD_COLS} FROM knowledge_graphs WHERE knowledge_base_id=$1 "
                        "ORDER BY created_at, id",
                        knowledge_base_id,
                    )
        except asyncpg.PostgresError as e:
            raise PersistenceFailure(f"failed to list graphs: {e}") from e
        return [_row_to_record(r) for r in rows]

    async def read_graph(self, graph_id: str) -> KnowledgeGraph | None:
        try:
            async with self.pool.acquire() as con:
                async with con.transaction(isolation="repeatable_read", readonly=True):
                    row = await con.fetchrow(f"SELECT {_RECORD_COLS} FROM knowledge_graphs WHERE id=$1", graph_id)
                    if row is None:
                        return None
                    node_rows = await con.fetch(
                        """
                        SELECT id, label, type, properties::text AS properties, metadata::text AS metadata
                        FROM knowledge_graph_nodes WHERE graph_id=$1 ORDER BY position
                        """,
                        graph_id,
                    )
                    edge_rows = await con.fetch(
                        """
                        SELECT id, source_id, target_id, label, weight, properties::text AS properties
                        FROM knowledge_graph_edges WHERE graph_id=$1 ORDER BY position
                        """,
                        graph_id,
                    )
        except asyncpg.PostgresError as e:
            raise PersistenceFailure(f"failed to read graph {graph_id}: {e}") from e

        nodes = [
            KnowledgeNode(
                id=r["id"],
                label=r["label"],
                type=r["type"],
                properties=json.loads(r["properties"] or "{}"),
                metadata=json.loads(r["metadata"] or "{}"),
            )
            for r in node_rows
        ]
        edges = [
            KnowledgeEdge(
                id=r["id"],
                source_id=r["source_id"],
                target_id=r["target_id"],
                label=r["label"],
                weight=float(r["weight"]),
                properties=json.loads(r["properties"] or "{}"),
            )
            for r in edge_rows
        ]
        return KnowledgeGraph(record=_row_to_record(row), nodes=nodes, edges=edges)

    async def replace_contents(
        self,
        graph_id: str,
        *,
        nodes: list[KnowledgeNode],
        edges: list[KnowledgeEdge],
        metadata: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        try:
            async with self.pool.acquire() as con:
                async with con.transaction():
                    # Row lock serializes concurrent replaces of the same graph across processes.
                    found = await con.fetchval(
                        "SELECT 1 FROM knowledge_graphs WHERE id=$1 FOR UPDATE", graph_id
                    )
                    if not found:
                        raise GraphNotFound(graph_id)
                    await con.execute("DELETE FROM knowledge_graph_edges WHERE graph_id=$1", graph_id)
                    await con.execute("DELETE FROM knowledge_graph_nodes WHERE graph_id=$1", graph_id)
                    await con.executemany(
                        """
                        INSERT INTO knowledge_graph_nodes(graph_id, id, position, label, type, properties, metadata)
                        VALUES($1,$2,$3,$4,$5,$6::jsonb,$7::jsonb)
                        """,
                        [
                            (
                                graph_id,
                                n.id,
                                i,
                                n.label,
                                n.type,
                                json.dumps(n.properties, ensure_ascii=False),
                                json.dumps(n.metadata, ensure_ascii=False),
                            )
                            for i, n in enumerate(nodes)
                        ],
                    )
                    await con.executemany(
                        """
                        INSERT INTO knowledge_graph_edges(graph_id, id, position, source_id, target_id,
                                                          label, weight, properties)
                        VALUES($1,$2,$3,$4,$5,$6,$7,$8::jsonb)
                        """,
                        [
                            (
                                graph_id,
                                e.id,
                                i,
                                e.source_id,
                                e.target_id,
                                e.label,
                                float(e.weight),
                                json.dumps(e.properties, ensure_ascii=False),
                            )
                            for i, e in enumerate(edges)
                        ],
                    )
                    await con.execute(
                        "UPDATE knowledge_graphs SET metadata=$2::jsonb, updated_at=$3 WHERE id=$1",
                        graph_id,
                        json.dumps(metadata, ensure_ascii=False),
                        updated_at,
                    )
        except asyncpg.PostgresError as e:
            logger.error("Failed to replace graph %s: %s", graph_id, e)
            raise PersistenceFailure(f"failed to write graph {graph_id}: {e}") from e

    async def delete_graph(self, graph_id: str) -> bool:
        try:
            async with self.pool.acquire() as con:
                status = await con.execute("DELETE FROM knowledge_graphs WHERE id=$1", graph_id)
        except asyncpg.PostgresError as e:
            raise PersistenceFailure(f"failed to delete graph {graph_id}: {e}") from e
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return status.split()[-1] != "0"
