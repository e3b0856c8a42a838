from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from ..errors import GraphNotFound, PersistenceFailure
from .models import GraphRecord, KnowledgeEdge, KnowledgeGraph, KnowledgeNode

logger = logging.getLogger(__name__)

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS knowledge_graphs (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  description TEXT,
  knowledge_base_id TEXT,
  metadata_json TEXT NOT NULL DEFAULT '{}',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS knowledge_graph_nodes (
  graph_id TEXT NOT NULL REFERENCES knowledge_graphs(id) ON DELETE CASCADE,
  id TEXT NOT NULL,
  position INTEGER NOT NULL,
  label TEXT NOT NULL,
  type TEXT NOT NULL,
  properties_json TEXT NOT NULL DEFAULT '{}',
  metadata_json TEXT NOT NULL DEFAULT '{}',
  PRIMARY KEY (graph_id, id)
);

CREATE TABLE IF NOT EXISTS knowledge_graph_edges (
  graph_id TEXT NOT NULL REFERENCES knowledge_graphs(id) ON DELETE CASCADE,
  id TEXT NOT NULL,
  position INTEGER NOT NULL,
  source_id TEXT NOT NULL,
  target_id TEXT NOT NULL,
  label TEXT NOT NULL,
  weight REAL NOT NULL CHECK (weight > 0),
  properties_json TEXT NOT NULL DEFAULT '{}',
  PRIMARY KEY (graph_id, id),
  FOREIGN KEY (graph_id, source_id) REFERENCES knowledge_graph_nodes(graph_id, id),
  FOREIGN KEY (graph_id, target_id) REFERENCES knowledge_graph_nodes(graph_id, id)
);

CREATE INDEX IF NOT EXISTS idx_graphs_kb ON knowledge_graphs(knowledge_base_id);
CREATE INDEX IF NOT EXISTS idx_nodes_graph_pos ON knowledge_graph_nodes(graph_id, position);
CREATE INDEX IF NOT EXISTS idx_edges_graph_pos ON knowledge_graph_edges(graph_id, position);
"""


def _row_to_record(row: sqlite3.Row) -> GraphRecord:
    return GraphRecord(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        knowledge_base_id=row["knowledge_base_id"],
        metadata=json.loads(row["metadata_json"] or "{}"),
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


@dataclass
class SQLiteGraphStore:
    """SQLite-backed graph store.

    Blocking sqlite3 calls run in a worker thread; every public method opens
    its own connection so calls from different tasks never share one.
    """

    path: str

    def connect(self) -> sqlite3.Connection:
        con = sqlite3.connect(self.path)
        con.row_factory = sqlite3.Row
        con.execute("PRAGMA foreign_keys=ON")
        return con

    def init(self) -> None:
        p = Path(self.path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        self.path = str(p)
        con = self.connect()
        try:
            con.executescript(SCHEMA)
            con.commit()
        finally:
            con.close()

    async def _run(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except sqlite3.Error as e:
            logger.error("SQLite graph store error in %s: %s", fn.__name__, e)
            raise PersistenceFailure(f"sqlite graph store: {e}") from e

    # --- records ---

    def _create_graph(self, record: GraphRecord) -> None:
        con = self.connect()
        try:
            with con:
                con.execute(
                    """
                    INSERT INTO knowledge_graphs(id, name, description, knowledge_base_id,
                                                 metadata_json, created_at, updated_at)
                    VALUES(?,?,?,?,?,?,?)
                    """,
                    (
                        record.id,
                        record.name,
                        record.description,
                        record.knowledge_base_id,
                        json.dumps(record.metadata, ensure_ascii=False),
                        record.created_at.isoformat(),
                        (record.updated_at or record.created_at).isoformat(),
                    ),
                )
        finally:
            con.close()

    async def create_graph(self, record: GraphRecord) -> None:
        await self._run(self._create_graph, record)

    def _get_graph(self, graph_id: str) -> GraphRecord | None:
        con = self.connect()
        try:
            row = con.execute("SELECT * FROM knowledge_graphs WHERE id=?", (graph_id,)).fetchone()
            return _row_to_record(row) if row else None
        finally:
            con.close()

    async def get_graph(self, graph_id: str) -> GraphRecord | None:
        return await self._run(self._get_graph, graph_id)

    def _list_graphs(self, knowledge_base_id: str | None) -> list[GraphRecord]:
        con = self.connect()
        try:
            if knowledge_base_id is None:
                rows = con.execute("SELECT * FROM knowledge_graphs ORDER BY created_at, id").fetchall()
            else:
                rows = con.execute(
                    "SELECT * FROM knowledge_graphs WHERE knowledge_base_id=? ORDER BY created_at, id",
                    (knowledge_base_id,),
                ).fetchall()
            return [_row_to_record(r) for r in rows]
        finally:
            con.close()

    async def list_graphs(self, knowledge_base_id: str | None = None) -> list[GraphRecord]:
        return await self._run(self._list_graphs, knowledge_base_id)

    # --- snapshot ---

    def _read_graph(self, graph_id: str) -> KnowledgeGraph | None:
        con = self.connect()
        try:
            # Explicit read transaction so a concurrent replace cannot interleave.
            con.execute("BEGIN")
            row = con.execute("SELECT * FROM knowledge_graphs WHERE id=?", (graph_id,)).fetchone()
            if row is None:
                return None
            node_rows = con.execute(
                "SELECT * FROM knowledge_graph_nodes WHERE graph_id=? ORDER BY position",
                (graph_id,),
            ).fetchall()
            edge_rows = con.execute(
                "SELECT * FROM knowledge_graph_edges WHERE graph_id=? ORDER BY position",
                (graph_id,),
            ).fetchall()
            con.commit()
        finally:
            con.close()

        nodes = [
            KnowledgeNode(
                id=r["id"],
                label=r["label"],
                type=r["type"],
                properties=json.loads(r["properties_json"] or "{}"),
                metadata=json.loads(r["metadata_json"] or "{}"),
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
                properties=json.loads(r["properties_json"] or "{}"),
            )
            for r in edge_rows
        ]
        return KnowledgeGraph(record=_row_to_record(row), nodes=nodes, edges=edges)

    async def read_graph(self, graph_id: str) -> KnowledgeGraph | None:
        return await self._run(self._read_graph, graph_id)

    # --- writes ---

    def _replace_contents(
        self,
        graph_id: str,
        nodes: list[KnowledgeNode],
        edges: list[KnowledgeEdge],
        metadata: dict[str, Any],
        updated_at: datetime,
    ) -> bool:
        con = self.connect()
        try:
            # One transaction: a failure anywhere rolls back to the previous graph.
            with con:
                cur = con.execute(
                    "UPDATE knowledge_graphs SET metadata_json=?, updated_at=? WHERE id=?",
                    (json.dumps(metadata, ensure_ascii=False), updated_at.isoformat(), graph_id),
                )
                if cur.rowcount == 0:
                    return False
                con.execute("DELETE FROM knowledge_graph_edges WHERE graph_id=?", (graph_id,))
                con.execute("DELETE FROM knowledge_graph_nodes WHERE graph_id=?", (graph_id,))
                con.executemany(
                    """
                    INSERT INTO knowledge_graph_nodes(graph_id, id, position, label, type,
                                                      properties_json, metadata_json)
                    VALUES(?,?,?,?,?,?,?)
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
                con.executemany(
                    """
                    INSERT INTO knowledge_graph_edges(graph_id, id, position, source_id, target_id,
                                                      label, weight, properties_json)
                    VALUES(?,?,?,?,?,?,?,?)
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
            return True
        finally:
            con.close()

    async def replace_contents(
        self,
        graph_id: str,
        *,
        nodes: list[KnowledgeNode],
        edges: list[KnowledgeEdge],
        metadata: dict[str, Any],
        updated_at: datetime,
    ) -> None:
        ok = await self._run(self._replace_contents, graph_id, nodes, edges, metadata, updated_at)
        if not ok:
            raise GraphNotFound(graph_id)
        logger.debug("Replaced graph %s: %d nodes, %d edges", graph_id, len(nodes), len(edges))

    def _delete_graph(self, graph_id: str) -> bool:
        con = self.connect()
        try:
            with con:
                con.execute("DELETE FROM knowledge_graph_edges WHERE graph_id=?", (graph_id,))
                con.execute("DELETE FROM knowledge_graph_nodes WHERE graph_id=?", (graph_id,))
                cur = con.execute("DELETE FROM knowledge_graphs WHERE id=?", (graph_id,))
                return cur.rowcount > 0
        finally:
            con.close()

    async def delete_graph(self, graph_id: str) -> bool:
        return await self._run(self._delete_graph, graph_id)
