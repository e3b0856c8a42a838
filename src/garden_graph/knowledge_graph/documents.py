from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import asyncpg

from ..errors import PersistenceFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceDocument:
    """A document of a knowledge base, as handed to the graph builder.

    `metadata` carries at least `title` and `contentType` when known.
    """

    id: str
    knowledge_base_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str = ""

    @property
    def title(self) -> str | None:
        return self.metadata.get("title")

    @property
    def content_type(self) -> str | None:
        return self.metadata.get("contentType")


class DocumentSource(Protocol):
    """Document / knowledge-base collaborator.

    Unknown or empty knowledge bases yield an empty list.
    """

    async def list_documents(self, knowledge_base_id: str) -> list[SourceDocument]: ...


class InMemoryDocumentSource:
    def __init__(self, documents: dict[str, list[SourceDocument]] | None = None):
        self._docs: dict[str, list[SourceDocument]] = {k: list(v) for k, v in (documents or {}).items()}

    def set_documents(self, knowledge_base_id: str, documents: list[SourceDocument]) -> None:
        self._docs[knowledge_base_id] = list(documents)

    def add_document(self, document: SourceDocument) -> None:
        self._docs.setdefault(document.knowledge_base_id, []).append(document)

    async def list_documents(self, knowledge_base_id: str) -> list[SourceDocument]:
        return list(self._docs.get(knowledge_base_id, []))


def _title_from_text(text: str) -> str | None:
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            return line.lstrip("#").strip() or None
        return None
    return None


@dataclass
class FileDocumentSource:
    """Knowledge bases laid out on disk.

    `<root>/<knowledge_base_id>/**/*` - every regular file is one document whose
    id is its path relative to the knowledge-base directory. Ids that resolve
    outside the root (absolute paths, `..`, symlinks) list nothing.
    """

    root: str

    async def list_documents(self, knowledge_base_id: str) -> list[SourceDocument]:
        return await asyncio.to_thread(self._read_all, knowledge_base_id)

    def _read_all(self, knowledge_base_id: str) -> list[SourceDocument]:
        root = Path(self.root).expanduser().resolve()
        base = (root / knowledge_base_id).resolve()
        if base == root or not base.is_relative_to(root):
            logger.warning("Knowledge base id %r resolves outside %s; ignoring", knowledge_base_id, root)
            return []
        if not base.is_dir():
            return []

        out: list[SourceDocument] = []
        for p in sorted(base.rglob("*")):
            if not p.is_file() or p.name.startswith("."):
                continue
            if not p.resolve().is_relative_to(root):
                logger.warning("Skipping %s: links outside %s", p, root)
                continue
            with open(p, encoding="utf-8", errors="replace") as f:
                text = f.read()
            media_type, _ = mimetypes.guess_type(p.name)
            rel = p.relative_to(base).as_posix()
            out.append(
                SourceDocument(
                    id=rel,
                    knowledge_base_id=knowledge_base_id,
                    metadata={
                        "title": _title_from_text(text) or p.stem,
                        "contentType": media_type or "text/plain",
                        "path": os.fspath(p),
                        "size": len(text),
                    },
                    content=text,
                )
            )
        return out


@dataclass
class PostgresDocumentSource:
    """Reads `documents(id, knowledge_base_id, content, metadata jsonb)` rows."""

    pool: asyncpg.Pool
    table: str = "documents"

    @classmethod
    async def connect(cls, dsn: str, *, table: str = "documents") -> "PostgresDocumentSource":
        try:
            pool = await asyncpg.create_pool(dsn=dsn, min_size=1, max_size=5)
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceFailure(f"cannot connect to document database: {e}") from e
        return cls(pool=pool, table=table)

    async def close(self) -> None:
        await self.pool.close()

    async def list_documents(self, knowledge_base_id: str) -> list[SourceDocument]:
        q = f"""
        SELECT id::text, knowledge_base_id::text, content, metadata::text
        FROM {self.table}
        WHERE knowledge_base_id::text = $1
        ORDER BY created_at, id
        """
        try:
            async with self.pool.acquire() as con:
                rows = await con.fetch(q, knowledge_base_id)
        except (asyncpg.PostgresError, OSError) as e:
            raise PersistenceFailure(f"failed to list documents of {knowledge_base_id}: {e}") from e

        return [
            SourceDocument(
                id=r["id"],
                knowledge_base_id=r["knowledge_base_id"],
                metadata=json.loads(r["metadata"] or "{}"),
                content=r["content"] or "",
            )
            for r in rows
        ]
