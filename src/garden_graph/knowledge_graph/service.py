from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from ..errors import GraphNotFound, PersistenceFailure
from ..settings import GardenGraphSettings
from .builder import BuildStats, GraphBuilder
from .cache import GraphCache
from .documents import DocumentSource, FileDocumentSource, PostgresDocumentSource
from .extractors import HeuristicExtractor, HttpMentionExtractor, MentionExtractor
from .loader import GraphLoader
from .memory_store import InMemoryGraphStore
from .models import GraphRecord, KnowledgeGraph, NeighborhoodQuery, Subgraph
from .neighborhood import NeighborhoodQueryEngine
from .paths import ShortestPathEngine
from .postgres_store import PostgresGraphStore
from .sqlite_store import SQLiteGraphStore
from .store import GraphStore

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_graph_id() -> str:
    """`graph_<epoch-ms>_<9 random base36 chars>`."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"graph_{int(time.time() * 1000)}_{suffix}"


class KnowledgeGraphService:
    """Caller-facing graph operations: lifecycle, rebuild and queries.

    Queries run against snapshots handed out by the loader, so they never see a
    graph mid-rebuild.
    """

    def __init__(
        self,
        store: GraphStore,
        builder: GraphBuilder,
        loader: GraphLoader,
        *,
        neighborhood: NeighborhoodQueryEngine | None = None,
        paths: ShortestPathEngine | None = None,
        default_max_depth: int = 2,
        default_limit: int = 100,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ):
        self.store = store
        self.builder = builder
        self.loader = loader
        self.neighborhood = neighborhood or NeighborhoodQueryEngine()
        self.paths = paths or ShortestPathEngine()
        self.default_max_depth = default_max_depth
        self.default_limit = default_limit
        self._closers = list(closers or [])

    @property
    def cache(self) -> GraphCache | None:
        return self.loader.cache

    def default_query(self, **overrides) -> NeighborhoodQuery:
        opts = {"max_depth": self.default_max_depth, "limit": self.default_limit}
        opts.update({k: v for k, v in overrides.items() if v is not None})
        return NeighborhoodQuery(**opts)

    async def create_graph(
        self, knowledge_base_id: str, name: str, description: str | None = None
    ) -> KnowledgeGraph:
        """Create a graph record and build it. A failed build leaves no graph behind."""
        now = datetime.now(UTC)
        record = GraphRecord(
            id=new_graph_id(),
            name=name,
            description=description,
            knowledge_base_id=knowledge_base_id,
            metadata={},
            created_at=now,
            updated_at=now,
        )
        await self.store.create_graph(record)
        logger.info("Created graph %s (%s) for kb %s", record.id, name, knowledge_base_id)

        try:
            await self.builder.build(knowledge_base_id, record.id)
        except Exception:
            logger.warning("Initial build of graph %s failed; removing it", record.id)
            await self._discard(record.id)
            raise
        return await self.loader.load(record.id)

    async def _discard(self, graph_id: str) -> None:
        try:
            await self.store.delete_graph(graph_id)
        except PersistenceFailure as e:
            logger.error("Could not remove graph %s after failed build: %s", graph_id, e)
        if self.cache is not None:
            self.cache.invalidate(graph_id)

    async def get_graph(self, graph_id: str) -> KnowledgeGraph:
        return await self.loader.load(graph_id)

    async def list_graphs(self, knowledge_base_id: str | None = None) -> list[GraphRecord]:
        return await self.store.list_graphs(knowledge_base_id)

    async def rebuild_graph(self, graph_id: str) -> BuildStats:
        """Rebuild from the graph's own knowledge base. Safe to retry."""
        record = await self.store.get_graph(graph_id)
        if record is None:
            raise GraphNotFound(graph_id)
        return await self.builder.build(record.knowledge_base_id, graph_id)

    async def delete_graph(self, graph_id: str) -> None:
        async with self.builder.locks.lock(graph_id):
            deleted = await self.store.delete_graph(graph_id)
            if self.cache is not None:
                self.cache.invalidate(graph_id)
        if not deleted:
            raise GraphNotFound(graph_id)
        logger.info("Deleted graph %s", graph_id)

    async def query_neighborhood(self, graph_id: str, spec: NeighborhoodQuery | None = None) -> Subgraph:
        spec = spec or self.default_query()
        spec.validate()
        graph = await self.loader.load(graph_id)
        return self.neighborhood.query(graph, spec)

    async def find_shortest_path(self, graph_id: str, source_node_id: str, target_node_id: str) -> Subgraph:
        graph = await self.loader.load(graph_id)
        return self.paths.shortest_path(graph, source_node_id, target_node_id)

    async def close(self) -> None:
        while self._closers:
            await self._closers.pop()()


async def build_service(cfg: GardenGraphSettings) -> KnowledgeGraphService:
    """Wire a service from settings: store, document source, extractor, cache."""
    closers: list[Callable[[], Awaitable[None]]] = []

    store: GraphStore
    if cfg.store == "memory":
        store = InMemoryGraphStore()
    elif cfg.store == "sqlite":
        store = SQLiteGraphStore(cfg.sqlite_path)
        store.init()
    elif cfg.store == "postgres":
        store = await PostgresGraphStore.connect(cfg.postgres_dsn)
        closers.append(store.close)
        await store.ensure_schema()
    else:
        raise ValueError(f"unknown graph store: {cfg.store!r}")

    documents: DocumentSource
    if cfg.documents_backend == "files":
        documents = FileDocumentSource(cfg.documents_dir)
    elif cfg.documents_backend == "postgres":
        pg_docs = await PostgresDocumentSource.connect(cfg.postgres_dsn)
        closers.append(pg_docs.close)
        documents = pg_docs
    else:
        raise ValueError(f"unknown documents backend: {cfg.documents_backend!r}")

    extractor: MentionExtractor
    if cfg.extractor == "heuristic":
        extractor = HeuristicExtractor()
    elif cfg.extractor == "http":
        if not cfg.extractor_url:
            raise ValueError("GARDEN_GRAPH_EXTRACTOR_URL is required for the http extractor")
        http_extractor = HttpMentionExtractor(cfg.extractor_url, timeout_s=cfg.extractor_timeout_s)
        closers.append(http_extractor.aclose)
        extractor = http_extractor
    else:
        raise ValueError(f"unknown extractor: {cfg.extractor!r}")

    cache = GraphCache(cfg.cache_max_graphs) if cfg.cache_enabled else None
    builder = GraphBuilder(
        store,
        documents,
        extractor,
        cache=cache,
        related_weight=cfg.related_edge_weight,
        min_weight=cfg.zero_weight_fallback,
    )
    logger.info("Graph service: store=%s documents=%s extractor=%s", cfg.store, cfg.documents_backend, cfg.extractor)
    return KnowledgeGraphService(
        store,
        builder,
        GraphLoader(store, cache),
        paths=ShortestPathEngine(zero_weight_fallback=cfg.zero_weight_fallback),
        default_max_depth=cfg.default_max_depth,
        default_limit=cfg.default_limit,
        closers=closers,
    )
