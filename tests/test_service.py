"""
Tests for the caller-facing graph service.
"""

from __future__ import annotations

import re

import pytest

from conftest import make_doc
from garden_graph.errors import ExtractionFailure, GraphNotFound, InvalidQuery, NodeNotFound
from garden_graph.knowledge_graph.extractors import EntityMention
from garden_graph.knowledge_graph.models import NeighborhoodQuery
from garden_graph.knowledge_graph.service import build_service, new_graph_id
from garden_graph.settings import GardenGraphSettings


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_create_builds_synchronously(self, service):
        graph = await service.create_graph("kb1", "My graph", "about things")

        assert re.fullmatch(r"graph_\d+_[0-9a-z]{9}", graph.id)
        assert graph.record.name == "My graph"
        assert graph.record.description == "about things"
        assert len(graph.nodes) == 5
        assert graph.record.metadata["document_count"] == 3

    @pytest.mark.asyncio
    async def test_failed_create_leaves_no_graph(self, service, extractor):
        extractor.error = TimeoutError("slow")
        with pytest.raises(ExtractionFailure):
            await service.create_graph("kb1", "doomed")
        assert await service.list_graphs() == []

    @pytest.mark.asyncio
    async def test_list_filters_by_knowledge_base(self, service):
        a = await service.create_graph("kb1", "a")
        await service.create_graph("other", "b")

        assert [r.id for r in await service.list_graphs("kb1")] == [a.id]
        assert len(await service.list_graphs()) == 2

    @pytest.mark.asyncio
    async def test_rebuild_reflects_new_documents(self, service, documents, extractor):
        graph = await service.create_graph("kb1", "g")
        await service.get_graph(graph.id)

        documents.add_document(make_doc("4", title="Doc Four"))
        extractor.entities = [EntityMention(id="E1", name="Entity One", type="PERSON", frequency=0.8,
                                            document_ids=("1", "4"))]
        stats = await service.rebuild_graph(graph.id)

        assert stats.documents == 4
        reloaded = await service.get_graph(graph.id)
        assert reloaded.has_node("node_doc_4")
        assert reloaded.record.metadata["node_count"] == 6

    @pytest.mark.asyncio
    async def test_rebuild_unknown_graph(self, service):
        with pytest.raises(GraphNotFound):
            await service.rebuild_graph("graph_0_missing")

    @pytest.mark.asyncio
    async def test_delete(self, service):
        graph = await service.create_graph("kb1", "g")
        await service.get_graph(graph.id)

        await service.delete_graph(graph.id)

        assert graph.id not in service.cache
        with pytest.raises(GraphNotFound):
            await service.get_graph(graph.id)
        with pytest.raises(GraphNotFound):
            await service.delete_graph(graph.id)

    def test_graph_ids_are_unique(self):
        assert len({new_graph_id() for _ in range(200)}) == 200


class TestQueries:
    @pytest.mark.asyncio
    async def test_neighborhood_defaults(self, service):
        graph = await service.create_graph("kb1", "g")
        sub = await service.query_neighborhood(graph.id)

        assert len(sub.nodes) == 5
        ids = set(sub.node_ids())
        assert all(e.source_id in ids and e.target_id in ids for e in sub.edges)

    @pytest.mark.asyncio
    async def test_neighborhood_from_entity(self, service):
        graph = await service.create_graph("kb1", "g")
        sub = await service.query_neighborhood(
            graph.id, NeighborhoodQuery(start_node_ids=("node_entity_E1",), max_depth=1)
        )
        assert sub.node_ids() == ["node_entity_E1", "node_doc_1", "node_doc_2"]

    @pytest.mark.asyncio
    async def test_invalid_neighborhood(self, service):
        graph = await service.create_graph("kb1", "g")
        with pytest.raises(InvalidQuery):
            await service.query_neighborhood(graph.id, service.default_query(max_depth=-1))

    @pytest.mark.asyncio
    async def test_shortest_path_through_concept(self, service):
        graph = await service.create_graph("kb1", "g")
        sub = await service.find_shortest_path(graph.id, "node_doc_1", "node_doc_3")

        assert sub.node_ids() == ["node_doc_1", "node_concept_C1", "node_doc_3"]
        assert sub.cost == pytest.approx(2 / 0.9)

    @pytest.mark.asyncio
    async def test_shortest_path_unknown_node(self, service):
        graph = await service.create_graph("kb1", "g")
        with pytest.raises(NodeNotFound):
            await service.find_shortest_path(graph.id, "node_doc_1", "node_doc_99")

    @pytest.mark.asyncio
    async def test_queries_on_missing_graph(self, service):
        with pytest.raises(GraphNotFound):
            await service.query_neighborhood("nope")
        with pytest.raises(GraphNotFound):
            await service.find_shortest_path("nope", "a", "b")


class TestBuildService:
    @pytest.mark.asyncio
    async def test_memory_store_with_files(self, tmp_path):
        kb = tmp_path / "notes"
        kb.mkdir()
        (kb / "a.txt").write_text("# Garden Planning\nAlice Smith plants tomatoes with Bob.\n")
        (kb / "b.txt").write_text("Bob waters tomatoes daily.\n")

        cfg = GardenGraphSettings(store="memory", documents_dir=str(tmp_path), extractor="heuristic")
        service = await build_service(cfg)
        try:
            graph = await service.create_graph("notes", "notes")
        finally:
            await service.close()

        assert graph.node("node_doc_a.txt").label == "Garden Planning"
        assert graph.node("node_doc_b.txt").label == "b"
        assert graph.record.metadata["document_count"] == 2
        assert graph.has_node("node_entity_bob")

    @pytest.mark.asyncio
    async def test_sqlite_store(self, tmp_path):
        cfg = GardenGraphSettings(
            store="sqlite",
            sqlite_path=str(tmp_path / "g.sqlite"),
            documents_dir=str(tmp_path / "kbs"),
            cache_enabled=False,
        )
        service = await build_service(cfg)
        graph = await service.create_graph("missing-kb", "empty")

        assert service.cache is None
        assert graph.nodes == []
        assert [r.id for r in await service.list_graphs()] == [graph.id]

    @pytest.mark.asyncio
    async def test_unknown_backends(self):
        with pytest.raises(ValueError):
            await build_service(GardenGraphSettings(store="mongo"))
        with pytest.raises(ValueError):
            await build_service(GardenGraphSettings(store="memory", extractor="http", extractor_url=None))
