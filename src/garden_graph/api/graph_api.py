from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from garden_graph.errors import (
    ExtractionFailure,
    GardenGraphError,
    InvalidQuery,
    NotFound,
    PersistenceFailure,
)
from garden_graph.knowledge_graph.service import KnowledgeGraphService

from .auth import require_api_key


class GraphCreateIn(BaseModel):
    knowledge_base_id: str
    name: str
    description: str | None = None


class NeighborhoodIn(BaseModel):
    start_node_ids: list[str] = Field(default_factory=list)
    node_types: list[str] = Field(default_factory=list)
    edge_labels: list[str] = Field(default_factory=list)
    max_depth: int | None = None
    limit: int | None = None


class PathIn(BaseModel):
    source_node_id: str
    target_node_id: str


def _http_error(e: GardenGraphError) -> HTTPException:
    if isinstance(e, NotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidQuery):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, ExtractionFailure):
        return HTTPException(status_code=502, detail=str(e))
    if isinstance(e, PersistenceFailure):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def build_graph_router(service: KnowledgeGraphService) -> APIRouter:
    r = APIRouter(prefix="/v1/graphs", tags=["graphs"], dependencies=[Depends(require_api_key)])

    @r.post("", status_code=201)
    async def create_graph(payload: GraphCreateIn) -> dict[str, Any]:
        try:
            graph = await service.create_graph(payload.knowledge_base_id, payload.name, payload.description)
        except GardenGraphError as e:
            raise _http_error(e) from e
        return graph.to_dict()

    @r.get("")
    async def list_graphs(knowledge_base_id: str | None = Query(default=None)) -> dict[str, Any]:
        try:
            records = await service.list_graphs(knowledge_base_id)
        except GardenGraphError as e:
            raise _http_error(e) from e
        return {"count": len(records), "graphs": [rec.to_dict() for rec in records]}

    @r.get("/{graph_id}")
    async def get_graph(graph_id: str) -> dict[str, Any]:
        try:
            graph = await service.get_graph(graph_id)
        except GardenGraphError as e:
            raise _http_error(e) from e
        return graph.to_dict()

    @r.post("/{graph_id}/rebuild")
    async def rebuild_graph(graph_id: str) -> dict[str, Any]:
        try:
            stats = await service.rebuild_graph(graph_id)
        except GardenGraphError as e:
            raise _http_error(e) from e
        return {"ok": True, **stats.to_dict()}

    @r.delete("/{graph_id}")
    async def delete_graph(graph_id: str) -> dict[str, Any]:
        try:
            await service.delete_graph(graph_id)
        except GardenGraphError as e:
            raise _http_error(e) from e
        return {"ok": True, "id": graph_id}

    @r.post("/{graph_id}/neighborhood")
    async def neighborhood(graph_id: str, payload: NeighborhoodIn) -> dict[str, Any]:
        spec = service.default_query(
            start_node_ids=tuple(payload.start_node_ids),
            node_types=tuple(payload.node_types),
            edge_labels=tuple(payload.edge_labels),
            max_depth=payload.max_depth,
            limit=payload.limit,
        )
        try:
            sub = await service.query_neighborhood(graph_id, spec)
        except GardenGraphError as e:
            raise _http_error(e) from e
        return sub.to_dict()

    @r.post("/{graph_id}/shortest_path")
    async def shortest_path(graph_id: str, payload: PathIn) -> dict[str, Any]:
        try:
            sub = await service.find_shortest_path(graph_id, payload.source_node_id, payload.target_node_id)
        except GardenGraphError as e:
            raise _http_error(e) from e
        return {
            "found": not sub.is_empty,
            "cost": sub.cost,
            "nodes": [n.to_dict() for n in sub.nodes],
            "edges": [e.to_dict() for e in sub.edges],
        }

    return r
