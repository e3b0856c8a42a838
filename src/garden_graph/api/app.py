from __future__ import annotations

import os

from fastapi import FastAPI

from garden_graph import __version__
from garden_graph.knowledge_graph.service import KnowledgeGraphService

from .graph_api import build_graph_router


def create_app(service: KnowledgeGraphService) -> FastAPI:
    app = FastAPI(title="Garden Graph - Knowledge Graph Service", version=__version__)

    @app.get("/health")
    async def health():
        cache = service.cache
        return {
            "ok": True,
            "host": os.uname().nodename,
            "cached_graphs": len(cache) if cache is not None else None,
        }

    app.include_router(build_graph_router(service))
    return app
