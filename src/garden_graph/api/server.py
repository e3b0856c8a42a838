from __future__ import annotations

import asyncio
import logging

import uvicorn

from garden_graph.knowledge_graph.service import build_service
from garden_graph.settings import settings

from .app import create_app


async def _main() -> None:
    service = await build_service(settings)
    app = create_app(service)

    config = uvicorn.Config(
        app,
        host=settings.bind_host,
        port=settings.bind_port,
        log_level=(settings.log_level or "info").lower(),
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    finally:
        await service.close()


def main() -> None:
    logging.basicConfig(
        level=(settings.log_level or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(_main())


if __name__ == "__main__":
    main()
