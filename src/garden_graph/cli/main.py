from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from garden_graph.errors import GardenGraphError
from garden_graph.settings import settings


def _configure_logging() -> None:
    level = (settings.log_level or "INFO").upper()
    # Logs go to stderr so stdout stays machine-readable JSON.
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def cmd_version() -> int:
    from garden_graph import __version__

    print(__version__)
    return 0


async def _with_service(fn, args: argparse.Namespace) -> int:
    from garden_graph.knowledge_graph.service import build_service

    service = await build_service(settings)
    try:
        return await fn(service, args)
    finally:
        await service.close()


async def _build(service, args: argparse.Namespace) -> int:
    graph = await service.create_graph(args.knowledge_base_id, args.name or args.knowledge_base_id, args.description)
    _print(graph.record.to_dict())
    return 0


async def _rebuild(service, args: argparse.Namespace) -> int:
    stats = await service.rebuild_graph(args.graph_id)
    _print(stats.to_dict())
    return 0


async def _show(service, args: argparse.Namespace) -> int:
    graph = await service.get_graph(args.graph_id)
    _print(graph.to_dict() if args.full else graph.record.to_dict())
    return 0


async def _list(service, args: argparse.Namespace) -> int:
    _print([r.to_dict() for r in await service.list_graphs(args.kb)])
    return 0


async def _neighbors(service, args: argparse.Namespace) -> int:
    spec = service.default_query(
        start_node_ids=tuple(args.start or ()),
        node_types=tuple(args.type or ()),
        edge_labels=tuple(args.label or ()),
        max_depth=args.depth,
        limit=args.limit,
    )
    sub = await service.query_neighborhood(args.graph_id, spec)
    _print(sub.to_dict())
    return 0


async def _path(service, args: argparse.Namespace) -> int:
    sub = await service.find_shortest_path(args.graph_id, args.source, args.target)
    _print({"found": not sub.is_empty, **sub.to_dict()})
    return 0


async def _delete(service, args: argparse.Namespace) -> int:
    await service.delete_graph(args.graph_id)
    _print({"ok": True, "id": args.graph_id})
    return 0


def cmd_graph(fn):
    def run(args: argparse.Namespace) -> int:
        _configure_logging()
        try:
            return asyncio.run(_with_service(fn, args))
        except GardenGraphError as e:
            logging.getLogger("garden_graph.cli").error("%s: %s", type(e).__name__, e)
            return 2

    return run


def cmd_serve(_args: argparse.Namespace) -> int:
    from garden_graph.api.server import main as serve

    serve()
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="garden-graph")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("version").set_defaults(func=lambda _a: cmd_version())

    build = sub.add_parser("build", help="Create a graph for a knowledge base and build it")
    build.add_argument("knowledge_base_id")
    build.add_argument("--name", default=None, help="Display name (defaults to the knowledge base id)")
    build.add_argument("--description", default=None)
    build.set_defaults(func=cmd_graph(_build))

    rebuild = sub.add_parser("rebuild", help="Rebuild a graph from its knowledge base")
    rebuild.add_argument("graph_id")
    rebuild.set_defaults(func=cmd_graph(_rebuild))

    show = sub.add_parser("show", help="Show a graph record (or the whole graph with --full)")
    show.add_argument("graph_id")
    show.add_argument("--full", action="store_true")
    show.set_defaults(func=cmd_graph(_show))

    ls = sub.add_parser("list", help="List graphs")
    ls.add_argument("--kb", default=None, help="Only graphs of this knowledge base")
    ls.set_defaults(func=cmd_graph(_list))

    nb = sub.add_parser("neighbors", help="Breadth-first neighborhood query")
    nb.add_argument("graph_id")
    nb.add_argument("--start", action="append", help="Start node id (repeatable; default: all nodes)")
    nb.add_argument("--type", action="append", help="Start node type filter (repeatable)")
    nb.add_argument("--label", action="append", help="Traversable edge label (repeatable)")
    nb.add_argument("--depth", type=int, default=None)
    nb.add_argument("--limit", type=int, default=None)
    nb.set_defaults(func=cmd_graph(_neighbors))

    path = sub.add_parser("path", help="Shortest path between two nodes")
    path.add_argument("graph_id")
    path.add_argument("source")
    path.add_argument("target")
    path.set_defaults(func=cmd_graph(_path))

    rm = sub.add_parser("delete", help="Delete a graph with its nodes and edges")
    rm.add_argument("graph_id")
    rm.set_defaults(func=cmd_graph(_delete))

    sub.add_parser("serve", help="Run the HTTP API").set_defaults(func=cmd_serve)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


def app() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    app()
