"""
Command line entry point.

    python -m semantic_search index [ROOT] [--prune]
    python -m semantic_search search "query" [--limit N]
    python -m semantic_search serve
"""

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

from semantic_search.config import ConfigurationError, Settings, get_settings
from semantic_search.dependencies import ServiceContainer
from semantic_search.models.chunk import SearchHit
from semantic_search.services.store import StoreError
from semantic_search.utils.logger import get_logger, setup_logging

logger = get_logger("cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="semantic_search", description="Semantic search over Python code")
    parser.add_argument("--debug", action="store_true", help="Verbose console logging")
    sub = parser.add_subparsers(dest="command", required=True)

    index_cmd = sub.add_parser("index", help="Index a project root")
    index_cmd.add_argument("root", nargs="?", default=None, help="Directory to index (default: PROJECT_ROOT)")
    index_cmd.add_argument("--prune", action="store_true", help="Delete stored chunks that no longer exist")

    search_cmd = sub.add_parser("search", help="Search indexed code")
    search_cmd.add_argument("query", help="Free-text query")
    search_cmd.add_argument("--limit", type=int, default=None, help="Maximum results")

    sub.add_parser("serve", help="Run the HTTP API")
    return parser


def format_hit(hit: SearchHit) -> str:
    return f"{hit.similarity:8.4f}  {hit.filepath}:{hit.start_line}  {hit.kind.value} {hit.name}"


async def _index(settings: Settings, root: Optional[str], prune: bool) -> int:
    container = await ServiceContainer.start(settings)
    try:
        report = await container.run_index(root, prune=prune)
    finally:
        await container.shutdown()
    print(report.model_dump_json(indent=2))
    return 0


async def _search(settings: Settings, query: str, limit: Optional[int]) -> int:
    container = await ServiceContainer.start(settings)
    try:
        try:
            await container.ensure_indexed()
            hits = await container.retriever.search(query, limit)
        except StoreError as e:
            # Interactive callers get an empty result; the error is logged.
            logger.error("search_failed", query=query, error=str(e))
            return 1
    finally:
        await container.shutdown()
    for hit in hits:
        print(format_hit(hit))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(debug=args.debug or settings.debug)

    if args.command == "serve":
        import uvicorn
        uvicorn.run("semantic_search.main:app", host=settings.host, port=settings.port)
        return 0

    try:
        if args.command == "index":
            return asyncio.run(_index(settings, args.root, args.prune))
        return asyncio.run(_search(settings, args.query, args.limit))
    except (ConfigurationError, StoreError, FileNotFoundError) as e:
        logger.error("startup_failed", command=args.command, error=str(e))
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
