"""Command-line helper that renders the result table for an ad-hoc query."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from sqlblocks.core.config import load_settings
from sqlblocks.core.controller import QueryEngine
from sqlblocks.core.dependencies import build_engine_factory
from sqlblocks.core.renderer import render_result_set


async def render_query(engine: QueryEngine, query: str) -> list[str]:
    """Execute *query* on *engine* and return the rendered table lines."""

    groups = await engine.execute(query)
    return render_result_set(groups)


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for previewing how a query renders inside an example block."""

    parser = argparse.ArgumentParser(description="Render the result table for a SQL query")
    parser.add_argument("query", nargs="?", help="SQL text; read from --file or stdin when omitted")
    parser.add_argument("--config", default="configs/dev.yaml", help="Path to the YAML config file")
    parser.add_argument("--file", help="Read the SQL text from this file")
    args = parser.parse_args(argv)

    if args.query:
        query = args.query
    elif args.file:
        query = Path(args.file).read_text(encoding="utf-8")
    else:
        query = sys.stdin.read()
    if not query.strip():
        parser.error("no query supplied")

    settings = load_settings(args.config)
    engine = build_engine_factory(settings)()
    try:
        lines = asyncio.run(render_query(engine, query))
    finally:
        engine.close()
    print("\n".join(lines))


if __name__ == "__main__":
    main()
