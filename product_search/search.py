"""Command-line entry point: resolve one query and print the JSON result."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import orjson

from .config import get_settings
from .pipeline import ResolutionPipeline
from .schema import SearchQuery, SearchResult, clamp_limit


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Resolve a product query against the store, falling back to the local catalog.")
    parser.add_argument("query", help="Free-text product query")
    parser.add_argument("--category", default=None, help="Keep only products in this category")
    parser.add_argument("--max-price", type=float, default=None, help="Price ceiling")
    parser.add_argument("--limit", type=int, default=None, help="Number of results (1-20, default 3)")
    return parser.parse_args(argv)


async def run(pipeline: ResolutionPipeline, args: argparse.Namespace) -> SearchResult:
    query = SearchQuery(
        term=args.query.strip(),
        category=args.category or None,
        max_price=args.max_price,
        limit=clamp_limit(args.limit),
    )
    return await pipeline.resolve(query)


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    pipeline = ResolutionPipeline.from_settings(settings)
    result = asyncio.run(run(pipeline, args))
    sys.stdout.write(orjson.dumps(result.model_dump(), option=orjson.OPT_INDENT_2).decode() + "\n")


if __name__ == "__main__":
    # python -m product_search.search "fragrance-free detergent" --max-price 25
    main()
