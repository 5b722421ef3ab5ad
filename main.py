#!/usr/bin/env python3
"""
prcontext - review context builder

Indexes a cloned repository (call graph, vector index, keyword index) and
prepares token-budgeted review inputs from a diff.

    python main.py index path/to/repo
    python main.py context --diff change.diff [--query "..."]
    python main.py stats
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from prcontext.budget.token_budget import BudgetAllocator
from prcontext.config import settings
from prcontext.graph.json_graph_client import JsonGraphClient
from prcontext.pipeline import RepositoryIndexer, ReviewContextBuilder
from prcontext.query.vector_store import InMemoryVectorIndex, create_vector_index
from prcontext.review.limits import check_pr_limits, oversized_pr_message, parse_diff_stats, should_skip_review
from prcontext.search.hybrid_retriever import HybridRetriever
from prcontext.search.keyword_index import KeywordIndex
from prcontext.utils.logger import app_logger


GRAPH_FILE = "graph.json"
KEYWORD_FILE = "keyword_index.json"
VECTOR_FILE = "vectors.json"


def _data_file(name: str) -> Path:
    return settings.data_path / name


def _load_stores(vector_backend: str):
    keyword_index = KeywordIndex()
    keyword_path = _data_file(KEYWORD_FILE)
    if keyword_path.exists():
        keyword_index.load(str(keyword_path))
    else:
        app_logger.warning(f"No keyword index at {keyword_path}; run `index` first")

    vector_index = create_vector_index(vector_backend)
    vector_path = _data_file(VECTOR_FILE)
    if isinstance(vector_index, InMemoryVectorIndex) and vector_path.exists():
        vector_index.load(str(vector_path))
    return vector_index, keyword_index


async def run_index(args) -> int:
    settings.ensure_directories()
    vector_index = create_vector_index(args.vector_store)
    keyword_index = KeywordIndex()
    graph_client = JsonGraphClient(str(_data_file(GRAPH_FILE)))

    indexer = RepositoryIndexer(vector_index, keyword_index, graph_client=graph_client)
    try:
        report = await indexer.index_repository(args.repo_path, reset=args.reset)
    finally:
        vector_index.close()

    keyword_index.save(str(_data_file(KEYWORD_FILE)))
    if isinstance(vector_index, InMemoryVectorIndex):
        vector_index.save(str(_data_file(VECTOR_FILE)))

    print(json.dumps(report.to_dict(), indent=2))
    return 0


async def run_context(args) -> int:
    diff_text = Path(args.diff).read_text(encoding="utf-8") if args.diff else sys.stdin.read()

    stats = parse_diff_stats(diff_text)
    limit_result = check_pr_limits(stats)
    if should_skip_review(stats):
        print(oversized_pr_message(limit_result))
        return 2
    if not limit_result.passed:
        app_logger.warning(f"Change set exceeds size limits: {limit_result.reason}")

    vector_index, keyword_index = _load_stores(args.vector_store)
    builder = ReviewContextBuilder(HybridRetriever(vector_index, keyword_index), BudgetAllocator())
    try:
        inputs = await builder.prepare(diff_text, query=args.query, vector_k=args.vector_k, keyword_k=args.keyword_k)
    finally:
        vector_index.close()

    if args.json:
        print(json.dumps({
            "diff": inputs.truncated_change,
            "context": inputs.truncated_context,
            "allocation": inputs.allocation.to_dict(),
        }, indent=2))
    else:
        print(inputs.truncated_context)
    return 0


def run_stats(args) -> int:
    graph_client = JsonGraphClient(str(_data_file(GRAPH_FILE)))
    keyword_index = KeywordIndex()
    keyword_path = _data_file(KEYWORD_FILE)
    if keyword_path.exists():
        keyword_index.load(str(keyword_path))

    print(json.dumps({
        "graph": graph_client.get_database_stats(),
        "keyword_index": keyword_index.get_stats(),
    }, indent=2))
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="prcontext - review context builder")
    parser.add_argument("--vector-store", default=settings.vector_store, choices=["memory", "milvus"],
                        help="Vector index backend")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index_parser = subparsers.add_parser("index", help="Index a repository")
    index_parser.add_argument("repo_path", help="Path to the cloned repository")
    index_parser.add_argument("--reset", action="store_true",
                              help="Drop stored vectors (e.g. the Milvus collection) before indexing")

    context_parser = subparsers.add_parser("context", help="Build budgeted review inputs from a diff")
    context_parser.add_argument("--diff", help="Unified diff file (default: stdin)")
    context_parser.add_argument("--query", help="Retrieval query (default: derived from the diff)")
    context_parser.add_argument("--vector-k", type=int, default=settings.vector_top_k)
    context_parser.add_argument("--keyword-k", type=int, default=settings.keyword_top_k)
    context_parser.add_argument("--json", action="store_true", help="Print diff, context and allocation as JSON")

    subparsers.add_parser("stats", help="Show stored graph and keyword index statistics")

    args = parser.parse_args()

    try:
        if args.command == "index":
            exit_code = asyncio.run(run_index(args))
        elif args.command == "context":
            exit_code = asyncio.run(run_context(args))
        else:
            exit_code = run_stats(args)
    except KeyboardInterrupt:
        app_logger.info("Interrupted")
        exit_code = 130
    except (OSError, ValueError) as e:
        app_logger.error(f"Error: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
