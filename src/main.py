#!/usr/bin/env python3
"""
RepoWiki Indexer
Index a repository into searchable, citable code chunks and query it from the
command line.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from repowiki.config import IndexingConfig, load_config
from repowiki.file_operations import AccessDeniedError
from repowiki.indexing import CodebaseIndexer, IndexingCancelled, IndexPersistenceError, IndexingStats
from repowiki.progress_loader import indexing_progress, search_progress, terminal_progress_callback
from repowiki.tools import (
    analyze_code_structure_tool,
    format_search_results,
    search_codebase,
)

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

logger = logging.getLogger('repowiki')


def setup_logging(log_file: Optional[str] = None, verbose: bool = False):
    """Console warnings (or debug with --verbose), plus an optional log file."""
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def log_info(message: str, data: dict = None):
    """Log an info message with optional structured data."""
    if data:
        formatted_data = " | ".join([f"{k}: {v}" for k, v in data.items()])
        logger.info(f"{message} | {formatted_data}")
    else:
        logger.info(message)


def build_config(args: argparse.Namespace) -> IndexingConfig:
    config = load_config(args.env_file)
    if args.cache_dir:
        config.cache_dir = args.cache_dir
    if args.backend:
        config.index_backend = args.backend
    if getattr(args, 'workers', None):
        config.max_workers = args.workers
    return config


def print_stats(stats: IndexingStats):
    if stats.loaded_from_cache:
        print(f"📚 Loaded cached index: {stats.chunks_created} chunks")
    else:
        print(f"📂 Files scanned: {stats.files_scanned} ({stats.files_skipped} skipped)")
        print(f"📝 Files indexed: {stats.files_indexed}")
        print(f"🧩 Chunks created: {stats.chunks_created}")
    print(f"🔤 Embeddings: {stats.embedding_backend} | 🗂️ Index: {stats.index_backend}")
    if stats.degraded:
        print("⚠️  Running in fallback mode: results use the keyword index or partial embeddings")
    if stats.errors:
        print(f"⚠️ {len(stats.errors)} errors occurred during indexing")
    print(f"⏱️ Time: {stats.elapsed_seconds:.1f}s")


def run_index(indexer: CodebaseIndexer, force: bool) -> IndexingStats:
    with indexing_progress(indexer.repo_path.name) as loader:
        stats = indexer.index_repository(force_rebuild=force)
        loader.stop("Indexing complete")
    log_info("Indexing complete", stats.to_dict())
    return stats


def cmd_index(args: argparse.Namespace, config: IndexingConfig) -> int:
    indexer = CodebaseIndexer(args.repo, config, on_progress=terminal_progress_callback())
    print(f"🚀 Indexing {indexer.repo_path}")
    stats = run_index(indexer, args.force)
    print_stats(stats)
    return 0


def cmd_search(args: argparse.Namespace, config: IndexingConfig) -> int:
    indexer = CodebaseIndexer(args.repo, config, on_progress=terminal_progress_callback())
    run_index(indexer, force=False)

    with search_progress(args.query):
        results = search_codebase(
            indexer,
            args.query,
            max_results=args.max_results,
            file_types=args.file_types,
            exclude_tests=not args.include_tests,
        )
    log_info("Search complete", {"query": args.query, "results": len(results)})
    print(format_search_results(results))
    return 0 if results else 1


def cmd_analyze(args: argparse.Namespace, config: IndexingConfig) -> int:
    indexer = CodebaseIndexer(args.repo, config)
    print(analyze_code_structure_tool(indexer, args.file, args.type))
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Index a repository and search it with file/line citations')
    parser.add_argument('--cache-dir', type=str, help='Directory for persisted indexes (default: .repowiki_cache)')
    parser.add_argument('--backend', choices=['auto', 'faiss', 'keyword'], help='Index backend')
    parser.add_argument('--env-file', type=str, help='Path to a .env file with REPOWIKI_* settings')
    parser.add_argument('--log-file', type=str, help='Append logs to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    index_parser = subparsers.add_parser('index', help='Build (or load) the index for a repository')
    index_parser.add_argument('repo', type=str, help='Repository root')
    index_parser.add_argument('--force', action='store_true', help='Rebuild even if a cached index exists')
    index_parser.add_argument('--workers', type=int, help='Files chunked in parallel')

    search_parser = subparsers.add_parser('search', help='Search an indexed repository')
    search_parser.add_argument('repo', type=str, help='Repository root')
    search_parser.add_argument('query', type=str, help='Natural language query')
    search_parser.add_argument('-k', '--max-results', type=int, default=10, help='Maximum results (1-20)')
    search_parser.add_argument('--file-types', nargs='+', help='Only these extensions, e.g. .py .ts')
    search_parser.add_argument('--include-tests', action='store_true', help='Keep test files in results')

    analyze_parser = subparsers.add_parser('analyze', help='Outline the structure of one file')
    analyze_parser.add_argument('repo', type=str, help='Repository root')
    analyze_parser.add_argument('file', type=str, help='File path relative to the repository root')
    analyze_parser.add_argument('--type', default='all',
                                choices=['all', 'functions', 'classes', 'imports', 'exports', 'structure'],
                                help='Which part of the outline to show')
    return parser


COMMANDS = {
    'index': cmd_index,
    'search': cmd_search,
    'analyze': cmd_analyze,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_file, args.verbose)

    if not Path(args.repo).is_dir():
        print(f"❌ Error: Repository '{args.repo}' not found")
        return 2

    try:
        config = build_config(args)
        return COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        return 130
    except IndexingCancelled:
        print("⚠️ Indexing cancelled, previous index left untouched")
        return 130
    except (IndexPersistenceError, AccessDeniedError, ValueError) as e:
        logger.error(f"Command failed | command: {args.command} | error: {e}")
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
