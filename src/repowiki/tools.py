"""
Agent Tool Surface

The two operations an external documentation agent calls: ranked code search
with citations, and a structural outline of a single file. Both return
markdown text ready to hand back to the agent.
"""

import logging
from typing import Any, Dict, List, Optional

from .code_analysis import analyze_code_structure, format_code_structure
from .file_operations import AccessDeniedError
from .indexing import CodebaseIndexer

logger = logging.getLogger(__name__)

MIN_RESULTS = 1
MAX_RESULTS = 20


def clamp_max_results(max_results: Optional[int]) -> int:
    if max_results is None:
        return 10
    return max(MIN_RESULTS, min(MAX_RESULTS, int(max_results)))


def search_codebase(indexer: CodebaseIndexer, query: str, max_results: Optional[int] = 10,
                    file_types: Optional[List[str]] = None,
                    exclude_tests: bool = True) -> List[Dict[str, Any]]:
    """
    Search the indexed repository.

    Returns:
        Result dicts (file_path, start_line, end_line, content, language,
        chunk_type, name, score), best first; empty if the index is not ready
    """
    if not indexer.is_ready:
        logger.warning("search_codebase called before indexing | repo: %s", indexer.repo_path)
        return []

    results = indexer.search(
        query,
        max_results=clamp_max_results(max_results),
        file_types=file_types,
        exclude_tests=exclude_tests,
    )
    return [result.to_dict() for result in results]


def format_search_results(results: List[Dict[str, Any]]) -> str:
    if not results:
        return "No relevant code found for this query."

    formatted = "\n\n".join(
        f"### Result {i} (score: {r['score']:.3f})\n"
        f"**Source:** `{r['file_path']}:{r['start_line']}-{r['end_line']}`\n\n"
        f"```{r.get('language') or ''}\n{r['content']}\n```"
        for i, r in enumerate(results, 1)
    )
    return f"Found {len(results)} relevant code snippets:\n\n{formatted}"


def search_codebase_tool(indexer: CodebaseIndexer, query: str, max_results: Optional[int] = 10,
                         file_types: Optional[List[str]] = None, exclude_tests: bool = True) -> str:
    """search_codebase rendered as agent-facing text; errors become messages."""
    if not indexer.is_ready:
        return "Error: Search index not ready. Repository must be indexed first."
    try:
        results = search_codebase(indexer, query, max_results, file_types, exclude_tests)
    except ValueError as e:
        return f"Search error: {e}"
    return format_search_results(results)


def analyze_code_structure_tool(indexer: CodebaseIndexer, file_path: str, analysis_type: str = "all") -> str:
    """analyze_code_structure rendered as agent-facing text; errors become messages."""
    try:
        if not indexer.reader.exists(file_path):
            return f"File not found: {file_path}"
        structure = analyze_code_structure(indexer.reader, file_path)
        return format_code_structure(structure, analysis_type)
    except AccessDeniedError as e:
        return f"Analysis error: {e}"
    except (OSError, UnicodeDecodeError, ValueError) as e:
        logger.warning("Code analysis failed | path: %s | error: %s", file_path, e)
        return f"Analysis error: {e}"
