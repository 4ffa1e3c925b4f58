"""
Chunk Retrieval

Answers a natural-language query with ranked chunks. With a vector backend
the query is embedded and neighbours are over-fetched so that filtering does
not starve the result list; with the keyword fallback chunks are filtered
first and then scored by term counts.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .embeddings import EmbeddingGenerator
from .models import Chunk, SearchResult
from .storage import VectorIndex

logger = logging.getLogger(__name__)

OVERFETCH_FACTOR = 2

TEST_PATH_PATTERNS = [
    re.compile(r"\.test\."),
    re.compile(r"\.spec\."),
    re.compile(r"_test\."),
    re.compile(r"test_"),
    re.compile(r"__tests__/"),
    re.compile(r"tests/"),
    re.compile(r"\.stories\."),
    re.compile(r"__mocks__/"),
]


def is_test_file(file_path: str) -> bool:
    return any(pattern.search(file_path) for pattern in TEST_PATH_PATTERNS)


@dataclass
class SearchOptions:
    """Query-time filters."""
    max_results: int = 10
    file_types: Optional[List[str]] = None
    exclude_tests: bool = False

    def __post_init__(self):
        if self.max_results < 1:
            raise ValueError("max_results must be at least 1")
        if self.file_types:
            self.file_types = [ext.lower() if ext.startswith(".") else f".{ext.lower()}"
                               for ext in self.file_types]

    def accepts(self, chunk: Chunk) -> bool:
        if self.exclude_tests and is_test_file(chunk.file_path):
            return False
        if self.file_types and Path(chunk.file_path).suffix.lower() not in self.file_types:
            return False
        return True


class Retriever:
    """Read-only search over a built VectorIndex; safe to share between threads."""

    def __init__(self, index: VectorIndex, embedder: EmbeddingGenerator):
        self.index = index
        self.embedder = embedder

    def search(self, query: str, options: Optional[SearchOptions] = None) -> List[SearchResult]:
        """
        Rank chunks for a query.

        Returns:
            At most options.max_results results, best first
        """
        options = options or SearchOptions()
        if not query.strip() or self.index.size == 0:
            return []

        if self.index.is_vector:
            results = self._vector_search(query, options)
        else:
            results = self._keyword_search(query, options)

        logger.debug("Search complete | query: %s | backend: %s | results: %d",
                     query[:80], self.index.backend_name, len(results))
        return results

    def _vector_search(self, query: str, options: SearchOptions) -> List[SearchResult]:
        query_vector = self.embedder.embed_query(query)
        neighbours = self.index.search(query_vector, options.max_results * OVERFETCH_FACTOR)

        results = []
        for chunk_id, score in neighbours:
            chunk = self.index.get(chunk_id)
            if chunk is None or not options.accepts(chunk):
                continue
            results.append(SearchResult(chunk=chunk, score=score))
            if len(results) >= options.max_results:
                break
        return results

    def _keyword_search(self, query: str, options: SearchOptions) -> List[SearchResult]:
        candidates = [i for i, chunk in enumerate(self.index.chunks) if options.accepts(chunk)]
        scored = self.index.keyword_search(query, candidates)
        return [
            SearchResult(chunk=self.index.get(chunk_id), score=score)
            for chunk_id, score in scored[:options.max_results]
        ]
