"""
Codebase Indexing System

Splits a repository into semantically meaningful chunks and serves ranked,
citable search results over them.

Core Components:
- CodebaseIndexer: Main indexing orchestrator
- CodeChunker: Language-aware chunk extraction
- DomainClassifier: Business-domain hints for chunks
- ChunkMerger: Coalesces undersized chunks
- EmbeddingGenerator: Vector embedding generation
- VectorIndex / IndexStore: Search index and its persistence
- Retriever: Filtered, ranked search
"""

from .chunker import CodeChunker
from .domains import DomainClassifier, generate_domain_context
from .embeddings import (
    EmbeddingGenerator,
    HashingEmbeddingProvider,
    HttpEmbeddingProvider,
    IndexingCancelled,
)
from .indexer import CodebaseIndexer, IndexingStats, IndexState
from .merger import ChunkMerger
from .models import Chunk, ChunkType, DomainHint, SearchResult
from .retriever import Retriever, SearchOptions
from .storage import IndexPersistenceError, IndexStore, VectorIndex

__all__ = [
    "CodebaseIndexer",
    "IndexingStats",
    "IndexState",
    "CodeChunker",
    "Chunk",
    "ChunkType",
    "DomainHint",
    "SearchResult",
    "DomainClassifier",
    "generate_domain_context",
    "ChunkMerger",
    "EmbeddingGenerator",
    "HashingEmbeddingProvider",
    "HttpEmbeddingProvider",
    "IndexingCancelled",
    "Retriever",
    "SearchOptions",
    "IndexPersistenceError",
    "IndexStore",
    "VectorIndex",
]
