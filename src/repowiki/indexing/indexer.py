"""
Main Codebase Indexer

This module provides the main interface for indexing a repository,
orchestrating discovery, chunking, embedding generation and storage, and
serving searches once the index is ready.
"""

import fnmatch
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config import IndexingConfig
from ..file_operations import AccessDeniedError, SandboxedFileReader
from ..progress_loader import ProgressCallback, ProgressEvent, ProgressPhase
from .chunker import CodeChunker
from .embeddings import EmbeddingGenerator, IndexingCancelled, create_provider
from .models import Chunk, SearchResult
from .retriever import Retriever, SearchOptions
from .storage import IndexStore, VectorIndex, create_backend, detect_backend

logger = logging.getLogger(__name__)

INDEXABLE_EXTENSIONS = {
    '.ts', '.tsx', '.js', '.jsx', '.mjs', '.cjs',
    '.py', '.pyx',
    '.go',
    '.rs',
    '.java', '.kt', '.scala',
    '.rb',
    '.php',
    '.c', '.cpp', '.h', '.hpp',
    '.cs',
    '.swift',
    '.vue', '.svelte',
    '.json', '.yaml', '.yml', '.toml',
    '.md', '.mdx',
}

EXCLUDED_DIRECTORIES = {
    'node_modules', '.git', 'dist', 'build', '.next', 'coverage',
    '__pycache__', 'venv', '.venv', 'vendor',
}

EXCLUDED_FILE_PATTERNS = [
    '*.min.js',
    '*.bundle.js',
    'package-lock.json',
    'yarn.lock',
    'pnpm-lock.yaml',
]


class IndexState(Enum):
    UNINDEXED = "unindexed"
    INDEXING = "indexing"
    READY = "ready"


@dataclass
class IndexingStats:
    """Statistics from an indexing run."""
    files_scanned: int = 0
    files_indexed: int = 0
    files_skipped: int = 0
    chunks_created: int = 0
    files_by_type: Dict[str, int] = field(default_factory=dict)
    chunks_by_type: Dict[str, int] = field(default_factory=dict)
    embedding_backend: str = "none"
    index_backend: str = "none"
    embedding_batches: int = 0
    degraded_batches: int = 0
    errors: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    loaded_from_cache: bool = False

    @property
    def degraded(self) -> bool:
        """True when the run fell back from vector search or lost embedding batches."""
        return self.index_backend != "faiss" or self.degraded_batches > 0

    def summary(self) -> str:
        source = "loaded from cache" if self.loaded_from_cache else f"{self.files_scanned} files scanned"
        parts = [
            f"{source}",
            f"{self.files_indexed} files indexed",
            f"{self.chunks_created} chunks",
            f"embeddings: {self.embedding_backend}",
            f"index: {self.index_backend}",
        ]
        if self.degraded_batches:
            parts.append(f"{self.degraded_batches}/{self.embedding_batches} embedding batches degraded")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        parts.append(f"{self.elapsed_seconds:.1f}s")
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files_scanned": self.files_scanned,
            "files_indexed": self.files_indexed,
            "files_skipped": self.files_skipped,
            "chunks_created": self.chunks_created,
            "files_by_type": dict(self.files_by_type),
            "chunks_by_type": dict(self.chunks_by_type),
            "embedding_backend": self.embedding_backend,
            "index_backend": self.index_backend,
            "embedding_batches": self.embedding_batches,
            "degraded_batches": self.degraded_batches,
            "errors": list(self.errors),
            "elapsed_seconds": self.elapsed_seconds,
            "loaded_from_cache": self.loaded_from_cache,
        }


class CodebaseIndexer:
    """Builds, persists and serves the chunk index of one repository."""

    def __init__(self,
                 repo_path: str,
                 config: Optional[IndexingConfig] = None,
                 embedder: Optional[EmbeddingGenerator] = None,
                 on_progress: Optional[ProgressCallback] = None):

        self.repo_path = Path(repo_path).resolve()
        self.config = config or IndexingConfig()
        self.on_progress = on_progress

        self.reader = SandboxedFileReader(self.repo_path)
        self.chunker = CodeChunker(self.config.chunker)
        self.embedder = embedder or EmbeddingGenerator(
            create_provider(
                dimension=self.config.embedding_dimension,
                api_url=self.config.embedding_api_url,
                api_key=self.config.embedding_api_key,
                model=self.config.embedding_model,
                timeout=self.config.embedding_timeout,
            ),
            batch_size=self.config.embedding_batch_size,
            on_progress=on_progress,
        )
        self.store = IndexStore(self.config.cache_dir, str(self.repo_path))

        self.state = IndexState.UNINDEXED
        self._index: Optional[VectorIndex] = None
        self._retriever: Optional[Retriever] = None
        self._cancel_event = threading.Event()
        self._state_lock = threading.Lock()

    @property
    def index(self) -> Optional[VectorIndex]:
        return self._index

    @property
    def is_ready(self) -> bool:
        return self.state is IndexState.READY

    def cancel(self):
        """Ask a running build to stop at the next file or embedding batch."""
        self._cancel_event.set()

    def index_repository(self, force_rebuild: bool = False) -> IndexingStats:
        """
        Index the repository, reusing a persisted index unless force_rebuild.

        Returns:
            IndexingStats for the run

        Raises:
            IndexingCancelled: if cancel() was called during the build
            IndexPersistenceError: if the new index could not be written
            RuntimeError: if a build is already running
        """
        with self._state_lock:
            if self.state is IndexState.INDEXING:
                raise RuntimeError("An indexing run is already in progress")
            previous_state = self.state
            self.state = IndexState.INDEXING
            self._cancel_event.clear()

        start_time = time.time()
        try:
            stats = None if force_rebuild else self._load_cached()
            if stats is None:
                stats = self._build()
        except BaseException:
            self.state = previous_state
            raise

        stats.elapsed_seconds = time.time() - start_time
        self.state = IndexState.READY
        logger.info("Indexing complete | %s", stats.summary())
        return stats

    def search(self, query: str, max_results: int = 10, file_types: Optional[List[str]] = None,
               exclude_tests: bool = False) -> List[SearchResult]:
        """Search the ready index; returns [] while the index is not ready."""
        retriever = self._retriever
        if self.state is not IndexState.READY or retriever is None:
            return []
        options = SearchOptions(max_results=max_results, file_types=file_types, exclude_tests=exclude_tests)
        return retriever.search(query, options)

    def clear_index(self):
        """Remove persisted artifacts and forget the loaded index."""
        with self._state_lock:
            if self.state is IndexState.INDEXING:
                raise RuntimeError("Cannot clear the index while indexing")
            self.store.clear()
            self._index = None
            self._retriever = None
            self.state = IndexState.UNINDEXED

    def discover_files(self) -> Tuple[List[str], int]:
        """
        List indexable files as sorted repository-relative paths.

        Returns:
            (paths, number of files skipped for size)
        """
        cache_root = Path(self.config.cache_dir).resolve()
        files = []
        skipped = 0

        for path in self.reader.find_files("**/*"):
            if not path.is_file():
                continue
            if path.suffix.lower() not in INDEXABLE_EXTENSIONS:
                continue
            if path.is_relative_to(cache_root):
                continue

            relative = path.relative_to(self.reader.base_dir)
            if self._is_excluded(relative):
                continue

            size = path.stat().st_size
            if size > self.config.max_file_bytes:
                logger.warning("Skipping large file | path: %s | bytes: %d | limit: %d",
                               relative.as_posix(), size, self.config.max_file_bytes)
                skipped += 1
                continue

            files.append(relative.as_posix())

        return sorted(files), skipped

    @staticmethod
    def _is_excluded(relative: Path) -> bool:
        if any(part in EXCLUDED_DIRECTORIES for part in relative.parts[:-1]):
            return True
        return any(fnmatch.fnmatch(relative.name, pattern) for pattern in EXCLUDED_FILE_PATTERNS)

    def _load_cached(self) -> Optional[IndexingStats]:
        self._report(ProgressPhase.LOADING, "Looking for a cached index")
        loaded = self.store.load()
        if loaded is None:
            return None
        index, manifest = loaded

        requested = detect_backend(self.config.index_backend)
        if index.backend_name != requested:
            logger.info("Cached index uses another backend, rebuilding | cached: %s | requested: %s",
                        index.backend_name, requested)
            return None

        if index.is_vector and (manifest.get("embedding_backend") != self.embedder.backend_name
                                or index.backend.dimension != self.embedder.dimension):
            logger.info("Cached index was built with a different embedder, rebuilding | cached: %s | current: %s",
                        manifest.get("embedding_backend"), self.embedder.backend_name)
            return None

        self._publish(index)
        stats = IndexingStats(
            files_scanned=int(manifest.get("files_scanned", 0)),
            files_indexed=int(manifest.get("files_indexed", 0)),
            chunks_created=index.size,
            embedding_backend=manifest.get("embedding_backend", "none"),
            index_backend=index.backend_name,
            loaded_from_cache=True,
        )
        for chunk in index.chunks:
            key = chunk.chunk_type.value
            stats.chunks_by_type[key] = stats.chunks_by_type.get(key, 0) + 1
        self._report(ProgressPhase.LOADING, f"Loaded cached index with {index.size} chunks", 100.0)
        return stats

    def _build(self) -> IndexingStats:
        stats = IndexingStats()
        backend_name = detect_backend(self.config.index_backend)
        stats.index_backend = backend_name

        self._report(ProgressPhase.DISCOVERY, f"Scanning {self.repo_path}")
        files, skipped = self.discover_files()
        stats.files_scanned = len(files) + skipped
        stats.files_skipped = skipped
        self._report(ProgressPhase.DISCOVERY, f"Found {len(files)} files to index", 100.0)

        chunks = self._chunk_files(files, stats)
        chunks.sort(key=lambda c: (c.file_path, c.start_line))
        stats.chunks_created = len(chunks)
        for chunk in chunks:
            key = chunk.chunk_type.value
            stats.chunks_by_type[key] = stats.chunks_by_type.get(key, 0) + 1

        index = VectorIndex(create_backend(backend_name, self.embedder.dimension))
        vectors = None
        if index.is_vector:
            run = self.embedder.embed_chunks(chunks, self._cancel_event)
            vectors = run.vectors
            stats.embedding_backend = self.embedder.backend_name
            stats.embedding_batches = run.total_batches
            stats.degraded_batches = run.degraded_batches

        if self._cancel_event.is_set():
            raise IndexingCancelled("Indexing cancelled before the index was built")

        self._report(ProgressPhase.INDEXING, f"Building {backend_name} index over {len(chunks)} chunks")
        index.build(vectors, chunks)
        self.store.persist(index, {
            "embedding_backend": stats.embedding_backend,
            "files_scanned": stats.files_scanned,
            "files_indexed": stats.files_indexed,
            "chunker": {
                "max_chunk_size": self.config.chunker.max_chunk_size,
                "min_chunk_size": self.config.chunker.min_chunk_size,
            },
        })
        self._publish(index)
        self._report(ProgressPhase.INDEXING, "Index ready", 100.0)
        return stats

    def _chunk_files(self, files: List[str], stats: IndexingStats) -> List[Chunk]:
        if self.config.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
                return self._collect(executor.map(self._chunk_one, files), len(files), stats)
        return self._collect(map(self._chunk_one, files), len(files), stats)

    def _collect(self, results: Iterable[Tuple[str, List[Chunk], Optional[str]]], total: int,
                 stats: IndexingStats) -> List[Chunk]:
        chunks: List[Chunk] = []
        for done, (relative_path, file_chunks, error) in enumerate(results, 1):
            if error:
                stats.errors.append(error)
            if file_chunks:
                stats.files_indexed += 1
                ext = Path(relative_path).suffix.lower()
                stats.files_by_type[ext] = stats.files_by_type.get(ext, 0) + 1
                chunks.extend(file_chunks)
            self._report(ProgressPhase.CHUNKING, f"Chunked {relative_path}", 100.0 * done / total)
        return chunks

    def _chunk_one(self, relative_path: str) -> Tuple[str, List[Chunk], Optional[str]]:
        if self._cancel_event.is_set():
            raise IndexingCancelled(f"Indexing cancelled before {relative_path}")
        try:
            return relative_path, self.chunker.chunk_file(relative_path, self.reader), None
        except AccessDeniedError as e:
            logger.warning("Skipping file outside repository | path: %s", relative_path)
            return relative_path, [], str(e)

    def _publish(self, index: VectorIndex):
        self._index = index
        self._retriever = Retriever(index, self.embedder)

    def _report(self, phase: ProgressPhase, message: str, percent: Optional[float] = None):
        if self.on_progress is not None:
            self.on_progress(ProgressEvent(phase=phase, message=message, percent=percent))
