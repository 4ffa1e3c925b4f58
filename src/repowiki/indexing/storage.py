"""
Vector Storage for Code Chunks

Holds the searchable index (vectors plus an integer id -> chunk table) and
persists it per repository. Two backends exist:

- FaissVectorBackend: exact inner-product search over L2-normalized vectors
- KeywordFallbackBackend: no vectors, linear term-count scoring at query time

Persisted artifacts are published by atomically replacing a small manifest,
so a crashed or cancelled write never leaves a half-written index visible.
"""

import hashlib
import importlib.util
import json
import logging
import os
import re
import shutil
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from .models import Chunk

logger = logging.getLogger(__name__)

MANIFEST_NAME = "index_info.json"
MANIFEST_VERSION = 1
BACKENDS = ("auto", "faiss", "keyword")


class IndexPersistenceError(RuntimeError):
    """Raised when index artifacts cannot be written."""


def faiss_available() -> bool:
    return importlib.util.find_spec("faiss") is not None


def detect_backend(preference: str = "auto") -> str:
    """
    Pick the index backend once per build.

    Raises:
        ValueError: for an unknown preference, or "faiss" when it is not installed
    """
    if preference not in BACKENDS:
        raise ValueError(f"Unknown index backend: {preference}")
    if preference == "keyword":
        return "keyword"
    if faiss_available():
        return "faiss"
    if preference == "faiss":
        raise ValueError("The faiss backend was requested but faiss is not installed (pip install faiss-cpu)")
    logger.info("faiss not available, using keyword fallback index")
    return "keyword"


class FaissVectorBackend:
    """Exact cosine similarity search with a flat inner-product index."""

    name = "faiss"
    is_vector = True
    file_suffix = ".faiss"

    def __init__(self, dimension: int):
        self.dimension = dimension
        self._index = None

    def build(self, vectors: np.ndarray):
        import faiss

        matrix = np.ascontiguousarray(vectors, dtype=np.float32).reshape(-1, self.dimension).copy()
        if len(matrix):
            faiss.normalize_L2(matrix)
        index = faiss.IndexFlatIP(self.dimension)
        index.add(matrix)
        self._index = index

    @property
    def size(self) -> int:
        return 0 if self._index is None else int(self._index.ntotal)

    def search(self, query_vector: np.ndarray, k: int) -> List[Tuple[int, float]]:
        import faiss

        if self._index is None or self.size == 0 or k <= 0:
            return []
        query = np.ascontiguousarray(query_vector, dtype=np.float32).reshape(1, self.dimension).copy()
        faiss.normalize_L2(query)
        distances, labels = self._index.search(query, min(k, self.size))
        return [
            (int(label), float(distance))
            for label, distance in zip(labels[0], distances[0])
            if label != -1
        ]

    def save(self, path: Path):
        import faiss
        faiss.write_index(self._index, str(path))

    def load(self, path: Path):
        import faiss
        index = faiss.read_index(str(path))
        if index.d != self.dimension:
            raise ValueError(f"Index dimension {index.d} does not match expected {self.dimension}")
        self._index = index


class KeywordFallbackBackend:
    """Stores no vectors; ranking is done from chunk text at query time."""

    name = "keyword"
    is_vector = False
    file_suffix = None

    def __init__(self, dimension: int = 0):
        self.dimension = dimension

    def build(self, vectors: np.ndarray):
        pass

    def search(self, query_vector: np.ndarray, k: int) -> List[Tuple[int, float]]:
        return []

    @staticmethod
    def score(text: str, terms: Iterable[str]) -> float:
        """Summed occurrence counts of each term in the lowercased text."""
        lowered = text.lower()
        return float(sum(len(re.findall(re.escape(term), lowered)) for term in terms))


def create_backend(name: str, dimension: int):
    if name == "faiss":
        return FaissVectorBackend(dimension)
    if name == "keyword":
        return KeywordFallbackBackend(dimension)
    raise ValueError(f"Unknown index backend: {name}")


def query_terms(query: str) -> List[str]:
    return [term for term in query.lower().split() if term]


class VectorIndex:
    """An immutable-once-built search index over a list of chunks."""

    def __init__(self, backend):
        self.backend = backend
        self._chunks: List[Chunk] = []

    @property
    def backend_name(self) -> str:
        return self.backend.name

    @property
    def is_vector(self) -> bool:
        return self.backend.is_vector

    @property
    def size(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> List[Chunk]:
        return list(self._chunks)

    def build(self, vectors: np.ndarray, chunks: List[Chunk]):
        """
        Build the index; chunk i is stored under integer id i.

        Raises:
            ValueError: when vector and chunk counts differ
        """
        if self.is_vector and len(vectors) != len(chunks):
            raise ValueError(f"Got {len(vectors)} vectors for {len(chunks)} chunks")
        self.backend.build(vectors)
        self._chunks = list(chunks)

    def get(self, chunk_id: int) -> Optional[Chunk]:
        if 0 <= chunk_id < len(self._chunks):
            return self._chunks[chunk_id]
        return None

    def search(self, query_vector: np.ndarray, k: int) -> List[Tuple[int, float]]:
        return self.backend.search(query_vector, k)

    def keyword_search(self, query: str, candidate_ids: Optional[Iterable[int]] = None) -> List[Tuple[int, float]]:
        """Term-count scores for candidates, zero scores dropped, best first (ties by id)."""
        terms = query_terms(query)
        if not terms:
            return []
        ids = range(len(self._chunks)) if candidate_ids is None else candidate_ids

        scored = []
        for chunk_id in ids:
            score = KeywordFallbackBackend.score(self._chunks[chunk_id].content, terms)
            if score > 0:
                scored.append((chunk_id, score))
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored

    def metadata_table(self) -> Dict[str, Dict[str, Any]]:
        return {str(i): chunk.to_dict() for i, chunk in enumerate(self._chunks)}

    def load_metadata_table(self, table: Dict[str, Dict[str, Any]]):
        ordered = sorted(table.items(), key=lambda item: int(item[0]))
        self._chunks = [Chunk.from_dict(data) for _, data in ordered]


class IndexStore:
    """On-disk artifacts for one repository's index."""

    def __init__(self, cache_dir: str, repo_path: str):
        self.repo_path = str(Path(repo_path).resolve())
        self.repo_key = hashlib.md5(self.repo_path.encode("utf-8")).hexdigest()[:12]
        self.directory = Path(cache_dir) / self.repo_key
        self.manifest_path = self.directory / MANIFEST_NAME

    def read_manifest(self) -> Optional[Dict[str, Any]]:
        if not self.manifest_path.exists():
            return None
        try:
            with open(self.manifest_path, "r", encoding="utf-8") as f:
                manifest = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Unreadable index manifest | path: %s | error: %s", self.manifest_path, e)
            return None
        if manifest.get("version") != MANIFEST_VERSION:
            logger.warning("Unsupported index manifest version | path: %s | version: %s",
                           self.manifest_path, manifest.get("version"))
            return None
        return manifest

    def persist(self, index: VectorIndex, info: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Write a new generation of artifacts and publish it.

        Returns:
            The manifest that was published

        Raises:
            IndexPersistenceError: if anything could not be written; the
                previously published index stays intact
        """
        previous = self.read_manifest()
        generation = (previous or {}).get("generation", 0) + 1
        metadata_file = f"metadata-{generation}.json"
        blob_file = f"index-{generation}{index.backend.file_suffix}" if index.backend.file_suffix else None

        manifest = dict(info or {})
        manifest.update({
            "version": MANIFEST_VERSION,
            "generation": generation,
            "repo_path": self.repo_path,
            "backend": index.backend_name,
            "dimension": index.backend.dimension,
            "chunk_count": index.size,
            "metadata_file": metadata_file,
            "index_file": blob_file,
            "created_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        })

        written = []
        try:
            self.directory.mkdir(parents=True, exist_ok=True)

            if blob_file:
                index.backend.save(self.directory / blob_file)
                written.append(self.directory / blob_file)

            metadata_path = self.directory / metadata_file
            with open(metadata_path, "w", encoding="utf-8") as f:
                json.dump(index.metadata_table(), f)
            written.append(metadata_path)

            staging = self.directory / f"{MANIFEST_NAME}.tmp"
            with open(staging, "w", encoding="utf-8") as f:
                json.dump(manifest, f, indent=2)
            os.replace(staging, self.manifest_path)
        except Exception as e:
            for path in written:
                path.unlink(missing_ok=True)
            raise IndexPersistenceError(f"Failed to persist index to {self.directory}: {e}") from e

        self._remove_stale(keep={metadata_file, blob_file, MANIFEST_NAME})
        logger.info("Index persisted | path: %s | generation: %d | chunks: %d",
                    self.directory, generation, index.size)
        return manifest

    def load(self) -> Optional[Tuple[VectorIndex, Dict[str, Any]]]:
        """Load the published index, or None when there is no usable artifact."""
        manifest = self.read_manifest()
        if manifest is None:
            return None

        backend_name = manifest.get("backend")
        if backend_name == "faiss" and not faiss_available():
            logger.warning("Cached index needs faiss, which is not installed | path: %s", self.directory)
            return None

        try:
            index = VectorIndex(create_backend(backend_name, int(manifest.get("dimension", 0))))
            with open(self.directory / manifest["metadata_file"], "r", encoding="utf-8") as f:
                index.load_metadata_table(json.load(f))
            if manifest.get("index_file"):
                index.backend.load(self.directory / manifest["index_file"])
        except (OSError, ValueError, KeyError, RuntimeError) as e:
            logger.warning("Could not load cached index | path: %s | error: %s", self.directory, e)
            return None

        if index.is_vector and index.backend.size != index.size:
            logger.warning("Cached index is inconsistent | vectors: %d | chunks: %d",
                           index.backend.size, index.size)
            return None

        return index, manifest

    def clear(self):
        if self.directory.exists():
            shutil.rmtree(self.directory)

    def _remove_stale(self, keep: set):
        for path in self.directory.iterdir():
            if path.name in keep or not path.is_file():
                continue
            if path.name.startswith(("metadata-", "index-")):
                try:
                    path.unlink()
                except OSError as e:
                    logger.warning("Could not remove stale artifact | path: %s | error: %s", path, e)
