"""
Embedding Generation for Code Chunks

Turns chunk text (or a query) into fixed-dimension vectors. The deterministic
hashing provider needs no network and is always available; an HTTP provider
speaking the OpenAI-compatible embeddings protocol can be plugged in instead.
"""

import logging
import re
import threading
import zlib
from dataclasses import dataclass
from typing import List, Optional, Protocol

import numpy as np
import requests

from ..progress_loader import ProgressCallback, ProgressEvent, ProgressPhase
from .domains import generate_domain_context
from .models import Chunk

logger = logging.getLogger(__name__)

DEFAULT_DIMENSION = 1024
DEFAULT_BATCH_SIZE = 20
MIN_TOKEN_LENGTH = 3

_NON_WORD = re.compile(r"[^a-z0-9_]")


class IndexingCancelled(Exception):
    """Raised between batches when an indexing run has been cancelled."""


class EmbeddingProvider(Protocol):
    name: str
    dimension: int

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        ...


def tokenize(text: str) -> List[str]:
    """Lowercased alphanumeric/underscore tokens longer than two characters."""
    return [token for token in _NON_WORD.sub(" ", text.lower()).split() if len(token) >= MIN_TOKEN_LENGTH]


def l2_normalize(vectors: np.ndarray) -> np.ndarray:
    """Row-wise L2 normalization; zero rows stay zero."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (vectors / norms).astype(np.float32)


class HashingEmbeddingProvider:
    """Deterministic bag-of-words hashing embedder."""

    name = "hashing"

    def __init__(self, dimension: int = DEFAULT_DIMENSION):
        if dimension < 1:
            raise ValueError("dimension must be at least 1")
        self.dimension = dimension

    def bucket_for(self, token: str) -> int:
        return zlib.crc32(token.encode("utf-8")) % self.dimension

    def embed_text(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in tokenize(text):
            vector[self.bucket_for(token)] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)
        return np.vstack([self.embed_text(text) for text in texts])


class HttpEmbeddingProvider:
    """External embedding API using the OpenAI-compatible /v1/embeddings protocol."""

    name = "http"

    def __init__(self, api_url: str, api_key: Optional[str] = None,
                 model: str = "text-embedding-3-small",
                 dimension: int = DEFAULT_DIMENSION, timeout: float = 60.0,
                 session: Optional[requests.Session] = None):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        if self.api_url.endswith("/embeddings"):
            return self.api_url
        return f"{self.api_url}/embeddings"

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        """
        Embed a batch through the remote API.

        Raises:
            requests.RequestException: on transport or HTTP errors
            ValueError: when the response does not match the request
        """
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        response = self.session.post(
            self.endpoint,
            headers=headers,
            json={
                "model": self.model,
                "input": texts,
                "dimensions": self.dimension
            },
            timeout=self.timeout
        )
        response.raise_for_status()
        data = response.json()

        items = sorted(data["data"], key=lambda item: item.get("index", 0))
        if len(items) != len(texts):
            raise ValueError(f"Expected {len(texts)} embeddings, got {len(items)}")

        vectors = np.array([item["embedding"] for item in items], dtype=np.float32)
        if vectors.shape[1] != self.dimension:
            raise ValueError(f"Expected dimension {self.dimension}, got {vectors.shape[1]}")
        return l2_normalize(vectors)


@dataclass
class EmbeddingRun:
    """Vectors for one embedding pass plus how many batches had to be zero-filled."""
    vectors: np.ndarray
    total_batches: int
    degraded_batches: int

    @property
    def degraded(self) -> bool:
        return self.degraded_batches > 0


def prepare_chunk_text(chunk: Chunk) -> str:
    """Chunk text with its one-line semantic summary prepended."""
    context = generate_domain_context(chunk)
    if context:
        return f"{context}\n{chunk.content}"
    return chunk.content


class EmbeddingGenerator:
    """Batches texts through a provider, degrading failed batches to zero vectors."""

    def __init__(self, provider: Optional[EmbeddingProvider] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE,
                 on_progress: Optional[ProgressCallback] = None):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.provider = provider or HashingEmbeddingProvider()
        self.batch_size = batch_size
        self.on_progress = on_progress

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    @property
    def backend_name(self) -> str:
        return self.provider.name

    def embed_chunks(self, chunks: List[Chunk],
                     cancel_event: Optional[threading.Event] = None) -> EmbeddingRun:
        return self.embed([prepare_chunk_text(chunk) for chunk in chunks], cancel_event)

    def embed(self, texts: List[str], cancel_event: Optional[threading.Event] = None) -> EmbeddingRun:
        """
        Embed texts in batches.

        Raises:
            IndexingCancelled: if cancel_event is set before a batch starts
        """
        total_batches = (len(texts) + self.batch_size - 1) // self.batch_size
        blocks = []
        degraded = 0

        for batch_number, offset in enumerate(range(0, len(texts), self.batch_size), 1):
            if cancel_event is not None and cancel_event.is_set():
                raise IndexingCancelled(f"Embedding cancelled before batch {batch_number}/{total_batches}")

            batch = texts[offset:offset + self.batch_size]
            try:
                vectors = self.provider.embed_batch(batch)
            except Exception as e:
                degraded += 1
                logger.warning("Embedding batch failed, using zero vectors | batch: %d/%d | provider: %s | error: %s",
                               batch_number, total_batches, self.provider.name, e)
                vectors = np.zeros((len(batch), self.dimension), dtype=np.float32)
            blocks.append(np.asarray(vectors, dtype=np.float32))

            self._report(batch_number, total_batches)

        if blocks:
            matrix = np.vstack(blocks)
        else:
            matrix = np.zeros((0, self.dimension), dtype=np.float32)
        return EmbeddingRun(vectors=matrix, total_batches=total_batches, degraded_batches=degraded)

    def embed_query(self, query: str) -> np.ndarray:
        """Embed a search query; a provider failure yields a zero vector."""
        try:
            return np.asarray(self.provider.embed_batch([query]), dtype=np.float32)[0]
        except Exception as e:
            logger.warning("Query embedding failed | provider: %s | error: %s", self.provider.name, e)
            return np.zeros(self.dimension, dtype=np.float32)

    def _report(self, batch_number: int, total_batches: int):
        if self.on_progress is None:
            return
        self.on_progress(ProgressEvent(
            phase=ProgressPhase.EMBEDDING,
            message=f"Embedded batch {batch_number}/{total_batches}",
            percent=100.0 * batch_number / total_batches,
        ))


def create_provider(dimension: int = DEFAULT_DIMENSION, api_url: Optional[str] = None,
                    api_key: Optional[str] = None, model: str = "text-embedding-3-small",
                    timeout: float = 60.0) -> EmbeddingProvider:
    """HTTP provider when an API url is configured, otherwise the hashing fallback."""
    if api_url:
        return HttpEmbeddingProvider(api_url, api_key=api_key, model=model,
                                     dimension=dimension, timeout=timeout)
    return HashingEmbeddingProvider(dimension)
