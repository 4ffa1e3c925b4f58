"""
Configuration

Settings are read from the process environment (optionally seeded from a
.env file) with REPOWIKI_ prefixed variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


@dataclass
class ChunkerConfig:
    """Chunk extraction settings. Sizes are measured in characters."""
    max_chunk_size: int = 3000
    min_chunk_size: int = 100
    include_imports: bool = True
    include_documentation: bool = True
    extract_domain_hints: bool = True
    chunk_nested_constructs: bool = True

    def __post_init__(self):
        if self.min_chunk_size < 0:
            raise ValueError("min_chunk_size must not be negative")
        if self.max_chunk_size <= self.min_chunk_size:
            raise ValueError("max_chunk_size must be larger than min_chunk_size")


@dataclass
class IndexingConfig:
    """Settings for a full indexing run."""
    cache_dir: str = ".repowiki_cache"
    embedding_dimension: int = 1024
    embedding_batch_size: int = 20
    embedding_api_url: Optional[str] = None
    embedding_api_key: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_timeout: float = 60.0
    index_backend: str = "auto"
    max_file_bytes: int = 1_000_000
    max_workers: int = 1
    chunker: ChunkerConfig = field(default_factory=ChunkerConfig)

    def __post_init__(self):
        if self.index_backend not in ("auto", "faiss", "keyword"):
            raise ValueError(f"Unknown index backend: {self.index_backend}")
        if self.embedding_batch_size < 1:
            raise ValueError("embedding_batch_size must be at least 1")
        if self.embedding_dimension < 1:
            raise ValueError("embedding_dimension must be at least 1")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(env_file: Optional[str] = None) -> IndexingConfig:
    """
    Build an IndexingConfig from the environment.

    Args:
        env_file: Optional path to a .env file; the current directory's .env
            is used when omitted. Variables already set in the environment win.

    Returns:
        IndexingConfig populated from REPOWIKI_* variables
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    chunker = ChunkerConfig(
        max_chunk_size=_env_int("REPOWIKI_MAX_CHUNK_SIZE", 3000),
        min_chunk_size=_env_int("REPOWIKI_MIN_CHUNK_SIZE", 100),
        include_imports=_env_bool("REPOWIKI_INCLUDE_IMPORTS", True),
        include_documentation=_env_bool("REPOWIKI_INCLUDE_DOCUMENTATION", True),
        extract_domain_hints=_env_bool("REPOWIKI_EXTRACT_DOMAIN_HINTS", True),
        chunk_nested_constructs=_env_bool("REPOWIKI_CHUNK_NESTED", True),
    )

    return IndexingConfig(
        cache_dir=os.getenv("REPOWIKI_CACHE_DIR", ".repowiki_cache"),
        embedding_dimension=_env_int("REPOWIKI_EMBEDDING_DIMENSION", 1024),
        embedding_batch_size=_env_int("REPOWIKI_EMBEDDING_BATCH_SIZE", 20),
        embedding_api_url=os.getenv("REPOWIKI_EMBEDDING_API_URL") or None,
        embedding_api_key=os.getenv("REPOWIKI_EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY"),
        embedding_model=os.getenv("REPOWIKI_EMBEDDING_MODEL", "text-embedding-3-small"),
        embedding_timeout=_env_float("REPOWIKI_EMBEDDING_TIMEOUT", 60.0),
        index_backend=os.getenv("REPOWIKI_INDEX_BACKEND", "auto").strip().lower(),
        max_file_bytes=_env_int("REPOWIKI_MAX_FILE_BYTES", 1_000_000),
        max_workers=_env_int("REPOWIKI_MAX_WORKERS", 1),
        chunker=chunker,
    )
