"""
Integration tests for CodebaseIndexer on a small on-disk repository.
"""

import pytest

from repowiki.config import IndexingConfig
from repowiki.indexing import (
    CodebaseIndexer,
    EmbeddingGenerator,
    HashingEmbeddingProvider,
    IndexingCancelled,
    IndexState,
)
from repowiki.progress_loader import ProgressPhase


class TestDiscovery:
    """Test which files are picked up for indexing."""

    def test_excludes_dependencies_builds_and_unknown_types(self, sample_repo, keyword_config):
        files, skipped = CodebaseIndexer(str(sample_repo), keyword_config).discover_files()

        assert files == [
            "README.md",
            "config/settings.json",
            "src/auth/service.py",
            "src/reports/utils.py",
            "tests/test_auth.py",
        ]
        assert skipped == 0

    def test_large_files_are_skipped(self, sample_repo, tmp_path):
        config = IndexingConfig(cache_dir=str(tmp_path / "cache"), index_backend="keyword", max_file_bytes=200)
        files, skipped = CodebaseIndexer(str(sample_repo), config).discover_files()

        assert "src/auth/service.py" not in files
        assert "config/settings.json" in files
        assert skipped >= 1

    def test_cache_inside_repo_is_not_indexed(self, sample_repo):
        config = IndexingConfig(cache_dir=str(sample_repo / ".repowiki_cache"), index_backend="keyword")
        indexer = CodebaseIndexer(str(sample_repo), config)
        indexer.index_repository()

        files, _ = indexer.discover_files()
        assert not any(path.startswith(".repowiki_cache") for path in files)


class TestKeywordIndexing:
    """Test a full build with the keyword fallback backend."""

    def test_build_reports_stats(self, sample_repo, keyword_config):
        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        assert indexer.state is IndexState.UNINDEXED

        stats = indexer.index_repository()

        assert indexer.state is IndexState.READY
        assert stats.files_scanned == 5
        assert stats.files_indexed == 5
        assert stats.chunks_created == indexer.index.size > 0
        assert stats.index_backend == "keyword"
        assert stats.embedding_backend == "none"
        assert stats.degraded is True
        assert stats.loaded_from_cache is False
        assert stats.files_by_type[".py"] == 3
        assert stats.errors == []

    def test_chunks_are_ordered_by_file_and_line(self, sample_repo, keyword_config):
        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        indexer.index_repository()

        keys = [(c.file_path, c.start_line) for c in indexer.index.chunks]
        assert keys == sorted(keys)

    def test_search_before_ready_returns_nothing(self, sample_repo, keyword_config):
        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        assert indexer.search("password") == []

    def test_search_with_citations(self, sample_repo, keyword_config):
        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        indexer.index_repository()

        results = indexer.search("password", exclude_tests=True)

        assert results
        top = results[0].chunk
        assert top.file_path == "src/auth/service.py"
        lines = (sample_repo / top.file_path).read_text(encoding="utf-8").split("\n")
        assert top.content == "\n".join(lines[top.start_line - 1:top.end_line])
        assert all(not r.chunk.file_path.startswith("tests/") for r in results)

    def test_search_file_types(self, sample_repo, keyword_config):
        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        indexer.index_repository()

        results = indexer.search("password", file_types=[".md"])
        assert [r.chunk.file_path for r in results] == ["README.md"]

    def test_second_run_loads_cache(self, sample_repo, keyword_config):
        first = CodebaseIndexer(str(sample_repo), keyword_config).index_repository()

        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        stats = indexer.index_repository()

        assert stats.loaded_from_cache is True
        assert stats.chunks_created == first.chunks_created
        assert indexer.search("password")

    def test_force_rebuild_ignores_cache(self, sample_repo, keyword_config):
        CodebaseIndexer(str(sample_repo), keyword_config).index_repository()

        stats = CodebaseIndexer(str(sample_repo), keyword_config).index_repository(force_rebuild=True)

        assert stats.loaded_from_cache is False
        assert stats.files_indexed == 5

    def test_parallel_chunking_matches_serial(self, sample_repo, tmp_path):
        serial = CodebaseIndexer(str(sample_repo), IndexingConfig(
            cache_dir=str(tmp_path / "serial"), index_backend="keyword"))
        parallel = CodebaseIndexer(str(sample_repo), IndexingConfig(
            cache_dir=str(tmp_path / "parallel"), index_backend="keyword", max_workers=4))
        serial.index_repository()
        parallel.index_repository()

        assert [c.id for c in parallel.index.chunks] == [c.id for c in serial.index.chunks]

    def test_progress_events(self, sample_repo, keyword_config):
        events = []
        CodebaseIndexer(str(sample_repo), keyword_config, on_progress=events.append).index_repository()

        phases = [e.phase for e in events]
        assert ProgressPhase.DISCOVERY in phases
        assert phases.count(ProgressPhase.CHUNKING) == 5
        assert events[-1].phase is ProgressPhase.INDEXING
        assert events[-1].percent == 100.0

    def test_clear_index(self, sample_repo, keyword_config):
        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        indexer.index_repository()

        indexer.clear_index()

        assert indexer.state is IndexState.UNINDEXED
        assert indexer.index is None
        assert not indexer.store.directory.exists()
        assert indexer.search("password") == []


class TestCancellation:
    """Test that a cancelled build leaves the previous state intact."""

    def test_cancel_during_chunking(self, sample_repo, keyword_config):
        indexer = None

        def cancel_on_first_file(event):
            if event.phase is ProgressPhase.CHUNKING:
                indexer.cancel()

        indexer = CodebaseIndexer(str(sample_repo), keyword_config, on_progress=cancel_on_first_file)

        with pytest.raises(IndexingCancelled):
            indexer.index_repository()

        assert indexer.state is IndexState.UNINDEXED
        assert indexer.store.read_manifest() is None

    def test_cancel_keeps_previous_ready_index(self, sample_repo, keyword_config):
        indexer = CodebaseIndexer(str(sample_repo), keyword_config)
        indexer.index_repository()
        previous = indexer.index

        indexer.on_progress = lambda event: indexer.cancel() if event.phase is ProgressPhase.CHUNKING else None
        with pytest.raises(IndexingCancelled):
            indexer.index_repository(force_rebuild=True)

        assert indexer.state is IndexState.READY
        assert indexer.index is previous
        assert indexer.search("password")


class TestVectorIndexing:
    """Test a full build with hashing embeddings and faiss (requires faiss)."""

    @pytest.fixture
    def vector_config(self, tmp_path):
        pytest.importorskip("faiss")
        return IndexingConfig(cache_dir=str(tmp_path / "cache"), index_backend="faiss",
                              embedding_dimension=128)

    def test_build_and_search(self, sample_repo, vector_config):
        indexer = CodebaseIndexer(str(sample_repo), vector_config)
        stats = indexer.index_repository()

        assert stats.index_backend == "faiss"
        assert stats.embedding_backend == "hashing"
        assert stats.degraded_batches == 0
        assert stats.degraded is False
        results = indexer.search("hash password salt", exclude_tests=True)
        assert results[0].chunk.file_path == "src/auth/service.py"

    def test_cache_with_other_dimension_is_rebuilt(self, sample_repo, vector_config):
        CodebaseIndexer(str(sample_repo), vector_config).index_repository()

        embedder = EmbeddingGenerator(HashingEmbeddingProvider(64))
        stats = CodebaseIndexer(str(sample_repo), vector_config, embedder=embedder).index_repository()

        assert stats.loaded_from_cache is False

    def test_cache_with_same_embedder_is_loaded(self, sample_repo, vector_config):
        CodebaseIndexer(str(sample_repo), vector_config).index_repository()

        stats = CodebaseIndexer(str(sample_repo), vector_config).index_repository()

        assert stats.loaded_from_cache is True
        assert stats.embedding_backend == "hashing"

    def test_cached_keyword_index_is_rebuilt_for_faiss(self, sample_repo, vector_config):
        keyword = IndexingConfig(cache_dir=vector_config.cache_dir, index_backend="keyword",
                                 embedding_dimension=128)
        CodebaseIndexer(str(sample_repo), keyword).index_repository()

        stats = CodebaseIndexer(str(sample_repo), vector_config).index_repository()

        assert stats.loaded_from_cache is False
        assert stats.index_backend == "faiss"

    def test_cached_faiss_index_is_rebuilt_for_keyword(self, sample_repo, vector_config):
        CodebaseIndexer(str(sample_repo), vector_config).index_repository()

        keyword = IndexingConfig(cache_dir=vector_config.cache_dir, index_backend="keyword")
        stats = CodebaseIndexer(str(sample_repo), keyword).index_repository()

        assert stats.loaded_from_cache is False
        assert stats.index_backend == "keyword"
        assert stats.embedding_backend == "none"
