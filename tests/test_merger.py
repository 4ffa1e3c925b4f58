"""
Unit tests for small chunk merging.
"""

import pytest

from repowiki.indexing import ChunkMerger, ChunkType, DomainHint
from repowiki.indexing.source import SourceFile


@pytest.fixture
def source():
    lines = [
        "a" * 30,
        "b" * 30,
        "c" * 150,
        "d" * 60,
        "e" * 60,
    ]
    return SourceFile("pkg/module.py", "\n".join(lines))


def line_chunks(source, **overrides):
    chunks = []
    for number, name in enumerate(["alpha", "beta", "gamma", "delta", "epsilon"], 1):
        chunks.append(source.make_chunk(number, number, ChunkType.FUNCTION, name=name,
                                        **overrides.get(name, {})))
    return chunks


class TestChunkMerger:
    """Test order-preserving merging of undersized chunks."""

    def test_runs_of_small_chunks_are_combined(self, source):
        merged = ChunkMerger(min_chunk_size=50).merge(line_chunks(source), source)

        assert [c.id for c in merged] == ["pkg/module.py:1-2", "pkg/module.py:3-3", "pkg/module.py:4-5"]
        assert merged[0].chunk_type == ChunkType.FILE
        assert merged[0].name == "alpha, beta"
        assert merged[0].content == source.text(1, 2)
        assert merged[1].name == "gamma"
        assert merged[1].chunk_type == ChunkType.FUNCTION
        assert merged[2].name == "delta, epsilon"

    def test_large_chunks_pass_through_unchanged(self, source):
        chunks = line_chunks(source)
        merged = ChunkMerger(min_chunk_size=10).merge(chunks, source)
        assert merged == chunks

    def test_single_trailing_chunk_is_kept_as_is(self, source):
        chunks = line_chunks(source)[2:4]
        merged = ChunkMerger(min_chunk_size=50).merge(chunks, source)

        assert merged[-1] is chunks[-1]

    def test_metadata_is_unioned(self, source):
        chunks = line_chunks(source, alpha=dict(
            imports=["os"],
            decorators=["@cached"],
            domain_hints=[DomainHint("authentication", 0.4, "name")],
        ), beta=dict(
            imports=["os", "sys"],
            is_public_api=True,
            domain_hints=[DomainHint("authentication", 0.6, "content"), DomainHint("logging", 0.2, "content")],
        ))

        combined = ChunkMerger(min_chunk_size=50).merge(chunks, source)[0]

        assert combined.imports == ["os", "sys"]
        assert combined.decorators == ["@cached"]
        assert combined.is_public_api is True
        assert [(h.category, h.confidence) for h in combined.domain_hints] == [
            ("authentication", 0.6), ("logging", 0.2)
        ]

    def test_without_source_contents_are_joined(self, source):
        chunks = line_chunks(source)[:2]
        combined = ChunkMerger(min_chunk_size=50).merge(chunks)[0]

        assert combined.content == chunks[0].content + "\n" + chunks[1].content
        assert (combined.start_line, combined.end_line) == (1, 2)

    def test_empty_input(self):
        assert ChunkMerger(min_chunk_size=100).merge([]) == []
