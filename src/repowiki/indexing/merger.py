"""
Small Chunk Merging

Runs of undersized chunks from one file are coalesced into a single chunk so
the index is not flooded with fragments (one-line constants, tiny helpers).
"""

from typing import List, Optional

from .domains import MAX_HINTS, merge_domain_hints
from .models import Chunk, ChunkType
from .source import SourceFile


def _ordered_union(lists: List[List[str]]) -> List[str]:
    seen = []
    for values in lists:
        for value in values:
            if value not in seen:
                seen.append(value)
    return seen


class ChunkMerger:
    """Order-preserving merger of consecutive small chunks."""

    def __init__(self, min_chunk_size: int, max_hints: int = MAX_HINTS):
        self.min_chunk_size = min_chunk_size
        self.max_hints = max_hints

    @property
    def target_size(self) -> int:
        return self.min_chunk_size * 2

    def merge(self, chunks: List[Chunk], source: Optional[SourceFile] = None) -> List[Chunk]:
        """
        Merge runs of small chunks.

        Args:
            chunks: Chunks of a single file, ordered by start line
            source: The file the chunks came from; when given, merged content is
                the exact slice of the file covering the merged range

        Returns:
            New list; chunks at least twice the minimum size pass through as is
        """
        merged: List[Chunk] = []
        pending: List[Chunk] = []
        pending_size = 0

        for chunk in chunks:
            if len(chunk.content) >= self.target_size:
                if pending:
                    merged.append(self._combine(pending, source))
                    pending, pending_size = [], 0
                merged.append(chunk)
                continue

            pending.append(chunk)
            pending_size += len(chunk.content)
            if pending_size >= self.target_size:
                merged.append(self._combine(pending, source))
                pending, pending_size = [], 0

        if pending:
            merged.append(self._combine(pending, source))

        return merged

    def _combine(self, group: List[Chunk], source: Optional[SourceFile]) -> Chunk:
        if len(group) == 1:
            return group[0]

        first = group[0]
        start_line = min(chunk.start_line for chunk in group)
        end_line = max(chunk.end_line for chunk in group)
        if source is not None:
            content = source.text(start_line, end_line)
        else:
            content = "\n".join(chunk.content for chunk in group)

        names = [chunk.name for chunk in group if chunk.name]

        return Chunk.create(
            file_path=first.file_path,
            start_line=start_line,
            end_line=end_line,
            content=content,
            language=first.language,
            chunk_type=ChunkType.FILE,
            name=", ".join(names) or None,
            context_path=first.context_path,
            imports=_ordered_union([chunk.imports for chunk in group]),
            exports=_ordered_union([chunk.exports for chunk in group]),
            decorators=_ordered_union([chunk.decorators for chunk in group]),
            is_public_api=any(chunk.is_public_api for chunk in group),
            domain_hints=merge_domain_hints([chunk.domain_hints for chunk in group], self.max_hints),
        )
