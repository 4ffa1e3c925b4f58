"""
Semantic Code Chunking

This module splits repository files into semantically meaningful chunks for
indexing. Each language is routed to the best available front end:

- Python: the standard library syntax tree
- TypeScript / JavaScript (and JSX/TSX): tree-sitter grammars
- C#, Java, Kotlin, Scala, Go, Rust, Swift, PHP, C, C++: brace tracking
- JSON / YAML / TOML: one config chunk per file
- Markdown: one chunk per heading section
- anything else: a generic declaration scan

Every path is followed by the same post-processing: undersized chunks
(other than import blocks) are dropped, files left without chunks collapse to
a single whole-file chunk, domain hints are attached and runs of small chunks
are merged.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..config import ChunkerConfig
from ..file_operations import AccessDeniedError, SandboxedFileReader
from .domains import DomainClassifier
from .merger import ChunkMerger
from .models import Chunk, ChunkType
from .pattern_parser import extract_pattern_chunks, extract_python_by_indentation, supports_language
from .python_parser import extract_python_chunks
from .source import SourceFile, detect_language
from .typescript_parser import GRAMMARS, extract_typescript_chunks

logger = logging.getLogger(__name__)

CONFIG_LANGUAGES = {"json", "yaml", "toml"}
MARKDOWN_HEADING = re.compile(r"^#{1,6}\s+(.+?)\s*#*\s*$")
MARKDOWN_FENCE = re.compile(r"^\s*(```|~~~)")

# Cross-language declaration shapes used for unsupported languages
GENERIC_PATTERNS = [
    re.compile(r"^(?:export\s+)?(?:async\s+)?function\s+(\w+)"),
    re.compile(r"^(?:export\s+)?const\s+(\w+)\s*="),
    re.compile(r"^def\s+(\w+[?!]?)"),
    re.compile(r"^func\s+(\w+)"),
    re.compile(r"^(?:pub\s+)?fn\s+(\w+)"),
    re.compile(r"^(?:class|module|struct|interface|trait)\s+(\w+)"),
    re.compile(r"^(?:public|private|protected)?\s*(?:static\s+)?\w+\s+(\w+)\s*\("),
]


class CodeChunker:
    """Language-aware chunk extraction for single files."""

    def __init__(self, config: Optional[ChunkerConfig] = None,
                 classifier: Optional[DomainClassifier] = None):
        self.config = config or ChunkerConfig()
        self.classifier = classifier or DomainClassifier()
        self.merger = ChunkMerger(self.config.min_chunk_size)

    def chunk_file(self, file_path: str, repo_root: Union[str, Path, SandboxedFileReader]) -> List[Chunk]:
        """
        Read and chunk one repository file.

        Args:
            file_path: Path relative to the repository root
            repo_root: Repository root directory, or a reader already bound to it

        Returns:
            Chunks ordered by start line; empty when the file is empty or unreadable

        Raises:
            AccessDeniedError: if the path resolves outside the repository
        """
        reader = repo_root if isinstance(repo_root, SandboxedFileReader) else SandboxedFileReader(repo_root)
        relative_path = reader.relative_path(file_path)

        try:
            content = reader.read_text(relative_path)
        except AccessDeniedError:
            raise
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read file | path: %s | error: %s", relative_path, e)
            return []

        return self.chunk_source(relative_path, content)

    def chunk_source(self, file_path: str, content: str) -> List[Chunk]:
        """Chunk file content already in memory. Pure: same input, same output."""
        if not content:
            return []

        source = SourceFile(file_path, content)

        if source.language in CONFIG_LANGUAGES:
            chunk = self._whole_file_chunk(source, ChunkType.CONFIG, name=Path(file_path).name)
            return self._with_domain_hints([chunk])

        if not content.strip():
            return [self._whole_file_chunk(source)]

        try:
            chunks = self._extract(source)
        except Exception as e:
            logger.warning("Chunk extraction failed, using whole file | path: %s | language: %s | error: %s",
                           file_path, source.language, e)
            return self._with_domain_hints([self._whole_file_chunk(source)])

        # import blocks are kept regardless of size
        chunks = [chunk for chunk in chunks
                  if chunk.chunk_type == ChunkType.IMPORT_BLOCK or len(chunk.content) >= self.config.min_chunk_size]

        if not chunks or (len(chunks) <= 1 and len(content) < self.config.max_chunk_size
                          and self._collapses_single_chunk(source.language)):
            imports = chunks[0].imports if chunks else []
            return self._with_domain_hints([self._whole_file_chunk(source, imports=imports)])

        chunks = self._deduplicate(sorted(chunks, key=lambda c: (c.start_line, -c.end_line)))
        chunks = self._with_domain_hints(chunks)
        return self.merger.merge(chunks, source)

    def _extract(self, source: SourceFile) -> List[Chunk]:
        language = source.language

        if language == "python":
            try:
                return extract_python_chunks(source, self.config)
            except SyntaxError as e:
                logger.debug("Python parse failed, tracking indentation | path: %s | error: %s",
                             source.file_path, e)
                return extract_python_by_indentation(source, self.config)

        if language in GRAMMARS:
            return extract_typescript_chunks(source, self.config)

        if supports_language(language):
            return extract_pattern_chunks(source, self.config)

        if language == "markdown":
            return self._markdown_sections(source)

        return self._generic_chunks(source)

    @staticmethod
    def _collapses_single_chunk(language: str) -> bool:
        """Tree-sitter and generic files with one surviving chunk fold into the whole file."""
        if language in GRAMMARS:
            return True
        return language != "python" and not supports_language(language)

    def _whole_file_chunk(self, source: SourceFile, chunk_type: ChunkType = ChunkType.FILE,
                          name: Optional[str] = None, imports: Optional[List[str]] = None) -> Chunk:
        return source.make_chunk(
            1, source.line_count, chunk_type,
            name=name or source.module_name,
            context_path=source.module_name,
            imports=list(imports or []),
            is_public_api=True,
        )

    def _with_domain_hints(self, chunks: List[Chunk]) -> List[Chunk]:
        if self.config.extract_domain_hints:
            for chunk in chunks:
                chunk.domain_hints = self.classifier.classify_chunk(chunk)
        return chunks

    @staticmethod
    def _deduplicate(chunks: List[Chunk]) -> List[Chunk]:
        seen = set()
        unique = []
        for chunk in chunks:
            if chunk.id in seen:
                continue
            seen.add(chunk.id)
            unique.append(chunk)
        return unique

    def _markdown_sections(self, source: SourceFile) -> List[Chunk]:
        """Split a markdown document at its headings, ignoring fenced code."""
        boundaries: List[Tuple[int, str]] = []
        in_fence = False
        for line_number, line in enumerate(source.lines, 1):
            if MARKDOWN_FENCE.match(line):
                in_fence = not in_fence
                continue
            if in_fence:
                continue
            match = MARKDOWN_HEADING.match(line)
            if match:
                boundaries.append((line_number, match.group(1)))

        if not boundaries or boundaries[0][0] != 1:
            boundaries.insert(0, (1, source.module_name))

        chunks = []
        for index, (start, title) in enumerate(boundaries):
            next_start = boundaries[index + 1][0] if index + 1 < len(boundaries) else source.line_count + 1
            end = source.trim_trailing_blank(start, next_start - 1)
            chunks.append(source.make_chunk(
                start, end, ChunkType.UNKNOWN,
                name=title,
                context_path=source.context_path(title),
            ))
        return chunks

    def _generic_chunks(self, source: SourceFile) -> List[Chunk]:
        """Segment at top-level declaration-looking lines while tracking brace balance."""
        boundaries: List[Tuple[int, str]] = [(1, source.module_name)]
        depth = 0

        for line_number, line in enumerate(source.lines, 1):
            if depth == 0:
                for pattern in GENERIC_PATTERNS:
                    match = pattern.match(line)
                    if match:
                        if line_number == 1:
                            boundaries[0] = (1, match.group(1))
                        else:
                            boundaries.append((line_number, match.group(1)))
                        break
            depth = max(depth + line.count("{") - line.count("}"), 0)

        chunks = []
        for index, (start, name) in enumerate(boundaries):
            next_start = boundaries[index + 1][0] if index + 1 < len(boundaries) else source.line_count + 1
            end = source.trim_trailing_blank(start, next_start - 1)
            is_preamble = index == 0 and name == source.module_name
            chunks.append(source.make_chunk(
                start, end, ChunkType.MODULE if is_preamble else ChunkType.FUNCTION,
                name=name,
                context_path=source.context_path(None if is_preamble else name),
            ))
        return chunks
