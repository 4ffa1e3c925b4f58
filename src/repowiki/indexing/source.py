"""
Source File Helpers

Line-exact slicing and comment lookup shared by the language front ends.
"""

import re
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .models import Chunk, ChunkType


LANGUAGE_MAP = {
    '.ts': 'typescript',
    '.tsx': 'tsx',
    '.mts': 'typescript',
    '.cts': 'typescript',
    '.js': 'javascript',
    '.mjs': 'javascript',
    '.cjs': 'javascript',
    '.jsx': 'jsx',
    '.py': 'python',
    '.pyx': 'python',
    '.go': 'go',
    '.rs': 'rust',
    '.java': 'java',
    '.kt': 'kotlin',
    '.kts': 'kotlin',
    '.scala': 'scala',
    '.rb': 'ruby',
    '.php': 'php',
    '.c': 'c',
    '.h': 'c',
    '.cpp': 'cpp',
    '.cc': 'cpp',
    '.hpp': 'cpp',
    '.cs': 'csharp',
    '.swift': 'swift',
    '.vue': 'vue',
    '.svelte': 'svelte',
    '.json': 'json',
    '.yaml': 'yaml',
    '.yml': 'yaml',
    '.toml': 'toml',
    '.md': 'markdown',
    '.mdx': 'markdown',
}

C_COMMENT_PREFIXES = ("//", "/*", "*", "*/")
HASH_COMMENT_PREFIXES = ("#",)

# Name suffix -> kind, checked in order against the lowercased name
NAME_SUFFIX_TYPES = (
    ("controller", ChunkType.CONTROLLER),
    ("service", ChunkType.SERVICE),
    ("repository", ChunkType.REPOSITORY),
    ("repo", ChunkType.REPOSITORY),
    ("model", ChunkType.MODEL),
    ("entity", ChunkType.MODEL),
    ("middleware", ChunkType.MIDDLEWARE),
    ("handler", ChunkType.HANDLER),
    ("component", ChunkType.COMPONENT),
    ("utils", ChunkType.UTIL),
    ("util", ChunkType.UTIL),
    ("helpers", ChunkType.UTIL),
    ("helper", ChunkType.UTIL),
)

# Decorator / annotation name -> kind, keys lowercased
DECORATOR_TYPES = {
    "controller": ChunkType.CONTROLLER,
    "restcontroller": ChunkType.CONTROLLER,
    "apicontroller": ChunkType.CONTROLLER,
    "injectable": ChunkType.SERVICE,
    "service": ChunkType.SERVICE,
    "repository": ChunkType.REPOSITORY,
    "entity": ChunkType.MODEL,
    "model": ChunkType.MODEL,
    "table": ChunkType.MODEL,
    "component": ChunkType.COMPONENT,
    "middleware": ChunkType.MIDDLEWARE,
}

UTILITY_MODULE_NAMES = {"util", "utils", "helper", "helpers", "common", "shared"}

_COMMENT_MARKERS = re.compile(r"^\s*(?:/\*\*?|\*/|\*|//+|#+)\s?")


def detect_language(file_path: str) -> str:
    """Language name for a file path, 'unknown' when the extension is not recognized."""
    return LANGUAGE_MAP.get(Path(file_path).suffix.lower(), 'unknown')


def classify_by_suffix(name: Optional[str]) -> Optional[ChunkType]:
    if not name:
        return None
    lowered = name.lower()
    for suffix, chunk_type in NAME_SUFFIX_TYPES:
        if lowered.endswith(suffix):
            return chunk_type
    return None


def classify_by_decorators(decorator_names: Sequence[str]) -> Optional[ChunkType]:
    for decorator in decorator_names:
        chunk_type = DECORATOR_TYPES.get(decorator.lower())
        if chunk_type is not None:
            return chunk_type
    return None


def decorator_base_name(text: str) -> str:
    """'@app.get("/x")' -> 'get', '[HttpGet]' -> 'HttpGet'."""
    text = text.strip().lstrip("@").strip("[]")
    text = text.split("(", 1)[0]
    return text.rsplit(".", 1)[-1].strip()


class SourceFile:
    """A file's text split into lines, with 1-based inclusive slicing."""

    def __init__(self, file_path: str, content: str, language: Optional[str] = None):
        self.file_path = file_path
        self.content = content
        self.language = language or detect_language(file_path)
        self.lines: List[str] = content.split('\n')
        self.module_name = Path(file_path).stem

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def is_utility_module(self) -> bool:
        return self.module_name.lower() in UTILITY_MODULE_NAMES

    def text(self, start_line: int, end_line: int) -> str:
        return '\n'.join(self.lines[start_line - 1:end_line])

    def line(self, line_number: int) -> str:
        return self.lines[line_number - 1]

    def is_blank(self, line_number: int) -> bool:
        return not self.lines[line_number - 1].strip()

    def trim_trailing_blank(self, start_line: int, end_line: int) -> int:
        """Move end_line up past blank lines without crossing start_line."""
        while end_line > start_line and self.is_blank(end_line):
            end_line -= 1
        return end_line

    def leading_comment(self, start_line: int,
                        prefixes: Tuple[str, ...] = C_COMMENT_PREFIXES) -> Tuple[int, Optional[str]]:
        """
        Find the contiguous comment run directly above a construct.

        Returns:
            (new start line, cleaned comment text) or (start_line, None)
        """
        first = start_line
        line_number = start_line - 1
        while line_number >= 1:
            stripped = self.lines[line_number - 1].strip()
            if not stripped or not stripped.startswith(prefixes):
                break
            first = line_number
            line_number -= 1

        if first == start_line:
            return start_line, None

        cleaned = []
        for raw in self.lines[first - 1:start_line - 1]:
            text = _COMMENT_MARKERS.sub("", raw).rstrip().rstrip("*/").rstrip()
            if text:
                cleaned.append(text)
        documentation = "\n".join(cleaned) or None
        return first, documentation

    def make_chunk(self, start_line: int, end_line: int, chunk_type: ChunkType, **metadata) -> Chunk:
        return Chunk.create(
            file_path=self.file_path,
            start_line=start_line,
            end_line=end_line,
            content=self.text(start_line, end_line),
            language=self.language,
            chunk_type=chunk_type,
            **metadata
        )

    def context_path(self, *names: Optional[str]) -> str:
        return " > ".join([self.module_name] + [n for n in names if n])
