"""
Chunk Data Model

Shared types for every stage of the indexing pipeline: the chunk itself,
its closed set of semantic kinds, domain hints, and search results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ChunkType(Enum):
    """Semantic kind of a code chunk."""
    FILE = "file"
    MODULE = "module"
    CLASS = "class"
    INTERFACE = "interface"
    TYPE = "type"
    ENUM = "enum"
    FUNCTION = "function"
    METHOD = "method"
    CONSTRUCTOR = "constructor"
    PROPERTY = "property"
    CONSTANT = "constant"
    IMPORT_BLOCK = "import-block"
    CONFIG = "config"
    TEST = "test"
    HOOK = "hook"
    COMPONENT = "component"
    MIDDLEWARE = "middleware"
    HANDLER = "handler"
    MODEL = "model"
    SERVICE = "service"
    REPOSITORY = "repository"
    CONTROLLER = "controller"
    UTIL = "util"
    UNKNOWN = "unknown"


# Kinds whose members are emitted separately once the construct grows too large
COMPOSITE_TYPES = frozenset({
    ChunkType.CLASS,
    ChunkType.SERVICE,
    ChunkType.CONTROLLER,
    ChunkType.MODEL,
    ChunkType.COMPONENT,
    ChunkType.REPOSITORY,
})


@dataclass
class DomainHint:
    """A business-domain category inferred for a chunk."""
    category: str
    confidence: float
    source: str
    keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "source": self.source,
            "keywords": list(self.keywords),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomainHint":
        return cls(
            category=data["category"],
            confidence=float(data["confidence"]),
            source=data.get("source", "content"),
            keywords=list(data.get("keywords", [])),
        )


@dataclass
class Chunk:
    """
    A contiguous line range of one source file plus its metadata.

    `content` is always the exact source lines [start_line, end_line]
    (1-based, inclusive) joined with newlines.
    """
    id: str
    file_path: str
    start_line: int
    end_line: int
    content: str
    language: str
    chunk_type: ChunkType
    name: Optional[str] = None
    parent_name: Optional[str] = None
    context_path: Optional[str] = None
    documentation: Optional[str] = None
    signature: Optional[str] = None
    exports: List[str] = None
    imports: List[str] = None
    decorators: List[str] = None
    is_public_api: bool = False
    domain_hints: List[DomainHint] = None

    def __post_init__(self):
        if self.exports is None:
            self.exports = []
        if self.imports is None:
            self.imports = []
        if self.decorators is None:
            self.decorators = []
        if self.domain_hints is None:
            self.domain_hints = []
        if self.start_line > self.end_line:
            raise ValueError(
                f"Invalid line range for {self.file_path}: {self.start_line}-{self.end_line}"
            )

    @classmethod
    def create(cls, file_path: str, start_line: int, end_line: int, content: str,
               language: str, chunk_type: ChunkType, **metadata) -> "Chunk":
        """Create a chunk with its id derived from the file path and line range."""
        return cls(
            id=f"{file_path}:{start_line}-{end_line}",
            file_path=file_path,
            start_line=start_line,
            end_line=end_line,
            content=content,
            language=language,
            chunk_type=chunk_type,
            **metadata
        )

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    @property
    def citation(self) -> str:
        return f"{self.file_path}:{self.start_line}-{self.end_line}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filePath": self.file_path,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "content": self.content,
            "language": self.language,
            "chunkType": self.chunk_type.value,
            "name": self.name,
            "parentName": self.parent_name,
            "contextPath": self.context_path,
            "documentation": self.documentation,
            "signature": self.signature,
            "exports": list(self.exports),
            "imports": list(self.imports),
            "decorators": list(self.decorators),
            "isPublicApi": self.is_public_api,
            "domainHints": [hint.to_dict() for hint in self.domain_hints],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            id=data["id"],
            file_path=data["filePath"],
            start_line=int(data["startLine"]),
            end_line=int(data["endLine"]),
            content=data["content"],
            language=data["language"],
            chunk_type=ChunkType(data.get("chunkType", ChunkType.UNKNOWN.value)),
            name=data.get("name"),
            parent_name=data.get("parentName"),
            context_path=data.get("contextPath"),
            documentation=data.get("documentation"),
            signature=data.get("signature"),
            exports=list(data.get("exports") or []),
            imports=list(data.get("imports") or []),
            decorators=list(data.get("decorators") or []),
            is_public_api=bool(data.get("isPublicApi", False)),
            domain_hints=[DomainHint.from_dict(h) for h in data.get("domainHints") or []],
        )


@dataclass
class SearchResult:
    """A ranked chunk returned from a search. Scores are not normalized."""
    chunk: Chunk
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.chunk.file_path,
            "start_line": self.chunk.start_line,
            "end_line": self.chunk.end_line,
            "content": self.chunk.content,
            "language": self.chunk.language,
            "chunk_type": self.chunk.chunk_type.value,
            "name": self.chunk.name,
            "score": self.score,
        }
