"""
Python Structural Chunking

Walks the module syntax tree from the standard library `ast` module and turns
top-level declarations (and the members of oversized classes) into chunks.
"""

import ast
from typing import List, Optional, Sequence, Set, Union

from ..config import ChunkerConfig
from .models import COMPOSITE_TYPES, Chunk, ChunkType
from .source import (
    HASH_COMMENT_PREFIXES,
    SourceFile,
    classify_by_decorators,
    classify_by_suffix,
    decorator_base_name,
)

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]

ROUTE_DECORATORS = {"get", "post", "put", "delete", "patch", "route", "api_route", "api_view",
                    "websocket"}
PROPERTY_DECORATORS = {"property", "cached_property", "setter", "getter", "deleter"}
LIFECYCLE_METHODS = {"setUp", "tearDown", "setUpClass", "tearDownClass", "setup_method",
                     "teardown_method", "asyncSetUp", "asyncTearDown"}
MODEL_BASES = {"BaseModel", "Model", "Base", "DeclarativeBase", "SQLModel", "Document", "Schema"}
INTERFACE_BASES = {"Protocol", "ABC"}
ENUM_BASES = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"}
TYPE_BASES = {"TypedDict", "NamedTuple"}
TEST_BASES = {"TestCase", "IsolatedAsyncioTestCase"}
CONFIG_NAME_PARTS = ("config", "options", "settings")


def _base_name(node: ast.expr) -> str:
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Subscript):
        return _base_name(node.value)
    return ""


def _decorator_names(decorators: Sequence[str]) -> List[str]:
    return [decorator_base_name(d) for d in decorators]


def classify_class(name: str, decorators: Sequence[str], bases: Sequence[str]) -> ChunkType:
    """Kind of a class: decorator, then name suffix, then base classes."""
    by_decorator = classify_by_decorators(_decorator_names(decorators))
    if by_decorator is not None:
        return by_decorator
    if "dataclass" in _decorator_names(decorators) and classify_by_suffix(name) is None:
        return ChunkType.MODEL
    if name.startswith("Test") or set(bases) & TEST_BASES:
        return ChunkType.TEST

    by_suffix = classify_by_suffix(name)
    if by_suffix is not None:
        return by_suffix

    base_set = set(bases)
    if base_set & ENUM_BASES:
        return ChunkType.ENUM
    if base_set & INTERFACE_BASES:
        return ChunkType.INTERFACE
    if base_set & TYPE_BASES:
        return ChunkType.TYPE
    if base_set & MODEL_BASES:
        return ChunkType.MODEL
    return ChunkType.CLASS


def _is_middleware_signature(params: Sequence[str]) -> bool:
    lowered = [p.lower() for p in params]
    if len(lowered) == 3 and lowered[0] in ("req", "request") and lowered[1] in ("res", "response"):
        return True
    return len(lowered) == 2 and lowered[0] in ("request", "req") and lowered[1] == "call_next"


def classify_function(name: str, decorators: Sequence[str], params: Sequence[str],
                      utility_module: bool = False) -> ChunkType:
    """Kind of a module-level function."""
    decorator_names = {d.lower() for d in _decorator_names(decorators)}
    lowered = name.lower()

    if lowered.startswith("test"):
        return ChunkType.TEST
    if "fixture" in decorator_names:
        return ChunkType.HOOK
    if decorator_names & ROUTE_DECORATORS:
        return ChunkType.HANDLER
    if "middleware" in decorator_names or "middleware" in lowered or _is_middleware_signature(params):
        return ChunkType.MIDDLEWARE
    if "handler" in lowered or lowered.startswith("handle"):
        return ChunkType.HANDLER
    if utility_module:
        return ChunkType.UTIL
    return ChunkType.FUNCTION


def classify_method(name: str, decorators: Sequence[str]) -> ChunkType:
    """Kind of a function defined in a class body."""
    decorator_names = {d.lower() for d in _decorator_names(decorators)}

    if name in ("__init__", "__new__"):
        return ChunkType.CONSTRUCTOR
    if decorator_names & PROPERTY_DECORATORS:
        return ChunkType.PROPERTY
    if name in LIFECYCLE_METHODS:
        return ChunkType.HOOK
    if name.startswith("test"):
        return ChunkType.TEST
    if decorator_names & ROUTE_DECORATORS:
        return ChunkType.HANDLER
    return ChunkType.METHOD


def classify_assignment(name: str, value: Optional[ast.expr]) -> Optional[ChunkType]:
    lowered = name.lower()
    if any(part in lowered for part in CONFIG_NAME_PARTS) and isinstance(value, (ast.Dict, ast.Call)):
        return ChunkType.CONFIG
    if name.isupper():
        return ChunkType.CONSTANT
    return None


class PythonChunkExtractor:
    """Structural chunk extraction for one Python module."""

    def __init__(self, source: SourceFile, config: ChunkerConfig):
        self.source = source
        self.config = config
        self.public_names: Optional[Set[str]] = None

    def extract(self) -> List[Chunk]:
        """
        Parse and chunk the module.

        Raises:
            SyntaxError: when the module does not parse; the caller falls back
                to indentation tracking
        """
        tree = ast.parse(self.source.content, filename=self.source.file_path)
        self.public_names = self._read_dunder_all(tree)
        chunks: List[Chunk] = []

        body = list(tree.body)
        if self.config.include_imports:
            import_chunk = self._import_block(body)
            if import_chunk:
                chunks.append(import_chunk)

        for node in body:
            if isinstance(node, ast.ClassDef):
                chunks.extend(self._class_chunks(node, []))
            elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                chunks.append(self._function_chunk(node, []))
            elif isinstance(node, (ast.Assign, ast.AnnAssign)):
                chunk = self._assignment_chunk(node)
                if chunk:
                    chunks.append(chunk)

        return chunks

    def _read_dunder_all(self, tree: ast.Module) -> Optional[Set[str]]:
        for node in tree.body:
            if isinstance(node, ast.Assign) and any(
                isinstance(t, ast.Name) and t.id == "__all__" for t in node.targets
            ):
                if isinstance(node.value, (ast.List, ast.Tuple)):
                    return {
                        elt.value for elt in node.value.elts
                        if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                    }
        return None

    def _is_public(self, name: str, nested: bool = False) -> bool:
        if name.startswith("_") and not (name.startswith("__") and name.endswith("__")):
            return False
        if not nested and self.public_names is not None:
            return name in self.public_names
        return True

    def _import_block(self, body: List[ast.stmt]) -> Optional[Chunk]:
        """The first run of consecutive import statements, after any module docstring."""
        index = 0
        if body and isinstance(body[0], ast.Expr) and isinstance(getattr(body[0], "value", None), ast.Constant) \
                and isinstance(body[0].value.value, str):
            index = 1

        run: List[ast.stmt] = []
        while index < len(body) and isinstance(body[index], (ast.Import, ast.ImportFrom)):
            run.append(body[index])
            index += 1
        if not run:
            return None

        modules: List[str] = []
        for node in run:
            if isinstance(node, ast.Import):
                modules.extend(alias.name for alias in node.names)
            else:
                modules.append("." * node.level + (node.module or ""))

        return self.source.make_chunk(
            run[0].lineno,
            run[-1].end_lineno,
            ChunkType.IMPORT_BLOCK,
            name="imports",
            context_path=self.source.context_path("imports"),
            imports=list(dict.fromkeys(modules)),
        )

    def _span(self, node: Union[ast.ClassDef, FunctionNode]):
        """(start, end, documentation) including decorators and leading comments."""
        start = min([node.lineno] + [d.lineno for d in node.decorator_list])
        end = node.end_lineno
        documentation = None
        if self.config.include_documentation:
            start, documentation = self.source.leading_comment(start, HASH_COMMENT_PREFIXES)
            if documentation is None:
                documentation = ast.get_docstring(node)
        return start, end, documentation

    def _function_signature(self, node: FunctionNode) -> str:
        prefix = "async def" if isinstance(node, ast.AsyncFunctionDef) else "def"
        signature = f"{prefix} {node.name}({ast.unparse(node.args)})"
        if node.returns is not None:
            signature += f" -> {ast.unparse(node.returns)}"
        return signature

    def _function_chunk(self, node: FunctionNode, parents: List[str]) -> Chunk:
        start, end, documentation = self._span(node)
        decorators = [ast.unparse(d) for d in node.decorator_list]
        params = [a.arg for a in node.args.posonlyargs + node.args.args]

        if parents:
            chunk_type = classify_method(node.name, decorators)
        else:
            chunk_type = classify_function(node.name, decorators, params, self.source.is_utility_module)

        nested = bool(parents)
        is_public = self._is_public(node.name, nested=nested)
        return self.source.make_chunk(
            start, end, chunk_type,
            name=node.name,
            parent_name=parents[-1] if parents else None,
            context_path=self.source.context_path(*parents, node.name),
            documentation=documentation,
            signature=self._function_signature(node),
            exports=[node.name] if is_public and not nested else [],
            decorators=decorators,
            is_public_api=is_public,
        )

    def _class_chunks(self, node: ast.ClassDef, parents: List[str]) -> List[Chunk]:
        start, end, documentation = self._span(node)
        decorators = [ast.unparse(d) for d in node.decorator_list]
        bases = [_base_name(b) for b in node.bases]
        chunk_type = classify_class(node.name, decorators, bases)

        members = [
            child for child in node.body
            if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
        ]
        public_members = [m.name for m in members if self._is_public(m.name, nested=True)]
        signature = f"class {node.name}({', '.join(ast.unparse(b) for b in node.bases)})" \
            if node.bases else f"class {node.name}"
        is_public = self._is_public(node.name, nested=bool(parents))

        metadata = dict(
            name=node.name,
            parent_name=parents[-1] if parents else None,
            context_path=self.source.context_path(*parents, node.name),
            documentation=documentation,
            signature=signature,
            exports=public_members,
            decorators=decorators,
            is_public_api=is_public,
        )

        content_length = len(self.source.text(start, end))
        expand = (
            self.config.chunk_nested_constructs
            and chunk_type in COMPOSITE_TYPES
            and content_length > self.config.max_chunk_size * 0.7
            and members
        )
        if not expand:
            return [self.source.make_chunk(start, end, chunk_type, **metadata)]

        chunks: List[Chunk] = []
        member_parents = parents + [node.name]
        first_member_start = min(self._span(m)[0] for m in members)
        header_end = self.source.trim_trailing_blank(start, first_member_start - 1)
        if first_member_start > start:
            chunks.append(self.source.make_chunk(start, header_end, chunk_type, **metadata))

        for member in members:
            if isinstance(member, ast.ClassDef):
                chunks.extend(self._class_chunks(member, member_parents))
            else:
                chunks.append(self._function_chunk(member, member_parents))
        return chunks

    def _assignment_chunk(self, node: Union[ast.Assign, ast.AnnAssign]) -> Optional[Chunk]:
        if isinstance(node, ast.Assign):
            if len(node.targets) != 1 or not isinstance(node.targets[0], ast.Name):
                return None
            name = node.targets[0].id
        else:
            if not isinstance(node.target, ast.Name):
                return None
            name = node.target.id

        if name.startswith("__"):
            return None
        chunk_type = classify_assignment(name, node.value)
        if chunk_type is None:
            return None

        start, end = node.lineno, node.end_lineno
        documentation = None
        if self.config.include_documentation:
            start, documentation = self.source.leading_comment(start, HASH_COMMENT_PREFIXES)
        is_public = self._is_public(name)
        return self.source.make_chunk(
            start, end, chunk_type,
            name=name,
            context_path=self.source.context_path(name),
            documentation=documentation,
            exports=[name] if is_public else [],
            is_public_api=is_public,
        )


def extract_python_chunks(source: SourceFile, config: ChunkerConfig) -> List[Chunk]:
    return PythonChunkExtractor(source, config).extract()
