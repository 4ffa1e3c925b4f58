"""
TypeScript / JavaScript Structural Chunking

Uses tree-sitter grammars from tree-sitter-language-pack to walk top-level
declarations of .ts/.tsx/.js/.jsx files and emit classified chunks.
"""

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from tree_sitter import Node, Parser
from tree_sitter_language_pack import get_language

from ..config import ChunkerConfig
from .models import COMPOSITE_TYPES, Chunk, ChunkType
from .source import (
    C_COMMENT_PREFIXES,
    SourceFile,
    classify_by_decorators,
    classify_by_suffix,
    decorator_base_name,
)

logger = logging.getLogger(__name__)

GRAMMARS = {
    "typescript": "typescript",
    "tsx": "tsx",
    "javascript": "javascript",
    "jsx": "javascript",
}

CLASS_NODES = {"class_declaration", "abstract_class_declaration", "class"}
FUNCTION_NODES = {"function_declaration", "generator_function_declaration", "function_signature"}
FUNCTION_VALUE_NODES = {"arrow_function", "function_expression", "function", "generator_function"}
VARIABLE_NODES = {"lexical_declaration", "variable_declaration"}
MODULE_NODES = {"internal_module", "module"}
JSX_NODES = {"jsx_element", "jsx_self_closing_element", "jsx_fragment"}
MEMBER_NODES = {"method_definition", "public_field_definition", "field_definition",
                "method_signature", "abstract_method_signature"}

LIFECYCLE_METHODS = {"ngOnInit", "ngOnDestroy", "ngOnChanges", "ngAfterViewInit", "componentDidMount",
                     "componentWillUnmount", "componentDidUpdate", "shouldComponentUpdate", "render"}
ROUTE_DECORATORS = {"Get", "Post", "Put", "Delete", "Patch", "All", "HttpGet", "HttpPost",
                    "HttpPut", "HttpDelete", "HttpPatch"}
CONFIG_NAME_PARTS = ("config", "options", "settings")

_local = threading.local()


def get_parser(language: str) -> Parser:
    """Parser for a language, cached per thread since parsers are not shareable."""
    grammar = GRAMMARS[language]
    parsers = getattr(_local, "parsers", None)
    if parsers is None:
        parsers = _local.parsers = {}
    parser = parsers.get(grammar)
    if parser is None:
        try:
            grammar_language = get_language(grammar)
        except Exception as e:
            logger.warning("tree-sitter grammar unavailable | language: %s | error: %s", grammar, e)
            raise
        parser = Parser(grammar_language)
        parsers[grammar] = parser
    return parser


@dataclass
class _Member:
    node: Node
    start_line: int
    name: str
    decorators: List[str]
    documentation: Optional[str]
    is_public: bool


def _field(node: Node, *names: str) -> Optional[Node]:
    """First present field among names."""
    for name in names:
        child = node.child_by_field_name(name)
        if child is not None:
            return child
    return None


def _is_pascal_case(name: str) -> bool:
    return len(name) > 1 and name[0].isupper() and not name.isupper()


def _is_test_name(name: str) -> bool:
    lowered = name.lower()
    if lowered.startswith("test") or "spec" in lowered:
        return True
    return name == "it" or (name.startswith("it") and len(name) > 2 and (name[2].isupper() or name[2] == "_"))


def _is_middleware_signature(name: str, params: Sequence[str]) -> bool:
    lowered = [p.lower() for p in params]
    if "middleware" not in name.lower() and len(lowered) != 3:
        return False
    has_req = any(p in ("req", "request") for p in lowered)
    has_res = any(p in ("res", "response") for p in lowered)
    return has_req and has_res and ("next" in lowered or len(lowered) == 3)


def classify_class(name: str, decorator_names: Sequence[str]) -> ChunkType:
    """Kind of a class: decorator first, then name suffix."""
    return classify_by_decorators(decorator_names) or classify_by_suffix(name) or ChunkType.CLASS


def classify_function(name: str, params: Sequence[str], returns_jsx: bool) -> ChunkType:
    """Kind of a function declaration."""
    if name.lower().startswith("use") and len(name) > 3:
        return ChunkType.HOOK
    if _is_test_name(name):
        return ChunkType.TEST
    if _is_middleware_signature(name, params):
        return ChunkType.MIDDLEWARE
    if "handle" in name.lower():
        return ChunkType.HANDLER
    if returns_jsx and _is_pascal_case(name):
        return ChunkType.COMPONENT
    return ChunkType.FUNCTION


def classify_method(name: str, decorator_names: Sequence[str], accessor: bool = False) -> ChunkType:
    """Kind of a class member function."""
    if name == "constructor":
        return ChunkType.CONSTRUCTOR
    if accessor:
        return ChunkType.PROPERTY
    if name in LIFECYCLE_METHODS:
        return ChunkType.HOOK
    if any(d in ROUTE_DECORATORS for d in decorator_names):
        return ChunkType.HANDLER
    if _is_test_name(name):
        return ChunkType.TEST
    return ChunkType.METHOD


def classify_variable(name: str, value_type: Optional[str], params: Sequence[str],
                      returns_jsx: bool) -> ChunkType:
    """Kind of a `const x = ...` declaration from its name and initializer."""
    lowered = name.lower()
    if value_type in FUNCTION_VALUE_NODES:
        if _is_pascal_case(name) and len(params) <= 2 and returns_jsx:
            return ChunkType.COMPONENT
        if lowered.startswith("use") and len(name) > 3:
            return ChunkType.HOOK
        if _is_middleware_signature(name, params):
            return ChunkType.MIDDLEWARE
        if "handle" in lowered:
            return ChunkType.HANDLER
        return ChunkType.FUNCTION
    if value_type == "object" and any(part in lowered for part in CONFIG_NAME_PARTS):
        return ChunkType.CONFIG
    return ChunkType.CONSTANT


class TypeScriptChunkExtractor:
    """Structural chunk extraction for one TS/JS file."""

    def __init__(self, source: SourceFile, config: ChunkerConfig):
        self.source = source
        self.config = config
        self.data = source.content.encode("utf-8")

    def text(self, node: Optional[Node]) -> str:
        if node is None:
            return ""
        return self.data[node.start_byte:node.end_byte].decode("utf-8", errors="replace")

    @staticmethod
    def start_line(node: Node) -> int:
        return node.start_point[0] + 1

    @staticmethod
    def end_line(node: Node) -> int:
        row, column = node.end_point[0], node.end_point[1]
        if column == 0 and row > node.start_point[0]:
            return row
        return row + 1

    def extract(self) -> List[Chunk]:
        tree = get_parser(self.source.language).parse(self.data)
        root = tree.root_node
        if root.has_error:
            logger.debug("Syntax errors in %s, chunking recoverable nodes", self.source.file_path)

        chunks: List[Chunk] = []
        if self.config.include_imports:
            import_chunk = self._import_block(root)
            if import_chunk:
                chunks.append(import_chunk)

        for node in root.named_children:
            chunks.extend(self._top_level(node))
        return chunks

    def _import_block(self, root: Node) -> Optional[Chunk]:
        """All import statements ahead of the first declaration."""
        imports: List[Node] = []
        for node in root.named_children:
            if node.type == "import_statement":
                imports.append(node)
            elif node.type == "comment":
                continue
            elif node.type == "expression_statement" and self.text(node).strip().strip(";").strip("'\"") \
                    in ("use client", "use server", "use strict"):
                continue
            else:
                break
        if not imports:
            return None

        modules = []
        for node in imports:
            source_node = node.child_by_field_name("source")
            if source_node is not None:
                modules.append(self.text(source_node).strip("'\"`"))

        return self.source.make_chunk(
            self.start_line(imports[0]),
            self.end_line(imports[-1]),
            ChunkType.IMPORT_BLOCK,
            name="imports",
            context_path=self.source.context_path("imports"),
            imports=list(dict.fromkeys(modules)),
        )

    def _decorators(self, node: Node) -> List[str]:
        return [self.text(child) for child in node.children if child.type == "decorator"]

    def _top_level(self, node: Node) -> List[Chunk]:
        if node.type == "export_statement":
            decorators = self._decorators(node)
            declaration = node.child_by_field_name("declaration")
            if declaration is not None:
                return self._declaration(declaration, node, True, decorators)
            value = node.child_by_field_name("value")
            if value is not None and (value.type in FUNCTION_VALUE_NODES or value.type in CLASS_NODES):
                return self._declaration(value, node, True, decorators, default_name="default")
            return []

        if node.type == "expression_statement":
            inner = node.named_children[0] if node.named_children else None
            if inner is not None and inner.type in MODULE_NODES:
                return self._declaration(inner, node, False, [])
            return []

        if node.type == "ambient_declaration":
            for inner in node.named_children:
                if inner.type in MODULE_NODES or inner.type in CLASS_NODES or inner.type in FUNCTION_NODES:
                    return self._declaration(inner, node, False, [])
            return []

        return self._declaration(node, node, False, [])

    def _span(self, outer: Node) -> Tuple[int, int, Optional[str]]:
        start, end = self.start_line(outer), self.end_line(outer)
        documentation = None
        if self.config.include_documentation:
            start, documentation = self.source.leading_comment(start, C_COMMENT_PREFIXES)
        return start, end, documentation

    def _declaration(self, node: Node, outer: Node, exported: bool, decorators: List[str],
                     default_name: Optional[str] = None) -> List[Chunk]:
        node_type = node.type

        if node_type in CLASS_NODES:
            return self._class_chunks(node, outer, exported, decorators + self._decorators(node), [],
                                      default_name)

        if node_type in FUNCTION_NODES or node_type in FUNCTION_VALUE_NODES:
            return [self._function_chunk(node, outer, exported, default_name)]

        if node_type in VARIABLE_NODES:
            return self._variable_chunks(node, outer, exported)

        simple_types = {
            "interface_declaration": ChunkType.INTERFACE,
            "type_alias_declaration": ChunkType.TYPE,
            "enum_declaration": ChunkType.ENUM,
            "internal_module": ChunkType.MODULE,
            "module": ChunkType.MODULE,
        }
        chunk_type = simple_types.get(node_type)
        if chunk_type is None:
            return []

        name = self.text(node.child_by_field_name("name")).strip("'\"") or None
        start, end, documentation = self._span(outer)
        return [self.source.make_chunk(
            start, end, chunk_type,
            name=name,
            context_path=self.source.context_path(name),
            documentation=documentation,
            exports=[name] if exported and name else [],
            is_public_api=exported,
        )]

    def _parameter_names(self, params_node: Optional[Node]) -> List[str]:
        if params_node is None:
            return []
        if params_node.type == "identifier":
            return [self.text(params_node)]
        names = []
        for child in params_node.named_children:
            if child.type in ("required_parameter", "optional_parameter"):
                pattern = child.child_by_field_name("pattern")
                names.append(self.text(pattern if pattern is not None else child))
            elif child.type == "assignment_pattern":
                names.append(self.text(child.child_by_field_name("left")))
            elif child.type == "comment":
                continue
            else:
                names.append(self.text(child))
        return names

    def _contains_jsx(self, node: Node) -> bool:
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type in JSX_NODES:
                return True
            stack.extend(current.named_children)
        return False

    def _signature(self, name: str, node: Node) -> str:
        params = _field(node, "parameters", "parameter")
        return_type = node.child_by_field_name("return_type")
        params_text = self.text(params)
        if params is not None and params.type == "identifier":
            params_text = f"({params_text})"
        return f"{name}{params_text}{self.text(return_type)}"

    def _function_chunk(self, node: Node, outer: Node, exported: bool,
                        default_name: Optional[str] = None) -> Chunk:
        name = self.text(node.child_by_field_name("name")) or default_name or "anonymous"
        params = self._parameter_names(node.child_by_field_name("parameters"))
        chunk_type = classify_function(name, params, self._contains_jsx(node))
        if chunk_type == ChunkType.FUNCTION and self.source.is_utility_module:
            chunk_type = ChunkType.UTIL
        start, end, documentation = self._span(outer)
        return self.source.make_chunk(
            start, end, chunk_type,
            name=name,
            context_path=self.source.context_path(name),
            documentation=documentation,
            signature=self._signature(name, node),
            exports=[name] if exported else [],
            is_public_api=exported,
        )

    def _variable_chunks(self, node: Node, outer: Node, exported: bool) -> List[Chunk]:
        declarators = [c for c in node.named_children if c.type == "variable_declarator"]
        if not declarators:
            return []
        declarator = declarators[0]
        name_node = declarator.child_by_field_name("name")
        if name_node is None or name_node.type != "identifier":
            return []
        name = self.text(name_node)
        value = declarator.child_by_field_name("value")
        value_type = value.type if value is not None else None

        params: List[str] = []
        returns_jsx = False
        signature = None
        if value is not None and value_type in FUNCTION_VALUE_NODES:
            params = self._parameter_names(
                _field(value, "parameters", "parameter")
            )
            returns_jsx = self._contains_jsx(value)
            signature = self._signature(name, value)

        chunk_type = classify_variable(name, value_type, params, returns_jsx)
        start, end, documentation = self._span(outer)
        return [self.source.make_chunk(
            start, end, chunk_type,
            name=name,
            context_path=self.source.context_path(name),
            documentation=documentation,
            signature=signature,
            exports=[name] if exported else [],
            is_public_api=exported,
        )]

    def _class_chunks(self, node: Node, outer: Node, exported: bool, decorators: List[str],
                      parents: List[str], default_name: Optional[str] = None) -> List[Chunk]:
        name = self.text(node.child_by_field_name("name")) or default_name or "anonymous"
        decorator_names = [decorator_base_name(d) for d in decorators]
        chunk_type = classify_class(name, decorator_names)
        start, end, documentation = self._span(outer)

        body = node.child_by_field_name("body")
        members = self._members(body) if body is not None else []
        public_members = [m.name for m in members if m.is_public]

        heritage = [c for c in node.named_children if c.type == "class_heritage"]
        signature = f"class {name}" + (f" {self.text(heritage[0])}" if heritage else "")
        metadata = dict(
            name=name,
            parent_name=parents[-1] if parents else None,
            context_path=self.source.context_path(*parents, name),
            documentation=documentation,
            signature=signature,
            exports=public_members,
            decorators=decorators,
            is_public_api=exported,
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
        member_parents = parents + [name]
        first_member_start = min(m.start_line for m in members)
        if first_member_start > start:
            header_end = self.source.trim_trailing_blank(start, first_member_start - 1)
            chunks.append(self.source.make_chunk(start, header_end, chunk_type, **metadata))

        for member in members:
            chunks.append(self._member_chunk(member, member_parents))
        return chunks

    def _members(self, body: Node) -> List[_Member]:
        members = []
        pending: List[Node] = []
        for child in body.named_children:
            if child.type == "decorator":
                pending.append(child)
                continue
            if child.type not in MEMBER_NODES:
                pending = []
                continue

            decorator_nodes = pending + [c for c in child.children if c.type == "decorator"]
            pending = []
            start = min([self.start_line(child)] + [self.start_line(d) for d in decorator_nodes])
            documentation = None
            if self.config.include_documentation:
                start, documentation = self.source.leading_comment(start, C_COMMENT_PREFIXES)

            name = self.text(_field(child, "name", "property"))
            modifiers = [self.text(c) for c in child.children if c.type == "accessibility_modifier"]
            public = not name.startswith("#") and not any(m in ("private", "protected") for m in modifiers)
            members.append(_Member(
                node=child,
                start_line=start,
                name=name,
                decorators=[self.text(d) for d in decorator_nodes],
                documentation=documentation,
                is_public=public,
            ))
        return members

    def _member_chunk(self, member: _Member, parents: List[str]) -> Chunk:
        node = member.node
        decorator_names = [decorator_base_name(d) for d in member.decorators]

        signature = None
        if node.type in ("method_definition", "method_signature", "abstract_method_signature"):
            accessor = any(c.type in ("get", "set") for c in node.children)
            chunk_type = classify_method(member.name, decorator_names, accessor)
            signature = self._signature(member.name, node)
        else:
            value = node.child_by_field_name("value")
            if value is not None and value.type in FUNCTION_VALUE_NODES:
                chunk_type = classify_method(member.name, decorator_names)
                signature = self._signature(member.name, value)
            else:
                chunk_type = ChunkType.PROPERTY

        return self.source.make_chunk(
            member.start_line, self.end_line(node), chunk_type,
            name=member.name,
            parent_name=parents[-1],
            context_path=self.source.context_path(*parents, member.name),
            documentation=member.documentation,
            signature=signature,
            decorators=member.decorators,
            is_public_api=member.is_public,
        )


def extract_typescript_chunks(source: SourceFile, config: ChunkerConfig) -> List[Chunk]:
    return TypeScriptChunkExtractor(source, config).extract()
