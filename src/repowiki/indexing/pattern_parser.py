"""
Pattern-Based Chunking

Declaration regexes plus a stack of open constructs, keyed by brace depth for
C-family languages and by indentation for Python sources that fail to parse.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from ..config import ChunkerConfig
from .models import COMPOSITE_TYPES, Chunk, ChunkType
from .source import (
    C_COMMENT_PREFIXES,
    HASH_COMMENT_PREFIXES,
    SourceFile,
    classify_by_decorators,
    classify_by_suffix,
    decorator_base_name,
)

# Constructs that have not opened a brace after this many lines are dropped
MAX_OPEN_DISTANCE = 5

CONTROL_WORDS = {
    "if", "for", "while", "switch", "catch", "return", "new", "else", "using", "lock", "foreach",
    "sizeof", "typeof", "throw", "when", "synchronized", "do", "try", "await", "yield", "assert",
    "super", "this", "case", "goto", "delete", "match", "defer", "go", "select",
}

ROUTE_ANNOTATIONS = {"GetMapping", "PostMapping", "PutMapping", "DeleteMapping", "PatchMapping",
                     "RequestMapping", "HttpGet", "HttpPost", "HttpPut", "HttpDelete", "HttpPatch",
                     "Route", "Get", "Post", "Put", "Delete", "Patch"}
TEST_ANNOTATIONS = {"Test", "Fact", "Theory", "TestMethod", "ParameterizedTest", "TestCase"}
HOOK_ANNOTATIONS = {"BeforeEach", "AfterEach", "BeforeAll", "AfterAll", "Before", "After",
                    "SetUp", "TearDown", "TestInitialize", "TestCleanup", "PostConstruct", "PreDestroy"}

_STRINGS = re.compile(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])\'|`[^`]*`')
# PHP single quotes delimit whole strings, not characters
_PHP_STRINGS = re.compile(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\])*\'')
_INLINE_BLOCK_COMMENT = re.compile(r"/\*.*?\*/")

_JAVA_ANNOTATION = re.compile(r"^\s*@[A-Za-z][\w.]*(?:\(.*\))?\s*$")
_CSHARP_ATTRIBUTE = re.compile(r"^\s*\[[A-Za-z][\w.]*(?:\(.*\))?(?:,\s*[A-Za-z][\w.]*(?:\(.*\))?)*\]\s*$")
_RUST_ATTRIBUTE = re.compile(r"^\s*#!?\[.*\]\s*$")
_PYTHON_DECORATOR = re.compile(r"^\s*@[\w.]+")


@dataclass
class PatternRule:
    """A declaration pattern. `name` is a required group; `kind`/`receiver` are optional."""
    pattern: Pattern
    chunk_type: ChunkType
    container: bool = False
    callable: bool = False
    needs_prefix: bool = False
    kind_types: Dict[str, ChunkType] = field(default_factory=dict)


@dataclass
class LanguageRules:
    rules: List[PatternRule]
    annotation: Optional[Pattern] = None
    is_public: Callable[[str, str], bool] = lambda line, name: True
    comment_prefixes: Tuple[str, ...] = C_COMMENT_PREFIXES
    strings: Pattern = _STRINGS


@dataclass
class _Construct:
    start_line: int
    decl_line: int
    name: str
    chunk_type: ChunkType
    level: int
    container: bool
    callable: bool
    decorators: List[str]
    documentation: Optional[str]
    signature: str
    is_public: bool
    parent: Optional[int]
    receiver: Optional[str] = None
    kind: Optional[str] = None
    end_line: Optional[int] = None
    opened: bool = False


def _modifier_public(line: str, name: str) -> bool:
    return re.search(r"\b(private|protected|internal|fileprivate)\b", line) is None


def _explicit_public(line: str, name: str) -> bool:
    return re.search(r"\bpublic\b", line) is not None


CLASS_KINDS = {
    "class": ChunkType.CLASS,
    "record": ChunkType.CLASS,
    "struct": ChunkType.CLASS,
    "object": ChunkType.CLASS,
    "actor": ChunkType.CLASS,
    "extension": ChunkType.CLASS,
    "trait": ChunkType.INTERFACE,
    "interface": ChunkType.INTERFACE,
    "@interface": ChunkType.INTERFACE,
    "protocol": ChunkType.INTERFACE,
    "enum": ChunkType.ENUM,
    "union": ChunkType.TYPE,
}


def _rule(pattern: str, chunk_type: ChunkType, container: bool = False,
          is_callable: bool = False, needs_prefix: bool = False) -> PatternRule:
    return PatternRule(re.compile(pattern), chunk_type, container, is_callable, needs_prefix, CLASS_KINDS)


LANGUAGE_RULES: Dict[str, LanguageRules] = {
    "java": LanguageRules(
        rules=[
            _rule(r"^\s*(?:(?:public|protected|private|static|abstract|final|sealed|non-sealed|strictfp)\s+)*"
                  r"(?P<kind>class|interface|enum|record|@interface)\s+(?P<name>\w+)", ChunkType.CLASS, True),
            _rule(r"^\s*(?:(?:public|protected|private|static|final|abstract|synchronized|native|default)\s+)*"
                  r"(?:<[^>]+>\s+)?(?:[\w.$]+(?:<[^()]*>)?(?:\[\])*\s+)?(?P<name>\w+)\s*\([^;]*$",
                  ChunkType.METHOD, is_callable=True, needs_prefix=True),
        ],
        annotation=_JAVA_ANNOTATION,
        is_public=_explicit_public,
    ),
    "csharp": LanguageRules(
        rules=[
            _rule(r"^\s*namespace\s+(?P<name>[\w.]+)", ChunkType.MODULE, True),
            _rule(r"^\s*(?:(?:public|private|protected|internal|static|abstract|sealed|partial|readonly|ref|unsafe)\s+)*"
                  r"(?P<kind>class|interface|enum|struct|record)\s+(?P<name>\w+)", ChunkType.CLASS, True),
            _rule(r"^\s*(?:(?:public|private|protected|internal|static|virtual|override|abstract|sealed|async|partial|"
                  r"extern|new|readonly|unsafe)\s+)*(?:[\w.]+(?:<[^()]*>)?(?:\[\])?\??\s+)?(?P<name>\w+)\s*"
                  r"(?:<[^()]*>)?\s*\([^;]*$", ChunkType.METHOD, is_callable=True, needs_prefix=True),
        ],
        annotation=_CSHARP_ATTRIBUTE,
        is_public=_explicit_public,
    ),
    "kotlin": LanguageRules(
        rules=[
            _rule(r"^\s*(?:(?:public|private|protected|internal|open|abstract|sealed|data|enum|inner|annotation|"
                  r"value|final|companion)\s+)*(?P<kind>class|interface|object)\s+(?P<name>\w+)", ChunkType.CLASS, True),
            _rule(r"^\s*(?:(?:public|private|protected|internal|open|override|suspend|inline|operator|infix|abstract|"
                  r"final|tailrec)\s+)*fun\s+(?:<[^>]+>\s+)?(?:(?P<receiver>[\w.]+)\.)?(?P<name>\w+)\s*\(",
                  ChunkType.METHOD, is_callable=True),
        ],
        annotation=_JAVA_ANNOTATION,
        is_public=_modifier_public,
    ),
    "scala": LanguageRules(
        rules=[
            _rule(r"^\s*(?:(?:private|protected|final|sealed|abstract|implicit|case)\s+)*"
                  r"(?P<kind>class|trait|object)\s+(?P<name>\w+)", ChunkType.CLASS, True),
            _rule(r"^\s*(?:(?:private|protected|override|final|implicit)\s+)*def\s+(?P<name>\w+)",
                  ChunkType.METHOD, is_callable=True),
        ],
        annotation=_JAVA_ANNOTATION,
        is_public=_modifier_public,
    ),
    "swift": LanguageRules(
        rules=[
            _rule(r"^\s*(?:(?:public|private|fileprivate|internal|open|final)\s+)*"
                  r"(?P<kind>class|struct|protocol|enum|extension|actor)\s+(?P<name>\w+)", ChunkType.CLASS, True),
            _rule(r"^\s*(?:(?:public|private|fileprivate|internal|open|override|static|class|final|mutating|"
                  r"@\w+)\s+)*func\s+(?P<name>\w+)", ChunkType.METHOD, is_callable=True),
            _rule(r"^\s*(?:(?:public|private|internal|convenience|required|override)\s+)*(?P<name>init)\s*[?!]?\s*\(",
                  ChunkType.CONSTRUCTOR, is_callable=True),
        ],
        annotation=_JAVA_ANNOTATION,
        is_public=_modifier_public,
    ),
    "php": LanguageRules(
        rules=[
            _rule(r"^\s*(?:(?:abstract|final|readonly)\s+)*(?P<kind>class|interface|trait|enum)\s+(?P<name>\w+)",
                  ChunkType.CLASS, True),
            _rule(r"^\s*(?:(?:public|private|protected|static|abstract|final)\s+)*function\s+&?(?P<name>\w+)\s*\(",
                  ChunkType.METHOD, is_callable=True),
        ],
        annotation=_RUST_ATTRIBUTE,
        is_public=_modifier_public,
        strings=_PHP_STRINGS,
    ),
    "go": LanguageRules(
        rules=[
            _rule(r"^func\s+(?:\(\s*(?:\w+\s+)?\*?(?P<receiver>\w+)(?:\[[^\]]*\])?\s*\)\s*)?(?P<name>\w+)\s*[\[(]",
                  ChunkType.FUNCTION, is_callable=True),
            _rule(r"^type\s+(?P<name>\w+)(?:\[[^\]]*\])?\s+(?P<kind>struct|interface)\b", ChunkType.CLASS),
        ],
        is_public=lambda line, name: name[:1].isupper(),
    ),
    "rust": LanguageRules(
        rules=[
            _rule(r"^\s*(?:pub(?:\([^)]*\))?\s+)?mod\s+(?P<name>\w+)\s*\{", ChunkType.MODULE, True),
            _rule(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?P<kind>struct|enum|trait|union)\s+(?P<name>\w+)",
                  ChunkType.CLASS, True),
            _rule(r"^\s*impl(?:<[^{]*?>)?\s+(?:[\w:<>, ]+?\s+for\s+)?(?P<name>\w+)", ChunkType.CLASS, True),
            _rule(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:(?:const|async|unsafe|extern(?:\s+\"[^\"]*\")?)\s+)*"
                  r"fn\s+(?P<name>\w+)", ChunkType.FUNCTION, is_callable=True),
        ],
        annotation=_RUST_ATTRIBUTE,
        is_public=lambda line, name: line.lstrip().startswith("pub"),
    ),
    "c": LanguageRules(
        rules=[
            _rule(r"^\s*(?:typedef\s+)?(?P<kind>struct|union|enum)\s+(?P<name>\w+)\s*\{?\s*$", ChunkType.CLASS),
            _rule(r"^(?:(?:static|inline|extern|const|unsigned|signed)\s+)*[\w*]+(?:\s+[\w*]+)*?\s+\**"
                  r"(?P<name>\w+)\s*\([^;]*$", ChunkType.FUNCTION, is_callable=True, needs_prefix=True),
        ],
        is_public=lambda line, name: not line.lstrip().startswith("static"),
    ),
    "cpp": LanguageRules(
        rules=[
            _rule(r"^\s*namespace\s+(?P<name>[\w:]+)\s*\{?\s*$", ChunkType.MODULE, True),
            _rule(r"^\s*(?:template\s*<[^>]*>\s*)?(?P<kind>class|struct|enum(?:\s+class)?|union)\s+"
                  r"(?:\w+\s+)?(?P<name>\w+)(?:\s+final)?\s*(?::[^;{]*)?\{?\s*$", ChunkType.CLASS, True),
            _rule(r"^\s*(?:(?:static|inline|virtual|explicit|constexpr|extern|friend)\s+)*"
                  r"(?:[\w:*&<>,]+\s+)+[*&]*(?P<name>[\w:~]+)\s*\([^;]*$", ChunkType.FUNCTION, is_callable=True, needs_prefix=True),
        ],
        is_public=lambda line, name: not line.lstrip().startswith("static"),
    ),
}

PYTHON_RULES = LanguageRules(
    rules=[
        _rule(r"^(?P<indent>\s*)class\s+(?P<name>\w+)", ChunkType.CLASS, True),
        _rule(r"^(?P<indent>\s*)(?:async\s+)?def\s+(?P<name>\w+)\s*\(", ChunkType.FUNCTION, is_callable=True),
    ],
    annotation=_PYTHON_DECORATOR,
    is_public=lambda line, name: not name.startswith("_") or (name.startswith("__") and name.endswith("__")),
    comment_prefixes=HASH_COMMENT_PREFIXES,
)


def classify_construct(construct: _Construct, enclosing: Optional[_Construct], language: str) -> ChunkType:
    """Kind of a tracked construct from its rule, annotations, name and enclosing construct."""
    annotations = [decorator_base_name(d) for d in construct.decorators]

    if not construct.callable:
        if language == "go" and construct.kind == "struct":
            return ChunkType.MODEL
        if construct.chunk_type == ChunkType.CLASS:
            return (classify_by_decorators(annotations)
                    or classify_by_suffix(construct.name)
                    or ChunkType.CLASS)
        return construct.chunk_type

    if construct.chunk_type == ChunkType.CONSTRUCTOR:
        return ChunkType.CONSTRUCTOR
    if any(a in TEST_ANNOTATIONS for a in annotations) or construct.name.lower().startswith("test"):
        return ChunkType.TEST
    if any(a in HOOK_ANNOTATIONS for a in annotations):
        return ChunkType.HOOK
    if any(a in ROUTE_ANNOTATIONS for a in annotations):
        return ChunkType.HANDLER
    if language == "go" and "http.ResponseWriter" in construct.signature:
        return ChunkType.HANDLER
    if enclosing is not None and enclosing.chunk_type != ChunkType.MODULE:
        if construct.name in (enclosing.name, "constructor", "__construct", "__init__", "init"):
            return ChunkType.CONSTRUCTOR
        return ChunkType.METHOD
    if construct.receiver:
        return ChunkType.METHOD
    if "middleware" in construct.name.lower():
        return ChunkType.MIDDLEWARE
    return ChunkType.FUNCTION


def _strip_code(line: str, in_block: bool, strings: Pattern = _STRINGS) -> Tuple[str, bool]:
    """Remove string literals and comments so only structural braces remain."""
    if in_block:
        end = line.find("*/")
        if end == -1:
            return "", True
        line = line[end + 2:]
    line = strings.sub('""', line)
    line = _INLINE_BLOCK_COMMENT.sub(" ", line)
    start = line.find("/*")
    if start != -1:
        return line[:start].split("//", 1)[0], True
    return line.split("//", 1)[0], False


class PatternChunkExtractor:
    """Stack-based construct tracking over raw source lines."""

    def __init__(self, source: SourceFile, config: ChunkerConfig, rules: LanguageRules,
                 indentation: bool = False):
        self.source = source
        self.config = config
        self.rules = rules
        self.indentation = indentation
        self.constructs: List[_Construct] = []

    def extract(self) -> List[Chunk]:
        if self.indentation:
            self._track_indentation()
        else:
            self._track_braces()
        return self._resolve()

    def _match(self, line_number: int, line: str, level: int, parent: Optional[int]) -> Optional[_Construct]:
        for rule in self.rules.rules:
            match = rule.pattern.match(line)
            if not match:
                continue
            groups = match.groupdict()
            name = groups["name"]
            if name in CONTROL_WORDS:
                return None
            if rule.needs_prefix and not line[:match.start("name")].strip():
                continue
            first_word = line.strip().split(" ", 1)[0]
            if rule.callable and first_word in CONTROL_WORDS:
                return None

            chunk_type = rule.chunk_type
            kind = groups.get("kind")
            if kind:
                kind = kind.split()[0]
                if kind == "class" and re.search(r"\benum\s+class\b", line):
                    kind = "enum"
                chunk_type = rule.kind_types.get(kind, chunk_type)

            start, decorators = self._annotations_above(line_number)
            documentation = None
            if self.config.include_documentation:
                start, documentation = self.source.leading_comment(start, self.rules.comment_prefixes)

            return _Construct(
                start_line=start,
                decl_line=line_number,
                name=name,
                chunk_type=chunk_type,
                level=level,
                container=rule.container,
                callable=rule.callable,
                decorators=decorators,
                documentation=documentation,
                signature=line.strip().rstrip("{:").strip(),
                is_public=self.rules.is_public(line, name),
                parent=parent,
                receiver=groups.get("receiver"),
                kind=kind,
            )
        return None

    def _annotations_above(self, line_number: int) -> Tuple[int, List[str]]:
        start = line_number
        decorators: List[str] = []
        if self.rules.annotation is None:
            return start, decorators
        previous = line_number - 1
        while previous >= 1 and self.rules.annotation.match(self.source.line(previous)):
            decorators.insert(0, self.source.line(previous).strip())
            start = previous
            previous -= 1
        return start, decorators

    def _track_braces(self):
        stack: List[int] = []
        depth = 0
        in_block = False

        for line_number, raw in enumerate(self.source.lines, start=1):
            code, in_block_after = _strip_code(raw, in_block, self.rules.strings)
            was_in_block = in_block
            in_block = in_block_after

            if stack and not self.constructs[stack[-1]].opened \
                    and line_number - self.constructs[stack[-1]].decl_line > MAX_OPEN_DISTANCE:
                stack.pop()

            if not was_in_block and code.strip():
                construct = self._match(line_number, raw, depth, stack[-1] if stack else None)
                if construct is not None and "{" not in code and code.rstrip().endswith(";"):
                    construct = None
                if construct is not None:
                    # a declaration that never opened a body is abandoned
                    if stack and not self.constructs[stack[-1]].opened:
                        stack.pop()
                        construct.parent = stack[-1] if stack else None
                    self.constructs.append(construct)
                    stack.append(len(self.constructs) - 1)

            for char in code:
                if char == "{":
                    depth += 1
                    if stack and depth == self.constructs[stack[-1]].level + 1:
                        self.constructs[stack[-1]].opened = True
                elif char == "}":
                    depth = max(depth - 1, 0)
                    while stack and depth <= self.constructs[stack[-1]].level:
                        closed = self.constructs[stack.pop()]
                        if closed.opened:
                            closed.end_line = line_number

        last_line = self.source.trim_trailing_blank(1, self.source.line_count)
        for index in stack:
            construct = self.constructs[index]
            if construct.opened:
                construct.end_line = max(last_line, construct.decl_line)

    def _track_indentation(self):
        stack: List[int] = []
        last_code_line = 0

        for line_number, raw in enumerate(self.source.lines, start=1):
            stripped = raw.strip()
            if not stripped or stripped.startswith("#"):
                continue
            indent = len(raw) - len(raw.lstrip())

            # closing brackets of a wrapped signature sit at the declaration's indent
            if not stripped.startswith((")", "]", "}")):
                while stack and indent <= self.constructs[stack[-1]].level:
                    self.constructs[stack.pop()].end_line = last_code_line

            parent = stack[-1] if stack else None
            construct = self._match(line_number, raw, indent, parent)
            if construct is not None:
                construct.opened = True
                self.constructs.append(construct)
                stack.append(len(self.constructs) - 1)

            last_code_line = line_number

        for index in stack:
            self.constructs[index].end_line = last_code_line

    def _resolve(self) -> List[Chunk]:
        """Turn tracked constructs into chunks, expanding only oversized containers."""
        finished = [i for i, c in enumerate(self.constructs) if c.end_line is not None]
        valid = set(finished)
        children: Dict[Optional[int], List[int]] = {}
        for index in finished:
            parent = self.constructs[index].parent
            while parent is not None and parent not in valid:
                parent = self.constructs[parent].parent
            children.setdefault(parent, []).append(index)

        chunks: List[Chunk] = []
        self._emit(children.get(None, []), children, [], chunks)
        return chunks

    def _emit(self, indices: List[int], children: Dict[Optional[int], List[int]],
              ancestors: List[_Construct], chunks: List[Chunk]):
        for index in indices:
            construct = self.constructs[index]
            enclosing = ancestors[-1] if ancestors else None
            chunk_type = classify_construct(construct, enclosing, self.source.language)
            start, end = construct.start_line, construct.end_line
            own_children = children.get(index, [])

            expand = bool(own_children) and construct.container and self.config.chunk_nested_constructs and (
                chunk_type == ChunkType.MODULE
                or (chunk_type in COMPOSITE_TYPES
                    and len(self.source.text(start, end)) > self.config.max_chunk_size * 0.7)
            )

            parent_name = enclosing.name if enclosing is not None else construct.receiver
            names = [a.name for a in ancestors]
            if not ancestors and construct.receiver:
                names = [construct.receiver]
            metadata = dict(
                name=construct.name,
                parent_name=parent_name,
                context_path=self.source.context_path(*names, construct.name),
                documentation=construct.documentation,
                signature=construct.signature,
                decorators=construct.decorators,
                is_public_api=construct.is_public,
            )

            if not expand:
                chunks.append(self.source.make_chunk(start, end, chunk_type, **metadata))
                continue

            first_child_start = min(self.constructs[i].start_line for i in own_children)
            if chunk_type != ChunkType.MODULE and first_child_start > start:
                header_end = self.source.trim_trailing_blank(start, first_child_start - 1)
                chunks.append(self.source.make_chunk(start, header_end, chunk_type, **metadata))
            self._emit(own_children, children, ancestors + [construct], chunks)


def extract_pattern_chunks(source: SourceFile, config: ChunkerConfig) -> List[Chunk]:
    rules = LANGUAGE_RULES[source.language]
    return PatternChunkExtractor(source, config, rules).extract()


def extract_python_by_indentation(source: SourceFile, config: ChunkerConfig) -> List[Chunk]:
    return PatternChunkExtractor(source, config, PYTHON_RULES, indentation=True).extract()


def supports_language(language: str) -> bool:
    return language in LANGUAGE_RULES
