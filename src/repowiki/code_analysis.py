"""
Code Structure Analysis

Lightweight, index-independent outline of a single TypeScript/JavaScript or
Python file: functions, classes with their methods, imports and exports.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .file_operations import SandboxedFileReader

SCRIPT_EXTENSIONS = {'.ts', '.tsx', '.js', '.jsx', '.mjs', '.cjs'}
PYTHON_EXTENSIONS = {'.py', '.pyx'}
ANALYSIS_TYPES = ("all", "functions", "classes", "imports", "exports", "structure")

TS_FUNCTION = re.compile(r'(?:export\s+)?(?:default\s+)?(?:async\s+)?function\b\s*\*?\s*(\w+)\s*(\([^)]*\))')
TS_ARROW = re.compile(r'(?:export\s+)?(?:const|let|var)\s+(\w+)\s*(?::[^=]+)?=\s*(?:async\s+)?(\([^)]*\)|\w+)\s*(?::\s*[^=]+)?\s*=>')
TS_CLASS = re.compile(r'^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)')
TS_METHOD = re.compile(
    r'^\s*(?:(?:public|private|protected|static|async|readonly|override|abstract|get|set)\s+)*'
    r'(?!if\b|for\b|while\b|switch\b|catch\b|return\b|function\b|constructor\b)(\w+)\s*(?:<[^>]*>)?\s*\([^;]*$'
)
TS_CONSTRUCTOR = re.compile(r'^\s*(?:(?:public|private|protected)\s+)?constructor\s*\(')
TS_IMPORT = re.compile(r'^\s*import\s+(?:.*?\s+from\s+)?[\'"]([^\'"]+)[\'"]')
TS_REQUIRE = re.compile(r'require\([\'"]([^\'"]+)[\'"]\)')
TS_EXPORT = re.compile(r'export\s+(?:default\s+)?(?:async\s+)?(?:abstract\s+)?(?:class|function|const|let|var|interface|type|enum)\s+(\w+)')
TS_EXPORT_LIST = re.compile(r'export\s*\{\s*([^}]+)\s*\}')

PY_FUNCTION = re.compile(r'^(?:async\s+)?def\s+(\w+)\s*\(([^)]*)\)?')
PY_METHOD = re.compile(r'^(\s+)(?:async\s+)?def\s+(\w+)\s*\(')
PY_CLASS = re.compile(r'^class\s+(\w+)')
PY_IMPORT = re.compile(r'^(?:from\s+(\S+)\s+)?import\s+(.+)')
PY_ALL = re.compile(r'^__all__\s*=\s*[\[\(](.*)[\]\)]')


@dataclass
class FunctionInfo:
    name: str
    line: int
    signature: str


@dataclass
class ClassInfo:
    name: str
    line: int
    methods: List[str] = field(default_factory=list)


@dataclass
class ImportInfo:
    module: str
    line: int


@dataclass
class ExportInfo:
    name: str
    line: int


@dataclass
class CodeStructure:
    """Outline of one file."""
    file_path: str
    language: str
    line_count: int
    functions: List[FunctionInfo] = field(default_factory=list)
    classes: List[ClassInfo] = field(default_factory=list)
    imports: List[ImportInfo] = field(default_factory=list)
    exports: List[ExportInfo] = field(default_factory=list)

    def summary(self) -> Dict[str, int]:
        return {
            "functions": len(self.functions),
            "classes": len(self.classes),
            "imports": len(self.imports),
            "exports": len(self.exports),
        }


def analyze_code_structure(reader: SandboxedFileReader, file_path: str) -> CodeStructure:
    """
    Outline a repository file.

    Raises:
        AccessDeniedError: if the path escapes the repository
        FileNotFoundError: if the file does not exist
    """
    content = reader.read_text(file_path)
    return analyze_source(file_path, content)


def analyze_source(file_path: str, content: str) -> CodeStructure:
    ext = Path(file_path).suffix.lower()
    lines = content.split('\n')
    structure = CodeStructure(file_path=file_path, language=ext.lstrip('.'), line_count=len(lines))

    if ext in SCRIPT_EXTENSIONS:
        _analyze_script(lines, structure)
    elif ext in PYTHON_EXTENSIONS:
        _analyze_python(lines, structure)
    return structure


def _analyze_script(lines: List[str], structure: CodeStructure):
    current_class: Optional[ClassInfo] = None
    class_depth = 0
    depth = 0

    for line_number, line in enumerate(lines, 1):
        stripped = line.strip()
        if stripped.startswith(('//', '*', '/*')):
            continue

        class_match = TS_CLASS.match(line)
        if class_match:
            current_class = ClassInfo(name=class_match.group(1), line=line_number)
            structure.classes.append(current_class)
            class_depth = depth
        elif current_class is not None and depth == class_depth + 1:
            if TS_CONSTRUCTOR.match(line):
                current_class.methods.append("constructor")
            else:
                method_match = TS_METHOD.match(line)
                if method_match:
                    current_class.methods.append(method_match.group(1))

        func_match = TS_FUNCTION.search(line)
        if func_match:
            structure.functions.append(FunctionInfo(
                name=func_match.group(1),
                line=line_number,
                signature=f"{func_match.group(1)}{func_match.group(2)}"
            ))
        else:
            arrow_match = TS_ARROW.search(line)
            if arrow_match:
                params = arrow_match.group(2)
                if not params.startswith('('):
                    params = f"({params})"
                structure.functions.append(FunctionInfo(
                    name=arrow_match.group(1),
                    line=line_number,
                    signature=f"{arrow_match.group(1)}{params}"
                ))

        import_match = TS_IMPORT.match(line) or TS_REQUIRE.search(line)
        if import_match:
            structure.imports.append(ImportInfo(module=import_match.group(1), line=line_number))

        export_match = TS_EXPORT.search(line)
        if export_match:
            structure.exports.append(ExportInfo(name=export_match.group(1), line=line_number))
        else:
            list_match = TS_EXPORT_LIST.search(line)
            if list_match:
                for name in list_match.group(1).split(','):
                    name = name.strip().split(' as ')[-1].strip()
                    if name:
                        structure.exports.append(ExportInfo(name=name, line=line_number))

        depth = max(depth + line.count('{') - line.count('}'), 0)
        if current_class is not None and depth <= class_depth and '}' in line:
            current_class = None


def _analyze_python(lines: List[str], structure: CodeStructure):
    current_class: Optional[ClassInfo] = None
    method_indent: Optional[str] = None

    for line_number, line in enumerate(lines, 1):
        if line.strip() and not line[0].isspace() and not line.lstrip().startswith(('#', '@', ')')):
            current_class = None
            method_indent = None

        func_match = PY_FUNCTION.match(line)
        if func_match:
            structure.functions.append(FunctionInfo(
                name=func_match.group(1),
                line=line_number,
                signature=f"{func_match.group(1)}({func_match.group(2)})"
            ))
            continue

        class_match = PY_CLASS.match(line)
        if class_match:
            current_class = ClassInfo(name=class_match.group(1), line=line_number)
            structure.classes.append(current_class)
            continue

        method_match = PY_METHOD.match(line)
        if method_match and current_class is not None and method_indent in (None, method_match.group(1)):
            method_indent = method_match.group(1)
            current_class.methods.append(method_match.group(2))
            continue

        import_match = PY_IMPORT.match(line)
        if import_match:
            module = import_match.group(1) or import_match.group(2).split(',')[0].split(' as ')[0].strip()
            structure.imports.append(ImportInfo(module=module, line=line_number))
            continue

        all_match = PY_ALL.match(line)
        if all_match:
            for name in re.findall(r'[\'"](\w+)[\'"]', all_match.group(1)):
                structure.exports.append(ExportInfo(name=name, line=line_number))


def format_code_structure(structure: CodeStructure, analysis_type: str = "all") -> str:
    """Markdown rendering of a CodeStructure."""
    if analysis_type not in ANALYSIS_TYPES:
        raise ValueError(f"Unknown analysis type: {analysis_type}")

    show_all = analysis_type == "all"
    output = [
        f"# Code Analysis: {structure.file_path}",
        "",
        f"**Lines of Code:** {structure.line_count}",
        f"**Language:** {structure.language.upper()}",
        "",
    ]

    if show_all or analysis_type == "structure":
        summary = structure.summary()
        output.append("## Summary")
        output.extend(f"- {key.capitalize()}: {count}" for key, count in summary.items())
        output.append("")

    if (show_all or analysis_type == "functions") and structure.functions:
        output.append("## Functions")
        output.extend(f"- `{f.signature}` (line {f.line})" for f in structure.functions)
        output.append("")

    if (show_all or analysis_type == "classes") and structure.classes:
        output.append("## Classes")
        for c in structure.classes:
            methods = f": {', '.join(c.methods)}" if c.methods else ""
            output.append(f"- `{c.name}` (line {c.line}){methods}")
        output.append("")

    if (show_all or analysis_type == "imports") and structure.imports:
        output.append("## Imports")
        output.extend(f"- `{i.module}` (line {i.line})" for i in structure.imports)
        output.append("")

    if (show_all or analysis_type == "exports") and structure.exports:
        output.append("## Exports")
        output.extend(f"- `{e.name}` (line {e.line})" for e in structure.exports)
        output.append("")

    return "\n".join(output).rstrip() + "\n"
