# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Skeleton extraction: language detection, file reading and per-language rules.

This module implements the parse stage of the skeleton pipeline:
- Language detection by file extension
- File reading with size limit and UTF-8/latin-1 fallback
- Regex extraction for TypeScript/JavaScript, Go and Rust
- Python delegated to the AST extractor in ``python_skeleton``
- Generic fallback for anything else, flagged in ``parse_errors``

Extraction is deliberately lossy: it records exports, imports, classes and
free functions with their line numbers, never bodies.

``parse_file`` never raises. Unreadable or unsupported files yield None;
oversized files yield a shell skeleton whose ``parse_errors`` explains why.
"""

import bisect
import logging
import os
import re
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from acl_context.analyzers.python_skeleton import parse_python_source
from acl_context.models import (
    ClassSkeleton,
    ExportedSymbol,
    FunctionSkeleton,
    ImportStatement,
    Skeleton,
    SymbolKind,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE_BYTES = 1024 * 1024

EXTENSION_TO_LANGUAGE: Dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".go": "go",
    ".rs": "rust",
}

# Project files worth listing in directory maps even though they are not parsed
PROJECT_FILES = frozenset(
    {
        "package.json",
        "tsconfig.json",
        "pyproject.toml",
        "Cargo.toml",
        "go.mod",
        "README.md",
        ".env.example",
    }
)


def detect_language(filepath: str) -> Optional[str]:
    """Language tag for ``filepath`` by extension, or None if unsupported."""
    _, ext = os.path.splitext(filepath)
    return EXTENSION_TO_LANGUAGE.get(ext.lower())


def is_project_file(filename: str) -> bool:
    return os.path.basename(filename) in PROJECT_FILES


class _LineIndex:
    """Maps character offsets to 1-based line numbers."""

    def __init__(self, content: str):
        self._starts = [0]
        for match in re.finditer("\n", content):
            self._starts.append(match.end())

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self._starts, offset)


def _split_names(group: str) -> List[str]:
    """Names from ``{ a, b as c, type D }`` style specifier lists."""
    names = []
    for part in group.strip("{} \n\t").split(","):
        name = part.strip().split(" as ")[0].strip()
        if name.startswith("type "):
            name = name[len("type "):].strip()
        if name:
            names.append(name)
    return names


def _split_params(raw: str) -> Tuple[str, ...]:
    params = []
    depth = 0
    current = ""
    for ch in raw:
        if ch in "<([{":
            depth += 1
        elif ch in ">)]}":
            depth -= 1
        if ch == "," and depth == 0:
            params.append(current.strip())
            current = ""
        else:
            current += ch
    if current.strip():
        params.append(current.strip())
    return tuple(p for p in params if p)


# TypeScript / JavaScript

_TS_IMPORT = re.compile(
    r"^import\s+(type\s+)?(?:(\*\s+as\s+\w+)|(\{[^}]+\})|(\w+))?\s*"
    r"(?:,\s*(\{[^}]+\}|\*\s+as\s+\w+))?\s*from\s*['\"]([^'\"]+)['\"]",
    re.MULTILINE,
)
_TS_SIDE_EFFECT_IMPORT = re.compile(r"^import\s+['\"]([^'\"]+)['\"]", re.MULTILINE)
_TS_REEXPORT = re.compile(
    r"^export\s+(type\s+)?(?:\*(?:\s+as\s+\w+)?|\{[^}]*\})\s*from\s*['\"]([^'\"]+)['\"]",
    re.MULTILINE,
)
_TS_DYNAMIC_IMPORT = re.compile(r"import\s*\(\s*['\"]([^'\"]+)['\"]\s*\)")
_TS_REQUIRE = re.compile(
    r"(?:const|let|var)\s+(\{[^}]+\}|\w+)\s*=\s*require\s*\(\s*['\"]([^'\"]+)['\"]\s*\)"
)
_TS_EXPORT_FUNCTION = re.compile(
    r"^export\s+(default\s+)?(?:async\s+)?function\s*\*?\s*(\w+)", re.MULTILINE
)
_TS_EXPORT_CLASS = re.compile(
    r"^export\s+(default\s+)?(?:abstract\s+)?class\s+(\w+)", re.MULTILINE
)
_TS_EXPORT_VARIABLE = re.compile(r"^export\s+(default\s+)?(?:const|let|var)\s+(\w+)", re.MULTILINE)
_TS_EXPORT_TYPE = re.compile(r"^export\s+(?:declare\s+)?(type|interface)\s+(\w+)", re.MULTILINE)
_TS_EXPORT_ENUM = re.compile(r"^export\s+(?:declare\s+)?(?:const\s+)?enum\s+(\w+)", re.MULTILINE)
_TS_CLASS = re.compile(
    r"^(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)"
    r"(?:<[^>{]*>)?(?:\s+extends\s+([\w.]+)(?:<[^>{]*>)?)?(?:\s+implements\s+([^{]+))?",
    re.MULTILINE,
)
_TS_FUNCTION = re.compile(
    r"^(export\s+)?(?:default\s+)?(async\s+)?function\s*\*?\s*(\w+)\s*(?:<[^>]*>)?"
    r"\s*\(([^)]*)\)(?:\s*:\s*([^{;]+))?",
    re.MULTILINE,
)
_TS_ARROW = re.compile(
    r"^(export\s+)?(?:const|let|var)\s+(\w+)(?:\s*:\s*[^=]+)?\s*=\s*(async\s+)?"
    r"(?:\(([^)]*)\)|(\w+))(?:\s*:\s*([^=]+?))?\s*=>",
    re.MULTILINE,
)


def _parse_typescript(filepath: str, content: str, language: str) -> Skeleton:
    index = _LineIndex(content)
    imports: List[ImportStatement] = []
    exports: List[ExportedSymbol] = []
    classes: List[ClassSkeleton] = []
    functions: List[FunctionSkeleton] = []

    for m in _TS_IMPORT.finditer(content):
        specifiers: List[str] = []
        if m.group(2):
            specifiers.append(m.group(2).split()[-1])
        if m.group(3):
            specifiers.extend(_split_names(m.group(3)))
        if m.group(4):
            specifiers.append(m.group(4))
        if m.group(5):
            extra = m.group(5)
            specifiers.extend(
                [extra.split()[-1]] if extra.startswith("*") else _split_names(extra)
            )
        imports.append(
            ImportStatement(
                source=m.group(6),
                specifiers=tuple(specifiers),
                is_type_only=bool(m.group(1)),
                line=index.line_of(m.start()),
            )
        )

    for m in _TS_SIDE_EFFECT_IMPORT.finditer(content):
        imports.append(ImportStatement(source=m.group(1), line=index.line_of(m.start())))

    for m in _TS_REEXPORT.finditer(content):
        imports.append(
            ImportStatement(
                source=m.group(2),
                is_type_only=bool(m.group(1)),
                line=index.line_of(m.start()),
            )
        )

    for m in _TS_DYNAMIC_IMPORT.finditer(content):
        imports.append(
            ImportStatement(source=m.group(1), is_dynamic=True, line=index.line_of(m.start()))
        )

    for m in _TS_REQUIRE.finditer(content):
        target = m.group(1)
        specifiers = _split_names(target) if target.startswith("{") else [target]
        imports.append(
            ImportStatement(
                source=m.group(2),
                specifiers=tuple(specifiers),
                is_dynamic=True,
                line=index.line_of(m.start()),
            )
        )

    for m in _TS_EXPORT_FUNCTION.finditer(content):
        exports.append(
            ExportedSymbol(
                name=m.group(2),
                kind=SymbolKind.FUNCTION,
                line=index.line_of(m.start()),
                is_default=bool(m.group(1)),
            )
        )
    for m in _TS_EXPORT_CLASS.finditer(content):
        exports.append(
            ExportedSymbol(
                name=m.group(2),
                kind=SymbolKind.CLASS,
                line=index.line_of(m.start()),
                is_default=bool(m.group(1)),
            )
        )
    for m in _TS_EXPORT_VARIABLE.finditer(content):
        exports.append(
            ExportedSymbol(
                name=m.group(2),
                kind=SymbolKind.VARIABLE,
                line=index.line_of(m.start()),
                is_default=bool(m.group(1)),
            )
        )
    for m in _TS_EXPORT_TYPE.finditer(content):
        kind = SymbolKind.INTERFACE if m.group(1) == "interface" else SymbolKind.TYPE
        exports.append(ExportedSymbol(name=m.group(2), kind=kind, line=index.line_of(m.start())))
    for m in _TS_EXPORT_ENUM.finditer(content):
        exports.append(
            ExportedSymbol(name=m.group(1), kind=SymbolKind.ENUM, line=index.line_of(m.start()))
        )
    exports.sort(key=lambda e: e.line)

    for m in _TS_CLASS.finditer(content):
        implements = None
        if m.group(3):
            implements = tuple(s.strip() for s in m.group(3).split(",") if s.strip())
        classes.append(
            ClassSkeleton(
                name=m.group(1),
                line=index.line_of(m.start()),
                extends=m.group(2),
                implements=implements,
            )
        )

    for m in _TS_FUNCTION.finditer(content):
        return_type = m.group(5).strip() if m.group(5) else None
        functions.append(
            FunctionSkeleton(
                name=m.group(3),
                line=index.line_of(m.start()),
                is_async=bool(m.group(2)),
                is_exported=bool(m.group(1)),
                parameters=_split_params(m.group(4)),
                return_type=return_type or None,
            )
        )
    for m in _TS_ARROW.finditer(content):
        params = _split_params(m.group(4)) if m.group(4) is not None else (m.group(5),)
        return_type = m.group(6).strip() if m.group(6) else None
        functions.append(
            FunctionSkeleton(
                name=m.group(2),
                line=index.line_of(m.start()),
                is_async=bool(m.group(3)),
                is_exported=bool(m.group(1)),
                parameters=params,
                return_type=return_type or None,
            )
        )
    functions.sort(key=lambda f: f.line)
    imports.sort(key=lambda i: i.line)

    return Skeleton(
        file_path=filepath,
        language=language,
        exports=tuple(exports),
        imports=tuple(imports),
        classes=tuple(classes),
        functions=tuple(functions),
    )


# Go

_GO_IMPORT = re.compile(r"^import\s+(?:\(\s*([^)]+)\)|(?:(\w+|\.|_)\s+)?\"([^\"]+)\")", re.M)
_GO_GROUPED_SPEC = re.compile(r"(?:(\w+|\.|_)\s+)?\"([^\"]+)\"")
_GO_FUNC = re.compile(r"^func\s+(?:\([^)]*\)\s+)?(\w+)\s*(?:\[[^\]]*\])?\s*\(([^)]*)\)", re.M)
_GO_STRUCT = re.compile(r"^type\s+(\w+)(?:\[[^\]]*\])?\s+struct\s*\{", re.M)
_GO_INTERFACE = re.compile(r"^type\s+(\w+)(?:\[[^\]]*\])?\s+interface\s*\{", re.M)


def _parse_go(filepath: str, content: str) -> Skeleton:
    index = _LineIndex(content)
    imports: List[ImportStatement] = []
    exports: List[ExportedSymbol] = []
    classes: List[ClassSkeleton] = []
    functions: List[FunctionSkeleton] = []

    for m in _GO_IMPORT.finditer(content):
        if m.group(1):
            block_start = m.start(1)
            for spec in _GO_GROUPED_SPEC.finditer(m.group(1)):
                alias = (spec.group(1),) if spec.group(1) else ()
                imports.append(
                    ImportStatement(
                        source=spec.group(2),
                        specifiers=alias,
                        line=index.line_of(block_start + spec.start()),
                    )
                )
        else:
            alias = (m.group(2),) if m.group(2) else ()
            imports.append(
                ImportStatement(source=m.group(3), specifiers=alias, line=index.line_of(m.start()))
            )

    for m in _GO_FUNC.finditer(content):
        name = m.group(1)
        line = index.line_of(m.start())
        is_exported = name[:1].isupper()
        functions.append(
            FunctionSkeleton(
                name=name,
                line=line,
                is_exported=is_exported,
                parameters=_split_params(m.group(2)),
            )
        )
        if is_exported:
            exports.append(ExportedSymbol(name=name, kind=SymbolKind.FUNCTION, line=line))

    for m in _GO_STRUCT.finditer(content):
        name = m.group(1)
        line = index.line_of(m.start())
        classes.append(ClassSkeleton(name=name, line=line))
        if name[:1].isupper():
            exports.append(ExportedSymbol(name=name, kind=SymbolKind.CLASS, line=line))

    for m in _GO_INTERFACE.finditer(content):
        name = m.group(1)
        if name[:1].isupper():
            exports.append(
                ExportedSymbol(name=name, kind=SymbolKind.INTERFACE, line=index.line_of(m.start()))
            )

    exports.sort(key=lambda e: e.line)
    return Skeleton(
        file_path=filepath,
        language="go",
        exports=tuple(exports),
        imports=tuple(imports),
        classes=tuple(classes),
        functions=tuple(functions),
    )


# Rust

# Anchored at column 0: indented fns belong to impl/trait blocks, not free functions
_RUST_USE = re.compile(r"^(?:pub(?:\([^)]*\))?\s+)?use\s+([^;]+);", re.M)
_RUST_FN = re.compile(
    r"^(pub(?:\([^)]*\))?\s+)?(?:const\s+)?(async\s+)?(?:unsafe\s+)?"
    r"(?:extern\s+\"[^\"]*\"\s+)?fn\s+(\w+)\s*(?:<[^>]*>)?\s*\(([^)]*)\)"
    r"(?:\s*->\s*([^{;]+))?",
    re.M,
)
_RUST_STRUCT = re.compile(r"^(pub(?:\([^)]*\))?\s+)?struct\s+(\w+)", re.M)
_RUST_ENUM = re.compile(r"^(pub(?:\([^)]*\))?\s+)?enum\s+(\w+)", re.M)
_RUST_TRAIT = re.compile(r"^(pub(?:\([^)]*\))?\s+)?trait\s+(\w+)", re.M)
_RUST_IMPL = re.compile(r"^impl(?:<[^>]+>)?\s+(?:(\w+)(?:<[^>]*>)?\s+for\s+)?(\w+)", re.M)


def _parse_rust(filepath: str, content: str) -> Skeleton:
    index = _LineIndex(content)
    imports: List[ImportStatement] = []
    exports: List[ExportedSymbol] = []
    classes: List[ClassSkeleton] = []
    functions: List[FunctionSkeleton] = []

    for m in _RUST_USE.finditer(content):
        source = " ".join(m.group(1).split())
        imports.append(ImportStatement(source=source, line=index.line_of(m.start())))

    for m in _RUST_FN.finditer(content):
        name = m.group(3)
        line = index.line_of(m.start())
        is_exported = bool(m.group(1))
        return_type = m.group(5).strip() if m.group(5) else None
        functions.append(
            FunctionSkeleton(
                name=name,
                line=line,
                is_async=bool(m.group(2)),
                is_exported=is_exported,
                parameters=_split_params(m.group(4)),
                return_type=return_type or None,
            )
        )
        if is_exported:
            exports.append(ExportedSymbol(name=name, kind=SymbolKind.FUNCTION, line=line))

    for m in _RUST_STRUCT.finditer(content):
        line = index.line_of(m.start())
        classes.append(ClassSkeleton(name=m.group(2), line=line))
        if m.group(1):
            exports.append(ExportedSymbol(name=m.group(2), kind=SymbolKind.CLASS, line=line))

    for m in _RUST_ENUM.finditer(content):
        if m.group(1):
            exports.append(
                ExportedSymbol(name=m.group(2), kind=SymbolKind.ENUM, line=index.line_of(m.start()))
            )
    for m in _RUST_TRAIT.finditer(content):
        if m.group(1):
            exports.append(
                ExportedSymbol(
                    name=m.group(2), kind=SymbolKind.INTERFACE, line=index.line_of(m.start())
                )
            )

    known = {c.name for c in classes}
    for m in _RUST_IMPL.finditer(content):
        name = m.group(2)
        if name in known:
            continue
        known.add(name)
        trait = (m.group(1),) if m.group(1) else None
        classes.append(ClassSkeleton(name=name, line=index.line_of(m.start()), implements=trait))

    exports.sort(key=lambda e: e.line)
    return Skeleton(
        file_path=filepath,
        language="rust",
        exports=tuple(exports),
        imports=tuple(imports),
        classes=tuple(classes),
        functions=tuple(functions),
    )


# Generic fallback

_GENERIC_IMPORT = re.compile(r"(?:import|from|require|use)\s*[('\"]([^'\"]+)['\"]")
_GENERIC_FUNCTION = re.compile(r"(?:function|def|fn|func)\s+(\w+)")
_GENERIC_CLASS = re.compile(r"(?:class|struct|type)\s+(\w+)")

GENERIC_PARSER_NOTE = "Using generic parser - limited extraction"


def _parse_generic(filepath: str, content: str, language: str) -> Skeleton:
    index = _LineIndex(content)
    return Skeleton(
        file_path=filepath,
        language=language,
        imports=tuple(
            ImportStatement(source=m.group(1), line=index.line_of(m.start()))
            for m in _GENERIC_IMPORT.finditer(content)
        ),
        classes=tuple(
            ClassSkeleton(name=m.group(1), line=index.line_of(m.start()))
            for m in _GENERIC_CLASS.finditer(content)
        ),
        functions=tuple(
            FunctionSkeleton(name=m.group(1), line=index.line_of(m.start()))
            for m in _GENERIC_FUNCTION.finditer(content)
        ),
        parse_errors=(GENERIC_PARSER_NOTE,),
    )


_PARSERS: Dict[str, Callable[[str, str], Skeleton]] = {
    "typescript": lambda path, src: _parse_typescript(path, src, "typescript"),
    "javascript": lambda path, src: _parse_typescript(path, src, "javascript"),
    "python": parse_python_source,
    "go": _parse_go,
    "rust": _parse_rust,
}


def parse_source(filepath: str, content: str, language: str) -> Skeleton:
    """Extract a skeleton from already-read source text."""
    parser = _PARSERS.get(language)
    if parser is None:
        return _parse_generic(filepath, content, language)
    return parser(filepath, content)


def _read_source(filepath: str) -> str:
    """Read text with UTF-8 first and latin-1 as fallback."""
    try:
        with open(filepath, encoding="utf-8") as f:
            return f.read()
    except UnicodeDecodeError:
        logger.debug(f"File {filepath} is not UTF-8, using latin-1 fallback encoding")
        with open(filepath, encoding="latin-1") as f:
            return f.read()


def parse_file(
    filepath: str,
    max_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
    languages: Optional[Iterable[str]] = None,
) -> Optional[Skeleton]:
    """Parse a file into a Skeleton.

    Args:
        filepath: Absolute path to the file.
        max_size_bytes: Files larger than this are not read.
        languages: Enabled language tags. None enables every supported one.

    Returns:
        The skeleton; a shell skeleton with a size message for oversized
        files; None for missing, unreadable, non-regular or unsupported files.
    """
    language = detect_language(filepath)
    if language is None:
        return None
    if languages is not None and language not in set(languages):
        logger.debug(f"Skipping {filepath}: language {language} not enabled")
        return None

    try:
        if not os.path.isfile(filepath):
            return None
        size = os.path.getsize(filepath)
        if size > max_size_bytes:
            logger.warning(
                f"Skipping parse of {filepath}: {size} bytes exceeds limit ({max_size_bytes})"
            )
            return Skeleton(
                file_path=filepath,
                language=language,
                parse_errors=(f"File exceeds max size ({size} > {max_size_bytes})",),
            )
        content = _read_source(filepath)
    except OSError as e:
        logger.debug(f"Cannot read {filepath}: {e}")
        return None

    return parse_source(filepath, content, language)
