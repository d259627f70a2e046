# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Core data models for the skeleton cache and import graph.

This module defines the data structures shared by every layer:
- Skeleton and its parts: structural summary of one source file
- ImportType / SymbolKind: JSON-compatible string constants
- ImportEdge: directed import relationship between two local files
- CacheEntry: memory cache slot (value + fingerprint + recency)
- Store records: rows of the skeletons, sessions and artifacts tables
- DirectoryMap / FileInfo: metadata-only directory enumeration

Skeletons are frozen dataclasses holding tuples, so a parsed skeleton can
be shared between the memory cache and callers without copying. A re-parse
always builds a new Skeleton.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


class ImportType:
    """Kinds of import edges stored in the import graph.

    Design: Using class constants (not Enum) for JSON-compatible strings.
    """

    STATIC = "static"  # import { x } from './b'
    DYNAMIC = "dynamic"  # import('./b') or require('./b')
    TYPE_ONLY = "type-only"  # import type { X } from './b'

    ALL = (STATIC, DYNAMIC, TYPE_ONLY)


class SymbolKind:
    """Kinds of exported symbols."""

    FUNCTION = "function"
    CLASS = "class"
    VARIABLE = "variable"
    TYPE = "type"
    INTERFACE = "interface"
    ENUM = "enum"


@dataclass(frozen=True)
class ExportedSymbol:
    """A symbol exported by a file."""

    name: str
    kind: str  # SymbolKind value
    line: int
    is_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind,
            "line": self.line,
            "is_default": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExportedSymbol":
        return cls(
            name=data["name"],
            kind=data["kind"],
            line=data["line"],
            is_default=data.get("is_default", False),
        )


@dataclass(frozen=True)
class ImportStatement:
    """An import statement as written in the source file.

    ``source`` is the raw module specifier (e.g. ``./b``, ``react``,
    ``..models``); ``specifiers`` are the imported names.
    """

    source: str
    specifiers: Tuple[str, ...] = ()
    is_type_only: bool = False
    is_dynamic: bool = False
    line: int = 0

    @property
    def import_type(self) -> str:
        """Edge kind this statement produces when it resolves locally."""
        if self.is_type_only:
            return ImportType.TYPE_ONLY
        if self.is_dynamic:
            return ImportType.DYNAMIC
        return ImportType.STATIC

    @property
    def is_local(self) -> bool:
        """True when the specifier points into the workspace (relative or absolute)."""
        return self.source.startswith(".") or self.source.startswith("/")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "specifiers": list(self.specifiers),
            "is_type_only": self.is_type_only,
            "is_dynamic": self.is_dynamic,
            "line": self.line,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportStatement":
        return cls(
            source=data["source"],
            specifiers=tuple(data.get("specifiers", ())),
            is_type_only=data.get("is_type_only", False),
            is_dynamic=data.get("is_dynamic", False),
            line=data.get("line", 0),
        )


@dataclass(frozen=True)
class MethodSkeleton:
    """A method declared inside a class."""

    name: str
    line: int
    visibility: str = "public"  # public | private | protected
    is_static: bool = False
    is_async: bool = False
    parameters: Tuple[str, ...] = ()
    return_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "line": self.line,
            "visibility": self.visibility,
            "is_static": self.is_static,
            "is_async": self.is_async,
            "parameters": list(self.parameters),
        }
        if self.return_type is not None:
            result["return_type"] = self.return_type
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MethodSkeleton":
        return cls(
            name=data["name"],
            line=data["line"],
            visibility=data.get("visibility", "public"),
            is_static=data.get("is_static", False),
            is_async=data.get("is_async", False),
            parameters=tuple(data.get("parameters", ())),
            return_type=data.get("return_type"),
        )


@dataclass(frozen=True)
class ClassSkeleton:
    """A class or struct declaration."""

    name: str
    line: int
    methods: Tuple[MethodSkeleton, ...] = ()
    properties: Tuple[str, ...] = ()
    extends: Optional[str] = None
    implements: Optional[Tuple[str, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "line": self.line,
            "methods": [m.to_dict() for m in self.methods],
            "properties": list(self.properties),
        }
        if self.extends is not None:
            result["extends"] = self.extends
        if self.implements is not None:
            result["implements"] = list(self.implements)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassSkeleton":
        implements = data.get("implements")
        return cls(
            name=data["name"],
            line=data["line"],
            methods=tuple(MethodSkeleton.from_dict(m) for m in data.get("methods", ())),
            properties=tuple(data.get("properties", ())),
            extends=data.get("extends"),
            implements=tuple(implements) if implements is not None else None,
        )


@dataclass(frozen=True)
class FunctionSkeleton:
    """A free (module-level) function."""

    name: str
    line: int
    is_async: bool = False
    is_exported: bool = False
    parameters: Tuple[str, ...] = ()
    return_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": self.name,
            "line": self.line,
            "is_async": self.is_async,
            "is_exported": self.is_exported,
            "parameters": list(self.parameters),
        }
        if self.return_type is not None:
            result["return_type"] = self.return_type
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FunctionSkeleton":
        return cls(
            name=data["name"],
            line=data["line"],
            is_async=data.get("is_async", False),
            is_exported=data.get("is_exported", False),
            parameters=tuple(data.get("parameters", ())),
            return_type=data.get("return_type"),
        )


@dataclass(frozen=True)
class Skeleton:
    """Structural summary of one source file.

    Excludes function and method bodies. Immutable once produced: a changed
    file is re-parsed into a new Skeleton, never patched in place.
    """

    file_path: str
    language: str
    exports: Tuple[ExportedSymbol, ...] = ()
    imports: Tuple[ImportStatement, ...] = ()
    classes: Tuple[ClassSkeleton, ...] = ()
    functions: Tuple[FunctionSkeleton, ...] = ()
    parse_errors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "file_path": self.file_path,
            "language": self.language,
            "exports": [e.to_dict() for e in self.exports],
            "imports": [i.to_dict() for i in self.imports],
            "classes": [c.to_dict() for c in self.classes],
            "functions": [f.to_dict() for f in self.functions],
            "parse_errors": list(self.parse_errors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Skeleton":
        """Deserialize from JSON-compatible dict."""
        return cls(
            file_path=data["file_path"],
            language=data["language"],
            exports=tuple(ExportedSymbol.from_dict(e) for e in data.get("exports", ())),
            imports=tuple(ImportStatement.from_dict(i) for i in data.get("imports", ())),
            classes=tuple(ClassSkeleton.from_dict(c) for c in data.get("classes", ())),
            functions=tuple(FunctionSkeleton.from_dict(f) for f in data.get("functions", ())),
            parse_errors=tuple(data.get("parse_errors", ())),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> "Skeleton":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class ImportEdge:
    """Directed import relationship: source_path imports target_path.

    The (source_path, target_path, import_type) triple is unique in the store.
    """

    source_path: str
    target_path: str
    import_type: str  # ImportType value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_path": self.source_path,
            "target_path": self.target_path,
            "import_type": self.import_type,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImportEdge":
        return cls(
            source_path=data["source_path"],
            target_path=data["target_path"],
            import_type=data["import_type"],
        )


@dataclass
class CacheEntry:
    """Slot in the memory cache.

    Mutable on purpose: ``accessed_at`` is touched on every read.
    """

    value: Any
    fingerprint: str
    accessed_at: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        """Mark the entry as most recently used."""
        self.accessed_at = time.monotonic()


@dataclass
class CacheStatistics:
    """Counters for the skeleton cache."""

    size: int
    max_size: int
    hits: int = 0
    misses: int = 0
    invalidations: int = 0  # fingerprint mismatches + explicit/debounced removals
    evictions: int = 0  # LRU capacity evictions
    pending_invalidations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "size": self.size,
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "invalidations": self.invalidations,
            "evictions": self.evictions,
            "pending_invalidations": self.pending_invalidations,
        }


@dataclass
class SkeletonRecord:
    """Row of the ``skeletons`` table."""

    file_path: str
    file_hash: str
    language: str
    skeleton_json: str
    created_at: str
    updated_at: str


@dataclass
class SessionRecord:
    """Row of the ``sessions`` table."""

    session_id: str
    workspace_path: str
    session_name: Optional[str]
    state_json: str
    created_at: str
    updated_at: str


@dataclass
class ArtifactRecord:
    """Row of the ``context_artifacts`` table."""

    artifact_id: str
    artifact_type: str
    scope: str
    content: str
    metadata_json: Optional[str]
    created_at: str
    updated_at: str


@dataclass
class FileInfo:
    """A file found during directory enumeration (no parsing involved)."""

    path: str
    relative_path: str
    language: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "relative_path": self.relative_path,
            "language": self.language,
        }


@dataclass
class DirectoryMap:
    """Result of a bounded-depth directory walk."""

    path: str
    relative_path: str
    files: List[FileInfo] = field(default_factory=list)
    subdirectories: List[str] = field(default_factory=list)
    total_files: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "relative_path": self.relative_path,
            "files": [f.to_dict() for f in self.files],
            "subdirectories": list(self.subdirectories),
            "total_files": self.total_files,
        }
