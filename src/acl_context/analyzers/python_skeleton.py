# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Python skeleton extraction using the standard library AST.

Error Recovery:
- Syntax errors: fall back to line-based regex extraction and record the
  error in ``parse_errors``
- Null bytes / pathological nesting: same fallback

Import classification:
- ``if TYPE_CHECKING:`` blocks produce type-only imports
- imports inside function bodies and ``importlib.import_module("...")``
  calls with a literal argument produce dynamic imports
- relative imports keep their leading dots (``from ..pkg import x`` has
  source ``..pkg``)
"""

import ast
import logging
import re
from typing import List, Optional, Set, Tuple, Union

from acl_context.models import (
    ClassSkeleton,
    ExportedSymbol,
    FunctionSkeleton,
    ImportStatement,
    MethodSkeleton,
    Skeleton,
    SymbolKind,
)

logger = logging.getLogger(__name__)

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]


def _unparse(node: Optional[ast.AST]) -> Optional[str]:
    if node is None:
        return None
    return ast.unparse(node)


def _format_arguments(args: ast.arguments) -> Tuple[str, ...]:
    def fmt(arg: ast.arg, prefix: str = "") -> str:
        annotation = _unparse(arg.annotation)
        return f"{prefix}{arg.arg}: {annotation}" if annotation else f"{prefix}{arg.arg}"

    params = [fmt(a) for a in args.posonlyargs + args.args]
    if args.vararg is not None:
        params.append(fmt(args.vararg, "*"))
    params.extend(fmt(a) for a in args.kwonlyargs)
    if args.kwarg is not None:
        params.append(fmt(args.kwarg, "**"))
    return tuple(params)


def _visibility(name: str) -> str:
    if name.startswith("__") and not name.endswith("__"):
        return "private"
    if name.startswith("_") and not name.endswith("__"):
        return "protected"
    return "public"


def _decorator_names(node: FunctionNode) -> Set[str]:
    names = set()
    for decorator in node.decorator_list:
        if isinstance(decorator, ast.Name):
            names.add(decorator.id)
        elif isinstance(decorator, ast.Attribute):
            names.add(decorator.attr)
    return names


def _is_type_checking_test(test: ast.expr) -> bool:
    if isinstance(test, ast.Name):
        return test.id == "TYPE_CHECKING"
    if isinstance(test, ast.Attribute):
        return test.attr == "TYPE_CHECKING"
    return False


def _is_import_module_call(node: ast.Call) -> bool:
    func = node.func
    if isinstance(func, ast.Attribute):
        return func.attr == "import_module"
    if isinstance(func, ast.Name):
        return func.id in ("import_module", "__import__")
    return False


class _ImportCollector(ast.NodeVisitor):
    """Collects import statements with their type-only / dynamic context."""

    def __init__(self) -> None:
        self.imports: List[ImportStatement] = []
        self._type_checking_depth = 0
        self._function_depth = 0

    @property
    def _is_type_only(self) -> bool:
        return self._type_checking_depth > 0

    @property
    def _is_dynamic(self) -> bool:
        return self._function_depth > 0 and not self._is_type_only

    def visit_If(self, node: ast.If) -> None:
        if _is_type_checking_test(node.test):
            self._type_checking_depth += 1
            for child in node.body:
                self.visit(child)
            self._type_checking_depth -= 1
            for child in node.orelse:
                self.visit(child)
        else:
            self.generic_visit(node)

    def _visit_function(self, node: FunctionNode) -> None:
        self._function_depth += 1
        self.generic_visit(node)
        self._function_depth -= 1

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.imports.append(
                ImportStatement(
                    source=alias.name,
                    specifiers=(alias.asname,) if alias.asname else (),
                    is_type_only=self._is_type_only,
                    is_dynamic=self._is_dynamic,
                    line=node.lineno,
                )
            )

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        source = "." * node.level + (node.module or "")
        self.imports.append(
            ImportStatement(
                source=source,
                specifiers=tuple(alias.name for alias in node.names),
                is_type_only=self._is_type_only,
                is_dynamic=self._is_dynamic,
                line=node.lineno,
            )
        )

    def visit_Call(self, node: ast.Call) -> None:
        if (
            _is_import_module_call(node)
            and node.args
            and isinstance(node.args[0], ast.Constant)
            and isinstance(node.args[0].value, str)
        ):
            self.imports.append(
                ImportStatement(source=node.args[0].value, is_dynamic=True, line=node.lineno)
            )
        self.generic_visit(node)


def _declared_all(module: ast.Module) -> Optional[Set[str]]:
    """Names listed in a literal module-level ``__all__``, if any."""
    for stmt in module.body:
        if not isinstance(stmt, (ast.Assign, ast.AnnAssign)):
            continue
        targets = stmt.targets if isinstance(stmt, ast.Assign) else [stmt.target]
        if not any(isinstance(t, ast.Name) and t.id == "__all__" for t in targets):
            continue
        if isinstance(stmt.value, (ast.List, ast.Tuple)):
            return {
                elt.value
                for elt in stmt.value.elts
                if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
            }
    return None


def _class_properties(node: ast.ClassDef) -> Tuple[str, ...]:
    names: List[str] = []

    def add(name: str) -> None:
        if name not in names:
            names.append(name)

    for stmt in node.body:
        if isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
            add(stmt.target.id)
        elif isinstance(stmt, ast.Assign):
            for target in stmt.targets:
                if isinstance(target, ast.Name):
                    add(target.id)
        elif isinstance(stmt, ast.FunctionDef) and stmt.name == "__init__":
            for sub in ast.walk(stmt):
                targets = []
                if isinstance(sub, ast.Assign):
                    targets = sub.targets
                elif isinstance(sub, ast.AnnAssign):
                    targets = [sub.target]
                for target in targets:
                    if (
                        isinstance(target, ast.Attribute)
                        and isinstance(target.value, ast.Name)
                        and target.value.id == "self"
                    ):
                        add(target.attr)
    return tuple(names)


def _class_skeleton(node: ast.ClassDef) -> ClassSkeleton:
    methods = []
    for stmt in node.body:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            methods.append(
                MethodSkeleton(
                    name=stmt.name,
                    line=stmt.lineno,
                    visibility=_visibility(stmt.name),
                    is_static="staticmethod" in _decorator_names(stmt),
                    is_async=isinstance(stmt, ast.AsyncFunctionDef),
                    parameters=_format_arguments(stmt.args),
                    return_type=_unparse(stmt.returns),
                )
            )
    bases = [ast.unparse(base) for base in node.bases]
    return ClassSkeleton(
        name=node.name,
        line=node.lineno,
        methods=tuple(methods),
        properties=_class_properties(node),
        extends=bases[0] if bases else None,
        implements=tuple(bases[1:]) if len(bases) > 1 else None,
    )


def _skeleton_from_ast(filepath: str, module: ast.Module) -> Skeleton:
    collector = _ImportCollector()
    collector.visit(module)

    declared = _declared_all(module)

    def exported(name: str) -> bool:
        if declared is not None:
            return name in declared
        return not name.startswith("_")

    exports: List[ExportedSymbol] = []
    classes: List[ClassSkeleton] = []
    functions: List[FunctionSkeleton] = []

    for stmt in module.body:
        if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
            is_exported = exported(stmt.name)
            functions.append(
                FunctionSkeleton(
                    name=stmt.name,
                    line=stmt.lineno,
                    is_async=isinstance(stmt, ast.AsyncFunctionDef),
                    is_exported=is_exported,
                    parameters=_format_arguments(stmt.args),
                    return_type=_unparse(stmt.returns),
                )
            )
            if is_exported:
                exports.append(
                    ExportedSymbol(name=stmt.name, kind=SymbolKind.FUNCTION, line=stmt.lineno)
                )
        elif isinstance(stmt, ast.ClassDef):
            classes.append(_class_skeleton(stmt))
            if exported(stmt.name):
                exports.append(
                    ExportedSymbol(name=stmt.name, kind=SymbolKind.CLASS, line=stmt.lineno)
                )
        elif declared is not None and isinstance(stmt, (ast.Assign, ast.AnnAssign)):
            targets = stmt.targets if isinstance(stmt, ast.Assign) else [stmt.target]
            for target in targets:
                if isinstance(target, ast.Name) and target.id in declared:
                    exports.append(
                        ExportedSymbol(name=target.id, kind=SymbolKind.VARIABLE, line=stmt.lineno)
                    )

    return Skeleton(
        file_path=filepath,
        language="python",
        exports=tuple(exports),
        imports=tuple(sorted(collector.imports, key=lambda i: i.line)),
        classes=tuple(classes),
        functions=tuple(functions),
    )


# Line-based fallback for files the AST cannot parse

_FALLBACK_IMPORT = re.compile(r"^import\s+(\S+)|^from\s+(\S+)\s+import\s+(.+)", re.M)
_FALLBACK_FUNCTION = re.compile(r"^(async\s+)?def\s+(\w+)\s*\(", re.M)
_FALLBACK_CLASS = re.compile(r"^class\s+(\w+)(?:\s*\(([^)]*)\))?", re.M)


def _line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def _skeleton_from_regex(filepath: str, content: str, error: str) -> Skeleton:
    imports = []
    for m in _FALLBACK_IMPORT.finditer(content):
        specifiers: Tuple[str, ...] = ()
        if m.group(3):
            names = m.group(3).strip("() \\")
            specifiers = tuple(
                s.strip().split(" as ")[0] for s in names.split(",") if s.strip()
            )
        imports.append(
            ImportStatement(
                source=m.group(1) or m.group(2),
                specifiers=specifiers,
                line=_line_of(content, m.start()),
            )
        )

    exports = []
    functions = []
    for m in _FALLBACK_FUNCTION.finditer(content):
        name = m.group(2)
        line = _line_of(content, m.start())
        functions.append(
            FunctionSkeleton(
                name=name,
                line=line,
                is_async=bool(m.group(1)),
                is_exported=not name.startswith("_"),
            )
        )
        if not name.startswith("_"):
            exports.append(ExportedSymbol(name=name, kind=SymbolKind.FUNCTION, line=line))

    classes = []
    for m in _FALLBACK_CLASS.finditer(content):
        name = m.group(1)
        line = _line_of(content, m.start())
        bases = [b.strip() for b in (m.group(2) or "").split(",") if b.strip()]
        classes.append(ClassSkeleton(name=name, line=line, extends=bases[0] if bases else None))
        if not name.startswith("_"):
            exports.append(ExportedSymbol(name=name, kind=SymbolKind.CLASS, line=line))

    exports.sort(key=lambda e: e.line)
    return Skeleton(
        file_path=filepath,
        language="python",
        exports=tuple(exports),
        imports=tuple(imports),
        classes=tuple(classes),
        functions=tuple(functions),
        parse_errors=(error,),
    )


def parse_python_source(filepath: str, content: str) -> Skeleton:
    """Extract a Python skeleton, falling back to regex rules on bad syntax."""
    try:
        module = ast.parse(content, filename=filepath, mode="exec")
    except SyntaxError as e:
        logger.warning(f"Syntax error in {filepath} at line {e.lineno}: {e.msg}")
        return _skeleton_from_regex(filepath, content, f"Syntax error at line {e.lineno}: {e.msg}")
    except (ValueError, RecursionError) as e:
        logger.warning(f"Cannot build AST for {filepath}: {e}")
        return _skeleton_from_regex(filepath, content, f"AST parsing failed: {e}")

    return _skeleton_from_ast(filepath, module)
