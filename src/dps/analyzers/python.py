# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Python source front end producing type declarations."""

import ast
import functools
import logging
import os
from dataclasses import dataclass
from pathlib import Path

import pathspec

from dps.analyzer import (
    DeclarationKind,
    FieldDeclaration,
    MethodDeclaration,
    ParsedUnit,
    SourceUnit,
    TypeDeclaration,
    UnparseableUnitError,
    Visibility,
)

logger = logging.getLogger(__name__)

_ENUM_BASES = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"}
_ABSTRACT_BASES = {"ABC", "ABCMeta"}
_INTERFACE_BASES = {"Protocol"}
_RECORD_BASES = {"NamedTuple", "TypedDict"}
_ACCESSOR_DECORATORS = {"property", "cached_property", "setter", "getter", "deleter"}
_STATIC_DECORATORS = {"staticmethod", "classmethod"}
_SKIPPED_DIRS = {".git", "__pycache__", ".venv", ".tox"}


class SourceFilter:
    """Decide which directories and files of a Python project become units.

    Version-control and cache directories are never scanned. Every other
    directory and ``*.py`` file is kept unless a ``.gitignore`` at the root or
    in any subdirectory excludes it.
    """

    def __init__(self, ignored: pathspec.GitIgnoreSpec) -> None:
        self._ignored = ignored

    @classmethod
    def for_root(cls, root_path: Path) -> "SourceFilter":
        """Collect the ``.gitignore`` rules of a project.

        Patterns of nested files are rewritten relative to ``root_path`` so a
        single spec answers for the whole tree.

        Raises:
            OSError: If a .gitignore file cannot be read.
            UnicodeDecodeError: If a .gitignore file is not valid UTF-8.
        """
        patterns: list[str] = []
        for ignore_file in sorted(root_path.rglob(".gitignore")):
            directory = ignore_file.parent.relative_to(root_path).as_posix()
            scope = "" if directory == "." else directory
            patterns.extend(
                _root_relative_pattern(line, scope)
                for line in ignore_file.read_text(encoding="utf-8").splitlines()
            )
        return cls(pathspec.GitIgnoreSpec.from_lines(patterns))

    def keeps_directory(self, relative_path: str) -> bool:
        if relative_path.rsplit("/", 1)[-1] in _SKIPPED_DIRS:
            return False
        return not self._excluded(relative_path, is_dir=True)

    def keeps_module(self, relative_path: str) -> bool:
        return relative_path.endswith(".py") and not self._excluded(
            relative_path, is_dir=False
        )

    def _excluded(self, relative_path: str, is_dir: bool) -> bool:
        posix = relative_path.replace(os.sep, "/").strip("/")
        if not posix:
            return False
        if self._ignored.match_file(posix):
            return True
        return is_dir and self._ignored.match_file(f"{posix}/")


def _root_relative_pattern(line: str, scope: str) -> str:
    """Anchor a pattern from ``scope/.gitignore`` beneath ``scope``.

    Patterns containing a slash are anchored to ``scope``; bare names match at
    any depth below it. Comments, blanks and escaped lines pass through.
    """
    if not scope or not line or line.lstrip().startswith("#"):
        return line
    if line.startswith((r"\!", r"\#")):
        return line
    negated = line.startswith("!")
    pattern = line[1:] if negated else line
    if "/" in pattern.rstrip("/"):
        scoped = f"/{scope}/{pattern.lstrip('/')}"
    else:
        scoped = f"/{scope}/**/{pattern}"
    return f"!{scoped}" if negated else scoped


@dataclass(frozen=True)
class _ClassContext:
    namespace: str
    frozen: bool
    interface: bool


class PythonAnalyzer:
    """Discover Python modules and parse their classes into declarations."""

    def discover(self, root_path: Path) -> list[SourceUnit]:
        """Discover Python files beneath a root path in sorted order.

        Directories and files matched by ``.gitignore`` files are skipped. Each
        unit parses its file lazily when its handle is called.

        Args:
            root_path: Root directory to analyze.

        Returns:
            One source unit per Python file.

        Raises:
            OSError: If the directory tree or .gitignore files cannot be read.
        """
        source_filter = SourceFilter.for_root(root_path)
        units: list[SourceUnit] = []
        for current, dir_names, file_names in os.walk(root_path):
            current_path = Path(current)
            relative_dir = current_path.relative_to(root_path).as_posix()
            prefix = "" if relative_dir == "." else f"{relative_dir}/"
            dir_names[:] = sorted(
                name
                for name in dir_names
                if source_filter.keeps_directory(f"{prefix}{name}")
            )
            for name in sorted(file_names):
                relative_path = f"{prefix}{name}"
                if not source_filter.keeps_module(relative_path):
                    logger.debug(f"Skipping file (file_path={relative_path})")
                    continue
                units.append(
                    SourceUnit(
                        path=relative_path,
                        language="python",
                        handle=functools.partial(
                            self.parse_file, current_path / name, relative_path
                        ),
                    )
                )
        units.sort(key=lambda unit: unit.path)
        logger.info(f"Python discovery completed (path={root_path} units={len(units)})")
        return units

    def parse_file(self, file_path: Path, relative_path: str) -> ParsedUnit:
        """Read and parse one Python file.

        Raises:
            UnparseableUnitError: If the file cannot be read or parsed.
        """
        try:
            source = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise UnparseableUnitError(f"cannot read {relative_path}: {exc}") from exc
        return self.parse_source(source, relative_path)

    def parse_source(self, source: str, relative_path: str) -> ParsedUnit:
        """Parse Python source text into declarations.

        Args:
            source: Module source text.
            relative_path: Project-relative path; determines the namespace.

        Returns:
            Declarations of every class, nested classes included.

        Raises:
            UnparseableUnitError: If the source is not valid Python.
        """
        try:
            tree = ast.parse(source, filename=relative_path)
        except (SyntaxError, ValueError, RecursionError, MemoryError) as exc:
            raise UnparseableUnitError(f"cannot parse {relative_path}: {exc}") from exc
        namespace = _module_name(relative_path)
        declarations: list[TypeDeclaration] = []
        self._collect_classes(tree.body, namespace, declarations)
        return ParsedUnit(declarations=tuple(declarations))

    def _collect_classes(
        self,
        body: list[ast.stmt],
        namespace: str,
        declarations: list[TypeDeclaration],
    ) -> None:
        for node in body:
            if not isinstance(node, ast.ClassDef):
                continue
            declarations.append(self._declaration(node, namespace))
            nested = f"{namespace}.{node.name}" if namespace else node.name
            self._collect_classes(node.body, nested, declarations)

    def _declaration(self, node: ast.ClassDef, namespace: str) -> TypeDeclaration:
        bases = tuple(_base_name(base) for base in node.bases)
        simple_bases = {base.rsplit(".", 1)[-1] for base in bases}
        metaclass = next(
            (
                _base_name(keyword.value)
                for keyword in node.keywords
                if keyword.arg == "metaclass"
            ),
            "",
        )
        dataclass_options = _dataclass_options(node)
        is_dataclass = dataclass_options is not None
        frozen = bool(dataclass_options and dataclass_options.get("frozen", False))

        kind: DeclarationKind = "class"
        if simple_bases & _ENUM_BASES:
            kind = "enum"
        elif simple_bases & _INTERFACE_BASES:
            kind = "interface"
        elif simple_bases & _RECORD_BASES or frozen:
            kind = "record"
        if simple_bases & _RECORD_BASES:
            frozen = True

        context = _ClassContext(
            namespace=namespace, frozen=frozen, interface=kind == "interface"
        )
        methods = [
            self._method(item, context)
            for item in node.body
            if isinstance(item, (ast.FunctionDef, ast.AsyncFunctionDef))
        ]
        fields = [] if kind == "enum" else self._fields(node, context)
        is_abstract = (
            kind == "interface"
            or bool(simple_bases & _ABSTRACT_BASES)
            or metaclass.rsplit(".", 1)[-1] in _ABSTRACT_BASES
            or any(method.is_abstract for method in methods)
        )
        value_equality = (
            (is_dataclass and bool(dataclass_options.get("eq", True)))
            or bool(simple_bases & _RECORD_BASES)
            or any(method.name == "__eq__" for method in methods)
        )
        return TypeDeclaration(
            name=node.name,
            kind=kind,
            namespace=namespace,
            fields=tuple(fields),
            methods=tuple(methods),
            bases=tuple(base for base in bases if base),
            value_equality=value_equality,
            is_abstract=is_abstract,
        )

    def _fields(
        self, node: ast.ClassDef, context: _ClassContext
    ) -> list[FieldDeclaration]:
        fields: dict[str, FieldDeclaration] = {}
        for item in node.body:
            if not isinstance(item, ast.AnnAssign) or not isinstance(
                item.target, ast.Name
            ):
                continue
            annotation = ast.unparse(item.annotation)
            if annotation.startswith(("ClassVar", "typing.ClassVar")):
                continue
            fields.setdefault(
                item.target.id,
                FieldDeclaration(
                    name=item.target.id,
                    declared_type=_strip_final(annotation),
                    mutable=not context.frozen and not _is_final(annotation),
                ),
            )
        for item in node.body:
            if isinstance(item, ast.FunctionDef) and item.name == "__init__":
                for field in _init_fields(item, context):
                    fields.setdefault(field.name, field)
        return list(fields.values())

    def _method(
        self,
        node: ast.FunctionDef | ast.AsyncFunctionDef,
        context: _ClassContext,
    ) -> MethodDeclaration:
        decorators = {_decorator_name(item) for item in node.decorator_list}
        is_static = bool(decorators & _STATIC_DECORATORS)
        arguments = [*node.args.posonlyargs, *node.args.args, *node.args.kwonlyargs]
        if not decorators & {"staticmethod"} and arguments:
            arguments = arguments[1:]
        returns = ast.unparse(node.returns) if node.returns is not None else None
        signature = f"def {node.name}({ast.unparse(node.args)})"
        if returns:
            signature = f"{signature} -> {returns}"
        is_abstract = "abstractmethod" in decorators or (
            context.interface and _has_stub_body(node)
        )
        return MethodDeclaration(
            name=node.name,
            signature=signature,
            visibility=_visibility(node.name),
            is_static=is_static,
            is_accessor=bool(decorators & _ACCESSOR_DECORATORS),
            is_abstract=is_abstract,
            parameter_types=tuple(
                ast.unparse(argument.annotation)
                for argument in arguments
                if argument.annotation is not None
            ),
            return_type=returns,
        )


def _module_name(relative_path: str) -> str:
    parts = Path(relative_path).with_suffix("").parts
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


def _base_name(node: ast.expr) -> str:
    if isinstance(node, ast.Subscript):
        node = node.value
    if isinstance(node, (ast.Name, ast.Attribute)):
        return ast.unparse(node)
    return ""


def _decorator_name(node: ast.expr) -> str:
    if isinstance(node, ast.Call):
        node = node.func
    if isinstance(node, ast.Attribute):
        return node.attr
    if isinstance(node, ast.Name):
        return node.id
    return ""


def _dataclass_options(node: ast.ClassDef) -> dict[str, object] | None:
    """Return the keyword options of a ``@dataclass`` decorator, if present."""
    for decorator in node.decorator_list:
        if _decorator_name(decorator) != "dataclass":
            continue
        if not isinstance(decorator, ast.Call):
            return {}
        return {
            keyword.arg: keyword.value.value
            for keyword in decorator.keywords
            if keyword.arg is not None and isinstance(keyword.value, ast.Constant)
        }
    return None


def _init_fields(
    node: ast.FunctionDef, context: _ClassContext
) -> list[FieldDeclaration]:
    """Collect ``self.<name>`` assignments of an initializer."""
    parameter_types = {
        argument.arg: ast.unparse(argument.annotation)
        for argument in [*node.args.args, *node.args.kwonlyargs]
        if argument.annotation is not None
    }
    fields: list[FieldDeclaration] = []
    for statement in ast.walk(node):
        annotation: str | None = None
        if isinstance(statement, ast.AnnAssign):
            targets = [statement.target]
            annotation = ast.unparse(statement.annotation)
            value = statement.value
        elif isinstance(statement, ast.Assign):
            targets = statement.targets
            value = statement.value
        else:
            continue
        for target in targets:
            if not (
                isinstance(target, ast.Attribute)
                and isinstance(target.value, ast.Name)
                and target.value.id == "self"
            ):
                continue
            declared_type = annotation
            if declared_type is None and isinstance(value, ast.Name):
                declared_type = parameter_types.get(value.id)
            fields.append(
                FieldDeclaration(
                    name=target.attr,
                    declared_type=_strip_final(declared_type) if declared_type else None,
                    mutable=not context.frozen
                    and not (declared_type and _is_final(declared_type)),
                )
            )
    return fields


def _is_final(annotation: str) -> bool:
    return annotation.startswith(("Final", "typing.Final"))


def _strip_final(annotation: str) -> str:
    for prefix in ("typing.Final[", "Final["):
        if annotation.startswith(prefix) and annotation.endswith("]"):
            return annotation[len(prefix) : -1]
    return annotation


def _visibility(name: str) -> Visibility:
    if name.startswith("__") and name.endswith("__"):
        return "public"
    if name.startswith("__"):
        return "private"
    if name.startswith("_"):
        return "protected"
    return "public"


def _has_stub_body(node: ast.FunctionDef | ast.AsyncFunctionDef) -> bool:
    """Return whether a method body holds only a docstring, ``pass`` or ``...``."""
    for statement in node.body:
        if isinstance(statement, ast.Pass):
            continue
        if isinstance(statement, ast.Expr) and isinstance(statement.value, ast.Constant):
            continue
        return False
    return True
