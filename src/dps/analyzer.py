# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Front-end contract and DTOs for parsed source declarations."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal, Protocol


DeclarationKind = Literal["class", "interface", "record", "enum"]
Visibility = Literal["public", "protected", "private"]


class UnparseableUnitError(RuntimeError):
    """Represent a source unit that the front end could not parse."""


@dataclass(frozen=True)
class FieldDeclaration:
    """Represent one declared field.

    Attributes:
        name: Field name as written in source.
        declared_type: Declared type text; ``None`` when the front end could not
            determine it.
        mutable: Whether the field can be reassigned after construction.
    """

    name: str
    declared_type: str | None = None
    mutable: bool = True


@dataclass(frozen=True)
class MethodDeclaration:
    """Represent one declared method.

    Attributes:
        name: Method name.
        signature: Declaration text used for display and change detection.
        visibility: Declared or conventional visibility.
        is_static: Whether the method is static or class-level.
        is_accessor: Whether the front end marked it as a property accessor.
        is_abstract: Whether the method has no implementation.
        parameter_types: Declared parameter type texts, excluding the receiver.
        return_type: Declared return type text, if any.
    """

    name: str
    signature: str = ""
    visibility: Visibility = "public"
    is_static: bool = False
    is_accessor: bool = False
    is_abstract: bool = False
    parameter_types: tuple[str, ...] = ()
    return_type: str | None = None


@dataclass(frozen=True)
class TypeDeclaration:
    """Represent one type-like declaration produced by a front end.

    Attributes:
        name: Simple type name.
        kind: Declaration category.
        namespace: Dotted module, package or namespace path; may be empty.
        fields: Declared fields in source order.
        methods: Declared methods in source order.
        bases: Names of declared supertypes.
        value_equality: Whether equality is defined over all fields.
        is_abstract: Whether the type cannot be instantiated directly.
    """

    name: str
    kind: DeclarationKind = "class"
    namespace: str = ""
    fields: tuple[FieldDeclaration, ...] = ()
    methods: tuple[MethodDeclaration, ...] = ()
    bases: tuple[str, ...] = ()
    value_equality: bool = False
    is_abstract: bool = False


@dataclass(frozen=True)
class ParsedUnit:
    """Represent the declarations parsed from one source unit."""

    declarations: tuple[TypeDeclaration, ...] = ()


DeclarationHandle = Callable[[], ParsedUnit]


@dataclass(frozen=True)
class SourceUnit:
    """Represent one source unit handed over by a front end.

    Attributes:
        path: Project-relative source path.
        language: Language tag, e.g. ``python`` or ``java``.
        handle: Callable returning the parsed declarations. Raises
            ``UnparseableUnitError`` when the unit cannot be parsed.
    """

    path: str
    language: str
    handle: DeclarationHandle

    @classmethod
    def from_declarations(
        cls, path: str, language: str, declarations: list[TypeDeclaration]
    ) -> "SourceUnit":
        """Wrap already parsed declarations in a source unit.

        Args:
            path: Project-relative source path.
            language: Language tag.
            declarations: Parsed declarations for this unit.

        Returns:
            Source unit whose handle returns ``declarations``.
        """
        parsed = ParsedUnit(declarations=tuple(declarations))
        return cls(path=path, language=language, handle=lambda: parsed)


class Analyzer(Protocol):
    """Language front-end contract."""

    def discover(self, root_path: Path) -> list[SourceUnit]:
        """Discover source units beneath a project root in a stable order."""
