# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Pure shape helpers over symbols and graphs.

Rules and anti-pattern checks are written against these helpers so that the
same notion of "identity field", "accessor" or "stateless" is applied
everywhere. Every helper is a pure function of its arguments.
"""

import re
from dataclasses import dataclass

from dps.analyzer import FieldDeclaration, MethodDeclaration
from dps.model import Cardinality, Symbol, SymbolGraph

PRIMITIVE_TYPES: frozenset[str] = frozenset(
    {
        "str",
        "string",
        "int",
        "integer",
        "long",
        "short",
        "float",
        "double",
        "decimal",
        "bigdecimal",
        "biginteger",
        "number",
        "bool",
        "boolean",
        "bytes",
        "char",
        "date",
        "datetime",
        "time",
        "instant",
        "localdate",
        "localdatetime",
    }
)
COLLECTION_TYPES: frozenset[str] = frozenset(
    {
        "list",
        "set",
        "frozenset",
        "tuple",
        "sequence",
        "mutablesequence",
        "iterable",
        "iterator",
        "collection",
        "array",
        "arraylist",
        "linkedlist",
        "hashset",
        "dict",
        "mapping",
        "mutablemapping",
        "map",
        "hashmap",
        "ilist",
        "ienumerable",
        "icollection",
        "vec",
    }
)
WRAPPER_TYPES: frozenset[str] = frozenset(
    {
        "optional",
        "union",
        "final",
        "classvar",
        "annotated",
        "nullable",
        "none",
        "null",
        "readonly",
        "any",
        "object",
        "void",
    }
)
IDENTITY_WORDS: frozenset[str] = frozenset({"id", "uuid", "guid", "identifier"})
ACCESSOR_VERBS: frozenset[str] = frozenset({"get", "set", "is", "has"})
REPOSITORY_VERBS: frozenset[str] = frozenset(
    {
        "save",
        "add",
        "find",
        "get",
        "load",
        "remove",
        "delete",
        "store",
        "put",
        "exists",
        "count",
        "next",
    }
)
CONSTRUCTOR_NAMES: frozenset[str] = frozenset(
    {"__init__", "__new__", "__post_init__", "constructor", "<init>", "init"}
)
COLLABORATOR_SUFFIXES: tuple[str, ...] = (
    "repository",
    "repo",
    "port",
    "gateway",
    "client",
    "service",
    "policy",
    "factory",
    "publisher",
    "provider",
    "clock",
)

_WORD_PATTERN = re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|\d+")
_IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][\w.]*")


@dataclass(frozen=True)
class TypeReference:
    """Represent the non-primitive names mentioned by a declared type."""

    names: tuple[str, ...]
    cardinality: Cardinality


def split_words(name: str) -> list[str]:
    """Split a camelCase, PascalCase or snake_case name into lowercase words."""
    words: list[str] = []
    for part in name.split("_"):
        words.extend(match.lower() for match in _WORD_PATTERN.findall(part))
    return words


def normalize_name(name: str) -> str:
    """Return a case and separator insensitive form of a name."""
    return "".join(split_words(name))


def _simple(name: str) -> str:
    return name.rsplit(".", 1)[-1]


def parse_type_reference(declared_type: str | None) -> TypeReference:
    """Extract referenced type names and cardinality from declared type text.

    Understands ``list[X]``, ``List<X>``, ``X[]``, ``Optional[X]``,
    ``X | None`` and ``dict[str, X]`` style declarations.

    Args:
        declared_type: Declared type text, or ``None``.

    Returns:
        Referenced non-primitive names in order of appearance.
    """
    if not declared_type:
        return TypeReference(names=(), cardinality="one")
    cardinality: Cardinality = "many" if "[]" in declared_type else "one"
    names: list[str] = []
    for identifier in _IDENTIFIER_PATTERN.findall(declared_type):
        lowered = _simple(identifier).lower()
        if lowered in COLLECTION_TYPES:
            cardinality = "many"
            continue
        if lowered in WRAPPER_TYPES or lowered in PRIMITIVE_TYPES:
            continue
        if identifier not in names:
            names.append(identifier)
    return TypeReference(names=tuple(names), cardinality=cardinality)


def is_primitive_type(declared_type: str | None) -> bool:
    """Return whether a declared type is a single primitive, optionally nullable."""
    if not declared_type:
        return False
    identifiers = [
        _simple(identifier).lower()
        for identifier in _IDENTIFIER_PATTERN.findall(declared_type)
    ]
    remaining = [name for name in identifiers if name not in WRAPPER_TYPES]
    return len(remaining) == 1 and remaining[0] in PRIMITIVE_TYPES


def resolve_type(
    graph: SymbolGraph, symbol: Symbol, declared_type: str | None
) -> tuple[str, ...]:
    """Resolve the symbols referenced by a declared type, excluding ``symbol``."""
    resolved: list[str] = []
    for name in parse_type_reference(declared_type).names:
        target_id = graph.lookup(name, near=symbol)
        if target_id is None or target_id == symbol.symbol_id:
            continue
        if target_id not in resolved:
            resolved.append(target_id)
    return tuple(resolved)


def is_own_identity_field(symbol: Symbol, field: FieldDeclaration) -> bool:
    """Return whether a field carries the symbol's own identity."""
    words = split_words(field.name)
    if not words:
        return False
    if len(words) == 1 and words[0] in IDENTITY_WORDS:
        return True
    own = normalize_name(symbol.name)
    if words[-1] in IDENTITY_WORDS and "".join(words[:-1]) == own:
        return True
    if field.declared_type:
        type_names = parse_type_reference(field.declared_type).names
        if len(type_names) == 1 and normalize_name(_simple(type_names[0])) == own + "id":
            return True
    return False


def identity_fields(symbol: Symbol) -> tuple[FieldDeclaration, ...]:
    """Return the fields that carry the symbol's own identity."""
    return tuple(field for field in symbol.fields if is_own_identity_field(symbol, field))


def has_identity(symbol: Symbol) -> bool:
    """Return whether the symbol declares an identity field."""
    return bool(identity_fields(symbol))


def identity_reference_target(symbol: Symbol, field: FieldDeclaration) -> str | None:
    """Return the normalized name a field refers to by identity, if any.

    ``orderId``, ``order_id`` and ``customerID`` refer to ``order`` and
    ``customer``. A field typed ``OrderId`` refers to ``order`` as well.
    """
    if is_own_identity_field(symbol, field):
        return None
    words = split_words(field.name)
    if len(words) >= 2 and words[-1] in IDENTITY_WORDS:
        return "".join(words[:-1])
    type_names = parse_type_reference(field.declared_type).names
    if len(type_names) == 1:
        type_words = split_words(_simple(type_names[0]))
        if len(type_words) >= 2 and type_words[-1] in IDENTITY_WORDS:
            return "".join(type_words[:-1])
    return None


def is_constructor(symbol: Symbol, method: MethodDeclaration) -> bool:
    """Return whether a method is a constructor or initializer."""
    return method.name in CONSTRUCTOR_NAMES or method.name == symbol.name


def is_dunder(name: str) -> bool:
    """Return whether a name is a Python special method name."""
    return name.startswith("__") and name.endswith("__") and len(name) > 4


def is_accessor(method: MethodDeclaration) -> bool:
    """Return whether a method is a simple getter, setter or predicate accessor."""
    if method.is_accessor:
        return True
    words = split_words(method.name)
    return len(words) >= 2 and words[0] in ACCESSOR_VERBS


def behavioral_methods(symbol: Symbol) -> tuple[MethodDeclaration, ...]:
    """Return methods that are neither constructors, special methods nor accessors."""
    return tuple(
        method
        for method in symbol.methods
        if not is_dunder(method.name)
        and not is_constructor(symbol, method)
        and not is_accessor(method)
    )


def accessor_methods(symbol: Symbol) -> tuple[MethodDeclaration, ...]:
    """Return accessor methods in declaration order."""
    return tuple(
        method
        for method in symbol.methods
        if not is_dunder(method.name)
        and not is_constructor(symbol, method)
        and is_accessor(method)
    )


def leading_verb(name: str) -> str:
    """Return the first word of a method name."""
    words = split_words(name)
    return words[0] if words else name.lower()


def name_ends_with(symbol: Symbol, *suffixes: str) -> bool:
    """Return whether the symbol name ends with one of the given suffixes."""
    lowered = symbol.name.lower()
    return any(
        lowered.endswith(suffix.lower()) and lowered != suffix.lower()
        for suffix in suffixes
    )


def is_collaborator_type(declared_type: str | None) -> bool:
    """Return whether a field type looks like an injected collaborator."""
    for name in parse_type_reference(declared_type).names:
        if _simple(name).lower().endswith(COLLABORATOR_SUFFIXES):
            return True
    return False


def is_stateless(symbol: Symbol) -> bool:
    """Return whether a symbol holds no identity and no mutable domain state."""
    if has_identity(symbol):
        return False
    return all(
        is_collaborator_type(field.declared_type) or not field.mutable
        for field in symbol.fields
    )


def all_fields_immutable(symbol: Symbol) -> bool:
    """Return whether the symbol has fields and none of them is mutable."""
    return bool(symbol.fields) and all(not field.mutable for field in symbol.fields)


def is_interface_like(symbol: Symbol) -> bool:
    """Return whether the symbol is an interface, protocol or fully abstract type."""
    if symbol.kind == "interface":
        return True
    if not symbol.is_abstract:
        return False
    methods = [method for method in symbol.methods if not is_dunder(method.name)]
    return bool(methods) and all(method.is_abstract for method in methods)


def method_references(
    graph: SymbolGraph, symbol: Symbol, method: MethodDeclaration
) -> tuple[str, ...]:
    """Return symbols referenced by a method's parameter and return types."""
    resolved: list[str] = []
    for declared_type in (*method.parameter_types, method.return_type):
        for target_id in resolve_type(graph, symbol, declared_type):
            if target_id not in resolved:
                resolved.append(target_id)
    return tuple(resolved)


def is_aggregate_shaped(graph: SymbolGraph, symbol: Symbol) -> bool:
    """Return whether a symbol structurally looks like an aggregate root.

    An aggregate-shaped symbol has identity, is not composed by another symbol
    and either composes children or carries behaviour.
    """
    if not has_identity(symbol) or is_interface_like(symbol):
        return False
    if graph.incoming(symbol.symbol_id, "composition"):
        return False
    return bool(graph.outgoing(symbol.symbol_id, "composition")) or bool(
        behavioral_methods(symbol)
    )


def repository_targets(graph: SymbolGraph, symbol: Symbol) -> tuple[str, ...]:
    """Return the identity-bearing symbols a repository-shaped symbol manages.

    Targets come from the types used by its collection-like methods and from
    its name prefix (``OrderRepository`` manages ``Order``).
    """
    targets: list[str] = []
    for method in symbol.methods:
        if leading_verb(method.name) not in REPOSITORY_VERBS:
            continue
        for target_id in method_references(graph, symbol, method):
            if has_identity(graph.get(target_id)) and target_id not in targets:
                targets.append(target_id)
    for suffix in ("Repository", "Repo"):
        if symbol.name.endswith(suffix) and len(symbol.name) > len(suffix):
            target_id = graph.lookup(symbol.name[: -len(suffix)], near=symbol)
            if (
                target_id is not None
                and target_id != symbol.symbol_id
                and target_id not in targets
            ):
                targets.append(target_id)
    return tuple(sorted(targets))
