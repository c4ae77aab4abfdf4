# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Domain models for symbol graphs and analysis artifacts."""

from dataclasses import dataclass
from typing import Iterable, Literal

from dps.analyzer import DeclarationKind, FieldDeclaration, MethodDeclaration

Role = Literal[
    "aggregate_root",
    "entity",
    "value_object",
    "domain_service",
    "domain_event",
    "repository_interface",
    "driven_port",
    "factory",
    "specification",
    "policy",
]
Level = Literal["high", "medium", "low"]
RelationshipKind = Literal[
    "composition",
    "association_by_reference",
    "association_by_identity",
    "inheritance",
]
Cardinality = Literal["one", "many"]
ChangeKind = Literal["added", "modified", "removed"]
SkipKind = Literal["unparseable", "timeout"]

# Fixed order used for tie-breaking and for grouping rules.
ROLES: tuple[Role, ...] = (
    "aggregate_root",
    "entity",
    "value_object",
    "domain_service",
    "domain_event",
    "repository_interface",
    "driven_port",
    "factory",
    "specification",
    "policy",
)
LEVELS: tuple[Level, ...] = ("high", "medium", "low")


@dataclass(frozen=True)
class Symbol:
    """Represent one normalized type-like declaration.

    Attributes:
        symbol_id: Stable identity, ``<origin_path>::<qualified_name>``.
        name: Simple type name.
        qualified_name: Namespace-qualified name.
        namespace: Dotted namespace; may be empty.
        kind: Declaration category.
        origin_path: Path of the source unit the symbol came from.
        language: Language tag of the origin unit.
        fields: Declared fields.
        methods: Declared methods.
        bases: Declared supertype names.
        value_equality: Whether equality is defined over all fields.
        is_abstract: Whether the type is abstract or an interface.
    """

    symbol_id: str
    name: str
    qualified_name: str
    namespace: str
    kind: DeclarationKind
    origin_path: str
    language: str
    fields: tuple[FieldDeclaration, ...] = ()
    methods: tuple[MethodDeclaration, ...] = ()
    bases: tuple[str, ...] = ()
    value_equality: bool = False
    is_abstract: bool = False


def make_symbol_id(origin_path: str, qualified_name: str) -> str:
    """Build the stable symbol identity from origin path and qualified name."""
    return f"{origin_path}::{qualified_name}"


@dataclass(frozen=True)
class Relationship:
    """Represent one directed edge between two symbols addressed by id."""

    source_id: str
    target_id: str
    kind: RelationshipKind
    cardinality: Cardinality = "one"
    via: str = ""


def _relationship_key(relationship: Relationship) -> tuple[str, str, str, str, str]:
    return (
        relationship.source_id,
        relationship.target_id,
        relationship.kind,
        relationship.via,
        relationship.cardinality,
    )


class SymbolGraph:
    """Immutable arena of symbols plus id-pair relationship edges."""

    def __init__(
        self,
        symbols: Iterable[Symbol] = (),
        relationships: Iterable[Relationship] = (),
    ) -> None:
        """Index symbols and edges.

        Args:
            symbols: Symbols to store; ids must be unique.
            relationships: Edges whose endpoints must be stored symbols.

        Raises:
            ValueError: If ids are duplicated or an edge points outside the graph.
        """
        ordered = tuple(sorted(symbols, key=lambda symbol: symbol.symbol_id))
        by_id = {symbol.symbol_id: symbol for symbol in ordered}
        if len(by_id) != len(ordered):
            raise ValueError("SymbolGraph received duplicate symbol ids.")
        edges = tuple(sorted(set(relationships), key=_relationship_key))
        for edge in edges:
            if edge.source_id not in by_id or edge.target_id not in by_id:
                raise ValueError(
                    f"Relationship endpoint is not in the graph: "
                    f"{edge.source_id} -> {edge.target_id}"
                )
        self._symbols = ordered
        self._by_id = by_id
        self._relationships = edges

        outgoing: dict[str, list[Relationship]] = {}
        incoming: dict[str, list[Relationship]] = {}
        for edge in edges:
            outgoing.setdefault(edge.source_id, []).append(edge)
            incoming.setdefault(edge.target_id, []).append(edge)
        self._outgoing = {key: tuple(value) for key, value in outgoing.items()}
        self._incoming = {key: tuple(value) for key, value in incoming.items()}

        by_name: dict[str, list[str]] = {}
        by_qualified: dict[str, list[str]] = {}
        for symbol in ordered:
            by_name.setdefault(symbol.name, []).append(symbol.symbol_id)
            by_qualified.setdefault(symbol.qualified_name, []).append(symbol.symbol_id)
        self._by_name = {key: tuple(value) for key, value in by_name.items()}
        self._by_qualified = {
            key: tuple(value) for key, value in by_qualified.items()
        }

    @property
    def symbols(self) -> tuple[Symbol, ...]:
        """Return symbols ordered by id."""
        return self._symbols

    @property
    def relationships(self) -> tuple[Relationship, ...]:
        """Return edges in deterministic order."""
        return self._relationships

    def __len__(self) -> int:
        return len(self._symbols)

    def __contains__(self, symbol_id: object) -> bool:
        return symbol_id in self._by_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SymbolGraph):
            return NotImplemented
        return (
            self._symbols == other._symbols
            and self._relationships == other._relationships
        )

    def __hash__(self) -> int:
        return hash((self._symbols, self._relationships))

    def __repr__(self) -> str:
        return (
            f"SymbolGraph(symbols={len(self._symbols)}, "
            f"relationships={len(self._relationships)})"
        )

    def get(self, symbol_id: str) -> Symbol:
        """Return a symbol by id.

        Raises:
            KeyError: If the id is unknown.
        """
        return self._by_id[symbol_id]

    def outgoing(
        self, symbol_id: str, kind: RelationshipKind | None = None
    ) -> tuple[Relationship, ...]:
        """Return edges leaving a symbol, optionally filtered by kind."""
        edges = self._outgoing.get(symbol_id, ())
        if kind is None:
            return edges
        return tuple(edge for edge in edges if edge.kind == kind)

    def incoming(
        self, symbol_id: str, kind: RelationshipKind | None = None
    ) -> tuple[Relationship, ...]:
        """Return edges entering a symbol, optionally filtered by kind."""
        edges = self._incoming.get(symbol_id, ())
        if kind is None:
            return edges
        return tuple(edge for edge in edges if edge.kind == kind)

    def lookup(self, name: str, near: Symbol | None = None) -> str | None:
        """Resolve a type name to a symbol id.

        Qualified names win over simple names. Among several simple-name matches,
        a symbol from the same origin path, then the same namespace as ``near``
        is preferred; otherwise the lowest id wins.

        Args:
            name: Simple or qualified type name.
            near: Symbol from whose point of view the name is resolved.

        Returns:
            Matching symbol id, or ``None`` if the name is not in the graph.
        """
        qualified = self._by_qualified.get(name)
        if qualified:
            return qualified[0]
        simple = name.rsplit(".", 1)[-1]
        candidates = self._by_name.get(simple, ())
        if not candidates:
            return None
        if near is not None and len(candidates) > 1:
            for symbol_id in candidates:
                if self._by_id[symbol_id].origin_path == near.origin_path:
                    return symbol_id
            for symbol_id in candidates:
                if self._by_id[symbol_id].namespace == near.namespace:
                    return symbol_id
        return candidates[0]


@dataclass(frozen=True)
class Alternate:
    """Represent a runner-up role close to the winning vote."""

    role: Role
    score: float


@dataclass(frozen=True)
class Classification:
    """Represent the assigned role of one symbol.

    Attributes:
        symbol_id: Classified symbol.
        role: Primary role.
        confidence: Discretized confidence level.
        score: Weighted vote of the primary role.
        support: Share of the primary role in all votes, in [0.0, 1.0].
        alternates: Roles within the ambiguity margin of the winner.
        evidence: Ids of the rules that voted for the primary role.
        ambiguous: Whether another role tied with the winner.
        rationale: Human-readable explanation citing rule ids.
    """

    symbol_id: str
    role: Role
    confidence: Level
    score: float
    support: float = 1.0
    alternates: tuple[Alternate, ...] = ()
    evidence: tuple[str, ...] = ()
    ambiguous: bool = False
    rationale: str = ""


@dataclass(frozen=True)
class Finding:
    """Represent one detected anti-pattern.

    Attributes:
        anti_pattern: Anti-pattern identifier, e.g. ``anemic_model``.
        rule_id: Detector rule that fired.
        severity: Static severity of the rule.
        symbol_ids: Symbols involved, in deterministic order.
        evidence: Field, method and relationship facts justifying the flag.
        rationale: Human-readable explanation citing the rule id.
    """

    anti_pattern: str
    rule_id: str
    severity: Level
    symbol_ids: tuple[str, ...]
    evidence: tuple[str, ...] = ()
    rationale: str = ""


@dataclass(frozen=True)
class SkippedUnit:
    """Represent a source unit excluded from the graph."""

    path: str
    kind: SkipKind
    reason: str


@dataclass(frozen=True)
class StructuralDiff:
    """Represent exactly which parts of a symbol changed between revisions.

    ``shape_changed`` names the declaration attributes (``kind``, ``bases``,
    ``value_equality``, ``is_abstract``) that differ. ``evidence_added`` and
    ``evidence_removed`` hold rule ids that started or stopped supporting the
    primary role.
    """

    fields_added: tuple[str, ...] = ()
    fields_removed: tuple[str, ...] = ()
    fields_changed: tuple[str, ...] = ()
    methods_added: tuple[str, ...] = ()
    methods_removed: tuple[str, ...] = ()
    methods_changed: tuple[str, ...] = ()
    relationships_added: tuple[str, ...] = ()
    relationships_removed: tuple[str, ...] = ()
    shape_changed: tuple[str, ...] = ()
    evidence_added: tuple[str, ...] = ()
    evidence_removed: tuple[str, ...] = ()
    role_changed: bool = False
    confidence_changed: bool = False

    @property
    def is_empty(self) -> bool:
        """Return whether no structural or classification change was recorded."""
        return not (
            self.fields_added
            or self.fields_removed
            or self.fields_changed
            or self.methods_added
            or self.methods_removed
            or self.methods_changed
            or self.relationships_added
            or self.relationships_removed
            or self.shape_changed
            or self.evidence_added
            or self.evidence_removed
            or self.role_changed
            or self.confidence_changed
        )


@dataclass(frozen=True)
class ChangeRecord:
    """Represent one symbol-level delta between a baseline and the current run."""

    symbol_id: str
    change_kind: ChangeKind
    prior: Classification | None = None
    current: Classification | None = None
    diff: StructuralDiff | None = None
    prior_symbol_id: str | None = None


@dataclass(frozen=True)
class RenameHint:
    """Represent an advisory pairing of a removed and an added symbol."""

    removed_id: str
    added_id: str
    similarity: float
