# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Heuristic rule registry for tactical-design role classification."""

import hashlib
import json
import logging
import math
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable, Iterator, Mapping

from dps.analyzer import FieldDeclaration, MethodDeclaration
from dps.model import ROLES, Role, Symbol, SymbolGraph, make_symbol_id
from dps.shapes import (
    REPOSITORY_VERBS,
    all_fields_immutable,
    behavioral_methods,
    has_identity,
    is_aggregate_shaped,
    is_interface_like,
    is_own_identity_field,
    is_stateless,
    leading_verb,
    method_references,
    name_ends_with,
    normalize_name,
    repository_targets,
    resolve_type,
    split_words,
)

logger = logging.getLogger(__name__)

Predicate = Callable[[Symbol, SymbolGraph], float]

DEFAULT_REGISTRY_VERSION: str = "2026.1"
_RULE_ID_PATTERN = re.compile(r"^[A-Z]{2}-\d{3}$")


class RuleEvaluationError(RuntimeError):
    """Represent an invalid rule or a rule that failed during evaluation."""

    def __init__(self, message: str, rule_id: str | None = None) -> None:
        super().__init__(message if rule_id is None else f"{rule_id}: {message}")
        self.rule_id = rule_id


@dataclass(frozen=True)
class RuleDefinition:
    """Represent one weighted classification predicate.

    Attributes:
        rule_id: Stable rule identifier, e.g. ``AR-001``.
        role: Role the rule votes for.
        predicate: Pure function returning a match score in [0.0, 1.0].
        weight: Vote weight applied to the match score.
        description: Short statement of what the rule looks for.
    """

    rule_id: str
    role: Role
    predicate: Predicate
    weight: float
    description: str


def evaluate_rule(rule: RuleDefinition, symbol: Symbol, graph: SymbolGraph) -> float:
    """Evaluate one rule and validate its result.

    Args:
        rule: Rule to evaluate.
        symbol: Symbol under classification.
        graph: Read-only graph snapshot.

    Returns:
        Match score in [0.0, 1.0].

    Raises:
        RuleEvaluationError: If the predicate raises or returns an invalid score.
    """
    try:
        result = rule.predicate(symbol, graph)
    except Exception as exc:
        raise RuleEvaluationError(
            f"predicate raised {type(exc).__name__} for {symbol.symbol_id}: {exc}",
            rule_id=rule.rule_id,
        ) from exc
    if isinstance(result, bool):
        return 1.0 if result else 0.0
    if not isinstance(result, (int, float)) or not math.isfinite(result):
        raise RuleEvaluationError(
            f"predicate returned non-numeric score {result!r}", rule_id=rule.rule_id
        )
    if result < 0.0 or result > 1.0:
        raise RuleEvaluationError(
            f"predicate returned score {result} outside [0.0, 1.0]",
            rule_id=rule.rule_id,
        )
    return float(result)


def _sample_graph() -> tuple[Symbol, SymbolGraph]:
    """Build the synthetic symbol every predicate is checked against at load."""
    owner = Symbol(
        symbol_id=make_symbol_id("<sample>", "sample.Sample"),
        name="Sample",
        qualified_name="sample.Sample",
        namespace="sample",
        kind="class",
        origin_path="<sample>",
        language="sample",
        fields=(
            FieldDeclaration(name="id", declared_type="str", mutable=False),
            FieldDeclaration(name="parts", declared_type="list[SamplePart]"),
        ),
        methods=(
            MethodDeclaration(
                name="apply",
                signature="apply(part: SamplePart) -> None",
                parameter_types=("SamplePart",),
                return_type="None",
            ),
        ),
    )
    part = Symbol(
        symbol_id=make_symbol_id("<sample>", "sample.SamplePart"),
        name="SamplePart",
        qualified_name="sample.SamplePart",
        namespace="sample",
        kind="record",
        origin_path="<sample>",
        language="sample",
        fields=(FieldDeclaration(name="value", declared_type="int", mutable=False),),
        value_equality=True,
    )
    return owner, SymbolGraph([owner, part])


class RuleRegistry:
    """Ordered, immutable and versioned collection of rule definitions."""

    def __init__(self, rules: Iterable[RuleDefinition], version: str) -> None:
        """Validate and store rules.

        Args:
            rules: Rule definitions in evaluation order.
            version: Registry version recorded in reports and baselines.

        Raises:
            RuleEvaluationError: If any rule is malformed.
        """
        ordered = tuple(rules)
        if not version or not isinstance(version, str):
            raise RuleEvaluationError("registry version must be a non-empty string")
        if not ordered:
            raise RuleEvaluationError("registry must contain at least one rule")
        seen: set[str] = set()
        sample, sample_graph = _sample_graph()
        for rule in ordered:
            _validate_rule(rule, seen)
            seen.add(rule.rule_id)
            evaluate_rule(rule, sample, sample_graph)
        self._version = version
        self._rules = tuple(
            sorted(ordered, key=lambda rule: (ROLES.index(rule.role), rule.rule_id))
        )
        self._by_id = {rule.rule_id: rule for rule in self._rules}
        digest = hashlib.sha256(version.encode("utf-8"))
        for rule in self._rules:
            digest.update(f"|{rule.rule_id}:{rule.role}:{rule.weight!r}".encode("utf-8"))
        self._fingerprint = digest.hexdigest()
        logger.debug(
            f"Rule registry loaded (version={version} rules={len(self._rules)})"
        )

    @property
    def version(self) -> str:
        """Return the registry version."""
        return self._version

    @property
    def fingerprint(self) -> str:
        """Return a digest over version, rule ids, roles and weights."""
        return self._fingerprint

    @property
    def rules(self) -> tuple[RuleDefinition, ...]:
        """Return rules grouped by role in fixed role order."""
        return self._rules

    def __iter__(self) -> Iterator[RuleDefinition]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def get(self, rule_id: str) -> RuleDefinition:
        """Return a rule by id.

        Raises:
            KeyError: If the id is unknown.
        """
        return self._by_id[rule_id]

    def rules_for(self, role: Role) -> tuple[RuleDefinition, ...]:
        """Return the rules voting for one role."""
        return tuple(rule for rule in self._rules if rule.role == role)

    def with_overrides(
        self,
        weights: Mapping[str, float] | None = None,
        disabled: Iterable[str] = (),
        version: str | None = None,
    ) -> "RuleRegistry":
        """Return a new registry with reweighted or disabled rules.

        Args:
            weights: New weights keyed by rule id.
            disabled: Rule ids to drop.
            version: Version of the new registry; derived when omitted.

        Returns:
            Validated registry.

        Raises:
            RuleEvaluationError: If an id is unknown or a weight is invalid.
        """
        weights = dict(weights or {})
        disabled_ids = set(disabled)
        unknown = sorted((set(weights) | disabled_ids) - set(self._by_id))
        if unknown:
            raise RuleEvaluationError(
                f"overrides reference unknown rules: {', '.join(unknown)}"
            )
        rules = [
            replace(rule, weight=weights[rule.rule_id])
            if rule.rule_id in weights
            else rule
            for rule in self._rules
            if rule.rule_id not in disabled_ids
        ]
        return RuleRegistry(rules, version=version or f"{self._version}+custom")


def _validate_rule(rule: RuleDefinition, seen: set[str]) -> None:
    """Validate one rule definition.

    Raises:
        RuleEvaluationError: If the rule is malformed.
    """
    if not isinstance(rule, RuleDefinition):
        raise RuleEvaluationError(f"not a RuleDefinition: {rule!r}")
    if not isinstance(rule.rule_id, str) or not _RULE_ID_PATTERN.match(rule.rule_id):
        raise RuleEvaluationError(f"invalid rule id {rule.rule_id!r}")
    if rule.rule_id in seen:
        raise RuleEvaluationError("duplicate rule id", rule_id=rule.rule_id)
    if rule.role not in ROLES:
        raise RuleEvaluationError(f"unknown role {rule.role!r}", rule_id=rule.rule_id)
    if (
        isinstance(rule.weight, bool)
        or not isinstance(rule.weight, (int, float))
        or not math.isfinite(rule.weight)
        or rule.weight <= 0
    ):
        raise RuleEvaluationError(
            f"weight must be a finite positive number, got {rule.weight!r}",
            rule_id=rule.rule_id,
        )
    if not callable(rule.predicate):
        raise RuleEvaluationError("predicate is not callable", rule_id=rule.rule_id)
    if not rule.description or not rule.description.strip():
        raise RuleEvaluationError("description must not be empty", rule_id=rule.rule_id)


def load_rule_overrides(registry: RuleRegistry, path: Path) -> RuleRegistry:
    """Apply a JSON overrides document to a registry.

    The document has the shape
    ``{"version": "...", "weights": {"AR-001": 2.5}, "disabled": ["PO-002"]}``;
    every key is optional.

    Args:
        registry: Base registry.
        path: JSON overrides file.

    Returns:
        New validated registry.

    Raises:
        OSError: If the file cannot be read.
        RuleEvaluationError: If the document is malformed.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise RuleEvaluationError(f"rule overrides are not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuleEvaluationError("rule overrides must be a JSON object")
    unknown_keys = sorted(set(payload) - {"version", "weights", "disabled"})
    if unknown_keys:
        raise RuleEvaluationError(
            f"unknown rule override keys: {', '.join(unknown_keys)}"
        )
    weights = payload.get("weights", {})
    disabled = payload.get("disabled", [])
    version = payload.get("version")
    if not isinstance(weights, dict):
        raise RuleEvaluationError("'weights' must be an object")
    if not isinstance(disabled, list) or not all(
        isinstance(item, str) for item in disabled
    ):
        raise RuleEvaluationError("'disabled' must be a list of rule ids")
    if version is not None and not isinstance(version, str):
        raise RuleEvaluationError("'version' must be a string")
    return registry.with_overrides(weights=weights, disabled=disabled, version=version)


# Aggregate root


def _owns_children_with_behaviour(symbol: Symbol, graph: SymbolGraph) -> bool:
    return (
        has_identity(symbol)
        and bool(graph.outgoing(symbol.symbol_id, "composition"))
        and bool(behavioral_methods(symbol))
    )


def _unowned_with_behaviour(symbol: Symbol, graph: SymbolGraph) -> bool:
    return is_aggregate_shaped(graph, symbol) and len(behavioral_methods(symbol)) >= 2


def _managed_by_repository(symbol: Symbol, graph: SymbolGraph) -> bool:
    if not has_identity(symbol):
        return False
    for other in graph.symbols:
        if other.symbol_id == symbol.symbol_id or not _is_repository_shaped(other):
            continue
        if symbol.symbol_id in repository_targets(graph, other):
            return True
    return False


def _referenced_by_identity(symbol: Symbol, graph: SymbolGraph) -> float:
    if not has_identity(symbol) or graph.incoming(symbol.symbol_id, "composition"):
        return 0.0
    sources = {
        edge.source_id
        for edge in graph.incoming(symbol.symbol_id, "association_by_identity")
    }
    return min(1.0, len(sources) / 2)


def _extends_aggregate_base(symbol: Symbol, graph: SymbolGraph) -> bool:
    return _base_ends_with(symbol, "AggregateRoot", "Aggregate")


# Entity


def _identity_with_mutable_state(symbol: Symbol, graph: SymbolGraph) -> bool:
    return has_identity(symbol) and any(
        field.mutable and not is_own_identity_field(symbol, field)
        for field in symbol.fields
    )


def _composed_identity(symbol: Symbol, graph: SymbolGraph) -> bool:
    return has_identity(symbol) and bool(
        graph.incoming(symbol.symbol_id, "composition")
    )


def _extends_entity_base(symbol: Symbol, graph: SymbolGraph) -> bool:
    return _base_ends_with(symbol, "Entity")


# Value object


def _immutable_with_value_equality(symbol: Symbol, graph: SymbolGraph) -> bool:
    return (
        not has_identity(symbol)
        and all_fields_immutable(symbol)
        and symbol.value_equality
        and not _event_shaped(symbol)
    )


def _immutable_without_identity(symbol: Symbol, graph: SymbolGraph) -> bool:
    return (
        not has_identity(symbol)
        and all_fields_immutable(symbol)
        and not is_interface_like(symbol)
        and not _event_shaped(symbol)
    )


_VALUE_SUFFIXES: tuple[str, ...] = (
    "Id",
    "Money",
    "Amount",
    "Address",
    "Range",
    "Quantity",
    "Price",
    "Email",
    "Period",
    "Coordinates",
)


def _value_like_name(symbol: Symbol, graph: SymbolGraph) -> bool:
    return (
        not has_identity(symbol)
        and not is_interface_like(symbol)
        and (name_ends_with(symbol, *_VALUE_SUFFIXES) or symbol.name in _VALUE_SUFFIXES)
    )


def _extends_value_base(symbol: Symbol, graph: SymbolGraph) -> bool:
    return _base_ends_with(symbol, "ValueObject", "Value")


# Domain service


def _spans_aggregates(symbol: Symbol, graph: SymbolGraph) -> bool:
    if not is_stateless(symbol) or is_interface_like(symbol):
        return False
    aggregates: set[str] = set()
    for method in behavioral_methods(symbol):
        for target_id in method_references(graph, symbol, method):
            if is_aggregate_shaped(graph, graph.get(target_id)):
                aggregates.add(target_id)
    return len(aggregates) >= 2


def _service_name(symbol: Symbol, graph: SymbolGraph) -> bool:
    return is_stateless(symbol) and name_ends_with(symbol, "Service")


# Domain event


_TIMESTAMP_FIELDS: frozenset[str] = frozenset(
    {"occurredat", "occurredon", "timestamp", "happenedat", "raisedat", "recordedat"}
)


def _event_name(symbol: Symbol, graph: SymbolGraph) -> float:
    if has_identity(symbol) or is_interface_like(symbol):
        return 0.0
    if name_ends_with(symbol, "Event"):
        return 1.0
    words = split_words(symbol.name)
    if len(words) >= 2 and words[-1].endswith("ed") and all_fields_immutable(symbol):
        return 1.0
    return 0.0


def _event_timestamp(symbol: Symbol, graph: SymbolGraph) -> bool:
    return not has_identity(symbol) and any(
        normalize_name(field.name) in _TIMESTAMP_FIELDS for field in symbol.fields
    )


def _extends_event_base(symbol: Symbol, graph: SymbolGraph) -> bool:
    return _base_ends_with(symbol, "Event")


def _event_shaped(symbol: Symbol) -> bool:
    """Immutable records named as events or stamped with an occurrence time."""
    return name_ends_with(symbol, "Event") or any(
        normalize_name(field.name) in _TIMESTAMP_FIELDS for field in symbol.fields
    )


# Repository interface


def _is_repository_shaped(symbol: Symbol) -> bool:
    return name_ends_with(symbol, "Repository", "Repo")


def _repository_name(symbol: Symbol, graph: SymbolGraph) -> float:
    if not _is_repository_shaped(symbol):
        return 0.0
    return 1.0 if is_interface_like(symbol) or symbol.is_abstract else 0.5


def _collection_like_interface(symbol: Symbol, graph: SymbolGraph) -> bool:
    if not is_interface_like(symbol):
        return False
    verbs = [
        method
        for method in symbol.methods
        if leading_verb(method.name) in REPOSITORY_VERBS
    ]
    return len(verbs) >= 2 and bool(repository_targets(graph, symbol))


# Driven port


def _port_name(symbol: Symbol, graph: SymbolGraph) -> bool:
    return is_interface_like(symbol) and name_ends_with(
        symbol,
        "Port",
        "Gateway",
        "Client",
        "Publisher",
        "Sender",
        "Notifier",
        "Provider",
    )


def _outbound_interface(symbol: Symbol, graph: SymbolGraph) -> bool:
    return (
        is_interface_like(symbol)
        and not _is_repository_shaped(symbol)
        and not repository_targets(graph, symbol)
    )


# Factory


_CREATION_VERBS: frozenset[str] = frozenset({"create", "build", "make", "new", "from"})


def _factory_name(symbol: Symbol, graph: SymbolGraph) -> bool:
    return name_ends_with(symbol, "Factory", "Builder")


def _creates_domain_objects(symbol: Symbol, graph: SymbolGraph) -> bool:
    if has_identity(symbol):
        return False
    return any(
        leading_verb(method.name) in _CREATION_VERBS
        and bool(resolve_type(graph, symbol, method.return_type))
        for method in symbol.methods
    )


# Specification


def _specification_name(symbol: Symbol, graph: SymbolGraph) -> bool:
    return name_ends_with(symbol, "Specification", "Spec")


def _satisfied_by_method(symbol: Symbol, graph: SymbolGraph) -> bool:
    return any(
        normalize_name(method.name) == "issatisfiedby" for method in symbol.methods
    )


# Policy


_DECISION_VERBS: frozenset[str] = frozenset(
    {"decide", "evaluate", "allow", "allows", "permit", "permits", "calculate", "choose"}
)


def _policy_name(symbol: Symbol, graph: SymbolGraph) -> bool:
    return name_ends_with(symbol, "Policy", "Rule", "Strategy")


def _stateless_decision(symbol: Symbol, graph: SymbolGraph) -> bool:
    return (
        is_stateless(symbol)
        and not name_ends_with(symbol, "Service")
        and any(
            leading_verb(method.name) in _DECISION_VERBS
            for method in behavioral_methods(symbol)
        )
    )


# Fallbacks


def _identity_or_state(symbol: Symbol, graph: SymbolGraph) -> bool:
    return has_identity(symbol) or any(field.mutable for field in symbol.fields)


def _no_identity_no_state(symbol: Symbol, graph: SymbolGraph) -> bool:
    return not _identity_or_state(symbol, graph)


def _base_ends_with(symbol: Symbol, *suffixes: str) -> bool:
    return any(
        base.rsplit(".", 1)[-1].split("[", 1)[0].endswith(suffix)
        for base in symbol.bases
        for suffix in suffixes
    )


def default_rules() -> list[RuleDefinition]:
    """Return the built-in rule definitions."""
    return [
        RuleDefinition(
            "AR-001",
            "aggregate_root",
            _owns_children_with_behaviour,
            3.0,
            "identity, composes children and carries behaviour",
        ),
        RuleDefinition(
            "AR-002",
            "aggregate_root",
            _unowned_with_behaviour,
            1.5,
            "identity, not composed by another symbol, two or more behaviours",
        ),
        RuleDefinition(
            "AR-003",
            "aggregate_root",
            _managed_by_repository,
            2.0,
            "managed by a repository-shaped symbol",
        ),
        RuleDefinition(
            "AR-004",
            "aggregate_root",
            _referenced_by_identity,
            1.0,
            "referenced by identity from other symbols",
        ),
        RuleDefinition(
            "AR-005",
            "aggregate_root",
            _extends_aggregate_base,
            3.0,
            "extends an aggregate root base type",
        ),
        RuleDefinition(
            "EN-001",
            "entity",
            _identity_with_mutable_state,
            2.0,
            "identity field plus mutable state",
        ),
        RuleDefinition(
            "EN-002",
            "entity",
            _composed_identity,
            1.5,
            "identity-bearing part composed by another symbol",
        ),
        RuleDefinition(
            "EN-003",
            "entity",
            _extends_entity_base,
            3.0,
            "extends an entity base type",
        ),
        RuleDefinition(
            "VO-001",
            "value_object",
            _immutable_with_value_equality,
            3.0,
            "no identity, read-only fields, equality over all fields",
        ),
        RuleDefinition(
            "VO-002",
            "value_object",
            _immutable_without_identity,
            1.0,
            "no identity and read-only fields",
        ),
        RuleDefinition(
            "VO-003",
            "value_object",
            _value_like_name,
            1.0,
            "value-like type name without identity",
        ),
        RuleDefinition(
            "VO-004",
            "value_object",
            _extends_value_base,
            3.0,
            "extends a value object base type",
        ),
        RuleDefinition(
            "DS-001",
            "domain_service",
            _spans_aggregates,
            3.0,
            "stateless, operates across two or more aggregates",
        ),
        RuleDefinition(
            "DS-002",
            "domain_service",
            _service_name,
            1.5,
            "stateless type named as a service",
        ),
        RuleDefinition(
            "EV-001",
            "domain_event",
            _event_name,
            2.5,
            "event or past-tense name without identity",
        ),
        RuleDefinition(
            "EV-002",
            "domain_event",
            _event_timestamp,
            1.0,
            "carries an occurrence timestamp",
        ),
        RuleDefinition(
            "EV-003",
            "domain_event",
            _extends_event_base,
            3.0,
            "extends an event base type",
        ),
        RuleDefinition(
            "RP-001",
            "repository_interface",
            _repository_name,
            3.0,
            "named as a repository",
        ),
        RuleDefinition(
            "RP-002",
            "repository_interface",
            _collection_like_interface,
            1.5,
            "interface with collection-like methods over identity-bearing types",
        ),
        RuleDefinition(
            "DP-001",
            "driven_port",
            _port_name,
            2.5,
            "interface named as an outbound port",
        ),
        RuleDefinition(
            "DP-002",
            "driven_port",
            _outbound_interface,
            0.75,
            "interface that is not a repository",
        ),
        RuleDefinition(
            "FA-001",
            "factory",
            _factory_name,
            2.5,
            "named as a factory or builder",
        ),
        RuleDefinition(
            "FA-002",
            "factory",
            _creates_domain_objects,
            1.5,
            "creation methods returning domain symbols",
        ),
        RuleDefinition(
            "SP-001",
            "specification",
            _specification_name,
            2.5,
            "named as a specification",
        ),
        RuleDefinition(
            "SP-002",
            "specification",
            _satisfied_by_method,
            2.0,
            "declares is_satisfied_by",
        ),
        RuleDefinition(
            "PO-001",
            "policy",
            _policy_name,
            2.5,
            "named as a policy, rule or strategy",
        ),
        RuleDefinition(
            "PO-002",
            "policy",
            _stateless_decision,
            1.0,
            "stateless decision-making methods",
        ),
        RuleDefinition(
            "FB-001",
            "entity",
            _identity_or_state,
            0.25,
            "fallback: identity or mutable state",
        ),
        RuleDefinition(
            "FB-002",
            "value_object",
            _no_identity_no_state,
            0.25,
            "fallback: neither identity nor mutable state",
        ),
    ]


def default_registry() -> RuleRegistry:
    """Return the built-in, validated rule registry."""
    return RuleRegistry(default_rules(), version=DEFAULT_REGISTRY_VERSION)
