# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Structural anti-pattern detection over a classified symbol graph."""

import logging
from dataclasses import dataclass
from typing import Mapping, Sequence

from dps.analyzer import FieldDeclaration
from dps.config import ScanConfig
from dps.model import Classification, Finding, Level, Role, Symbol, SymbolGraph
from dps.shapes import (
    accessor_methods,
    behavioral_methods,
    is_constructor,
    is_dunder,
    is_own_identity_field,
    is_primitive_type,
    leading_verb,
    normalize_name,
    repository_targets,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AntiPatternRule:
    """Describe one detector rule and its static severity."""

    rule_id: str
    anti_pattern: str
    severity: Level
    description: str


ANEMIC_MODEL = AntiPatternRule(
    "AP-001", "anemic_model", "high", "entity or aggregate root without behaviour"
)
GOD_CLASS = AntiPatternRule(
    "AP-002", "god_class", "high", "too many methods and fields with unrelated verbs"
)
PRIMITIVE_OBSESSION = AntiPatternRule(
    "AP-003",
    "primitive_obsession",
    "medium",
    "recurring primitive field combination without a value object",
)
MEGA_AGGREGATE = AntiPatternRule(
    "AP-004", "mega_aggregate", "medium", "aggregate root composes too many entities"
)
CROSS_AGGREGATE_REFERENCE = AntiPatternRule(
    "AP-005",
    "cross_aggregate_reference",
    "high",
    "entity references another aggregate root by object reference",
)
MISSING_REPOSITORY = AntiPatternRule(
    "AP-006", "missing_repository", "medium", "aggregate root without repository"
)
ANTI_PATTERN_RULES: tuple[AntiPatternRule, ...] = (
    ANEMIC_MODEL,
    GOD_CLASS,
    PRIMITIVE_OBSESSION,
    MEGA_AGGREGATE,
    CROSS_AGGREGATE_REFERENCE,
    MISSING_REPOSITORY,
)


def _finding(
    rule: AntiPatternRule, symbol_ids: Sequence[str], evidence: Sequence[str]
) -> Finding:
    return Finding(
        anti_pattern=rule.anti_pattern,
        rule_id=rule.rule_id,
        severity=rule.severity,
        symbol_ids=tuple(symbol_ids),
        evidence=tuple(evidence),
    )


class AntiPatternDetector:
    """Flag structural violations in a classified graph.

    The detector only reads classifications; it never produces or alters one.
    """

    def __init__(self, config: ScanConfig) -> None:
        """Initialize detector.

        Args:
            config: Run configuration providing detector thresholds.
        """
        self._config = config

    def detect(
        self, graph: SymbolGraph, classifications: Sequence[Classification]
    ) -> tuple[Finding, ...]:
        """Run every detector rule.

        Args:
            graph: Graph the classifications were computed on.
            classifications: Completed classifier output.

        Returns:
            Findings sorted by rule id and involved symbols.
        """
        roles: dict[str, Role] = {
            classification.symbol_id: classification.role
            for classification in classifications
        }
        findings = [
            *self._anemic_models(graph, roles),
            *self._god_classes(graph),
            *self._primitive_obsession(graph, roles),
            *self._mega_aggregates(graph, roles),
            *self._cross_aggregate_references(graph, roles),
            *self._missing_repositories(graph, roles),
        ]
        findings.sort(key=lambda finding: (finding.rule_id, finding.symbol_ids))
        logger.info(
            f"Anti-pattern detection completed (symbols={len(graph)} "
            f"findings={len(findings)})"
        )
        return tuple(findings)

    def _anemic_models(
        self, graph: SymbolGraph, roles: Mapping[str, Role]
    ) -> list[Finding]:
        findings: list[Finding] = []
        for symbol in graph.symbols:
            if roles.get(symbol.symbol_id) not in {"entity", "aggregate_root"}:
                continue
            if behavioral_methods(symbol):
                continue
            evidence = [
                f"role={roles[symbol.symbol_id]}",
                f"fields={len(symbol.fields)}",
                "behavioral_methods=0",
            ]
            evidence.extend(
                f"accessor:{method.name}" for method in accessor_methods(symbol)
            )
            findings.append(_finding(ANEMIC_MODEL, [symbol.symbol_id], evidence))
        return findings

    def _god_classes(self, graph: SymbolGraph) -> list[Finding]:
        findings: list[Finding] = []
        for symbol in graph.symbols:
            methods = [
                method
                for method in symbol.methods
                if not is_dunder(method.name) and not is_constructor(symbol, method)
            ]
            if len(methods) <= self._config.god_class_max_methods:
                continue
            if len(symbol.fields) <= self._config.god_class_max_fields:
                continue
            verbs = sorted(
                {leading_verb(method.name) for method in behavioral_methods(symbol)}
            )
            if len(verbs) < self._config.god_class_min_verbs:
                continue
            findings.append(
                _finding(
                    GOD_CLASS,
                    [symbol.symbol_id],
                    [
                        f"methods={len(methods)}",
                        f"fields={len(symbol.fields)}",
                        f"verbs={','.join(verbs)}",
                    ],
                )
            )
        return findings

    def _primitive_obsession(
        self, graph: SymbolGraph, roles: Mapping[str, Role]
    ) -> list[Finding]:
        primitives: dict[str, dict[str, FieldDeclaration]] = {}
        for symbol in graph.symbols:
            by_name = {
                normalize_name(field.name): field
                for field in symbol.fields
                if is_primitive_type(field.declared_type)
                and not is_own_identity_field(symbol, field)
            }
            if len(by_name) >= self._config.primitive_obsession_min_fields:
                primitives[symbol.symbol_id] = by_name

        value_objects = [
            symbol_id
            for symbol_id in primitives
            if roles.get(symbol_id) == "value_object"
        ]
        holders = sorted(
            symbol_id
            for symbol_id in primitives
            if symbol_id in roles and roles[symbol_id] != "value_object"
        )

        combinations: set[frozenset[str]] = set()
        for index, left in enumerate(holders):
            left_names = set(primitives[left])
            for right in holders[index + 1 :]:
                shared = left_names & set(primitives[right])
                if len(shared) >= self._config.primitive_obsession_min_fields:
                    combinations.add(frozenset(shared))

        by_members: dict[tuple[str, ...], frozenset[str]] = {}
        for combination in sorted(combinations, key=lambda item: sorted(item)):
            members = tuple(
                symbol_id
                for symbol_id in holders
                if combination <= set(primitives[symbol_id])
            )
            if len(members) < self._config.primitive_obsession_min_symbols:
                continue
            if any(combination <= set(primitives[vo]) for vo in value_objects):
                continue
            current = by_members.get(members)
            if current is None or len(combination) > len(current):
                by_members[members] = combination

        findings: list[Finding] = []
        for members, combination in sorted(by_members.items()):
            names = sorted(combination)
            evidence = [f"fields={','.join(names)}"]
            for symbol_id in members:
                symbol = graph.get(symbol_id)
                evidence.extend(
                    f"{symbol.name}.{primitives[symbol_id][name].name}:"
                    f"{primitives[symbol_id][name].declared_type}"
                    for name in names
                )
            findings.append(_finding(PRIMITIVE_OBSESSION, members, evidence))
        return findings

    def _mega_aggregates(
        self, graph: SymbolGraph, roles: Mapping[str, Role]
    ) -> list[Finding]:
        findings: list[Finding] = []
        for symbol in graph.symbols:
            if roles.get(symbol.symbol_id) != "aggregate_root":
                continue
            children = sorted(
                {
                    edge.target_id
                    for edge in graph.outgoing(symbol.symbol_id, "composition")
                    if roles.get(edge.target_id) == "entity"
                }
            )
            if len(children) <= self._config.mega_aggregate_max_entities:
                continue
            evidence = [
                f"entity_children={len(children)}",
                f"limit={self._config.mega_aggregate_max_entities}",
            ]
            evidence.extend(f"child:{graph.get(child).name}" for child in children)
            findings.append(_finding(MEGA_AGGREGATE, [symbol.symbol_id], evidence))
        return findings

    def _cross_aggregate_references(
        self, graph: SymbolGraph, roles: Mapping[str, Role]
    ) -> list[Finding]:
        findings: list[Finding] = []
        for symbol in graph.symbols:
            if roles.get(symbol.symbol_id) != "entity":
                continue
            owners = _owning_roots(graph, symbol, roles)
            for edge in graph.outgoing(symbol.symbol_id, "association_by_reference"):
                if roles.get(edge.target_id) != "aggregate_root":
                    continue
                if edge.target_id in owners:
                    continue
                target = graph.get(edge.target_id)
                evidence = [f"field:{edge.via}", f"target:{target.name}"]
                evidence.extend(f"owner:{graph.get(owner).name}" for owner in owners)
                findings.append(
                    _finding(
                        CROSS_AGGREGATE_REFERENCE,
                        [symbol.symbol_id, edge.target_id],
                        evidence,
                    )
                )
        return findings

    def _missing_repositories(
        self, graph: SymbolGraph, roles: Mapping[str, Role]
    ) -> list[Finding]:
        managed: set[str] = set()
        for symbol in graph.symbols:
            if roles.get(symbol.symbol_id) != "repository_interface":
                continue
            managed.update(repository_targets(graph, symbol))
            managed.update(edge.target_id for edge in graph.outgoing(symbol.symbol_id))
        findings: list[Finding] = []
        for symbol in graph.symbols:
            if roles.get(symbol.symbol_id) != "aggregate_root":
                continue
            if symbol.symbol_id in managed:
                continue
            findings.append(
                _finding(
                    MISSING_REPOSITORY,
                    [symbol.symbol_id],
                    [f"expected:{symbol.name}Repository"],
                )
            )
        return findings


def _owning_roots(
    graph: SymbolGraph, symbol: Symbol, roles: Mapping[str, Role]
) -> list[str]:
    """Return aggregate roots that compose ``symbol`` directly or transitively."""
    owners: set[str] = set()
    visited: set[str] = {symbol.symbol_id}
    stack = [symbol.symbol_id]
    while stack:
        current = stack.pop()
        for edge in graph.incoming(current, "composition"):
            if edge.source_id in visited:
                continue
            visited.add(edge.source_id)
            if roles.get(edge.source_id) == "aggregate_root":
                owners.add(edge.source_id)
            stack.append(edge.source_id)
    return sorted(owners)
