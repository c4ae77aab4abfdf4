# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Structural diffing of a baseline against a freshly classified graph."""

import logging
from typing import Collection, Mapping, Sequence

import Levenshtein

from dps.analyzer import MethodDeclaration
from dps.baseline import Baseline, check_schema_version
from dps.config import ScanConfig
from dps.model import (
    ChangeRecord,
    Classification,
    RenameHint,
    StructuralDiff,
    Symbol,
    SymbolGraph,
)

logger = logging.getLogger(__name__)

_KIND_ORDER = {"removed": 0, "modified": 1, "added": 2}

_SHAPE_ATTRIBUTES = ("kind", "bases", "value_equality", "is_abstract")


class BaselineDiffer:
    """Compare a stored baseline with the current run by stable symbol identity.

    Symbols match when their ids (origin path plus qualified name) are equal.
    Renames are not resolved; they surface as a removed and an added record
    unless the caller supplies an alias hint mapping the old id to the new id.
    """

    def __init__(self, config: ScanConfig) -> None:
        """Initialize differ.

        Args:
            config: Run configuration providing the rename-hint threshold.
        """
        self._config = config

    def diff(
        self,
        baseline: Baseline,
        graph: SymbolGraph,
        classifications: Sequence[Classification],
        aliases: Mapping[str, str] | None = None,
        skipped_paths: Collection[str] = (),
    ) -> tuple[ChangeRecord, ...]:
        """Produce change records between a baseline and the current run.

        Baseline symbols that came from a unit skipped in the current run are
        not reported as removed, and edges pointing at them are not reported
        as removed relationships; ``unverified`` lists them instead.

        Args:
            baseline: Prior run.
            graph: Current graph.
            classifications: Current classifications.
            aliases: Optional old-id to new-id hints for renamed symbols.
            skipped_paths: Paths of units skipped in the current run.

        Returns:
            Change records sorted by symbol id and change kind.

        Raises:
            SchemaVersionMismatchError: If the baseline schema is incompatible.
            ValueError: If an alias hint references unknown or clashing symbols.
        """
        check_schema_version(baseline.schema_version)
        old_to_new = self._match(baseline.graph, graph, dict(aliases or {}))
        unverified = _unverified_ids(baseline.graph, graph, old_to_new, skipped_paths)
        matched_new = {new_id for new_id in old_to_new.values() if new_id in graph}
        prior = {item.symbol_id: item for item in baseline.classifications}
        current = {item.symbol_id: item for item in classifications}

        records: list[ChangeRecord] = []
        for old in baseline.graph.symbols:
            if old.symbol_id in unverified:
                continue
            new_id = old_to_new[old.symbol_id]
            if new_id not in graph:
                records.append(
                    ChangeRecord(
                        symbol_id=old.symbol_id,
                        change_kind="removed",
                        prior=prior.get(old.symbol_id),
                    )
                )
                continue
            structural = self._structural_diff(
                old=old,
                new=graph.get(new_id),
                old_graph=baseline.graph,
                new_graph=graph,
                old_to_new=old_to_new,
                unverified=unverified,
                prior=prior.get(old.symbol_id),
                current=current.get(new_id),
            )
            if structural.is_empty and new_id == old.symbol_id:
                continue
            records.append(
                ChangeRecord(
                    symbol_id=new_id,
                    change_kind="modified",
                    prior=prior.get(old.symbol_id),
                    current=current.get(new_id),
                    diff=structural,
                    prior_symbol_id=old.symbol_id if new_id != old.symbol_id else None,
                )
            )
        for symbol in graph.symbols:
            if symbol.symbol_id in matched_new:
                continue
            records.append(
                ChangeRecord(
                    symbol_id=symbol.symbol_id,
                    change_kind="added",
                    current=current.get(symbol.symbol_id),
                )
            )
        records.sort(key=lambda record: (record.symbol_id, _KIND_ORDER[record.change_kind]))
        logger.info(
            f"Baseline diff completed (changes={len(records)} "
            f"baseline_symbols={len(baseline.graph)} current_symbols={len(graph)} "
            f"unverified={len(unverified)})"
        )
        return tuple(records)

    def unverified(
        self,
        baseline: Baseline,
        graph: SymbolGraph,
        skipped_paths: Collection[str],
        aliases: Mapping[str, str] | None = None,
    ) -> tuple[str, ...]:
        """Return baseline symbol ids the current run could not re-check.

        A baseline symbol is unverified when its origin unit was skipped and no
        current symbol stands in for it.
        """
        old_to_new = self._match(baseline.graph, graph, dict(aliases or {}))
        return tuple(
            sorted(_unverified_ids(baseline.graph, graph, old_to_new, skipped_paths))
        )

    def suggest_renames(
        self,
        changes: Sequence[ChangeRecord],
        baseline: Baseline,
        graph: SymbolGraph,
    ) -> tuple[RenameHint, ...]:
        """Suggest advisory pairings of removed and added symbols.

        Similarity averages the Levenshtein ratio of the simple names with the
        overlap of member names. Hints never change the change records.

        Args:
            changes: Output of ``diff``.
            baseline: Baseline the changes were computed against.
            graph: Current graph.

        Returns:
            Greedily paired hints at or above the configured threshold.
        """
        removed = [
            baseline.graph.get(record.symbol_id)
            for record in changes
            if record.change_kind == "removed"
        ]
        added = [
            graph.get(record.symbol_id)
            for record in changes
            if record.change_kind == "added"
        ]
        candidates: list[tuple[float, str, str]] = []
        for old in removed:
            for new in added:
                similarity = _similarity(old, new)
                if similarity >= self._config.rename_hint_threshold:
                    candidates.append((similarity, old.symbol_id, new.symbol_id))
        candidates.sort(key=lambda item: (-item[0], item[1], item[2]))
        used_old: set[str] = set()
        used_new: set[str] = set()
        hints: list[RenameHint] = []
        for similarity, old_id, new_id in candidates:
            if old_id in used_old or new_id in used_new:
                continue
            used_old.add(old_id)
            used_new.add(new_id)
            hints.append(
                RenameHint(removed_id=old_id, added_id=new_id, similarity=similarity)
            )
        return tuple(sorted(hints, key=lambda hint: hint.removed_id))

    def _match(
        self,
        old_graph: SymbolGraph,
        new_graph: SymbolGraph,
        aliases: dict[str, str],
    ) -> dict[str, str]:
        """Map every baseline id to the id it is compared against."""
        for old_id, new_id in sorted(aliases.items()):
            if old_id not in old_graph:
                raise ValueError(f"Alias hint references unknown baseline symbol: {old_id}")
            if new_id not in new_graph:
                raise ValueError(f"Alias hint references unknown current symbol: {new_id}")
        old_to_new = {
            symbol.symbol_id: aliases.get(symbol.symbol_id, symbol.symbol_id)
            for symbol in old_graph.symbols
        }
        claimed: dict[str, str] = {}
        for old_id, new_id in old_to_new.items():
            if new_id not in new_graph:
                continue
            if new_id in claimed:
                raise ValueError(
                    f"Symbols {claimed[new_id]} and {old_id} both map to {new_id}"
                )
            claimed[new_id] = old_id
        return old_to_new

    def _structural_diff(
        self,
        old: Symbol,
        new: Symbol,
        old_graph: SymbolGraph,
        new_graph: SymbolGraph,
        old_to_new: Mapping[str, str],
        unverified: Collection[str],
        prior: Classification | None,
        current: Classification | None,
    ) -> StructuralDiff:
        old_fields = {field.name: field for field in old.fields}
        new_fields = {field.name: field for field in new.fields}
        old_methods = _methods_by_name(old.methods)
        new_methods = _methods_by_name(new.methods)
        old_edges = {
            f"{edge.kind}:{edge.via}->{old_to_new.get(edge.target_id, edge.target_id)}"
            for edge in old_graph.outgoing(old.symbol_id)
            if edge.target_id not in unverified
        }
        new_edges = {
            f"{edge.kind}:{edge.via}->{edge.target_id}"
            for edge in new_graph.outgoing(new.symbol_id)
        }
        old_evidence, new_evidence = _same_role_evidence(prior, current)
        return StructuralDiff(
            fields_added=tuple(sorted(set(new_fields) - set(old_fields))),
            fields_removed=tuple(sorted(set(old_fields) - set(new_fields))),
            fields_changed=tuple(
                sorted(
                    name
                    for name in set(old_fields) & set(new_fields)
                    if old_fields[name] != new_fields[name]
                )
            ),
            methods_added=tuple(sorted(set(new_methods) - set(old_methods))),
            methods_removed=tuple(sorted(set(old_methods) - set(new_methods))),
            methods_changed=tuple(
                sorted(
                    name
                    for name in set(old_methods) & set(new_methods)
                    if old_methods[name] != new_methods[name]
                )
            ),
            relationships_added=tuple(sorted(new_edges - old_edges)),
            relationships_removed=tuple(sorted(old_edges - new_edges)),
            shape_changed=tuple(
                name
                for name in _SHAPE_ATTRIBUTES
                if getattr(old, name) != getattr(new, name)
            ),
            evidence_added=tuple(sorted(new_evidence - old_evidence)),
            evidence_removed=tuple(sorted(old_evidence - new_evidence)),
            role_changed=_role(prior) != _role(current),
            confidence_changed=_confidence(prior) != _confidence(current),
        )


def _methods_by_name(
    methods: Sequence[MethodDeclaration],
) -> dict[str, tuple[MethodDeclaration, ...]]:
    """Group overloads by name with a stable order."""
    grouped: dict[str, list[MethodDeclaration]] = {}
    for method in methods:
        grouped.setdefault(method.name, []).append(method)
    return {
        name: tuple(sorted(overloads, key=lambda method: method.signature))
        for name, overloads in grouped.items()
    }


def _role(classification: Classification | None) -> str | None:
    return classification.role if classification is not None else None


def _confidence(classification: Classification | None) -> str | None:
    return classification.confidence if classification is not None else None


def _same_role_evidence(
    prior: Classification | None, current: Classification | None
) -> tuple[set[str], set[str]]:
    """Return both evidence sets when the role held, otherwise two empty sets."""
    if prior is None or current is None or prior.role != current.role:
        return set(), set()
    return set(prior.evidence), set(current.evidence)


def _similarity(old: Symbol, new: Symbol) -> float:
    name_ratio = float(Levenshtein.ratio(old.name, new.name))
    old_members = {field.name for field in old.fields} | {
        method.name for method in old.methods
    }
    new_members = {field.name for field in new.fields} | {
        method.name for method in new.methods
    }
    union = old_members | new_members
    overlap = len(old_members & new_members) / len(union) if union else 1.0
    return round((name_ratio + overlap) / 2, 4)


def _unverified_ids(
    old_graph: SymbolGraph,
    new_graph: SymbolGraph,
    old_to_new: Mapping[str, str],
    skipped_paths: Collection[str],
) -> set[str]:
    skipped = set(skipped_paths)
    return {
        symbol.symbol_id
        for symbol in old_graph.symbols
        if symbol.origin_path in skipped and old_to_new[symbol.symbol_id] not in new_graph
    }
