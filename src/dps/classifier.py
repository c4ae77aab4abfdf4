# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Weighted-vote role classification of symbols."""

import concurrent.futures
import logging

from dps.config import ScanConfig
from dps.model import ROLES, Alternate, Classification, Role, Symbol, SymbolGraph
from dps.rules import RuleEvaluationError, RuleRegistry, evaluate_rule
from dps.scoring import ConfidenceScorer

logger = logging.getLogger(__name__)

_PRECISION = 4


class PatternClassifier:
    """Assign exactly one primary tactical-design role to every symbol."""

    def __init__(
        self,
        registry: RuleRegistry,
        config: ScanConfig,
        scorer: ConfidenceScorer | None = None,
    ) -> None:
        """Initialize classifier.

        Args:
            registry: Validated rule registry, read-only for the run.
            config: Run configuration.
            scorer: Confidence scorer; built from ``config`` when omitted.
        """
        self._registry = registry
        self._config = config
        self._scorer = scorer or ConfidenceScorer(config)

    def classify(self, graph: SymbolGraph) -> tuple[Classification, ...]:
        """Classify every symbol of a graph.

        Symbols are evaluated independently on a bounded thread pool; results
        keep the graph's symbol order.

        Args:
            graph: Read-only graph snapshot.

        Returns:
            One classification per symbol, ordered by symbol id.

        Raises:
            RuleEvaluationError: If a rule fails or no rule covers a symbol.
        """
        symbols = graph.symbols
        if self._config.max_workers == 1 or len(symbols) < 2:
            classifications = [
                self.classify_symbol(symbol, graph) for symbol in symbols
            ]
        else:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=self._config.max_workers,
                thread_name_prefix="dps-classify",
            ) as executor:
                classifications = list(
                    executor.map(
                        lambda symbol: self.classify_symbol(symbol, graph), symbols
                    )
                )
        ambiguous = sum(1 for item in classifications if item.ambiguous)
        logger.info(
            f"Classification completed (symbols={len(classifications)} "
            f"ambiguous={ambiguous} registry_version={self._registry.version})"
        )
        return tuple(classifications)

    def classify_symbol(self, symbol: Symbol, graph: SymbolGraph) -> Classification:
        """Classify one symbol.

        Args:
            symbol: Symbol to classify.
            graph: Read-only graph snapshot containing the symbol.

        Returns:
            Classification with primary role, confidence, alternates and evidence.

        Raises:
            RuleEvaluationError: If a rule fails or no rule fires for the symbol.
        """
        votes: dict[Role, float] = {}
        fired: dict[Role, list[str]] = {}
        for rule in self._registry:
            score = evaluate_rule(rule, symbol, graph)
            if score <= 0.0:
                continue
            votes[rule.role] = votes.get(rule.role, 0.0) + rule.weight * score
            fired.setdefault(rule.role, []).append(rule.rule_id)
        if not votes:
            raise RuleEvaluationError(
                f"no rule fired for {symbol.symbol_id}; the registry does not cover it"
            )

        rounded = {role: round(vote, _PRECISION) for role, vote in votes.items()}
        ranked = sorted(
            rounded.items(), key=lambda item: (-item[1], ROLES.index(item[0]))
        )
        role, score = ranked[0]
        tied = any(other == score for _, other in ranked[1:])
        alternates = tuple(
            Alternate(role=other_role, score=other_score)
            for other_role, other_score in ranked[1:]
            if round(score - other_score, _PRECISION) <= self._config.ambiguity_margin
        )
        return Classification(
            symbol_id=symbol.symbol_id,
            role=role,
            confidence="low" if tied else self._scorer.level(score),
            score=score,
            support=self._scorer.support(score, rounded.values()),
            alternates=alternates,
            evidence=tuple(fired[role]),
            ambiguous=tied,
        )
