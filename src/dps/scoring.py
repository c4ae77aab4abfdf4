# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Confidence discretization and rule-citation rationale."""

import logging
from dataclasses import replace
from typing import Iterable, Sequence

from dps.config import ScanConfig
from dps.model import LEVELS, Classification, Finding, Level
from dps.rules import RuleRegistry

logger = logging.getLogger(__name__)


class ConfidenceScorer:
    """Normalize classifications and findings to the three-level scale."""

    def __init__(self, config: ScanConfig) -> None:
        """Initialize scorer.

        Args:
            config: Run configuration providing confidence thresholds.
        """
        self._config = config

    def level(self, score: float) -> Level:
        """Discretize a winning vote into a confidence level."""
        if score >= self._config.high_confidence_threshold:
            return "high"
        if score >= self._config.medium_confidence_threshold:
            return "medium"
        return "low"

    def support(self, winner: float, votes: Iterable[float]) -> float:
        """Return the share of the winning vote in all votes."""
        total = sum(votes)
        if total <= 0.0:
            return 0.0
        return round(winner / total, 4)

    def explain(
        self,
        classifications: Sequence[Classification],
        findings: Sequence[Finding],
        registry: RuleRegistry,
    ) -> tuple[tuple[Classification, ...], tuple[Finding, ...]]:
        """Attach rationale to every classification and finding.

        The inputs are left untouched; new instances are returned.

        Args:
            classifications: Classifier output.
            findings: Detector output.
            registry: Registry whose rule descriptions are cited.

        Returns:
            Explained classifications and findings, in input order.

        Raises:
            ValueError: If a classification cites no rule or a level is unknown.
        """
        explained_classifications = tuple(
            self._explain_classification(item, registry) for item in classifications
        )
        explained_findings = tuple(self._explain_finding(item) for item in findings)
        return explained_classifications, explained_findings

    def _explain_classification(
        self, classification: Classification, registry: RuleRegistry
    ) -> Classification:
        if not classification.evidence:
            raise ValueError(
                f"Classification cites no rule (symbol_id={classification.symbol_id})"
            )
        if classification.confidence not in LEVELS:
            raise ValueError(f"Unknown confidence level: {classification.confidence}")
        citations = "; ".join(
            _cite(rule_id, registry) for rule_id in classification.evidence
        )
        parts = [
            f"{classification.role} ({classification.confidence}, "
            f"score={classification.score:.2f}, support={classification.support:.2f}) "
            f"from {citations}"
        ]
        if classification.ambiguous:
            tied = ", ".join(
                alternate.role
                for alternate in classification.alternates
                if alternate.score == classification.score
            )
            parts.append(f"ambiguous: tied with {tied}")
        if classification.alternates:
            alternates = ", ".join(
                f"{alternate.role}={alternate.score:.2f}"
                for alternate in classification.alternates
            )
            parts.append(f"alternates: {alternates}")
        return replace(classification, rationale="; ".join(parts))

    def _explain_finding(self, finding: Finding) -> Finding:
        if finding.severity not in LEVELS:
            raise ValueError(f"Unknown severity level: {finding.severity}")
        subjects = ", ".join(
            symbol_id.rsplit("::", 1)[-1] for symbol_id in finding.symbol_ids
        )
        rationale = (
            f"{finding.anti_pattern} [{finding.severity}] "
            f"via {finding.rule_id} on {subjects}"
        )
        if finding.evidence:
            rationale = f"{rationale}: {'; '.join(finding.evidence)}"
        return replace(finding, rationale=rationale)


def _cite(rule_id: str, registry: RuleRegistry) -> str:
    try:
        return f"{rule_id} {registry.get(rule_id).description}"
    except KeyError:
        return rule_id
