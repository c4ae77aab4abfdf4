# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Stage orchestration of one scan run."""

import logging
import threading
from typing import Mapping

from dps.analyzer import SourceUnit
from dps.antipatterns import AntiPatternDetector
from dps.baseline import Baseline, build_baseline, check_schema_version
from dps.classifier import PatternClassifier
from dps.config import ScanConfig
from dps.differ import BaselineDiffer
from dps.model import ChangeRecord, RenameHint
from dps.model_builder import SymbolModelBuilder
from dps.report import ReportCompiler, ScanReport
from dps.rules import RuleRegistry, default_registry
from dps.scoring import ConfidenceScorer

logger = logging.getLogger(__name__)


class ScanEngine:
    """Run build, classification, detection, scoring and diffing in order.

    Detection only starts once every symbol is classified. Diffing only runs
    when a baseline is supplied and the build was not cancelled.
    """

    def __init__(
        self,
        config: ScanConfig | None = None,
        registry: RuleRegistry | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            config: Run configuration; defaults apply when omitted.
            registry: Rule registry; the default registry when omitted.
        """
        self._config = config or ScanConfig()
        self._registry = registry or default_registry()
        self._scorer = ConfidenceScorer(self._config)
        self._builder = SymbolModelBuilder(self._config)
        self._classifier = PatternClassifier(
            registry=self._registry, config=self._config, scorer=self._scorer
        )
        self._detector = AntiPatternDetector(self._config)
        self._differ = BaselineDiffer(self._config)
        self._compiler = ReportCompiler()

    @property
    def registry(self) -> RuleRegistry:
        return self._registry

    def run(
        self,
        units: list[SourceUnit],
        baseline: Baseline | None = None,
        aliases: Mapping[str, str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> ScanReport:
        """Scan source units into a report.

        Args:
            units: Source units in caller order.
            baseline: Prior run to diff against.
            aliases: Old-id to new-id rename hints for the diff.
            cancel_event: Event that stops the build when set.

        Returns:
            Compiled report; ``complete`` is ``False`` after cancellation.

        Raises:
            SchemaVersionMismatchError: If the baseline schema is incompatible.
            RuleEvaluationError: If a rule fails during classification.
            ValueError: If an alias hint is invalid.
        """
        if baseline is not None:
            check_schema_version(baseline.schema_version)
            if baseline.registry_fingerprint != self._registry.fingerprint:
                logger.warning(
                    f"Baseline was produced by a different registry "
                    f"(baseline_version={baseline.registry_version} "
                    f"current_version={self._registry.version})"
                )
        logger.info(
            f"Scan started (units={len(units)} workers={self._config.max_workers} "
            f"registry_version={self._registry.version} "
            f"diff_mode={baseline is not None})"
        )
        build = self._builder.build(units, cancel_event=cancel_event)
        classifications = self._classifier.classify(build.graph)
        findings = self._detector.detect(build.graph, classifications)
        explained, explained_findings = self._scorer.explain(
            classifications, findings, self._registry
        )

        changes: tuple[ChangeRecord, ...] | None = None
        rename_hints: tuple[RenameHint, ...] = ()
        unverified: tuple[str, ...] = ()
        if baseline is not None and build.complete:
            skipped_paths = [item.path for item in build.skipped]
            changes = self._differ.diff(
                baseline, build.graph, explained, aliases, skipped_paths=skipped_paths
            )
            rename_hints = self._differ.suggest_renames(changes, baseline, build.graph)
            unverified = self._differ.unverified(
                baseline, build.graph, skipped_paths, aliases
            )
            if unverified:
                logger.warning(
                    f"Baseline symbols from skipped units left out of the diff "
                    f"(count={len(unverified)})"
                )
        elif baseline is not None:
            logger.warning("Skipping baseline diff for an incomplete build")

        return self._compiler.compile(
            graph=build.graph,
            classifications=explained,
            findings=explained_findings,
            skipped=build.skipped,
            registry_version=self._registry.version,
            registry_fingerprint=self._registry.fingerprint,
            complete=build.complete,
            unit_count=build.unit_count,
            processed_paths=build.processed_paths,
            changes=changes,
            rename_hints=rename_hints,
            unverified_symbols=unverified,
        )


def baseline_from_report(report: ScanReport, root_path: str = "") -> Baseline:
    """Capture a complete report as a baseline for later diffs.

    Raises:
        ValueError: If the report is incomplete.
    """
    if not report.complete:
        raise ValueError("An incomplete report cannot be stored as a baseline.")
    return build_baseline(
        graph=report.graph,
        classifications=report.classifications,
        registry_version=report.registry_version,
        registry_fingerprint=report.registry_fingerprint,
        root_path=root_path,
    )
