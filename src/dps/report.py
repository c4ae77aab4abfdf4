# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Assembly of scan results into a serializable report."""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Sequence

from dps.model import (
    ChangeRecord,
    Classification,
    Finding,
    RenameHint,
    SkippedUnit,
    SymbolGraph,
)

logger = logging.getLogger(__name__)

REPORT_SCHEMA_VERSION: str = "1.0"


@dataclass(frozen=True)
class ScanReport:
    """Represent the final result of one scan run.

    Attributes:
        schema_version: Report schema tag.
        registry_version: Version of the rule registry used for the run.
        registry_fingerprint: Digest of that registry.
        complete: ``False`` when the run was cancelled.
        unit_count: Number of source units handed to the run.
        processed_paths: Units whose symbols are in the graph.
        classifications: One classification per symbol, ordered by symbol id.
        findings: Anti-pattern findings.
        skipped: Units excluded from the graph.
        changes: Change records, or ``None`` outside diff mode.
        rename_hints: Advisory rename pairings for removed and added symbols.
        unverified_symbols: Baseline symbols from units skipped in this run;
            the diff neither confirms nor removes them.
        graph: Graph the report was computed on.
    """

    schema_version: str
    registry_version: str
    registry_fingerprint: str
    complete: bool
    unit_count: int
    processed_paths: tuple[str, ...]
    classifications: tuple[Classification, ...]
    findings: tuple[Finding, ...]
    skipped: tuple[SkippedUnit, ...]
    changes: tuple[ChangeRecord, ...] | None = None
    rename_hints: tuple[RenameHint, ...] = ()
    unverified_symbols: tuple[str, ...] = ()
    graph: SymbolGraph = field(default_factory=SymbolGraph, compare=False, repr=False)

    @property
    def symbol_count(self) -> int:
        return len(self.classifications)


class ReportCompiler:
    """Collect stage outputs into a ``ScanReport`` without further inference."""

    def compile(
        self,
        graph: SymbolGraph,
        classifications: Sequence[Classification],
        findings: Sequence[Finding],
        skipped: Sequence[SkippedUnit],
        registry_version: str,
        registry_fingerprint: str,
        complete: bool,
        unit_count: int,
        processed_paths: Sequence[str] = (),
        changes: Sequence[ChangeRecord] | None = None,
        rename_hints: Sequence[RenameHint] = (),
        unverified_symbols: Sequence[str] = (),
    ) -> ScanReport:
        """Assemble a report.

        Args:
            graph: Graph the run produced.
            classifications: Explained classifications.
            findings: Explained findings.
            skipped: Skipped-unit diagnostics.
            registry_version: Registry version used for the run.
            registry_fingerprint: Registry digest used for the run.
            complete: Whether every unit was processed.
            unit_count: Number of input units.
            processed_paths: Paths of units in the graph.
            changes: Change records in diff mode.
            rename_hints: Advisory rename hints in diff mode.
            unverified_symbols: Baseline symbols left out of the diff.

        Returns:
            Compiled report.

        Raises:
            ValueError: If classifications do not cover the graph one-to-one.
        """
        classified = [item.symbol_id for item in classifications]
        if sorted(classified) != [symbol.symbol_id for symbol in graph.symbols]:
            raise ValueError("Classifications must cover every symbol exactly once.")
        report = ScanReport(
            schema_version=REPORT_SCHEMA_VERSION,
            registry_version=registry_version,
            registry_fingerprint=registry_fingerprint,
            complete=complete,
            unit_count=unit_count,
            processed_paths=tuple(processed_paths),
            classifications=tuple(
                sorted(classifications, key=lambda item: item.symbol_id)
            ),
            findings=tuple(findings),
            skipped=tuple(skipped),
            changes=tuple(changes) if changes is not None else None,
            rename_hints=tuple(rename_hints),
            unverified_symbols=tuple(unverified_symbols),
            graph=graph,
        )
        logger.info(
            f"Report compiled (symbols={report.symbol_count} "
            f"findings={len(report.findings)} skipped={len(report.skipped)} "
            f"changes={len(report.changes) if report.changes is not None else 'n/a'} "
            f"complete={report.complete})"
        )
        return report


def report_to_dict(report: ScanReport) -> dict[str, Any]:
    """Convert a report into a JSON-ready mapping.

    Classifications are keyed by symbol id; diagnostics hold skipped units,
    rename hints and baseline symbols the diff could not re-check.
    """
    return {
        "schema_version": report.schema_version,
        "registry": {
            "version": report.registry_version,
            "fingerprint": report.registry_fingerprint,
        },
        "complete": report.complete,
        "counts": {
            "units": report.unit_count,
            "processed_units": len(report.processed_paths),
            "symbols": report.symbol_count,
            "relationships": len(report.graph.relationships),
            "findings": len(report.findings),
            "skipped": len(report.skipped),
        },
        "classifications": {
            item.symbol_id: asdict(item) for item in report.classifications
        },
        "findings": [asdict(item) for item in report.findings],
        "changes": (
            [asdict(item) for item in report.changes]
            if report.changes is not None
            else None
        ),
        "diagnostics": {
            "skipped": [asdict(item) for item in report.skipped],
            "rename_hints": [asdict(item) for item in report.rename_hints],
            "unverified_symbols": list(report.unverified_symbols),
        },
    }
