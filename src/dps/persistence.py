# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Baseline persistence contracts."""

import logging
from dataclasses import dataclass
from typing import Literal, Protocol

from dps.baseline import Baseline
from dps.report import ScanReport

logger = logging.getLogger(__name__)

RunStatus = Literal["completed", "completed_with_errors", "incomplete"]


class BaselineStoreError(RuntimeError):
    """Represent a fatal baseline store operation failure."""


@dataclass(frozen=True)
class PersistRunInput:
    """Describe all values needed to persist one scan run.

    Attributes:
        root_path: Source root path analyzed in this run.
        report: Compiled report of the run.
    """

    root_path: str
    report: ScanReport


@dataclass(frozen=True)
class PersistRunResult:
    """Represent the persisted run summary."""

    run_id: int
    symbol_count: int
    finding_count: int
    skipped_count: int
    status: RunStatus


def run_status(report: ScanReport) -> RunStatus:
    """Derive the stored status of a run from its report."""
    if not report.complete:
        return "incomplete"
    if report.skipped:
        return "completed_with_errors"
    return "completed"


class BaselineStore(Protocol):
    """Define the contract for storing runs and reading them back as baselines."""

    def save_run(self, payload: PersistRunInput) -> PersistRunResult:
        """Persist one run snapshot."""

    def load_baseline(self, run_id: int) -> Baseline:
        """Load the baseline of one stored run."""

    def load_latest_baseline(self, root_path: str) -> Baseline | None:
        """Load the most recent complete run for a root path, if any."""
