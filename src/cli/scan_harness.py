# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""CLI harness for classifying, checking and diffing tactical design roles."""

import argparse
import contextlib
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import Iterator, TextIO

from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table

from dps.analyzer import SourceUnit
from dps.analyzers import PythonAnalyzer, load_declaration_units
from dps.baseline import (
    Baseline,
    SchemaVersionMismatchError,
    read_baseline,
    write_baseline,
)
from dps.config import ScanConfig, load_config
from dps.database import SQLiteBaselineStore
from dps.model import ChangeRecord
from dps.persistence import BaselineStoreError, PersistRunInput
from dps.pipeline import ScanEngine, baseline_from_report
from dps.report import ScanReport, report_to_dict
from dps.rules import (
    RuleEvaluationError,
    RuleRegistry,
    default_registry,
    load_rule_overrides,
)

logger = logging.getLogger(__name__)

TABLE_COLUMN_RATIOS: dict[str, int] = {
    "symbol": 4,
    "role": 2,
    "confidence": 1,
    "score": 1,
    "evidence": 3,
}

SEVERITY_STYLES: dict[str, str] = {"high": "red", "medium": "yellow", "low": "green"}

INTERRUPTED_EXIT_CODE = 130


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="dps")
    subparsers = parser.add_subparsers(dest="command", required=True)
    scan_parser = subparsers.add_parser("scan")
    source = scan_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--path", help="Root path of a Python project to analyze.")
    source.add_argument(
        "--declarations", help="JSON declaration document from an external front end."
    )
    scan_parser.add_argument(
        "--format",
        choices=("table", "json"),
        default="table",
        help="Output format.",
    )
    scan_parser.add_argument(
        "--output",
        required=False,
        help="Optional output file path for raw JSON when --format json is used.",
    )
    scan_parser.add_argument("--config", help="JSON file with configuration overrides.")
    scan_parser.add_argument("--rules", help="JSON file with rule weight overrides.")
    scan_parser.add_argument("--workers", type=int, help="Worker thread count.")
    scan_parser.add_argument(
        "--unit-timeout", type=float, help="Per-unit extraction timeout in seconds."
    )
    baseline_source = scan_parser.add_mutually_exclusive_group()
    baseline_source.add_argument("--baseline", help="Baseline JSON file to diff against.")
    baseline_source.add_argument(
        "--baseline-db",
        help="SQLite run store; diff against its latest run for the same root.",
    )
    scan_parser.add_argument(
        "--save-baseline", help="Write this run as a baseline JSON file."
    )
    scan_parser.add_argument("--db", help="SQLite run store to persist this run to.")
    scan_parser.add_argument(
        "--alias",
        action="append",
        default=[],
        metavar="OLD=NEW",
        help="Map a baseline symbol id to its renamed current id. Repeatable.",
    )
    return parser


def run(argv: list[str], stdout: TextIO, stderr: TextIO) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return 2
    if args.command == "scan":
        return _run_scan(args=args, stdout=stdout, stderr=stderr)

    logger.warning(f"Unsupported command (command={args.command})")
    stderr.write(f"Unsupported command: {args.command}\n")
    return 2


def _run_scan(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run scan command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    try:
        aliases = parse_aliases(args.alias)
        config = _build_config(args)
        registry = _build_registry(args)
        root_path, units = _discover_units(args)
        baseline = _load_baseline(args, root_path)
    except (
        OSError,
        ValueError,
        RuleEvaluationError,
        SchemaVersionMismatchError,
        BaselineStoreError,
    ) as exc:
        logger.warning(f"Scan setup failed (error={exc})")
        stderr.write(f"{exc}\n")
        return 2

    cancel_event = threading.Event()
    try:
        with cancel_on_interrupt(cancel_event):
            report = ScanEngine(config=config, registry=registry).run(
                units, baseline=baseline, aliases=aliases, cancel_event=cancel_event
            )
    except (RuleEvaluationError, SchemaVersionMismatchError, ValueError) as exc:
        logger.warning(f"Scan failed (error={exc})")
        stderr.write(f"Scan failed: {exc}\n")
        return 2

    _write_skipped(report=report, stderr=stderr)
    try:
        _store_run(args=args, report=report, root_path=root_path)
    except (OSError, ValueError, BaselineStoreError) as exc:
        logger.warning(f"Failed to store run (error={exc})")
        stderr.write(f"Failed to store run: {exc}\n")
        return 2

    if args.format == "json":
        if args.output:
            try:
                _write_json_file(report=report, output_path=Path(args.output))
            except OSError as exc:
                logger.warning(
                    f"Failed to write JSON output file "
                    f"(output_path={args.output} error={exc})"
                )
                stderr.write(f"Failed to write JSON output file: {args.output}\n")
                return 2
        else:
            _write_json(report=report, stdout=stdout)
    else:
        _write_table(report=report, stdout=stdout)
    return 0 if report.complete else INTERRUPTED_EXIT_CODE


@contextlib.contextmanager
def cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[None]:
    """Turn the first Ctrl-C into a cancellation request.

    The first SIGINT sets ``cancel_event`` so the scan stops and reports what it
    has; a second one raises ``KeyboardInterrupt`` as usual. Outside the main
    thread signal handlers cannot be installed and nothing changes.

    Args:
        cancel_event: Event handed to the scan engine.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum: int, frame: object) -> None:
        if cancel_event.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received; cancelling scan")
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def parse_aliases(values: list[str]) -> dict[str, str]:
    """Parse repeated ``OLD=NEW`` alias arguments.

    Args:
        values: Raw alias arguments.

    Returns:
        Mapping of baseline symbol id to current symbol id.

    Raises:
        ValueError: If an alias is malformed or repeats an old id.
    """
    aliases: dict[str, str] = {}
    for value in values:
        old_id, separator, new_id = value.partition("=")
        if not separator or not old_id.strip() or not new_id.strip():
            raise ValueError(f"Invalid alias (expected OLD=NEW): {value}")
        if old_id.strip() in aliases:
            raise ValueError(f"Duplicate alias for {old_id.strip()}")
        aliases[old_id.strip()] = new_id.strip()
    return aliases


def _build_config(args: argparse.Namespace) -> ScanConfig:
    config = load_config(Path(args.config)) if args.config else ScanConfig()
    overrides: dict[str, int | float] = {}
    if args.workers is not None:
        overrides["max_workers"] = args.workers
    if args.unit_timeout is not None:
        overrides["unit_timeout_seconds"] = args.unit_timeout
    return replace(config, **overrides) if overrides else config


def _build_registry(args: argparse.Namespace) -> RuleRegistry:
    registry = default_registry()
    if args.rules:
        return load_rule_overrides(registry, Path(args.rules))
    return registry


def _discover_units(args: argparse.Namespace) -> tuple[str, list[SourceUnit]]:
    """Return the recorded root path and the source units to scan.

    Raises:
        ValueError: If the input path does not exist.
        OSError: If the input cannot be read.
    """
    source = Path(args.path or args.declarations)
    if not source.exists():
        raise ValueError(f"Path does not exist: {source}")
    root_path = str(source.resolve())
    if args.path:
        if not source.is_dir():
            raise ValueError(f"Path is not a directory: {source}")
        return root_path, PythonAnalyzer().discover(source)
    return root_path, load_declaration_units(source)


def _load_baseline(args: argparse.Namespace, root_path: str) -> Baseline | None:
    if args.baseline:
        return read_baseline(Path(args.baseline))
    if args.baseline_db:
        return SQLiteBaselineStore(db_path=Path(args.baseline_db)).load_latest_baseline(
            root_path
        )
    return None


def _store_run(args: argparse.Namespace, report: ScanReport, root_path: str) -> None:
    if args.save_baseline and not report.complete:
        logger.warning(
            f"Baseline not written for an incomplete scan "
            f"(save_baseline={args.save_baseline})"
        )
    elif args.save_baseline:
        write_baseline(
            Path(args.save_baseline), baseline_from_report(report, root_path=root_path)
        )
    if args.db:
        result = SQLiteBaselineStore(db_path=Path(args.db)).save_run(
            PersistRunInput(root_path=root_path, report=report)
        )
        logger.info(f"Run stored (run_id={result.run_id} status={result.status})")


def _write_skipped(report: ScanReport, stderr: TextIO) -> None:
    for skipped in report.skipped:
        stderr.write(f"skipped_unit: {skipped.path} ({skipped.kind}): {skipped.reason}\n")
    for symbol_id in report.unverified_symbols:
        stderr.write(f"unverified_symbol: {symbol_id} (origin unit skipped)\n")
    if not report.complete:
        stderr.write("scan incomplete: results cover a partial graph\n")


def _write_json(report: ScanReport, stdout: TextIO) -> None:
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    console.print(
        json.dumps(report_to_dict(report), indent=2, sort_keys=True),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def _write_json_file(report: ScanReport, output_path: Path) -> None:
    """Write raw JSON report to an output file.

    Raises:
        OSError: If directory creation or file writing fails.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(report_to_dict(report), indent=2, sort_keys=True), encoding="utf-8"
    )


def _write_table(report: ScanReport, stdout: TextIO) -> None:
    """Write classifications, findings and changes as Rich tables.

    Args:
        report: Compiled scan report.
        stdout: Standard output stream.
    """
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    console.rule(
        f"classifications (registry {report.registry_version})",
        style=Style(color="cyan"),
        characters="-",
    )
    table = Table(show_header=True, show_lines=True, expand=True)
    table.add_column("symbol", ratio=TABLE_COLUMN_RATIOS["symbol"], overflow="fold")
    table.add_column("role", ratio=TABLE_COLUMN_RATIOS["role"], overflow="fold")
    table.add_column(
        "confidence", ratio=TABLE_COLUMN_RATIOS["confidence"], overflow="fold"
    )
    table.add_column(
        "score", ratio=TABLE_COLUMN_RATIOS["score"], justify="right", overflow="fold"
    )
    table.add_column("evidence", ratio=TABLE_COLUMN_RATIOS["evidence"], overflow="fold")
    for item in report.classifications:
        role = f"{item.role} (ambiguous)" if item.ambiguous else item.role
        table.add_row(
            item.symbol_id,
            role,
            item.confidence,
            f"{item.score:.2f}",
            ", ".join(item.evidence),
        )
    console.print(table)

    if report.findings:
        console.rule("findings", style=Style(color="cyan"), characters="-")
        findings = Table(show_header=True, show_lines=True, expand=True)
        findings.add_column("anti_pattern", ratio=2, overflow="fold")
        findings.add_column("severity", ratio=1, overflow="fold")
        findings.add_column("symbols", ratio=3, overflow="fold")
        findings.add_column("evidence", ratio=4, overflow="fold")
        for finding in report.findings:
            findings.add_row(
                finding.anti_pattern,
                finding.severity,
                ", ".join(finding.symbol_ids),
                "; ".join(finding.evidence),
                style=SEVERITY_STYLES[finding.severity],
            )
        console.print(findings)

    if report.changes is not None:
        console.rule("changes", style=Style(color="cyan"), characters="-")
        changes = Table(show_header=True, show_lines=True, expand=True)
        changes.add_column("symbol", ratio=4, overflow="fold")
        changes.add_column("change", ratio=1, overflow="fold")
        changes.add_column("detail", ratio=5, overflow="fold")
        for change in report.changes:
            changes.add_row(change.symbol_id, change.change_kind, _change_detail(change))
        console.print(changes)
        for hint in report.rename_hints:
            console.print(
                f"rename hint: {hint.removed_id} -> {hint.added_id} "
                f"(similarity={hint.similarity:.2f})",
                markup=False,
                highlight=False,
            )


def _change_detail(change: ChangeRecord) -> str:
    diff = change.diff
    if diff is None:
        return ""
    parts = [
        f"{name}={','.join(values)}"
        for name, values in (
            ("fields_added", diff.fields_added),
            ("fields_removed", diff.fields_removed),
            ("fields_changed", diff.fields_changed),
            ("methods_added", diff.methods_added),
            ("methods_removed", diff.methods_removed),
            ("methods_changed", diff.methods_changed),
            ("relationships_added", diff.relationships_added),
            ("relationships_removed", diff.relationships_removed),
            ("shape_changed", diff.shape_changed),
            ("evidence_added", diff.evidence_added),
            ("evidence_removed", diff.evidence_removed),
        )
        if values
    ]
    if diff.role_changed:
        parts.append("role_changed")
    if diff.confidence_changed:
        parts.append("confidence_changed")
    return "; ".join(parts)


def main() -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(sys.argv[1:], stdout=sys.stdout, stderr=sys.stderr)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
