import io
import json
import re
import signal
import sqlite3
import threading
from pathlib import Path
from typing import Any

import pytest

from cli.scan_harness import INTERRUPTED_EXIT_CODE, parse_aliases, run
from dps.analyzer import ParsedUnit, SourceUnit, TypeDeclaration


def _strip_ansi(text: str) -> str:
    return re.sub(r"\x1b\[[0-9;]*m", "", text)


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _order(*extra_fields: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": "Order",
        "namespace": "shop",
        "fields": [
            {"name": "id", "declared_type": "String", "mutable": False},
            {"name": "status", "declared_type": "String"},
            {"name": "lines", "declared_type": "List<OrderLine>"},
            *extra_fields,
        ],
        "methods": [
            {"name": "addLine", "signature": "void addLine(OrderLine line)", "parameter_types": ["OrderLine"]},
            {"name": "cancel", "signature": "void cancel()"},
        ],
    }


def _order_line() -> dict[str, Any]:
    return {
        "name": "OrderLine",
        "namespace": "shop",
        "kind": "record",
        "fields": [
            {"name": "sku", "declared_type": "String", "mutable": False},
            {"name": "quantity", "declared_type": "int", "mutable": False},
        ],
        "value_equality": True,
    }


def _declarations(path: Path, order: dict[str, Any] | None = None) -> Path:
    _write_file(
        path,
        json.dumps(
            {
                "units": [
                    {
                        "path": "src/shop/Order.java",
                        "language": "java",
                        "declarations": [order or _order()],
                    },
                    {
                        "path": "src/shop/OrderLine.java",
                        "language": "java",
                        "declarations": [_order_line()],
                    },
                ]
            }
        ),
    )
    return path


def test_cli_001_scan_outputs_json_report(tmp_path: Path) -> None:
    document = _declarations(tmp_path / "declarations.json")
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["scan", "--declarations", str(document), "--format", "json"],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    assert stderr.getvalue() == ""
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    assert payload["complete"] is True
    assert payload["changes"] is None
    order = payload["classifications"]["src/shop/Order.java::shop.Order"]
    assert order["role"] == "aggregate_root"
    assert order["confidence"] == "high"
    assert order["evidence"] == ["AR-001", "AR-002"]
    assert [finding["anti_pattern"] for finding in payload["findings"]] == [
        "missing_repository"
    ]


def test_cli_002_scan_writes_json_to_output_file(tmp_path: Path) -> None:
    document = _declarations(tmp_path / "declarations.json")
    output_path = tmp_path / "out" / "report.json"
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        [
            "scan",
            "--declarations",
            str(document),
            "--format",
            "json",
            "--output",
            str(output_path),
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    assert stdout.getvalue() == ""
    payload = json.loads(output_path.read_text(encoding="utf-8"))
    assert payload["counts"]["symbols"] == 2
    assert payload["counts"]["relationships"] == 1


def test_cli_003_scan_renders_tables_by_default(tmp_path: Path) -> None:
    document = _declarations(tmp_path / "declarations.json")
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(["scan", "--declarations", str(document)], stdout=stdout, stderr=stderr)

    rendered = _strip_ansi(stdout.getvalue())
    assert exit_code == 0
    assert "classifications (registry 2026.1)" in rendered
    assert "findings" in rendered
    assert "changes" not in rendered


def test_cli_004_scan_python_project_reports_skipped_units(tmp_path: Path) -> None:
    project_root = tmp_path / "project"
    _write_file(
        project_root / "billing" / "money.py",
        "\n".join(
            [
                "from dataclasses import dataclass",
                "from decimal import Decimal",
                "",
                "",
                "@dataclass(frozen=True)",
                "class Money:",
                "    amount: Decimal",
                "    currency: str",
                "",
            ]
        ),
    )
    _write_file(project_root / "billing" / "broken.py", "def broken(:\n")
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["scan", "--path", str(project_root), "--format", "json", "--workers", "2"],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    assert "skipped_unit: billing/broken.py (unparseable)" in stderr.getvalue()
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    money = payload["classifications"]["billing/money.py::billing.money.Money"]
    assert money["role"] == "value_object"
    assert payload["counts"]["skipped"] == 1


def test_cli_005_missing_path_returns_usage_error(tmp_path: Path) -> None:
    stdout = io.StringIO()
    stderr = io.StringIO()

    exit_code = run(
        ["scan", "--path", str(tmp_path / "missing")], stdout=stdout, stderr=stderr
    )

    assert exit_code == 2
    assert "Path does not exist" in stderr.getvalue()
    assert run(["scan"], stdout=stdout, stderr=stderr) == 2


def test_cli_006_stored_run_is_used_as_baseline_for_the_next_scan(
    tmp_path: Path,
) -> None:
    document = _declarations(tmp_path / "declarations.json")
    db_path = tmp_path / "runs.sqlite"
    stderr = io.StringIO()

    first = io.StringIO()
    assert (
        run(
            [
                "scan",
                "--declarations",
                str(document),
                "--format",
                "json",
                "--baseline-db",
                str(db_path),
                "--db",
                str(db_path),
            ],
            stdout=first,
            stderr=stderr,
        )
        == 0
    )
    second = io.StringIO()
    assert (
        run(
            [
                "scan",
                "--declarations",
                str(document),
                "--format",
                "json",
                "--baseline-db",
                str(db_path),
            ],
            stdout=second,
            stderr=stderr,
        )
        == 0
    )

    assert json.loads(_strip_ansi(first.getvalue()))["changes"] is None
    assert json.loads(_strip_ansi(second.getvalue()))["changes"] == []
    connection = sqlite3.connect(db_path)
    try:
        assert connection.execute("SELECT status FROM runs").fetchall() == [
            ("completed",)
        ]
    finally:
        connection.close()


def test_cli_007_saved_baseline_file_drives_the_diff(tmp_path: Path) -> None:
    baseline_path = tmp_path / "baseline.json"
    before = _declarations(tmp_path / "before.json")
    after = _declarations(
        tmp_path / "after.json", _order({"name": "notes", "declared_type": "String"})
    )
    stderr = io.StringIO()

    assert (
        run(
            ["scan", "--declarations", str(before), "--save-baseline", str(baseline_path)],
            stdout=io.StringIO(),
            stderr=stderr,
        )
        == 0
    )
    stdout = io.StringIO()
    exit_code = run(
        [
            "scan",
            "--declarations",
            str(after),
            "--format",
            "json",
            "--baseline",
            str(baseline_path),
        ],
        stdout=stdout,
        stderr=stderr,
    )

    assert exit_code == 0
    changes = json.loads(_strip_ansi(stdout.getvalue()))["changes"]
    assert len(changes) == 1
    assert changes[0]["symbol_id"] == "src/shop/Order.java::shop.Order"
    assert changes[0]["change_kind"] == "modified"
    assert changes[0]["diff"]["fields_added"] == ["notes"]


def test_cli_008_incompatible_baseline_returns_usage_error(tmp_path: Path) -> None:
    document = _declarations(tmp_path / "declarations.json")
    baseline_path = tmp_path / "baseline.json"
    _write_file(baseline_path, json.dumps({"schema_version": "9.0"}))
    stderr = io.StringIO()

    exit_code = run(
        ["scan", "--declarations", str(document), "--baseline", str(baseline_path)],
        stdout=io.StringIO(),
        stderr=stderr,
    )

    assert exit_code == 2
    assert "incompatible" in stderr.getvalue()


def test_cli_009_invalid_aliases_and_rule_overrides_return_usage_error(
    tmp_path: Path,
) -> None:
    document = _declarations(tmp_path / "declarations.json")
    rules_path = tmp_path / "rules.json"
    _write_file(rules_path, json.dumps({"weights": {"ZZ-001": 1.0}}))
    stderr = io.StringIO()

    alias_exit = run(
        ["scan", "--declarations", str(document), "--alias", "no-separator"],
        stdout=io.StringIO(),
        stderr=stderr,
    )
    rules_exit = run(
        ["scan", "--declarations", str(document), "--rules", str(rules_path)],
        stdout=io.StringIO(),
        stderr=stderr,
    )

    assert alias_exit == 2
    assert rules_exit == 2
    assert "Invalid alias" in stderr.getvalue()
    assert "ZZ-001" in stderr.getvalue()
    assert parse_aliases(["a.py::A = a.py::B"]) == {"a.py::A": "a.py::B"}


def test_cli_010_interrupt_emits_partial_report_marked_incomplete(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    document = _declarations(tmp_path / "declarations.json")
    baseline_path = tmp_path / "baseline.json"
    release = threading.Event()

    def interrupting_handle() -> ParsedUnit:
        signal.raise_signal(signal.SIGINT)
        release.wait(timeout=5)
        return ParsedUnit(declarations=(TypeDeclaration(name="Late"),))

    units = [
        SourceUnit.from_declarations("a/A.java", "java", [TypeDeclaration(name="A")]),
        SourceUnit(path="a/B.java", language="java", handle=interrupting_handle),
        SourceUnit.from_declarations("a/C.java", "java", [TypeDeclaration(name="C")]),
    ]
    monkeypatch.setattr("cli.scan_harness.load_declaration_units", lambda path: units)
    stdout = io.StringIO()
    stderr = io.StringIO()
    previous_handler = signal.getsignal(signal.SIGINT)

    try:
        exit_code = run(
            [
                "scan",
                "--declarations",
                str(document),
                "--format",
                "json",
                "--workers",
                "1",
                "--save-baseline",
                str(baseline_path),
            ],
            stdout=stdout,
            stderr=stderr,
        )
    finally:
        release.set()

    assert exit_code == INTERRUPTED_EXIT_CODE
    assert "scan incomplete" in stderr.getvalue()
    payload = json.loads(_strip_ansi(stdout.getvalue()))
    assert payload["complete"] is False
    assert list(payload["classifications"]) == ["a/A.java::A"]
    assert payload["counts"]["processed_units"] == 1
    assert not baseline_path.exists()
    assert signal.getsignal(signal.SIGINT) == previous_handler
