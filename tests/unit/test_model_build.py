import json
import threading
from pathlib import Path

import pytest

from dps.analyzer import (
    FieldDeclaration,
    MethodDeclaration,
    ParsedUnit,
    SourceUnit,
    TypeDeclaration,
    UnparseableUnitError,
)
from dps.analyzers import PythonAnalyzer, load_declaration_units
from dps.config import ScanConfig
from dps.model import Relationship, SkippedUnit
from dps.model_builder import SymbolModelBuilder


def _write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _unit(path: str, *declarations: TypeDeclaration) -> SourceUnit:
    return SourceUnit.from_declarations(path, "java", list(declarations))


def _blocking_unit(
    path: str, release: threading.Event, started: threading.Event | None = None
) -> SourceUnit:
    def handle() -> ParsedUnit:
        if started is not None:
            started.set()
        release.wait(timeout=5)
        return ParsedUnit(declarations=(TypeDeclaration(name="Slow"),))

    return SourceUnit(path=path, language="java", handle=handle)


def _failing_unit(path: str) -> SourceUnit:
    def handle() -> ParsedUnit:
        raise UnparseableUnitError("unexpected token")

    return SourceUnit(path=path, language="java", handle=handle)


DOMAIN_MODULE = "\n".join(
    [
        "from dataclasses import dataclass",
        "from decimal import Decimal",
        "from typing import Protocol",
        "",
        "",
        "@dataclass(frozen=True)",
        "class Money:",
        "    amount: Decimal",
        "    currency: str",
        "",
        "",
        "class Order:",
        "    def __init__(self, order_id: str, customer_id: str) -> None:",
        "        self.id = order_id",
        "        self.customer_id = customer_id",
        '        self.lines: list["OrderLine"] = []',
        "",
        '    def add_line(self, line: "OrderLine") -> None:',
        "        self.lines.append(line)",
        "",
        "    @property",
        "    def total(self) -> Money:",
        '        return Money(Decimal(0), "EUR")',
        "",
        "",
        "@dataclass",
        "class OrderLine:",
        "    sku: str",
        "    price: Money",
        "",
        "",
        "class OrderRepository(Protocol):",
        "    def save(self, order: Order) -> None: ...",
        "",
        "    def find_by_id(self, order_id: str) -> Order | None: ...",
        "",
    ]
)


def test_mb_001_python_analyzer_extracts_declarations_lazily(tmp_path: Path) -> None:
    project_root = tmp_path / "project"
    _write_file(project_root / "shop" / "domain.py", DOMAIN_MODULE)

    units = PythonAnalyzer().discover(project_root)

    assert [unit.path for unit in units] == ["shop/domain.py"]
    assert units[0].language == "python"
    parsed = units[0].handle()
    by_name = {declaration.name: declaration for declaration in parsed.declarations}
    assert list(by_name) == ["Money", "Order", "OrderLine", "OrderRepository"]

    money = by_name["Money"]
    assert money.kind == "record"
    assert money.namespace == "shop.domain"
    assert money.value_equality is True
    assert money.fields == (
        FieldDeclaration(name="amount", declared_type="Decimal", mutable=False),
        FieldDeclaration(name="currency", declared_type="str", mutable=False),
    )

    order = by_name["Order"]
    assert [field.name for field in order.fields] == ["id", "customer_id", "lines"]
    assert order.fields[0].declared_type == "str"
    assert order.fields[0].mutable is True
    methods = {method.name: method for method in order.methods}
    assert methods["add_line"].parameter_types == ("'OrderLine'",)
    assert methods["total"].is_accessor is True
    assert methods["total"].return_type == "Money"

    line = by_name["OrderLine"]
    assert line.kind == "class"
    assert line.value_equality is True
    assert all(field.mutable for field in line.fields)

    repository = by_name["OrderRepository"]
    assert repository.kind == "interface"
    assert repository.is_abstract is True
    assert all(method.is_abstract for method in repository.methods)


def test_mb_002_python_analyzer_honours_gitignore_files(tmp_path: Path) -> None:
    project_root = tmp_path / "project"
    _write_file(project_root / ".gitignore", "build/\n*_generated.py\n")
    _write_file(project_root / "pkg" / "a.py", "class A:\n    pass\n")
    _write_file(project_root / "pkg" / "c_generated.py", "class C:\n    pass\n")
    _write_file(project_root / "pkg" / "notes.txt", "not python\n")
    _write_file(project_root / "build" / "b.py", "class B:\n    pass\n")
    _write_file(project_root / "pkg" / "sub" / ".gitignore", "skip.py\n")
    _write_file(project_root / "pkg" / "sub" / "skip.py", "class S:\n    pass\n")
    _write_file(project_root / "pkg" / "sub" / "keep.py", "class K:\n    pass\n")

    units = PythonAnalyzer().discover(project_root)

    assert [unit.path for unit in units] == ["pkg/a.py", "pkg/sub/keep.py"]


def test_mb_003_python_graph_links_owned_parts_by_composition(tmp_path: Path) -> None:
    project_root = tmp_path / "project"
    _write_file(project_root / "shop" / "domain.py", DOMAIN_MODULE)
    units = PythonAnalyzer().discover(project_root)

    result = SymbolModelBuilder(ScanConfig(max_workers=1)).build(units)

    prefix = "shop/domain.py::shop.domain."
    assert result.complete is True
    assert [symbol.name for symbol in result.graph.symbols] == [
        "Money",
        "Order",
        "OrderLine",
        "OrderRepository",
    ]
    assert result.graph.relationships == (
        Relationship(
            source_id=f"{prefix}Order",
            target_id=f"{prefix}OrderLine",
            kind="composition",
            cardinality="many",
            via="lines",
        ),
        Relationship(
            source_id=f"{prefix}OrderLine",
            target_id=f"{prefix}Money",
            kind="composition",
            cardinality="one",
            via="price",
        ),
    )


def test_mb_004_unparseable_python_file_is_skipped_without_affecting_others(
    tmp_path: Path,
) -> None:
    project_root = tmp_path / "project"
    _write_file(project_root / "ok.py", "class Ok:\n    pass\n")
    _write_file(project_root / "broken.py", "class Broken(:\n    pass\n")

    units = PythonAnalyzer().discover(project_root)
    result = SymbolModelBuilder(ScanConfig(max_workers=2)).build(units)
    alone = SymbolModelBuilder(ScanConfig(max_workers=2)).build(
        [unit for unit in units if unit.path == "ok.py"]
    )

    assert [symbol.symbol_id for symbol in result.graph.symbols] == ["ok.py::ok.Ok"]
    assert len(result.skipped) == 1
    assert result.skipped[0].path == "broken.py"
    assert result.skipped[0].kind == "unparseable"
    assert "cannot parse broken.py" in result.skipped[0].reason
    assert result.graph == alone.graph
    assert result.complete is True


def test_mb_005_relationship_kinds_are_derived_from_field_shapes() -> None:
    base = TypeDeclaration(name="AggregateRoot", kind="class", is_abstract=True)
    customer = TypeDeclaration(
        name="Customer",
        fields=(FieldDeclaration("id", "UUID", mutable=False),),
        bases=("AggregateRoot",),
    )
    order = TypeDeclaration(
        name="Order",
        fields=(
            FieldDeclaration("id", "UUID", mutable=False),
            FieldDeclaration("customerId", "UUID"),
            FieldDeclaration("lines", "OrderLine[]"),
            FieldDeclaration("referrer", "Optional[Customer]"),
        ),
        bases=("AggregateRoot",),
    )
    order_line = TypeDeclaration(
        name="OrderLine",
        fields=(FieldDeclaration("lineId", "UUID"), FieldDeclaration("sku", "String")),
    )

    result = SymbolModelBuilder(ScanConfig(max_workers=2)).build(
        [_unit("Base.java", base), _unit("Sales.java", customer, order, order_line)]
    )

    edges = {
        (edge.source_id, edge.target_id, edge.kind, edge.cardinality, edge.via)
        for edge in result.graph.relationships
    }
    assert edges == {
        ("Sales.java::Order", "Sales.java::Customer", "association_by_identity", "one", "customerId"),
        ("Sales.java::Order", "Sales.java::OrderLine", "composition", "many", "lines"),
        ("Sales.java::Order", "Sales.java::Customer", "association_by_reference", "one", "referrer"),
        ("Sales.java::Order", "Base.java::AggregateRoot", "inheritance", "one", "AggregateRoot"),
        ("Sales.java::Customer", "Base.java::AggregateRoot", "inheritance", "one", "AggregateRoot"),
    }


def test_mb_006_duplicate_symbol_ids_keep_the_first_unit() -> None:
    first = TypeDeclaration(name="Order", fields=(FieldDeclaration("id", "long"),))
    second = TypeDeclaration(name="Order", fields=(FieldDeclaration("code", "long"),))

    result = SymbolModelBuilder(ScanConfig(max_workers=2)).build(
        [_unit("Order.java", first), _unit("Order.java", second)]
    )

    assert len(result.graph) == 1
    assert result.graph.get("Order.java::Order").fields[0].name == "id"


def test_mb_007_unit_exceeding_timeout_is_skipped_and_others_complete() -> None:
    release = threading.Event()
    config = ScanConfig(
        max_workers=2, unit_timeout_seconds=0.2, poll_interval_seconds=0.01
    )
    try:
        result = SymbolModelBuilder(config).build(
            [
                _blocking_unit("Slow.java", release),
                _unit("A.java", TypeDeclaration(name="A")),
                _unit("B.java", TypeDeclaration(name="B")),
            ]
        )
    finally:
        release.set()

    assert result.skipped == (
        SkippedUnit(path="Slow.java", kind="timeout", reason="extraction exceeded 0.2s"),
    )
    assert [symbol.name for symbol in result.graph.symbols] == ["A", "B"]
    assert result.complete is True


def test_mb_008_units_without_a_free_worker_are_skipped_after_timeouts() -> None:
    release = threading.Event()
    config = ScanConfig(
        max_workers=1, unit_timeout_seconds=0.1, poll_interval_seconds=0.01
    )
    try:
        result = SymbolModelBuilder(config).build(
            [
                _blocking_unit("Slow.java", release),
                _unit("A.java", TypeDeclaration(name="A")),
            ]
        )
    finally:
        release.set()

    assert [(item.path, item.kind) for item in result.skipped] == [
        ("Slow.java", "timeout"),
        ("A.java", "timeout"),
    ]
    assert result.skipped[1].reason == "no worker available; all workers timed out"
    assert len(result.graph) == 0


def test_mb_009_cancellation_returns_partial_graph_marked_incomplete() -> None:
    release = threading.Event()
    cancel_event = threading.Event()

    def cancelling_handle() -> ParsedUnit:
        cancel_event.set()
        release.wait(timeout=5)
        return ParsedUnit(declarations=(TypeDeclaration(name="Late"),))

    try:
        result = SymbolModelBuilder(
            ScanConfig(max_workers=1, poll_interval_seconds=0.01)
        ).build(
            [
                _unit("A.java", TypeDeclaration(name="A")),
                SourceUnit(path="B.java", language="java", handle=cancelling_handle),
                _unit("C.java", TypeDeclaration(name="C")),
            ],
            cancel_event=cancel_event,
        )
    finally:
        release.set()

    assert result.complete is False
    assert result.processed_paths == ("A.java",)
    assert [symbol.name for symbol in result.graph.symbols] == ["A"]
    assert result.unit_count == 3


def test_mb_010_declaration_document_yields_lazy_units(tmp_path: Path) -> None:
    document = tmp_path / "declarations.json"
    document.write_text(
        json.dumps(
            {
                "units": [
                    {
                        "path": "src/Order.java",
                        "language": "java",
                        "declarations": [
                            {
                                "name": "Order",
                                "namespace": "shop",
                                "fields": [
                                    {"name": "id", "declared_type": "UUID", "mutable": False}
                                ],
                                "methods": [
                                    {"name": "cancel", "signature": "void cancel()"}
                                ],
                            }
                        ],
                    },
                    {"path": "src/Broken.java", "language": "java", "error": "line 3: ';' expected"},
                    {
                        "path": "src/Odd.java",
                        "language": "java",
                        "declarations": [{"name": "Odd", "kind": "module"}],
                    },
                ]
            }
        ),
        encoding="utf-8",
    )

    units = load_declaration_units(document)
    result = SymbolModelBuilder(ScanConfig(max_workers=2)).build(units)

    assert [unit.path for unit in units] == [
        "src/Order.java",
        "src/Broken.java",
        "src/Odd.java",
    ]
    order = result.graph.get("src/Order.java::shop.Order")
    assert order.language == "java"
    assert order.fields == (
        FieldDeclaration(name="id", declared_type="UUID", mutable=False),
    )
    assert order.methods == (MethodDeclaration(name="cancel", signature="void cancel()"),)
    assert [(item.path, item.kind) for item in result.skipped] == [
        ("src/Broken.java", "unparseable"),
        ("src/Odd.java", "unparseable"),
    ]
    assert result.skipped[0].reason == "line 3: ';' expected"


def test_mb_011_malformed_declaration_document_is_rejected(tmp_path: Path) -> None:
    document = tmp_path / "declarations.json"
    document.write_text(json.dumps({"files": []}), encoding="utf-8")

    with pytest.raises(ValueError, match="'units' list"):
        load_declaration_units(document)


def test_mb_012_unexpected_handle_errors_skip_only_that_unit(tmp_path: Path) -> None:
    def exhausted_handle() -> ParsedUnit:
        raise RecursionError("maximum recursion depth exceeded")

    def crashing_handle() -> ParsedUnit:
        raise RuntimeError("front end crashed")

    result = SymbolModelBuilder(ScanConfig(max_workers=2)).build(
        [
            SourceUnit(path="Deep.java", language="java", handle=exhausted_handle),
            _unit("A.java", TypeDeclaration(name="A")),
            SourceUnit(path="Crash.java", language="java", handle=crashing_handle),
        ]
    )

    assert [symbol.name for symbol in result.graph.symbols] == ["A"]
    assert [(item.path, item.kind) for item in result.skipped] == [
        ("Deep.java", "unparseable"),
        ("Crash.java", "unparseable"),
    ]
    assert result.skipped[0].reason == "RecursionError: maximum recursion depth exceeded"
    assert result.skipped[1].reason == "RuntimeError: front end crashed"
    assert result.complete is True

    project_root = tmp_path / "project"
    _write_file(project_root / "ok.py", "class Ok:\n    pass\n")
    _write_file(project_root / "deep.py", "x = " + "-" * 200000 + "1\n")

    units = PythonAnalyzer().discover(project_root)
    python_result = SymbolModelBuilder(ScanConfig(max_workers=1)).build(units)

    assert [symbol.symbol_id for symbol in python_result.graph.symbols] == ["ok.py::ok.Ok"]
    assert [(item.path, item.kind) for item in python_result.skipped] == [
        ("deep.py", "unparseable")
    ]
    assert "cannot parse deep.py" in python_result.skipped[0].reason


def test_mb_013_collections_of_identity_bearing_types_are_references() -> None:
    customer = TypeDeclaration(
        name="Customer", fields=(FieldDeclaration("id", "String", mutable=False),)
    )
    order = TypeDeclaration(
        name="Order",
        fields=(
            FieldDeclaration("id", "String", mutable=False),
            FieldDeclaration("lines", "List<OrderLine>"),
        ),
    )
    order_line = TypeDeclaration(
        name="OrderLine",
        fields=(
            FieldDeclaration("id", "String", mutable=False),
            FieldDeclaration("watchers", "List<Customer>"),
        ),
    )

    result = SymbolModelBuilder(ScanConfig(max_workers=1)).build(
        [_unit("Shop.java", customer, order, order_line)]
    )

    edges = {
        (edge.source_id, edge.target_id, edge.kind, edge.cardinality)
        for edge in result.graph.relationships
    }
    assert edges == {
        ("Shop.java::Order", "Shop.java::OrderLine", "composition", "many"),
        ("Shop.java::OrderLine", "Shop.java::Customer", "association_by_reference", "many"),
    }


def test_mb_014_nested_gitignore_anchors_and_negations_apply_below_their_directory(
    tmp_path: Path,
) -> None:
    project_root = tmp_path / "project"
    _write_file(project_root / "top.py", "class Top:\n    pass\n")
    _write_file(project_root / "pkg" / ".gitignore", "gen/*.py\n!gen/keep.py\n")
    _write_file(project_root / "pkg" / "gen" / "drop.py", "class Drop:\n    pass\n")
    _write_file(project_root / "pkg" / "gen" / "keep.py", "class Keep:\n    pass\n")
    _write_file(project_root / ".venv" / "lib.py", "class Lib:\n    pass\n")

    units = PythonAnalyzer().discover(project_root)

    assert [unit.path for unit in units] == ["pkg/gen/keep.py", "top.py"]
