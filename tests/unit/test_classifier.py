import pytest

from dps.analyzer import (
    FieldDeclaration,
    MethodDeclaration,
    SourceUnit,
    TypeDeclaration,
)
from dps.config import ScanConfig
from dps.model import LEVELS, Alternate, Classification
from dps.pipeline import ScanEngine
from dps.report import ScanReport, report_to_dict
from dps.rules import (
    RuleDefinition,
    RuleEvaluationError,
    RuleRegistry,
    default_registry,
)
from dps.scoring import ConfidenceScorer


def _field(
    name: str, declared_type: str | None = None, mutable: bool = True
) -> FieldDeclaration:
    return FieldDeclaration(name=name, declared_type=declared_type, mutable=mutable)


def _method(
    name: str,
    *parameter_types: str,
    return_type: str | None = None,
    is_abstract: bool = False,
) -> MethodDeclaration:
    return MethodDeclaration(
        name=name,
        signature=f"{name}({', '.join(parameter_types)})",
        parameter_types=parameter_types,
        return_type=return_type,
        is_abstract=is_abstract,
    )


def _unit(path: str, *declarations: TypeDeclaration) -> SourceUnit:
    return SourceUnit.from_declarations(path, "java", list(declarations))


def _by_name(report: ScanReport) -> dict[str, Classification]:
    return {
        item.symbol_id.rsplit("::", 1)[-1]: item for item in report.classifications
    }


def _order() -> TypeDeclaration:
    return TypeDeclaration(
        name="Order",
        fields=(
            _field("id", "String", mutable=False),
            _field("status", "String"),
            _field("lines", "List<OrderLine>"),
        ),
        methods=(_method("addLine", "OrderLine"), _method("cancel")),
    )


def _order_line() -> TypeDeclaration:
    return TypeDeclaration(
        name="OrderLine",
        kind="record",
        fields=(
            _field("sku", "String", mutable=False),
            _field("quantity", "int", mutable=False),
        ),
        value_equality=True,
    )


def _mixed_units() -> list[SourceUnit]:
    return [
        _unit("shop/Order.java", _order()),
        _unit("shop/OrderLine.java", _order_line()),
        _unit(
            "shop/OrderRepository.java",
            TypeDeclaration(
                name="OrderRepository",
                kind="interface",
                methods=(
                    _method("save", "Order", is_abstract=True),
                    _method(
                        "findById", "String", return_type="Order", is_abstract=True
                    ),
                ),
            ),
        ),
        _unit(
            "shop/OrderPlaced.java",
            TypeDeclaration(
                name="OrderPlaced",
                kind="record",
                fields=(
                    _field("orderId", "String", mutable=False),
                    _field("occurredAt", "Instant", mutable=False),
                ),
                value_equality=True,
            ),
        ),
        _unit(
            "shop/OrderFactory.java",
            TypeDeclaration(
                name="OrderFactory",
                methods=(_method("createOrder", "String", return_type="Order"),),
            ),
        ),
        _unit(
            "shop/DiscountPolicy.java",
            TypeDeclaration(
                name="DiscountPolicy",
                methods=(
                    _method("calculateDiscount", "Order", return_type="BigDecimal"),
                ),
            ),
        ),
        _unit(
            "shop/PaymentGateway.java",
            TypeDeclaration(
                name="PaymentGateway",
                kind="interface",
                methods=(_method("charge", "BigDecimal", is_abstract=True),),
            ),
        ),
        _unit(
            "shop/LargeOrderSpecification.java",
            TypeDeclaration(
                name="LargeOrderSpecification",
                methods=(_method("isSatisfiedBy", "Order", return_type="boolean"),),
            ),
        ),
    ]


def test_cls_001_order_with_owned_lines_and_behaviour_is_high_confidence_root() -> None:
    report = ScanEngine(config=ScanConfig(max_workers=2)).run(
        [_unit("shop/Order.java", _order()), _unit("shop/OrderLine.java", _order_line())]
    )

    classified = _by_name(report)
    order = classified["Order"]
    assert order.role == "aggregate_root"
    assert order.confidence == "high"
    assert order.score == 4.5
    assert order.evidence == ("AR-001", "AR-002")
    assert order.ambiguous is False
    assert "AR-001" in order.rationale
    line = classified["OrderLine"]
    assert line.role == "value_object"
    assert line.confidence == "high"
    assert "VO-001" in line.evidence

    assert [finding.anti_pattern for finding in report.findings] == [
        "missing_repository"
    ]
    assert report.findings[0].severity == "medium"
    assert report.findings[0].symbol_ids == ("shop/Order.java::Order",)


def test_cls_002_each_tactical_role_is_recognised_in_a_mixed_model() -> None:
    report = ScanEngine(config=ScanConfig(max_workers=3)).run(_mixed_units())

    roles = {name: item.role for name, item in _by_name(report).items()}
    assert roles == {
        "DiscountPolicy": "policy",
        "LargeOrderSpecification": "specification",
        "Order": "aggregate_root",
        "OrderFactory": "factory",
        "OrderLine": "value_object",
        "OrderPlaced": "domain_event",
        "OrderRepository": "repository_interface",
        "PaymentGateway": "driven_port",
    }
    assert "missing_repository" not in {
        finding.anti_pattern for finding in report.findings
    }


def test_cls_003_stateless_type_spanning_two_aggregates_is_domain_service() -> None:
    def aggregate(name: str) -> TypeDeclaration:
        return TypeDeclaration(
            name=name,
            fields=(_field("id", "String", mutable=False), _field("balance", "long")),
            methods=(_method("deposit", "long"), _method("withdraw", "long")),
        )

    report = ScanEngine(config=ScanConfig(max_workers=1)).run(
        [
            _unit("bank/Account.java", aggregate("Account")),
            _unit("bank/Wallet.java", aggregate("Wallet")),
            _unit(
                "bank/TransferService.java",
                TypeDeclaration(
                    name="TransferService",
                    methods=(_method("transfer", "Account", "Wallet", "long"),),
                ),
            ),
        ]
    )

    service = _by_name(report)["TransferService"]
    assert service.role == "domain_service"
    assert service.confidence == "high"
    assert service.evidence == ("DS-001", "DS-002")


def test_cls_004_classification_is_deterministic_across_worker_counts() -> None:
    serial = ScanEngine(config=ScanConfig(max_workers=1)).run(_mixed_units())
    parallel = ScanEngine(config=ScanConfig(max_workers=4)).run(
        list(reversed(_mixed_units()))
    )

    assert report_to_dict(serial) == report_to_dict(parallel)
    assert [item.symbol_id for item in serial.classifications] == sorted(
        item.symbol_id for item in serial.classifications
    )


def test_cls_005_every_classification_cites_at_least_one_rule() -> None:
    registry = default_registry()
    report = ScanEngine(config=ScanConfig(max_workers=2), registry=registry).run(
        _mixed_units()
    )

    assert len(report.classifications) == len(report.graph)
    for item in report.classifications:
        assert item.evidence
        assert item.confidence in LEVELS
        for rule_id in item.evidence:
            assert registry.get(rule_id).role == item.role
            assert rule_id in item.rationale


def test_cls_006_tie_forces_low_confidence_and_ambiguity() -> None:
    registry = RuleRegistry(
        [
            RuleDefinition("EN-101", "entity", lambda symbol, graph: 1.0, 3.0, "always"),
            RuleDefinition(
                "VO-101", "value_object", lambda symbol, graph: 1.0, 3.0, "always"
            ),
        ],
        version="test",
    )

    report = ScanEngine(config=ScanConfig(max_workers=1), registry=registry).run(
        [_unit("a/Thing.java", TypeDeclaration(name="Thing"))]
    )

    thing = report.classifications[0]
    assert thing.role == "entity"
    assert thing.confidence == "low"
    assert thing.ambiguous is True
    assert thing.alternates == (Alternate(role="value_object", score=3.0),)
    assert thing.support == 0.5
    assert "tied with value_object" in thing.rationale


def test_cls_007_close_runner_up_is_recorded_as_alternate_without_ambiguity() -> None:
    registry = RuleRegistry(
        [
            RuleDefinition("EN-101", "entity", lambda symbol, graph: 1.0, 3.0, "always"),
            RuleDefinition(
                "VO-101", "value_object", lambda symbol, graph: 1.0, 2.75, "always"
            ),
            RuleDefinition(
                "PO-101", "policy", lambda symbol, graph: 1.0, 1.0, "always"
            ),
        ],
        version="test",
    )

    report = ScanEngine(config=ScanConfig(max_workers=1), registry=registry).run(
        [_unit("a/Thing.java", TypeDeclaration(name="Thing"))]
    )

    thing = report.classifications[0]
    assert thing.role == "entity"
    assert thing.confidence == "medium"
    assert thing.ambiguous is False
    assert thing.alternates == (Alternate(role="value_object", score=2.75),)


def test_cls_008_symbol_without_any_firing_rule_is_a_fatal_error() -> None:
    registry = RuleRegistry(
        [
            RuleDefinition(
                "EN-101",
                "entity",
                lambda symbol, graph: 1.0 if symbol.name == "Sample" else 0.0,
                1.0,
                "sample only",
            )
        ],
        version="test",
    )

    with pytest.raises(RuleEvaluationError, match="no rule fired"):
        ScanEngine(config=ScanConfig(max_workers=1), registry=registry).run(
            [_unit("a/Thing.java", TypeDeclaration(name="Thing"))]
        )


def test_cls_009_predicate_failure_aborts_the_run() -> None:
    def explode(symbol, graph):  # type: ignore[no-untyped-def]
        if symbol.name == "Boom":
            raise KeyError("missing")
        return 1.0

    registry = RuleRegistry(
        [RuleDefinition("EN-101", "entity", explode, 1.0, "explodes on Boom")],
        version="test",
    )

    with pytest.raises(RuleEvaluationError) as excinfo:
        ScanEngine(config=ScanConfig(max_workers=2), registry=registry).run(
            [
                _unit("a/Fine.java", TypeDeclaration(name="Fine")),
                _unit("a/Boom.java", TypeDeclaration(name="Boom")),
            ]
        )
    assert excinfo.value.rule_id == "EN-101"


def test_cls_010_confidence_never_decreases_as_the_score_grows() -> None:
    scorer = ConfidenceScorer(ScanConfig())
    ranks = [
        LEVELS.index(scorer.level(score / 4)) for score in range(0, 40)
    ]

    assert ranks == sorted(ranks, reverse=True)
    assert scorer.level(1.99) == "low"
    assert scorer.level(2.0) == "medium"
    assert scorer.level(4.0) == "high"


def test_cls_011_raising_a_firing_rule_weight_does_not_lower_confidence() -> None:
    units = [
        _unit("shop/Order.java", _order()),
        _unit("shop/OrderLine.java", _order_line()),
    ]
    base = default_registry()
    boosted = base.with_overrides(weights={"AR-002": 4.0})

    before = _by_name(ScanEngine(registry=base).run(units))["Order"]
    after = _by_name(ScanEngine(registry=boosted).run(units))["Order"]

    assert after.role == before.role == "aggregate_root"
    assert after.score > before.score
    assert LEVELS.index(after.confidence) <= LEVELS.index(before.confidence)
