# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Schema-versioned serialization of classified symbol graphs."""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

from dps.analyzer import FieldDeclaration, MethodDeclaration
from dps.model import (
    Alternate,
    Classification,
    Relationship,
    Symbol,
    SymbolGraph,
)

logger = logging.getLogger(__name__)

BASELINE_SCHEMA_VERSION: str = "1.0"


class SchemaVersionMismatchError(RuntimeError):
    """Represent a baseline whose schema tag this version cannot read."""

    def __init__(self, found: str | None, expected: str = BASELINE_SCHEMA_VERSION) -> None:
        super().__init__(
            f"Baseline schema version {found!r} is incompatible with {expected!r}."
        )
        self.found = found
        self.expected = expected


@dataclass(frozen=True)
class Baseline:
    """Represent a stored classified symbol graph from a prior run.

    Attributes:
        schema_version: Serialization schema tag.
        registry_version: Version of the registry that produced the classifications.
        registry_fingerprint: Digest of that registry.
        graph: Symbol graph of the run.
        classifications: Classifications of the run.
        root_path: Analyzed root recorded by the caller; may be empty.
    """

    schema_version: str
    registry_version: str
    registry_fingerprint: str
    graph: SymbolGraph
    classifications: tuple[Classification, ...]
    root_path: str = ""


def check_schema_version(found: object) -> None:
    """Check that a schema tag shares the major version of this reader.

    Raises:
        SchemaVersionMismatchError: If the tag is missing or incompatible.
    """
    if not isinstance(found, str) or not found:
        raise SchemaVersionMismatchError(found if isinstance(found, str) else None)
    found_major = found.split(".", 1)[0]
    expected_major = BASELINE_SCHEMA_VERSION.split(".", 1)[0]
    if found_major != expected_major:
        raise SchemaVersionMismatchError(found)


def build_baseline(
    graph: SymbolGraph,
    classifications: Sequence[Classification],
    registry_version: str,
    registry_fingerprint: str,
    root_path: str = "",
) -> Baseline:
    """Capture a run as a baseline with the current schema tag."""
    return Baseline(
        schema_version=BASELINE_SCHEMA_VERSION,
        registry_version=registry_version,
        registry_fingerprint=registry_fingerprint,
        graph=graph,
        classifications=tuple(classifications),
        root_path=root_path,
    )


def baseline_to_dict(baseline: Baseline) -> dict[str, Any]:
    """Convert a baseline into a JSON-ready mapping."""
    return {
        "schema_version": baseline.schema_version,
        "registry_version": baseline.registry_version,
        "registry_fingerprint": baseline.registry_fingerprint,
        "root_path": baseline.root_path,
        "symbols": [asdict(symbol) for symbol in baseline.graph.symbols],
        "relationships": [asdict(edge) for edge in baseline.graph.relationships],
        "classifications": [asdict(item) for item in baseline.classifications],
    }


def baseline_from_dict(payload: Mapping[str, Any]) -> Baseline:
    """Rebuild a baseline from a mapping produced by ``baseline_to_dict``.

    The schema tag is checked before anything else is read.

    Raises:
        SchemaVersionMismatchError: If the schema tag is missing or incompatible.
        ValueError: If the payload is otherwise malformed.
    """
    if not isinstance(payload, Mapping):
        raise ValueError("Baseline payload must be a mapping.")
    check_schema_version(payload.get("schema_version"))
    try:
        symbols = [_symbol_from_dict(item) for item in payload["symbols"]]
        relationships = [Relationship(**item) for item in payload["relationships"]]
        classifications = tuple(
            _classification_from_dict(item) for item in payload["classifications"]
        )
        graph = SymbolGraph(symbols, relationships)
        return Baseline(
            schema_version=str(payload["schema_version"]),
            registry_version=str(payload["registry_version"]),
            registry_fingerprint=str(payload["registry_fingerprint"]),
            graph=graph,
            classifications=classifications,
            root_path=str(payload.get("root_path", "")),
        )
    except (KeyError, TypeError) as exc:
        logger.warning(f"Malformed baseline payload (error={exc!r})")
        raise ValueError(f"Malformed baseline payload: {exc!r}") from exc


def read_baseline(path: Path) -> Baseline:
    """Read a baseline JSON file.

    Raises:
        OSError: If the file cannot be read.
        SchemaVersionMismatchError: If the schema tag is incompatible.
        ValueError: If the document is malformed.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Baseline file is not valid JSON: {exc}") from exc
    return baseline_from_dict(payload)


def write_baseline(path: Path, baseline: Baseline) -> None:
    """Write a baseline JSON file, creating parent directories.

    Raises:
        OSError: If directory creation or file writing fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(baseline_to_dict(baseline), indent=2, sort_keys=True),
        encoding="utf-8",
    )


def _symbol_from_dict(item: Mapping[str, Any]) -> Symbol:
    values = dict(item)
    values["fields"] = tuple(FieldDeclaration(**field) for field in item["fields"])
    values["methods"] = tuple(
        MethodDeclaration(
            **{**method, "parameter_types": tuple(method.get("parameter_types", ()))}
        )
        for method in item["methods"]
    )
    values["bases"] = tuple(item["bases"])
    return Symbol(**values)


def _classification_from_dict(item: Mapping[str, Any]) -> Classification:
    values = dict(item)
    values["alternates"] = tuple(Alternate(**alt) for alt in item["alternates"])
    values["evidence"] = tuple(item["evidence"])
    return Classification(**values)
