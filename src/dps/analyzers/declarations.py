# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""JSON declaration front end for declarations parsed by external tools.

The document shape is::

    {"units": [{"path": "...", "language": "java",
                "declarations": [{"name": "Order", "fields": [...], ...}]}]}

A unit may carry an ``"error"`` string instead of declarations when the
producing tool failed to parse it; such units are reported as unparseable.
"""

import functools
import json
import logging
from pathlib import Path
from typing import Any, Mapping

from dps.analyzer import (
    FieldDeclaration,
    MethodDeclaration,
    ParsedUnit,
    SourceUnit,
    TypeDeclaration,
    UnparseableUnitError,
)

logger = logging.getLogger(__name__)

_KINDS = {"class", "interface", "record", "enum"}
_VISIBILITIES = {"public", "protected", "private"}


def load_declaration_units(path: Path) -> list[SourceUnit]:
    """Load source units from a JSON declaration document.

    Unit payloads are decoded lazily by each unit's handle, so one malformed
    unit is skipped by the builder without affecting the others.

    Args:
        path: JSON document path.

    Returns:
        Source units in document order.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the document or a unit header is malformed.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.warning(f"Declaration file is not valid JSON (path={path} error={exc})")
        raise ValueError(f"Declaration file is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("units"), list):
        raise ValueError("Declaration file must contain an object with a 'units' list")

    units: list[SourceUnit] = []
    for index, item in enumerate(payload["units"]):
        if not isinstance(item, dict) or not isinstance(item.get("path"), str):
            raise ValueError(f"Unit #{index} must be an object with a string 'path'")
        units.append(
            SourceUnit(
                path=item["path"],
                language=str(item.get("language", "unknown")),
                handle=functools.partial(_parse_unit, item),
            )
        )
    logger.info(f"Declaration units loaded (path={path} units={len(units)})")
    return units


def _parse_unit(item: Mapping[str, Any]) -> ParsedUnit:
    if "error" in item:
        raise UnparseableUnitError(str(item["error"]))
    declarations = item.get("declarations", [])
    if not isinstance(declarations, list):
        raise UnparseableUnitError("'declarations' must be a list")
    try:
        return ParsedUnit(
            declarations=tuple(_declaration(entry) for entry in declarations)
        )
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise UnparseableUnitError(f"malformed declaration: {exc!r}") from exc


def _declaration(entry: Mapping[str, Any]) -> TypeDeclaration:
    kind = entry.get("kind", "class")
    if kind not in _KINDS:
        raise ValueError(f"unknown declaration kind {kind!r}")
    return TypeDeclaration(
        name=str(entry["name"]),
        kind=kind,
        namespace=str(entry.get("namespace", "")),
        fields=tuple(_field(field) for field in entry.get("fields", [])),
        methods=tuple(_method(method) for method in entry.get("methods", [])),
        bases=tuple(str(base) for base in entry.get("bases", [])),
        value_equality=bool(entry.get("value_equality", False)),
        is_abstract=bool(entry.get("is_abstract", False)),
    )


def _field(entry: Mapping[str, Any]) -> FieldDeclaration:
    declared_type = entry.get("declared_type")
    return FieldDeclaration(
        name=str(entry["name"]),
        declared_type=str(declared_type) if declared_type is not None else None,
        mutable=bool(entry.get("mutable", True)),
    )


def _method(entry: Mapping[str, Any]) -> MethodDeclaration:
    visibility = entry.get("visibility", "public")
    if visibility not in _VISIBILITIES:
        raise ValueError(f"unknown visibility {visibility!r}")
    return_type = entry.get("return_type")
    return MethodDeclaration(
        name=str(entry["name"]),
        signature=str(entry.get("signature", "")),
        visibility=visibility,
        is_static=bool(entry.get("is_static", False)),
        is_accessor=bool(entry.get("is_accessor", False)),
        is_abstract=bool(entry.get("is_abstract", False)),
        parameter_types=tuple(str(item) for item in entry.get("parameter_types", [])),
        return_type=str(return_type) if return_type is not None else None,
    )
