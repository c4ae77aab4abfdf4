# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Immutable run configuration for the scan engine."""

import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanConfig:
    """Hold every tunable threshold of one scan run.

    Attributes:
        high_confidence_threshold: Minimum winning vote for ``high`` confidence.
        medium_confidence_threshold: Minimum winning vote for ``medium`` confidence.
        ambiguity_margin: Maximum vote distance from the winner for a role to be
            recorded as an alternate.
        god_class_max_methods: Method count that must be exceeded for a God Class.
        god_class_max_fields: Field count that must be exceeded for a God Class.
        god_class_min_verbs: Minimum number of distinct leading method verbs.
        mega_aggregate_max_entities: Entity children an aggregate root may compose.
        primitive_obsession_min_fields: Size of a recurring primitive combination.
        primitive_obsession_min_symbols: Symbols that must share the combination.
        max_workers: Worker threads for extraction and classification.
        unit_timeout_seconds: Per-unit extraction timeout.
        poll_interval_seconds: Interval at which the builder checks timeouts and
            cancellation.
        rename_hint_threshold: Minimum name similarity for advisory rename hints.
    """

    high_confidence_threshold: float = 4.0
    medium_confidence_threshold: float = 2.0
    ambiguity_margin: float = 0.5
    god_class_max_methods: int = 15
    god_class_max_fields: int = 10
    god_class_min_verbs: int = 5
    mega_aggregate_max_entities: int = 5
    primitive_obsession_min_fields: int = 2
    primitive_obsession_min_symbols: int = 2
    max_workers: int = 4
    unit_timeout_seconds: float = 30.0
    poll_interval_seconds: float = 0.05
    rename_hint_threshold: float = 0.75

    def __post_init__(self) -> None:
        """Validate thresholds.

        Raises:
            ValueError: If any value is out of range or inconsistent.
        """
        if self.medium_confidence_threshold < 0.0:
            raise ValueError("medium_confidence_threshold must be >= 0")
        if self.high_confidence_threshold < self.medium_confidence_threshold:
            raise ValueError(
                "high_confidence_threshold must be >= medium_confidence_threshold"
            )
        if self.ambiguity_margin < 0.0:
            raise ValueError("ambiguity_margin must be >= 0")
        for name in (
            "god_class_max_methods",
            "god_class_max_fields",
            "mega_aggregate_max_entities",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")
        if self.god_class_min_verbs <= 0:
            raise ValueError("god_class_min_verbs must be > 0")
        if self.primitive_obsession_min_fields < 2:
            raise ValueError("primitive_obsession_min_fields must be >= 2")
        if self.primitive_obsession_min_symbols < 2:
            raise ValueError("primitive_obsession_min_symbols must be >= 2")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if self.unit_timeout_seconds <= 0.0:
            raise ValueError("unit_timeout_seconds must be > 0")
        if self.poll_interval_seconds <= 0.0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.rename_hint_threshold < 0.0 or self.rename_hint_threshold > 1.0:
            raise ValueError("rename_hint_threshold must be between 0.0 and 1.0.")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ScanConfig":
        """Build a configuration from a mapping of overrides.

        Args:
            values: Field overrides; missing fields keep their defaults.

        Returns:
            Validated configuration.

        Raises:
            ValueError: If a key is unknown or a value is invalid.
        """
        known = {item.name: item for item in fields(cls)}
        unknown = sorted(key for key in values if key not in known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        converted: dict[str, Any] = {}
        for key, value in values.items():
            target_type = type(getattr(cls, key))
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Configuration value for {key} must be a number")
            if target_type is int and not float(value).is_integer():
                raise ValueError(f"Configuration value for {key} must be an integer")
            converted[key] = target_type(value)
        return cls(**converted)


def load_config(path: Path) -> ScanConfig:
    """Load configuration overrides from a JSON file.

    Args:
        path: JSON file containing one object of overrides.

    Returns:
        Validated configuration.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the document is malformed or contains invalid values.
    """
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        logger.warning(f"Configuration file is not valid JSON (path={path} error={exc})")
        raise ValueError(f"Configuration file is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Configuration file must contain a JSON object")
    return ScanConfig.from_mapping(payload)
