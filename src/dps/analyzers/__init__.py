# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Front ends for the domain pattern scanner."""

from dps.analyzers.declarations import load_declaration_units
from dps.analyzers.python import PythonAnalyzer

__all__ = ["PythonAnalyzer", "load_declaration_units"]
