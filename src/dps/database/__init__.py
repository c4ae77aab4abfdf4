# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Database backends for the domain pattern scanner."""

from dps.database.sqlite import SQLiteBaselineStore

__all__ = ["SQLiteBaselineStore"]
