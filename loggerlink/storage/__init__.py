"""Storage layer for downloaded logger readings."""
from __future__ import annotations

from .database import ReadingStore, column_name, infer_column_type
from .migration import LegacyDatabaseSource, MigrationResult, migrate

__all__ = [
    "LegacyDatabaseSource",
    "MigrationResult",
    "ReadingStore",
    "column_name",
    "infer_column_type",
    "migrate",
]
