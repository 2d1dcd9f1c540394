"""Infra layer utilities (SQLite handle, legacy state import)."""

from .legacy import LegacyImportResult, import_legacy_state
from .storage import SQLiteDatabase

__all__ = ["LegacyImportResult", "SQLiteDatabase", "import_legacy_state"]
