"""SQLite handle shared by every store component."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import fields
from pathlib import Path
from threading import RLock
from typing import Any, Iterator, Mapping

from ..dateutils import to_storage
from ..errors import StorageError
from ..models import Item, watch_url

MEMORY = ":memory:"

# column length caps for the items table
FIELD_CAPS = {
    "id": 64,
    "url": 500,
    "title": 500,
    "source_name": 200,
    "source_id": 64,
}
_ITEM_FIELDS = tuple(f.name for f in fields(Item))

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sources (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        url TEXT NOT NULL,
        added_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        url TEXT NOT NULL,
        is_short INTEGER NOT NULL DEFAULT 0,
        source_name TEXT,
        source_id TEXT,
        published_at TEXT,
        duration_seconds INTEGER,
        stored_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_items_source ON items(source_id)",
    "CREATE INDEX IF NOT EXISTS idx_items_published ON items(published_at DESC)",
    """
    CREATE TABLE IF NOT EXISTS watch_marks (
        item_id TEXT PRIMARY KEY,
        watched_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS source_views (
        source_id TEXT PRIMARY KEY,
        last_viewed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS migrations (
        name TEXT PRIMARY KEY,
        applied_at TEXT DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


class SQLiteDatabase:
    """Own one SQLite connection and serialize access to it.

    Every write goes through :meth:`transaction`, which commits on success and
    rolls back on failure, so readers holding the same lock only ever see
    committed state. ``sqlite3`` errors surface as :class:`StorageError`.
    """

    def __init__(self, path: Path | str = MEMORY) -> None:
        self.path = path
        if path != MEMORY:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()
        try:
            self._conn = sqlite3.connect(str(path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA busy_timeout=5000")
            if path != MEMORY:
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open database {path}: {exc}") from exc
        self._closed = False

    def _ensure_schema(self) -> None:
        with self._conn:
            for statement in _SCHEMA:
                self._conn.execute(statement)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StorageError(str(exc)) from exc
            except BaseException:
                self._conn.rollback()
                raise

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except sqlite3.Error as exc:
                raise StorageError(str(exc)) from exc

    @property
    def lock(self) -> RLock:
        return self._lock

    # ------------------------------------------------------------------
    # Migration markers
    # ------------------------------------------------------------------
    def has_migration(self, name: str) -> bool:
        with self.read() as conn:
            row = conn.execute("SELECT 1 FROM migrations WHERE name = ?", (name,)).fetchone()
        return row is not None

    def mark_migration(self, name: str) -> None:
        with self.transaction() as conn:
            conn.execute("INSERT OR IGNORE INTO migrations (name) VALUES (?)", (name,))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.commit()
            self._conn.close()
            self._closed = True


def _truncate(value: Any, limit: int) -> Any:
    if isinstance(value, str) and len(value) > limit:
        return value[:limit]
    return value


def _optional_text(value: Any, limit: int) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    return _truncate(value, limit)


def item_row(candidate: Any) -> tuple | None:
    """Turn an :class:`Item` or mapping into an insert row, or ``None`` if malformed."""

    if isinstance(candidate, Item):
        data: Mapping[str, Any] = {name: getattr(candidate, name) for name in _ITEM_FIELDS}
    elif isinstance(candidate, Mapping):
        data = candidate
    else:
        return None
    item_id = data.get("id")
    if not isinstance(item_id, str) or not item_id.strip():
        return None
    item_id = _truncate(item_id.strip(), FIELD_CAPS["id"])
    title = data.get("title")
    url = data.get("url")
    duration = data.get("duration_seconds")
    if isinstance(duration, bool) or not isinstance(duration, int):
        duration = None
    return (
        item_id,
        _truncate(title, FIELD_CAPS["title"]) if isinstance(title, str) else "",
        _truncate(url, FIELD_CAPS["url"]) if isinstance(url, str) and url else watch_url(item_id),
        1 if data.get("is_short") else 0,
        _optional_text(data.get("source_name"), FIELD_CAPS["source_name"]),
        _optional_text(data.get("source_id"), FIELD_CAPS["source_id"]),
        to_storage(data.get("published_at")),
        duration,
    )


__all__ = ["FIELD_CAPS", "MEMORY", "SQLiteDatabase", "item_row"]
