"""Deduplicating item store with cached sort indexes."""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Iterable

import sqlite3
import structlog

from ..dateutils import parse_timestamp
from ..infra.storage import SQLiteDatabase, item_row
from ..models import Item, Page, SourceStats

MAX_PAGE_SIZE = 1000
FILTERED_INDEX_LIMIT = 32
_IN_CHUNK = 500

ITEM_COLUMNS = (
    "id, title, url, is_short, source_name, source_id, published_at, duration_seconds, stored_at"
)
# dated items newest first, undated last, ties in insertion order
ORDER_CLAUSE = "ORDER BY published_at IS NULL, published_at DESC, rowid ASC"


def _hydrate(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"],
        title=row["title"],
        url=row["url"],
        is_short=bool(row["is_short"]),
        source_id=row["source_id"],
        source_name=row["source_name"],
        published_at=parse_timestamp(row["published_at"]),
        stored_at=parse_timestamp(row["stored_at"]),
        duration_seconds=row["duration_seconds"],
    )


def _placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


class ItemStore:
    """Persist items idempotently and serve ordered, paginated views.

    Two derived indexes are cached: the global order of every item id and
    per-source-set orders keyed by the sorted, comma-joined source ids. Both
    are dropped whenever an insert lands and rebuilt lazily on the next read.
    Cache access happens under the database lock, so an index is always built
    from, and served against, the same committed item set.
    """

    def __init__(self, database: SQLiteDatabase, logger: structlog.BoundLogger | None = None) -> None:
        self.database = database
        self.logger = logger or structlog.get_logger("feeding_tube.store")
        self._global_index: list[str] | None = None
        self._filtered_index: OrderedDict[str, list[str]] = OrderedDict()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def upsert_many(self, items: Iterable[Any] | None) -> int:
        """Insert every well-formed item that is not stored yet; return the new-row count."""

        if not items:
            return 0
        rows = [row for row in (item_row(candidate) for candidate in items) if row]
        if not rows:
            return 0
        inserted = 0
        with self.database.transaction() as conn:
            for row in rows:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO items "
                    "(id, title, url, is_short, source_name, source_id, published_at, duration_seconds) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    row,
                )
                inserted += cursor.rowcount
            if inserted:
                self._invalidate()
        self.logger.debug("items_upserted", candidates=len(rows), inserted=inserted)
        return inserted

    def _invalidate(self) -> None:
        self._global_index = None
        self._filtered_index.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def count(self) -> int:
        with self.database.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM items").fetchone()[0]

    def existing_ids(self, source_id: str) -> set[str]:
        with self.database.read() as conn:
            rows = conn.execute("SELECT id FROM items WHERE source_id = ?", (source_id,)).fetchall()
        return {row["id"] for row in rows}

    def get(self, item_id: str) -> Item | None:
        with self.database.read() as conn:
            row = conn.execute(
                f"SELECT {ITEM_COLUMNS} FROM items WHERE id = ?", (item_id,)
            ).fetchone()
        return _hydrate(row) if row else None

    def list_by_source(self, source_id: str) -> list[Item]:
        with self.database.read() as conn:
            rows = conn.execute(
                f"SELECT {ITEM_COLUMNS} FROM items WHERE source_id = ? {ORDER_CLAUSE}",
                (source_id,),
            ).fetchall()
        return [_hydrate(row) for row in rows]

    def list_paginated(
        self,
        source_ids: Iterable[str] | None = None,
        page: int = 0,
        page_size: int = 100,
    ) -> Page:
        safe_page = max(0, int(page))
        safe_page_size = min(max(1, int(page_size)), MAX_PAGE_SIZE)
        wanted: list[str] | None = None
        if source_ids is not None:
            wanted = [sid for sid in source_ids if isinstance(sid, str) and sid]
            if not wanted:
                return Page(total=0, page=safe_page, page_size=safe_page_size)
        offset = safe_page * safe_page_size
        with self.database.read() as conn:
            ordered = self._sorted_ids(conn, wanted)
            window = ordered[offset : offset + safe_page_size]
            items = self._load(conn, window)
        return Page(total=len(ordered), page=safe_page, page_size=safe_page_size, items=items)

    def _sorted_ids(self, conn: sqlite3.Connection, source_ids: list[str] | None) -> list[str]:
        if source_ids is None:
            if self._global_index is None:
                rows = conn.execute(f"SELECT id FROM items {ORDER_CLAUSE}").fetchall()
                self._global_index = [row["id"] for row in rows]
            return self._global_index
        unique = sorted(set(source_ids))
        key = ",".join(unique)
        cached = self._filtered_index.get(key)
        if cached is not None:
            self._filtered_index.move_to_end(key)
            return cached
        rows = conn.execute(
            f"SELECT id FROM items WHERE source_id IN ({_placeholders(len(unique))}) {ORDER_CLAUSE}",
            unique,
        ).fetchall()
        ordered = [row["id"] for row in rows]
        self._filtered_index[key] = ordered
        while len(self._filtered_index) > FILTERED_INDEX_LIMIT:
            self._filtered_index.popitem(last=False)
        return ordered

    def _load(self, conn: sqlite3.Connection, ids: list[str]) -> list[Item]:
        by_id: dict[str, Item] = {}
        for start in range(0, len(ids), _IN_CHUNK):
            chunk = ids[start : start + _IN_CHUNK]
            rows = conn.execute(
                f"SELECT {ITEM_COLUMNS} FROM items WHERE id IN ({_placeholders(len(chunk))})",
                chunk,
            ).fetchall()
            for row in rows:
                by_id[row["id"]] = _hydrate(row)
        return [by_id[item_id] for item_id in ids if item_id in by_id]

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------
    def unseen_counts_per_source(self, exclude_short_form: bool = False) -> dict[str, int]:
        """Count dated items published after each source was last viewed."""

        short_filter = "AND i.is_short = 0" if exclude_short_form else ""
        with self.database.read() as conn:
            rows = conn.execute(
                f"""
                SELECT i.source_id AS source_id, COUNT(*) AS unseen
                FROM items i
                LEFT JOIN source_views sv ON sv.source_id = i.source_id
                WHERE i.published_at IS NOT NULL AND i.source_id IS NOT NULL {short_filter}
                  AND (sv.last_viewed_at IS NULL OR i.published_at > sv.last_viewed_at)
                GROUP BY i.source_id
                """
            ).fetchall()
        return {row["source_id"]: row["unseen"] for row in rows}

    def fully_consumed_sources(self, exclude_short_form: bool = False) -> set[str]:
        """Sources whose every eligible item is watched; empty sources never qualify."""

        short_filter = "AND i.is_short = 0" if exclude_short_form else ""
        with self.database.read() as conn:
            rows = conn.execute(
                f"""
                SELECT i.source_id AS source_id,
                       COUNT(*) AS total,
                       SUM(CASE WHEN w.item_id IS NOT NULL THEN 1 ELSE 0 END) AS watched
                FROM items i
                LEFT JOIN watch_marks w ON w.item_id = i.id
                WHERE i.source_id IS NOT NULL {short_filter}
                GROUP BY i.source_id
                HAVING total > 0 AND total = watched
                """
            ).fetchall()
        return {row["source_id"] for row in rows}

    def source_stats(self, exclude_short_form: bool = False) -> dict[str, SourceStats]:
        short_filter = "AND is_short = 0" if exclude_short_form else ""
        with self.database.read() as conn:
            rows = conn.execute(
                f"""
                SELECT source_id, COUNT(*) AS item_count, MAX(published_at) AS latest
                FROM items
                WHERE source_id IS NOT NULL {short_filter}
                GROUP BY source_id
                """
            ).fetchall()
        return {
            row["source_id"]: SourceStats(
                item_count=row["item_count"], latest_published=parse_timestamp(row["latest"])
            )
            for row in rows
        }


__all__ = ["ItemStore", "MAX_PAGE_SIZE"]
