"""Watch marks and per-source last-viewed timestamps."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from ..dateutils import parse_timestamp, to_storage, utcnow
from ..infra.storage import SQLiteDatabase


class MarkStore:
    """Read/write access to the ``watch_marks`` and ``source_views`` tables."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self.database = database

    # watch marks -------------------------------------------------------
    def mark_consumed(self, item_id: str, at: datetime | None = None) -> None:
        with self.database.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO watch_marks (item_id, watched_at) VALUES (?, ?)",
                (item_id, to_storage(at or utcnow())),
            )

    def unmark_consumed(self, item_id: str) -> None:
        with self.database.transaction() as conn:
            conn.execute("DELETE FROM watch_marks WHERE item_id = ?", (item_id,))

    def toggle_consumed(self, item_id: str) -> bool:
        """Flip the mark and return whether the item is now consumed."""

        with self.database.transaction() as conn:
            row = conn.execute("SELECT 1 FROM watch_marks WHERE item_id = ?", (item_id,)).fetchone()
            if row is not None:
                conn.execute("DELETE FROM watch_marks WHERE item_id = ?", (item_id,))
                return False
            conn.execute(
                "INSERT INTO watch_marks (item_id, watched_at) VALUES (?, ?)",
                (item_id, to_storage(utcnow())),
            )
            return True

    def mark_all_consumed(self, item_ids: Iterable[str]) -> int:
        now = to_storage(utcnow())
        newly_marked = 0
        with self.database.transaction() as conn:
            for item_id in dict.fromkeys(item_ids):
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO watch_marks (item_id, watched_at) VALUES (?, ?)",
                    (item_id, now),
                )
                newly_marked += cursor.rowcount
        return newly_marked

    def is_consumed(self, item_id: str) -> bool:
        with self.database.read() as conn:
            row = conn.execute("SELECT 1 FROM watch_marks WHERE item_id = ?", (item_id,)).fetchone()
        return row is not None

    def consumed_ids(self) -> set[str]:
        with self.database.read() as conn:
            rows = conn.execute("SELECT item_id FROM watch_marks").fetchall()
        return {row["item_id"] for row in rows}

    # source views ------------------------------------------------------
    def mark_source_viewed(self, source_id: str, at: datetime | None = None) -> None:
        self.mark_sources_viewed([source_id], at=at)

    def mark_sources_viewed(self, source_ids: Iterable[str], at: datetime | None = None) -> None:
        stamp = to_storage(at or utcnow())
        with self.database.transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO source_views (source_id, last_viewed_at) VALUES (?, ?)",
                [(source_id, stamp) for source_id in source_ids],
            )

    def last_viewed(self, source_id: str) -> datetime | None:
        with self.database.read() as conn:
            row = conn.execute(
                "SELECT last_viewed_at FROM source_views WHERE source_id = ?", (source_id,)
            ).fetchone()
        return parse_timestamp(row["last_viewed_at"]) if row else None


__all__ = ["MarkStore"]
