"""Mirror of the subscribed sources."""

from __future__ import annotations

from ..infra.storage import SQLiteDatabase
from ..models import Source


class SubscriptionStore:
    """CRUD over the ``sources`` table."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self.database = database

    def list_sources(self) -> list[Source]:
        with self.database.read() as conn:
            rows = conn.execute(
                "SELECT id, name, url FROM sources ORDER BY name COLLATE NOCASE"
            ).fetchall()
        return [Source(id=row["id"], name=row["name"], url=row["url"]) for row in rows]

    def get(self, source_id: str) -> Source | None:
        with self.database.read() as conn:
            row = conn.execute(
                "SELECT id, name, url FROM sources WHERE id = ?", (source_id,)
            ).fetchone()
        return Source(id=row["id"], name=row["name"], url=row["url"]) if row else None

    def add_source(self, source: Source) -> bool:
        """Insert ``source``; return ``False`` when its id or url is already subscribed."""

        with self.database.transaction() as conn:
            duplicate = conn.execute(
                "SELECT 1 FROM sources WHERE id = ? OR url = ?", (source.id, source.url)
            ).fetchone()
            if duplicate is not None:
                return False
            conn.execute(
                "INSERT INTO sources (id, name, url) VALUES (?, ?, ?)",
                (source.id, source.name, source.url),
            )
        return True

    def remove_source(self, source_id: str) -> bool:
        with self.database.transaction() as conn:
            cursor = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        return cursor.rowcount > 0

    def find(self, query: str) -> list[Source]:
        """Match a 1-based index, an exact id, or a case-insensitive name fragment."""

        sources = self.list_sources()
        text = query.strip()
        if not text:
            return sources
        if text.isdigit():
            index = int(text)
            if 1 <= index <= len(sources):
                return [sources[index - 1]]
        exact = [source for source in sources if source.id == text]
        if exact:
            return exact
        needle = text.lower()
        return [source for source in sources if needle in source.name.lower()]


__all__ = ["SubscriptionStore"]
