"""One-time import of the legacy flat-file JSON state."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import structlog

from ..dateutils import to_storage, utcnow
from .storage import SQLiteDatabase, item_row

MIGRATION_NAME = "json_import"
BACKUP_DIRNAME = "backup"


@dataclass
class LegacyImportResult:
    """What the import step did; ``reasons`` explains every skipped file or step."""

    already_applied: bool = False
    counts: dict[str, int] = field(default_factory=dict)
    imported_files: list[Path] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    @property
    def imported(self) -> bool:
        return bool(self.imported_files)


def _import_subscriptions(conn: sqlite3.Connection, payload: dict[str, Any]) -> int:
    count = 0
    for sub in payload.get("subscriptions") or []:
        if not isinstance(sub, dict) or not sub.get("id") or not sub.get("url"):
            continue
        cursor = conn.execute(
            "INSERT OR IGNORE INTO sources (id, name, url) VALUES (?, ?, ?)",
            (sub["id"], sub.get("name") or sub["id"], sub["url"]),
        )
        count += cursor.rowcount
    views = payload.get("channelLastViewed") or {}
    if isinstance(views, dict):
        for source_id, stamp in views.items():
            normalized = to_storage(stamp)
            if normalized is None:
                continue
            conn.execute(
                "INSERT OR REPLACE INTO source_views (source_id, last_viewed_at) VALUES (?, ?)",
                (source_id, normalized),
            )
    return count


def _import_watched(conn: sqlite3.Connection, payload: dict[str, Any]) -> int:
    count = 0
    videos = payload.get("videos") or {}
    if not isinstance(videos, dict):
        return 0
    fallback = to_storage(utcnow())
    for item_id, data in videos.items():
        stamp = to_storage(data.get("watchedAt")) if isinstance(data, dict) else None
        cursor = conn.execute(
            "INSERT OR IGNORE INTO watch_marks (item_id, watched_at) VALUES (?, ?)",
            (item_id, stamp or fallback),
        )
        count += cursor.rowcount
    return count


def _import_videos(conn: sqlite3.Connection, payload: dict[str, Any]) -> int:
    count = 0
    videos = payload.get("videos") or {}
    if not isinstance(videos, dict):
        return 0
    fallback = to_storage(utcnow())
    for video in videos.values():
        if not isinstance(video, dict):
            continue
        row = item_row(
            {
                "id": video.get("id"),
                "title": video.get("title"),
                "url": video.get("url"),
                "is_short": video.get("isShort"),
                "source_name": video.get("channelName"),
                "source_id": video.get("channelId"),
                "published_at": video.get("publishedDate"),
            }
        )
        if row is None:
            continue
        cursor = conn.execute(
            "INSERT OR IGNORE INTO items "
            "(id, title, url, is_short, source_name, source_id, published_at, duration_seconds, stored_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (*row, to_storage(video.get("storedAt")) or fallback),
        )
        count += cursor.rowcount
    return count


_HANDLERS: tuple[tuple[str, Callable[[sqlite3.Connection, dict[str, Any]], int]], ...] = (
    ("subscriptions.json", _import_subscriptions),
    ("watched.json", _import_watched),
    ("videos.json", _import_videos),
)


def import_legacy_state(
    database: SQLiteDatabase,
    legacy_dir: Path | None,
    logger: structlog.BoundLogger | None = None,
) -> LegacyImportResult:
    """Import legacy JSON files once, guarded by the ``json_import`` marker.

    Unreadable files are reported in the result and logged but never abort
    startup. Storage failures do propagate.
    """

    log = logger or structlog.get_logger("feeding_tube.legacy")
    if database.has_migration(MIGRATION_NAME):
        return LegacyImportResult(already_applied=True)

    result = LegacyImportResult()
    if legacy_dir is None or not legacy_dir.is_dir():
        result.reasons.append("no legacy directory")
        database.mark_migration(MIGRATION_NAME)
        return result

    for filename, handler in _HANDLERS:
        path = legacy_dir / filename
        if not path.exists():
            continue
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            result.reasons.append(f"{filename}: {exc}")
            log.warning("legacy_import_skipped", file=filename, reason=str(exc))
            continue
        if not isinstance(payload, dict):
            result.reasons.append(f"{filename}: expected a JSON object")
            log.warning("legacy_import_skipped", file=filename, reason="not an object")
            continue
        with database.transaction() as conn:
            result.counts[filename] = handler(conn, payload)
        result.imported_files.append(path)

    database.mark_migration(MIGRATION_NAME)
    if result.imported:
        _backup_files(result, legacy_dir / BACKUP_DIRNAME, log)
        log.info("legacy_import_completed", counts=result.counts)
    return result


def _backup_files(result: LegacyImportResult, backup_dir: Path, log: structlog.BoundLogger) -> None:
    backup_dir.mkdir(parents=True, exist_ok=True)
    for path in result.imported_files:
        try:
            path.rename(backup_dir / path.name)
        except OSError as exc:
            result.reasons.append(f"{path.name}: backup failed: {exc}")
            log.warning("legacy_backup_failed", file=path.name, reason=str(exc))


__all__ = ["LegacyImportResult", "MIGRATION_NAME", "import_legacy_state"]
