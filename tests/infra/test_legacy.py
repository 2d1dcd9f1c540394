from __future__ import annotations

import json
from pathlib import Path

import pytest

from feeding_tube.engine import ItemStore, MarkStore, SubscriptionStore
from feeding_tube.infra import SQLiteDatabase, import_legacy_state
from feeding_tube.infra.storage import FIELD_CAPS


@pytest.fixture
def legacy_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "youtube-cli"
    directory.mkdir()
    (directory / "subscriptions.json").write_text(
        json.dumps(
            {
                "subscriptions": [
                    {"id": "UCalpha", "name": "Alpha", "url": "https://www.youtube.com/@alpha"},
                    {"id": "UCbeta", "name": "Beta", "url": "https://www.youtube.com/@beta"},
                    {"name": "broken entry"},
                ],
                "settings": {"hideShorts": False},
                "channelLastViewed": {"UCalpha": "2024-01-10T00:00:00.000Z", "UCbeta": "garbage"},
            }
        ),
        encoding="utf-8",
    )
    (directory / "watched.json").write_text(
        json.dumps({"videos": {"aaaaaaaaaaa": {"watchedAt": "2024-01-12T08:00:00.000Z"}, "bbbbbbbbbbb": {}}}),
        encoding="utf-8",
    )
    (directory / "videos.json").write_text(
        json.dumps(
            {
                "videos": {
                    "aaaaaaaaaaa": {
                        "id": "aaaaaaaaaaa",
                        "title": "First",
                        "url": "https://www.youtube.com/watch?v=aaaaaaaaaaa",
                        "isShort": False,
                        "channelName": "Alpha",
                        "channelId": "UCalpha",
                        "publishedDate": "2024-01-11T12:00:00.000Z",
                        "storedAt": "2024-01-11T13:00:00.000Z",
                    },
                    "ccccccccccc": {
                        "id": "ccccccccccc",
                        "title": "Clip",
                        "url": "https://www.youtube.com/shorts/ccccccccccc",
                        "isShort": True,
                        "channelName": "Beta",
                        "channelId": "UCbeta",
                        "publishedDate": None,
                    },
                    "broken": "not a record",
                }
            }
        ),
        encoding="utf-8",
    )
    return directory


def test_legacy_files_are_imported_and_backed_up(database: SQLiteDatabase, legacy_dir: Path) -> None:
    result = import_legacy_state(database, legacy_dir)

    assert result.imported
    assert result.counts == {"subscriptions.json": 2, "watched.json": 2, "videos.json": 2}
    assert [source.id for source in SubscriptionStore(database).list_sources()] == ["UCalpha", "UCbeta"]

    marks = MarkStore(database)
    assert marks.consumed_ids() == {"aaaaaaaaaaa", "bbbbbbbbbbb"}
    assert marks.last_viewed("UCalpha").isoformat() == "2024-01-10T00:00:00+00:00"
    assert marks.last_viewed("UCbeta") is None

    items = ItemStore(database)
    first = items.get("aaaaaaaaaaa")
    assert first.published_at.isoformat() == "2024-01-11T12:00:00+00:00"
    assert items.get("ccccccccccc").is_short is True
    assert items.get("ccccccccccc").published_at is None

    backup = legacy_dir / "backup"
    assert sorted(path.name for path in backup.iterdir()) == ["subscriptions.json", "videos.json", "watched.json"]
    assert not (legacy_dir / "videos.json").exists()


def test_import_runs_only_once(database: SQLiteDatabase, legacy_dir: Path) -> None:
    import_legacy_state(database, legacy_dir)
    (legacy_dir / "subscriptions.json").write_text(
        json.dumps({"subscriptions": [{"id": "UCgamma", "name": "Gamma", "url": "https://www.youtube.com/@gamma"}]}),
        encoding="utf-8",
    )

    second = import_legacy_state(database, legacy_dir)

    assert second.already_applied
    assert SubscriptionStore(database).get("UCgamma") is None


def test_missing_directory_marks_import_done(database: SQLiteDatabase, tmp_path: Path) -> None:
    result = import_legacy_state(database, tmp_path / "absent")
    assert not result.imported
    assert result.reasons == ["no legacy directory"]
    assert import_legacy_state(database, None).already_applied


def test_unreadable_file_is_skipped_with_reason(database: SQLiteDatabase, legacy_dir: Path) -> None:
    (legacy_dir / "watched.json").write_text("{not json", encoding="utf-8")

    result = import_legacy_state(database, legacy_dir)

    assert "watched.json" not in result.counts
    assert any(reason.startswith("watched.json") for reason in result.reasons)
    assert result.counts["videos.json"] == 2
    assert (legacy_dir / "watched.json").exists()


def test_legacy_videos_get_watch_url_and_field_caps(database: SQLiteDatabase, tmp_path: Path) -> None:
    directory = tmp_path / "legacy"
    directory.mkdir()
    (directory / "videos.json").write_text(
        json.dumps(
            {
                "videos": {
                    "ddddddddddd": {"id": "ddddddddddd", "title": "T" * 900, "channelName": "N" * 300},
                    "blank": {"id": "   ", "title": "no id"},
                }
            }
        ),
        encoding="utf-8",
    )

    result = import_legacy_state(database, directory)

    assert result.counts["videos.json"] == 1
    stored = ItemStore(database).get("ddddddddddd")
    assert stored.url == "https://www.youtube.com/watch?v=ddddddddddd"
    assert len(stored.title) == FIELD_CAPS["title"]
    assert len(stored.source_name) == FIELD_CAPS["source_name"]
    assert stored.stored_at is not None
