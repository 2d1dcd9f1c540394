"""Shared fixtures: an isolated home directory, in-memory stores and record builders."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import pytest

from feeding_tube.config import ConfigLocator, ConfigRepository
from feeding_tube.engine import ItemStore, MarkStore, RetryingFetch, SubscriptionStore
from feeding_tube.errors import FatalFetchError
from feeding_tube.infra import SQLiteDatabase
from feeding_tube.models import Item, ItemDetails, Source, watch_url

BASE_TIME = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def feeding_tube_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    monkeypatch.setenv("FEEDING_TUBE_HOME", str(home))
    return home


@pytest.fixture
def config_repository(feeding_tube_home: Path) -> ConfigRepository:
    return ConfigRepository(ConfigLocator(home=feeding_tube_home))


@pytest.fixture
def database() -> Iterable[SQLiteDatabase]:
    db = SQLiteDatabase()
    yield db
    db.close()


@pytest.fixture
def item_store(database: SQLiteDatabase) -> ItemStore:
    return ItemStore(database)


@pytest.fixture
def marks(database: SQLiteDatabase) -> MarkStore:
    return MarkStore(database)


@pytest.fixture
def subscriptions(database: SQLiteDatabase) -> SubscriptionStore:
    return SubscriptionStore(database)


@pytest.fixture
def instant_retry() -> RetryingFetch:
    return RetryingFetch(sleep=lambda _delay: None, jitter=lambda _low, _high: 0.0)


@pytest.fixture
def make_source() -> Callable[..., Source]:
    def _builder(**overrides: Any) -> Source:
        base: dict[str, Any] = {
            "id": "UCalpha000000000000000",
            "name": "Alpha",
            "url": "https://www.youtube.com/@alpha",
        }
        base.update(overrides)
        return Source(**base)

    return _builder


@pytest.fixture
def make_item() -> Callable[..., Item]:
    """Build items with unique 11-character ids and hourly-spaced publication dates."""

    counter = itertools.count()

    def _builder(**overrides: Any) -> Item:
        index = next(counter)
        item_id = overrides.pop("id", f"video{index:06d}")
        base: dict[str, Any] = {
            "id": item_id,
            "title": f"Video {index}",
            "url": watch_url(item_id),
            "source_id": "UCalpha000000000000000",
            "source_name": "Alpha",
            "published_at": BASE_TIME + timedelta(hours=index),
        }
        base.update(overrides)
        return Item(**base)

    return _builder


class FakeHistorySource:
    """Stand-in for the yt-dlp adapter used by backfills."""

    def __init__(
        self,
        ids: Sequence[str] = (),
        failing: Iterable[str] = (),
        listing_error: Exception | None = None,
    ) -> None:
        self.ids = list(ids)
        self.failing = set(failing)
        self.listing_error = listing_error
        self.listed_urls: list[str] = []
        self.detail_calls: list[list[str]] = []

    def list_item_ids(self, url: str, limit: int = 5000) -> list[str]:
        self.listed_urls.append(url)
        if self.listing_error is not None:
            raise self.listing_error
        return self.ids[:limit]

    def fetch_details(self, item_ids: Sequence[str]) -> list[ItemDetails]:
        batch = list(item_ids)
        self.detail_calls.append(batch)
        if self.failing.intersection(batch):
            raise FatalFetchError(f"unavailable: {sorted(self.failing.intersection(batch))}")
        return [
            ItemDetails(
                id=item_id,
                title=f"Title {item_id}",
                url=watch_url(item_id),
                duration_seconds=300,
                upload_date="20240101",
            )
            for item_id in batch
        ]


@pytest.fixture
def fake_history() -> Callable[..., FakeHistorySource]:
    return FakeHistorySource
