from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from feeding_tube.engine import ItemStore
from feeding_tube.engine.store import MAX_PAGE_SIZE
from feeding_tube.infra.storage import FIELD_CAPS
from feeding_tube.errors import StorageError
from feeding_tube.models import Item, watch_url

BASE_TIME = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


def _page_ids(store: ItemStore, page: int, page_size: int, source_ids=None) -> list[str]:
    return [item.id for item in store.list_paginated(source_ids, page=page, page_size=page_size).items]


def test_upsert_is_idempotent(item_store: ItemStore, make_item) -> None:
    items = [make_item() for _ in range(5)]
    assert item_store.upsert_many(items) == 5
    before = item_store.list_paginated(page_size=10).items

    assert item_store.upsert_many(items) == 0
    assert item_store.count() == 5
    assert item_store.list_paginated(page_size=10).items == before


def test_upsert_keeps_first_seen_metadata(item_store: ItemStore, make_item) -> None:
    original = make_item(id="dQw4w9WgXcQ", title="Original")
    item_store.upsert_many([original])
    item_store.upsert_many([make_item(id="dQw4w9WgXcQ", title="Renamed")])
    assert item_store.get("dQw4w9WgXcQ").title == "Original"


def test_upsert_empty_input_is_a_no_op(item_store: ItemStore) -> None:
    assert item_store.upsert_many([]) == 0
    assert item_store.upsert_many(None) == 0


def test_malformed_candidates_are_dropped(item_store: ItemStore, make_item) -> None:
    candidates = [
        {"title": "no id"},
        {"id": 42, "title": "numeric id"},
        {"id": "   ", "title": "blank id"},
        None,
        "not-an-item",
        make_item(id="goodvideo01"),
        {"id": "mappingid01", "title": "From mapping", "source_id": "UCbeta"},
    ]
    assert item_store.upsert_many(candidates) == 2
    stored = item_store.get("mappingid01")
    assert stored.url == watch_url("mappingid01")
    assert stored.source_id == "UCbeta"


def test_string_fields_are_truncated(item_store: ItemStore) -> None:
    long_id = "x" * 80
    item_store.upsert_many(
        [
            {
                "id": long_id,
                "title": "t" * 900,
                "url": "https://example.com/" + "u" * 900,
                "source_name": "n" * 300,
                "source_id": "s" * 90,
            }
        ]
    )
    stored = item_store.get(long_id[: FIELD_CAPS["id"]])
    assert stored is not None
    assert len(stored.title) == FIELD_CAPS["title"]
    assert len(stored.url) == FIELD_CAPS["url"]
    assert len(stored.source_name) == FIELD_CAPS["source_name"]
    assert len(stored.source_id) == FIELD_CAPS["source_id"]


def test_ordering_puts_undated_items_last(item_store: ItemStore, make_item) -> None:
    undated_a = make_item(published_at=None)
    old = make_item(published_at=BASE_TIME - timedelta(days=30))
    new = make_item(published_at=BASE_TIME + timedelta(days=30))
    undated_b = make_item(published_at=None)
    middle = make_item(published_at=BASE_TIME)
    item_store.upsert_many([undated_a, old, new, undated_b, middle])

    expected = [new.id, middle.id, old.id, undated_a.id, undated_b.id]
    for page_size in range(1, 7):
        collected: list[str] = []
        page = 0
        while True:
            ids = _page_ids(item_store, page, page_size)
            if not ids:
                break
            collected.extend(ids)
            page += 1
        assert collected == expected
    assert [item.id for item in item_store.list_by_source("UCalpha000000000000000")] == expected


def test_equal_dates_keep_insertion_order(item_store: ItemStore, make_item) -> None:
    items = [make_item(published_at=BASE_TIME) for _ in range(4)]
    item_store.upsert_many(items)
    assert _page_ids(item_store, 0, 10) == [item.id for item in items]


def test_pagination_covers_every_item_once(item_store: ItemStore, make_item) -> None:
    items = [make_item() for _ in range(25)]
    item_store.upsert_many(items)

    pages = [item_store.list_paginated(page=index, page_size=10) for index in range(3)]

    assert [len(page.items) for page in pages] == [10, 10, 5]
    assert all(page.total == 25 for page in pages)
    union = [item.id for page in pages for item in page.items]
    assert sorted(union) == sorted(item.id for item in items)
    assert len(set(union)) == 25
    assert item_store.list_paginated(page=3, page_size=10).items == []


def test_pagination_clamps_arguments(item_store: ItemStore, make_item) -> None:
    item_store.upsert_many([make_item() for _ in range(3)])
    page = item_store.list_paginated(page=-4, page_size=0)
    assert (page.page, page.page_size, len(page.items)) == (0, 1, 1)
    page = item_store.list_paginated(page=0, page_size=MAX_PAGE_SIZE * 5)
    assert page.page_size == MAX_PAGE_SIZE
    assert len(page.items) == 3


def test_source_filter(item_store: ItemStore, make_item) -> None:
    alpha = [make_item() for _ in range(3)]
    beta = [make_item(source_id="UCbeta", source_name="Beta") for _ in range(2)]
    item_store.upsert_many(alpha + beta)

    page = item_store.list_paginated(["UCbeta"], page_size=10)
    assert page.total == 2
    assert {item.id for item in page.items} == {item.id for item in beta}
    assert item_store.list_paginated(["UCbeta", "UCalpha000000000000000"], page_size=10).total == 5
    assert item_store.list_paginated([], page_size=10).total == 0
    assert item_store.list_paginated(["UCmissing"], page_size=10).total == 0


def test_new_items_are_visible_to_the_next_read(item_store: ItemStore, make_item) -> None:
    item_store.upsert_many([make_item() for _ in range(3)])
    assert item_store.list_paginated(page_size=10).total == 3
    assert item_store.list_paginated(["UCalpha000000000000000"], page_size=10).total == 3

    newest = make_item(published_at=BASE_TIME + timedelta(days=365))
    item_store.upsert_many([newest])

    global_page = item_store.list_paginated(page_size=10)
    filtered_page = item_store.list_paginated(["UCalpha000000000000000"], page_size=10)
    assert global_page.total == 4
    assert global_page.items[0].id == newest.id
    assert filtered_page.total == 4
    assert filtered_page.items[0].id == newest.id


def test_existing_ids_and_count(item_store: ItemStore, make_item) -> None:
    alpha = [make_item() for _ in range(2)]
    item_store.upsert_many(alpha + [make_item(source_id="UCbeta")])
    assert item_store.existing_ids("UCalpha000000000000000") == {item.id for item in alpha}
    assert item_store.existing_ids("UCnobody") == set()
    assert item_store.count() == 3


def test_round_trip_preserves_fields(item_store: ItemStore) -> None:
    item = Item(
        id="abcdefghijk",
        title="Shorts clip",
        url="https://www.youtube.com/shorts/abcdefghijk",
        is_short=True,
        source_id="UCalpha000000000000000",
        source_name="Alpha",
        published_at=BASE_TIME,
        duration_seconds=42,
    )
    item_store.upsert_many([item])
    stored = item_store.get("abcdefghijk")
    assert stored.is_short is True
    assert stored.published_at == BASE_TIME
    assert stored.duration_seconds == 42
    assert stored.stored_at is not None


def test_unseen_counts_respect_last_viewed(item_store: ItemStore, marks, make_item) -> None:
    item_store.upsert_many(
        [
            make_item(published_at=BASE_TIME - timedelta(days=2)),
            make_item(published_at=BASE_TIME + timedelta(days=1)),
            make_item(published_at=BASE_TIME + timedelta(days=2), is_short=True),
            make_item(published_at=None),
            make_item(source_id="UCbeta", published_at=BASE_TIME),
        ]
    )
    marks.mark_source_viewed("UCalpha000000000000000", at=BASE_TIME)

    counts = item_store.unseen_counts_per_source()
    assert counts == {"UCalpha000000000000000": 2, "UCbeta": 1}
    assert item_store.unseen_counts_per_source(exclude_short_form=True)["UCalpha000000000000000"] == 1


def test_fully_consumed_sources(item_store: ItemStore, marks, make_item) -> None:
    items = [make_item() for _ in range(3)]
    item_store.upsert_many(items)
    marks.mark_consumed(items[0].id)
    marks.mark_consumed(items[1].id)
    assert "UCalpha000000000000000" not in item_store.fully_consumed_sources()

    marks.mark_consumed(items[2].id)
    assert item_store.fully_consumed_sources() == {"UCalpha000000000000000"}


def test_fully_consumed_ignores_sources_without_eligible_items(item_store: ItemStore, marks, make_item) -> None:
    short = make_item(source_id="UCshorts", is_short=True)
    item_store.upsert_many([short])
    marks.mark_consumed(short.id)
    assert item_store.fully_consumed_sources() == {"UCshorts"}
    assert item_store.fully_consumed_sources(exclude_short_form=True) == set()


def test_source_stats(item_store: ItemStore, make_item) -> None:
    latest = make_item(published_at=BASE_TIME + timedelta(days=3))
    item_store.upsert_many([make_item(), latest, make_item(published_at=None)])
    stats = item_store.source_stats()["UCalpha000000000000000"]
    assert stats.item_count == 3
    assert stats.latest_published == latest.published_at


def test_storage_errors_propagate(database, item_store: ItemStore, make_item) -> None:
    with database.transaction() as conn:
        conn.execute("DROP TABLE items")
    with pytest.raises(StorageError):
        item_store.upsert_many([make_item()])
