"""Incremental refresh of every subscribed source."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Protocol, Sequence

import structlog

from ..models import Item, Source
from .store import ItemStore

DEFAULT_BATCH_SIZE = 20


class FeedFetcher(Protocol):
    def fetch(self, source: Source) -> list[Item]: ...


class IncrementalRefresher:
    """Poll each source's feed in fixed-size concurrent batches and store what is new.

    A source whose feed fails contributes nothing this cycle; it is simply
    polled again next time.
    """

    def __init__(
        self,
        store: ItemStore,
        feed: FeedFetcher,
        batch_size: int = DEFAULT_BATCH_SIZE,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.store = store
        self.feed = feed
        self.batch_size = batch_size
        self.logger = logger or structlog.get_logger("feeding_tube.refresher")

    def refresh_all(self, sources: Sequence[Source]) -> int:
        if not sources:
            return 0
        collected: list[Item] = []
        failures = 0
        with ThreadPoolExecutor(
            max_workers=min(self.batch_size, len(sources)), thread_name_prefix="feeding-tube-feed"
        ) as pool:
            for start in range(0, len(sources), self.batch_size):
                chunk = sources[start : start + self.batch_size]
                futures = [pool.submit(self._fetch_source, source) for source in chunk]
                for future in futures:
                    items = future.result()
                    if items is None:
                        failures += 1
                    else:
                        collected.extend(items)
        inserted = self.store.upsert_many(collected)
        self.logger.info(
            "refresh_completed",
            sources=len(sources),
            failed_sources=failures,
            fetched=len(collected),
            inserted=inserted,
        )
        return inserted

    def _fetch_source(self, source: Source) -> list[Item] | None:
        try:
            return self.feed.fetch(source)
        except Exception as exc:
            self.logger.warning(
                "feed_fetch_failed", source=source.id, error_type=type(exc).__name__, error=str(exc)
            )
            return None


__all__ = ["DEFAULT_BATCH_SIZE", "FeedFetcher", "IncrementalRefresher"]
