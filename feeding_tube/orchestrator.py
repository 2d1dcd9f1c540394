"""Orchestrator wiring stores, fetch clients and both ingestion paths together."""

from __future__ import annotations

from threading import Event, Lock

import structlog

from .config import ConfigRepository, GlobalConfig
from .engine import (
    FeedClient,
    HistoryBackfiller,
    IncrementalRefresher,
    ItemStore,
    MarkStore,
    RetryingFetch,
    SubscriptionStore,
    YtDlpClient,
)
from .engine.backfill import ProgressCallback
from .engine.refresher import FeedFetcher
from .errors import InvalidSourceError
from .infra import SQLiteDatabase
from .logging_conf import source_logger
from .models import BackfillResult, Source
from .scheduler import APSchedulerAdapter


class Orchestrator:
    """Central coordinator owning the database-backed stores and the fetch clients."""

    def __init__(
        self,
        config_repository: ConfigRepository,
        database: SQLiteDatabase,
        scheduler: APSchedulerAdapter | None = None,
        ytdlp: YtDlpClient | None = None,
        feed: FeedFetcher | None = None,
        retry: RetryingFetch | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.database = database
        self.scheduler = scheduler
        self.logger = logger or structlog.get_logger("feeding_tube").bind(component="orchestrator")

        self.items = ItemStore(database)
        self.marks = MarkStore(database)
        self.subscriptions = SubscriptionStore(database)
        self.ytdlp = ytdlp or YtDlpClient(self.global_config.ytdlp)
        self.feed = feed or FeedClient(self.global_config.refresh)
        self.retry = retry or RetryingFetch()
        self.refresher = IncrementalRefresher(
            self.items, self.feed, batch_size=self.global_config.refresh.batch_size
        )
        self._refresh_lock = Lock()

    # ------------------------------------------------------------------
    def refresh_all(self) -> int:
        """Poll every subscribed source once; returns the number of new items."""

        # overlapping scheduled and manual refreshes would fetch everything twice
        with self._refresh_lock:
            sources = self.subscriptions.list_sources()
            if not sources:
                self.logger.info("refresh_skipped", reason="no sources")
                return 0
            return self.refresher.refresh_all(sources)

    def backfill(
        self,
        source: Source,
        on_progress: ProgressCallback | None = None,
        cancel: Event | None = None,
    ) -> BackfillResult:
        log = source_logger(source.id)
        backfiller = HistoryBackfiller(
            self.items,
            self.ytdlp,
            retry=self.retry,
            config=self.global_config.backfill,
            logger=log,
        )
        log.info("backfill_started", name=source.name, url=source.url)
        return backfiller.backfill(source, on_progress=on_progress, cancel=cancel)

    def add_subscription(self, url: str) -> Source:
        """Resolve ``url`` to its channel and subscribe to it."""

        source = self.ytdlp.channel_info(url)
        if not self.subscriptions.add_source(source):
            raise InvalidSourceError(f"Already subscribed to {source.name}")
        self.logger.info("source_added", source=source.id, name=source.name)
        return source

    def remove_subscription(self, source: Source) -> bool:
        removed = self.subscriptions.remove_source(source.id)
        if removed:
            self.logger.info("source_removed", source=source.id, name=source.name)
        return removed

    def start_periodic_refresh(self, minutes: int | None = None) -> None:
        if self.scheduler is None:
            raise RuntimeError("No scheduler configured")
        interval = minutes or self.global_config.refresh.interval_minutes
        self.scheduler.schedule_refresh(self.refresh_all, interval)
        self.scheduler.start()

    def close(self) -> None:
        if self.scheduler is not None:
            self.scheduler.shutdown()
        close_feed = getattr(self.feed, "close", None)
        if callable(close_feed):
            close_feed()
        self.database.close()


__all__ = ["Orchestrator"]
