"""Full-history backfill for a single source."""

from __future__ import annotations

from dataclasses import dataclass, field
from threading import Event, Lock
from typing import Callable, Protocol, Sequence

import structlog

from ..config import BackfillConfig
from ..errors import BackfillError, FetchError, StorageError
from ..models import BackfillResult, Item, ItemDetails, Source
from .executor import BoundedExecutor
from .retry import RetryingFetch
from .store import ItemStore
from .ytdlp import videos_tab_url

ProgressCallback = Callable[[int, int], None]
ExecutorFactory = Callable[[int], BoundedExecutor]


class HistorySource(Protocol):
    def list_item_ids(self, url: str, limit: int = ...) -> list[str]: ...

    def fetch_details(self, item_ids: Sequence[str]) -> list[ItemDetails]: ...


def _no_progress(_done: int, _total: int) -> None:
    return None


@dataclass(slots=True)
class _DispatchState:
    total_batches: int
    total_ids: int
    pending: list[list[Item]] = field(default_factory=list)
    added: int = 0
    failed: int = 0
    processed: int = 0
    completed: int = 0
    cancelled: bool = False
    lock: Lock = field(default_factory=Lock)


class HistoryBackfiller:
    """Enumerate every item of a source and store the ones not yet known.

    Detail fetches fan out in small batches over a :class:`BoundedExecutor`.
    Fetched batches are buffered and written in chunks so memory stays bounded
    even for channels with thousands of uploads. A batch that cannot be fetched
    is tallied in ``failed`` and never aborts the run.
    """

    def __init__(
        self,
        store: ItemStore,
        client: HistorySource,
        retry: RetryingFetch | None = None,
        config: BackfillConfig | None = None,
        executor_factory: ExecutorFactory | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.retry = retry or RetryingFetch()
        self.config = config or BackfillConfig()
        self._executor_factory = executor_factory or (
            lambda workers: BoundedExecutor(workers, thread_name_prefix="feeding-tube-backfill")
        )
        self.logger = logger or structlog.get_logger("feeding_tube.backfill")

    # ------------------------------------------------------------------
    def backfill(
        self,
        source: Source,
        on_progress: ProgressCallback | None = None,
        cancel: Event | None = None,
    ) -> BackfillResult:
        config = self.config
        progress = on_progress or _no_progress
        log = self.logger.bind(source=source.id)
        existing = self.store.existing_ids(source.id)
        listed = self._list(source, log)
        new_ids = [item_id for item_id in listed if item_id not in existing]
        log.info("backfill_listed", listed=len(listed), existing=len(existing), new=len(new_ids))

        progress(0, len(new_ids))
        if not new_ids:
            return BackfillResult(added=0, total=len(listed), skipped=len(existing))

        batches = [
            new_ids[start : start + config.batch_size]
            for start in range(0, len(new_ids), config.batch_size)
        ]
        state = _DispatchState(total_batches=len(batches), total_ids=len(new_ids))
        executor = self._executor_factory(config.concurrency)
        try:
            futures = [
                executor.submit(self._run_batch, source, batch, state, progress, cancel, log)
                for batch in batches
            ]
            executor.drain()
            for batch, future in zip(batches, futures):
                error = future.exception()
                if error is None:
                    continue
                if isinstance(error, StorageError):
                    raise error
                state.failed += len(batch)
                log.error("backfill_batch_crashed", ids=list(batch), error=str(error))
            remaining, state.pending = state.pending, []
            if remaining:
                self._flush(remaining, state, log)
        except Exception as exc:
            if state.added > 0:
                log.warning("backfill_partial", added=state.added, failed=state.failed, error=str(exc))
                return BackfillResult(
                    added=state.added,
                    total=len(listed),
                    skipped=len(existing),
                    failed=state.failed,
                    error=str(exc),
                    cancelled=state.cancelled,
                )
            log.error("backfill_failed", error=str(exc))
            raise BackfillError(f"Failed to backfill {source.name}: {exc}") from exc
        finally:
            executor.shutdown(wait=True, cancel_pending=True)

        done = state.processed if state.cancelled else len(new_ids)
        progress(done, len(new_ids))
        result = BackfillResult(
            added=state.added,
            total=len(listed),
            skipped=len(existing),
            failed=state.failed,
            cancelled=state.cancelled,
        )
        log.info("backfill_completed", **result.as_dict())
        return result

    # ------------------------------------------------------------------
    def _list(self, source: Source, log: structlog.BoundLogger) -> list[str]:
        config = self.config
        url = videos_tab_url(source.url)
        try:
            listed = self.retry.fetch(
                lambda: self.client.list_item_ids(url, limit=config.listing_cap),
                max_attempts=config.listing_attempts,
                base_delay=config.listing_base_delay,
            )
        except FetchError as exc:
            log.error("backfill_listing_failed", url=url, error=str(exc))
            raise BackfillError(f"Failed to list items for {source.name}: {exc}") from exc
        # listing order is kept, repeats dropped
        return list(dict.fromkeys(listed))

    def _run_batch(
        self,
        source: Source,
        batch: list[str],
        state: _DispatchState,
        progress: ProgressCallback,
        cancel: Event | None,
        log: structlog.BoundLogger,
    ) -> None:
        config = self.config
        if cancel is not None and cancel.is_set():
            with state.lock:
                state.cancelled = True
            return
        try:
            details = self.retry.fetch(
                lambda: self.client.fetch_details(batch),
                max_attempts=config.detail_attempts,
                base_delay=config.detail_base_delay,
            )
        except FetchError as exc:
            log.warning("backfill_batch_failed", ids=list(batch), error=str(exc))
            details = []
        items = [detail.to_item(source) for detail in details]

        to_flush: list[list[Item]] = []
        with state.lock:
            state.processed += len(batch)
            state.completed += 1
            if items:
                state.pending.append(items)
            else:
                state.failed += len(batch)
            report = (
                state.completed % config.progress_every == 0
                or state.completed == state.total_batches
            )
            processed = state.processed
            if len(state.pending) >= config.flush_threshold:
                to_flush, state.pending = state.pending, []

        if report:
            progress(min(processed, state.total_ids), state.total_ids)
        if to_flush:
            self._flush(to_flush, state, log)

    def _flush(self, chunks: list[list[Item]], state: _DispatchState, log: structlog.BoundLogger) -> None:
        items = [item for chunk in chunks for item in chunk]
        inserted = self.store.upsert_many(items)
        with state.lock:
            state.added += inserted
        log.debug("backfill_flush", batches=len(chunks), items=len(items), inserted=inserted)


__all__ = ["HistoryBackfiller", "HistorySource", "ProgressCallback"]
