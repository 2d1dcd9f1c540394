"""Cheap per-source Atom feed polling."""

from __future__ import annotations

from datetime import datetime, timezone

import feedparser
import httpx
import structlog

from ..config import RefreshConfig
from ..errors import FatalFetchError, FetchTimeoutError, RateLimitedError
from ..models import Item, Source, watch_url


def _published(entry: feedparser.FeedParserDict) -> datetime | None:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime(*parsed[:6], tzinfo=timezone.utc)


def parse_feed(text: str, source: Source) -> list[Item]:
    """Convert a channel feed document into items, skipping entries without id or title."""

    feed = feedparser.parse(text)
    items: list[Item] = []
    for entry in feed.entries:
        item_id = entry.get("yt_videoid")
        title = entry.get("title")
        if not item_id or not title:
            continue
        link = entry.get("link") or watch_url(item_id)
        items.append(
            Item(
                id=item_id,
                title=title,
                url=link,
                is_short="/shorts/" in link,
                source_id=source.id,
                source_name=source.name,
                published_at=_published(entry),
            )
        )
    return items


class FeedClient:
    """Fetch the recent-items feed of a source over HTTP."""

    def __init__(
        self,
        config: RefreshConfig | None = None,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config or RefreshConfig()
        self._client = client or httpx.Client(follow_redirects=True, timeout=self.config.timeout)
        self.logger = logger or structlog.get_logger("feeding_tube.feed")

    def feed_url(self, source: Source) -> str:
        return self.config.feed_url_template.format(channel_id=source.id)

    def fetch(self, source: Source) -> list[Item]:
        url = self.feed_url(source)
        try:
            response = self._client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Feed request timed out: {url}") from exc
        except httpx.HTTPError as exc:
            raise FatalFetchError(f"Feed request failed: {url}: {exc}") from exc
        if response.status_code == 429:
            raise RateLimitedError(f"Feed throttled: {url}")
        if response.status_code >= 400:
            raise FatalFetchError(f"Unexpected status {response.status_code}: {url}")
        return parse_feed(response.text, source)

    def close(self) -> None:
        self._client.close()


__all__ = ["FeedClient", "parse_feed"]
