"""Domain records passed between the ingestion components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .dateutils import parse_upload_date

SHORT_FORM_MAX_SECONDS = 60


def watch_url(item_id: str) -> str:
    return f"https://www.youtube.com/watch?v={item_id}"


@dataclass(frozen=True, slots=True)
class Source:
    """A subscribed channel."""

    id: str
    name: str
    url: str


@dataclass(slots=True)
class Item:
    """A single video belonging to a source."""

    id: str
    title: str
    url: str
    is_short: bool = False
    source_id: str | None = None
    source_name: str | None = None
    published_at: datetime | None = None
    stored_at: datetime | None = None
    duration_seconds: int | None = None


@dataclass(slots=True)
class ItemDetails:
    """Per-item payload returned by the detail-fetch call."""

    id: str
    title: str
    url: str
    duration_seconds: int | None = None
    upload_date: str | None = None

    @property
    def is_short(self) -> bool:
        if self.duration_seconds is not None and self.duration_seconds <= SHORT_FORM_MAX_SECONDS:
            return True
        return "/shorts/" in self.url

    def to_item(self, source: Source) -> Item:
        return Item(
            id=self.id,
            title=self.title,
            url=self.url or watch_url(self.id),
            is_short=self.is_short,
            source_id=source.id,
            source_name=source.name,
            published_at=parse_upload_date(self.upload_date),
            duration_seconds=self.duration_seconds,
        )


@dataclass(frozen=True, slots=True)
class ItemDescription:
    title: str
    description: str
    channel_name: str


@dataclass(slots=True)
class Page:
    total: int
    page: int
    page_size: int
    items: list[Item] = field(default_factory=list)


@dataclass(slots=True)
class SourceStats:
    item_count: int
    latest_published: datetime | None = None


@dataclass(slots=True)
class BackfillResult:
    """Outcome of one backfill run; ``error`` is set only for partial results."""

    added: int
    total: int
    skipped: int
    failed: int = 0
    error: str | None = None
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return self.error is not None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "added": self.added,
            "total": self.total,
            "skipped": self.skipped,
        }
        if self.failed:
            payload["failed"] = self.failed
        if self.error is not None:
            payload["error"] = self.error
        if self.cancelled:
            payload["cancelled"] = True
        return payload


__all__ = [
    "BackfillResult",
    "Item",
    "ItemDescription",
    "ItemDetails",
    "Page",
    "SHORT_FORM_MAX_SECONDS",
    "Source",
    "SourceStats",
    "watch_url",
]
