"""Exception hierarchy shared across the ingestion pipeline."""

from __future__ import annotations


class FeedingTubeError(Exception):
    """Base class for every error raised by feeding-tube."""


class FetchError(FeedingTubeError):
    """An external call (yt-dlp, feed endpoint) failed."""


class TransientFetchError(FetchError):
    """Failure expected to resolve on retry."""


class RateLimitedError(TransientFetchError):
    """Upstream answered with a throttling response."""


class FetchTimeoutError(TransientFetchError):
    """The call exceeded its time budget."""


class FatalFetchError(FetchError):
    """Malformed response, missing resource or any other non-retryable failure."""


class StorageError(FeedingTubeError):
    """The persisted store rejected a read or write."""


class BackfillError(FeedingTubeError):
    """A backfill could not list its source or lost every fetched item."""


class InvalidSourceError(FeedingTubeError):
    """A subscription URL is not something the metadata source understands."""


__all__ = [
    "BackfillError",
    "FatalFetchError",
    "FeedingTubeError",
    "FetchError",
    "FetchTimeoutError",
    "InvalidSourceError",
    "RateLimitedError",
    "StorageError",
    "TransientFetchError",
]
