"""Engine components: bounded fan-out, retries, the item store and both ingestion paths."""

from .backfill import HistoryBackfiller
from .executor import BoundedExecutor
from .feed import FeedClient, parse_feed
from .marks import MarkStore
from .refresher import IncrementalRefresher
from .retry import RetryingFetch, is_transient
from .store import ItemStore
from .subscriptions import SubscriptionStore
from .ytdlp import YtDlpClient

__all__ = [
    "BoundedExecutor",
    "FeedClient",
    "HistoryBackfiller",
    "IncrementalRefresher",
    "ItemStore",
    "MarkStore",
    "RetryingFetch",
    "SubscriptionStore",
    "YtDlpClient",
    "is_transient",
    "parse_feed",
]
