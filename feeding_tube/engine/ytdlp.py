"""Adapter around the yt-dlp command-line tool."""

from __future__ import annotations

import json
import re
import subprocess
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

import structlog

from ..config import YtDlpConfig
from ..errors import FatalFetchError, FetchTimeoutError, InvalidSourceError, RateLimitedError
from ..models import Item, ItemDescription, ItemDetails, Source, watch_url
from .retry import THROTTLE_MARKERS

VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
YOUTUBE_URL_PATTERNS = (
    re.compile(r"^https?://(www\.)?(youtube\.com|youtu\.be)/"),
    re.compile(r"^https?://(www\.)?youtube\.com/@[\w.\-]+"),
)
_SKIP_STREAMS = ("--extractor-args", "youtube:skip=dash,hls")
MAX_QUERY_LENGTH = 500
MAX_SEARCH_RESULTS = 50

Runner = Callable[..., subprocess.CompletedProcess]


def is_valid_youtube_url(url: Any) -> bool:
    if not isinstance(url, str):
        return False
    return any(pattern.match(url) for pattern in YOUTUBE_URL_PATTERNS)


def is_valid_video_id(value: Any) -> bool:
    return isinstance(value, str) and bool(VIDEO_ID_PATTERN.match(value))


def sanitize_search_query(query: str) -> str:
    return query.strip()[:MAX_QUERY_LENGTH]


def videos_tab_url(url: str) -> str:
    if "/videos" in url:
        return url
    return url.rstrip("/") + "/videos"


def _is_video_url(url: str) -> bool:
    return "/watch?" in url or "youtu.be/" in url


def parse_detail_line(line: str) -> ItemDetails | None:
    """Parse one ``--dump-json`` line; malformed lines yield ``None``."""

    try:
        data = json.loads(line)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    item_id = data.get("id")
    if not isinstance(item_id, str) or not item_id:
        return None
    duration = data.get("duration")
    if isinstance(duration, float):
        duration = int(duration)
    elif not isinstance(duration, int) or isinstance(duration, bool):
        duration = None
    upload_date = data.get("upload_date")
    return ItemDetails(
        id=item_id,
        title=data.get("title") or "",
        url=data.get("webpage_url") or watch_url(item_id),
        duration_seconds=duration,
        upload_date=upload_date if isinstance(upload_date, str) else None,
    )


def _number(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _epoch(value: Any) -> datetime | None:
    seconds = _number(value)
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_search_line(line: str) -> Item | None:
    """Turn one flat-playlist search result into an unsaved ``Item``."""

    try:
        data = json.loads(line)
    except ValueError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("id"), str) or not data["id"]:
        return None
    item_id = data["id"]
    return Item(
        id=item_id,
        title=data.get("title") or "",
        url=data.get("webpage_url") or data.get("url") or watch_url(item_id),
        source_id=data.get("channel_id"),
        source_name=data.get("channel") or data.get("uploader") or "Unknown",
        published_at=_epoch(data.get("release_timestamp")) or _epoch(data.get("timestamp")),
        duration_seconds=_number(data.get("duration")),
    )


class YtDlpClient:
    """Run yt-dlp as a subprocess and translate its failures into fetch errors.

    Throttling output (HTTP 429 and friends) raises :class:`RateLimitedError`,
    an exceeded time budget raises :class:`FetchTimeoutError`, everything else
    is a :class:`FatalFetchError`.
    """

    def __init__(
        self,
        config: YtDlpConfig | None = None,
        runner: Runner = subprocess.run,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config or YtDlpConfig()
        self._runner = runner
        self.logger = logger or structlog.get_logger("feeding_tube.ytdlp")

    def _run(self, args: Sequence[str], timeout: float | None = None) -> str:
        command = [self.config.binary, *args]
        budget = timeout or self.config.timeout
        try:
            completed = self._runner(
                command,
                capture_output=True,
                text=True,
                timeout=budget,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise FetchTimeoutError(f"yt-dlp timed out after {budget:.0f}s") from exc
        except OSError as exc:
            raise FatalFetchError(f"Failed to run {self.config.binary}: {exc}") from exc
        if completed.returncode != 0:
            stderr = (completed.stderr or "").strip()
            lowered = stderr.lower()
            if any(marker in lowered for marker in THROTTLE_MARKERS):
                raise RateLimitedError(stderr)
            raise FatalFetchError(stderr or f"yt-dlp exited with status {completed.returncode}")
        return completed.stdout or ""

    def channel_info(self, url: str) -> Source:
        """Resolve a channel or video URL into the owning channel."""

        channel_url = url.strip()
        if not channel_url.startswith(("http://", "https://")):
            raise InvalidSourceError("Invalid URL format")
        if not is_valid_youtube_url(channel_url):
            raise InvalidSourceError("Not a valid YouTube URL")
        stdout = self._run(["--dump-json", "--playlist-items", "1", "--no-warnings", channel_url])
        first_line = next((line for line in stdout.splitlines() if line.strip()), "")
        try:
            data = json.loads(first_line)
        except ValueError as exc:
            raise FatalFetchError(f"Failed to parse channel metadata: {exc}") from exc
        channel_id = data.get("channel_id")
        name = data.get("channel") or data.get("uploader")
        if not channel_id:
            raise FatalFetchError("No channel_id found")
        if not name:
            raise FatalFetchError("No channel name found")
        fallback = (
            f"https://www.youtube.com/channel/{channel_id}" if _is_video_url(channel_url) else channel_url
        )
        return Source(id=channel_id, name=name, url=data.get("channel_url") or fallback)

    def list_item_ids(self, url: str, limit: int = 5000) -> list[str]:
        stdout = self._run(
            [
                "--flat-playlist",
                "--print",
                "%(id)s",
                "--no-warnings",
                *_SKIP_STREAMS,
                "--playlist-end",
                str(limit),
                url,
            ]
        )
        ids = [line.strip() for line in stdout.splitlines() if line.strip()]
        return ids[:limit]

    def fetch_details(self, item_ids: Sequence[str]) -> list[ItemDetails]:
        if not item_ids:
            return []
        stdout = self._run(
            [
                "--dump-json",
                "--no-warnings",
                *_SKIP_STREAMS,
                "--socket-timeout",
                str(self.config.socket_timeout),
                *(watch_url(item_id) for item_id in item_ids),
            ]
        )
        details = []
        for line in stdout.splitlines():
            if not line.strip():
                continue
            parsed = parse_detail_line(line)
            if parsed is None:
                self.logger.debug("detail_line_skipped", line=line[:120])
                continue
            details.append(parsed)
        return details

    def search(self, query: str, limit: int = 20) -> list[Item]:
        """Search YouTube; ``limit`` is clamped to 1..50 and an empty query is rejected."""

        sanitized = sanitize_search_query(query)
        if not sanitized:
            raise ValueError("Search query cannot be empty")
        safe_limit = min(max(1, limit), MAX_SEARCH_RESULTS)
        stdout = self._run(
            [f"ytsearch{safe_limit}:{sanitized}", "--flat-playlist", "--dump-json", "--no-warnings"],
            timeout=self.config.search_timeout,
        )
        hits = [parse_search_line(line) for line in stdout.splitlines() if line.strip()]
        return [hit for hit in hits if hit is not None]

    def describe(self, item_id: str) -> ItemDescription:
        if not is_valid_video_id(item_id):
            raise ValueError("Invalid video ID format")
        stdout = self._run(
            ["--dump-json", "--no-warnings", *_SKIP_STREAMS, watch_url(item_id)],
            timeout=self.config.describe_timeout,
        )
        try:
            data = json.loads(stdout)
        except ValueError as exc:
            raise FatalFetchError(f"Failed to parse video metadata: {exc}") from exc
        if not isinstance(data, dict):
            raise FatalFetchError("Unexpected video metadata payload")
        return ItemDescription(
            title=data.get("title") or "",
            description=data.get("description") or "No description available.",
            channel_name=data.get("channel") or data.get("uploader") or "Unknown",
        )


__all__ = [
    "YtDlpClient",
    "is_valid_video_id",
    "is_valid_youtube_url",
    "parse_detail_line",
    "parse_search_line",
    "sanitize_search_query",
    "videos_tab_url",
]
