"""Pydantic models describing feeding-tube configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_FEED_URL_TEMPLATE = "https://www.youtube.com/feeds/videos.xml?channel_id={channel_id}"


def _require_positive(value: int | float, name: str) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be > 0")


class BackfillConfig(BaseModel):
    """Tuning knobs for full-history backfills."""

    listing_cap: int = 5000
    listing_attempts: int = 3
    listing_base_delay: float = 2.0
    batch_size: int = 5
    concurrency: int = 50
    detail_attempts: int = 2
    detail_base_delay: float = 1.0
    # measured in fetched batches, not items
    flush_threshold: int = 20
    progress_every: int = 10

    @field_validator(
        "listing_cap",
        "listing_attempts",
        "batch_size",
        "concurrency",
        "detail_attempts",
        "flush_threshold",
        "progress_every",
    )
    @classmethod
    def _positive_int(cls, value: int, info) -> int:
        _require_positive(value, info.field_name)
        return value

    @field_validator("listing_base_delay", "detail_base_delay")
    @classmethod
    def _non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Retry delays must be non-negative")
        return value


class RefreshConfig(BaseModel):
    """Incremental feed polling settings."""

    batch_size: int = 20
    timeout: float = 15.0
    interval_minutes: int = 30
    feed_url_template: str = DEFAULT_FEED_URL_TEMPLATE

    @field_validator("batch_size", "interval_minutes")
    @classmethod
    def _positive_int(cls, value: int, info) -> int:
        _require_positive(value, info.field_name)
        return value

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        _require_positive(value, "timeout")
        return value

    @field_validator("feed_url_template")
    @classmethod
    def _has_placeholder(cls, value: str) -> str:
        if "{channel_id}" not in value:
            raise ValueError("feed_url_template must contain '{channel_id}'")
        return value


class YtDlpConfig(BaseModel):
    """How the yt-dlp command-line tool is invoked."""

    binary: str = "yt-dlp"
    timeout: float = 60.0
    search_timeout: float = 30.0
    describe_timeout: float = 15.0
    socket_timeout: int = 30

    @field_validator("timeout", "search_timeout", "describe_timeout")
    @classmethod
    def _positive_timeout(cls, value: float, info) -> float:
        _require_positive(value, info.field_name)
        return value


class GlobalConfig(BaseModel):
    """Global controls shared across commands."""

    database_path: Path = Field(default=Path("data/feeding_tube.db"))
    legacy_dir: Path | None = Field(default=Path("~/.config/youtube-cli"))
    hide_shorts: bool = True
    page_size: int = 100
    backfill: BackfillConfig = Field(default_factory=BackfillConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    ytdlp: YtDlpConfig = Field(default_factory=YtDlpConfig)

    @field_validator("database_path", mode="before")
    @classmethod
    def _coerce_database_path(cls, value: Any) -> Path:
        return Path(value).expanduser()

    @field_validator("legacy_dir", mode="before")
    @classmethod
    def _coerce_legacy_dir(cls, value: Any) -> Path | None:
        if value in (None, ""):
            return None
        return Path(value).expanduser()

    @field_validator("page_size")
    @classmethod
    def _clamp_page_size(cls, value: int) -> int:
        if value < 1 or value > 1000:
            raise ValueError("page_size must be between 1 and 1000")
        return value

    def resolved_database_path(self, base_dir: Path) -> Path:
        """Return the database path relative to the home directory."""

        if not self.database_path.is_absolute():
            return (base_dir / self.database_path).resolve()
        return self.database_path


__all__ = [
    "BackfillConfig",
    "DEFAULT_FEED_URL_TEMPLATE",
    "GlobalConfig",
    "RefreshConfig",
    "YtDlpConfig",
]
