"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import BackfillConfig, GlobalConfig, RefreshConfig, YtDlpConfig

__all__ = [
    "BackfillConfig",
    "ConfigLocator",
    "ConfigRepository",
    "GlobalConfig",
    "RefreshConfig",
    "YtDlpConfig",
]
