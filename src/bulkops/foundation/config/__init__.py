"""Environment configuration."""

from .settings import (
    BulkOpsSettings,
    ExecutorSettings,
    HttpSettings,
    LoggingSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "BulkOpsSettings",
    "ExecutorSettings",
    "HttpSettings",
    "LoggingSettings",
    "clear_settings_cache",
    "get_settings",
]
