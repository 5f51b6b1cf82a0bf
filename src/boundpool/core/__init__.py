# src/boundpool/core/__init__.py
"""Core infrastructure: Configuration, Logging."""

from boundpool.core.config import (
    BoundPoolSettings,
    LimiterSettings,
    LoggingSettings,
    PoolSettings,
    load_settings,
)
from boundpool.core.logging import configure_from_settings, configure_logging, get_logger

__all__ = [
    "BoundPoolSettings",
    "LimiterSettings",
    "LoggingSettings",
    "PoolSettings",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "load_settings",
]
