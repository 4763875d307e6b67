"""UrbanWatch configuration module."""

from urbanwatch.config.logging import configure_logging, get_logger, log_context
from urbanwatch.config.settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Logging
    "configure_logging",
    "get_logger",
    "log_context",
]
