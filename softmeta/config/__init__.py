"""
Configuration module: Settings and logging.
"""

from softmeta.config.settings import settings, get_settings, Settings
from softmeta.config.logging import get_logger, setup_logging

__all__ = [
    # settings
    "settings",
    "get_settings",
    "Settings",
    # logging
    "get_logger",
    "setup_logging",
]
