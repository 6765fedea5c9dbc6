"""Core module — config, exceptions, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.exceptions import (
    ConfigurationError,
    EnrichmentError,
    MonitorError,
    NotifierError,
    PluginError,
)
from src.core.logging import setup_logging

__all__ = [
    "ConfigurationError",
    "EnrichmentError",
    "MonitorError",
    "NotifierError",
    "PluginError",
    "Settings",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
