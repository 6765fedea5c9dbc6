"""Exception hierarchy for the monitoring core."""

from __future__ import annotations


class MonitorError(Exception):
    """Base exception for all monitor errors."""


class ConfigurationError(MonitorError):
    """Monitor, probe, or plugin wiring is invalid."""


class PluginError(MonitorError):
    """A plugin failed while being registered."""


class NotifierError(MonitorError):
    """A notifier could not deliver a message."""


class EnrichmentError(MonitorError):
    """The enrichment provider call failed."""
