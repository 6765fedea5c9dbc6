"""Convenience factory for wiring the monitoring stack from settings."""

from __future__ import annotations

import httpx

from src.core.config import ProbeSettings, Settings
from src.monitor.enrichment import AIService
from src.monitor.monitor import Monitor
from src.monitor.notifiers import (
    DiscordNotifier,
    LogNotifier,
    Notifier,
    TelegramNotifier,
    WebhookNotifier,
)
from src.monitor.plugins import Plugin
from src.monitor.probes import ProbeConfig, ProbeType


def build_notifiers(settings: Settings) -> list[Notifier]:
    """Instantiate every enabled notifier, in a stable order."""
    cfg = settings.notifiers
    notifiers: list[Notifier] = []

    if cfg.telegram.enabled:
        notifiers.append(TelegramNotifier(cfg.telegram))

    if cfg.discord.enabled:
        notifiers.append(DiscordNotifier(cfg.discord))

    if cfg.webhook.enabled:
        notifiers.append(WebhookNotifier(cfg.webhook))

    if cfg.log:
        notifiers.append(LogNotifier())

    return notifiers


def probe_config(probe: ProbeSettings) -> ProbeConfig:
    """Convert a declarative YAML probe into a ProbeConfig."""
    return ProbeConfig(
        name=probe.name,
        type=ProbeType(probe.type),
        interval_ms=probe.interval_ms,
        timeout_ms=probe.timeout_ms,
        consecutive_failures_for_critical=probe.consecutive_failures_for_critical,
        url=probe.url,
        expected_status=probe.expected_status,
        method=probe.method,
        host=probe.host,
        port=probe.port,
    )


def create_monitor(
    settings: Settings,
    plugins: list[Plugin] | None = None,
    extra_notifiers: list[Notifier] | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Monitor:
    """Build a Monitor with notifiers, enrichment, probes and aggregation.

    Raises:
        ConfigurationError: a probe or plugin definition is invalid.
    """
    notifiers = build_notifiers(settings) + list(extra_notifiers or [])
    enrichment = AIService(settings.ai) if settings.ai.enabled else None

    return Monitor(
        notifiers=notifiers,
        enabled=settings.enabled,
        deduplication=settings.deduplication,
        enrichment=enrichment,
        plugins=plugins,
        probes=[probe_config(p) for p in settings.probes],
        aggregator=settings.aggregator,
        server=settings.server,
        send_test_notification=settings.send_test_notification,
        test_notification_delay_ms=settings.test_notification_delay_ms,
        http_client=http_client,
    )
