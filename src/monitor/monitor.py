"""Monitor — the single alert entry point.

``alert()`` runs every alert through::

    timestamp -> deduplicator -> enrichment -> plugin chain -> notifier fan-out

Manual calls, the HTTP endpoint, instrumentation, health probes and the
metric aggregator all converge here. Pipeline, deployment, daily-report and
raw notifications skip dedup/enrichment/plugins and go straight to fan-out.
"""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Awaitable, Callable

import httpx
import structlog
from aiohttp import web

from src.core.config import AggregatorConfig, DeduplicationConfig, ServerConfig
from src.core.exceptions import ConfigurationError
from src.monitor.aggregator import MetricAggregator
from src.monitor.deduplicator import AlertDeduplicator, Clock
from src.monitor.enrichment import EnrichmentProvider, LogEntry, format_enrichment
from src.monitor.notifiers import Notifier
from src.monitor.plugins import Plugin, PluginManager
from src.monitor.probes import HealthProbeManager, ProbeConfig
from src.monitor.types import Alert, DailyReport, Deployment, PipelineStatus

# Dedicated structured logger for alert decisions.
alert_logger = structlog.get_logger("alert_log")

logger = structlog.get_logger(__name__)

TEST_NOTIFICATION = "AI Monitor is running!\n\nMonitoring active and ready to receive alerts."


class Monitor:
    """Alert orchestrator and lifecycle owner for probes and aggregation.

    - Duplicate alerts (same severity + title) inside the cooldown are dropped.
    - Enrichment failures degrade to the unenriched alert.
    - Plugins may rewrite or suppress alerts, strictly in registration order.
    - Notifiers are invoked concurrently; one failing never blocks the others
      and never raises to the caller.

    Usage::

        monitor = Monitor(notifiers=[TelegramNotifier(cfg)])
        monitor.probes.add_tcp_probe("postgres", "db", 5432)
        await monitor.start()
        await monitor.alert(Alert(severity=Severity.WARNING, title="Disk 90%"))
        await monitor.stop()
    """

    def __init__(
        self,
        notifiers: list[Notifier] | None = None,
        *,
        enabled: bool = True,
        deduplication: DeduplicationConfig | None = None,
        enrichment: EnrichmentProvider | None = None,
        plugins: list[Plugin] | None = None,
        probes: list[ProbeConfig] | None = None,
        aggregator: AggregatorConfig | None = None,
        server: ServerConfig | None = None,
        send_test_notification: bool = False,
        test_notification_delay_ms: int = 3000,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._notifiers: list[Notifier] = list(notifiers or [])
        for i, notifier in enumerate(self._notifiers):
            if not isinstance(notifier, Notifier):
                raise ConfigurationError(
                    f"notifiers[{i}] must be a Notifier, got {type(notifier).__name__}"
                )

        self._enabled = enabled
        dedup_cfg = deduplication or DeduplicationConfig()
        self._dedup: AlertDeduplicator | None = (
            AlertDeduplicator(cooldown_ms=dedup_cfg.cooldown_ms, clock=clock)
            if dedup_cfg.enabled
            else None
        )
        self._enrichment = enrichment

        self._plugins = PluginManager()
        self._uninitialised: list[Plugin] = []
        for i, plugin in enumerate(plugins or []):
            if not plugin.name:
                raise ConfigurationError(f"plugins[{i}] must have a non-empty name")
            self._plugins.attach(plugin)
            self._uninitialised.append(plugin)

        self._probes = HealthProbeManager(self.alert, http_client=http_client)
        for probe in probes or []:
            self._probes.add_probe(probe)

        agg_cfg = aggregator or AggregatorConfig()
        self._aggregator: MetricAggregator | None = (
            MetricAggregator(self.alert, agg_cfg.thresholds, agg_cfg.interval_secs)
            if agg_cfg.enabled
            else None
        )

        self._server_config = server
        self._runner: web.AppRunner | None = None
        self._send_test_notification = send_test_notification
        self._test_delay_secs = test_notification_delay_ms / 1000.0
        self._test_task: asyncio.Task[None] | None = None
        self._running = False

        if not enabled:
            logger.warning("monitor_disabled")

    # ── Properties ──────────────────────────────────────────────

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def running(self) -> bool:
        return self._running

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    @property
    def plugins(self) -> PluginManager:
        return self._plugins

    @property
    def deduplicator(self) -> AlertDeduplicator | None:
        return self._dedup

    @property
    def probes(self) -> HealthProbeManager:
        return self._probes

    @property
    def aggregator(self) -> MetricAggregator | None:
        return self._aggregator

    @property
    def suppressed_count(self) -> int:
        """Alerts dropped by the deduplicator so far."""
        return self._dedup.suppressed_count if self._dedup is not None else 0

    def probe_status(self) -> dict[str, dict[str, object]]:
        """Snapshot of every health probe, keyed by probe name."""
        return self._probes.get_status()

    # ── Alert pipeline ──────────────────────────────────────────

    async def alert(self, alert: Alert) -> None:
        """Run *alert* through dedup, enrichment and plugins, then fan out."""
        if not self._enabled:
            logger.debug("monitor_disabled_skip", action="alert", title=alert.title)
            return

        if alert.timestamp is None:
            alert = alert.model_copy(
                update={"timestamp": datetime.datetime.now(datetime.UTC)}
            )

        if self._dedup is not None and not self._dedup.should_send(alert):
            alert_logger.info(
                "alert_suppressed",
                reason="duplicate",
                severity=alert.severity.name,
                title=alert.title,
                suppressed_total=self._dedup.suppressed_count,
            )
            return

        alert = await self._enrich(alert)

        final = await self._plugins.process_alert(alert, self)
        if final is None:
            alert_logger.info(
                "alert_suppressed",
                reason="plugin",
                severity=alert.severity.name,
                title=alert.title,
            )
            return

        alert_logger.info(
            "alert_dispatched",
            severity=final.severity.name,
            title=final.title,
            message=final.message,
            metrics=final.metrics,
        )
        await self._notify_all("send_alert", lambda n: n.send_alert(final))

    async def _enrich(self, alert: Alert) -> Alert:
        provider = self._enrichment
        if provider is None or not provider.enabled:
            return alert
        assert alert.timestamp is not None
        try:
            analysis = await provider.analyze_log(LogEntry(
                timestamp=alert.timestamp,
                level=alert.severity.name,
                message=alert.message,
                metadata=alert.metrics,
            ))
        except Exception:
            logger.warning("enrichment_failed", title=alert.title, exc_info=True)
            return alert

        logger.info(
            "alert_enriched",
            title=alert.title,
            confidence=round(analysis.confidence, 2),
        )
        return alert.model_copy(update={
            "message": alert.message + format_enrichment(analysis),
            "metrics": {
                **alert.metrics,
                "aiAnalysis": analysis.model_dump(mode="json", by_alias=True),
            },
        })

    # ── Fan-out only ────────────────────────────────────────────

    async def pipeline_status(self, status: PipelineStatus) -> None:
        if not self._enabled:
            logger.debug("monitor_disabled_skip", action="pipeline_status")
            return
        logger.info("pipeline_status", job=status.job_name, status=status.status.value)
        await self._notify_all("send_pipeline_status", lambda n: n.send_pipeline_status(status))

    async def deployment(self, deployment: Deployment) -> None:
        if not self._enabled:
            logger.debug("monitor_disabled_skip", action="deployment")
            return
        logger.info(
            "deployment",
            environment=deployment.environment,
            status=deployment.status.value,
        )
        await self._notify_all(
            "send_deployment_notification",
            lambda n: n.send_deployment_notification(deployment),
        )

    async def daily_report(self, report: DailyReport) -> None:
        if not self._enabled:
            logger.debug("monitor_disabled_skip", action="daily_report")
            return
        logger.info("daily_report", total_alerts=report.total_alerts)
        await self._notify_all("send_daily_report", lambda n: n.send_daily_report(report))

    async def notify(self, message: str) -> None:
        """Send a raw message through all notifiers."""
        if not self._enabled:
            logger.debug("monitor_disabled_skip", action="notify")
            return
        await self._notify_all("send", lambda n: n.send(message))

    async def _notify_all(
        self,
        action: str,
        call: Callable[[Notifier], Awaitable[None]],
    ) -> None:
        if not self._notifiers:
            logger.warning("no_notifiers_configured", action=action)
            return

        results = await asyncio.gather(
            *(call(n) for n in self._notifiers),
            return_exceptions=True,
        )
        for notifier, result in zip(self._notifiers, results):
            if isinstance(result, BaseException):
                logger.error(
                    "notifier_failed",
                    notifier=type(notifier).__name__,
                    action=action,
                    error=str(result) or type(result).__name__,
                    exc_info=result,
                )

    # ── Plugins ─────────────────────────────────────────────────

    async def use(self, plugin: Plugin) -> None:
        """Register a plugin at runtime and run its ``on_init`` hook."""
        if not plugin.name:
            raise ConfigurationError("plugin must have a non-empty name")
        await self._plugins.register(plugin, self)

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Start the HTTP endpoint, probes, aggregation, and plugin hooks."""
        if self._running:
            logger.warning("monitor_already_running")
            return

        # A failed on_init unregisters that plugin; later ones wait for the next start().
        while self._uninitialised:
            await self._plugins.initialise(self._uninitialised.pop(0), self)

        self._running = True

        if self._server_config is not None and self._server_config.enabled:
            from src.monitor.server import start_server

            self._runner = await start_server(self, self._server_config)

        await self._probes.start()
        if self._aggregator is not None:
            await self._aggregator.start()
        await self._plugins.run_hook("on_start", self)

        logger.info(
            "monitor_started",
            enabled=self._enabled,
            notifiers=len(self._notifiers),
            probes=len(self._probes.probe_names),
            plugins=self._plugins.count,
        )

        if self._send_test_notification and self._enabled:
            self._test_task = asyncio.create_task(self._delayed_test_notification())

    async def stop(self) -> None:
        """Stop timers and the HTTP endpoint; run plugin ``on_stop`` hooks."""
        if not self._running:
            return
        self._running = False

        if self._test_task is not None:
            self._test_task.cancel()
            try:
                await self._test_task
            except asyncio.CancelledError:
                pass
            self._test_task = None

        await self._plugins.run_hook("on_stop", self)
        await self._probes.stop()
        if self._aggregator is not None:
            await self._aggregator.stop()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.info("monitor_stopped", suppressed=self.suppressed_count)

    async def close(self) -> None:
        """Stop, then release notifier and enrichment resources."""
        await self.stop()
        # In-flight checks would otherwise alert through already-closed notifiers.
        await self._probes.close()
        for notifier in self._notifiers:
            try:
                await notifier.close()
            except Exception:
                logger.exception("notifier_close_error", notifier=type(notifier).__name__)
        close = getattr(self._enrichment, "close", None)
        if close is not None:
            await close()

    async def _delayed_test_notification(self) -> None:
        await asyncio.sleep(self._test_delay_secs)
        logger.info("test_notification_sending")
        try:
            await self.notify(TEST_NOTIFICATION)
        except Exception:
            logger.exception("test_notification_failed")
