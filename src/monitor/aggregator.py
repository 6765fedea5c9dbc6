"""MetricAggregator — windowed P95 latency and error-rate alerting.

Request samples are recorded synchronously as they happen; once per interval
the window is evaluated against the golden-signal thresholds and cleared.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from src.core.config import ThresholdsConfig
from src.monitor.types import Alert, Severity

logger = structlog.get_logger(__name__)

AlertFn = Callable[[Alert], Awaitable[None]]


@dataclass
class MetricWindow:
    """Samples collected since the last aggregation cycle."""

    durations: list[float] = field(default_factory=list)
    total: int = 0
    errors: int = 0

    def reset(self) -> None:
        self.durations = []
        self.total = 0
        self.errors = 0


def p95(samples: list[float]) -> float:
    """Element at ``floor(n * 0.95)`` of the ascending sort."""
    ordered = sorted(samples)
    return ordered[int(len(ordered) * 0.95)]


class MetricAggregator:
    """Derives latency / error-rate alerts from raw request samples.

    Usage::

        aggregator = MetricAggregator(monitor.alert)
        await aggregator.start()
        aggregator.record_request(123.4, is_error=False)
    """

    def __init__(
        self,
        alert_fn: AlertFn,
        thresholds: ThresholdsConfig | None = None,
        interval_secs: float = 60.0,
    ) -> None:
        self._alert_fn = alert_fn
        self._thresholds = thresholds or ThresholdsConfig()
        self._interval_secs = interval_secs
        self._window = MetricWindow()
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def thresholds(self) -> ThresholdsConfig:
        return self._thresholds

    @property
    def sample_count(self) -> int:
        return self._window.total

    @property
    def running(self) -> bool:
        return self._running

    def record_request(self, duration_ms: float, is_error: bool = False) -> None:
        """Add one request sample to the current window."""
        self._window.durations.append(duration_ms)
        self._window.total += 1
        if is_error:
            self._window.errors += 1

    async def aggregate_and_alert(self) -> list[Alert]:
        """Evaluate the window, emit alerts, and reset it.

        An empty window is left untouched and produces no alerts.
        """
        window = self._window
        if not window.durations:
            return []

        latency = p95(window.durations)
        error_rate = window.errors / window.total * 100
        rt = self._thresholds.response_time
        er = self._thresholds.error_rate

        alerts: list[Alert] = []
        if latency > rt.critical:
            alerts.append(Alert(
                severity=Severity.CRITICAL,
                title="Critical Latency (P95)",
                message=f"P95 response time is {latency:g}ms (critical > {rt.critical:g}ms)",
                metrics={"p95": latency, "threshold": rt.critical, "samples": window.total},
            ))
        elif latency > rt.warning:
            alerts.append(Alert(
                severity=Severity.WARNING,
                title="High Latency (P95)",
                message=f"P95 response time is {latency:g}ms (warning > {rt.warning:g}ms)",
                metrics={"p95": latency, "threshold": rt.warning, "samples": window.total},
            ))

        if error_rate > er.critical:
            alerts.append(Alert(
                severity=Severity.CRITICAL,
                title="Critical Error Rate",
                message=f"Error rate is {error_rate:.2f}% (critical > {er.critical:g}%)",
                metrics={"error_rate": error_rate, "threshold": er.critical, "samples": window.total},
            ))
        elif error_rate > er.warning:
            alerts.append(Alert(
                severity=Severity.WARNING,
                title="Elevated Error Rate",
                message=f"Error rate is {error_rate:.2f}% (warning > {er.warning:g}%)",
                metrics={"error_rate": error_rate, "threshold": er.warning, "samples": window.total},
            ))

        logger.debug(
            "metrics_aggregated",
            samples=window.total,
            p95_ms=latency,
            error_rate_pct=round(error_rate, 4),
            alerts=len(alerts),
        )
        window.reset()

        for alert in alerts:
            await self._alert_fn(alert)
        return alerts

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval_secs)
                await self.aggregate_and_alert()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("metric_aggregation_error")
