"""Health probes — active polling of external dependencies.

Each probe runs on its own repeating timer and drives a small state machine:

* healthy -> healthy: no alert
* healthy/unhealthy -> unhealthy: alert on *every* failing tick, WARNING
  until ``consecutive_failures_for_critical`` is reached, CRITICAL after
* unhealthy -> healthy: exactly one INFO "recovered" alert

The manager does not deduplicate; the monitor's deduplicator is expected to
absorb the repeated failure alerts.

Usage::

    probes = HealthProbeManager(monitor.alert)
    probes.add_http_probe("billing-api", "https://billing.internal/healthz")
    probes.add_tcp_probe("postgres", "db.internal", 5432)
    probes.add_custom_probe("queue", check_queue_depth, interval_ms=10_000)
    await probes.start()
    ...
    await probes.stop()
"""

from __future__ import annotations

import asyncio
import datetime
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

import httpx
import structlog

from src.core.exceptions import ConfigurationError
from src.monitor.types import Alert, Severity

logger = structlog.stdlib.get_logger()

AlertFn = Callable[[Alert], Awaitable[None]]


class ProbeType(StrEnum):
    """Kind of dependency check."""

    HTTP = "http"
    TCP = "tcp"
    CUSTOM = "custom"


@dataclass(frozen=True)
class CheckOutcome:
    """Result of a single check."""

    healthy: bool
    message: str | None = None


CustomCheck = Callable[[], Awaitable[CheckOutcome | Mapping[str, Any]]]


@dataclass(frozen=True)
class ProbeConfig:
    """Immutable probe definition."""

    name: str
    type: ProbeType
    interval_ms: int = 30_000
    timeout_ms: int = 5_000
    consecutive_failures_for_critical: int = 3
    # HTTP
    url: str | None = None
    expected_status: int = 200
    method: str = "GET"
    # TCP
    host: str | None = None
    port: int | None = None
    # CUSTOM
    check: CustomCheck | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("probe name must be non-empty")
        if self.interval_ms <= 0 or self.timeout_ms <= 0:
            raise ConfigurationError(f"probe {self.name!r}: interval and timeout must be positive")
        if self.consecutive_failures_for_critical < 1:
            raise ConfigurationError(
                f"probe {self.name!r}: consecutive_failures_for_critical must be >= 1"
            )
        if self.type == ProbeType.HTTP and not self.url:
            raise ConfigurationError(f"http probe {self.name!r} requires a url")
        if self.type == ProbeType.TCP and (not self.host or self.port is None):
            raise ConfigurationError(f"tcp probe {self.name!r} requires host and port")
        if self.type == ProbeType.CUSTOM and self.check is None:
            raise ConfigurationError(f"custom probe {self.name!r} requires a check function")


@dataclass
class ProbeResult:
    """Mutable per-probe state."""

    name: str
    healthy: bool = True
    consecutive_failures: int = 0
    last_error: str | None = None
    last_check_at: float = 0.0
    response_time_ms: float | None = None


class HealthProbeManager:
    """Owns one polling task per probe and the per-probe result map."""

    def __init__(
        self,
        alert_fn: AlertFn,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._alert_fn = alert_fn
        self._http = http_client
        self._probes: dict[str, ProbeConfig] = {}
        self._results: dict[str, ProbeResult] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        # Strong references to spawned checks; they are never cancelled by stop().
        self._inflight: set[asyncio.Task[None]] = set()
        self._running = False

    # ── Registration ────────────────────────────────────────────

    def add_probe(self, config: ProbeConfig) -> HealthProbeManager:
        """Register a probe; replaces any probe with the same name."""
        self._probes[config.name] = config
        self._results[config.name] = ProbeResult(name=config.name, last_check_at=time.time())
        if self._running:
            self._start_timer(config)
        return self

    def add_http_probe(self, name: str, url: str, **opts: Any) -> HealthProbeManager:
        return self.add_probe(ProbeConfig(name=name, type=ProbeType.HTTP, url=url, **opts))

    def add_tcp_probe(self, name: str, host: str, port: int, **opts: Any) -> HealthProbeManager:
        return self.add_probe(
            ProbeConfig(name=name, type=ProbeType.TCP, host=host, port=port, **opts)
        )

    def add_custom_probe(self, name: str, check: CustomCheck, **opts: Any) -> HealthProbeManager:
        return self.add_probe(ProbeConfig(name=name, type=ProbeType.CUSTOM, check=check, **opts))

    # ── Properties ──────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def probe_names(self) -> list[str]:
        return list(self._probes)

    def get_status(self) -> dict[str, dict[str, object]]:
        """Snapshot of every probe's current state."""
        return {
            name: {
                "healthy": r.healthy,
                "consecutive_failures": r.consecutive_failures,
                "last_error": r.last_error,
                "last_check_at": r.last_check_at,
                "response_time_ms": r.response_time_ms,
            }
            for name, r in self._results.items()
        }

    def result(self, name: str) -> ProbeResult:
        return replace(self._results[name])

    # ── Lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        """Start one polling task per probe; each checks immediately."""
        if self._running:
            return
        self._running = True
        for config in self._probes.values():
            self._start_timer(config)

    async def stop(self) -> None:
        """Cancel all polling timers. In-flight checks finish on their own timeout."""
        self._running = False
        timers = list(self._timers.items())
        self._timers.clear()
        for name, task in timers:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.debug("probe_stopped", probe=name)

    async def close(self) -> None:
        """Stop the timers, then cancel any checks still in flight."""
        await self.stop()
        inflight = list(self._inflight)
        for task in inflight:
            task.cancel()
        await asyncio.gather(*inflight, return_exceptions=True)
        if inflight:
            logger.debug("probe_checks_cancelled", count=len(inflight))

    def _start_timer(self, config: ProbeConfig) -> None:
        previous = self._timers.pop(config.name, None)
        if previous is not None:
            previous.cancel()
        self._timers[config.name] = asyncio.create_task(self._timer_loop(config))
        logger.info(
            "probe_started",
            probe=config.name,
            type=config.type.value,
            interval_secs=config.interval_ms / 1000,
        )

    async def _timer_loop(self, config: ProbeConfig) -> None:
        interval_secs = config.interval_ms / 1000.0
        while True:
            # No run-lock: a check slower than the interval overlaps the next one.
            task = asyncio.create_task(self._run_guarded(config.name))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(interval_secs)

    async def _run_guarded(self, name: str) -> None:
        try:
            await self.run_probe(name)
        except Exception:
            logger.exception("probe_runner_error", probe=name)

    # ── State machine ───────────────────────────────────────────

    async def run_probe(self, name: str) -> ProbeResult:
        """Run one check for *name*, update its state, and emit any alert.

        Returns a copy of the updated result.
        """
        config = self._probes[name]
        result = self._results[name]
        was_healthy = result.healthy
        started = time.perf_counter()

        outcome = await self._check(config)

        result.response_time_ms = round((time.perf_counter() - started) * 1000.0, 2)
        result.last_check_at = time.time()

        if outcome.healthy:
            result.healthy = True
            result.consecutive_failures = 0
            result.last_error = None
            if not was_healthy:
                logger.info("probe_recovered", probe=name, response_time_ms=result.response_time_ms)
                await self._alert_fn(Alert(
                    severity=Severity.INFO,
                    title=f"{name} recovered",
                    message=(
                        f"Health probe '{name}' is back online "
                        f"({result.response_time_ms}ms)"
                    ),
                    metrics={"probe": name, "response_time_ms": result.response_time_ms},
                    timestamp=datetime.datetime.now(datetime.UTC),
                ))
            return replace(result)

        result.healthy = False
        result.consecutive_failures += 1
        result.last_error = outcome.message or "Check failed"
        severity = (
            Severity.CRITICAL
            if result.consecutive_failures >= config.consecutive_failures_for_critical
            else Severity.WARNING
        )
        logger.warning(
            "probe_failed",
            probe=name,
            error=result.last_error,
            consecutive_failures=result.consecutive_failures,
        )
        await self._alert_fn(Alert(
            severity=severity,
            title=f"{name} is down",
            message=(
                f"Health probe '{name}' failed: {result.last_error} "
                f"({result.consecutive_failures} consecutive failures)"
            ),
            metrics={
                "probe": name,
                "response_time_ms": result.response_time_ms,
                "consecutive_failures": result.consecutive_failures,
            },
            timestamp=datetime.datetime.now(datetime.UTC),
        ))
        return replace(result)

    # ── Checks ──────────────────────────────────────────────────

    async def _check(self, config: ProbeConfig) -> CheckOutcome:
        try:
            if config.type == ProbeType.HTTP:
                return await self._check_http(config)
            if config.type == ProbeType.TCP:
                return await self._check_tcp(config)
            return await self._check_custom(config)
        except Exception as exc:
            return CheckOutcome(healthy=False, message=str(exc) or type(exc).__name__)

    async def _check_http(self, config: ProbeConfig) -> CheckOutcome:
        assert config.url is not None
        timeout_secs = config.timeout_ms / 1000.0
        try:
            if self._http is not None:
                response = await asyncio.wait_for(
                    self._http.request(config.method, config.url, timeout=timeout_secs),
                    timeout_secs,
                )
            else:
                async with httpx.AsyncClient(timeout=timeout_secs) as client:
                    response = await asyncio.wait_for(
                        client.request(config.method, config.url),
                        timeout_secs,
                    )
        except (TimeoutError, httpx.TimeoutException):
            return CheckOutcome(healthy=False, message=f"Timeout after {config.timeout_ms}ms")
        except httpx.HTTPError as exc:
            return CheckOutcome(healthy=False, message=str(exc) or type(exc).__name__)

        if response.status_code == config.expected_status:
            return CheckOutcome(healthy=True)
        return CheckOutcome(
            healthy=False,
            message=f"Expected status {config.expected_status}, got {response.status_code}",
        )

    async def _check_tcp(self, config: ProbeConfig) -> CheckOutcome:
        assert config.host is not None and config.port is not None
        writer: asyncio.StreamWriter | None = None
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(config.host, config.port),
                config.timeout_ms / 1000.0,
            )
            return CheckOutcome(healthy=True)
        except TimeoutError:
            return CheckOutcome(healthy=False, message=f"TCP timeout after {config.timeout_ms}ms")
        except OSError as exc:
            return CheckOutcome(healthy=False, message=str(exc) or type(exc).__name__)
        finally:
            if writer is not None:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

    async def _check_custom(self, config: ProbeConfig) -> CheckOutcome:
        assert config.check is not None
        raw = await config.check()
        if isinstance(raw, CheckOutcome):
            return raw
        return CheckOutcome(healthy=bool(raw.get("healthy")), message=raw.get("message"))
