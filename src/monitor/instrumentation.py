"""Instrumentation — turns application errors, slow operations and HTTP
traffic into alerts and aggregator samples.

Everything here is opt-in and reversible: the middleware is added to an
application explicitly, and ``install_exception_handler`` returns a callable
that restores the previous loop handler.

Usage::

    inst = Instrumentation(monitor, settings.instrumentation)
    app = web.Application(middlewares=[inst.middleware()])
    uninstall = inst.install_exception_handler()

    async with inst.measure("rebuild-index"):
        await rebuild_index()

    try:
        ...
    except Exception as exc:
        await inst.capture_error(exc, {"job": "nightly"})
"""

from __future__ import annotations

import asyncio
import contextlib
import time
import traceback
from collections.abc import AsyncIterator, Callable
from typing import TYPE_CHECKING, Any

import structlog
from aiohttp import web

from src.core.config import InstrumentationConfig
from src.monitor.tracing import current_trace_id
from src.monitor.types import Alert, Severity

if TYPE_CHECKING:
    from src.monitor.monitor import Monitor

logger = structlog.get_logger(__name__)

ErrorFilter = Callable[[BaseException], bool]


def _stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(error))


class Instrumentation:
    """Bridges application events into a ``Monitor``."""

    def __init__(
        self,
        monitor: Monitor,
        config: InstrumentationConfig | None = None,
        error_filter: ErrorFilter | None = None,
    ) -> None:
        self._monitor = monitor
        self._config = config or InstrumentationConfig()
        self._error_filter = error_filter
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> InstrumentationConfig:
        return self._config

    def _base_metrics(self) -> dict[str, Any]:
        metrics: dict[str, Any] = {
            "app_name": self._config.app_name,
            "environment": self._config.environment,
        }
        if (trace_id := current_trace_id()) is not None:
            metrics["trace_id"] = trace_id
        return metrics

    def _accepts(self, error: BaseException) -> bool:
        if not self._config.capture_errors:
            return False
        return self._error_filter is None or self._error_filter(error)

    # ── HTTP ────────────────────────────────────────────────────

    def middleware(self) -> Any:
        """aiohttp middleware recording ``(duration_ms, status >= 500)`` samples."""

        @web.middleware
        async def _record_request(request: web.Request, handler: Any) -> web.StreamResponse:
            aggregator = self._monitor.aggregator
            started = time.perf_counter()
            status = 500
            try:
                response = await handler(request)
                status = response.status
                return response
            except web.HTTPException as exc:
                status = exc.status
                raise
            finally:
                if aggregator is not None:
                    aggregator.record_request(
                        (time.perf_counter() - started) * 1000.0,
                        is_error=status >= 500,
                    )

        return _record_request

    # ── Errors ──────────────────────────────────────────────────

    async def capture_error(
        self,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Raise a CRITICAL alert for *error* unless filtered out."""
        if not self._accepts(error):
            return
        name = type(error).__name__
        await self._monitor.alert(Alert(
            severity=Severity.CRITICAL,
            title=f"Error: {name}",
            message=str(error) or name,
            metrics={
                "error_name": name,
                "stack": _stack(error),
                "context": context or {},
                **self._base_metrics(),
            },
        ))

    def install_exception_handler(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> Callable[[], None]:
        """Alert on exceptions the event loop reports as unhandled.

        The previous handler (or the loop default) still runs afterwards.
        Returns a callable that restores the previous handler.
        """
        loop = loop or asyncio.get_running_loop()
        previous = loop.get_exception_handler()

        def _handler(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
            error = context.get("exception")
            if error is not None and self._accepts(error):
                task = loop.create_task(self._alert_unhandled(error, context.get("message")))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            if previous is not None:
                previous(loop, context)
            else:
                loop.default_exception_handler(context)

        loop.set_exception_handler(_handler)
        logger.debug("exception_handler_installed")

        def _uninstall() -> None:
            loop.set_exception_handler(previous)
            logger.debug("exception_handler_removed")

        return _uninstall

    async def _alert_unhandled(self, error: BaseException, message: str | None) -> None:
        name = type(error).__name__
        try:
            await self._monitor.alert(Alert(
                severity=Severity.CRITICAL,
                title=f"Unhandled exception: {name}",
                message=str(error) or message or name,
                metrics={
                    "error_type": "unhandled_exception",
                    "error_name": name,
                    "loop_message": message,
                    "stack": _stack(error),
                    **self._base_metrics(),
                },
            ))
        except Exception:
            logger.exception("error_alert_failed", error_name=name)

    # ── Performance ─────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def measure(
        self,
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> AsyncIterator[None]:
        """Time the enclosed block; WARNING alert when over ``slow_operation_ms``.

        Exceptions from the block propagate after the timing is recorded.
        """
        if not self._config.capture_performance:
            yield
            return

        started = time.perf_counter()
        try:
            yield
        except Exception:
            await self._finish(operation, started, {**(context or {}), "error": True})
            raise
        await self._finish(operation, started, context or {})

    async def _finish(self, operation: str, started: float, context: dict[str, Any]) -> None:
        duration_ms = round((time.perf_counter() - started) * 1000.0, 2)
        threshold = self._config.slow_operation_ms
        logger.debug("operation_measured", operation=operation, duration_ms=duration_ms)
        if duration_ms <= threshold:
            return
        await self._monitor.alert(Alert(
            severity=Severity.WARNING,
            title="Slow Operation Detected",
            message=(
                f'Operation "{operation}" took {duration_ms:g}ms '
                f"(threshold: {threshold:g}ms)"
            ),
            metrics={
                "operation": operation,
                "duration_ms": duration_ms,
                "threshold": threshold,
                "context": context,
                **self._base_metrics(),
            },
        ))
