"""HTTP endpoint — lets external systems push alerts into the monitor.

Runs as an ``aiohttp`` web server alongside the monitor. Exposes:
- ``GET  /health``   → JSON liveness + probe snapshot
- ``POST /alert``    → JSON ``Alert`` → ``monitor.alert``
- ``POST /pipeline`` → JSON ``PipelineStatus`` → ``monitor.pipeline_status``

Each route can be switched off in ``ServerConfig``; unknown paths get a JSON 404.
Requests join the caller's W3C trace (``traceparent``) or start a new one.
"""

from __future__ import annotations

import datetime
from typing import TYPE_CHECKING, Any

import structlog
from aiohttp import web
from pydantic import BaseModel

from src.core.config import ServerConfig
from src.monitor.tracing import trace_middleware
from src.monitor.types import Alert, PipelineStatus

if TYPE_CHECKING:
    from src.monitor.monitor import Monitor

logger = structlog.get_logger(__name__)

MONITOR_KEY: web.AppKey[Monitor] = web.AppKey("monitor")


@web.middleware
async def _json_errors_middleware(request: web.Request, handler: Any) -> web.StreamResponse:
    """Render 404/405 as JSON instead of aiohttp's plain-text pages."""
    try:
        return await handler(request)
    except web.HTTPNotFound:
        return web.json_response({"error": "Not found"}, status=404)
    except web.HTTPMethodNotAllowed:
        return web.json_response({"error": "Method not allowed"}, status=405)


async def _parse(request: web.Request, model: type[BaseModel]) -> BaseModel | web.Response:
    try:
        payload = await request.json()
        return model.model_validate(payload)
    except ValueError as exc:  # JSONDecodeError, UnicodeDecodeError, ValidationError
        logger.warning("invalid_payload", path=request.path, error=str(exc))
        return web.json_response({"error": "Invalid payload", "detail": str(exc)}, status=400)


async def _handle_health(request: web.Request) -> web.Response:
    monitor = request.app[MONITOR_KEY]
    return web.json_response({
        "status": "healthy",
        "enabled": monitor.enabled,
        "notifiers": len(monitor.notifiers),
        "probes": monitor.probe_status(),
        "timestamp": datetime.datetime.now(datetime.UTC).isoformat(),
    })


async def _handle_alert(request: web.Request) -> web.Response:
    parsed = await _parse(request, Alert)
    if isinstance(parsed, web.Response):
        return parsed
    try:
        await request.app[MONITOR_KEY].alert(parsed)
    except Exception:
        logger.exception("alert_endpoint_error")
        return web.json_response({"error": "Failed to process alert"}, status=500)
    return web.json_response({"success": True})


async def _handle_pipeline(request: web.Request) -> web.Response:
    parsed = await _parse(request, PipelineStatus)
    if isinstance(parsed, web.Response):
        return parsed
    try:
        await request.app[MONITOR_KEY].pipeline_status(parsed)
    except Exception:
        logger.exception("pipeline_endpoint_error")
        return web.json_response({"error": "Failed to process pipeline status"}, status=500)
    return web.json_response({"success": True})


def create_app(monitor: Monitor, config: ServerConfig | None = None) -> web.Application:
    """Create the aiohttp application with the enabled routes."""
    config = config or ServerConfig()
    app = web.Application(middlewares=[trace_middleware(), _json_errors_middleware])
    app[MONITOR_KEY] = monitor
    if config.enable_health_endpoint:
        app.router.add_get("/health", _handle_health)
    if config.enable_alert_endpoint:
        app.router.add_post("/alert", _handle_alert)
    if config.enable_pipeline_endpoint:
        app.router.add_post("/pipeline", _handle_pipeline)
    return app


async def start_server(monitor: Monitor, config: ServerConfig) -> web.AppRunner:
    """Start the HTTP endpoint. Returns the runner for cleanup."""
    app = create_app(monitor, config)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()
    logger.info("server_started", host=config.host, port=config.port)
    return runner
