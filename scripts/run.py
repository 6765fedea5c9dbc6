#!/usr/bin/env python3
"""Standalone monitor entrypoint — serves the HTTP endpoint, runs probes and
metric aggregation until interrupted.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog
from pydantic import ValidationError

from src.core.config import load_settings
from src.core.exceptions import ConfigurationError
from src.core.logging import setup_logging
from src.monitor.factory import create_monitor
from src.monitor.instrumentation import Instrumentation

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Start the monitor and run until interrupted."""
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        print(f"Invalid configuration:\n{exc}", file=sys.stderr)
        return 2
    setup_logging(level=args.log_level, config=settings.logging)

    try:
        monitor = create_monitor(settings)
    except ConfigurationError as exc:
        logger.error("monitor_configuration_invalid", error=str(exc))
        return 2

    if not monitor.notifiers:
        logger.warning(
            "no_notifiers_enabled",
            hint="enable notifiers.telegram, notifiers.discord, notifiers.webhook or notifiers.log",
        )

    logger.info(
        "monitor_starting",
        host=settings.server.host,
        port=settings.server.port,
        server=settings.server.enabled,
        ai=settings.ai.enabled,
        probes=len(settings.probes),
    )

    # ── Start everything ─────────────────────────────────────────
    await monitor.start()
    instrumentation = Instrumentation(monitor, settings.instrumentation)
    uninstall_handler = instrumentation.install_exception_handler()

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("monitor_shutting_down")
    uninstall_handler()
    await monitor.close()

    logger.info("monitor_exited", suppressed_alerts=monitor.suppressed_count)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the AI monitor alerting service.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
