"""Notifiers — delivery of alerts and reports to external channels.

Every send method raises ``NotifierError`` on failure; the monitor fans out
to all notifiers concurrently and logs individual failures.
"""

from __future__ import annotations

import abc
import asyncio
import datetime
from html import escape as html_escape
from typing import Any

import aiohttp
import structlog

from src.core.config import DiscordConfig, TelegramConfig, WebhookConfig
from src.core.exceptions import NotifierError
from src.monitor.formatters import (
    format_alert,
    format_daily_report,
    format_deployment,
    format_pipeline_status,
    format_text,
)
from src.monitor.types import (
    Alert,
    ChannelMessage,
    DailyReport,
    Deployment,
    PipelineStatus,
    Severity,
)

logger = structlog.get_logger(__name__)

# Discord embed colours keyed by severity.
_DISCORD_COLORS: dict[Severity, int] = {
    Severity.INFO: 0x2ECC71,     # green
    Severity.WARNING: 0xF39C12,  # orange
    Severity.CRITICAL: 0xE74C3C, # red
}


class Notifier(abc.ABC):
    """Base class for notification channels."""

    @abc.abstractmethod
    async def send(self, message: str) -> None:
        """Send a raw text message."""

    @abc.abstractmethod
    async def send_alert(self, alert: Alert) -> None:
        """Send a structured alert."""

    @abc.abstractmethod
    async def send_pipeline_status(self, status: PipelineStatus) -> None:
        """Send a CI pipeline status."""

    @abc.abstractmethod
    async def send_deployment_notification(self, deployment: Deployment) -> None:
        """Send a deployment notification."""

    @abc.abstractmethod
    async def send_daily_report(self, report: DailyReport) -> None:
        """Send the daily report."""

    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class ChannelNotifier(Notifier):
    """Renders every record into a ChannelMessage and delivers it."""

    async def send(self, message: str) -> None:
        await self._deliver(format_text(message))

    async def send_alert(self, alert: Alert) -> None:
        await self._deliver(format_alert(alert))

    async def send_pipeline_status(self, status: PipelineStatus) -> None:
        await self._deliver(format_pipeline_status(status))

    async def send_deployment_notification(self, deployment: Deployment) -> None:
        await self._deliver(format_deployment(deployment))

    async def send_daily_report(self, report: DailyReport) -> None:
        await self._deliver(format_daily_report(report))

    @abc.abstractmethod
    async def _deliver(self, msg: ChannelMessage) -> None:
        """Deliver one rendered message; raise NotifierError on failure."""


class _SessionMixin:
    _session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class LogNotifier(ChannelNotifier):
    """Writes notifications to the structured log only."""

    def __init__(self) -> None:
        self.delivered = 0

    async def _deliver(self, msg: ChannelMessage) -> None:
        level = {
            Severity.CRITICAL: "error",
            Severity.WARNING: "warning",
        }.get(msg.severity, "info")
        getattr(logger, level)(
            "notification",
            kind=msg.kind,
            severity=msg.severity.name,
            title=msg.title,
            body=msg.body,
            fields=msg.fields,
        )
        self.delivered += 1


class TelegramNotifier(_SessionMixin, ChannelNotifier):
    """Delivers notifications via the Telegram Bot API (HTML parse mode)."""

    def __init__(self, config: TelegramConfig) -> None:
        self._token = config.bot_token.get_secret_value()
        self._chat_id = config.chat_id
        self._session = None

    async def _deliver(self, msg: ChannelMessage) -> None:
        if msg.kind == "message":
            text_parts = [html_escape(msg.title)]
        else:
            text_parts = [f"<b>[{msg.severity.name}] {html_escape(msg.title)}</b>"]
        if msg.body:
            text_parts.append(html_escape(msg.body))
        if msg.fields:
            lines = [
                f"  <code>{html_escape(k)}</code>: {html_escape(v)}"
                for k, v in msg.fields.items()
            ]
            text_parts.append("\n".join(lines))

        url = f"https://api.telegram.org/bot{self._token}/sendMessage"
        payload = {
            "chat_id": self._chat_id,
            "text": "\n".join(text_parts),
            "parse_mode": "HTML",
        }

        try:
            session = self._get_session()
            async with session.post(url, json=payload) as resp:
                if resp.status == 200:
                    return
                body = await resp.text()
        except aiohttp.ClientError as exc:
            raise NotifierError(f"telegram request failed: {exc}") from exc
        raise NotifierError(f"telegram returned {resp.status}: {body[:200]}")


class DiscordNotifier(_SessionMixin, ChannelNotifier):
    """Delivers notifications via a Discord webhook with colour-coded embeds."""

    def __init__(self, config: DiscordConfig) -> None:
        self._webhook_url = config.webhook_url.get_secret_value()
        self._session = None

    async def _deliver(self, msg: ChannelMessage) -> None:
        if msg.kind == "message":
            payload: dict[str, Any] = {"content": "\n".join(filter(None, [msg.title, msg.body]))}
        else:
            embed: dict[str, Any] = {
                "title": f"[{msg.severity.name}] {msg.title}",
                "color": _DISCORD_COLORS.get(msg.severity, 0x95A5A6),
            }
            if msg.body:
                embed["description"] = msg.body[:4096]
            if msg.fields:
                embed["fields"] = [
                    {"name": k, "value": v or "-", "inline": True}
                    for k, v in list(msg.fields.items())[:25]
                ]
            payload = {"embeds": [embed]}

        try:
            session = self._get_session()
            async with session.post(self._webhook_url, json=payload) as resp:
                if resp.status in (200, 204):
                    return
                body = await resp.text()
        except aiohttp.ClientError as exc:
            raise NotifierError(f"discord request failed: {exc}") from exc
        raise NotifierError(f"discord returned {resp.status}: {body[:200]}")


def _iso(value: datetime.date | datetime.datetime | None) -> str:
    if value is None:
        return datetime.datetime.now(datetime.UTC).isoformat()
    return value.isoformat()


class WebhookNotifier(_SessionMixin, Notifier):
    """POSTs typed JSON payloads to any URL, retrying with exponential backoff.

    Works with PagerDuty/Opsgenie style receivers or custom dashboards.
    """

    def __init__(self, config: WebhookConfig) -> None:
        self._config = config
        self._session = None

    async def send(self, message: str) -> None:
        await self._post({"type": "message", "message": message, "timestamp": _iso(None)})

    async def send_alert(self, alert: Alert) -> None:
        await self._post({
            "type": "alert",
            "severity": alert.severity.name,
            "title": alert.title,
            "message": alert.message,
            "metrics": alert.metrics,
            "timestamp": _iso(alert.timestamp),
        })

    async def send_pipeline_status(self, status: PipelineStatus) -> None:
        await self._post({"type": "pipeline", **status.model_dump(mode="json")})

    async def send_deployment_notification(self, deployment: Deployment) -> None:
        await self._post({"type": "deployment", **deployment.model_dump(mode="json")})

    async def send_daily_report(self, report: DailyReport) -> None:
        await self._post({"type": "daily_report", **report.model_dump(mode="json")})

    async def _post(self, payload: dict[str, Any]) -> None:
        cfg = self._config
        last_error = ""
        for attempt in range(cfg.retries + 1):
            try:
                session = self._get_session()
                async with session.request(
                    cfg.method, cfg.url, json=payload, headers=cfg.headers
                ) as resp:
                    if 200 <= resp.status < 300:
                        return
                    last_error = f"status {resp.status}: {(await resp.text())[:200]}"
            except aiohttp.ClientError as exc:
                last_error = str(exc) or type(exc).__name__

            if attempt < cfg.retries:
                delay_secs = cfg.retry_delay_ms / 1000.0 * 2**attempt
                logger.debug(
                    "webhook_retry",
                    attempt=attempt + 1,
                    delay_secs=delay_secs,
                    error=last_error,
                )
                await asyncio.sleep(delay_secs)

        raise NotifierError(f"webhook delivery failed after {cfg.retries + 1} attempts: {last_error}")
