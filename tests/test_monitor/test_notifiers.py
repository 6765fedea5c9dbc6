"""Tests for notifiers — HTTP mocking, error handling, retries, session management."""

from __future__ import annotations

import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from pydantic import SecretStr

from src.core.config import DiscordConfig, TelegramConfig, WebhookConfig
from src.core.exceptions import NotifierError
from src.monitor.notifiers import DiscordNotifier, LogNotifier, TelegramNotifier, WebhookNotifier
from src.monitor.types import (
    Alert,
    DailyReport,
    Deployment,
    DeploymentState,
    PipelineState,
    PipelineStatus,
    Severity,
)


# ── Helpers ─────────────────────────────────────────────────────


def _alert(**kw: object) -> Alert:
    defaults: dict[str, object] = {
        "severity": Severity.CRITICAL,
        "title": "API down",
        "message": "health check failing",
        "metrics": {"probe": "api"},
        "timestamp": datetime.datetime(2024, 5, 1, tzinfo=datetime.UTC),
    }
    defaults.update(kw)
    return Alert(**defaults)  # type: ignore[arg-type]


def _tg_config(**kw: object) -> TelegramConfig:
    defaults: dict[str, object] = {
        "enabled": True,
        "bot_token": SecretStr("fake-token"),
        "chat_id": "12345",
    }
    defaults.update(kw)
    return TelegramConfig(**defaults)  # type: ignore[arg-type]


def _dc_config(**kw: object) -> DiscordConfig:
    defaults: dict[str, object] = {
        "enabled": True,
        "webhook_url": SecretStr("https://discord.com/api/webhooks/fake"),
    }
    defaults.update(kw)
    return DiscordConfig(**defaults)  # type: ignore[arg-type]


def _wh_config(**kw: object) -> WebhookConfig:
    defaults: dict[str, object] = {
        "enabled": True,
        "url": "https://hooks.test/alerts",
        "retries": 2,
        "retry_delay_ms": 100,
    }
    defaults.update(kw)
    return WebhookConfig(**defaults)  # type: ignore[arg-type]


def _mock_response(status: int = 200, text: str = "ok") -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.text = AsyncMock(return_value=text)
    resp.__aenter__ = AsyncMock(return_value=resp)
    resp.__aexit__ = AsyncMock(return_value=False)
    return resp


def _session(method: str, *responses: AsyncMock, side_effect: object = None) -> MagicMock:
    session = MagicMock()
    session.closed = False
    if side_effect is not None:
        setattr(session, method, MagicMock(side_effect=side_effect))
    else:
        setattr(session, method, MagicMock(side_effect=list(responses)))
    return session


# ── TelegramNotifier ────────────────────────────────────────────


class TestTelegramNotifier:
    async def test_send_alert_success(self) -> None:
        n = TelegramNotifier(_tg_config())
        n._session = _session("post", _mock_response(200))

        await n.send_alert(_alert())

        call_args = n._session.post.call_args
        assert "fake-token" in call_args[0][0]
        payload = call_args[1]["json"]
        assert payload["chat_id"] == "12345"
        assert payload["parse_mode"] == "HTML"
        assert "<b>[CRITICAL] API down</b>" in payload["text"]

    async def test_failure_status_raises(self) -> None:
        n = TelegramNotifier(_tg_config())
        n._session = _session("post", _mock_response(400, "bad request"))

        with pytest.raises(NotifierError, match="400"):
            await n.send_alert(_alert())

    async def test_client_error_raises(self) -> None:
        n = TelegramNotifier(_tg_config())
        n._session = _session("post", side_effect=aiohttp.ClientConnectionError("reset"))

        with pytest.raises(NotifierError, match="reset"):
            await n.send("hello")

    async def test_html_escaping(self) -> None:
        n = TelegramNotifier(_tg_config())
        n._session = _session("post", _mock_response(200))

        await n.send_alert(_alert(title="<script>alert('xss')</script>", message="a & b"))

        text = n._session.post.call_args[1]["json"]["text"]
        assert "<script>" not in text
        assert "&lt;script&gt;" in text
        assert "&amp;" in text

    async def test_raw_message_has_no_severity_label(self) -> None:
        n = TelegramNotifier(_tg_config())
        n._session = _session("post", _mock_response(200))

        await n.send("AI Monitor is running!")

        text = n._session.post.call_args[1]["json"]["text"]
        assert text == "AI Monitor is running!"

    async def test_close(self) -> None:
        n = TelegramNotifier(_tg_config())
        session = MagicMock()
        session.closed = False
        session.close = AsyncMock()
        n._session = session

        await n.close()
        session.close.assert_awaited_once()
        assert n._session is None


# ── DiscordNotifier ─────────────────────────────────────────────


class TestDiscordNotifier:
    async def test_embed_colour_by_severity(self) -> None:
        n = DiscordNotifier(_dc_config())
        n._session = _session("post", _mock_response(204))

        await n.send_alert(_alert(severity=Severity.WARNING))

        call_args = n._session.post.call_args
        assert call_args[0][0] == "https://discord.com/api/webhooks/fake"
        embed = call_args[1]["json"]["embeds"][0]
        assert embed["title"] == "[WARNING] API down"
        assert embed["color"] == 0xF39C12
        assert {"name": "probe", "value": "api", "inline": True} in embed["fields"]

    async def test_pipeline_failure_is_red(self) -> None:
        n = DiscordNotifier(_dc_config())
        n._session = _session("post", _mock_response(200))

        await n.send_pipeline_status(
            PipelineStatus(job_name="api", build_number="7", status=PipelineState.FAILURE)
        )

        embed = n._session.post.call_args[1]["json"]["embeds"][0]
        assert embed["color"] == 0xE74C3C

    async def test_raw_message_uses_content(self) -> None:
        n = DiscordNotifier(_dc_config())
        n._session = _session("post", _mock_response(204))

        await n.send("hello\nworld")

        assert n._session.post.call_args[1]["json"] == {"content": "hello\nworld"}

    async def test_failure_status_raises(self) -> None:
        n = DiscordNotifier(_dc_config())
        n._session = _session("post", _mock_response(429, "rate limited"))

        with pytest.raises(NotifierError, match="429"):
            await n.send_alert(_alert())


# ── WebhookNotifier ─────────────────────────────────────────────


class TestWebhookNotifier:
    async def test_alert_payload(self) -> None:
        n = WebhookNotifier(_wh_config())
        n._session = _session("request", _mock_response(200))

        await n.send_alert(_alert())

        call_args = n._session.request.call_args
        assert call_args[0] == ("POST", "https://hooks.test/alerts")
        payload = call_args[1]["json"]
        assert payload["type"] == "alert"
        assert payload["severity"] == "CRITICAL"
        assert payload["metrics"] == {"probe": "api"}
        assert payload["timestamp"] == "2024-05-01T00:00:00+00:00"
        assert call_args[1]["headers"] == {"Content-Type": "application/json"}

    async def test_typed_payloads(self) -> None:
        n = WebhookNotifier(_wh_config())
        n._session = _session(
            "request", _mock_response(200), _mock_response(200), _mock_response(200)
        )

        await n.send_deployment_notification(
            Deployment(environment="prod", version="1.0", status=DeploymentState.SUCCESS)
        )
        await n.send_daily_report(DailyReport(date=datetime.date(2024, 5, 1), total_alerts=3))
        await n.send("hi")

        payloads = [c[1]["json"] for c in n._session.request.call_args_list]
        assert [p["type"] for p in payloads] == ["deployment", "daily_report", "message"]
        assert payloads[0]["status"] == "SUCCESS"
        assert payloads[1]["date"] == "2024-05-01"
        assert payloads[2]["message"] == "hi"

    async def test_retries_then_succeeds(self) -> None:
        n = WebhookNotifier(_wh_config())
        n._session = _session("request", _mock_response(503), _mock_response(200))

        with patch("src.monitor.notifiers.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await n.send_alert(_alert())

        assert n._session.request.call_count == 2
        sleep.assert_awaited_once_with(0.1)

    async def test_exponential_backoff_then_raises(self) -> None:
        n = WebhookNotifier(_wh_config(retries=2, retry_delay_ms=100))
        n._session = _session(
            "request", _mock_response(500), _mock_response(500), _mock_response(500)
        )

        with patch("src.monitor.notifiers.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(NotifierError, match="3 attempts"):
                await n.send_alert(_alert())

        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.2]

    async def test_client_errors_retried(self) -> None:
        n = WebhookNotifier(_wh_config(retries=1))
        n._session = _session("request", side_effect=aiohttp.ClientConnectionError("refused"))

        with patch("src.monitor.notifiers.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(NotifierError, match="refused"):
                await n.send("hello")

        assert n._session.request.call_count == 2


# ── LogNotifier ─────────────────────────────────────────────────


class TestLogNotifier:
    async def test_counts_deliveries(self) -> None:
        n = LogNotifier()
        await n.send_alert(_alert())
        await n.send("hello")
        assert n.delivered == 2
