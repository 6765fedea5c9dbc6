"""Pydantic settings loaded from YAML configuration and the environment."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")

ENV_PREFIX = "AI_MONITOR_"


class ServerConfig(BaseModel):
    """HTTP endpoint configuration."""

    host: str = "0.0.0.0"
    port: int = Field(default=3333, ge=1, le=65535)
    enabled: bool = True
    enable_health_endpoint: bool = True
    enable_alert_endpoint: bool = True
    enable_pipeline_endpoint: bool = True


class DeduplicationConfig(BaseModel):
    """Alert deduplication / cooldown configuration."""

    enabled: bool = True
    cooldown_ms: int = Field(default=300_000, gt=0)


class AIConfig(BaseModel):
    """Enrichment provider (OpenAI-compatible chat completions) configuration."""

    enabled: bool = False
    api_key: SecretStr = SecretStr("")
    api_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    timeout_secs: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _require_key_when_enabled(self) -> AIConfig:
        if self.enabled and not self.api_key.get_secret_value():
            raise ValueError("ai.api_key is required when ai.enabled is true")
        return self


class ThresholdPair(BaseModel):
    """Warning / critical levels for a single signal."""

    warning: float
    critical: float

    @model_validator(mode="after")
    def _ordered(self) -> ThresholdPair:
        if self.warning > self.critical:
            raise ValueError("warning threshold must not exceed critical threshold")
        return self


class ThresholdsConfig(BaseModel):
    """Golden-signal thresholds (latency in ms, error rate in percent)."""

    response_time: ThresholdPair = ThresholdPair(warning=200, critical=500)
    error_rate: ThresholdPair = ThresholdPair(warning=0.1, critical=1.0)


class AggregatorConfig(BaseModel):
    """Windowed request-metric aggregation."""

    enabled: bool = True
    interval_secs: float = Field(default=60.0, gt=0)
    thresholds: ThresholdsConfig = ThresholdsConfig()


class ProbeSettings(BaseModel):
    """Declarative HTTP/TCP probe loaded from YAML.

    Custom probes carry a callable and are registered in code instead.
    """

    name: str = Field(min_length=1)
    type: Literal["http", "tcp"]
    interval_ms: int = Field(default=30_000, gt=0)
    timeout_ms: int = Field(default=5_000, gt=0)
    consecutive_failures_for_critical: int = Field(default=3, ge=1)
    url: str | None = None
    expected_status: int = 200
    method: str = "GET"
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)


class InstrumentationConfig(BaseModel):
    """Auto-instrumentation settings."""

    app_name: str = "unknown"
    environment: str = "development"
    capture_errors: bool = True
    capture_performance: bool = True
    slow_operation_ms: float = Field(default=1000.0, gt=0)


class TelegramConfig(BaseModel):
    """Telegram bot configuration."""

    enabled: bool = False
    bot_token: SecretStr = SecretStr("")
    chat_id: str = ""


class DiscordConfig(BaseModel):
    """Discord webhook configuration."""

    enabled: bool = False
    webhook_url: SecretStr = SecretStr("")


class WebhookConfig(BaseModel):
    """Generic JSON webhook configuration."""

    enabled: bool = False
    url: str = ""
    method: str = "POST"
    headers: dict[str, str] = {"Content-Type": "application/json"}
    retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)


class NotifiersConfig(BaseModel):
    """Container for notifier configurations."""

    telegram: TelegramConfig = TelegramConfig()
    discord: DiscordConfig = DiscordConfig()
    webhook: WebhookConfig = WebhookConfig()
    log: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    enabled: bool = True
    send_test_notification: bool = False
    test_notification_delay_ms: int = Field(default=3000, ge=0)
    server: ServerConfig = ServerConfig()
    deduplication: DeduplicationConfig = DeduplicationConfig()
    ai: AIConfig = AIConfig()
    aggregator: AggregatorConfig = AggregatorConfig()
    instrumentation: InstrumentationConfig = InstrumentationConfig()
    probes: list[ProbeSettings] = Field(default_factory=list)
    notifiers: NotifiersConfig = NotifiersConfig()
    logging: LoggingConfig = LoggingConfig()


_SERVER_ENV_FIELDS = (
    "host",
    "port",
    "enable_health_endpoint",
    "enable_alert_endpoint",
    "enable_pipeline_endpoint",
)


class EnvOverrides(BaseSettings):
    """``AI_MONITOR_*`` variables layered over the YAML file.

    Only ``"true"`` (any case) is truthy; integers that do not parse and empty
    values are ignored.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra="ignore",
    )

    host: str | None = None
    port: int | None = None
    enable_health_endpoint: bool | None = None
    enable_alert_endpoint: bool | None = None
    enable_pipeline_endpoint: bool | None = None
    enabled: bool | None = None
    send_test_notification: bool | None = None
    test_notification_delay: int | None = None

    @field_validator(
        "enable_health_endpoint",
        "enable_alert_endpoint",
        "enable_pipeline_endpoint",
        "enabled",
        "send_test_notification",
        mode="before",
    )
    @classmethod
    def _true_only(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return value

    @field_validator("port", "test_notification_delay", mode="before")
    @classmethod
    def _int_or_ignore(cls, value: Any) -> Any:
        if isinstance(value, str):
            try:
                return int(value.strip(), 10)
            except ValueError:
                return None
        return value

    def as_settings_dict(self) -> dict[str, Any]:
        """Nested dict in ``Settings`` shape holding only the variables that were set."""
        values = self.model_dump(exclude_none=True)
        server = {k: values.pop(k) for k in _SERVER_ENV_FIELDS if k in values}
        if "test_notification_delay" in values:
            values["test_notification_delay_ms"] = values.pop("test_notification_delay")
        if server:
            values["server"] = server
        return values


def env_overrides(prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """Collect environment overrides as a nested settings dict."""
    return EnvOverrides(_env_prefix=prefix).as_settings_dict()


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file plus environment overrides and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    data = _merge(data, env_overrides())
    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
