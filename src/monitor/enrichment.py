"""Alert enrichment — LLM-backed analysis of alerts, logs, errors, and metrics.

The monitor only depends on the ``EnrichmentProvider`` protocol; ``AIService``
is the bundled implementation against any OpenAI-compatible
``/chat/completions`` endpoint.
"""

from __future__ import annotations

import datetime
import json
import traceback
from typing import Any, Literal, Protocol

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.core.config import AIConfig
from src.core.exceptions import EnrichmentError

logger = structlog.get_logger(__name__)

_SYSTEM_PROMPT = """You are an expert DevOps assistant specialising in system monitoring, \
log analysis, and automated problem resolution.

Analyse the logs, metrics, and errors you are given: detect anomalies and \
patterns, identify the root cause, and suggest actionable fixes.

Always respond in JSON with these fields:
{
  "severity": "LOW|MEDIUM|HIGH|CRITICAL",
  "summary": "Brief summary of the issue",
  "rootCause": "Root cause analysis",
  "suggestions": ["fix1", "fix2"],
  "isAnomaly": true,
  "confidence": 0.0,
  "relatedPatterns": ["pattern1"],
  "autoHealCommand": "command if applicable"
}

Be concise, actionable, and practical."""


class LogEntry(BaseModel):
    """Normalised log-like record handed to the provider."""

    timestamp: datetime.datetime
    level: str
    message: str
    context: str | None = None
    stack: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class MetricPoint(BaseModel):
    """A single metric observation."""

    name: str
    value: float
    timestamp: datetime.datetime
    unit: str = ""
    tags: dict[str, str] = Field(default_factory=dict)


class AIAnalysis(BaseModel):
    """Structured analysis returned by the provider."""

    model_config = ConfigDict(populate_by_name=True)

    severity: Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"] = "MEDIUM"
    summary: str = "No summary available"
    root_cause: str | None = Field(default=None, alias="rootCause")
    suggestions: list[str] = Field(default_factory=list)
    is_anomaly: bool = Field(default=False, alias="isAnomaly")
    confidence: float = 0.5
    related_patterns: list[str] = Field(default_factory=list, alias="relatedPatterns")
    auto_heal_command: str | None = Field(default=None, alias="autoHealCommand")


class EnrichmentProvider(Protocol):
    """Anything the monitor can ask to analyse an alert."""

    @property
    def enabled(self) -> bool: ...

    async def analyze_log(self, entry: LogEntry) -> AIAnalysis: ...


def fallback_analysis(message: str) -> AIAnalysis:
    return AIAnalysis(
        summary=message,
        root_cause="AI analysis not available",
        suggestions=["Enable AI analysis by providing an API key"],
        confidence=0.0,
    )


def format_enrichment(analysis: AIAnalysis) -> str:
    """Render an analysis as a text block appended to an alert message."""
    parts = [f"\n\nAI Analysis:\n{analysis.summary}"]
    if analysis.root_cause:
        parts.append(f"\n\nRoot Cause: {analysis.root_cause}")
    if analysis.suggestions:
        bullets = "\n".join(f"- {s}" for s in analysis.suggestions)
        parts.append(f"\n\nSuggestions:\n{bullets}")
    return "".join(parts)


class AIService:
    """OpenAI-compatible chat-completions client.

    A service without an API key reports ``enabled == False`` and answers every
    call with a fallback analysis. Transport or parse failures raise
    ``EnrichmentError`` so the caller can decide how to degrade.
    """

    def __init__(
        self,
        config: AIConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._api_key = config.api_key.get_secret_value()
        self._http = http_client
        self._owns_client = http_client is None
        if config.enabled and not self._api_key:
            logger.warning("ai_service_disabled", reason="no api key")

    @property
    def enabled(self) -> bool:
        return self._config.enabled and bool(self._api_key)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._config.timeout_secs))
            self._owns_client = True
        return self._http

    async def close(self) -> None:
        if self._owns_client and self._http is not None:
            await self._http.aclose()
            self._http = None

    # ── Analyses ────────────────────────────────────────────────

    async def analyze_log(self, entry: LogEntry) -> AIAnalysis:
        if not self.enabled:
            return fallback_analysis(entry.message)
        lines = [
            "Analyze this log entry and provide insights:",
            "",
            f"Timestamp: {entry.timestamp.isoformat()}",
            f"Level: {entry.level}",
            f"Message: {entry.message}",
            f"Context: {entry.context or 'N/A'}",
        ]
        if entry.stack:
            lines.append(f"Stack Trace:\n{entry.stack}")
        if entry.metadata:
            lines.append(f"Metadata: {json.dumps(entry.metadata, default=str)}")
        lines += [
            "",
            "Provide:",
            "1. Severity assessment (LOW/MEDIUM/HIGH/CRITICAL)",
            "2. Root cause analysis",
            "3. Suggested fixes",
            "4. Whether this is anomalous",
            "5. Confidence score (0-1)",
        ]
        return await self._analyze("\n".join(lines))

    async def analyze_logs(self, entries: list[LogEntry]) -> AIAnalysis:
        if not self.enabled:
            return fallback_analysis("Multiple logs")
        recent = "\n".join(
            f"[{e.timestamp.isoformat()}] {e.level}: {e.message}" for e in entries[:20]
        )
        prompt = (
            "Analyze these log entries for patterns, anomalies, and issues:\n\n"
            f"Total Logs: {len(entries)}\nRecent Logs:\n{recent}\n\n"
            "Identify recurring patterns, anomalies, critical issues, root causes, "
            "and suggested fixes."
        )
        return await self._analyze(prompt)

    async def analyze_error(
        self,
        error: BaseException,
        context: dict[str, Any] | None = None,
    ) -> AIAnalysis:
        if not self.enabled:
            return fallback_analysis(str(error))
        stack = "".join(traceback.format_exception(error)) or "N/A"
        prompt = (
            "Analyze this error and provide actionable insights:\n\n"
            f"Error: {type(error).__name__}: {error}\nStack: {stack}\n"
        )
        if context:
            prompt += f"Context: {json.dumps(context, default=str, indent=2)}\n"
        prompt += (
            "\nProvide root cause analysis, impact assessment, step-by-step fixes, "
            "prevention strategies, and an auto-healing command if applicable."
        )
        return await self._analyze(prompt)

    async def analyze_metrics(self, points: list[MetricPoint]) -> AIAnalysis:
        if not self.enabled:
            return fallback_analysis("Metrics analysis")
        summary = "\n".join(
            f"{p.name}: {p.value:g}{p.unit} at {p.timestamp.isoformat()}" for p in points
        )
        prompt = (
            f"Analyze these metrics for anomalies:\n\n{summary}\n\n"
            "Detect unusual spikes or drops, trending issues, performance degradation, "
            "capacity problems, and suggest optimizations."
        )
        return await self._analyze(prompt)

    # ── Transport ───────────────────────────────────────────────

    async def _analyze(self, prompt: str) -> AIAnalysis:
        url = f"{self._config.api_url.rstrip('/')}/chat/completions"
        payload = {
            "model": self._config.model,
            "messages": [
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "response_format": {"type": "json_object"},
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            response = await self._client().post(url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise EnrichmentError(
                f"AI API returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EnrichmentError(f"AI API request failed: {exc}") from exc

        try:
            content = response.json()["choices"][0]["message"]["content"]
            return AIAnalysis.model_validate(json.loads(content))
        except (ValueError, KeyError, IndexError, TypeError, ValidationError) as exc:
            raise EnrichmentError(f"Unparseable AI response: {exc}") from exc
