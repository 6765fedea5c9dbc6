"""Domain types for the alerting core."""

from __future__ import annotations

import datetime
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(IntEnum):
    """Alert severity — ordered so comparisons work naturally."""

    INFO = 1
    WARNING = 2
    CRITICAL = 3


class Alert(BaseModel):
    """A single alert flowing through the pipeline.

    Frozen: a plugin that rewrites an alert returns a new value
    (``alert.model_copy(update={...})``) instead of mutating it.
    """

    model_config = ConfigDict(frozen=True)

    severity: Severity
    title: str
    message: str = ""
    metrics: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime.datetime | None = None

    @field_validator("severity", mode="before")
    @classmethod
    def _severity_by_name(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.isdigit():
            try:
                return Severity[value.upper()]
            except KeyError:
                raise ValueError(f"unknown severity: {value!r}") from None
        return value

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.severity, self.title)


def fingerprint(severity: Severity | str, title: str) -> str:
    """Deduplication identity: ``"<SEVERITY>::<title>"``."""
    name = severity.name if isinstance(severity, Severity) else str(severity).upper()
    return f"{name}::{title}"


class PipelineState(StrEnum):
    """CI pipeline outcome."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ABORTED = "ABORTED"
    UNSTABLE = "UNSTABLE"


class DeploymentState(StrEnum):
    """Deployment outcome."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class PipelineStatus(BaseModel):
    """CI pipeline status notification."""

    job_name: str
    build_number: str
    status: PipelineState
    duration: float | None = None
    url: str | None = None
    changes: list[str] = Field(default_factory=list)


class Deployment(BaseModel):
    """Deployment notification."""

    environment: str
    version: str
    status: DeploymentState
    duration: float | None = None
    url: str | None = None
    changes: list[str] = Field(default_factory=list)


class DailyReport(BaseModel):
    """Daily operations report."""

    date: datetime.date
    total_alerts: int = 0
    critical_alerts: int = 0
    auto_fixes: int = 0
    uptime: str = ""
    top_issues: list[str] = Field(default_factory=list)


class ChannelMessage(BaseModel):
    """Normalised rendering ready for delivery to a chat/webhook channel."""

    severity: Severity = Severity.INFO
    title: str
    body: str = ""
    fields: dict[str, str] = Field(default_factory=dict)
    kind: str = "message"
