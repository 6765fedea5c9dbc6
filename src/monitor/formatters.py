"""Pure functions that render alerting records into ChannelMessage objects."""

from __future__ import annotations

from typing import Any

from src.monitor.types import (
    Alert,
    ChannelMessage,
    DailyReport,
    Deployment,
    DeploymentState,
    PipelineState,
    PipelineStatus,
    Severity,
)

# ── Severity mappings ───────────────────────────────────────────

_PIPELINE_SEVERITY: dict[PipelineState, Severity] = {
    PipelineState.SUCCESS: Severity.INFO,
    PipelineState.UNSTABLE: Severity.WARNING,
    PipelineState.ABORTED: Severity.WARNING,
    PipelineState.FAILURE: Severity.CRITICAL,
}

_DEPLOYMENT_SEVERITY: dict[DeploymentState, Severity] = {
    DeploymentState.SUCCESS: Severity.INFO,
    DeploymentState.FAILURE: Severity.CRITICAL,
}

# Metric values longer than this are truncated in chat fields.
_MAX_FIELD_LEN = 200


def _field_value(value: Any) -> str:
    text = str(value)
    if len(text) > _MAX_FIELD_LEN:
        return text[: _MAX_FIELD_LEN - 3] + "..."
    return text


def _changes_body(changes: list[str]) -> str:
    return "\n".join(f"- {c}" for c in changes)


# ── Formatters ──────────────────────────────────────────────────


def format_text(message: str) -> ChannelMessage:
    """Wrap a raw notification string."""
    first, _, rest = message.partition("\n")
    return ChannelMessage(title=first, body=rest.strip(), kind="message")


def format_alert(alert: Alert) -> ChannelMessage:
    """Convert an Alert to a ChannelMessage.

    Nested structures (e.g. an attached analysis) are left out of the fields;
    the message body already carries their rendered text.
    """
    fields = {
        k: _field_value(v)
        for k, v in alert.metrics.items()
        if not isinstance(v, dict | list)
    }
    if alert.timestamp is not None:
        fields["timestamp"] = alert.timestamp.isoformat()
    return ChannelMessage(
        severity=alert.severity,
        title=alert.title,
        body=alert.message,
        fields=fields,
        kind="alert",
    )


def format_pipeline_status(status: PipelineStatus) -> ChannelMessage:
    """Convert a PipelineStatus to a ChannelMessage."""
    fields: dict[str, str] = {"build": status.build_number, "status": status.status.value}
    if status.duration is not None:
        fields["duration_secs"] = f"{status.duration:g}"
    if status.url:
        fields["url"] = status.url
    return ChannelMessage(
        severity=_PIPELINE_SEVERITY.get(status.status, Severity.INFO),
        title=f"Pipeline {status.job_name} #{status.build_number}: {status.status.value}",
        body=_changes_body(status.changes),
        fields=fields,
        kind="pipeline",
    )


def format_deployment(deployment: Deployment) -> ChannelMessage:
    """Convert a Deployment to a ChannelMessage."""
    fields: dict[str, str] = {
        "environment": deployment.environment,
        "version": deployment.version,
    }
    if deployment.duration is not None:
        fields["duration_secs"] = f"{deployment.duration:g}"
    if deployment.url:
        fields["url"] = deployment.url
    return ChannelMessage(
        severity=_DEPLOYMENT_SEVERITY.get(deployment.status, Severity.INFO),
        title=(
            f"Deployment {deployment.version} to {deployment.environment}: "
            f"{deployment.status.value}"
        ),
        body=_changes_body(deployment.changes),
        fields=fields,
        kind="deployment",
    )


def format_daily_report(report: DailyReport) -> ChannelMessage:
    """Convert a DailyReport to a ChannelMessage."""
    body = ""
    if report.top_issues:
        body = "Top issues:\n" + _changes_body(report.top_issues)
    return ChannelMessage(
        severity=Severity.INFO,
        title=f"Daily Report {report.date.isoformat()}",
        body=body,
        fields={
            "total_alerts": str(report.total_alerts),
            "critical_alerts": str(report.critical_alerts),
            "auto_fixes": str(report.auto_fixes),
            "uptime": report.uptime,
        },
        kind="daily_report",
    )
