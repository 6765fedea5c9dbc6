"""Tests for formatters — severity mapping, field rendering, edge cases."""

from __future__ import annotations

import datetime

from src.monitor.formatters import (
    format_alert,
    format_daily_report,
    format_deployment,
    format_pipeline_status,
    format_text,
)
from src.monitor.types import (
    Alert,
    DailyReport,
    Deployment,
    DeploymentState,
    PipelineState,
    PipelineStatus,
    Severity,
)


class TestFormatText:
    def test_first_line_is_title(self) -> None:
        msg = format_text("AI Monitor is running!\n\nMonitoring active.")
        assert msg.title == "AI Monitor is running!"
        assert msg.body == "Monitoring active."
        assert msg.kind == "message"
        assert msg.severity == Severity.INFO

    def test_single_line(self) -> None:
        msg = format_text("hello")
        assert msg.title == "hello"
        assert msg.body == ""


class TestFormatAlert:
    def test_basic(self) -> None:
        ts = datetime.datetime(2024, 5, 1, tzinfo=datetime.UTC)
        msg = format_alert(Alert(
            severity=Severity.WARNING,
            title="High Latency (P95)",
            message="P95 is 300ms",
            metrics={"p95": 300, "samples": 10},
            timestamp=ts,
        ))
        assert msg.severity == Severity.WARNING
        assert msg.title == "High Latency (P95)"
        assert msg.body == "P95 is 300ms"
        assert msg.fields == {"p95": "300", "samples": "10", "timestamp": ts.isoformat()}
        assert msg.kind == "alert"

    def test_nested_metrics_skipped(self) -> None:
        msg = format_alert(Alert(
            severity=Severity.INFO,
            title="x",
            metrics={"aiAnalysis": {"summary": "s"}, "tags": ["a"], "n": 1},
        ))
        assert msg.fields == {"n": "1"}

    def test_long_values_truncated(self) -> None:
        msg = format_alert(Alert(severity=Severity.INFO, title="x", metrics={"stack": "y" * 500}))
        assert len(msg.fields["stack"]) == 200
        assert msg.fields["stack"].endswith("...")


class TestFormatPipelineStatus:
    def test_severity_by_state(self) -> None:
        expected = {
            PipelineState.SUCCESS: Severity.INFO,
            PipelineState.UNSTABLE: Severity.WARNING,
            PipelineState.ABORTED: Severity.WARNING,
            PipelineState.FAILURE: Severity.CRITICAL,
        }
        for state, severity in expected.items():
            msg = format_pipeline_status(
                PipelineStatus(job_name="api", build_number="1", status=state)
            )
            assert msg.severity == severity

    def test_fields_and_changes(self) -> None:
        msg = format_pipeline_status(PipelineStatus(
            job_name="api",
            build_number="42",
            status=PipelineState.SUCCESS,
            duration=95.5,
            url="https://ci.test/42",
            changes=["fix login", "bump deps"],
        ))
        assert msg.title == "Pipeline api #42: SUCCESS"
        assert msg.fields["duration_secs"] == "95.5"
        assert msg.fields["url"] == "https://ci.test/42"
        assert msg.body == "- fix login\n- bump deps"


class TestFormatDeployment:
    def test_failure_is_critical(self) -> None:
        msg = format_deployment(
            Deployment(environment="prod", version="2.0", status=DeploymentState.FAILURE)
        )
        assert msg.severity == Severity.CRITICAL
        assert msg.title == "Deployment 2.0 to prod: FAILURE"
        assert "url" not in msg.fields


class TestFormatDailyReport:
    def test_fields(self) -> None:
        msg = format_daily_report(DailyReport(
            date=datetime.date(2024, 5, 1),
            total_alerts=12,
            critical_alerts=2,
            auto_fixes=1,
            uptime="99.9%",
            top_issues=["db timeouts"],
        ))
        assert msg.title == "Daily Report 2024-05-01"
        assert msg.fields["total_alerts"] == "12"
        assert msg.fields["uptime"] == "99.9%"
        assert msg.body == "Top issues:\n- db timeouts"

    def test_no_issues_empty_body(self) -> None:
        msg = format_daily_report(DailyReport(date=datetime.date(2024, 5, 1)))
        assert msg.body == ""
