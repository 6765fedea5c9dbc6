"""Alerting core — dedup, plugins, health probes, aggregation, and fan-out."""

from src.monitor.aggregator import MetricAggregator
from src.monitor.deduplicator import AlertDeduplicator
from src.monitor.enrichment import AIAnalysis, AIService, EnrichmentProvider
from src.monitor.factory import create_monitor
from src.monitor.instrumentation import Instrumentation
from src.monitor.log_store import LogLine, LogStore
from src.monitor.monitor import Monitor
from src.monitor.notifiers import (
    DiscordNotifier,
    LogNotifier,
    Notifier,
    TelegramNotifier,
    WebhookNotifier,
)
from src.monitor.plugins import Plugin, PluginManager
from src.monitor.probes import CheckOutcome, HealthProbeManager, ProbeConfig, ProbeType
from src.monitor.tracing import TraceContext, current_trace_id, trace_middleware, use_trace
from src.monitor.types import (
    Alert,
    DailyReport,
    Deployment,
    DeploymentState,
    PipelineState,
    PipelineStatus,
    Severity,
)

__all__ = [
    "AIAnalysis",
    "AIService",
    "Alert",
    "AlertDeduplicator",
    "CheckOutcome",
    "DailyReport",
    "Deployment",
    "DeploymentState",
    "DiscordNotifier",
    "EnrichmentProvider",
    "HealthProbeManager",
    "Instrumentation",
    "LogLine",
    "LogStore",
    "LogNotifier",
    "MetricAggregator",
    "Monitor",
    "Notifier",
    "PipelineState",
    "PipelineStatus",
    "Plugin",
    "PluginManager",
    "ProbeConfig",
    "ProbeType",
    "Severity",
    "TelegramNotifier",
    "TraceContext",
    "WebhookNotifier",
    "create_monitor",
    "current_trace_id",
    "trace_middleware",
    "use_trace",
]
