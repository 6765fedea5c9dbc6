"""Tests for PluginManager — ordering, suppression, vetoes, hook failures."""

from __future__ import annotations

import pytest

from src.core.exceptions import PluginError
from src.monitor.plugins import Plugin, PluginManager
from src.monitor.types import Alert, Severity


# ── Helpers ─────────────────────────────────────────────────────


class FakeMonitor:
    def __init__(self) -> None:
        self.alerts: list[Alert] = []
        self.messages: list[str] = []

    async def alert(self, alert: Alert) -> None:
        self.alerts.append(alert)

    async def notify(self, message: str) -> None:
        self.messages.append(message)


def _alert(**kw: object) -> Alert:
    defaults: dict[str, object] = {"severity": Severity.INFO, "title": "Test"}
    defaults.update(kw)
    return Alert(**defaults)  # type: ignore[arg-type]


def _suffix(tag: str) -> Plugin:
    def on_alert(alert: Alert, monitor: object) -> Alert:
        return alert.model_copy(update={"title": f"{alert.title}-{tag}"})

    return Plugin(name=tag, on_alert=on_alert)


# ── Registration ────────────────────────────────────────────────


class TestRegistration:
    async def test_register_runs_on_init(self) -> None:
        seen: list[object] = []
        monitor = FakeMonitor()
        manager = PluginManager()

        await manager.register(Plugin(name="p", on_init=seen.append), monitor)

        assert seen == [monitor]
        assert manager.count == 1
        assert manager.get_plugin("p") is not None

    async def test_async_on_init(self) -> None:
        seen: list[str] = []

        async def on_init(monitor: object) -> None:
            seen.append("init")

        manager = PluginManager()
        await manager.register(Plugin(name="p", on_init=on_init), FakeMonitor())
        assert seen == ["init"]

    async def test_failing_on_init_unregisters(self) -> None:
        def on_init(monitor: object) -> None:
            raise RuntimeError("boom")

        manager = PluginManager()
        with pytest.raises(PluginError, match="boom"):
            await manager.register(Plugin(name="bad", on_init=on_init), FakeMonitor())
        assert manager.count == 0
        assert manager.get_plugin("bad") is None

    async def test_attach_defers_on_init(self) -> None:
        seen: list[str] = []
        manager = PluginManager()
        plugin = Plugin(name="p", on_init=lambda m: seen.append("init"))

        manager.attach(plugin)
        assert manager.count == 1
        assert seen == []

        await manager.initialise(plugin, FakeMonitor())
        assert seen == ["init"]

    def test_plugins_returns_copy(self) -> None:
        manager = PluginManager()
        manager.attach(Plugin(name="p"))
        manager.plugins.clear()
        assert manager.count == 1


# ── Transform phase ─────────────────────────────────────────────


class TestTransformPhase:
    async def test_runs_in_registration_order(self) -> None:
        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(_suffix("p1"), monitor)
        await manager.register(_suffix("p2"), monitor)

        result = await manager.process_alert(_alert(title="Test"), monitor)

        assert result is not None
        assert result.title == "Test-p1-p2"

    async def test_none_suppresses_and_stops_chain(self) -> None:
        calls: list[str] = []

        def drop(alert: Alert, monitor: object) -> None:
            calls.append("drop")
            return None

        def later(alert: Alert, monitor: object) -> Alert:
            calls.append("later")
            return alert

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="drop", on_alert=drop), monitor)
        await manager.register(Plugin(name="later", on_alert=later), monitor)

        assert await manager.process_alert(_alert(), monitor) is None
        assert calls == ["drop"]

    async def test_async_hook(self) -> None:
        async def upgrade(alert: Alert, monitor: object) -> Alert:
            return alert.model_copy(update={"severity": Severity.CRITICAL})

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="up", on_alert=upgrade), monitor)

        result = await manager.process_alert(_alert(), monitor)
        assert result is not None
        assert result.severity == Severity.CRITICAL

    async def test_input_alert_untouched(self) -> None:
        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(_suffix("x"), monitor)
        original = _alert(title="Test")

        await manager.process_alert(original, monitor)
        assert original.title == "Test"

    async def test_raising_hook_is_skipped(self) -> None:
        def broken(alert: Alert, monitor: object) -> Alert:
            raise ValueError("broken")

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="broken", on_alert=broken), monitor)
        await manager.register(_suffix("ok"), monitor)

        result = await manager.process_alert(_alert(title="T"), monitor)
        assert result is not None
        assert result.title == "T-ok"

    async def test_no_plugins_passes_through(self) -> None:
        alert = _alert()
        assert await PluginManager().process_alert(alert, FakeMonitor()) is alert


# ── Gate phase ──────────────────────────────────────────────────


class TestGatePhase:
    async def test_false_vetoes(self) -> None:
        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="gate", on_before_notify=lambda a: False), monitor)
        assert await manager.process_alert(_alert(), monitor) is None

    async def test_gate_sees_transformed_alert(self) -> None:
        seen: list[str] = []

        def gate(alert: Alert) -> bool:
            seen.append(alert.title)
            return True

        monitor = FakeMonitor()
        manager = PluginManager()
        # Gate registered first still runs after every transform.
        await manager.register(Plugin(name="gate", on_before_notify=gate), monitor)
        await manager.register(_suffix("t"), monitor)

        result = await manager.process_alert(_alert(title="A"), monitor)
        assert result is not None
        assert seen == ["A-t"]

    async def test_veto_skips_remaining_gates(self) -> None:
        calls: list[str] = []

        def first(alert: Alert) -> bool:
            calls.append("first")
            return False

        def second(alert: Alert) -> bool:
            calls.append("second")
            return True

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="a", on_before_notify=first), monitor)
        await manager.register(Plugin(name="b", on_before_notify=second), monitor)

        assert await manager.process_alert(_alert(), monitor) is None
        assert calls == ["first"]

    async def test_gates_skipped_when_transform_suppresses(self) -> None:
        calls: list[str] = []
        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="drop", on_alert=lambda a, m: None), monitor)
        await manager.register(
            Plugin(name="gate", on_before_notify=lambda a: calls.append("gate") or True),
            monitor,
        )

        assert await manager.process_alert(_alert(), monitor) is None
        assert calls == []

    async def test_async_gate(self) -> None:
        async def gate(alert: Alert) -> bool:
            return alert.severity >= Severity.WARNING

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="min-warning", on_before_notify=gate), monitor)

        assert await manager.process_alert(_alert(severity=Severity.INFO), monitor) is None
        assert await manager.process_alert(_alert(severity=Severity.CRITICAL), monitor) is not None

    async def test_raising_gate_is_skipped(self) -> None:
        def broken(alert: Alert) -> bool:
            raise RuntimeError("gate down")

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="broken", on_before_notify=broken), monitor)
        assert await manager.process_alert(_alert(), monitor) is not None


# ── Lifecycle hooks ─────────────────────────────────────────────


class TestLifecycleHooks:
    async def test_run_hook_in_order(self) -> None:
        calls: list[str] = []
        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="a", on_start=lambda m: calls.append("a")), monitor)
        await manager.register(Plugin(name="b"), monitor)
        await manager.register(Plugin(name="c", on_start=lambda m: calls.append("c")), monitor)

        await manager.run_hook("on_start", monitor)
        assert calls == ["a", "c"]

    async def test_failing_hook_does_not_stop_others(self) -> None:
        calls: list[str] = []

        def boom(monitor: object) -> None:
            raise RuntimeError("boom")

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="a", on_stop=boom), monitor)
        await manager.register(Plugin(name="b", on_stop=lambda m: calls.append("b")), monitor)

        await manager.run_hook("on_stop", monitor)
        assert calls == ["b"]

    async def test_hook_can_call_back_into_monitor(self) -> None:
        async def on_start(monitor: FakeMonitor) -> None:
            await monitor.notify("plugin online")

        monitor = FakeMonitor()
        manager = PluginManager()
        await manager.register(Plugin(name="a", on_start=on_start), monitor)

        await manager.run_hook("on_start", monitor)
        assert monitor.messages == ["plugin online"]
