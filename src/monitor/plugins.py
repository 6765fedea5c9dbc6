"""Plugin hook chain — lifecycle hooks plus a two-phase alert pipeline.

Usage::

    def tag_env(alert, monitor):
        return alert.model_copy(update={"title": f"[prod] {alert.title}"})

    monitor.use(Plugin(name="env-tag", on_alert=tag_env))

Hooks may be plain functions or coroutines. ``on_alert`` returning ``None``
suppresses the alert; ``on_before_notify`` returning ``False`` does the same.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, Protocol, TypeVar

import structlog

from src.core.exceptions import PluginError
from src.monitor.types import Alert

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class MonitorRef(Protocol):
    """The slice of the monitor that plugins may call back into."""

    async def alert(self, alert: Alert) -> None: ...

    async def notify(self, message: str) -> None: ...


LifecycleHook = Callable[[MonitorRef], Awaitable[None] | None]
AlertHook = Callable[[Alert, MonitorRef], Awaitable[Alert | None] | Alert | None]
GateHook = Callable[[Alert], Awaitable[bool] | bool]

HookName = Literal["on_start", "on_stop"]


@dataclass(frozen=True)
class Plugin:
    """A named bundle of optional hooks."""

    name: str
    on_init: LifecycleHook | None = None
    on_start: LifecycleHook | None = None
    on_stop: LifecycleHook | None = None
    on_alert: AlertHook | None = None
    on_before_notify: GateHook | None = None


async def _call(fn: Callable[..., Awaitable[T] | T], *args: object) -> T:
    result = fn(*args)
    if asyncio.iscoroutine(result):
        return await result
    return result  # type: ignore[return-value]


class PluginManager:
    """Ordered plugin registry.

    Hooks run strictly sequentially in registration order. A hook that raises
    during the alert pipeline or a lifecycle hook is logged and that plugin is
    skipped; ``on_init`` failures are fatal to the registration.
    """

    def __init__(self) -> None:
        self._plugins: list[Plugin] = []

    @property
    def count(self) -> int:
        return len(self._plugins)

    @property
    def plugins(self) -> list[Plugin]:
        return list(self._plugins)

    def get_plugin(self, name: str) -> Plugin | None:
        return next((p for p in self._plugins if p.name == name), None)

    def attach(self, plugin: Plugin) -> None:
        """Append *plugin* without running ``on_init``; see ``initialise``."""
        self._plugins.append(plugin)

    async def register(self, plugin: Plugin, monitor: MonitorRef) -> None:
        """Append *plugin* and run its ``on_init`` hook.

        Raises:
            PluginError: ``on_init`` raised; the plugin is removed again.
        """
        self._plugins.append(plugin)
        await self.initialise(plugin, monitor)

    async def initialise(self, plugin: Plugin, monitor: MonitorRef) -> None:
        """Run ``on_init`` for an attached plugin.

        Raises:
            PluginError: ``on_init`` raised; the plugin is removed again.
        """
        if plugin.on_init is None:
            logger.debug("plugin_registered", plugin=plugin.name)
            return
        try:
            await _call(plugin.on_init, monitor)
        except Exception as exc:
            self._plugins.remove(plugin)
            raise PluginError(f"plugin {plugin.name!r} failed to initialise: {exc}") from exc
        logger.debug("plugin_registered", plugin=plugin.name)

    async def run_hook(self, hook: HookName, monitor: MonitorRef) -> None:
        """Run a lifecycle hook across all plugins, in order."""
        for plugin in self._plugins:
            fn: LifecycleHook | None = getattr(plugin, hook)
            if fn is None:
                continue
            try:
                await _call(fn, monitor)
            except Exception:
                logger.exception("plugin_hook_error", plugin=plugin.name, hook=hook)

    async def process_alert(self, alert: Alert, monitor: MonitorRef) -> Alert | None:
        """Run ``on_alert`` transforms, then ``on_before_notify`` gates.

        Returns the final alert, or None if any plugin suppressed it.
        """
        current = alert

        for plugin in self._plugins:
            if plugin.on_alert is None:
                continue
            try:
                result = await _call(plugin.on_alert, current, monitor)
            except Exception:
                logger.exception("plugin_hook_error", plugin=plugin.name, hook="on_alert")
                continue
            if result is None:
                logger.info("alert_suppressed_by_plugin", plugin=plugin.name, title=current.title)
                return None
            current = result

        for plugin in self._plugins:
            if plugin.on_before_notify is None:
                continue
            try:
                proceed = await _call(plugin.on_before_notify, current)
            except Exception:
                logger.exception(
                    "plugin_hook_error", plugin=plugin.name, hook="on_before_notify"
                )
                continue
            if not proceed:
                logger.info("alert_vetoed_by_plugin", plugin=plugin.name, title=current.title)
                return None

        return current
